"""Structured log events for recording status changes, the queue and the database."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .status import TERMINAL_STATUSES


DEFAULT_EVENT_LOGGER = logging.getLogger("audioscholar.events")

RECORDING_STATUS_EVENT = "RECORDING_STATUS"
QUEUE_EVENT = "QUEUE"

# Terminal statuses that mean the user did not get a full summary.
PROBLEM_STATUSES = frozenset({"FAILED", "SUMMARY_FAILED", "PROCESSING_HALTED_NO_SPEECH"})

_MAX_VALUE_LENGTH = 200


def _clean(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return normalize_context(value) or None
    if isinstance(value, (list, tuple, set, frozenset)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip() if not isinstance(value, Path) else str(value)
    if not text:
        return None
    if len(text) > _MAX_VALUE_LENGTH:
        return text[:_MAX_VALUE_LENGTH] + "…"
    return text


def normalize_context(values: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop empty entries and coerce the rest into log-friendly scalars."""

    cleaned: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        value = _clean(raw_value)
        if key and value is not None and value != "":
            cleaned[str(key)] = value
    return cleaned


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[TYPE] message (key=value, ...)`` and attach the parts as record extras."""

    sections = {
        "event_correlation": normalize_context(correlation),
        "event_context": normalize_context(context),
        "event_payload": normalize_context(payload),
    }
    details = {key: value for section in sections.values() for key, value in section.items()}
    text = str(message).strip()
    if event_type:
        text = f"[{event_type}] {text}"
    if details:
        text += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"event": str(message).strip(), "event_type": event_type or ""}
    extra.update({name: section for name, section in sections.items() if section})
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, text, extra=extra)


def emit_recording_event(
    recording_id: str,
    status: str,
    *,
    failure_reason: Optional[str] = None,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Record that *recording_id* moved to *status*.

    Problem outcomes are logged at WARNING so they stand out from routine
    progress.
    """

    terminal = status in TERMINAL_STATUSES
    emit_structured_event(
        RECORDING_STATUS_EVENT,
        f"Recording {recording_id} is {status}",
        payload={
            "recording": recording_id,
            "status": status,
            "terminal": terminal,
            "failure_reason": failure_reason,
        },
        level=logging.WARNING if status in PROBLEM_STATUSES else logging.INFO,
        logger=logger,
    )


def emit_queue_event(
    action: str,
    recording_id: str,
    *,
    task_id: Optional[str] = None,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
    **details: Any,
) -> None:
    emit_structured_event(
        QUEUE_EVENT,
        f"{action} {recording_id}",
        payload={"recording": recording_id, "task": task_id, **details},
        level=logging.DEBUG,
        logger=logger,
    )


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "PROBLEM_STATUSES",
    "QUEUE_EVENT",
    "RECORDING_STATUS_EVENT",
    "emit_queue_event",
    "emit_recording_event",
    "emit_structured_event",
    "normalize_context",
]
