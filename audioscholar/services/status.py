"""Recording status classification shared by the server, the client and the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

LOGGER = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset(
    {
        "COMPLETE",
        "COMPLETED",
        "FAILED",
        "PROCESSING_HALTED_UNSUITABLE_CONTENT",
        "PROCESSING_HALTED_NO_SPEECH",
        "SUMMARY_FAILED",
        "COMPLETED_WITH_WARNINGS",
    }
)
UPLOADING_STATUSES = frozenset(
    {"UPLOAD_PENDING", "UPLOAD_IN_PROGRESS", "UPLOADING_TO_STORAGE", "UPLOADED"}
)
PROCESSING_STATUSES = frozenset(
    {
        "PROCESSING_QUEUED",
        "TRANSCRIBING",
        "PDF_CONVERTING",
        "PDF_CONVERTING_API",
        "TRANSCRIPTION_COMPLETE",
        "PDF_CONVERSION_COMPLETE",
        "SUMMARIZATION_QUEUED",
        "SUMMARIZING",
        "SUMMARY_COMPLETE",
        "RECOMMENDATIONS_QUEUED",
        "GENERATING_RECOMMENDATIONS",
        "PROCESSING",
    }
)

UPLOAD_TIMEOUT_SECONDS = 10 * 60

Timestamp = Union[None, str, int, float, datetime, Mapping[str, Any]]


@dataclass(frozen=True)
class StatusBadge:
    label: str
    color: str
    icon: str
    spinning: bool
    title: str


def _to_epoch_seconds(value: Timestamp) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return moment.timestamp()
    if isinstance(value, Mapping):
        # Firestore style {"seconds": ..., "nanos": ...}
        seconds = value.get("seconds")
        return float(seconds) if isinstance(seconds, (int, float)) else None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _now_seconds(now: Optional[datetime]) -> float:
    if now is None:
        return datetime.now(timezone.utc).timestamp()
    return _to_epoch_seconds(now) or 0.0


def elapsed_since_upload(upload_timestamp: Timestamp, now: Optional[datetime] = None) -> float:
    """Seconds since *upload_timestamp*; ``0`` when it is unknown."""

    uploaded = _to_epoch_seconds(upload_timestamp)
    if uploaded is None:
        return 0.0
    return _now_seconds(now) - uploaded


def describe_status(
    status: Optional[str],
    failure_reason: Optional[str] = None,
    upload_timestamp: Timestamp = None,
    now: Optional[datetime] = None,
    *,
    timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
) -> StatusBadge:
    """Map a raw backend status onto the badge shown next to a recording."""

    status_upper = status.upper() if status else "UNKNOWN"
    is_uploading = status_upper in UPLOADING_STATUSES
    elapsed = elapsed_since_upload(upload_timestamp, now)

    if is_uploading and elapsed > timeout_seconds:
        return StatusBadge(
            label="Processing Upload",
            color="gray",
            icon="clock",
            spinning=False,
            title=(
                f"Upload received {round(elapsed / 60)} mins ago, processing initiated. "
                f"Status: {status}"
            ),
        )

    spinning = False
    if status_upper in TERMINAL_STATUSES:
        if status_upper in ("COMPLETE", "COMPLETED"):
            label, color, icon = "Completed", "green", "check-circle"
        elif status_upper == "COMPLETED_WITH_WARNINGS":
            label, color, icon = "Completed w/ Warn", "yellow", "alert-triangle"
        else:
            label, color, icon = "Failed", "red", "alert-triangle"
    elif status_upper in PROCESSING_STATUSES:
        label, color, icon, spinning = "Processing", "yellow", "loader", True
    elif is_uploading:
        label, color, icon, spinning = "Uploading", "blue", "upload-cloud", True
    else:
        label, color, icon = "Unknown", "gray", "clock"
        if status_upper != "UNKNOWN":
            LOGGER.warning("Unknown recording status received: %s", status)

    title = f"{label}: {failure_reason}" if label == "Failed" and failure_reason else label
    if status and label != status:
        title += f" (Backend: {status})"
    return StatusBadge(label=label, color=color, icon=icon, spinning=spinning, title=title)


def needs_polling(
    status: Optional[str],
    upload_timestamp: Timestamp = None,
    now: Optional[datetime] = None,
    *,
    timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
) -> bool:
    """Return ``True`` while a recording can still change status on its own."""

    status_upper = status.upper() if status else None
    if status_upper in TERMINAL_STATUSES:
        return False
    if status_upper in UPLOADING_STATUSES:
        if elapsed_since_upload(upload_timestamp, now) > timeout_seconds:
            return False
    return True


def _field(recording: Any, *names: str) -> Any:
    for name in names:
        if isinstance(recording, Mapping):
            if name in recording:
                return recording[name]
        elif hasattr(recording, name):
            return getattr(recording, name)
    return None


def any_needs_polling(
    recordings: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
) -> bool:
    """Accepts records or JSON mappings (``status`` / ``uploadTimestamp``)."""

    return any(
        needs_polling(
            _field(recording, "status"),
            _field(recording, "upload_timestamp", "uploadTimestamp"),
            now,
            timeout_seconds=timeout_seconds,
        )
        for recording in recordings
    )


__all__ = [
    "PROCESSING_STATUSES",
    "StatusBadge",
    "TERMINAL_STATUSES",
    "UPLOADING_STATUSES",
    "UPLOAD_TIMEOUT_SECONDS",
    "any_needs_polling",
    "describe_status",
    "elapsed_since_upload",
    "needs_polling",
]
