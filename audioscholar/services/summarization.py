"""Lecture summarization through the Gemini ``generateContent`` REST API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..config import ProcessingSettings
from .key_rotation import GEMINI_PROVIDER, KeyRotationManager, ModelRotation, RateLimitedError


LOGGER = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_MAX_TRANSCRIPT_CHARS = 200_000

SUMMARY_PROMPT = """You are an assistant that turns lecture transcripts into study notes.
Respond with strictly valid JSON and nothing else, using this structure:
{
  "summaryText": "A well structured Markdown summary of the lecture",
  "keyPoints": ["short key point", "..."],
  "topics": ["main topic", "..."],
  "glossary": [{"term": "term", "definition": "definition"}]
}
"""


class SummarizationError(RuntimeError):
    """Raised when the model response cannot be turned into a summary."""


@dataclass
class SummaryResult:
    formatted_summary_text: str
    key_points: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    glossary: List[Dict[str, str]] = field(default_factory=list)


class Summarizer(Protocol):
    def summarize(self, transcript: str, *, title: Optional[str] = None) -> SummaryResult:
        """Return a structured summary of *transcript*."""


def extract_json_payload(raw_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of a model reply, tolerating code fences."""

    if not raw_text:
        return None
    text = raw_text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if len(lines) >= 3 and lines[-1].strip() == "```":
            text = "\n".join(lines[1:-1]).strip()
    start = text.find("{")
    if start == -1:
        return None
    decoder = json.JSONDecoder()
    try:
        parsed, _ = decoder.raw_decode(text[start:])
    except json.JSONDecodeError:
        end = text.rfind("}")
        if end <= start:
            return None
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _clean_strings(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    cleaned: List[str] = []
    for item in items:
        text = str(item).strip() if item is not None else ""
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def _clean_glossary(items: Any) -> List[Dict[str, str]]:
    if not isinstance(items, list):
        return []
    glossary: List[Dict[str, str]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        term = str(item.get("term") or "").strip()
        definition = str(item.get("definition") or "").strip()
        if term:
            glossary.append({"term": term, "definition": definition})
    return glossary


def parse_summary_payload(raw_text: str) -> SummaryResult:
    payload = extract_json_payload(raw_text)
    if payload is None:
        raise SummarizationError("Model reply did not contain a JSON summary")
    summary_text = str(payload.get("summaryText") or payload.get("summary") or "").strip()
    if not summary_text:
        raise SummarizationError("Model reply did not include summary text")
    return SummaryResult(
        formatted_summary_text=summary_text,
        key_points=_clean_strings(payload.get("keyPoints")),
        topics=_clean_strings(payload.get("topics")),
        glossary=_clean_glossary(payload.get("glossary")),
    )


class GeminiSummarizer:
    """Summarizer that rotates API keys and models on rate limits."""

    def __init__(
        self,
        key_manager: KeyRotationManager,
        rotation: ModelRotation,
        *,
        client: Optional[httpx.Client] = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 120.0,
    ) -> None:
        self._key_manager = key_manager
        self._rotation = rotation
        self._client = client or httpx.Client(timeout=timeout)
        self._base_url = base_url.rstrip("/")

    def close(self) -> None:
        self._client.close()

    def _build_request(self, transcript: str, title: Optional[str]) -> Dict[str, Any]:
        heading = f"Lecture title: {title}\n\n" if title else ""
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": SUMMARY_PROMPT},
                        {"text": f"{heading}Transcript:\n{transcript[:_MAX_TRANSCRIPT_CHARS]}"},
                    ],
                }
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }

    def _call_model(self, model: str, body: Dict[str, Any]) -> str:
        key = self._key_manager.get_key(GEMINI_PROVIDER)
        url = f"{self._base_url}/models/{model}:generateContent"
        LOGGER.debug("Requesting summary from %s", model)
        response = self._client.post(url, params={"key": key}, json=body)
        if response.status_code in (403, 429, 503):
            self._key_manager.report_error(GEMINI_PROVIDER, key, response.status_code)
            raise RateLimitedError(
                f"{model} answered {response.status_code}", status_code=response.status_code
            )
        response.raise_for_status()
        self._key_manager.report_success(GEMINI_PROVIDER, key)
        data = response.json()
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as error:
            raise SummarizationError(f"Unexpected response shape from {model}") from error
        return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))

    def summarize(self, transcript: str, *, title: Optional[str] = None) -> SummaryResult:
        if not transcript.strip():
            raise SummarizationError("Cannot summarize an empty transcript")
        body = self._build_request(transcript, title)
        raw_text = self._rotation.execute(lambda model: self._call_model(model, body))
        return parse_summary_payload(raw_text)


def build_summarizer(
    settings: ProcessingSettings,
    *,
    client: Optional[httpx.Client] = None,
) -> Optional[GeminiSummarizer]:
    """Return a Gemini summarizer, or ``None`` when no API keys are configured."""

    if not settings.gemini_keys:
        LOGGER.warning("No Gemini API keys configured; summaries will not be generated")
        return None
    key_manager = KeyRotationManager(
        {GEMINI_PROVIDER: settings.gemini_keys},
        cooldown_seconds=settings.key_cooldown_seconds,
    )
    rotation = ModelRotation(
        settings.model_hierarchy,
        base_backoff_ms=settings.base_backoff_ms,
        max_backoff_ms=settings.max_backoff_ms,
        multiplier=settings.backoff_multiplier,
        max_cycles=settings.max_rotation_cycles,
    )
    return GeminiSummarizer(key_manager, rotation, client=client)


__all__ = [
    "GEMINI_BASE_URL",
    "GeminiSummarizer",
    "SummarizationError",
    "Summarizer",
    "SummaryResult",
    "build_summarizer",
    "extract_json_payload",
    "parse_summary_payload",
]
