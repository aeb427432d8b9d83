from __future__ import annotations

import json

import httpx
import pytest

from audioscholar.config import ProcessingSettings
from audioscholar.services.key_rotation import KeyRotationManager, ModelRotation, RotationExhaustedError
from audioscholar.services.summarization import (
    GeminiSummarizer,
    SummarizationError,
    build_summarizer,
    extract_json_payload,
    parse_summary_payload,
)


SUMMARY_JSON = {
    "summaryText": "## Newton\nThree laws of motion.",
    "keyPoints": ["Inertia", "F = ma", "Inertia", ""],
    "topics": ["Mechanics"],
    "glossary": [{"term": "Force", "definition": "A push or pull"}, {"definition": "orphan"}],
}


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_extract_json_payload_handles_fences_and_noise() -> None:
    fenced = "```json\n" + json.dumps({"summaryText": "x"}) + "\n```"

    assert extract_json_payload(fenced) == {"summaryText": "x"}
    assert extract_json_payload('Sure! {"a": 1} trailing words') == {"a": 1}
    assert extract_json_payload("no json here") is None
    assert extract_json_payload("") is None
    assert extract_json_payload("[1, 2]") is None


def test_parse_summary_payload_cleans_lists() -> None:
    result = parse_summary_payload(json.dumps(SUMMARY_JSON))

    assert result.formatted_summary_text.startswith("## Newton")
    assert result.key_points == ["Inertia", "F = ma"]
    assert result.glossary == [{"term": "Force", "definition": "A push or pull"}]

    with pytest.raises(SummarizationError):
        parse_summary_payload(json.dumps({"keyPoints": ["only"]}))


def test_gemini_summarizer_rotates_models_on_rate_limits() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, request.url.params["key"]))
        if "model-a" in request.url.path:
            return httpx.Response(429, json={"error": "quota"})
        return httpx.Response(200, json=_gemini_reply(json.dumps(SUMMARY_JSON)))

    client = httpx.Client(transport=httpx.MockTransport(handler))
    keys = KeyRotationManager({"gemini": ["key-one", "key-two"]})
    summarizer = GeminiSummarizer(
        keys,
        ModelRotation(["model-a", "model-b"], sleep=lambda seconds: None),
        client=client,
        base_url="https://gemini.test/v1beta",
    )

    result = summarizer.summarize("The lecture transcript", title="Physics 101")

    assert result.topics == ["Mechanics"]
    assert requests == [
        ("/v1beta/models/model-a:generateContent", "key-one"),
        ("/v1beta/models/model-b:generateContent", "key-two"),
    ]
    summarizer.close()


def test_gemini_summarizer_gives_up_after_configured_cycles() -> None:
    sleeps = []
    client = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded"))
    )
    summarizer = GeminiSummarizer(
        KeyRotationManager({"gemini": ["key-one"]}),
        ModelRotation(["model-a"], sleep=sleeps.append, max_cycles=2, base_backoff_ms=10),
        client=client,
    )

    with pytest.raises(RotationExhaustedError):
        summarizer.summarize("transcript")
    assert sleeps == [0.01]


def test_gemini_summarizer_rejects_unexpected_shapes() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    summarizer = GeminiSummarizer(
        KeyRotationManager({"gemini": ["key-one"]}),
        ModelRotation(["model-a"], sleep=lambda seconds: None),
        client=client,
    )

    with pytest.raises(SummarizationError):
        summarizer.summarize("transcript")
    with pytest.raises(SummarizationError):
        summarizer.summarize("   ")


def test_build_summarizer_requires_keys() -> None:
    assert build_summarizer(ProcessingSettings()) is None

    summarizer = build_summarizer(
        ProcessingSettings(gemini_keys=("key-one",)),
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    assert isinstance(summarizer, GeminiSummarizer)
