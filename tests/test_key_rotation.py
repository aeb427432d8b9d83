from __future__ import annotations

import pytest

from audioscholar.services.key_rotation import (
    KeyRotationManager,
    ModelRotation,
    NoApiKeysError,
    RateLimitedError,
    RotationExhaustedError,
    execute_with_retry,
    load_keys,
    mask_key,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_load_keys_merges_legacy_key() -> None:
    assert load_keys(" a, b ,a,, ", "c") == ["a", "b", "c"]
    assert load_keys(None, "b") == ["b"]
    assert load_keys("", None) == []


def test_mask_key_hides_short_keys() -> None:
    assert mask_key("short") == "********"
    assert mask_key(None) == "********"
    assert mask_key("abcdefgh1234") == "1234"


def test_key_manager_round_robin_skips_cooling_keys() -> None:
    clock = _Clock()
    manager = KeyRotationManager({"gemini": ["k1", "k2", "k3"]}, cooldown_seconds=60, clock=clock)

    assert [manager.get_key("gemini") for _ in range(4)] == ["k1", "k2", "k3", "k1"]

    manager.report_error("gemini", "k2", 429)
    assert [manager.get_key("gemini") for _ in range(3)] == ["k3", "k1", "k3"]

    clock.now = 61
    assert manager.get_key("gemini") == "k1"
    assert manager.get_key("gemini") == "k2"


def test_key_manager_ignores_other_errors_and_falls_back_when_all_cool() -> None:
    manager = KeyRotationManager({"gemini": ["k1"]}, clock=_Clock())

    manager.report_error("gemini", "k1", 500)
    assert manager.get_key("gemini") == "k1"

    manager.report_error("gemini", "k1", 403)
    assert manager.get_key("gemini") == "k1"

    with pytest.raises(NoApiKeysError):
        manager.get_key("other")


def test_model_rotation_moves_to_next_model() -> None:
    calls = []
    rotation = ModelRotation(["m1", "m2"], sleep=lambda seconds: calls.append(("sleep", seconds)))

    def call(model: str) -> str:
        calls.append(model)
        if model == "m1":
            raise RateLimitedError("busy")
        return f"answer from {model}"

    assert rotation.execute(call) == "answer from m2"
    assert calls == ["m1", "m2"]


def test_model_rotation_backs_off_between_cycles_and_stops() -> None:
    sleeps = []
    rotation = ModelRotation(
        ["m1", "m2"],
        base_backoff_ms=1000,
        max_backoff_ms=3000,
        multiplier=2.0,
        sleep=sleeps.append,
        max_cycles=4,
    )

    def always_limited(model: str) -> str:
        raise RateLimitedError(model, status_code=503)

    with pytest.raises(RotationExhaustedError):
        rotation.execute(always_limited)
    assert sleeps == [1.0, 2.0, 3.0]


def test_model_rotation_propagates_other_errors() -> None:
    rotation = ModelRotation(["m1", "m2"], sleep=lambda seconds: None)

    def broken(model: str) -> str:
        raise KeyError(model)

    with pytest.raises(KeyError):
        rotation.execute(broken)
    with pytest.raises(ValueError):
        ModelRotation([" "])


def test_execute_with_retry_doubles_delay() -> None:
    sleeps = []
    attempts = {"count": 0}

    def flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise RuntimeError("transient")
        return "done"

    assert execute_with_retry("rec-1", "summarize", flaky, sleep=sleeps.append) == "done"
    assert sleeps == [2.0, 4.0]

    def always_failing() -> str:
        raise RuntimeError("nope")

    sleeps.clear()
    with pytest.raises(RuntimeError):
        execute_with_retry("rec-1", "summarize", always_failing, sleep=sleeps.append, max_attempts=2)
    assert sleeps == [2.0]
