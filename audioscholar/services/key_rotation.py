"""API key rotation, model rotation and retry helpers for upstream AI calls."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

GEMINI_PROVIDER = "gemini"
RATE_LIMIT_STATUS_CODES = frozenset({429, 403})
ROTATION_STATUS_CODES = frozenset({429, 503})


class NoApiKeysError(RuntimeError):
    """Raised when a provider has no API keys configured."""


class RateLimitedError(RuntimeError):
    """Raised by an upstream call that was rejected as rate limited or overloaded."""

    def __init__(self, message: str, *, status_code: int = 429) -> None:
        super().__init__(message)
        self.status_code = status_code


class RotationExhaustedError(RuntimeError):
    """Raised when a bounded rotation runs out of cycles."""


def load_keys(list_raw: Optional[str], legacy: Optional[str]) -> List[str]:
    """Split a comma separated key list and merge the legacy single key into it."""

    keys: List[str] = []
    if list_raw and list_raw.strip():
        for item in list_raw.split(","):
            candidate = item.strip()
            if candidate and candidate not in keys:
                keys.append(candidate)
    if legacy and legacy.strip():
        legacy_key = legacy.strip()
        if legacy_key not in keys:
            keys.append(legacy_key)
    return keys


def mask_key(key: Optional[str]) -> str:
    if key is None or len(key) < 8:
        return "********"
    return key[-4:]


class KeyRotationManager:
    """Round-robin key selection with a cooldown for keys that hit rate limits."""

    def __init__(
        self,
        keys_by_provider: Mapping[str, Iterable[str]],
        *,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._keys: Dict[str, List[str]] = {}
        self._counters: Dict[str, int] = {}
        self._cooldowns: Dict[str, float] = {}
        self._cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        for provider, keys in keys_by_provider.items():
            loaded = [key for key in keys if key]
            if loaded:
                LOGGER.info("Loaded %d keys for provider: %s", len(loaded), provider)
            else:
                LOGGER.warning("No API keys found for provider: %s", provider)
            self._keys[provider] = loaded
            self._counters[provider] = 0

    @staticmethod
    def mask_key(key: Optional[str]) -> str:
        return mask_key(key)

    def key_count(self, provider: str) -> int:
        return len(self._keys.get(provider, ()))

    def _is_cooling_down(self, key: str) -> bool:
        expiry = self._cooldowns.get(key)
        if expiry is None:
            return False
        if self._clock() > expiry:
            del self._cooldowns[key]
            return False
        return True

    def get_key(self, provider: str) -> str:
        """Return the next usable key for *provider*.

        Keys in cooldown are skipped. When every key is cooling down the next
        key in sequence is returned anyway so callers can still make progress.
        """

        keys = self._keys.get(provider) or []
        if not keys:
            raise NoApiKeysError(f"No API keys configured for {provider}")
        with self._lock:
            size = len(keys)
            for _ in range(size):
                index = self._counters[provider] % size
                self._counters[provider] += 1
                candidate = keys[index]
                if not self._is_cooling_down(candidate):
                    return candidate
            LOGGER.warning(
                "All keys for %s are in cooldown. Returning a candidate anyway.", provider
            )
            index = self._counters[provider] % size
            self._counters[provider] += 1
            return keys[index]

    def report_error(self, provider: str, key: str, status_code: int) -> None:
        if status_code not in RATE_LIMIT_STATUS_CODES:
            return
        LOGGER.warning(
            "Rate limit error (%s) reported for %s key ...%s; cooling down for %.0fs",
            status_code,
            provider,
            mask_key(key),
            self._cooldown_seconds,
        )
        with self._lock:
            self._cooldowns[key] = self._clock() + self._cooldown_seconds

    def report_success(self, provider: str, key: str) -> None:
        # Cooldowns expire on their own timer.
        return None


class ModelRotation:
    """Try each model of a hierarchy in turn, backing off once all are exhausted."""

    def __init__(
        self,
        hierarchy: Sequence[str],
        *,
        base_backoff_ms: int = 2000,
        max_backoff_ms: int = 60000,
        multiplier: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        max_cycles: Optional[int] = None,
    ) -> None:
        models = [model.strip() for model in hierarchy if model and model.strip()]
        if not models:
            raise ValueError("Model hierarchy must contain at least one model")
        self._hierarchy = models
        self._base_backoff_ms = base_backoff_ms
        self._max_backoff_ms = max_backoff_ms
        self._multiplier = multiplier
        self._sleep = sleep
        self._max_cycles = max_cycles

    @property
    def hierarchy(self) -> List[str]:
        return list(self._hierarchy)

    def execute(self, call: Callable[[str], T]) -> T:
        """Run ``call(model)`` until one model answers.

        :class:`RateLimitedError` moves on to the next model immediately; any
        other exception propagates unchanged.
        """

        backoff_ms = float(self._base_backoff_ms)
        cycles = 0
        while True:
            for model in self._hierarchy:
                try:
                    return call(model)
                except RateLimitedError as error:
                    LOGGER.warning(
                        "Model %s is rate limited or overloaded (%s). Switching to next model",
                        model,
                        error.status_code,
                    )
            cycles += 1
            if self._max_cycles is not None and cycles >= self._max_cycles:
                raise RotationExhaustedError(
                    f"All models rate limited after {cycles} cycle(s)"
                )
            LOGGER.info(
                "Cycle %d complete; all models exhausted. Sleeping %.0f ms before restarting",
                cycles,
                backoff_ms,
            )
            self._sleep(backoff_ms / 1000.0)
            backoff_ms = min(backoff_ms * self._multiplier, float(self._max_backoff_ms))


def execute_with_retry(
    context_id: str,
    description: str,
    task: Callable[[], T],
    *,
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: Optional[int] = None,
    initial_delay: float = 2.0,
    max_delay: float = 60.0,
) -> T:
    """Run *task* until it succeeds, doubling the delay between attempts.

    With ``max_attempts`` unset the task is retried forever. Otherwise the
    last exception is re-raised once the attempts are used up.
    """

    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        try:
            return task()
        except Exception as error:
            if max_attempts is not None and attempt >= max_attempts:
                LOGGER.error(
                    "[%s] Failed to %s after %d attempt(s): %s",
                    context_id,
                    description,
                    attempt,
                    error,
                )
                raise
            LOGGER.error(
                "[%s] Failed to %s. Retrying in %.0f ms. Error: %s",
                context_id,
                description,
                delay * 1000,
                error,
            )
            sleep(delay)
            delay = min(delay * 2, max_delay)


__all__ = [
    "GEMINI_PROVIDER",
    "KeyRotationManager",
    "ModelRotation",
    "NoApiKeysError",
    "RateLimitedError",
    "RotationExhaustedError",
    "execute_with_retry",
    "load_keys",
    "mask_key",
]
