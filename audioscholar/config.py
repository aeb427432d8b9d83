"""Configuration loading utilities for the AudioScholar service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .services.key_rotation import load_keys


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".audioscholar_write_check"

DEFAULT_MODEL_HIERARCHY: Tuple[str, ...] = ("gemini-2.0-flash", "gemini-1.5-flash")


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. When nothing can be prepared the
    original ``preferred`` path is returned so that bootstrap can report the
    failure.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class ProcessingSettings:
    """Knobs for the transcription and summarization pipeline."""

    gemini_keys: Tuple[str, ...] = ()
    model_hierarchy: Tuple[str, ...] = DEFAULT_MODEL_HIERARCHY
    base_backoff_ms: int = 2000
    max_backoff_ms: int = 60000
    backoff_multiplier: float = 2.0
    key_cooldown_seconds: float = 60.0
    whisper_model: str = "base"
    upload_timeout_seconds: int = 600
    max_rotation_cycles: Optional[int] = None
    summary_attempts: int = 3

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ProcessingSettings":
        if not mapping:
            return cls()
        defaults = cls()
        hierarchy = mapping.get("model_hierarchy") or defaults.model_hierarchy
        if isinstance(hierarchy, str):
            hierarchy = [item.strip() for item in hierarchy.split(",")]
        keys = mapping.get("gemini_keys") or ()
        if isinstance(keys, str):
            keys = load_keys(keys, None)
        return cls(
            gemini_keys=tuple(keys),
            model_hierarchy=tuple(item for item in hierarchy if item),
            base_backoff_ms=int(mapping.get("base_backoff_ms", defaults.base_backoff_ms)),
            max_backoff_ms=int(mapping.get("max_backoff_ms", defaults.max_backoff_ms)),
            backoff_multiplier=float(
                mapping.get("backoff_multiplier", defaults.backoff_multiplier)
            ),
            key_cooldown_seconds=float(
                mapping.get("key_cooldown_seconds", defaults.key_cooldown_seconds)
            ),
            whisper_model=str(mapping.get("whisper_model", defaults.whisper_model)),
            upload_timeout_seconds=int(
                mapping.get("upload_timeout_seconds", defaults.upload_timeout_seconds)
            ),
            max_rotation_cycles=(
                int(mapping["max_rotation_cycles"])
                if mapping.get("max_rotation_cycles") is not None
                else defaults.max_rotation_cycles
            ),
            summary_attempts=int(mapping.get("summary_attempts", defaults.summary_attempts)),
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and processing settings for the service."""

    storage_root: Path
    database_file: Path
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)

    @property
    def uploads_root(self) -> Path:
        """Location where uploaded lecture files are kept."""

        return (self.storage_root / "uploads").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".audioscholar" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            LOGGER.warning(
                "Database location '%s' is not writable; using fallback '%s'.",
                database_file,
                fallback_database,
            )
            database_file = fallback_database

        processing = ProcessingSettings.from_mapping(mapping.get("processing"))
        return cls(storage_root=storage_root, database_file=database_file, processing=processing)


def _apply_environment(
    settings: ProcessingSettings, environ: Mapping[str, str]
) -> ProcessingSettings:
    keys = load_keys(environ.get("GEMINI_API_KEYS"), environ.get("GOOGLE_AI_API_KEY"))
    merged_keys = list(settings.gemini_keys)
    for key in keys:
        if key not in merged_keys:
            merged_keys.append(key)

    hierarchy = settings.model_hierarchy
    raw_hierarchy = environ.get("GEMINI_MODEL_HIERARCHY")
    if raw_hierarchy and raw_hierarchy.strip():
        hierarchy = tuple(item.strip() for item in raw_hierarchy.split(",") if item.strip())

    return replace(settings, gemini_keys=tuple(merged_keys), model_hierarchy=hierarchy)


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load the configuration from ``config/default.json`` by default.

    API keys are never stored in the JSON file; they are merged in from the
    environment (``GEMINI_API_KEYS`` and the legacy ``GOOGLE_AI_API_KEY``).
    """

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    config = AppConfig.from_mapping(raw_config, base_path=base_path)
    processing = _apply_environment(config.processing, os.environ if environ is None else environ)
    return AppConfig(
        storage_root=config.storage_root,
        database_file=config.database_file,
        processing=processing,
    )


__all__ = ["AppConfig", "DEFAULT_MODEL_HIERARCHY", "ProcessingSettings", "load_config"]
