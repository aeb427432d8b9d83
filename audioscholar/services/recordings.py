"""Recording uploads, metadata and summary management."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import uuid
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence

from ..config import AppConfig
from ..errors import (
    NotFoundError,
    PermissionDeniedError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from .storage import AudioScholarRepository, RecordingRecord, SummaryRecord


LOGGER = logging.getLogger(__name__)

ALLOWED_AUDIO_TYPES = frozenset(
    {
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/x-wav",
        "audio/aac",
        "audio/x-aac",
        "audio/ogg",
        "audio/flac",
        "audio/x-flac",
        "audio/aiff",
        "audio/x-aiff",
        "audio/vnd.dlna.adts",
    }
)
ALLOWED_POWERPOINT_TYPES = (
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/vnd.ms-powerpoint",
)

DEFAULT_PAGE_SIZE = 20
_UPLOAD_CHUNK_SIZE = 1024 * 1024
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class UploadedFile:
    """A file received from a multipart request."""

    filename: Optional[str]
    content_type: Optional[str]
    stream: BinaryIO


def _stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def _safe_filename(filename: Optional[str], default: str) -> str:
    name = Path(filename or "").name
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return cleaned or default


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def format_duration(seconds: float) -> str:
    total = int(round(max(seconds, 0.0)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def probe_audio_duration(audio_path: Path) -> Optional[float]:
    """Return the duration in seconds, or ``None`` when it cannot be determined."""

    LOGGER.debug("Probing audio duration for %s", audio_path)
    if audio_path.suffix.lower() == ".wav":
        try:
            with contextlib.closing(wave.open(str(audio_path), "rb")) as handle:
                frames = handle.getnframes()
                rate = handle.getframerate()
        except (wave.Error, EOFError, OSError):
            LOGGER.debug("Could not read WAV header for %s", audio_path)
            return None
        return frames / float(rate) if rate else None
    try:
        from mutagen import File as MutagenFile  # type: ignore[import-not-found]
    except ImportError:
        LOGGER.debug("mutagen not installed; cannot determine duration for %s", audio_path)
        return None
    try:
        metadata = MutagenFile(str(audio_path))
    except Exception:  # pragma: no cover - depends on third-party parsers
        LOGGER.debug("mutagen could not read metadata for %s", audio_path)
        return None
    info = getattr(metadata, "info", None) if metadata is not None else None
    length = getattr(info, "length", None)
    if not length:
        return None
    LOGGER.debug("mutagen reported duration %.2fs for %s", float(length), audio_path)
    return float(length)


class RecordingService:
    """Owner-aware operations on recordings, their files and their summaries."""

    def __init__(self, repository: AudioScholarRepository, config: AppConfig) -> None:
        self._repository = repository
        self._config = config

    def recording_dir(self, user_id: str, recording_id: str) -> Path:
        return self._config.uploads_root / user_id / recording_id

    def resolve_path(self, relative: Optional[str]) -> Optional[Path]:
        if not relative:
            return None
        return (self._config.storage_root / relative).resolve()

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self._config.storage_root).as_posix()

    @staticmethod
    def _copy_stream(upload: UploadedFile, target: Path) -> int:
        source = upload.stream
        with contextlib.suppress(OSError, ValueError):
            source.seek(0)
        with target.open("wb") as buffer:
            shutil.copyfileobj(source, buffer, length=_UPLOAD_CHUNK_SIZE)
        return target.stat().st_size

    def create_upload(
        self,
        user_id: str,
        audio: UploadedFile,
        *,
        powerpoint: Optional[UploadedFile] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RecordingRecord:
        """Validate and store an upload, returning the new ``UPLOADED`` recording."""

        if _stream_size(audio.stream) == 0:
            LOGGER.warning("Upload rejected for user %s: audio file is empty", user_id)
            raise ValidationError("Audio file cannot be empty.")
        audio_type = (audio.content_type or "").lower()
        if audio_type not in ALLOWED_AUDIO_TYPES:
            LOGGER.warning(
                "Upload rejected for user %s: invalid audio type %r", user_id, audio.content_type
            )
            raise UnsupportedMediaTypeError(
                "Invalid audio file type. Allowed types: " + ", ".join(sorted(ALLOWED_AUDIO_TYPES))
            )
        if powerpoint is not None and _stream_size(powerpoint.stream) == 0:
            LOGGER.info("Ignoring empty PowerPoint file for user %s", user_id)
            powerpoint = None
        if powerpoint is not None:
            if (powerpoint.content_type or "").lower() not in ALLOWED_POWERPOINT_TYPES:
                raise UnsupportedMediaTypeError(
                    "Invalid PowerPoint file type. Allowed types: "
                    + ", ".join(ALLOWED_POWERPOINT_TYPES)
                )

        recording_id = str(uuid.uuid4())
        target_dir = self.recording_dir(user_id, recording_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        try:
            audio_name = _safe_filename(audio.filename, "audio")
            audio_path = target_dir / audio_name
            file_size = self._copy_stream(audio, audio_path)
            powerpoint_relative = None
            if powerpoint is not None:
                slides_path = target_dir / _safe_filename(powerpoint.filename, "slides.pptx")
                if slides_path == audio_path:
                    slides_path = target_dir / f"slides-{slides_path.name}"
                self._copy_stream(powerpoint, slides_path)
                powerpoint_relative = self.relative_path(slides_path)

            seconds = probe_audio_duration(audio_path)
            self._repository.add_recording(
                recording_id,
                user_id,
                file_name=audio.filename or audio_name,
                audio_path=self.relative_path(audio_path),
                title=_blank_to_none(title),
                description=_blank_to_none(description),
                content_type=audio_type,
                file_size=file_size,
                duration=format_duration(seconds) if seconds is not None else None,
                powerpoint_path=powerpoint_relative,
                status="UPLOADED",
            )
        except Exception:
            shutil.rmtree(target_dir, ignore_errors=True)
            raise

        LOGGER.info(
            "Stored upload %s for user %s (%d bytes, slides=%s)",
            recording_id,
            user_id,
            file_size,
            powerpoint_relative is not None,
        )
        recording = self._repository.get_recording(recording_id)
        if recording is None:
            raise NotFoundError(f"Recording not found with ID: {recording_id}")
        return recording

    def list_metadata(
        self,
        user_id: str,
        *,
        page_size: Optional[int] = None,
        last_id: Optional[str] = None,
    ) -> List[RecordingRecord]:
        effective = page_size if page_size is not None and page_size > 0 else DEFAULT_PAGE_SIZE
        return self._repository.iter_recordings_for_user(
            user_id, page_size=effective, last_id=last_id or None
        )

    def get_owned(self, user_id: str, recording_id: str, *, action: str = "access") -> RecordingRecord:
        recording = self._repository.get_recording(recording_id)
        if recording is None:
            raise NotFoundError(f"Recording not found with ID: {recording_id}")
        if recording.user_id != user_id:
            LOGGER.warning(
                "User %s attempted to %s recording %s owned by %s",
                user_id,
                action,
                recording_id,
                recording.user_id,
            )
            raise PermissionDeniedError(f"You do not have permission to {action} this recording.")
        return recording

    def update_details(
        self,
        user_id: str,
        recording_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RecordingRecord:
        self.get_owned(user_id, recording_id, action="update")
        self._repository.update_recording_details(recording_id, title=title, description=description)
        updated = self._repository.get_recording(recording_id)
        if updated is None:
            raise NotFoundError(f"Recording not found with ID: {recording_id}")
        return updated

    def delete(self, user_id: str, recording_id: str) -> None:
        """Delete the recording, its files, notes, favourites and summary."""

        self.get_owned(user_id, recording_id, action="delete")
        self._repository.remove_recording(recording_id)
        target_dir = self.recording_dir(user_id, recording_id)
        if target_dir.exists():
            shutil.rmtree(target_dir, ignore_errors=True)
        LOGGER.info("Deleted recording %s for user %s", recording_id, user_id)

    def get_summary(self, user_id: str, recording_id: str) -> SummaryRecord:
        self.get_owned(user_id, recording_id)
        summary = self._repository.get_summary_for_recording(recording_id)
        if summary is None:
            raise NotFoundError(f"Summary not yet available for recording {recording_id}")
        return summary

    def update_summary(
        self,
        user_id: str,
        summary_id: str,
        *,
        formatted_summary_text: Optional[str] = None,
        key_points: Optional[Sequence[str]] = None,
        topics: Optional[Sequence[str]] = None,
        glossary: Optional[Sequence[Dict[str, str]]] = None,
    ) -> SummaryRecord:
        summary = self._repository.get_summary(summary_id)
        if summary is None:
            raise NotFoundError(f"Summary not found with ID: {summary_id}")
        self.get_owned(user_id, summary.recording_id, action="update")
        self._repository.update_summary(
            summary_id,
            formatted_summary_text=formatted_summary_text,
            key_points=key_points,
            topics=topics,
            glossary=glossary,
        )
        updated = self._repository.get_summary(summary_id)
        if updated is None:
            raise NotFoundError(f"Summary not found with ID: {summary_id}")
        return updated

    def _require_existing(self, recording_id: str) -> RecordingRecord:
        recording = self._repository.get_recording(recording_id)
        if recording is None:
            raise NotFoundError(f"Recording not found with ID: {recording_id}")
        return recording

    def add_favorite(self, user_id: str, recording_id: str) -> RecordingRecord:
        self._require_existing(recording_id)
        self._repository.add_favorite(user_id, recording_id)
        return self._require_existing(recording_id)

    def remove_favorite(self, user_id: str, recording_id: str) -> RecordingRecord:
        self._require_existing(recording_id)
        self._repository.remove_favorite(user_id, recording_id)
        return self._require_existing(recording_id)


__all__ = [
    "ALLOWED_AUDIO_TYPES",
    "ALLOWED_POWERPOINT_TYPES",
    "DEFAULT_PAGE_SIZE",
    "RecordingService",
    "UploadedFile",
    "format_duration",
    "probe_audio_duration",
]
