"""Audio transcription backed by :mod:`faster_whisper`."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol


LOGGER = logging.getLogger(__name__)


@dataclass
class TranscriptSegment:
    """Represents a single transcript segment."""

    start: float
    end: float
    text: str


@dataclass
class TranscriptResult:
    """Represents the output of the transcription stage."""

    text_path: Path
    segments_path: Optional[Path]

    def read_text(self) -> str:
        return self.text_path.read_text(encoding="utf-8")


class TranscriptionEngine(Protocol):
    """Protocol describing a transcription backend."""

    def transcribe(self, audio_path: Path, output_dir: Path) -> TranscriptResult:
        """Generate a transcript for *audio_path* into *output_dir*."""


class FasterWhisperTranscription:
    """Transcription engine backed by :mod:`faster_whisper`.

    The Whisper model is loaded on first use so the service can start without
    the optional dependency installed.
    """

    def __init__(
        self,
        model_size: str = "base",
        *,
        download_root: Optional[Path] = None,
        compute_type: str = "int8",
        beam_size: int = 5,
    ) -> None:
        self._model_size = model_size
        self._download_root = download_root
        self._compute_type = compute_type
        self._beam_size = beam_size
        self._model: Any = None
        self._lock = threading.Lock()

    def _load_model(self) -> Any:
        with self._lock:
            if self._model is not None:
                return self._model
            try:
                from faster_whisper import WhisperModel
            except ImportError as exc:  # pragma: no cover - exercised in runtime, not tests
                raise RuntimeError("faster-whisper is not installed") from exc

            download_directory = str(self._download_root) if self._download_root is not None else None
            self._model = WhisperModel(
                self._model_size,
                device="cpu",
                compute_type=self._compute_type,
                download_root=download_directory,
            )
            LOGGER.debug(
                "Loaded faster_whisper model '%s' (download_root=%s)",
                self._model_size,
                download_directory,
            )
            return self._model

    def transcribe(self, audio_path: Path, output_dir: Path) -> TranscriptResult:
        output_dir.mkdir(parents=True, exist_ok=True)
        model = self._load_model()
        LOGGER.debug("Invoking faster_whisper model for %s", audio_path)
        segments, info = model.transcribe(str(audio_path), beam_size=self._beam_size)
        LOGGER.debug(
            "Model reported total duration %.2fs",
            float(getattr(info, "duration", 0.0) or 0.0),
        )
        collected = self._collect_segments(segments)
        return write_transcript(collected, output_dir)

    @staticmethod
    def _collect_segments(segments: Iterable[Any]) -> List[TranscriptSegment]:
        collected: List[TranscriptSegment] = []
        for segment in segments:
            collected.append(
                TranscriptSegment(
                    start=float(getattr(segment, "start", 0.0) or 0.0),
                    end=float(getattr(segment, "end", 0.0) or 0.0),
                    text=str(getattr(segment, "text", "")),
                )
            )
        return collected


def write_transcript(segments: Iterable[TranscriptSegment], output_dir: Path) -> TranscriptResult:
    """Write ``transcript.txt`` and ``segments.json`` for *segments*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    collected = list(segments)
    lines = [segment.text.strip() for segment in collected if segment.text.strip()]
    transcript_file = output_dir / "transcript.txt"
    transcript_file.write_text("\n".join(lines), encoding="utf-8")
    segments_file = output_dir / "segments.json"
    segments_file.write_text(
        json.dumps([segment.__dict__ for segment in collected], indent=2), encoding="utf-8"
    )
    LOGGER.debug("Transcript with %d segments saved to %s", len(collected), transcript_file)
    return TranscriptResult(text_path=transcript_file, segments_path=segments_file)


__all__ = [
    "FasterWhisperTranscription",
    "TranscriptResult",
    "TranscriptSegment",
    "TranscriptionEngine",
    "write_transcript",
]
