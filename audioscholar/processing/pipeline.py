"""Transcription and summarization pipeline for uploaded recordings."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Dict, Optional

from ..services.events import emit_recording_event
from ..services.key_rotation import execute_with_retry
from ..services.recordings import RecordingService
from ..services.storage import AudioScholarRepository
from ..services.summarization import Summarizer
from .transcription import TranscriptionEngine


LOGGER = logging.getLogger(__name__)


class RecordingProcessor:
    """Drive one recording from ``PROCESSING_QUEUED`` to a terminal status."""

    def __init__(
        self,
        repository: AudioScholarRepository,
        recordings: RecordingService,
        *,
        transcription: Optional[TranscriptionEngine],
        summarizer: Optional[Summarizer],
        summary_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repository = repository
        self._recordings = recordings
        self._transcription = transcription
        self._summarizer = summarizer
        self._summary_attempts = max(1, summary_attempts)
        self._sleep = sleep
        self._failure_status: Dict[str, str] = {}

    def mark_queued(self, recording_id: str) -> None:
        self._repository.update_recording_status(recording_id, "PROCESSING_QUEUED")

    def _set_status(self, recording_id: str, status: str, **kwargs) -> None:
        self._failure_status[recording_id] = (
            "SUMMARY_FAILED" if status == "SUMMARIZING" else "FAILED"
        )
        self._repository.update_recording_status(recording_id, status, **kwargs)
        emit_recording_event(recording_id, status, failure_reason=kwargs.get("failure_reason"))

    def process(self, recording_id: str) -> str:
        """Run the pipeline and return the terminal status that was stored.

        Errors raised outside the transcription and summarization calls still
        end in ``FAILED`` or, once summarizing has started, ``SUMMARY_FAILED``.
        """

        try:
            return self._run(recording_id)
        except Exception as error:
            status = self._failure_status.get(recording_id, "FAILED")
            LOGGER.exception("Processing of recording %s stopped with %s", recording_id, status)
            prefix = "Summarization failed" if status == "SUMMARY_FAILED" else "Processing failed"
            self._set_status(recording_id, status, failure_reason=f"{prefix}: {error}")
            return status
        finally:
            self._failure_status.pop(recording_id, None)

    def _run(self, recording_id: str) -> str:
        recording = self._repository.get_recording(recording_id)
        if recording is None:
            LOGGER.warning("Recording %s disappeared before processing started", recording_id)
            return "FAILED"

        audio_path = self._recordings.resolve_path(recording.audio_path)
        if audio_path is None or not audio_path.exists():
            self._set_status(recording_id, "FAILED", failure_reason="Audio file is missing")
            return "FAILED"
        if self._transcription is None:
            self._set_status(
                recording_id, "FAILED", failure_reason="No transcription engine is configured"
            )
            return "FAILED"

        self._set_status(recording_id, "TRANSCRIBING")
        output_dir = self._recordings.recording_dir(recording.user_id, recording_id) / "transcript"
        try:
            result = self._transcription.transcribe(audio_path, output_dir)
            transcript = result.read_text()
        except Exception as error:
            LOGGER.exception("Transcription failed for recording %s", recording_id)
            self._set_status(recording_id, "FAILED", failure_reason=f"Transcription failed: {error}")
            return "FAILED"

        transcript_relative = self._recordings.relative_path(result.text_path.resolve())
        if not transcript.strip():
            self._set_status(
                recording_id,
                "PROCESSING_HALTED_NO_SPEECH",
                failure_reason="No speech was detected in the recording",
                transcript_path=transcript_relative,
            )
            return "PROCESSING_HALTED_NO_SPEECH"

        self._set_status(recording_id, "TRANSCRIPTION_COMPLETE", transcript_path=transcript_relative)
        if self._summarizer is None:
            self._set_status(
                recording_id,
                "COMPLETED_WITH_WARNINGS",
                failure_reason="Summarization is not configured",
            )
            return "COMPLETED_WITH_WARNINGS"

        self._set_status(recording_id, "SUMMARIZING")
        summarizer = self._summarizer
        try:
            summary = execute_with_retry(
                recording_id,
                "summarize recording",
                lambda: summarizer.summarize(transcript, title=recording.title),
                sleep=self._sleep,
                max_attempts=self._summary_attempts,
            )
        except Exception as error:
            LOGGER.exception("Summarization failed for recording %s", recording_id)
            self._set_status(
                recording_id, "SUMMARY_FAILED", failure_reason=f"Summarization failed: {error}"
            )
            return "SUMMARY_FAILED"

        self._repository.upsert_summary(
            str(uuid.uuid4()),
            recording_id,
            formatted_summary_text=summary.formatted_summary_text,
            key_points=summary.key_points,
            topics=summary.topics,
            glossary=summary.glossary,
        )
        self._set_status(recording_id, "COMPLETED")
        LOGGER.info("Recording %s processed successfully", recording_id)
        return "COMPLETED"


__all__ = ["RecordingProcessor"]
