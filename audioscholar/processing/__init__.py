"""Processing backends for uploaded recordings."""

from .pipeline import RecordingProcessor
from .queue import RESUMABLE_STATUSES, QueuedRecording, RecordingQueue
from .transcription import (
    FasterWhisperTranscription,
    TranscriptResult,
    TranscriptSegment,
    TranscriptionEngine,
    write_transcript,
)

__all__ = [
    "FasterWhisperTranscription",
    "QueuedRecording",
    "RecordingProcessor",
    "RecordingQueue",
    "RESUMABLE_STATUSES",
    "TranscriptResult",
    "TranscriptSegment",
    "TranscriptionEngine",
    "write_transcript",
]
