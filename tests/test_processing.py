from __future__ import annotations

import asyncio
import io
import sqlite3
import wave
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

import pytest

from audioscholar.config import AppConfig
from audioscholar.errors import NotFoundError, PermissionDeniedError, UnsupportedMediaTypeError, ValidationError
from audioscholar.processing import (
    QueuedRecording,
    RecordingProcessor,
    RecordingQueue,
    TranscriptResult,
    TranscriptSegment,
    write_transcript,
)
from audioscholar.services.recordings import RecordingService, UploadedFile, format_duration
from audioscholar.services.storage import AudioScholarRepository
from audioscholar.services.summarization import SummaryResult


def _wav_bytes(seconds: float = 1.0, rate: int = 8000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(rate)
        handle.writeframes(b"\x00\x00" * int(seconds * rate))
    return buffer.getvalue()


class _FakeTranscription:
    def __init__(self, lines: List[str]) -> None:
        self.lines = lines
        self.calls = 0

    def transcribe(self, audio_path: Path, output_dir: Path) -> TranscriptResult:
        self.calls += 1
        assert audio_path.exists()
        segments = [
            TranscriptSegment(start=float(index), end=float(index + 1), text=line)
            for index, line in enumerate(self.lines)
        ]
        return write_transcript(segments, output_dir)


class _BrokenTranscription:
    def transcribe(self, audio_path: Path, output_dir: Path) -> TranscriptResult:
        raise RuntimeError("model crashed")


class _FakeSummarizer:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0

    def summarize(self, transcript: str, *, title=None) -> SummaryResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("quota exceeded")
        return SummaryResult(
            formatted_summary_text=f"Summary of {title}: {transcript[:10]}",
            key_points=["Point"],
            topics=["Topic"],
            glossary=[{"term": "Term", "definition": "Meaning"}],
        )


@pytest.fixture()
def service(temp_config: AppConfig, repository: AudioScholarRepository) -> RecordingService:
    repository.add_user("owner", "owner@example.com")
    repository.add_user("intruder", "intruder@example.com")
    return RecordingService(repository, temp_config)


def _upload(service: RecordingService, **kwargs):
    audio = UploadedFile("week 1/lecture.wav", "audio/wav", io.BytesIO(_wav_bytes()))
    return service.create_upload("owner", audio, title=kwargs.pop("title", "Week 1"), **kwargs)


def test_format_duration() -> None:
    assert format_duration(0) == "00:00:00"
    assert format_duration(3723.4) == "01:02:03"


def test_create_upload_stores_files(service: RecordingService, temp_config: AppConfig) -> None:
    slides = UploadedFile(
        "deck.pptx",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        io.BytesIO(b"PK slides"),
    )

    recording = _upload(service, powerpoint=slides, description="  ")

    assert recording.status == "UPLOADED"
    assert recording.title == "Week 1"
    assert recording.description is None
    assert recording.duration == "00:00:01"
    assert recording.file_size > 0
    assert recording.audio_path.startswith(f"uploads/owner/{recording.id}/")
    assert (temp_config.storage_root / recording.audio_path).exists()
    assert (temp_config.storage_root / recording.powerpoint_path).read_bytes() == b"PK slides"


def test_create_upload_rejects_bad_files(service: RecordingService, temp_config: AppConfig) -> None:
    with pytest.raises(ValidationError):
        service.create_upload("owner", UploadedFile("a.mp3", "audio/mpeg", io.BytesIO(b"")))
    with pytest.raises(UnsupportedMediaTypeError):
        service.create_upload("owner", UploadedFile("a.txt", "text/plain", io.BytesIO(b"hi")))
    with pytest.raises(UnsupportedMediaTypeError):
        service.create_upload(
            "owner",
            UploadedFile("a.mp3", "audio/mpeg", io.BytesIO(b"ID3")),
            powerpoint=UploadedFile("deck.pdf", "application/pdf", io.BytesIO(b"%PDF")),
        )
    owner_dir = temp_config.uploads_root / "owner"
    assert not owner_dir.exists() or not any(owner_dir.iterdir())


def test_ownership_is_enforced(service: RecordingService) -> None:
    recording = _upload(service)

    with pytest.raises(PermissionDeniedError):
        service.get_owned("intruder", recording.id)
    with pytest.raises(PermissionDeniedError):
        service.delete("intruder", recording.id)
    with pytest.raises(NotFoundError):
        service.get_owned("owner", "missing")
    with pytest.raises(NotFoundError):
        service.get_summary("owner", recording.id)

    service.delete("owner", recording.id)
    assert not service.recording_dir("owner", recording.id).exists()


def test_processor_completes_recording(service: RecordingService, repository: AudioScholarRepository, temp_config: AppConfig) -> None:
    recording = _upload(service)
    summarizer = _FakeSummarizer()
    processor = RecordingProcessor(
        repository,
        service,
        transcription=_FakeTranscription(["Hello class", "Today: Newton"]),
        summarizer=summarizer,
    )

    processor.mark_queued(recording.id)
    assert repository.get_recording(recording.id).status == "PROCESSING_QUEUED"

    assert processor.process(recording.id) == "COMPLETED"

    stored = repository.get_recording(recording.id)
    assert stored.status == "COMPLETED"
    assert stored.transcript_path.endswith("transcript/transcript.txt")
    assert (temp_config.storage_root / stored.transcript_path).read_text(encoding="utf-8") == (
        "Hello class\nToday: Newton"
    )
    summary = service.get_summary("owner", recording.id)
    assert summary.formatted_summary_text.startswith("Summary of Week 1")
    assert summary.glossary == [{"term": "Term", "definition": "Meaning"}]


def test_processor_retries_summaries(service: RecordingService, repository: AudioScholarRepository) -> None:
    recording = _upload(service)
    sleeps: List[float] = []
    summarizer = _FakeSummarizer(failures=1)
    processor = RecordingProcessor(
        repository,
        service,
        transcription=_FakeTranscription(["words"]),
        summarizer=summarizer,
        summary_attempts=3,
        sleep=sleeps.append,
    )

    assert processor.process(recording.id) == "COMPLETED"
    assert summarizer.calls == 2
    assert sleeps == [2.0]


def test_processor_marks_summary_failure(service: RecordingService, repository: AudioScholarRepository) -> None:
    recording = _upload(service)
    processor = RecordingProcessor(
        repository,
        service,
        transcription=_FakeTranscription(["words"]),
        summarizer=_FakeSummarizer(failures=5),
        summary_attempts=2,
        sleep=lambda seconds: None,
    )

    assert processor.process(recording.id) == "SUMMARY_FAILED"
    stored = repository.get_recording(recording.id)
    assert stored.failure_reason == "Summarization failed: quota exceeded"
    assert stored.transcript_path is not None


@pytest.mark.parametrize(
    ("transcription", "summarizer", "expected"),
    [
        (_BrokenTranscription(), _FakeSummarizer(), "FAILED"),
        (_FakeTranscription(["   "]), _FakeSummarizer(), "PROCESSING_HALTED_NO_SPEECH"),
        (_FakeTranscription(["words"]), None, "COMPLETED_WITH_WARNINGS"),
        (None, _FakeSummarizer(), "FAILED"),
    ],
)
def test_processor_terminal_statuses(
    service: RecordingService,
    repository: AudioScholarRepository,
    transcription,
    summarizer,
    expected,
) -> None:
    recording = _upload(service)
    processor = RecordingProcessor(
        repository, service, transcription=transcription, summarizer=summarizer
    )

    assert processor.process(recording.id) == expected
    assert repository.get_recording(recording.id).status == expected


def test_processor_fails_when_audio_is_missing(
    service: RecordingService, repository: AudioScholarRepository, temp_config: AppConfig
) -> None:
    recording = _upload(service)
    (temp_config.storage_root / recording.audio_path).unlink()
    processor = RecordingProcessor(
        repository, service, transcription=_FakeTranscription(["x"]), summarizer=None
    )

    assert processor.process(recording.id) == "FAILED"
    assert repository.get_recording(recording.id).failure_reason == "Audio file is missing"


class _LockedSummaryRepository(AudioScholarRepository):
    def upsert_summary(self, *args, **kwargs):
        raise sqlite3.OperationalError("database is locked")


def test_processor_storage_error_after_summary_is_terminal(
    temp_config: AppConfig, repository: AudioScholarRepository
) -> None:
    repository.add_user("owner", "owner@example.com")
    locked = _LockedSummaryRepository(temp_config)
    service = RecordingService(locked, temp_config)
    recording = _upload(service)
    processor = RecordingProcessor(
        locked,
        service,
        transcription=_FakeTranscription(["words"]),
        summarizer=_FakeSummarizer(),
    )

    assert processor.process(recording.id) == "SUMMARY_FAILED"
    stored = locked.get_recording(recording.id)
    assert stored.status == "SUMMARY_FAILED"
    assert stored.failure_reason == "Summarization failed: database is locked"


def test_processor_storage_error_while_transcribing_is_terminal(
    service: RecordingService, repository: AudioScholarRepository, monkeypatch
) -> None:
    recording = _upload(service)
    processor = RecordingProcessor(
        repository, service, transcription=_FakeTranscription(["words"]), summarizer=None
    )

    def broken_relative_path(path):
        raise ValueError("transcript escaped the storage root")

    monkeypatch.setattr(service, "relative_path", broken_relative_path)

    assert processor.process(recording.id) == "FAILED"
    stored = repository.get_recording(recording.id)
    assert stored.status == "FAILED"
    assert stored.failure_reason == "Processing failed: transcript escaped the storage root"


def test_recording_queue_runs_in_order_and_keeps_outcomes() -> None:
    processed: List[str] = []

    async def handler(entry: QueuedRecording) -> Optional[str]:
        if entry.recording_id == "bad":
            raise RuntimeError("broken recording")
        processed.append(entry.recording_id)
        return "COMPLETED"

    async def scenario() -> List[QueuedRecording]:
        queue = RecordingQueue(handler)
        await queue.start()
        try:
            for recording_id in ("r1", "bad", "r2"):
                await queue.enqueue(recording_id)
            await asyncio.wait_for(queue.join(), timeout=5)
            assert queue.counts() == {"pending": 0, "running": 0, "succeeded": 2, "failed": 1}
            return queue.entries()
        finally:
            await queue.stop()

    entries = asyncio.run(scenario())

    assert processed == ["r1", "r2"]
    assert [entry.status for entry in entries] == ["succeeded", "failed", "succeeded"]
    assert entries[0].outcome == "COMPLETED"
    assert entries[1].error == "broken recording"


def test_recording_queue_does_not_queue_a_recording_twice() -> None:
    calls: List[str] = []

    async def handler(entry: QueuedRecording) -> Optional[str]:
        calls.append(entry.recording_id)
        return "COMPLETED"

    async def scenario():
        queue = RecordingQueue(handler)
        first = await queue.enqueue("r1")
        second = await queue.enqueue("r1")
        await asyncio.wait_for(queue.join(), timeout=5)
        third = await queue.enqueue("r1")
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first is second
    assert third is not first
    assert calls == ["r1", "r1"]


def test_recording_queue_resumes_only_interrupted_recordings() -> None:
    calls: List[str] = []

    async def handler(entry: QueuedRecording) -> Optional[str]:
        calls.append(entry.recording_id)
        return "COMPLETED"

    records = [
        SimpleNamespace(id="queued", status="PROCESSING_QUEUED"),
        SimpleNamespace(id="summarizing", status="SUMMARIZING"),
        SimpleNamespace(id="done", status="COMPLETED"),
        SimpleNamespace(id="uploaded", status="UPLOADED"),
    ]

    async def scenario() -> List[QueuedRecording]:
        queue = RecordingQueue(handler)
        await queue.start()
        resumed = await queue.resume(records)
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()
        return resumed

    resumed = asyncio.run(scenario())

    assert [entry.recording_id for entry in resumed] == ["queued", "summarizing"]
    assert all(entry.reason == "resume" for entry in resumed)
    assert calls == ["queued", "summarizing"]


def test_update_details_reports_recording_deleted_meanwhile(
    service: RecordingService, repository: AudioScholarRepository, monkeypatch
) -> None:
    recording = _upload(service)

    def delete_instead(recording_id, **changes):
        repository.remove_recording(recording_id)

    monkeypatch.setattr(repository, "update_recording_details", delete_instead)

    with pytest.raises(NotFoundError):
        service.update_details("owner", recording.id, title="Renamed")
