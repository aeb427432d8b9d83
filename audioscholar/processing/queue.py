"""Background queue that feeds uploaded recordings to the pipeline one at a time."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Literal, Optional

from ..services.events import emit_queue_event


LOGGER = logging.getLogger(__name__)

# Statuses a recording only holds while the pipeline is working on it. Finding
# one at startup means the previous process stopped mid-run.
RESUMABLE_STATUSES = frozenset(
    {"PROCESSING_QUEUED", "TRANSCRIBING", "TRANSCRIPTION_COMPLETE", "SUMMARIZING"}
)

QueueReason = Literal["upload", "resume"]
EntryStatus = Literal["pending", "running", "succeeded", "failed"]


@dataclass
class QueuedRecording:
    """One pass of a recording through the pipeline."""

    id: str
    recording_id: str
    reason: QueueReason = "upload"
    status: EntryStatus = "pending"
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    outcome: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status in ("succeeded", "failed")

    def mark_running(self) -> None:
        self.status = "running"
        self.started_at = time.time()

    def mark_finished(self, outcome: Optional[str]) -> None:
        self.status = "succeeded"
        self.outcome = outcome
        self.completed_at = time.time()

    def mark_failed(self, message: str) -> None:
        self.status = "failed"
        self.error = message
        self.completed_at = time.time()


RecordingHandler = Callable[[QueuedRecording], Awaitable[Optional[str]]]


class RecordingQueue:
    """Run queued recordings in arrival order on a single asyncio worker.

    A recording is queued at most once at a time: enqueueing one that is
    already pending or running returns the existing entry. The handler returns
    the recording status the pipeline stored, which is kept as ``outcome``.
    """

    def __init__(self, handler: RecordingHandler, *, history_limit: int = 200) -> None:
        self._handler = handler
        self._history_limit = history_limit
        self._pending: Deque[QueuedRecording] = deque()
        self._history: Deque[QueuedRecording] = deque()
        self._active: Dict[str, QueuedRecording] = {}
        # Events are bound to the loop that starts the worker.
        self._wakeup: Optional[asyncio.Event] = None
        self._idle: Optional[asyncio.Event] = None
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        if self._pending:
            self._wakeup.set()
        else:
            self._idle.set()
        self._worker = asyncio.get_running_loop().create_task(
            self._work(), name="recording-queue-worker"
        )

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    async def enqueue(self, recording_id: str, *, reason: QueueReason = "upload") -> QueuedRecording:
        existing = self._active.get(recording_id)
        if existing is not None:
            emit_queue_event("already queued", recording_id, task_id=existing.id, state=existing.status)
            return existing

        entry = QueuedRecording(id=uuid.uuid4().hex, recording_id=recording_id, reason=reason)
        self._pending.append(entry)
        self._history.append(entry)
        self._active[recording_id] = entry
        self._prune_history()
        emit_queue_event("queued", recording_id, task_id=entry.id, reason=reason)

        await self.start()
        assert self._wakeup is not None and self._idle is not None
        self._idle.clear()
        self._wakeup.set()
        return entry

    async def resume(self, recordings: Iterable[object]) -> List[QueuedRecording]:
        """Queue the recordings a previous run left part-way through the pipeline.

        *recordings* holds objects with ``id`` and ``status`` attributes; only
        those in :data:`RESUMABLE_STATUSES` are queued.
        """

        resumed = [
            await self.enqueue(getattr(record, "id"), reason="resume")
            for record in recordings
            if getattr(record, "status", None) in RESUMABLE_STATUSES
        ]
        if resumed:
            LOGGER.info("Resuming %d recording(s) interrupted by the last shutdown", len(resumed))
        return resumed

    def entries(self) -> List[QueuedRecording]:
        return list(self._history)

    def counts(self) -> Dict[str, int]:
        tally = Counter(entry.status for entry in self._history)
        return {status: tally.get(status, 0) for status in ("pending", "running", "succeeded", "failed")}

    async def join(self) -> None:
        """Wait until nothing is pending or running."""

        if self._idle is not None:
            await self._idle.wait()

    async def _work(self) -> None:
        assert self._wakeup is not None and self._idle is not None
        while True:
            if not self._pending:
                self._idle.set()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            entry = self._pending.popleft()
            entry.mark_running()
            try:
                outcome = await self._handler(entry)
            except Exception as error:  # noqa: BLE001 - kept on the entry
                entry.mark_failed(str(error) or type(error).__name__)
                LOGGER.exception("Queued processing failed for recording %s", entry.recording_id)
            else:
                entry.mark_finished(outcome)
            finally:
                if self._active.get(entry.recording_id) is entry:
                    del self._active[entry.recording_id]
            emit_queue_event(
                "finished", entry.recording_id, task_id=entry.id, state=entry.status, outcome=entry.outcome
            )

    def _prune_history(self) -> None:
        while len(self._history) > self._history_limit and self._history[0].finished:
            self._history.popleft()


__all__ = ["RESUMABLE_STATUSES", "QueuedRecording", "RecordingQueue"]
