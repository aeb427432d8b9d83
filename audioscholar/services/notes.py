"""Per-user notes attached to lecture recordings."""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Sequence

from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from .storage import AudioScholarRepository, NoteRecord, utcnow_iso


LOGGER = logging.getLogger(__name__)


def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


class UserNoteService:
    """Create, read, update and delete notes while enforcing ownership."""

    def __init__(self, repository: AudioScholarRepository) -> None:
        self._repository = repository

    def create_note(
        self,
        user_id: str,
        recording_id: str,
        content: str = "",
        tags: Optional[Sequence[str]] = None,
    ) -> NoteRecord:
        if not _has_text(user_id):
            raise ValidationError("User ID cannot be null or empty.")
        if not _has_text(recording_id):
            raise ValidationError("Recording ID cannot be null or empty.")

        recording = self._repository.get_recording(recording_id)
        if recording is None:
            raise ValidationError(f"Recording not found with ID: {recording_id}")
        if recording.user_id != user_id:
            LOGGER.warning(
                "User %s attempted to create note for recording %s owned by %s",
                user_id,
                recording_id,
                recording.user_id,
            )
            raise PermissionDeniedError("You do not have permission to add notes to this recording.")

        note_id = str(uuid.uuid4())
        self._repository.add_note(note_id, user_id, recording_id, content or "", list(tags or []))
        LOGGER.info("Saved note %s for user %s and recording %s", note_id, user_id, recording_id)
        note = self._repository.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found with ID: {note_id}")
        return note

    def get_notes_for_recording(self, user_id: str, recording_id: str) -> List[NoteRecord]:
        if not _has_text(user_id) or not _has_text(recording_id):
            raise ValidationError("User ID and Recording ID must be provided.")
        LOGGER.debug("Fetching notes for recording %s and user %s", recording_id, user_id)
        return [
            note
            for note in self._repository.iter_notes_for_recording(recording_id)
            if note.user_id == user_id
        ]

    def get_note(self, user_id: str, note_id: str) -> NoteRecord:
        if not _has_text(user_id) or not _has_text(note_id):
            raise ValidationError("User ID and Note ID must be provided.")
        note = self._repository.get_note(note_id)
        if note is None:
            raise NotFoundError(f"Note not found with ID: {note_id}")
        if note.user_id != user_id:
            LOGGER.warning(
                "User %s attempted to access note %s owned by %s", user_id, note_id, note.user_id
            )
            raise PermissionDeniedError("You do not have permission to access this note.")
        return note

    def update_note(
        self,
        user_id: str,
        note_id: str,
        *,
        content: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> NoteRecord:
        note = self.get_note(user_id, note_id)
        if content is None and tags is None:
            return note
        self._repository.update_note(
            note_id,
            content=content,
            tags=list(tags) if tags is not None else None,
            updated_at=utcnow_iso(),
        )
        LOGGER.info("Updated note %s for user %s", note_id, user_id)
        updated = self._repository.get_note(note_id)
        if updated is None:
            raise NotFoundError(f"Note not found with ID: {note_id}")
        return updated

    def delete_note(self, user_id: str, note_id: str) -> None:
        note = self.get_note(user_id, note_id)
        LOGGER.info("Deleting note %s for user %s", note.id, user_id)
        self._repository.remove_note(note.id)


__all__ = ["UserNoteService"]
