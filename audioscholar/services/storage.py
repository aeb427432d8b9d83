"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import AppConfig


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: Optional[str]
    first_name: str
    last_name: str
    display_name: str
    profile_image_url: Optional[str]
    provider: str
    roles: List[str]
    disabled: bool
    email_verified: bool
    created_at: str

    @property
    def is_admin(self) -> bool:
        return "ROLE_ADMIN" in self.roles


@dataclass
class RecordingRecord:
    id: str
    user_id: str
    title: Optional[str]
    description: Optional[str]
    file_name: str
    content_type: Optional[str]
    file_size: int
    duration: Optional[str]
    audio_path: str
    powerpoint_path: Optional[str]
    transcript_path: Optional[str]
    status: str
    failure_reason: Optional[str]
    favorite_count: int
    upload_timestamp: str
    created_at: str


@dataclass
class SummaryRecord:
    id: str
    recording_id: str
    formatted_summary_text: str
    key_points: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    glossary: List[Dict[str, str]] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class NoteRecord:
    id: str
    user_id: str
    recording_id: str
    content: str
    tags: List[str]
    created_at: str
    updated_at: str


_MISSING = object()


LOGGER = logging.getLogger(__name__)


def _load_json_list(value: Optional[str]) -> List[Any]:
    if not value:
        return []
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        LOGGER.warning("Discarding malformed JSON list column: %r", value[:80])
        return []
    return list(loaded) if isinstance(loaded, list) else []


def _string_list(values: Iterable[Any]) -> List[str]:
    return [str(item) for item in values if item is not None]


class AudioScholarRepository:
    """Repository exposing CRUD helpers for users, recordings, summaries and notes."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:  # pragma: no cover - instrumentation only
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                "DB_QUERY",
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | Tuple[Any, ...] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...]
        if parameters is None:
            params = ()
        elif isinstance(parameters, tuple):
            params = parameters
        else:
            params = tuple(parameters)
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        with self._track_db_event("connect", database=str(self._db_path)) as event:
            connection = sqlite3.connect(self._db_path)
            event.setdefault("sqlite_version", sqlite3.sqlite_version)
        connection.row_factory = sqlite3.Row
        self._execute(connection, "PRAGMA foreign_keys = ON", action="pragma_foreign_keys")
        return connection

    # ---------------------------------------------------------------------
    # Row mapping
    # ---------------------------------------------------------------------
    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            display_name=row["display_name"] or "",
            profile_image_url=row["profile_image_url"],
            provider=row["provider"],
            roles=_string_list(_load_json_list(row["roles"])),
            disabled=bool(row["disabled"]),
            email_verified=bool(row["email_verified"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_recording(row: sqlite3.Row) -> RecordingRecord:
        return RecordingRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            file_name=row["file_name"],
            content_type=row["content_type"],
            file_size=int(row["file_size"] or 0),
            duration=row["duration"],
            audio_path=row["audio_path"],
            powerpoint_path=row["powerpoint_path"],
            transcript_path=row["transcript_path"],
            status=row["status"],
            failure_reason=row["failure_reason"],
            favorite_count=int(row["favorite_count"] or 0),
            upload_timestamp=row["upload_timestamp"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> SummaryRecord:
        glossary = [
            {str(key): str(value) for key, value in item.items()}
            for item in _load_json_list(row["glossary"])
            if isinstance(item, dict)
        ]
        return SummaryRecord(
            id=row["id"],
            recording_id=row["recording_id"],
            formatted_summary_text=row["formatted_summary_text"] or "",
            key_points=_string_list(_load_json_list(row["key_points"])),
            topics=_string_list(_load_json_list(row["topics"])),
            glossary=glossary,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> NoteRecord:
        return NoteRecord(
            id=row["id"],
            user_id=row["user_id"],
            recording_id=row["recording_id"],
            content=row["content"] or "",
            tags=_string_list(_load_json_list(row["tags"])),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ---------------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------------
    def add_user(
        self,
        user_id: str,
        email: str,
        *,
        password_hash: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        display_name: str = "",
        profile_image_url: Optional[str] = None,
        provider: str = "password",
        roles: Optional[Sequence[str]] = None,
        email_verified: bool = False,
        created_at: Optional[str] = None,
    ) -> str:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                """
                INSERT INTO users (
                    id, email, password_hash, first_name, last_name, display_name,
                    profile_image_url, provider, roles, email_verified, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    email,
                    password_hash,
                    first_name,
                    last_name,
                    display_name,
                    profile_image_url,
                    provider,
                    json.dumps(list(roles) if roles is not None else ["ROLE_USER"]),
                    int(email_verified),
                    created_at or utcnow_iso(),
                ),
                action="users.insert",
                table="users",
            )
            connection.commit()
        LOGGER.debug("Inserted user %s (%s)", user_id, provider)
        return user_id

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM users WHERE id = ?",
                (user_id,),
                action="users.get",
                table="users",
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM users WHERE lower(email) = lower(?)",
                (email,),
                action="users.find_by_email",
                table="users",
            ).fetchone()
        return self._row_to_user(row) if row else None

    def iter_users(self, limit: int = 20, start_after: Optional[str] = None) -> List[UserRecord]:
        """Return up to *limit* users ordered by insertion, after *start_after*.

        An unknown *start_after* id yields an empty page.
        """

        query = "SELECT * FROM users"
        params: List[Any] = []
        if start_after:
            query += (
                " WHERE rowid > COALESCE("
                "(SELECT rowid FROM users WHERE id = ?), (SELECT MAX(rowid) FROM users), 0)"
            )
            params.append(start_after)
        query += " ORDER BY rowid LIMIT ?"
        params.append(int(limit))
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection, query, params, action="users.page", table="users"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def iter_all_users(self) -> List[UserRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM users ORDER BY rowid",
                action="users.all",
                table="users",
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def iter_users_since(self, since: str) -> List[UserRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM users WHERE created_at >= ? ORDER BY created_at",
                (since,),
                action="users.since",
                table="users",
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection, "SELECT COUNT(*) FROM users", action="users.count", table="users"
            ).fetchone()
        return int(row[0]) if row else 0

    def update_user_profile(
        self,
        user_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        display_name: Optional[str] = None,
        profile_image_url: Any = _MISSING,
    ) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        for column, value in (
            ("first_name", first_name),
            ("last_name", last_name),
            ("display_name", display_name),
        ):
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        if profile_image_url is not _MISSING:
            assignments.append("profile_image_url = ?")
            params.append(profile_image_url)
        if not assignments:
            return
        params.append(user_id)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
                params,
                action="users.update_profile",
                table="users",
            )
            connection.commit()

    def update_user_password(self, user_id: str, password_hash: str) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (password_hash, user_id),
                action="users.update_password",
                table="users",
            )
            connection.commit()

    def set_user_disabled(self, user_id: str, disabled: bool) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "UPDATE users SET disabled = ? WHERE id = ?",
                (int(disabled), user_id),
                action="users.set_disabled",
                table="users",
            )
            connection.commit()

    def set_user_roles(self, user_id: str, roles: Sequence[str]) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "UPDATE users SET roles = ? WHERE id = ?",
                (json.dumps(list(roles)), user_id),
                action="users.set_roles",
                table="users",
            )
            connection.commit()

    # ---------------------------------------------------------------------
    # Sessions
    # ---------------------------------------------------------------------
    def create_session(self, user_id: str, token: str) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "INSERT INTO sessions (token, user_id, created_at) VALUES (?, ?, ?)",
                (token, user_id, utcnow_iso()),
                action="sessions.insert",
                table="sessions",
            )
            connection.commit()

    def get_session_user(self, token: str) -> Optional[UserRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                """
                SELECT users.* FROM sessions
                JOIN users ON users.id = sessions.user_id
                WHERE sessions.token = ?
                """,
                (token,),
                action="sessions.lookup",
                table="sessions",
            ).fetchone()
        return self._row_to_user(row) if row else None

    def delete_session(self, token: str) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "DELETE FROM sessions WHERE token = ?",
                (token,),
                action="sessions.delete",
                table="sessions",
            )
            connection.commit()

    def delete_sessions_for_user(self, user_id: str, *, keep: Optional[str] = None) -> None:
        query = "DELETE FROM sessions WHERE user_id = ?"
        params: List[Any] = [user_id]
        if keep is not None:
            query += " AND token != ?"
            params.append(keep)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection, query, params, action="sessions.delete_for_user", table="sessions"
            )
            connection.commit()

    # ---------------------------------------------------------------------
    # Recordings
    # ---------------------------------------------------------------------
    def add_recording(
        self,
        recording_id: str,
        user_id: str,
        *,
        file_name: str,
        audio_path: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        content_type: Optional[str] = None,
        file_size: int = 0,
        duration: Optional[str] = None,
        powerpoint_path: Optional[str] = None,
        status: str = "UPLOADED",
        upload_timestamp: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> str:
        timestamp = created_at or utcnow_iso()
        with contextlib.closing(self._connect()) as connection:
            # The write lock is held from reading MAX(seq) until the insert commits.
            self._execute(connection, "BEGIN IMMEDIATE", action="recordings.lock", table="recordings")
            row = self._execute(
                connection,
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM recordings",
                action="recordings.next_seq",
                table="recordings",
            ).fetchone()
            sequence = int(row[0]) if row else 1
            self._execute(
                connection,
                """
                INSERT INTO recordings (
                    id, seq, user_id, title, description, file_name, content_type,
                    file_size, duration, audio_path, powerpoint_path, status,
                    upload_timestamp, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    recording_id,
                    sequence,
                    user_id,
                    title,
                    description,
                    file_name,
                    content_type,
                    int(file_size),
                    duration,
                    audio_path,
                    powerpoint_path,
                    status,
                    upload_timestamp or timestamp,
                    timestamp,
                ),
                action="recordings.insert",
                table="recordings",
            )
            connection.commit()
        LOGGER.debug("Inserted recording %s for user %s (seq=%s)", recording_id, user_id, sequence)
        return recording_id

    def get_recording(self, recording_id: str) -> Optional[RecordingRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM recordings WHERE id = ?",
                (recording_id,),
                action="recordings.get",
                table="recordings",
            ).fetchone()
        return self._row_to_recording(row) if row else None

    def iter_recordings_for_user(
        self,
        user_id: str,
        *,
        page_size: int = 20,
        last_id: Optional[str] = None,
    ) -> List[RecordingRecord]:
        """Return one page of the user's recordings, newest first.

        ``last_id`` is the id of the final recording of the previous page. An
        unknown cursor yields an empty page rather than restarting the listing.
        """

        query = "SELECT * FROM recordings WHERE user_id = ?"
        params: List[Any] = [user_id]
        if last_id:
            query += " AND seq < COALESCE((SELECT seq FROM recordings WHERE id = ?), 0)"
            params.append(last_id)
        query += " ORDER BY seq DESC LIMIT ?"
        params.append(int(page_size))
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection, query, params, action="recordings.page", table="recordings"
            ).fetchall()
        return [self._row_to_recording(row) for row in rows]

    def iter_all_recordings(self) -> List[RecordingRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM recordings ORDER BY seq",
                action="recordings.all",
                table="recordings",
            ).fetchall()
        return [self._row_to_recording(row) for row in rows]

    def iter_recordings_with_status(self, statuses: Iterable[str]) -> List[RecordingRecord]:
        """Return recordings whose status is one of *statuses*, oldest upload first."""

        wanted = sorted(set(statuses))
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                f"SELECT * FROM recordings WHERE status IN ({placeholders}) ORDER BY seq",
                wanted,
                action="recordings.by_status",
                table="recordings",
            ).fetchall()
        return [self._row_to_recording(row) for row in rows]

    def iter_recordings_since(self, since: str) -> List[RecordingRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM recordings WHERE created_at >= ? ORDER BY created_at",
                (since,),
                action="recordings.since",
                table="recordings",
            ).fetchall()
        return [self._row_to_recording(row) for row in rows]

    def count_recordings(self) -> int:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT COUNT(*) FROM recordings",
                action="recordings.count",
                table="recordings",
            ).fetchone()
        return int(row[0]) if row else 0

    def update_recording_details(
        self,
        recording_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if not assignments:
            return
        params.append(recording_id)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                f"UPDATE recordings SET {', '.join(assignments)} WHERE id = ?",
                params,
                action="recordings.update_details",
                table="recordings",
            )
            connection.commit()

    def update_recording_status(
        self,
        recording_id: str,
        status: str,
        *,
        failure_reason: Optional[str] = None,
        transcript_path: Any = _MISSING,
    ) -> None:
        assignments = ["status = ?", "failure_reason = ?"]
        params: List[Any] = [status, failure_reason]
        if transcript_path is not _MISSING:
            assignments.append("transcript_path = ?")
            params.append(transcript_path)
        params.append(recording_id)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                f"UPDATE recordings SET {', '.join(assignments)} WHERE id = ?",
                params,
                action="recordings.update_status",
                table="recordings",
            )
            connection.commit()
        LOGGER.debug("Recording %s moved to status %s", recording_id, status)

    def remove_recording(self, recording_id: str) -> bool:
        with contextlib.closing(self._connect()) as connection:
            cursor = self._execute(
                connection,
                "DELETE FROM recordings WHERE id = ?",
                (recording_id,),
                action="recordings.delete",
                table="recordings",
            )
            connection.commit()
            return cursor.rowcount > 0

    def add_favorite(self, user_id: str, recording_id: str) -> bool:
        """Mark *recording_id* as a favourite; returns ``False`` if it already was."""

        with contextlib.closing(self._connect()) as connection:
            cursor = self._execute(
                connection,
                "INSERT OR IGNORE INTO favorites (user_id, recording_id, created_at) VALUES (?, ?, ?)",
                (user_id, recording_id, utcnow_iso()),
                action="favorites.insert",
                table="favorites",
            )
            added = cursor.rowcount > 0
            if added:
                self._execute(
                    connection,
                    "UPDATE recordings SET favorite_count = favorite_count + 1 WHERE id = ?",
                    (recording_id,),
                    action="recordings.increment_favorites",
                    table="recordings",
                )
            connection.commit()
        return added

    def remove_favorite(self, user_id: str, recording_id: str) -> bool:
        with contextlib.closing(self._connect()) as connection:
            cursor = self._execute(
                connection,
                "DELETE FROM favorites WHERE user_id = ? AND recording_id = ?",
                (user_id, recording_id),
                action="favorites.delete",
                table="favorites",
            )
            removed = cursor.rowcount > 0
            if removed:
                self._execute(
                    connection,
                    """
                    UPDATE recordings SET favorite_count = MAX(favorite_count - 1, 0)
                    WHERE id = ?
                    """,
                    (recording_id,),
                    action="recordings.decrement_favorites",
                    table="recordings",
                )
            connection.commit()
        return removed

    def top_recordings_by_favorites(self, limit: int = 10) -> List[RecordingRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM recordings ORDER BY favorite_count DESC, seq ASC LIMIT ?",
                (int(limit),),
                action="recordings.top_favorites",
                table="recordings",
            ).fetchall()
        return [self._row_to_recording(row) for row in rows]

    # ---------------------------------------------------------------------
    # Summaries
    # ---------------------------------------------------------------------
    def upsert_summary(
        self,
        summary_id: str,
        recording_id: str,
        *,
        formatted_summary_text: str,
        key_points: Sequence[str] = (),
        topics: Sequence[str] = (),
        glossary: Sequence[Dict[str, str]] = (),
    ) -> str:
        """Store the summary for *recording_id*, replacing any previous one.

        The id of the stored summary is returned; a replaced summary keeps its
        original id.
        """

        timestamp = utcnow_iso()
        with contextlib.closing(self._connect()) as connection:
            existing = self._execute(
                connection,
                "SELECT id FROM summaries WHERE recording_id = ?",
                (recording_id,),
                action="summaries.lookup",
                table="summaries",
            ).fetchone()
            if existing is not None:
                summary_id = existing["id"]
                self._execute(
                    connection,
                    """
                    UPDATE summaries
                    SET formatted_summary_text = ?, key_points = ?, topics = ?,
                        glossary = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        formatted_summary_text,
                        json.dumps(list(key_points)),
                        json.dumps(list(topics)),
                        json.dumps(list(glossary)),
                        timestamp,
                        summary_id,
                    ),
                    action="summaries.replace",
                    table="summaries",
                )
            else:
                self._execute(
                    connection,
                    """
                    INSERT INTO summaries (
                        id, recording_id, formatted_summary_text, key_points, topics,
                        glossary, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        summary_id,
                        recording_id,
                        formatted_summary_text,
                        json.dumps(list(key_points)),
                        json.dumps(list(topics)),
                        json.dumps(list(glossary)),
                        timestamp,
                        timestamp,
                    ),
                    action="summaries.insert",
                    table="summaries",
                )
            connection.commit()
        return summary_id

    def get_summary(self, summary_id: str) -> Optional[SummaryRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM summaries WHERE id = ?",
                (summary_id,),
                action="summaries.get",
                table="summaries",
            ).fetchone()
        return self._row_to_summary(row) if row else None

    def get_summary_for_recording(self, recording_id: str) -> Optional[SummaryRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM summaries WHERE recording_id = ?",
                (recording_id,),
                action="summaries.get_for_recording",
                table="summaries",
            ).fetchone()
        return self._row_to_summary(row) if row else None

    def update_summary(
        self,
        summary_id: str,
        *,
        formatted_summary_text: Optional[str] = None,
        key_points: Optional[Sequence[str]] = None,
        topics: Optional[Sequence[str]] = None,
        glossary: Optional[Sequence[Dict[str, str]]] = None,
    ) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        if formatted_summary_text is not None:
            assignments.append("formatted_summary_text = ?")
            params.append(formatted_summary_text)
        if key_points is not None:
            assignments.append("key_points = ?")
            params.append(json.dumps(list(key_points)))
        if topics is not None:
            assignments.append("topics = ?")
            params.append(json.dumps(list(topics)))
        if glossary is not None:
            assignments.append("glossary = ?")
            params.append(json.dumps(list(glossary)))
        if not assignments:
            return
        assignments.append("updated_at = ?")
        params.append(utcnow_iso())
        params.append(summary_id)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                f"UPDATE summaries SET {', '.join(assignments)} WHERE id = ?",
                params,
                action="summaries.update",
                table="summaries",
            )
            connection.commit()

    # ---------------------------------------------------------------------
    # Notes
    # ---------------------------------------------------------------------
    def add_note(
        self,
        note_id: str,
        user_id: str,
        recording_id: str,
        content: str,
        tags: Sequence[str] = (),
        *,
        created_at: Optional[str] = None,
    ) -> str:
        timestamp = created_at or utcnow_iso()
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                """
                INSERT INTO notes (id, user_id, recording_id, content, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (note_id, user_id, recording_id, content, json.dumps(list(tags)), timestamp, timestamp),
                action="notes.insert",
                table="notes",
            )
            connection.commit()
        return note_id

    def get_note(self, note_id: str) -> Optional[NoteRecord]:
        with contextlib.closing(self._connect()) as connection:
            row = self._execute(
                connection,
                "SELECT * FROM notes WHERE id = ?",
                (note_id,),
                action="notes.get",
                table="notes",
            ).fetchone()
        return self._row_to_note(row) if row else None

    def iter_notes_for_recording(self, recording_id: str) -> List[NoteRecord]:
        with contextlib.closing(self._connect()) as connection:
            rows = self._execute(
                connection,
                "SELECT * FROM notes WHERE recording_id = ? ORDER BY created_at, rowid",
                (recording_id,),
                action="notes.for_recording",
                table="notes",
            ).fetchall()
        return [self._row_to_note(row) for row in rows]

    def update_note(
        self,
        note_id: str,
        *,
        content: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        updated_at: Optional[str] = None,
    ) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        if content is not None:
            assignments.append("content = ?")
            params.append(content)
        if tags is not None:
            assignments.append("tags = ?")
            params.append(json.dumps(list(tags)))
        if not assignments:
            return
        assignments.append("updated_at = ?")
        params.append(updated_at or utcnow_iso())
        params.append(note_id)
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                f"UPDATE notes SET {', '.join(assignments)} WHERE id = ?",
                params,
                action="notes.update",
                table="notes",
            )
            connection.commit()

    def remove_note(self, note_id: str) -> None:
        with contextlib.closing(self._connect()) as connection:
            self._execute(
                connection,
                "DELETE FROM notes WHERE id = ?",
                (note_id,),
                action="notes.delete",
                table="notes",
            )
            connection.commit()


__all__ = [
    "AudioScholarRepository",
    "NoteRecord",
    "RecordingRecord",
    "SummaryRecord",
    "UserRecord",
    "utcnow_iso",
]
