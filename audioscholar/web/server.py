"""FastAPI application exposing the AudioScholar REST API."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi import status
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..errors import AudioScholarError, NotFoundError, PermissionDeniedError, ValidationError
from ..processing import (
    RESUMABLE_STATUSES,
    FasterWhisperTranscription,
    QueuedRecording,
    RecordingProcessor,
    RecordingQueue,
)
from ..processing.transcription import TranscriptionEngine
from ..services.analytics import AnalyticsService
from ..services.auth import AuthService, AuthSession, TokenVerifier
from ..services.events import emit_structured_event
from ..services.notes import UserNoteService
from ..services.recordings import RecordingService, UploadedFile
from ..services.storage import (
    AudioScholarRepository,
    NoteRecord,
    RecordingRecord,
    SummaryRecord,
    UserRecord,
)
from ..services.summarization import Summarizer, build_summarizer


ROLE_ADMIN = "ROLE_ADMIN"
MAX_ADMIN_PAGE_SIZE = 1000


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "audioscholar_request_id",
    default=None,
)
_JOB_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "audioscholar_job_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "audioscholar_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    job_id = _JOB_ID_VAR.get()
    if job_id:
        context["job_id"] = str(job_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor_hint = _format_actor_label("request", method.upper() if isinstance(method, str) else None)
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)
        job_token = _JOB_ID_VAR.set(None)

        try:
            await self.app(scope, receive, send)
        finally:
            _JOB_ID_VAR.reset(job_token)
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        correlation = _collect_correlation_context()
        for key, value in correlation.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("audioscholar.events"), {})


def _emit_debug_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_structured_event(
        event_type,
        message,
        payload=payload,
        context=context,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _log_event(message: str, **context: Any) -> None:
    _emit_debug_event("APP_EVENT", message, context=context)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------
class RegisterPayload(BaseModel):
    email: str
    password: str
    firstName: str = ""
    lastName: str = ""


class LoginPayload(BaseModel):
    email: str
    password: str


class TokenPayload(BaseModel):
    idToken: str


class ChangePasswordPayload(BaseModel):
    currentPassword: str
    newPassword: str


class ProfileUpdatePayload(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    displayName: Optional[str] = None
    profileImageUrl: Optional[str] = None


class RecordingUpdatePayload(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class GlossaryItemPayload(BaseModel):
    term: str
    definition: str = ""


class SummaryUpdatePayload(BaseModel):
    formattedSummaryText: Optional[str] = None
    keyPoints: Optional[List[str]] = None
    topics: Optional[List[str]] = None
    glossary: Optional[List[GlossaryItemPayload]] = None


class NoteCreatePayload(BaseModel):
    recordingId: str = ""
    content: str = ""
    tags: List[str] = Field(default_factory=list)


class NoteUpdatePayload(BaseModel):
    content: Optional[str] = None
    tags: Optional[List[str]] = None


class UserStatusPayload(BaseModel):
    disabled: bool


class UserRolesPayload(BaseModel):
    roles: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _serialize_profile(user: UserRecord) -> Dict[str, Any]:
    return {
        "userId": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "displayName": user.display_name,
        "profileImageUrl": user.profile_image_url,
        "roles": list(user.roles),
        "provider": user.provider,
    }


def _serialize_session(session: AuthSession) -> Dict[str, Any]:
    return {
        "token": session.token,
        "userId": session.user.id,
        "email": session.user.email,
        "roles": list(session.user.roles),
    }


def _serialize_admin_user(user: UserRecord) -> Dict[str, Any]:
    return {
        "uid": user.id,
        "email": user.email,
        "displayName": user.display_name,
        "photoUrl": user.profile_image_url,
        "disabled": user.disabled,
        "emailVerified": user.email_verified,
        "roles": list(user.roles),
        "customClaims": {"roles": list(user.roles)},
    }


def _serialize_recording(recording: RecordingRecord) -> Dict[str, Any]:
    return {
        "id": recording.id,
        "recordingId": recording.id,
        "userId": recording.user_id,
        "fileName": recording.file_name,
        "fileSize": recording.file_size,
        "contentType": recording.content_type,
        "title": recording.title,
        "description": recording.description,
        "duration": recording.duration,
        "status": recording.status,
        "failureReason": recording.failure_reason,
        "uploadTimestamp": recording.upload_timestamp,
        "favoriteCount": recording.favorite_count,
        "hasPowerpoint": recording.powerpoint_path is not None,
    }


def _serialize_summary(summary: SummaryRecord) -> Dict[str, Any]:
    return {
        "summaryId": summary.id,
        "recordingId": summary.recording_id,
        "formattedSummaryText": summary.formatted_summary_text,
        "keyPoints": list(summary.key_points),
        "topics": list(summary.topics),
        "glossary": [dict(item) for item in summary.glossary],
        "createdAt": summary.created_at,
        "updatedAt": summary.updated_at,
    }


def _serialize_note(note: NoteRecord) -> Dict[str, Any]:
    return {
        "noteId": note.id,
        "userId": note.user_id,
        "recordingId": note.recording_id,
        "content": note.content,
        "tags": list(note.tags),
        "createdAt": note.created_at,
        "updatedAt": note.updated_at,
    }


def create_app(
    repository: AudioScholarRepository,
    *,
    config: AppConfig,
    root_path: str | None = None,
    transcription: Optional[TranscriptionEngine] = None,
    summarizer: Optional[Summarizer] = None,
    token_verifier: Optional[TokenVerifier] = None,
    process_uploads: bool = True,
    password_iterations: Optional[int] = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    ``transcription`` and ``summarizer`` default to faster-whisper and the
    Gemini summarizer built from ``config.processing``. With
    ``process_uploads`` disabled uploads are stored but never queued.
    """

    def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        _emit_debug_event(event_type, message, level=logging.DEBUG, **kwargs)

    configure_emitter = getattr(repository, "configure_event_emitter", None)
    if callable(configure_emitter):
        configure_emitter(_repository_event_emitter)

    auth_kwargs: Dict[str, Any] = {}
    if password_iterations is not None:
        auth_kwargs["password_iterations"] = password_iterations
    auth_service = AuthService(repository, token_verifier=token_verifier, **auth_kwargs)
    recording_service = RecordingService(repository, config)
    note_service = UserNoteService(repository)
    analytics_service = AnalyticsService(repository)

    if process_uploads and transcription is None:
        transcription = FasterWhisperTranscription(config.processing.whisper_model)
    if process_uploads and summarizer is None:
        summarizer = build_summarizer(config.processing)
    processor = RecordingProcessor(
        repository,
        recording_service,
        transcription=transcription,
        summarizer=summarizer,
        summary_attempts=config.processing.summary_attempts,
    )

    background_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recording-processing")

    async def _process_queued_recording(entry: QueuedRecording) -> str:
        job_token = _JOB_ID_VAR.set(entry.id)
        actor_token = _ACTOR_VAR.set(_format_actor_label("job", entry.reason))
        started = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            outcome = await loop.run_in_executor(
                background_executor, functools.partial(processor.process, entry.recording_id)
            )
            _emit_debug_event(
                "TASK_STATE",
                "Recording processing finished",
                payload={"recording": entry.recording_id, "status": outcome, "reason": entry.reason},
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
            return outcome
        finally:
            _ACTOR_VAR.reset(actor_token)
            _JOB_ID_VAR.reset(job_token)

    task_queue = RecordingQueue(_process_queued_recording)

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await task_queue.start()
        if process_uploads:
            await task_queue.resume(repository.iter_recordings_with_status(RESUMABLE_STATUSES))
        try:
            yield
        finally:
            await task_queue.stop()
            background_executor.shutdown(wait=False, cancel_futures=True)

    app = FastAPI(
        title="AudioScholar",
        description="Lecture recording, transcription and summarization API",
        root_path=_normalize_root_path(root_path),
        lifespan=_lifespan,
    )
    app.state.repository = repository
    app.state.config = config
    app.state.task_queue = task_queue
    app.state.recording_processor = processor
    app.state.auth_service = auth_service
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AudioScholarError)
    async def _handle_domain_error(request: Request, error: AudioScholarError):
        level = logging.WARNING if error.status_code < 500 else logging.ERROR
        LOGGER.log(level, "%s %s -> %s: %s", request.method, request.url.path, error.status_code, error.message)
        return await http_exception_handler(
            request, HTTPException(status_code=error.status_code, detail=error.message)
        )

    bearer_scheme = HTTPBearer(auto_error=False)

    async def current_token(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> str:
        if credentials is None or not credentials.credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return credentials.credentials

    async def current_user(token: str = Depends(current_token)) -> UserRecord:
        user = auth_service.authenticate(token)
        _ACTOR_VAR.set(_format_actor_label("user", user.id))
        return user

    async def admin_user(user: UserRecord = Depends(current_user)) -> UserRecord:
        if not user.is_admin:
            LOGGER.warning("User %s attempted to reach an admin endpoint", user.id)
            raise PermissionDeniedError("Administrator role required.")
        return user

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
    async def register(payload: RegisterPayload) -> Dict[str, Any]:
        _log_event("Registering user", email=payload.email)
        user = auth_service.register(
            payload.email, payload.password, payload.firstName, payload.lastName
        )
        return _serialize_profile(user)

    @app.post("/api/auth/login")
    async def login(payload: LoginPayload) -> Dict[str, Any]:
        session = auth_service.login(payload.email, payload.password)
        return _serialize_session(session)

    @app.post("/api/auth/verify-firebase-token")
    async def verify_firebase_token(payload: TokenPayload) -> Dict[str, Any]:
        session = auth_service.verify_external_token(payload.idToken, "firebase")
        return _serialize_session(session)

    @app.post("/api/auth/verify-google-token")
    async def verify_google_token(payload: TokenPayload) -> Dict[str, Any]:
        session = auth_service.verify_external_token(payload.idToken, "google")
        return _serialize_session(session)

    @app.post("/api/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    async def logout(token: str = Depends(current_token)) -> Response:
        auth_service.logout(token)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/auth/change-password")
    async def change_password(
        payload: ChangePasswordPayload,
        token: str = Depends(current_token),
        user: UserRecord = Depends(current_user),
    ) -> Dict[str, str]:
        auth_service.change_password(
            user, payload.currentPassword, payload.newPassword, keep_token=token
        )
        return {"message": "Password changed successfully."}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    @app.get("/api/users/me")
    async def get_profile(user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        return _serialize_profile(user)

    @app.put("/api/users/me")
    async def update_profile(
        payload: ProfileUpdatePayload, user: UserRecord = Depends(current_user)
    ) -> Dict[str, Any]:
        changes: Dict[str, Any] = {
            "first_name": payload.firstName,
            "last_name": payload.lastName,
            "display_name": payload.displayName,
        }
        if "profileImageUrl" in payload.model_fields_set:
            changes["profile_image_url"] = payload.profileImageUrl
        repository.update_user_profile(user.id, **changes)
        updated = repository.get_user(user.id)
        if updated is None:
            raise NotFoundError("User not found")
        return _serialize_profile(updated)

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------
    @app.post("/api/audio/upload", status_code=status.HTTP_202_ACCEPTED)
    async def upload_audio(
        audioFile: Optional[UploadFile] = File(None),
        powerpointFile: Optional[UploadFile] = File(None),
        title: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
        user: UserRecord = Depends(current_user),
    ) -> Dict[str, Any]:
        if audioFile is None:
            raise ValidationError("Audio file cannot be empty.")
        _log_event(
            "Received upload",
            user=user.id,
            file=audioFile.filename,
            powerpoint=powerpointFile.filename if powerpointFile is not None else None,
        )
        audio = UploadedFile(audioFile.filename, audioFile.content_type, audioFile.file)
        slides = (
            UploadedFile(powerpointFile.filename, powerpointFile.content_type, powerpointFile.file)
            if powerpointFile is not None
            else None
        )
        loop = asyncio.get_running_loop()
        try:
            recording = await loop.run_in_executor(
                None,
                functools.partial(
                    recording_service.create_upload,
                    user.id,
                    audio,
                    powerpoint=slides,
                    title=title,
                    description=description,
                ),
            )
        finally:
            await audioFile.close()
            if powerpointFile is not None:
                await powerpointFile.close()

        metadata = _serialize_recording(recording)
        if process_uploads:
            processor.mark_queued(recording.id)
            entry = await task_queue.enqueue(recording.id)
            LOGGER.info("Queued recording %s for processing (task %s)", recording.id, entry.id)
        return metadata

    @app.get("/api/audio/metadata")
    async def list_metadata(
        pageSize: Optional[int] = Query(None),
        lastId: Optional[str] = Query(None),
        user: UserRecord = Depends(current_user),
    ) -> List[Dict[str, Any]]:
        recordings = recording_service.list_metadata(user.id, page_size=pageSize, last_id=lastId)
        LOGGER.info("Returning %d metadata records for user %s", len(recordings), user.id)
        return [_serialize_recording(recording) for recording in recordings]

    @app.delete("/api/audio/metadata/{recording_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_metadata(recording_id: str, user: UserRecord = Depends(current_user)) -> Response:
        recording_service.delete(user.id, recording_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/audio/recordings/{recording_id}")
    async def get_recording(recording_id: str, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        recording = recording_service.get_owned(user.id, recording_id)
        payload = _serialize_recording(recording)
        summary = repository.get_summary_for_recording(recording_id)
        payload["summaryId"] = summary.id if summary is not None else None
        return payload

    @app.patch("/api/audio/recordings/{recording_id}")
    async def update_recording(
        recording_id: str,
        payload: RecordingUpdatePayload,
        user: UserRecord = Depends(current_user),
    ) -> Dict[str, Any]:
        recording = recording_service.update_details(
            user.id, recording_id, title=payload.title, description=payload.description
        )
        return _serialize_recording(recording)

    @app.post("/api/audio/recordings/{recording_id}/favorite")
    async def add_favorite(recording_id: str, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        recording = recording_service.add_favorite(user.id, recording_id)
        return {"recordingId": recording.id, "favoriteCount": recording.favorite_count}

    @app.delete("/api/audio/recordings/{recording_id}/favorite")
    async def remove_favorite(recording_id: str, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        recording = recording_service.remove_favorite(user.id, recording_id)
        return {"recordingId": recording.id, "favoriteCount": recording.favorite_count}

    @app.get("/api/recordings/{recording_id}/summary")
    async def get_summary(recording_id: str, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        return _serialize_summary(recording_service.get_summary(user.id, recording_id))

    @app.patch("/api/summaries/{summary_id}")
    async def update_summary(
        summary_id: str,
        payload: SummaryUpdatePayload,
        user: UserRecord = Depends(current_user),
    ) -> Dict[str, Any]:
        glossary = (
            [item.model_dump() for item in payload.glossary] if payload.glossary is not None else None
        )
        summary = recording_service.update_summary(
            user.id,
            summary_id,
            formatted_summary_text=payload.formattedSummaryText,
            key_points=payload.keyPoints,
            topics=payload.topics,
            glossary=glossary,
        )
        return _serialize_summary(summary)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------
    @app.post("/api/notes", status_code=status.HTTP_201_CREATED)
    async def create_note(payload: NoteCreatePayload, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        note = note_service.create_note(user.id, payload.recordingId, payload.content, payload.tags)
        return _serialize_note(note)

    @app.get("/api/notes")
    async def list_notes(
        recordingId: str = Query(...),
        user: UserRecord = Depends(current_user),
    ) -> List[Dict[str, Any]]:
        return [_serialize_note(note) for note in note_service.get_notes_for_recording(user.id, recordingId)]

    @app.get("/api/notes/{note_id}")
    async def get_note(note_id: str, user: UserRecord = Depends(current_user)) -> Dict[str, Any]:
        return _serialize_note(note_service.get_note(user.id, note_id))

    @app.patch("/api/notes/{note_id}")
    async def update_note(
        note_id: str,
        payload: NoteUpdatePayload,
        user: UserRecord = Depends(current_user),
    ) -> Dict[str, Any]:
        note = note_service.update_note(user.id, note_id, content=payload.content, tags=payload.tags)
        return _serialize_note(note)

    @app.delete("/api/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_note(note_id: str, user: UserRecord = Depends(current_user)) -> Response:
        note_service.delete_note(user.id, note_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    @app.get("/api/admin/users")
    async def list_users(
        limit: int = Query(20),
        pageToken: Optional[str] = Query(None),
        admin: UserRecord = Depends(admin_user),
    ) -> Dict[str, Any]:
        effective = min(max(limit, 1), MAX_ADMIN_PAGE_SIZE)
        _log_event("Admin listing users", admin=admin.id, limit=effective, page_token=pageToken)
        users = repository.iter_users(effective + 1, start_after=pageToken or None)
        has_more = len(users) > effective
        page = users[:effective]
        return {
            "users": [_serialize_admin_user(user) for user in page],
            "nextPageToken": page[-1].id if has_more and page else None,
        }

    @app.put("/api/admin/users/{uid}/status")
    async def update_user_status(
        uid: str,
        payload: UserStatusPayload,
        admin: UserRecord = Depends(admin_user),
    ) -> Dict[str, Any]:
        if repository.get_user(uid) is None:
            raise NotFoundError(f"User not found with ID: {uid}")
        repository.set_user_disabled(uid, payload.disabled)
        if payload.disabled:
            repository.delete_sessions_for_user(uid)
        LOGGER.info("Admin %s set disabled=%s for user %s", admin.id, payload.disabled, uid)
        return {"message": f"User status updated to {'disabled' if payload.disabled else 'enabled'}"}

    @app.put("/api/admin/users/{uid}/roles")
    async def update_user_roles(
        uid: str,
        payload: UserRolesPayload,
        admin: UserRecord = Depends(admin_user),
    ) -> Dict[str, Any]:
        roles: List[str] = []
        for role in payload.roles:
            cleaned = role.strip()
            if cleaned and cleaned not in roles:
                roles.append(cleaned)
        if not roles:
            raise ValidationError("Roles list cannot be empty.")
        if repository.get_user(uid) is None:
            raise NotFoundError(f"User not found with ID: {uid}")
        repository.set_user_roles(uid, roles)
        LOGGER.info("Admin %s set roles %s for user %s", admin.id, roles, uid)
        return {"message": "User roles updated", "roles": roles}

    @app.get("/api/admin/system/health")
    async def system_health(admin: UserRecord = Depends(admin_user)) -> Dict[str, Any]:
        try:
            repository.count_users()
            database_status = "connected"
        except Exception as error:  # noqa: BLE001 - reported in the payload
            LOGGER.error("Health check could not reach the database: %s", error)
            database_status = "unavailable"
        queue_counts = task_queue.counts()
        return {
            "status": "UP" if database_status == "connected" else "DEGRADED",
            "db": database_status,
            "queue": queue_counts,
            "timestamp": int(time.time() * 1000),
        }

    @app.get("/api/admin/analytics/overview")
    async def analytics_overview(admin: UserRecord = Depends(admin_user)) -> Dict[str, Any]:
        overview = analytics_service.get_overview()
        return {
            "totalUsers": overview.total_users,
            "totalRecordings": overview.total_recordings,
            "totalStorageBytes": overview.total_storage_bytes,
            "totalDurationSeconds": overview.total_duration_seconds,
        }

    @app.get("/api/admin/analytics/activity")
    async def analytics_activity(admin: UserRecord = Depends(admin_user)) -> Dict[str, Any]:
        activity = analytics_service.get_activity()
        return {
            "newUsersLast30Days": activity.new_users_last_30_days,
            "newRecordingsLast30Days": activity.new_recordings_last_30_days,
        }

    @app.get("/api/admin/analytics/users/distribution")
    async def analytics_distribution(admin: UserRecord = Depends(admin_user)) -> Dict[str, Any]:
        distribution = analytics_service.get_user_distribution()
        return {
            "usersByProvider": distribution.users_by_provider,
            "usersByRole": distribution.users_by_role,
        }

    @app.get("/api/admin/analytics/content/engagement")
    async def analytics_engagement(admin: UserRecord = Depends(admin_user)) -> List[Dict[str, Any]]:
        return [
            {
                "recordingId": item.recording_id,
                "title": item.title,
                "favoriteCount": item.favorite_count,
            }
            for item in analytics_service.get_content_engagement()
        ]

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
