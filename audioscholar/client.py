"""HTTP client for the AudioScholar API with loading/success/error resources."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

import httpx

from .services.status import UPLOAD_TIMEOUT_SECONDS, any_needs_polling


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 600.0

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
_STATUS_MESSAGES: Dict[int, str] = {
    401: "Session expired. Please log in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested item was not found.",
    415: "Unsupported file type.",
}
_SERVER_ERROR_MESSAGE = "Server error. Please try again later."

PPTX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
_SLIDE_CONTENT_TYPES: Dict[str, str] = {
    ".pptx": PPTX_CONTENT_TYPE,
    ".ppt": "application/vnd.ms-powerpoint",
}


@dataclass
class Resource(Generic[T]):
    """Result wrapper mirroring the loading / success / error UI states."""

    status: str
    data: Optional[T] = None
    message: Optional[str] = None

    @classmethod
    def loading(cls, data: Optional[T] = None) -> "Resource[T]":
        return cls(status="loading", data=data)

    @classmethod
    def success(cls, data: T) -> "Resource[T]":
        return cls(status="success", data=data)

    @classmethod
    def error(cls, message: str, data: Optional[T] = None) -> "Resource[T]":
        return cls(status="error", data=data, message=message)

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


class ApiError(RuntimeError):
    """Raised by :class:`AudioScholarClient` for failed calls."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _server_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def error_message_for(response: httpx.Response) -> str:
    """Translate a failed response into a user-facing message."""

    code = response.status_code
    if code in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[code]
    if code >= 500:
        return _SERVER_ERROR_MESSAGE
    detail = _server_detail(response)
    if detail:
        return detail
    return f"Request failed with status {code}."


class AudioScholarClient:
    """Thin wrapper around the REST API; one method per endpoint."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.token = token
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=timeout,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "AudioScholarClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as error:
            LOGGER.warning("%s %s failed: %s", method, path, error)
            raise ApiError(NETWORK_ERROR_MESSAGE) from error
        if response.is_error:
            message = error_message_for(response)
            LOGGER.info("%s %s -> %s (%s)", method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Authentication ------------------------------------------------------
    def register(self, email: str, password: str, first_name: str = "", last_name: str = "") -> Dict[str, Any]:
        return self._request(
            "POST",
            "/api/auth/register",
            json={"email": email, "password": password, "firstName": first_name, "lastName": last_name},
        )

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Log in and remember the returned session token."""

        payload = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = payload["token"]
        return payload

    def verify_firebase_token(self, id_token: str) -> Dict[str, Any]:
        payload = self._request("POST", "/api/auth/verify-firebase-token", json={"idToken": id_token})
        self.token = payload["token"]
        return payload

    def verify_google_token(self, id_token: str) -> Dict[str, Any]:
        payload = self._request("POST", "/api/auth/verify-google-token", json={"idToken": id_token})
        self.token = payload["token"]
        return payload

    def logout(self) -> None:
        try:
            self._request("POST", "/api/auth/logout")
        finally:
            self.token = None

    def change_password(self, current_password: str, new_password: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/api/auth/change-password",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    # Users ---------------------------------------------------------------
    def get_profile(self) -> Dict[str, Any]:
        return self._request("GET", "/api/users/me")

    def update_profile(self, **changes: Any) -> Dict[str, Any]:
        return self._request("PUT", "/api/users/me", json=changes)

    # Recordings ----------------------------------------------------------
    def upload_recording(
        self,
        audio_path: Path,
        *,
        content_type: str = "audio/mpeg",
        title: Optional[str] = None,
        description: Optional[str] = None,
        powerpoint_path: Optional[Path] = None,
        powerpoint_content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        handles: List[BinaryIO] = []
        try:
            audio_handle = Path(audio_path).open("rb")
            handles.append(audio_handle)
            files: Dict[str, Any] = {"audioFile": (Path(audio_path).name, audio_handle, content_type)}
            if powerpoint_path is not None:
                slides_handle = Path(powerpoint_path).open("rb")
                handles.append(slides_handle)
                files["powerpointFile"] = (
                    Path(powerpoint_path).name,
                    slides_handle,
                    powerpoint_content_type
                    or _SLIDE_CONTENT_TYPES.get(Path(powerpoint_path).suffix.lower(), PPTX_CONTENT_TYPE),
                )
            data = {key: value for key, value in (("title", title), ("description", description)) if value}
            return self._request(
                "POST", "/api/audio/upload", files=files, data=data, timeout=UPLOAD_TIMEOUT
            )
        finally:
            for handle in handles:
                handle.close()

    def list_recordings(self, *, page_size: Optional[int] = None, last_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if page_size is not None:
            params["pageSize"] = page_size
        if last_id:
            params["lastId"] = last_id
        return self._request("GET", "/api/audio/metadata", params=params)

    def get_recording(self, recording_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/audio/recordings/{recording_id}")

    def update_recording(
        self,
        recording_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "PATCH",
            f"/api/audio/recordings/{recording_id}",
            json={"title": title, "description": description},
        )

    def delete_recording(self, recording_id: str) -> None:
        self._request("DELETE", f"/api/audio/metadata/{recording_id}")

    def favorite_recording(self, recording_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/audio/recordings/{recording_id}/favorite")

    def unfavorite_recording(self, recording_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/audio/recordings/{recording_id}/favorite")

    # Summaries -----------------------------------------------------------
    def get_summary(self, recording_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/recordings/{recording_id}/summary")

    def update_summary(self, summary_id: str, **changes: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/summaries/{summary_id}", json=changes)

    # Notes ---------------------------------------------------------------
    def create_note(self, recording_id: str, content: str, tags: Optional[List[str]] = None) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/api/notes",
            json={"recordingId": recording_id, "content": content, "tags": list(tags or [])},
        )

    def list_notes(self, recording_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/notes", params={"recordingId": recording_id})

    def get_note(self, note_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/notes/{note_id}")

    def update_note(
        self,
        note_id: str,
        *,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if content is not None:
            body["content"] = content
        if tags is not None:
            body["tags"] = list(tags)
        return self._request("PATCH", f"/api/notes/{note_id}", json=body)

    def delete_note(self, note_id: str) -> None:
        self._request("DELETE", f"/api/notes/{note_id}")

    # Admin ---------------------------------------------------------------
    def list_users(self, *, limit: int = 20, page_token: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit}
        if page_token:
            params["pageToken"] = page_token
        return self._request("GET", "/api/admin/users", params=params)

    def set_user_disabled(self, uid: str, disabled: bool) -> Dict[str, Any]:
        return self._request("PUT", f"/api/admin/users/{uid}/status", json={"disabled": disabled})

    def set_user_roles(self, uid: str, roles: List[str]) -> Dict[str, Any]:
        return self._request("PUT", f"/api/admin/users/{uid}/roles", json={"roles": list(roles)})

    def system_health(self) -> Dict[str, Any]:
        return self._request("GET", "/api/admin/system/health")

    def analytics_overview(self) -> Dict[str, Any]:
        return self._request("GET", "/api/admin/analytics/overview")

    def analytics_activity(self) -> Dict[str, Any]:
        return self._request("GET", "/api/admin/analytics/activity")

    def analytics_user_distribution(self) -> Dict[str, Any]:
        return self._request("GET", "/api/admin/analytics/users/distribution")

    def analytics_content_engagement(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/admin/analytics/content/engagement")


def request_resource(call: Callable[[], T]) -> Iterator[Resource[T]]:
    """Yield ``loading`` and then the outcome of *call* as a resource."""

    yield Resource.loading()
    try:
        result = call()
    except ApiError as error:
        yield Resource.error(error.message)
    else:
        yield Resource.success(result)


def poll_recordings(
    client: AudioScholarClient,
    interval: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[Callable[[], datetime]] = None,
    max_rounds: Optional[int] = None,
    *,
    timeout_seconds: int = UPLOAD_TIMEOUT_SECONDS,
) -> Iterator[List[Dict[str, Any]]]:
    """Yield the recording list until nothing is still uploading or processing."""

    rounds = 0
    while True:
        recordings = client.list_recordings()
        rounds += 1
        yield recordings
        current = now() if now is not None else None
        if not any_needs_polling(recordings, current, timeout_seconds=timeout_seconds):
            LOGGER.debug("Polling stopped after %d rounds", rounds)
            return
        if max_rounds is not None and rounds >= max_rounds:
            LOGGER.info("Polling gave up after %d rounds", rounds)
            return
        sleep(interval)


__all__ = [
    "ApiError",
    "AudioScholarClient",
    "NETWORK_ERROR_MESSAGE",
    "Resource",
    "error_message_for",
    "poll_recordings",
    "request_resource",
]
