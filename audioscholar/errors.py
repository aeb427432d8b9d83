"""Exception hierarchy shared by the services and the web layer."""

from __future__ import annotations


class AudioScholarError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AudioScholarError):
    status_code = 400


class AuthenticationError(AudioScholarError):
    status_code = 401


class PermissionDeniedError(AudioScholarError):
    status_code = 403


class NotFoundError(AudioScholarError):
    status_code = 404


class ConflictError(AudioScholarError):
    status_code = 409


class UnsupportedMediaTypeError(AudioScholarError):
    status_code = 415


class ServiceUnavailableError(AudioScholarError):
    status_code = 503


__all__ = [
    "AudioScholarError",
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServiceUnavailableError",
    "UnsupportedMediaTypeError",
    "ValidationError",
]
