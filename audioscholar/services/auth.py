"""Account registration, password handling and bearer-token sessions."""

from __future__ import annotations

import base64
import enum
import hashlib
import hmac
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from .storage import AudioScholarRepository, UserRecord


LOGGER = logging.getLogger(__name__)

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 390000
MIN_PASSWORD_LENGTH = 8
DEFAULT_ROLES = ("ROLE_USER",)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordStrength(str, enum.Enum):
    WEAK = "WEAK"
    MEDIUM = "MEDIUM"
    STRONG = "STRONG"


def validate_password(password: str) -> Tuple[PasswordStrength, List[str]]:
    """Check *password* against the account rules.

    Returns the strength together with one message per failed rule. A password
    with no failures is STRONG, a single failure is MEDIUM and anything else is
    WEAK.
    """

    errors: List[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not any(char.isupper() for char in password):
        errors.append("Password must contain at least one uppercase letter")
    if not any(char.islower() for char in password):
        errors.append("Password must contain at least one lowercase letter")
    if not any(char.isdigit() for char in password):
        errors.append("Password must contain at least one digit")
    if not any(not char.isalnum() for char in password):
        errors.append("Password must contain at least one special character")

    if not errors:
        strength = PasswordStrength.STRONG
    elif len(errors) == 1:
        strength = PasswordStrength.MEDIUM
    else:
        strength = PasswordStrength.WEAK
    return strength, errors


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    encoded = base64.b64encode(digest).decode("ascii")
    return f"{PBKDF2_ALGORITHM}${iterations}${salt}${encoded}"


def verify_password(password: str, encoded: Optional[str]) -> bool:
    if not encoded:
        return False
    try:
        algorithm, iterations_text, salt, expected = encoded.split("$", 3)
        iterations = int(iterations_text)
    except ValueError:
        LOGGER.warning("Stored password hash has an unexpected format")
        return False
    if algorithm != PBKDF2_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    actual = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(actual, expected)


class TokenVerifier(Protocol):
    """Verifies third-party ID tokens and returns their claims."""

    def verify(self, id_token: str, provider: str) -> Mapping[str, Any]:
        """Return the claims (``uid``, ``email``, ``name``) or raise ``ValueError``."""


@dataclass
class AuthSession:
    token: str
    user: UserRecord


class AuthService:
    """Password and external-token authentication on top of the repository."""

    def __init__(
        self,
        repository: AudioScholarRepository,
        *,
        token_verifier: Optional[TokenVerifier] = None,
        password_iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        self._repository = repository
        self._token_verifier = token_verifier
        self._iterations = password_iterations

    def _open_session(self, user: UserRecord) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self._repository.create_session(user.id, token)
        return AuthSession(token=token, user=user)

    @staticmethod
    def _require_strong(password: str) -> None:
        strength, errors = validate_password(password)
        if strength is not PasswordStrength.STRONG:
            raise ValidationError("; ".join(errors))

    def register(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> UserRecord:
        normalized_email = (email or "").strip()
        if not _EMAIL_PATTERN.match(normalized_email):
            raise ValidationError("A valid email address is required")
        self._require_strong(password or "")
        if self._repository.find_user_by_email(normalized_email) is not None:
            raise ConflictError("An account with this email already exists")

        first = (first_name or "").strip()
        last = (last_name or "").strip()
        user_id = uuid.uuid4().hex
        self._repository.add_user(
            user_id,
            normalized_email,
            password_hash=hash_password(password, iterations=self._iterations),
            first_name=first,
            last_name=last,
            display_name=" ".join(part for part in (first, last) if part),
            provider="password",
            roles=list(DEFAULT_ROLES),
        )
        LOGGER.info("Registered user %s", user_id)
        user = self._repository.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found with ID: {user_id}")
        return user

    def login(self, email: str, password: str) -> AuthSession:
        user = self._repository.find_user_by_email((email or "").strip())
        if user is None or not verify_password(password or "", user.password_hash):
            raise AuthenticationError("Invalid email or password")
        if user.disabled:
            raise AuthenticationError("This account has been disabled")
        LOGGER.info("User %s logged in", user.id)
        return self._open_session(user)

    def verify_external_token(self, id_token: str, provider: str) -> AuthSession:
        """Exchange a Firebase or Google ID token for a service session."""

        if self._token_verifier is None:
            raise ServiceUnavailableError("External token verification is not configured")
        if not id_token or not id_token.strip():
            raise ValidationError("idToken must not be blank")
        try:
            claims: Dict[str, Any] = dict(self._token_verifier.verify(id_token, provider))
        except ValueError as error:
            raise AuthenticationError(f"Invalid {provider} token: {error}") from error

        uid = str(claims.get("uid") or "").strip()
        email = str(claims.get("email") or "").strip()
        if not uid or not email:
            raise AuthenticationError(f"The {provider} token did not carry a uid and email")

        user = self._repository.get_user(uid)
        if user is None:
            existing = self._repository.find_user_by_email(email)
            if existing is not None:
                raise ConflictError("An account with this email already exists")
            name = str(claims.get("name") or "").strip()
            first, _, last = name.partition(" ")
            self._repository.add_user(
                uid,
                email,
                first_name=first,
                last_name=last,
                display_name=name,
                profile_image_url=claims.get("picture"),
                provider=provider,
                roles=list(DEFAULT_ROLES),
                email_verified=bool(claims.get("email_verified", True)),
            )
            LOGGER.info("Created %s user %s from verified token", provider, uid)
            user = self._repository.get_user(uid)
            if user is None:
                raise NotFoundError(f"User not found with ID: {uid}")
        if user.disabled:
            raise AuthenticationError("This account has been disabled")
        return self._open_session(user)

    def logout(self, token: str) -> None:
        self._repository.delete_session(token)

    def change_password(
        self,
        user: UserRecord,
        current_password: str,
        new_password: str,
        *,
        keep_token: Optional[str] = None,
    ) -> None:
        if not verify_password(current_password or "", user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        self._require_strong(new_password or "")
        self._repository.update_user_password(
            user.id, hash_password(new_password, iterations=self._iterations)
        )
        self._repository.delete_sessions_for_user(user.id, keep=keep_token)
        LOGGER.info("Password changed for user %s", user.id)

    def authenticate(self, token: Optional[str]) -> UserRecord:
        if not token:
            raise AuthenticationError("Not authenticated")
        user = self._repository.get_session_user(token)
        if user is None:
            raise AuthenticationError("Session expired or invalid")
        if user.disabled:
            raise AuthenticationError("This account has been disabled")
        return user


__all__ = [
    "AuthService",
    "AuthSession",
    "PasswordStrength",
    "TokenVerifier",
    "hash_password",
    "validate_password",
    "verify_password",
]
