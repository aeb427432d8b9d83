from __future__ import annotations

from typing import Any, Dict

import pytest

from audioscholar.errors import (
    AuthenticationError,
    ConflictError,
    ServiceUnavailableError,
    ValidationError,
)
from audioscholar.services.auth import (
    AuthService,
    PasswordStrength,
    hash_password,
    validate_password,
    verify_password,
)
from audioscholar.services.storage import AudioScholarRepository


STRONG_PASSWORD = "Sup3r$ecret"


class _StaticVerifier:
    def __init__(self, claims: Dict[str, Any]) -> None:
        self.claims = claims
        self.calls = []

    def verify(self, id_token: str, provider: str) -> Dict[str, Any]:
        self.calls.append((id_token, provider))
        if id_token == "bad":
            raise ValueError("signature mismatch")
        return self.claims


@pytest.fixture()
def auth_service(repository: AudioScholarRepository) -> AuthService:
    return AuthService(repository, password_iterations=1000)


@pytest.mark.parametrize(
    ("password", "strength"),
    [
        (STRONG_PASSWORD, PasswordStrength.STRONG),
        ("Sup3rsecret", PasswordStrength.MEDIUM),
        ("short", PasswordStrength.WEAK),
    ],
)
def test_validate_password_classifies_strength(password: str, strength: PasswordStrength) -> None:
    result, errors = validate_password(password)

    assert result is strength
    assert (result is PasswordStrength.STRONG) == (not errors)


def test_password_hash_round_trip() -> None:
    encoded = hash_password(STRONG_PASSWORD, iterations=1000)

    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password(STRONG_PASSWORD, encoded)
    assert not verify_password("wrong", encoded)
    assert not verify_password(STRONG_PASSWORD, None)
    assert not verify_password(STRONG_PASSWORD, "garbage")


def test_register_and_login(auth_service: AuthService) -> None:
    user = auth_service.register("ada@example.com", STRONG_PASSWORD, "Ada", "Lovelace")

    assert user.display_name == "Ada Lovelace"
    assert user.roles == ["ROLE_USER"]
    assert user.password_hash != STRONG_PASSWORD

    session = auth_service.login("ada@example.com", STRONG_PASSWORD)
    assert session.user.id == user.id
    assert auth_service.authenticate(session.token).id == user.id

    auth_service.logout(session.token)
    with pytest.raises(AuthenticationError):
        auth_service.authenticate(session.token)


def test_register_rejects_invalid_input(auth_service: AuthService) -> None:
    with pytest.raises(ValidationError):
        auth_service.register("not-an-email", STRONG_PASSWORD)
    with pytest.raises(ValidationError) as excinfo:
        auth_service.register("ada@example.com", "weakpass")
    assert "uppercase" in excinfo.value.message

    auth_service.register("ada@example.com", STRONG_PASSWORD)
    with pytest.raises(ConflictError):
        auth_service.register("ADA@example.com", STRONG_PASSWORD)


def test_login_rejects_bad_credentials_and_disabled_users(
    auth_service: AuthService, repository: AudioScholarRepository
) -> None:
    user = auth_service.register("ada@example.com", STRONG_PASSWORD)

    with pytest.raises(AuthenticationError):
        auth_service.login("ada@example.com", "Wr0ng$pass")
    with pytest.raises(AuthenticationError):
        auth_service.login("nobody@example.com", STRONG_PASSWORD)

    session = auth_service.login("ada@example.com", STRONG_PASSWORD)
    repository.set_user_disabled(user.id, True)
    with pytest.raises(AuthenticationError):
        auth_service.login("ada@example.com", STRONG_PASSWORD)
    with pytest.raises(AuthenticationError):
        auth_service.authenticate(session.token)


def test_change_password_revokes_other_sessions(auth_service: AuthService) -> None:
    auth_service.register("ada@example.com", STRONG_PASSWORD)
    current = auth_service.login("ada@example.com", STRONG_PASSWORD)
    other = auth_service.login("ada@example.com", STRONG_PASSWORD)

    with pytest.raises(AuthenticationError):
        auth_service.change_password(current.user, "Wr0ng$pass", "N3w$ecret!")

    auth_service.change_password(
        current.user, STRONG_PASSWORD, "N3w$ecret!", keep_token=current.token
    )

    assert auth_service.authenticate(current.token).id == current.user.id
    with pytest.raises(AuthenticationError):
        auth_service.authenticate(other.token)
    auth_service.login("ada@example.com", "N3w$ecret!")


def test_external_token_requires_verifier(auth_service: AuthService) -> None:
    with pytest.raises(ServiceUnavailableError):
        auth_service.verify_external_token("token", "firebase")


def test_external_token_creates_user_once(repository: AudioScholarRepository) -> None:
    verifier = _StaticVerifier(
        {"uid": "firebase-uid", "email": "grace@example.com", "name": "Grace Hopper"}
    )
    service = AuthService(repository, token_verifier=verifier, password_iterations=1000)

    first = service.verify_external_token("good", "firebase")
    second = service.verify_external_token("good", "google")

    assert first.user.id == second.user.id == "firebase-uid"
    assert first.user.provider == "firebase"
    assert first.user.first_name == "Grace"
    assert first.token != second.token
    assert repository.count_users() == 1

    with pytest.raises(AuthenticationError):
        service.verify_external_token("bad", "firebase")
    with pytest.raises(ValidationError):
        service.verify_external_token("  ", "firebase")
