from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy.exc import OperationalError

from calibre_shelf.services.auth_service import AuthService
from calibre_shelf.services.errors import StorageError

from conftest import JWT_SECRET


def test_validate_user_returns_public_user(auth_service, alice):
    user = auth_service.validate_user("alice", "correct")

    assert user is not None
    assert user.id == alice.id
    assert user.username == "alice"
    assert user.is_admin is False
    assert "password_hash" not in user.model_dump()


def test_wrong_password_and_unknown_user_look_the_same(auth_service, alice):
    assert auth_service.validate_user("alice", "wrong") is None
    assert auth_service.validate_user("nobody", "correct") is None


def test_oauth_only_account_cannot_password_login(auth_service, pending_user):
    assert auth_service.validate_user(pending_user.username, "") is None
    assert auth_service.validate_user(pending_user.username, "anything") is None


def test_bootstrapped_admin_can_log_in(auth_service):
    user = auth_service.validate_user("admin", "admin-pass")

    assert user is not None
    assert user.is_admin is True
    assert user.email == "admin@example.com"


def test_token_round_trip(auth_service, alice):
    claims = auth_service.verify_token(auth_service.generate_token(alice))

    assert claims["id"] == alice.id
    assert claims["username"] == "alice"
    assert claims["isAdmin"] is False
    assert claims["exp"] - claims["iat"] == 24 * 60 * 60


def test_tampered_token_is_invalid(auth_service, alice):
    token = auth_service.generate_token(alice)
    header, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

    assert auth_service.verify_token(f"{header}.{payload}.{flipped}") is None


def test_token_signed_with_other_secret_is_invalid(auth_service, alice):
    forged = jwt.encode({"id": alice.id, "username": "alice", "isAdmin": True}, "other", algorithm="HS256")

    assert auth_service.verify_token(forged) is None


def test_expired_token_is_invalid(app, alice):
    expired_service = AuthService(
        app.state.user_service._session_factory,
        JWT_SECRET,
        token_ttl=timedelta(seconds=-10),
        bcrypt_rounds=4,
    )
    token = expired_service.generate_token(alice)

    assert expired_service.verify_token(token) is None


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_token_is_invalid(auth_service, token):
    assert auth_service.verify_token(token) is None


def test_token_without_id_claim_is_invalid(auth_service):
    token = jwt.encode({"username": "alice"}, JWT_SECRET, algorithm="HS256")

    assert auth_service.verify_token(token) is None


def test_get_user_by_id_sees_admin_changes(auth_service, user_service, pending_user):
    assert auth_service.get_user_by_id(pending_user.id).is_approved is False

    user_service.approve(pending_user.id)

    assert auth_service.get_user_by_id(pending_user.id).is_approved is True


def test_get_user_by_id_unknown(auth_service):
    assert auth_service.get_user_by_id("missing") is None


class _BrokenSession:
    def __enter__(self):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    def __exit__(self, *exc):
        return False


def test_storage_failure_is_distinct_from_no_match():
    service = AuthService(lambda: _BrokenSession(), JWT_SECRET, bcrypt_rounds=4)

    with pytest.raises(StorageError):
        service.validate_user("alice", "correct")
    with pytest.raises(StorageError):
        service.get_user_by_id("abc")
