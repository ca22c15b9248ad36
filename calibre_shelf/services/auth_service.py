"""
Auth service: credential checks, session token issuance and verification.

Tokens are stateless: a token is valid while its signature verifies and it
has not expired. There is no server-side revocation, so rotating JWT_SECRET
is the only way to invalidate outstanding tokens.
"""
import logging
from datetime import timedelta

from jose import JWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from calibre_shelf.config import TOKEN_TTL
from calibre_shelf.models import User
from calibre_shelf.schemas import UserOut
from calibre_shelf.security import create_jwt, decode_jwt, hash_password, verify_password
from calibre_shelf.services.errors import StorageError

logger = logging.getLogger(__name__)


class AuthService:
    """Validates credentials against the app store and mints/reads session tokens."""

    def __init__(
        self,
        session_factory: sessionmaker,
        secret: str,
        token_ttl: timedelta = TOKEN_TTL,
        bcrypt_rounds: int = 12,
    ):
        self._session_factory = session_factory
        self._secret = secret
        self._token_ttl = token_ttl
        # Compared against when there is no stored hash, so an unknown
        # username costs the same bcrypt check as a wrong password.
        self._dummy_hash = hash_password("calibre-shelf-dummy", rounds=bcrypt_rounds)

    def validate_user(self, username: str, password: str) -> UserOut | None:
        """
        Return the public user when username and password match, else None.
        Unknown users, OAuth-only accounts and wrong passwords are
        indistinguishable. Raises StorageError if the lookup fails.
        """
        try:
            with self._session_factory() as db:
                row = db.query(User).filter(User.username == username).first()
                user = UserOut.model_validate(row) if row is not None else None
                password_hash = row.password_hash if row is not None else None
        except SQLAlchemyError as e:
            logger.exception("User lookup failed during login")
            raise StorageError("user lookup failed") from e

        if password_hash is None:
            verify_password(password, self._dummy_hash)
            return None
        if not verify_password(password, password_hash):
            return None
        return user

    def generate_token(self, user: UserOut) -> str:
        claims = {
            "sub": user.id,
            "id": user.id,
            "username": user.username,
            "isAdmin": user.is_admin,
        }
        return create_jwt(claims, self._secret, self._token_ttl)

    def verify_token(self, token: str) -> dict | None:
        """Return the token's claims, or None for any malformed, forged or expired token."""
        try:
            claims = decode_jwt(token, self._secret)
        except JWTError:
            return None
        if not claims.get("id"):
            return None
        return claims

    def get_user_by_id(self, user_id: str) -> UserOut | None:
        """Fresh read of the account so admin changes apply on the next request."""
        try:
            with self._session_factory() as db:
                row = db.get(User, user_id)
                return UserOut.model_validate(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.exception("User lookup failed for id=%s", user_id)
            raise StorageError("user lookup failed") from e
