"""
Password hashing and JWT creation/verification for session management.

Sessions are identified by a JWT sent as a Bearer token (or, after an OAuth
login, stored in an HttpOnly cookie). Algorithm: HS256.
"""
from datetime import datetime, timedelta, UTC

import bcrypt
from jose import jwt

from calibre_shelf.config import JWT_ALGORITHM

# bcrypt only looks at the first 72 bytes; newer releases reject longer input
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_jwt(claims: dict, secret: str, ttl: timedelta) -> str:
    """Sign claims with iat = now and exp = now + ttl."""
    now = datetime.now(UTC)
    payload = {**claims, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str, secret: str) -> dict:
    """Decode and verify JWT; raises JWTError if invalid or expired."""
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
