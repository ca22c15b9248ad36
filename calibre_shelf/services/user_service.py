"""
User service: account provisioning, OAuth account matching and the admin
approval workflow. Every call opens its own session and commits before
returning.
"""
import logging
import uuid
from datetime import datetime, UTC

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from calibre_shelf.models import User
from calibre_shelf.schemas import UserOut
from calibre_shelf.security import hash_password
from calibre_shelf.services.errors import StorageError

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, session_factory: sessionmaker, bcrypt_rounds: int = 12):
        self._session_factory = session_factory
        self._bcrypt_rounds = bcrypt_rounds

    def create_user(
        self,
        username: str,
        email: str,
        password: str | None = None,
        *,
        name: str | None = None,
        is_admin: bool = False,
        is_approved: bool = False,
    ) -> UserOut:
        """Insert a new account. Raises StorageError on duplicates or store failure."""
        user = User(
            id=uuid.uuid4().hex,
            username=username,
            name=name or username,
            email=email,
            password_hash=(
                hash_password(password, rounds=self._bcrypt_rounds) if password else None
            ),
            is_admin=is_admin,
            is_approved=is_approved,
        )
        try:
            with self._session_factory() as db:
                db.add(user)
                db.commit()
                return UserOut.model_validate(user)
        except SQLAlchemyError as e:
            logger.exception("Failed to create user %s", username)
            raise StorageError("user creation failed") from e

    def find_or_create_oauth_user(
        self, provider: str, subject: str, email: str, name: str | None
    ) -> UserOut:
        """
        Return the account for this OAuth identity, matching by id or by
        email (so the bootstrapped admin can sign in through a provider).
        New accounts start unapproved and non-admin.
        """
        user_id = f"{provider}-{subject}"
        try:
            with self._session_factory() as db:
                existing = (
                    db.query(User)
                    .filter(or_(User.id == user_id, User.email == email))
                    .first()
                )
                if existing is not None:
                    return UserOut.model_validate(existing)
                username = email
                if db.query(User).filter(User.username == email).first() is not None:
                    username = user_id
                user = User(
                    id=user_id,
                    username=username,
                    name=name or email,
                    email=email,
                    is_admin=False,
                    is_approved=False,
                )
                db.add(user)
                db.commit()
                logger.info("Created %s account %s awaiting approval", provider, user_id)
                return UserOut.model_validate(user)
        except SQLAlchemyError as e:
            logger.exception("Failed to find or create %s user %s", provider, user_id)
            raise StorageError("oauth user lookup failed") from e

    def list_pending(self) -> list[UserOut]:
        """Unapproved accounts, newest first."""
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(User)
                    .filter(User.is_approved.is_(False))
                    .order_by(User.created_at.desc(), User.id)
                    .all()
                )
                return [UserOut.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("Failed to list pending users")
            raise StorageError("pending user listing failed") from e

    def approve(self, user_id: str) -> UserOut | None:
        try:
            with self._session_factory() as db:
                user = db.get(User, user_id)
                if user is None:
                    return None
                user.is_approved = True
                user.updated_at = datetime.now(UTC)
                db.commit()
                return UserOut.model_validate(user)
        except SQLAlchemyError as e:
            logger.exception("Failed to approve user id=%s", user_id)
            raise StorageError("user approval failed") from e

    def reject(self, user_id: str) -> bool:
        """Delete an unapproved account. Approved or unknown accounts are left alone."""
        try:
            with self._session_factory() as db:
                user = db.get(User, user_id)
                if user is None or user.is_approved:
                    return False
                db.delete(user)
                db.commit()
                return True
        except SQLAlchemyError as e:
            logger.exception("Failed to reject user id=%s", user_id)
            raise StorageError("user rejection failed") from e

    def ensure_admin(self, email: str, username: str, password: str | None = None) -> UserOut:
        """
        Make sure an approved admin account with this email exists. An
        existing account is promoted; its password is only set if it has none.
        """
        try:
            with self._session_factory() as db:
                user = db.query(User).filter(User.email == email).first()
                if user is None:
                    user = User(
                        id=uuid.uuid4().hex,
                        username=username,
                        name="Admin User",
                        email=email,
                    )
                    db.add(user)
                    logger.info("Bootstrapping admin account %s", email)
                user.is_admin = True
                user.is_approved = True
                if password and not user.password_hash:
                    user.password_hash = hash_password(password, rounds=self._bcrypt_rounds)
                db.commit()
                return UserOut.model_validate(user)
        except SQLAlchemyError as e:
            logger.exception("Failed to bootstrap admin %s", email)
            raise StorageError("admin bootstrap failed") from e
