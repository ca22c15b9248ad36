"""
Data models for the app store.

"""
from datetime import datetime, UTC

from sqlalchemy import Boolean, Column, DateTime, String

from calibre_shelf.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    """
    Single table for user identity and authorization.

    - id: uuid4 hex for provisioned accounts, "<provider>-<subject>" for
      accounts created by an OAuth login. Never changes once assigned.
    - username: login name for password accounts; OAuth accounts use their
      email address.
    - password_hash: bcrypt hash; null for OAuth-only accounts, which can
      then never pass a password login.
    - is_admin / is_approved: changed only by admin actions. Unapproved
      accounts can sign in but cannot read the catalog.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=True)

    is_admin = Column(Boolean, nullable=False, default=False)
    is_approved = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
