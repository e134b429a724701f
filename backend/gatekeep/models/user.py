"""User model: the identity record.

An identity must always keep at least one way to sign in: a password hash
or one or more provider links. The identity service enforces this; the
table itself does not.
"""

import uuid

from sqlalchemy import Boolean, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from gatekeep.models.base import Base, TimestampMixin


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base, TimestampMixin):
    """User account.

    Attributes:
        id: UUID string primary key.
        email: Unique email address, stored lower-cased.
        name: Display name (from registration or OAuth profile).
        image: Avatar URL from an OAuth provider.
        email_verified: Whether the email address has been confirmed.
        password_hash: Argon2id credential. NULL for OAuth-only users.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    image: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None
