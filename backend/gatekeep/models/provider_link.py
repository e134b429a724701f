"""ProviderLink model: an identity's link to an external OAuth account.

(provider_type, provider_user_id) is unique across all users, so one
GitHub or Google account can sign in to at most one identity.
"""

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gatekeep.models.base import Base, TimestampMixin
from gatekeep.models.user import new_id


class ProviderLink(Base, TimestampMixin):
    """Linked OAuth account.

    Attributes:
        id: UUID string primary key.
        user_id: Owning identity.
        provider_type: Provider name ("github", "google").
        provider_user_id: Provider-side user id.
        access_token: Provider access token, Fernet-encrypted.
        created_at: When the link was first created (from TimestampMixin).
        updated_at: Last re-link (from TimestampMixin).
    """

    __tablename__ = "provider_links"
    __table_args__ = (
        UniqueConstraint(
            "provider_type",
            "provider_user_id",
            name="uq_provider_links_provider_identity",
        ),
        Index("ix_provider_links_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    provider_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    provider_user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    access_token: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
