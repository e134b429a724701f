"""Key-value entry backing sessions and verification tokens in SQL.

expires_at is a unix timestamp in seconds; NULL means the entry never
expires. Expired rows are ignored on read and removed by purge_expired().
"""

from sqlalchemy import Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gatekeep.models.base import Base


class KeyValueEntry(Base):
    """One key with a JSON-encoded value.

    Attributes:
        key: Primary key (e.g. "session:<token>").
        value: JSON payload.
        expires_at: Unix expiry time, or NULL for no expiry.
    """

    __tablename__ = "kv_entries"
    __table_args__ = (Index("ix_kv_entries_expires_at", "expires_at"),)

    key: Mapped[str] = mapped_column(
        String(512),
        primary_key=True,
    )
    value: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
    expires_at: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )
