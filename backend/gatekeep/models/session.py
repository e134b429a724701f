"""Session record, stored as JSON in the key-value store.

Sessions are opaque bearer tokens. The record under "session:<token>" is
authoritative; the per-user index is a derived mirror maintained by
SessionRegistry.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from gatekeep.models.base import utcnow


class Session(BaseModel):
    """An authenticated session.

    Attributes:
        token: Opaque high-entropy token (primary key).
        user_id: Owning identity.
        created_at: When the session was minted.
        expires_at: Logical expiry, checked independently of store TTL.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at
