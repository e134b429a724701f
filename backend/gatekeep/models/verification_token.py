"""Single-use verification token record, stored as JSON in the key-value store."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from gatekeep.models.base import utcnow


class TokenPurpose(StrEnum):
    """Flow a verification token was issued for."""

    EMAIL_VERIFY = "email_verify"
    MAGIC_LINK = "magic_link"
    PASSWORD_RESET = "password_reset"


class VerificationToken(BaseModel):
    """A typed, time-bound, single-use token.

    Attributes:
        token: Random token string (primary key).
        user_id: Identity the token acts for.
        purpose: Flow that may consume it.
        created_at: Issue time.
        expires_at: Expiry time.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    user_id: str
    purpose: TokenPurpose
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at
