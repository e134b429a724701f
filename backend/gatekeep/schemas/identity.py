"""Response schemas for identity endpoints.

Secrets never leave the service: UserResponse omits the password hash and
ProviderLinkResponse omits the encrypted access token.
"""

from datetime import datetime

from pydantic import BaseModel

from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.session import Session
from gatekeep.models.user import User
from gatekeep.services.identity_service import CascadeDeletion


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    """Public view of a user account."""

    id: str
    email: str
    name: str | None
    image: str | None
    email_verified: bool
    has_password: bool
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            image=user.image,
            email_verified=user.email_verified,
            has_password=user.has_password,
            created_at=user.created_at,
        )


class ProviderLinkResponse(BaseModel):
    """A linked OAuth account, without its access token."""

    provider_type: str
    provider_user_id: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_link(cls, link: ProviderLink) -> "ProviderLinkResponse":
        return cls(
            provider_type=link.provider_type,
            provider_user_id=link.provider_user_id,
            created_at=link.created_at,
            updated_at=link.updated_at,
        )


class SessionResponse(BaseModel):
    """Session as shown to administrators (token included for revocation)."""

    token: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            token=session.token,
            user_id=session.user_id,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class CascadeDeletionResponse(BaseModel):
    user_id: str
    sessions_revoked: int
    sessions_failed: int
    links_deleted: int

    @classmethod
    def from_outcome(cls, outcome: CascadeDeletion) -> "CascadeDeletionResponse":
        return cls(
            user_id=outcome.user_id,
            sessions_revoked=outcome.sessions_revoked,
            sessions_failed=outcome.sessions_failed,
            links_deleted=outcome.links_deleted,
        )
