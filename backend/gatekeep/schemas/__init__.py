"""Pydantic response schemas for API endpoints."""

from gatekeep.schemas.identity import (
    CascadeDeletionResponse,
    MessageResponse,
    ProviderLinkResponse,
    SessionResponse,
    UserResponse,
)

__all__ = [
    "CascadeDeletionResponse",
    "MessageResponse",
    "ProviderLinkResponse",
    "SessionResponse",
    "UserResponse",
]
