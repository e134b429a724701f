"""Models for gatekeep.

All models are exported from this module for convenient imports:
    from gatekeep.models import User, ProviderLink, Session, ...

SQLAlchemy ORM (relational store):
- user.py: User (identity record)
- provider_link.py: ProviderLink (linked OAuth account)
- kv_entry.py: KeyValueEntry (SQL backing for the key-value store)

Pydantic records (JSON in the key-value store):
- session.py: Session
- verification_token.py: VerificationToken, TokenPurpose
"""

from gatekeep.models.base import Base, TimestampMixin, utcnow
from gatekeep.models.kv_entry import KeyValueEntry
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.session import Session
from gatekeep.models.user import User
from gatekeep.models.verification_token import TokenPurpose, VerificationToken

__all__ = [
    "Base",
    "KeyValueEntry",
    "ProviderLink",
    "Session",
    "TimestampMixin",
    "TokenPurpose",
    "User",
    "VerificationToken",
    "utcnow",
]
