"""Session storage with a per-user secondary index.

Keys:
    session:<token>                   authoritative Session record
    user_sessions:<user_id>:<token>   index marker, same TTL as the session

The two keys are written independently (there is no cross-key transaction),
so they can diverge:

- delete(token) removes only the session; the marker lingers until the next
  list_by_user() or delete_by_user() skips or removes it.
- A crash between the two writes in create() can leave a session with no
  marker. It is still resolvable and revocable by token, but invisible to
  per-user enumeration.

Enumeration therefore treats the index as a hint and dereferences every
marker, skipping the ones whose session is gone.
"""

import json
import logging
from dataclasses import dataclass, field

from gatekeep.models.session import Session
from gatekeep.repositories.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_SESSION_PREFIX = "session:"
_USER_INDEX_PREFIX = "user_sessions:"


def session_key(token: str) -> str:
    return f"{_SESSION_PREFIX}{token}"


def user_index_prefix(user_id: str) -> str:
    return f"{_USER_INDEX_PREFIX}{user_id}:"


def user_index_key(user_id: str, token: str) -> str:
    return f"{user_index_prefix(user_id)}{token}"


@dataclass
class BulkRevocation:
    """Outcome of delete_by_user().

    Attributes:
        revoked: Tokens whose session and marker were removed.
        failed: Tokens where a delete raised; the loop carried on.
    """

    revoked: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class SessionRegistry:
    """Create, resolve, enumerate, and revoke sessions.

    Args:
        store: Key-value store holding sessions and index markers.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def create(self, session: Session, ttl_seconds: int) -> None:
        """Store a session and its index marker.

        Args:
            session: Session to store.
            ttl_seconds: Store-level TTL for both keys (0 = no expiry).
        """
        await self._store.set(
            session_key(session.token),
            session.model_dump_json(),
            ttl_seconds,
        )
        marker = json.dumps({"token": session.token, "user_id": session.user_id})
        await self._store.set(
            user_index_key(session.user_id, session.token),
            marker,
            ttl_seconds,
        )

    async def get(self, token: str) -> Session | None:
        """Look up a session by token.

        Returns the record even if logically expired; callers check
        Session.is_expired() themselves.
        """
        raw = await self._store.get(session_key(token))
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    async def delete(self, token: str) -> None:
        """Remove the session record only; the index marker is cleaned lazily."""
        await self._store.delete(session_key(token))

    async def list_by_user(self, user_id: str, limit: int = 0) -> list[str]:
        """Tokens of the user's sessions that still exist.

        Args:
            user_id: Owning user.
            limit: Maximum markers to scan (0 = unbounded).

        Returns:
            Live tokens, in no particular order.
        """
        prefix = user_index_prefix(user_id)
        keys = await self._store.list_keys(prefix, limit)
        tokens: list[str] = []
        for key in keys:
            token = key[len(prefix) :]
            if await self._store.get(session_key(token)) is None:
                logger.debug(
                    "Skipping stale session index entry",
                    extra={"user_id": user_id},
                )
                continue
            tokens.append(token)
        return tokens

    async def delete_by_user(self, user_id: str) -> BulkRevocation:
        """Revoke every session indexed under the user.

        Each marker is handled independently: its session (if still present)
        and the marker itself are deleted, and a failure on one marker is
        logged and recorded without stopping the loop. Not atomic; an
        interruption leaves the remaining sessions live.

        Args:
            user_id: Owning user.

        Returns:
            Which tokens were revoked and which failed.
        """
        prefix = user_index_prefix(user_id)
        keys = await self._store.list_keys(prefix)
        outcome = BulkRevocation()
        for key in keys:
            token = key[len(prefix) :]
            try:
                await self._store.delete(session_key(token))
                await self._store.delete(key)
            except Exception:
                logger.warning(
                    "Failed to revoke session during bulk revocation",
                    extra={"user_id": user_id},
                    exc_info=True,
                )
                outcome.failed.append(token)
                continue
            outcome.revoked.append(token)
        return outcome
