"""Repository for ProviderLink records.

Access tokens are encrypted with TokenCipher before they reach the store
and decrypted only on explicit request.
"""

from gatekeep.core.encryption import TokenCipher
from gatekeep.models.base import utcnow
from gatekeep.models.provider_link import ProviderLink
from gatekeep.models.user import new_id
from gatekeep.repositories.record_store import RecordStore


class ProviderLinkRepository:
    """Provider link lookups and writes over a RecordStore.

    Args:
        store: Record store for ProviderLink.
        cipher: Cipher for access tokens at rest.
    """

    def __init__(self, store: RecordStore[ProviderLink], cipher: TokenCipher) -> None:
        self._store = store
        self._cipher = cipher

    async def get_by_provider_identity(
        self, provider_type: str, provider_user_id: str
    ) -> ProviderLink | None:
        """Find the link for an external identity, whoever owns it."""
        return await self._store.get_by_fields(
            provider_type=provider_type,
            provider_user_id=provider_user_id,
        )

    async def get_for_user(self, user_id: str, provider_type: str) -> ProviderLink | None:
        return await self._store.get_by_fields(user_id=user_id, provider_type=provider_type)

    async def list_for_user(self, user_id: str) -> list[ProviderLink]:
        return await self._store.list_by_fields(user_id=user_id)

    async def upsert(
        self,
        *,
        user_id: str,
        provider_type: str,
        provider_user_id: str,
        access_token: str,
        existing: ProviderLink | None = None,
    ) -> ProviderLink:
        """Create a link, or refresh an existing one with a new token.

        Args:
            user_id: Owning identity.
            provider_type: Provider name.
            provider_user_id: Provider-side user id.
            access_token: Plaintext access token (encrypted before storage).
            existing: Link being refreshed, if any.

        Returns:
            The stored link.

        Raises:
            DuplicateRecordError: If another user holds the external identity.
        """
        now = utcnow()
        encrypted = self._cipher.encrypt(access_token)
        if existing is not None:
            existing.provider_user_id = provider_user_id
            existing.access_token = encrypted
            existing.updated_at = now
            link = existing
        else:
            link = ProviderLink(
                id=new_id(),
                user_id=user_id,
                provider_type=provider_type,
                provider_user_id=provider_user_id,
                access_token=encrypted,
                created_at=now,
                updated_at=now,
            )
        await self._store.set(link)
        return link

    def access_token(self, link: ProviderLink) -> str:
        """Decrypt a link's access token.

        Raises:
            TokenDecryptionError: If the stored token cannot be decrypted.
        """
        return self._cipher.decrypt(link.access_token)

    async def delete(self, link_id: str) -> None:
        await self._store.delete(link_id)
