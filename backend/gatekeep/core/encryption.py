"""Encryption at rest for OAuth provider access tokens (Fernet)."""

from cryptography.fernet import Fernet, InvalidToken

from gatekeep.core.config import settings


class TokenDecryptionError(ValueError):
    """Stored ciphertext could not be decrypted with the configured key."""


class TokenCipher:
    """Symmetric encrypt/decrypt for short secrets.

    Args:
        key: URL-safe base64 Fernet key. Generate with Fernet.generate_key().
    """

    def __init__(self, key: str | bytes) -> None:
        if not key:
            msg = "ENCRYPTION_KEY is not configured"
            raise ValueError(msg)
        key_bytes = key.encode() if isinstance(key, str) else key
        self._fernet = Fernet(key_bytes)

    @classmethod
    def from_settings(cls) -> "TokenCipher":
        return cls(settings.encryption_key.get_secret_value())

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, encrypted_value: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            TokenDecryptionError: If the ciphertext is corrupt or was
                encrypted under a different key.
        """
        try:
            return self._fernet.decrypt(encrypted_value.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("Stored token could not be decrypted") from e
