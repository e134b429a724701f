"""Argon2id password hashing.

Credentials are stored in the self-describing PHC string format:

    $argon2id$v=19$m=<memory KiB>,t=<iterations>,p=<parallelism>$<salt>$<digest>

Salt and digest use standard base64 without padding. Verification reads the
cost parameters back out of the stored string, so raising the configured
cost only affects newly hashed passwords.

Hashing is deliberately slow and memory-hungry, so both hash() and verify()
run in a worker thread instead of on the event loop.
"""

import asyncio
import base64
import binascii
import re
import secrets
from dataclasses import dataclass

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from gatekeep.core.config import settings

_ALGORITHM_TAG = "argon2id"
_VERSION_SEGMENT = "v=19"
_PARAMS_PATTERN = re.compile(r"^m=(\d+),t=(\d+),p=(\d+)$")

SALT_LENGTH = 16
DIGEST_LENGTH = 32


class MalformedCredentialError(ValueError):
    """Stored credential string cannot be parsed as an Argon2id hash.

    Distinct from a password mismatch: this means the stored data is bad,
    not that the user typed the wrong password.
    """


@dataclass(frozen=True)
class Argon2Parameters:
    """Argon2id cost parameters.

    Attributes:
        memory_kib: Memory cost in KiB.
        iterations: Number of passes over memory.
        parallelism: Number of lanes.
    """

    memory_kib: int = 64 * 1024
    iterations: int = 3
    parallelism: int = 4

    @classmethod
    def from_settings(cls) -> "Argon2Parameters":
        """Build parameters from application settings."""
        return cls(
            memory_kib=settings.password_memory_kib,
            iterations=settings.password_iterations,
            parallelism=settings.password_parallelism,
        )


def _decode_b64(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedCredentialError("Credential payload is not valid base64") from e


def parse_credential(encoded: str) -> tuple[Argon2Parameters, bytes, bytes]:
    """Split an encoded credential into parameters, salt, and digest.

    Args:
        encoded: Stored credential string.

    Returns:
        Tuple of (parameters, salt, digest).

    Raises:
        MalformedCredentialError: If any segment fails to parse.
    """
    parts = encoded.split("$")
    if len(parts) != 6 or parts[0] != "":
        raise MalformedCredentialError("Credential must have six '$'-delimited fields")
    if parts[1] != _ALGORITHM_TAG:
        raise MalformedCredentialError("Unsupported credential algorithm")
    if parts[2] != _VERSION_SEGMENT:
        raise MalformedCredentialError("Unsupported credential version")

    match = _PARAMS_PATTERN.match(parts[3])
    if match is None:
        raise MalformedCredentialError("Credential parameter segment is malformed")
    params = Argon2Parameters(
        memory_kib=int(match.group(1)),
        iterations=int(match.group(2)),
        parallelism=int(match.group(3)),
    )

    salt = _decode_b64(parts[4])
    digest = _decode_b64(parts[5])
    if not salt or not digest:
        raise MalformedCredentialError("Credential salt or digest is empty")
    return params, salt, digest


class PasswordHasher:
    """Hash and verify passwords with Argon2id.

    Wraps argon2-cffi so the blocking C call runs off the event loop and
    unparseable stored hashes surface as MalformedCredentialError instead of
    a silent mismatch.
    """

    def __init__(self, params: Argon2Parameters | None = None) -> None:
        self.params = params or Argon2Parameters.from_settings()
        self._dummy_credential: str | None = None
        self._hasher = _Argon2Hasher(
            time_cost=self.params.iterations,
            memory_cost=self.params.memory_kib,
            parallelism=self.params.parallelism,
            hash_len=DIGEST_LENGTH,
            salt_len=SALT_LENGTH,
            type=Type.ID,
        )

    async def hash(self, password: str) -> str:
        """Hash a password with a fresh random salt.

        Args:
            password: Plaintext password.

        Returns:
            Encoded Argon2id credential string.
        """
        return await asyncio.to_thread(self._hasher.hash, password)

    async def verify(self, password: str, encoded: str) -> bool:
        """Check a password against a stored credential.

        Args:
            password: Plaintext password to check.
            encoded: Stored credential string.

        Returns:
            True if the password matches, False if it does not.

        Raises:
            MalformedCredentialError: If the stored credential cannot be parsed.
        """
        parse_credential(encoded)
        return await asyncio.to_thread(self._verify_sync, password, encoded)

    def _verify_sync(self, password: str, encoded: str) -> bool:
        # argon2_verify recomputes with the embedded parameters and compares
        # in constant time.
        try:
            return self._hasher.verify(encoded, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as e:
            raise MalformedCredentialError("Credential could not be verified") from e

    async def verify_dummy(self, password: str) -> None:
        """Spend one verification's worth of work against a throwaway hash.

        Used when there is no stored credential to check, so that the
        unknown-account path costs the same as a wrong password.
        """
        if self._dummy_credential is None:
            self._dummy_credential = await self.hash(secrets.token_urlsafe(16))
        await asyncio.to_thread(self._verify_sync, password, self._dummy_credential)
