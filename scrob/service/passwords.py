from __future__ import annotations

from typing import Union

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    HashingError as Argon2HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)

from scrob.config import Settings
from scrob.logging import get_logger
from scrob.service.errors import HashingError

logger = get_logger(__name__)


class PasswordCodec:
    """Salted argon2id hashing of user passwords.

    Length and complexity policy is checked by the caller before hashing; the
    codec hashes whatever it is given and never truncates.
    """

    def __init__(
        self,
        *,
        time_cost: int = 2,
        memory_cost: int = 19456,
        parallelism: int = 1,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordCodec":
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )

    def hash(self, plaintext: Union[str, bytes]) -> str:
        try:
            return self._hasher.hash(plaintext)
        except Argon2HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingError() from exc

    def verify(self, plaintext: Union[str, bytes], stored_hash: str) -> bool:
        """Return whether ``plaintext`` matches ``stored_hash``.

        Only a mismatch is ``False``. A stored value that is not a well formed
        argon2 hash raises :class:`HashingError`.
        """
        try:
            return self._hasher.verify(stored_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            # Structurally broken hashes land here, not in the mismatch branch
            logger.error(
                "stored_password_hash_invalid",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise HashingError() from exc


__all__ = ["PasswordCodec"]
