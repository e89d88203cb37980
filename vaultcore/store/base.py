"""
Record Store Contract.

The persistence boundary used by key rotation and plaintext migration. A
store exposes the encrypted columns of its entities; it never sees secrets.

A record counts as "migrated" once its stored payload carries the current
key id. ``fetch_batch`` only returns records that are not migrated, so a
sweep that writes every batch back terminates, and a re-run sweep picks up
whatever a failed run left behind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from vaultcore.security.payload import EncryptedPayload

# Returns an error message for a bad stored value, None when it decrypts.
SampleCheck = Callable[[str], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class StoredCiphertext:
    """One encrypted column value awaiting re-encryption."""

    id: str
    ciphertext: str


@dataclass(frozen=True)
class StoredPlaintext:
    """One legacy plaintext column value awaiting encryption."""

    id: str
    value: str | bytes


@dataclass(frozen=True)
class SampleFailure:
    record_id: str
    error: str


class RecordStore(ABC):
    """Async record store used by the rotation and migration sweeps."""

    @abstractmethod
    async def count(self, entity_type: str, field: str, current_key_id: str) -> int:
        """Number of encrypted values not yet under ``current_key_id``."""
        pass

    @abstractmethod
    async def fetch_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        current_key_id: str,
    ) -> list[StoredCiphertext]:
        """Up to ``batch_size`` encrypted values not yet under ``current_key_id``."""
        pass

    @abstractmethod
    async def write_back(
        self,
        entity_type: str,
        record_id: str,
        field: str,
        payload: EncryptedPayload,
    ) -> bool:
        """
        Persist a payload (and its search hash and key id).

        Returns:
            False if the record no longer exists.
        """
        pass

    @abstractmethod
    async def validate_sample(
        self,
        entity_type: str,
        field: str,
        check: SampleCheck,
        sample_size: int,
    ) -> list[SampleFailure]:
        """Run ``check`` over up to ``sample_size`` stored values."""
        pass

    @abstractmethod
    async def fetch_plaintext_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[StoredPlaintext]:
        """Up to ``batch_size`` values that are not encrypted yet."""
        pass
