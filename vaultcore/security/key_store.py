"""
Key Store Module.

Holds the active secret pointer, the retained (previous) secrets and the
metadata of each. Rotation talks to the store only through ``swap``,
``rollback`` and ``complete`` so a persistent backend can replace the
in-memory one without touching the rotation code.

Retained secrets are ordered newest first; ``get_previous()`` is the head of
that list.
"""

import copy
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from vaultcore.security.payload import ALGORITHM

_logger = logging.getLogger(__name__)


def generate_key_id(secret: str) -> str:
    """Short, non-reversible fingerprint of a secret."""
    return hashlib.sha256((secret + "KEY_ID").encode("utf-8")).hexdigest()[:16]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyStatus(str, Enum):
    ACTIVE = "active"
    ROTATING = "rotating"
    RETIRED = "retired"
    COMPROMISED = "compromised"


class KeyOperation(str, Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


@dataclass
class KeyUsage:
    encryption_operations: int = 0
    decryption_operations: int = 0


@dataclass
class KeyMetadata:
    """Lifecycle metadata for one secret."""

    key_id: str
    version: int
    algorithm: str = ALGORITHM
    created_at: datetime = field(default_factory=_utcnow)
    rotated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    status: KeyStatus = KeyStatus.ACTIVE
    usage: KeyUsage = field(default_factory=KeyUsage)


@dataclass
class KeyMaterial:
    """A secret together with its metadata. The secret is never logged."""

    secret: str = field(repr=False)
    metadata: KeyMetadata

    @classmethod
    def create(
        cls,
        secret: str,
        version: int,
        status: KeyStatus = KeyStatus.ACTIVE,
        created_at: Optional[datetime] = None,
    ) -> "KeyMaterial":
        return cls(
            secret=secret,
            metadata=KeyMetadata(
                key_id=generate_key_id(secret),
                version=version,
                status=status,
                created_at=created_at or _utcnow(),
            ),
        )

    @property
    def key_id(self) -> str:
        return self.metadata.key_id

    @property
    def version(self) -> int:
        return self.metadata.version


@dataclass
class KeySwap:
    """Snapshot returned by ``swap`` and handed back to ``rollback``/``complete``."""

    outgoing: KeyMaterial
    incoming: KeyMaterial
    outgoing_status: KeyStatus


class KeyStore(ABC):
    """Storage boundary for key pointers and metadata."""

    @abstractmethod
    def get_active(self) -> KeyMaterial:
        """Return the key that encrypts new data."""
        pass

    @abstractmethod
    def get_previous(self) -> Optional[KeyMaterial]:
        """Return the most recently retained key, if any."""
        pass

    @abstractmethod
    def get_retained(self) -> list[KeyMaterial]:
        pass

    @abstractmethod
    def candidates(self) -> list[KeyMaterial]:
        """Keys to try on decrypt: active first, then retained newest first."""
        pass

    @abstractmethod
    def find(self, key_id: str) -> Optional[KeyMaterial]:
        pass

    @abstractmethod
    def swap(self, new_secret: str) -> KeySwap:
        """Make ``new_secret`` active and retain the outgoing key."""
        pass

    @abstractmethod
    def rollback(self, swap: KeySwap, retention: timedelta) -> None:
        """Undo a swap, keeping the incoming key as a retained secret."""
        pass

    @abstractmethod
    def complete(self, swap: KeySwap, retention: timedelta) -> None:
        """Retire the outgoing key of a successful swap."""
        pass

    @abstractmethod
    def purge_expired(self, now: Optional[datetime] = None) -> list[KeyMaterial]:
        """Discard retained keys past their expiry. Returns the removed keys."""
        pass

    @abstractmethod
    def record_usage(self, key_id: str, operation: KeyOperation) -> None:
        pass

    @abstractmethod
    def mark_compromised(self, key_id: str) -> None:
        pass

    @abstractmethod
    def snapshot(self) -> list[KeyMetadata]:
        pass


class InMemoryKeyStore(KeyStore):
    """
    Process-local key store.

    All pointer changes happen under one lock so readers never observe a
    half-applied swap. Getters return the live KeyMaterial objects; callers
    that need a stable view should copy the metadata.
    """

    def __init__(
        self,
        active_secret: str,
        active_version: int = 1,
        previous_secrets: Optional[list[str]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._active = KeyMaterial.create(active_secret, active_version)
        self._retained: list[KeyMaterial] = []

        for offset, secret in enumerate(previous_secrets or [], start=1):
            if secret == active_secret:
                continue
            self._retained.append(
                KeyMaterial.create(
                    secret,
                    max(active_version - offset, 0),
                    status=KeyStatus.RETIRED,
                )
            )

    def get_active(self) -> KeyMaterial:
        with self._lock:
            return self._active

    def get_previous(self) -> Optional[KeyMaterial]:
        with self._lock:
            return self._retained[0] if self._retained else None

    def get_retained(self) -> list[KeyMaterial]:
        with self._lock:
            return list(self._retained)

    def candidates(self) -> list[KeyMaterial]:
        with self._lock:
            return [self._active, *self._retained]

    def find(self, key_id: str) -> Optional[KeyMaterial]:
        with self._lock:
            for key in (self._active, *self._retained):
                if key.key_id == key_id:
                    return key
        return None

    def swap(self, new_secret: str) -> KeySwap:
        with self._lock:
            version = max(k.version for k in (self._active, *self._retained)) + 1
            incoming = KeyMaterial.create(new_secret, version)
            outgoing = self._active

            swap = KeySwap(
                outgoing=outgoing,
                incoming=incoming,
                outgoing_status=outgoing.metadata.status,
            )
            if outgoing.metadata.status is not KeyStatus.COMPROMISED:
                outgoing.metadata.status = KeyStatus.ROTATING

            self._retained.insert(0, outgoing)
            self._active = incoming

        _logger.info(
            f"Active key swapped: {outgoing.key_id} (v{outgoing.version}) -> "
            f"{incoming.key_id} (v{incoming.version})"
        )
        return swap

    def rollback(self, swap: KeySwap, retention: timedelta) -> None:
        now = _utcnow()
        with self._lock:
            self._retained = [
                k for k in self._retained
                if k.key_id not in (swap.outgoing.key_id, swap.incoming.key_id)
            ]
            swap.outgoing.metadata.status = swap.outgoing_status
            self._active = swap.outgoing

            # Records written under the candidate before the failure must stay readable.
            swap.incoming.metadata.status = KeyStatus.RETIRED
            swap.incoming.metadata.rotated_at = now
            swap.incoming.metadata.expires_at = now + retention
            self._retained.insert(0, swap.incoming)

        _logger.warning(
            f"Key swap rolled back: active key restored to {swap.outgoing.key_id}, "
            f"candidate {swap.incoming.key_id} retained until {now + retention:%Y-%m-%d}"
        )

    def complete(self, swap: KeySwap, retention: timedelta) -> None:
        now = _utcnow()
        with self._lock:
            metadata = swap.outgoing.metadata
            if metadata.status is not KeyStatus.COMPROMISED:
                metadata.status = KeyStatus.RETIRED
            metadata.rotated_at = now
            metadata.expires_at = now + retention

    def purge_expired(self, now: Optional[datetime] = None) -> list[KeyMaterial]:
        now = now or _utcnow()
        with self._lock:
            removed = [
                k for k in self._retained
                if k.metadata.expires_at is not None and k.metadata.expires_at <= now
            ]
            self._retained = [k for k in self._retained if k not in removed]
        return removed

    def record_usage(self, key_id: str, operation: KeyOperation) -> None:
        with self._lock:
            for key in (self._active, *self._retained):
                if key.key_id == key_id:
                    if operation is KeyOperation.ENCRYPT:
                        key.metadata.usage.encryption_operations += 1
                    else:
                        key.metadata.usage.decryption_operations += 1
                    return

    def mark_compromised(self, key_id: str) -> None:
        with self._lock:
            for key in (self._active, *self._retained):
                if key.key_id == key_id:
                    key.metadata.status = KeyStatus.COMPROMISED
                    return

    def snapshot(self) -> list[KeyMetadata]:
        """Copies of all key metadata, active first."""
        with self._lock:
            return [copy.deepcopy(k.metadata) for k in (self._active, *self._retained)]
