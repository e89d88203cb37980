"""
Key Rotation Module.

Replaces the master secret and re-encrypts every stored payload under it.

Phases:

    Idle -> Preparing -> Counting -> KeySwapped -> ReEncrypting
         -> Validating -> Completed | RolledBack

The outgoing secret stays in the key store throughout, so every record is
readable at every point of the sweep. If any phase after Preparing fails, the
previous active secret is restored and the candidate is kept as a retired
secret, because records already rewritten under it must stay decryptable.

Rotation is idempotent: records are selected by the key id stored with their
payload, so re-running with the same (now active) secret only touches what a
failed run left behind.
"""

import asyncio
import copy
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from vaultcore.security.encryption import CryptoEngine
from vaultcore.security.exceptions import (
    BatchFailure,
    DecryptionFailure,
    EncryptionError,
    RotationFailure,
    RotationInProgress,
    ValidationFailure,
)
from vaultcore.security.field_codec import ENTITY_FIELDS, get_field_spec
from vaultcore.security.key_store import (
    KeyMaterial,
    KeyStatus,
    KeyStore,
    KeySwap,
    generate_key_id,
)
from vaultcore.security.payload import EncryptedPayload
from vaultcore.security.validator import KeyValidator
from vaultcore.store.base import RecordStore, StoredCiphertext

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationPhase(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    COUNTING = "counting"
    KEY_SWAPPED = "key_swapped"
    RE_ENCRYPTING = "re_encrypting"
    VALIDATING = "validating"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


@dataclass
class RotationProgress:
    total: int = 0
    processed: int = 0
    failed: int = 0


@dataclass
class RotationError:
    entity_type: str
    field: str
    record_ids: list[str]
    error: str


@dataclass
class RotationStatus:
    in_progress: bool = False
    phase: RotationPhase = RotationPhase.IDLE
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: RotationProgress = field(default_factory=RotationProgress)
    errors: list[RotationError] = field(default_factory=list)
    old_key_id: Optional[str] = None
    new_key_id: Optional[str] = None


@dataclass
class RotationConfig:
    """Rotation policy and sweep limits."""

    rotation_interval_days: int = 90
    retention_period_days: int = 180
    max_key_operations: int = 1_000_000
    batch_size: int = 100
    batch_timeout: float = 30.0
    validation_sample_size: int = 1000

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_period_days)

    @classmethod
    def from_settings(cls, settings: Any) -> "RotationConfig":
        return cls(
            rotation_interval_days=settings.rotation_interval_days,
            retention_period_days=settings.retention_period_days,
            max_key_operations=settings.max_key_operations,
            batch_size=settings.rotation_batch_size,
            batch_timeout=settings.rotation_batch_timeout,
            validation_sample_size=settings.validation_sample_size,
        )


ProgressCallback = Callable[[RotationStatus], None]


class KeyRotationManager:
    """
    Drives key rotation against a record store.

    Only one rotation may run per manager; a second call while one is
    running fails fast with RotationInProgress instead of queueing.
    """

    def __init__(
        self,
        key_store: KeyStore,
        engine: CryptoEngine,
        record_store: RecordStore,
        validator: KeyValidator,
        config: Optional[RotationConfig] = None,
        entity_fields: Optional[dict[str, list[str]]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._key_store = key_store
        self._engine = engine
        self._record_store = record_store
        self._validator = validator
        self._config = config or RotationConfig()
        self._entity_fields = entity_fields or ENTITY_FIELDS
        self._on_progress = on_progress

        self._lock = asyncio.Lock()
        self._status = RotationStatus()

    @property
    def config(self) -> RotationConfig:
        return self._config

    def get_rotation_status(self) -> RotationStatus:
        """Snapshot of the current (or last) rotation."""
        return copy.deepcopy(self._status)

    # =========================================================================
    # Policy
    # =========================================================================

    def should_rotate(self, now: Optional[datetime] = None) -> bool:
        """Check key age, usage ceiling and compromise status."""
        now = now or _utcnow()
        metadata = self._key_store.get_active().metadata

        if metadata.status is KeyStatus.COMPROMISED:
            return True
        if now - metadata.created_at >= timedelta(days=self._config.rotation_interval_days):
            return True
        return metadata.usage.encryption_operations > self._config.max_key_operations

    async def revoke_key(self, reason: str) -> RotationStatus:
        """Mark the active key compromised and rotate away from it immediately."""
        active = self._key_store.get_active()
        self._key_store.mark_compromised(active.key_id)
        _logger.critical(f"Key {active.key_id} (v{active.version}) revoked: {reason}")
        return await self.rotate_key()

    def cleanup_expired_keys(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Discard retained secrets whose retention window has elapsed.

        Returns:
            Tuple of (removed count, still retained count).
        """
        removed = self._key_store.purge_expired(now)
        for key in removed:
            self._engine.derivation.forget(key.secret)
            _logger.info(f"Discarded expired key {key.key_id} (v{key.version})")
        return len(removed), len(self._key_store.get_retained())

    # =========================================================================
    # Rotation
    # =========================================================================

    async def rotate_key(self, new_secret: Optional[str] = None) -> RotationStatus:
        """
        Rotate to ``new_secret`` (generated when omitted).

        Passing the currently active secret resumes an interrupted sweep
        without swapping keys.

        Returns:
            Final RotationStatus snapshot.

        Raises:
            RotationInProgress: Another rotation is running.
            ValidationFailure: The candidate secret was rejected; nothing changed.
            RotationFailure: A later phase failed; key pointers were rolled back.
        """
        if self._lock.locked():
            raise RotationInProgress("Key rotation already in progress")

        async with self._lock:
            return await self._rotate(new_secret)

    async def _rotate(self, new_secret: Optional[str]) -> RotationStatus:
        active = self._key_store.get_active()
        self._status = RotationStatus(
            in_progress=True,
            phase=RotationPhase.PREPARING,
            started_at=_utcnow(),
            old_key_id=active.key_id,
        )
        self._notify()

        try:
            candidate = self._prepare(new_secret)
        except Exception:
            self._status.in_progress = False
            self._status.phase = RotationPhase.IDLE
            self._notify()
            raise

        resume = candidate == active.secret
        swap: Optional[KeySwap] = None

        try:
            self._set_phase(RotationPhase.COUNTING)
            self._status.progress.total = await self._count_pending(candidate)

            if resume:
                _logger.info(f"Resuming re-encryption sweep under key {active.key_id}")
                target = active
            else:
                swap = self._key_store.swap(candidate)
                target = swap.incoming
                self._set_phase(RotationPhase.KEY_SWAPPED)
            target_key_id = target.key_id
            self._status.new_key_id = target_key_id

            self._set_phase(RotationPhase.RE_ENCRYPTING)
            for entity_type, fields in self._entity_fields.items():
                for field_name in fields:
                    await self._reencrypt_field(entity_type, field_name, target)

            self._set_phase(RotationPhase.VALIDATING)
            await self._validate()

        except Exception as e:
            if swap is not None:
                self._key_store.rollback(swap, self._config.retention)
            self._status.in_progress = False
            self._status.phase = RotationPhase.ROLLED_BACK
            self._status.completed_at = _utcnow()
            self._notify()
            _logger.error(f"Key rotation failed and was rolled back: {e}")
            raise RotationFailure(f"Key rotation failed: {e}", cause=e) from e

        if swap is not None:
            self._key_store.complete(swap, self._config.retention)

        self._status.in_progress = False
        self._status.phase = RotationPhase.COMPLETED
        self._status.completed_at = _utcnow()
        self._notify()

        progress = self._status.progress
        _logger.info(
            f"Key rotation completed: key {target_key_id} active, "
            f"{progress.processed}/{progress.total} record(s) re-encrypted"
        )
        return self.get_rotation_status()

    def _prepare(self, new_secret: Optional[str]) -> str:
        if new_secret is None:
            return self._validator.generate()

        self._validator.ensure_valid(new_secret)
        if any(k.secret == new_secret for k in self._key_store.get_retained()):
            raise ValidationFailure(
                "Key has been used before and cannot be reactivated",
                issues=["Key reuse"],
            )
        return new_secret

    async def _count_pending(self, candidate: str) -> int:
        candidate_id = generate_key_id(candidate)
        total = 0
        for entity_type, fields in self._entity_fields.items():
            for field_name in fields:
                total += await self._with_deadline(
                    self._record_store.count(entity_type, field_name, candidate_id),
                    entity_type,
                    field_name,
                )
        _logger.info(f"Key rotation: {total} record(s) to re-encrypt")
        return total

    async def _reencrypt_field(
        self, entity_type: str, field_name: str, target: KeyMaterial
    ) -> None:
        searchable = get_field_spec(field_name).searchable
        sweeps: dict[str, int] = {}

        while True:
            record_ids: list[str] = []
            try:
                batch = await self._with_deadline(
                    self._record_store.fetch_batch(
                        entity_type, field_name, self._config.batch_size, target.key_id
                    ),
                    entity_type,
                    field_name,
                )
                if not batch:
                    break

                record_ids = [r.id for r in batch]
                # A stale concurrent write may put a swept record back under an
                # old key once. A record that returns again is not being updated.
                if any(sweeps.get(i, 0) > 1 for i in record_ids):
                    raise BatchFailure(
                        entity_type, field_name, "Batch made no progress", record_ids
                    )
                for record_id in record_ids:
                    sweeps[record_id] = sweeps.get(record_id, 0) + 1

                payloads = await asyncio.to_thread(
                    self._reencrypt_batch, batch, field_name, searchable, target
                )

                for record_id, payload in payloads:
                    written = await self._with_deadline(
                        self._record_store.write_back(
                            entity_type, record_id, field_name, payload
                        ),
                        entity_type,
                        field_name,
                        record_ids,
                    )
                    if not written:
                        raise BatchFailure(
                            entity_type,
                            field_name,
                            f"Write-back rejected for record {record_id}",
                            record_ids,
                        )
                    self._status.progress.processed += 1
                    self._notify()

            except BatchFailure as e:
                self._record_failure(e)
                raise
            except Exception as e:
                failure = BatchFailure(
                    entity_type, field_name, str(e) or type(e).__name__, record_ids
                )
                self._record_failure(failure)
                raise failure from e

    def _reencrypt_batch(
        self,
        batch: list[StoredCiphertext],
        field_name: str,
        searchable: bool,
        target: KeyMaterial,
    ) -> list[tuple[str, EncryptedPayload]]:
        return [
            (
                record.id,
                self._engine.reencrypt(
                    record.ciphertext,
                    field_name=field_name,
                    searchable=searchable,
                    key=target,
                ),
            )
            for record in batch
        ]

    async def _validate(self) -> None:
        sample_size = self._config.validation_sample_size
        batches = max(1, math.ceil(sample_size / self._config.batch_size))
        timeout = self._config.batch_timeout * batches

        failed = 0
        for entity_type, fields in self._entity_fields.items():
            for field_name in fields:
                failures = await self._with_deadline(
                    self._record_store.validate_sample(
                        entity_type, field_name, self._check_value, sample_size
                    ),
                    entity_type,
                    field_name,
                    timeout=timeout,
                )
                if failures:
                    failed += len(failures)
                    self._status.errors.append(
                        RotationError(
                            entity_type=entity_type,
                            field=field_name,
                            record_ids=[f.record_id for f in failures],
                            error=failures[0].error,
                        )
                    )

        if failed:
            raise EncryptionError(f"Post-rotation validation failed for {failed} record(s)")

    async def _check_value(self, value: str) -> Optional[str]:
        try:
            await asyncio.to_thread(self._engine.decrypt, value)
        except DecryptionFailure as e:
            return str(e)
        return None

    async def _with_deadline(
        self,
        call: Awaitable[T],
        entity_type: str,
        field_name: str,
        record_ids: Optional[list[str]] = None,
        timeout: Optional[float] = None,
    ) -> T:
        timeout = timeout or self._config.batch_timeout
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BatchFailure(
                entity_type,
                field_name,
                f"Record store call timed out after {timeout}s",
                record_ids,
            ) from e

    def _record_failure(self, failure: BatchFailure) -> None:
        self._status.progress.failed += 1
        self._status.errors.append(
            RotationError(
                entity_type=failure.entity_type,
                field=failure.field,
                record_ids=list(failure.record_ids),
                error=str(failure),
            )
        )
        self._notify()

    def _set_phase(self, phase: RotationPhase) -> None:
        self._status.phase = phase
        _logger.info(f"Key rotation phase: {phase.value}")
        self._notify()

    def _notify(self) -> None:
        if self._on_progress is not None:
            self._on_progress(self.get_rotation_status())
