"""
Plaintext Migration Module.

Encrypts legacy rows that were written before field encryption was enabled.
Rows are processed in batches; a row that cannot be encrypted or written is
logged, counted and skipped so one bad row never blocks the rest.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from vaultcore.security.encryption import CryptoEngine
from vaultcore.security.field_codec import ENTITY_FIELDS, FieldCodec, get_field_spec
from vaultcore.store.base import RecordStore

_logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    entity_type: str
    field: str
    migrated: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)


class PlaintextMigrator:
    """
    Service to migrate plaintext columns to encrypted payloads.

    Example:
        migrator = PlaintextMigrator(engine, store)
        result = await migrator.migrate("user", "phone_number")
    """

    def __init__(
        self,
        engine: CryptoEngine,
        record_store: RecordStore,
        batch_size: int = 100,
    ) -> None:
        self._engine = engine
        self._record_store = record_store
        self._batch_size = batch_size

    async def migrate(self, entity_type: str, field_name: str) -> MigrationResult:
        """
        Encrypt every plaintext value of one field.

        Returns:
            MigrationResult with migrated and failed counts.
        """
        result = MigrationResult(entity_type=entity_type, field=field_name)
        searchable = get_field_spec(field_name).searchable

        while True:
            batch = await self._record_store.fetch_plaintext_batch(
                entity_type,
                field_name,
                self._batch_size,
                exclude_ids=frozenset(result.failed_ids),
            )
            if not batch:
                break

            for record in batch:
                try:
                    payload = await asyncio.to_thread(
                        self._engine.encrypt,
                        FieldCodec.serialize(record.value),
                        field_name,
                        searchable,
                    )
                    written = await self._record_store.write_back(
                        entity_type, record.id, field_name, payload
                    )
                except Exception as e:
                    _logger.error(
                        f"Failed to encrypt {entity_type}.{field_name} record {record.id}: {e}"
                    )
                    written = False

                if written:
                    result.migrated += 1
                else:
                    result.failed += 1
                    result.failed_ids.append(record.id)

        _logger.info(
            f"Migrated {entity_type}.{field_name}: "
            f"{result.migrated} encrypted, {result.failed} failed"
        )
        return result

    async def migrate_all(
        self, entity_fields: Optional[dict[str, list[str]]] = None
    ) -> list[MigrationResult]:
        """Migrate every registered encrypted field."""
        results = []
        for entity_type, fields in (entity_fields or ENTITY_FIELDS).items():
            for field_name in fields:
                results.append(await self.migrate(entity_type, field_name))
        return results
