"""
In-Memory Record Store.

Dictionary-backed RecordStore for tests and local development. Records are
plain dictionaries in the shape FieldCodec produces: payload JSON in the
field, ``<field>_search`` for searchable fields and an ``_encrypted``
manifest.
"""

import copy
import json
import uuid
from typing import Any, Iterable, Optional

from vaultcore.security.exceptions import RecordStoreError
from vaultcore.security.field_codec import ENTITY_FIELDS, MANIFEST_KEY, search_column
from vaultcore.security.payload import EncryptedPayload
from vaultcore.store.base import (
    RecordStore,
    SampleCheck,
    SampleFailure,
    StoredCiphertext,
    StoredPlaintext,
)


def _payload_key_id(value: Any) -> Optional[str]:
    """keyId of a stored payload, or None for plaintext / empty values."""
    if not EncryptedPayload.is_payload(value):
        return None
    return json.loads(value).get("keyId", "")


class InMemoryRecordStore(RecordStore):
    """RecordStore over nested dictionaries, insertion ordered."""

    def __init__(self, entity_fields: Optional[dict[str, list[str]]] = None) -> None:
        self._entity_fields = entity_fields or ENTITY_FIELDS
        self._records: dict[str, dict[str, dict[str, Any]]] = {
            entity_type: {} for entity_type in self._entity_fields
        }

    def _table(self, entity_type: str, field: Optional[str] = None) -> dict[str, dict[str, Any]]:
        if entity_type not in self._records:
            raise RecordStoreError(f"Unknown entity type: {entity_type}")
        if field is not None and field not in self._entity_fields[entity_type]:
            raise RecordStoreError(f"Unknown field {field} for entity {entity_type}")
        return self._records[entity_type]

    # -------------------------------------------------------------------------
    # Direct access (application side)
    # -------------------------------------------------------------------------

    def insert(self, entity_type: str, record: dict[str, Any]) -> str:
        table = self._table(entity_type)
        record_id = str(record.get("id") or uuid.uuid4())
        table[record_id] = {**copy.deepcopy(record), "id": record_id}
        return record_id

    def get(self, entity_type: str, record_id: str) -> Optional[dict[str, Any]]:
        record = self._table(entity_type).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def update(self, entity_type: str, record_id: str, values: dict[str, Any]) -> None:
        table = self._table(entity_type)
        if record_id not in table:
            raise RecordStoreError(f"No {entity_type} record {record_id}")
        table[record_id].update(copy.deepcopy(values))

    def delete(self, entity_type: str, record_id: str) -> bool:
        return self._table(entity_type).pop(record_id, None) is not None

    def all(self, entity_type: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._table(entity_type).values()]

    def find_by_search(
        self, entity_type: str, field: str, hashes: Iterable[str]
    ) -> list[dict[str, Any]]:
        """Records whose search companion matches any of ``hashes``."""
        wanted = set(hashes)
        column = search_column(field)
        return [
            copy.deepcopy(r)
            for r in self._table(entity_type, field).values()
            if r.get(column) in wanted
        ]

    # -------------------------------------------------------------------------
    # RecordStore contract
    # -------------------------------------------------------------------------

    def _pending(self, entity_type: str, field: str, current_key_id: str):
        for record_id, record in self._table(entity_type, field).items():
            key_id = _payload_key_id(record.get(field))
            if key_id is not None and key_id != current_key_id:
                yield record_id, record[field]

    async def count(self, entity_type: str, field: str, current_key_id: str) -> int:
        return sum(1 for _ in self._pending(entity_type, field, current_key_id))

    async def fetch_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        current_key_id: str,
    ) -> list[StoredCiphertext]:
        batch = []
        for record_id, value in self._pending(entity_type, field, current_key_id):
            batch.append(StoredCiphertext(id=record_id, ciphertext=value))
            if len(batch) >= batch_size:
                break
        return batch

    async def write_back(
        self,
        entity_type: str,
        record_id: str,
        field: str,
        payload: EncryptedPayload,
    ) -> bool:
        record = self._table(entity_type, field).get(record_id)
        if record is None:
            return False

        record[field] = payload.to_json()
        if payload.search_hash is not None:
            record[search_column(field)] = payload.search_hash
        else:
            record.pop(search_column(field), None)

        manifest = record.setdefault(MANIFEST_KEY, [])
        if field not in manifest:
            manifest.append(field)
        return True

    async def validate_sample(
        self,
        entity_type: str,
        field: str,
        check: SampleCheck,
        sample_size: int,
    ) -> list[SampleFailure]:
        failures = []
        checked = 0
        for record_id, record in list(self._table(entity_type, field).items()):
            if checked >= sample_size:
                break
            value = record.get(field)
            if not EncryptedPayload.is_payload(value):
                continue
            checked += 1
            error = await check(value)
            if error is not None:
                failures.append(SampleFailure(record_id=record_id, error=error))
        return failures

    async def fetch_plaintext_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[StoredPlaintext]:
        batch = []
        for record_id, record in self._table(entity_type, field).items():
            value = record.get(field)
            if value is None or record_id in exclude_ids or EncryptedPayload.is_payload(value):
                continue
            batch.append(StoredPlaintext(id=record_id, value=value))
            if len(batch) >= batch_size:
                break
        return batch
