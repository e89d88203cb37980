"""
Field Codec Module.

Encrypts and decrypts the sensitive fields of plain record dictionaries.

Encrypted records carry two kinds of bookkeeping:

- ``_encrypted``: list of field names currently holding payload JSON
- ``<field>_search``: search hash for searchable fields

Both are removed again on decrypt.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from vaultcore.security.encryption import CryptoEngine
from vaultcore.security.exceptions import EncryptionError, RecordStoreError

_logger = logging.getLogger(__name__)

MANIFEST_KEY = "_encrypted"
SEARCH_SUFFIX = "_search"


class FieldFormat(str, Enum):
    STRING = "string"
    BINARY = "binary"
    JSON = "json"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    searchable: bool = False
    format: FieldFormat = FieldFormat.STRING
    category: str = "pii"


FIELD_REGISTRY: dict[str, FieldSpec] = {
    spec.name: spec
    for spec in (
        FieldSpec("national_id_number", searchable=False, category="identity"),
        FieldSpec("phone_number", searchable=True, category="contact"),
        FieldSpec("bank_account_number", searchable=False, category="financial"),
        FieldSpec("document_content", format=FieldFormat.BINARY, category="document"),
        FieldSpec("message_content", searchable=True, category="communication"),
    )
}

# Encrypted fields per entity type, as they are swept during rotation.
ENTITY_FIELDS: dict[str, list[str]] = {
    "user": ["phone_number", "national_id_number"],
    "message": ["message_content"],
    "document": ["document_content"],
}


def get_field_spec(field_name: str) -> FieldSpec:
    """Registry lookup; unknown fields are plain non-searchable strings."""
    return FIELD_REGISTRY.get(field_name, FieldSpec(field_name))


def search_column(field_name: str) -> str:
    return f"{field_name}{SEARCH_SUFFIX}"


def fields_for(entity_type: str) -> list[str]:
    try:
        return ENTITY_FIELDS[entity_type]
    except KeyError:
        raise RecordStoreError(f"Unknown entity type: {entity_type}") from None


class FieldCodec:
    """Record-level encryption on top of CryptoEngine."""

    def __init__(self, engine: CryptoEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> CryptoEngine:
        return self._engine

    @staticmethod
    def serialize(value: Any) -> str | bytes:
        if isinstance(value, (str, bytes)):
            return value
        return json.dumps(value)

    @staticmethod
    def deserialize(data: bytes, spec: FieldSpec) -> Any:
        if spec.format is FieldFormat.BINARY:
            return data
        text = data.decode("utf-8")
        if spec.format is FieldFormat.JSON:
            return json.loads(text)
        return text

    def encrypt_value(self, field_name: str, value: Any) -> tuple[str, Optional[str]]:
        """Encrypt one value. Returns (payload JSON, search hash or None)."""
        spec = get_field_spec(field_name)
        payload = self._engine.encrypt(
            self.serialize(value),
            field_name=field_name,
            searchable=spec.searchable,
        )
        return payload.to_json(), payload.search_hash

    def encrypt_object(self, record: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """
        Encrypt the listed fields of a record.

        Fields that are absent or ``None`` are skipped. The input record is
        not mutated.

        Args:
            record: Plain record dictionary.
            fields: Names of fields to encrypt.

        Returns:
            New record with payload JSON in place of each encrypted field.
        """
        result = dict(record)
        manifest = list(result.get(MANIFEST_KEY, []))

        for field_name in fields:
            value = result.get(field_name)
            if value is None:
                continue

            payload_json, search_hash = self.encrypt_value(field_name, value)
            result[field_name] = payload_json
            if field_name not in manifest:
                manifest.append(field_name)
            if search_hash is not None:
                result[search_column(field_name)] = search_hash

        if manifest:
            result[MANIFEST_KEY] = manifest
        return result

    def decrypt_object(
        self,
        record: dict[str, Any],
        fields: Optional[Iterable[str]] = None,
    ) -> dict[str, Any]:
        """
        Decrypt fields of a record.

        A field that fails to decrypt is logged and left as stored; the rest
        of the record is still returned. The manifest and the search
        companions of the listed fields are always stripped.
        """
        result = dict(record)
        field_names = list(fields) if fields is not None else list(result.get(MANIFEST_KEY, []))

        for field_name in field_names:
            result.pop(search_column(field_name), None)
            value = result.get(field_name)
            if value is None:
                continue
            if not isinstance(value, str):
                _logger.warning(
                    f"Field {field_name} holds {type(value).__name__}, not an encrypted payload"
                )
                continue

            spec = get_field_spec(field_name)
            try:
                result[field_name] = self.deserialize(self._engine.decrypt(value), spec)
            except (EncryptionError, UnicodeDecodeError, json.JSONDecodeError) as e:
                _logger.error(f"Failed to decrypt field {field_name}: {e}")

        result.pop(MANIFEST_KEY, None)
        return result

    def search_criteria(self, field_name: str, value: str) -> dict[str, str]:
        """Equality filter on the search companion of a searchable field."""
        return {search_column(field_name): self._hash(field_name, value)}

    def search_hashes(self, field_name: str, value: str) -> list[str]:
        """
        Hashes of ``value`` under every index secret still in use.

        Records not yet swept by a rotation carry hashes made under a
        retained secret; querying with all of them keeps lookups complete.
        """
        self._require_searchable(field_name)
        indexer = self._engine.search_indexer
        hashes: list[str] = []
        for secret in indexer.index_secrets():
            digest = indexer.hash_with(secret, value, field_name)
            if digest not in hashes:
                hashes.append(digest)
        return hashes

    def _hash(self, field_name: str, value: str) -> str:
        self._require_searchable(field_name)
        return self._engine.search_indexer.hash(value, field_name)

    def _require_searchable(self, field_name: str) -> None:
        if not get_field_spec(field_name).searchable:
            raise ValueError(f"Field {field_name} is not searchable")
        if self._engine.search_indexer is None:
            raise ValueError("Search requires a SearchIndexer")
