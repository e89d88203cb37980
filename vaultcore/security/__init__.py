"""
Security package.

Field-level encryption, search indexing and key lifecycle management.
"""

from vaultcore.security.derivation import KeyDerivation, KeyPurpose
from vaultcore.security.encryption import CryptoEngine
from vaultcore.security.exceptions import (
    BatchFailure,
    DecryptionFailure,
    EncryptionError,
    RecordStoreError,
    RotationFailure,
    RotationInProgress,
    ValidationFailure,
)
from vaultcore.security.field_codec import (
    ENTITY_FIELDS,
    FIELD_REGISTRY,
    FieldCodec,
    FieldFormat,
    FieldSpec,
)
from vaultcore.security.key_store import (
    InMemoryKeyStore,
    KeyMaterial,
    KeyMetadata,
    KeyStatus,
    KeyStore,
    generate_key_id,
)
from vaultcore.security.migration import MigrationResult, PlaintextMigrator
from vaultcore.security.payload import EncryptedPayload
from vaultcore.security.rotation import (
    KeyRotationManager,
    RotationConfig,
    RotationPhase,
    RotationStatus,
)
from vaultcore.security.search_index import SearchIndexer
from vaultcore.security.validator import KeyStrength, KeyValidationResult, KeyValidator

__all__ = [
    "BatchFailure",
    "CryptoEngine",
    "DecryptionFailure",
    "ENTITY_FIELDS",
    "EncryptedPayload",
    "EncryptionError",
    "FIELD_REGISTRY",
    "FieldCodec",
    "FieldFormat",
    "FieldSpec",
    "InMemoryKeyStore",
    "KeyDerivation",
    "KeyMaterial",
    "KeyMetadata",
    "KeyPurpose",
    "KeyRotationManager",
    "KeyStatus",
    "KeyStore",
    "KeyStrength",
    "KeyValidationResult",
    "KeyValidator",
    "MigrationResult",
    "PlaintextMigrator",
    "RecordStoreError",
    "RotationConfig",
    "RotationFailure",
    "RotationInProgress",
    "RotationPhase",
    "RotationStatus",
    "SearchIndexer",
    "ValidationFailure",
    "generate_key_id",
]
