"""
Field Encryption Module.

AES-256-GCM authenticated encryption of individual field values and file
bodies.

Security Features:
- Per-record key derived with PBKDF2-HMAC-SHA256 from the master secret and a
  random 32-byte salt, so no two records share a working key
- Random 16-byte IV per encryption (non-deterministic ciphertext)
- 16-byte GCM tag; any tampering with ciphertext, IV or tag fails decryption
- Decryption falls back across every retained secret, so data written before
  a key rotation stays readable
"""

import binascii
import json
import logging
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vaultcore.security.derivation import KEY_LENGTH, KeyDerivation
from vaultcore.security.exceptions import DecryptionFailure
from vaultcore.security.key_store import KeyMaterial, KeyOperation, KeyStore
from vaultcore.security.payload import ALGORITHM, EncryptedPayload, b64encode
from vaultcore.security.search_index import SearchIndexer

_logger = logging.getLogger(__name__)

IV_LENGTH = 16
SALT_LENGTH = 32
TAG_LENGTH = 16


class CryptoEngine:
    """
    Core encryption service using AES-256-GCM.

    The active key is read once per call, so a concurrent rotation never
    splits one payload across two secrets.
    """

    def __init__(
        self,
        key_store: KeyStore,
        derivation: KeyDerivation,
        search_indexer: Optional[SearchIndexer] = None,
    ) -> None:
        self._key_store = key_store
        self._derivation = derivation
        self._search_indexer = search_indexer

    @property
    def key_store(self) -> KeyStore:
        return self._key_store

    @property
    def derivation(self) -> KeyDerivation:
        return self._derivation

    @property
    def search_indexer(self) -> Optional[SearchIndexer]:
        return self._search_indexer

    def encrypt(
        self,
        plaintext: str | bytes,
        field_name: Optional[str] = None,
        searchable: bool = False,
        key: Optional[KeyMaterial] = None,
    ) -> EncryptedPayload:
        """
        Encrypt a value under the active secret.

        Args:
            plaintext: Text or raw bytes to protect.
            field_name: Field the value belongs to (needed for search hashes).
            searchable: Attach a search hash (text values only).
            key: Explicit key to encrypt under instead of the active one.

        Returns:
            EncryptedPayload ready for storage.
        """
        key = key or self._key_store.get_active()
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        derived = self._derivation.derive(key.secret, salt)

        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(derived).encrypt(iv, data, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        search_hash = None
        if searchable and field_name and isinstance(plaintext, str):
            if self._search_indexer is None:
                raise ValueError("Searchable encryption requires a SearchIndexer")
            search_hash = self._search_indexer.hash(plaintext, field_name)

        self._key_store.record_usage(key.key_id, KeyOperation.ENCRYPT)

        return EncryptedPayload(
            ciphertext=b64encode(salt + ciphertext),
            iv=b64encode(iv),
            auth_tag=b64encode(tag),
            key_version=key.version,
            key_id=key.key_id,
            algorithm=ALGORITHM,
            search_hash=search_hash,
        )

    def decrypt(self, payload: EncryptedPayload | str) -> bytes:
        """
        Decrypt a payload, trying the active secret then every retained one.

        Raises:
            DecryptionFailure: If the payload is malformed or no known secret
                authenticates it.
        """
        if isinstance(payload, str):
            try:
                payload = EncryptedPayload.from_json(payload)
            except ValueError as e:
                raise DecryptionFailure("Malformed encrypted payload") from e
        elif not isinstance(payload, EncryptedPayload):
            raise DecryptionFailure("Malformed encrypted payload")

        if payload.algorithm != ALGORITHM:
            raise DecryptionFailure(f"Unsupported algorithm: {payload.algorithm}")

        try:
            sealed = payload.raw_ciphertext()
            iv = payload.raw_iv()
            tag = payload.raw_tag()
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailure("Malformed payload encoding") from e

        if len(sealed) < SALT_LENGTH or len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionFailure("Malformed payload component lengths")

        salt, ciphertext = sealed[:SALT_LENGTH], sealed[SALT_LENGTH:]

        for key in self._key_store.candidates():
            derived = self._derivation.derive(key.secret, salt)
            try:
                plaintext = AESGCM(derived).decrypt(iv, ciphertext + tag, None)
            except InvalidTag:
                continue

            self._key_store.record_usage(key.key_id, KeyOperation.DECRYPT)
            return plaintext

        raise DecryptionFailure(
            f"Unable to decrypt payload (key version {payload.key_version}) "
            f"with any known key"
        )

    def decrypt_text(self, payload: EncryptedPayload | str) -> str:
        plaintext = self.decrypt(payload)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionFailure("Decrypted value is not valid UTF-8") from e

    def reencrypt(
        self,
        payload: EncryptedPayload | str,
        field_name: Optional[str] = None,
        searchable: bool = False,
        key: Optional[KeyMaterial] = None,
    ) -> EncryptedPayload:
        """
        Decrypt with fallback and encrypt again under the active (or given) key.

        Nested file metadata is re-encrypted as well.
        """
        if isinstance(payload, str):
            try:
                payload = EncryptedPayload.from_json(payload)
            except ValueError as e:
                raise DecryptionFailure("Malformed encrypted payload") from e

        data: str | bytes = self.decrypt(payload)
        if searchable:
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError:
                _logger.warning(f"Searchable field {field_name} holds non-text data")

        result = self.encrypt(data, field_name=field_name, searchable=searchable, key=key)

        if payload.metadata is not None:
            metadata = self.encrypt(self.decrypt(payload.metadata), key=key)
            result = result.model_copy(update={"metadata": metadata})

        return result

    def encrypt_file(
        self,
        data: bytes,
        metadata: Optional[dict[str, Any]] = None,
    ) -> EncryptedPayload:
        """
        Encrypt a file body, with its metadata as an independent nested payload.
        """
        payload = self.encrypt(data)
        if metadata:
            nested = self.encrypt(json.dumps(metadata))
            payload = payload.model_copy(update={"metadata": nested})
        return payload

    def decrypt_file(
        self, payload: EncryptedPayload | str
    ) -> tuple[bytes, Optional[dict[str, Any]]]:
        if isinstance(payload, str):
            try:
                payload = EncryptedPayload.from_json(payload)
            except ValueError as e:
                raise DecryptionFailure("Malformed encrypted payload") from e

        data = self.decrypt(payload)
        metadata = None
        if payload.metadata is not None:
            try:
                metadata = json.loads(self.decrypt_text(payload.metadata))
            except json.JSONDecodeError as e:
                raise DecryptionFailure("File metadata is not valid JSON") from e
        return data, metadata

    def describe(self) -> dict[str, Any]:
        """Algorithm parameters and active key info (no secret material)."""
        active = self._key_store.get_active()
        return {
            "algorithm": ALGORITHM,
            "key_length": KEY_LENGTH * 8,
            "iv_length": IV_LENGTH * 8,
            "tag_length": TAG_LENGTH * 8,
            "salt_length": SALT_LENGTH * 8,
            "pbkdf2_iterations": self._derivation.iterations,
            "key_version": active.version,
            "key_id": active.key_id,
            "retained_keys": len(self._key_store.get_retained()),
        }
