"""
Search Index Module.

Deterministic keyed digests ("blind indexes") that allow exact-match lookups
on encrypted fields without revealing the plaintext.

The digest is HMAC-SHA256 under an HKDF sub-key of the index secret, over
``field_name + NUL + canonical(plaintext)``. Including the field name keeps
the same value in two different fields from producing the same hash.

The index secret is the dedicated search key when one is configured, so
hashes survive master key rotation. Without one, the active master secret is
used and rotation has to rewrite the stored hashes.
"""

import hashlib
import hmac
import secrets
from typing import Optional

from vaultcore.security.derivation import KeyDerivation, KeyPurpose
from vaultcore.security.key_store import KeyStore


def canonicalize(value: str) -> str:
    """Normalize a value for equality search (lowercase, trimmed)."""
    return value.lower().strip()


class SearchIndexer:
    """Blind index and keyed hashing helpers."""

    def __init__(
        self,
        derivation: KeyDerivation,
        key_store: KeyStore,
        search_secret: Optional[str] = None,
    ) -> None:
        self._derivation = derivation
        self._key_store = key_store
        self._search_secret = search_secret

    @property
    def uses_dedicated_secret(self) -> bool:
        return self._search_secret is not None

    def index_secret(self) -> str:
        if self._search_secret is not None:
            return self._search_secret
        return self._key_store.get_active().secret

    def index_secrets(self) -> list[str]:
        """Every secret a stored hash may currently be computed under."""
        if self._search_secret is not None:
            return [self._search_secret]
        return [k.secret for k in self._key_store.candidates()]

    def hash(self, plaintext: str, field_name: str) -> str:
        """
        Generate the search hash for a field value.

        Args:
            plaintext: Field value.
            field_name: Name of the field the value belongs to.

        Returns:
            Hex-encoded HMAC-SHA256 digest (64 characters).
        """
        return self.hash_with(self.index_secret(), plaintext, field_name)

    def hash_with(self, secret: str, plaintext: str, field_name: str) -> str:
        """Search hash under an explicit index secret."""
        key = self._derivation.derive_purpose_key(secret, KeyPurpose.SEARCH_INDEX)
        message = f"{field_name}\x00{canonicalize(plaintext)}".encode("utf-8")
        return hmac.new(key, message, hashlib.sha256).hexdigest()

    def hash_sensitive(self, data: str, salt: Optional[str] = None) -> str:
        """
        Salted keyed hash of a value that never needs to be decrypted.

        Returns:
            ``"<salt>:<hex digest>"``.
        """
        salt = salt or secrets.token_hex(16)
        key = self._derivation.derive_purpose_key(
            self._key_store.get_active().secret, KeyPurpose.SENSITIVE_HASH
        )
        digest = hmac.new(key, f"{salt}:{data}".encode("utf-8"), hashlib.sha256)
        return f"{salt}:{digest.hexdigest()}"

    def verify_sensitive(self, data: str, hashed: str) -> bool:
        """Constant-time check of ``data`` against a ``hash_sensitive`` result."""
        salt, sep, expected = hashed.partition(":")
        if not salt or not sep or not expected:
            return False
        # Accept hashes made under a retained key as well.
        for key_material in self._key_store.candidates():
            key = self._derivation.derive_purpose_key(
                key_material.secret, KeyPurpose.SENSITIVE_HASH
            )
            digest = hmac.new(key, f"{salt}:{data}".encode("utf-8"), hashlib.sha256)
            if hmac.compare_digest(digest.hexdigest(), expected):
                return True
        return False

    def dedup_hash(self, data: str | bytes) -> str:
        """Deterministic digest for duplicate detection of stored content."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        key = self._derivation.derive_purpose_key(
            self.index_secret(), KeyPurpose.DEDUPLICATION
        )
        return hmac.new(key, data, hashlib.sha256).hexdigest()
