"""
Key Derivation Module.

Turns a master secret into working keys:

- PBKDF2-HMAC-SHA256 with a random per-record salt produces the AES-256-GCM
  key for each payload. Derivation is deterministic for (secret, salt), so
  the salt stored inside the payload is all decryption needs.
- HKDF-SHA256 produces purpose-specific sub-keys (search index, sensitive
  data hashing) so the same master secret is never used directly for two
  different cryptographic operations.
"""

from enum import Enum

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

KEY_LENGTH = 32  # 256 bits
DEFAULT_ITERATIONS = 100_000


class KeyPurpose(Enum):
    """Enumeration of sub-key purposes for cryptographic separation."""

    SEARCH_INDEX = b"vaultcore-search-index-v1"
    SENSITIVE_HASH = b"vaultcore-sensitive-hash-v1"
    DEDUPLICATION = b"vaultcore-dedup-v1"


class KeyDerivation:
    """
    Secure key derivation service.

    Per-record keys use PBKDF2 with a configurable iteration count (higher
    in production). Purpose keys use HKDF and are cached per secret because
    they are requested on every searchable write.
    """

    # Salt for HKDF purpose keys. Per-record salts are random.
    PURPOSE_SALT = b"vaultcore-purpose-salt-v1"

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        """
        Initialize key derivation.

        Args:
            iterations: PBKDF2 iteration count (cost factor).
        """
        if iterations < 1:
            raise ValueError("PBKDF2 iteration count must be positive")

        self._iterations = iterations
        self._purpose_keys: dict[tuple[str, KeyPurpose], bytes] = {}

    @property
    def iterations(self) -> int:
        return self._iterations

    def derive(self, secret: str, salt: bytes) -> bytes:
        """
        Derive the per-record working key.

        Args:
            secret: Master secret.
            salt: Random per-record salt (stored with the payload).

        Returns:
            32-byte AES-256 key.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
            backend=default_backend(),
        )
        return kdf.derive(secret.encode("utf-8"))

    def derive_purpose_key(self, secret: str, purpose: KeyPurpose) -> bytes:
        """
        Derive a purpose-specific sub-key using HKDF-SHA256.

        Args:
            secret: Master secret the sub-key is bound to.
            purpose: The intended use of the derived key.

        Returns:
            32-byte sub-key.
        """
        cache_key = (secret, purpose)
        if cache_key in self._purpose_keys:
            return self._purpose_keys[cache_key]

        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=self.PURPOSE_SALT,
            info=purpose.value,
            backend=default_backend(),
        )
        derived_key = hkdf.derive(secret.encode("utf-8"))
        self._purpose_keys[cache_key] = derived_key

        return derived_key

    def forget(self, secret: str) -> None:
        """Drop cached sub-keys for a secret that is being discarded."""
        for cache_key in [k for k in self._purpose_keys if k[0] == secret]:
            del self._purpose_keys[cache_key]
