"""
Key Validator Module.

Generates master secrets and checks supplied ones for length, encoding and
entropy.

Entropy is Shannon entropy over the raw (base64-decoded) bytes, in bits per
byte. The thresholds are stated for a full 256-symbol alphabet; a sample of
n < 256 bytes cannot exceed log2(n) bits/byte, so thresholds are scaled by
log2(min(n, 256)) / 8 before comparison. A 32-byte key is therefore judged
against a 5-bit ceiling rather than an unreachable 8-bit one.
"""

import base64
import binascii
import logging
import math
import re
import secrets
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from vaultcore.security.exceptions import ValidationFailure

_logger = logging.getLogger(__name__)

SECRET_BYTES = 32
DEFAULT_MIN_KEY_LENGTH = 32
DEFAULT_ENTROPY_THRESHOLD = 7.5
DEFAULT_MAX_GENERATION_ATTEMPTS = 10

WEAK_ENTROPY = 6.0
MEDIUM_ENTROPY = 7.0

_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


class KeyStrength(str, Enum):
    """Strength tiers reported by validation."""

    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


@dataclass
class KeyValidationResult:
    """Outcome of validating a secret."""

    is_valid: bool
    strength: KeyStrength
    issues: list[str] = field(default_factory=list)


def calculate_entropy(data: bytes) -> float:
    """Shannon entropy of ``data`` in bits per byte."""
    if not data:
        return 0.0

    length = len(data)
    entropy = 0.0
    for count in Counter(data).values():
        p = count / length
        entropy -= p * math.log2(p)
    return entropy


def _scaled(threshold: float, sample_length: int) -> float:
    if sample_length <= 1:
        return threshold
    ceiling = math.log2(min(sample_length, 256))
    return threshold * ceiling / 8


class KeyValidator:
    """
    Entropy-gated key generation and validation.

    Generation is an explicit loop with a maximum attempt count; if the
    random source keeps producing low-entropy output the validator fails
    hard instead of looping forever.
    """

    def __init__(
        self,
        min_key_length: int = DEFAULT_MIN_KEY_LENGTH,
        entropy_threshold: float = DEFAULT_ENTROPY_THRESHOLD,
        max_attempts: int = DEFAULT_MAX_GENERATION_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._min_key_length = min_key_length
        self._entropy_threshold = entropy_threshold
        self._max_attempts = max_attempts

    @property
    def min_key_length(self) -> int:
        return self._min_key_length

    def _random_bytes(self) -> bytes:
        return secrets.token_bytes(SECRET_BYTES)

    def generate(self) -> str:
        """
        Generate a new base64-encoded 256-bit secret.

        Returns:
            Base64 secret that passed the entropy gate.

        Raises:
            ValidationFailure: If every attempt produced low-entropy output.
        """
        for attempt in range(1, self._max_attempts + 1):
            key_bytes = self._random_bytes()
            entropy = calculate_entropy(key_bytes)
            if entropy >= _scaled(self._entropy_threshold, len(key_bytes)):
                return base64.b64encode(key_bytes).decode("ascii")

            _logger.warning(
                f"Generated key has low entropy ({entropy:.2f} bits/byte), "
                f"regenerating (attempt {attempt}/{self._max_attempts})"
            )

        raise ValidationFailure(
            f"Secure random source produced low-entropy output "
            f"{self._max_attempts} times in a row",
            issues=["Key generation exhausted retry budget"],
        )

    def validate(self, secret: str) -> KeyValidationResult:
        """
        Validate key strength and format.

        Args:
            secret: Base64-encoded secret.

        Returns:
            KeyValidationResult with validity, strength tier and issues.
        """
        issues: list[str] = []
        strength = KeyStrength.STRONG

        if len(secret) < self._min_key_length:
            issues.append(f"Key too short (minimum {self._min_key_length} characters)")
            strength = KeyStrength.WEAK

        if not _BASE64_PATTERN.match(secret) or len(secret) % 4 != 0:
            issues.append("Key must be valid base64 encoded")
            return KeyValidationResult(False, KeyStrength.WEAK, issues)

        try:
            key_bytes = base64.b64decode(secret, validate=True)
        except (binascii.Error, ValueError):
            issues.append("Invalid key format")
            return KeyValidationResult(False, KeyStrength.WEAK, issues)

        entropy = calculate_entropy(key_bytes)
        if entropy < _scaled(WEAK_ENTROPY, len(key_bytes)):
            issues.append("Key has insufficient entropy")
            strength = KeyStrength.WEAK
        elif entropy < _scaled(MEDIUM_ENTROPY, len(key_bytes)):
            if strength is KeyStrength.STRONG:
                strength = KeyStrength.MEDIUM

        return KeyValidationResult(not issues, strength, issues)

    def ensure_valid(self, secret: str) -> KeyValidationResult:
        """Validate and raise ValidationFailure if the secret is unusable."""
        result = self.validate(secret)
        if not result.is_valid:
            raise ValidationFailure(
                f"Invalid key: {', '.join(result.issues)}",
                issues=result.issues,
            )
        return result
