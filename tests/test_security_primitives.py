"""
Unit Tests for the encryption primitives.

Tests the payload model, PBKDF2/HKDF key derivation and key validation.
"""

import base64
import json
import math

import pytest
from unittest.mock import patch


class TestEncryptedPayload:
    """Tests for EncryptedPayload serialization."""

    def _payload(self, **overrides):
        from vaultcore.security.payload import EncryptedPayload

        values = {
            "ciphertext": base64.b64encode(b"c" * 40).decode(),
            "iv": base64.b64encode(b"i" * 16).decode(),
            "auth_tag": base64.b64encode(b"t" * 16).decode(),
            "key_version": 2,
            "key_id": "0123456789abcdef",
        }
        values.update(overrides)
        return EncryptedPayload(**values)

    def test_json_uses_camel_case_keys(self):
        """Test stored JSON uses camelCase keys and omits unset optionals."""
        data = json.loads(self._payload().to_json())

        assert data["authTag"]
        assert data["keyVersion"] == 2
        assert data["keyId"] == "0123456789abcdef"
        assert data["algorithm"] == "aes-256-gcm"
        assert "searchHash" not in data
        assert "metadata" not in data

    def test_json_roundtrip_with_nested_metadata(self):
        """Test nested metadata payload survives serialization."""
        from vaultcore.security.payload import EncryptedPayload

        payload = self._payload(metadata=self._payload(key_version=3))
        restored = EncryptedPayload.from_json(payload.to_json())

        assert restored == payload
        assert restored.metadata.key_version == 3

    def test_from_json_rejects_malformed_input(self):
        """Test malformed JSON raises ValueError."""
        from vaultcore.security.payload import EncryptedPayload

        with pytest.raises(ValueError, match="Invalid encrypted payload"):
            EncryptedPayload.from_json('{"ciphertext": "abc"}')

    def test_negative_key_version_rejected(self):
        """Test keyVersion must not be negative."""
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            self._payload(key_version=-1)

    def test_is_payload(self):
        """Test detection of serialized payloads versus plaintext."""
        from vaultcore.security.payload import EncryptedPayload

        assert EncryptedPayload.is_payload(self._payload().to_json())
        assert not EncryptedPayload.is_payload("0912345678")
        assert not EncryptedPayload.is_payload("{}")
        assert not EncryptedPayload.is_payload('{"ciphertext": 1}')
        assert not EncryptedPayload.is_payload(None)
        assert not EncryptedPayload.is_payload(12345)

    def test_payload_is_immutable(self):
        """Test payloads are frozen."""
        from pydantic import ValidationError

        payload = self._payload()
        with pytest.raises(ValidationError):
            payload.key_version = 5


class TestKeyDerivation:
    """Tests for KeyDerivation (PBKDF2 and HKDF)."""

    def test_derive_is_deterministic(self, derivation, secret):
        """Test same secret and salt produce the same key."""
        salt = b"s" * 32

        assert derivation.derive(secret, salt) == derivation.derive(secret, salt)
        assert len(derivation.derive(secret, salt)) == 32

    def test_derive_differs_by_salt_and_secret(self, derivation, secret, other_secret):
        """Test salt and secret both change the derived key."""
        salt = b"s" * 32

        assert derivation.derive(secret, salt) != derivation.derive(secret, b"x" * 32)
        assert derivation.derive(secret, salt) != derivation.derive(other_secret, salt)

    def test_invalid_iteration_count(self):
        """Test non-positive iteration count is rejected."""
        from vaultcore.security.derivation import KeyDerivation

        with pytest.raises(ValueError, match="must be positive"):
            KeyDerivation(iterations=0)

    def test_purpose_keys_are_separated(self, derivation, secret):
        """Test different purposes produce different sub-keys."""
        from vaultcore.security.derivation import KeyPurpose

        search_key = derivation.derive_purpose_key(secret, KeyPurpose.SEARCH_INDEX)
        hash_key = derivation.derive_purpose_key(secret, KeyPurpose.SENSITIVE_HASH)

        assert len(search_key) == 32
        assert search_key != hash_key

    def test_purpose_key_caching(self, derivation, secret):
        """Test purpose keys are cached and can be forgotten."""
        from vaultcore.security.derivation import KeyPurpose

        first = derivation.derive_purpose_key(secret, KeyPurpose.SEARCH_INDEX)
        assert derivation.derive_purpose_key(secret, KeyPurpose.SEARCH_INDEX) is first

        derivation.forget(secret)
        assert (secret, KeyPurpose.SEARCH_INDEX) not in derivation._purpose_keys
        assert derivation.derive_purpose_key(secret, KeyPurpose.SEARCH_INDEX) == first


class TestKeyValidator:
    """Tests for key generation and validation."""

    def test_calculate_entropy(self):
        """Test Shannon entropy of simple inputs."""
        from vaultcore.security.validator import calculate_entropy

        assert calculate_entropy(b"") == 0.0
        assert calculate_entropy(bytes(32)) == 0.0
        assert calculate_entropy(bytes(range(256))) == pytest.approx(8.0)
        assert calculate_entropy(bytes(range(16)) * 2) == pytest.approx(4.0)

    def test_generated_key_is_valid_and_strong(self, validator):
        """Test generated keys are 32 random bytes, base64 encoded, strong."""
        from vaultcore.security.validator import KeyStrength

        key = validator.generate()
        result = validator.validate(key)

        assert len(base64.b64decode(key)) == 32
        assert result.is_valid
        assert result.strength is KeyStrength.STRONG
        assert result.issues == []

    def test_generated_keys_are_unique(self, validator):
        """Test consecutive generations differ."""
        assert validator.generate() != validator.generate()

    def test_zero_key_has_insufficient_entropy(self, validator):
        """Test 32 zero bytes are rejected as weak."""
        from vaultcore.security.validator import KeyStrength

        zero_key = base64.b64encode(bytes(32)).decode()
        result = validator.validate(zero_key)

        assert not result.is_valid
        assert result.strength is KeyStrength.WEAK
        assert any("entropy" in issue for issue in result.issues)

    def test_medium_strength_key(self, validator):
        """Test a key with repeated bytes is valid but medium strength."""
        from vaultcore.security.validator import KeyStrength

        key = base64.b64encode(bytes(range(16)) * 2).decode()
        result = validator.validate(key)

        assert result.is_valid
        assert result.strength is KeyStrength.MEDIUM

    def test_short_key_rejected(self, validator):
        """Test keys below the minimum length are rejected."""
        result = validator.validate("c2hvcnQ=")

        assert not result.is_valid
        assert any("too short" in issue for issue in result.issues)

    def test_non_base64_key_rejected(self, validator):
        """Test keys that are not base64 are rejected."""
        result = validator.validate("!" * 44)

        assert not result.is_valid
        assert "Key must be valid base64 encoded" in result.issues

    def test_thresholds_scale_with_sample_length(self):
        """Test a 32-byte sample is judged against its log2(32) ceiling."""
        from vaultcore.security.validator import _scaled

        assert _scaled(8.0, 32) == pytest.approx(math.log2(32))
        assert _scaled(7.5, 1024) == pytest.approx(7.5)

    def test_generation_is_bounded(self):
        """Test generation gives up after max attempts of low-entropy output."""
        from vaultcore.security.exceptions import ValidationFailure
        from vaultcore.security.validator import KeyValidator

        validator = KeyValidator(max_attempts=3)
        with patch.object(KeyValidator, "_random_bytes", return_value=bytes(32)) as mock_random:
            with pytest.raises(ValidationFailure):
                validator.generate()

        assert mock_random.call_count == 3

    def test_generation_retries_until_entropy_passes(self):
        """Test a low-entropy draw is discarded and regenerated."""
        from vaultcore.security.validator import KeyValidator

        good = bytes(range(0, 256, 8))
        validator = KeyValidator()
        with patch.object(KeyValidator, "_random_bytes", side_effect=[bytes(32), good]):
            key = validator.generate()

        assert base64.b64decode(key) == good

    def test_ensure_valid_raises_with_issues(self, validator):
        """Test ensure_valid raises ValidationFailure listing issues."""
        from vaultcore.security.exceptions import ValidationFailure

        with pytest.raises(ValidationFailure) as exc_info:
            validator.ensure_valid(base64.b64encode(bytes(32)).decode())

        assert exc_info.value.issues
