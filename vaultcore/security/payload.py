"""
Encrypted Payload Model.

The serialized form of one encrypted value. Payloads are stored as JSON
strings in the record store; every binary component is base64 encoded so the
stored form round-trips exactly.

Wire format (camelCase keys):

    {
        "ciphertext": "<base64 salt || ciphertext>",
        "iv": "<base64>",
        "authTag": "<base64>",
        "keyVersion": 3,
        "keyId": "9f2c61d0a4b7e813",
        "algorithm": "aes-256-gcm",
        "searchHash": "<hex, searchable fields only>",
        "metadata": { ...nested payload, file payloads only... }
    }

``keyVersion`` and ``keyId`` describe the secret that produced the payload.
They are hints for the record store's migration sweep; decryption never uses
them to pick a secret.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

ALGORITHM = "aes-256-gcm"


class EncryptedPayload(BaseModel):
    """One authenticated-encryption result plus its metadata."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    ciphertext: str = Field(..., description="Base64 of salt || ciphertext")
    iv: str = Field(..., description="Base64 initialization vector")
    auth_tag: str = Field(..., description="Base64 GCM authentication tag")
    key_version: int = Field(..., ge=0, description="Version of the producing secret")
    key_id: str = Field(default="", description="Fingerprint of the producing secret")
    algorithm: str = Field(default=ALGORITHM)
    search_hash: Optional[str] = Field(default=None, description="Equality-search digest")
    metadata: Optional[EncryptedPayload] = Field(
        default=None, description="Independently encrypted companion payload"
    )

    def to_json(self) -> str:
        """Serialize for storage."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> EncryptedPayload:
        """Parse a stored payload. Raises ValueError on malformed input."""
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise ValueError(f"Invalid encrypted payload: {e.error_count()} error(s)") from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptedPayload:
        return cls.model_validate(data)

    @staticmethod
    def is_payload(value: Any) -> bool:
        """Check whether a stored value looks like a serialized payload."""
        if not isinstance(value, (str, bytes)):
            return False
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        if not text.lstrip().startswith("{"):
            return False
        try:
            data = json.loads(text)
        except ValueError:
            return False
        return (
            isinstance(data, dict)
            and isinstance(data.get("ciphertext"), str)
            and isinstance(data.get("iv"), str)
            and isinstance(data.get("authTag"), str)
            and isinstance(data.get("keyVersion"), int)
            and isinstance(data.get("algorithm"), str)
        )

    # Decoded components. These raise binascii.Error on malformed base64.

    def raw_ciphertext(self) -> bytes:
        return _b64decode(self.ciphertext)

    def raw_iv(self) -> bytes:
        return _b64decode(self.iv)

    def raw_tag(self) -> bytes:
        return _b64decode(self.auth_tag)


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


__all__ = ["ALGORITHM", "EncryptedPayload", "b64encode"]
