"""
vaultcore Configuration.

Manages the environment variables of the encryption core. Values may also
come from a ``.env`` file in the working directory. Secrets use SecretStr so
they never appear in reprs or validation errors.
"""

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EncryptionSettings(BaseSettings):
    """
    Encryption and rotation settings loaded from environment variables.

    Only ``ENCRYPTION_KEY`` is required.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Key material
    encryption_key: Annotated[
        SecretStr,
        Field(
            description="Active master secret (base64)",
            validation_alias="ENCRYPTION_KEY",
        ),
    ]
    previous_key: Optional[SecretStr] = Field(
        default=None, validation_alias="ENCRYPTION_KEY_PREVIOUS"
    )
    key_version: int = Field(default=1, ge=1, validation_alias="ENCRYPTION_KEY_VERSION")
    search_key: Optional[SecretStr] = Field(
        default=None,
        description="Dedicated search-index secret; hashes survive rotation when set",
        validation_alias="ENCRYPTION_SEARCH_KEY",
    )
    pbkdf2_iterations: int = Field(
        default=100_000, ge=1, validation_alias="ENCRYPTION_PBKDF2_ITERATIONS"
    )

    # Rotation policy
    rotation_interval_days: int = Field(
        default=90, ge=1, validation_alias="ENCRYPTION_ROTATION_INTERVAL_DAYS"
    )
    retention_period_days: int = Field(
        default=180, ge=0, validation_alias="ENCRYPTION_RETENTION_PERIOD_DAYS"
    )
    min_key_length: int = Field(default=32, ge=1, validation_alias="ENCRYPTION_MIN_KEY_LENGTH")
    max_key_operations: int = Field(
        default=1_000_000, ge=1, validation_alias="ENCRYPTION_MAX_KEY_OPERATIONS"
    )
    rotation_batch_size: int = Field(
        default=100, ge=1, validation_alias="ENCRYPTION_ROTATION_BATCH_SIZE"
    )
    rotation_batch_timeout: float = Field(
        default=30.0, gt=0, validation_alias="ENCRYPTION_ROTATION_BATCH_TIMEOUT"
    )
    validation_sample_size: int = Field(
        default=1000, ge=1, validation_alias="ENCRYPTION_VALIDATION_SAMPLE_SIZE"
    )

    # Database (SQL record store)
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    database_ssl_mode: str = Field(default="require", validation_alias="DATABASE_SSL_MODE")
    database_ssl_cert_path: Optional[str] = Field(
        default=None, validation_alias="DATABASE_SSL_CERT_PATH"
    )

    # Logging
    log_level: str = Field(default="INFO", validation_alias="APP_LOG_LEVEL")

    @field_validator("previous_key", "search_key", mode="before")
    @classmethod
    def _empty_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> EncryptionSettings:
    """
    Get cached settings.

    Uses LRU cache to ensure settings are loaded only once. Tests call
    ``get_settings.cache_clear()`` after changing the environment.

    Returns:
        EncryptionSettings: Settings instance.
    """
    return EncryptionSettings()
