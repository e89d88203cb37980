"""
AppContext - Dependency Injection Container.

Builds the encryption core from settings once and hands out the shared
instances. Everything is created lazily on first access.
"""

import logging
from typing import Optional

from vaultcore.config import EncryptionSettings, get_settings
from vaultcore.security.derivation import KeyDerivation
from vaultcore.security.encryption import CryptoEngine
from vaultcore.security.field_codec import FieldCodec
from vaultcore.security.key_store import InMemoryKeyStore, KeyStore
from vaultcore.security.migration import PlaintextMigrator
from vaultcore.security.rotation import KeyRotationManager, RotationConfig
from vaultcore.security.search_index import SearchIndexer
from vaultcore.security.validator import KeyStrength, KeyValidator
from vaultcore.store.base import RecordStore


class AppContext:
    """
    Application Context - Central Dependency Injection Container.

    Tests construct it with explicit settings and an in-memory record store;
    the CLI uses ``get_app_context()``.
    """

    def __init__(
        self,
        settings: Optional[EncryptionSettings] = None,
        record_store: Optional[RecordStore] = None,
        key_store: Optional[KeyStore] = None,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._settings = settings

        # Service instances (lazy initialization)
        self._key_store: Optional[KeyStore] = key_store
        self._record_store: Optional[RecordStore] = record_store
        self._derivation: Optional[KeyDerivation] = None
        self._validator: Optional[KeyValidator] = None
        self._search_indexer: Optional[SearchIndexer] = None
        self._engine: Optional[CryptoEngine] = None
        self._codec: Optional[FieldCodec] = None
        self._rotation_manager: Optional[KeyRotationManager] = None
        self._migrator: Optional[PlaintextMigrator] = None

    @property
    def settings(self) -> EncryptionSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def validator(self) -> KeyValidator:
        if self._validator is None:
            self._validator = KeyValidator(min_key_length=self.settings.min_key_length)
        return self._validator

    @property
    def derivation(self) -> KeyDerivation:
        if self._derivation is None:
            self._derivation = KeyDerivation(iterations=self.settings.pbkdf2_iterations)
        return self._derivation

    @property
    def key_store(self) -> KeyStore:
        """Key store seeded from settings; the active secret is validated first."""
        if self._key_store is None:
            settings = self.settings
            active_secret = settings.encryption_key.get_secret_value()

            result = self.validator.ensure_valid(active_secret)
            if result.strength is not KeyStrength.STRONG:
                self._logger.warning(f"ENCRYPTION_KEY strength is {result.strength.value}")

            previous = []
            if settings.previous_key is not None:
                previous.append(settings.previous_key.get_secret_value())

            self._key_store = InMemoryKeyStore(
                active_secret,
                active_version=settings.key_version,
                previous_secrets=previous,
            )
        return self._key_store

    @property
    def search_indexer(self) -> SearchIndexer:
        if self._search_indexer is None:
            search_secret = None
            if self.settings.search_key is not None:
                search_secret = self.settings.search_key.get_secret_value()
                self.validator.ensure_valid(search_secret)
            self._search_indexer = SearchIndexer(
                self.derivation, self.key_store, search_secret=search_secret
            )
        return self._search_indexer

    @property
    def engine(self) -> CryptoEngine:
        if self._engine is None:
            self._engine = CryptoEngine(self.key_store, self.derivation, self.search_indexer)
        return self._engine

    @property
    def codec(self) -> FieldCodec:
        if self._codec is None:
            self._codec = FieldCodec(self.engine)
        return self._codec

    @property
    def record_store(self) -> RecordStore:
        """SQL store when DATABASE_URL is set, otherwise an empty in-memory store."""
        if self._record_store is None:
            if self.settings.database_url:
                from vaultcore.database import get_session_factory
                from vaultcore.store.sql import SqlRecordStore

                self._record_store = SqlRecordStore(get_session_factory())
            else:
                from vaultcore.store.memory import InMemoryRecordStore

                self._logger.warning("DATABASE_URL not set, using in-memory record store")
                self._record_store = InMemoryRecordStore()
        return self._record_store

    @property
    def rotation_manager(self) -> KeyRotationManager:
        if self._rotation_manager is None:
            self._rotation_manager = KeyRotationManager(
                self.key_store,
                self.engine,
                self.record_store,
                self.validator,
                config=RotationConfig.from_settings(self.settings),
            )
        return self._rotation_manager

    @property
    def migrator(self) -> PlaintextMigrator:
        if self._migrator is None:
            self._migrator = PlaintextMigrator(
                self.engine,
                self.record_store,
                batch_size=self.settings.rotation_batch_size,
            )
        return self._migrator


# Global singleton
_app_context: Optional[AppContext] = None


def get_app_context() -> AppContext:
    """Get or create the global application context."""
    global _app_context
    if _app_context is None:
        _app_context = AppContext()
    return _app_context


def reset_app_context() -> None:
    """Drop the global context (tests, or after settings change)."""
    global _app_context
    _app_context = None
