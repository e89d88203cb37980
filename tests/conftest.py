"""
Pytest Configuration and Shared Fixtures.

Provides common test fixtures for the encryption core tests. PBKDF2 runs
with a low iteration count so the suite stays fast.
"""

import pytest
from typing import Any, Callable

TEST_ITERATIONS = 1_000


# =============================================================================
# Key Fixtures
# =============================================================================


@pytest.fixture
def secret() -> str:
    """A freshly generated master secret."""
    from vaultcore.security.validator import KeyValidator

    return KeyValidator().generate()


@pytest.fixture
def other_secret() -> str:
    """A second, independent master secret."""
    from vaultcore.security.validator import KeyValidator

    return KeyValidator().generate()


@pytest.fixture
def search_secret() -> str:
    """A dedicated search-index secret."""
    from vaultcore.security.validator import KeyValidator

    return KeyValidator().generate()


@pytest.fixture
def derivation():
    from vaultcore.security.derivation import KeyDerivation

    return KeyDerivation(iterations=TEST_ITERATIONS)


@pytest.fixture
def validator():
    from vaultcore.security.validator import KeyValidator

    return KeyValidator()


@pytest.fixture
def key_store(secret):
    from vaultcore.security.key_store import InMemoryKeyStore

    return InMemoryKeyStore(secret)


@pytest.fixture
def search_indexer(derivation, key_store):
    from vaultcore.security.search_index import SearchIndexer

    return SearchIndexer(derivation, key_store)


@pytest.fixture
def engine(key_store, derivation, search_indexer):
    from vaultcore.security.encryption import CryptoEngine

    return CryptoEngine(key_store, derivation, search_indexer)


@pytest.fixture
def codec(engine):
    from vaultcore.security.field_codec import FieldCodec

    return FieldCodec(engine)


# =============================================================================
# Record Store Fixtures
# =============================================================================


@pytest.fixture
def record_store():
    from vaultcore.store.memory import InMemoryRecordStore

    return InMemoryRecordStore()


@pytest.fixture
def rotation_config():
    from vaultcore.security.rotation import RotationConfig

    return RotationConfig(batch_size=2, batch_timeout=5.0, validation_sample_size=50)


@pytest.fixture
def rotation_manager(key_store, engine, record_store, validator, rotation_config):
    from vaultcore.security.rotation import KeyRotationManager

    return KeyRotationManager(
        key_store, engine, record_store, validator, config=rotation_config
    )


@pytest.fixture
def seed_records(codec, record_store) -> Callable[..., list[str]]:
    """Insert encrypted records through the codec; returns their ids."""
    from vaultcore.security.field_codec import ENTITY_FIELDS

    def _seed(entity_type: str, records: list[dict[str, Any]]) -> list[str]:
        ids = []
        for record in records:
            encrypted = codec.encrypt_object(record, ENTITY_FIELDS[entity_type])
            ids.append(record_store.insert(entity_type, encrypted))
        return ids

    return _seed


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch, secret):
    """Set up environment variables for settings tests."""
    from vaultcore.config import get_settings

    env_vars = {
        "ENCRYPTION_KEY": secret,
        "ENCRYPTION_KEY_VERSION": "1",
        "ENCRYPTION_PBKDF2_ITERATIONS": str(TEST_ITERATIONS),
        "ENCRYPTION_ROTATION_BATCH_SIZE": "10",
        "APP_LOG_LEVEL": "DEBUG",
    }

    for key in (
        "ENCRYPTION_KEY_PREVIOUS",
        "ENCRYPTION_SEARCH_KEY",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(key, raising=False)

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    yield env_vars
    get_settings.cache_clear()


@pytest.fixture
def app_context(mock_env_vars, record_store):
    """AppContext over the mock environment and an in-memory record store."""
    from vaultcore.app_context import AppContext, reset_app_context

    reset_app_context()
    context = AppContext(record_store=record_store)
    yield context
    reset_app_context()
