"""
Unit Tests for the record stores.

Runs the RecordStore contract against InMemoryRecordStore and against
SqlRecordStore on a SQLite database (aiosqlite).
"""

import json

import pytest
import pytest_asyncio


USERS = [{"phone_number": f"09{i:08d}", "national_id_number": f"A{i:09d}"} for i in range(4)]


async def _ok(value):
    return None


class TestInMemoryRecordStore:
    """Tests for the dictionary-backed store."""

    @pytest.mark.asyncio
    async def test_count_and_fetch_pending(self, record_store, seed_records, key_store, other_secret):
        from vaultcore.security.key_store import generate_key_id

        seed_records("user", USERS)
        target = generate_key_id(other_secret)

        assert await record_store.count("user", "phone_number", target) == 4
        assert await record_store.count("user", "phone_number", key_store.get_active().key_id) == 0

        batch = await record_store.fetch_batch("user", "phone_number", 3, target)
        assert len(batch) == 3
        assert len({r.id for r in batch}) == 3

    @pytest.mark.asyncio
    async def test_plaintext_not_counted_as_pending(self, record_store):
        record_store.insert("user", {"phone_number": "0912345678"})

        assert await record_store.count("user", "phone_number", "any") == 0
        plaintext = await record_store.fetch_plaintext_batch("user", "phone_number", 10)
        assert [p.value for p in plaintext] == ["0912345678"]

    @pytest.mark.asyncio
    async def test_write_back(self, record_store, engine):
        record_id = record_store.insert("user", {"phone_number": "0912345678"})
        payload = engine.encrypt("0912345678", "phone_number", True)

        assert await record_store.write_back("user", record_id, "phone_number", payload)

        stored = record_store.get("user", record_id)
        assert stored["phone_number"] == payload.to_json()
        assert stored["phone_number_search"] == payload.search_hash
        assert stored["_encrypted"] == ["phone_number"]

    @pytest.mark.asyncio
    async def test_write_back_missing_record(self, record_store, engine):
        payload = engine.encrypt("x")

        assert not await record_store.write_back("user", "missing", "phone_number", payload)

    @pytest.mark.asyncio
    async def test_unknown_entity_or_field(self, record_store):
        from vaultcore.security.exceptions import RecordStoreError

        with pytest.raises(RecordStoreError):
            await record_store.count("invoice", "amount", "k")
        with pytest.raises(RecordStoreError):
            await record_store.count("user", "email", "k")

    @pytest.mark.asyncio
    async def test_validate_sample(self, record_store, seed_records):
        seed_records("user", USERS)
        seen = []

        async def check(value):
            seen.append(value)
            return "bad" if len(seen) == 2 else None

        failures = await record_store.validate_sample("user", "phone_number", check, 3)

        assert len(seen) == 3
        assert len(failures) == 1
        assert failures[0].error == "bad"

    def test_records_are_copies(self, record_store):
        record_id = record_store.insert("user", {"phone_number": "x"})
        record_store.get("user", record_id)["phone_number"] = "changed"

        assert record_store.get("user", record_id)["phone_number"] == "x"


@pytest_asyncio.fixture
async def sql_session_factory(tmp_path):
    """SQLite database with the encrypted entity schema."""
    from vaultcore.database import create_engine_for, create_session_factory, init_database

    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}")
    await init_database(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def sql_store(sql_session_factory):
    from vaultcore.store.sql import SqlRecordStore

    return SqlRecordStore(sql_session_factory)


class TestSqlRecordStore:
    """Tests for the SQLAlchemy-backed store."""

    @pytest.mark.asyncio
    async def test_insert_sets_key_id_companion(self, sql_store, codec, key_store):
        encrypted = codec.encrypt_object({"phone_number": "0912345678"}, ["phone_number"])

        record_id = await sql_store.insert("user", encrypted)
        row = await sql_store.get("user", record_id)

        assert row["phone_number"] == encrypted["phone_number"]
        assert row["phone_number_search"] == encrypted["phone_number_search"]
        assert row["phone_number_key_id"] == key_store.get_active().key_id
        assert row["national_id_number_key_id"] is None

    @pytest.mark.asyncio
    async def test_pending_selection_by_key_id(self, sql_store, codec, key_store, other_secret):
        from vaultcore.security.key_store import generate_key_id

        for user in USERS:
            await sql_store.insert("user", codec.encrypt_object(user, ["phone_number", "national_id_number"]))
        await sql_store.insert("user", {"phone_number": "plaintext"})
        target = generate_key_id(other_secret)

        assert await sql_store.count("user", "phone_number", target) == 4
        assert await sql_store.count("user", "phone_number", key_store.get_active().key_id) == 0
        batch = await sql_store.fetch_batch("user", "phone_number", 3, target)
        assert len(batch) == 3
        assert all(json.loads(r.ciphertext)["keyId"] != target for r in batch)

    @pytest.mark.asyncio
    async def test_write_back_updates_companions(self, sql_store, engine):
        record_id = await sql_store.insert("user", {"phone_number": "0912345678"})
        payload = engine.encrypt("0912345678", "phone_number", True)

        assert await sql_store.write_back("user", record_id, "phone_number", payload)
        assert not await sql_store.write_back("user", "missing", "phone_number", payload)

        row = await sql_store.get("user", record_id)
        assert row["phone_number"] == payload.to_json()
        assert row["phone_number_search"] == payload.search_hash
        assert row["phone_number_key_id"] == payload.key_id

    @pytest.mark.asyncio
    async def test_plaintext_batch_excludes_ids(self, sql_store):
        first = await sql_store.insert("message", {"message_content": "one"})
        await sql_store.insert("message", {"message_content": "two"})

        batch = await sql_store.fetch_plaintext_batch(
            "message", "message_content", 10, exclude_ids=frozenset({first})
        )

        assert [p.value for p in batch] == ["two"]

    @pytest.mark.asyncio
    async def test_validate_sample(self, sql_store, codec):
        for user in USERS:
            await sql_store.insert("user", codec.encrypt_object(user, ["phone_number"]))

        async def always_bad(value):
            return "bad tag"

        assert await sql_store.validate_sample("user", "phone_number", _ok, 10) == []
        failures = await sql_store.validate_sample("user", "phone_number", always_bad, 2)
        assert len(failures) == 2

    @pytest.mark.asyncio
    async def test_unknown_field(self, sql_store):
        from vaultcore.security.exceptions import RecordStoreError

        with pytest.raises(RecordStoreError):
            await sql_store.count("user", "email", "k")

    @pytest.mark.asyncio
    async def test_migrate_then_rotate_end_to_end(
        self, sql_store, engine, codec, key_store, validator, rotation_config
    ):
        """Test plaintext rows are migrated, rotated and still searchable."""
        from vaultcore.security.migration import PlaintextMigrator
        from vaultcore.security.rotation import KeyRotationManager

        ids = [await sql_store.insert("user", dict(user)) for user in USERS]
        await sql_store.insert("document", {"document_content": "scanned id card"})

        migrator = PlaintextMigrator(engine, sql_store, batch_size=3)
        results = await migrator.migrate_all()
        assert sum(r.migrated for r in results) == 9

        manager = KeyRotationManager(key_store, engine, sql_store, validator, config=rotation_config)
        status = await manager.rotate_key()

        assert status.progress.processed == 9
        assert await sql_store.count("user", "phone_number", key_store.get_active().key_id) == 0

        hashes = codec.search_hashes("phone_number", USERS[2]["phone_number"])
        assert await sql_store.find_by_search("user", "phone_number", hashes) == [ids[2]]

        row = await sql_store.get("user", ids[2])
        assert engine.decrypt_text(row["national_id_number"]) == USERS[2]["national_id_number"]


class TestDatabaseEngine:
    """Tests for engine creation and SSL handling."""

    def test_ssl_disabled(self):
        from vaultcore.database.engine import _get_ssl_context

        assert _get_ssl_context("disable") is None

    def test_ssl_require_skips_verification(self):
        import ssl

        from vaultcore.database.engine import _get_ssl_context

        ctx = _get_ssl_context("require")

        assert ctx.verify_mode == ssl.CERT_NONE
        assert not ctx.check_hostname

    def test_verify_full_without_cert_falls_back(self):
        import ssl

        from vaultcore.database.engine import _get_ssl_context

        assert _get_ssl_context("verify-full").verify_mode == ssl.CERT_NONE

    def test_get_engine_requires_database_url(self, mock_env_vars):
        from vaultcore.config import EncryptionSettings
        from vaultcore.database.engine import get_engine

        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_engine(EncryptionSettings())
