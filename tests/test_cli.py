"""
Unit Tests for the vaultcore CLI.

Commands run against an AppContext over an in-memory record store.
"""

from unittest.mock import patch

import pytest


@pytest.fixture
def cli_context(app_context):
    with patch("vaultcore.cli.get_app_context", return_value=app_context), patch(
        "vaultcore.cli.setup_logging"
    ):
        yield app_context


class TestCli:
    """Tests for the operator commands."""

    def test_generate_key(self, capsys):
        from vaultcore.cli import main
        from vaultcore.security.validator import KeyValidator

        assert main(["generate-key"]) == 0

        generated = capsys.readouterr().out.strip()
        assert KeyValidator().validate(generated).is_valid

    def test_validate_key_argument(self, capsys, secret):
        from vaultcore.cli import main

        assert main(["validate-key", secret]) == 0
        assert "valid: True" in capsys.readouterr().out

    def test_validate_weak_key(self, capsys):
        from vaultcore.cli import main

        assert main(["validate-key", "short"]) == 1

        out = capsys.readouterr().out
        assert "valid: False" in out
        assert "issue: Key too short" in out

    def test_validate_configured_key(self, cli_context, capsys):
        from vaultcore.cli import main

        assert main(["validate-key"]) == 0
        assert "strength: strong" in capsys.readouterr().out

    def test_status(self, cli_context, capsys):
        from vaultcore.cli import main

        assert main(["status"]) == 0

        out = capsys.readouterr().out
        assert "algorithm: aes-256-gcm" in out
        assert f"key {cli_context.key_store.get_active().key_id} v1 active" in out
        assert "rotation_due: False" in out

    def test_rotate_prints_new_environment(self, cli_context, seed_records, capsys, secret):
        """Test rotate re-encrypts records and prints the secrets to persist."""
        from vaultcore.cli import main

        seed_records("user", [{"phone_number": "0912345678"}])

        assert main(["rotate"]) == 0

        out = capsys.readouterr().out
        active = cli_context.key_store.get_active()
        assert "phase: completed" in out
        assert "re-encrypted: 1/1" in out
        assert f"ENCRYPTION_KEY={active.secret}" in out
        assert f"ENCRYPTION_KEY_PREVIOUS={secret}" in out
        assert "ENCRYPTION_KEY_VERSION=2" in out

    def test_rotate_rejects_weak_key(self, cli_context, capsys, secret):
        from vaultcore.cli import main

        assert main(["rotate", "--new-key", "short"]) == 1

        assert "Error:" in capsys.readouterr().err
        assert cli_context.key_store.get_active().secret == secret

    def test_migrate(self, cli_context, record_store, capsys):
        from vaultcore.cli import main

        record_store.insert("user", {"phone_number": "0912345678"})

        assert main(["migrate", "user", "phone_number"]) == 0
        assert "migrated: 1" in capsys.readouterr().out

    def test_cleanup(self, cli_context, capsys):
        from vaultcore.cli import main

        assert main(["cleanup"]) == 0

        out = capsys.readouterr().out
        assert "removed: 0" in out
        assert "retained: 0" in out

    def test_missing_configuration(self, monkeypatch, tmp_path, capsys):
        """Test a missing ENCRYPTION_KEY is reported, not raised."""
        from vaultcore.app_context import reset_app_context
        from vaultcore.cli import main
        from vaultcore.config import get_settings

        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        get_settings.cache_clear()
        reset_app_context()
        try:
            assert main(["status"]) == 2
        finally:
            get_settings.cache_clear()
            reset_app_context()

        assert "Configuration error" in capsys.readouterr().err
