"""
vaultcore operator CLI.

Usage:
    vaultcore generate-key
    vaultcore validate-key [KEY]
    vaultcore status
    vaultcore rotate [--new-key KEY]
    vaultcore migrate ENTITY FIELD
    vaultcore cleanup

Settings come from the environment (or ``.env``), see ``vaultcore.config``.
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from pydantic import ValidationError

from vaultcore.app_context import AppContext, get_app_context
from vaultcore.logging_config import setup_logging
from vaultcore.security.exceptions import EncryptionError
from vaultcore.security.validator import KeyValidator


def _context() -> AppContext:
    context = get_app_context()
    setup_logging(context.settings.log_level)
    return context


async def _close(context: AppContext) -> None:
    if context.settings.database_url:
        from vaultcore.database import close_db_connections

        await close_db_connections()


def cmd_generate_key(args: argparse.Namespace) -> int:
    print(KeyValidator().generate())
    return 0


def cmd_validate_key(args: argparse.Namespace) -> int:
    if args.key is not None:
        validator = KeyValidator()
        key = args.key
    else:
        context = _context()
        validator = context.validator
        key = context.settings.encryption_key.get_secret_value()

    result = validator.validate(key)
    print(f"valid: {result.is_valid}")
    print(f"strength: {result.strength.value}")
    for issue in result.issues:
        print(f"issue: {issue}")
    return 0 if result.is_valid else 1


def cmd_status(args: argparse.Namespace) -> int:
    context = _context()
    info = context.engine.describe()
    for name, value in info.items():
        print(f"{name}: {value}")

    for metadata in context.key_store.snapshot():
        expires = metadata.expires_at.isoformat() if metadata.expires_at else "-"
        print(
            f"key {metadata.key_id} v{metadata.version} {metadata.status.value} "
            f"created={metadata.created_at.isoformat()} expires={expires} "
            f"enc={metadata.usage.encryption_operations} "
            f"dec={metadata.usage.decryption_operations}"
        )

    print(f"rotation_due: {context.rotation_manager.should_rotate()}")
    return 0


async def _rotate(context: AppContext, new_key: Optional[str]) -> int:
    try:
        status = await context.rotation_manager.rotate_key(new_key)
    finally:
        await _close(context)

    progress = status.progress
    print(f"phase: {status.phase.value}")
    print(f"re-encrypted: {progress.processed}/{progress.total}")
    print(f"active key id: {status.new_key_id}")

    previous = context.key_store.get_previous()
    if status.old_key_id != status.new_key_id:
        # The in-memory key store does not outlive this process.
        print("Update the environment before restarting:")
        print(f"ENCRYPTION_KEY={context.key_store.get_active().secret}")
        if previous is not None:
            print(f"ENCRYPTION_KEY_PREVIOUS={previous.secret}")
        print(f"ENCRYPTION_KEY_VERSION={context.key_store.get_active().version}")
    return 0


def cmd_rotate(args: argparse.Namespace) -> int:
    return asyncio.run(_rotate(_context(), args.new_key))


async def _migrate(context: AppContext, entity_type: str, field: str) -> int:
    try:
        result = await context.migrator.migrate(entity_type, field)
    finally:
        await _close(context)

    print(f"migrated: {result.migrated}")
    print(f"failed: {result.failed}")
    return 0 if result.failed == 0 else 1


def cmd_migrate(args: argparse.Namespace) -> int:
    return asyncio.run(_migrate(_context(), args.entity, args.field))


def cmd_cleanup(args: argparse.Namespace) -> int:
    context = _context()
    removed, retained = context.rotation_manager.cleanup_expired_keys()
    print(f"removed: {removed}")
    print(f"retained: {retained}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultcore",
        description="Field-level encryption key management",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate-key", help="Generate a new master secret")
    generate.set_defaults(func=cmd_generate_key)

    validate = subparsers.add_parser("validate-key", help="Check a secret's strength")
    validate.add_argument("key", nargs="?", help="Secret to check (default: ENCRYPTION_KEY)")
    validate.set_defaults(func=cmd_validate_key)

    status = subparsers.add_parser("status", help="Show key and algorithm status")
    status.set_defaults(func=cmd_status)

    rotate = subparsers.add_parser("rotate", help="Rotate the master secret")
    rotate.add_argument("--new-key", help="Secret to rotate to (default: generate one)")
    rotate.set_defaults(func=cmd_rotate)

    migrate = subparsers.add_parser("migrate", help="Encrypt legacy plaintext values")
    migrate.add_argument("entity", help="Entity type, e.g. user")
    migrate.add_argument("field", help="Field name, e.g. phone_number")
    migrate.set_defaults(func=cmd_migrate)

    cleanup = subparsers.add_parser("cleanup", help="Discard expired retained secrets")
    cleanup.set_defaults(func=cmd_cleanup)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return args.func(args)
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except EncryptionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
