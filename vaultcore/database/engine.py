"""
Database Engine Management Module.

Provides a singleton AsyncEngine for the SQL record store.

SSL Configuration (asyncpg URLs only):
    DATABASE_SSL_MODE controls SSL behavior:
    - "verify-full": Full SSL verification with certificate check (RECOMMENDED for production)
    - "require": Require SSL but don't verify certificate (default)
    - "prefer": Same as require for asyncpg
    - "disable": No SSL (only for local development)

    DATABASE_SSL_CERT_PATH: Path to CA certificate file (required for verify-full mode)
"""

import logging
import ssl
from typing import Any, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from vaultcore.config import EncryptionSettings, get_settings

_logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None


def _permissive_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _get_ssl_context(
    ssl_mode: str, cert_path: Optional[str] = None
) -> ssl.SSLContext | None:
    """
    Create SSL context for the given DATABASE_SSL_MODE.

    Returns:
        ssl.SSLContext for verify-full, require and prefer modes
        None for disable mode
    """
    ssl_mode = ssl_mode.lower()

    if ssl_mode == "disable":
        _logger.warning(
            "DATABASE_SSL_MODE=disable: SSL is disabled. "
            "This is insecure and should only be used for local development."
        )
        return None

    if ssl_mode == "verify-full":
        if not cert_path:
            _logger.error(
                "DATABASE_SSL_MODE=verify-full requires DATABASE_SSL_CERT_PATH. "
                "Falling back to 'require' mode."
            )
            return _permissive_context()

        try:
            ctx = ssl.create_default_context(cafile=cert_path)
        except (OSError, ssl.SSLError) as e:
            _logger.error(
                f"Failed to load SSL certificate from {cert_path}: {e}. "
                "Falling back to 'require' mode."
            )
            return _permissive_context()

        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
        _logger.info(f"SSL mode: verify-full with cert: {cert_path}")
        return ctx

    if ssl_mode not in ("require", "prefer"):
        _logger.warning(f"Unknown DATABASE_SSL_MODE '{ssl_mode}'. Using 'require' mode.")

    return _permissive_context()


def create_engine_for(
    database_url: str,
    ssl_mode: str = "require",
    cert_path: Optional[str] = None,
) -> AsyncEngine:
    """Create an async engine; SSL settings only apply to asyncpg URLs."""
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}

    if url.get_backend_name() == "postgresql":
        kwargs.update(pool_size=10, max_overflow=20)
        if url.get_driver_name() == "asyncpg":
            kwargs["connect_args"] = {"ssl": _get_ssl_context(ssl_mode, cert_path)}

    return create_async_engine(url, **kwargs)


def get_engine(settings: Optional[EncryptionSettings] = None) -> AsyncEngine:
    """
    Get or create the async database engine (singleton).

    Returns:
        AsyncEngine: SQLAlchemy async engine instance.

    Raises:
        ValueError: If DATABASE_URL is not configured.
    """
    global _engine

    if _engine is None:
        settings = settings or get_settings()
        if not settings.database_url:
            raise ValueError("DATABASE_URL is not configured")

        _engine = create_engine_for(
            settings.database_url,
            settings.database_ssl_mode,
            settings.database_ssl_cert_path,
        )

    return _engine


async def close_engine() -> None:
    """
    Close the database engine and release all connections.

    Should be called during application shutdown.
    """
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
