"""
Database Package.

Engine, sessions and models backing the SQL record store.
"""

from vaultcore.database.base import Base, CreatedAt, TimestampMixin, UpdatedAt, UUIDPrimaryKey
from vaultcore.database.engine import close_engine, create_engine_for, get_engine
from vaultcore.database.models import ENTITY_MODELS, Document, Message, User
from vaultcore.database.session import (
    close_db_connections,
    create_session_factory,
    get_session_factory,
    get_standalone_session,
    init_database,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKey",
    "CreatedAt",
    "UpdatedAt",
    # Engine
    "get_engine",
    "create_engine_for",
    "close_engine",
    # Models
    "ENTITY_MODELS",
    "User",
    "Message",
    "Document",
    # Session
    "create_session_factory",
    "get_session_factory",
    "get_standalone_session",
    "close_db_connections",
    "init_database",
]
