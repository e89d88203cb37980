"""
SQL Record Store.

RecordStore over the SQLAlchemy models in ``vaultcore.database.models``.

The ``<field>_key_id`` companion column is the migration marker: rows whose
key id differs from the target are pending, rows with a NULL key id still
hold legacy plaintext.
"""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultcore.database.base import Base
from vaultcore.database.models import ENTITY_MODELS
from vaultcore.database.session import get_standalone_session
from vaultcore.security.exceptions import RecordStoreError
from vaultcore.security.field_codec import ENTITY_FIELDS, search_column
from vaultcore.security.payload import EncryptedPayload
from vaultcore.store.base import (
    RecordStore,
    SampleCheck,
    SampleFailure,
    StoredCiphertext,
    StoredPlaintext,
)

_logger = logging.getLogger(__name__)


def key_id_column(field: str) -> str:
    return f"{field}_key_id"


class SqlRecordStore(RecordStore):
    """
    RecordStore backed by an async SQLAlchemy session factory.

    Each contract call runs in its own short session so a long rotation
    never holds a transaction open across batches.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        models: Optional[dict[str, type[Base]]] = None,
        entity_fields: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._models = models or ENTITY_MODELS
        self._entity_fields = entity_fields or ENTITY_FIELDS

    def _columns(self, entity_type: str, field: str) -> tuple[type[Base], Any, Any]:
        model = self._models.get(entity_type)
        if model is None:
            raise RecordStoreError(f"Unknown entity type: {entity_type}")
        if field not in self._entity_fields.get(entity_type, []):
            raise RecordStoreError(f"Unknown field {field} for entity {entity_type}")
        return model, getattr(model, field), getattr(model, key_id_column(field))

    def _session(self):
        return get_standalone_session(self._session_factory)

    # -------------------------------------------------------------------------
    # Direct access (application side)
    # -------------------------------------------------------------------------

    async def insert(self, entity_type: str, values: dict[str, Any]) -> str:
        """
        Insert a row. Payload JSON values get their key id companion filled in.
        """
        model = self._models.get(entity_type)
        if model is None:
            raise RecordStoreError(f"Unknown entity type: {entity_type}")

        row_values = {k: v for k, v in values.items() if not k.startswith("_")}
        for field in self._entity_fields.get(entity_type, []):
            value = row_values.get(field)
            if EncryptedPayload.is_payload(value):
                row_values[key_id_column(field)] = EncryptedPayload.from_json(value).key_id

        row = model(**row_values)
        async with self._session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def get(self, entity_type: str, record_id: str) -> Optional[dict[str, Any]]:
        model = self._models.get(entity_type)
        if model is None:
            raise RecordStoreError(f"Unknown entity type: {entity_type}")

        async with self._session() as session:
            row = await session.get(model, record_id)
            if row is None:
                return None
            return {c.key: getattr(row, c.key) for c in model.__table__.columns}

    async def find_by_search(
        self, entity_type: str, field: str, hashes: Iterable[str]
    ) -> list[str]:
        """Ids of rows whose search companion matches any of ``hashes``."""
        model, _, _ = self._columns(entity_type, field)
        search = getattr(model, search_column(field))
        async with self._session() as session:
            result = await session.execute(
                select(model.id).where(search.in_(list(hashes))).order_by(model.id)
            )
            return [row[0] for row in result.all()]

    # -------------------------------------------------------------------------
    # RecordStore contract
    # -------------------------------------------------------------------------

    async def count(self, entity_type: str, field: str, current_key_id: str) -> int:
        model, _, key_col = self._columns(entity_type, field)
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(model)
                .where(key_col.is_not(None), key_col != current_key_id)
            )
            return result.scalar_one()

    async def fetch_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        current_key_id: str,
    ) -> list[StoredCiphertext]:
        model, column, key_col = self._columns(entity_type, field)
        async with self._session() as session:
            result = await session.execute(
                select(model.id, column)
                .where(key_col.is_not(None), key_col != current_key_id)
                .order_by(model.id)
                .limit(batch_size)
            )
            return [StoredCiphertext(id=row[0], ciphertext=row[1]) for row in result.all()]

    async def write_back(
        self,
        entity_type: str,
        record_id: str,
        field: str,
        payload: EncryptedPayload,
    ) -> bool:
        model, _, _ = self._columns(entity_type, field)
        values = {
            field: payload.to_json(),
            search_column(field): payload.search_hash,
            key_id_column(field): payload.key_id,
        }
        async with self._session() as session:
            result = await session.execute(
                update(model)
                .where(model.id == record_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    async def validate_sample(
        self,
        entity_type: str,
        field: str,
        check: SampleCheck,
        sample_size: int,
    ) -> list[SampleFailure]:
        model, column, key_col = self._columns(entity_type, field)
        async with self._session() as session:
            result = await session.execute(
                select(model.id, column)
                .where(key_col.is_not(None))
                .order_by(model.id)
                .limit(sample_size)
            )
            rows = result.all()

        failures = []
        for record_id, value in rows:
            error = await check(value)
            if error is not None:
                failures.append(SampleFailure(record_id=record_id, error=error))

        if failures:
            _logger.warning(
                f"{len(failures)}/{len(rows)} sampled {entity_type}.{field} value(s) failed validation"
            )
        return failures

    async def fetch_plaintext_batch(
        self,
        entity_type: str,
        field: str,
        batch_size: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[StoredPlaintext]:
        model, column, key_col = self._columns(entity_type, field)
        query = select(model.id, column).where(column.is_not(None), key_col.is_(None))
        if exclude_ids:
            query = query.where(model.id.not_in(list(exclude_ids)))

        async with self._session() as session:
            result = await session.execute(query.order_by(model.id).limit(batch_size))
            return [StoredPlaintext(id=row[0], value=row[1]) for row in result.all()]
