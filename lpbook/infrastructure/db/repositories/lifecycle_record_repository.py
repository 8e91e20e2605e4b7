from __future__ import annotations

import logging

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from lpbook.application.ports.lifecycle_record_port import LifecycleRecordPort
from lpbook.domain.entities.lifecycle import LifecycleRecord
from lpbook.domain.exceptions import PersistenceFailureError
from lpbook.infrastructure.db.engine import Base
from lpbook.infrastructure.db.mappers.lifecycle_record_mapper import (
    map_record_to_row,
    map_row_to_record,
)
from lpbook.infrastructure.db.models.lifecycle_record import LifecycleRecordModel


logger = logging.getLogger(__name__)


class SqlLifecycleRecordRepository(LifecycleRecordPort):
    """Append-only store of lifecycle records. Rows are never updated or deleted."""

    def __init__(self, engine, *, create_schema: bool = True):
        self._engine = engine
        if create_schema:
            Base.metadata.create_all(engine, tables=[LifecycleRecordModel.__table__])

    def append(self, records: list[LifecycleRecord]) -> None:
        if not records:
            return
        rows = [map_record_to_row(record) for record in records]
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(LifecycleRecordModel), rows)
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(f"Could not append lifecycle records: {exc}") from exc
        logger.debug("lifecycle_record_repository: appended count=%s", len(rows))

    def list_recent(
        self,
        *,
        limit: int,
        position_id: str | None = None,
    ) -> list[LifecycleRecord]:
        table = LifecycleRecordModel.__table__
        query = select(table).order_by(table.c.id.desc()).limit(max(0, limit))
        if position_id is not None:
            query = query.where(table.c.position_id == position_id)
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [map_row_to_record(row) for row in rows]
