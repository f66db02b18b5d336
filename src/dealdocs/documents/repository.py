"""Deal files ledger repository -- async reads and upserts of deal_files rows.

DealFileRepository uses the session_factory callable pattern: the factory is
an async generator yielding AsyncSession instances (core.database.get_session
in production). Rows are converted to LedgerRecord via model_validate().
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealdocs.documents.adapter import LedgerStore
from src.dealdocs.documents.models import DealFileModel
from src.dealdocs.documents.schemas import LedgerRecord, LedgerUpsert

logger = structlog.get_logger(__name__)


def _model_to_record(model: DealFileModel) -> LedgerRecord:
    """Convert DealFileModel to LedgerRecord schema."""
    return LedgerRecord.model_validate(model)


def build_upsert_statement(record_id: str, fields: LedgerUpsert):
    """Build the INSERT ... ON CONFLICT (id) DO UPDATE statement for one row.

    ``created_at`` is only set on insert; every other field is overwritten.
    """
    values = fields.model_dump()
    stmt = pg_insert(DealFileModel).values(id=record_id, **values)
    return stmt.on_conflict_do_update(
        index_elements=[DealFileModel.id],
        set_={key: stmt.excluded[key] for key in values},
    ).returning(DealFileModel)


class DealFileRepository(LedgerStore):
    """Async access to the deal_files ledger.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def find_existing_for_deal(self, deal_id: str) -> list[LedgerRecord]:
        """Return every ledger row of a deal.

        Args:
            deal_id: CRM deal id.

        Returns:
            List of LedgerRecord objects, oldest first.
        """
        async for session in self._session_factory():
            stmt = (
                select(DealFileModel)
                .where(DealFileModel.deal_id == deal_id)
                .order_by(DealFileModel.added_at.asc().nulls_last(), DealFileModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]
        return []

    async def upsert(self, record_id: str, fields: LedgerUpsert) -> LedgerRecord:
        """Insert or update ledger row ``record_id``.

        Args:
            record_id: Ledger primary key (existing row id or the CRM file id).
            fields: Values to write.

        Returns:
            The row as stored after the upsert.
        """
        async for session in self._session_factory():
            stmt = build_upsert_statement(record_id, fields)
            result = await session.scalars(
                stmt, execution_options={"populate_existing": True}
            )
            model = result.one()
            await session.commit()
            logger.debug(
                "deal_files.upserted",
                record_id=record_id,
                deal_id=fields.deal_id,
                source_file_id=fields.source_file_id,
                remote_file_id=fields.remote_file_id,
            )
            return _model_to_record(model)
        raise RuntimeError("session factory yielded no session")
