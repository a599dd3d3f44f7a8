"""
SQLAlchemy-backed Approval Record Store.

The optimistic status check is a conditional UPDATE: the row only changes if
its status still equals the status the caller read. Blocking database work
runs in a worker thread so the event loop keeps serving other reviewers.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.sql import Select

from content_approval.db.models import ContentApproval, ContentApprovalHistory
from content_approval.db.session import DatabaseSessionManager

from .errors import ConflictError, RecordNotFoundError
from .schemas import (
    ApprovalRecord,
    ApprovalState,
    HistoryEntry,
    NewApprovalRecord,
    NewHistoryEntry,
    QueueFilter,
    QueueOrder,
    RecordUpdate,
    ensure_aware,
)

logger = logging.getLogger(__name__)


def _to_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    columns = {}
    for key, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = _utc(value)
        columns[key] = value
    return columns


def _utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def _to_record(row: ContentApproval) -> ApprovalRecord:
    return ApprovalRecord.model_validate(row)


def _history_row(record_id: int, history: NewHistoryEntry) -> ContentApprovalHistory:
    return ContentApprovalHistory(record_id=record_id, **_to_columns(history.model_dump()))


class SqlApprovalRecordStore:
    """Approval record store over a relational database"""

    def __init__(self, db_manager: DatabaseSessionManager):
        self._db = db_manager

    # ------------------------------------------------------------------
    # Async contract
    # ------------------------------------------------------------------

    async def create(
        self, record: NewApprovalRecord, history: Optional[NewHistoryEntry] = None
    ) -> ApprovalRecord:
        return await asyncio.to_thread(self._create, record, history)

    async def get(self, record_id: int) -> ApprovalRecord:
        return await asyncio.to_thread(self._get, record_id)

    async def update(
        self,
        record_id: int,
        mutation: RecordUpdate,
        expected_status: ApprovalState,
        history: Optional[NewHistoryEntry] = None,
    ) -> ApprovalRecord:
        return await asyncio.to_thread(self._update, record_id, mutation, expected_status, history)

    async def list_history(self, record_id: int) -> List[HistoryEntry]:
        return await asyncio.to_thread(self._list_history, record_id)

    async def list(
        self, filters: QueueFilter, page: int, page_size: int
    ) -> Tuple[List[ApprovalRecord], int]:
        return await asyncio.to_thread(self._list, filters, page, page_size)

    async def count_by_status(self) -> Dict[ApprovalState, int]:
        return await asyncio.to_thread(self._count_by_status)

    async def count_created_before(
        self, statuses: Iterable[ApprovalState], cutoff: datetime
    ) -> int:
        return await asyncio.to_thread(self._count_created_before, list(statuses), cutoff)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _create(
        self, record: NewApprovalRecord, history: Optional[NewHistoryEntry]
    ) -> ApprovalRecord:
        row = ContentApproval(**_to_columns(record.model_dump()))
        with self._db.session_scope() as session:
            session.add(row)
            session.flush()
            created = _to_record(row)
            if history is not None:
                session.add(_history_row(created.id, history))
        logger.debug(f"Inserted approval record {created.id} with status {created.status.value}")
        return created

    def _get(self, record_id: int) -> ApprovalRecord:
        with self._db.session_scope() as session:
            row = session.get(ContentApproval, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            return _to_record(row)

    def _update(
        self,
        record_id: int,
        mutation: RecordUpdate,
        expected_status: ApprovalState,
        history: Optional[NewHistoryEntry],
    ) -> ApprovalRecord:
        with self._db.session_scope() as session:
            row = session.get(ContentApproval, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            current = _to_record(row)
            if current.status != expected_status:
                raise ConflictError(record_id, expected_status, current.status)

            # Validates the invariants before anything is written
            updated = mutation.apply_to(current)

            stmt = (
                update(ContentApproval)
                .where(ContentApproval.id == record_id)
                .where(ContentApproval.status == expected_status.value)
                .values(**_to_columns(mutation.changes()))
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)
            if result.rowcount == 0:
                raise ConflictError(record_id, expected_status)
            if history is not None:
                session.add(_history_row(record_id, history))
            return updated

    def _list_history(self, record_id: int) -> List[HistoryEntry]:
        stmt = (
            select(ContentApprovalHistory)
            .where(ContentApprovalHistory.record_id == record_id)
            .order_by(ContentApprovalHistory.created_at.asc(), ContentApprovalHistory.id.asc())
        )
        with self._db.session_scope() as session:
            if session.get(ContentApproval, record_id) is None:
                raise RecordNotFoundError(record_id)
            rows = session.execute(stmt).scalars().all()
            return [HistoryEntry.model_validate(r) for r in rows]

    def _apply_filters(self, stmt: Select, filters: QueueFilter) -> Select:
        if filters.status is not None:
            stmt = stmt.where(ContentApproval.status == filters.status.value)
        if filters.priority is not None:
            stmt = stmt.where(ContentApproval.priority == filters.priority.value)
        if filters.created_after is not None:
            stmt = stmt.where(ContentApproval.created_at >= _utc(filters.created_after))
        if filters.created_before is not None:
            stmt = stmt.where(ContentApproval.created_at <= _utc(filters.created_before))
        return stmt

    def _list(
        self, filters: QueueFilter, page: int, page_size: int
    ) -> Tuple[List[ApprovalRecord], int]:
        if filters.order == QueueOrder.NEWEST:
            order_by = (ContentApproval.created_at.desc(), ContentApproval.id.desc())
        elif filters.order == QueueOrder.OLDEST:
            order_by = (ContentApproval.created_at.asc(), ContentApproval.id.asc())
        else:
            order_by = (
                ContentApproval.quality_score.desc(),
                ContentApproval.created_at.desc(),
                ContentApproval.id.desc(),
            )

        count_stmt = self._apply_filters(
            select(func.count()).select_from(ContentApproval), filters
        )
        data_stmt = (
            self._apply_filters(select(ContentApproval), filters)
            .order_by(*order_by)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        with self._db.session_scope() as session:
            total = int(session.execute(count_stmt).scalar_one())
            rows = session.execute(data_stmt).scalars().all()
            return [_to_record(r) for r in rows], total

    def _count_by_status(self) -> Dict[ApprovalState, int]:
        counts = {state: 0 for state in ApprovalState}
        stmt = select(ContentApproval.status, func.count()).group_by(ContentApproval.status)
        with self._db.session_scope() as session:
            for status, count in session.execute(stmt).all():
                counts[ApprovalState(status)] = int(count)
        return counts

    def _count_created_before(self, statuses: List[ApprovalState], cutoff: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(ContentApproval)
            .where(ContentApproval.status.in_([s.value for s in statuses]))
            .where(ContentApproval.created_at < _utc(cutoff))
        )
        with self._db.session_scope() as session:
            return int(session.execute(stmt).scalar_one())
