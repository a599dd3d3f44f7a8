"""
Approval Record Store

Durable table of moderation records. Pure persistence: no policy lives here
beyond the per-record optimistic status check on update.
"""

import itertools
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

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
)

logger = logging.getLogger(__name__)


class ApprovalRecordStore(Protocol):
    async def create(
        self, record: NewApprovalRecord, history: Optional[NewHistoryEntry] = None
    ) -> ApprovalRecord:
        """Insert a new record, and its first history entry, and return it with its id"""
        ...

    async def get(self, record_id: int) -> ApprovalRecord:
        """Get a record by id, raising RecordNotFoundError if absent"""
        ...

    async def update(
        self,
        record_id: int,
        mutation: RecordUpdate,
        expected_status: ApprovalState,
        history: Optional[NewHistoryEntry] = None,
    ) -> ApprovalRecord:
        """Apply a mutation if the current status still equals expected_status.

        The history entry, if given, is only stored when the mutation is.
        Raises RecordNotFoundError or ConflictError.
        """
        ...

    async def list_history(self, record_id: int) -> List[HistoryEntry]:
        """History of a record, oldest first; RecordNotFoundError if absent"""
        ...

    async def list(
        self, filters: QueueFilter, page: int, page_size: int
    ) -> Tuple[List[ApprovalRecord], int]:
        """Return one page of matching records plus the total match count"""
        ...

    async def count_by_status(self) -> Dict[ApprovalState, int]:
        """Number of records per status"""
        ...

    async def count_created_before(
        self, statuses: Iterable[ApprovalState], cutoff: datetime
    ) -> int:
        """Number of records in one of statuses created strictly before cutoff"""
        ...


def sort_key(order: QueueOrder):
    """Python sort key matching the SQL ordering of each QueueOrder"""
    if order == QueueOrder.NEWEST:
        return lambda r: (-r.created_at.timestamp(), -r.id)
    if order == QueueOrder.OLDEST:
        return lambda r: (r.created_at.timestamp(), r.id)
    return lambda r: (-r.quality_score, -r.created_at.timestamp(), -r.id)


def matches(record: ApprovalRecord, filters: QueueFilter) -> bool:
    if filters.status is not None and record.status != filters.status:
        return False
    if filters.priority is not None and record.priority != filters.priority:
        return False
    if filters.created_after is not None and record.created_at < filters.created_after:
        return False
    if filters.created_before is not None and record.created_at > filters.created_before:
        return False
    return True


class InMemoryApprovalRecordStore:
    """Dict-backed store for tests and embedded use.

    None of the methods await between reading and writing a record, so each
    call is atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._records: Dict[int, ApprovalRecord] = {}
        self._history: Dict[int, List[HistoryEntry]] = {}
        self._ids = itertools.count(1)
        self._history_ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._records)

    async def create(
        self, record: NewApprovalRecord, history: Optional[NewHistoryEntry] = None
    ) -> ApprovalRecord:
        created = record.with_id(next(self._ids))
        self._records[created.id] = created
        self._history[created.id] = []
        self._append_history(created.id, history)
        logger.debug(f"Created approval record {created.id} with status {created.status.value}")
        return created

    async def get(self, record_id: int) -> ApprovalRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def update(
        self,
        record_id: int,
        mutation: RecordUpdate,
        expected_status: ApprovalState,
        history: Optional[NewHistoryEntry] = None,
    ) -> ApprovalRecord:
        current = self._records.get(record_id)
        if current is None:
            raise RecordNotFoundError(record_id)
        if current.status != expected_status:
            raise ConflictError(record_id, expected_status, current.status)

        updated = mutation.apply_to(current)
        self._records[record_id] = updated
        self._append_history(record_id, history)
        return updated

    async def list_history(self, record_id: int) -> List[HistoryEntry]:
        if record_id not in self._records:
            raise RecordNotFoundError(record_id)
        return list(self._history[record_id])

    def _append_history(self, record_id: int, history: Optional[NewHistoryEntry]) -> None:
        if history is not None:
            self._history[record_id].append(history.with_ids(next(self._history_ids), record_id))

    async def list(
        self, filters: QueueFilter, page: int, page_size: int
    ) -> Tuple[List[ApprovalRecord], int]:
        selected = sorted(
            (r for r in self._records.values() if matches(r, filters)),
            key=sort_key(filters.order),
        )
        offset = (page - 1) * page_size
        return selected[offset:offset + page_size], len(selected)

    async def count_by_status(self) -> Dict[ApprovalState, int]:
        counts = {state: 0 for state in ApprovalState}
        for record in self._records.values():
            counts[record.status] += 1
        return counts

    async def count_created_before(
        self, statuses: Iterable[ApprovalState], cutoff: datetime
    ) -> int:
        wanted = set(statuses)
        return sum(
            1 for r in self._records.values()
            if r.status in wanted and r.created_at < cutoff
        )
