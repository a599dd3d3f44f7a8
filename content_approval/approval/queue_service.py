"""
Queue Query Service

Read-only views over the approval record store: filtered, paginated queue
listings and aggregate statistics. ``overdue`` is derived on every call from
the current time and the review SLA.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .errors import WorkflowValidationError
from .repository import ApprovalRecordStore
from .schemas import (
    REVIEW_STATES,
    ApprovalRecord,
    ApprovalState,
    HistoryEntry,
    QueueFilter,
    QueuePage,
    QueueStatistics,
    WorkflowConfig,
    ensure_aware,
    utcnow,
)


class QueueQueryService:
    def __init__(
        self,
        store: ApprovalRecordStore,
        config: Optional[WorkflowConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or WorkflowConfig()
        self.clock = clock

    async def query(
        self,
        filters: Optional[QueueFilter] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> QueuePage:
        """
        One page of the queue.

        Ordered by quality_score desc, created_at desc, id desc unless
        ``filters.order`` selects newest or oldest first.
        """
        filters = filters or QueueFilter()
        if page_size is None:
            page_size = self.config.default_page_size
        if page < 1:
            raise WorkflowValidationError(f"Page must be >= 1, got {page}")
        if not 1 <= page_size <= self.config.max_page_size:
            raise WorkflowValidationError(
                f"Page size must be between 1 and {self.config.max_page_size}, got {page_size}"
            )
        if (
            filters.created_after is not None
            and filters.created_before is not None
            and filters.created_after > filters.created_before
        ):
            raise WorkflowValidationError("created_after must not be later than created_before")

        records, total = await self.store.list(filters, page, page_size)
        return QueuePage(
            items=records,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    async def get_record(self, record_id: int) -> ApprovalRecord:
        return await self.store.get(record_id)

    async def history(self, record_id: int) -> List[HistoryEntry]:
        """Routing decision and reviewer actions of a record, oldest first"""
        return await self.store.list_history(record_id)

    async def statistics(self, now: Optional[datetime] = None) -> QueueStatistics:
        """Counts per status plus records waiting longer than the review SLA"""
        now = ensure_aware(now) if now is not None else self.clock()
        cutoff = now - timedelta(hours=self.config.review_sla_hours)

        counts = await self.store.count_by_status()
        overdue = await self.store.count_created_before(REVIEW_STATES, cutoff)

        return QueueStatistics(
            pending=counts.get(ApprovalState.PENDING_REVIEW, 0),
            under_review=counts.get(ApprovalState.UNDER_REVIEW, 0),
            approved=counts.get(ApprovalState.APPROVED, 0),
            auto_approved=counts.get(ApprovalState.AUTO_APPROVED, 0),
            rejected=counts.get(ApprovalState.REJECTED, 0),
            overdue=overdue,
            total=sum(counts.values()),
        )
