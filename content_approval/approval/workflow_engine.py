"""
Content Approval Workflow Engine

Facade exposed to the request dispatch layer. It wires the store, publisher
and engines together and turns every domain error into a structured result,
so callers can render per-item feedback without catching exceptions.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from pydantic import ValidationError

from content_approval.core.logging_config import get_logger

from .auto_approval import AutoApprovalEngine
from .bulk_processor import BulkOperationProcessor, error_info
from .content_store import ContentPublisher, HostContentStore
from .errors import ApprovalWorkflowError
from .queue_service import QueueQueryService
from .repository import ApprovalRecordStore
from .schemas import (
    ApprovalAction,
    ApprovalRecord,
    BulkOperationResult,
    Candidate,
    ErrorInfo,
    OperationResult,
    QueueFilter,
    QueuePage,
    QueueStatistics,
    RejectionReason,
    TransitionParams,
    WorkflowConfig,
    utcnow,
)
from .state_machine import create_approval_state_machine
from .transition_engine import TransitionEngine

logger = get_logger(__name__, component="workflow_engine")


def validation_error_info(error: ValidationError) -> ErrorInfo:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
        for err in error.errors()
    )
    return ErrorInfo(code="validation_error", message=details)


class ApprovalWorkflowEngine:
    """
    Dispatch-facing entry point of the approval workflow.

    Single-item operations return ``OperationResult``; bulk operations return
    ``BulkOperationResult`` whose outcome distinguishes success, partial
    success and failure.
    """

    def __init__(
        self,
        store: ApprovalRecordStore,
        content_store: HostContentStore,
        config: Optional[WorkflowConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or WorkflowConfig()
        self.store = store
        self.publisher = ContentPublisher(content_store, timeout=self.config.publish_timeout_sec)
        self.state_machine = create_approval_state_machine()

        self.auto_approval = AutoApprovalEngine(store, self.publisher, self.config, clock=clock)
        self.transitions = TransitionEngine(
            store, self.publisher, self.config, state_machine=self.state_machine, clock=clock
        )
        self.bulk = BulkOperationProcessor(self.transitions, self.config)
        self.queue = QueueQueryService(store, self.config, clock=clock)

    async def aclose(self) -> None:
        """Release the content store client"""
        close = getattr(self.publisher.store, "aclose", None)
        if close is not None:
            await close()

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]], **context) -> OperationResult:
        try:
            data = await call()
        except ApprovalWorkflowError as e:
            logger.info("operation_failed", operation=operation, code=e.code, error=e.message, **context)
            return OperationResult.fail(error_info(e))
        except ValidationError as e:
            logger.info("operation_invalid", operation=operation, **context)
            return OperationResult.fail(validation_error_info(e))
        return OperationResult.ok(data)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_candidate(
        self,
        candidate: Union[Candidate, Dict[str, Any]],
        threshold: Optional[float] = None,
        begin_review: bool = False,
    ) -> OperationResult:
        async def call() -> ApprovalRecord:
            parsed = candidate if isinstance(candidate, Candidate) else Candidate.model_validate(candidate)
            return await self.auto_approval.ingest(parsed, threshold, begin_review=begin_review)

        return await self._run("ingest_candidate", call)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def get_queue(
        self,
        filters: Optional[Union[QueueFilter, Dict[str, Any]]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> OperationResult:
        async def call() -> QueuePage:
            parsed = filters if isinstance(filters, QueueFilter) else QueueFilter.model_validate(filters or {})
            return await self.queue.query(parsed, page, page_size)

        return await self._run("get_queue", call)

    async def get_record(self, record_id: int) -> OperationResult:
        return await self._run("get_record", lambda: self.queue.get_record(record_id), record_id=record_id)

    async def get_history(self, record_id: int) -> OperationResult:
        return await self._run("get_history", lambda: self.queue.history(record_id), record_id=record_id)

    async def get_statistics(self, now: Optional[datetime] = None) -> OperationResult:
        async def call() -> QueueStatistics:
            return await self.queue.statistics(now)

        return await self._run("get_statistics", call)

    # ------------------------------------------------------------------
    # Single-record transitions
    # ------------------------------------------------------------------

    async def begin_review(self, record_id: int, reviewer: Optional[str] = None) -> OperationResult:
        async def call() -> ApprovalRecord:
            params = TransitionParams(reviewer=reviewer)
            return await self.transitions.apply(record_id, ApprovalAction.BEGIN_REVIEW, params)

        return await self._run("begin_review", call, record_id=record_id)

    async def approve(
        self, record_id: int, reviewer: str, notes: Optional[str] = None
    ) -> OperationResult:
        async def call() -> ApprovalRecord:
            params = TransitionParams(reviewer=reviewer, notes=notes)
            return await self.transitions.apply(record_id, ApprovalAction.APPROVE, params)

        return await self._run("approve", call, record_id=record_id)

    async def reject(
        self,
        record_id: int,
        reviewer: str,
        reason: Union[RejectionReason, str, None],
        notes: Optional[str] = None,
    ) -> OperationResult:
        async def call() -> ApprovalRecord:
            params = TransitionParams(reviewer=reviewer, reason=reason, notes=notes)
            return await self.transitions.apply(record_id, ApprovalAction.REJECT, params)

        return await self._run("reject", call, record_id=record_id)

    # ------------------------------------------------------------------
    # Bulk transitions
    # ------------------------------------------------------------------

    async def _run_bulk(
        self, action: ApprovalAction, ids: Sequence[int], **params
    ) -> BulkOperationResult:
        try:
            transition_params = TransitionParams(**params)
            return await self.bulk.bulk_apply(ids, action, transition_params)
        except ApprovalWorkflowError as e:
            logger.info("bulk_operation_rejected", action=action.value, code=e.code, error=e.message)
            return BulkOperationResult(action=action, error=error_info(e))
        except ValidationError as e:
            logger.info("bulk_operation_rejected", action=action.value, code="validation_error")
            return BulkOperationResult(action=action, error=validation_error_info(e))

    async def bulk_approve(
        self, ids: Sequence[int], reviewer: str, notes: Optional[str] = None
    ) -> BulkOperationResult:
        return await self._run_bulk(ApprovalAction.APPROVE, ids, reviewer=reviewer, notes=notes)

    async def bulk_reject(
        self,
        ids: Sequence[int],
        reviewer: str,
        reason: Union[RejectionReason, str, None],
        notes: Optional[str] = None,
    ) -> BulkOperationResult:
        return await self._run_bulk(
            ApprovalAction.REJECT, ids, reviewer=reviewer, reason=reason, notes=notes
        )


def create_workflow_engine(settings=None) -> ApprovalWorkflowEngine:
    """Build an engine backed by the SQL store and the HTTP content store"""
    from content_approval.core.settings import get_settings
    from content_approval.db.session import get_database_manager

    from .content_store import HttpContentStore
    from .sql_repository import SqlApprovalRecordStore

    settings = settings or get_settings()
    config = WorkflowConfig.from_settings(settings)
    store = SqlApprovalRecordStore(get_database_manager(settings.database_url))
    content_store = HttpContentStore(
        settings.content_store_url,
        api_key=settings.content_store_api_key,
        timeout=config.publish_timeout_sec,
    )
    return ApprovalWorkflowEngine(store, content_store, config)
