"""
Bulk Operation Processor

Applies one event to many records through the TransitionEngine. Every id is
processed independently and ends up in exactly one of ``succeeded`` or
``failed``; per-id errors are reported, never raised.
"""

import asyncio
import time
from typing import List, Optional, Sequence

from content_approval.core.logging_config import get_logger

from .errors import ApprovalWorkflowError, WorkflowValidationError
from .schemas import (
    ApprovalAction,
    BulkFailure,
    BulkOperationResult,
    ErrorInfo,
    TransitionParams,
    WorkflowConfig,
)
from .transition_engine import TransitionEngine

logger = get_logger(__name__, component="bulk_processor")


def error_info(error: Exception) -> ErrorInfo:
    """Structured description of an error for per-item feedback"""
    if isinstance(error, ApprovalWorkflowError):
        return ErrorInfo(code=error.code, message=error.message, retry_safe=error.retry_safe)
    return ErrorInfo(code="internal_error", message=str(error) or type(error).__name__)


class BulkOperationProcessor:
    """Fans an event out over a bounded number of concurrent transitions"""

    def __init__(self, transition_engine: TransitionEngine, config: Optional[WorkflowConfig] = None):
        self.transition_engine = transition_engine
        self.config = config or WorkflowConfig()

    def validate_ids(self, ids: Sequence[int]) -> List[int]:
        ids = list(ids)
        if not ids:
            raise WorkflowValidationError("At least one record id is required")
        if len(ids) > self.config.bulk_operation_limit:
            raise WorkflowValidationError(
                f"Bulk operations are limited to {self.config.bulk_operation_limit} records, "
                f"got {len(ids)}"
            )
        if len(set(ids)) != len(ids):
            raise WorkflowValidationError("Duplicate record IDs not allowed")
        return ids

    async def bulk_apply(
        self,
        ids: Sequence[int],
        action: ApprovalAction,
        params: Optional[TransitionParams] = None,
    ) -> BulkOperationResult:
        """
        Apply an event to every id.

        Raises:
            WorkflowValidationError: Empty, oversized or duplicated id list, or
                parameters the event cannot accept
        """
        params = params or TransitionParams()
        ids = self.validate_ids(ids)
        self.transition_engine.validate(action, params)

        start_time = time.time()
        semaphore = asyncio.Semaphore(self.config.bulk_max_workers)

        async def process(record_id: int):
            async with semaphore:
                try:
                    await self.transition_engine.apply(record_id, action, params)
                    return record_id, None
                except ApprovalWorkflowError as e:
                    return record_id, e
                except Exception as e:
                    logger.exception(
                        "bulk_item_unexpected_error", record_id=record_id, action=action.value
                    )
                    return record_id, e

        outcomes = await asyncio.gather(*(process(record_id) for record_id in ids))

        result = BulkOperationResult(action=action)
        for record_id, error in outcomes:
            if error is None:
                result.succeeded.append(record_id)
            else:
                result.failed.append(BulkFailure(id=record_id, error=error_info(error)))
        result.processing_time_ms = (time.time() - start_time) * 1000

        logger.info(
            "bulk_operation_completed",
            action=action.value,
            requested=len(ids),
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            processing_time_ms=round(result.processing_time_ms, 2),
        )
        return result
