"""
Auto-Approval Engine

Routes newly generated candidates into the workflow. Candidates scoring at or
above the configured threshold are published immediately and stored as
``auto_approved``; everything else waits for a reviewer.
"""

from datetime import datetime
from typing import Callable, Optional

from content_approval.core.logging_config import get_logger

from .content_store import ContentPublisher
from .errors import PublishFailureError, WorkflowValidationError
from .repository import ApprovalRecordStore
from .schemas import (
    ApprovalRecord,
    ApprovalState,
    Candidate,
    HistoryEvent,
    NewApprovalRecord,
    NewHistoryEntry,
    WorkflowConfig,
    utcnow,
)

logger = get_logger(__name__, component="auto_approval")


class AutoApprovalEngine:
    """
    Ingestion path for candidates.

    Args:
        store: Approval record store
        publisher: Publisher for the host content store
        config: Workflow configuration (provides the default threshold)
        fallback_to_review: Queue auto-approvable candidates for manual review
            when publishing fails instead of raising PublishFailureError
        clock: Source of creation timestamps
    """

    def __init__(
        self,
        store: ApprovalRecordStore,
        publisher: ContentPublisher,
        config: Optional[WorkflowConfig] = None,
        fallback_to_review: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.config = config or WorkflowConfig()
        self.fallback_to_review = fallback_to_review
        self.clock = clock

    def qualifies(self, candidate: Candidate, threshold: float) -> bool:
        return candidate.quality_score >= threshold

    async def ingest(
        self,
        candidate: Candidate,
        threshold: Optional[float] = None,
        begin_review: bool = False,
    ) -> ApprovalRecord:
        """
        Create the approval record for a candidate.

        Args:
            candidate: Generated content and its quality score
            threshold: Auto-approval threshold, defaults to the configured one
            begin_review: Store below-threshold candidates as under_review

        Returns:
            The created record
        """
        if threshold is None:
            threshold = self.config.auto_approval_threshold
        if not 0.0 <= threshold <= 1.0:
            raise WorkflowValidationError(f"Threshold must be within [0, 1], got {threshold}")

        review_state = ApprovalState.UNDER_REVIEW if begin_review else ApprovalState.PENDING_REVIEW
        if not self.qualifies(candidate, threshold):
            record = await self.store.create(
                self._new_record(candidate, status=review_state),
                self._routing_entry(candidate, review_state, threshold, decision="manual_review"),
            )
            logger.info(
                "candidate_queued",
                record_id=record.id,
                status=record.status.value,
                quality_score=candidate.quality_score,
                threshold=threshold,
            )
            return record

        try:
            reference = await self.publisher.publish(candidate.content_payload)
        except PublishFailureError as e:
            if not self.fallback_to_review:
                raise
            logger.warning(
                "auto_publish_failed",
                quality_score=candidate.quality_score,
                retry_safe=e.retry_safe,
                error=str(e),
            )
            notes = f"Auto-approval publish failed, queued for manual review: {e}"
            record = await self.store.create(
                self._new_record(candidate, status=review_state, notes=notes),
                self._routing_entry(
                    candidate,
                    review_state,
                    threshold,
                    notes=notes,
                    decision="manual_review_fallback",
                    retry_safe=e.retry_safe,
                ),
            )
            logger.info("candidate_queued", record_id=record.id, status=record.status.value)
            return record

        reason = f"quality_score {candidate.quality_score:.4f} >= threshold {threshold:.4f}"
        try:
            record = await self.store.create(
                self._new_record(
                    candidate,
                    status=ApprovalState.AUTO_APPROVED,
                    published_reference=reference,
                    auto_approval_reason=reason,
                ),
                self._routing_entry(
                    candidate,
                    ApprovalState.AUTO_APPROVED,
                    threshold,
                    notes=reason,
                    decision="auto_approve",
                    published_reference=reference,
                ),
            )
        except Exception as e:
            # Nothing references the published content; take it down again
            logger.error("auto_approved_create_failed", published_reference=reference, error=str(e))
            await self.publisher.unpublish(reference)
            raise

        logger.info(
            "candidate_auto_approved",
            record_id=record.id,
            published_reference=reference,
            quality_score=candidate.quality_score,
            threshold=threshold,
        )
        return record

    def _new_record(self, candidate: Candidate, *, status: ApprovalState, **extra) -> NewApprovalRecord:
        return NewApprovalRecord(
            search_query=candidate.search_query,
            content_payload=candidate.content_payload,
            quality_score=candidate.quality_score,
            priority=candidate.priority,
            status=status,
            created_at=self.clock(),
            **extra,
        )

    def _routing_entry(
        self,
        candidate: Candidate,
        status: ApprovalState,
        threshold: float,
        notes: Optional[str] = None,
        **details,
    ) -> NewHistoryEntry:
        return NewHistoryEntry(
            event=HistoryEvent.ROUTED,
            to_status=status,
            notes=notes,
            details={
                "quality_score": candidate.quality_score,
                "threshold": threshold,
                "priority": candidate.priority.value,
                **details,
            },
            created_at=self.clock(),
        )
