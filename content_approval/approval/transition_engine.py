"""
Transition Engine

The only component allowed to change a record's status. Each event is
resolved through the ApprovalStateMachine, its content store side effect is
performed, and the new status is written with an optimistic check against the
status that was read.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from content_approval.core.logging_config import get_logger

from .content_store import ContentPublisher
from .errors import ConflictError, PublishFailureError, WorkflowValidationError
from .repository import ApprovalRecordStore
from .schemas import (
    ApprovalAction,
    ApprovalRecord,
    ApprovalState,
    HistoryEvent,
    NewHistoryEntry,
    RecordUpdate,
    RejectionReason,
    TransitionParams,
    WorkflowConfig,
    utcnow,
)
from .state_machine import ApprovalStateMachine

logger = get_logger(__name__, component="transition_engine")


class TransitionEngine:
    """Applies approval events to single records"""

    def __init__(
        self,
        store: ApprovalRecordStore,
        publisher: ContentPublisher,
        config: Optional[WorkflowConfig] = None,
        state_machine: Optional[ApprovalStateMachine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.config = config or WorkflowConfig()
        self.state_machine = state_machine or ApprovalStateMachine()
        self.clock = clock

        # record id -> [lock, number of holders and waiters]
        self._locks: Dict[int, List] = {}

    # ------------------------------------------------------------------
    # Public events
    # ------------------------------------------------------------------

    async def begin_review(self, record_id: int, reviewer: Optional[str] = None) -> ApprovalRecord:
        return await self.apply(
            record_id, ApprovalAction.BEGIN_REVIEW, TransitionParams(reviewer=reviewer)
        )

    async def approve(
        self, record_id: int, reviewer: str, notes: Optional[str] = None
    ) -> ApprovalRecord:
        return await self.apply(
            record_id, ApprovalAction.APPROVE, TransitionParams(reviewer=reviewer, notes=notes)
        )

    async def reject(
        self,
        record_id: int,
        reviewer: str,
        reason: RejectionReason,
        notes: Optional[str] = None,
    ) -> ApprovalRecord:
        return await self.apply(
            record_id,
            ApprovalAction.REJECT,
            TransitionParams(reviewer=reviewer, reason=reason, notes=notes),
        )

    async def apply(
        self,
        record_id: int,
        action: ApprovalAction,
        params: Optional[TransitionParams] = None,
    ) -> ApprovalRecord:
        """
        Apply an event to a record.

        Args:
            record_id: Target record
            action: Event to apply
            params: Reviewer, rejection reason and notes

        Returns:
            The updated record

        Raises:
            WorkflowValidationError: Missing reviewer or rejection reason
            RecordNotFoundError: Unknown record id
            InvalidTransitionError: Event not legal from the current status
            PublishFailureError: Content store failed; status unchanged
            ConflictError: Concurrent modification persisted through all retries
        """
        params = params or TransitionParams()
        self.validate(action, params)

        attempts = self.config.conflict_retries + 1
        attempt = 0
        async with self._record_lock(record_id):
            while True:
                attempt += 1
                current = await self.store.get(record_id)
                target = self.state_machine.transition(current.status, action, record_id)
                try:
                    updated = await self._execute(current, action, target, params)
                except ConflictError as e:
                    if attempt >= attempts:
                        logger.warning(
                            "transition_conflict",
                            record_id=record_id,
                            action=action.value,
                            attempts=attempt,
                            error=e.message,
                        )
                        raise
                    logger.info(
                        "transition_conflict_retry",
                        record_id=record_id,
                        action=action.value,
                        attempt=attempt,
                    )
                    continue

                logger.info(
                    "record_transitioned",
                    record_id=record_id,
                    action=action.value,
                    from_status=current.status.value,
                    to_status=updated.status.value,
                    reviewer=params.reviewer,
                )
                return updated

    @staticmethod
    def validate(action: ApprovalAction, params: TransitionParams) -> None:
        """Reject malformed events before the store is touched"""
        if action in (ApprovalAction.APPROVE, ApprovalAction.REJECT) and not params.reviewer:
            raise WorkflowValidationError(f"A reviewer is required to {action.value}")
        if action == ApprovalAction.REJECT and params.reason is None:
            raise WorkflowValidationError("A rejection reason is required")
        if action != ApprovalAction.REJECT and params.reason is not None:
            raise WorkflowValidationError(f"A rejection reason is not valid for {action.value}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(
        self,
        current: ApprovalRecord,
        action: ApprovalAction,
        target: ApprovalState,
        params: TransitionParams,
    ) -> ApprovalRecord:
        now = self.clock()
        fields = {"status": target}
        details = {}
        if params.notes is not None:
            fields["notes"] = params.notes
        if action != ApprovalAction.BEGIN_REVIEW:
            fields["reviewed_at"] = now
            fields["reviewed_by"] = params.reviewer
        if action == ApprovalAction.REJECT:
            fields["rejection_reason"] = params.reason
            details["reason"] = params.reason.value

        if self.state_machine.requires_publish(current.status, action):
            reference = await self.publisher.publish(current.content_payload, record_id=current.id)
            fields["published_reference"] = reference
            details["published_reference"] = reference
            try:
                return await self._write(current, action, params, fields, details)
            except Exception:
                await self._withdraw(current.id, reference)
                raise

        if self.state_machine.requires_unpublish(current.status, action):
            await self.publisher.unpublish(current.published_reference, record_id=current.id)
            fields["published_reference"] = None
            details["unpublished_reference"] = current.published_reference
            logger.info(
                "content_unpublished",
                record_id=current.id,
                published_reference=current.published_reference,
            )
            try:
                return await self._write(current, action, params, fields, details)
            except Exception:
                await self._restore(current)
                raise

        return await self._write(current, action, params, fields, details)

    async def _write(
        self,
        current: ApprovalRecord,
        action: ApprovalAction,
        params: TransitionParams,
        fields: Dict[str, Any],
        details: Dict[str, Any],
    ) -> ApprovalRecord:
        history = NewHistoryEntry(
            event=HistoryEvent(action.value),
            actor=params.reviewer,
            from_status=current.status,
            to_status=fields["status"],
            notes=params.notes,
            details=details,
            created_at=fields.get("reviewed_at") or self.clock(),
        )
        return await self.store.update(
            current.id, RecordUpdate(**fields), current.status, history=history
        )

    async def _withdraw(self, record_id: int, reference: str) -> None:
        """Take down content published for an update that was not written"""
        logger.warning("withdrawing_publication", record_id=record_id, published_reference=reference)
        try:
            await self.publisher.unpublish(reference, record_id=record_id)
        except PublishFailureError as e:
            logger.error(
                "withdraw_failed",
                record_id=record_id,
                published_reference=reference,
                error=str(e),
            )

    async def _restore(self, current: ApprovalRecord) -> None:
        """
        Republish content taken down for a rejection that was not written.

        The record keeps its status and points at the new publication. If the
        record changed status meanwhile, the republished copy is withdrawn and
        the caller's error stands.

        Raises:
            PublishFailureError: Neither the rejection nor the restore could be
                completed; the record needs reconciliation
        """
        logger.warning(
            "restoring_publication",
            record_id=current.id,
            published_reference=current.published_reference,
        )
        try:
            reference = await self.publisher.publish(current.content_payload, record_id=current.id)
        except PublishFailureError as e:
            logger.error("restore_failed", record_id=current.id, error=str(e))
            raise PublishFailureError(
                f"Content of record {current.id} was unpublished but the rejection was not "
                f"saved and republishing failed; reconciliation required: {e}",
                retry_safe=False,
                record_id=current.id,
            ) from e

        restore = RecordUpdate(status=current.status, published_reference=reference)
        try:
            await self.store.update(current.id, restore, current.status)
        except ConflictError:
            await self._withdraw(current.id, reference)
            return
        except Exception as e:
            logger.error("restore_write_failed", record_id=current.id, error=str(e))
            await self._withdraw(current.id, reference)
            raise PublishFailureError(
                f"Content of record {current.id} was unpublished but neither the rejection nor "
                f"the republished reference could be saved; reconciliation required: {e}",
                retry_safe=False,
                record_id=current.id,
            ) from e

        logger.info("publication_restored", record_id=current.id, published_reference=reference)

    @asynccontextmanager
    async def _record_lock(self, record_id: int):
        entry = self._locks.get(record_id)
        if entry is None:
            entry = self._locks[record_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[record_id]
