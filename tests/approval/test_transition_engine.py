"""
Tests for the transition engine: state machine enforcement, publish/unpublish
side effects, failure atomicity and conflict handling
"""

import asyncio

import pytest

from content_approval.approval.content_store import ContentPublisher
from content_approval.approval.errors import (
    ConflictError,
    ContentStoreError,
    InvalidTransitionError,
    PublishFailureError,
    RecordNotFoundError,
    WorkflowValidationError,
)
from content_approval.approval.schemas import (
    ApprovalAction,
    ApprovalState,
    HistoryEvent,
    NewApprovalRecord,
    RecordUpdate,
    RejectionReason,
    TransitionParams,
)
from content_approval.approval.transition_engine import TransitionEngine


async def seed(store, clock, status=ApprovalState.PENDING_REVIEW, quality_score=0.5):
    extra = {}
    if status in (ApprovalState.APPROVED, ApprovalState.AUTO_APPROVED):
        extra["published_reference"] = f"seeded-{status.value}"
    record = await store.create(
        NewApprovalRecord(
            search_query="camping stoves",
            content_payload={"title": "Stoves", "score": quality_score},
            quality_score=quality_score,
            status=status if status != ApprovalState.APPROVED else ApprovalState.AUTO_APPROVED,
            created_at=clock(),
            **extra,
        )
    )
    if status == ApprovalState.APPROVED:
        # Approved records only come out of a review, so write the review details
        record = await store.update(
            record.id,
            RecordUpdate(status=ApprovalState.APPROVED, reviewed_at=clock(), reviewed_by="seed"),
            ApprovalState.AUTO_APPROVED,
        )
    elif status == ApprovalState.REJECTED:
        raise ValueError("seed rejected records through the engine")
    return record


PARAMS = {
    ApprovalAction.BEGIN_REVIEW: TransitionParams(reviewer="alice"),
    ApprovalAction.APPROVE: TransitionParams(reviewer="alice", notes="looks good"),
    ApprovalAction.REJECT: TransitionParams(reviewer="alice", reason=RejectionReason.ACCURACY),
}


class TestTransitionEngine:

    @pytest.fixture
    def engine(self, record_store, content_store, workflow_config, clock):
        publisher = ContentPublisher(content_store, timeout=workflow_config.publish_timeout_sec)
        return TransitionEngine(record_store, publisher, workflow_config, clock=clock)

    @pytest.mark.asyncio
    async def test_begin_review(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)

        updated = await engine.begin_review(record.id, reviewer="alice")

        assert updated.status == ApprovalState.UNDER_REVIEW
        assert updated.reviewed_by is None
        assert updated.reviewed_at is None
        assert content_store.publish_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("from_state", [ApprovalState.PENDING_REVIEW, ApprovalState.UNDER_REVIEW])
    async def test_approve_publishes(self, engine, record_store, clock, content_store, from_state):
        record = await seed(record_store, clock)
        if from_state == ApprovalState.UNDER_REVIEW:
            await engine.begin_review(record.id)
        clock.advance(hours=2)

        updated = await engine.approve(record.id, reviewer="alice", notes="looks good")

        assert updated.status == ApprovalState.APPROVED
        assert updated.published_reference in content_store.published
        assert content_store.publish_calls == [record.content_payload]
        assert updated.reviewed_by == "alice"
        assert updated.reviewed_at == clock.now
        assert updated.notes == "looks good"
        assert (await record_store.get(record.id)) == updated

    @pytest.mark.asyncio
    @pytest.mark.parametrize("from_state", [ApprovalState.PENDING_REVIEW, ApprovalState.UNDER_REVIEW])
    async def test_reject_from_review_has_no_side_effect(
        self, engine, record_store, clock, content_store, from_state
    ):
        record = await seed(record_store, clock)
        if from_state == ApprovalState.UNDER_REVIEW:
            await engine.begin_review(record.id)

        updated = await engine.reject(record.id, "bob", RejectionReason.QUALITY, notes="thin")

        assert updated.status == ApprovalState.REJECTED
        assert updated.rejection_reason == RejectionReason.QUALITY
        assert updated.reviewed_by == "bob"
        assert updated.published_reference is None
        assert content_store.publish_calls == []
        assert content_store.unpublish_calls == []

    @pytest.mark.asyncio
    async def test_reject_auto_approved_unpublishes_once(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock, status=ApprovalState.AUTO_APPROVED)
        content_store.published[record.published_reference] = record.content_payload

        updated = await engine.reject(record.id, "bob", RejectionReason.INAPPROPRIATE)

        assert updated.status == ApprovalState.REJECTED
        assert updated.published_reference is None
        assert updated.reviewed_by == "bob"
        assert content_store.unpublish_calls == [record.published_reference]
        assert content_store.published == {}

    @pytest.mark.asyncio
    async def test_reject_auto_approved_already_removed(self, engine, record_store, clock, content_store):
        """Content missing from the store still lets the rejection through"""
        record = await seed(record_store, clock, status=ApprovalState.AUTO_APPROVED)

        updated = await engine.reject(record.id, "bob", RejectionReason.OTHER)

        assert updated.status == ApprovalState.REJECTED
        assert updated.published_reference is None
        assert content_store.unpublish_calls == [record.published_reference]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", list(ApprovalAction))
    @pytest.mark.parametrize(
        "from_state", [ApprovalState.APPROVED, ApprovalState.REJECTED, ApprovalState.AUTO_APPROVED]
    )
    async def test_invalid_events_leave_status_unchanged(
        self, engine, record_store, clock, content_store, from_state, action
    ):
        if from_state == ApprovalState.AUTO_APPROVED and action == ApprovalAction.REJECT:
            pytest.skip("legal transition")
        if from_state == ApprovalState.REJECTED:
            record = await seed(record_store, clock)
            record = await engine.reject(record.id, "bob", RejectionReason.QUALITY)
        else:
            record = await seed(record_store, clock, status=from_state)
        publish_calls = len(content_store.publish_calls)

        with pytest.raises(InvalidTransitionError):
            await engine.apply(record.id, action, PARAMS[action])

        assert (await record_store.get(record.id)) == record
        assert len(content_store.publish_calls) == publish_calls
        assert content_store.unpublish_calls == []

    @pytest.mark.asyncio
    async def test_begin_review_twice(self, engine, record_store, clock):
        record = await seed(record_store, clock)
        await engine.begin_review(record.id)

        with pytest.raises(InvalidTransitionError):
            await engine.begin_review(record.id)

    @pytest.mark.asyncio
    async def test_approve_twice_publishes_once(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)

        await engine.approve(record.id, "alice")
        with pytest.raises(InvalidTransitionError):
            await engine.approve(record.id, "alice")

        assert len(content_store.publish_calls) == 1
        assert (await record_store.get(record.id)).status == ApprovalState.APPROVED

    @pytest.mark.asyncio
    async def test_concurrent_approvals_publish_once(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        content_store.delay = 0.01

        results = await asyncio.gather(
            engine.approve(record.id, "alice"),
            engine.approve(record.id, "bob"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert len(content_store.publish_calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_approve_and_reject(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        content_store.delay = 0.01

        results = await asyncio.gather(
            engine.approve(record.id, "alice"),
            engine.reject(record.id, "bob", RejectionReason.QUALITY),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert isinstance([r for r in results if isinstance(r, Exception)][0], InvalidTransitionError)
        final = await record_store.get(record.id)
        assert final.status == successes[0].status
        # Published content exists only if the approval won
        assert bool(content_store.published) == (final.status == ApprovalState.APPROVED)

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_prior_status(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        await engine.begin_review(record.id)
        content_store.publish_error = ContentStoreError("rejected", retry_safe=False, status_code=400)

        with pytest.raises(PublishFailureError) as exc_info:
            await engine.approve(record.id, "alice")

        assert not exc_info.value.retry_safe
        stored = await record_store.get(record.id)
        assert stored.status == ApprovalState.UNDER_REVIEW
        assert stored.published_reference is None
        assert stored.reviewed_by is None

    @pytest.mark.asyncio
    async def test_publish_timeout_keeps_prior_status(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        content_store.delay = 2.0

        with pytest.raises(PublishFailureError) as exc_info:
            await engine.approve(record.id, "alice")

        assert exc_info.value.retry_safe
        assert (await record_store.get(record.id)).status == ApprovalState.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_unpublish_failure_keeps_prior_status(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock, status=ApprovalState.AUTO_APPROVED)
        content_store.unpublish_error = ContentStoreError("boom", retry_safe=True, status_code=500)

        with pytest.raises(PublishFailureError):
            await engine.reject(record.id, "bob", RejectionReason.QUALITY)

        stored = await record_store.get(record.id)
        assert stored.status == ApprovalState.AUTO_APPROVED
        assert stored.published_reference == record.published_reference

    @pytest.mark.asyncio
    async def test_validation_happens_before_store_access(self, engine):
        """Unknown id would be NotFound; malformed input is reported first"""
        with pytest.raises(WorkflowValidationError):
            await engine.apply(999, ApprovalAction.APPROVE, TransitionParams())
        with pytest.raises(WorkflowValidationError):
            await engine.apply(999, ApprovalAction.REJECT, TransitionParams(reviewer="bob"))
        with pytest.raises(WorkflowValidationError):
            await engine.apply(
                999,
                ApprovalAction.APPROVE,
                TransitionParams(reviewer="bob", reason=RejectionReason.QUALITY),
            )

    @pytest.mark.asyncio
    async def test_missing_record(self, engine):
        with pytest.raises(RecordNotFoundError):
            await engine.approve(999, "alice")

    @pytest.mark.asyncio
    async def test_conflict_is_retried_with_fresh_read(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        real_update = record_store.update
        calls = []

        async def flaky_update(record_id, mutation, expected_status, history=None):
            calls.append(mutation.status)
            if len(calls) == 1:
                raise ConflictError(record_id, expected_status)
            return await real_update(record_id, mutation, expected_status, history=history)

        record_store.update = flaky_update

        updated = await engine.approve(record.id, "alice")

        assert updated.status == ApprovalState.APPROVED
        assert len(calls) == 2
        # First publication was withdrawn when its write lost the race
        assert len(content_store.publish_calls) == 2
        assert len(content_store.unpublish_calls) == 1
        assert list(content_store.published) == [updated.published_reference]

    @pytest.mark.asyncio
    async def test_conflict_with_competing_decision(self, engine, record_store, clock, content_store):
        """After a lost race the fresh read shows the competing terminal status"""
        record = await seed(record_store, clock)
        real_update = record_store.update

        async def racing_update(record_id, mutation, expected_status, history=None):
            record_store.update = real_update
            await real_update(
                record_id,
                RecordUpdate(
                    status=ApprovalState.REJECTED,
                    reviewed_at=clock(),
                    reviewed_by="other-reviewer",
                    rejection_reason=RejectionReason.RELEVANCE,
                ),
                expected_status,
            )
            return await real_update(record_id, mutation, expected_status, history=history)

        record_store.update = racing_update

        with pytest.raises(InvalidTransitionError):
            await engine.approve(record.id, "alice")

        stored = await record_store.get(record.id)
        assert stored.status == ApprovalState.REJECTED
        assert stored.reviewed_by == "other-reviewer"
        assert content_store.published == {}

    @pytest.mark.asyncio
    async def test_persistent_conflict_surfaces(self, engine, record_store, clock, workflow_config):
        record = await seed(record_store, clock)
        attempts = []

        async def always_conflict(record_id, mutation, expected_status, history=None):
            attempts.append(record_id)
            raise ConflictError(record_id, expected_status)

        record_store.update = always_conflict

        with pytest.raises(ConflictError) as exc_info:
            await engine.begin_review(record.id)

        assert exc_info.value.retry_safe
        assert len(attempts) == workflow_config.conflict_retries + 1

    @pytest.mark.asyncio
    async def test_record_locks_are_released(self, engine, record_store, clock):
        record = await seed(record_store, clock)
        await engine.begin_review(record.id)
        with pytest.raises(InvalidTransitionError):
            await engine.begin_review(record.id)

        assert engine._locks == {}


class TestRejectionWriteFailure:
    """Rejecting published content must not leave it unpublished but still referenced"""

    @pytest.fixture
    def engine(self, record_store, content_store, workflow_config, clock):
        publisher = ContentPublisher(content_store, timeout=workflow_config.publish_timeout_sec)
        return TransitionEngine(record_store, publisher, workflow_config, clock=clock)

    async def seed_published(self, record_store, content_store, clock):
        payload = {"title": "Stoves"}
        reference = await content_store.publish(payload)
        return await record_store.create(
            NewApprovalRecord(
                search_query="camping stoves",
                content_payload=payload,
                quality_score=0.9,
                status=ApprovalState.AUTO_APPROVED,
                created_at=clock(),
                published_reference=reference,
            )
        )

    def fail_writes(self, record_store, statuses):
        real_update = record_store.update

        async def failing_update(record_id, mutation, expected_status, history=None):
            if mutation.status in statuses:
                raise RuntimeError("database unavailable")
            return await real_update(record_id, mutation, expected_status, history=history)

        record_store.update = failing_update

    @pytest.mark.asyncio
    async def test_publication_is_restored(self, engine, record_store, content_store, clock):
        auto_approved = await self.seed_published(record_store, content_store, clock)
        original = auto_approved.published_reference
        self.fail_writes(record_store, {ApprovalState.REJECTED})

        with pytest.raises(RuntimeError):
            await engine.reject(auto_approved.id, "bob", RejectionReason.QUALITY)

        stored = await record_store.get(auto_approved.id)
        assert stored.status == ApprovalState.AUTO_APPROVED
        assert stored.published_reference != original
        assert stored.published_reference in content_store.published
        assert content_store.published[stored.published_reference] == auto_approved.content_payload
        assert content_store.unpublish_calls == [original]
        assert await record_store.list_history(auto_approved.id) == []

    @pytest.mark.asyncio
    async def test_rejection_can_be_retried_after_restore(
        self, engine, record_store, content_store, clock
    ):
        auto_approved = await self.seed_published(record_store, content_store, clock)
        real_update = record_store.update
        self.fail_writes(record_store, {ApprovalState.REJECTED})
        with pytest.raises(RuntimeError):
            await engine.reject(auto_approved.id, "bob", RejectionReason.QUALITY)
        record_store.update = real_update

        rejected = await engine.reject(auto_approved.id, "bob", RejectionReason.QUALITY)

        assert rejected.status == ApprovalState.REJECTED
        assert rejected.published_reference is None
        assert content_store.published == {}

    @pytest.mark.asyncio
    async def test_republish_failure_requires_reconciliation(
        self, engine, record_store, content_store, clock
    ):
        auto_approved = await self.seed_published(record_store, content_store, clock)
        self.fail_writes(record_store, {ApprovalState.REJECTED})
        content_store.publish_error = ContentStoreError("down", retry_safe=True, status_code=503)

        with pytest.raises(PublishFailureError) as exc_info:
            await engine.reject(auto_approved.id, "bob", RejectionReason.QUALITY)

        assert "reconciliation required" in exc_info.value.message
        assert not exc_info.value.retry_safe
        assert exc_info.value.record_id == auto_approved.id

    @pytest.mark.asyncio
    async def test_restore_write_failure_requires_reconciliation(
        self, engine, record_store, content_store, clock
    ):
        auto_approved = await self.seed_published(record_store, content_store, clock)
        self.fail_writes(record_store, {ApprovalState.REJECTED, ApprovalState.AUTO_APPROVED})

        with pytest.raises(PublishFailureError) as exc_info:
            await engine.reject(auto_approved.id, "bob", RejectionReason.QUALITY)

        assert "reconciliation required" in exc_info.value.message
        # The republished copy is not referenced by anything, so it is withdrawn
        assert content_store.published == {}


class TestTransitionHistory:

    @pytest.fixture
    def engine(self, record_store, content_store, workflow_config, clock):
        publisher = ContentPublisher(content_store, timeout=workflow_config.publish_timeout_sec)
        return TransitionEngine(record_store, publisher, workflow_config, clock=clock)

    @pytest.mark.asyncio
    async def test_each_event_is_recorded(self, engine, record_store, clock):
        record = await seed(record_store, clock)

        await engine.begin_review(record.id, reviewer="alice")
        clock.advance(minutes=5)
        approved = await engine.approve(record.id, "alice", notes="looks good")

        begin, approve = await record_store.list_history(record.id)
        assert begin.event == HistoryEvent.BEGIN_REVIEW
        assert (begin.from_status, begin.to_status) == (
            ApprovalState.PENDING_REVIEW,
            ApprovalState.UNDER_REVIEW,
        )
        assert approve.event == HistoryEvent.APPROVE
        assert approve.actor == "alice"
        assert approve.notes == "looks good"
        assert approve.created_at == clock.now
        assert approve.to_status == ApprovalState.APPROVED
        assert approve.details == {"published_reference": approved.published_reference}

    @pytest.mark.asyncio
    async def test_rejection_of_published_content(self, engine, record_store, clock):
        record = await seed(record_store, clock, status=ApprovalState.AUTO_APPROVED)

        await engine.reject(record.id, "bob", RejectionReason.INAPPROPRIATE, notes="off brand")

        [entry] = await record_store.list_history(record.id)
        assert entry.event == HistoryEvent.REJECT
        assert entry.actor == "bob"
        assert entry.from_status == ApprovalState.AUTO_APPROVED
        assert entry.details == {
            "reason": "inappropriate",
            "unpublished_reference": record.published_reference,
        }

    @pytest.mark.asyncio
    async def test_failed_events_are_not_recorded(self, engine, record_store, clock, content_store):
        record = await seed(record_store, clock)
        content_store.publish_error = ContentStoreError("rejected", retry_safe=False, status_code=400)

        with pytest.raises(PublishFailureError):
            await engine.approve(record.id, "alice")
        await engine.reject(record.id, "bob", RejectionReason.OTHER)
        with pytest.raises(InvalidTransitionError):
            await engine.begin_review(record.id)

        assert [h.event for h in await record_store.list_history(record.id)] == [HistoryEvent.REJECT]
