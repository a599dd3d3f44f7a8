"""
Content Approval API Endpoints

REST endpoints relaying the approval workflow: candidate ingestion, queue
listing and statistics, single-record transitions and bulk actions.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from content_approval.approval import (
    ApprovalRecord,
    ApprovalState,
    ApprovalWorkflowEngine,
    Candidate,
    OperationResult,
    Priority,
    QueueFilter,
    QueueOrder,
    QueuePage,
    QueueStatistics,
    create_workflow_engine,
)
from content_approval.approval.schemas import (
    ApproveRequest,
    BeginReviewRequest,
    BulkApproveRequest,
    BulkOperationResult,
    BulkRejectRequest,
    ErrorInfo,
    HistoryEntry,
    RejectRequest,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/approvals", tags=["approvals"])

ERROR_STATUS_CODES = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "publish_failure": status.HTTP_502_BAD_GATEWAY,
    "validation_error": status.HTTP_422_UNPROCESSABLE_CONTENT,
}


# ===========================
# Dependency Injection
# ===========================

@lru_cache(maxsize=1)
def _create_workflow_engine() -> ApprovalWorkflowEngine:
    """Create singleton workflow engine instance"""
    return create_workflow_engine()


async def get_workflow_engine() -> ApprovalWorkflowEngine:
    """Get workflow engine instance with singleton pattern"""
    return _create_workflow_engine()


async def close_workflow_engine() -> None:
    """Release the singleton engine's clients, if it was created"""
    if _create_workflow_engine.cache_info().currsize:
        await _create_workflow_engine().aclose()
        _create_workflow_engine.cache_clear()


def _http_error(error: ErrorInfo) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.model_dump(),
    )


def _unwrap(result: OperationResult):
    if not result.succeeded:
        raise _http_error(result.error)
    return result.data


def _bulk_response(result: BulkOperationResult) -> Dict[str, Any]:
    if result.error is not None:
        raise _http_error(result.error)
    return result.summary()


# ===========================
# Ingestion
# ===========================

@router.post(
    "/candidates",
    response_model=ApprovalRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a generated candidate",
)
async def ingest_candidate(
    candidate: Candidate,
    begin_review: bool = Query(False, description="Queue below-threshold candidates as under_review"),
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    """
    Create the approval record for a candidate.

    Candidates at or above the auto-approval threshold are published
    immediately; all others are queued for review.
    """
    record = _unwrap(await workflow_engine.ingest_candidate(candidate, begin_review=begin_review))
    logger.info(f"Ingested candidate as record {record.id} with status {record.status.value}")
    return record


# ===========================
# Queue
# ===========================

@router.get("", response_model=QueuePage, summary="List the approval queue")
async def list_approvals(
    status_filter: Optional[ApprovalState] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[Priority] = Query(None, description="Filter by priority"),
    created_after: Optional[datetime] = Query(None, description="Created at or after"),
    created_before: Optional[datetime] = Query(None, description="Created at or before"),
    order: QueueOrder = Query(QueueOrder.QUALITY, description="Queue ordering"),
    page: int = Query(1, description="Page number"),
    page_size: Optional[int] = Query(None, description="Items per page"),
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    filters = QueueFilter(
        status=status_filter,
        priority=priority,
        created_after=created_after,
        created_before=created_before,
        order=order,
    )
    return _unwrap(await workflow_engine.get_queue(filters, page, page_size))


@router.get("/statistics", response_model=QueueStatistics, summary="Queue statistics")
async def get_statistics(
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    return _unwrap(await workflow_engine.get_statistics())


# ===========================
# Bulk Operations
# ===========================

# Registered ahead of the /{record_id} routes so "bulk" is never read as an id

@router.post("/bulk/approve", summary="Approve multiple records")
async def bulk_approve(
    request: BulkApproveRequest,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    """
    Approve every listed record.

    Per-record failures are reported in ``failed``; the request itself only
    fails for a malformed id list.
    """
    result = await workflow_engine.bulk_approve(request.ids, request.reviewer, request.notes)
    return _bulk_response(result)


@router.post("/bulk/reject", summary="Reject multiple records")
async def bulk_reject(
    request: BulkRejectRequest,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    result = await workflow_engine.bulk_reject(
        request.ids, request.reviewer, request.reason, request.notes
    )
    return _bulk_response(result)


# ===========================
# Records
# ===========================

@router.get("/{record_id}", response_model=ApprovalRecord, summary="Get approval record by ID")
async def get_record(
    record_id: int,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    return _unwrap(await workflow_engine.get_record(record_id))


@router.get("/{record_id}/history", response_model=List[HistoryEntry], summary="Record action history")
async def get_history(
    record_id: int,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    """Routing decision at ingestion followed by every reviewer action, oldest first."""
    return _unwrap(await workflow_engine.get_history(record_id))


# ===========================
# Single-record transitions
# ===========================

@router.post("/{record_id}/begin-review", response_model=ApprovalRecord, summary="Claim a record for review")
async def begin_review(
    record_id: int,
    request: Optional[BeginReviewRequest] = None,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    reviewer = request.reviewer if request else None
    return _unwrap(await workflow_engine.begin_review(record_id, reviewer))


@router.post("/{record_id}/approve", response_model=ApprovalRecord, summary="Approve and publish a record")
async def approve_record(
    record_id: int,
    request: ApproveRequest,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    record = _unwrap(await workflow_engine.approve(record_id, request.reviewer, request.notes))
    logger.info(f"Record {record_id} approved by {request.reviewer}")
    return record


@router.post("/{record_id}/reject", response_model=ApprovalRecord, summary="Reject a record")
async def reject_record(
    record_id: int,
    request: RejectRequest,
    workflow_engine: ApprovalWorkflowEngine = Depends(get_workflow_engine),
):
    record = _unwrap(
        await workflow_engine.reject(record_id, request.reviewer, request.reason, request.notes)
    )
    logger.info(f"Record {record_id} rejected by {request.reviewer}: {request.reason.value}")
    return record
