"""
Content Approval Workflow Schemas

Pydantic models for approval records, candidates, queue queries and the
structured results handed back to the request dispatch layer.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ApprovalState(str, Enum):
    """Moderation status of an approval record"""
    PENDING_REVIEW = "pending_review"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"


class ApprovalAction(str, Enum):
    """Events accepted by the transition engine"""
    BEGIN_REVIEW = "begin_review"
    APPROVE = "approve"
    REJECT = "reject"


class Priority(str, Enum):
    """Priority levels for review"""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class RejectionReason(str, Enum):
    """Reasons for rejection"""
    QUALITY = "quality"
    RELEVANCE = "relevance"
    ACCURACY = "accuracy"
    INAPPROPRIATE = "inappropriate"
    OTHER = "other"


class QueueOrder(str, Enum):
    """Natural orderings supported by the queue"""
    QUALITY = "quality"
    NEWEST = "newest"
    OLDEST = "oldest"


class HistoryEvent(str, Enum):
    """Actions recorded in a record's history"""
    ROUTED = "routed"
    BEGIN_REVIEW = "begin_review"
    APPROVE = "approve"
    REJECT = "reject"


class OperationOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


REVIEW_STATES = frozenset({ApprovalState.PENDING_REVIEW, ApprovalState.UNDER_REVIEW})
PUBLISHED_STATES = frozenset({ApprovalState.APPROVED, ApprovalState.AUTO_APPROVED})
TERMINAL_STATES = frozenset(
    {ApprovalState.APPROVED, ApprovalState.AUTO_APPROVED, ApprovalState.REJECTED}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ===========================
# Core Data Models
# ===========================

class Candidate(BaseModel):
    """Machine-generated content plus its quality score, before ingestion"""
    model_config = ConfigDict(str_strip_whitespace=True)

    search_query: str = Field(..., min_length=1, max_length=255)
    content_payload: Dict[str, Any] = Field(default_factory=dict)
    quality_score: float = Field(..., ge=0.0, le=1.0)
    priority: Priority = Priority.NORMAL


class ApprovalRecord(BaseModel):
    """A moderation record.

    Instances are immutable; the stores produce a new validated instance for
    every mutation so the status invariants are checked on each write.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    search_query: str
    content_payload: Dict[str, Any] = Field(default_factory=dict)
    quality_score: float = Field(..., ge=0.0, le=1.0)
    status: ApprovalState
    priority: Priority = Priority.NORMAL
    created_at: datetime

    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[RejectionReason] = None
    notes: Optional[str] = None
    published_reference: Optional[str] = None
    auto_approval_reason: Optional[str] = None

    @field_validator("created_at", "reviewed_at")
    @classmethod
    def _normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else v

    @model_validator(mode="after")
    def _check_status_invariants(self) -> "ApprovalRecord":
        published = self.status in PUBLISHED_STATES
        if published and not self.published_reference:
            raise ValueError(f"{self.status.value} record requires a published_reference")
        if not published and self.published_reference is not None:
            raise ValueError(f"{self.status.value} record cannot carry a published_reference")

        if self.status in REVIEW_STATES or self.status == ApprovalState.AUTO_APPROVED:
            if self.reviewed_at is not None or self.reviewed_by is not None:
                raise ValueError(f"{self.status.value} record cannot carry review details")
        else:
            if self.reviewed_at is None or not self.reviewed_by:
                raise ValueError(f"{self.status.value} record requires reviewed_at and reviewed_by")

        if self.status == ApprovalState.REJECTED:
            if self.rejection_reason is None:
                raise ValueError("rejected record requires a rejection_reason")
        elif self.rejection_reason is not None:
            raise ValueError("rejection_reason is only valid on rejected records")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class NewApprovalRecord(BaseModel):
    """Record fields supplied at creation; the store assigns the id"""
    model_config = ConfigDict(frozen=True)

    search_query: str
    content_payload: Dict[str, Any] = Field(default_factory=dict)
    quality_score: float = Field(..., ge=0.0, le=1.0)
    status: ApprovalState
    priority: Priority = Priority.NORMAL
    created_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None
    published_reference: Optional[str] = None
    auto_approval_reason: Optional[str] = None

    def with_id(self, record_id: int) -> ApprovalRecord:
        return ApprovalRecord(id=record_id, **self.model_dump())


class RecordUpdate(BaseModel):
    """Mutation of the mutable record fields.

    Only explicitly set fields are applied, so ``published_reference=None``
    clears the reference while omitting it leaves it untouched.
    """

    status: ApprovalState
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[RejectionReason] = None
    notes: Optional[str] = None
    published_reference: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def apply_to(self, record: ApprovalRecord) -> ApprovalRecord:
        data = record.model_dump()
        data.update(self.changes())
        return ApprovalRecord.model_validate(data)


class NewHistoryEntry(BaseModel):
    """History row written in the same store call as the change it describes.

    ``actor`` is None for routing decisions made at ingestion.
    """
    model_config = ConfigDict(frozen=True)

    event: HistoryEvent
    actor: Optional[str] = None
    from_status: Optional[ApprovalState] = None
    to_status: ApprovalState
    notes: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def with_ids(self, entry_id: int, record_id: int) -> "HistoryEntry":
        return HistoryEntry(id=entry_id, record_id=record_id, **self.model_dump())


class HistoryEntry(NewHistoryEntry):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    record_id: int

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# ===========================
# Workflow Decision Models
# ===========================

class TransitionParams(BaseModel):
    """Parameters accompanying an event"""
    model_config = ConfigDict(str_strip_whitespace=True)

    reviewer: Optional[str] = Field(None, max_length=255)
    reason: Optional[RejectionReason] = None
    notes: Optional[str] = Field(None, max_length=2000)


class ApproveRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reviewer: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reviewer: str = Field(..., min_length=1, max_length=255)
    reason: RejectionReason
    notes: Optional[str] = Field(None, max_length=2000)


class BeginReviewRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reviewer: Optional[str] = Field(None, max_length=255)


class BulkApproveRequest(ApproveRequest):
    ids: List[int]


class BulkRejectRequest(RejectRequest):
    ids: List[int]


# ===========================
# Queue Models
# ===========================

class QueueFilter(BaseModel):
    status: Optional[ApprovalState] = None
    priority: Optional[Priority] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    order: QueueOrder = QueueOrder.QUALITY

    @field_validator("created_after", "created_before")
    @classmethod
    def _normalize_bounds(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else v


class QueuePage(BaseModel):
    """Paginated queue response"""
    items: List[ApprovalRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class QueueStatistics(BaseModel):
    pending: int = 0
    under_review: int = 0
    approved: int = 0
    auto_approved: int = 0
    rejected: int = 0
    overdue: int = 0
    total: int = 0


# ===========================
# Results
# ===========================

class ErrorInfo(BaseModel):
    code: str
    message: str
    retry_safe: bool = False


class BulkFailure(BaseModel):
    id: int
    error: ErrorInfo


class BulkOperationResult(BaseModel):
    """Partial-failure report of a bulk operation"""
    action: ApprovalAction
    succeeded: List[int] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
    processing_time_ms: Optional[float] = None

    @property
    def outcome(self) -> OperationOutcome:
        if self.error is not None or not self.succeeded:
            return OperationOutcome.FAILURE
        if self.failed:
            return OperationOutcome.PARTIAL
        return OperationOutcome.SUCCESS

    @property
    def processed_count(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def summary(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["outcome"] = self.outcome.value
        data["processed_count"] = self.processed_count
        return data


T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """Single-item result: either data on success or error on failure"""
    outcome: OperationOutcome
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: T) -> "OperationResult[T]":
        return cls(outcome=OperationOutcome.SUCCESS, data=data)

    @classmethod
    def fail(cls, error: ErrorInfo) -> "OperationResult[T]":
        return cls(outcome=OperationOutcome.FAILURE, error=error)

    @property
    def succeeded(self) -> bool:
        return self.outcome == OperationOutcome.SUCCESS


# ===========================
# Configuration Models
# ===========================

class WorkflowConfig(BaseModel):
    """Configuration for approval workflow"""
    auto_approval_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    review_sla_hours: float = Field(default=24.0, gt=0)
    bulk_operation_limit: int = Field(default=50, ge=1)
    bulk_max_workers: int = Field(default=8, ge=1)
    publish_timeout_sec: float = Field(default=10.0, gt=0)
    conflict_retries: int = Field(default=1, ge=0)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    @classmethod
    def from_settings(cls, settings: Any) -> "WorkflowConfig":
        return cls(**{name: getattr(settings, name) for name in cls.model_fields})
