"""
Content Approval Workflow

Moderation queue for machine-generated content: ingestion with automatic
approval, the review state machine, bulk operations and queue queries.
"""

from .workflow_engine import ApprovalWorkflowEngine, create_workflow_engine
from .state_machine import ApprovalStateMachine
from .repository import ApprovalRecordStore, InMemoryApprovalRecordStore
from .content_store import ContentPublisher, HostContentStore, HttpContentStore
from .errors import (
    ApprovalWorkflowError,
    ConflictError,
    InvalidTransitionError,
    PublishFailureError,
    RecordNotFoundError,
    WorkflowValidationError,
)
from .schemas import (
    ApprovalAction,
    ApprovalRecord,
    ApprovalState,
    BulkOperationResult,
    Candidate,
    HistoryEntry,
    HistoryEvent,
    OperationOutcome,
    OperationResult,
    Priority,
    QueueFilter,
    QueueOrder,
    QueuePage,
    QueueStatistics,
    RejectionReason,
    WorkflowConfig,
)

__all__ = [
    'ApprovalWorkflowEngine',
    'create_workflow_engine',
    'ApprovalStateMachine',
    'ApprovalRecordStore',
    'InMemoryApprovalRecordStore',
    'ContentPublisher',
    'HostContentStore',
    'HttpContentStore',
    'ApprovalWorkflowError',
    'ConflictError',
    'InvalidTransitionError',
    'PublishFailureError',
    'RecordNotFoundError',
    'WorkflowValidationError',
    'ApprovalAction',
    'ApprovalRecord',
    'ApprovalState',
    'BulkOperationResult',
    'Candidate',
    'HistoryEntry',
    'HistoryEvent',
    'OperationOutcome',
    'OperationResult',
    'Priority',
    'QueueFilter',
    'QueueOrder',
    'QueuePage',
    'QueueStatistics',
    'RejectionReason',
    'WorkflowConfig',
]
