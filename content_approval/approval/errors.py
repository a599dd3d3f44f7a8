"""
Error taxonomy for the content approval workflow.

Every error carries a stable ``code`` and a ``retry_safe`` flag so the
dispatch layer can report per-item feedback without parsing messages.
"""

from typing import Optional


class ApprovalWorkflowError(Exception):
    """Base class for workflow errors"""

    code = "workflow_error"
    retry_safe = False

    def __init__(self, message: str, *, record_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.record_id = record_id


class RecordNotFoundError(ApprovalWorkflowError):
    """Raised when an operation references a nonexistent record id"""

    code = "not_found"

    def __init__(self, record_id: int):
        super().__init__(f"Approval record {record_id} not found", record_id=record_id)


class InvalidTransitionError(ApprovalWorkflowError):
    """Raised when an event is not legal from the record's current status"""

    code = "invalid_transition"

    def __init__(self, message: str, *, record_id: Optional[int] = None, current_state=None, action=None):
        super().__init__(message, record_id=record_id)
        self.current_state = current_state
        self.action = action


class ConflictError(ApprovalWorkflowError):
    """Raised when the optimistic status check fails on update"""

    code = "conflict"
    retry_safe = True

    def __init__(self, record_id: int, expected_status, actual_status=None):
        actual = f", found {actual_status.value}" if actual_status is not None else ""
        super().__init__(
            f"Approval record {record_id} changed concurrently "
            f"(expected {expected_status.value}{actual})",
            record_id=record_id,
        )
        self.expected_status = expected_status
        self.actual_status = actual_status


class PublishFailureError(ApprovalWorkflowError):
    """Raised when the host content store rejects or times out on publish/unpublish"""

    code = "publish_failure"

    def __init__(self, message: str, *, retry_safe: bool, record_id: Optional[int] = None):
        super().__init__(message, record_id=record_id)
        self.retry_safe = retry_safe


class WorkflowValidationError(ApprovalWorkflowError):
    """Raised for malformed input, before the store is touched"""

    code = "validation_error"


class ContentNotFoundError(Exception):
    """Raised by a host content store when a reference is unknown"""

    def __init__(self, reference: str):
        super().__init__(f"Published content {reference!r} not found")
        self.reference = reference


class ContentStoreError(Exception):
    """Raised by a host content store client for failed calls"""

    def __init__(self, message: str, *, retry_safe: bool, status_code: Optional[int] = None):
        super().__init__(message)
        self.retry_safe = retry_safe
        self.status_code = status_code
