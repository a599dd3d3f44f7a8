"""
Approval State Machine

State machine implementation for managing approval workflow transitions
with validation and business rule enforcement.
"""

import logging
from typing import Dict, List, Optional

from .errors import InvalidTransitionError
from .schemas import ApprovalAction, ApprovalState

logger = logging.getLogger(__name__)


class ApprovalStateMachine:
    """
    State machine for managing approval workflow transitions.

    Pure lookup: it decides the target state and the side effect an event
    requires, but never touches a record or the content store.
    """

    def __init__(self):
        """Initialize the state machine with valid transitions"""
        self._transitions: Dict[ApprovalState, Dict[ApprovalAction, ApprovalState]] = {
            ApprovalState.PENDING_REVIEW: {
                ApprovalAction.BEGIN_REVIEW: ApprovalState.UNDER_REVIEW,
                ApprovalAction.APPROVE: ApprovalState.APPROVED,
                ApprovalAction.REJECT: ApprovalState.REJECTED,
            },
            ApprovalState.UNDER_REVIEW: {
                ApprovalAction.APPROVE: ApprovalState.APPROVED,
                ApprovalAction.REJECT: ApprovalState.REJECTED,
            },
            # Automatic decisions can still be overturned by a reviewer
            ApprovalState.AUTO_APPROVED: {
                ApprovalAction.REJECT: ApprovalState.REJECTED,
            },
            # Final states - no transitions allowed
            ApprovalState.APPROVED: {},
            ApprovalState.REJECTED: {},
        }

    def transition(
        self,
        current_state: ApprovalState,
        action: ApprovalAction,
        record_id: Optional[int] = None,
    ) -> ApprovalState:
        """
        Resolve the target state of an event.

        Args:
            current_state: Current approval state
            action: Event to apply
            record_id: Record the event targets, for error reporting

        Returns:
            New state after transition

        Raises:
            InvalidTransitionError: If the event is not legal from current_state
        """
        if current_state not in self._transitions:
            raise InvalidTransitionError(
                f"Invalid current state: {current_state}", record_id=record_id
            )
        if action not in set(ApprovalAction):
            raise InvalidTransitionError(f"Invalid action: {action}", record_id=record_id)

        allowed_actions = self._transitions[current_state]
        if action not in allowed_actions:
            allowed = [a.value for a in self.get_allowed_actions(current_state)]
            raise InvalidTransitionError(
                f"Cannot {action.value} a record in status {current_state.value}. "
                f"Allowed actions: {allowed}",
                record_id=record_id,
                current_state=current_state,
                action=action,
            )

        new_state = allowed_actions[action]
        logger.debug(f"State transition: {current_state.value} --({action.value})--> {new_state.value}")
        return new_state

    def get_allowed_actions(self, current_state: ApprovalState) -> List[ApprovalAction]:
        """Get list of allowed actions for current state."""
        return list(self._transitions.get(current_state, {}).keys())

    def requires_publish(self, current_state: ApprovalState, action: ApprovalAction) -> bool:
        """True when the transition makes content live"""
        return self.transition(current_state, action) == ApprovalState.APPROVED

    def requires_unpublish(self, current_state: ApprovalState, action: ApprovalAction) -> bool:
        """True when the transition takes previously published content down"""
        new_state = self.transition(current_state, action)
        return new_state == ApprovalState.REJECTED and current_state in (
            ApprovalState.APPROVED,
            ApprovalState.AUTO_APPROVED,
        )


def create_approval_state_machine() -> ApprovalStateMachine:
    """Factory function to create a configured approval state machine."""
    return ApprovalStateMachine()
