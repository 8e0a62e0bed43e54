"""
Run State Machine

This module is the SINGLE SOURCE OF TRUTH for run status transitions.
Every service that changes ``Run.status`` goes through ``transition_run``.

    draft ──► active ──► completed
      │          │
      └──────────┴─────► cancelled
"""

from typing import Dict, List
from datetime import datetime, timezone

from app.core.exceptions import InvalidRunState
from app.models.run import RunStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
RUN_TRANSITIONS: Dict[str, List[str]] = {
    RunStatus.DRAFT.value: [
        RunStatus.ACTIVE.value,       # Hand to courier
        RunStatus.CANCELLED.value,    # Cancel before anything was picked
    ],
    RunStatus.ACTIVE.value: [
        RunStatus.COMPLETED.value,    # Dropped off, or cancelled with picks
        RunStatus.CANCELLED.value,    # Cancel with nothing picked
    ],
    RunStatus.COMPLETED.value: [],    # Terminal
    RunStatus.CANCELLED.value: [],    # Terminal
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in RUN_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return RUN_TRANSITIONS.get(current_status, [])


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in (RunStatus.COMPLETED.value, RunStatus.CANCELLED.value)


def can_assign_runner(status: str) -> bool:
    return status in (RunStatus.DRAFT.value, RunStatus.ACTIVE.value)


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition.

    Raises:
        InvalidRunState: If the transition is not allowed
    """
    if current_status == new_status:
        return

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise InvalidRunState(
                f"Run in '{current_status}' status cannot be modified. This is a terminal state.",
                {"current_status": current_status, "requested_status": new_status},
            )
        raise InvalidRunState(
            f"Cannot change run from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            {"current_status": current_status, "requested_status": new_status},
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_run(run, new_status: str) -> None:
    """
    Move a run to a new status and stamp the matching timestamp.

    Raises:
        InvalidRunState: If transition is not allowed
    """
    validate_transition(run.status, new_status)
    run.status = new_status

    now = datetime.now(timezone.utc)
    if new_status == RunStatus.ACTIVE.value:
        run.activated_at = now
    elif new_status == RunStatus.COMPLETED.value:
        run.completed_at = now
    elif new_status == RunStatus.CANCELLED.value:
        run.cancelled_at = now
