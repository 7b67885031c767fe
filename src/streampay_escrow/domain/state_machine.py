"""Milestone and Escrow State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
Services validate a transition here first, then apply it to the store with a
conditional update keyed on the prior status, so the table below is the only
place transitions are defined.

Milestone transition table:
    pending          -> pending_release  (task_matched)
    pending_release  -> released         (quorum_reached)
    pending_release  -> disputed         (dispute_raised)
    disputed         -> released         (arbitrated_release)
    disputed         -> refunded         (arbitrated_refund)

Escrow transition table:
    active -> completed  (all_milestones_settled)
    active -> cancelled  (cancelled_by_client)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from streampay_escrow.domain.exceptions import InvalidStateTransitionError


class _GuardMixin:
    """Shared construction and helpers for the status guards."""

    def _check_status(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class MilestoneStateMachine(_GuardMixin, StateMachine):
    """State machine that guards milestone lifecycle transitions.

    Usage:
        sm = MilestoneStateMachine(current_status="pending")
        sm.task_matched()   # transitions to pending_release
        sm.status           # "pending_release"
    """

    # --- States ---
    pending = State("Pending", initial=True)
    pending_release = State("Pending release")
    released = State("Released", final=True)
    disputed = State("Disputed")
    refunded = State("Refunded", final=True)

    # --- Events / Transitions ---
    task_matched = pending.to(pending_release)
    quorum_reached = pending_release.to(released)
    dispute_raised = pending_release.to(disputed)
    arbitrated_release = disputed.to(released)
    arbitrated_refund = disputed.to(refunded)

    def __init__(self, current_status: str = "pending") -> None:
        self._check_status(current_status)
        super().__init__(start_value=current_status)


class EscrowStateMachine(_GuardMixin, StateMachine):
    """State machine that guards escrow lifecycle transitions."""

    active = State("Active", initial=True)
    completed = State("Completed", final=True)
    cancelled = State("Cancelled", final=True)

    all_milestones_settled = active.to(completed)
    cancelled_by_client = active.to(cancelled)

    def __init__(self, current_status: str = "active") -> None:
        self._check_status(current_status)
        super().__init__(start_value=current_status)


def _fire(sm: _GuardMixin, current_status: str, event_name: str) -> str:
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, event_name) from err
    return sm.status


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a milestone transition and return the new status.

    Args:
        current_status: Current MilestoneStatus value.
        event_name: The event to fire (e.g., "quorum_reached").

    Returns:
        The new status string after the transition.

    Raises:
        InvalidStateTransitionError: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    return _fire(MilestoneStateMachine(current_status=current_status), current_status, event_name)


def validate_escrow_transition(current_status: str, event_name: str) -> str:
    """Same as validate_transition, for escrow statuses."""
    return _fire(EscrowStateMachine(current_status=current_status), current_status, event_name)
