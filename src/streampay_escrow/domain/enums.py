"""Domain enumerations for the StreamPay escrow coordinator.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class Platform(enum.StrEnum):
    """Project-tracking platforms that can emit task-completion events."""

    GITHUB = "github"
    TRELLO = "trello"
    JIRA = "jira"


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow agreement.

    Only active -> completed and active -> cancelled are legal.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MilestoneStatus(enum.StrEnum):
    """Lifecycle states of a milestone.

    State transitions are enforced by the MilestoneStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    PENDING_RELEASE = "pending_release"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (MilestoneStatus.RELEASED, MilestoneStatus.REFUNDED)


class ApprovalAction(enum.StrEnum):
    """What an organization member can say about a milestone."""

    APPROVE = "approve"
    REJECT = "reject"
    DISPUTE = "dispute"


class MemberRole(enum.StrEnum):
    """Organization roles. Only admin and finance may vote on releases."""

    ADMIN = "admin"
    FINANCE = "finance"
    CONTRIBUTOR = "contributor"


VOTING_ROLES = frozenset({MemberRole.ADMIN, MemberRole.FINANCE})


class DisputePolicy(enum.StrEnum):
    """How recorded dispute votes interact with approval quorum."""

    RECORD_ONLY = "record_only"
    BLOCK_QUORUM = "block_quorum"
    FREEZE = "freeze"


class Resolution(enum.StrEnum):
    """Arbitration verdict for a disputed milestone."""

    RELEASE = "release"
    REFUND = "refund"


class OutcomeKind(enum.StrEnum):
    """Top-level result of handling one canonical event."""

    MATCHED = "matched"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(enum.StrEnum):
    """Expected, non-error reasons an event produced no transition."""

    NOT_DONE = "not-done"
    NO_CONNECTION = "no-connection"
    ESCROW_INACTIVE = "escrow-inactive"
    NO_MATCH = "no-match"
    ALREADY_MATCHED = "already-matched"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the milestone_events table.

    Every milestone or escrow transition MUST produce exactly one event.
    """

    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_COMPLETED = "ESCROW_COMPLETED"
    ESCROW_CANCELLED = "ESCROW_CANCELLED"

    MILESTONE_MATCHED = "MILESTONE_MATCHED"
    ATTESTATION_FAILED = "ATTESTATION_FAILED"

    VOTE_RECORDED = "VOTE_RECORDED"
    MILESTONE_RELEASED = "MILESTONE_RELEASED"
    MILESTONE_DISPUTED = "MILESTONE_DISPUTED"

    DISPUTE_RESOLVED_RELEASE = "DISPUTE_RESOLVED_RELEASE"
    DISPUTE_RESOLVED_REFUND = "DISPUTE_RESOLVED_REFUND"
