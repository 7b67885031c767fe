"""Domain layer — pure business logic with zero framework dependencies."""

from streampay_escrow.domain.chain_protocol import (
    ChainGateway,
    ContractCall,
    TransactionSigner,
)
from streampay_escrow.domain.enums import (
    ApprovalAction,
    DisputePolicy,
    EscrowStatus,
    EventType,
    MemberRole,
    MilestoneStatus,
    OutcomeKind,
    Platform,
    Resolution,
    SkipReason,
)
from streampay_escrow.domain.events import CanonicalEvent, Outcome, VoteOutcome
from streampay_escrow.domain.exceptions import (
    AlreadyVotedError,
    AmbiguousConnectionError,
    ChainError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
    SigningError,
    SimulationError,
    StreamPayError,
)
from streampay_escrow.domain.state_machine import (
    EscrowStateMachine,
    MilestoneStateMachine,
    validate_transition,
)
from streampay_escrow.domain.store_protocol import EscrowStore

__all__ = [
    "ChainGateway",
    "ContractCall",
    "TransactionSigner",
    "ApprovalAction",
    "DisputePolicy",
    "EscrowStatus",
    "EventType",
    "MemberRole",
    "MilestoneStatus",
    "OutcomeKind",
    "Platform",
    "Resolution",
    "SkipReason",
    "CanonicalEvent",
    "Outcome",
    "VoteOutcome",
    "AlreadyVotedError",
    "AmbiguousConnectionError",
    "ChainError",
    "EscrowNotFoundError",
    "InvalidStateTransitionError",
    "SigningError",
    "SimulationError",
    "StreamPayError",
    "EscrowStateMachine",
    "MilestoneStateMachine",
    "validate_transition",
    "EscrowStore",
]
