"""Domain exceptions for the StreamPay escrow coordinator.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Expected skips (no connection, inactive escrow, no match, already matched)
are NOT exceptions; they are reported through ``Outcome`` values.
"""


class StreamPayError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "STREAMPAY_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class EscrowNotFoundError(StreamPayError):
    """Raised when an escrow ID does not exist."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow not found: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


class MilestoneNotFoundError(StreamPayError):
    """Raised when an escrow has no milestone at the given index."""

    def __init__(self, escrow_id: str, milestone_index: int) -> None:
        super().__init__(
            message=f"Milestone {milestone_index} not found on escrow {escrow_id}",
            code="MILESTONE_NOT_FOUND",
        )
        self.escrow_id = escrow_id
        self.milestone_index = milestone_index


# --- Conflict Errors ---


class ConflictError(StreamPayError):
    """Base for requests rejected because they collide with existing state."""


class InvalidStateTransitionError(ConflictError):
    """Raised when an attempted state transition is not allowed.

    Example: pending -> released (must go through pending_release).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class AlreadyVotedError(ConflictError):
    """Raised when a member votes twice on the same milestone."""

    def __init__(self, escrow_id: str, milestone_index: int, member_id: str) -> None:
        super().__init__(
            message=(
                f"Member {member_id} already voted on milestone "
                f"{milestone_index} of escrow {escrow_id}"
            ),
            code="ALREADY_VOTED",
        )
        self.escrow_id = escrow_id
        self.milestone_index = milestone_index
        self.member_id = member_id


class AmbiguousConnectionError(ConflictError):
    """Raised when more than one escrow claims the same platform identity."""

    def __init__(self, platform: str, external_id: str, escrow_ids: list[str]) -> None:
        super().__init__(
            message=(
                f"Platform identity {platform}:{external_id} maps to "
                f"{len(escrow_ids)} escrows"
            ),
            code="AMBIGUOUS_CONNECTION",
        )
        self.platform = platform
        self.external_id = external_id
        self.escrow_ids = escrow_ids


class ConnectionConflictError(ConflictError):
    """Raised when registering a platform identity that is already bound."""

    def __init__(self, platform: str, external_id: str) -> None:
        super().__init__(
            message=f"Platform identity already connected: {platform}:{external_id}",
            code="CONNECTION_CONFLICT",
        )


class ContractConflictError(ConflictError):
    """Raised when an on-chain contract is already tracked by another escrow."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(
            message=f"Contract already has an escrow: {contract_id}",
            code="CONTRACT_CONFLICT",
        )
        self.contract_id = contract_id


class MilestoneNotReadyError(ConflictError):
    """Raised when voting on a milestone whose task has not been attested yet."""

    def __init__(self, milestone_index: int, status: str) -> None:
        super().__init__(
            message=f"Milestone {milestone_index} is {status}; votes open after attestation",
            code="MILESTONE_NOT_READY",
        )
        self.status = status


# --- Authorization / Validation Errors ---


class ForbiddenError(StreamPayError):
    """Raised when the caller lacks membership or role for the action."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


class InvalidMilestonePlanError(StreamPayError):
    """Raised when a milestone set violates the creation invariants."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_MILESTONE_PLAN")


# --- Chain Errors ---


class ChainError(StreamPayError):
    """Transient network/RPC failure talking to the escrow contract.

    The milestone is left untouched, so re-delivery of the event retries safely.
    """

    def __init__(self, message: str, code: str = "CHAIN_ERROR") -> None:
        super().__init__(message=message, code=code)


class ChainTimeoutError(ChainError):
    """Raised when simulate + broadcast does not finish within the budget."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            message=f"Chain submission timed out after {timeout_seconds}s",
            code="CHAIN_TIMEOUT",
        )
        self.timeout_seconds = timeout_seconds


class SigningError(StreamPayError):
    """Raised when the backend signing key is missing or unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="SIGNING_UNAVAILABLE")


class SimulationError(StreamPayError):
    """Raised when the contract rejects the call during pre-flight simulation.

    Typically the milestone is already marked complete on-chain. Not retryable.
    """

    def __init__(self, message: str, contract_error: str | None = None) -> None:
        super().__init__(message=message, code="SIMULATION_REJECTED")
        self.contract_error = contract_error
