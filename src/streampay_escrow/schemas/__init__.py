"""Pydantic API schemas."""

from streampay_escrow.schemas.escrow import (
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowResponse,
    HealthResponse,
    MilestoneInput,
    MilestoneResponse,
    ResolutionRequest,
    VoteRequest,
    VoteResponse,
)
from streampay_escrow.schemas.webhook import CanonicalEventRequest, OutcomeResponse, WebhookAck

__all__ = [
    "CanonicalEventRequest",
    "CreateEscrowRequest",
    "EscrowEventResponse",
    "EscrowResponse",
    "HealthResponse",
    "MilestoneInput",
    "MilestoneResponse",
    "OutcomeResponse",
    "ResolutionRequest",
    "VoteRequest",
    "VoteResponse",
    "WebhookAck",
]
