"""Pydantic schemas for the escrow, approval and arbitration API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain records and ORM models to keep clean boundaries
between the API, service and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - needed at runtime by pydantic
from datetime import datetime  # noqa: TC003 - needed at runtime by pydantic

from pydantic import BaseModel, ConfigDict, Field

from streampay_escrow.domain.enums import ApprovalAction, Platform, Resolution

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class MilestoneInput(BaseModel):
    """One milestone of a new escrow."""

    index: int = Field(..., ge=0, le=9, description="0-based milestone position")
    title: str = Field(..., min_length=1, max_length=255)
    trigger_keyword: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Matched against task titles and labels",
        examples=["backend"],
    )
    bps: int = Field(
        ...,
        gt=0,
        le=10_000,
        description="Share of the escrow in basis points; all milestones sum to 10000",
        examples=[4000],
    )


class CreateEscrowRequest(BaseModel):
    """Request body for registering an escrow deployed on-chain."""

    contract_id: str = Field(
        ...,
        min_length=56,
        max_length=56,
        description="Soroban escrow contract address (C...)",
    )
    token_id: str = Field(..., min_length=56, max_length=56, description="Payout asset contract")
    client_address: str = Field(..., min_length=56, max_length=56)
    developer_address: str = Field(..., min_length=56, max_length=56)
    total_amount: int = Field(..., gt=0, description="Amount in the token's smallest unit")
    platform: Platform
    repo_or_board: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="owner/repo, board id or project key that emits task events",
        examples=["acme/payments-api"],
    )
    milestones: list[MilestoneInput] = Field(..., min_length=1, max_length=10)
    client_org_id: uuid.UUID | None = None
    developer_org_id: uuid.UUID | None = None
    webhook_secret: str | None = None
    access_token: str | None = None


class VoteRequest(BaseModel):
    """Request body for an approval vote."""

    milestone_index: int = Field(..., ge=0)
    action: ApprovalAction = ApprovalAction.APPROVE
    note: str | None = Field(default=None, max_length=2000)


class ResolutionRequest(BaseModel):
    """Arbitration verdict for a disputed milestone."""

    resolution: Resolution
    arbitrator: str = Field(default="ARBITRATOR", min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MilestoneResponse(BaseModel):
    """Response schema for a milestone."""

    model_config = ConfigDict(from_attributes=True)

    index: int
    title: str
    trigger_keyword: str
    bps: int
    status: str
    completed_at: datetime | None
    task_url: str | None
    attestation_tx_hash: str | None


class EscrowResponse(BaseModel):
    """Response schema for an escrow with its milestones."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: str
    token_id: str
    client_address: str
    developer_address: str
    total_amount: int
    status: str
    platform: str
    repo_or_board: str
    client_org_id: uuid.UUID | None
    developer_org_id: uuid.UUID | None
    created_at: datetime
    milestones: list[MilestoneResponse] = Field(default_factory=list)


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    escrow_id: uuid.UUID
    milestone_index: int | None
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = None
    created_at: datetime


class VoteResponse(BaseModel):
    """Result of a vote, including whether it released the milestone."""

    recorded: bool
    approvals: int
    threshold: int
    threshold_met: bool
    already_released: bool
    blocked_by_dispute: bool
    milestone_status: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    chain: str = "unknown"
