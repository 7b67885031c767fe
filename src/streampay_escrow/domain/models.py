"""Domain records returned by the escrow store.

These are immutable snapshots: a store hands out a copy of a row as it was
when read. Mutations go back through the store's conditional updates, never
through attribute assignment on a snapshot.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from streampay_escrow.domain.enums import (
    VOTING_ROLES,
    ApprovalAction,
    EscrowStatus,
    MemberRole,
    MilestoneStatus,
    Platform,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    slug: str
    approval_threshold: int = 1
    treasury_wallet: str | None = None


@dataclass(frozen=True)
class Member:
    id: str
    org_id: str
    user_id: str
    role: MemberRole

    @property
    def can_vote(self) -> bool:
        return self.role in VOTING_ROLES


@dataclass(frozen=True)
class Escrow:
    """One funding agreement backed by an on-chain escrow contract."""

    contract_id: str
    token_id: str
    client_address: str
    developer_address: str
    total_amount: int
    platform: Platform
    repo_or_board: str
    status: EscrowStatus = EscrowStatus.ACTIVE
    client_org_id: str | None = None
    developer_org_id: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)

    @property
    def is_active(self) -> bool:
        return self.status == EscrowStatus.ACTIVE


@dataclass(frozen=True)
class Milestone:
    """One payable unit of an escrow.

    ``claim_token``/``claimed_at`` form the attestation lease taken by the
    Event Coordinator while a chain submission for this milestone is in flight.
    """

    escrow_id: str
    index: int
    title: str
    trigger_keyword: str
    bps: int
    status: MilestoneStatus = MilestoneStatus.PENDING
    completed_at: datetime | None = None
    task_url: str | None = None
    attestation_tx_hash: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None
    id: str = field(default_factory=_new_id)

    def payout(self, total_amount: int) -> int:
        """Share of the escrow this milestone pays, in the smallest unit."""
        return total_amount * self.bps // 10_000


@dataclass(frozen=True)
class PlatformConnection:
    """Binds an escrow to one external platform identity."""

    escrow_id: str
    platform: Platform
    external_id: str
    webhook_secret: str | None = None
    access_token: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class Approval:
    """One vote by one organization member on one milestone."""

    escrow_id: str
    milestone_index: int
    member_id: str
    action: ApprovalAction
    note: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of a milestone or escrow transition."""

    escrow_id: str
    event_type: str
    new_status: str
    old_status: str | None = None
    milestone_index: int | None = None
    actor: str = "SYSTEM"
    metadata: dict | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
