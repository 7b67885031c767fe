"""In-process EscrowStore for tests, the simulation script and local runs.

Records are kept as frozen dataclasses and replaced on update. Every
conditional update checks and writes without awaiting in between, so on a
single event loop each one is atomic.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import MilestoneStatus
from streampay_escrow.domain.exceptions import (
    AlreadyVotedError,
    ConnectionConflictError,
    ContractConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from streampay_escrow.domain.enums import (
        ApprovalAction,
        EscrowStatus,
        Platform,
    )
    from streampay_escrow.domain.models import (
        Approval,
        AuditEvent,
        Escrow,
        Member,
        Milestone,
        Organization,
        PlatformConnection,
    )


class InMemoryEscrowStore:
    """Dictionary-backed escrow store."""

    def __init__(self) -> None:
        self.escrows: dict[str, Escrow] = {}
        self.milestones: dict[tuple[str, int], Milestone] = {}
        self.connections: list[PlatformConnection] = []
        self.organizations: dict[str, Organization] = {}
        self.members: dict[str, Member] = {}
        self.approvals: dict[tuple[str, int, str], Approval] = {}
        self.events: list[AuditEvent] = []

    # --- Seeding (synchronous, for fixtures) ---

    def add_organization(self, organization: Organization) -> Organization:
        self.organizations[organization.id] = organization
        return organization

    def add_member(self, member: Member) -> Member:
        self.members[member.id] = member
        return member

    def add_connection(self, connection: PlatformConnection) -> PlatformConnection:
        """Insert a connection without the uniqueness check (used to model bad data)."""
        self.connections.append(connection)
        return connection

    def seed_escrow(
        self,
        escrow: Escrow,
        milestones: Sequence[Milestone],
        connection: PlatformConnection | None = None,
    ) -> Escrow:
        self.escrows[escrow.id] = escrow
        for milestone in milestones:
            self.milestones[(escrow.id, milestone.index)] = milestone
        if connection is not None:
            self.connections.append(connection)
        return escrow

    # --- Reads ---

    async def find_connections(
        self, platform: Platform, external_id: str
    ) -> list[PlatformConnection]:
        return [
            c for c in self.connections
            if c.platform == platform and c.external_id == external_id
        ]

    async def get_escrow(self, escrow_id: str) -> Escrow | None:
        return self.escrows.get(escrow_id)

    async def list_milestones(
        self, escrow_id: str, status: MilestoneStatus | None = None
    ) -> list[Milestone]:
        found = [
            m for (eid, _), m in self.milestones.items()
            if eid == escrow_id and (status is None or m.status == status)
        ]
        return sorted(found, key=lambda m: m.index)

    async def get_milestone(self, escrow_id: str, index: int) -> Milestone | None:
        return self.milestones.get((escrow_id, index))

    async def get_organization(self, org_id: str) -> Organization | None:
        return self.organizations.get(org_id)

    async def get_member(self, member_id: str) -> Member | None:
        return self.members.get(member_id)

    async def find_member(self, org_id: str, user_id: str) -> Member | None:
        for member in self.members.values():
            if member.org_id == org_id and member.user_id == user_id:
                return member
        return None

    async def count_votes(
        self, escrow_id: str, milestone_index: int, action: ApprovalAction
    ) -> int:
        return sum(
            1 for a in self.approvals.values()
            if a.escrow_id == escrow_id
            and a.milestone_index == milestone_index
            and a.action == action
        )

    async def list_events(self, escrow_id: str) -> list[AuditEvent]:
        return [e for e in self.events if e.escrow_id == escrow_id]

    # --- Conditional updates ---

    async def claim_milestone(
        self,
        escrow_id: str,
        index: int,
        claim_token: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        milestone = self.milestones.get((escrow_id, index))
        if milestone is None or milestone.status != MilestoneStatus.PENDING:
            return False
        if milestone.claim_token is not None and milestone.claimed_at >= stale_before:
            return False
        self.milestones[(escrow_id, index)] = replace(
            milestone, claim_token=claim_token, claimed_at=now
        )
        return True

    async def release_claim(self, escrow_id: str, index: int, claim_token: str) -> bool:
        milestone = self.milestones.get((escrow_id, index))
        if milestone is None or milestone.claim_token != claim_token:
            return False
        self.milestones[(escrow_id, index)] = replace(
            milestone, claim_token=None, claimed_at=None
        )
        return True

    async def complete_attestation(
        self,
        escrow_id: str,
        index: int,
        claim_token: str | None,
        task_url: str,
        tx_hash: str,
        completed_at: datetime,
    ) -> bool:
        milestone = self.milestones.get((escrow_id, index))
        if (
            milestone is None
            or milestone.status != MilestoneStatus.PENDING
            or (claim_token is not None and milestone.claim_token != claim_token)
        ):
            return False
        self.milestones[(escrow_id, index)] = replace(
            milestone,
            status=MilestoneStatus.PENDING_RELEASE,
            task_url=task_url,
            attestation_tx_hash=tx_hash,
            completed_at=completed_at,
            claim_token=None,
            claimed_at=None,
        )
        return True

    async def transition_milestone(
        self,
        escrow_id: str,
        index: int,
        expected: MilestoneStatus,
        new_status: MilestoneStatus,
    ) -> bool:
        milestone = self.milestones.get((escrow_id, index))
        if milestone is None or milestone.status != expected:
            return False
        self.milestones[(escrow_id, index)] = replace(milestone, status=new_status)
        return True

    async def transition_escrow(
        self, escrow_id: str, expected: EscrowStatus, new_status: EscrowStatus
    ) -> bool:
        escrow = self.escrows.get(escrow_id)
        if escrow is None or escrow.status != expected:
            return False
        self.escrows[escrow_id] = replace(escrow, status=new_status)
        return True

    # --- Inserts ---

    async def add_approval(self, approval: Approval) -> Approval:
        key = (approval.escrow_id, approval.milestone_index, approval.member_id)
        if key in self.approvals:
            raise AlreadyVotedError(*key)
        self.approvals[key] = approval
        return approval

    async def record_event(self, event: AuditEvent) -> AuditEvent:
        self.events.append(event)
        return event

    async def create_escrow(
        self,
        escrow: Escrow,
        milestones: Sequence[Milestone],
        connection: PlatformConnection,
    ) -> Escrow:
        if await self.find_connections(connection.platform, connection.external_id):
            raise ConnectionConflictError(connection.platform, connection.external_id)
        if any(e.contract_id == escrow.contract_id for e in self.escrows.values()):
            raise ContractConflictError(escrow.contract_id)
        return self.seed_escrow(escrow, milestones, connection)
