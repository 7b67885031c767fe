"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the store. They accept an AsyncSession and never manage their own
transactions (that's the caller's responsibility).

Status-changing methods are conditional updates: the WHERE clause names the
status the row must still have, and the method returns whether a row
changed. The database serializes competing updates on the same row, so of
several concurrent callers exactly one sees True.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select, update

from streampay_escrow.domain.enums import MilestoneStatus
from streampay_escrow.infrastructure.database.orm_models import (
    Approval,
    Escrow,
    Milestone,
    MilestoneEvent,
    Organization,
    OrgMember,
    PlatformConnection,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from streampay_escrow.domain.enums import (
        ApprovalAction,
        EscrowStatus,
        Platform,
    )


class EscrowRepository:
    """Data access for escrows and their platform connections."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: str) -> Escrow | None:
        result = await self._session.execute(select(Escrow).where(Escrow.id == escrow_id))
        return result.scalar_one_or_none()

    async def get_by_contract(self, contract_id: str) -> Escrow | None:
        result = await self._session.execute(
            select(Escrow).where(Escrow.contract_id == contract_id)
        )
        return result.scalar_one_or_none()

    async def transition(
        self, escrow_id: str, expected: EscrowStatus, new_status: EscrowStatus
    ) -> bool:
        result = await self._session.execute(
            update(Escrow)
            .where(Escrow.id == escrow_id, Escrow.status == expected.value)
            .values(status=new_status.value)
        )
        return result.rowcount == 1

    async def add_connection(self, connection: PlatformConnection) -> PlatformConnection:
        self._session.add(connection)
        await self._session.flush()
        return connection

    async def find_connections(
        self, platform: Platform, external_id: str
    ) -> list[PlatformConnection]:
        result = await self._session.execute(
            select(PlatformConnection).where(
                PlatformConnection.platform == platform.value,
                PlatformConnection.external_id == external_id,
            )
        )
        return list(result.scalars().all())


class MilestoneRepository:
    """Data access for milestones, including the attestation lease."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_many(self, milestones: list[Milestone]) -> list[Milestone]:
        self._session.add_all(milestones)
        await self._session.flush()
        return milestones

    async def get(self, escrow_id: str, index: int) -> Milestone | None:
        result = await self._session.execute(
            select(Milestone).where(Milestone.escrow_id == escrow_id, Milestone.index == index)
        )
        return result.scalar_one_or_none()

    async def list_for_escrow(
        self, escrow_id: str, status: MilestoneStatus | None = None
    ) -> list[Milestone]:
        query = select(Milestone).where(Milestone.escrow_id == escrow_id)
        if status is not None:
            query = query.where(Milestone.status == status.value)
        result = await self._session.execute(query.order_by(Milestone.index.asc()))
        return list(result.scalars().all())

    async def claim(
        self,
        escrow_id: str,
        index: int,
        claim_token: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take the lease when the milestone is pending and unclaimed (or stale)."""
        result = await self._session.execute(
            update(Milestone)
            .where(
                Milestone.escrow_id == escrow_id,
                Milestone.index == index,
                Milestone.status == MilestoneStatus.PENDING.value,
                or_(Milestone.claim_token.is_(None), Milestone.claimed_at < stale_before),
            )
            .values(claim_token=claim_token, claimed_at=now)
        )
        return result.rowcount == 1

    async def release_claim(self, escrow_id: str, index: int, claim_token: str) -> bool:
        result = await self._session.execute(
            update(Milestone)
            .where(
                Milestone.escrow_id == escrow_id,
                Milestone.index == index,
                Milestone.claim_token == claim_token,
            )
            .values(claim_token=None, claimed_at=None)
        )
        return result.rowcount == 1

    async def complete_attestation(
        self,
        escrow_id: str,
        index: int,
        claim_token: str | None,
        task_url: str,
        tx_hash: str,
        completed_at: datetime,
    ) -> bool:
        """pending -> pending_release, only while ``claim_token`` holds the lease.

        ``claim_token=None`` guards on status alone; used to record an
        attestation that landed on-chain after its lease was lost.
        """
        conditions = [
            Milestone.escrow_id == escrow_id,
            Milestone.index == index,
            Milestone.status == MilestoneStatus.PENDING.value,
        ]
        if claim_token is not None:
            conditions.append(Milestone.claim_token == claim_token)
        result = await self._session.execute(
            update(Milestone)
            .where(*conditions)
            .values(
                status=MilestoneStatus.PENDING_RELEASE.value,
                task_url=task_url,
                attestation_tx_hash=tx_hash,
                completed_at=completed_at,
                claim_token=None,
                claimed_at=None,
            )
        )
        return result.rowcount == 1

    async def transition(
        self,
        escrow_id: str,
        index: int,
        expected: MilestoneStatus,
        new_status: MilestoneStatus,
    ) -> bool:
        result = await self._session.execute(
            update(Milestone)
            .where(
                Milestone.escrow_id == escrow_id,
                Milestone.index == index,
                Milestone.status == expected.value,
            )
            .values(status=new_status.value)
        )
        return result.rowcount == 1


class ApprovalRepository:
    """Data access for milestone votes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, approval: Approval) -> Approval:
        self._session.add(approval)
        await self._session.flush()
        return approval

    async def count(self, escrow_id: str, milestone_index: int, action: ApprovalAction) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(Approval)
            .where(
                Approval.escrow_id == escrow_id,
                Approval.milestone_index == milestone_index,
                Approval.action == action.value,
            )
        )
        return int(result.scalar_one())


class OrganizationRepository:
    """Read access to organizations and their members."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: str) -> Organization | None:
        result = await self._session.execute(
            select(Organization).where(Organization.id == org_id)
        )
        return result.scalar_one_or_none()

    async def get_member(self, member_id: str) -> OrgMember | None:
        result = await self._session.execute(select(OrgMember).where(OrgMember.id == member_id))
        return result.scalar_one_or_none()

    async def find_member(self, org_id: str, user_id: str) -> OrgMember | None:
        result = await self._session.execute(
            select(OrgMember).where(OrgMember.org_id == org_id, OrgMember.user_id == user_id)
        )
        return result.scalar_one_or_none()


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: MilestoneEvent) -> MilestoneEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        self._session.add(event)
        await self._session.flush()
        return event

    async def get_by_escrow(self, escrow_id: str) -> list[MilestoneEvent]:
        """Fetch all events for an escrow in chronological order."""
        result = await self._session.execute(
            select(MilestoneEvent)
            .where(MilestoneEvent.escrow_id == escrow_id)
            .order_by(MilestoneEvent.created_at.asc())
        )
        return list(result.scalars().all())
