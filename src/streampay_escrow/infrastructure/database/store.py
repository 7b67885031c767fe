"""SqlEscrowStore — EscrowStore implementation on SQLAlchemy async.

Each operation runs in its own short transaction opened from the session
factory and returns immutable domain records, never live ORM objects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from streampay_escrow.domain.exceptions import (
    AlreadyVotedError,
    ConflictError,
    ConnectionConflictError,
    ContractConflictError,
    InvalidMilestonePlanError,
)
from streampay_escrow.infrastructure.database.orm_models import (
    Approval as ApprovalRow,
    Escrow as EscrowRow,
    Milestone as MilestoneRow,
    MilestoneEvent as MilestoneEventRow,
    PlatformConnection as ConnectionRow,
)
from streampay_escrow.infrastructure.database.repositories import (
    ApprovalRepository,
    EscrowRepository,
    EventRepository,
    MilestoneRepository,
    OrganizationRepository,
)
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from streampay_escrow.domain.enums import (
        ApprovalAction,
        EscrowStatus,
        MilestoneStatus,
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

logger = get_logger(__name__)


class SqlEscrowStore:
    """Escrow store backed by PostgreSQL (or SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # --- Reads ---

    async def find_connections(
        self, platform: Platform, external_id: str
    ) -> list[PlatformConnection]:
        async with self._session_factory() as session:
            rows = await EscrowRepository(session).find_connections(platform, external_id)
            return [row.to_domain() for row in rows]

    async def get_escrow(self, escrow_id: str) -> Escrow | None:
        async with self._session_factory() as session:
            row = await EscrowRepository(session).get_by_id(escrow_id)
            return row.to_domain() if row else None

    async def list_milestones(
        self, escrow_id: str, status: MilestoneStatus | None = None
    ) -> list[Milestone]:
        async with self._session_factory() as session:
            rows = await MilestoneRepository(session).list_for_escrow(escrow_id, status)
            return [row.to_domain() for row in rows]

    async def get_milestone(self, escrow_id: str, index: int) -> Milestone | None:
        async with self._session_factory() as session:
            row = await MilestoneRepository(session).get(escrow_id, index)
            return row.to_domain() if row else None

    async def get_organization(self, org_id: str) -> Organization | None:
        async with self._session_factory() as session:
            row = await OrganizationRepository(session).get_by_id(org_id)
            return row.to_domain() if row else None

    async def get_member(self, member_id: str) -> Member | None:
        async with self._session_factory() as session:
            row = await OrganizationRepository(session).get_member(member_id)
            return row.to_domain() if row else None

    async def find_member(self, org_id: str, user_id: str) -> Member | None:
        async with self._session_factory() as session:
            row = await OrganizationRepository(session).find_member(org_id, user_id)
            return row.to_domain() if row else None

    async def count_votes(
        self, escrow_id: str, milestone_index: int, action: ApprovalAction
    ) -> int:
        async with self._session_factory() as session:
            return await ApprovalRepository(session).count(escrow_id, milestone_index, action)

    async def list_events(self, escrow_id: str) -> list[AuditEvent]:
        async with self._session_factory() as session:
            rows = await EventRepository(session).get_by_escrow(escrow_id)
            return [row.to_domain() for row in rows]

    # --- Conditional updates ---

    async def claim_milestone(
        self,
        escrow_id: str,
        index: int,
        claim_token: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            return await MilestoneRepository(session).claim(
                escrow_id, index, claim_token, now, stale_before
            )

    async def release_claim(self, escrow_id: str, index: int, claim_token: str) -> bool:
        async with self._session_factory() as session, session.begin():
            return await MilestoneRepository(session).release_claim(escrow_id, index, claim_token)

    async def complete_attestation(
        self,
        escrow_id: str,
        index: int,
        claim_token: str | None,
        task_url: str,
        tx_hash: str,
        completed_at: datetime,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            return await MilestoneRepository(session).complete_attestation(
                escrow_id, index, claim_token, task_url, tx_hash, completed_at
            )

    async def transition_milestone(
        self,
        escrow_id: str,
        index: int,
        expected: MilestoneStatus,
        new_status: MilestoneStatus,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            return await MilestoneRepository(session).transition(
                escrow_id, index, expected, new_status
            )

    async def transition_escrow(
        self, escrow_id: str, expected: EscrowStatus, new_status: EscrowStatus
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            return await EscrowRepository(session).transition(escrow_id, expected, new_status)

    # --- Inserts ---

    async def add_approval(self, approval: Approval) -> Approval:
        try:
            async with self._session_factory() as session, session.begin():
                row = await ApprovalRepository(session).create(ApprovalRow.from_domain(approval))
                return row.to_domain()
        except IntegrityError as exc:
            raise AlreadyVotedError(
                approval.escrow_id, approval.milestone_index, approval.member_id
            ) from exc

    async def record_event(self, event: AuditEvent) -> AuditEvent:
        async with self._session_factory() as session, session.begin():
            row = await EventRepository(session).record(MilestoneEventRow.from_domain(event))
            return row.to_domain()

    async def create_escrow(
        self,
        escrow: Escrow,
        milestones: Sequence[Milestone],
        connection: PlatformConnection,
    ) -> Escrow:
        try:
            async with self._session_factory() as session, session.begin():
                repo = EscrowRepository(session)
                existing = await repo.find_connections(connection.platform, connection.external_id)
                if existing:
                    raise ConnectionConflictError(connection.platform, connection.external_id)
                if await repo.get_by_contract(escrow.contract_id) is not None:
                    raise ContractConflictError(escrow.contract_id)

                row = await repo.create(EscrowRow.from_domain(escrow))
                await MilestoneRepository(session).create_many(
                    [MilestoneRow.from_domain(m) for m in milestones]
                )
                await repo.add_connection(ConnectionRow.from_domain(connection))
                created = row.to_domain()
        except IntegrityError as exc:
            logger.warning("store.create_escrow_conflict", error=str(exc.orig))
            conflict = _creation_conflict(str(exc.orig), escrow, connection)
            if conflict is None:
                raise
            raise conflict from exc

        logger.info("store.escrow_created", escrow_id=created.id, milestones=len(milestones))
        return created


# Constraint name (PostgreSQL) and column list (SQLite) for each unique key
# an escrow insert can collide on.
_CREATE_CONSTRAINTS = {
    "contract": ("uq_escrow_contract", "escrows.contract_id"),
    "connection": ("uq_connection_identity", "platform_connections.platform"),
    "milestone": ("uq_milestone_escrow_index", "milestones.escrow_id"),
}


def _creation_conflict(
    message: str, escrow: Escrow, connection: PlatformConnection
) -> ConflictError | InvalidMilestonePlanError | None:
    """Name the unique key an escrow insert violated, or None if it was something else."""
    violated = {
        key for key, markers in _CREATE_CONSTRAINTS.items()
        if any(marker in message for marker in markers)
    }
    if "contract" in violated:
        return ContractConflictError(escrow.contract_id)
    if "connection" in violated:
        return ConnectionConflictError(connection.platform, connection.external_id)
    if "milestone" in violated:
        return InvalidMilestonePlanError("Milestone indexes must be unique")
    return None
