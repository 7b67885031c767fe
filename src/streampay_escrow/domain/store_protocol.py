"""Escrow Store Protocol.

Defines the persistence capability injected into every coordinator. Two
implementations ship with the package:

    - infrastructure/database/store.py  (SQLAlchemy async, PostgreSQL)
    - infrastructure/memory_store.py    (in-process, for tests and simulation)

Every status-dependent write is a conditional update: it names the status
the row must still have and returns whether a row changed. Of N concurrent
callers racing for the same transition exactly one observes True.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

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


@runtime_checkable
class EscrowStore(Protocol):
    """Persistence interface over escrows, milestones, connections and approvals."""

    # --- Reads ---

    async def find_connections(
        self, platform: Platform, external_id: str
    ) -> list[PlatformConnection]:
        """All connections bound to a platform identity (normally zero or one)."""
        ...

    async def get_escrow(self, escrow_id: str) -> Escrow | None: ...

    async def list_milestones(
        self, escrow_id: str, status: MilestoneStatus | None = None
    ) -> list[Milestone]:
        """Milestones of an escrow ordered by ascending index."""
        ...

    async def get_milestone(self, escrow_id: str, index: int) -> Milestone | None: ...

    async def get_organization(self, org_id: str) -> Organization | None: ...

    async def get_member(self, member_id: str) -> Member | None: ...

    async def find_member(self, org_id: str, user_id: str) -> Member | None: ...

    async def count_votes(
        self, escrow_id: str, milestone_index: int, action: ApprovalAction
    ) -> int: ...

    async def list_events(self, escrow_id: str) -> list[AuditEvent]: ...

    # --- Conditional updates ---

    async def claim_milestone(
        self,
        escrow_id: str,
        index: int,
        claim_token: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take the attestation lease if the milestone is still pending.

        Succeeds only when status is pending and no claim exists or the
        existing claim was taken before ``stale_before``.
        """
        ...

    async def release_claim(self, escrow_id: str, index: int, claim_token: str) -> bool:
        """Drop the lease held by ``claim_token``; status is left untouched."""
        ...

    async def complete_attestation(
        self,
        escrow_id: str,
        index: int,
        claim_token: str | None,
        task_url: str,
        tx_hash: str,
        completed_at: datetime,
    ) -> bool:
        """pending -> pending_release, only for the holder of the lease.

        With ``claim_token=None`` the update is guarded by status alone.
        """
        ...

    async def transition_milestone(
        self,
        escrow_id: str,
        index: int,
        expected: MilestoneStatus,
        new_status: MilestoneStatus,
    ) -> bool: ...

    async def transition_escrow(
        self, escrow_id: str, expected: EscrowStatus, new_status: EscrowStatus
    ) -> bool: ...

    # --- Inserts ---

    async def add_approval(self, approval: Approval) -> Approval:
        """Insert a vote; raises AlreadyVotedError on (escrow, index, member) conflict."""
        ...

    async def record_event(self, event: AuditEvent) -> AuditEvent: ...

    async def create_escrow(
        self,
        escrow: Escrow,
        milestones: Sequence[Milestone],
        connection: PlatformConnection,
    ) -> Escrow:
        """Insert an escrow with its milestones and connection atomically.

        Raises ConnectionConflictError if the platform identity is taken and
        ContractConflictError if the contract already has an escrow.
        """
        ...
