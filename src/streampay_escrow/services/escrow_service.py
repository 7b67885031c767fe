"""Escrow Service — escrow registration, lookups and settlement.

This is the application layer for the parts of the escrow lifecycle that are
not driven by task events or votes:
    - Registering an escrow with its milestone plan and platform connection
    - Reading an escrow, its milestones and its audit trail
    - Cancelling an active escrow
    - Completing an escrow once every milestone is settled

``settle_escrow_if_complete`` is shared with the approval and arbitration
services, which call it after moving a milestone into a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import EscrowStatus, EventType, Platform
from streampay_escrow.domain.exceptions import (
    EscrowNotFoundError,
    InvalidMilestonePlanError,
    InvalidStateTransitionError,
)
from streampay_escrow.domain.models import AuditEvent, Escrow, Milestone, PlatformConnection
from streampay_escrow.domain.state_machine import validate_escrow_transition
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from streampay_escrow.domain.store_protocol import EscrowStore

logger = get_logger(__name__)

MAX_MILESTONES = 10
TOTAL_BPS = 10_000


@dataclass(frozen=True)
class MilestonePlan:
    """One requested milestone of a new escrow."""

    index: int
    title: str
    trigger_keyword: str
    bps: int


def validate_milestone_plan(plan: Sequence[MilestonePlan]) -> None:
    """Check a milestone plan before anything is written.

    Raises:
        InvalidMilestonePlanError: On an empty or oversized plan, gaps or
            duplicates in the indexes, non-positive shares, shares not adding
            up to 100%, or a blank trigger keyword.
    """
    if not plan:
        raise InvalidMilestonePlanError("An escrow needs at least one milestone")
    if len(plan) > MAX_MILESTONES:
        raise InvalidMilestonePlanError(f"At most {MAX_MILESTONES} milestones are supported")

    indexes = sorted(m.index for m in plan)
    if indexes != list(range(len(plan))):
        raise InvalidMilestonePlanError(
            f"Milestone indexes must be unique and contiguous from 0, got {indexes}"
        )

    for m in plan:
        if m.bps <= 0:
            raise InvalidMilestonePlanError(f"Milestone {m.index} must have a positive bps share")
        if not m.trigger_keyword.strip():
            raise InvalidMilestonePlanError(f"Milestone {m.index} needs a trigger keyword")

    total = sum(m.bps for m in plan)
    if total != TOTAL_BPS:
        raise InvalidMilestonePlanError(
            f"Milestone shares must sum to {TOTAL_BPS} bps, got {total}"
        )


async def settle_escrow_if_complete(
    store: EscrowStore, escrow_id: str, actor: str = "SYSTEM"
) -> bool:
    """Complete the escrow when every milestone is released or refunded.

    Returns True only for the caller whose conditional update completed it.
    """
    milestones = await store.list_milestones(escrow_id)
    if not milestones or not all(m.status.is_terminal for m in milestones):
        return False

    validate_escrow_transition(EscrowStatus.ACTIVE.value, "all_milestones_settled")
    if not await store.transition_escrow(escrow_id, EscrowStatus.ACTIVE, EscrowStatus.COMPLETED):
        return False

    await store.record_event(
        AuditEvent(
            escrow_id=escrow_id,
            event_type=EventType.ESCROW_COMPLETED,
            old_status=EscrowStatus.ACTIVE.value,
            new_status=EscrowStatus.COMPLETED.value,
            actor=actor,
            metadata={
                "released": sum(1 for m in milestones if m.status == "released"),
                "refunded": sum(1 for m in milestones if m.status == "refunded"),
            },
        )
    )
    logger.info("escrow.completed", escrow_id=escrow_id)
    return True


class EscrowService:
    """Registers escrows and serves their read models."""

    def __init__(self, store: EscrowStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def create_escrow(
        self,
        *,
        contract_id: str,
        token_id: str,
        client_address: str,
        developer_address: str,
        total_amount: int,
        platform: Platform | str,
        repo_or_board: str,
        milestones: Sequence[MilestonePlan],
        client_org_id: str | None = None,
        developer_org_id: str | None = None,
        webhook_secret: str | None = None,
        access_token: str | None = None,
        actor: str = "SYSTEM",
    ) -> Escrow:
        """Register an escrow, its milestones and its platform connection atomically.

        Raises:
            InvalidMilestonePlanError: If the plan or amount is invalid.
            ConnectionConflictError: If ``repo_or_board`` is already connected.
            ContractConflictError: If ``contract_id`` already has an escrow.
        """
        validate_milestone_plan(milestones)
        if total_amount <= 0:
            raise InvalidMilestonePlanError("Escrow amount must be positive")

        platform = Platform(platform)
        escrow = Escrow(
            contract_id=contract_id,
            token_id=token_id,
            client_address=client_address,
            developer_address=developer_address,
            total_amount=total_amount,
            platform=platform,
            repo_or_board=repo_or_board,
            client_org_id=client_org_id,
            developer_org_id=developer_org_id,
        )
        rows = [
            Milestone(
                escrow_id=escrow.id,
                index=m.index,
                title=m.title,
                trigger_keyword=m.trigger_keyword.strip(),
                bps=m.bps,
            )
            for m in sorted(milestones, key=lambda m: m.index)
        ]
        connection = PlatformConnection(
            escrow_id=escrow.id,
            platform=platform,
            external_id=repo_or_board,
            webhook_secret=webhook_secret,
            access_token=access_token,
        )

        escrow = await self._store.create_escrow(escrow, rows, connection)
        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow.id,
                event_type=EventType.ESCROW_CREATED,
                old_status=None,
                new_status=EscrowStatus.ACTIVE.value,
                actor=actor,
                metadata={
                    "contract_id": contract_id,
                    "platform": platform.value,
                    "repo_or_board": repo_or_board,
                    "milestones": len(rows),
                },
            )
        )

        logger.info(
            "escrow.created",
            escrow_id=escrow.id,
            contract_id=contract_id,
            total_amount=total_amount,
            milestones=len(rows),
        )
        return escrow

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: str) -> tuple[Escrow, list[Milestone]]:
        escrow = await self._get_escrow_or_raise(escrow_id)
        return escrow, await self._store.list_milestones(escrow_id)

    async def list_events(self, escrow_id: str) -> list[AuditEvent]:
        await self._get_escrow_or_raise(escrow_id)
        return await self._store.list_events(escrow_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_escrow(self, escrow_id: str, actor: str = "SYSTEM") -> Escrow:
        """Move an active escrow to cancelled; later task events are skipped."""
        escrow = await self._get_escrow_or_raise(escrow_id)
        validate_escrow_transition(escrow.status.value, "cancelled_by_client")

        if not await self._store.transition_escrow(
            escrow_id, EscrowStatus.ACTIVE, EscrowStatus.CANCELLED
        ):
            current = await self._get_escrow_or_raise(escrow_id)
            raise InvalidStateTransitionError(current.status.value, "cancelled_by_client")

        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow_id,
                event_type=EventType.ESCROW_CANCELLED,
                old_status=EscrowStatus.ACTIVE.value,
                new_status=EscrowStatus.CANCELLED.value,
                actor=actor,
            )
        )
        logger.info("escrow.cancelled", escrow_id=escrow_id, actor=actor)
        return await self._get_escrow_or_raise(escrow_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_escrow_or_raise(self, escrow_id: str) -> Escrow:
        escrow = await self._store.get_escrow(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        return escrow
