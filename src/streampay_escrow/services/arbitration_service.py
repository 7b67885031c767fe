"""Arbitration Service — applies an arbitrator's verdict to a disputed milestone.

A milestone reaches arbitration either frozen (``disputed``, freeze policy) or
held at ``pending_release`` by a recorded dispute vote (block_quorum). The
latter is first moved to ``disputed`` so every verdict follows the same
disputed -> released | refunded transition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import ApprovalAction, EventType, MilestoneStatus, Resolution
from streampay_escrow.domain.exceptions import (
    EscrowNotFoundError,
    InvalidStateTransitionError,
    MilestoneNotFoundError,
)
from streampay_escrow.domain.models import AuditEvent
from streampay_escrow.domain.state_machine import validate_transition
from streampay_escrow.logging_config import get_logger
from streampay_escrow.services.dispute_policy import mark_disputed
from streampay_escrow.services.escrow_service import settle_escrow_if_complete

if TYPE_CHECKING:
    from streampay_escrow.domain.models import Milestone
    from streampay_escrow.domain.store_protocol import EscrowStore

logger = get_logger(__name__)

_VERDICTS = {
    Resolution.RELEASE: ("arbitrated_release", EventType.DISPUTE_RESOLVED_RELEASE),
    Resolution.REFUND: ("arbitrated_refund", EventType.DISPUTE_RESOLVED_REFUND),
}


class ArbitrationService:
    """Resolves disputed milestones to released or refunded."""

    def __init__(self, store: EscrowStore) -> None:
        self._store = store

    async def resolve(
        self,
        escrow_id: str,
        milestone_index: int,
        resolution: Resolution | str,
        actor: str = "ARBITRATOR",
        reason: str | None = None,
    ) -> Milestone:
        """Move a disputed milestone to its final state.

        Raises:
            InvalidStateTransitionError: The milestone is neither disputed nor
                held by a dispute vote, or another resolution landed first.
        """
        resolution = Resolution(resolution)
        event_name, event_type = _VERDICTS[resolution]

        if await self._store.get_escrow(escrow_id) is None:
            raise EscrowNotFoundError(escrow_id)
        milestone = await self._get_milestone_or_raise(escrow_id, milestone_index)
        if milestone.status == MilestoneStatus.PENDING_RELEASE:
            milestone = await self._escalate(milestone, event_name, actor)

        new_status = MilestoneStatus(validate_transition(milestone.status.value, event_name))
        if not await self._store.transition_milestone(
            escrow_id, milestone_index, MilestoneStatus.DISPUTED, new_status
        ):
            current = await self._get_milestone_or_raise(escrow_id, milestone_index)
            raise InvalidStateTransitionError(current.status.value, event_name)

        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow_id,
                milestone_index=milestone_index,
                event_type=event_type,
                old_status=MilestoneStatus.DISPUTED.value,
                new_status=new_status.value,
                actor=actor,
                metadata={"reason": reason} if reason else None,
            )
        )
        logger.info(
            "arbitration.resolved",
            escrow_id=escrow_id,
            milestone_index=milestone_index,
            resolution=resolution.value,
            actor=actor,
        )

        await settle_escrow_if_complete(self._store, escrow_id, actor=actor)
        return await self._get_milestone_or_raise(escrow_id, milestone_index)

    async def _escalate(self, milestone: Milestone, event_name: str, actor: str) -> Milestone:
        """pending_release -> disputed for a milestone held by a dispute vote."""
        disputes = await self._store.count_votes(
            milestone.escrow_id, milestone.index, ApprovalAction.DISPUTE
        )
        if disputes == 0:
            raise InvalidStateTransitionError(milestone.status.value, event_name)
        await mark_disputed(
            self._store, milestone.escrow_id, milestone.index, milestone.status, actor
        )
        return await self._get_milestone_or_raise(milestone.escrow_id, milestone.index)

    async def _get_milestone_or_raise(self, escrow_id: str, index: int) -> Milestone:
        milestone = await self._store.get_milestone(escrow_id, index)
        if milestone is None:
            raise MilestoneNotFoundError(escrow_id, index)
        return milestone
