"""Approval Coordinator — multi-party voting that gates milestone release.

Flow for one vote:
    1. Authorize: the member belongs to the escrow's client organization and
       holds a voting role (admin or finance).
    2. Insert the vote. The store rejects a second vote by the same member on
       the same milestone, whatever the action.
    3. Apply the dispute policy to dispute votes.
    4. Count approvals against the organization's threshold.
    5. If quorum holds and nothing blocks it, release with a conditional
       pending_release -> released update. Concurrent voters that all see
       quorum race on that update and exactly one of them wins.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import ApprovalAction, EventType, MilestoneStatus
from streampay_escrow.domain.events import VoteOutcome
from streampay_escrow.domain.exceptions import (
    EscrowNotFoundError,
    ForbiddenError,
    MilestoneNotFoundError,
    MilestoneNotReadyError,
)
from streampay_escrow.domain.models import Approval, AuditEvent
from streampay_escrow.domain.state_machine import validate_transition
from streampay_escrow.logging_config import get_logger
from streampay_escrow.services.dispute_policy import BlockQuorumPolicy, mark_disputed
from streampay_escrow.services.escrow_service import settle_escrow_if_complete

if TYPE_CHECKING:
    from streampay_escrow.domain.models import Escrow, Member, Milestone
    from streampay_escrow.domain.store_protocol import EscrowStore
    from streampay_escrow.services.dispute_policy import AnyDisputePolicy

logger = get_logger(__name__)


class ApprovalCoordinator:
    """Records votes and performs the quorum release."""

    def __init__(
        self,
        store: EscrowStore,
        dispute_policy: AnyDisputePolicy | None = None,
        default_threshold: int = 1,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Escrow store.
            dispute_policy: Strategy from services.dispute_policy; blocks
                quorum on any dispute when omitted.
            default_threshold: Quorum used when the escrow has no client
                organization record.
        """
        self._store = store
        self._policy = dispute_policy or BlockQuorumPolicy()
        self._default_threshold = max(1, default_threshold)

    async def record_vote(
        self,
        escrow_id: str,
        milestone_index: int,
        member_id: str,
        action: ApprovalAction | str,
        note: str | None = None,
    ) -> VoteOutcome:
        """Record one member's vote and release the milestone on quorum.

        Raises:
            EscrowNotFoundError / MilestoneNotFoundError: Unknown target.
            ForbiddenError: The member may not vote on this escrow.
            MilestoneNotReadyError: The milestone's task is not attested yet.
            AlreadyVotedError: The member already voted on this milestone.
        """
        action = ApprovalAction(action)
        log = logger.bind(escrow_id=escrow_id, milestone_index=milestone_index, member_id=member_id)

        escrow = await self._store.get_escrow(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        milestone = await self._get_milestone_or_raise(escrow_id, milestone_index)
        member = await self._store.get_member(member_id)
        self._authorize(escrow, member, member_id)

        if milestone.status == MilestoneStatus.PENDING:
            raise MilestoneNotReadyError(milestone_index, milestone.status.value)

        await self._store.add_approval(
            Approval(
                escrow_id=escrow_id,
                milestone_index=milestone_index,
                member_id=member_id,
                action=action,
                note=note,
            )
        )
        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow_id,
                milestone_index=milestone_index,
                event_type=EventType.VOTE_RECORDED,
                old_status=milestone.status.value,
                new_status=milestone.status.value,
                actor=member_id,
                metadata={"action": action.value, "note": note},
            )
        )
        log.info("approval.recorded", action=action.value)

        if (
            action == ApprovalAction.DISPUTE
            and self._policy.freezes_milestone
            and milestone.status == MilestoneStatus.PENDING_RELEASE
        ):
            await mark_disputed(
                self._store, escrow_id, milestone_index, milestone.status, member_id
            )

        count = self._store.count_votes
        approvals = await count(escrow_id, milestone_index, ApprovalAction.APPROVE)
        disputes = await count(escrow_id, milestone_index, ApprovalAction.DISPUTE)
        threshold = await self._threshold_for(escrow)
        blocked = self._policy.blocks_quorum(disputes)

        current = await self._get_milestone_or_raise(escrow_id, milestone_index)
        threshold_met = False
        releasable = current.status == MilestoneStatus.PENDING_RELEASE

        if approvals >= threshold and not blocked and releasable:
            validate_transition(current.status.value, "quorum_reached")
            if await self._store.transition_milestone(
                escrow_id,
                milestone_index,
                MilestoneStatus.PENDING_RELEASE,
                MilestoneStatus.RELEASED,
            ):
                threshold_met = True
                await self._store.record_event(
                    AuditEvent(
                        escrow_id=escrow_id,
                        milestone_index=milestone_index,
                        event_type=EventType.MILESTONE_RELEASED,
                        old_status=MilestoneStatus.PENDING_RELEASE.value,
                        new_status=MilestoneStatus.RELEASED.value,
                        actor=member_id,
                        metadata={
                            "approvals": approvals,
                            "threshold": threshold,
                            "payout": current.payout(escrow.total_amount),
                        },
                    )
                )
                log.info("approval.threshold_met", approvals=approvals, threshold=threshold)
                await settle_escrow_if_complete(self._store, escrow_id)
            else:
                log.info("approval.release_lost_race")
        elif blocked and approvals >= threshold:
            log.info("approval.blocked_by_dispute", disputes=disputes)

        final = await self._get_milestone_or_raise(escrow_id, milestone_index)
        return VoteOutcome(
            recorded=True,
            approvals=approvals,
            threshold=threshold,
            threshold_met=threshold_met,
            milestone_status=final.status.value,
            already_released=final.status == MilestoneStatus.RELEASED and not threshold_met,
            blocked_by_dispute=blocked,
            disputes=disputes,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _authorize(escrow: Escrow, member: Member | None, member_id: str) -> None:
        if member is None:
            raise ForbiddenError(f"Unknown member: {member_id}")
        if escrow.client_org_id is None or member.org_id != escrow.client_org_id:
            raise ForbiddenError(
                f"Member {member_id} does not belong to the client organization "
                f"of escrow {escrow.id}"
            )
        if not member.can_vote:
            raise ForbiddenError(f"Role '{member.role.value}' cannot approve releases")

    async def _threshold_for(self, escrow: Escrow) -> int:
        if escrow.client_org_id is None:
            return self._default_threshold
        org = await self._store.get_organization(escrow.client_org_id)
        if org is None:
            return self._default_threshold
        return max(1, org.approval_threshold)

    async def _get_milestone_or_raise(self, escrow_id: str, index: int) -> Milestone:
        milestone = await self._store.get_milestone(escrow_id, index)
        if milestone is None:
            raise MilestoneNotFoundError(escrow_id, index)
        return milestone
