"""Dispute policies — how recorded dispute votes affect approval quorum.

Three strategies, selected with ``DISPUTE_POLICY``:
    - record_only:   disputes are stored and counted, nothing else happens
    - block_quorum:  any recorded dispute holds the release until arbitration
    - freeze:        a dispute vote moves pending_release -> disputed

Under block_quorum the milestone stays pending_release; arbitration moves it
to disputed with ``mark_disputed`` before applying the verdict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import DisputePolicy, EventType, MilestoneStatus
from streampay_escrow.domain.models import AuditEvent
from streampay_escrow.domain.state_machine import validate_transition
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from streampay_escrow.domain.store_protocol import EscrowStore

logger = get_logger(__name__)


class RecordOnlyPolicy:
    name = DisputePolicy.RECORD_ONLY
    freezes_milestone = False

    def blocks_quorum(self, disputes: int) -> bool:
        return False


class BlockQuorumPolicy:
    name = DisputePolicy.BLOCK_QUORUM
    freezes_milestone = False

    def blocks_quorum(self, disputes: int) -> bool:
        return disputes > 0


class FreezePolicy:
    """Disputes freeze the milestone; arbitration decides release or refund.

    Once frozen the milestone is no longer pending_release, so quorum cannot
    release it regardless of the vote count.
    """

    name = DisputePolicy.FREEZE
    freezes_milestone = True

    def blocks_quorum(self, disputes: int) -> bool:
        return False


AnyDisputePolicy = RecordOnlyPolicy | BlockQuorumPolicy | FreezePolicy

_POLICIES: dict[DisputePolicy, type] = {
    DisputePolicy.RECORD_ONLY: RecordOnlyPolicy,
    DisputePolicy.BLOCK_QUORUM: BlockQuorumPolicy,
    DisputePolicy.FREEZE: FreezePolicy,
}


def get_dispute_policy(name: str | DisputePolicy) -> AnyDisputePolicy:
    """Instantiate the policy registered under ``name``.

    Raises:
        ValueError: If ``name`` is not a known policy.
    """
    try:
        policy = DisputePolicy(name)
    except ValueError:
        valid = [p.value for p in DisputePolicy]
        raise ValueError(f"Unknown dispute policy: '{name}'. Valid policies: {valid}") from None
    return _POLICIES[policy]()


async def mark_disputed(
    store: EscrowStore,
    escrow_id: str,
    milestone_index: int,
    current_status: MilestoneStatus,
    actor: str,
) -> bool:
    """Apply pending_release -> disputed; False when another writer moved it first.

    Raises:
        InvalidStateTransitionError: ``current_status`` cannot be disputed.
    """
    validate_transition(current_status.value, "dispute_raised")
    if not await store.transition_milestone(
        escrow_id,
        milestone_index,
        MilestoneStatus.PENDING_RELEASE,
        MilestoneStatus.DISPUTED,
    ):
        return False

    await store.record_event(
        AuditEvent(
            escrow_id=escrow_id,
            milestone_index=milestone_index,
            event_type=EventType.MILESTONE_DISPUTED,
            old_status=MilestoneStatus.PENDING_RELEASE.value,
            new_status=MilestoneStatus.DISPUTED.value,
            actor=actor,
        )
    )
    logger.info(
        "dispute.milestone_disputed",
        escrow_id=escrow_id,
        milestone_index=milestone_index,
        actor=actor,
    )
    return True
