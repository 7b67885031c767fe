"""Application services — use case orchestration."""

from streampay_escrow.services.approval_coordinator import ApprovalCoordinator
from streampay_escrow.services.arbitration_service import ArbitrationService
from streampay_escrow.services.dispute_policy import get_dispute_policy
from streampay_escrow.services.escrow_service import (
    EscrowService,
    MilestonePlan,
    settle_escrow_if_complete,
)
from streampay_escrow.services.event_coordinator import EventCoordinator

__all__ = [
    "ApprovalCoordinator",
    "ArbitrationService",
    "EscrowService",
    "EventCoordinator",
    "MilestonePlan",
    "get_dispute_policy",
    "settle_escrow_if_complete",
]
