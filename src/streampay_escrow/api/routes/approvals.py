"""Approval voting route.

    POST /api/v1/orgs/{org_id}/escrows/{escrow_id}/approve

The caller is identified by the ``X-User-ID`` header set by the auth
gateway and resolved to a membership of ``org_id``.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends

from streampay_escrow.api.deps import get_approval_coordinator, get_caller_user_id, get_store
from streampay_escrow.domain.exceptions import ForbiddenError
from streampay_escrow.domain.store_protocol import EscrowStore  # noqa: TC001
from streampay_escrow.logging_config import get_logger
from streampay_escrow.schemas.escrow import VoteRequest, VoteResponse
from streampay_escrow.services.approval_coordinator import ApprovalCoordinator  # noqa: TC001

router = APIRouter(prefix="/api/v1/orgs", tags=["Approvals"])
logger = get_logger(__name__)


@router.post(
    "/{org_id}/escrows/{escrow_id}/approve",
    response_model=VoteResponse,
    summary="Vote on a milestone release",
)
async def vote(
    org_id: uuid.UUID,
    escrow_id: uuid.UUID,
    request: VoteRequest,
    user_id: str = Depends(get_caller_user_id),
    store: EscrowStore = Depends(get_store),
    approvals: ApprovalCoordinator = Depends(get_approval_coordinator),
) -> VoteResponse:
    member = await store.find_member(str(org_id), user_id)
    if member is None:
        raise ForbiddenError(f"User {user_id} is not a member of organization {org_id}")

    outcome = await approvals.record_vote(
        str(escrow_id),
        request.milestone_index,
        member.id,
        request.action,
        note=request.note,
    )
    return VoteResponse(
        recorded=outcome.recorded,
        approvals=outcome.approvals,
        threshold=outcome.threshold,
        threshold_met=outcome.threshold_met,
        already_released=outcome.already_released,
        blocked_by_dispute=outcome.blocked_by_dispute,
        milestone_status=outcome.milestone_status,
        message=outcome.message,
    )
