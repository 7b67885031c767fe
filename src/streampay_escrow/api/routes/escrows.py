"""Escrow REST API routes.

Routes:
    POST   /api/v1/escrows                                   — Register an escrow
    GET    /api/v1/escrows/{id}                              — Escrow with milestones
    GET    /api/v1/escrows/{id}/events                       — Audit trail
    POST   /api/v1/escrows/{id}/cancel                       — Cancel an active escrow
    POST   /api/v1/escrows/{id}/milestones/{index}/resolution — Arbitration verdict
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends

from streampay_escrow.api.deps import get_arbitration_service, get_escrow_service
from streampay_escrow.logging_config import get_logger
from streampay_escrow.schemas.escrow import (
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowResponse,
    MilestoneResponse,
    ResolutionRequest,
)
from streampay_escrow.services.arbitration_service import ArbitrationService  # noqa: TC001
from streampay_escrow.services.escrow_service import EscrowService, MilestonePlan  # noqa: TC001

router = APIRouter(prefix="/api/v1/escrows", tags=["Escrows"])
logger = get_logger(__name__)


def _escrow_response(escrow, milestones) -> EscrowResponse:  # noqa: ANN001
    response = EscrowResponse.model_validate(escrow)
    response.milestones = [MilestoneResponse.model_validate(m) for m in milestones]
    return response


@router.post(
    "",
    response_model=EscrowResponse,
    status_code=201,
    summary="Register an escrow deployed on-chain",
)
async def create_escrow(
    request: CreateEscrowRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow = await svc.create_escrow(
        contract_id=request.contract_id,
        token_id=request.token_id,
        client_address=request.client_address,
        developer_address=request.developer_address,
        total_amount=request.total_amount,
        platform=request.platform,
        repo_or_board=request.repo_or_board,
        milestones=[
            MilestonePlan(
                index=m.index,
                title=m.title,
                trigger_keyword=m.trigger_keyword,
                bps=m.bps,
            )
            for m in request.milestones
        ],
        client_org_id=str(request.client_org_id) if request.client_org_id else None,
        developer_org_id=str(request.developer_org_id) if request.developer_org_id else None,
        webhook_secret=request.webhook_secret,
        access_token=request.access_token,
        actor=request.client_address,
    )
    escrow, milestones = await svc.get_escrow(escrow.id)
    return _escrow_response(escrow, milestones)


@router.get(
    "/{escrow_id}",
    response_model=EscrowResponse,
    summary="Get an escrow with its milestones",
)
async def get_escrow(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    escrow, milestones = await svc.get_escrow(str(escrow_id))
    return _escrow_response(escrow, milestones)


@router.get(
    "/{escrow_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get the audit trail of an escrow",
)
async def get_escrow_events(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[EscrowEventResponse]:
    events = await svc.list_events(str(escrow_id))
    return [EscrowEventResponse.model_validate(e) for e in events]


@router.post(
    "/{escrow_id}/cancel",
    response_model=EscrowResponse,
    summary="Cancel an active escrow",
)
async def cancel_escrow(
    escrow_id: uuid.UUID,
    svc: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    await svc.cancel_escrow(str(escrow_id), actor="CLIENT")
    escrow, milestones = await svc.get_escrow(str(escrow_id))
    return _escrow_response(escrow, milestones)


@router.post(
    "/{escrow_id}/milestones/{milestone_index}/resolution",
    response_model=MilestoneResponse,
    summary="Apply an arbitration verdict to a disputed milestone",
)
async def resolve_dispute(
    escrow_id: uuid.UUID,
    milestone_index: int,
    request: ResolutionRequest,
    svc: ArbitrationService = Depends(get_arbitration_service),
) -> MilestoneResponse:
    milestone = await svc.resolve(
        str(escrow_id),
        milestone_index,
        request.resolution,
        actor=request.arbitrator,
        reason=request.reason,
    )
    return MilestoneResponse.model_validate(milestone)
