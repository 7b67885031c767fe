"""Inbound task-event webhooks.

Routes:
    POST /api/v1/webhooks/events  — canonical event from any adapter
    POST /api/v1/webhooks/github  — raw GitHub delivery

Deliveries are acknowledged with 202 before processing; the Event
Coordinator then runs in a background task so the platform's delivery
timeout never waits on the chain. ``?wait=true`` processes inline and
returns the outcome instead (operators replaying an event).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from streampay_escrow.adapters.github import GitHubPayloadError, normalize_github_event
from streampay_escrow.api.deps import get_event_coordinator
from streampay_escrow.domain.exceptions import StreamPayError
from streampay_escrow.logging_config import get_logger
from streampay_escrow.schemas.webhook import CanonicalEventRequest, OutcomeResponse, WebhookAck
from streampay_escrow.services.event_coordinator import EventCoordinator  # noqa: TC001

if TYPE_CHECKING:
    from streampay_escrow.domain.events import CanonicalEvent

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


async def process_event(coordinator: EventCoordinator, event: CanonicalEvent) -> None:
    """Background entry point; nothing upstream is waiting for the result."""
    try:
        outcome = await coordinator.handle(event)
    except StreamPayError as exc:
        logger.error(
            "webhook.processing_failed",
            platform=event.platform.value,
            external_id=event.external_id,
            task_id=event.task_id,
            code=exc.code,
            error=exc.message,
        )
        return
    logger.info("webhook.processed", **outcome.to_dict())


async def _dispatch(
    event: CanonicalEvent,
    coordinator: EventCoordinator,
    background_tasks: BackgroundTasks,
    wait: bool,
) -> JSONResponse:
    if wait:
        outcome = await coordinator.handle(event)
        content = OutcomeResponse(**outcome.to_dict()).model_dump()
        return JSONResponse(status_code=200, content=content)

    background_tasks.add_task(process_event, coordinator, event)
    return JSONResponse(status_code=202, content=WebhookAck(event=event.task_id).model_dump())


@router.post(
    "/events",
    response_model=WebhookAck,
    status_code=202,
    summary="Receive a canonical task-completion event",
)
async def receive_event(
    request: CanonicalEventRequest,
    background_tasks: BackgroundTasks,
    wait: bool = Query(default=False, description="Process inline and return the outcome"),
    coordinator: EventCoordinator = Depends(get_event_coordinator),
) -> JSONResponse:
    event = request.to_event()
    logger.info(
        "webhook.received",
        platform=event.platform.value,
        external_id=event.external_id,
        task_id=event.task_id,
    )
    return await _dispatch(event, coordinator, background_tasks, wait)


@router.post(
    "/github",
    response_model=WebhookAck,
    status_code=202,
    summary="Receive a GitHub webhook delivery",
)
async def receive_github(
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    x_github_event: str = Header(default=""),
    wait: bool = Query(default=False),
    coordinator: EventCoordinator = Depends(get_event_coordinator),
) -> JSONResponse:
    logger.info("webhook.github_received", github_event=x_github_event, action=payload.get("action"))
    try:
        event = normalize_github_event(x_github_event, payload)
    except GitHubPayloadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if event is None:
        return JSONResponse(
            status_code=200,
            content=WebhookAck(queued=False, event=x_github_event).model_dump(),
        )
    return await _dispatch(event, coordinator, background_tasks, wait)
