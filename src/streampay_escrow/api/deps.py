"""FastAPI dependency injection providers.

The application lifespan builds one ``Services`` bundle (store, submitter and
the services wired to them) and stores it on ``app.state``. Route handlers
receive it, or a single service from it, through Depends(). Tests override
``get_services`` to run the routes against an in-memory store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Depends, Header, Request

from streampay_escrow.config import Settings, get_settings
from streampay_escrow.matching import MatcherFactory
from streampay_escrow.services import (
    ApprovalCoordinator,
    ArbitrationService,
    EscrowService,
    EventCoordinator,
    get_dispute_policy,
)

if TYPE_CHECKING:
    from streampay_escrow.chain.submitter import AttestationSubmitter
    from streampay_escrow.domain.store_protocol import EscrowStore


@dataclass
class Services:
    """Everything a request handler may need, built once per process."""

    store: EscrowStore
    submitter: AttestationSubmitter
    events: EventCoordinator
    approvals: ApprovalCoordinator
    arbitration: ArbitrationService
    escrows: EscrowService


def build_services(
    settings: Settings,
    store: EscrowStore,
    submitter: AttestationSubmitter,
) -> Services:
    """Wire the services to one store and one submitter."""
    return Services(
        store=store,
        submitter=submitter,
        events=EventCoordinator(
            store,
            submitter,
            matcher_factory=MatcherFactory(settings.matcher_strategy),
            claim_ttl_seconds=settings.attestation_claim_ttl_seconds,
        ),
        approvals=ApprovalCoordinator(
            store,
            dispute_policy=get_dispute_policy(settings.dispute_policy),
            default_threshold=settings.default_approval_threshold,
        ),
        arbitration=ArbitrationService(store),
        escrows=EscrowService(store),
    )


def get_services(request: Request) -> Services:
    """Provide the services bundle created at startup."""
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> EscrowStore:
    return services.store


def get_event_coordinator(services: Services = Depends(get_services)) -> EventCoordinator:
    return services.events


def get_approval_coordinator(services: Services = Depends(get_services)) -> ApprovalCoordinator:
    return services.approvals


def get_arbitration_service(services: Services = Depends(get_services)) -> ArbitrationService:
    return services.arbitration


def get_escrow_service(services: Services = Depends(get_services)) -> EscrowService:
    return services.escrows


def get_caller_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Identity of the caller, set by the authentication gateway."""
    return x_user_id


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
