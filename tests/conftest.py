"""Shared test fixtures for the StreamPay escrow coordinator test suite.

Provides:
    - An in-memory escrow store seeded with an organization and members
    - A simulated chain gateway and an attestation submitter on top of it
    - Factory functions for escrows and canonical events
"""

from __future__ import annotations

import uuid

import pytest

from streampay_escrow.chain import AttestationSubmitter, SimulatedGateway, SimulatedSigner
from streampay_escrow.domain.enums import MemberRole, MilestoneStatus, Platform
from streampay_escrow.domain.events import CanonicalEvent
from streampay_escrow.domain.models import (
    Escrow,
    Member,
    Milestone,
    Organization,
    PlatformConnection,
)
from streampay_escrow.infrastructure.memory_store import InMemoryEscrowStore

REPO = "acme/payments-api"
CONTRACT_ID = "C" + "A" * 55


def _id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Store & chain
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryEscrowStore:
    return InMemoryEscrowStore()


@pytest.fixture
def gateway() -> SimulatedGateway:
    return SimulatedGateway()


@pytest.fixture
def signer() -> SimulatedSigner:
    return SimulatedSigner()


@pytest.fixture
def submitter(gateway: SimulatedGateway, signer: SimulatedSigner) -> AttestationSubmitter:
    return AttestationSubmitter(gateway, signer, timeout_seconds=5, retry_wait_seconds=0)


# ---------------------------------------------------------------------------
# Organization fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def org(store: InMemoryEscrowStore) -> Organization:
    return store.add_organization(
        Organization(id=_id(), name="Acme", slug="acme", approval_threshold=2)
    )


@pytest.fixture
def finance(store: InMemoryEscrowStore, org: Organization) -> Member:
    return store.add_member(
        Member(id=_id(), org_id=org.id, user_id="alice", role=MemberRole.FINANCE)
    )


@pytest.fixture
def admin(store: InMemoryEscrowStore, org: Organization) -> Member:
    return store.add_member(Member(id=_id(), org_id=org.id, user_id="bob", role=MemberRole.ADMIN))


@pytest.fixture
def second_finance(store: InMemoryEscrowStore, org: Organization) -> Member:
    return store.add_member(
        Member(id=_id(), org_id=org.id, user_id="dana", role=MemberRole.FINANCE)
    )


@pytest.fixture
def contributor(store: InMemoryEscrowStore, org: Organization) -> Member:
    return store.add_member(
        Member(id=_id(), org_id=org.id, user_id="carol", role=MemberRole.CONTRIBUTOR)
    )


@pytest.fixture
def outsider(store: InMemoryEscrowStore) -> Member:
    other = store.add_organization(Organization(id=_id(), name="Other", slug="other"))
    return store.add_member(Member(id=_id(), org_id=other.id, user_id="eve", role=MemberRole.ADMIN))


# ---------------------------------------------------------------------------
# Escrow fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_escrow(store: InMemoryEscrowStore, org: Organization):
    """Seed an escrow with design(0) / backend(1) / docs(2) milestones on REPO."""

    def _make(
        repo: str = REPO,
        statuses: dict[int, MilestoneStatus] | None = None,
        connect: bool = True,
        **escrow_fields,
    ) -> Escrow:
        statuses = statuses or {}
        escrow = Escrow(
            contract_id=CONTRACT_ID,
            token_id="C" + "T" * 55,
            client_address="G" + "C" * 55,
            developer_address="G" + "D" * 55,
            total_amount=1_000_000,
            platform=Platform.GITHUB,
            repo_or_board=repo,
            client_org_id=org.id,
            **escrow_fields,
        )
        milestones = [
            Milestone(
                escrow_id=escrow.id,
                index=i,
                title=title,
                trigger_keyword=keyword,
                bps=bps,
                status=statuses.get(i, MilestoneStatus.PENDING),
            )
            for i, (title, keyword, bps) in enumerate(
                [("Design", "design", 3000), ("Backend", "backend", 4000), ("Docs", "docs", 3000)]
            )
        ]
        connection = (
            PlatformConnection(escrow_id=escrow.id, platform=Platform.GITHUB, external_id=repo)
            if connect
            else None
        )
        return store.seed_escrow(escrow, milestones, connection)

    return _make


@pytest.fixture
def escrow(make_escrow) -> Escrow:
    return make_escrow()


def make_event(
    title: str = "feat/backend: auth layer",
    labels: tuple[str, ...] = ("backend",),
    repo: str = REPO,
    task_id: str = "42",
    is_done: bool = True,
) -> CanonicalEvent:
    return CanonicalEvent(
        platform=Platform.GITHUB,
        external_id=repo,
        task_id=task_id,
        task_title=title,
        task_labels=labels,
        task_url=f"https://github.com/{repo}/issues/{task_id}",
        is_done=is_done,
    )


@pytest.fixture
def event_factory():
    return make_event
