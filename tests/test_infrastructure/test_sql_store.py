"""Integration tests for SqlEscrowStore on in-memory SQLite (aiosqlite).

Uses the same ORM models and repositories as production; build_engine gives
in-memory SQLite a StaticPool so the per-operation sessions share one database.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from streampay_escrow.chain import AttestationSubmitter, SimulatedGateway, SimulatedSigner
from streampay_escrow.domain.enums import (
    ApprovalAction,
    EscrowStatus,
    EventType,
    MemberRole,
    MilestoneStatus,
    OutcomeKind,
    Platform,
)
from streampay_escrow.domain.events import CanonicalEvent
from streampay_escrow.domain.exceptions import (
    AlreadyVotedError,
    ConnectionConflictError,
    ContractConflictError,
)
from streampay_escrow.domain.models import (
    Approval,
    AuditEvent,
    Escrow,
    Milestone,
    PlatformConnection,
)
from streampay_escrow.infrastructure.database import (
    Organization as OrganizationRow,
    OrgMember,
    SqlEscrowStore,
    build_engine,
    build_session_factory,
    create_tables,
)
from streampay_escrow.infrastructure.database.repositories import EscrowRepository
from streampay_escrow.services import ApprovalCoordinator, EventCoordinator

pytestmark = pytest.mark.integration

REPO = "acme/payments-api"
ORG_ID = str(uuid.uuid4())
ALICE_ID = str(uuid.uuid4())
BOB_ID = str(uuid.uuid4())


@pytest_asyncio.fixture
async def sql_store():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    factory = build_session_factory(engine)

    async with factory() as session, session.begin():
        session.add(OrganizationRow(id=ORG_ID, name="Acme", slug="acme", approval_threshold=2))
        await session.flush()
        session.add_all(
            [
                OrgMember(id=ALICE_ID, org_id=ORG_ID, user_id="alice", role="finance"),
                OrgMember(id=BOB_ID, org_id=ORG_ID, user_id="bob", role="admin"),
            ]
        )

    yield SqlEscrowStore(factory)
    await engine.dispose()


def _escrow(
    repo: str = REPO, contract_id: str = "C" + "A" * 55
) -> tuple[Escrow, list[Milestone], PlatformConnection]:
    escrow = Escrow(
        contract_id=contract_id,
        token_id="C" + "T" * 55,
        client_address="G" + "C" * 55,
        developer_address="G" + "D" * 55,
        total_amount=1_000_000,
        platform=Platform.GITHUB,
        repo_or_board=repo,
        client_org_id=ORG_ID,
    )
    milestones = [
        Milestone(escrow_id=escrow.id, index=i, title=kw.title(), trigger_keyword=kw, bps=bps)
        for i, (kw, bps) in enumerate([("design", 3000), ("backend", 4000), ("docs", 3000)])
    ]
    connection = PlatformConnection(escrow_id=escrow.id, platform=Platform.GITHUB, external_id=repo)
    return escrow, milestones, connection


async def _create(store: SqlEscrowStore, repo: str = REPO, **kwargs) -> Escrow:
    return await store.create_escrow(*_escrow(repo, **kwargs))


async def _no_escrow(self, contract_id: str) -> None:
    return None


async def _no_connections(self, platform: Platform, external_id: str) -> list:
    return []


class TestEscrowPersistence:
    @pytest.mark.asyncio
    async def test_create_and_read_back(self, sql_store) -> None:
        escrow = await _create(sql_store)

        loaded = await sql_store.get_escrow(escrow.id)
        assert loaded.id == escrow.id
        assert loaded.status == EscrowStatus.ACTIVE
        assert loaded.created_at.tzinfo is not None
        milestones = await sql_store.list_milestones(escrow.id)
        assert [m.index for m in milestones] == [0, 1, 2]
        assert [m.bps for m in milestones] == [3000, 4000, 3000]
        connections = await sql_store.find_connections(Platform.GITHUB, REPO)
        assert [c.escrow_id for c in connections] == [escrow.id]

    @pytest.mark.asyncio
    async def test_list_milestones_filtered_by_status(self, sql_store) -> None:
        escrow = await _create(sql_store)
        await sql_store.transition_milestone(
            escrow.id, 0, MilestoneStatus.PENDING, MilestoneStatus.PENDING_RELEASE
        )
        pending = await sql_store.list_milestones(escrow.id, MilestoneStatus.PENDING)
        assert [m.index for m in pending] == [1, 2]

    @pytest.mark.asyncio
    async def test_second_escrow_on_same_repo_rejected(self, sql_store) -> None:
        await _create(sql_store)
        with pytest.raises(ConnectionConflictError):
            await _create(sql_store)

    @pytest.mark.asyncio
    async def test_second_escrow_for_same_contract_rejected(self, sql_store) -> None:
        await _create(sql_store)
        with pytest.raises(ContractConflictError):
            await _create(sql_store, repo="acme/other")
        assert await sql_store.find_connections(Platform.GITHUB, "acme/other") == []

    @pytest.mark.asyncio
    async def test_racing_insert_reports_contract_conflict(self, sql_store, monkeypatch) -> None:
        await _create(sql_store)
        monkeypatch.setattr(EscrowRepository, "get_by_contract", _no_escrow)

        with pytest.raises(ContractConflictError) as exc_info:
            await _create(sql_store, repo="acme/other")
        assert exc_info.value.code == "CONTRACT_CONFLICT"

    @pytest.mark.asyncio
    async def test_racing_insert_reports_connection_conflict(
        self, sql_store, monkeypatch
    ) -> None:
        await _create(sql_store)
        monkeypatch.setattr(EscrowRepository, "find_connections", _no_connections)

        with pytest.raises(ConnectionConflictError):
            await _create(sql_store, contract_id="C" + "B" * 55)

    @pytest.mark.asyncio
    async def test_missing_rows(self, sql_store) -> None:
        missing = str(uuid.uuid4())
        assert await sql_store.get_escrow(missing) is None
        assert await sql_store.get_milestone(missing, 0) is None
        assert await sql_store.find_connections(Platform.JIRA, "PAY") == []

    @pytest.mark.asyncio
    async def test_escrow_transition_is_conditional(self, sql_store) -> None:
        escrow = await _create(sql_store)
        assert await sql_store.transition_escrow(
            escrow.id, EscrowStatus.ACTIVE, EscrowStatus.CANCELLED
        )
        assert not await sql_store.transition_escrow(
            escrow.id, EscrowStatus.ACTIVE, EscrowStatus.COMPLETED
        )


class TestAttestationLease:
    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, sql_store) -> None:
        escrow = await _create(sql_store)
        now = datetime.now(UTC)
        stale_before = now - timedelta(minutes=5)

        assert await sql_store.claim_milestone(escrow.id, 1, "a", now, stale_before)
        assert not await sql_store.claim_milestone(escrow.id, 1, "b", now, stale_before)

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, sql_store) -> None:
        escrow = await _create(sql_store)
        then = datetime.now(UTC) - timedelta(minutes=10)
        await sql_store.claim_milestone(escrow.id, 1, "crashed", then, then - timedelta(minutes=5))

        now = datetime.now(UTC)
        assert await sql_store.claim_milestone(escrow.id, 1, "b", now, now - timedelta(minutes=5))
        milestone = await sql_store.get_milestone(escrow.id, 1)
        assert milestone.claim_token == "b"

    @pytest.mark.asyncio
    async def test_complete_requires_lease(self, sql_store) -> None:
        escrow = await _create(sql_store)
        now = datetime.now(UTC)
        await sql_store.claim_milestone(escrow.id, 1, "a", now, now)

        assert not await sql_store.complete_attestation(
            escrow.id, 1, "b", task_url="u", tx_hash="h", completed_at=now
        )
        assert await sql_store.complete_attestation(
            escrow.id, 1, "a", task_url="https://x/1", tx_hash="ab" * 32, completed_at=now
        )

        milestone = await sql_store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING_RELEASE
        assert milestone.task_url == "https://x/1"
        assert milestone.attestation_tx_hash == "ab" * 32
        assert milestone.claim_token is None
        assert milestone.completed_at is not None

    @pytest.mark.asyncio
    async def test_complete_without_token_guards_on_status_only(self, sql_store) -> None:
        escrow = await _create(sql_store)
        now = datetime.now(UTC)
        await sql_store.claim_milestone(escrow.id, 1, "usurper", now, now)

        assert await sql_store.complete_attestation(
            escrow.id, 1, None, task_url="https://x/1", tx_hash="cd" * 32, completed_at=now
        )
        assert not await sql_store.complete_attestation(
            escrow.id, 1, None, task_url="https://x/2", tx_hash="ef" * 32, completed_at=now
        )

        milestone = await sql_store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING_RELEASE
        assert milestone.attestation_tx_hash == "cd" * 32
        assert milestone.claim_token is None

    @pytest.mark.asyncio
    async def test_release_claim(self, sql_store) -> None:
        escrow = await _create(sql_store)
        now = datetime.now(UTC)
        await sql_store.claim_milestone(escrow.id, 1, "a", now, now)

        assert not await sql_store.release_claim(escrow.id, 1, "someone-else")
        assert await sql_store.release_claim(escrow.id, 1, "a")
        assert await sql_store.claim_milestone(escrow.id, 1, "b", now, now - timedelta(seconds=1))


class TestVotesAndMembers:
    @pytest.mark.asyncio
    async def test_members_and_org(self, sql_store) -> None:
        org = await sql_store.get_organization(ORG_ID)
        assert org.approval_threshold == 2
        alice = await sql_store.find_member(ORG_ID, "alice")
        assert alice.id == ALICE_ID
        assert alice.role == MemberRole.FINANCE
        assert (await sql_store.get_member(BOB_ID)).can_vote
        assert await sql_store.find_member(ORG_ID, "mallory") is None

    @pytest.mark.asyncio
    async def test_votes_counted_per_action(self, sql_store) -> None:
        escrow = await _create(sql_store)
        await sql_store.add_approval(Approval(escrow.id, 1, ALICE_ID, ApprovalAction.APPROVE))
        await sql_store.add_approval(Approval(escrow.id, 1, BOB_ID, ApprovalAction.DISPUTE))

        assert await sql_store.count_votes(escrow.id, 1, ApprovalAction.APPROVE) == 1
        assert await sql_store.count_votes(escrow.id, 1, ApprovalAction.DISPUTE) == 1
        assert await sql_store.count_votes(escrow.id, 0, ApprovalAction.APPROVE) == 0

    @pytest.mark.asyncio
    async def test_second_vote_by_member_rejected(self, sql_store) -> None:
        escrow = await _create(sql_store)
        await sql_store.add_approval(Approval(escrow.id, 1, ALICE_ID, ApprovalAction.APPROVE))

        with pytest.raises(AlreadyVotedError):
            await sql_store.add_approval(Approval(escrow.id, 1, ALICE_ID, ApprovalAction.REJECT))
        assert await sql_store.count_votes(escrow.id, 1, ApprovalAction.APPROVE) == 1


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_events_round_trip_in_order(self, sql_store) -> None:
        escrow = await _create(sql_store)
        await sql_store.record_event(
            AuditEvent(
                escrow_id=escrow.id, event_type=EventType.ESCROW_CREATED, new_status="active"
            )
        )
        await sql_store.record_event(
            AuditEvent(
                escrow_id=escrow.id,
                milestone_index=1,
                event_type=EventType.MILESTONE_MATCHED,
                old_status="pending",
                new_status="pending_release",
                metadata={"task_id": "42", "raw_payload": {"action": "closed"}},
            )
        )

        events = await sql_store.list_events(escrow.id)

        assert [e.event_type for e in events] == ["ESCROW_CREATED", "MILESTONE_MATCHED"]
        assert events[1].metadata["raw_payload"] == {"action": "closed"}
        assert events[1].milestone_index == 1


class TestCoordinatorsOnSql:
    @pytest.mark.asyncio
    async def test_match_then_quorum_release(self, sql_store) -> None:
        escrow = await _create(sql_store)
        gateway = SimulatedGateway()
        submitter = AttestationSubmitter(gateway, SimulatedSigner(), retry_wait_seconds=0)
        events = EventCoordinator(sql_store, submitter)
        approvals = ApprovalCoordinator(sql_store)
        event = CanonicalEvent(
            platform=Platform.GITHUB,
            external_id=REPO,
            task_id="42",
            task_title="feat/backend: auth layer",
            task_labels=("backend",),
            task_url=f"https://github.com/{REPO}/issues/42",
        )

        matched = await events.handle(event)
        redelivered = await events.handle(event)
        await approvals.record_vote(escrow.id, 1, ALICE_ID, "approve")
        released = await approvals.record_vote(escrow.id, 1, BOB_ID, "approve")

        assert matched.kind == OutcomeKind.MATCHED
        assert redelivered.detail == "already-matched"
        assert released.threshold_met is True
        assert (await sql_store.get_milestone(escrow.id, 1)).status == MilestoneStatus.RELEASED
        assert len(gateway.broadcasts) == 1
