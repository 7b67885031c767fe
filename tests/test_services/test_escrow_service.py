"""Tests for escrow registration, cancellation and settlement."""

from __future__ import annotations

import pytest

from streampay_escrow.domain.enums import EscrowStatus, EventType, MilestoneStatus, Platform
from streampay_escrow.domain.exceptions import (
    ConnectionConflictError,
    EscrowNotFoundError,
    InvalidMilestonePlanError,
    InvalidStateTransitionError,
)
from streampay_escrow.services.escrow_service import (
    EscrowService,
    MilestonePlan,
    settle_escrow_if_complete,
    validate_milestone_plan,
)

PLAN = [
    MilestonePlan(0, "Design", "design", 3000),
    MilestonePlan(1, "Backend", "backend", 4000),
    MilestonePlan(2, "Docs", " docs ", 3000),
]


def _create_kwargs(**overrides) -> dict:
    kwargs = {
        "contract_id": "C" + "E" * 55,
        "token_id": "C" + "T" * 55,
        "client_address": "G" + "C" * 55,
        "developer_address": "G" + "D" * 55,
        "total_amount": 5_000_000,
        "platform": "trello",
        "repo_or_board": "board-7",
        "milestones": PLAN,
    }
    kwargs.update(overrides)
    return kwargs


@pytest.fixture
def service(store) -> EscrowService:
    return EscrowService(store)


class TestValidateMilestonePlan:
    def test_valid_plan(self) -> None:
        validate_milestone_plan(PLAN)

    @pytest.mark.parametrize(
        ("plan", "message"),
        [
            ([], "at least one"),
            ([MilestonePlan(i, "m", "k", 1000) for i in range(11)], "At most"),
            ([MilestonePlan(0, "a", "a", 5000), MilestonePlan(2, "b", "b", 5000)], "contiguous"),
            ([MilestonePlan(0, "a", "a", 5000), MilestonePlan(0, "b", "b", 5000)], "contiguous"),
            ([MilestonePlan(0, "a", "a", 10000), MilestonePlan(1, "b", "b", 0)], "positive"),
            ([MilestonePlan(0, "a", "  ", 10000)], "trigger keyword"),
            ([MilestonePlan(0, "a", "a", 9000)], "sum to 10000"),
        ],
    )
    def test_invalid_plans(self, plan: list[MilestonePlan], message: str) -> None:
        with pytest.raises(InvalidMilestonePlanError, match=message):
            validate_milestone_plan(plan)


class TestCreateEscrow:
    @pytest.mark.asyncio
    async def test_creates_escrow_milestones_and_connection(self, service, store) -> None:
        escrow = await service.create_escrow(**_create_kwargs(), actor="client-app")

        assert escrow.status == EscrowStatus.ACTIVE
        assert escrow.platform == Platform.TRELLO
        milestones = await store.list_milestones(escrow.id)
        assert [m.index for m in milestones] == [0, 1, 2]
        assert milestones[2].trigger_keyword == "docs"
        assert all(m.status == MilestoneStatus.PENDING for m in milestones)
        connections = await store.find_connections(Platform.TRELLO, "board-7")
        assert [c.escrow_id for c in connections] == [escrow.id]

        events = await store.list_events(escrow.id)
        assert events[0].event_type == EventType.ESCROW_CREATED
        assert events[0].actor == "client-app"

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amount(self, service) -> None:
        with pytest.raises(InvalidMilestonePlanError, match="amount"):
            await service.create_escrow(**_create_kwargs(total_amount=0))

    @pytest.mark.asyncio
    async def test_rejects_connected_board(self, service) -> None:
        await service.create_escrow(**_create_kwargs())
        with pytest.raises(ConnectionConflictError):
            await service.create_escrow(**_create_kwargs())

    @pytest.mark.asyncio
    async def test_rejects_unknown_platform(self, service) -> None:
        with pytest.raises(ValueError):
            await service.create_escrow(**_create_kwargs(platform="gitlab"))


class TestReads:
    @pytest.mark.asyncio
    async def test_get_escrow(self, service, escrow) -> None:
        found, milestones = await service.get_escrow(escrow.id)
        assert found.id == escrow.id
        assert len(milestones) == 3

    @pytest.mark.asyncio
    async def test_get_missing_escrow(self, service) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.get_escrow("missing")

    @pytest.mark.asyncio
    async def test_list_events_of_missing_escrow(self, service) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.list_events("missing")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active(self, service, store, escrow) -> None:
        cancelled = await service.cancel_escrow(escrow.id, actor="alice")

        assert cancelled.status == EscrowStatus.CANCELLED
        events = await store.list_events(escrow.id)
        assert events[-1].event_type == EventType.ESCROW_CANCELLED
        assert events[-1].actor == "alice"

    @pytest.mark.asyncio
    async def test_cancel_twice_conflicts(self, service, escrow) -> None:
        await service.cancel_escrow(escrow.id)
        with pytest.raises(InvalidStateTransitionError):
            await service.cancel_escrow(escrow.id)


class TestSettle:
    @pytest.mark.asyncio
    async def test_not_settled_while_any_milestone_open(self, store, make_escrow) -> None:
        escrow = make_escrow(statuses={0: MilestoneStatus.RELEASED, 1: MilestoneStatus.DISPUTED})
        assert await settle_escrow_if_complete(store, escrow.id) is False
        assert (await store.get_escrow(escrow.id)).status == EscrowStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_settles_exactly_once(self, store, make_escrow) -> None:
        escrow = make_escrow(
            statuses={
                0: MilestoneStatus.RELEASED,
                1: MilestoneStatus.RELEASED,
                2: MilestoneStatus.REFUNDED,
            }
        )

        assert await settle_escrow_if_complete(store, escrow.id) is True
        assert await settle_escrow_if_complete(store, escrow.id) is False
        completed = [e for e in store.events if e.event_type == EventType.ESCROW_COMPLETED]
        assert len(completed) == 1
