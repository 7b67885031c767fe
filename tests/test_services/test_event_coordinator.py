"""Tests for the EventCoordinator pipeline.

Covers every skip reason, the matched path, failure handling, redelivery
and concurrent delivery of the same event.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from streampay_escrow.chain import AttestationSubmitter, SimulatedGateway, SimulatedSigner
from streampay_escrow.domain.enums import (
    EscrowStatus,
    EventType,
    MilestoneStatus,
    OutcomeKind,
    Platform,
)
from streampay_escrow.domain.exceptions import AmbiguousConnectionError, SimulationError
from streampay_escrow.domain.models import PlatformConnection
from streampay_escrow.services.event_coordinator import EventCoordinator

CONTRACT_ID = "C" + "A" * 55


@pytest.fixture
def coordinator(store, submitter) -> EventCoordinator:
    return EventCoordinator(store, submitter)


class TestSkips:
    @pytest.mark.asyncio
    async def test_not_done(self, coordinator, escrow, event_factory) -> None:
        outcome = await coordinator.handle(event_factory(is_done=False))
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.detail == "not-done"

    @pytest.mark.asyncio
    async def test_no_connection(self, coordinator, escrow, event_factory) -> None:
        outcome = await coordinator.handle(event_factory(repo="someone/else"))
        assert outcome.detail == "no-connection"
        assert outcome.escrow_id is None

    @pytest.mark.asyncio
    async def test_inactive_escrow(self, coordinator, make_escrow, event_factory, gateway) -> None:
        escrow = make_escrow(status=EscrowStatus.CANCELLED)
        outcome = await coordinator.handle(event_factory())
        assert outcome.detail == "escrow-inactive"
        assert outcome.escrow_id == escrow.id
        assert gateway.broadcasts == []

    @pytest.mark.asyncio
    async def test_no_match(self, coordinator, escrow, event_factory, gateway) -> None:
        outcome = await coordinator.handle(event_factory(title="chore: bump deps", labels=()))
        assert outcome.detail == "no-match"
        assert gateway.broadcasts == []

    @pytest.mark.asyncio
    async def test_all_milestones_settled_is_no_match(
        self, coordinator, make_escrow, event_factory
    ) -> None:
        make_escrow(statuses={i: MilestoneStatus.RELEASED for i in range(3)})
        outcome = await coordinator.handle(event_factory())
        assert outcome.detail == "no-match"

    @pytest.mark.asyncio
    async def test_ambiguous_connection_raises(
        self, coordinator, store, escrow, event_factory
    ) -> None:
        store.add_connection(
            PlatformConnection(
                escrow_id="other-escrow",
                platform=Platform.GITHUB,
                external_id=escrow.repo_or_board,
            )
        )
        with pytest.raises(AmbiguousConnectionError) as exc_info:
            await coordinator.handle(event_factory())
        assert escrow.id in exc_info.value.escrow_ids


class TestMatched:
    @pytest.mark.asyncio
    async def test_backend_milestone_attested(
        self, coordinator, store, escrow, event_factory, gateway
    ) -> None:
        event = event_factory()

        outcome = await coordinator.handle(event)

        assert outcome.kind == OutcomeKind.MATCHED
        assert outcome.milestone_index == 1
        assert outcome.tx_hash
        milestone = await store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING_RELEASE
        assert milestone.task_url == event.task_url
        assert milestone.attestation_tx_hash == outcome.tx_hash
        assert milestone.completed_at is not None
        assert milestone.claim_token is None
        assert gateway.completed == {(CONTRACT_ID, 1): event.task_url}

    @pytest.mark.asyncio
    async def test_match_writes_audit_event(
        self, coordinator, store, escrow, event_factory
    ) -> None:
        event = replace(event_factory(), raw_payload={"action": "closed"})
        await coordinator.handle(event)

        events = await store.list_events(escrow.id)
        assert [e.event_type for e in events] == [EventType.MILESTONE_MATCHED]
        assert events[0].old_status == "pending"
        assert events[0].new_status == "pending_release"
        assert events[0].metadata["raw_payload"] == {"action": "closed"}

    @pytest.mark.asyncio
    async def test_other_milestones_untouched(
        self, coordinator, store, escrow, event_factory
    ) -> None:
        await coordinator.handle(event_factory())
        statuses = [m.status for m in await store.list_milestones(escrow.id)]
        assert statuses == [
            MilestoneStatus.PENDING,
            MilestoneStatus.PENDING_RELEASE,
            MilestoneStatus.PENDING,
        ]


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_same_event_twice_attests_once(
        self, coordinator, escrow, event_factory, gateway
    ) -> None:
        first = await coordinator.handle(event_factory())
        second = await coordinator.handle(event_factory())

        assert first.kind == OutcomeKind.MATCHED
        assert second.kind == OutcomeKind.SKIPPED
        assert second.detail == "already-matched"
        assert second.milestone_index == 1
        assert len(gateway.broadcasts) == 1

    @pytest.mark.asyncio
    async def test_concurrent_delivery_single_submission(
        self, store, escrow, event_factory
    ) -> None:
        gateway = SimulatedGateway(latency_seconds=0.01)
        submitter = AttestationSubmitter(gateway, SimulatedSigner(), retry_wait_seconds=0)
        coordinator = EventCoordinator(store, submitter)

        outcomes = await asyncio.gather(*(coordinator.handle(event_factory()) for _ in range(5)))

        kinds = sorted(o.kind.value for o in outcomes)
        assert kinds == ["matched"] + ["skipped"] * 4
        assert all(o.detail == "already-matched" for o in outcomes if o.kind == "skipped")
        assert len(gateway.broadcasts) == 1
        milestone = await store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING_RELEASE


class TestLease:
    @pytest.mark.asyncio
    async def test_fresh_lease_blocks_second_worker(
        self, coordinator, store, escrow, event_factory, gateway
    ) -> None:
        key = (escrow.id, 1)
        store.milestones[key] = replace(
            store.milestones[key], claim_token="other-worker", claimed_at=datetime.now(UTC)
        )

        outcome = await coordinator.handle(event_factory())

        assert outcome.detail == "already-matched"
        assert gateway.broadcasts == []

    @pytest.mark.asyncio
    async def test_stale_lease_is_taken_over(self, store, submitter, escrow, event_factory) -> None:
        coordinator = EventCoordinator(store, submitter, claim_ttl_seconds=60)
        key = (escrow.id, 1)
        store.milestones[key] = replace(
            store.milestones[key],
            claim_token="crashed-worker",
            claimed_at=datetime.now(UTC) - timedelta(minutes=5),
        )

        outcome = await coordinator.handle(event_factory())

        assert outcome.kind == OutcomeKind.MATCHED

    @pytest.mark.asyncio
    async def test_lease_lost_after_broadcast_still_records_attestation(
        self, store, escrow, event_factory
    ) -> None:
        class _TakeoverSubmitter:
            async def submit(self, contract_id: str, milestone_index: int, url: str) -> str:
                key = (escrow.id, milestone_index)
                store.milestones[key] = replace(store.milestones[key], claim_token="usurper")
                return "f" * 64

        coordinator = EventCoordinator(store, _TakeoverSubmitter())
        event = event_factory()

        outcome = await coordinator.handle(event)
        redelivered = await coordinator.handle(event)

        assert outcome.kind == OutcomeKind.MATCHED
        assert outcome.tx_hash == "f" * 64
        milestone = await store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING_RELEASE
        assert milestone.attestation_tx_hash == "f" * 64
        assert milestone.task_url == event.task_url
        assert milestone.claim_token is None
        assert redelivered.detail == "already-matched"
        events = await store.list_events(escrow.id)
        assert events[-1].metadata["reconciled"] is True

    @pytest.mark.asyncio
    async def test_expired_lease_with_real_chain_is_not_stuck(
        self, store, escrow, event_factory
    ) -> None:
        gateway = SimulatedGateway()
        submitter = AttestationSubmitter(gateway, SimulatedSigner(), retry_wait_seconds=0)
        real_submit = submitter.submit

        async def submit_then_lose_lease(contract_id: str, index: int, url: str) -> str:
            tx_hash = await real_submit(contract_id, index, url)
            key = (escrow.id, index)
            store.milestones[key] = replace(
                store.milestones[key], claim_token=None, claimed_at=None
            )
            return tx_hash

        submitter.submit = submit_then_lose_lease
        coordinator = EventCoordinator(store, submitter)

        outcomes = [await coordinator.handle(event_factory()) for _ in range(3)]

        assert outcomes[0].kind == OutcomeKind.MATCHED
        assert [o.detail for o in outcomes[1:]] == ["already-matched", "already-matched"]
        assert (await store.get_milestone(escrow.id, 1)).status == MilestoneStatus.PENDING_RELEASE
        assert len(gateway.broadcasts) == 1

    @pytest.mark.asyncio
    async def test_lease_lost_and_already_completed_elsewhere(
        self, store, escrow, event_factory
    ) -> None:
        class _OvertakenSubmitter:
            async def submit(self, contract_id: str, milestone_index: int, url: str) -> str:
                key = (escrow.id, milestone_index)
                store.milestones[key] = replace(
                    store.milestones[key],
                    status=MilestoneStatus.PENDING_RELEASE,
                    attestation_tx_hash="a" * 64,
                    claim_token=None,
                )
                return "f" * 64

        coordinator = EventCoordinator(store, _OvertakenSubmitter())

        outcome = await coordinator.handle(event_factory())

        assert outcome.detail == "already-matched"
        assert outcome.tx_hash == "f" * 64
        assert (await store.get_milestone(escrow.id, 1)).attestation_tx_hash == "a" * 64

    @pytest.mark.asyncio
    async def test_rejection_after_other_worker_completed_is_a_skip(
        self, store, escrow, event_factory
    ) -> None:
        class _LateSubmitter:
            async def submit(self, contract_id: str, milestone_index: int, url: str) -> str:
                key = (escrow.id, milestone_index)
                store.milestones[key] = replace(
                    store.milestones[key],
                    status=MilestoneStatus.PENDING_RELEASE,
                    claim_token=None,
                )
                raise SimulationError("already completed", "MilestoneAlreadyCompleted")

        coordinator = EventCoordinator(store, _LateSubmitter())

        outcome = await coordinator.handle(event_factory())

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.detail == "already-matched"
        assert await store.list_events(escrow.id) == []

class TestFailures:
    @pytest.mark.asyncio
    async def test_chain_error_leaves_milestone_pending(
        self, coordinator, store, escrow, event_factory, gateway
    ) -> None:
        gateway.fail_next["broadcast"] = 1

        outcome = await coordinator.handle(event_factory())

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.detail == "chain-submission"
        assert outcome.error_code == "CHAIN_ERROR"
        assert outcome.retryable is True
        milestone = await store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING
        assert milestone.claim_token is None
        events = await store.list_events(escrow.id)
        assert [e.event_type for e in events] == [EventType.ATTESTATION_FAILED]

    @pytest.mark.asyncio
    async def test_redelivery_after_failure_succeeds(
        self, coordinator, escrow, event_factory, gateway
    ) -> None:
        gateway.fail_next["broadcast"] = 1
        await coordinator.handle(event_factory())

        outcome = await coordinator.handle(event_factory())

        assert outcome.kind == OutcomeKind.MATCHED
        assert outcome.milestone_index == 1

    @pytest.mark.asyncio
    async def test_simulation_rejection_not_retryable(
        self, coordinator, store, escrow, event_factory, gateway
    ) -> None:
        gateway.completed[(CONTRACT_ID, 1)] = "https://example.com/earlier"

        outcome = await coordinator.handle(event_factory())

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_code == "SIMULATION_REJECTED"
        assert outcome.retryable is False
        milestone = await store.get_milestone(escrow.id, 1)
        assert milestone.status == MilestoneStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_signing_key_not_retryable(self, store, escrow, event_factory) -> None:
        submitter = AttestationSubmitter(SimulatedGateway(), SimulatedSigner(available=False))
        coordinator = EventCoordinator(store, submitter)

        outcome = await coordinator.handle(event_factory())

        assert outcome.error_code == "SIGNING_UNAVAILABLE"
        assert outcome.retryable is False
