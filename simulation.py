#!/usr/bin/env python3
"""StreamPay Escrow Coordinator — End-to-End Simulation.

Runs the coordinator against the simulated Soroban contract with a client
organization (two finance approvers, threshold 2) and a developer shipping
work on GitHub.

    Scenario 1: Happy Path
        - Client registers an escrow: design (30%), backend (40%), docs (30%)
        - Issue "feat/backend: auth layer" [backend] closes -> milestone 1 attested
        - GitHub redelivers the same event -> skipped: already-matched
        - Two finance approvals -> milestone 1 released

    Scenario 2: Webhook Storm
        - The same close event arrives on five workers at once
        - Exactly one attestation reaches the chain

    Scenario 3: Dispute and Arbitration (freeze policy)
        - Milestone attested, one approval, then a dispute -> disputed
        - Arbitrator refunds it; remaining milestones released -> escrow completed

Usage:
    # In-memory store (instant, no database):
    python simulation.py

    # SQLite through the SQL store:
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from streampay_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from streampay_escrow.chain import (  # noqa: E402
    AttestationSubmitter,
    SimulatedGateway,
    SimulatedSigner,
)
from streampay_escrow.domain.enums import (  # noqa: E402
    ApprovalAction,
    MemberRole,
    Platform,
    Resolution,
)
from streampay_escrow.domain.events import CanonicalEvent  # noqa: E402
from streampay_escrow.domain.models import Member, Organization  # noqa: E402
from streampay_escrow.services import (  # noqa: E402
    ApprovalCoordinator,
    ArbitrationService,
    EscrowService,
    EventCoordinator,
    MilestonePlan,
    get_dispute_policy,
)

CONTRACT_ID = "C" + "A" * 55
TOKEN_ID = "C" + "T" * 55
CLIENT_ADDRESS = "G" + "C" * 55
DEVELOPER_ADDRESS = "G" + "D" * 55


# ---------------------------------------------------------------------------
# Store lifecycle helpers
# ---------------------------------------------------------------------------
@dataclass
class World:
    """Store, chain and services shared by one scenario."""

    store: Any
    gateway: SimulatedGateway
    escrows: EscrowService
    events: EventCoordinator
    approvals: ApprovalCoordinator
    arbitration: ArbitrationService
    org: Organization
    approvers: list[Member] = field(default_factory=list)
    engine: Any = None


async def _sql_store() -> tuple[Any, Any]:
    from streampay_escrow.infrastructure.database import (
        SqlEscrowStore,
        build_engine,
        build_session_factory,
        create_tables,
    )

    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    logger.info("database.sqlite_initialized")
    return SqlEscrowStore(build_session_factory(engine)), engine


async def _seed_org(store: Any, engine: Any) -> tuple[Organization, list[Member]]:
    org = Organization(
        id=str(uuid.uuid4()),
        name="Acme Payments",
        slug=f"acme-{uuid.uuid4().hex[:6]}",
        approval_threshold=2,
    )
    members = [
        Member(id=str(uuid.uuid4()), org_id=org.id, user_id=user, role=MemberRole.FINANCE)
        for user in ("alice", "bob")
    ]

    if engine is None:
        store.add_organization(org)
        for member in members:
            store.add_member(member)
        return org, members

    from streampay_escrow.infrastructure.database import OrgMember
    from streampay_escrow.infrastructure.database import Organization as OrganizationRow
    from streampay_escrow.infrastructure.database.engine import build_session_factory

    async with build_session_factory(engine)() as session, session.begin():
        session.add(
            OrganizationRow(
                id=org.id,
                name=org.name,
                slug=org.slug,
                approval_threshold=org.approval_threshold,
            )
        )
        await session.flush()
        session.add_all(
            OrgMember(id=m.id, org_id=m.org_id, user_id=m.user_id, role=m.role.value)
            for m in members
        )
    return org, members


async def build_world(use_sqlite: bool, dispute_policy: str = "block_quorum") -> World:
    if use_sqlite:
        store, engine = await _sql_store()
    else:
        from streampay_escrow.infrastructure.memory_store import InMemoryEscrowStore

        store, engine = InMemoryEscrowStore(), None

    gateway = SimulatedGateway(latency_seconds=0.01)
    submitter = AttestationSubmitter(gateway, SimulatedSigner(), timeout_seconds=5)
    org, approvers = await _seed_org(store, engine)

    return World(
        store=store,
        gateway=gateway,
        escrows=EscrowService(store),
        events=EventCoordinator(store, submitter),
        approvals=ApprovalCoordinator(store, dispute_policy=get_dispute_policy(dispute_policy)),
        arbitration=ArbitrationService(store),
        org=org,
        approvers=approvers,
        engine=engine,
    )


async def shutdown_world(world: World) -> None:
    if world.engine is not None:
        await world.engine.dispose()


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------
async def register_escrow(world: World, repo: str) -> str:
    escrow = await world.escrows.create_escrow(
        contract_id=CONTRACT_ID,
        token_id=TOKEN_ID,
        client_address=CLIENT_ADDRESS,
        developer_address=DEVELOPER_ADDRESS,
        total_amount=1_000_000_000,
        platform=Platform.GITHUB,
        repo_or_board=repo,
        client_org_id=world.org.id,
        milestones=[
            MilestonePlan(0, "Design", "design", 3000),
            MilestonePlan(1, "Backend", "backend", 4000),
            MilestonePlan(2, "Docs", "docs", 3000),
        ],
    )
    logger.info("🔵 CLIENT: Escrow registered", escrow_id=escrow.id, repo=repo)
    return escrow.id


def issue_closed(repo: str, number: int, title: str, labels: list[str]) -> CanonicalEvent:
    return CanonicalEvent(
        platform=Platform.GITHUB,
        external_id=repo,
        task_id=str(number),
        task_title=title,
        task_labels=tuple(labels),
        task_url=f"https://github.com/{repo}/issues/{number}",
    )


async def deliver(world: World, event: CanonicalEvent) -> None:
    outcome = await world.events.handle(event)
    logger.info(
        "🟢 GITHUB: Event handled",
        task=event.task_title,
        outcome=outcome.kind.value,
        detail=outcome.detail,
        tx=(outcome.tx_hash or "")[:16],
    )


async def vote(
    world: World, escrow_id: str, index: int, member: Member, action: ApprovalAction
) -> None:
    outcome = await world.approvals.record_vote(escrow_id, index, member.id, action)
    logger.info(
        "🟣 APPROVER: Vote recorded",
        user=member.user_id,
        action=action.value,
        milestone=index,
        result=outcome.message,
    )


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def section(title: str) -> None:
    print(f"\n{'=' * 70}\n  {title}\n{'=' * 70}")


async def print_state(world: World, escrow_id: str) -> None:
    escrow, milestones = await world.escrows.get_escrow(escrow_id)
    print(f"\n  Escrow {escrow.id[:8]}...: {escrow.status.value}")
    for m in milestones:
        print(f"    [{m.index}] {m.title:<8} {m.bps:>5} bps  {m.status.value}")


async def print_audit_trail(world: World, escrow_id: str) -> None:
    events = await world.escrows.list_events(escrow_id)
    print(f"\n  📜 Audit Trail ({len(events)} events):")
    for e in events:
        index = "-" if e.milestone_index is None else e.milestone_index
        print(f"    {e.event_type:<26} [{index}] {e.old_status or '∅':>15} -> {e.new_status}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path(use_sqlite: bool) -> None:
    section("SCENARIO 1: Happy Path")
    world = await build_world(use_sqlite)
    try:
        repo = "acme/payments-api"
        escrow_id = await register_escrow(world, repo)

        event = issue_closed(repo, 42, "feat/backend: auth layer", ["backend"])
        await deliver(world, event)
        await deliver(world, event)

        alice, bob = world.approvers
        await vote(world, escrow_id, 1, alice, ApprovalAction.APPROVE)
        await vote(world, escrow_id, 1, bob, ApprovalAction.APPROVE)

        await print_state(world, escrow_id)
        print(f"  ⛓️  Chain submissions: {len(world.gateway.broadcasts)}")
        await print_audit_trail(world, escrow_id)
    finally:
        await shutdown_world(world)


async def scenario_2_webhook_storm(use_sqlite: bool) -> None:
    section("SCENARIO 2: Webhook Storm")
    world = await build_world(use_sqlite)
    try:
        repo = "acme/storefront"
        escrow_id = await register_escrow(world, repo)

        event = issue_closed(repo, 7, "Design system v1", ["design"])
        outcomes = await asyncio.gather(*(world.events.handle(event) for _ in range(5)))
        for i, outcome in enumerate(outcomes):
            print(f"    worker {i}: {outcome.kind.value:<8} {outcome.detail}")

        await print_state(world, escrow_id)
        print(f"  ⛓️  Chain submissions: {len(world.gateway.broadcasts)}")
    finally:
        await shutdown_world(world)


async def scenario_3_dispute(use_sqlite: bool) -> None:
    section("SCENARIO 3: Dispute and Arbitration")
    world = await build_world(use_sqlite, dispute_policy="freeze")
    try:
        repo = "acme/mobile-app"
        escrow_id = await register_escrow(world, repo)
        alice, bob = world.approvers

        await deliver(world, issue_closed(repo, 1, "Design handoff", ["design"]))
        await deliver(world, issue_closed(repo, 2, "Backend sync service", ["backend"]))
        await deliver(world, issue_closed(repo, 3, "Docs: API reference", ["docs"]))

        await vote(world, escrow_id, 1, alice, ApprovalAction.APPROVE)
        await vote(world, escrow_id, 1, bob, ApprovalAction.DISPUTE)

        milestone = await world.arbitration.resolve(
            escrow_id, 1, Resolution.REFUND, actor="arbitrator-1", reason="Missing tests"
        )
        logger.info(
            "⚖️  ARBITRATOR: Verdict applied", milestone=1, status=milestone.status.value
        )

        for index in (0, 2):
            await vote(world, escrow_id, index, alice, ApprovalAction.APPROVE)
            await vote(world, escrow_id, index, bob, ApprovalAction.APPROVE)

        await print_state(world, escrow_id)
        await print_audit_trail(world, escrow_id)
    finally:
        await shutdown_world(world)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_webhook_storm,
    3: scenario_3_dispute,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    print("\n" + "🚀" * 35)
    print("  STREAMPAY ESCROW COORDINATOR — SIMULATION")
    print(f"  Store: {'SQLite (in-memory)' if use_sqlite else 'in-process'}")
    print("  Chain: simulated Soroban contract")
    print("🚀" * 35 + "\n")

    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
        return

    for num, fn in SCENARIOS.items():
        if scenario in (0, num):
            await fn(use_sqlite)

    print("\n" + "=" * 70)
    print("  ✅ SIMULATION COMPLETED")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="StreamPay Escrow Coordinator Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use the SQL store on SQLite in-memory instead of the in-process store.",
    )
    args = parser.parse_args()
    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
