"""Event Coordinator — turns one task-completion event into at most one attestation.

Pipeline for ``handle(event)``:

    is_done? ──no──▶ skipped: not-done
       │
    connection for (platform, external_id)
       │  none ─▶ skipped: no-connection      many ─▶ AmbiguousConnectionError
    escrow active? ──no──▶ skipped: escrow-inactive
       │
    task already attributed to a settled milestone? ──yes──▶ skipped: already-matched
       │
    match_milestone(pending) ──none──▶ skipped: no-match
       │
    claim lease (conditional update) ──lost──▶ skipped: already-matched
       │
    submit mark_complete on-chain
       │  ok   ─▶ pending -> pending_release (guarded by the lease) ─▶ matched
       │         lease lost ─▶ same update guarded by status only ─▶ matched
       │  fail ─▶ release lease, status stays pending ─▶ failed: chain-submission

The lease makes the chain submission happen at most once per milestone even
when the platform redelivers an event or several workers receive the same
one. A lease older than the claim TTL is treated as abandoned (crashed
worker) and may be taken over. A worker whose broadcast succeeded after its
lease expired still records the transaction: the hash proves the contract
state, so the ledger follows it unless another worker already did.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import EventType, MilestoneStatus, SkipReason
from streampay_escrow.domain.events import Outcome
from streampay_escrow.domain.exceptions import (
    AmbiguousConnectionError,
    ChainError,
    SigningError,
    SimulationError,
)
from streampay_escrow.domain.models import AuditEvent
from streampay_escrow.domain.state_machine import validate_transition
from streampay_escrow.logging_config import get_logger
from streampay_escrow.matching import MatcherFactory, match_milestone

if TYPE_CHECKING:
    from streampay_escrow.chain.submitter import AttestationSubmitter
    from streampay_escrow.domain.events import CanonicalEvent
    from streampay_escrow.domain.models import Escrow, Milestone
    from streampay_escrow.domain.store_protocol import EscrowStore

logger = get_logger(__name__)


class EventCoordinator:
    """Matches canonical events to milestones and attests them on-chain."""

    def __init__(
        self,
        store: EscrowStore,
        submitter: AttestationSubmitter,
        matcher_factory: MatcherFactory | None = None,
        claim_ttl_seconds: int = 300,
    ) -> None:
        self._store = store
        self._submitter = submitter
        self._matchers = matcher_factory or MatcherFactory()
        self._claim_ttl = timedelta(seconds=claim_ttl_seconds)

    async def handle(self, event: CanonicalEvent) -> Outcome:
        """Process one canonical event.

        Returns:
            An Outcome: matched, skipped (with the reason) or failed.

        Raises:
            AmbiguousConnectionError: More than one escrow claims the
                event's platform identity.
        """
        log = logger.bind(
            platform=event.platform.value,
            external_id=event.external_id,
            task_id=event.task_id,
        )

        if not event.is_done:
            log.debug("event.skipped", reason=SkipReason.NOT_DONE.value)
            return Outcome.skipped(SkipReason.NOT_DONE)

        connections = await self._store.find_connections(event.platform, event.external_id)
        if not connections:
            log.info("event.skipped", reason=SkipReason.NO_CONNECTION.value)
            return Outcome.skipped(SkipReason.NO_CONNECTION)
        if len(connections) > 1:
            escrow_ids = sorted(c.escrow_id for c in connections)
            log.error("event.ambiguous_connection", escrow_ids=escrow_ids)
            raise AmbiguousConnectionError(event.platform.value, event.external_id, escrow_ids)

        escrow_id = connections[0].escrow_id
        log = log.bind(escrow_id=escrow_id)
        escrow = await self._store.get_escrow(escrow_id)
        if escrow is None or not escrow.is_active:
            log.info("event.skipped", reason=SkipReason.ESCROW_INACTIVE.value)
            return Outcome.skipped(SkipReason.ESCROW_INACTIVE, escrow_id=escrow_id)

        milestones = await self._store.list_milestones(escrow_id)
        attributed = self._already_attributed(event, milestones)
        if attributed is not None:
            log.info(
                "event.skipped",
                reason=SkipReason.ALREADY_MATCHED.value,
                milestone_index=attributed.index,
            )
            return Outcome.skipped(
                SkipReason.ALREADY_MATCHED,
                escrow_id=escrow_id,
                milestone_index=attributed.index,
            )

        pending = [m for m in milestones if m.status == MilestoneStatus.PENDING]
        milestone = match_milestone(event, pending, self._matchers)
        if milestone is None:
            log.info("event.skipped", reason=SkipReason.NO_MATCH.value, pending=len(pending))
            return Outcome.skipped(SkipReason.NO_MATCH, escrow_id=escrow_id)

        return await self._attest(event, escrow, milestone)

    async def _attest(self, event: CanonicalEvent, escrow: Escrow, milestone: Milestone) -> Outcome:
        log = logger.bind(
            escrow_id=escrow.id,
            milestone_index=milestone.index,
            task_id=event.task_id,
        )
        validate_transition(milestone.status.value, "task_matched")

        claim_token = str(uuid.uuid4())
        now = datetime.now(UTC)
        if not await self._store.claim_milestone(
            escrow.id, milestone.index, claim_token, now, now - self._claim_ttl
        ):
            log.info("event.skipped", reason=SkipReason.ALREADY_MATCHED.value, stage="claim")
            return Outcome.skipped(
                SkipReason.ALREADY_MATCHED,
                escrow_id=escrow.id,
                milestone_index=milestone.index,
            )

        log.info("event.claimed", keyword=milestone.trigger_keyword)
        try:
            tx_hash = await self._submitter.submit(
                escrow.contract_id, milestone.index, event.task_url
            )
        except (ChainError, SigningError, SimulationError) as exc:
            return await self._fail(event, escrow, milestone, claim_token, exc)

        completed_at = datetime.now(UTC)
        completed = await self._store.complete_attestation(
            escrow.id,
            milestone.index,
            claim_token,
            task_url=event.task_url,
            tx_hash=tx_hash,
            completed_at=completed_at,
        )
        reconciled = False
        if not completed:
            log.warning("event.lease_lost", tx_hash=tx_hash)
            reconciled = await self._store.complete_attestation(
                escrow.id,
                milestone.index,
                None,
                task_url=event.task_url,
                tx_hash=tx_hash,
                completed_at=completed_at,
            )
        if not (completed or reconciled):
            log.info("event.skipped", reason=SkipReason.ALREADY_MATCHED.value, stage="complete")
            return Outcome.skipped(
                SkipReason.ALREADY_MATCHED,
                escrow_id=escrow.id,
                milestone_index=milestone.index,
                tx_hash=tx_hash,
            )

        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow.id,
                milestone_index=milestone.index,
                event_type=EventType.MILESTONE_MATCHED,
                old_status=MilestoneStatus.PENDING.value,
                new_status=MilestoneStatus.PENDING_RELEASE.value,
                metadata={
                    "platform": event.platform.value,
                    "task_id": event.task_id,
                    "task_title": event.task_title,
                    "task_url": event.task_url,
                    "tx_hash": tx_hash,
                    "raw_payload": event.raw_payload,
                    "reconciled": reconciled,
                },
            )
        )
        log.info("event.matched", tx_hash=tx_hash, reconciled=reconciled)
        return Outcome.matched(escrow.id, milestone.index, tx_hash)

    async def _fail(
        self,
        event: CanonicalEvent,
        escrow: Escrow,
        milestone: Milestone,
        claim_token: str,
        exc: ChainError | SigningError | SimulationError,
    ) -> Outcome:
        retryable = isinstance(exc, ChainError)
        await self._store.release_claim(escrow.id, milestone.index, claim_token)

        current = await self._store.get_milestone(escrow.id, milestone.index)
        if current is not None and current.status != MilestoneStatus.PENDING:
            # Another worker recorded the attestation while this one was submitting
            logger.info(
                "event.skipped",
                escrow_id=escrow.id,
                milestone_index=milestone.index,
                reason=SkipReason.ALREADY_MATCHED.value,
                stage="submit",
                error_code=exc.code,
            )
            return Outcome.skipped(
                SkipReason.ALREADY_MATCHED,
                escrow_id=escrow.id,
                milestone_index=milestone.index,
            )

        await self._store.record_event(
            AuditEvent(
                escrow_id=escrow.id,
                milestone_index=milestone.index,
                event_type=EventType.ATTESTATION_FAILED,
                old_status=MilestoneStatus.PENDING.value,
                new_status=MilestoneStatus.PENDING.value,
                metadata={
                    "task_id": event.task_id,
                    "task_url": event.task_url,
                    "error_code": exc.code,
                    "error": exc.message,
                    "retryable": retryable,
                },
            )
        )
        logger.warning(
            "event.attestation_failed",
            escrow_id=escrow.id,
            milestone_index=milestone.index,
            error_code=exc.code,
            error=exc.message,
            retryable=retryable,
        )
        return Outcome.failed(escrow.id, milestone.index, exc.code, retryable)

    @staticmethod
    def _already_attributed(event: CanonicalEvent, milestones: list[Milestone]) -> Milestone | None:
        if not event.task_url:
            return None
        for milestone in milestones:
            if milestone.status != MilestoneStatus.PENDING and milestone.task_url == event.task_url:
                return milestone
        return None
