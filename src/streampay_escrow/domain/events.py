"""Canonical task-completion events and coordinator outcomes.

Platform adapters normalize their webhooks into a ``CanonicalEvent``; the
Event Coordinator consumes it once and reports an ``Outcome``. The Approval
Coordinator reports a ``VoteOutcome``. None of these are persisted directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from streampay_escrow.domain.enums import OutcomeKind, Platform, SkipReason


@dataclass(frozen=True)
class CanonicalEvent:
    """Platform-agnostic representation of a task-completion signal.

    Attributes:
        platform: Platform that emitted the event.
        external_id: Repository full name, board ID or project key.
        task_id: Issue number, card ID or issue key.
        task_title: Title of the task at the time of the event.
        task_labels: Labels attached to the task.
        task_url: Link to the task; becomes the on-chain evidence URL.
        is_done: Whether the task reached its completed state.
        raw_payload: Original webhook body, retained for the audit log.
    """

    platform: Platform
    external_id: str
    task_id: str
    task_title: str
    task_labels: tuple[str, ...] = ()
    task_url: str = ""
    is_done: bool = True
    raw_payload: Any = None

    def __post_init__(self) -> None:
        # Accept lists from adapters; keep the event hashable and immutable
        if not isinstance(self.task_labels, tuple):
            object.__setattr__(self, "task_labels", tuple(self.task_labels))
        if not isinstance(self.platform, Platform):
            object.__setattr__(self, "platform", Platform(self.platform))


@dataclass(frozen=True)
class Outcome:
    """Result of ``EventCoordinator.handle``.

    Attributes:
        kind: matched, skipped or failed.
        detail: Skip reason, or "chain-submission" for failures.
        escrow_id: Escrow the event resolved to, when known.
        milestone_index: Matched milestone, when one was selected.
        tx_hash: Attestation transaction hash on success.
        error_code: Machine code of the chain error on failure.
        retryable: Whether redelivering the same event may succeed.
    """

    kind: OutcomeKind
    detail: str = ""
    escrow_id: str | None = None
    milestone_index: int | None = None
    tx_hash: str | None = None
    error_code: str | None = None
    retryable: bool = False

    @classmethod
    def skipped(cls, reason: SkipReason, **kwargs: Any) -> Outcome:
        return cls(kind=OutcomeKind.SKIPPED, detail=reason.value, **kwargs)

    @classmethod
    def matched(cls, escrow_id: str, milestone_index: int, tx_hash: str) -> Outcome:
        return cls(
            kind=OutcomeKind.MATCHED,
            detail=f"milestone {milestone_index}",
            escrow_id=escrow_id,
            milestone_index=milestone_index,
            tx_hash=tx_hash,
        )

    @classmethod
    def failed(
        cls,
        escrow_id: str,
        milestone_index: int,
        error_code: str,
        retryable: bool,
    ) -> Outcome:
        return cls(
            kind=OutcomeKind.FAILED,
            detail="chain-submission",
            escrow_id=escrow_id,
            milestone_index=milestone_index,
            error_code=error_code,
            retryable=retryable,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "escrow_id": self.escrow_id,
            "milestone_index": self.milestone_index,
            "tx_hash": self.tx_hash,
            "error_code": self.error_code,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class VoteOutcome:
    """Result of ``ApprovalCoordinator.record_vote``.

    ``threshold_met`` is True only for the call that performed the
    pending_release -> released transition.
    """

    recorded: bool
    approvals: int
    threshold: int
    threshold_met: bool
    milestone_status: str
    already_released: bool = False
    blocked_by_dispute: bool = False
    disputes: int = 0

    @property
    def message(self) -> str:
        if self.threshold_met:
            return "Threshold met, payment releasing"
        if self.already_released:
            return "Milestone already released"
        if self.blocked_by_dispute:
            return f"Release blocked by {self.disputes} open dispute(s)"
        return f"{self.approvals}/{self.threshold} approvals"
