"""Tests for canonical events, outcomes and domain records."""

from __future__ import annotations

import dataclasses

import pytest

from streampay_escrow.domain.enums import MemberRole, OutcomeKind, Platform, SkipReason
from streampay_escrow.domain.events import CanonicalEvent, Outcome, VoteOutcome
from streampay_escrow.domain.models import Member, Milestone


class TestCanonicalEvent:
    def test_labels_list_becomes_tuple(self) -> None:
        event = CanonicalEvent(
            platform=Platform.GITHUB,
            external_id="acme/api",
            task_id="1",
            task_title="x",
            task_labels=["backend", "p1"],
        )
        assert event.task_labels == ("backend", "p1")
        hash(event)

    def test_platform_string_is_coerced(self) -> None:
        event = CanonicalEvent(platform="jira", external_id="PAY", task_id="PAY-1", task_title="x")
        assert event.platform is Platform.JIRA

    def test_is_frozen(self) -> None:
        event = CanonicalEvent(
            platform=Platform.TRELLO, external_id="b", task_id="c", task_title="t"
        )
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.task_title = "changed"  # type: ignore[misc]

    def test_unknown_platform_rejected(self) -> None:
        with pytest.raises(ValueError):
            CanonicalEvent(platform="gitlab", external_id="a", task_id="1", task_title="t")


class TestOutcome:
    def test_skipped_carries_reason(self) -> None:
        outcome = Outcome.skipped(SkipReason.NO_MATCH, escrow_id="e1")
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.detail == "no-match"
        assert outcome.escrow_id == "e1"

    def test_failed_is_chain_submission(self) -> None:
        outcome = Outcome.failed("e1", 2, "CHAIN_TIMEOUT", retryable=True)
        assert outcome.detail == "chain-submission"
        assert outcome.to_dict() == {
            "kind": "failed",
            "detail": "chain-submission",
            "escrow_id": "e1",
            "milestone_index": 2,
            "tx_hash": None,
            "error_code": "CHAIN_TIMEOUT",
            "retryable": True,
        }


class TestVoteOutcomeMessage:
    def test_threshold_met(self) -> None:
        outcome = VoteOutcome(True, 2, 2, True, "released")
        assert outcome.message == "Threshold met, payment releasing"

    def test_progress(self) -> None:
        assert VoteOutcome(True, 1, 3, False, "pending_release").message == "1/3 approvals"

    def test_blocked(self) -> None:
        outcome = VoteOutcome(
            True, 2, 2, False, "pending_release", blocked_by_dispute=True, disputes=1
        )
        assert "blocked" in outcome.message


class TestModels:
    def test_payout_uses_basis_points(self) -> None:
        milestone = Milestone(
            escrow_id="e", index=1, title="Backend", trigger_keyword="backend", bps=4000
        )
        assert milestone.payout(1_000_000) == 400_000

    @pytest.mark.parametrize(
        ("role", "can_vote"),
        [(MemberRole.ADMIN, True), (MemberRole.FINANCE, True), (MemberRole.CONTRIBUTOR, False)],
    )
    def test_member_voting_roles(self, role: MemberRole, can_vote: bool) -> None:
        assert Member(id="m", org_id="o", user_id="u", role=role).can_vote is can_vote
