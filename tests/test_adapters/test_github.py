"""Tests for the GitHub webhook adapter."""

from __future__ import annotations

import pytest

from streampay_escrow.adapters.github import GitHubPayloadError, normalize_github_event
from streampay_escrow.domain.enums import Platform

REPOSITORY = {"full_name": "acme/payments-api"}


def _issue_payload(action: str = "closed") -> dict:
    return {
        "action": action,
        "issue": {
            "number": 42,
            "title": "feat/backend: auth layer",
            "html_url": "https://github.com/acme/payments-api/issues/42",
            "labels": [{"name": "backend"}, {"name": "p1"}],
        },
        "repository": REPOSITORY,
    }


def _pr_payload(merged: bool) -> dict:
    return {
        "action": "closed",
        "pull_request": {
            "number": 7,
            "title": "docs: API reference",
            "html_url": "https://github.com/acme/payments-api/pull/7",
            "merged": merged,
            "labels": [],
        },
        "repository": REPOSITORY,
    }


class TestIssues:
    def test_closed_issue_is_done_task(self) -> None:
        payload = _issue_payload()
        event = normalize_github_event("issues", payload)

        assert event is not None
        assert event.platform == Platform.GITHUB
        assert event.external_id == "acme/payments-api"
        assert event.task_id == "42"
        assert event.task_labels == ("backend", "p1")
        assert event.task_url.endswith("/issues/42")
        assert event.is_done is True
        assert event.raw_payload is payload

    @pytest.mark.parametrize("action", ["opened", "edited", "reopened", "labeled"])
    def test_other_issue_actions_ignored(self, action: str) -> None:
        assert normalize_github_event("issues", _issue_payload(action)) is None

    def test_missing_labels_and_title(self) -> None:
        payload = _issue_payload()
        del payload["issue"]["labels"]
        payload["issue"]["title"] = None

        event = normalize_github_event("issues", payload)

        assert event.task_labels == ()
        assert event.task_title == ""


class TestPullRequests:
    def test_merged_pull_request(self) -> None:
        event = normalize_github_event("pull_request", _pr_payload(merged=True))
        assert event is not None
        assert event.task_id == "7"

    def test_closed_without_merge_ignored(self) -> None:
        assert normalize_github_event("pull_request", _pr_payload(merged=False)) is None


class TestIrrelevantAndMalformed:
    def test_ping_ignored(self) -> None:
        assert normalize_github_event("ping", {"zen": "Keep it logically awesome."}) is None

    def test_missing_repository_raises(self) -> None:
        payload = _issue_payload()
        del payload["repository"]
        with pytest.raises(GitHubPayloadError):
            normalize_github_event("issues", payload)

    def test_missing_issue_raises(self) -> None:
        with pytest.raises(GitHubPayloadError):
            normalize_github_event("issues", {"action": "closed", "repository": REPOSITORY})
