"""GitHub webhook adapter.

Normalizes GitHub deliveries into canonical events:
    - ``issues`` with action ``closed``               -> done task
    - ``pull_request`` with action ``closed`` + merged -> done task

Every other delivery (pings, opened issues, closed-unmerged PRs, ...) has no
canonical counterpart and yields None.
"""

from __future__ import annotations

from typing import Any

from streampay_escrow.domain.enums import Platform
from streampay_escrow.domain.events import CanonicalEvent
from streampay_escrow.logging_config import get_logger

logger = get_logger(__name__)


class GitHubPayloadError(ValueError):
    """Raised when a relevant delivery is missing fields the adapter needs."""


def _labels(item: dict[str, Any]) -> list[str]:
    return [label["name"] for label in item.get("labels") or [] if label.get("name")]


def normalize_github_event(event_name: str, payload: dict[str, Any]) -> CanonicalEvent | None:
    """Convert one GitHub webhook delivery into a canonical event.

    Args:
        event_name: Value of the ``X-GitHub-Event`` header.
        payload: Parsed JSON body.

    Returns:
        The canonical event, or None when the delivery is not a completion.

    Raises:
        GitHubPayloadError: If a completion delivery lacks the repository or
            the issue/pull request body.
    """
    action = payload.get("action")

    if event_name == "issues" and action == "closed":
        item = payload.get("issue")
    elif event_name == "pull_request" and action == "closed":
        item = payload.get("pull_request")
        if item is not None and not item.get("merged"):
            logger.debug("github.pull_request_not_merged", number=item.get("number"))
            return None
    else:
        logger.debug("github.event_ignored", github_event=event_name, action=action)
        return None

    repository = payload.get("repository") or {}
    if item is None or "full_name" not in repository:
        raise GitHubPayloadError(f"'{event_name}' delivery is missing the repository or item body")

    return CanonicalEvent(
        platform=Platform.GITHUB,
        external_id=repository["full_name"],
        task_id=str(item["number"]),
        task_title=item.get("title") or "",
        task_labels=_labels(item),
        task_url=item.get("html_url") or "",
        is_done=True,
        raw_payload=payload,
    )
