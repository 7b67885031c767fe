"""PatternMatcher — trigger keyword interpreted as a regular expression.

Use case: milestones named by convention, e.g. keyword ``^feat/backend\\b``
so that "feat/backend-auth" matches but "docs: mention backend" does not.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from streampay_escrow.domain.events import CanonicalEvent

logger = get_logger(__name__)


class PatternMatcher:
    """Regex searched (case-insensitively) in the title and every label."""

    def __init__(self, keyword: str) -> None:
        try:
            self._pattern: re.Pattern[str] | None = re.compile(keyword, re.IGNORECASE)
        except re.error as exc:
            # Unparseable triggers never match
            logger.warning("matcher.invalid_pattern", keyword=keyword, error=str(exc))
            self._pattern = None

    def matches(self, event: CanonicalEvent) -> bool:
        if self._pattern is None or not self._pattern.pattern:
            return False
        if self._pattern.search(event.task_title):
            return True
        return any(self._pattern.search(label) for label in event.task_labels)

    def __repr__(self) -> str:
        pattern = self._pattern.pattern if self._pattern else None
        return f"PatternMatcher({pattern!r})"
