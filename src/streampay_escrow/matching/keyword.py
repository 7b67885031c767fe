"""Keyword matchers — case-insensitive substring and exact-label strategies.

SubstringMatcher is the default and reproduces the behaviour milestone
creators rely on: the keyword "backend" completes a milestone when it
appears anywhere in the task title or in any label ("feat/backend: auth",
label "backend-api"). Short or common keywords can produce false positives;
LabelMatcher is the stricter alternative that requires a label equal to the
keyword.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from streampay_escrow.domain.events import CanonicalEvent


class SubstringMatcher:
    """Keyword is a substring of the title or of any label, ignoring case."""

    def __init__(self, keyword: str) -> None:
        self._needle = keyword.lower()

    def matches(self, event: CanonicalEvent) -> bool:
        if not self._needle:
            return False
        if self._needle in event.task_title.lower():
            return True
        return any(self._needle in label.lower() for label in event.task_labels)

    def __repr__(self) -> str:
        return f"SubstringMatcher({self._needle!r})"


class LabelMatcher:
    """Some label equals the keyword, ignoring case and surrounding whitespace."""

    def __init__(self, keyword: str) -> None:
        self._tag = keyword.strip().lower()

    def matches(self, event: CanonicalEvent) -> bool:
        if not self._tag:
            return False
        return any(label.strip().lower() == self._tag for label in event.task_labels)

    def __repr__(self) -> str:
        return f"LabelMatcher({self._tag!r})"
