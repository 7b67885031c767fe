"""Milestone matching: strategy implementations, factory and the matcher.

Three strategies:
    - SubstringMatcher: keyword is a substring of title or any label (default)
    - LabelMatcher:     some label equals the keyword
    - PatternMatcher:   keyword is a regular expression

``match_milestone`` walks the pending milestones in ascending index order and
returns the first one whose matcher accepts the event, so when an event
satisfies several keywords the earliest milestone wins.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from streampay_escrow.domain.enums import MilestoneStatus
from streampay_escrow.domain.matcher_protocol import TriggerMatcher
from streampay_escrow.matching.keyword import LabelMatcher, SubstringMatcher
from streampay_escrow.matching.pattern import PatternMatcher

if TYPE_CHECKING:
    from collections.abc import Sequence

    from streampay_escrow.domain.events import CanonicalEvent
    from streampay_escrow.domain.models import Milestone


class MatcherFactory:
    """Factory that builds a trigger matcher for a milestone keyword.

    Usage:
        factory = MatcherFactory("substring")
        matcher = factory.create("backend")
        matcher.matches(event)
    """

    _registry: dict[str, type] = {
        "substring": SubstringMatcher,
        "label": LabelMatcher,
        "regex": PatternMatcher,
    }

    def __init__(self, strategy: str = "substring") -> None:
        if strategy not in self._registry:
            raise ValueError(
                f"Unknown matcher strategy: '{strategy}'. "
                f"Valid strategies: {list(self._registry.keys())}"
            )
        self.strategy = strategy

    def create(self, keyword: str) -> TriggerMatcher:
        """Create a matcher bound to ``keyword`` using the configured strategy."""
        return self._registry[self.strategy](keyword)

    @classmethod
    def get_supported_strategies(cls) -> list[str]:
        """Return the list of supported strategy names."""
        return list(cls._registry.keys())


def match_milestone(
    event: CanonicalEvent,
    pending: Sequence[Milestone],
    factory: MatcherFactory | None = None,
) -> Milestone | None:
    """Select the milestone completed by ``event``.

    Args:
        event: A canonical event with ``is_done`` set.
        pending: Snapshot of the escrow's pending milestones.
        factory: Strategy factory; substring matching when omitted.

    Returns:
        The lowest-index pending milestone whose matcher accepts the event,
        or None if the list is empty or nothing qualifies.
    """
    factory = factory or MatcherFactory()
    candidates = sorted(
        (m for m in pending if m.status == MilestoneStatus.PENDING),
        key=lambda m: m.index,
    )
    for milestone in candidates:
        if factory.create(milestone.trigger_keyword).matches(event):
            return milestone
    return None


__all__ = [
    "LabelMatcher",
    "MatcherFactory",
    "PatternMatcher",
    "SubstringMatcher",
    "TriggerMatcher",
    "match_milestone",
]
