"""Trigger Matcher Protocol.

A trigger matcher decides whether a canonical event completes the milestone
it was built for. Each matcher is bound to one milestone's trigger keyword,
so the single required capability is ``matches(event) -> bool``.

Matchers must be pure: the answer depends only on the event and the keyword,
so redelivering an event against an unchanged milestone set always selects
the same milestone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from streampay_escrow.domain.events import CanonicalEvent


@runtime_checkable
class TriggerMatcher(Protocol):
    """Protocol that all matching strategies must satisfy.

    Concrete implementations:
        - matching/keyword.py  (substring, exact label)
        - matching/pattern.py  (regular expression)
    """

    def matches(self, event: CanonicalEvent) -> bool:
        """Return True if ``event`` completes this matcher's milestone."""
        ...
