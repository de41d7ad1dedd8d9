#!/usr/bin/env python3
"""
Event Filters - veto localized crossings before the detector reacts

A filter is a predicate (state, increasing, forward) -> bool:
- True vetoes the crossing: it is recorded as handled, no reaction runs
- with_filter() attaches predicates to a copy of a detector (OR-ed)
- Slope vetoes, exclusion windows and occurrence selection are provided

Filters that count crossings expose fresh(). A detector holds a fresh
copy in its tracking state, so every run and every clone counts from
zero.

Example:
    # React to every third apoapsis only
    detector = with_filter(apside_detector(), veto_increasing())
    detector = with_filter(detector, OccurrenceFilter(first=1, every=3))
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Tuple

from .detector import Detector, EventFilter, fresh_filter, state_time

logger = logging.getLogger(__name__)


# =============================================================================
# COMPOSITION
# =============================================================================

class AnyOf:
    """Vetoes when any of its predicates does (evaluated in order)."""

    def __init__(self, *predicates: EventFilter) -> None:
        self.predicates: Tuple[EventFilter, ...] = predicates

    def __call__(self, state: Any, increasing: bool, forward: bool) -> bool:
        return any(p(state, increasing, forward) for p in self.predicates)

    def fresh(self) -> AnyOf:
        return AnyOf(*(fresh_filter(p) for p in self.predicates))


def with_filter(detector: Detector, predicate: EventFilter) -> Detector:
    """
    Copy of detector vetoing crossings for which predicate is true.

    Any filter the detector already had keeps applying.
    """
    existing = detector.event_filter
    if existing is None:
        combined = predicate
    elif isinstance(existing, AnyOf):
        combined = AnyOf(*existing.predicates, predicate)
    else:
        combined = AnyOf(existing, predicate)
    return detector.clone(event_filter=combined)


# =============================================================================
# PREDICATES
# =============================================================================

def veto_increasing() -> EventFilter:
    """Veto every increasing crossing."""
    return lambda state, increasing, forward: increasing


def veto_decreasing() -> EventFilter:
    """Veto every decreasing crossing."""
    return lambda state, increasing, forward: not increasing


class ExclusionWindows:
    """
    Veto crossings falling inside time windows.

    Args:
        windows: Iterable of (start, end) times, bounds included. Order of
            the bounds does not matter.
    """

    def __init__(self, windows: Iterable[Tuple[float, float]]) -> None:
        self.windows: List[Tuple[float, float]] = sorted(
            (min(a, b), max(a, b)) for a, b in windows
        )

    def contains(self, t: float) -> bool:
        return any(start <= t <= end for start, end in self.windows)

    def __call__(self, state: Any, increasing: bool, forward: bool) -> bool:
        t = state_time(state)
        if t is None:
            raise TypeError("ExclusionWindows needs states exposing a 'time' attribute")
        return self.contains(t)


class OccurrenceFilter:
    """
    Keep only selected occurrences of a crossing.

    Occurrence k (counting from 1, every candidate crossing counted) is
    kept when k >= first and (k - first) is a multiple of every. A
    crossing offered again at the same time (a step discarded by another
    detector and scanned again) gets the same decision.

    Detectors never count with the instance they were given: they call
    fresh() at construction and at every init().

    Args:
        first: First occurrence kept.
        every: Keep one occurrence out of `every` after the first.
        tolerance: Time tolerance identifying a repeated offer (s).
    """

    def __init__(self, first: int = 1, every: int = 1, tolerance: float = 1.0e-6) -> None:
        if first < 1 or every < 1:
            raise ValueError(f"first and every must be >= 1, got first={first}, every={every}")
        self.first = first
        self.every = every
        self.tolerance = tolerance
        self.count = 0
        self._last: Optional[Tuple[float, bool]] = None

    def fresh(self) -> OccurrenceFilter:
        """Same selection with the counter at zero."""
        return OccurrenceFilter(self.first, self.every, self.tolerance)

    def reset(self) -> None:
        self.count = 0
        self._last = None

    def __call__(self, state: Any, increasing: bool, forward: bool) -> bool:
        t = state_time(state)
        if self._last is not None and t is not None and abs(t - self._last[0]) <= self.tolerance:
            return self._last[1]
        self.count += 1
        keep = self.count >= self.first and (self.count - self.first) % self.every == 0
        logger.debug("Occurrence %d at t=%r %s", self.count, t, "kept" if keep else "vetoed")
        if t is not None:
            self._last = (t, not keep)
        return not keep
