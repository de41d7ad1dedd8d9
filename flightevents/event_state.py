#!/usr/bin/env python3
"""
Per-Detector Step Scanning

Implements the part of the engine that works on one detector at a time:
- StepInterpolator: dense state provider bound to one accepted step
- EventState: sign-change search over a step, root refinement, slope
  selection, filtering, and the reaction bookkeeping at an event time

All mutable bookkeeping lives in detector.tracking (a TrackingState),
EventState only holds a reference to the detector. Indicator samples are
saturated to +/-inf so that after an event the next scan starts from the
post-crossing sign even if the indicator is numerically zero there.

Times are handled in propagation order: `forward` tells whether the
step goes towards increasing times. Slopes reported to detectors are
always physical (with respect to increasing time).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from .detector import Action, Detector
from .solver import AllowedSide, solve

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Steps shorter than this are checked with a single sign test (s)
TINY_STEP = 1.0e-14


def _saturate(value: float) -> float:
    if value > 0:
        return math.inf
    if value < 0:
        return -math.inf
    return 0.0


def _post_crossing_sign(increasing: bool, forward: bool) -> float:
    # Sign the indicator has just after a crossing, in propagation order
    return math.inf if increasing == forward else -math.inf


# =============================================================================
# STEP INTERPOLATOR
# =============================================================================

@dataclass(frozen=True)
class StepInterpolator:
    """
    Dense output of one integration step.

    Attributes:
        provider: Callable returning the state at any time of the step.
        previous_time: Step start (in propagation order).
        current_time: Step end (in propagation order).
        forward: True if current_time >= previous_time.
    """
    provider: Callable[[float], Any]
    previous_time: float
    current_time: float
    forward: bool = True

    def state_at(self, t: float) -> Any:
        return self.provider(t)

    def restricted(self, previous_time: float, current_time: float) -> StepInterpolator:
        """Same provider bound to a sub-interval of the step."""
        return replace(self, previous_time=previous_time, current_time=current_time)


# =============================================================================
# EVENT STATE
# =============================================================================

class EventState:
    """
    Scanning machinery wrapped around one detector.

    Args:
        detector: Detector whose tracking state is driven by this object.
    """

    def __init__(self, detector: Detector) -> None:
        self.detector = detector

    @property
    def tracking(self):
        return self.detector.tracking

    @property
    def event_time(self) -> Optional[float]:
        """Time of the pending crossing, None if there is none."""
        tr = self.tracking
        return tr.pending_event_time if tr.pending_event else None

    @property
    def convergence(self) -> float:
        """Threshold clipped to the length of the last scanned step."""
        return self.tracking.step_convergence

    @property
    def stop(self) -> bool:
        return self.tracking.next_action is Action.STOP

    @property
    def is_pending_reset(self) -> bool:
        return self.tracking.next_action in (Action.RESET_STATE, Action.RESET_DERIVATIVES)

    @property
    def remove_detector(self) -> bool:
        return self.detector.should_be_removed()

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def reinitialize_begin(self, step: StepInterpolator) -> None:
        """Sample the indicator at the start of the first step of a run."""
        t = step.previous_time
        self.reinitialize_at(t, step.state_at(t))

    def reinitialize_at(self, t: float, state: Any) -> None:
        """Restart tracking from (t, state), e.g. after a state reset."""
        tr = self.tracking
        tr.t0 = t
        tr.initial_time = t
        tr.g0_old = tr.g0
        tr.g0 = _saturate(self.detector.g(state))
        tr.pending_event = False
        tr.pending_event_time = None
        tr.next_action = Action.CONTINUE

    # -------------------------------------------------------------------------
    # Scan
    # -------------------------------------------------------------------------

    def _clear_pending(self) -> bool:
        self.tracking.pending_event = False
        self.tracking.pending_event_time = None
        return False

    def _set_pending(self, t: float, increasing: bool) -> bool:
        tr = self.tracking
        tr.increasing = increasing
        tr.pending_event = True
        tr.pending_event_time = t
        return True

    def _record_handled(self, t: float, increasing: bool) -> None:
        # Crossing consumed without reaction (vetoed or not selected)
        tr = self.tracking
        tr.previous_event_time = t
        tr.t0 = t
        tr.g0_old = tr.g0
        tr.g0 = _post_crossing_sign(increasing, tr.forward)

    def evaluate_step(self, step: StepInterpolator) -> bool:
        """
        Search the step [t0, step.current_time] for a selected crossing.

        Returns:
            True if a crossing was localized; its time is then available
            through event_time.
        """
        tr = self.tracking
        detector = self.detector
        if not tr.armed:
            return self._clear_pending()

        forward = step.forward
        tr.forward = forward
        t1 = step.current_time
        t_start = tr.t0
        dt = t1 - t_start
        tr.step_convergence = min(abs(dt), detector.threshold)

        def g_at(t: float) -> float:
            return detector.g(step.state_at(t))

        if abs(dt) < TINY_STEP:
            if dt == 0.0:
                return self._clear_pending()
            gb = g_at(t1)
            if tr.g0 != 0.0 and (gb > 0) != (tr.g0 > 0) and gb != 0.0:
                increasing = (gb > tr.g0) == forward
                if detector.slope_selection.accepts(increasing):
                    return self._set_pending(t1, increasing)
            return self._clear_pending()

        n = max(1, math.ceil(abs(dt) / detector.max_check_interval))
        h = dt / n
        side = AllowedSide.RIGHT if forward else AllowedSide.LEFT
        conv = tr.step_convergence

        ta, ga = t_start, tr.g0
        i = 0
        while i < n:
            tb = t1 if i == n - 1 else t_start + (i + 1) * h
            gb = g_at(tb)
            at_first_step = (tr.g0 == 0.0 and ta == t_start and t_start == tr.initial_time)

            if (ga >= 0) == (gb >= 0) and not at_first_step:
                ta, ga = tb, gb
                i += 1
                continue

            # Slope in propagation order, then converted to physical time
            increasing = (gb >= ga) == forward
            if not detector.slope_selection.accepts(increasing):
                # Ignored slope: follow the sign silently
                tr.t0 = tb
                tr.g0_old = tr.g0
                tr.g0 = _saturate(gb)
                ta, ga = tb, gb
                i += 1
                continue

            ga_actual = g_at(ta)
            if (ga_actual >= 0) != (gb >= 0):
                root = solve(g_at, ta, tb, conv, detector.max_iteration_count, side)
            else:
                # Sign already changed at ta itself
                root = ta
            logger.debug("%s: crossing refined at t=%r in [%r, %r]",
                         detector.name, root, ta, tb)

            previous = tr.previous_event_time
            if previous is not None and abs(root - ta) <= conv and abs(root - previous) <= conv:
                # Crossing handled just before: step past it and rescan
                nudged = ta + conv if forward else ta - conv
                if (nudged - tb) * (1 if forward else -1) >= 0:
                    ta, ga = tb, gb
                    i += 1
                else:
                    ta, ga = nudged, g_at(nudged)
                continue

            if previous is not None and abs(previous - root) <= conv:
                ta, ga = tb, gb
                i += 1
                continue

            if detector.filter_event(step.state_at(root), increasing, forward):
                logger.debug("%s: crossing at t=%r vetoed by filter", detector.name, root)
                self._record_handled(root, increasing)
                ta, ga = root, tr.g0
                continue

            return self._set_pending(root, increasing)

        return self._clear_pending()

    # -------------------------------------------------------------------------
    # Acceptance
    # -------------------------------------------------------------------------

    def step_accepted(self, t: float, state: Any) -> Action:
        """
        Acknowledge that propagation reached t.

        If the pending crossing lies at t (within convergence) the
        detector's reaction is invoked exactly once and its action is
        returned; otherwise CONTINUE.
        """
        tr = self.tracking
        tr.t0 = t
        tr.g0_old = tr.g0
        if tr.pending_event and abs(tr.pending_event_time - t) <= tr.step_convergence:
            tr.previous_event_time = t
            tr.pending_event = False
            tr.pending_event_time = None
            action = self.detector.event_occurred(state, tr.increasing, tr.forward)
            tr.g0 = _post_crossing_sign(tr.increasing, tr.forward)
            return action
        tr.next_action = Action.CONTINUE
        return Action.CONTINUE

    def advance(self, t: float) -> None:
        """End of an event-free step: the scan window now starts at t."""
        tr = self.tracking
        tr.t0 = t
        tr.pending_event = False
        tr.pending_event_time = None
        tr.next_action = Action.CONTINUE

    def mark_handled(self, t: float) -> None:
        """Remember t as the last handled crossing so it is not reported again."""
        self.tracking.previous_event_time = t

    def store_state(self, t: float, state: Any, force_update: bool = False) -> None:
        """
        Move the scan window start to t.

        With force_update the indicator sign is re-sampled at state and the
        handled-crossing memory is cleared.
        """
        tr = self.tracking
        tr.t0 = t
        tr.pending_event = False
        tr.pending_event_time = None
        if force_update:
            tr.g0_old = tr.g0
            tr.g0 = _saturate(self.detector.g(state))
            tr.previous_event_time = None

    def reset_state(self, state: Any) -> Any:
        """Replacement state after a RESET_STATE reaction."""
        new_state = self.detector.reset_state(state)
        self.tracking.next_action = Action.CONTINUE
        return new_state

    def __repr__(self) -> str:
        return f"EventState({self.detector.name}, t0={self.tracking.t0!r}, pending={self.event_time!r})"
