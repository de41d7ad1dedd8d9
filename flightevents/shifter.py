#!/usr/bin/env python3
"""
Event Shifter - detect an event a fixed time before or after another one

Wraps a detector so that its crossings are reported shifted in time:
- increasing_shift applies to increasing crossings of the inner indicator
- decreasing_shift applies to decreasing crossings
- Positive shifts report the event after the inner one, negative before

At time t the shifted indicator evaluates the inner indicator on the
trajectory state at t - increasing_shift and at t - decreasing_shift.
Both samples are combined with max or min depending on the relative
order of the shifts so that increasing crossings of the result come from
the increasing shift and decreasing crossings from the decreasing shift.
Shifts are applied to the indicator, never to detected times, so the
shifted event is localized by the same root refinement as any other
event and lands on inner crossing time + shift.

States at shifted times come from the propagation: a propagator binds
its TrajectoryShifter (integration along the run's dynamics) when the
detector is registered. Outside a propagator, an explicit state_shifter
is used, or the state's own shifted_by() (straight-line motion) as a
last resort.

Example:
    # Report eclipse entry 2 minutes early and exit 1 minute late
    eclipse = eclipse_detector(sun_direction)
    margin = EventShifter(eclipse, increasing_shift=60.0, decreasing_shift=-120.0)
    propagator.add_detector(margin)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .detector import Action, Detector, DetectorConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _ballistic_shift(state: Any, dt: float) -> Any:
    return state.shifted_by(dt)


class EventShifter(Detector):
    """
    Time-shifting decorator around another detector.

    Args:
        inner: Detector whose crossings are shifted. The shifter owns it;
            clone it first if it is also registered elsewhere.
        increasing_shift: Shift applied to increasing crossings (s).
        decreasing_shift: Shift applied to decreasing crossings (s).
        config: Detection parameters. Defaults to the inner configuration
            (the inner slope selection is always kept).
        state_shifter: Callable (state, dt) -> state extrapolating a state
            by dt. When omitted, the one bound by a propagator is used,
            and state.shifted_by(dt) before any binding.
        name: Label used in logs.

    Raises:
        ConfigurationError: If the threshold is not smaller than every
            non-zero shift magnitude.
    """

    def __init__(
        self,
        inner: Detector,
        increasing_shift: float,
        decreasing_shift: float,
        config: Optional[DetectorConfig] = None,
        state_shifter: Optional[Callable[[Any, float], Any]] = None,
        name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        base = config if config is not None else inner.config
        base = base.replace(slope_selection=inner.slope_selection)
        super().__init__(base, name=name or f"shifted({inner.name})", **kwargs)
        self.arity = inner.arity
        self.inner = inner
        self.increasing_shift = float(increasing_shift)
        self.decreasing_shift = float(decreasing_shift)
        self.explicit_shifter = state_shifter
        self.bound_shifter: Optional[Callable[[Any, float], Any]] = None

        for shift in (self.increasing_shift, self.decreasing_shift):
            if shift != 0.0 and self.threshold >= abs(shift):
                raise ConfigurationError(
                    f"{self.name}: threshold {self.threshold:g} s must be smaller "
                    f"than the shift magnitude {abs(shift):g} s"
                )
        spread = abs(self.increasing_shift - self.decreasing_shift)
        if spread > 0 and self.max_check_interval > spread:
            logger.warning(
                "%s: max check interval %g s exceeds the shift spread %g s, "
                "short events may be missed",
                self.name, self.max_check_interval, spread,
            )

    # -------------------------------------------------------------------------
    # Indicator
    # -------------------------------------------------------------------------

    @property
    def state_shifter(self) -> Callable[[Any, float], Any]:
        return self.explicit_shifter or self.bound_shifter or _ballistic_shift

    def bind_state_shifter(self, state_shifter: Callable[[Any, float], Any]) -> None:
        self.bound_shifter = state_shifter
        self.inner.bind_state_shifter(state_shifter)

    def _shift(self, state: Any, dt: float) -> Any:
        if dt == 0.0:
            return state
        return self.state_shifter(state, dt)

    def _evaluate(self, state: Any) -> float:
        inc_shift = -self.increasing_shift
        dec_shift = -self.decreasing_shift
        if inc_shift == dec_shift:
            return self.inner.g(self._shift(state, inc_shift))
        g_inc = self.inner.g(self._shift(state, inc_shift))
        g_dec = self.inner.g(self._shift(state, dec_shift))
        if inc_shift >= dec_shift:
            return max(g_inc, g_dec)
        return min(g_inc, g_dec)

    # -------------------------------------------------------------------------
    # Delegation
    # -------------------------------------------------------------------------

    def inner_state(self, state: Any, increasing: bool) -> Any:
        """State at the inner crossing matching a shifted crossing."""
        shift = self.increasing_shift if increasing else self.decreasing_shift
        return self._shift(state, -shift)

    def init(self, initial_state: Any, target_time: float) -> None:
        super().init(initial_state, target_time)
        self.inner.init(initial_state, target_time)

    def _react(self, state: Any, increasing: bool, forward: bool) -> Action:
        if self.handler is not None:
            return self.handler(state, increasing, forward)
        action = self.inner.event_occurred(self.inner_state(state, increasing), increasing, forward)
        if self.inner.should_be_removed():
            self.tracking.remove = True
        return action

    def filter_event(self, state: Any, increasing: bool, forward: bool) -> bool:
        if self.inner.filter_event(self.inner_state(state, increasing), increasing, forward):
            return True
        return super().filter_event(state, increasing, forward)

    def reset_state(self, state: Any) -> Any:
        if self.state_reset is not None:
            return super().reset_state(state)
        return self.inner.reset_state(state)

    def _constructor_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._constructor_kwargs()
        kwargs.update(
            inner=self.inner.clone(),
            increasing_shift=self.increasing_shift,
            decreasing_shift=self.decreasing_shift,
            state_shifter=self.explicit_shifter,
        )
        return kwargs
