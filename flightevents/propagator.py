#!/usr/bin/env python3
"""
Reference Propagation Driver

Numerical propagation loop feeding the event engine:
- Fixed-step RK4 integration of TrajectoryState (numpy arrays)
- Cubic Hermite dense output over each accepted step
- Forward or backward propagation towards a target time
- STOP / RESET_STATE / RESET_DERIVATIVES handling
- MultiPropagator: several trajectories on a common time grid
- TrajectoryShifter: extrapolation along the propagated dynamics, bound
  to time-shifted detectors on registration

Usage:
    propagator = Propagator(two_body_acceleration(), step=60.0)
    propagator.add_detector(apside_detector(increasing_action=Action.STOP))
    result = propagator.propagate(circular_orbit_state(7_000_000.0), 86400.0)
    if result.stopped: print(result.final_state.time)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .config import PropagationSettings
from .detector import Arity, Detector
from .engine import EventEngine
from .errors import ConfigurationError
from .physics import (
    ForceModel,
    StateDerivatives,
    TrajectoryState,
    two_body_acceleration,
)
from .resolver import EventOccurrence, StepDirective

logger = logging.getLogger(__name__)


def _no_force(state: TrajectoryState) -> StateDerivatives:
    return StateDerivatives()


# =============================================================================
# INTEGRATION
# =============================================================================

def state_rates(dynamics: ForceModel, state: TrajectoryState) -> np.ndarray:
    """Time derivative of state.to_array() under the given dynamics."""
    derivatives = dynamics(state)
    rates = [
        *state.velocity.to_tuple(),
        *derivatives.acceleration.to_tuple(),
        derivatives.mass_rate,
    ]
    rates.extend(derivatives.channel_rates.get(name, 0.0) for name in state.channel_names)
    return np.array(rates, dtype=float)


def rk4_step(dynamics: ForceModel, state: TrajectoryState, h: float,
             rates: Optional[np.ndarray] = None) -> TrajectoryState:
    """
    One classical Runge-Kutta step of size h (negative h goes backward).

    Args:
        dynamics: Force model.
        state: State at the start of the step.
        h: Step size (s).
        rates: Rates at the start of the step if already known.

    Returns:
        State at state.time + h
    """
    names = state.channel_names
    t0 = state.time
    y0 = state.to_array()

    def f(t: float, y: np.ndarray) -> np.ndarray:
        return state_rates(dynamics, TrajectoryState.from_array(t, y, names))

    k1 = rates if rates is not None else state_rates(dynamics, state)
    k2 = f(t0 + h / 2, y0 + h / 2 * k1)
    k3 = f(t0 + h / 2, y0 + h / 2 * k2)
    k4 = f(t0 + h, y0 + h * k3)
    y1 = y0 + h / 6 * (k1 + 2 * k2 + 2 * k3 + k4)
    return TrajectoryState.from_array(t0 + h, y1, names)


class HermiteStep:
    """
    Cubic Hermite interpolation of a state over one step.

    Matches values and rates at both ends, so positions are consistent
    with velocities to third order inside the step.
    """

    def __init__(self, start: TrajectoryState, start_rates: np.ndarray,
                 end: TrajectoryState, end_rates: np.ndarray) -> None:
        self.start = start
        self.end = end
        self._y0 = start.to_array()
        self._y1 = end.to_array()
        self._f0 = start_rates
        self._f1 = end_rates
        self._names = start.channel_names

    def __call__(self, t: float) -> TrajectoryState:
        t0, t1 = self.start.time, self.end.time
        if t == t0:
            return self.start
        if t == t1:
            return self.end
        h = t1 - t0
        s = (t - t0) / h
        s2, s3 = s * s, s * s * s
        y = ((2 * s3 - 3 * s2 + 1) * self._y0
             + (s3 - 2 * s2 + s) * h * self._f0
             + (-2 * s3 + 3 * s2) * self._y1
             + (s3 - s2) * h * self._f1)
        return TrajectoryState.from_array(t, y, self._names)


# =============================================================================
# TRAJECTORY EXTRAPOLATION
# =============================================================================

class TrajectoryShifter:
    """
    Extrapolate a state along the propagated dynamics.

    Integrates with RK4 sub-steps no longer than max_step, in either
    direction, so a time-shifted detector reads its inner indicator on
    the same trajectory the propagator follows.

    Args:
        dynamics: Force model of the trajectory.
        max_step: Longest sub-step (s), normally the propagator step.
    """

    def __init__(self, dynamics: ForceModel, max_step: float) -> None:
        if not max_step > 0:
            raise ConfigurationError(f"Extrapolation step must be positive, got {max_step!r}")
        self.dynamics = dynamics
        self.max_step = float(max_step)

    def __call__(self, state: TrajectoryState, dt: float) -> TrajectoryState:
        if dt == 0.0:
            return state
        target = state.time + dt
        n = max(1, math.ceil(abs(dt) / self.max_step))
        h = dt / n
        for _ in range(n):
            state = rk4_step(self.dynamics, state, h)
        return state if state.time == target else state.replace(time=target)


class MultiTrajectoryShifter:
    """TrajectoryShifter over a mapping of entity states."""

    def __init__(self, dynamics_for: Callable[[str], ForceModel], max_step: float) -> None:
        self.dynamics_for = dynamics_for
        self.max_step = float(max_step)

    def for_entity(self, entity_id: str) -> TrajectoryShifter:
        return TrajectoryShifter(self.dynamics_for(entity_id), self.max_step)

    def __call__(self, states: Mapping[str, TrajectoryState], dt: float) -> Dict[str, TrajectoryState]:
        return {eid: self.for_entity(eid)(state, dt) for eid, state in states.items()}


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class PropagationResult:
    """Outcome of a propagate() call."""
    final_state: Any
    occurrences: List[EventOccurrence] = field(default_factory=list)
    stopped: bool = False  # True if a detector halted the run
    last_event_time: Optional[float] = None
    resets: int = 0


# =============================================================================
# PROPAGATORS
# =============================================================================

class _EventDrivenPropagator:
    """Propagation loop shared by single and multi-entity propagators."""

    arity = Arity.SINGLE

    def __init__(self, step: float) -> None:
        if not step > 0:
            raise ConfigurationError(f"Integration step must be positive, got {step!r}")
        self.step = float(step)
        self.engine = EventEngine(self.arity)

    def add_detector(self, detector: Detector) -> Detector:
        """Register a detector; time-shifted detectors get this trajectory's extrapolation."""
        self.engine.register_detector(detector)
        detector.bind_state_shifter(self.state_shifter())
        return detector

    def state_shifter(self) -> Callable[[Any, float], Any]:
        raise NotImplementedError

    def _time_of(self, states: Any) -> float:
        raise NotImplementedError

    def _at_time(self, states: Any, t: float) -> Any:
        raise NotImplementedError

    def _rates(self, states: Any) -> Any:
        raise NotImplementedError

    def _advance(self, states: Any, rates: Any, h: float) -> Tuple[Any, Any, Callable[[float], Any]]:
        raise NotImplementedError

    def propagate(self, initial: Any, target_time: float) -> PropagationResult:
        """
        Propagate from the initial state(s) to target_time.

        Returns:
            PropagationResult with the final state (the halt state if a
            detector returned STOP) and every resolved event.
        """
        t = self._time_of(initial)
        forward = target_time >= t
        direction = 1.0 if forward else -1.0
        self.engine.init(initial, t, target_time)
        logger.info("Propagating from t=%r to t=%r (%s, step %g s)",
                    t, target_time, "forward" if forward else "backward", self.step)

        states, rates = initial, self._rates(initial)
        resets = 0
        while t != target_time:
            if abs(target_time - t) <= self.step:
                t_next = target_time
            else:
                t_next = t + direction * self.step
            next_states, next_rates, dense = self._advance(states, rates, t_next - t)
            outcome = self.engine.scan_step(t, t_next, dense, forward)

            if outcome.halted:
                logger.info("Propagation stopped at t=%r", outcome.time)
                return PropagationResult(outcome.state, self.engine.occurrences, True,
                                         self.engine.last_event_time, resets)
            if outcome.needs_restart:
                resets += 1
                t = outcome.time
                states = self._at_time(outcome.state, t)
                rates = self._rates(states)
                if outcome.directive is StepDirective.RESET_STATE:
                    logger.debug("Restarting from replaced state at t=%r", t)
                continue

            states, rates, t = next_states, next_rates, t_next

        return PropagationResult(states, self.engine.occurrences, False,
                                 self.engine.last_event_time, resets)


class Propagator(_EventDrivenPropagator):
    """
    Single trajectory propagator.

    Args:
        dynamics: Force model (state -> StateDerivatives). Force-free
            motion if omitted.
        step: Fixed integration step (s).
    """

    arity = Arity.SINGLE

    def __init__(self, dynamics: Optional[ForceModel] = None, step: float = 60.0) -> None:
        super().__init__(step)
        self.dynamics = dynamics or _no_force

    @classmethod
    def from_settings(cls, settings: PropagationSettings,
                      dynamics: Optional[ForceModel] = None) -> Propagator:
        """Build a propagator from loaded settings (two-body gravity when mu is set)."""
        if dynamics is None and settings.mu is not None:
            dynamics = two_body_acceleration(settings.mu)
        return cls(dynamics, settings.step)

    def state_shifter(self) -> TrajectoryShifter:
        return TrajectoryShifter(self.dynamics, self.step)

    def _time_of(self, state: TrajectoryState) -> float:
        return state.time

    def _at_time(self, state: TrajectoryState, t: float) -> TrajectoryState:
        return state if state.time == t else state.replace(time=t)

    def _rates(self, state: TrajectoryState) -> np.ndarray:
        return state_rates(self.dynamics, state)

    def _advance(self, state, rates, h):
        end = rk4_step(self.dynamics, state, h, rates)
        end_rates = self._rates(end)
        return end, end_rates, HermiteStep(state, rates, end, end_rates)


class MultiPropagator(_EventDrivenPropagator):
    """
    Propagates several trajectories on a common time grid.

    States are passed and returned as a mapping entity id -> TrajectoryState;
    registered detectors must be multi-entity ones (wrap single-entity
    detectors in MonoToMultiAdapter).

    Args:
        dynamics_by_entity: Force model per entity. Entities without an
            entry move force-free.
        step: Fixed integration step (s).
    """

    arity = Arity.MULTI

    def __init__(self, dynamics_by_entity: Optional[Mapping[str, ForceModel]] = None,
                 step: float = 60.0) -> None:
        super().__init__(step)
        self.dynamics_by_entity: Dict[str, ForceModel] = dict(dynamics_by_entity or {})

    def _dynamics(self, entity_id: str) -> ForceModel:
        return self.dynamics_by_entity.get(entity_id, _no_force)

    def state_shifter(self) -> MultiTrajectoryShifter:
        return MultiTrajectoryShifter(self._dynamics, self.step)

    def _time_of(self, states: Mapping[str, TrajectoryState]) -> float:
        times = {state.time for state in states.values()}
        if len(times) != 1:
            raise ValueError(f"All entity states must share the same time, got {sorted(times)}")
        return times.pop()

    def _at_time(self, states, t):
        return {eid: s if s.time == t else s.replace(time=t) for eid, s in states.items()}

    def _rates(self, states):
        return {eid: state_rates(self._dynamics(eid), s) for eid, s in states.items()}

    def _advance(self, states, rates, h):
        ends, end_rates, dense = {}, {}, {}
        for eid, state in states.items():
            dynamics = self._dynamics(eid)
            ends[eid] = rk4_step(dynamics, state, h, rates[eid])
            end_rates[eid] = state_rates(dynamics, ends[eid])
            dense[eid] = HermiteStep(state, rates[eid], ends[eid], end_rates[eid])

        def state_at(t: float) -> Dict[str, TrajectoryState]:
            return {eid: interpolate(t) for eid, interpolate in dense.items()}

        return ends, end_rates, state_at
