#!/usr/bin/env python3
"""
Detector Contract for the Flight Events engine

Implements the capability every event detector exposes to the engine:
- SlopeSelection / Action / Arity enums
- DetectorConfig: immutable, validated per-instance parameters
- TrackingState: per-run mutable bookkeeping owned by one detector
- Detector: shared machinery (config accessors, reaction, removal, clone)
- EventDetector: single-entity detector driven by an injected indicator

A detector is a closure plus configuration. Variants are built by
injecting different indicator/handler/filter callables or by wrapping a
detector in a decorator (see shifter, multi and filters modules), never
by subclassing for each physical condition.

Lifecycle:
    detector = EventDetector(lambda s: s.position.z, DetectorConfig(60.0, 1e-6))
    detector.init(initial_state, target_time)     # resets tracking state
    ...engine scans steps, calls g(), event_occurred(), filter_event()...
    other_run_detector = detector.clone()          # independent tracking
"""

from __future__ import annotations

import itertools
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from .errors import ConfigurationError, ContractMismatchError, EvaluationError, EventError

logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULTS
# =============================================================================

# Maximum checking interval (s)
DEFAULT_MAX_CHECK = 600.0

# Convergence threshold (s)
DEFAULT_THRESHOLD = 1.0e-6

# Maximum number of root refinement iterations
DEFAULT_MAX_ITER = 100


# =============================================================================
# ENUMS
# =============================================================================

class SlopeSelection(Enum):
    """Which sign transitions of the indicator a detector reacts to."""
    INCREASING = auto()
    DECREASING = auto()
    BOTH = auto()

    def accepts(self, increasing: bool) -> bool:
        """Whether a crossing with the given physical slope is selected."""
        if self is SlopeSelection.BOTH:
            return True
        return (self is SlopeSelection.INCREASING) == increasing


class Action(Enum):
    """Discrete directive returned by a detector's reaction."""
    CONTINUE = auto()
    STOP = auto()
    RESET_STATE = auto()
    RESET_DERIVATIVES = auto()


class Arity(Enum):
    """State cardinality a detector or engine works with."""
    SINGLE = auto()
    MULTI = auto()


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class DetectorConfig:
    """
    Immutable detection parameters of one detector instance.

    Attributes:
        max_check_interval: Upper bound on the sampling period used to hunt
            for sign changes (s). Two crossings closer than this may be
            missed together.
        threshold: Bracket width under which a crossing is localized (s).
        max_iteration_count: Root refinement iteration budget.
        slope_selection: Which crossing directions are reported.
        remove_after_increasing: Deregister after an increasing crossing.
        remove_after_decreasing: Deregister after a decreasing crossing.

    Raises:
        ConfigurationError: On non-positive or non-finite interval or
            threshold, threshold not below the interval, or an iteration
            count below one.
    """
    max_check_interval: float = DEFAULT_MAX_CHECK
    threshold: float = DEFAULT_THRESHOLD
    max_iteration_count: int = DEFAULT_MAX_ITER
    slope_selection: SlopeSelection = SlopeSelection.BOTH
    remove_after_increasing: bool = False
    remove_after_decreasing: bool = False

    def __post_init__(self) -> None:
        if not math.isfinite(self.max_check_interval) or self.max_check_interval <= 0:
            raise ConfigurationError(
                f"Max check interval must be positive and finite, got {self.max_check_interval!r}"
            )
        if not math.isfinite(self.threshold) or self.threshold <= 0:
            raise ConfigurationError(
                f"Convergence threshold must be positive and finite, got {self.threshold!r}"
            )
        if self.threshold >= self.max_check_interval:
            raise ConfigurationError(
                f"Convergence threshold ({self.threshold}) must be smaller than "
                f"max check interval ({self.max_check_interval})"
            )
        if isinstance(self.max_iteration_count, bool) or not isinstance(self.max_iteration_count, int):
            raise ConfigurationError(
                f"Max iteration count must be an integer, got {self.max_iteration_count!r}"
            )
        if self.max_iteration_count < 1:
            raise ConfigurationError(
                f"Max iteration count must be at least 1, got {self.max_iteration_count}"
            )
        if not isinstance(self.slope_selection, SlopeSelection):
            raise ConfigurationError(
                f"Slope selection must be a SlopeSelection, got {self.slope_selection!r}"
            )

    def replace(self, **changes: Any) -> DetectorConfig:
        """Return a validated copy with some parameters changed."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DetectorConfig:
        """
        Create configuration from a dictionary.

        Slope selection may be given by name ("increasing", "DECREASING", ...).
        Missing keys fall back to the module defaults.
        """
        slope = data.get("slope_selection", SlopeSelection.BOTH)
        if isinstance(slope, str):
            try:
                slope = SlopeSelection[slope.upper()]
            except KeyError:
                raise ConfigurationError(f"Unknown slope selection '{slope}'") from None
        return cls(
            max_check_interval=float(data.get("max_check_interval", DEFAULT_MAX_CHECK)),
            threshold=float(data.get("threshold", DEFAULT_THRESHOLD)),
            max_iteration_count=int(data.get("max_iteration_count", DEFAULT_MAX_ITER)),
            slope_selection=slope,
            remove_after_increasing=bool(data.get("remove_after_increasing", False)),
            remove_after_decreasing=bool(data.get("remove_after_decreasing", False)),
        )


# =============================================================================
# TRACKING STATE
# =============================================================================

@dataclass
class TrackingState:
    """
    Per-run mutable bookkeeping of one detector.

    Valid for a single propagation run only: init() replaces it and
    clone() never shares it. Indicator samples are kept saturated to
    +/-inf (or exactly 0.0) since only their sign matters between steps.

    Attributes:
        t0: Start of the window still to be scanned.
        g0: Saturated indicator sign at t0.
        g0_old: Previous value of g0.
        initial_time: Time at which the run (or the last reset) started.
        forward: Propagation direction of the current step.
        increasing: Physical slope of the last detected crossing.
        pending_event: Whether a localized crossing awaits resolution.
        pending_event_time: Time of that crossing.
        previous_event_time: Last crossing handled (resolved or vetoed).
        step_convergence: Threshold clipped to the current step length.
        next_action: Action returned by the last reaction.
        remove: Detector asked to be deregistered.
        armed: Detector may still report crossings in this run.
        g_calls: Number of indicator evaluations.
        event_count: Number of reactions invoked.
        run_filter: Per-run copy of the detector's event filter, so that
            counting filters start over with every run and every clone.
    """
    t0: Optional[float] = None
    g0: float = math.nan
    g0_old: float = math.nan
    initial_time: Optional[float] = None
    forward: bool = True
    increasing: bool = True
    pending_event: bool = False
    pending_event_time: Optional[float] = None
    previous_event_time: Optional[float] = None
    step_convergence: float = DEFAULT_THRESHOLD
    next_action: Action = Action.CONTINUE
    remove: bool = False
    armed: bool = True
    g_calls: int = 0
    event_count: int = 0
    run_filter: Optional[Callable[[Any, bool, bool], bool]] = None


# =============================================================================
# DETECTOR BASE
# =============================================================================

Handler = Callable[[Any, bool, bool], Action]
EventFilter = Callable[[Any, bool, bool], bool]


def fresh_filter(event_filter: Optional[EventFilter]) -> Optional[EventFilter]:
    """Copy of a filter with its run state cleared (filters exposing fresh())."""
    if event_filter is None:
        return None
    fresh = getattr(event_filter, "fresh", None)
    return fresh() if callable(fresh) else event_filter

_detector_ids = itertools.count(1)


class Detector(ABC):
    """
    Machinery shared by all detectors.

    Subclasses provide the indicator through _evaluate() and declare
    their state cardinality with the `arity` class attribute. The engine
    dispatches on `arity` when a detector is registered.

    Attributes:
        config: Immutable detection parameters.
        handler: Optional reaction callback (state, increasing, forward) -> Action.
        increasing_action: Action returned on increasing crossings without handler.
        decreasing_action: Action returned on decreasing crossings without handler.
        event_filter: Optional veto callback (state, increasing, forward) -> bool.
        state_reset: Optional callback producing the replacement state on RESET_STATE.
        on_init: Optional callback (initial_state, target_time) run by init().
        name: Label used in logs and event records.
        tracking: Per-run tracking state.
    """

    arity: Arity = Arity.SINGLE

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        *,
        handler: Optional[Handler] = None,
        increasing_action: Action = Action.STOP,
        decreasing_action: Action = Action.STOP,
        event_filter: Optional[EventFilter] = None,
        state_reset: Optional[Callable[[Any], Any]] = None,
        on_init: Optional[Callable[[Any, float], None]] = None,
        name: Optional[str] = None,
    ) -> None:
        self.config = config if config is not None else DetectorConfig()
        if not isinstance(self.config, DetectorConfig):
            raise ConfigurationError(f"Expected a DetectorConfig, got {type(self.config).__name__}")
        self.handler = handler
        self.increasing_action = increasing_action
        self.decreasing_action = decreasing_action
        self.event_filter = event_filter
        self.state_reset = state_reset
        self.on_init = on_init
        self.name = name or f"{type(self).__name__}#{next(_detector_ids)}"
        self.tracking = self._new_tracking()

    # -------------------------------------------------------------------------
    # Configuration accessors
    # -------------------------------------------------------------------------

    @property
    def max_check_interval(self) -> float:
        return self.config.max_check_interval

    @property
    def threshold(self) -> float:
        return self.config.threshold

    @property
    def max_iteration_count(self) -> int:
        return self.config.max_iteration_count

    @property
    def slope_selection(self) -> SlopeSelection:
        return self.config.slope_selection

    # -------------------------------------------------------------------------
    # Indicator
    # -------------------------------------------------------------------------

    @abstractmethod
    def _evaluate(self, state: Any) -> float:
        """Raw indicator value at a state of the right cardinality."""

    def _check_arity(self, state: Any) -> None:
        is_mapping = isinstance(state, Mapping)
        if self.arity is Arity.SINGLE and is_mapping:
            raise ContractMismatchError(
                f"{self.name} is a single-entity detector and cannot be "
                f"evaluated on a mapping of states"
            )
        if self.arity is Arity.MULTI and not is_mapping:
            raise ContractMismatchError(
                f"{self.name} is a multi-entity detector and needs a mapping "
                f"of entity id to state, got {type(state).__name__}"
            )

    def g(self, state: Any) -> float:
        """
        Evaluate the indicator; its sign is the detection signal.

        Raises:
            ContractMismatchError: If the state cardinality does not match.
            EvaluationError: If the indicator cannot be computed at the
                state or returns a non-finite value.
        """
        self._check_arity(state)
        self.tracking.g_calls += 1
        try:
            value = float(self._evaluate(state))
        except EventError:
            raise
        except (ArithmeticError, ValueError) as exc:
            raise EvaluationError(
                f"{self.name}: indicator evaluation failed: {exc}",
                time=state_time(state),
            ) from exc
        if not math.isfinite(value):
            raise EvaluationError(
                f"{self.name}: indicator returned non-finite value {value!r}",
                time=state_time(state),
            )
        return value

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _new_tracking(self) -> TrackingState:
        return TrackingState(run_filter=fresh_filter(self.event_filter))

    def bind_state_shifter(self, state_shifter: Callable[[Any, float], Any]) -> None:
        """
        Receive the propagator's state extrapolation (state, dt) -> state.

        Called by propagators on registration. Plain detectors ignore it;
        decorators forward it to the detectors they wrap.
        """

    def init(self, initial_state: Any, target_time: float) -> None:
        """Start a new run: reset the tracking state, then run the hook."""
        self._check_arity(initial_state)
        self.tracking = self._new_tracking()
        if self.on_init is not None:
            self.on_init(initial_state, target_time)

    def _react(self, state: Any, increasing: bool, forward: bool) -> Action:
        if self.handler is not None:
            return self.handler(state, increasing, forward)
        return self.increasing_action if increasing else self.decreasing_action

    def event_occurred(self, state: Any, increasing: bool, forward: bool) -> Action:
        """
        React to a localized crossing.

        Args:
            state: State at the event time.
            increasing: True if the indicator increases with physical time.
            forward: True if propagation goes forward in time.

        Returns:
            Action the engine must apply.
        """
        self.tracking.event_count += 1
        action = self._react(state, increasing, forward)
        if not isinstance(action, Action):
            raise TypeError(f"{self.name}: reaction returned {action!r}, expected an Action")
        if ((increasing and self.config.remove_after_increasing) or
                (not increasing and self.config.remove_after_decreasing)):
            self.tracking.remove = True
        if self.tracking.remove:
            self.tracking.armed = False
        self.tracking.next_action = action
        logger.debug("%s: %s crossing -> %s%s", self.name,
                     "increasing" if increasing else "decreasing", action.name,
                     " (removed)" if self.tracking.remove else "")
        return action

    def should_be_removed(self) -> bool:
        """Whether the detector must be deregistered after its last reaction."""
        return self.tracking.remove

    def filter_event(self, state: Any, increasing: bool, forward: bool) -> bool:
        """Veto a localized crossing (True discards it without reaction)."""
        run_filter = self.tracking.run_filter
        if run_filter is None:
            return False
        return bool(run_filter(state, increasing, forward))

    def reset_state(self, state: Any) -> Any:
        """Replacement state for a RESET_STATE action (identity by default)."""
        if self.state_reset is None:
            return state
        new_state = self.state_reset(state)
        self._check_arity(new_state)
        return new_state

    # -------------------------------------------------------------------------
    # Copy
    # -------------------------------------------------------------------------

    def _constructor_kwargs(self) -> Dict[str, Any]:
        return {
            "config": self.config,
            "handler": self.handler,
            "increasing_action": self.increasing_action,
            "decreasing_action": self.decreasing_action,
            "event_filter": self.event_filter,
            "state_reset": self.state_reset,
            "on_init": self.on_init,
            "name": self.name,
        }

    def clone(self, **overrides: Any) -> Detector:
        """
        Independent copy with a fresh tracking state.

        Keyword overrides replace constructor arguments of the copy, for
        instance clone(config=other_config) or clone(handler=logger_hook).
        Callables are shared, tracking state never is.
        """
        kwargs = self._constructor_kwargs()
        kwargs.update(overrides)
        return type(self)(**kwargs)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"max_check={self.max_check_interval:g}, threshold={self.threshold:g}, "
            f"slope={self.slope_selection.name})"
        )


def state_time(state: Any) -> Optional[float]:
    if isinstance(state, Mapping):
        times = [getattr(s, "time", None) for s in state.values()]
        return next((t for t in times if t is not None), None)
    return getattr(state, "time", None)


# =============================================================================
# SINGLE-ENTITY DETECTOR
# =============================================================================

class EventDetector(Detector):
    """
    Single-entity detector parameterized by an indicator closure.

    Args:
        indicator: Continuous function state -> float whose sign change
            marks the event.
        config: Detection parameters (defaults if omitted).
        **kwargs: Reaction options, see Detector.

    Example:
        # Stop when the object crosses the XY plane going down
        plane = EventDetector(
            lambda s: s.position.z,
            DetectorConfig(max_check_interval=60.0, threshold=1e-6,
                           slope_selection=SlopeSelection.DECREASING),
        )
    """

    arity = Arity.SINGLE

    def __init__(
        self,
        indicator: Callable[[Any], float],
        config: Optional[DetectorConfig] = None,
        **kwargs: Any,
    ) -> None:
        if not callable(indicator):
            raise ConfigurationError("Indicator must be callable")
        super().__init__(config, **kwargs)
        self.indicator = indicator

    def _evaluate(self, state: Any) -> float:
        return self.indicator(state)

    def _constructor_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._constructor_kwargs()
        kwargs["indicator"] = self.indicator
        return kwargs
