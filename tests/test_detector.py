#!/usr/bin/env python3
"""
Tests for the detector contract.

Tests cover:
1. Configuration accessors
2. Indicator evaluation and error wrapping
3. init() / tracking state lifecycle
4. Reactions, default actions and removal flags
5. Filters, state resets and clone()
"""

import math
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from flightevents.detector import (
    Action,
    Arity,
    DetectorConfig,
    EventDetector,
    SlopeSelection,
    TrackingState,
)
from flightevents.errors import ConfigurationError, ContractMismatchError, EvaluationError
from flightevents.physics import TrajectoryState


def at(t, **channels):
    return TrajectoryState(time=t, channels=channels)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Short check interval, decreasing crossings only."""
    return DetectorConfig(max_check_interval=60.0, threshold=1e-6,
                          slope_selection=SlopeSelection.DECREASING)


@pytest.fixture
def clock_detector(config):
    """g = t - 100."""
    return EventDetector(lambda s: s.time - 100.0, config, name="clock")


# =============================================================================
# SLOPE SELECTION
# =============================================================================

class TestSlopeSelection:
    """Tests for SlopeSelection.accepts()."""

    @pytest.mark.parametrize("slope,increasing,expected", [
        (SlopeSelection.INCREASING, True, True),
        (SlopeSelection.INCREASING, False, False),
        (SlopeSelection.DECREASING, True, False),
        (SlopeSelection.DECREASING, False, True),
        (SlopeSelection.BOTH, True, True),
        (SlopeSelection.BOTH, False, True),
    ])
    def test_accepts(self, slope, increasing, expected):
        assert slope.accepts(increasing) is expected


# =============================================================================
# ACCESSORS
# =============================================================================

class TestAccessors:
    """Tests for configuration accessors."""

    def test_properties_mirror_config(self, clock_detector):
        """Accessors read the immutable configuration."""
        assert clock_detector.max_check_interval == 60.0
        assert clock_detector.threshold == 1e-6
        assert clock_detector.max_iteration_count == 100
        assert clock_detector.slope_selection is SlopeSelection.DECREASING

    def test_default_config(self):
        """Omitted configuration uses the defaults."""
        detector = EventDetector(lambda s: 1.0)
        assert detector.config == DetectorConfig()
        assert detector.arity is Arity.SINGLE

    def test_default_name_is_unique(self):
        """Unnamed detectors get distinct labels."""
        first = EventDetector(lambda s: 1.0)
        second = EventDetector(lambda s: 1.0)
        assert first.name != second.name

    def test_non_callable_indicator_rejected(self):
        with pytest.raises(ConfigurationError, match="callable"):
            EventDetector(42.0)

    def test_wrong_config_type_rejected(self):
        with pytest.raises(ConfigurationError, match="DetectorConfig"):
            EventDetector(lambda s: 1.0, {"threshold": 1e-3})


# =============================================================================
# INDICATOR
# =============================================================================

class TestIndicator:
    """Tests for g()."""

    def test_value(self, clock_detector):
        assert clock_detector.g(at(40.0)) == pytest.approx(-60.0)

    def test_counts_calls(self, clock_detector):
        clock_detector.g(at(1.0))
        clock_detector.g(at(2.0))
        assert clock_detector.tracking.g_calls == 2

    def test_arithmetic_error_wrapped(self):
        """Indicator failures become EvaluationError with the state time."""
        detector = EventDetector(lambda s: 1.0 / (s.time - 5.0))
        with pytest.raises(EvaluationError, match="indicator evaluation failed") as exc_info:
            detector.g(at(5.0))
        assert exc_info.value.time == 5.0
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_missing_channel_value_error_wrapped(self):
        """ValueError raised by the closure is wrapped too."""
        def indicator(state):
            raise ValueError("undefined geometry")

        with pytest.raises(EvaluationError, match="undefined geometry"):
            EventDetector(indicator).g(at(0.0))

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_rejected(self, value):
        with pytest.raises(EvaluationError, match="non-finite"):
            EventDetector(lambda s: value).g(at(0.0))

    def test_mapping_state_is_contract_mismatch(self, clock_detector):
        """A single-entity detector refuses a mapping of states."""
        with pytest.raises(ContractMismatchError, match="single-entity"):
            clock_detector.g({"sat": at(0.0)})

    def test_contract_mismatch_is_type_error(self, clock_detector):
        with pytest.raises(TypeError):
            clock_detector.g({"sat": at(0.0)})


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestLifecycle:
    """Tests for init() and the tracking state."""

    def test_init_replaces_tracking(self, clock_detector):
        """init() starts from a fresh tracking state."""
        clock_detector.g(at(0.0))
        old = clock_detector.tracking
        clock_detector.init(at(0.0), 500.0)
        assert clock_detector.tracking is not old
        assert isinstance(clock_detector.tracking, TrackingState)
        assert clock_detector.tracking.g_calls == 0
        assert clock_detector.tracking.t0 is None

    def test_init_runs_hook(self):
        calls = []
        detector = EventDetector(lambda s: 1.0, on_init=lambda s, t: calls.append((s.time, t)))
        detector.init(at(3.0), 10.0)
        assert calls == [(3.0, 10.0)]

    def test_fresh_tracking_is_unset(self, clock_detector):
        tracking = clock_detector.tracking
        assert tracking.t0 is None
        assert tracking.previous_event_time is None
        assert tracking.armed
        assert not tracking.pending_event


# =============================================================================
# REACTIONS
# =============================================================================

class TestReactions:
    """Tests for event_occurred() and removal."""

    def test_default_actions_stop(self, clock_detector):
        """Without handler both slopes stop."""
        assert clock_detector.event_occurred(at(100.0), True, True) is Action.STOP
        assert clock_detector.event_occurred(at(100.0), False, True) is Action.STOP

    def test_configured_default_actions(self):
        detector = EventDetector(lambda s: 1.0, increasing_action=Action.CONTINUE,
                                 decreasing_action=Action.RESET_DERIVATIVES)
        assert detector.event_occurred(at(0.0), True, True) is Action.CONTINUE
        assert detector.event_occurred(at(0.0), False, False) is Action.RESET_DERIVATIVES
        assert detector.tracking.event_count == 2

    def test_handler_receives_arguments(self):
        seen = []

        def handler(state, increasing, forward):
            seen.append((state.time, increasing, forward))
            return Action.CONTINUE

        detector = EventDetector(lambda s: 1.0, handler=handler)
        assert detector.event_occurred(at(7.0), False, False) is Action.CONTINUE
        assert seen == [(7.0, False, False)]

    def test_handler_must_return_action(self):
        detector = EventDetector(lambda s: 1.0, handler=lambda s, i, f: "stop")
        with pytest.raises(TypeError, match="expected an Action"):
            detector.event_occurred(at(0.0), True, True)

    def test_remove_after_increasing(self):
        """Removal flag applies to the configured slope only."""
        detector = EventDetector(lambda s: 1.0, DetectorConfig(remove_after_increasing=True),
                                 handler=lambda s, i, f: Action.CONTINUE)
        detector.event_occurred(at(0.0), False, True)
        assert not detector.should_be_removed()
        assert detector.tracking.armed
        detector.event_occurred(at(1.0), True, True)
        assert detector.should_be_removed()
        assert not detector.tracking.armed

    def test_remove_after_decreasing(self):
        detector = EventDetector(lambda s: 1.0, DetectorConfig(remove_after_decreasing=True))
        detector.event_occurred(at(0.0), False, True)
        assert detector.should_be_removed()

    def test_init_rearms(self):
        """A new run re-arms a removed detector."""
        detector = EventDetector(lambda s: 1.0, DetectorConfig(remove_after_decreasing=True))
        detector.event_occurred(at(0.0), False, True)
        detector.init(at(0.0), 10.0)
        assert not detector.should_be_removed()
        assert detector.tracking.armed


# =============================================================================
# FILTERS AND RESETS
# =============================================================================

class TestFilterAndReset:
    """Tests for filter_event() and reset_state()."""

    def test_no_filter_never_vetoes(self, clock_detector):
        assert clock_detector.filter_event(at(0.0), True, True) is False

    def test_filter_callback(self):
        detector = EventDetector(lambda s: 1.0, event_filter=lambda s, i, f: s.time > 50.0)
        assert detector.filter_event(at(60.0), True, True) is True
        assert detector.filter_event(at(40.0), True, True) is False

    def test_reset_identity_by_default(self, clock_detector):
        state = at(1.0)
        assert clock_detector.reset_state(state) is state

    def test_reset_callback(self):
        detector = EventDetector(lambda s: 1.0, state_reset=lambda s: s.with_channel("k", 2.0))
        assert detector.reset_state(at(1.0, k=1.0)).channel("k") == 2.0

    def test_reset_returning_mapping_rejected(self):
        detector = EventDetector(lambda s: 1.0, state_reset=lambda s: {"sat": s})
        with pytest.raises(ContractMismatchError):
            detector.reset_state(at(1.0))


# =============================================================================
# CLONE
# =============================================================================

class TestClone:
    """Tests for clone()."""

    def test_clone_has_independent_tracking(self, clock_detector):
        copy = clock_detector.clone()
        copy.g(at(0.0))
        assert copy.tracking is not clock_detector.tracking
        assert clock_detector.tracking.g_calls == 0

    def test_clone_keeps_behavior(self, clock_detector):
        copy = clock_detector.clone()
        assert copy.g(at(40.0)) == clock_detector.g(at(40.0))
        assert copy.config == clock_detector.config

    def test_clone_overrides(self, clock_detector):
        copy = clock_detector.clone(config=DetectorConfig(max_check_interval=5.0, threshold=1e-3),
                                    increasing_action=Action.CONTINUE)
        assert copy.max_check_interval == 5.0
        assert copy.increasing_action is Action.CONTINUE
        assert clock_detector.max_check_interval == 60.0
