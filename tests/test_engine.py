#!/usr/bin/env python3
"""
Tests for the event engine (step scanner).

Tests cover:
1. Registration, arity checks and run control
2. Zero-crossing accuracy across frequencies and thresholds
3. Forward / backward symmetry
4. Ordering of events inside a step and of simultaneous events
5. CONTINUE / STOP / RESET_STATE / RESET_DERIVATIVES handling
6. Removal semantics and error annotation
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
)
from flightevents.engine import EventEngine
from flightevents.errors import ContractMismatchError, EvaluationError, NonConvergenceError
from flightevents.multi import MultiEventDetector
from flightevents.physics import TrajectoryState
from flightevents.resolver import ResolverPhase, StepDirective


# =============================================================================
# HELPERS
# =============================================================================

def drive(engine, t_start, t_end, step, base=None):
    """
    Feed fixed steps to the engine the way a propagator does.

    States only carry the time (plus whatever channels base has), so
    indicators written as functions of time have exactly known roots.
    """
    base = base or TrajectoryState(time=t_start)
    engine.init(base, t_start, t_end)
    direction = 1.0 if t_end >= t_start else -1.0
    t = t_start
    outcomes = []
    while t != t_end:
        t_next = t_end if abs(t_end - t) <= step else t + direction * step
        outcome = engine.scan_step(t, t_next, lambda tt, b=base: b.replace(time=tt))
        outcomes.append(outcome)
        if outcome.halted:
            break
        if outcome.needs_restart:
            t = outcome.time
            base = outcome.state
            continue
        t = t_next
    return outcomes


def cosine(omega, t0=0.0):
    return lambda s: math.cos(omega * (s.time - t0))


def clock(t_event):
    return lambda s: s.time - t_event


def logging_handler(log, name, action):
    def handler(state, increasing, forward):
        log.append((name, state.time, increasing))
        return action
    return handler


OMEGA = 2 * math.pi / 1000.0


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegistration:
    """Tests for detector registration and arity."""

    def test_register_returns_detector(self):
        engine = EventEngine()
        detector = EventDetector(clock(10.0))
        assert engine.register_detector(detector) is detector
        assert engine.detectors == [detector]

    def test_registration_order_kept(self):
        engine = EventEngine()
        detectors = [EventDetector(clock(t)) for t in (3.0, 1.0, 2.0)]
        for detector in detectors:
            engine.register_detector(detector)
        assert engine.detectors == detectors

    def test_multi_detector_rejected_by_single_engine(self):
        engine = EventEngine()
        with pytest.raises(ContractMismatchError, match="SINGLE engine"):
            engine.register_detector(MultiEventDetector(lambda states: 1.0))

    def test_single_detector_rejected_by_multi_engine(self):
        engine = EventEngine(Arity.MULTI)
        with pytest.raises(ContractMismatchError, match="MULTI engine"):
            engine.register_detector(EventDetector(clock(1.0)))

    def test_duplicate_registration_rejected(self):
        engine = EventEngine()
        detector = engine.register_detector(EventDetector(clock(1.0)))
        with pytest.raises(ValueError, match="already registered"):
            engine.register_detector(detector)

    def test_remove_detector(self):
        engine = EventEngine()
        detector = engine.register_detector(EventDetector(clock(1.0)))
        assert engine.remove_detector(detector) is True
        assert engine.remove_detector(detector) is False
        assert engine.detectors == []


# =============================================================================
# ACCURACY
# =============================================================================

class TestZeroCrossingAccuracy:
    """cos(w (t - t0)) crosses zero decreasing at t0 + pi/(2w), increasing at t0 + 3pi/(2w)."""

    @pytest.mark.parametrize("omega", [2 * math.pi / 1000.0, 2 * math.pi / 86400.0, 0.5])
    @pytest.mark.parametrize("threshold", [1e-3, 1e-6, 1e-9])
    @pytest.mark.parametrize("t0", [0.0, 5000.0])
    def test_decreasing_crossing(self, omega, threshold, t0):
        period = 2 * math.pi / omega
        config = DetectorConfig(max_check_interval=period / 8, threshold=threshold,
                                slope_selection=SlopeSelection.DECREASING)
        engine = EventEngine()
        engine.register_detector(EventDetector(cosine(omega, t0), config))
        outcomes = drive(engine, t0, t0 + period, period / 3)
        assert outcomes[-1].halted
        assert abs(outcomes[-1].time - (t0 + math.pi / (2 * omega))) <= threshold

    @pytest.mark.parametrize("omega", [2 * math.pi / 1000.0, 0.5])
    @pytest.mark.parametrize("threshold", [1e-3, 1e-6])
    def test_increasing_crossing(self, omega, threshold):
        period = 2 * math.pi / omega
        config = DetectorConfig(max_check_interval=period / 8, threshold=threshold,
                                slope_selection=SlopeSelection.INCREASING)
        engine = EventEngine()
        engine.register_detector(EventDetector(cosine(omega), config))
        outcomes = drive(engine, 0.0, period, period / 3)
        assert outcomes[-1].halted
        assert abs(outcomes[-1].time - 3 * math.pi / (2 * omega)) <= threshold
        assert engine.occurrences[0].increasing is True


# =============================================================================
# SYMMETRY
# =============================================================================

class TestForwardBackwardSymmetry:
    """The same crossing found forward and backward."""

    @pytest.mark.parametrize("threshold", [1e-3, 1e-6, 1e-9])
    def test_symmetric_within_two_thresholds(self, threshold):
        config = DetectorConfig(max_check_interval=60.0, threshold=threshold,
                                slope_selection=SlopeSelection.DECREASING)

        forward_engine = EventEngine()
        forward_engine.register_detector(EventDetector(cosine(OMEGA), config))
        t_forward = drive(forward_engine, 0.0, 500.0, 100.0)[-1].time

        backward_engine = EventEngine()
        backward_engine.register_detector(EventDetector(cosine(OMEGA), config))
        t_backward = drive(backward_engine, 500.0, 0.0, 100.0)[-1].time

        assert abs(t_forward - 250.0) <= threshold
        assert abs(t_backward - 250.0) <= threshold
        assert abs(t_forward - t_backward) <= 2 * threshold
        # Each result lies on the side already crossed in its own direction
        assert t_backward <= 250.0 <= t_forward

    def test_backward_occurrence_flags(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(300.0)))
        outcomes = drive(engine, 1000.0, 0.0, 60.0)
        occurrence = engine.occurrences[0]
        assert outcomes[-1].time == 300.0
        assert occurrence.forward is False
        assert occurrence.increasing is True


# =============================================================================
# ORDERING
# =============================================================================

class TestOrdering:
    """Tests for chronological and simultaneous event ordering."""

    def test_events_in_step_resolved_chronologically(self):
        log = []
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(200.0), name="late",
                                               handler=logging_handler(log, "late", Action.CONTINUE)))
        engine.register_detector(EventDetector(clock(100.0), name="early",
                                               handler=logging_handler(log, "early", Action.CONTINUE)))
        engine.init(TrajectoryState(time=0.0), 0.0, 300.0)
        outcome = engine.scan_step(0.0, 300.0, lambda t: TrajectoryState(time=t))
        assert [entry[0] for entry in log] == ["early", "late"]
        assert [o.detector for o in outcome.occurrences] == ["early", "late"]
        assert outcome.directive is StepDirective.NONE
        assert outcome.time == 300.0

    def test_simultaneous_events_registration_order_and_stop(self):
        """Same-time crossings run in registration order; the first STOP wins."""
        log = []
        engine = EventEngine()
        for name, action in [("zeta", Action.CONTINUE), ("alpha", Action.STOP), ("mid", Action.CONTINUE)]:
            engine.register_detector(EventDetector(clock(100.0), name=name,
                                                   handler=logging_handler(log, name, action)))
        outcomes = drive(engine, 0.0, 300.0, 60.0)
        assert [entry[0] for entry in log] == ["zeta", "alpha"]
        assert outcomes[-1].halted
        assert outcomes[-1].time == 100.0
        assert outcomes[-1].state.time == 100.0

    def test_continue_reports_every_crossing(self):
        """Both slopes over three periods, in order, alternating."""
        engine = EventEngine()
        config = DetectorConfig(max_check_interval=60.0, threshold=1e-6)
        engine.register_detector(EventDetector(cosine(OMEGA), config,
                                               increasing_action=Action.CONTINUE,
                                               decreasing_action=Action.CONTINUE))
        drive(engine, 0.0, 3000.0, 300.0)
        times = [o.time for o in engine.occurrences]
        assert times == pytest.approx([250.0, 750.0, 1250.0, 1750.0, 2250.0, 2750.0], abs=1e-6)
        assert [o.increasing for o in engine.occurrences] == [False, True] * 3
        assert engine.last_event_time == pytest.approx(2750.0, abs=1e-6)


# =============================================================================
# RUN CONTROL
# =============================================================================

class TestRunControl:
    """Tests for STOP, halting and re-initialization."""

    def test_scan_after_stop_raises(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(100.0)))
        drive(engine, 0.0, 300.0, 60.0)
        assert engine.phase is ResolverPhase.HALTED
        with pytest.raises(RuntimeError, match="halted"):
            engine.scan_step(100.0, 160.0, lambda t: TrajectoryState(time=t))

    def test_init_starts_new_run(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(100.0)))
        drive(engine, 0.0, 300.0, 60.0)
        outcomes = drive(engine, 0.0, 300.0, 60.0)
        assert outcomes[-1].halted
        assert len(engine.occurrences) == 1
        assert engine.phase is ResolverPhase.HALTED

    def test_detector_registered_mid_run(self):
        inits = []
        engine = EventEngine()
        engine.init(TrajectoryState(time=0.0), 0.0, 300.0)
        engine.scan_step(0.0, 60.0, lambda t: TrajectoryState(time=t))
        engine.register_detector(EventDetector(clock(100.0), on_init=lambda s, t: inits.append(t)))
        outcome = engine.scan_step(60.0, 120.0, lambda t: TrajectoryState(time=t))
        assert inits == [300.0]
        assert outcome.halted
        assert outcome.time == 100.0

    def test_external_notify_reset_reinitializes(self):
        inits = []
        engine = EventEngine()
        detector = engine.register_detector(EventDetector(cosine(OMEGA),
                                                          on_init=lambda s, t: inits.append(s.time)))
        engine.init(TrajectoryState(time=0.0), 0.0, 1000.0)
        engine.scan_step(0.0, 60.0, lambda t: TrajectoryState(time=t))
        engine.notify_reset(TrajectoryState(time=60.0), 60.0)
        assert inits == [0.0, 60.0]
        assert detector.tracking.t0 == 60.0
        assert detector.tracking.g0 == math.inf


# =============================================================================
# RESETS
# =============================================================================

class TestResets:
    """Tests for RESET_STATE and RESET_DERIVATIVES."""

    def test_reset_state_reinitializes_every_detector(self):
        inits = []
        engine = EventEngine()
        trigger = EventDetector(
            clock(100.0), name="trigger",
            increasing_action=Action.RESET_STATE,
            state_reset=lambda s: s.with_channel("armed", 1.0),
            on_init=lambda s, t: inits.append(s.time),
        )
        watcher = EventDetector(lambda s: s.channel("armed") - 0.5, name="watcher")
        engine.register_detector(trigger)
        engine.register_detector(watcher)

        base = TrajectoryState(time=0.0, channels={"armed": 0.0})
        outcomes = drive(engine, 0.0, 300.0, 60.0, base)

        reset = outcomes[1]
        assert reset.directive is StepDirective.RESET_STATE
        assert reset.time == 100.0
        assert reset.state.channel("armed") == 1.0
        # The jump of the watcher across the reset is not an event
        assert [o.detector for o in engine.occurrences] == ["trigger"]
        assert inits == [0.0, 100.0]
        assert watcher.tracking.g0 == math.inf
        assert not outcomes[-1].halted

    def test_reset_derivatives_restarts_without_refiring(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(100.0), increasing_action=Action.RESET_DERIVATIVES))
        outcomes = drive(engine, 0.0, 300.0, 60.0)
        assert outcomes[1].directive is StepDirective.RESET_DERIVATIVES
        assert outcomes[1].time == 100.0
        assert outcomes[1].state.time == 100.0
        assert len(engine.occurrences) == 1
        assert outcomes[-1].time == 300.0

    def test_reset_derivatives_resamples_other_detectors(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(100.0), increasing_action=Action.RESET_DERIVATIVES))
        other = engine.register_detector(EventDetector(clock(400.0)))
        drive(engine, 0.0, 120.0, 60.0)
        assert other.tracking.previous_event_time is None
        assert other.tracking.g0 == -math.inf


# =============================================================================
# REMOVAL
# =============================================================================

class TestRemoval:
    """Tests for detectors removed after an event."""

    def test_removed_after_decreasing(self):
        engine = EventEngine()
        config = DetectorConfig(max_check_interval=60.0, remove_after_decreasing=True)
        engine.register_detector(EventDetector(cosine(OMEGA), config,
                                               increasing_action=Action.CONTINUE,
                                               decreasing_action=Action.CONTINUE))
        drive(engine, 0.0, 3000.0, 300.0)
        assert len(engine.occurrences) == 1
        assert engine.detectors == []

    def test_removed_after_increasing(self):
        engine = EventEngine()
        config = DetectorConfig(max_check_interval=60.0, remove_after_increasing=True)
        detector = EventDetector(cosine(OMEGA), config,
                                 increasing_action=Action.CONTINUE,
                                 decreasing_action=Action.CONTINUE)
        engine.register_detector(detector)
        drive(engine, 0.0, 3000.0, 300.0)
        assert [o.increasing for o in engine.occurrences] == [False, True]
        assert not detector.tracking.armed

    def test_other_detectors_unaffected_by_removal(self):
        engine = EventEngine()
        once = DetectorConfig(max_check_interval=60.0, remove_after_decreasing=True)
        engine.register_detector(EventDetector(cosine(OMEGA), once, decreasing_action=Action.CONTINUE))
        survivor = engine.register_detector(EventDetector(clock(900.0), increasing_action=Action.CONTINUE))
        drive(engine, 0.0, 1000.0, 300.0)
        assert engine.detectors == [survivor]
        assert [o.time for o in engine.occurrences] == pytest.approx([250.0, 900.0], abs=1e-6)


# =============================================================================
# ERRORS
# =============================================================================

class TestErrors:
    """Tests for error propagation out of scan_step."""

    def test_evaluation_error_annotated_with_last_event(self):
        def fragile(state):
            if state.time > 150.0:
                raise ZeroDivisionError("singular geometry")
            return 1.0

        engine = EventEngine()
        engine.register_detector(EventDetector(clock(50.0), increasing_action=Action.CONTINUE))
        engine.register_detector(EventDetector(fragile))
        engine.init(TrajectoryState(time=0.0), 0.0, 300.0)
        engine.scan_step(0.0, 100.0, lambda t: TrajectoryState(time=t))
        with pytest.raises(EvaluationError) as exc_info:
            engine.scan_step(100.0, 200.0, lambda t: TrajectoryState(time=t))
        assert exc_info.value.last_event_time == 50.0
        assert engine.last_event_time == 50.0
        assert engine.phase is ResolverPhase.HALTED

    def test_error_without_previous_event(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(lambda s: math.nan))
        engine.init(TrajectoryState(time=0.0), 0.0, 100.0)
        with pytest.raises(EvaluationError) as exc_info:
            engine.scan_step(0.0, 100.0, lambda t: TrajectoryState(time=t))
        assert exc_info.value.last_event_time is None

    def test_non_convergence_propagates(self):
        config = DetectorConfig(max_check_interval=60.0, threshold=1e-9, max_iteration_count=1)
        engine = EventEngine()
        engine.register_detector(EventDetector(cosine(OMEGA), config))
        engine.init(TrajectoryState(time=0.0), 0.0, 300.0)
        with pytest.raises(NonConvergenceError):
            engine.scan_step(0.0, 300.0, lambda t: TrajectoryState(time=t))

    def test_contract_mismatch_from_state_provider(self):
        engine = EventEngine()
        engine.register_detector(EventDetector(clock(10.0)))
        engine.init(TrajectoryState(time=0.0), 0.0, 100.0)
        with pytest.raises(ContractMismatchError):
            engine.scan_step(0.0, 100.0, lambda t: {"sat": TrajectoryState(time=t)})
