#!/usr/bin/env python3
"""
Event Engine - step scanner driven by a propagation loop

The engine sits between a numerical integrator and a set of detectors:
- register_detector(): add a detector of the engine's arity
- init(): start a run (every detector's init() is called)
- scan_step(): search one accepted step, resolve crossings in order
- notify_reset(): re-initialize tracking after an external state reset

Usage:
    engine = EventEngine()
    engine.register_detector(detector)
    engine.init(state0, t0, t_end)
    for each accepted step [ta, tb] with dense output state_at:
        outcome = engine.scan_step(ta, tb, state_at)
        if outcome.halted: stop at outcome.time / outcome.state
        elif outcome.needs_restart: restart integration from outcome.time
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

from .detector import Arity, Detector
from .errors import ContractMismatchError, EventError
from .event_state import EventState, StepInterpolator
from .resolver import (
    ActionResolver,
    EventOccurrence,
    ResolverPhase,
    StepDirective,
    StepOutcome,
    earliest,
)

logger = logging.getLogger(__name__)


class EventEngine:
    """
    Detects and handles discrete events over integration steps.

    Args:
        arity: Cardinality of the states the engine scans. Detectors of
            the other arity are rejected at registration.
    """

    def __init__(self, arity: Arity = Arity.SINGLE) -> None:
        self.arity = arity
        self._states: List[EventState] = []
        self._resolver = ActionResolver()
        self._occurrences: List[EventOccurrence] = []
        self._run: Optional[Tuple[Any, float, float]] = None
        self.last_event_time: Optional[float] = None

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    @property
    def detectors(self) -> List[Detector]:
        """Registered detectors in registration order."""
        return [es.detector for es in self._states]

    @property
    def phase(self) -> ResolverPhase:
        return self._resolver.phase

    @property
    def occurrences(self) -> List[EventOccurrence]:
        """All crossings resolved since the last init()."""
        return list(self._occurrences)

    def register_detector(self, detector: Detector) -> Detector:
        """
        Add a detector; it is scanned after all previously registered ones.

        Raises:
            ContractMismatchError: If the detector arity differs from the engine's.
            ValueError: If the same detector instance is already registered.
        """
        if getattr(detector, "arity", None) is not self.arity:
            raise ContractMismatchError(
                f"Cannot register {getattr(detector, 'name', detector)!r} "
                f"({getattr(getattr(detector, 'arity', None), 'name', '?')}) "
                f"on a {self.arity.name} engine"
            )
        if any(es.detector is detector for es in self._states):
            raise ValueError(f"Detector {detector.name} is already registered")
        self._states.append(EventState(detector))
        if self._run is not None:
            initial_state, _, target_time = self._run
            detector.init(initial_state, target_time)
        logger.debug("Registered %s", detector.name)
        return detector

    def remove_detector(self, detector: Detector) -> bool:
        """Deregister a detector, returns False if it was not registered."""
        for es in self._states:
            if es.detector is detector:
                self._states.remove(es)
                logger.info("Removed detector %s", detector.name)
                return True
        return False

    # -------------------------------------------------------------------------
    # Run control
    # -------------------------------------------------------------------------

    def init(self, initial_state: Any, initial_time: float, target_time: float) -> None:
        """Start a new run from initial_state at initial_time."""
        self._run = (initial_state, initial_time, target_time)
        self._resolver.restart()
        self._occurrences = []
        self.last_event_time = None
        for es in self._states:
            es.detector.init(initial_state, target_time)
        logger.debug("Engine initialized at t=%r towards t=%r with %d detectors",
                     initial_time, target_time, len(self._states))

    def notify_reset(self, new_state: Any, new_time: float) -> None:
        """Re-initialize every detector after the state was replaced at new_time."""
        target_time = self._run[2] if self._run is not None else new_time
        self._run = (new_state, new_time, target_time)
        for es in self._states:
            es.detector.init(new_state, target_time)
            es.reinitialize_at(new_time, new_state)
        logger.info("Detectors re-initialized after state reset at t=%r", new_time)

    def scan_step(
        self,
        t0: float,
        t1: float,
        state_at: Callable[[float], Any],
        forward: Optional[bool] = None,
    ) -> StepOutcome:
        """
        Scan one accepted step for crossings and resolve them.

        Args:
            t0: Step start.
            t1: Step end.
            state_at: Dense output valid on [t0, t1].
            forward: Propagation direction, deduced from t0/t1 when None.

        Returns:
            StepOutcome telling the driver how to proceed.

        Raises:
            RuntimeError: If the run was halted.
            EventError: Detection failures, annotated with last_event_time.
        """
        if self._resolver.phase is ResolverPhase.HALTED:
            raise RuntimeError("Event engine is halted, call init() to start a new run")
        if forward is None:
            forward = t1 >= t0
        step = StepInterpolator(state_at, t0, t1, forward)
        try:
            return self._scan(step)
        except EventError as exc:
            exc.last_event_time = self.last_event_time
            self._resolver.halt()
            logger.error("Event detection failed in step [%r, %r] (last event at t=%r): %s",
                         t0, t1, self.last_event_time, exc)
            raise

    def _scan(self, step: StepInterpolator) -> StepOutcome:
        for es in self._states:
            if es.tracking.t0 is None:
                es.reinitialize_begin(step)

        occurrences: List[EventOccurrence] = []
        pending = [es for es in self._states if es.evaluate_step(step)]
        while pending:
            self._resolver.transition(ResolverPhase.LOCALIZING)
            event_time = earliest([es.event_time for es in pending], step.forward)
            batch = [es for es in self._states
                     if es in pending and abs(es.event_time - event_time) <= es.convergence]
            pending = [es for es in pending if es not in batch]
            logger.debug("Resolving %d crossing(s) at t=%r", len(batch), event_time)

            resolution = self._resolver.resolve_batch(batch, event_time, step.state_at(event_time))
            occurrences.extend(resolution.occurrences)
            self._occurrences.extend(resolution.occurrences)
            self.last_event_time = event_time
            for detector in resolution.removed:
                self.remove_detector(detector)
            pending = [es for es in pending if es in self._states]

            if resolution.directive is StepDirective.STOP:
                return StepOutcome(StepDirective.STOP, event_time, resolution.state, tuple(occurrences))
            if resolution.directive is StepDirective.RESET_STATE:
                self.notify_reset(resolution.state, event_time)
                for es in batch:
                    if es in self._states:
                        es.mark_handled(event_time)
                return StepOutcome(StepDirective.RESET_STATE, event_time, resolution.state,
                                   tuple(occurrences))
            if resolution.directive is StepDirective.RESET_DERIVATIVES:
                for es in self._states:
                    es.store_state(event_time, resolution.state, force_update=es not in batch)
                logger.info("Derivatives reset requested at t=%r", event_time)
                return StepOutcome(StepDirective.RESET_DERIVATIVES, event_time, resolution.state,
                                   tuple(occurrences))

            remainder = step.restricted(event_time, step.current_time)
            for es in batch:
                if es in self._states and es.evaluate_step(remainder):
                    pending.append(es)

        for es in self._states:
            es.advance(step.current_time)
        return StepOutcome(StepDirective.NONE, step.current_time, None, tuple(occurrences))
