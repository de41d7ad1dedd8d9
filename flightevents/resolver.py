#!/usr/bin/env python3
"""
Action Resolution

Turns localized crossings into propagation directives:
- ResolverPhase: SCANNING -> LOCALIZING -> RESOLVING -> SCANNING | HALTED
- StepDirective: what the driver must do with the current step
- EventOccurrence / StepOutcome: immutable records handed back to callers
- ActionResolver: processes one batch of simultaneous crossings

Simultaneous crossings are processed in detector registration order at a
common time. The first STOP wins and halts the run immediately. A
RESET_STATE replacement state is handed to the following detectors of
the batch so that state resets chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from .detector import Action, Detector
from .event_state import EventState

logger = logging.getLogger(__name__)


class ResolverPhase(Enum):
    SCANNING = auto()
    LOCALIZING = auto()
    RESOLVING = auto()
    HALTED = auto()


class StepDirective(Enum):
    """Directive returned to the propagation driver for one step."""
    NONE = auto()
    STOP = auto()
    RESET_STATE = auto()
    RESET_DERIVATIVES = auto()


# Allowed phase transitions
_TRANSITIONS: Dict[ResolverPhase, FrozenSet[ResolverPhase]] = {
    ResolverPhase.SCANNING: frozenset({ResolverPhase.SCANNING, ResolverPhase.LOCALIZING}),
    ResolverPhase.LOCALIZING: frozenset({ResolverPhase.SCANNING, ResolverPhase.RESOLVING}),
    ResolverPhase.RESOLVING: frozenset({ResolverPhase.SCANNING, ResolverPhase.HALTED}),
    ResolverPhase.HALTED: frozenset(),
}


@dataclass(frozen=True)
class EventOccurrence:
    """One resolved crossing."""
    detector: str
    time: float
    increasing: bool
    forward: bool
    action: Action


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of scanning one step.

    Attributes:
        directive: What the driver must do.
        time: Event time for STOP/RESET directives, step end otherwise.
        state: Halt state (STOP), replacement state (RESET_STATE),
            event-time state (RESET_DERIVATIVES) or None.
        occurrences: Crossings resolved during this step, in order.
    """
    directive: StepDirective
    time: float
    state: Any = None
    occurrences: Tuple[EventOccurrence, ...] = ()

    @property
    def halted(self) -> bool:
        return self.directive is StepDirective.STOP

    @property
    def needs_restart(self) -> bool:
        return self.directive in (StepDirective.RESET_STATE, StepDirective.RESET_DERIVATIVES)


@dataclass
class Resolution:
    """What a batch resolution produced."""
    directive: StepDirective
    time: float
    state: Any
    occurrences: List[EventOccurrence] = field(default_factory=list)
    removed: List[Detector] = field(default_factory=list)


class ActionResolver:
    """Phase machine applying detector reactions."""

    def __init__(self) -> None:
        self.phase = ResolverPhase.SCANNING

    def transition(self, phase: ResolverPhase) -> None:
        """
        Move to a new phase.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal resolver transition {self.phase.name} -> {phase.name}")
        self.phase = phase

    def halt(self) -> None:
        """Force the HALTED phase (fatal error or STOP)."""
        self.phase = ResolverPhase.HALTED

    def restart(self) -> None:
        """Back to SCANNING for a new run."""
        self.phase = ResolverPhase.SCANNING

    def resolve_batch(self, batch: Sequence[EventState], time: float, state: Any) -> Resolution:
        """
        Apply the reactions of simultaneous crossings.

        Args:
            batch: Event states with a crossing at `time`, in registration order.
            time: Common event time.
            state: State at the event time.

        Returns:
            Resolution with the directive, the state (the event-time state
            on STOP, the replaced state on RESET_STATE), the occurrences and
            the detectors to deregister.
        """
        self.transition(ResolverPhase.RESOLVING)
        resolution = Resolution(StepDirective.NONE, time, state)
        for event_state in batch:
            detector = event_state.detector
            action = event_state.step_accepted(time, resolution.state)
            resolution.occurrences.append(EventOccurrence(
                detector=detector.name,
                time=time,
                increasing=event_state.tracking.increasing,
                forward=event_state.tracking.forward,
                action=action,
            ))
            logger.info("Event %s at t=%r (%s) -> %s", detector.name, time,
                        "increasing" if event_state.tracking.increasing else "decreasing",
                        action.name)
            if event_state.remove_detector:
                resolution.removed.append(detector)

            if action is Action.STOP:
                # halt state is the one at the event time, even after an earlier reset
                resolution.directive = StepDirective.STOP
                resolution.state = state
                self.transition(ResolverPhase.HALTED)
                logger.info("Propagation halted by %s at t=%r", detector.name, time)
                return resolution
            if action is Action.RESET_STATE:
                resolution.state = event_state.reset_state(resolution.state)
                resolution.directive = StepDirective.RESET_STATE
            elif action is Action.RESET_DERIVATIVES and resolution.directive is StepDirective.NONE:
                resolution.directive = StepDirective.RESET_DERIVATIVES

        self.transition(ResolverPhase.SCANNING)
        return resolution


def earliest(times: Sequence[float], forward: bool) -> Optional[float]:
    """First time in propagation order, None for an empty sequence."""
    if not times:
        return None
    return min(times) if forward else max(times)
