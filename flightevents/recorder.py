"""
Events Recorder - keeps a coded log of the crossings seen during a run.

Captures:
- Every reaction of monitored detectors, with a user code
- The state at the event time and the crossing slope
- Phenomena: intervals during which a monitored condition holds

Monitoring wraps a detector copy; the copy keeps the original behavior
(indicator, filter, reaction and reset) and only adds the recording.
Everything stays in memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .detector import Action, Detector, state_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedEvent:
    """A single recorded crossing."""
    time: float
    code: str
    increasing: bool
    state: Any
    starts_phenomenon: bool  # True if the monitored condition begins here

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "code": self.code,
            "increasing": self.increasing,
            "starts_phenomenon": self.starts_phenomenon,
        }


@dataclass(frozen=True)
class Phenomenon:
    """
    Interval during which a monitored condition holds.

    A bound is undefined (start_defined / end_defined False) when the
    interval was cut by the requested window instead of an event.
    """
    start: float
    end: float
    code: str
    start_defined: bool = True
    end_defined: bool = True

    @property
    def duration(self) -> float:
        return self.end - self.start


class MonitoredDetector(Detector):
    """Detector decorator reporting its reactions to an EventsRecorder."""

    def __init__(
        self,
        detector: Detector,
        recorder: EventsRecorder,
        code: str,
        active_when_positive: bool = True,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("name", f"{detector.name}[{code}]")
        config = kwargs.pop("config", None) or detector.config
        super().__init__(config, **kwargs)
        self.arity = detector.arity
        self.detector = detector
        self.recorder = recorder
        self.code = code
        self.active_when_positive = active_when_positive

    def _evaluate(self, state: Any) -> float:
        return self.detector.g(state)

    def bind_state_shifter(self, state_shifter: Callable[[Any, float], Any]) -> None:
        self.detector.bind_state_shifter(state_shifter)

    def init(self, initial_state: Any, target_time: float) -> None:
        super().init(initial_state, target_time)
        self.detector.init(initial_state, target_time)

    def _react(self, state: Any, increasing: bool, forward: bool) -> Action:
        self.recorder.record(self, state, increasing)
        if self.handler is not None:
            return self.handler(state, increasing, forward)
        action = self.detector.event_occurred(state, increasing, forward)
        if self.detector.should_be_removed():
            self.tracking.remove = True
        return action

    def filter_event(self, state: Any, increasing: bool, forward: bool) -> bool:
        if self.detector.filter_event(state, increasing, forward):
            return True
        return super().filter_event(state, increasing, forward)

    def reset_state(self, state: Any) -> Any:
        if self.state_reset is not None:
            return super().reset_state(state)
        return self.detector.reset_state(state)

    def _constructor_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._constructor_kwargs()
        kwargs.update(
            detector=self.detector.clone(),
            recorder=self.recorder,
            code=self.code,
            active_when_positive=self.active_when_positive,
        )
        return kwargs


class EventsRecorder:
    """
    In-memory coded events log.

    Usage:
        recorder = EventsRecorder()
        propagator.add_detector(recorder.monitor(eclipse_detector(sun), "ECLIPSE",
                                                 active_when_positive=False))
        propagator.propagate(state0, t_end)
        for phenomenon in recorder.phenomena("ECLIPSE", t0, t_end): ...
    """

    def __init__(self) -> None:
        self._events: List[RecordedEvent] = []

    def monitor(self, detector: Detector, code: str, active_when_positive: bool = True) -> Detector:
        """
        Copy of detector whose reactions are recorded under code.

        Args:
            detector: Detector to monitor (not modified).
            code: Label of the recorded events.
            active_when_positive: Whether the monitored condition holds when
                the indicator is positive (False: when it is negative).
        """
        return MonitoredDetector(detector.clone(), self, code, active_when_positive)

    def record(self, monitored: MonitoredDetector, state: Any, increasing: bool) -> RecordedEvent:
        event = RecordedEvent(
            time=_event_time(state),
            code=monitored.code,
            increasing=increasing,
            state=state,
            starts_phenomenon=increasing == monitored.active_when_positive,
        )
        self._events.append(event)
        logger.debug("Recorded %s at t=%r (%s)", event.code, event.time,
                     "start" if event.starts_phenomenon else "end")
        return event

    def clear(self) -> None:
        self._events = []

    @property
    def events(self) -> List[RecordedEvent]:
        """All recorded events sorted by time."""
        return sorted(self._events, key=lambda e: e.time)

    def events_for(self, code: str) -> List[RecordedEvent]:
        return [e for e in self.events if e.code == code]

    def phenomena(self, code: str, start: float, end: float) -> List[Phenomenon]:
        """
        Intervals during which the condition monitored under code holds.

        Args:
            code: Event code.
            start: Window start.
            end: Window end.

        Returns:
            Time-ordered phenomena clipped to [start, end]. A phenomenon
            already active at the window start (first event ends it) or
            still active at the window end gets an undefined bound.
        """
        if end < start:
            start, end = end, start
        events = [e for e in self.events_for(code) if start <= e.time <= end]
        result: List[Phenomenon] = []
        opened: Optional[float] = None
        opened_defined = True
        for i, event in enumerate(events):
            if event.starts_phenomenon:
                if opened is None:
                    opened, opened_defined = event.time, True
            else:
                if opened is None and i == 0:
                    opened, opened_defined = start, False
                if opened is not None:
                    result.append(Phenomenon(opened, event.time, code, opened_defined, True))
                    opened = None
        if opened is not None:
            result.append(Phenomenon(opened, end, code, opened_defined, False))
        return result


def _event_time(state: Any) -> float:
    t = state_time(state)
    if t is None:
        raise TypeError("Recorded states must expose a 'time' attribute")
    return t
