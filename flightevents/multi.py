#!/usr/bin/env python3
"""
Multi-Entity Detectors

Detectors for runs propagating several trajectories together:
- MultiEventDetector: indicator over a mapping entity id -> state
- MonoToMultiAdapter: single-entity detector watching one entity

Multi-entity detectors share every piece of machinery with single-entity
ones; only the arity differs, which the engine checks at registration.

Example:
    # Stop when spacecraft "b" comes within 100 m of the origin
    watch = MonoToMultiAdapter(distance_detector(Vector3D.zero(), 100.0), "b")
    propagator = MultiPropagator(step=10.0)
    propagator.add_detector(watch)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .detector import Action, Arity, Detector, DetectorConfig
from .errors import ConfigurationError, EvaluationError


# =============================================================================
# MULTI-ENTITY DETECTOR
# =============================================================================

class MultiEventDetector(Detector):
    """
    Detector whose indicator needs several entity states.

    Args:
        indicator: Function states_by_id -> float.
        entity_ids: Entities the indicator reads. Missing entities make
            the evaluation fail with EvaluationError.
        config: Detection parameters.
        **kwargs: Reaction options, see Detector. A state_reset callback
            receives and returns a mapping.
    """

    arity = Arity.MULTI

    def __init__(
        self,
        indicator: Callable[[Mapping], float],
        entity_ids: Sequence[str] = (),
        config: Optional[DetectorConfig] = None,
        **kwargs: Any,
    ) -> None:
        if not callable(indicator):
            raise ConfigurationError("Indicator must be callable")
        super().__init__(config, **kwargs)
        self.indicator = indicator
        self.entity_ids: Tuple[str, ...] = tuple(entity_ids)

    def _evaluate(self, states: Mapping) -> float:
        missing = [eid for eid in self.entity_ids if eid not in states]
        if missing:
            raise EvaluationError(
                f"{self.name}: missing state for entities {', '.join(missing)}"
            )
        return self.indicator(states)

    def _constructor_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._constructor_kwargs()
        kwargs.update(indicator=self.indicator, entity_ids=self.entity_ids)
        return kwargs


# =============================================================================
# SINGLE-ENTITY ADAPTER
# =============================================================================

class MonoToMultiAdapter(Detector):
    """
    Run a single-entity detector inside a multi-entity propagation.

    The mapping of states is projected on one entity before every call to
    the wrapped detector. A state reset replaces that entity only.

    Args:
        detector: Single-entity detector, owned by the adapter.
        entity_id: Entity the detector watches.
        **kwargs: Adapter options, see Detector. An own handler replaces
            the wrapped reaction and receives the whole mapping; an own
            state_reset also works on the whole mapping.
    """

    arity = Arity.MULTI

    def __init__(self, detector: Detector, entity_id: str, **kwargs: Any) -> None:
        if detector.arity is not Arity.SINGLE:
            raise ConfigurationError(f"{detector.name} is already a multi-entity detector")
        kwargs.setdefault("name", f"{detector.name}@{entity_id}")
        config = kwargs.pop("config", None) or detector.config
        super().__init__(config, **kwargs)
        self.detector = detector
        self.entity_id = entity_id

    def _project(self, states: Mapping) -> Any:
        try:
            return states[self.entity_id]
        except KeyError:
            raise EvaluationError(
                f"{self.name}: missing state for entity {self.entity_id}"
            ) from None

    def _evaluate(self, states: Mapping) -> float:
        return self.detector.g(self._project(states))

    def bind_state_shifter(self, state_shifter: Callable[[Any, float], Any]) -> None:
        for_entity = getattr(state_shifter, "for_entity", None)
        if for_entity is not None:
            self.detector.bind_state_shifter(for_entity(self.entity_id))

    def init(self, initial_state: Mapping, target_time: float) -> None:
        super().init(initial_state, target_time)
        self.detector.init(self._project(initial_state), target_time)

    def _react(self, state: Mapping, increasing: bool, forward: bool) -> Action:
        if self.handler is not None:
            return self.handler(state, increasing, forward)
        action = self.detector.event_occurred(self._project(state), increasing, forward)
        if self.detector.should_be_removed():
            self.tracking.remove = True
        return action

    def filter_event(self, state: Mapping, increasing: bool, forward: bool) -> bool:
        if self.detector.filter_event(self._project(state), increasing, forward):
            return True
        return super().filter_event(state, increasing, forward)

    def reset_state(self, state: Mapping) -> Mapping:
        if self.state_reset is not None:
            return super().reset_state(state)
        new_states = dict(state)
        new_states[self.entity_id] = self.detector.reset_state(self._project(state))
        return new_states

    def _constructor_kwargs(self) -> Dict[str, Any]:
        kwargs = super()._constructor_kwargs()
        kwargs.update(detector=self.detector.clone(), entity_id=self.entity_id)
        return kwargs
