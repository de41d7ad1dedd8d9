"""Flight Events: event detection and handling for trajectory propagation."""

from .errors import (
    EventError,
    EvaluationError,
    NonConvergenceError,
    ContractMismatchError,
    ConfigurationError,
)

from .physics import (
    Vector3D,
    TrajectoryState,
    StateDerivatives,
    ConstantThrust,
    two_body_acceleration,
    combine_models,
    circular_orbit_state,
    orbital_period,
)

from .detector import (
    # Defaults
    DEFAULT_MAX_CHECK,
    DEFAULT_THRESHOLD,
    DEFAULT_MAX_ITER,
    # Enums
    SlopeSelection,
    Action,
    Arity,
    # Configuration and tracking
    DetectorConfig,
    TrackingState,
    # Detectors
    Detector,
    EventDetector,
)

from .config import PropagationSettings
from .solver import AllowedSide, solve
from .event_state import EventState, StepInterpolator

from .resolver import (
    ResolverPhase,
    StepDirective,
    EventOccurrence,
    StepOutcome,
    ActionResolver,
)

from .engine import EventEngine
from .shifter import EventShifter
from .multi import MultiEventDetector, MonoToMultiAdapter

from .filters import (
    with_filter,
    veto_increasing,
    veto_decreasing,
    ExclusionWindows,
    OccurrenceFilter,
    AnyOf,
)

from .detectors import (
    date_detector,
    distance_detector,
    apside_detector,
    channel_detector,
    eclipse_detector,
    three_bodies_angle_detector,
    mutual_distance_detector,
)

from .recorder import EventsRecorder, RecordedEvent, Phenomenon, MonitoredDetector
from .propagator import (
    Propagator,
    MultiPropagator,
    PropagationResult,
    HermiteStep,
    TrajectoryShifter,
    MultiTrajectoryShifter,
    rk4_step,
)

__all__ = [
    # Errors
    "EventError",
    "EvaluationError",
    "NonConvergenceError",
    "ContractMismatchError",
    "ConfigurationError",
    # Physics
    "Vector3D",
    "TrajectoryState",
    "StateDerivatives",
    "ConstantThrust",
    "two_body_acceleration",
    "combine_models",
    "circular_orbit_state",
    "orbital_period",
    # Detector contract
    "DEFAULT_MAX_CHECK",
    "DEFAULT_THRESHOLD",
    "DEFAULT_MAX_ITER",
    "SlopeSelection",
    "Action",
    "Arity",
    "DetectorConfig",
    "TrackingState",
    "Detector",
    "EventDetector",
    # Configuration
    "PropagationSettings",
    # Engine internals
    "AllowedSide",
    "solve",
    "EventState",
    "StepInterpolator",
    "ResolverPhase",
    "StepDirective",
    "EventOccurrence",
    "StepOutcome",
    "ActionResolver",
    "EventEngine",
    # Decorators
    "EventShifter",
    "MultiEventDetector",
    "MonoToMultiAdapter",
    "with_filter",
    "veto_increasing",
    "veto_decreasing",
    "ExclusionWindows",
    "OccurrenceFilter",
    "AnyOf",
    # Detector library
    "date_detector",
    "distance_detector",
    "apside_detector",
    "channel_detector",
    "eclipse_detector",
    "three_bodies_angle_detector",
    "mutual_distance_detector",
    # Recording
    "EventsRecorder",
    "RecordedEvent",
    "Phenomenon",
    "MonitoredDetector",
    # Propagation
    "Propagator",
    "MultiPropagator",
    "PropagationResult",
    "TrajectoryShifter",
    "MultiTrajectoryShifter",
    "HermiteStep",
    "rk4_step",
]
