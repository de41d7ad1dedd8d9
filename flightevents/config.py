"""
Propagation configuration for event-driven runs.

Simple design:
- Detector defaults and DetectorConfig live with the detector contract
  and are re-exported here
- PropagationSettings groups the integration step, direction and the
  default detector parameters of a run
- Settings load from a dict or a JSON file; nothing is ever written back
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .detector import (
    DEFAULT_MAX_CHECK,
    DEFAULT_MAX_ITER,
    DEFAULT_THRESHOLD,
    DetectorConfig,
)
from .errors import ConfigurationError

__all__ = [
    "DEFAULT_MAX_CHECK",
    "DEFAULT_MAX_ITER",
    "DEFAULT_THRESHOLD",
    "DetectorConfig",
    "PropagationSettings",
]


@dataclass
class PropagationSettings:
    """Settings of one propagation run."""
    step: float = 60.0  # Integration step (s), always positive
    target_time: Optional[float] = None  # Final time, None to decide at propagate()
    detector_defaults: DetectorConfig = field(default_factory=DetectorConfig)
    mu: Optional[float] = None  # Central body gravitational parameter, None for force-free

    def __post_init__(self) -> None:
        if not self.step > 0:
            raise ConfigurationError(f"Integration step must be positive, got {self.step!r}")

    @classmethod
    def from_json(cls, path: str) -> 'PropagationSettings':
        """Load settings from a JSON file."""
        json_path = Path(path)
        if not json_path.exists():
            raise FileNotFoundError(f"Propagation config not found: {path}")

        with open(json_path) as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PropagationSettings':
        """Create settings from a dictionary."""
        target = data.get("target_time")
        mu = data.get("mu")
        return cls(
            step=float(data.get("step", 60.0)),
            target_time=float(target) if target is not None else None,
            detector_defaults=DetectorConfig.from_dict(data.get("detectors", {})),
            mu=float(mu) if mu is not None else None,
        )

    def detector_config(self, **overrides: Any) -> DetectorConfig:
        """Default detector parameters with per-detector overrides applied."""
        if not overrides:
            return self.detector_defaults
        return self.detector_defaults.replace(**overrides)
