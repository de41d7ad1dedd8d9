#!/usr/bin/env python3
"""
Trajectory State Module for the Flight Events toolkit

Provides the values exchanged between the event engine and the
propagation driver:
- 3D vector operations
- Immutable trajectory state (time, position, velocity, mass, channels)
- Ballistic extrapolation of a state in time
- Conversion to and from flat numpy arrays for the numerical integrator
- Simple force models (two-body gravity, constant thrust) for drivers and tests

Force models here only feed the reference propagator; their physical
fidelity is not a concern of the event engine, which only ever sees the
scalar returned by a detector's indicator.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field, replace as dataclass_replace
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Sequence

import numpy as np


# =============================================================================
# PHYSICAL CONSTANTS
# =============================================================================

# Standard gravity (m/s^2)
G_STANDARD = 9.80665

# Earth gravitational parameter (m^3/s^2) and equatorial radius (m)
EARTH_MU = 3.986004418e14
EARTH_RADIUS_M = 6_378_137.0

# Number of array slots used by position, velocity and mass
CORE_ARRAY_SIZE = 7


# =============================================================================
# VECTOR3D CLASS
# =============================================================================

@dataclass(frozen=True)
class Vector3D:
    """
    3D vector for positions, velocities and directions in an inertial frame.

    All units in SI (meters, m/s, etc.) unless otherwise specified.
    Instances are immutable so they can be shared between trajectory states.
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: Vector3D) -> Vector3D:
        return Vector3D(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vector3D) -> Vector3D:
        return Vector3D(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> Vector3D:
        return Vector3D(self.x * scalar, self.y * scalar, self.z * scalar)

    def __rmul__(self, scalar: float) -> Vector3D:
        return self.__mul__(scalar)

    def __truediv__(self, scalar: float) -> Vector3D:
        if scalar == 0:
            raise ValueError("Cannot divide vector by zero")
        return Vector3D(self.x / scalar, self.y / scalar, self.z / scalar)

    def __neg__(self) -> Vector3D:
        return Vector3D(-self.x, -self.y, -self.z)

    def __eq__(self, other: object) -> bool:
        """Equality check with tolerance."""
        if not isinstance(other, Vector3D):
            return False
        eps = 1e-10
        return (abs(self.x - other.x) < eps and
                abs(self.y - other.y) < eps and
                abs(self.z - other.z) < eps)

    def dot(self, other: Vector3D) -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: Vector3D) -> Vector3D:
        return Vector3D(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x
        )

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def normalized(self) -> Vector3D:
        """Return unit vector in same direction (zero vector stays zero)."""
        mag = self.magnitude
        if mag == 0:
            return Vector3D(0.0, 0.0, 0.0)
        return self / mag

    def distance_to(self, other: Vector3D) -> float:
        return (self - other).magnitude

    def angle_to(self, other: Vector3D) -> float:
        """
        Angle between vectors in radians.

        Raises:
            ValueError: If either vector is zero (the angle is undefined).
        """
        mags = self.magnitude * other.magnitude
        if mags == 0:
            raise ValueError("Angle with a zero vector is undefined")
        # Clamp to avoid floating point errors with acos
        cos_angle = max(-1.0, min(1.0, self.dot(other) / mags))
        return math.acos(cos_angle)

    def to_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> Vector3D:
        return cls(float(values[0]), float(values[1]), float(values[2]))

    @classmethod
    def zero(cls) -> Vector3D:
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def unit_x(cls) -> Vector3D:
        return cls(1.0, 0.0, 0.0)

    @classmethod
    def unit_y(cls) -> Vector3D:
        return cls(0.0, 1.0, 0.0)

    @classmethod
    def unit_z(cls) -> Vector3D:
        return cls(0.0, 0.0, 1.0)

    def __repr__(self) -> str:
        return f"Vector3D({self.x:.6g}, {self.y:.6g}, {self.z:.6g})"


# =============================================================================
# TRAJECTORY STATE CLASS
# =============================================================================

@dataclass(frozen=True)
class TrajectoryState:
    """
    Immutable kinematic state of a propagated object bound to a time.

    Position and velocity are in inertial coordinates (meters, m/s).
    Auxiliary scalar channels (attitude angles, counters, custom
    quantities) travel with the state and may be read or overwritten by
    event reactions through with_channel().

    Attributes:
        time: Time the state is bound to (seconds on the run's time scale)
        position: Position vector (meters)
        velocity: Velocity vector (m/s)
        mass_kg: Total mass (kg)
        channels: Read-only mapping of auxiliary named scalars
    """
    time: float
    position: Vector3D = field(default_factory=Vector3D.zero)
    velocity: Vector3D = field(default_factory=Vector3D.zero)
    mass_kg: float = 1000.0
    channels: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "channels",
            MappingProxyType({name: float(value) for name, value in self.channels.items()})
        )

    @property
    def radius(self) -> float:
        """Distance from the frame origin (meters)."""
        return self.position.magnitude

    @property
    def speed(self) -> float:
        """Velocity magnitude (m/s)."""
        return self.velocity.magnitude

    @property
    def channel_names(self) -> tuple[str, ...]:
        """Channel names in the canonical (sorted) order used by arrays."""
        return tuple(sorted(self.channels))

    def channel(self, name: str) -> float:
        """
        Read an auxiliary channel.

        Raises:
            KeyError: If the channel does not exist on this state.
        """
        if name not in self.channels:
            raise KeyError(f"Channel '{name}' not found in trajectory state")
        return self.channels[name]

    def with_channel(self, name: str, value: float) -> TrajectoryState:
        """Return a copy with one channel added or overwritten."""
        channels = dict(self.channels)
        channels[name] = value
        return dataclass_replace(self, channels=channels)

    def with_mass(self, mass_kg: float) -> TrajectoryState:
        return dataclass_replace(self, mass_kg=mass_kg)

    def replace(self, **changes) -> TrajectoryState:
        """Return a copy with the given fields replaced."""
        return dataclass_replace(self, **changes)

    def shifted_by(self, dt: float) -> TrajectoryState:
        """
        Ballistic extrapolation of the state by dt seconds.

        Position moves along the current velocity, everything else is
        held. Exact for unaccelerated motion, first order otherwise.
        """
        return dataclass_replace(
            self,
            time=self.time + dt,
            position=self.position + self.velocity * dt,
        )

    def to_array(self) -> np.ndarray:
        """
        Flatten the state for the numerical integrator.

        Layout: [x, y, z, vx, vy, vz, mass, channels in sorted name order].
        """
        values = [
            *self.position.to_tuple(),
            *self.velocity.to_tuple(),
            self.mass_kg,
        ]
        values.extend(self.channels[name] for name in self.channel_names)
        return np.array(values, dtype=float)

    @classmethod
    def from_array(
        cls,
        time: float,
        array: np.ndarray,
        channel_names: Sequence[str] = ()
    ) -> TrajectoryState:
        """Rebuild a state from the to_array() layout."""
        if len(array) != CORE_ARRAY_SIZE + len(channel_names):
            raise ValueError(
                f"State array has {len(array)} entries, expected "
                f"{CORE_ARRAY_SIZE + len(channel_names)}"
            )
        return cls(
            time=time,
            position=Vector3D.from_sequence(array[0:3]),
            velocity=Vector3D.from_sequence(array[3:6]),
            mass_kg=float(array[6]),
            channels={
                name: float(array[CORE_ARRAY_SIZE + i])
                for i, name in enumerate(channel_names)
            },
        )


# =============================================================================
# FORCE MODELS
# =============================================================================

@dataclass(frozen=True)
class StateDerivatives:
    """
    Time derivatives produced by a force model for one state.

    Attributes:
        acceleration: Acceleration vector (m/s^2)
        mass_rate: Mass flow (kg/s, negative when burning propellant)
        channel_rates: Rates of auxiliary channels (per second)
    """
    acceleration: Vector3D = field(default_factory=Vector3D.zero)
    mass_rate: float = 0.0
    channel_rates: Mapping[str, float] = field(default_factory=dict)

    def __add__(self, other: StateDerivatives) -> StateDerivatives:
        rates = dict(self.channel_rates)
        for name, rate in other.channel_rates.items():
            rates[name] = rates.get(name, 0.0) + rate
        return StateDerivatives(
            acceleration=self.acceleration + other.acceleration,
            mass_rate=self.mass_rate + other.mass_rate,
            channel_rates=rates,
        )


ForceModel = Callable[[TrajectoryState], StateDerivatives]


def two_body_acceleration(mu: float = EARTH_MU) -> ForceModel:
    """
    Point-mass central gravity.

    a = -mu * r / |r|^3

    Args:
        mu: Gravitational parameter of the central body (m^3/s^2)

    Returns:
        Force model callable
    """
    def model(state: TrajectoryState) -> StateDerivatives:
        r = state.radius
        if r == 0:
            raise ZeroDivisionError("Central gravity is singular at the origin")
        return StateDerivatives(acceleration=state.position * (-mu / r**3))

    return model


class ConstantThrust:
    """
    Switchable constant-thrust engine.

    Implements F = ma along a fixed inertial direction, with mass flow
    dm/dt = -F / v_e. The `enabled` flag is meant to be toggled by event
    handlers, which then return Action.RESET_DERIVATIVES so the
    integrator recomputes rates at the switching time.

    Attributes:
        thrust_n: Engine thrust (Newtons)
        exhaust_velocity_ms: Engine exhaust velocity (m/s)
        direction: Inertial thrust direction (normalized on construction)
        enabled: Whether the engine is currently firing
    """

    def __init__(
        self,
        thrust_n: float,
        exhaust_velocity_ms: float,
        direction: Optional[Vector3D] = None,
        enabled: bool = False
    ) -> None:
        if exhaust_velocity_ms <= 0:
            raise ValueError("Exhaust velocity must be positive")
        self.thrust_n = thrust_n
        self.exhaust_velocity_ms = exhaust_velocity_ms
        self.direction = (direction or Vector3D.unit_x()).normalized()
        self.enabled = enabled

    def __call__(self, state: TrajectoryState) -> StateDerivatives:
        if not self.enabled or state.mass_kg <= 0:
            return StateDerivatives()
        return StateDerivatives(
            acceleration=self.direction * (self.thrust_n / state.mass_kg),
            mass_rate=-self.thrust_n / self.exhaust_velocity_ms,
        )


def combine_models(*models: ForceModel) -> ForceModel:
    """Sum the contributions of several force models."""
    def model(state: TrajectoryState) -> StateDerivatives:
        total = StateDerivatives()
        for contribution in models:
            total = total + contribution(state)
        return total

    return model


def circular_orbit_state(
    radius_m: float,
    mu: float = EARTH_MU,
    time: float = 0.0,
    mass_kg: float = 1000.0
) -> TrajectoryState:
    """
    Create a state on a circular equatorial orbit.

    The object starts on +X moving toward +Y at v = sqrt(mu / r).

    Args:
        radius_m: Orbit radius (meters)
        mu: Gravitational parameter (m^3/s^2)
        time: Time of the state
        mass_kg: Object mass (kg)

    Returns:
        Configured TrajectoryState
    """
    if radius_m <= 0:
        raise ValueError("Orbit radius must be positive")
    speed = math.sqrt(mu / radius_m)
    return TrajectoryState(
        time=time,
        position=Vector3D(radius_m, 0.0, 0.0),
        velocity=Vector3D(0.0, speed, 0.0),
        mass_kg=mass_kg,
    )


def orbital_period(radius_m: float, mu: float = EARTH_MU) -> float:
    """Period of a circular orbit, T = 2*pi*sqrt(r^3/mu) (seconds)."""
    return 2 * math.pi * math.sqrt(radius_m**3 / mu)
