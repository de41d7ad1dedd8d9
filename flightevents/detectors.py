#!/usr/bin/env python3
"""
Detector Library

Factories for common flight-dynamics events, each one an EventDetector
(or MultiEventDetector) built around a closure:
- date_detector: a given time is reached
- distance_detector: distance to a fixed point crosses a value
- apside_detector: periapsis / apoapsis passages
- channel_detector: mass or an auxiliary channel crosses a level
- eclipse_detector: entry / exit of a cylindrical shadow
- three_bodies_angle_detector: angle between three entities
- mutual_distance_detector: distance between two entities

Every factory accepts a DetectorConfig and the reaction options of
EventDetector (handler, increasing_action, event_filter, name, ...).

Slope conventions:
- apside: increasing = periapsis, decreasing = apoapsis
- eclipse: decreasing = entry into shadow, increasing = exit
- distance / channel / angle: increasing = value rises above the level
"""

from __future__ import annotations

import math
from typing import Any, Optional

from .detector import DetectorConfig, EventDetector
from .errors import ConfigurationError
from .multi import MultiEventDetector
from .physics import EARTH_RADIUS_M, TrajectoryState, Vector3D

MASS_CHANNEL = "mass"


# =============================================================================
# SINGLE-ENTITY DETECTORS
# =============================================================================

def date_detector(
    target_time: float,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> EventDetector:
    """Fires when propagation reaches target_time (g = t - target)."""
    target_time = float(target_time)

    def indicator(state: TrajectoryState) -> float:
        return state.time - target_time

    kwargs.setdefault("name", f"date@{target_time:g}")
    return EventDetector(indicator, config, **kwargs)


def distance_detector(
    center: Vector3D,
    distance: float,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> EventDetector:
    """
    Distance to a fixed point crosses a value.

    Args:
        center: Reference point (m).
        distance: Distance level (m).
    """
    if distance < 0:
        raise ConfigurationError(f"Distance must be non-negative, got {distance}")

    def indicator(state: TrajectoryState) -> float:
        return state.position.distance_to(center) - distance

    kwargs.setdefault("name", f"distance@{distance:g}")
    return EventDetector(indicator, config, **kwargs)


def apside_detector(
    center: Optional[Vector3D] = None,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> EventDetector:
    """Radial velocity sign change: (r - c) . v."""
    center = center or Vector3D.zero()

    def indicator(state: TrajectoryState) -> float:
        return (state.position - center).dot(state.velocity)

    kwargs.setdefault("name", "apside")
    return EventDetector(indicator, config, **kwargs)


def channel_detector(
    channel: str,
    level: float,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> EventDetector:
    """
    A scalar channel crosses a level.

    Args:
        channel: "mass" for the object mass, otherwise the name of an
            auxiliary channel of the state.
        level: Level to detect.
    """
    def indicator(state: TrajectoryState) -> float:
        if channel == MASS_CHANNEL:
            return state.mass_kg - level
        return state.channel(channel) - level

    kwargs.setdefault("name", f"{channel}@{level:g}")
    return EventDetector(indicator, config, **kwargs)


def eclipse_detector(
    sun_direction: Vector3D,
    body_radius: float = EARTH_RADIUS_M,
    center: Optional[Vector3D] = None,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> EventDetector:
    """
    Cylindrical shadow of a spherical body.

    The object is in shadow when it is behind the body (negative
    projection on the sun direction) and closer than body_radius to the
    shadow axis. g = max(axis_distance - R, projection) is continuous and
    negative exactly in shadow.

    Args:
        sun_direction: Direction from the body to the Sun (any norm).
        body_radius: Shadowing body radius (m).
        center: Body center (m), origin by default.
    """
    if body_radius <= 0:
        raise ConfigurationError(f"Body radius must be positive, got {body_radius}")
    if sun_direction.magnitude == 0:
        raise ConfigurationError("Sun direction must be a non-zero vector")
    sun = sun_direction.normalized()
    center = center or Vector3D.zero()

    def indicator(state: TrajectoryState) -> float:
        r = state.position - center
        along = r.dot(sun)
        axis_distance = (r - sun * along).magnitude
        return max(axis_distance - body_radius, along)

    kwargs.setdefault("name", "eclipse")
    return EventDetector(indicator, config, **kwargs)


# =============================================================================
# MULTI-ENTITY DETECTORS
# =============================================================================

def three_bodies_angle_detector(
    first: str,
    second: str,
    third: str,
    angle: float,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> MultiEventDetector:
    """
    Angle first-second-third (vertex at second) crosses a value.

    Args:
        first: Entity id of the first body.
        second: Entity id of the vertex body.
        third: Entity id of the third body.
        angle: Angle level in radians, within [0, pi].
    """
    if not 0.0 <= angle <= math.pi:
        raise ConfigurationError(f"Angle must be within [0, pi], got {angle}")

    def indicator(states) -> float:
        vertex = states[second].position
        return (states[first].position - vertex).angle_to(states[third].position - vertex) - angle

    kwargs.setdefault("name", f"angle({first},{second},{third})@{angle:g}")
    return MultiEventDetector(indicator, (first, second, third), config, **kwargs)


def mutual_distance_detector(
    first: str,
    second: str,
    distance: float,
    config: Optional[DetectorConfig] = None,
    **kwargs: Any,
) -> MultiEventDetector:
    """Distance between two entities crosses a value (m)."""
    if distance < 0:
        raise ConfigurationError(f"Distance must be non-negative, got {distance}")

    def indicator(states) -> float:
        return states[first].position.distance_to(states[second].position) - distance

    kwargs.setdefault("name", f"distance({first},{second})@{distance:g}")
    return MultiEventDetector(indicator, (first, second), config, **kwargs)
