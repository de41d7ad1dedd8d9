#!/usr/bin/env python3
"""
Bracketed Root Refinement

Locates the instant at which an indicator changes sign inside a bracket:
- Pegasus method (regula falsi with scaled retained endpoint)
- Bisection fallback when an iteration fails to halve the bracket
- Side selection so the returned time lies on a known side of the root

The side selection is what makes detection direction-aware: a forward
scan asks for the RIGHT end of the final bracket (the indicator already
has its post-crossing sign there), a backward scan asks for the LEFT end.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable

from .errors import NonConvergenceError

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Relative accuracy floor so large epoch times can still converge
DEFAULT_RELATIVE_ACCURACY = 1.0e-14


class AllowedSide(Enum):
    """Which end of the final bracket the solver returns."""
    ANY = auto()
    LEFT = auto()
    RIGHT = auto()


def _pick(x0: float, x1: float, side: AllowedSide) -> float:
    if side is AllowedSide.LEFT:
        return min(x0, x1)
    if side is AllowedSide.RIGHT:
        return max(x0, x1)
    return x1


def solve(
    f: Callable[[float], float],
    lower: float,
    upper: float,
    threshold: float,
    max_iterations: int,
    side: AllowedSide = AllowedSide.ANY,
    relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY,
) -> float:
    """
    Refine a sign change of f inside [lower, upper].

    Args:
        f: Scalar function of time.
        lower: One end of the bracket (order does not matter).
        upper: Other end of the bracket.
        threshold: Absolute bracket width at which refinement stops (s).
        max_iterations: Maximum number of function evaluations in the loop.
        side: End of the final bracket to return. An exact zero is
            returned as is whatever the side.
        relative_accuracy: Relative width floor, scaled by |t|.

    Returns:
        Time within threshold of the root, on the requested side.

    Raises:
        ValueError: If the bracket does not enclose a sign change or the
            threshold is not positive.
        NonConvergenceError: If the budget is exhausted first.
    """
    if not threshold > 0:
        raise ValueError(f"Threshold must be positive, got {threshold!r}")
    if lower > upper:
        lower, upper = upper, lower

    x0, x1 = lower, upper
    f0, f1 = f(x0), f(x1)
    if f0 == 0.0:
        return x0
    if f1 == 0.0:
        return x1
    if (f0 > 0) == (f1 > 0):
        raise ValueError(
            f"Function values at bracket ends [{lower!r}, {upper!r}] "
            f"have the same sign ({f0!r}, {f1!r})"
        )

    # f0 and f1 always have opposite signs, x1 is the latest estimate
    width = x1 - x0
    force_bisection = False
    for iteration in range(1, max_iterations + 1):
        if abs(x1 - x0) < max(threshold, relative_accuracy * abs(x1)):
            return _pick(x0, x1, side)

        low, high = min(x0, x1), max(x0, x1)
        if force_bisection:
            x = 0.5 * (x0 + x1)
        else:
            x = x1 - f1 * (x1 - x0) / (f1 - f0)
            if not low < x < high:
                x = 0.5 * (x0 + x1)

        fx = f(x)
        if fx == 0.0:
            logger.debug("Exact root at t=%r after %d iterations", x, iteration)
            return x

        if (fx > 0) != (f1 > 0):
            x0, f0 = x1, f1
        else:
            # Pegasus: shrink the retained endpoint value
            f0 *= f1 / (f1 + fx)
        x1, f1 = x, fx

        new_width = abs(x1 - x0)
        force_bisection = new_width > 0.5 * abs(width)
        width = new_width

    if abs(x1 - x0) < max(threshold, relative_accuracy * abs(x1)):
        return _pick(x0, x1, side)
    raise NonConvergenceError((min(x0, x1), max(x0, x1)), max_iterations)
