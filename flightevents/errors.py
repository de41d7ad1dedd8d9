"""
Error taxonomy for the event detection engine.

All errors raised by the engine derive from EventError so a propagation
driver can catch the whole family in one place. None of them is retried
by the engine: they abort the current run and carry enough context
(bracket, evaluation time, last resolved event time) for diagnostics.
"""

from __future__ import annotations

from typing import Optional, Tuple


class EventError(Exception):
    """
    Base class for event detection failures.

    Attributes:
        last_event_time: Last event time successfully resolved in the run
            before the failure, filled in by the engine when the error
            crosses EventEngine.scan_step. None if no event was resolved.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.last_event_time: Optional[float] = None


class EvaluationError(EventError):
    """The indicator function could not be evaluated at a state."""

    def __init__(self, message: str, time: Optional[float] = None) -> None:
        super().__init__(message)
        self.time = time


class NonConvergenceError(EventError):
    """
    Root refinement exhausted its iteration budget.

    Attributes:
        bracket: Best known (lower, upper) bracket when refinement gave up.
        iterations: Number of iterations performed.
    """

    def __init__(self, bracket: Tuple[float, float], iterations: int) -> None:
        lower, upper = bracket
        super().__init__(
            f"Root refinement did not converge after {iterations} iterations, "
            f"best bracket [{lower!r}, {upper!r}] (width {abs(upper - lower):.3e} s)"
        )
        self.bracket = (lower, upper)
        self.iterations = iterations


class ContractMismatchError(EventError, TypeError):
    """A detector was used with the wrong state cardinality."""


class ConfigurationError(EventError, ValueError):
    """Invalid detector configuration, rejected at construction time."""
