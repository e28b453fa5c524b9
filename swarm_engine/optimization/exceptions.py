"""
Optimization Engine Exception Classes

This module defines the error taxonomy of the optimization core. Every error
carries a message and, where one exists, a suggestion for the caller.

- Descriptor errors are raised synchronously by the scheduler at submission.
- Hyperparameter and dimension errors are raised by strategy steps and turn
  a running job into a FAILED terminal state.
- Evaluation errors are raised by objective functions and handled by the
  retry policy of the population evaluator.
"""

import math
import numbers
from typing import Any, Optional


class OptimizationError(Exception):
    """Base exception class for all optimization-related errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.suggestion:
            return f"{self.message}. Suggestion: {self.suggestion}"
        return self.message


# =============================================================================
# Submission Errors
# =============================================================================

class InvalidDescriptorError(OptimizationError):
    """
    Raised when a job descriptor is malformed.

    Covers malformed bounds, invalid hyperparameters, population sizes below
    the algorithm minimum and objective/bounds dimension disagreement. A job
    whose descriptor raises this error is never created.
    """

    def __init__(self, message: str, field: Optional[str] = None, suggestion: Optional[str] = None):
        self.field = field
        super().__init__(message, suggestion)


class JobNotFoundError(OptimizationError):
    """Raised when a job handle is unknown to the scheduler."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(
            f"Unknown job: {job_id}",
            "Use the handle returned by submit_job on the same scheduler",
        )


# =============================================================================
# Strategy Errors
# =============================================================================

class InvalidHyperparameterError(OptimizationError):
    """
    Raised when an algorithm-specific hyperparameter is outside its range.

    Example: differential evolution requires F in (0, 2] and CR in [0, 1].
    """

    def __init__(
        self,
        algorithm: str,
        name: str,
        value: Any,
        expected: str,
    ):
        self.algorithm = algorithm
        self.name = name
        self.value = value
        self.expected = expected
        message = f"Invalid hyperparameter '{name}' for {algorithm}: {value!r}"
        suggestion = f"'{name}' must be {expected}"
        super().__init__(message, suggestion)


class DimensionMismatchError(OptimizationError):
    """
    Raised when a candidate's dimensionality disagrees with the bounds or
    the objective function.
    """

    def __init__(self, expected: int, actual: int, context: str = "candidate"):
        self.expected = expected
        self.actual = actual
        self.context = context
        message = (
            f"Dimension mismatch for {context}: expected {expected} dimensions, "
            f"got {actual}"
        )
        super().__init__(message)


# =============================================================================
# Runtime Errors
# =============================================================================

class EvaluationFailedError(OptimizationError):
    """
    Raised by an objective function when a candidate cannot be evaluated.

    The evaluator retries the candidate; once retries are exhausted the
    candidate receives the sentinel worst fitness, or the job fails when
    strict evaluation is enabled.
    """

    def __init__(self, reason: str, attempts: Optional[int] = None):
        self.reason = reason
        self.attempts = attempts
        attempt_info = f" after {attempts} attempts" if attempts is not None else ""
        super().__init__(f"Evaluation failed{attempt_info}: {reason}")


# =============================================================================
# Utility Functions
# =============================================================================

def validate_range(
    algorithm: str,
    name: str,
    value: Any,
    low: float,
    high: float,
    low_inclusive: bool = True,
    high_inclusive: bool = True,
) -> float:
    """Validate that a numeric hyperparameter lies in the given interval."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidHyperparameterError(algorithm, name, value, "a number") from None

    left = "[" if low_inclusive else "("
    right = "]" if high_inclusive else ")"
    expected = f"in {left}{low}, {high}{right}"

    if math.isnan(number):
        raise InvalidHyperparameterError(algorithm, name, value, expected)
    if number < low or (number == low and not low_inclusive):
        raise InvalidHyperparameterError(algorithm, name, value, expected)
    if number > high or (number == high and not high_inclusive):
        raise InvalidHyperparameterError(algorithm, name, value, expected)
    return number


def is_integer_value(value: Any) -> bool:
    """True for Python and numpy integers, False for booleans."""
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def validate_positive_int(algorithm: str, name: str, value: Any, minimum: int = 1) -> int:
    """Validate that a hyperparameter is an integer >= minimum."""
    is_integral = is_integer_value(value) or (isinstance(value, float) and value.is_integer())
    if isinstance(value, bool) or not is_integral or int(value) < minimum:
        raise InvalidHyperparameterError(algorithm, name, value, f"an integer >= {minimum}")
    return int(value)


def validate_choice(algorithm: str, name: str, value: Any, choices: tuple) -> str:
    """Validate that a hyperparameter is one of the allowed choices."""
    if value not in choices:
        raise InvalidHyperparameterError(algorithm, name, value, f"one of {', '.join(choices)}")
    return value


def validate_dimension(expected: int, actual: int, context: str = "candidate") -> None:
    """Validate that two dimensionalities agree."""
    if expected != actual:
        raise DimensionMismatchError(expected, actual, context)
