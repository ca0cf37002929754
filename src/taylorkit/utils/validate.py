"""Validation utilities and error types for taylorkit.

Every check in this module raises immediately; values are never clamped.
The two dedicated error types derive from ``ValueError`` so that callers
which only care about "bad input" can keep catching ``ValueError``.
"""

from __future__ import annotations

from collections.abc import Sized
from numbers import Integral, Real

import numpy as np

__all__ = [
    "DimensionMismatchError",
    "OrderTooLargeError",
    "validate_non_negative_int",
    "validate_positive",
    "check_dimension",
    "check_order_capacity",
]


class DimensionMismatchError(ValueError):
    """Raised when two sizes that must agree do not.

    Typical causes are combining derivative structures built for different
    ``(parameters, order)`` pairs, or passing a coefficient array whose
    length differs from the compiler size.
    """

    def __init__(self, actual: int, expected: int, what: str = "dimension") -> None:
        self.actual = actual
        self.expected = expected
        super().__init__(f"{what} mismatch: got {actual}, expected {expected}.")


class OrderTooLargeError(ValueError):
    """Raised when a derivation order exceeds what a structure can hold."""

    def __init__(self, requested: int, limit: int, *, inclusive: bool = True) -> None:
        self.requested = requested
        self.limit = limit
        bound = "<=" if inclusive else "<"
        super().__init__(
            f"derivation order {requested} is too large, must be {bound} {limit}."
        )


def validate_non_negative_int(value: int, name: str) -> int:
    """Checks that ``value`` is a non-negative integer.

    Args:
        value: Value to check.
        name: Name used in error messages.

    Returns:
        ``value`` converted to a built-in ``int``.

    Raises:
        ValueError: If ``value`` is not an integer or is negative.
    """
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise ValueError(f"{name} must be an integer; got {value!r}.")
    if value < 0:
        raise ValueError(f"{name} must be non-negative; got {value}.")
    return int(value)


def validate_positive(value: float, name: str) -> float:
    """Checks that ``value`` is a strictly positive real number.

    Args:
        value: Value to check.
        name: Name used in error messages.

    Returns:
        ``value`` as a ``float``.

    Raises:
        ValueError: If ``value`` is not real, is NaN or is not positive.
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValueError(f"{name} must be a real number; got {value!r}.")
    if np.isnan(value) or value <= 0:
        raise ValueError(f"{name} must be positive; got {value}.")
    return float(value)


def check_dimension(values: Sized | int, expected: int, what: str = "dimension") -> None:
    """Raises ``DimensionMismatchError`` unless ``values`` has ``expected`` length.

    Args:
        values: A sized container, or directly its length.
        expected: Required length.
        what: Description used in the error message.
    """
    actual = values if isinstance(values, int) else len(values)
    if actual != expected:
        raise DimensionMismatchError(actual, expected, what)


def check_order_capacity(requested: int, limit: int, *, inclusive: bool = True) -> None:
    """Raises ``OrderTooLargeError`` if ``requested`` exceeds ``limit``.

    Args:
        requested: Requested derivation order.
        limit: Largest admissible order (or the first inadmissible one if
            ``inclusive`` is ``False``).
        inclusive: Whether ``limit`` itself is admissible.
    """
    too_large = requested > limit if inclusive else requested >= limit
    if too_large:
        raise OrderTooLargeError(requested, limit, inclusive=inclusive)
