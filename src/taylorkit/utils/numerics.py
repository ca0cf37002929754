"""Numerical utilities.

Scalar helpers that reproduce IEEE-754 semantics the standard ``math``
module does not offer (or offers with exceptions instead of NaN), plus an
accurate dot product used by linear combinations of coefficient arrays.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from functools import wraps
from typing import TypeVar

import numpy as np

__all__ = [
    "ignore_float_errors",
    "ieee_remainder",
    "get_exponent",
    "linear_combination",
]

T = TypeVar("T")

# Veltkamp splitting constant 2**27 + 1.
_SPLIT_FACTOR = 134217729.0

_MIN_EXPONENT = -1022
_MAX_EXPONENT = 1023


def ignore_float_errors(fn: Callable[..., T]) -> Callable[..., T]:
    """Runs ``fn`` with numpy floating point warnings silenced.

    Inside the differentiation engine a zero divisor, an overflow or a log
    of a negative number is not an error: the resulting infinities and NaNs
    are meant to flow through the coefficients like in plain double
    arithmetic.

    Args:
        fn: Function to wrap.

    Returns:
        The wrapped function.
    """
    @wraps(fn)
    def wrapped(*args, **kwargs):
        with np.errstate(all="ignore"):
            return fn(*args, **kwargs)

    return wrapped


def ieee_remainder(x: float, y: float) -> np.float64:
    """Computes the IEEE-754 remainder ``x - n * y`` with ``n`` the nearest integer to ``x / y``.

    Unlike :func:`math.remainder` this never raises: an infinite dividend, a
    zero divisor or a NaN operand give NaN.

    Args:
        x: Dividend.
        y: Divisor.

    Returns:
        The remainder as a ``numpy.float64``.
    """
    if np.isnan(x) or np.isnan(y) or np.isinf(x) or y == 0:
        return np.float64(np.nan)
    return np.float64(math.remainder(float(x), float(y)))


def get_exponent(x: float) -> int:
    """Returns the unbiased binary exponent of ``x``.

    For a normal number this is ``floor(log2(|x|))``. Zeros and subnormal
    numbers give ``-1023``, infinities and NaN give ``1024``.

    Args:
        x: A floating point number.

    Returns:
        The unbiased exponent.
    """
    if not np.isfinite(x):
        return _MAX_EXPONENT + 1
    if x == 0:
        return _MIN_EXPONENT - 1
    exponent = math.frexp(float(x))[1] - 1
    return max(exponent, _MIN_EXPONENT - 1)


def _split(a: float) -> tuple[float, float]:
    """Splits ``a`` into two halves whose pairwise products are exact."""
    c = _SPLIT_FACTOR * a
    high = c - (c - a)
    return high, a - high


def _two_product(a: float, b: float) -> tuple[float, float]:
    """Returns ``(p, e)`` with ``p = fl(a * b)`` and ``a * b = p + e`` exactly."""
    p = a * b
    a_high, a_low = _split(a)
    b_high, b_low = _split(b)
    e = ((a_high * b_high - p) + a_high * b_low + a_low * b_high) + a_low * b_low
    return p, e


def linear_combination(a: Sequence[float], b: Sequence[float]) -> float:
    """Computes ``sum(a[i] * b[i])`` with a correctly rounded result.

    Each product is split into its rounded value and its exact rounding
    error, and all the pieces are summed with :func:`math.fsum`. This keeps
    full accuracy even when the terms cancel almost completely. If any
    intermediate is not finite the plain sum of products is returned, so
    infinities and NaN behave as in naive arithmetic.

    Args:
        a: First factors.
        b: Second factors, same length as ``a``.

    Returns:
        The dot product as a Python float.

    Raises:
        ValueError: If ``a`` and ``b`` have different lengths.
    """
    if len(a) != len(b):
        raise ValueError(f"length mismatch: {len(a)} factors vs {len(b)} factors.")

    naive = float(sum(float(ai) * float(bi) for ai, bi in zip(a, b)))
    if not math.isfinite(naive):
        return naive

    pieces: list[float] = []
    for ai, bi in zip(a, b):
        p, e = _two_product(float(ai), float(bi))
        pieces.append(p)
        pieces.append(e)
    if not all(math.isfinite(v) for v in pieces):
        return naive
    return math.fsum(pieces)
