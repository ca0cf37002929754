"""Provides the FiniteDifferencesDifferentiator class.

The differentiator turns an ordinary function of one real variable into a
function of :class:`taylorkit.DerivativeStructure`. The function is sampled
on a regular grid centred on the structure value, the samples are
interpolated by a Newton polynomial and the polynomial is evaluated with
structure arithmetic. Derivatives of the result are therefore derivatives
of the interpolating polynomial, which approximate those of the function.

With ``n`` points the polynomial has degree ``n - 1``, so only orders lower
than ``n`` can be computed. The accuracy depends heavily on the step size:
too large and the polynomial is a poor model of the function, too small and
cancellation in the divided differences destroys the high orders. No
attempt is made to choose either parameter automatically.

Examples:
--------
>>> import numpy as np
>>> from taylorkit import DerivativeStructure, FiniteDifferencesDifferentiator
>>> differentiator = FiniteDifferencesDifferentiator(nb_points=5, step_size=0.01)
>>> sine = differentiator.differentiate(np.sin)
>>> t = DerivativeStructure.variable(1, 2, 0, 0.5)
>>> d2 = sine(t).get_partial_derivative(2)
>>> bool(abs(d2 + np.sin(0.5)) < 1e-6)
True

Vector and matrix valued functions give numpy object arrays of structures:

>>> rotation = differentiator.differentiate_vector(lambda x: [np.cos(x), np.sin(x)])
>>> rotation(t).shape
(2,)
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from taylorkit.derivative_structure import DerivativeStructure
from taylorkit.logger import taylorkit_logger
from taylorkit.utils.numerics import ignore_float_errors
from taylorkit.utils.types import FloatArray
from taylorkit.utils.validate import (
    DimensionMismatchError,
    check_dimension,
    check_order_capacity,
    validate_non_negative_int,
    validate_positive,
)

__all__ = ["FiniteDifferencesDifferentiator", "DifferentiableFunction"]


class FiniteDifferencesDifferentiator:
    """Differentiates functions by polynomial interpolation of regular samples.

    Attributes:
        nb_points: Number of sample points.
        step_size: Distance between consecutive sample points.
        bounds: Optional ``(lower, upper)`` domain of the functions, or
            ``None`` for an unbounded domain.
    """

    def __init__(
        self,
        nb_points: int,
        step_size: float,
        bounds: tuple[float, float] | None = None,
    ) -> None:
        """Initialises the differentiator.

        Args:
            nb_points: Number of sample points, at least 2.
            step_size: Distance between consecutive sample points.
            bounds: Domain ``(lower, upper)`` the samples must stay in. When
                given, the sample grid is shifted away from a bound it would
                cross, so a function is never called outside its domain.

        Raises:
            ValueError: If ``nb_points <= 1``, if ``step_size`` is not
                positive, or if the sample grid does not fit in ``bounds``.
        """
        nb_points = validate_non_negative_int(nb_points, "nb_points")
        if nb_points <= 1:
            raise ValueError(f"nb_points must be larger than 1; got {nb_points}.")
        self._nb_points = nb_points
        self._step_size = validate_positive(step_size, "step_size")
        self._half_sample_span = 0.5 * self._step_size * (nb_points - 1)

        if bounds is None:
            self._center_range = (-np.inf, np.inf)
            self._bounds = None
        else:
            lower, upper = (float(b) for b in bounds)
            if 2 * self._half_sample_span >= upper - lower:
                raise ValueError(
                    f"sample span {2 * self._half_sample_span} does not fit in "
                    f"bounds [{lower}, {upper}]."
                )
            self._center_range = (
                lower + self._half_sample_span,
                upper - self._half_sample_span,
            )
            self._bounds = (lower, upper)

    @property
    def nb_points(self) -> int:
        return self._nb_points

    @property
    def step_size(self) -> float:
        return self._step_size

    @property
    def bounds(self) -> tuple[float, float] | None:
        return self._bounds

    def sample_points(self, t0: float) -> FloatArray:
        """Returns the abscissae at which a function is sampled around ``t0``."""
        low, high = self._center_range
        start = min(max(t0, low), high) - self._half_sample_span
        return start + self._step_size * np.arange(self._nb_points)

    def differentiate(self, function: Callable[[float], object]) -> DifferentiableFunction:
        """Wraps ``function`` so that it accepts derivative structures.

        Args:
            function: Function of one real variable returning a real number
                or an array of real numbers of fixed shape.

        Returns:
            The differentiable wrapper.
        """
        return DifferentiableFunction(function, self)

    def differentiate_vector(self, function: Callable[[float], object]) -> DifferentiableFunction:
        """Same as :meth:`differentiate` for functions returning a 1D array."""
        return DifferentiableFunction(function, self, expected_ndim=1)

    def differentiate_matrix(self, function: Callable[[float], object]) -> DifferentiableFunction:
        """Same as :meth:`differentiate` for functions returning a 2D array."""
        return DifferentiableFunction(function, self, expected_ndim=2)

    @ignore_float_errors
    def interpolate(self, t: DerivativeStructure, y: FloatArray) -> DerivativeStructure:
        """Evaluates the Newton interpolation polynomial of samples at ``t``.

        Args:
            t: Point of evaluation; its value is the centre of the samples
                and its derivatives are propagated through the polynomial.
            y: One sample per point of :meth:`sample_points`.

        Returns:
            The interpolating polynomial evaluated at ``t``.

        Raises:
            OrderTooLargeError: If ``t.order >= nb_points``.
            DimensionMismatchError: If ``y`` does not hold one sample per
                point.
        """
        check_order_capacity(t.order, self._nb_points, inclusive=False)
        n = self._nb_points
        h = self._step_size
        y = np.asarray(y, dtype=np.float64)
        check_dimension(y, n, "number of samples")

        # Top diagonal of the divided differences table, built in place.
        top = np.zeros(n)
        bottom = np.zeros(n)
        for i in range(n):
            bottom[i] = y[i]
            for j in range(1, i + 1):
                bottom[i - j] = (bottom[i - j + 1] - bottom[i - j]) / (j * h)
            top[i] = bottom[0]

        # Newton form: sum of top[i] * prod_(k < i) (t - x_k).
        points = self.sample_points(t.value)
        interpolation = t.create_constant(0.0)
        monomial = t.create_constant(1.0)
        for i in range(n):
            interpolation = interpolation + monomial * top[i]
            monomial = monomial * t.with_value(t.value - points[i])
        return interpolation


class DifferentiableFunction:
    """A sampled function that accepts both real numbers and derivative structures.

    Calling the wrapper with a real number calls the wrapped function
    directly. Calling it with a :class:`DerivativeStructure` returns the
    derivatives estimated by the differentiator; scalar functions give a
    structure, array functions give a numpy object array of structures with
    the shape of the function output.
    """

    def __init__(
        self,
        function: Callable[[float], object],
        differentiator: FiniteDifferencesDifferentiator,
        expected_ndim: int | None = None,
    ) -> None:
        self._function = function
        self._differentiator = differentiator
        self._expected_ndim = expected_ndim

    @property
    def function(self) -> Callable[[float], object]:
        return self._function

    def value(self, x: float) -> object:
        """Evaluates the wrapped function at a real number."""
        return self._function(x)

    def value_ds(self, t: DerivativeStructure) -> DerivativeStructure | np.ndarray:
        """Evaluates the derivatives of the wrapped function at ``t``.

        Args:
            t: Point of evaluation. Its order must be lower than the number
                of sample points.

        Returns:
            A structure for a scalar function, or an object array of
            structures for an array valued function.

        Raises:
            OrderTooLargeError: If ``t.order >= nb_points``. Checked before
                the function is called.
            DimensionMismatchError: If the function output changes size
                between samples.
            ValueError: If the output does not have the expected number of
                dimensions.
        """
        differentiator = self._differentiator
        check_order_capacity(t.order, differentiator.nb_points, inclusive=False)

        points = differentiator.sample_points(t.value)
        taylorkit_logger.debug(
            "Sampling %s at %d points in [%g, %g]",
            getattr(self._function, "__name__", self._function),
            len(points),
            points[0],
            points[-1],
        )
        samples = [np.asarray(self._function(float(x)), dtype=np.float64) for x in points]
        shape = samples[0].shape
        for sample in samples[1:]:
            if sample.shape != shape:
                raise DimensionMismatchError(sample.size, samples[0].size, "sample size")
        if self._expected_ndim is not None and len(shape) != self._expected_ndim:
            raise ValueError(
                f"expected a function with {self._expected_ndim}D output; "
                f"got output of shape {shape}."
            )

        y = np.stack(samples)
        if not shape:
            return differentiator.interpolate(t, y)
        result = np.empty(shape, dtype=object)
        for index in np.ndindex(*shape):
            result[index] = differentiator.interpolate(t, y[(slice(None), *index)])
        return result

    def __call__(self, x):
        if isinstance(x, DerivativeStructure):
            return self.value_ds(x)
        return self.value(x)
