"""Provides the DerivativeStructure class.

A derivative structure holds the value and all the partial derivatives up
to some order of a function of several free parameters, evaluated at one
point. Arithmetic and elementary functions propagate all derivatives at
once, so any expression built from structures carries its exact Taylor
expansion along.

Examples:
--------
Derivatives of ``f(x, y) = x**2 * y`` at ``(2, 0.5)``:

>>> from taylorkit import DerivativeStructure
>>> x = DerivativeStructure.variable(2, 2, 0, 2.0)
>>> y = DerivativeStructure.variable(2, 2, 1, 0.5)
>>> f = x ** 2 * y
>>> f.get_partial_derivative(1, 1)
4.0

Plain numbers mix freely with structures:

>>> g = 3.0 * x - 1.0 / y
>>> g.value
4.0
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from numbers import Integral, Real

import numpy as np

from taylorkit.compiler import functions
from taylorkit.compiler.ds_compiler import DSCompiler
from taylorkit.compiler.registry import CompilerRegistry, get_compiler
from taylorkit.utils.numerics import (
    get_exponent,
    ieee_remainder,
    ignore_float_errors,
)
from taylorkit.utils.numerics import linear_combination as accurate_dot
from taylorkit.utils.types import ArrayLike1D, FloatArray
from taylorkit.utils.validate import (
    DimensionMismatchError,
    check_dimension,
    validate_non_negative_int,
)

__all__ = ["DerivativeStructure"]

# Exponent gap beyond which the smaller hypot operand is negligible.
_HYPOT_NEGLIGIBLE_GAP = 27


class DerivativeStructure:
    """Immutable truncated Taylor expansion of a multivariate function.

    The coefficients are stored in the layout of a
    :class:`taylorkit.compiler.DSCompiler`, element 0 being the value. The
    array is read-only; every operation returns a new structure. Binary
    operations require both operands to share the same number of free
    parameters and the same order, and raise
    :class:`taylorkit.utils.validate.DimensionMismatchError` otherwise.

    Besides the named methods, the Python operators ``+ - * / % **``, unary
    ``-`` and ``abs()`` are supported, with plain real numbers on either
    side.
    """

    __slots__ = ("_compiler", "_data")

    # Makes numpy scalars defer to the reflected operators below.
    __array_ufunc__ = None

    def __init__(
        self,
        parameters: int,
        order: int,
        value: float = 0.0,
        *,
        registry: CompilerRegistry | None = None,
    ) -> None:
        """Creates a constant structure.

        Args:
            parameters: Number of free parameters.
            order: Derivation order.
            value: Value of the constant; all derivatives are zero.
            registry: Registry providing the compiler; the default registry
                when omitted.

        Raises:
            ValueError: If ``parameters`` or ``order`` is negative.
        """
        compiler = get_compiler(parameters, order, registry)
        data = np.zeros(compiler.size)
        data[0] = value
        self._set_state(compiler, data)

    def _set_state(self, compiler: DSCompiler, data: FloatArray) -> None:
        data = np.array(data, dtype=np.float64)
        data.setflags(write=False)
        object.__setattr__(self, "_compiler", compiler)
        object.__setattr__(self, "_data", data)

    @classmethod
    def _from_compiler(cls, compiler: DSCompiler, data: FloatArray) -> DerivativeStructure:
        structure = cls.__new__(cls)
        structure._set_state(compiler, data)
        return structure

    def _derived(self, data: FloatArray) -> DerivativeStructure:
        return self._from_compiler(self._compiler, data)

    @classmethod
    def variable(
        cls,
        parameters: int,
        order: int,
        index: int,
        value: float,
        *,
        registry: CompilerRegistry | None = None,
    ) -> DerivativeStructure:
        """Creates the structure of one of the free parameters.

        Args:
            parameters: Number of free parameters.
            order: Derivation order.
            index: Index of the free parameter, in ``[0, parameters)``.
            value: Value of the parameter.
            registry: Registry providing the compiler.

        Returns:
            A structure with the given value and a unit first derivative
            with respect to parameter ``index`` (when ``order > 0``).

        Raises:
            ValueError: If ``index`` is not in ``[0, parameters)``.
        """
        index = validate_non_negative_int(index, "index")
        if index >= parameters:
            raise ValueError(
                f"variable index must be lower than the number of free parameters "
                f"({parameters}); got {index}."
            )
        compiler = get_compiler(parameters, order, registry)
        data = np.zeros(compiler.size)
        data[0] = value
        if order > 0:
            orders = [0] * parameters
            orders[index] = 1
            data[compiler.get_partial_derivative_index(*orders)] = 1.0
        return cls._from_compiler(compiler, data)

    @classmethod
    def from_derivatives(
        cls,
        parameters: int,
        order: int,
        derivatives: ArrayLike1D,
        *,
        registry: CompilerRegistry | None = None,
    ) -> DerivativeStructure:
        """Creates a structure from a full coefficient array.

        Args:
            parameters: Number of free parameters.
            order: Derivation order.
            derivatives: Value and derivatives, in the compiler layout.
            registry: Registry providing the compiler.

        Returns:
            The structure holding a copy of ``derivatives``.

        Raises:
            DimensionMismatchError: If ``derivatives`` is not one-dimensional
                or its length is not the compiler size.
        """
        compiler = get_compiler(parameters, order, registry)
        if np.ndim(derivatives) != 1:
            raise DimensionMismatchError(np.ndim(derivatives), 1, "derivatives rank")
        check_dimension(derivatives, compiler.size, "number of derivatives")
        return cls._from_compiler(compiler, derivatives)

    @classmethod
    def linear_combination(cls, *terms: float | DerivativeStructure) -> DerivativeStructure:
        """Computes ``a1 * ds1 + a2 * ds2 + ...`` with an accurate sum.

        Args:
            *terms: Alternating scale factors and structures,
                ``a1, ds1, a2, ds2[, a3, ds3[, a4, ds4]]``.

        Returns:
            The combined structure.

        Raises:
            ValueError: If fewer than two pairs are given or the terms do
                not alternate.
            DimensionMismatchError: If the structures are not compatible.
        """
        if len(terms) < 4 or len(terms) % 2:
            raise ValueError("expected at least two (scale, structure) pairs.")
        scales = terms[0::2]
        structures = terms[1::2]
        if not all(isinstance(s, DerivativeStructure) for s in structures):
            raise ValueError("every second term must be a DerivativeStructure.")
        compiler = structures[0]._compiler
        for s in structures[1:]:
            compiler.check_compatibility(s._compiler)
        data = compiler.linear_combination(scales, [s._data for s in structures])
        return cls._from_compiler(compiler, data)

    @staticmethod
    def sum_of_products(
        a: Sequence[float | DerivativeStructure], b: Sequence[float | DerivativeStructure]
    ) -> DerivativeStructure:
        """Computes ``sum(a[i] * b[i])``.

        Factors may be real numbers or structures, at least one of them must
        be a structure. The value is computed with an accurate dot product,
        the derivatives with the plain sum.

        Raises:
            DimensionMismatchError: If ``a`` and ``b`` differ in length.
            ValueError: If no factor is a structure.
        """
        check_dimension(b, len(a), "number of factors")
        structures = [t for t in (*a, *b) if isinstance(t, DerivativeStructure)]
        if not structures:
            raise ValueError("at least one factor must be a DerivativeStructure.")
        result = structures[0].create_constant(0.0)
        for ai, bi in zip(a, b):
            result = result + ai * bi
        data = result.get_all_derivatives()
        data[0] = accurate_dot([_value_of(t) for t in a], [_value_of(t) for t in b])
        return result._derived(data)

    def create_constant(self, value: float) -> DerivativeStructure:
        """Creates a constant compatible with this structure."""
        data = np.zeros(self._compiler.size)
        data[0] = value
        return self._derived(data)

    def with_value(self, value: float) -> DerivativeStructure:
        """Returns a structure with the same derivatives and another value."""
        data = self.get_all_derivatives()
        data[0] = value
        return self._derived(data)

    @property
    def value(self) -> float:
        """Value of the function, element 0 of the coefficients."""
        return float(self._data[0])

    @property
    def free_parameters(self) -> int:
        return self._compiler.free_parameters

    @property
    def order(self) -> int:
        return self._compiler.order

    @property
    def compiler(self) -> DSCompiler:
        return self._compiler

    def get_partial_derivative(self, *orders: int) -> float:
        """Returns one partial derivative.

        Args:
            *orders: Derivation order with respect to each free parameter.

        Raises:
            DimensionMismatchError: If the number of orders is wrong.
            OrderTooLargeError: If the orders sum to more than ``order``.
        """
        return self._compiler.get_partial_derivative(self._data, *orders)

    def get_all_derivatives(self) -> FloatArray:
        """Returns a writable copy of the coefficient array."""
        return self._data.copy()

    def get_exponent(self) -> int:
        """Returns the binary exponent of the value."""
        return get_exponent(self._data[0])

    def flatten(self) -> tuple[int, int, FloatArray]:
        """Returns ``(parameters, order, derivatives)``.

        :meth:`from_derivatives` applied to the triple rebuilds an equal
        structure.
        """
        return self.free_parameters, self.order, self.get_all_derivatives()

    def taylor(self, *deltas: float) -> float:
        """Evaluates the Taylor expansion at the point shifted by ``deltas``."""
        return self._compiler.taylor(self._data, deltas)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivativeStructure):
            return NotImplemented
        return self._compiler == other._compiler and np.array_equal(
            self._data, other._data, equal_nan=True
        )

    def __hash__(self) -> int:
        return hash(
            (self.free_parameters, self.order, tuple(np.nan_to_num(self._data).tolist()))
        )

    def __repr__(self) -> str:
        return (
            f"DerivativeStructure(parameters={self.free_parameters}, "
            f"order={self.order}, derivatives={self._data.tolist()})"
        )

    def __reduce__(self):
        return (_rebuild, (self.free_parameters, self.order, self._data.tolist()))

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable.")

    def _check(self, other: DerivativeStructure) -> None:
        self._compiler.check_compatibility(other._compiler)

    def _apply(self, function: Callable[..., FloatArray], *args) -> DerivativeStructure:
        return self._derived(function(self._compiler, self._data, *args))

    @ignore_float_errors
    def add(self, other: float | DerivativeStructure) -> DerivativeStructure:
        if isinstance(other, DerivativeStructure):
            self._check(other)
            return self._derived(self._compiler.add(self._data, other._data))
        data = self.get_all_derivatives()
        data[0] += other
        return self._derived(data)

    @ignore_float_errors
    def subtract(self, other: float | DerivativeStructure) -> DerivativeStructure:
        if isinstance(other, DerivativeStructure):
            self._check(other)
            return self._derived(self._compiler.subtract(self._data, other._data))
        data = self.get_all_derivatives()
        data[0] -= other
        return self._derived(data)

    @ignore_float_errors
    def multiply(self, other: float | DerivativeStructure) -> DerivativeStructure:
        if isinstance(other, DerivativeStructure):
            self._check(other)
            return self._derived(self._compiler.multiply(self._data, other._data))
        return self._derived(self._data * other)

    @ignore_float_errors
    def divide(self, other: float | DerivativeStructure) -> DerivativeStructure:
        if isinstance(other, DerivativeStructure):
            self._check(other)
            return self._derived(functions.divide(self._compiler, self._data, other._data))
        return self._derived(self._data / np.float64(other))

    def remainder(self, other: float | DerivativeStructure) -> DerivativeStructure:
        """IEEE remainder of the division by ``other``.

        For a real divisor only the value changes: the quotient is locally
        constant, so the derivatives are left as they are.
        """
        if isinstance(other, DerivativeStructure):
            self._check(other)
            return self._derived(functions.remainder(self._compiler, self._data, other._data))
        data = self.get_all_derivatives()
        data[0] = ieee_remainder(data[0], other)
        return self._derived(data)

    def negate(self) -> DerivativeStructure:
        return self._derived(-self._data)

    def abs(self) -> DerivativeStructure:
        """Absolute value, ``self`` if the sign bit of the value is clear."""
        if np.signbit(self._data[0]):
            return self.negate()
        return self

    def copy_sign(self, sign: float | DerivativeStructure) -> DerivativeStructure:
        """Returns ``self`` or ``-self``, whichever has the sign of ``sign``."""
        if np.signbit(self._data[0]) == np.signbit(_value_of(sign)):
            return self
        return self.negate()

    def ceil(self) -> DerivativeStructure:
        return self.create_constant(np.ceil(self._data[0]))

    def floor(self) -> DerivativeStructure:
        return self.create_constant(np.floor(self._data[0]))

    def rint(self) -> DerivativeStructure:
        """Rounds the value to the nearest integer, ties to even."""
        return self.create_constant(np.rint(self._data[0]))

    def round(self) -> DerivativeStructure:
        """Rounds the value to the nearest integer, ties up."""
        return self.create_constant(np.floor(self._data[0] + 0.5))

    def signum(self) -> DerivativeStructure:
        return self.create_constant(np.sign(self._data[0]))

    @ignore_float_errors
    def scalb(self, n: int) -> DerivativeStructure:
        """Multiplies all coefficients by ``2 ** n`` exactly."""
        return self._derived(np.ldexp(self._data, n))

    def to_degrees(self) -> DerivativeStructure:
        return self._derived(self._data * (180.0 / np.pi))

    def to_radians(self) -> DerivativeStructure:
        return self._derived(self._data * (np.pi / 180.0))

    def compose(self, f: ArrayLike1D) -> DerivativeStructure:
        """Applies a univariate function given by its derivatives at the value.

        Args:
            f: ``f(x0), f'(x0), ..., f^(order)(x0)`` with ``x0`` the value of
                this structure.

        Raises:
            DimensionMismatchError: If ``f`` does not hold ``order + 1``
                elements.
        """
        return self._derived(self._compiler.compose(self._data, f))

    def reciprocal(self) -> DerivativeStructure:
        return self._apply(functions.pow_int, -1)

    def sqrt(self) -> DerivativeStructure:
        return self._apply(functions.root_n, 2)

    def cbrt(self) -> DerivativeStructure:
        return self._apply(functions.root_n, 3)

    def root_n(self, n: int) -> DerivativeStructure:
        return self._apply(functions.root_n, n)

    def pow(self, exponent: float | DerivativeStructure) -> DerivativeStructure:
        """Raises to a real, integer or structure power.

        Integer exponents are exact for any sign of the value; a structure
        exponent is computed as ``exp(exponent * log(self))``, so it gives
        NaN when the value is not positive.
        """
        if isinstance(exponent, DerivativeStructure):
            self._check(exponent)
            return self._apply(functions.pow_array, exponent._data)
        if isinstance(exponent, Integral) and not isinstance(exponent, bool):
            return self._apply(functions.pow_int, int(exponent))
        return self._apply(functions.pow_double, float(exponent))

    def rpow(self, a: float) -> DerivativeStructure:
        """Computes ``a ** self`` for a real base ``a``."""
        return self._derived(functions.pow_base(self._compiler, a, self._data))

    def exp(self) -> DerivativeStructure:
        return self._apply(functions.exp)

    def expm1(self) -> DerivativeStructure:
        return self._apply(functions.expm1)

    def log(self) -> DerivativeStructure:
        return self._apply(functions.log)

    def log1p(self) -> DerivativeStructure:
        return self._apply(functions.log1p)

    def log10(self) -> DerivativeStructure:
        return self._apply(functions.log10)

    def cos(self) -> DerivativeStructure:
        return self._apply(functions.cos)

    def sin(self) -> DerivativeStructure:
        return self._apply(functions.sin)

    def tan(self) -> DerivativeStructure:
        return self._apply(functions.tan)

    def acos(self) -> DerivativeStructure:
        return self._apply(functions.acos)

    def asin(self) -> DerivativeStructure:
        return self._apply(functions.asin)

    def atan(self) -> DerivativeStructure:
        return self._apply(functions.atan)

    def cosh(self) -> DerivativeStructure:
        return self._apply(functions.cosh)

    def sinh(self) -> DerivativeStructure:
        return self._apply(functions.sinh)

    def tanh(self) -> DerivativeStructure:
        return self._apply(functions.tanh)

    def acosh(self) -> DerivativeStructure:
        return self._apply(functions.acosh)

    def asinh(self) -> DerivativeStructure:
        return self._apply(functions.asinh)

    def atanh(self) -> DerivativeStructure:
        return self._apply(functions.atanh)

    @staticmethod
    def atan2(y: DerivativeStructure, x: DerivativeStructure) -> DerivativeStructure:
        """Two-argument arc tangent, with signed zeros handled like ``numpy.arctan2``."""
        y._check(x)
        return y._derived(functions.atan2(y._compiler, y._data, x._data))

    @staticmethod
    def hypot(x: DerivativeStructure, y: DerivativeStructure) -> DerivativeStructure:
        """Computes ``sqrt(x**2 + y**2)`` without intermediate overflow or underflow.

        An infinite operand gives a positive infinite constant, otherwise a
        NaN operand gives a NaN constant. When one operand is smaller than
        the other by more than 27 binary orders of magnitude it is neglected.

        Raises:
            DimensionMismatchError: If the structures are not compatible.
        """
        x._check(y)
        x_value, y_value = x._data[0], y._data[0]
        if np.isinf(x_value) or np.isinf(y_value):
            return x.create_constant(np.inf)
        if np.isnan(x_value) or np.isnan(y_value):
            return x.create_constant(np.nan)

        exp_x = x.get_exponent()
        exp_y = y.get_exponent()
        if exp_x > exp_y + _HYPOT_NEGLIGIBLE_GAP:
            return x.abs()
        if exp_y > exp_x + _HYPOT_NEGLIGIBLE_GAP:
            return y.abs()

        # Integer division truncating toward zero.
        middle = int((exp_x + exp_y) / 2)
        scaled_x = x.scalb(-middle)
        scaled_y = y.scalb(-middle)
        scaled_h = (scaled_x * scaled_x + scaled_y * scaled_y).sqrt()
        return scaled_h.scalb(middle)

    def __add__(self, other):
        if isinstance(other, (DerivativeStructure, Real)):
            return self.add(other)
        return NotImplemented

    def __radd__(self, other):
        if isinstance(other, Real):
            return self.add(other)
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, (DerivativeStructure, Real)):
            return self.subtract(other)
        return NotImplemented

    def __rsub__(self, other):
        if isinstance(other, Real):
            return self.negate().add(other)
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, (DerivativeStructure, Real)):
            return self.multiply(other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, Real):
            return self.multiply(other)
        return NotImplemented

    def __truediv__(self, other):
        if isinstance(other, (DerivativeStructure, Real)):
            return self.divide(other)
        return NotImplemented

    def __rtruediv__(self, other):
        if isinstance(other, Real):
            return self.reciprocal().multiply(other)
        return NotImplemented

    def __mod__(self, other):
        if isinstance(other, (DerivativeStructure, Real)):
            return self.remainder(other)
        return NotImplemented

    def __rmod__(self, other):
        if isinstance(other, Real):
            return self.create_constant(other).remainder(self)
        return NotImplemented

    def __pow__(self, exponent):
        if isinstance(exponent, (DerivativeStructure, Real)):
            return self.pow(exponent)
        return NotImplemented

    def __rpow__(self, base):
        if isinstance(base, Real):
            return self.rpow(base)
        return NotImplemented

    def __neg__(self):
        return self.negate()

    def __pos__(self):
        return self

    def __abs__(self):
        return self.abs()


def _value_of(term: float | DerivativeStructure) -> float:
    if isinstance(term, DerivativeStructure):
        return term.value
    return float(term)


def _rebuild(parameters: int, order: int, derivatives: list[float]) -> DerivativeStructure:
    return DerivativeStructure.from_derivatives(parameters, order, derivatives)
