"""Provides the DSCompiler class.

A ``DSCompiler`` describes how the partial derivatives of a function of
``parameters`` free variables, up to total degree ``order``, are laid out in
a flat coefficient array, and implements arithmetic over that layout.

The layout is defined recursively. The array for ``(p, o)`` starts with the
coefficients that do not involve the last variable, laid out as for
``(p - 1, o)``; it continues with the derivatives of the first-order
derivative along the last variable, laid out as for ``(p, o - 1)``. For two
variables at order two this gives::

    index    0    1     2       3     4      5
    value    f  df/dx d2f/dx2 df/dy d2f/dxdy d2f/dy2

All the index tables needed by the product rule and by the chain rule are
derived from the ``(p - 1, o)`` and ``(p, o - 1)`` compilers once and for
all, so arithmetic on coefficient arrays is a matter of gathering and
summing. Compilers are built and cached by
:class:`taylorkit.compiler.registry.CompilerRegistry`; they should not be
instantiated directly.

Examples:
--------
>>> from taylorkit.compiler import get_compiler
>>> compiler = get_compiler(2, 2)
>>> compiler.size
6
>>> compiler.get_partial_derivative_index(1, 1)
4
>>> compiler.get_partial_derivative_orders(5)
(0, 2)
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from scipy.special import factorial

from taylorkit.utils.numerics import ignore_float_errors
from taylorkit.utils.numerics import linear_combination as _accurate_dot
from taylorkit.utils.types import ArrayLike1D, FloatArray, MultiIndex
from taylorkit.utils.validate import (
    DimensionMismatchError,
    OrderTooLargeError,
    check_dimension,
)

__all__ = ["DSCompiler"]

MultiplicationTerm = tuple[int, int, int]
CompositionTerm = tuple[int, ...]


class DSCompiler:
    """Index tables and array operations for one ``(parameters, order)`` pair.

    Attributes:
        free_parameters: Number of free parameters.
        order: Derivation order.
        size: Length of the coefficient arrays, ``C(parameters + order, order)``.
        sizes: ``sizes[p][o]`` is the array size for ``p`` parameters and
            order ``o``, for every ``p <= parameters`` and ``o <= order``.
        derivatives_indirection: Multi-index of each flat offset.
        lower_indirection: Offset in this layout of each offset of the
            ``(parameters, order - 1)`` layout.
        mult_indirection: For each offset, the ``(coefficient, lhs, rhs)``
            terms of the product rule.
        comp_indirection: For each offset, the ``(coefficient, f order,
            g offsets...)`` terms of the chain rule.
    """

    def __init__(
        self,
        parameters: int,
        order: int,
        value_compiler: DSCompiler | None = None,
        derivative_compiler: DSCompiler | None = None,
    ) -> None:
        """Builds the tables from the two prerequisite compilers.

        Args:
            parameters: Number of free parameters.
            order: Derivation order.
            value_compiler: Compiler for ``(parameters - 1, order)``, required
                when ``parameters > 0``.
            derivative_compiler: Compiler for ``(parameters, order - 1)``,
                required when ``order > 0``.

        Raises:
            ValueError: If a required prerequisite is missing or does not have
                the expected dimensions.
        """
        _check_prerequisite(value_compiler, parameters - 1, order, parameters > 0)
        _check_prerequisite(derivative_compiler, parameters, order - 1, order > 0)

        self._parameters = parameters
        self._order = order
        self._sizes = _compile_sizes(parameters, order, value_compiler)
        self._derivatives_indirection = _compile_derivatives_indirection(
            parameters, order, value_compiler, derivative_compiler
        )
        self._lower_indirection = _compile_lower_indirection(
            parameters, order, value_compiler, derivative_compiler
        )
        self._mult_indirection = _compile_multiplication_indirection(
            parameters, order, value_compiler, derivative_compiler, self._lower_indirection
        )
        self._comp_indirection = _compile_composition_indirection(
            parameters,
            order,
            value_compiler,
            derivative_compiler,
            self._sizes,
            self._derivatives_indirection,
        )
        self._prepare_kernels()

    @property
    def free_parameters(self) -> int:
        """Number of free parameters."""
        return self._parameters

    @property
    def order(self) -> int:
        """Derivation order."""
        return self._order

    @property
    def size(self) -> int:
        """Length of the coefficient arrays handled by this compiler."""
        return len(self._derivatives_indirection)

    @property
    def sizes(self) -> tuple[tuple[int, ...], ...]:
        return self._sizes

    @property
    def derivatives_indirection(self) -> tuple[MultiIndex, ...]:
        return self._derivatives_indirection

    @property
    def lower_indirection(self) -> tuple[int, ...]:
        return self._lower_indirection

    @property
    def mult_indirection(self) -> tuple[tuple[MultiplicationTerm, ...], ...]:
        return self._mult_indirection

    @property
    def comp_indirection(self) -> tuple[tuple[CompositionTerm, ...], ...]:
        return self._comp_indirection

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DSCompiler):
            return NotImplemented
        return (self._parameters, self._order) == (other._parameters, other._order)

    def __hash__(self) -> int:
        return hash((DSCompiler, self._parameters, self._order))

    def __repr__(self) -> str:
        return f"DSCompiler(parameters={self._parameters}, order={self._order})"

    def get_partial_derivative_index(self, *orders: int) -> int:
        """Returns the flat offset of a partial derivative.

        Args:
            *orders: Derivation order with respect to each free parameter.

        Returns:
            Offset of the partial derivative in the coefficient arrays.

        Raises:
            DimensionMismatchError: If the number of orders differs from the
                number of free parameters.
            ValueError: If an order is negative.
            OrderTooLargeError: If the orders sum to more than ``order``.
        """
        check_dimension(orders, self._parameters, "number of derivation orders")
        for k, n in enumerate(orders):
            if n < 0:
                raise ValueError(f"derivation order {k} must be non-negative; got {n}.")
        return _partial_derivative_index(self._parameters, self._order, self._sizes, orders)

    def get_partial_derivative_orders(self, index: int) -> MultiIndex:
        """Returns the multi-index stored at flat offset ``index``.

        Raises:
            IndexError: If ``index`` is outside ``[0, size)``.
        """
        if not 0 <= index < self.size:
            raise IndexError(f"index must be in [0, {self.size}); got {index}.")
        return self._derivatives_indirection[index]

    def get_partial_derivative(self, array: ArrayLike1D, *orders: int) -> float:
        """Reads one partial derivative from a coefficient array."""
        array = self.coefficients(array)
        return float(array[self.get_partial_derivative_index(*orders)])

    def check_compatibility(self, other: DSCompiler) -> None:
        """Checks that ``other`` handles the same layout as this compiler.

        Raises:
            DimensionMismatchError: If the free parameters or the orders differ.
        """
        if self._parameters != other._parameters:
            raise DimensionMismatchError(
                other._parameters, self._parameters, "number of free parameters"
            )
        if self._order != other._order:
            raise DimensionMismatchError(other._order, self._order, "derivation order")

    def linear_combination(
        self, coefficients: Sequence[float], arrays: Sequence[ArrayLike1D]
    ) -> FloatArray:
        """Computes ``sum(coefficients[j] * arrays[j])`` element by element.

        Every element is computed with error-free products and a correctly
        rounded sum, so strong cancellation between the terms does not lose
        accuracy.

        Args:
            coefficients: Scale factors, one per array.
            arrays: Coefficient arrays of length ``size``.

        Returns:
            The combined coefficient array.

        Raises:
            ValueError: If no term is given or if the numbers of coefficients
                and arrays differ.
            DimensionMismatchError: If an array has the wrong length.
        """
        if len(coefficients) != len(arrays):
            raise ValueError(
                f"got {len(coefficients)} coefficients for {len(arrays)} arrays."
            )
        if not arrays:
            raise ValueError("a linear combination needs at least one term.")
        stacked = np.stack([self.coefficients(a) for a in arrays])
        result = np.empty(self.size)
        for i in range(self.size):
            result[i] = _accurate_dot(coefficients, stacked[:, i])
        return result

    @ignore_float_errors
    def add(self, lhs: ArrayLike1D, rhs: ArrayLike1D) -> FloatArray:
        """Adds two coefficient arrays."""
        return self.coefficients(lhs) + self.coefficients(rhs)

    @ignore_float_errors
    def subtract(self, lhs: ArrayLike1D, rhs: ArrayLike1D) -> FloatArray:
        """Subtracts ``rhs`` from ``lhs``."""
        return self.coefficients(lhs) - self.coefficients(rhs)

    @ignore_float_errors
    def multiply(self, lhs: ArrayLike1D, rhs: ArrayLike1D) -> FloatArray:
        """Multiplies two coefficient arrays with the generalized Leibniz rule.

        The product is truncated to ``order``: every output coefficient is
        ``sum(c * lhs[a] * rhs[b])`` over the terms of its product rule.

        Args:
            lhs: Left operand.
            rhs: Right operand.

        Returns:
            Coefficient array of the product.
        """
        lhs = self.coefficients(lhs)
        rhs = self.coefficients(rhs)
        terms = self._mult_coefficients * lhs[self._mult_lhs] * rhs[self._mult_rhs]
        return np.bincount(self._mult_rows, weights=terms, minlength=self.size)

    @ignore_float_errors
    def compose(self, operand: ArrayLike1D, f: ArrayLike1D) -> FloatArray:
        """Composes a univariate function with a coefficient array.

        Applies the multivariate Faà di Bruno formula: if ``operand`` holds the
        derivatives of ``g`` and ``f`` holds ``f(g0), f'(g0), ...,
        f^(order)(g0)`` with ``g0 = operand[0]``, the result holds the
        derivatives of ``f(g)``.

        Args:
            operand: Coefficient array of the inner function.
            f: Derivatives of the outer function at the operand value.

        Returns:
            Coefficient array of the composition.

        Raises:
            DimensionMismatchError: If ``f`` does not hold ``order + 1``
                derivatives.
        """
        operand = self.coefficients(operand)
        f = np.asarray(f, dtype=np.float64)
        check_dimension(f, self._order + 1, "number of function derivatives")
        # The trailing 1.0 is the neutral factor for padded terms.
        extended = np.append(operand, 1.0)
        products = self._comp_coefficients * f[self._comp_f]
        for column in self._comp_g.T:
            products = products * extended[column]
        return np.bincount(self._comp_rows, weights=products, minlength=self.size)

    @ignore_float_errors
    def taylor(self, array: ArrayLike1D, deltas: Sequence[float]) -> float:
        """Evaluates the truncated Taylor expansion at ``x0 + deltas``.

        Args:
            array: Coefficient array holding the derivatives at ``x0``.
            deltas: Offset along each free parameter.

        Returns:
            ``sum(c * prod(delta_k ** n_k / n_k!))`` over all coefficients.

        Raises:
            DimensionMismatchError: If the number of deltas differs from the
                number of free parameters.
        """
        array = self.coefficients(array)
        check_dimension(deltas, self._parameters, "number of Taylor deltas")
        deltas = np.asarray(deltas, dtype=np.float64)
        value = np.float64(0.0)
        # Highest orders first, they are usually the smallest terms.
        for i in range(self.size - 1, -1, -1):
            term = array[i]
            for k, n, n_factorial in self._taylor_factors[i]:
                term = term * (deltas[k] ** n / n_factorial)
            value = value + term
        return float(value)

    def coefficients(self, array: ArrayLike1D) -> FloatArray:
        """Returns ``array`` as a float64 coefficient array of this layout.

        Raises:
            DimensionMismatchError: If ``array`` is not one-dimensional or its
                length is not ``size``.
        """
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 1:
            raise DimensionMismatchError(array.ndim, 1, "coefficient array rank")
        check_dimension(array, self.size, "coefficient array length")
        return array

    def _prepare_kernels(self) -> None:
        """Flattens the rule tables into index arrays for numpy gathering."""
        rows, coefficients, lhs, rhs = [], [], [], []
        for i, rule in enumerate(self._mult_indirection):
            for coefficient, a, b in rule:
                rows.append(i)
                coefficients.append(coefficient)
                lhs.append(a)
                rhs.append(b)
        self._mult_rows = np.array(rows, dtype=np.intp)
        self._mult_coefficients = np.array(coefficients, dtype=np.float64)
        self._mult_lhs = np.array(lhs, dtype=np.intp)
        self._mult_rhs = np.array(rhs, dtype=np.intp)

        terms = [(i, term) for i, rule in enumerate(self._comp_indirection) for term in rule]
        width = max(len(term) - 2 for _, term in terms)
        # Unused g slots point to the neutral factor appended after the operand.
        g = np.full((len(terms), width), self.size, dtype=np.intp)
        for row, (_, term) in enumerate(terms):
            g[row, : len(term) - 2] = term[2:]
        self._comp_rows = np.array([i for i, _ in terms], dtype=np.intp)
        self._comp_coefficients = np.array([term[0] for _, term in terms], dtype=np.float64)
        self._comp_f = np.array([term[1] for _, term in terms], dtype=np.intp)
        self._comp_g = g

        self._taylor_factors = tuple(
            tuple(
                (k, n, float(factorial(n)))
                for k, n in enumerate(orders)
                if n > 0
            )
            for orders in self._derivatives_indirection
        )


def _check_prerequisite(
    compiler: DSCompiler | None, parameters: int, order: int, required: bool
) -> None:
    if not required:
        return
    if compiler is None:
        raise ValueError(f"missing prerequisite compiler ({parameters}, {order}).")
    if (compiler.free_parameters, compiler.order) != (parameters, order):
        raise ValueError(
            f"expected prerequisite compiler ({parameters}, {order}), got "
            f"({compiler.free_parameters}, {compiler.order})."
        )


def _compile_sizes(
    parameters: int, order: int, value_compiler: DSCompiler | None
) -> tuple[tuple[int, ...], ...]:
    """Builds the ``sizes[p][o]`` table with the Pascal recursion."""
    if parameters == 0:
        return ((1,) * (order + 1),)
    sizes = list(value_compiler.sizes)
    previous = sizes[parameters - 1]
    row = [1]
    for i in range(order):
        row.append(row[i] + previous[i + 1])
    sizes.append(tuple(row))
    return tuple(sizes)


def _compile_derivatives_indirection(
    parameters: int,
    order: int,
    value_compiler: DSCompiler | None,
    derivative_compiler: DSCompiler | None,
) -> tuple[MultiIndex, ...]:
    """Lists the multi-index of every flat offset."""
    if parameters == 0 or order == 0:
        return ((0,) * parameters,)
    value_part = tuple(orders + (0,) for orders in value_compiler.derivatives_indirection)
    derivative_part = tuple(
        orders[:-1] + (orders[-1] + 1,)
        for orders in derivative_compiler.derivatives_indirection
    )
    return value_part + derivative_part


def _compile_lower_indirection(
    parameters: int,
    order: int,
    value_compiler: DSCompiler | None,
    derivative_compiler: DSCompiler | None,
) -> tuple[int, ...]:
    """Maps the offsets of the ``(parameters, order - 1)`` layout into this one."""
    if parameters == 0 or order <= 1:
        return (0,)
    offset = value_compiler.size
    return value_compiler.lower_indirection + tuple(
        offset + i for i in derivative_compiler.lower_indirection
    )


def _compile_multiplication_indirection(
    parameters: int,
    order: int,
    value_compiler: DSCompiler | None,
    derivative_compiler: DSCompiler | None,
    lower_indirection: tuple[int, ...],
) -> tuple[tuple[MultiplicationTerm, ...], ...]:
    """Builds the product rule of every offset.

    The rules of the value part are those of ``(parameters - 1, order)``.
    The rules of the derivative part come from differentiating each rule of
    ``(parameters, order - 1)`` with respect to the last parameter:
    ``d(f * g) = f * dg + df * g``.
    """
    if parameters == 0 or order == 0:
        return (((1, 0, 0),),)
    value_size = value_compiler.size
    rules = list(value_compiler.mult_indirection)
    for rule in derivative_compiler.mult_indirection:
        derived = []
        for coefficient, lhs, rhs in rule:
            derived.append((coefficient, lower_indirection[lhs], value_size + rhs))
            derived.append((coefficient, value_size + lhs, lower_indirection[rhs]))
        rules.append(_combine_similar_terms(derived))
    return tuple(rules)


def _compile_composition_indirection(
    parameters: int,
    order: int,
    value_compiler: DSCompiler | None,
    derivative_compiler: DSCompiler | None,
    sizes: tuple[tuple[int, ...], ...],
    derivatives_indirection: tuple[MultiIndex, ...],
) -> tuple[tuple[CompositionTerm, ...], ...]:
    """Builds the chain rule of every offset.

    A term ``(c, k, g1, ..., gm)`` stands for ``c * f^(k) * g[g1] * ... *
    g[gm]``. Differentiating it with respect to the last parameter gives one
    term where ``f^(k)`` becomes ``f^(k + 1) * dg/dx_last`` and one term per
    factor ``g[gl]`` where that factor is differentiated.
    """
    if parameters == 0 or order == 0:
        return (((1, 0),),)
    last = parameters - 1
    first_derivative = [0] * parameters
    first_derivative[last] = 1
    g_last = _partial_derivative_index(parameters, order, sizes, first_derivative)

    def derived_index(index: int) -> int:
        orders = list(derivatives_indirection[index])
        orders[last] += 1
        return _partial_derivative_index(parameters, order, sizes, orders)

    rules = list(value_compiler.comp_indirection)
    for rule in derivative_compiler.comp_indirection:
        derived = []
        for term in rule:
            coefficient, f_order = term[0], term[1]
            g = [
                _partial_derivative_index(
                    parameters, order, sizes, derivative_compiler.derivatives_indirection[j]
                )
                for j in term[2:]
            ]
            derived.append((coefficient, f_order + 1, *sorted(g + [g_last])))
            for position in range(len(g)):
                g_derived = list(g)
                g_derived[position] = derived_index(g[position])
                derived.append((coefficient, f_order, *sorted(g_derived)))
        rules.append(_combine_similar_terms(derived))
    return tuple(rules)


def _combine_similar_terms(terms: list[tuple[int, ...]]) -> tuple[tuple[int, ...], ...]:
    """Merges terms that only differ by their leading coefficient.

    Merged terms keep the position of their first occurrence.
    """
    combined: dict[tuple[int, ...], int] = {}
    for term in terms:
        key = term[1:]
        combined[key] = combined.get(key, 0) + term[0]
    return tuple((coefficient, *key) for key, coefficient in combined.items())


def _partial_derivative_index(
    parameters: int,
    order: int,
    sizes: tuple[tuple[int, ...], ...],
    orders: Sequence[int],
) -> int:
    """Walks the recursive layout from the last parameter down to the first."""
    index = 0
    remaining = order
    total = 0
    for i in range(parameters - 1, -1, -1):
        derivative_order = orders[i]
        total += derivative_order
        if total > order:
            raise OrderTooLargeError(total, order)
        for _ in range(derivative_order):
            index += sizes[i][remaining]
            remaining -= 1
    return index
