"""Elementary functions on coefficient arrays.

Every function takes the compiler handling the arrays and one or two
operand arrays, and returns a new array. Univariate functions compute the
derivatives ``f(x0), f'(x0), ..., f^(order)(x0)`` of the elementary function
at the operand value in closed form, then hand them to
:meth:`DSCompiler.compose` for the chain rule.

No function raises on domain errors: ``log`` of a negative value, division
by zero or overflow produce NaN and infinities exactly as floating point
arithmetic does.
"""

from __future__ import annotations

import numpy as np

from taylorkit.compiler.ds_compiler import DSCompiler
from taylorkit.utils.numerics import ieee_remainder, ignore_float_errors
from taylorkit.utils.types import ArrayLike1D, FloatArray

__all__ = [
    "divide",
    "remainder",
    "pow_double",
    "pow_int",
    "pow_array",
    "pow_base",
    "root_n",
    "exp",
    "expm1",
    "log",
    "log1p",
    "log10",
    "cos",
    "sin",
    "tan",
    "acos",
    "asin",
    "atan",
    "atan2",
    "cosh",
    "sinh",
    "tanh",
    "acosh",
    "asinh",
    "atanh",
]


@ignore_float_errors
def divide(compiler: DSCompiler, lhs: ArrayLike1D, rhs: ArrayLike1D) -> FloatArray:
    """Divides ``lhs`` by ``rhs`` as ``lhs * rhs ** -1``."""
    return compiler.multiply(lhs, pow_int(compiler, rhs, -1))


@ignore_float_errors
def remainder(compiler: DSCompiler, lhs: ArrayLike1D, rhs: ArrayLike1D) -> FloatArray:
    """Computes the IEEE remainder of ``lhs`` by ``rhs``.

    With ``r = lhs0 - k * rhs0`` and ``k`` the integer nearest to
    ``lhs0 / rhs0``, the quotient is locally constant, so the derivatives
    are those of ``lhs - k * rhs``.
    """
    lhs = compiler.coefficients(lhs)
    rhs = compiler.coefficients(rhs)
    rem = ieee_remainder(lhs[0], rhs[0])
    k = np.rint((lhs[0] - rem) / rhs[0])
    result = lhs - k * rhs
    result[0] = rem
    return result


def _scale_by_falling_factorial(function: FloatArray, exponent: float) -> None:
    # f^(i) of x**e is e * (e - 1) * ... * (e - i + 1) * x**(e - i)
    coefficient = exponent
    for i in range(1, len(function)):
        function[i] *= coefficient
        coefficient *= exponent - i


@ignore_float_errors
def pow_double(compiler: DSCompiler, operand: ArrayLike1D, p: float) -> FloatArray:
    """Raises an array to a real power ``p``."""
    operand = compiler.coefficients(operand)
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    xk = np.power(x, p - order)
    for i in range(order, 0, -1):
        function[i] = xk
        xk = xk * x
    function[0] = xk
    _scale_by_falling_factorial(function, p)
    return compiler.compose(operand, function)


@ignore_float_errors
def pow_int(compiler: DSCompiler, operand: ArrayLike1D, n: int) -> FloatArray:
    """Raises an array to an integer power ``n``.

    ``n == 0`` gives the constant 1 whatever the operand, including NaN.
    Positive powers have vanishing derivatives above order ``n``.
    """
    operand = compiler.coefficients(operand)
    if n == 0:
        result = np.zeros(compiler.size)
        result[0] = 1.0
        return result

    order = compiler.order
    x = operand[0]
    function = np.zeros(order + 1)
    if n > 0:
        max_order = min(order, n)
        xk = np.power(x, n - max_order)
        for i in range(max_order, 0, -1):
            function[i] = xk
            xk = xk * x
        function[0] = xk
    else:
        inv = 1.0 / x
        xk = np.power(inv, -n)
        for i in range(order + 1):
            function[i] = xk
            xk = xk * inv
    _scale_by_falling_factorial(function, float(n))
    return compiler.compose(operand, function)


@ignore_float_errors
def pow_array(compiler: DSCompiler, base: ArrayLike1D, exponent: ArrayLike1D) -> FloatArray:
    """Raises an array to an array power as ``exp(exponent * log(base))``."""
    log_base = log(compiler, base)
    return exp(compiler, compiler.multiply(log_base, exponent))


@ignore_float_errors
def pow_base(compiler: DSCompiler, a: float, operand: ArrayLike1D) -> FloatArray:
    """Raises a real number ``a`` to an array power.

    For ``a == 0`` the derivatives are those of the limit function: at
    ``x == 0`` the value is 1 with infinite derivatives of alternating sign,
    for ``x < 0`` everything is NaN and for ``x > 0`` everything is zero.
    """
    operand = compiler.coefficients(operand)
    order = compiler.order
    x = operand[0]
    a = np.float64(a)
    function = np.zeros(order + 1)
    if a == 0:
        if x == 0:
            function[0] = 1.0
            infinity = np.inf
            for i in range(1, order + 1):
                infinity = -infinity
                function[i] = infinity
        elif x < 0:
            function[:] = np.nan
    else:
        function[0] = np.power(a, x)
        log_a = np.log(a)
        for i in range(1, order + 1):
            function[i] = log_a * function[i - 1]
    return compiler.compose(operand, function)


@ignore_float_errors
def root_n(compiler: DSCompiler, operand: ArrayLike1D, n: int) -> FloatArray:
    """Computes the ``n``-th root of an array.

    Square and cube roots use ``sqrt`` and ``cbrt``, so the cube root of a
    negative value is real.

    Raises:
        ValueError: If ``n`` is not a positive integer.
    """
    if n < 1:
        raise ValueError(f"root order must be a positive integer; got {n}.")
    operand = compiler.coefficients(operand)
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    if n == 2:
        function[0] = np.sqrt(x)
        xk = 0.5 / function[0]
    elif n == 3:
        function[0] = np.cbrt(x)
        xk = 1.0 / (3.0 * function[0] * function[0])
    else:
        function[0] = np.power(x, 1.0 / n)
        xk = 1.0 / (n * np.power(function[0], n - 1))
    n_reciprocal = 1.0 / n
    x_reciprocal = 1.0 / x
    for i in range(1, order + 1):
        function[i] = xk
        xk = xk * (x_reciprocal * (n_reciprocal - i))
    return compiler.compose(operand, function)


@ignore_float_errors
def exp(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    function = np.full(compiler.order + 1, np.exp(operand[0]))
    return compiler.compose(operand, function)


@ignore_float_errors
def expm1(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Computes ``exp(x) - 1``, accurate for values near zero."""
    operand = compiler.coefficients(operand)
    function = np.full(compiler.order + 1, np.exp(operand[0]))
    function[0] = np.expm1(operand[0])
    return compiler.compose(operand, function)


def _logarithm(
    compiler: DSCompiler, operand: FloatArray, value: float, first: float, inv: float
) -> FloatArray:
    # f^(i) = (-1)^(i-1) (i-1)! * first * inv^(i-1), with first = f'
    order = compiler.order
    function = np.empty(order + 1)
    function[0] = value
    xk = first
    for i in range(1, order + 1):
        function[i] = xk
        xk = xk * (-i * inv)
    return compiler.compose(operand, function)


@ignore_float_errors
def log(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Natural logarithm."""
    operand = compiler.coefficients(operand)
    x = operand[0]
    inv = 1.0 / x
    return _logarithm(compiler, operand, np.log(x), inv, inv)


@ignore_float_errors
def log1p(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Computes ``log(1 + x)``, accurate for values near zero."""
    operand = compiler.coefficients(operand)
    x = operand[0]
    inv = 1.0 / (1.0 + x)
    return _logarithm(compiler, operand, np.log1p(x), inv, inv)


@ignore_float_errors
def log10(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Base 10 logarithm."""
    operand = compiler.coefficients(operand)
    x = operand[0]
    inv = 1.0 / x
    return _logarithm(compiler, operand, np.log10(x), inv / np.log(10.0), inv)


def _periodic(value: float, derivative: float, sign: float, order: int) -> FloatArray:
    # f'' = sign * f for sin, cos (sign -1) and sinh, cosh (sign +1)
    function = np.empty(order + 1)
    function[0] = value
    if order > 0:
        function[1] = derivative
        for i in range(2, order + 1):
            function[i] = sign * function[i - 2]
    return function


@ignore_float_errors
def cos(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    function = _periodic(np.cos(x), -np.sin(x), -1.0, compiler.order)
    return compiler.compose(operand, function)


@ignore_float_errors
def sin(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    function = _periodic(np.sin(x), np.cos(x), -1.0, compiler.order)
    return compiler.compose(operand, function)


@ignore_float_errors
def cosh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    function = _periodic(np.cosh(x), np.sinh(x), 1.0, compiler.order)
    return compiler.compose(operand, function)


@ignore_float_errors
def sinh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    function = _periodic(np.sinh(x), np.cosh(x), 1.0, compiler.order)
    return compiler.compose(operand, function)


@ignore_float_errors
def tan(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Tangent.

    The derivatives are polynomials in ``t = tan(x)``: ``P_0 = t`` and
    ``P_n = (1 + t^2) P_(n-1)'``. Coefficients are updated in place, only
    those with the parity of ``n + 1`` are non-zero.
    """
    operand = compiler.coefficients(operand)
    order = compiler.order
    function = np.empty(order + 1)
    t = np.tan(operand[0])
    function[0] = t
    if order > 0:
        p = np.zeros(order + 2)
        p[1] = 1.0
        t2 = t * t
        for n in range(1, order + 1):
            v = 0.0
            p[n + 1] = n * p[n]
            for k in range(n + 1, -1, -2):
                v = v * t2 + p[k]
                if k > 2:
                    p[k - 2] = (k - 1) * p[k - 1] + (k - 3) * p[k - 3]
                elif k == 2:
                    p[0] = p[1]
            if n % 2 == 0:
                v = v * t
            function[n] = v
    return compiler.compose(operand, function)


@ignore_float_errors
def tanh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Hyperbolic tangent, with ``P_n = (1 - t^2) P_(n-1)'`` and ``t = tanh(x)``."""
    operand = compiler.coefficients(operand)
    order = compiler.order
    function = np.empty(order + 1)
    t = np.tanh(operand[0])
    function[0] = t
    if order > 0:
        p = np.zeros(order + 2)
        p[1] = 1.0
        t2 = t * t
        for n in range(1, order + 1):
            v = 0.0
            p[n + 1] = -n * p[n]
            for k in range(n + 1, -1, -2):
                v = v * t2 + p[k]
                if k > 2:
                    p[k - 2] = (k - 1) * p[k - 1] - (k - 3) * p[k - 3]
                elif k == 2:
                    p[0] = p[1]
            if n % 2 == 0:
                v = v * t
            function[n] = v
    return compiler.compose(operand, function)


def _arc_sine_like(
    compiler: DSCompiler, operand: FloatArray, value: float, first_coefficient: float
) -> FloatArray:
    """Shared derivatives of ``acos`` and ``asin``.

    ``f^(n) = P_n(x) / (1 - x^2)^((2n - 1) / 2)`` with ``P_1 = first_coefficient``
    and ``P_n = (1 - x^2) P_(n-1)' + (2n - 3) x P_(n-1)``.
    """
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    function[0] = value
    if order > 0:
        p = np.zeros(order)
        p[0] = first_coefficient
        x2 = x * x
        f = 1.0 / (1.0 - x2)
        coefficient = np.sqrt(f)
        function[1] = coefficient * p[0]
        for n in range(2, order + 1):
            v = 0.0
            p[n - 1] = (n - 1) * p[n - 2]
            for k in range(n - 1, -1, -2):
                v = v * x2 + p[k]
                if k > 2:
                    p[k - 2] = (k - 1) * p[k - 1] + (2 * n - k) * p[k - 3]
                elif k == 2:
                    p[0] = p[1]
            if n % 2 == 0:
                v = v * x
            coefficient = coefficient * f
            function[n] = coefficient * v
    return compiler.compose(operand, function)


@ignore_float_errors
def acos(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    return _arc_sine_like(compiler, operand, np.arccos(operand[0]), -1.0)


@ignore_float_errors
def asin(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    return _arc_sine_like(compiler, operand, np.arcsin(operand[0]), 1.0)


@ignore_float_errors
def atan(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Arc tangent.

    ``f^(n) = Q_n(x) / (1 + x^2)^n`` with ``Q_1 = 1`` and
    ``Q_n = (1 + x^2) Q_(n-1)' - 2(n - 1) x Q_(n-1)``.
    """
    operand = compiler.coefficients(operand)
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    function[0] = np.arctan(x)
    if order > 0:
        q = np.zeros(order)
        q[0] = 1.0
        x2 = x * x
        f = 1.0 / (1.0 + x2)
        coefficient = f
        function[1] = coefficient * q[0]
        for n in range(2, order + 1):
            v = 0.0
            q[n - 1] = -n * q[n - 2]
            for k in range(n - 1, -1, -2):
                v = v * x2 + q[k]
                if k > 2:
                    q[k - 2] = (k - 1) * q[k - 1] + (k - 1 - 2 * n) * q[k - 3]
                elif k == 2:
                    q[0] = q[1]
            if n % 2 == 0:
                v = v * x
            coefficient = coefficient * f
            function[n] = coefficient * v
    return compiler.compose(operand, function)


@ignore_float_errors
def atan2(compiler: DSCompiler, y: ArrayLike1D, x: ArrayLike1D) -> FloatArray:
    """Two-argument arc tangent of ``y / x``.

    The derivatives use the half angle formulas ``2 atan(y / (r + x))`` for
    ``x >= 0`` and ``pi - 2 atan(y / (r - x))`` otherwise, with
    ``r = sqrt(x^2 + y^2)``. The value itself is recomputed with
    :func:`numpy.arctan2` so that signed zeros are handled properly.
    """
    y = compiler.coefficients(y)
    x = compiler.coefficients(x)
    r = root_n(compiler, compiler.add(compiler.multiply(x, x), compiler.multiply(y, y)), 2)
    if x[0] >= 0:
        t = atan(compiler, divide(compiler, y, compiler.add(r, x)))
        result = 2.0 * t
    else:
        t = atan(compiler, divide(compiler, y, compiler.subtract(r, x)))
        result = -2.0 * t
        result[0] = (-np.pi if t[0] <= 0 else np.pi) - 2.0 * t[0]
    result[0] = np.arctan2(y[0], x[0])
    return result


def _inverse_hyperbolic(
    compiler: DSCompiler, operand: FloatArray, value: float, f: float, acosh_signs: bool
) -> FloatArray:
    """Shared derivatives of ``acosh`` and ``asinh``.

    ``f^(n) = P_n(x) / (x^2 -/+ 1)^((2n - 1) / 2)`` with ``P_1 = 1``.
    """
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    function[0] = value
    if order > 0:
        p = np.zeros(order)
        p[0] = 1.0
        x2 = x * x
        coefficient = np.sqrt(f)
        function[1] = coefficient * p[0]
        for n in range(2, order + 1):
            v = 0.0
            p[n - 1] = (1 - n) * p[n - 2]
            for k in range(n - 1, -1, -2):
                v = v * x2 + p[k]
                if k > 2:
                    if acosh_signs:
                        p[k - 2] = (1 - k) * p[k - 1] + (k - 2 * n) * p[k - 3]
                    else:
                        p[k - 2] = (k - 1) * p[k - 1] + (k - 2 * n) * p[k - 3]
                elif k == 2:
                    p[0] = -p[1] if acosh_signs else p[1]
            if n % 2 == 0:
                v = v * x
            coefficient = coefficient * f
            function[n] = coefficient * v
    return compiler.compose(operand, function)


@ignore_float_errors
def acosh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    return _inverse_hyperbolic(
        compiler, operand, np.arccosh(x), 1.0 / (x * x - 1.0), acosh_signs=True
    )


@ignore_float_errors
def asinh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    operand = compiler.coefficients(operand)
    x = operand[0]
    return _inverse_hyperbolic(
        compiler, operand, np.arcsinh(x), 1.0 / (x * x + 1.0), acosh_signs=False
    )


@ignore_float_errors
def atanh(compiler: DSCompiler, operand: ArrayLike1D) -> FloatArray:
    """Inverse hyperbolic tangent.

    ``f^(n) = Q_n(x) / (1 - x^2)^n`` with ``Q_1 = 1`` and
    ``Q_n = (1 - x^2) Q_(n-1)' + 2(n - 1) x Q_(n-1)``.
    """
    operand = compiler.coefficients(operand)
    order = compiler.order
    x = operand[0]
    function = np.empty(order + 1)
    function[0] = np.arctanh(x)
    if order > 0:
        q = np.zeros(order)
        q[0] = 1.0
        x2 = x * x
        f = 1.0 / (1.0 - x2)
        coefficient = f
        function[1] = coefficient * q[0]
        for n in range(2, order + 1):
            v = 0.0
            q[n - 1] = n * q[n - 2]
            for k in range(n - 1, -1, -2):
                v = v * x2 + q[k]
                if k > 2:
                    q[k - 2] = (k - 1) * q[k - 1] + (2 * n - k + 1) * q[k - 3]
                elif k == 2:
                    q[0] = q[1]
            if n % 2 == 0:
                v = v * x
            coefficient = coefficient * f
            function[n] = coefficient * v
    return compiler.compose(operand, function)
