"""Tests for taylorkit.derivative_structure."""

import math
import pickle

import numpy as np
import pytest

from taylorkit import DerivativeStructure
from taylorkit.utils.validate import DimensionMismatchError, OrderTooLargeError


def test_constant_and_variable(registry):
    """Tests the constant and variable factories."""
    c = DerivativeStructure(2, 2, 4.5, registry=registry)
    np.testing.assert_array_equal(c.get_all_derivatives(), [4.5, 0, 0, 0, 0, 0])
    x = DerivativeStructure.variable(2, 2, 1, 3.0, registry=registry)
    np.testing.assert_array_equal(x.get_all_derivatives(), [3.0, 0, 0, 1.0, 0, 0])
    assert x.value == 3.0
    assert x.free_parameters == 2
    assert x.order == 2
    assert x.compiler is registry.get_compiler(2, 2)


def test_variable_with_order_zero_has_no_derivative():
    """Tests that an order 0 variable only holds its value."""
    x = DerivativeStructure.variable(3, 0, 2, 1.5)
    np.testing.assert_array_equal(x.get_all_derivatives(), [1.5])


@pytest.mark.parametrize("index", [2, 3, -1])
def test_variable_index_out_of_range(index):
    """Tests that the variable index must be a valid parameter index."""
    with pytest.raises(ValueError):
        DerivativeStructure.variable(2, 1, index, 1.0)


def test_negative_dimensions_rejected():
    """Tests that negative parameters or order are rejected."""
    with pytest.raises(ValueError):
        DerivativeStructure(-1, 1)
    with pytest.raises(ValueError):
        DerivativeStructure(1, -1)


def test_from_derivatives_checks_length():
    """Tests that from_derivatives needs exactly size coefficients."""
    ds = DerivativeStructure.from_derivatives(2, 1, [1.0, 2.0, 3.0])
    assert ds.get_partial_derivative(0, 1) == 3.0
    with pytest.raises(DimensionMismatchError):
        DerivativeStructure.from_derivatives(2, 1, [1.0, 2.0])


def test_from_derivatives_rejects_nested_arrays():
    """Tests that a 2D array is rejected even if its first axis has the right length."""
    with pytest.raises(DimensionMismatchError, match="rank"):
        DerivativeStructure.from_derivatives(1, 1, [[1.0, 2.0], [3.0, 4.0]])
    with pytest.raises(DimensionMismatchError):
        DerivativeStructure.from_derivatives(0, 0, 1.0)


def test_get_partial_derivative_errors():
    """Tests partial derivative lookups with invalid orders."""
    x = DerivativeStructure.variable(2, 2, 0, 1.0)
    with pytest.raises(OrderTooLargeError):
        x.get_partial_derivative(2, 1)
    with pytest.raises(DimensionMismatchError):
        x.get_partial_derivative(1)


def test_structures_are_immutable():
    """Tests that neither the attributes nor the coefficients can change."""
    x = DerivativeStructure.variable(1, 1, 0, 1.0)
    with pytest.raises(AttributeError):
        x.foo = 1
    with pytest.raises(AttributeError):
        x._data = np.zeros(2)
    with pytest.raises(ValueError):
        x._data[0] = 2.0
    copy = x.get_all_derivatives()
    copy[0] = 5.0
    assert x.value == 1.0


def test_incompatible_structures_raise():
    """Tests that binary operations check dimensions first."""
    a = DerivativeStructure.variable(2, 2, 0, 1.0)
    b = DerivativeStructure.variable(3, 2, 0, 1.0)
    c = DerivativeStructure.variable(2, 3, 0, 1.0)
    for other in (b, c):
        with pytest.raises(DimensionMismatchError):
            a + other
        with pytest.raises(DimensionMismatchError):
            a * other
        with pytest.raises(DimensionMismatchError):
            a / other
        with pytest.raises(DimensionMismatchError):
            a ** other
        with pytest.raises(DimensionMismatchError):
            DerivativeStructure.hypot(a, other)
        with pytest.raises(DimensionMismatchError):
            DerivativeStructure.atan2(a, other)


def test_operators_with_real_numbers():
    """Tests arithmetic operators mixing structures and plain numbers."""
    x = DerivativeStructure.variable(1, 2, 0, 3.0)
    np.testing.assert_array_equal((x + 2).get_all_derivatives(), [5.0, 1.0, 0.0])
    np.testing.assert_array_equal((2 + x).get_all_derivatives(), [5.0, 1.0, 0.0])
    np.testing.assert_array_equal((x - 2).get_all_derivatives(), [1.0, 1.0, 0.0])
    np.testing.assert_array_equal((2 - x).get_all_derivatives(), [-1.0, -1.0, 0.0])
    np.testing.assert_array_equal((2 * x).get_all_derivatives(), [6.0, 2.0, 0.0])
    np.testing.assert_array_equal((x * 2).get_all_derivatives(), [6.0, 2.0, 0.0])
    np.testing.assert_array_equal((x / 2).get_all_derivatives(), [1.5, 0.5, 0.0])
    np.testing.assert_allclose(
        (2 / x).get_all_derivatives(), [2 / 3, -2 / 9, 4 / 27], rtol=1e-15
    )
    np.testing.assert_array_equal((-x).get_all_derivatives(), [-3.0, -1.0, 0.0])
    assert +x is x


def test_numpy_scalars_defer_to_structures():
    """Tests that numpy scalars on the left produce structures."""
    x = DerivativeStructure.variable(1, 1, 0, 3.0)
    for result in (np.float64(2.0) * x, np.float64(2.0) + x, np.float64(1.0) - x):
        assert isinstance(result, DerivativeStructure)
    assert (np.float64(2.0) * x).value == 6.0


def test_powers():
    """Tests integer, real, structure and reflected powers."""
    x = DerivativeStructure.variable(1, 2, 0, 3.0)
    np.testing.assert_array_equal((x ** 2).get_all_derivatives(), [9.0, 6.0, 2.0])
    np.testing.assert_array_equal((x ** np.int64(3)).get_all_derivatives(), [27.0, 27.0, 18.0])
    np.testing.assert_allclose(
        (x ** 0.5).get_all_derivatives(),
        [math.sqrt(3), 0.5 / math.sqrt(3), -0.25 * 3 ** -1.5],
        rtol=1e-14,
    )
    ln2 = math.log(2.0)
    np.testing.assert_allclose(
        (2.0 ** x).get_all_derivatives(), [8.0, 8.0 * ln2, 8.0 * ln2 * ln2], rtol=1e-14
    )
    ln3 = math.log(3.0)
    np.testing.assert_allclose(
        (x ** x).get_all_derivatives(),
        [27.0, 27.0 * (ln3 + 1), 27.0 * ((ln3 + 1) ** 2 + 1 / 3)],
        rtol=1e-14,
    )


def test_pow_int_zero_is_constant_one_even_for_nan():
    """Tests that x ** 0 is the constant 1 whatever x."""
    for value in (0.0, 2.0, np.nan, np.inf):
        x = DerivativeStructure.variable(1, 2, 0, value)
        np.testing.assert_array_equal((x ** 0).get_all_derivatives(), [1.0, 0.0, 0.0])


def test_pow_int_above_order_and_at_zero():
    """Tests exact integer powers, including of zero."""
    x = DerivativeStructure.variable(1, 4, 0, 0.0)
    np.testing.assert_array_equal((x ** 2).get_all_derivatives(), [0, 0, 2, 0, 0])
    y = DerivativeStructure.variable(1, 3, 0, -2.0)
    np.testing.assert_array_equal((y ** 3).get_all_derivatives(), [-8, 12, -12, 6])


def test_pow_structure_of_non_positive_base_is_nan():
    """Tests that a structure exponent of a negative base propagates NaN."""
    x = DerivativeStructure.variable(2, 1, 0, -2.0)
    y = DerivativeStructure.variable(2, 1, 1, 2.0)
    assert np.all(np.isnan((x ** y).get_all_derivatives()))


def test_pow_of_zero_base():
    """Tests the special cases of 0 ** x."""
    for order in range(1, 6):
        at_zero = 0.0 ** DerivativeStructure.variable(1, order, 0, 0.0)
        assert at_zero.value == 1.0
        assert at_zero.get_partial_derivative(1) == -np.inf
        for n in range(2, order + 1):
            assert np.isnan(at_zero.get_partial_derivative(n))

        positive = 0.0 ** DerivativeStructure.variable(1, order, 0, 1.5)
        np.testing.assert_array_equal(positive.get_all_derivatives(), np.zeros(order + 1))

        negative = 0.0 ** DerivativeStructure.variable(1, order, 0, -1.5)
        assert np.all(np.isnan(negative.get_all_derivatives()))


def test_pow_of_negative_base_at_even_integer():
    """Tests that (-2) ** x has a value at x = 2 but no derivatives."""
    result = DerivativeStructure.variable(1, 2, 0, 2.0).rpow(-2.0)
    assert result.value == 4.0
    assert np.isnan(result.get_partial_derivative(1))
    assert np.isnan(result.get_partial_derivative(2))


@pytest.mark.parametrize("n", range(2, 10))
def test_root_n_singularity(n):
    """Tests the derivatives of x ** (1 / n) at x = 0."""
    for order in range(0, 6):
        root = DerivativeStructure.variable(1, order, 0, 0.0).root_n(n)
        assert root.value == 0.0
        if order > 0:
            assert root.get_partial_derivative(1) == np.inf
            for j in range(2, order + 1):
                assert np.isnan(root.get_partial_derivative(j))


def test_root_n_rejects_non_positive_order():
    """Tests that the root order must be positive."""
    with pytest.raises(ValueError):
        DerivativeStructure.variable(1, 1, 0, 2.0).root_n(0)


def test_cbrt_of_negative_value_is_real():
    """Tests that the cube root of a negative number is real."""
    root = DerivativeStructure.variable(1, 1, 0, -8.0).cbrt()
    assert root.value == pytest.approx(-2.0, rel=1e-15)
    assert root.get_partial_derivative(1) == pytest.approx(1 / 12, rel=1e-15)


def test_division_by_zero_propagates():
    """Tests that dividing by zero gives infinities instead of raising."""
    x = DerivativeStructure.variable(1, 1, 0, 1.0)
    q = x / 0.0
    assert q.value == np.inf
    zero = DerivativeStructure.variable(1, 1, 0, 0.0)
    assert zero.reciprocal().value == np.inf
    assert zero.log().value == -np.inf
    assert zero.log().get_partial_derivative(1) == np.inf


def test_remainder():
    """Tests the IEEE remainder with structure and real divisors."""
    x = DerivativeStructure.variable(2, 1, 0, 5.3)
    y = DerivativeStructure.variable(2, 1, 1, 2.0)
    rem = x % y
    assert rem.value == pytest.approx(math.remainder(5.3, 2.0), abs=1e-15)
    assert rem.get_partial_derivative(1, 0) == 1.0
    assert rem.get_partial_derivative(0, 1) == -3.0

    scalar = x % 2.0
    assert scalar.value == math.remainder(5.3, 2.0)
    assert scalar.get_partial_derivative(1, 0) == 1.0

    reflected = 7.0 % y
    assert reflected.value == math.remainder(7.0, 2.0)
    assert reflected.get_partial_derivative(0, 1) == -4.0


def test_abs_and_copy_sign():
    """Tests sign manipulations, signed zeros included."""
    x = DerivativeStructure.variable(1, 1, 0, 2.0)
    assert abs(x) is x
    assert x.copy_sign(1.0) is x
    assert x.copy_sign(0.0) is x
    np.testing.assert_array_equal(x.copy_sign(-0.0).get_all_derivatives(), [-2.0, -1.0])
    np.testing.assert_array_equal(x.copy_sign(-x).get_all_derivatives(), [-2.0, -1.0])

    negative_zero = DerivativeStructure.variable(1, 1, 0, -0.0)
    result = negative_zero.abs()
    assert not np.signbit(result.value)
    assert result.get_partial_derivative(1) == -1.0


@pytest.mark.parametrize(
    "value, ceil, floor, rint, rounded, signum",
    [
        (2.5, 3.0, 2.0, 2.0, 3.0, 1.0),
        (-2.5, -2.0, -3.0, -2.0, -2.0, -1.0),
        (1.2, 2.0, 1.0, 1.0, 1.0, 1.0),
        (0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
    ],
)
def test_piecewise_constant_functions(value, ceil, floor, rint, rounded, signum):
    """Tests that rounding functions return constants."""
    x = DerivativeStructure.variable(2, 2, 0, value)
    for result, expected in [
        (x.ceil(), ceil),
        (x.floor(), floor),
        (x.rint(), rint),
        (x.round(), rounded),
        (x.signum(), signum),
    ]:
        assert result.value == expected
        assert not np.any(result.get_all_derivatives()[1:])


def test_scalb_and_angle_conversions():
    """Tests exact scaling and degree/radian conversions."""
    x = DerivativeStructure.variable(1, 2, 0, 3.0)
    np.testing.assert_array_equal(x.scalb(2).get_all_derivatives(), [12.0, 4.0, 0.0])
    angle = DerivativeStructure.variable(1, 1, 0, math.pi)
    degrees = angle.to_degrees()
    assert degrees.value == pytest.approx(180.0, rel=1e-15)
    assert degrees.get_partial_derivative(1) == pytest.approx(180.0 / math.pi, rel=1e-15)
    back = degrees.to_radians()
    assert back.value == pytest.approx(math.pi, rel=1e-15)
    assert back.get_partial_derivative(1) == pytest.approx(1.0, rel=1e-15)


def test_get_exponent():
    """Tests the binary exponent of the value."""
    assert DerivativeStructure(1, 1, 8.0).get_exponent() == 3
    assert DerivativeStructure(1, 1, 0.3).get_exponent() == -2


def test_hypot_does_not_overflow():
    """Tests hypot on values whose squares overflow."""
    x = DerivativeStructure.variable(2, 5, 0, 3.0e250)
    y = DerivativeStructure.variable(2, 5, 1, -4.0e250)
    h = DerivativeStructure.hypot(x, y)
    assert h.value == pytest.approx(5.0e250, rel=1e-15)
    assert h.get_partial_derivative(1, 0) == pytest.approx(0.6, rel=1e-14)
    assert h.get_partial_derivative(0, 1) == pytest.approx(-0.8, rel=1e-14)


def test_hypot_neglects_tiny_operand():
    """Tests hypot when one operand is negligible."""
    small = DerivativeStructure.variable(2, 5, 0, 3.0e-10)
    large = DerivativeStructure.variable(2, 5, 1, -4.0e25)
    for h in (DerivativeStructure.hypot(small, large), DerivativeStructure.hypot(large, small)):
        assert h.value == 4.0e25
        assert h.get_partial_derivative(0, 1) == -1.0
        assert h.get_partial_derivative(1, 0) == 0.0


def test_hypot_special_values():
    """Tests infinite and NaN operands of hypot."""
    x = DerivativeStructure.variable(2, 2, 0, np.inf)
    y = DerivativeStructure.variable(2, 2, 1, np.nan)
    z = DerivativeStructure.variable(2, 2, 1, 1.0)
    inf_result = DerivativeStructure.hypot(x, y)
    assert inf_result.value == np.inf
    assert inf_result.free_parameters == 2
    assert inf_result.order == 2
    assert not np.any(inf_result.get_all_derivatives()[1:])
    assert DerivativeStructure.hypot(z, -x).value == np.inf
    assert np.isnan(DerivativeStructure.hypot(y, z).value)


@pytest.mark.parametrize(
    "y, x, expected",
    [
        (0.0, 0.0, 0.0),
        (0.0, -0.0, math.pi),
        (-0.0, 0.0, -0.0),
        (-0.0, -0.0, -math.pi),
    ],
)
def test_atan2_signed_zeros(y, x, expected):
    """Tests that atan2 follows the signed zero conventions."""
    result = DerivativeStructure.atan2(
        DerivativeStructure.variable(2, 2, 0, y), DerivativeStructure.variable(2, 2, 1, x)
    )
    assert result.value == expected
    assert np.signbit(result.value) == np.signbit(expected)


def test_linear_combination_is_accurate():
    """Tests the accurate linear combination of structures."""
    x = DerivativeStructure.variable(2, 1, 0, 1e16)
    y = DerivativeStructure.variable(2, 1, 1, -1e16)
    one = DerivativeStructure(2, 1, 1.0)
    combo = DerivativeStructure.linear_combination(1.0, x, 1.0, one, 1.0, y)
    np.testing.assert_array_equal(combo.get_all_derivatives(), [1.0, 1.0, 1.0])
    with pytest.raises(ValueError):
        DerivativeStructure.linear_combination(1.0, x)
    with pytest.raises(ValueError):
        DerivativeStructure.linear_combination(1.0, x, y, 2.0)


def test_sum_of_products_is_accurate():
    """Tests that the value of a sum of products survives cancellation."""
    x = DerivativeStructure.variable(2, 1, 0, 1e16)
    y = DerivativeStructure.variable(2, 1, 1, -1e16)
    result = DerivativeStructure.sum_of_products([1.0, 1.0, 1.0], [x, 1.0, y])
    np.testing.assert_array_equal(result.get_all_derivatives(), [1.0, 1.0, 1.0])

    z = DerivativeStructure.sum_of_products([x, y], [y, x])
    assert z.value == -2e32
    assert z.get_partial_derivative(1, 0) == -2e16
    with pytest.raises(ValueError):
        DerivativeStructure.sum_of_products([1.0], [2.0])
    with pytest.raises(DimensionMismatchError):
        DerivativeStructure.sum_of_products([x], [y, x])


def test_compose():
    """Tests composition with explicit univariate derivatives."""
    x = DerivativeStructure.variable(1, 2, 0, 0.5)
    result = x.compose([1.0, 2.0, 3.0])
    np.testing.assert_array_equal(result.get_all_derivatives(), [1.0, 2.0, 3.0])
    with pytest.raises(DimensionMismatchError):
        x.compose([1.0, 2.0])


def test_taylor_polynomial():
    """Tests that the expansion of a polynomial reproduces it exactly."""
    for x in np.arange(0.0, 1.2, 0.3):
        for y in np.arange(0.0, 1.2, 0.3):
            for z in np.arange(0.0, 1.2, 0.3):
                ds_x = DerivativeStructure.variable(3, 4, 0, x)
                ds_y = DerivativeStructure.variable(3, 4, 1, y)
                ds_z = DerivativeStructure.variable(3, 4, 2, z)
                f = ds_x * ds_y * (ds_x * ds_y + ds_z)
                for delta in np.arange(0.0, 0.2, 0.05):
                    ref = (x + delta) * (y - delta) * ((x + delta) * (y - delta) + (z + 2 * delta))
                    assert f.taylor(delta, -delta, 2 * delta) == pytest.approx(ref, abs=1e-13)


def test_equality_and_hash():
    """Tests value equality and hash consistency."""
    a = DerivativeStructure.variable(2, 2, 0, 1.0)
    b = DerivativeStructure.variable(2, 2, 0, 1.0)
    assert a == b
    assert hash(a) == hash(b)
    assert a != DerivativeStructure.variable(2, 2, 1, 1.0)
    assert a != DerivativeStructure.variable(2, 3, 0, 1.0)
    assert a != 1.0
    nan = DerivativeStructure(1, 1, np.nan)
    assert nan == DerivativeStructure(1, 1, np.nan)
    assert hash(nan) == hash(DerivativeStructure(1, 1, np.nan))
    assert len({a, b}) == 1


def test_flatten_and_pickle_round_trip():
    """Tests both serialization paths."""
    x = DerivativeStructure.variable(2, 3, 0, 0.7)
    y = DerivativeStructure.variable(2, 3, 1, -1.3)
    f = (x * y).sin() + x.exp()
    triple = f.flatten()
    assert triple[:2] == (2, 3)
    assert DerivativeStructure.from_derivatives(*triple) == f
    restored = pickle.loads(pickle.dumps(f))
    assert restored == f
    assert restored.compiler == f.compiler


DIMENSIONS = [(0, 0), (0, 3), (1, 0), (1, 3), (2, 2), (3, 4)]


def sample_structure(parameters, order):
    """Returns a structure with non-trivial derivatives in every direction."""
    d = DerivativeStructure(parameters, order, 0.5)
    for i in range(parameters):
        xi = DerivativeStructure.variable(parameters, order, i, 0.3 * (i + 1))
        d = (d + xi) * xi + 1.25
    return d.sin() + d


@pytest.mark.parametrize("parameters, order", DIMENSIONS)
def test_additive_identities(parameters, order):
    """Tests that adding zero keeps a structure and d - d is zero."""
    d = sample_structure(parameters, order)
    zero = DerivativeStructure(parameters, order)
    assert d + zero == d
    assert zero + d == d
    assert d - d == zero


@pytest.mark.parametrize("parameters, order", DIMENSIONS)
def test_flatten_round_trip_all_dimensions(parameters, order):
    """Tests that from_derivatives rebuilds the structure from its flattened form."""
    d = sample_structure(parameters, order)
    triple = d.flatten()
    assert triple[:2] == (parameters, order)
    assert DerivativeStructure.from_derivatives(*triple) == d


@pytest.mark.parametrize("x0", [-3.0, 0.0, 0.5, 2.0])
def test_product_rule_on_square(x0):
    """Tests that x.multiply(x) has derivatives 2 x0 and 2."""
    x = DerivativeStructure.variable(1, 3, 0, x0)
    square = x.multiply(x)
    assert square.value == x0 * x0
    assert square.get_partial_derivative(1) == 2 * x0
    assert square.get_partial_derivative(2) == 2.0
    assert square.get_partial_derivative(3) == 0.0

    x = DerivativeStructure.variable(2, 2, 0, x0)
    square = x.multiply(x)
    assert square.get_partial_derivative(1, 0) == 2 * x0
    assert square.get_partial_derivative(2, 0) == 2.0
    assert square.get_partial_derivative(1, 1) == 0.0
    assert square.get_partial_derivative(0, 1) == 0.0


@pytest.mark.parametrize("x0", np.linspace(-10.0, 10.0, 9))
def test_quintic_polynomial_derivatives(x0):
    """Tests a degree 5 polynomial built with + and * against its exact derivatives."""
    coefficients = [0.5, -1.0, 2.0, -3.0, 1.0, 1.0]
    x = DerivativeStructure.variable(1, 6, 0, x0)
    p = x.create_constant(0.0)
    for c in reversed(coefficients):
        p = p * x + c

    derivative = np.array(coefficients)
    for k in range(7):
        expected = np.polynomial.polynomial.polyval(x0, derivative)
        assert p.get_partial_derivative(k) == pytest.approx(expected, rel=1e-12, abs=1e-9)
        derivative = np.polynomial.polynomial.polyder(derivative)


def test_with_value_and_create_constant():
    """Tests the helpers building related structures."""
    x = DerivativeStructure.variable(1, 2, 0, 3.0)
    np.testing.assert_array_equal(x.with_value(-1.0).get_all_derivatives(), [-1.0, 1.0, 0.0])
    np.testing.assert_array_equal(x.create_constant(4.0).get_all_derivatives(), [4.0, 0.0, 0.0])


def test_repr():
    """Tests the structure representation."""
    x = DerivativeStructure.variable(1, 1, 0, 2.0)
    assert repr(x) == "DerivativeStructure(parameters=1, order=1, derivatives=[2.0, 1.0])"
