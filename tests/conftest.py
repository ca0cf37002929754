"""Pytest configuration file with registry and structure factories."""

import pytest

from taylorkit.compiler.registry import CompilerRegistry
from taylorkit.derivative_structure import DerivativeStructure

__all__ = ["registry", "variables"]


@pytest.fixture
def registry():
    """Return a fresh compiler registry, isolated from the default one."""
    return CompilerRegistry()


@pytest.fixture
def variables():
    """Return a callable building the free parameters at a point.

    The returned function has signature `make(order, *values)` and returns
    one variable structure per value, with as many free parameters as
    values.
    """
    def _make(order, *values):
        n = len(values)
        return tuple(
            DerivativeStructure.variable(n, order, i, v) for i, v in enumerate(values)
        )
    return _make
