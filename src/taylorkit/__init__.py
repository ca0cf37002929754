"""Multivariate Taylor expansion differentiation."""

from importlib.metadata import PackageNotFoundError, version

from taylorkit.compiler import CompilerRegistry, DSCompiler, get_compiler
from taylorkit.derivative_structure import DerivativeStructure
from taylorkit.finite import DifferentiableFunction, FiniteDifferencesDifferentiator
from taylorkit.utils.validate import DimensionMismatchError, OrderTooLargeError

try:
    __version__ = version("taylorkit")
except PackageNotFoundError:
    pass

__all__ = [
    "CompilerRegistry",
    "DSCompiler",
    "DerivativeStructure",
    "DifferentiableFunction",
    "DimensionMismatchError",
    "FiniteDifferencesDifferentiator",
    "OrderTooLargeError",
    "get_compiler",
]
