"""Finite differences differentiation of plain functions."""

from .finite_differences import DifferentiableFunction, FiniteDifferencesDifferentiator

__all__ = ["FiniteDifferencesDifferentiator", "DifferentiableFunction"]
