"""Coefficient compilers.

Provides the index layouts of derivative arrays and the arithmetic over
them, plus the registry that caches one compiler per
``(parameters, order)`` pair.
"""

from .ds_compiler import DSCompiler
from .registry import CompilerRegistry, default_registry, get_compiler

__all__ = ["DSCompiler", "CompilerRegistry", "default_registry", "get_compiler"]
