"""Cache of DSCompiler instances.

Building a compiler is expensive and its tables never change, so compilers
are built once per ``(parameters, order)`` pair and shared. A compiler
depends on its ``(parameters - 1, order)`` and ``(parameters, order - 1)``
neighbours, so a request for a new pair builds every missing pair below it,
walking the diagonals ``p + o`` in increasing order.
"""

from __future__ import annotations

from scipy.special import comb

from taylorkit.compiler.ds_compiler import DSCompiler
from taylorkit.logger import taylorkit_logger
from taylorkit.utils.thread_safety import wrap_with_lock
from taylorkit.utils.validate import validate_non_negative_int

__all__ = [
    "CompilerRegistry",
    "default_registry",
    "get_compiler",
]

DEFAULT_SIZE_WARNING_THRESHOLD = 100_000


class CompilerRegistry:
    """Thread-safe, grow-only cache of compilers.

    Attributes:
        size_warning_threshold: Coefficient array size above which a
            warning is logged when a compiler is requested. ``None``
            disables the warning.
    """

    def __init__(self, size_warning_threshold: int | None = DEFAULT_SIZE_WARNING_THRESHOLD):
        self.size_warning_threshold = size_warning_threshold
        self._compilers: dict[tuple[int, int], DSCompiler] = {}
        self._get_or_build = wrap_with_lock(self._unsafe_get_or_build)
        self._clear = wrap_with_lock(self._compilers.clear, lock=self._get_or_build.lock)

    def get_compiler(self, parameters: int, order: int) -> DSCompiler:
        """Returns the compiler for ``(parameters, order)``, building it if needed.

        Args:
            parameters: Number of free parameters.
            order: Derivation order.

        Returns:
            The shared compiler instance.

        Raises:
            ValueError: If ``parameters`` or ``order`` is not a non-negative
                integer.
        """
        parameters = validate_non_negative_int(parameters, "parameters")
        order = validate_non_negative_int(order, "order")
        return self._get_or_build(parameters, order)

    def clear(self) -> None:
        """Drops every cached compiler."""
        self._clear()

    def __len__(self) -> int:
        return len(self._compilers)

    def __contains__(self, key: object) -> bool:
        return key in self._compilers

    def __repr__(self) -> str:
        return f"CompilerRegistry(compilers={len(self)})"

    def _unsafe_get_or_build(self, parameters: int, order: int) -> DSCompiler:
        key = (parameters, order)
        compiler = self._compilers.get(key)
        if compiler is not None:
            return compiler

        size = comb(parameters + order, order, exact=True)
        if self.size_warning_threshold is not None and size > self.size_warning_threshold:
            taylorkit_logger.warning(
                "Compiler (%d, %d) handles arrays of %d coefficients; "
                "building its tables may take a lot of time and memory.",
                parameters,
                order,
                size,
            )

        built = []
        for diagonal in range(parameters + order + 1):
            for o in range(max(0, diagonal - parameters), min(order, diagonal) + 1):
                p = diagonal - o
                if (p, o) in self._compilers:
                    continue
                value_compiler = self._compilers[(p - 1, o)] if p > 0 else None
                derivative_compiler = self._compilers[(p, o - 1)] if o > 0 else None
                self._compilers[(p, o)] = DSCompiler(p, o, value_compiler, derivative_compiler)
                built.append((p, o))

        taylorkit_logger.debug(
            "Built %d compilers to reach (%d, %d): %s", len(built), parameters, order, built
        )
        return self._compilers[key]


_DEFAULT_REGISTRY = CompilerRegistry()


def default_registry() -> CompilerRegistry:
    """Returns the process-wide registry used when none is given."""
    return _DEFAULT_REGISTRY


def get_compiler(
    parameters: int, order: int, registry: CompilerRegistry | None = None
) -> DSCompiler:
    """Returns the compiler for ``(parameters, order)``.

    Args:
        parameters: Number of free parameters.
        order: Derivation order.
        registry: Registry to use; the default registry when omitted.

    Returns:
        The shared compiler instance.
    """
    if registry is None:
        registry = _DEFAULT_REGISTRY
    return registry.get_compiler(parameters, order)
