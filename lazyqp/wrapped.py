"""
Uniformly typed callables over compiled expressions.
"""

from __future__ import annotations

from typing import Any, Optional

from beartype import beartype
from beartype.door import is_bearable

from lazyqp._operators import BuilderOperators
from lazyqp.compiler import CompiledExpression
from lazyqp.errors import BuildError
from lazyqp.parameter import Model, Parameter


class WrappedExpression(BuilderOperators):
    """
    Callable wrapper around a :class:`CompiledExpression`.

    With ``result_type`` set (any type hint beartype understands, e.g.
    ``list[AffineFunction]`` or ``numpy.ndarray``) the result is checked
    once, at construction. Calls forward to the compiled expression.

    Raises
    ------
    BuildError
        If the current result does not satisfy ``result_type``.
    """

    __slots__ = ("compiled", "result_type", "_call")

    @beartype
    def __init__(self, compiled: CompiledExpression, result_type: Any = None) -> None:
        self.compiled = compiled
        self.result_type = result_type
        self._call = compiled.__call__
        if result_type is not None:
            result = self._call()
            if not is_bearable(result, result_type):
                raise BuildError(f"{compiled!r} returned {type(result).__name__}, expected {result_type!r}")

    def __repr__(self) -> str:
        return f"WrappedExpression({self.compiled!r})"

    def __call__(self) -> Any:
        return self._call()

    @property
    def dependencies(self) -> tuple[tuple[Model, int], ...]:
        return self.compiled.dependencies

    @property
    def parameters(self) -> list[Parameter]:
        return self.compiled.parameters

    @property
    def stable(self) -> bool:
        return self.compiled.stable


@beartype
def wrap(compiled: CompiledExpression, result_type: Optional[Any] = None) -> WrappedExpression:
    """Wrap ``compiled``, optionally checking its result against ``result_type``."""
    return WrappedExpression(compiled, result_type)
