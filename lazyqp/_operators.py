"""
Builder operators shared by objects that can appear as expression leaves.
"""

from typing import Any


class BuilderOperators:
    """
    Mixin giving Parameters and compiled expressions the arithmetic
    operators of :class:`lazyqp.expression.Expr`.
    """

    __slots__ = ()

    # Keep numpy from broadcasting over the object as an object scalar
    __array_ufunc__ = None

    def _expr(self):
        from lazyqp.expression import to_expr

        return to_expr(self)

    def __add__(self, other: Any):
        return self._expr() + other

    def __radd__(self, other: Any):
        return other + self._expr()

    def __sub__(self, other: Any):
        return self._expr() - other

    def __rsub__(self, other: Any):
        return other - self._expr()

    def __mul__(self, other: Any):
        return self._expr() * other

    def __rmul__(self, other: Any):
        return other * self._expr()

    def __matmul__(self, other: Any):
        return self._expr() @ other

    def __rmatmul__(self, other: Any):
        return other @ self._expr()

    def __neg__(self):
        return -self._expr()
