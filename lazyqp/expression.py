"""
Expression builder.

An :class:`Expr` tree describes a computation over literals (numbers,
arrays, terms, variables), Parameters and other compiled expressions. It is
built with ordinary operators and a few builder functions, then compiled
once with :func:`lazyqp.compiler.compile` into an object that re-evaluates
lazily as parameters change.

The tree is only a description: nothing is evaluated while building, and
unsupported combinations are reported by the compiler as ``BuildError``.

Example
-------
>>> import numpy as np
>>> from lazyqp import Model, Parameter, compile, variables
>>> m = Model()
>>> A = Parameter(lambda a: a.fill(1.0), np.zeros((2, 3)), model=m)
>>> x = variables(range(1, 4))
>>> rows = compile(A @ x)
>>> len(rows())
2
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from collections.abc import Callable
from typing import Any

from beartype import beartype

from lazyqp.parameter import Parameter


class ExprKind(Enum):
    """Kinds of builder nodes."""

    # Leaf nodes
    LITERAL = auto()  # number, array, term, variable, or a sequence of them
    PARAMETER = auto()  # Parameter, read through its model
    NESTED = auto()  # compiled or wrapped expression

    # Arithmetic
    NEG = auto()  # -a
    ADD = auto()  # a + b
    SUB = auto()  # a - b
    MUL = auto()  # a * b (elementwise / scalar)
    MATMUL = auto()  # a @ b
    DOT = auto()  # inner product

    # Structure
    VCAT = auto()  # vertical concatenation
    CONVERT = auto()  # container layout change (stores layout in 'value')
    CALL = auto()  # user function call (stores function in 'value')


@dataclass(frozen=True, eq=False)
class Expr:
    """
    Immutable builder node.

    ``value`` holds the payload of leaf nodes (the literal, the Parameter,
    the nested expression), the target layout of CONVERT nodes and the
    function of CALL nodes.
    """

    kind: ExprKind
    children: tuple["Expr", ...] = ()
    value: Any = None

    # Keep numpy from broadcasting over an Expr as an object scalar
    __array_ufunc__ = None

    def __repr__(self) -> str:
        kind = self.kind
        if kind == ExprKind.LITERAL:
            return _literal_repr(self.value)
        elif kind == ExprKind.PARAMETER:
            return repr(self.value)
        elif kind == ExprKind.NESTED:
            return f"nested({self.value!r})"
        elif kind == ExprKind.NEG:
            return f"(-{self.children[0]})"
        elif kind == ExprKind.ADD:
            return f"({self.children[0]} + {self.children[1]})"
        elif kind == ExprKind.SUB:
            return f"({self.children[0]} - {self.children[1]})"
        elif kind == ExprKind.MUL:
            return f"({self.children[0]} * {self.children[1]})"
        elif kind == ExprKind.MATMUL:
            return f"({self.children[0]} @ {self.children[1]})"
        elif kind == ExprKind.DOT:
            return f"dot({self.children[0]}, {self.children[1]})"
        elif kind == ExprKind.VCAT:
            return "vcat(" + ", ".join(repr(c) for c in self.children) + ")"
        elif kind == ExprKind.CONVERT:
            return f"convert({getattr(self.value, '__name__', self.value)}, {self.children[0]})"
        elif kind == ExprKind.CALL:
            args = ", ".join(repr(c) for c in self.children)
            return f"{getattr(self.value, '__name__', 'call')}({args})"
        return f"Expr({self.kind})"

    # Arithmetic operators - return new Expr nodes
    def __add__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (self, to_expr(other)))

    def __radd__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (to_expr(other), self))

    def __sub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (self, to_expr(other)))

    def __rsub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (to_expr(other), self))

    def __mul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (self, to_expr(other)))

    def __rmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (to_expr(other), self))

    def __matmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MATMUL, (self, to_expr(other)))

    def __rmatmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MATMUL, (to_expr(other), self))

    def __neg__(self) -> "Expr":
        return Expr(ExprKind.NEG, (self,))

    def __pos__(self) -> "Expr":
        return self


def _literal_repr(value: Any) -> str:
    if isinstance(value, list) and len(value) > 6:
        return f"[{value[0]!r}, ..., {value[-1]!r}]"
    return repr(value)


def to_expr(x: Any) -> Expr:
    """Lift ``x`` to an Expr leaf."""
    if isinstance(x, Expr):
        return x
    # Import here to avoid circular imports
    from lazyqp.compiler import CompiledExpression
    from lazyqp.wrapped import WrappedExpression

    if isinstance(x, Parameter):
        return Expr(ExprKind.PARAMETER, value=x)
    if isinstance(x, (CompiledExpression, WrappedExpression)):
        return Expr(ExprKind.NESTED, value=x)
    return Expr(ExprKind.LITERAL, value=x)


def vcat(*args: Any) -> Expr:
    """Vertical concatenation of vectors or of sequences of terms."""
    if not args:
        raise ValueError("vcat requires at least one argument")
    return Expr(ExprKind.VCAT, tuple(to_expr(a) for a in args))


@beartype
def convert(layout: type, arg: Any) -> Expr:
    """
    Change the container layout of ``arg``'s result.

    ``layout`` is ``list``, ``tuple`` or ``numpy.ndarray``. The layout is
    decided once, at compile time.
    """
    return Expr(ExprKind.CONVERT, (to_expr(arg),), value=layout)


@beartype
def call(func: Callable[..., Any], *args: Any) -> Expr:
    """Call ``func`` on the results of ``args`` whenever they change."""
    return Expr(ExprKind.CALL, tuple(to_expr(a) for a in args), value=func)


def dot(a: Any, b: Any) -> Expr:
    """Inner product of two vectors (numeric or of variables)."""
    return Expr(ExprKind.DOT, (to_expr(a), to_expr(b)))


@beartype
def find_parameters(expr: Expr) -> list[Parameter]:
    """All Parameters referenced by ``expr``, in first-use order."""
    found: dict = {}
    stack = [expr]
    while stack:
        node = stack.pop()
        if node.kind == ExprKind.PARAMETER:
            found.setdefault(node.value.key, node.value)
        elif node.kind == ExprKind.NESTED:
            for p in node.value.parameters:
                found.setdefault(p.key, p)
        stack.extend(reversed(node.children))
    return list(found.values())
