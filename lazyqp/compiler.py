"""
Compilation of builder expressions into lazily re-evaluated objects.

``compile(expr)`` walks an :class:`~lazyqp.expression.Expr` tree once and
builds a mirror tree of cached nodes. Each cached node holds its children,
the ``(model, index)`` pairs of the Parameters it depends on, the
parameter versions it last saw, and a result object allocated at compile
time.

Evaluation
==========

Calling a compiled expression evaluates its root node:

1. A node is fresh when none of its dependencies is dirty and every
   dependency's version equals the one seen at its last recompute. Fresh
   nodes return their cached result object without doing any work.
2. A stale node evaluates its children (left to right), recomputes into
   its pre-allocated storage and records the dependency versions.

Handlers
========

The computation of each node is chosen at compile time from a dispatch
table keyed by ExprKind, looking at the first results of the children.

In-place handlers (``CompileOptions.inplace``):

- numeric ``+ - * @`` and negation with array results write into a buffer
  through the numpy ``out=`` argument;
- numeric matrix ``@`` variables keeps one matrix buffer whose rows back
  the LinearTerms of a fixed list of row AffineFunctions;
- scalar ``*`` (matrix ``@`` variables) is fused into one ``multiply``;
- ``vcat`` of arrays copies segments into one buffer; ``vcat`` of stable
  row lists is concatenated once;
- ``convert`` fixes the container layout once.

Everything else (term algebra, elementwise operations over sequences of
terms, generic concatenation, user functions) recomputes with ordinary
operators when stale.
"""

from __future__ import annotations

import logging
import numbers
import operator
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np
import scipy.sparse as sp
from beartype import beartype

from lazyqp._operators import BuilderOperators
from lazyqp.errors import BuildError, DimensionError
from lazyqp.expression import Expr, ExprKind, to_expr
from lazyqp.functions import (
    Constant,
    LinearTerm,
    Term,
    affine_rows,
    canonical,
    matvec,
    variable_dot,
)
from lazyqp.parameter import Model, Parameter
from lazyqp.types import Assignment, Storage
from lazyqp.variable import Variable

logger = logging.getLogger(__name__)

# A node recompute function: child results -> node result
Recompute = Callable[[list[Any]], Any]


@dataclass(frozen=True)
class CompileOptions:
    """
    Options controlling compilation.

    Attributes
    ----------
    inplace : bool
        Use the in-place handlers where the operand types allow it. With
        False every node recomputes with ordinary (allocating) operators.
    warn_fallback : bool
        Warn when a node of an arithmetic or structural kind gets an
        allocating handler although ``inplace`` is set.
    """

    inplace: bool = True
    warn_fallback: bool = False


@dataclass(frozen=True)
class _Plan:
    """How a cached node recomputes.

    ``stable`` means the node returns the same result object on every call
    and updates its contents in place.
    """

    recompute: Recompute
    stable: bool = False
    inplace: bool = False


# =============================================================================
# Operand classification
# =============================================================================


def _is_number(x: Any) -> bool:
    return isinstance(x, numbers.Number) and not isinstance(x, bool)


def _is_array(x: Any) -> bool:
    return isinstance(x, np.ndarray) and x.dtype.kind in "biufc"


def _is_numeric(x: Any) -> bool:
    return _is_number(x) or _is_array(x)


def _is_variables(x: Any) -> bool:
    return isinstance(x, (list, tuple)) and all(isinstance(v, Variable) for v in x)


def _is_symbolic(x: Any) -> bool:
    """A term, a variable, or a sequence containing any of them."""
    if isinstance(x, (Term, Variable)):
        return True
    if isinstance(x, (list, tuple)):
        return any(isinstance(e, (Term, Variable)) for e in x)
    return False


def _check_literal(x: Any) -> None:
    if _is_numeric(x) or isinstance(x, (Term, Variable)) or sp.issparse(x):
        return
    if isinstance(x, (list, tuple)):
        for e in x:
            _check_literal(e)
        return
    raise BuildError(f"unsupported literal of type {type(x).__name__}")


def _is_sequence(x: Any) -> bool:
    return isinstance(x, (list, tuple)) or (_is_array(x) and x.ndim == 1)


# =============================================================================
# Elementwise term algebra
# =============================================================================


def _lift(x: Any) -> Term:
    """Scalar-valued term for one element of a symbolic sequence."""
    if isinstance(x, Term):
        return x
    if isinstance(x, Variable):
        return LinearTerm(np.ones((1, 1)), (x,))
    if _is_number(x):
        return Constant([x])
    raise TypeError(f"cannot use {type(x).__name__} in a term expression")


def _elements(x: Any, n: int) -> list[Any]:
    if not _is_sequence(x):
        return [x] * n
    if len(x) != n:
        raise DimensionError(f"elementwise operands have lengths {n} and {len(x)}")
    return list(x)


def _elementwise(op: Callable[[Any, Any], Any], u: Any, v: Any) -> Term:
    if op is operator.mul and _is_number(u):
        return canonical(u * _lift(v))
    if op is operator.mul and _is_number(v):
        return canonical(_lift(u) * v)
    return canonical(op(_lift(u), _lift(v)))


def _is_vector_term(x: Any) -> bool:
    return isinstance(x, Term) and x.outputdim != 1


def _term_binary(op: Callable[[Any, Any], Any], a: Any, b: Any) -> Term:
    """``op(a, b)`` combined as whole terms, for a vector-valued term operand."""
    if op is operator.mul:
        if _is_number(a) or _is_number(b):
            return op(a, b)
        raise BuildError("vector-valued terms can only be multiplied by a scalar")
    for v in (a, b):
        if isinstance(v, (list, tuple)) and _is_symbolic(v):
            raise DimensionError("cannot combine a vector-valued term with a sequence of terms")
    a = _lift(a) if isinstance(a, Variable) else a
    b = _lift(b) if isinstance(b, Variable) else b
    return op(a, b)


def _symbolic_binary(op: Callable[[Any, Any], Any], a: Any, b: Any) -> Any:
    """``op(a, b)`` where at least one operand is symbolic."""
    if _is_vector_term(a) or _is_vector_term(b):
        return _term_binary(op, a, b)
    if not (_is_sequence(a) or _is_sequence(b)):
        a = _lift(a) if isinstance(a, Variable) else a
        b = _lift(b) if isinstance(b, Variable) else b
        return op(a, b)
    n = len(a) if _is_sequence(a) else len(b)
    return [_elementwise(op, u, v) for u, v in zip(_elements(a, n), _elements(b, n))]


def _symbolic_neg(a: Any) -> Any:
    if isinstance(a, Term):
        return -a
    if isinstance(a, Variable):
        return canonical(-_lift(a))
    return [canonical(-_lift(u)) for u in a]


# =============================================================================
# Handlers - Dispatch Table
# =============================================================================

_OPERATORS = {
    ExprKind.ADD: operator.add,
    ExprKind.SUB: operator.sub,
    ExprKind.MUL: operator.mul,
}

_UFUNCS = {
    ExprKind.ADD: np.add,
    ExprKind.SUB: np.subtract,
    ExprKind.MUL: np.multiply,
}

_LAYOUTS = (list, tuple, np.ndarray)


def _generic(expr: Expr, options: CompileOptions, recompute: Recompute) -> _Plan:
    if options.inplace and options.warn_fallback:
        warnings.warn(f"{expr.kind.name} node recomputes with allocation: {expr!r}")
    return _Plan(recompute)


def _literal(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    value = expr.value
    _check_literal(value)
    return _Plan(lambda args: value, stable=True)


def _parameter(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    param = expr.value
    return _Plan(lambda args: param())


def _nested(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    nested = expr.value
    return _Plan(lambda args: nested(), stable=nested.stable)


def _check_broadcast(a: Any, b: Any) -> None:
    try:
        np.broadcast_shapes(np.shape(a), np.shape(b))
    except ValueError as exc:
        raise DimensionError(f"operands of shapes {np.shape(a)} and {np.shape(b)} do not broadcast") from exc


def _binary(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    a, b = children[0].result, children[1].result
    op = _OPERATORS[expr.kind]
    if _is_number(a) and _is_number(b):
        return _Plan(lambda args: op(args[0], args[1]))
    if _is_numeric(a) and _is_numeric(b):
        _check_broadcast(a, b)
        ufunc = _UFUNCS[expr.kind]
        out = ufunc(a, b)
        if not options.inplace or not isinstance(out, np.ndarray):
            return _Plan(lambda args: ufunc(args[0], args[1]))
        return _Plan(lambda args: ufunc(args[0], args[1], out=out), stable=True, inplace=True)
    if _is_symbolic(a) or _is_symbolic(b):
        return _generic(expr, options, lambda args: _symbolic_binary(op, args[0], args[1]))
    raise BuildError(f"unsupported operands for {expr.kind.name}: {type(a).__name__}, {type(b).__name__}")


def _neg(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    a = children[0].result
    if _is_array(a):
        if not options.inplace:
            return _Plan(lambda args: np.negative(args[0]))
        out = np.negative(a)
        return _Plan(lambda args: np.negative(args[0], out=out), stable=True, inplace=True)
    if _is_number(a):
        return _Plan(lambda args: -args[0])
    if _is_symbolic(a):
        return _generic(expr, options, lambda args: _symbolic_neg(args[0]))
    raise BuildError(f"unsupported operand for NEG: {type(a).__name__}")


def _row_buffer(A: np.ndarray, x: Sequence[Variable]) -> np.ndarray:
    if A.ndim != 2 or A.shape[1] != len(x):
        raise DimensionError(f"matrix of shape {A.shape} cannot multiply {len(x)} variables")
    return A


def _check_matmul(A: Any, x: Any) -> None:
    a_shape, x_shape = np.shape(A), np.shape(x)
    if not a_shape or not x_shape:
        raise DimensionError("@ requires array operands, not scalars")
    inner = x_shape[0] if len(x_shape) == 1 else x_shape[-2]
    if a_shape[-1] != inner:
        raise DimensionError(f"cannot multiply shapes {a_shape} and {x_shape}")


def _matmul(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    A, x = children[0].result, children[1].result
    if _is_variables(x) and (_is_array(A) or sp.issparse(A)):
        if _is_array(A) and options.inplace:
            buffer = _row_buffer(np.array(A, dtype=np.float64), x)
            rows = affine_rows(buffer, x, Storage.BUFFER)

            def recompute(args):
                np.copyto(buffer, args[0])
                return rows

            return _Plan(recompute, stable=True, inplace=True)
        return _generic(expr, options, lambda args: matvec(args[0], args[1]))
    if _is_array(A) and _is_array(x):
        _check_matmul(A, x)
        out = A @ x
        if options.inplace and isinstance(out, np.ndarray):
            return _Plan(lambda args: np.matmul(args[0], args[1], out=out), stable=True, inplace=True)
        return _Plan(lambda args: args[0] @ args[1])
    if sp.issparse(A) and _is_array(x):
        _check_matmul(A, x)
        return _generic(expr, options, lambda args: args[0] @ args[1])
    raise BuildError(f"unsupported operands for @: {type(A).__name__}, {type(x).__name__}")


def _scaled_matmul(children: list) -> Optional[_Plan]:
    """Fused ``s * (A @ x)`` for a numeric scalar, a dense matrix and variables."""
    s, A, x = (c.result for c in children)
    if not (_is_number(s) and _is_array(A) and _is_variables(x)):
        return None
    buffer = _row_buffer(np.multiply(A, s, dtype=np.float64), x)
    rows = affine_rows(buffer, x, Storage.BUFFER)

    def recompute(args):
        np.multiply(args[1], args[0], out=buffer)
        return rows

    return _Plan(recompute, stable=True, inplace=True)


def _row_vector(a: Any, x: Sequence[Variable]) -> Term:
    return canonical(LinearTerm(np.asarray(a, dtype=np.float64).reshape(1, -1), x))


def _dot(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    a, b = children[0].result, children[1].result
    if _is_array(a) and _is_array(b):
        return _Plan(lambda args: np.dot(args[0], args[1]))
    if _is_variables(a) and _is_variables(b):
        return _Plan(lambda args: variable_dot(args[0], args[1]))
    if _is_sequence(a) and not _is_symbolic(a) and _is_variables(b):
        return _generic(expr, options, lambda args: _row_vector(args[0], args[1]))
    if _is_variables(a) and _is_sequence(b) and not _is_symbolic(b):
        return _generic(expr, options, lambda args: _row_vector(args[1], args[0]))
    raise BuildError(f"unsupported operands for dot: {type(a).__name__}, {type(b).__name__}")


def _vcat_generic(args: list[Any]) -> Any:
    if all(_is_numeric(v) for v in args):
        return np.concatenate([np.atleast_1d(v) for v in args])
    combined = []
    for v in args:
        if _is_sequence(v):
            combined.extend(v)
        else:
            combined.append(v)
    return combined


def _check_stackable(values: list) -> None:
    shapes = [np.shape(np.atleast_1d(v)) for v in values]
    if len({s[1:] for s in shapes}) > 1:
        raise DimensionError(f"cannot stack parts of shapes {shapes}")


def _vcat(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    values = [c.result for c in children]
    if all(_is_numeric(v) for v in values):
        _check_stackable(values)
    if len(values) == 1:
        child = children[0]
        return _Plan(lambda args: args[0], stable=child.stable, inplace=child.inplace)
    if options.inplace and all(_is_numeric(v) for v in values):
        parts = [np.atleast_1d(v) for v in values]
        buffer = np.concatenate(parts)
        segments = []
        offset = 0
        for part in parts:
            segments.append(buffer[offset : offset + part.shape[0]])
            offset += part.shape[0]

        def recompute(args):
            for segment, value in zip(segments, args):
                np.copyto(segment, value)
            return buffer

        return _Plan(recompute, stable=True, inplace=True)
    if options.inplace and all(isinstance(v, (list, tuple)) for v in values) and all(c.stable for c in children):
        combined = [e for v in values for e in v]
        return _Plan(lambda args: combined, stable=True, inplace=True)
    return _generic(expr, options, _vcat_generic)


def _object_array(values: Sequence[Any]) -> np.ndarray:
    array = np.empty(len(values), dtype=object)
    for i, v in enumerate(values):
        array[i] = v
    return array


def _convert(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    layout = expr.value
    if layout not in _LAYOUTS:
        raise BuildError(f"unsupported layout {layout!r}, expected one of list, tuple, numpy.ndarray")
    child = children[0]
    value = child.result
    if layout is np.ndarray and (_is_numeric(value) or _is_sequence(value) and not _is_symbolic(value)):
        if not options.inplace:
            return _Plan(lambda args: np.array(args[0]))
        buffer = np.array(value)

        def recompute(args):
            np.copyto(buffer, args[0])
            return buffer

        return _Plan(recompute, stable=True, inplace=True)
    if not isinstance(value, (list, tuple)) and not _is_array(value):
        raise BuildError(f"cannot convert {type(value).__name__} to {layout.__name__}")
    if isinstance(value, layout):
        return _Plan(lambda args: args[0], stable=child.stable, inplace=child.inplace)
    build = _object_array if layout is np.ndarray else layout
    if options.inplace and child.stable:
        container = build(value)
        return _Plan(lambda args: container, stable=True, inplace=True)
    return _generic(expr, options, lambda args: build(args[0]))


def _call(expr: Expr, children: list, options: CompileOptions) -> _Plan:
    func = expr.value
    return _Plan(lambda args: func(*args))


_HANDLERS: dict[ExprKind, Callable[[Expr, list, CompileOptions], _Plan]] = {
    ExprKind.LITERAL: _literal,
    ExprKind.PARAMETER: _parameter,
    ExprKind.NESTED: _nested,
    ExprKind.NEG: _neg,
    ExprKind.ADD: _binary,
    ExprKind.SUB: _binary,
    ExprKind.MUL: _binary,
    ExprKind.MATMUL: _matmul,
    ExprKind.DOT: _dot,
    ExprKind.VCAT: _vcat,
    ExprKind.CONVERT: _convert,
    ExprKind.CALL: _call,
}


# =============================================================================
# Cached nodes
# =============================================================================


class _Node:
    """Cached mirror of one Expr node."""

    __slots__ = ("kind", "children", "args", "deps", "seen", "recompute", "stable", "inplace", "result")

    def __init__(self, kind: ExprKind, children: list["_Node"], deps: tuple[tuple[Model, int], ...], plan: _Plan):
        self.kind = kind
        self.children = children
        self.args = [c.result for c in children]
        self.deps = deps
        self.seen = [-1] * len(deps)
        self.recompute = plan.recompute
        self.stable = plan.stable
        self.inplace = plan.inplace
        self.result = None

    def fresh(self) -> bool:
        seen = self.seen
        for i, (model, index) in enumerate(self.deps):
            if model.is_dirty(index) or model.version(index) != seen[i]:
                return False
        return True

    def update(self) -> Any:
        args = self.args
        for i, child in enumerate(self.children):
            args[i] = child()
        self.result = self.recompute(args)
        seen = self.seen
        for i, (model, index) in enumerate(self.deps):
            seen[i] = model.version(index)
        return self.result

    def __call__(self) -> Any:
        if self.fresh():
            return self.result
        return self.update()


def _dependencies(expr: Expr, children: list[_Node]) -> tuple[tuple[Model, int], ...]:
    deps: dict[tuple[Model, int], None] = {}
    if expr.kind == ExprKind.PARAMETER:
        deps[expr.value.key] = None
    elif expr.kind == ExprKind.NESTED:
        for key in expr.value.dependencies:
            deps[key] = None
    for child in children:
        for key in child.deps:
            deps.setdefault(key)
    return tuple(deps)


class _Compiler:
    """Builds the cached mirror of an Expr tree."""

    def __init__(self, options: CompileOptions):
        self.options = options
        self.nodes = 0
        self.inplace = 0

    def node(self, expr: Expr) -> _Node:
        if not isinstance(expr, Expr):
            raise BuildError(f"expected Expr, got {type(expr).__name__}")
        if self.options.inplace and expr.kind == ExprKind.MUL:
            fused = self._fuse_scaled_matmul(expr)
            if fused is not None:
                return fused
        children = [self.node(c) for c in expr.children]
        return self.build(expr, children, _HANDLERS.get(expr.kind))

    def _fuse_scaled_matmul(self, expr: Expr) -> Optional[_Node]:
        left, right = expr.children
        if right.kind == ExprKind.MATMUL and left.kind != ExprKind.MATMUL:
            scalar, product = left, right
        elif left.kind == ExprKind.MATMUL and right.kind != ExprKind.MATMUL:
            scalar, product = right, left
        else:
            return None
        children = [self.node(scalar)] + [self.node(c) for c in product.children]
        plan = _scaled_matmul(children)
        if plan is not None:
            return self.build(expr, children, lambda e, c, o: plan)
        product_node = self.build(product, children[1:], _HANDLERS[ExprKind.MATMUL])
        ordered = [children[0], product_node] if scalar is left else [product_node, children[0]]
        return self.build(expr, ordered, _HANDLERS[ExprKind.MUL])

    def build(self, expr: Expr, children: list[_Node], handler) -> _Node:
        if handler is None:
            raise BuildError(f"unsupported expression kind {expr.kind}")
        try:
            plan = handler(expr, children, self.options)
            node = _Node(expr.kind, children, _dependencies(expr, children), plan)
            node.update()
        except TypeError as exc:
            raise BuildError(f"cannot compile {expr!r}: {exc}") from exc
        self.nodes += 1
        self.inplace += plan.inplace
        return node


# =============================================================================
# Public API
# =============================================================================


class CompiledExpression(BuilderOperators):
    """
    Lazily re-evaluated form of an Expr tree.

    Call it to get the current result. Results of in-place nodes are the
    same objects on every call; their contents change when a dependency
    is marked dirty. Compiled expressions can be used as leaves of further
    expressions.
    """

    def __init__(self, expr: Expr, root: _Node, options: CompileOptions):
        self.expr = expr
        self.options = options
        self._root = root

    def __repr__(self) -> str:
        return f"CompiledExpression({self.expr!r})"

    def __call__(self) -> Any:
        return self._root()

    @property
    def dependencies(self) -> tuple[tuple[Model, int], ...]:
        """``(model, index)`` pairs of every Parameter this expression reads."""
        return self._root.deps

    @property
    def parameters(self) -> list[Parameter]:
        return [model.handle(index) for model, index in self._root.deps]

    @property
    def stale(self) -> bool:
        """True if the next call will recompute."""
        return not self._root.fresh()

    @property
    def stable(self) -> bool:
        """True if every call returns the same result object."""
        return self._root.stable


@beartype
def compile(expr: Any, options: Optional[CompileOptions] = None) -> CompiledExpression:
    """
    Compile ``expr`` once into a lazily re-evaluated expression.

    ``expr`` may be an Expr or anything :func:`~lazyqp.expression.to_expr`
    accepts. The tree is evaluated once to size the result storage.

    Raises
    ------
    BuildError
        If a node kind, a literal, or a combination of operands is not
        supported.
    DimensionError
        If operand shapes do not agree.
    """
    if options is None:
        options = CompileOptions()
    expr = to_expr(expr)
    compiler = _Compiler(options)
    root = compiler.node(expr)
    logger.debug(
        "compiled %r: %d nodes (%d in place), %d parameter dependencies",
        expr,
        compiler.nodes,
        compiler.inplace,
        len(root.deps),
    )
    return CompiledExpression(expr, root, options)


@beartype
def evaluate(target: Union[Term, BuilderOperators], assignment: Optional[Assignment] = None) -> Any:
    """
    Evaluate a term under ``assignment``, or the current value of a compiled
    or wrapped expression (or Parameter).
    """
    if isinstance(target, Term):
        return target(assignment)
    if assignment is not None:
        raise TypeError(f"{type(target).__name__} takes no variable assignment")
    return target()
