"""
Term algebra for affine and quadratic functions.

Terms are immutable value objects built from numeric data and decision
variables. Arithmetic on terms promotes both operands to a common type and
canonicalizes the result, so any combination of ``+``, ``-`` and scalar
``*`` ends up as a flat ``Sum[Scaled[...]]`` or as one of the two
canonical aggregates:

    AffineFunction    = Sum[Scaled[LinearTerm]] + Sum[Scaled[Constant]]
    QuadraticFunction = Sum[Scaled[QuadraticTerm]] + AffineFunction

Promotion Lattice
=================

::

    T  ->  Scaled[T]  ->  Sum[Scaled[T]]  ->  AffineFunction     (T linear/constant)
                                          ->  QuadraticFunction  (T quadratic, or mixed)

Simplification Rules
====================

1. Scaled(s1, Scaled(s2, t))  -> Scaled(s1 * s2, t)
2. Scaled(s, Sum(ts))         -> Sum(Scaled(s, t) for t in ts)
3. Sum(Sum(...), ...)         -> one flat Sum, order preserved
4. Scaled(s, AffineFunction)  -> AffineFunction with s pushed into both parts
5. Scaled(s, QuadraticFunction) -> likewise
6. Sum(AffineFunction, ...)   -> AffineFunction of part-wise Sums
   (and likewise for QuadraticFunction)

Rules run bottom-up to a fixed point after every operator. Raw
constructor calls are never simplified.

Example
-------
>>> import numpy as np
>>> from lazyqp import Constant, LinearTerm, Variable
>>> v1, v2 = Variable(1), Variable(2)
>>> f = 3 * Constant([1, 2]) + 2 * LinearTerm(np.eye(2), [v1, v2])
>>> type(f).__name__
'AffineFunction'
>>> f({v1: 1.0, v2: -1.0})
array([5., 4.])
"""

from __future__ import annotations

import numbers
import warnings
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import scipy.sparse as sp
from beartype import beartype

from lazyqp.errors import DimensionError, EmptySumError, UnboundVariableError
from lazyqp.parameter import Parameter
from lazyqp.types import (
    AFFINE_FUNCTION,
    CONSTANT,
    CONSTANT_PART,
    LINEAR,
    LINEAR_PART,
    QUADRATIC,
    QUADRATIC_FUNCTION,
    QUADRATIC_PART,
    Assignment,
    Storage,
    TermKind,
    TermType,
    scaled,
    summed,
)
from lazyqp.variable import Variable

# =============================================================================
# Helpers
# =============================================================================


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def _lookup(assignment: Optional[Assignment], x: tuple[Variable, ...]) -> np.ndarray:
    """Values of ``x`` under ``assignment``."""
    values = np.empty(len(x))
    if assignment is None:
        assignment = {}
    for i, var in enumerate(x):
        try:
            values[i] = assignment[var]
        except KeyError:
            raise UnboundVariableError(var) from None
    return values


def _as_variables(x: Iterable[Any]) -> tuple[Variable, ...]:
    x = tuple(x)
    for var in x:
        if not isinstance(var, Variable):
            raise TypeError(f"expected Variable, got {type(var).__name__}")
    return x


def _shape(data: Any) -> tuple[int, ...]:
    if isinstance(data, Parameter):
        data = data.value
    if sp.issparse(data):
        return data.shape
    return np.shape(data)


def _dense(data: Any) -> np.ndarray:
    if sp.issparse(data):
        return data.toarray()
    return np.asarray(data)


def _same(a: Any, b: Any) -> bool:
    """Structural equality of term fields."""
    if isinstance(a, (Term, Variable)) or isinstance(b, (Term, Variable)):
        return a == b
    if isinstance(a, tuple) and isinstance(b, tuple):
        return len(a) == len(b) and all(_same(u, v) for u, v in zip(a, b))
    return np.array_equal(_dense(a), _dense(b))


def _is_scalar(x: Any) -> bool:
    return isinstance(x, numbers.Real) and not isinstance(x, bool)


def _is_vector_like(x: Any) -> bool:
    if isinstance(x, np.ndarray):
        return x.dtype.kind in "biuf"
    if isinstance(x, (list, tuple)):
        return len(x) > 0 and all(_is_scalar(e) for e in x)
    return False


# =============================================================================
# Base class
# =============================================================================


class Term:
    """
    Base class for all term-algebra nodes.

    Subclasses form a closed set; behavior that depends on the node kind
    (promotion, conversion, simplification) lives in the dispatch tables
    of this module rather than in subclass methods.
    """

    __slots__ = ()

    # Keep numpy from broadcasting over a Term as an object scalar
    __array_ufunc__ = None
    __hash__ = None

    kind: TermKind

    @property
    def term_type(self) -> TermType:
        raise NotImplementedError

    @property
    def outputdim(self) -> int:
        raise NotImplementedError

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        raise NotImplementedError

    def _fields(self) -> tuple:
        raise NotImplementedError

    def __eq__(self, other: Any):
        if not isinstance(other, Term):
            return NotImplemented
        return self.kind is other.kind and _same(self._fields(), other._fields())

    def __ne__(self, other: Any):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    # Arithmetic operators - promote, combine, simplify
    def __add__(self, other: Any):
        other = _as_term(other)
        if other is NotImplemented:
            return NotImplemented
        return add(self, other)

    def __radd__(self, other: Any):
        other = _as_term(other)
        if other is NotImplemented:
            return NotImplemented
        return add(other, self)

    def __sub__(self, other: Any):
        other = _as_term(other)
        if other is NotImplemented:
            return NotImplemented
        return add(self, scale(-1.0, other))

    def __rsub__(self, other: Any):
        other = _as_term(other)
        if other is NotImplemented:
            return NotImplemented
        return add(other, scale(-1.0, self))

    def __mul__(self, other: Any):
        if not _is_scalar(other):
            return NotImplemented
        return scale(other, self)

    def __rmul__(self, other: Any):
        if not _is_scalar(other):
            return NotImplemented
        return scale(other, self)

    def __neg__(self) -> "Term":
        return scale(-1.0, self)

    def __pos__(self) -> "Term":
        return self


def _as_term(x: Any) -> Any:
    if isinstance(x, Term):
        return x
    if _is_vector_like(x):
        return Constant(x)
    return NotImplemented


# =============================================================================
# Leaves
# =============================================================================


@dataclass(frozen=True, eq=False)
class Constant(Term):
    """
    Constant vector ``v``.

    ``v`` is copied to a read-only float64 vector, unless it is a Parameter,
    in which case the term reads the parameter's current value every time.
    """

    v: Any
    storage: Storage = Storage.OWNED

    kind = TermKind.CONSTANT

    def __post_init__(self):
        if isinstance(self.v, Parameter):
            object.__setattr__(self, "storage", Storage.PARAMETER)
        elif self.storage is Storage.BUFFER:
            if not isinstance(self.v, np.ndarray):
                raise TypeError("buffer-backed Constant requires an ndarray")
        else:
            v = np.array(self.v, dtype=np.float64)
            if v.ndim == 0:
                v = v.reshape(1)
            object.__setattr__(self, "v", _readonly(v))
            object.__setattr__(self, "storage", Storage.OWNED)
        if len(_shape(self.v)) != 1:
            raise DimensionError(f"Constant requires a vector, got shape {_shape(self.v)}")

    def __repr__(self) -> str:
        if self.storage is Storage.PARAMETER:
            return f"Constant({self.v!r})"
        return f"Constant({self.v.tolist()})"

    @property
    def values(self) -> np.ndarray:
        if self.storage is Storage.PARAMETER:
            return np.asarray(self.v())
        return self.v

    @property
    def term_type(self) -> TermType:
        return CONSTANT

    @property
    def outputdim(self) -> int:
        return _shape(self.v)[0]

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        return self.values

    def _fields(self) -> tuple:
        return (_current(self.v),)


@dataclass(frozen=True, eq=False)
class LinearTerm(Term):
    """
    Linear term ``A @ x``.

    ``A`` must have ``len(x)`` columns. An ndarray (or scipy sparse matrix)
    is copied to a read-only float64 array; a Parameter is aliased.
    """

    A: Any
    x: Sequence[Variable]
    storage: Storage = Storage.OWNED

    kind = TermKind.LINEAR

    def __post_init__(self):
        object.__setattr__(self, "x", _as_variables(self.x))
        if isinstance(self.A, Parameter):
            object.__setattr__(self, "storage", Storage.PARAMETER)
        elif self.storage is Storage.BUFFER:
            if not isinstance(self.A, np.ndarray):
                raise TypeError("buffer-backed LinearTerm requires an ndarray")
        else:
            A = _dense(self.A) if sp.issparse(self.A) else self.A
            object.__setattr__(self, "A", _readonly(np.array(A, dtype=np.float64)))
            object.__setattr__(self, "storage", Storage.OWNED)
        shape = _shape(self.A)
        if len(shape) != 2:
            raise DimensionError(f"LinearTerm requires a matrix, got shape {shape}")
        if shape[1] != len(self.x):
            raise DimensionError(f"LinearTerm matrix has {shape[1]} columns but {len(self.x)} variables")

    def __repr__(self) -> str:
        rows, cols = _shape(self.A)
        return f"LinearTerm({rows}x{cols}, {list(self.x)})"

    @property
    def matrix(self) -> Any:
        if self.storage is Storage.PARAMETER:
            return self.A()
        return self.A

    @property
    def term_type(self) -> TermType:
        return LINEAR

    @property
    def outputdim(self) -> int:
        return _shape(self.A)[0]

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        return self.matrix @ _lookup(assignment, self.x)

    def _fields(self) -> tuple:
        return (_current(self.A), self.x)


@dataclass(frozen=True, eq=False)
class QuadraticTerm(Term):
    """
    Quadratic term ``x' Q x`` (output dimension 1).

    ``Q`` must be square with side ``len(x)``. Owned matrices, dense or
    scipy sparse, are stored symmetrized from their upper triangle. A
    Parameter is aliased and its value is taken to be symmetric.

    ``QuadraticTerm()`` is the empty term, which evaluates to zero.
    """

    Q: Any = None
    x: Sequence[Variable] = ()
    storage: Storage = Storage.OWNED

    kind = TermKind.QUADRATIC

    def __post_init__(self):
        object.__setattr__(self, "x", _as_variables(self.x))
        n = len(self.x)
        if self.Q is None:
            object.__setattr__(self, "Q", np.zeros((n, n)))
        if isinstance(self.Q, Parameter):
            object.__setattr__(self, "storage", Storage.PARAMETER)
        elif self.storage is Storage.BUFFER:
            if not isinstance(self.Q, np.ndarray):
                raise TypeError("buffer-backed QuadraticTerm requires an ndarray")
        if _shape(self.Q) != (n, n):
            raise DimensionError(f"QuadraticTerm requires a {n}x{n} matrix, got shape {_shape(self.Q)}")
        if self.storage is Storage.OWNED:
            object.__setattr__(self, "Q", _symmetric(self.Q))

    def __repr__(self) -> str:
        return f"QuadraticTerm({list(self.x)})"

    @property
    def matrix(self) -> Any:
        if self.storage is Storage.PARAMETER:
            return self.Q()
        return self.Q

    @property
    def term_type(self) -> TermType:
        return QUADRATIC

    @property
    def outputdim(self) -> int:
        return 1

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        values = _lookup(assignment, self.x)
        return np.array([values @ (self.matrix @ values)])

    def _fields(self) -> tuple:
        return (_current(self.Q), self.x)


def _current(data: Any) -> Any:
    if isinstance(data, Parameter):
        return data.value
    return data


def _symmetric(Q: Any) -> Any:
    """Symmetric float64 copy of ``Q`` built from its upper triangle."""
    if sp.issparse(Q):
        Q = sp.csc_matrix(Q, dtype=np.float64)
        if (Q != Q.T).nnz:
            warnings.warn("QuadraticTerm matrix is not symmetric, using its upper triangle")
        return (sp.triu(Q) + sp.triu(Q, k=1).T).tocsc()
    Q = np.array(Q, dtype=np.float64)
    if not np.array_equal(Q, Q.T):
        warnings.warn("QuadraticTerm matrix is not symmetric, using its upper triangle")
    return _readonly(np.triu(Q) + np.triu(Q, k=1).T)


# =============================================================================
# Wrappers
# =============================================================================


@dataclass(frozen=True, eq=False)
class Scaled(Term):
    """Scalar multiple ``scalar * term``."""

    scalar: numbers.Real
    term: Term

    kind = TermKind.SCALED

    def __post_init__(self):
        if not _is_scalar(self.scalar):
            raise TypeError(f"Scaled requires a real scalar, got {type(self.scalar).__name__}")
        if not isinstance(self.term, Term):
            raise TypeError(f"Scaled requires a Term, got {type(self.term).__name__}")
        object.__setattr__(self, "scalar", float(self.scalar))

    def __repr__(self) -> str:
        return f"{self.scalar} * {self.term!r}"

    @property
    def term_type(self) -> TermType:
        return scaled(self.term.term_type)

    @property
    def outputdim(self) -> int:
        return self.term.outputdim

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        return self.scalar * self.term(assignment)

    def _fields(self) -> tuple:
        return (self.scalar, self.term)


@dataclass(frozen=True, eq=False)
class Sum(Term):
    """
    Sum of one or more terms of the same type and output dimension.

    Raises
    ------
    EmptySumError
        If ``terms`` is empty.
    DimensionError
        If the terms' output dimensions differ.
    TypeError
        If the terms are of different types.
    """

    terms: Sequence[Term]

    kind = TermKind.SUM

    def __post_init__(self):
        terms = tuple(self.terms)
        if not terms:
            raise EmptySumError("Sum requires at least one term")
        for term in terms:
            if not isinstance(term, Term):
                raise TypeError(f"Sum requires Terms, got {type(term).__name__}")
        dim = terms[0].outputdim
        for term in terms[1:]:
            if term.outputdim != dim:
                raise DimensionError(f"Sum terms have output dimensions {dim} and {term.outputdim}")
        first = terms[0].term_type
        for term in terms[1:]:
            if term.term_type != first:
                raise TypeError(f"Sum terms have types {first!r} and {term.term_type!r}")
        object.__setattr__(self, "terms", terms)

    def __repr__(self) -> str:
        return "(" + " + ".join(repr(t) for t in self.terms) + ")"

    def __len__(self) -> int:
        return len(self.terms)

    @property
    def term_type(self) -> TermType:
        return summed(self.terms[0].term_type)

    @property
    def outputdim(self) -> int:
        return self.terms[0].outputdim

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        total = self.terms[0](assignment)
        for term in self.terms[1:]:
            total = total + term(assignment)
        return total

    def _fields(self) -> tuple:
        return self.terms


# =============================================================================
# Canonical aggregates
# =============================================================================


def _check_part(name: str, part: Any, expected: TermType) -> None:
    if not isinstance(part, Term) or part.term_type != expected:
        got = part.term_type if isinstance(part, Term) else type(part).__name__
        raise TypeError(f"{name} must be {expected!r}, got {got!r}")


@dataclass(frozen=True, eq=False)
class AffineFunction(Term):
    """Affine function ``linear(x) + constant``."""

    linear: Term
    constant: Term

    kind = TermKind.AFFINE_FUNCTION

    def __post_init__(self):
        _check_part("linear part", self.linear, LINEAR_PART)
        _check_part("constant part", self.constant, CONSTANT_PART)
        if self.linear.outputdim != self.constant.outputdim:
            raise DimensionError(
                f"AffineFunction parts have output dimensions {self.linear.outputdim} and {self.constant.outputdim}"
            )

    def __repr__(self) -> str:
        return f"AffineFunction({self.linear!r} + {self.constant!r})"

    @property
    def term_type(self) -> TermType:
        return AFFINE_FUNCTION

    @property
    def outputdim(self) -> int:
        return self.constant.outputdim

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        return self.linear(assignment) + self.constant(assignment)

    def _fields(self) -> tuple:
        return (self.linear, self.constant)


@dataclass(frozen=True, eq=False)
class QuadraticFunction(Term):
    """Scalar quadratic function ``quadratic(x) + affine(x)``."""

    quadratic: Term
    affine: Term

    kind = TermKind.QUADRATIC_FUNCTION

    def __post_init__(self):
        _check_part("quadratic part", self.quadratic, QUADRATIC_PART)
        _check_part("affine part", self.affine, AFFINE_FUNCTION)
        if self.affine.outputdim != self.quadratic.outputdim:
            raise DimensionError(
                f"QuadraticFunction parts have output dimensions {self.quadratic.outputdim} and {self.affine.outputdim}"
            )

    def __repr__(self) -> str:
        return f"QuadraticFunction({self.quadratic!r} + {self.affine!r})"

    @property
    def term_type(self) -> TermType:
        return QUADRATIC_FUNCTION

    @property
    def outputdim(self) -> int:
        return 1

    def __call__(self, assignment: Optional[Assignment] = None) -> np.ndarray:
        return self.quadratic(assignment) + self.affine(assignment)

    def _fields(self) -> tuple:
        return (self.quadratic, self.affine)


# =============================================================================
# Promotion and conversion
# =============================================================================


@beartype
def promote_type(a: TermType, b: TermType) -> TermType:
    """Least common supertype of ``a`` and ``b`` in the promotion lattice."""
    if a == b:
        return a
    for lower, upper in ((a, b), (b, a)):
        if upper == scaled(lower) or upper == summed(lower):
            return upper
    if a.is_quadratic or b.is_quadratic:
        return QUADRATIC_FUNCTION
    return AFFINE_FUNCTION


def _scaled_leaves(term: Term, scalar: float, out: dict[TermKind, list[Scaled]]) -> None:
    """Collect ``term`` as scaled leaves, grouped by leaf kind."""
    kind = term.kind
    if kind in (TermKind.CONSTANT, TermKind.LINEAR, TermKind.QUADRATIC):
        out[kind].append(Scaled(scalar, term))
    elif kind is TermKind.SCALED:
        _scaled_leaves(term.term, scalar * term.scalar, out)
    elif kind is TermKind.SUM:
        for t in term.terms:
            _scaled_leaves(t, scalar, out)
    elif kind is TermKind.AFFINE_FUNCTION:
        _scaled_leaves(term.linear, scalar, out)
        _scaled_leaves(term.constant, scalar, out)
    else:
        _scaled_leaves(term.quadratic, scalar, out)
        _scaled_leaves(term.affine, scalar, out)


def _affine_from_leaves(leaves: dict[TermKind, list[Scaled]], dim: int) -> AffineFunction:
    linear = leaves[TermKind.LINEAR] or [Scaled(1.0, LinearTerm(np.zeros((dim, 0)), ()))]
    constant = leaves[TermKind.CONSTANT] or [Scaled(1.0, Constant(np.zeros(dim)))]
    return AffineFunction(Sum(linear), Sum(constant))


def _to_affine(term: Term) -> AffineFunction:
    leaves: dict[TermKind, list[Scaled]] = defaultdict(list)
    _scaled_leaves(term, 1.0, leaves)
    if leaves[TermKind.QUADRATIC]:
        raise TypeError(f"cannot convert quadratic {term.term_type!r} to AffineFunction")
    return _affine_from_leaves(leaves, term.outputdim)


def _to_quadratic(term: Term) -> QuadraticFunction:
    if term.kind is TermKind.AFFINE_FUNCTION:
        return QuadraticFunction(Sum([Scaled(1.0, QuadraticTerm())]), term)
    leaves: dict[TermKind, list[Scaled]] = defaultdict(list)
    _scaled_leaves(term, 1.0, leaves)
    quadratic = leaves[TermKind.QUADRATIC] or [Scaled(1.0, QuadraticTerm())]
    return QuadraticFunction(Sum(quadratic), _affine_from_leaves(leaves, term.outputdim))


@beartype
def convert_term(target: TermType, term: Term) -> Term:
    """
    Convert ``term`` to type ``target``.

    Raises TypeError if ``target`` is not reachable from the term's type in
    the promotion lattice.
    """
    source = term.term_type
    if source == target:
        return term
    kind = target.kind
    if kind is TermKind.SCALED:
        return Scaled(1.0, convert_term(target.inner, term))
    if kind is TermKind.SUM:
        return Sum([convert_term(target.inner, term)])
    if kind is TermKind.AFFINE_FUNCTION:
        return _to_affine(term)
    if kind is TermKind.QUADRATIC_FUNCTION:
        return _to_quadratic(term)
    raise TypeError(f"cannot convert {source!r} to {target!r}")


# =============================================================================
# Simplification
# =============================================================================


def _simplify_scaled(term: Scaled) -> Term:
    s = term.scalar
    inner = simplify(term.term)
    kind = inner.kind
    if kind is TermKind.SCALED:
        return simplify(Scaled(s * inner.scalar, inner.term))
    if kind is TermKind.SUM:
        return simplify(Sum([Scaled(s, t) for t in inner.terms]))
    if kind is TermKind.AFFINE_FUNCTION:
        return AffineFunction(simplify(Scaled(s, inner.linear)), simplify(Scaled(s, inner.constant)))
    if kind is TermKind.QUADRATIC_FUNCTION:
        return QuadraticFunction(simplify(Scaled(s, inner.quadratic)), simplify(Scaled(s, inner.affine)))
    if inner is term.term:
        return term
    return Scaled(s, inner)


def _simplify_sum(term: Sum) -> Term:
    terms = [simplify(t) for t in term.terms]
    kind = terms[0].kind
    if kind is TermKind.SUM:
        return simplify(Sum([u for t in terms for u in t.terms]))
    if kind is TermKind.AFFINE_FUNCTION:
        linear = simplify(Sum([t.linear for t in terms]))
        constant = simplify(Sum([t.constant for t in terms]))
        return AffineFunction(linear, constant)
    if kind is TermKind.QUADRATIC_FUNCTION:
        quadratic = simplify(Sum([t.quadratic for t in terms]))
        affine = simplify(Sum([t.affine for t in terms]))
        return QuadraticFunction(quadratic, affine)
    if all(t is u for t, u in zip(terms, term.terms)):
        return term
    return Sum(terms)


_SIMPLIFY_RULES: dict[TermKind, Callable[[Any], Term]] = {
    TermKind.SCALED: _simplify_scaled,
    TermKind.SUM: _simplify_sum,
}


@beartype
def simplify(term: Term) -> Term:
    """Canonicalize nested Scaled/Sum wrappers (see module docstring)."""
    rule = _SIMPLIFY_RULES.get(term.kind)
    if rule is None:
        return term
    return rule(term)


# =============================================================================
# Operations
# =============================================================================


@beartype
def add(a: Term, b: Term) -> Term:
    """``a + b``, promoted to a common type and simplified."""
    a, b = simplify(a), simplify(b)
    target = promote_type(a.term_type, b.term_type)
    return simplify(Sum([convert_term(target, a), convert_term(target, b)]))


@beartype
def scale(s: numbers.Real, term: Term) -> Term:
    """``s * term``, simplified."""
    return simplify(Scaled(float(s), simplify(term)))


@beartype
def canonical(term: Term) -> Term:
    """Convert ``term`` to its canonical aggregate (AffineFunction or QuadraticFunction)."""
    target = QUADRATIC_FUNCTION if term.term_type.is_quadratic else AFFINE_FUNCTION
    return simplify(convert_term(target, simplify(term)))


@beartype
def outputdim(term: Term) -> int:
    """Length of the vector ``term`` evaluates to."""
    return term.outputdim


@beartype
def quad(Q: Any, x: Sequence[Variable]) -> QuadraticTerm:
    """Quadratic term ``x' Q x``."""
    return QuadraticTerm(Q, tuple(x))


@beartype
def variable_dot(x: Sequence[Variable], y: Sequence[Variable]) -> QuadraticTerm:
    """Quadratic term equal to the inner product ``x . y`` of two variable vectors."""
    if len(x) != len(y):
        raise DimensionError(f"cannot take the inner product of {len(x)} and {len(y)} variables")
    if tuple(x) == tuple(y):
        return QuadraticTerm(np.eye(len(x)), tuple(x))
    order: dict[Variable, int] = {}
    for var in (*x, *y):
        order.setdefault(var, len(order))
    Q = np.zeros((len(order), len(order)))
    for u, v in zip(x, y):
        Q[order[u], order[v]] += 0.5
        Q[order[v], order[u]] += 0.5
    return QuadraticTerm(Q, tuple(order))


def affine_rows(A: np.ndarray, x: Sequence[Variable], storage: Storage = Storage.OWNED) -> list[AffineFunction]:
    """
    One AffineFunction per row of ``A @ x``.

    With ``Storage.BUFFER`` each row's LinearTerm is a view of the
    corresponding row of ``A``, so writing into ``A`` updates the rows.
    """
    x = _as_variables(x)
    rows = []
    for i in range(A.shape[0]):
        linear = Sum([Scaled(1.0, LinearTerm(A[i : i + 1], x, storage))])
        constant = Sum([Scaled(1.0, Constant(np.zeros(1)))])
        rows.append(AffineFunction(linear, constant))
    return rows


@beartype
def matvec(A: Any, x: Sequence[Variable]) -> list[AffineFunction]:
    """
    Symbolic product of a numeric matrix and a vector of variables.

    Returns one AffineFunction per row of ``A``.
    """
    A = np.asarray(_dense(A), dtype=np.float64)
    if A.ndim != 2:
        raise DimensionError(f"matvec requires a matrix, got shape {A.shape}")
    if A.shape[1] != len(x):
        raise DimensionError(f"matrix has {A.shape[1]} columns but {len(x)} variables")
    return affine_rows(A, x)
