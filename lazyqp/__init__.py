"""
LazyQP - Lazily Re-evaluated Affine and Quadratic Functions

A Python library for building the affine and quadratic functions of a
parametric optimization problem once, and re-evaluating them in place as
the problem's parameters change between solves.

- ``lazyqp.functions``: the term algebra (Constant, LinearTerm,
  QuadraticTerm, Scaled, Sum, AffineFunction, QuadraticFunction)
- ``lazyqp.parameter``: Parameters with dirty tracking, owned by a Model
- ``lazyqp.expression``: the expression builder
- ``lazyqp.compiler``: compilation into cached, in-place evaluated objects
- ``lazyqp.wrapped``: uniformly typed callables over compiled expressions
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from .errors import BuildError, DimensionError, EmptySumError, UnboundVariableError
from .types import Storage, TermKind, TermType
from .variable import Variable, variables
from .parameter import Model, Parameter, mark_all_dirty, mark_dirty
from .functions import (
    AffineFunction,
    Constant,
    LinearTerm,
    QuadraticFunction,
    QuadraticTerm,
    Scaled,
    Sum,
    Term,
    canonical,
    convert_term,
    matvec,
    outputdim,
    promote_type,
    quad,
    simplify,
    variable_dot,
)
from .expression import Expr, ExprKind, call, convert, dot, find_parameters, to_expr, vcat
from .compiler import CompiledExpression, CompileOptions, compile, evaluate
from .wrapped import WrappedExpression, wrap

__all__ = [
    "__version__",
    # Errors
    "BuildError",
    "DimensionError",
    "EmptySumError",
    "UnboundVariableError",
    # Types
    "Storage",
    "TermKind",
    "TermType",
    # Variables and parameters
    "Variable",
    "variables",
    "Model",
    "Parameter",
    "mark_dirty",
    "mark_all_dirty",
    # Term algebra
    "Term",
    "Constant",
    "LinearTerm",
    "QuadraticTerm",
    "Scaled",
    "Sum",
    "AffineFunction",
    "QuadraticFunction",
    "promote_type",
    "convert_term",
    "simplify",
    "canonical",
    "outputdim",
    "quad",
    "matvec",
    "variable_dot",
    # Builder
    "Expr",
    "ExprKind",
    "to_expr",
    "vcat",
    "convert",
    "call",
    "dot",
    "find_parameters",
    # Compilation
    "CompileOptions",
    "CompiledExpression",
    "compile",
    "evaluate",
    "WrappedExpression",
    "wrap",
]
