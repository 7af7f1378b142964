"""Tests for the term algebra (lazyqp.functions).

Covers construction contracts, pure evaluation, the promotion lattice,
conversion and simplification, without the builder or compiler.
"""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp
from numpy.testing import assert_array_equal

from lazyqp import (
    AffineFunction,
    Constant,
    DimensionError,
    EmptySumError,
    LinearTerm,
    Model,
    Parameter,
    QuadraticFunction,
    QuadraticTerm,
    Scaled,
    Storage,
    Sum,
    UnboundVariableError,
    canonical,
    convert_term,
    evaluate,
    matvec,
    outputdim,
    promote_type,
    quad,
    simplify,
    variable_dot,
    variables,
)
from lazyqp.types import (
    AFFINE_FUNCTION,
    CONSTANT,
    LINEAR,
    QUADRATIC,
    QUADRATIC_FUNCTION,
    TermKind,
    scaled,
    summed,
)

v1, v2, v3 = variables(range(1, 4))


# ---------------------------------------------------------------------------
# Leaves
# ---------------------------------------------------------------------------


class TestConstant:
    """Constant vectors."""

    def test_copies_to_float(self) -> None:
        data = [1, 2, 3]
        c = Constant(data)
        data[0] = 10
        assert c.values.dtype == np.float64
        assert_array_equal(c(), [1.0, 2.0, 3.0])
        assert outputdim(c) == 3
        assert c.storage is Storage.OWNED

    def test_values_are_read_only(self) -> None:
        c = Constant(np.zeros(2))
        with pytest.raises(ValueError):
            c.values[0] = 1.0

    def test_scalar_becomes_length_one(self) -> None:
        assert outputdim(Constant(2.0)) == 1

    def test_matrix_rejected(self) -> None:
        with pytest.raises(DimensionError):
            Constant(np.zeros((2, 2)))

    def test_parameter_backed(self) -> None:
        m = Model()
        p = Parameter(lambda v: v.fill(4.0), np.ones(2), model=m)
        c = Constant(p)
        assert c.storage is Storage.PARAMETER
        assert_array_equal(c(), [1.0, 1.0])
        p.mark_dirty()
        assert_array_equal(c(), [4.0, 4.0])


class TestLinearTerm:
    """Linear terms A @ x."""

    def test_evaluate(self) -> None:
        t = LinearTerm(np.array([[1.0, 2.0], [3.0, 4.0]]), [v1, v2])
        assert_array_equal(t({v1: 1.0, v2: -1.0}), [-1.0, -1.0])
        assert outputdim(t) == 2

    def test_column_mismatch(self) -> None:
        with pytest.raises(DimensionError):
            LinearTerm(np.eye(3), [v1, v2])

    def test_vector_rejected(self) -> None:
        with pytest.raises(DimensionError):
            LinearTerm(np.ones(2), [v1, v2])

    def test_unbound_variable(self) -> None:
        t = LinearTerm(np.eye(2), [v1, v2])
        with pytest.raises(UnboundVariableError) as info:
            t({v1: 1.0})
        assert info.value.variable == v2
        assert isinstance(info.value, KeyError)

    def test_sparse_matrix_is_copied_dense(self) -> None:
        t = LinearTerm(sp.csr_matrix(np.eye(2)), [v1, v2])
        assert isinstance(t.A, np.ndarray)
        assert_array_equal(t({v1: 2.0, v2: 3.0}), [2.0, 3.0])

    def test_owned_copy(self) -> None:
        A = np.eye(2)
        t = LinearTerm(A, [v1, v2])
        A[0, 0] = 5.0
        assert_array_equal(t({v1: 1.0, v2: 1.0}), [1.0, 1.0])

    def test_parameter_is_aliased(self) -> None:
        m = Model()
        scale = [1.0]

        def fill(A):
            A[:] = scale[0] * np.eye(2)

        A = Parameter(fill, np.eye(2), model=m)
        t = LinearTerm(A, [v1, v2])
        assert t.storage is Storage.PARAMETER
        scale[0] = 3.0
        A.mark_dirty()
        assert_array_equal(t({v1: 1.0, v2: 2.0}), [3.0, 6.0])


class TestQuadraticTerm:
    """Quadratic terms x' Q x."""

    def test_evaluate(self) -> None:
        t = QuadraticTerm(np.array([[2.0, 1.0], [1.0, 2.0]]), [v1, v2])
        # 2 + 2 * 1 * 2 + 2 * 4
        assert_array_equal(t({v1: 1.0, v2: 2.0}), [14.0])
        assert outputdim(t) == 1

    def test_empty(self) -> None:
        t = QuadraticTerm()
        assert outputdim(t) == 1
        assert_array_equal(t({}), [0.0])

    def test_not_square(self) -> None:
        with pytest.raises(DimensionError):
            QuadraticTerm(np.eye(3), [v1, v2])

    def test_upper_triangle_wins(self) -> None:
        with pytest.warns(UserWarning, match="not symmetric"):
            t = QuadraticTerm(np.array([[1.0, 2.0], [0.0, 1.0]]), [v1, v2])
        assert_array_equal(t.Q, [[1.0, 2.0], [2.0, 1.0]])

    def test_sparse(self) -> None:
        t = quad(sp.csc_matrix(2.0 * np.eye(2)), [v1, v2])
        assert sp.issparse(t.Q)
        assert_array_equal(t({v1: 1.0, v2: 2.0}), [10.0])


# ---------------------------------------------------------------------------
# Wrappers and aggregates
# ---------------------------------------------------------------------------


class TestScaledAndSum:
    """Scaled and Sum construction and evaluation."""

    def test_scaled(self) -> None:
        t = Scaled(2, Constant([1.0, -1.0]))
        assert t.scalar == 2.0
        assert_array_equal(t(), [2.0, -2.0])

    def test_empty_sum(self) -> None:
        with pytest.raises(EmptySumError):
            Sum([])

    def test_sum_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionError):
            Sum([Constant([1.0, 2.0]), Constant([1.0])])

    def test_sum_type_mismatch(self) -> None:
        with pytest.raises(TypeError):
            Sum([Constant([1.0]), LinearTerm(np.ones((1, 1)), [v1])])

    def test_sum_evaluates_elementwise(self) -> None:
        t = Sum([Constant([1.0, 2.0]), Constant([3.0, 4.0])])
        assert_array_equal(t(), [4.0, 6.0])
        assert len(t) == 2


class TestAggregates:
    """AffineFunction and QuadraticFunction construction."""

    def test_affine_part_types(self) -> None:
        with pytest.raises(TypeError):
            AffineFunction(Sum([Constant([1.0])]), Sum([Scaled(1.0, Constant([1.0]))]))

    def test_affine_dimension_mismatch(self) -> None:
        linear = Sum([Scaled(1.0, LinearTerm(np.eye(2), [v1, v2]))])
        constant = Sum([Scaled(1.0, Constant([1.0]))])
        with pytest.raises(DimensionError):
            AffineFunction(linear, constant)

    def test_quadratic_function_evaluate(self) -> None:
        f = canonical(QuadraticTerm(np.eye(2), [v1, v2]) + Constant([1.0]))
        assert isinstance(f, QuadraticFunction)
        assert_array_equal(evaluate(f, {v1: 1.0, v2: 2.0}), [6.0])

    def test_quadratic_function_must_be_scalar(self) -> None:
        with pytest.raises(DimensionError):
            QuadraticTerm(np.eye(2), [v1, v2]) + LinearTerm(np.eye(2), [v1, v2])


# ---------------------------------------------------------------------------
# Promotion and conversion
# ---------------------------------------------------------------------------


class TestPromotion:
    """The promotion lattice."""

    def test_same_type(self) -> None:
        assert promote_type(CONSTANT, CONSTANT) == CONSTANT

    def test_scaled(self) -> None:
        assert promote_type(LINEAR, scaled(LINEAR)) == scaled(LINEAR)
        assert promote_type(scaled(LINEAR), LINEAR) == scaled(LINEAR)

    def test_summed(self) -> None:
        t = scaled(CONSTANT)
        assert promote_type(summed(t), t) == summed(t)

    def test_affine(self) -> None:
        assert promote_type(CONSTANT, LINEAR) == AFFINE_FUNCTION
        assert promote_type(scaled(CONSTANT), summed(scaled(LINEAR))) == AFFINE_FUNCTION

    def test_quadratic(self) -> None:
        assert promote_type(QUADRATIC, CONSTANT) == QUADRATIC_FUNCTION
        assert promote_type(AFFINE_FUNCTION, scaled(QUADRATIC)) == QUADRATIC_FUNCTION

    def test_repr(self) -> None:
        assert repr(summed(scaled(LINEAR))) == "Sum[Scaled[Linear]]"
        assert repr(AFFINE_FUNCTION) == "AffineFunction"

    def test_convert_to_wrappers(self) -> None:
        c = Constant([1.0])
        assert convert_term(scaled(CONSTANT), c) == Scaled(1.0, c)
        assert convert_term(summed(scaled(CONSTANT)), c) == Sum([Scaled(1.0, c)])

    def test_convert_to_affine(self) -> None:
        f = convert_term(AFFINE_FUNCTION, LinearTerm(np.eye(2), [v1, v2]))
        assert isinstance(f, AffineFunction)
        assert_array_equal(f({v1: 1.0, v2: 2.0}), [1.0, 2.0])

    def test_quadratic_to_affine_rejected(self) -> None:
        with pytest.raises(TypeError):
            convert_term(AFFINE_FUNCTION, QuadraticTerm(np.eye(1), [v1]))

    def test_downward_conversion_rejected(self) -> None:
        with pytest.raises(TypeError):
            convert_term(CONSTANT, Scaled(2.0, Constant([1.0])))


# ---------------------------------------------------------------------------
# Simplification and operators
# ---------------------------------------------------------------------------


class TestSimplify:
    """Canonicalization of nested wrappers."""

    def test_nested_scaling(self) -> None:
        c = Constant([1.0, 3.0])
        t = simplify(Scaled(2.0, Scaled(-1.5, c)))
        assert t == Scaled(-3.0, c)

    def test_scaling_is_exact(self) -> None:
        c = Constant([0.1, 0.7])
        env = {}
        for s1, s2 in [(2.0, 0.5), (-4.0, 0.25), (3.0, 1.0)]:
            assert_array_equal(evaluate(Scaled(s1, Scaled(s2, c)), env), s1 * s2 * evaluate(c, env))

    def test_distributes_over_sum(self) -> None:
        a, b = Constant([1.0]), Constant([2.0])
        t = simplify(Scaled(2.0, Sum([Scaled(1.0, a), Scaled(3.0, b)])))
        assert t == Sum([Scaled(2.0, a), Scaled(6.0, b)])

    def test_flattens_sum_of_sums(self) -> None:
        a, b, c = Constant([1.0]), Constant([2.0]), Constant([3.0])
        t = simplify(Sum([Sum([a, b]), Sum([c])]))
        assert t == Sum([a, b, c])

    def test_addition_is_flat(self) -> None:
        a, b, c = (Constant([float(i)]) for i in range(3))
        t1 = Sum([Scaled(1.0, a), Scaled(2.0, b)])
        t2 = Scaled(3.0, c)
        t = simplify(t1 + t2)
        assert t.kind is TermKind.SUM
        assert all(u.kind is TermKind.SCALED for u in t.terms)
        assert [u.term for u in t.terms] == [a, b, c]

    def test_raw_constructors_not_simplified(self) -> None:
        t = Scaled(2.0, Scaled(3.0, Constant([1.0])))
        assert t.term.kind is TermKind.SCALED

    def test_scaling_pushed_into_affine(self) -> None:
        f = canonical(LinearTerm(np.eye(2), [v1, v2]) + Constant([1.0, 1.0]))
        g = -2 * f
        assert isinstance(g, AffineFunction)
        assert_array_equal(g({v1: 1.0, v2: 2.0}), [-4.0, -6.0])


class TestOperators:
    """Arithmetic operators promote and simplify."""

    def test_end_to_end_affine(self) -> None:
        f = 3 * Constant([1, 2]) + 2 * LinearTerm(np.eye(2), [v1, v2])
        assert isinstance(f, AffineFunction)
        for a, b in [(0.0, 0.0), (1.0, -1.0), (2.5, 4.0)]:
            env = {v1: a, v2: b}
            assert_array_equal(f.constant(env), [3.0, 6.0])
            assert_array_equal(f.linear(env), [2.0 * a, 2.0 * b])

    def test_subtraction_and_negation(self) -> None:
        t = LinearTerm(np.eye(2), [v1, v2])
        f = t - Constant([1.0, 1.0])
        assert_array_equal(f({v1: 3.0, v2: 4.0}), [2.0, 3.0])
        assert_array_equal((-t)({v1: 3.0, v2: 4.0}), [-3.0, -4.0])

    def test_vector_operand(self) -> None:
        t = Constant([1.0, 2.0]) + [1, 1]
        assert_array_equal(t(), [2.0, 3.0])
        t = np.array([1.0, 1.0]) - Constant([1.0, 2.0])
        assert_array_equal(t(), [0.0, -1.0])

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionError):
            Constant([1.0, 2.0]) + Constant([1.0])

    def test_non_scalar_multiplier(self) -> None:
        with pytest.raises(TypeError):
            Constant([1.0]) * Constant([1.0])

    def test_numpy_scalar_multiplier(self) -> None:
        t = np.float64(2.0) * Constant([1.0])
        assert t == Scaled(2.0, Constant([1.0]))


class TestEquality:
    """Structural equality."""

    def test_equal_values(self) -> None:
        assert Constant([1, 2]) == Constant([1.0, 2.0])
        assert LinearTerm(np.eye(2), [v1, v2]) != LinearTerm(np.eye(2), [v2, v1])

    def test_sum_order_is_structural(self) -> None:
        a, b = Constant([1.0]), Constant([2.0])
        env = {}
        assert Sum([a, b]) != Sum([b, a])
        assert_array_equal(Sum([a, b])(env), Sum([b, a])(env))

    def test_unhashable(self) -> None:
        with pytest.raises(TypeError):
            hash(Constant([1.0]))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    """matvec, quad and variable_dot."""

    def test_matvec_rows(self) -> None:
        A = np.arange(6.0).reshape(2, 3)
        rows = matvec(A, [v1, v2, v3])
        assert len(rows) == 2
        env = {v1: 1.0, v2: 2.0, v3: 3.0}
        for i, row in enumerate(rows):
            assert isinstance(row, AffineFunction)
            assert_array_equal(row(env), [A[i] @ [1.0, 2.0, 3.0]])

    def test_matvec_dimension(self) -> None:
        with pytest.raises(DimensionError):
            matvec(np.eye(2), [v1, v2, v3])

    def test_dot_same_variables(self) -> None:
        t = variable_dot([v1, v2], [v1, v2])
        assert_array_equal(t.Q, np.eye(2))
        assert_array_equal(t({v1: 1.0, v2: 2.0}), [5.0])

    def test_dot_distinct_variables(self) -> None:
        t = variable_dot([v1], [v2])
        assert_array_equal(t({v1: 3.0, v2: 4.0}), [12.0])

    def test_dot_length_mismatch(self) -> None:
        with pytest.raises(DimensionError):
            variable_dot([v1], [v1, v2])
