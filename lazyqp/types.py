"""
Type definitions for lazyqp.

Holds the shared type aliases, the closed set of term kinds, and the
``TermType`` descriptor used by the promotion lattice.

Term Kinds
==========

The term algebra is a closed variant over seven node kinds:

- CONSTANT           : numeric vector ``c``
- LINEAR             : ``A @ x``
- QUADRATIC          : ``x' Q x`` (always scalar)
- SCALED             : ``s * inner``
- SUM                : ``t1 + t2 + ...`` (same type, same output dimension)
- AFFINE_FUNCTION    : ``Sum[Scaled[Linear]] + Sum[Scaled[Constant]]``
- QUADRATIC_FUNCTION : ``Sum[Scaled[Quadratic]] + AffineFunction``

SCALED and SUM are wrappers: their ``TermType`` carries the type of the
wrapped term, so ``Sum[Scaled[Linear]]`` and ``Sum[Scaled[Constant]]`` are
distinct types.
"""

from __future__ import annotations

import numbers
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional, Union

import numpy as np


# Shape type: () for scalar, (n,) for vector, (m, n) for matrix
Shape = tuple[int, ...]

# Scalars accepted wherever a multiplier or a variable value is expected.
# numbers.Real covers int, float and the numpy scalar types.
Scalar = numbers.Real

# Values that convert to a Constant
VectorLike = Union[np.ndarray, list, tuple]

# Variable -> value substitution used by the pure evaluation path
Assignment = Mapping[Any, Scalar]


class TermKind(Enum):
    """Kinds of term-algebra nodes."""

    # Leaves
    CONSTANT = auto()
    LINEAR = auto()
    QUADRATIC = auto()

    # Wrappers
    SCALED = auto()
    SUM = auto()

    # Canonical aggregates
    AFFINE_FUNCTION = auto()
    QUADRATIC_FUNCTION = auto()


class Storage(Enum):
    """Ownership of the numeric data behind a leaf term."""

    OWNED = auto()  # private float64 copy made at construction
    PARAMETER = auto()  # non-owning reference to a Parameter, read on every use
    BUFFER = auto()  # non-owning view of a compiled expression's output buffer


_WRAPPERS = (TermKind.SCALED, TermKind.SUM)


@dataclass(frozen=True)
class TermType:
    """
    Static type of a term, e.g. ``Sum[Scaled[Linear]]``.

    ``inner`` is set exactly when ``kind`` is SCALED or SUM.
    """

    kind: TermKind
    inner: Optional["TermType"] = None

    def __post_init__(self):
        if (self.kind in _WRAPPERS) != (self.inner is not None):
            raise ValueError(f"TermType {self.kind.name} requires inner type iff it is a wrapper")

    def __repr__(self) -> str:
        name = self.kind.name.title().replace("_", "")
        if self.inner is None:
            return name
        return f"{name}[{self.inner!r}]"

    @property
    def is_quadratic(self) -> bool:
        """True if terms of this type can contain a quadratic part."""
        if self.inner is not None:
            return self.inner.is_quadratic
        return self.kind in (TermKind.QUADRATIC, TermKind.QUADRATIC_FUNCTION)

    @property
    def leaf(self) -> "TermType":
        """Innermost non-wrapper type."""
        t = self
        while t.inner is not None:
            t = t.inner
        return t


def scaled(inner: TermType) -> TermType:
    """``Scaled[inner]``."""
    return TermType(TermKind.SCALED, inner)


def summed(inner: TermType) -> TermType:
    """``Sum[inner]``."""
    return TermType(TermKind.SUM, inner)


CONSTANT = TermType(TermKind.CONSTANT)
LINEAR = TermType(TermKind.LINEAR)
QUADRATIC = TermType(TermKind.QUADRATIC)
AFFINE_FUNCTION = TermType(TermKind.AFFINE_FUNCTION)
QUADRATIC_FUNCTION = TermType(TermKind.QUADRATIC_FUNCTION)

# Part types of the canonical aggregates
LINEAR_PART = summed(scaled(LINEAR))
CONSTANT_PART = summed(scaled(CONSTANT))
QUADRATIC_PART = summed(scaled(QUADRATIC))
