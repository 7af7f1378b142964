"""
Decision variables.
"""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Iterable

from beartype import beartype


@dataclass(frozen=True)
class Variable:
    """
    Reference to a decision variable of the optimization problem.

    A variable is only an index: it maps 1:1 onto a column of the problem
    built by the surrounding model. Equality and hashing are by index.
    """

    index: int

    def __repr__(self) -> str:
        return f"x{self.index}"


@beartype
def variables(indices: Iterable[int]) -> list[Variable]:
    """Create one Variable per index, e.g. ``variables(range(1, 5))``."""
    return [Variable(i) for i in indices]
