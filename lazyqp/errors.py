"""
Exceptions raised by lazyqp.

All of these signal programmer-input errors. They are raised eagerly, at
term construction or at compile time, and are never retried.
"""


class DimensionError(ValueError):
    """Output dimensions or matrix shapes do not agree."""


class EmptySumError(ValueError):
    """A Sum was constructed from zero terms."""


class UnboundVariableError(KeyError):
    """Evaluation referenced a Variable missing from the assignment."""

    def __init__(self, variable):
        super().__init__(variable)
        self.variable = variable

    def __str__(self) -> str:
        return f"no value assigned to {self.variable!r}"


class BuildError(ValueError):
    """An expression tree cannot be compiled."""
