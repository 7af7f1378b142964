"""
Parameters and dirty tracking.

A Parameter is a single-writer, many-reader cell. Its value is produced by
its update rule and is never written by readers. Every Parameter belongs to
exactly one Model, which owns the parameter table and can broadcast
"mark dirty" to all of its parameters at once (typically once per solve
iteration).

State machine per parameter::

    Clean --mark_dirty--> Dirty --read--> (update rule runs, version += 1) --> Clean

Marking a dirty parameter dirty again is a no-op. Reading a clean parameter
returns the cached value without running the update rule.

Ownership
=========

The Model is an arena: it owns one record per parameter and hands out
``Parameter`` handles that store only ``(model, index)``. Compiled
expressions record the same ``(model, index)`` pairs and dereference
through the model on every freshness check.

Lifetime precondition: a Model must outlive every Parameter handle and
every compiled expression that references it.

Update Rules
============

- producing: ``update()`` returns the new value. Used when no initial value
  is given; the rule runs once at construction, and a rule that raises
  leaves the model unchanged.
- in-place: ``update(value)`` mutates the stored value. Used when an
  initial value is given. A non-None return value replaces the stored value.

Example
-------
>>> import numpy as np
>>> from lazyqp import Model, Parameter
>>> m = Model()
>>> weight = Parameter(lambda: 3.0, model=m)
>>> weight()
3.0
>>> A = Parameter(lambda a: a.fill(2.0), np.zeros((2, 2)), m)
>>> m.mark_all_dirty()
>>> A()
array([[2., 2.],
       [2., 2.]])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from collections.abc import Callable
from typing import Any, Optional

import numpy as np
from beartype import beartype

from lazyqp._operators import BuilderOperators

logger = logging.getLogger(__name__)


@dataclass
class _ParameterRecord:
    """One row of a Model's parameter table."""

    update: Callable[..., Any]
    value: Any
    inplace: bool
    dirty: bool = False
    version: int = 0


class Model:
    """
    Owner of a table of parameters.

    The model exists so that all of its parameters can be invalidated at
    once with :meth:`mark_all_dirty`.
    """

    def __init__(self) -> None:
        self._records: list[_ParameterRecord] = []
        self._handles: list["Parameter"] = []

    def __repr__(self) -> str:
        return f"Model(parameters={len(self._records)})"

    def __len__(self) -> int:
        return len(self._records)

    @property
    def parameters(self) -> list["Parameter"]:
        """All parameters created in this model, in creation order."""
        return list(self._handles)

    def handle(self, index: int) -> "Parameter":
        """Handle of parameter ``index``."""
        return self._handles[index]

    def parameter(self, update: Callable[..., Any], value: Any = None, inplace: Optional[bool] = None) -> "Parameter":
        """Create a Parameter owned by this model."""
        return Parameter(update, value, model=self, inplace=inplace)

    def _add(self, handle: "Parameter", record: _ParameterRecord) -> int:
        self._records.append(record)
        self._handles.append(handle)
        return len(self._records) - 1

    def mark_dirty(self, index: int) -> None:
        """Mark parameter ``index`` dirty."""
        self._records[index].dirty = True

    def mark_all_dirty(self) -> None:
        """Mark every parameter of this model dirty."""
        for record in self._records:
            record.dirty = True

    def is_dirty(self, index: int) -> bool:
        return self._records[index].dirty

    def version(self, index: int) -> int:
        return self._records[index].version

    def peek(self, index: int) -> Any:
        """Cached value of parameter ``index``, without updating it."""
        return self._records[index].value

    def value(self, index: int) -> Any:
        """Current value of parameter ``index``, running its update rule first if dirty."""
        record = self._records[index]
        if record.dirty:
            self._update(index, record)
        return record.value

    def _update(self, index: int, record: _ParameterRecord) -> None:
        if record.inplace:
            result = record.update(record.value)
            if result is not None:
                record.value = result
        else:
            record.value = record.update()
        record.dirty = False
        record.version += 1
        logger.debug("parameter %d updated to version %d", index, record.version)


class Parameter(BuilderOperators):
    """
    Handle to a parameter stored in a :class:`Model`.

    Parameters
    ----------
    update : callable
        Update rule. Called as ``update()`` for producing rules or
        ``update(value)`` for in-place rules.
    value : optional
        Initial value. When omitted the update rule runs once immediately.
    model : Model
        Owning model.
    inplace : bool, optional
        Force the update-rule form. Defaults to in-place exactly when an
        initial value is given.

    Parameters also act as leaves of the expression builder, so
    ``A @ x`` or ``weight * q`` on a Parameter builds an
    :class:`lazyqp.expression.Expr`.
    """

    __slots__ = ("model", "index")

    @beartype
    def __init__(
        self,
        update: Callable[..., Any],
        value: Any = None,
        model: Optional[Model] = None,
        *,
        inplace: Optional[bool] = None,
    ) -> None:
        if model is None:
            raise TypeError("Parameter requires an owning Model")
        if inplace is None:
            inplace = value is not None
        if inplace and value is None:
            raise ValueError("in-place update rules require an initial value")
        record = _ParameterRecord(update=update, value=value, inplace=inplace)
        if value is None:
            # the model only sees parameters whose first update succeeded
            model._update(len(model), record)
        self.model = model
        self.index = model._add(self, record)

    def __repr__(self) -> str:
        return f"Parameter({self.index})"

    def __call__(self) -> Any:
        return self.model.value(self.index)

    @property
    def value(self) -> Any:
        """Cached value, without running the update rule."""
        return self.model.peek(self.index)

    @property
    def shape(self):
        return np.shape(self.model.peek(self.index))

    @property
    def dirty(self) -> bool:
        return self.model.is_dirty(self.index)

    @property
    def version(self) -> int:
        """Number of times the update rule has run."""
        return self.model.version(self.index)

    @property
    def key(self):
        """``(model, index)`` pair identifying this parameter's record."""
        return (self.model, self.index)

    def mark_dirty(self) -> None:
        self.model.mark_dirty(self.index)


@beartype
def mark_dirty(parameter: Parameter) -> None:
    """Mark a single parameter dirty."""
    parameter.mark_dirty()


@beartype
def mark_all_dirty(model: Model) -> None:
    """Mark every parameter of ``model`` dirty."""
    model.mark_all_dirty()
