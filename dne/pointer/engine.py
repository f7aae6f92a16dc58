"""
Narrow interface between the alias analysis driver and a points-to engine.

The driver only submits values, runs the engine once and asks whether two
handles may alias; it never inspects how points-to sets are represented.
"""

from __future__ import annotations

from typing import FrozenSet, Optional, Protocol

from ..diagnostics import AliasAnalysisError
from ..ssa import Function, Value


class AbstractObject:
    """An abstract memory location: an allocation site or a part of one."""

    def __init__(self, kind: str, site: object, parent: Optional["AbstractObject"] = None, label: str = "") -> None:
        self.kind = kind
        self.site = site
        self.parent = parent
        self.label = label
        # The function a func or closure object calls.
        self.func = None
        self._children: dict = {}

    def child(self, label: str) -> "AbstractObject":
        obj = self._children.get(label)
        if obj is None:
            obj = AbstractObject(self.kind, self.site, parent=self, label=label)
            self._children[label] = obj
        return obj

    def root(self) -> "AbstractObject":
        obj = self
        while obj.parent is not None:
            obj = obj.parent
        return obj

    def __repr__(self) -> str:
        if self.parent is not None:
            return f"{self.parent!r}.{self.label}"
        name = getattr(self.site, "name", "") or type(self.site).__name__
        return f"<{self.kind} {name}>"


class QueryHandle:
    """Result slot for one submitted value; filled in by `AliasEngine.run`."""

    def __init__(self, value: Value) -> None:
        self.value = value
        self._pts: Optional[FrozenSet[AbstractObject]] = None

    def points_to(self) -> FrozenSet[AbstractObject]:
        if self._pts is None:
            raise AliasAnalysisError("points-to set requested before the analysis ran")
        return self._pts

    def _resolve(self, pts: FrozenSet[AbstractObject]) -> None:
        self._pts = pts


class AliasEngine(Protocol):
    def add_root(self, fn: Function) -> None:
        ...

    def submit_query(self, value: Value) -> QueryHandle:
        ...

    def run(self) -> None:
        """Solve; raises AliasAnalysisError when the analysis cannot proceed."""
        ...

    def may_alias(self, a: QueryHandle, b: QueryHandle) -> bool:
        ...


def may_alias(a: QueryHandle, b: QueryHandle) -> bool:
    return not a.points_to().isdisjoint(b.points_to())


__all__ = ["AbstractObject", "AliasEngine", "QueryHandle", "may_alias"]
