"""Points-to analysis: the engine interface and its inclusion-based implementation."""

from .andersen import AndersenEngine
from .engine import AbstractObject, AliasEngine, QueryHandle, may_alias

__all__ = ["AbstractObject", "AliasEngine", "AndersenEngine", "QueryHandle", "may_alias"]
