"""
Source positions shared by every stage.

A FileSet hands each parsed file a contiguous range of integer positions so a
single `int` identifies a file and an offset at once. Position 0 is NO_POS and
never belongs to a file; synthesized syntax carries it.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Any, List, Optional


Pos = int
NO_POS: Pos = 0


@dataclass(frozen=True)
class Position:
    """A resolved, human-readable source position (1-based line/column)."""

    filename: str = ""
    offset: int = 0
    line: int = 0
    column: int = 0

    def is_valid(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        if not self.is_valid():
            return self.filename or "-"
        return f"{self.filename}:{self.line}:{self.column}"


@dataclass
class SourceFile:
    name: str
    base: int
    size: int
    line_starts: List[int] = field(default_factory=list)

    def pos(self, offset: int) -> Pos:
        if offset < 0 or offset > self.size:
            raise ValueError(f"offset {offset} out of range for {self.name} (size {self.size})")
        return self.base + offset

    def offset(self, pos: Pos) -> int:
        return pos - self.base

    def position(self, pos: Pos) -> Position:
        offset = self.offset(pos)
        idx = bisect.bisect_right(self.line_starts, offset) - 1
        return Position(
            filename=self.name,
            offset=offset,
            line=idx + 1,
            column=offset - self.line_starts[idx] + 1,
        )


class FileSet:
    def __init__(self) -> None:
        self.files: List[SourceFile] = []
        self._next_base = 1

    def add_file(self, name: str, source: str) -> SourceFile:
        line_starts = [0]
        for idx, ch in enumerate(source):
            if ch == "\n":
                line_starts.append(idx + 1)
        sf = SourceFile(name=name, base=self._next_base, size=len(source), line_starts=line_starts)
        # +1 so the end-of-file position of one file never equals the base of the next.
        self._next_base += len(source) + 1
        self.files.append(sf)
        return sf

    def file(self, pos: Pos) -> Optional[SourceFile]:
        if pos == NO_POS:
            return None
        bases = [f.base for f in self.files]
        idx = bisect.bisect_right(bases, pos) - 1
        if idx < 0:
            return None
        sf = self.files[idx]
        if pos > sf.base + sf.size:
            return None
        return sf

    def position(self, pos: Pos) -> Position:
        sf = self.file(pos)
        if sf is None:
            return Position()
        return sf.position(pos)


@dataclass(frozen=True)
class Span:
    """Represents a source span (best-effort file/line/column plus raw parser loc)."""

    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    raw: Any = None

    @classmethod
    def from_pos(cls, fset: FileSet, pos: Pos) -> "Span":
        p = fset.position(pos)
        if not p.is_valid():
            return cls()
        return cls(file=p.filename, line=p.line, column=p.column, raw=pos)

    def __str__(self) -> str:
        if self.file is None:
            return "-"
        if self.line is None:
            return self.file
        return f"{self.file}:{self.line}:{self.column}"


__all__ = ["Pos", "NO_POS", "Position", "SourceFile", "FileSet", "Span"]
