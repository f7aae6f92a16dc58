"""
Diagnostics and the fatal error taxonomy of an analysis run.

Fatal conditions are exceptions that unwind to the CLI, which prints a single
line and exits non-zero. Recoverable conditions (unresolved pins) and findings
are Diagnostic records accumulated in the report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .span import NO_POS, FileSet, Pos, Span


@dataclass
class Diagnostic:
    """Represents an analysis diagnostic (error/warning/note)."""

    message: str
    severity: str = "error"
    phase: Optional[str] = None
    span: Span = field(default_factory=Span)
    notes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.span is None:  # type: ignore[unreachable]
            self.span = Span()

    def render(self) -> str:
        return f"{self.span}: {self.message}"

    def to_json(self) -> dict:
        return {
            "phase": self.phase,
            "message": self.message,
            "severity": self.severity,
            "file": self.span.file,
            "line": self.span.line,
            "column": self.span.column,
            "notes": list(self.notes),
        }


class AnalysisError(Exception):
    """Base class for every condition that aborts the whole run."""

    phase = "analysis"

    def __init__(self, message: str, *, pos: Pos = NO_POS) -> None:
        super().__init__(message)
        self.message = message
        self.pos = pos

    def render(self, fset: Optional[FileSet] = None) -> str:
        if fset is not None and self.pos != NO_POS:
            return f"{fset.position(self.pos)}: {self.message}"
        return self.message

    def to_diagnostic(self, fset: Optional[FileSet] = None) -> Diagnostic:
        span = Span.from_pos(fset, self.pos) if fset is not None else Span()
        return Diagnostic(message=self.message, severity="error", phase=self.phase, span=span)


class ResolutionError(AnalysisError):
    phase = "resolve"


class ParseError(AnalysisError):
    """Syntax error in a source file or in an annotation expression."""

    phase = "parse"

    def __init__(self, message: str, *, pos: Pos = NO_POS, filename: Optional[str] = None,
                 line: Optional[int] = None, column: Optional[int] = None) -> None:
        super().__init__(message, pos=pos)
        self.filename = filename
        self.line = line
        self.column = column

    def render(self, fset: Optional[FileSet] = None) -> str:
        if fset is not None and self.pos != NO_POS:
            return f"{fset.position(self.pos)}: {self.message}"
        if self.filename is not None and self.line is not None:
            return f"{self.filename}:{self.line}:{self.column}: {self.message}"
        return self.message


class StructuralError(AnalysisError):
    """An annotation is not placed inside a statement block."""

    phase = "instrument"


class TypeResolutionError(AnalysisError):
    phase = "typecheck"


class NoEntryPointsError(AnalysisError):
    phase = "pointer"


class AliasAnalysisError(AnalysisError):
    phase = "pointer"


__all__ = [
    "Diagnostic",
    "AnalysisError",
    "ResolutionError",
    "ParseError",
    "StructuralError",
    "TypeResolutionError",
    "NoEntryPointsError",
    "AliasAnalysisError",
]
