"""
Pin resolution: map each instrumented annotation to the value it protects.

An identifier annotation names the closest binding of that identifier that
precedes the comment in the same block; the binding's value in the built
function is the pin. Any other expression pins its own value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from . import ast, ssa
from .diagnostics import Diagnostic
from .instrument import PinCandidate
from .span import FileSet, Pos, Span


@dataclass
class Pin:
    candidate: PinCandidate
    value: ssa.Value
    # The binding identifier the value was taken from; None for non-identifier pins.
    ident: Optional[ast.Ident] = None

    @property
    def pos(self) -> Pos:
        return self.candidate.pos

    @property
    def module(self) -> str:
        return self.candidate.module.path


@dataclass
class UnresolvedPin:
    candidate: PinCandidate
    message: str

    @property
    def pos(self) -> Pos:
        return self.candidate.pos

    @property
    def module(self) -> str:
        return self.candidate.module.path

    def to_diagnostic(self, fset: FileSet) -> Diagnostic:
        return Diagnostic(
            message=self.message,
            severity="warning",
            phase="pins",
            span=Span.from_pos(fset, self.pos),
            notes=[f"module {self.module}"],
        )


def _bound_idents(stmt: ast.Stmt) -> List[ast.Ident]:
    if isinstance(stmt, ast.AssignStmt):
        return [e for e in stmt.lhs if isinstance(e, ast.Ident)]
    if isinstance(stmt, ast.DeclStmt):
        return list(stmt.decl.names)
    return []


def find_binding(block: ast.BlockStmt, name: str, pos: Pos) -> Optional[ast.Ident]:
    """The binding of `name` in `block` closest to, and not after, `pos`."""
    best: Optional[ast.Ident] = None
    for stmt in block.stmts:
        if ast.is_synthetic(stmt) or stmt.pos > pos:
            continue
        for ident in _bound_idents(stmt):
            if ident.name != name or ident.pos > pos:
                continue
            if best is None or ident.pos > best.pos:
                best = ident
    return best


def resolve_pin(prog: ssa.Program, cand: PinCandidate) -> Tuple[Optional[Pin], Optional[UnresolvedPin]]:
    expr = cand.expr
    while isinstance(expr, ast.ParenExpr):
        expr = expr.x
    syntax = cand.enclosing_function()
    fn = prog.func_by_syntax.get(syntax) if syntax is not None else None
    if fn is None:
        return None, UnresolvedPin(cand, "enclosing function was not built")
    if isinstance(expr, ast.Ident):
        ident = find_binding(cand.block, expr.name, cand.pos)
        if ident is None:
            return None, UnresolvedPin(cand, f"{expr.name} not found")
        value = fn.value_for_expr(ident)
        if value is None:
            return None, UnresolvedPin(cand, f"{expr.name} not found")
        return Pin(candidate=cand, value=value, ident=ident), None
    value = fn.value_for_expr(cand.expr)
    if value is None:
        return None, UnresolvedPin(cand, "expression has no value")
    return Pin(candidate=cand, value=value), None


def resolve_pins(prog: ssa.Program, candidates: List[PinCandidate]) -> Tuple[List[Pin], List[UnresolvedPin]]:
    pins: List[Pin] = []
    unresolved: List[UnresolvedPin] = []
    for cand in candidates:
        pin, miss = resolve_pin(prog, cand)
        if pin is not None:
            pins.append(pin)
        else:
            unresolved.append(miss)
    return pins, unresolved


__all__ = ["Pin", "UnresolvedPin", "find_binding", "resolve_pin", "resolve_pins"]
