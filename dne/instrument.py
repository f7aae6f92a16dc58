"""
AST instrumentation.

Each annotation's expression is parsed and wrapped in an immediately invoked
function literal, `func(interface{}) {}(expr)`, spliced into the enclosing
block. The call makes the expression an ordinary, typed operand that later
stages can find in the value-level program.

Trees are never mutated: an insertion copies the block and every ancestor up
to the file (path copying) and yields a new `File` whose `version` is one
higher. Unchanged subtrees are shared between versions.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from . import ast
from .astutil import path_enclosing_interval
from .diagnostics import ParseError, StructuralError
from .loader import Annotation, Module, Program
from .parser import parse_expr
from .span import NO_POS, Pos


@dataclass
class PinCandidate:
    expr: ast.Expr
    funclit: ast.FuncLit
    pos: Pos
    annotation: Annotation
    module: Module
    # Enclosing nodes in the instrumented file, innermost (the block) first.
    path: List[ast.Node] = field(default_factory=list)

    @property
    def block(self) -> ast.BlockStmt:
        return self.path[0]

    def enclosing_function(self) -> Optional[ast.Node]:
        for node in self.path:
            if isinstance(node, (ast.FuncLit, ast.FuncDecl)):
                return node
        return None


def insertion_index(block: ast.BlockStmt, pos: Pos) -> int:
    """
    Index of the first statement at or after `pos`; the end of the block if none is.

    A trailing annotation is appended rather than placed at index 0, so the pin
    always follows the statements binding the names it refers to.
    """
    for idx, stmt in enumerate(block.stmts):
        if not ast.is_synthetic(stmt) and stmt.pos >= pos:
            return idx
    return len(block.stmts)


def pin_call(expr: ast.Expr) -> Tuple[ast.ExprStmt, ast.FuncLit]:
    """Build `func(interface{}) {}(expr)` as a statement. Only `expr` has positions."""
    param = ast.Field(NO_POS, NO_POS, names=[], type=ast.InterfaceType(NO_POS, NO_POS))
    functype = ast.FuncType(NO_POS, NO_POS, params=[param])
    funclit = ast.FuncLit(NO_POS, NO_POS, type=functype, body=ast.BlockStmt(NO_POS, NO_POS, stmts=[]))
    call = ast.CallExpr(NO_POS, NO_POS, fun=funclit, args=[expr])
    return ast.ExprStmt(NO_POS, NO_POS, x=call), funclit


def _replace_child(node: ast.Node, old: ast.Node, new: ast.Node) -> ast.Node:
    changes: Dict[str, object] = {}
    for f in dataclasses.fields(node):
        value = getattr(node, f.name)
        if value is old:
            changes[f.name] = new
        elif isinstance(value, list) and any(item is old for item in value):
            changes[f.name] = [new if item is old else item for item in value]
    if not changes:
        raise ValueError(f"{type(old).__name__} is not a child of {type(node).__name__}")
    return dataclasses.replace(node, **changes)


def _rebuild(path: List[ast.Node], replacement: ast.Node) -> ast.File:
    """Copy every ancestor on `path` (innermost first) so it refers to `replacement`."""
    for child, parent in zip(path, path[1:]):
        replacement = _replace_child(parent, child, replacement)
    root = path[-1]
    assert isinstance(replacement, ast.File) and isinstance(root, ast.File)
    replacement.version = root.version + 1
    return replacement


def instrument_file(f: ast.File, annotations: List[Annotation], module: Module) -> Tuple[ast.File, List[PinCandidate]]:
    """Insert one pin call per annotation; returns the new file version and its candidates."""
    current = f
    candidates: List[PinCandidate] = []
    for ann in annotations:
        path, _ = path_enclosing_interval(current, ann.pos, ann.end)
        block = path[0]
        if not isinstance(block, ast.BlockStmt):
            raise StructuralError("comment is outside function", pos=ann.pos)
        source = ann.expr_source()
        try:
            expr = parse_expr(source, ann.expr_pos(), filename=f.filename)
        except ParseError as exc:
            raise ParseError(f"couldn't parse expression {source.strip()!r}: {exc.message}", pos=ann.pos) from exc
        stmt, funclit = pin_call(expr)
        idx = insertion_index(block, ann.pos)
        new_block = dataclasses.replace(block, stmts=block.stmts[:idx] + [stmt] + block.stmts[idx:])
        current = _rebuild(path, new_block)
        candidates.append(PinCandidate(expr=expr, funclit=funclit, pos=ann.pos, annotation=ann, module=module))
    # Paths are taken from the final version so later stages see the blocks actually built.
    for cand in candidates:
        cand.path, _ = path_enclosing_interval(current, cand.annotation.pos, cand.annotation.end)
    return current, candidates


def instrument_module(module: Module) -> List[PinCandidate]:
    by_file: Dict[int, List[Annotation]] = {}
    for ann in module.annotations:
        by_file.setdefault(id(ann.file), []).append(ann)
    candidates: List[PinCandidate] = []
    for idx, f in enumerate(module.files):
        anns = by_file.get(id(f))
        if not anns:
            continue
        new_file, found = instrument_file(f, anns, module)
        module.files[idx] = new_file
        candidates.extend(found)
    return candidates


def instrument_program(program: Program) -> List[PinCandidate]:
    candidates: List[PinCandidate] = []
    for module in program.annotated_modules():
        candidates.extend(instrument_module(module))
    return candidates


__all__ = [
    "PinCandidate",
    "insertion_index",
    "instrument_file",
    "instrument_module",
    "instrument_program",
    "pin_call",
]
