from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Iterator, List, Optional

from .span import NO_POS, Pos

# Nodes compare by identity: analysis tables key on the node objects themselves.


class Node:
    pos: Pos
    end: Pos


class Expr(Node):
    pass


class Stmt(Node):
    pass


class Decl(Node):
    pass


@dataclass(eq=False)
class Comment(Node):
    pos: Pos
    end: Pos
    text: str


@dataclass(eq=False)
class CommentGroup:
    comments: List[Comment]

    @property
    def pos(self) -> Pos:
        return self.comments[0].pos

    @property
    def end(self) -> Pos:
        return self.comments[-1].end

    def text(self) -> str:
        """Comment text without markers, normalized the way Go's CommentGroup.Text does."""
        lines: List[str] = []
        for c in self.comments:
            raw = c.text
            if raw.startswith("//"):
                raw = raw[2:]
                if raw.startswith(" "):
                    raw = raw[1:]
                lines.append(raw)
            else:
                lines.extend(raw[2:-2].split("\n"))
        lines = [ln.rstrip() for ln in lines]
        while lines and not lines[0]:
            lines.pop(0)
        while lines and not lines[-1]:
            lines.pop()
        if not lines:
            return ""
        return "\n".join(lines) + "\n"


# --- expressions -------------------------------------------------------


@dataclass(eq=False)
class Ident(Expr):
    pos: Pos
    end: Pos
    name: str


@dataclass(eq=False)
class BasicLit(Expr):
    pos: Pos
    end: Pos
    kind: str  # INT | CHAR | STRING
    value: str


@dataclass(eq=False)
class KeyValueExpr(Expr):
    pos: Pos
    end: Pos
    key: Expr
    value: Expr


@dataclass(eq=False)
class CompositeLit(Expr):
    pos: Pos
    end: Pos
    type: Expr
    elts: List[Expr]


@dataclass(eq=False)
class FuncLit(Expr):
    pos: Pos
    end: Pos
    type: "FuncType"
    body: "BlockStmt"


@dataclass(eq=False)
class ParenExpr(Expr):
    pos: Pos
    end: Pos
    x: Expr


@dataclass(eq=False)
class SelectorExpr(Expr):
    pos: Pos
    end: Pos
    x: Expr
    sel: Ident


@dataclass(eq=False)
class IndexExpr(Expr):
    pos: Pos
    end: Pos
    x: Expr
    index: Expr


@dataclass(eq=False)
class SliceExpr(Expr):
    pos: Pos
    end: Pos
    x: Expr
    low: Optional[Expr]
    high: Optional[Expr]


@dataclass(eq=False)
class CallExpr(Expr):
    pos: Pos
    end: Pos
    fun: Expr
    args: List[Expr]


@dataclass(eq=False)
class StarExpr(Expr):
    """Pointer dereference in expressions, pointer type in type position."""

    pos: Pos
    end: Pos
    x: Expr


@dataclass(eq=False)
class UnaryExpr(Expr):
    pos: Pos
    end: Pos
    op: str
    x: Expr


@dataclass(eq=False)
class BinaryExpr(Expr):
    pos: Pos
    end: Pos
    x: Expr
    op: str
    y: Expr


# --- type expressions --------------------------------------------------


@dataclass(eq=False)
class ArrayType(Expr):
    """Slice type `[]elt`."""

    pos: Pos
    end: Pos
    elt: Expr


@dataclass(eq=False)
class MapType(Expr):
    pos: Pos
    end: Pos
    key: Expr
    value: Expr


@dataclass(eq=False)
class Field(Node):
    pos: Pos
    end: Pos
    names: List[Ident]
    type: Expr


@dataclass(eq=False)
class StructType(Expr):
    pos: Pos
    end: Pos
    fields: List[Field]


@dataclass(eq=False)
class InterfaceType(Expr):
    pos: Pos
    end: Pos


@dataclass(eq=False)
class FuncType(Expr):
    pos: Pos
    end: Pos
    params: List[Field]
    result: Optional[Expr] = None


# --- statements --------------------------------------------------------


@dataclass(eq=False)
class BlockStmt(Stmt):
    pos: Pos
    end: Pos
    stmts: List[Stmt]


@dataclass(eq=False)
class ExprStmt(Stmt):
    pos: Pos
    end: Pos
    x: Expr


@dataclass(eq=False)
class AssignStmt(Stmt):
    pos: Pos
    end: Pos
    lhs: List[Expr]
    tok: str  # ":=", "=", "+=", ...
    rhs: List[Expr]


@dataclass(eq=False)
class IncDecStmt(Stmt):
    pos: Pos
    end: Pos
    x: Expr
    tok: str


@dataclass(eq=False)
class DeclStmt(Stmt):
    pos: Pos
    end: Pos
    decl: "VarDecl"


@dataclass(eq=False)
class ReturnStmt(Stmt):
    pos: Pos
    end: Pos
    result: Optional[Expr]


@dataclass(eq=False)
class IfStmt(Stmt):
    pos: Pos
    end: Pos
    init: Optional[Stmt]
    cond: Expr
    body: BlockStmt
    else_: Optional[Stmt] = None


@dataclass(eq=False)
class ForStmt(Stmt):
    pos: Pos
    end: Pos
    init: Optional[Stmt]
    cond: Optional[Expr]
    post: Optional[Stmt]
    body: BlockStmt


@dataclass(eq=False)
class RangeStmt(Stmt):
    pos: Pos
    end: Pos
    key: Optional[Expr]
    value: Optional[Expr]
    tok: Optional[str]
    x: Expr
    body: BlockStmt


@dataclass(eq=False)
class BranchStmt(Stmt):
    pos: Pos
    end: Pos
    tok: str


# --- declarations ------------------------------------------------------


@dataclass(eq=False)
class ImportSpec(Node):
    pos: Pos
    end: Pos
    path: str
    name: Optional[Ident] = None


@dataclass(eq=False)
class VarDecl(Decl):
    pos: Pos
    end: Pos
    names: List[Ident]
    type: Optional[Expr]
    values: List[Expr]


@dataclass(eq=False)
class TypeDecl(Decl):
    pos: Pos
    end: Pos
    name: Ident
    type: Expr


@dataclass(eq=False)
class FuncDecl(Decl):
    pos: Pos
    end: Pos
    name: Ident
    type: FuncType
    body: BlockStmt


@dataclass(eq=False)
class File(Node):
    pos: Pos
    end: Pos
    filename: str
    package: Ident
    imports: List[ImportSpec]
    decls: List[Decl]
    comments: List[CommentGroup] = field(default_factory=list)
    # Bumped by every rewrite that produces a new tree from this one.
    version: int = 0


def iter_children(node: Node) -> Iterator[Node]:
    """Yield the direct syntax children of `node` in source order."""
    for f in fields(node):
        if f.name in {"pos", "end", "comments"}:
            continue
        value = getattr(node, f.name)
        if isinstance(value, Node):
            yield value
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, Node):
                    yield item


def is_synthetic(node: Node) -> bool:
    return node.pos == NO_POS
