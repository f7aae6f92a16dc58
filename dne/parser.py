from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedEOF, UnexpectedInput

from .ast import (
    ArrayType,
    AssignStmt,
    BasicLit,
    BinaryExpr,
    BlockStmt,
    BranchStmt,
    CallExpr,
    Comment,
    CommentGroup,
    CompositeLit,
    Decl,
    DeclStmt,
    Expr,
    ExprStmt,
    Field,
    File,
    ForStmt,
    FuncDecl,
    FuncLit,
    FuncType,
    Ident,
    IfStmt,
    ImportSpec,
    IncDecStmt,
    IndexExpr,
    InterfaceType,
    KeyValueExpr,
    MapType,
    ParenExpr,
    RangeStmt,
    ReturnStmt,
    SelectorExpr,
    SliceExpr,
    StarExpr,
    Stmt,
    StructType,
    TypeDecl,
    UnaryExpr,
    VarDecl,
)
from .diagnostics import ParseError
from .span import FileSet, Pos

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()


class TerminatorInserter:
    """Turns NEWLINE/SEMI into TERMINATOR following Go's semicolon rule.

    A newline terminates a statement only when the last token could end one
    and the innermost open bracket is a brace (or nothing is open).
    """

    always_accept = ("NEWLINE", "SEMI")

    TERMINABLE = {
        "NAME",
        "INT",
        "CHAR",
        "STRING",
        "RPAR",
        "RSQB",
        "RBRACE",
        "RETURN",
        "BREAK",
        "CONTINUE",
        "INC",
        "DEC",
    }

    OPENERS = {"LPAR": "RPAR", "LSQB": "RSQB", "LBRACE": "RBRACE"}

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.brackets: List[str] = []
        self.can_terminate = False

    def process(self, stream):
        self._reset()
        for token in stream:
            ttype = token.type
            if ttype == "NEWLINE":
                if self._should_emit_terminator():
                    yield Token.new_borrow_pos("TERMINATOR", token.value, token)
                    self.can_terminate = False
                continue
            if ttype == "SEMI":
                yield Token.new_borrow_pos("TERMINATOR", token.value, token)
                self.can_terminate = False
                continue
            yield token
            self._update_depth(ttype)
            self.can_terminate = ttype in self.TERMINABLE

    def _update_depth(self, ttype: str) -> None:
        if ttype in self.OPENERS:
            self.brackets.append(ttype)
        elif self.brackets and self.OPENERS[self.brackets[-1]] == ttype:
            self.brackets.pop()

    def _should_emit_terminator(self) -> bool:
        if not self.can_terminate:
            return False
        return not self.brackets or self.brackets[-1] == "LBRACE"


class _CommentSink:
    """Receives ignored comment tokens from the lexer for the file being parsed."""

    def __init__(self) -> None:
        self.tokens: List[Token] = []

    def __call__(self, token: Token) -> Token:
        self.tokens.append(token)
        return token

    def drain(self) -> List[Token]:
        tokens, self.tokens = self.tokens, []
        return tokens


_COMMENTS = _CommentSink()

_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    start=["file", "expr_only"],
    propagate_positions=True,
    maybe_placeholders=False,
    postlex=TerminatorInserter(),
    lexer_callbacks={"COMMENT": _COMMENTS, "BLOCK_COMMENT": _COMMENTS},
)


def parse_file(fset: FileSet, filename: str, source: str) -> File:
    """Parse one source file, registering it with `fset` for position lookups."""
    sf = fset.add_file(filename, source)
    _COMMENTS.drain()
    try:
        tree = _PARSER.parse(source, start="file")
    except UnexpectedInput as exc:
        _COMMENTS.drain()
        raise _parse_error(exc, filename, sf.base, len(source)) from exc
    comments = _group_comments(_COMMENTS.drain(), source, sf.base)
    builder = _TreeBuilder(sf.base)
    return builder.build_file(tree, filename, sf.base, sf.base + sf.size, comments)


def parse_expr(source: str, base: Pos, filename: str = "<expr>") -> Expr:
    """Parse a standalone expression whose first character sits at `base`."""
    try:
        tree = _PARSER.parse(source, start="expr_only")
    except UnexpectedInput as exc:
        raise _parse_error(exc, filename, base, len(source)) from exc
    finally:
        _COMMENTS.drain()
    builder = _TreeBuilder(base)
    return builder.expr(_trees(tree)[0])


def _parse_error(exc: UnexpectedInput, filename: str, base: Pos, size: int) -> ParseError:
    offset = getattr(exc, "pos_in_stream", None)
    if isinstance(exc, UnexpectedEOF) or offset is None or offset < 0:
        offset = size
    token = getattr(exc, "token", None)
    if token is not None and token.type != "$END":
        message = f"syntax error: unexpected {token.value!r}"
    elif isinstance(exc, UnexpectedEOF) or token is not None:
        message = "syntax error: unexpected end of input"
    else:
        char = getattr(exc, "char", "")
        message = f"syntax error: unexpected character {char!r}"
    return ParseError(
        message,
        pos=base + offset,
        filename=filename,
        line=getattr(exc, "line", None),
        column=getattr(exc, "column", None),
    )


def _group_comments(tokens: List[Token], source: str, base: Pos) -> List[CommentGroup]:
    # Adjacent comments separated by at most one newline form a group.
    groups: List[CommentGroup] = []
    current: List[Comment] = []
    prev_end: Optional[int] = None
    for tok in sorted(tokens, key=lambda t: t.start_pos):
        if prev_end is not None:
            gap = source[prev_end : tok.start_pos]
            if gap.strip() or gap.count("\n") > 1:
                groups.append(CommentGroup(current))
                current = []
        current.append(Comment(pos=base + tok.start_pos, end=base + tok.end_pos, text=tok.value))
        prev_end = tok.end_pos
    if current:
        groups.append(CommentGroup(current))
    return groups


class _TreeBuilder:
    """Lowers a lark parse tree into dne.ast nodes with absolute positions."""

    def __init__(self, base: Pos) -> None:
        self.base = base

    # --- positions ------------------------------------------------------

    def _pos(self, node: Tree | Token) -> Pos:
        if isinstance(node, Token):
            return self.base + node.start_pos
        return self.base + node.meta.start_pos

    def _end(self, node: Tree | Token) -> Pos:
        if isinstance(node, Token):
            return self.base + node.end_pos
        return self.base + node.meta.end_pos

    def _ident(self, token: Token) -> Ident:
        return Ident(pos=self._pos(token), end=self._end(token), name=token.value)

    # --- declarations ---------------------------------------------------

    def build_file(self, tree: Tree, filename: str, pos: Pos, end: Pos, comments: List[CommentGroup]) -> File:
        package: Optional[Ident] = None
        imports: List[ImportSpec] = []
        decls: List[Decl] = []
        for child in _trees(tree):
            kind = _name(child)
            if kind == "package_clause":
                package = self._ident(_token(child, "NAME"))
            elif kind == "import_decl":
                imports.extend(self._import_spec(spec) for spec in _trees(child))
            elif kind == "func_decl":
                decls.append(self._func_decl(child))
            elif kind == "var_decl":
                decls.append(self._var_decl(child))
            elif kind == "type_decl":
                decls.append(self._type_decl(child))
            else:
                raise ValueError(f"Unexpected top-level node: {kind}")
        if package is None:
            raise ValueError("file missing package clause")
        return File(
            pos=pos,
            end=end,
            filename=filename,
            package=package,
            imports=imports,
            decls=decls,
            comments=comments,
        )

    def _import_spec(self, tree: Tree) -> ImportSpec:
        path_tok = _token(tree, "STRING")
        name_tok = _token(tree, "NAME", required=False)
        return ImportSpec(
            pos=self._pos(tree),
            end=self._end(tree),
            path=path_tok.value[1:-1],
            name=self._ident(name_tok) if name_tok is not None else None,
        )

    def _func_decl(self, tree: Tree) -> FuncDecl:
        func_tok = _token(tree, "FUNC")
        sig, body = _trees(tree)
        return FuncDecl(
            pos=self._pos(tree),
            end=self._end(tree),
            name=self._ident(_token(tree, "NAME")),
            type=self._signature(sig, self._pos(func_tok)),
            body=self._block(body),
        )

    def _signature(self, tree: Tree, pos: Pos) -> FuncType:
        params: List[Field] = []
        result: Optional[Expr] = None
        for child in tree.children:
            if isinstance(child, Token):
                continue
            if _name(child) == "param_list":
                for param in _trees(child):
                    params.append(
                        Field(
                            pos=self._pos(param),
                            end=self._end(param),
                            names=[self._ident(_token(param, "NAME"))],
                            type=self.type_expr(_trees(param)[0]),
                        )
                    )
            else:
                result = self.type_expr(child)
        return FuncType(pos=pos, end=self._end(tree), params=params, result=result)

    def _var_decl(self, tree: Tree) -> VarDecl:
        names: List[Ident] = []
        type_expr: Optional[Expr] = None
        values: List[Expr] = []
        seen_equal = False
        for child in tree.children:
            if isinstance(child, Token):
                seen_equal = seen_equal or child.type == "EQUAL"
                continue
            kind = _name(child)
            if kind == "name_list":
                names = [self._ident(tok) for tok in child.children if isinstance(tok, Token) and tok.type == "NAME"]
            elif kind == "expr_list" and seen_equal:
                values = self._expr_list(child)
            else:
                type_expr = self.type_expr(child)
        return VarDecl(pos=self._pos(tree), end=self._end(tree), names=names, type=type_expr, values=values)

    def _type_decl(self, tree: Tree) -> TypeDecl:
        return TypeDecl(
            pos=self._pos(tree),
            end=self._end(tree),
            name=self._ident(_token(tree, "NAME")),
            type=self.type_expr(_trees(tree)[0]),
        )

    # --- types ----------------------------------------------------------

    def type_expr(self, tree: Tree) -> Expr:
        kind = _name(tree)
        pos, end = self._pos(tree), self._end(tree)
        if kind == "type_name":
            names = [tok for tok in tree.children if isinstance(tok, Token) and tok.type == "NAME"]
            if len(names) == 1:
                return self._ident(names[0])
            return SelectorExpr(pos=pos, end=end, x=self._ident(names[0]), sel=self._ident(names[1]))
        if kind == "slice_type":
            return ArrayType(pos=pos, end=end, elt=self.type_expr(_trees(tree)[0]))
        if kind == "pointer_type":
            return StarExpr(pos=pos, end=end, x=self.type_expr(_trees(tree)[0]))
        if kind == "map_type":
            key, value = _trees(tree)
            return MapType(pos=pos, end=end, key=self.type_expr(key), value=self.type_expr(value))
        if kind == "struct_type":
            fields: List[Field] = []
            for field_list in _trees(tree):
                for decl in _trees(field_list):
                    fields.append(
                        Field(
                            pos=self._pos(decl),
                            end=self._end(decl),
                            names=[self._ident(_token(decl, "NAME"))],
                            type=self.type_expr(_trees(decl)[0]),
                        )
                    )
            return StructType(pos=pos, end=end, fields=fields)
        if kind == "interface_type":
            return InterfaceType(pos=pos, end=end)
        if kind == "func_type":
            params: List[Field] = []
            result: Optional[Expr] = None
            for child in _trees(tree):
                if _name(child) == "type_list":
                    for item in _trees(child):
                        params.append(Field(pos=self._pos(item), end=self._end(item), names=[], type=self.type_expr(item)))
                else:
                    result = self.type_expr(child)
            return FuncType(pos=pos, end=end, params=params, result=result)
        raise ValueError(f"Unsupported type node: {kind}")

    # --- statements -----------------------------------------------------

    def _block(self, tree: Tree) -> BlockStmt:
        stmts = [self.stmt(child) for child in _trees(tree)]
        return BlockStmt(pos=self._pos(tree), end=self._end(tree), stmts=stmts)

    def stmt(self, tree: Tree) -> Stmt:
        kind = _name(tree)
        pos, end = self._pos(tree), self._end(tree)
        if kind == "expr_stmt":
            return ExprStmt(pos=pos, end=end, x=self.expr(_trees(tree)[0]))
        if kind in {"define_stmt", "assign_stmt"}:
            lhs, rhs = _trees(tree)
            tok = ":=" if kind == "define_stmt" else "="
            return AssignStmt(pos=pos, end=end, lhs=self._expr_list(lhs), tok=tok, rhs=self._expr_list(rhs))
        if kind == "op_assign_stmt":
            lhs, rhs = _trees(tree)
            tok = _token(tree, "ASSIGN_OP").value
            return AssignStmt(pos=pos, end=end, lhs=[self.expr(lhs)], tok=tok, rhs=[self.expr(rhs)])
        if kind == "incdec_stmt":
            op = next(tok for tok in tree.children if isinstance(tok, Token))
            return IncDecStmt(pos=pos, end=end, x=self.expr(_trees(tree)[0]), tok=op.value)
        if kind == "decl_stmt":
            return DeclStmt(pos=pos, end=end, decl=self._var_decl(_trees(tree)[0]))
        if kind == "return_stmt":
            values = _trees(tree)
            return ReturnStmt(pos=pos, end=end, result=self.expr(values[0]) if values else None)
        if kind in {"if_stmt", "if_init_stmt"}:
            return self._if_stmt(tree)
        if kind == "block":
            return self._block(tree)
        if kind == "branch_stmt":
            return BranchStmt(pos=pos, end=end, tok=tree.children[0].value)
        if kind.startswith("for_"):
            return self._for_stmt(tree)
        raise ValueError(f"Unsupported statement node: {kind}")

    def _if_stmt(self, tree: Tree) -> IfStmt:
        parts = _trees(tree)
        init: Optional[Stmt] = None
        if _name(tree) == "if_init_stmt":
            init = self.stmt(parts.pop(0))
        cond = self.expr(parts[0])
        body = self._block(parts[1])
        else_: Optional[Stmt] = None
        if len(parts) > 2:
            else_ = self.stmt(parts[2])
        return IfStmt(pos=self._pos(tree), end=self._end(tree), init=init, cond=cond, body=body, else_=else_)

    def _for_stmt(self, tree: Tree) -> ForStmt | RangeStmt:
        kind = _name(tree)
        pos, end = self._pos(tree), self._end(tree)
        parts = _trees(tree)
        body = self._block(parts[-1])
        if kind == "for_forever":
            return ForStmt(pos=pos, end=end, init=None, cond=None, post=None, body=body)
        if kind == "for_cond":
            return ForStmt(pos=pos, end=end, init=None, cond=self.expr(parts[0]), post=None, body=body)
        if kind == "for_range":
            return self._range_stmt(parts[0], pos, end, body)
        # for_clause: split the children on the two TERMINATOR tokens.
        sections: List[List[Tree]] = [[]]
        for child in tree.children[1:-1]:
            if isinstance(child, Token):
                if child.type == "TERMINATOR":
                    sections.append([])
                continue
            sections[-1].append(child)
        init_part, cond_part, post_part = sections
        init = self.stmt(init_part[0]) if init_part else None
        cond = self.expr(cond_part[0]) if cond_part else None
        post = self.stmt(_trees(post_part[0])[0]) if post_part else None
        return ForStmt(pos=pos, end=end, init=init, cond=cond, post=post, body=body)

    def _range_stmt(self, clause: Tree, pos: Pos, end: Pos, body: BlockStmt) -> RangeStmt:
        key: Optional[Expr] = None
        value: Optional[Expr] = None
        tok: Optional[str] = None
        parts = _trees(clause)
        if len(parts) == 2:
            targets = self._expr_list(parts[0])
            key = targets[0]
            value = targets[1] if len(targets) > 1 else None
            op = next(t for t in clause.children if isinstance(t, Token) and t.type in {"DEFINE", "EQUAL"})
            tok = op.value
        return RangeStmt(pos=pos, end=end, key=key, value=value, tok=tok, x=self.expr(parts[-1]), body=body)

    # --- expressions ----------------------------------------------------

    def _expr_list(self, tree: Tree) -> List[Expr]:
        return [self.expr(child) for child in _trees(tree)]

    def expr(self, tree: Tree) -> Expr:
        kind = _name(tree)
        pos, end = self._pos(tree), self._end(tree)
        if kind == "ident":
            return self._ident(tree.children[0])
        if kind in {"int_lit", "char_lit", "string_lit"}:
            tok = tree.children[0]
            return BasicLit(pos=pos, end=end, kind=tok.type, value=tok.value)
        if kind == "paren":
            return ParenExpr(pos=pos, end=end, x=self.expr(_trees(tree)[0]))
        if kind == "binary":
            left, op, right = tree.children
            op_tok = op if isinstance(op, Token) else op.children[0]
            return BinaryExpr(pos=pos, end=end, x=self.expr(left), op=op_tok.value, y=self.expr(right))
        if kind == "unary":
            op_tree, operand = tree.children
            op = op_tree.children[0].value
            x = self.expr(operand)
            if op == "*":
                return StarExpr(pos=pos, end=end, x=x)
            return UnaryExpr(pos=pos, end=end, op=op, x=x)
        if kind == "selector":
            return SelectorExpr(pos=pos, end=end, x=self.expr(tree.children[0]), sel=self._ident(_token(tree, "NAME")))
        if kind == "index":
            base, index = _trees(tree)
            return IndexExpr(pos=pos, end=end, x=self.expr(base), index=self.expr(index))
        if kind == "slice":
            return self._slice(tree)
        if kind == "call":
            parts = _trees(tree)
            args = [self.expr(arg) for arg in _trees(parts[1])] if len(parts) > 1 else []
            return CallExpr(pos=pos, end=end, fun=self.expr(parts[0]), args=args)
        if kind == "func_lit":
            sig, body = _trees(tree)
            return FuncLit(pos=pos, end=end, type=self._signature(sig, pos), body=self._block(body))
        if kind == "composite_lit":
            parts = _trees(tree)
            elts: List[Expr] = []
            if len(parts) > 1:
                elts = [self._element(elt) for elt in _trees(parts[1])]
            return CompositeLit(pos=pos, end=end, type=self.type_expr(parts[0]), elts=elts)
        if kind == "type_operand":
            return self.type_expr(_trees(tree)[0])
        raise ValueError(f"Unsupported expression node: {kind}")

    def _slice(self, tree: Tree) -> SliceExpr:
        base = self.expr(tree.children[0])
        low: Optional[Expr] = None
        high: Optional[Expr] = None
        seen_colon = False
        for child in tree.children[1:]:
            if isinstance(child, Token):
                seen_colon = seen_colon or child.type == "COLON"
                continue
            if seen_colon:
                high = self.expr(child)
            else:
                low = self.expr(child)
        return SliceExpr(pos=self._pos(tree), end=self._end(tree), x=base, low=low, high=high)

    def _element(self, tree: Tree) -> Expr:
        parts = _trees(tree)
        if _name(tree) == "key_value":
            return KeyValueExpr(pos=self._pos(tree), end=self._end(tree), key=self.expr(parts[0]), value=self.expr(parts[1]))
        return self.expr(parts[0])


def _trees(node: Tree) -> List[Tree]:
    return [child for child in node.children if isinstance(child, Tree)]


def _token(tree: Tree, ttype: str, required: bool = True) -> Optional[Token]:
    tok = next((child for child in tree.children if isinstance(child, Token) and child.type == ttype), None)
    if tok is None and required:
        raise ValueError(f"{_name(tree)} missing {ttype}")
    return tok


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    if isinstance(node, Token):
        return node.type
    return str(node)


__all__ = ["TerminatorInserter", "parse_file", "parse_expr"]
