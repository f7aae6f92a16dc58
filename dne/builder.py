"""
Lowering of checked syntax trees into the value-level program.

Local variables become SSA values on the fly: every block records the
current definition of each variable, reads in blocks whose predecessors are
not all known yet create placeholder phis that are completed when the block
is sealed, and phis that merge a single value are removed as soon as they are
complete. Locals captured by a function literal or whose address is taken
(`&x`) live in `Alloc` cells instead and are accessed through loads and
stores.

Struct-typed values are represented by the address of their storage, so
copying a struct value aliases the original.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from . import ast, ssa, types
from .diagnostics import AnalysisError
from .span import NO_POS, Pos
from .types import (
    BOOL,
    BYTE,
    EMPTY_INTERFACE,
    INT,
    INVALID,
    Info,
    Interface,
    Map,
    Pointer,
    Signature,
    Slice,
    Struct,
    Type,
    TypesPackage,
    UNSAFE,
    default_type,
    is_boolean,
    is_integer,
    is_string,
)


class LoweringError(AnalysisError):
    phase = "ssa"


# --- lvalues -----------------------------------------------------------


@dataclass
class _Local:
    """A non-escaping local held in SSA form."""

    obj: types.Var


@dataclass
class _Cell:
    """An escaping local; `cell` is the Alloc (or FreeVar) holding it."""

    cell: ssa.Value
    pos: Pos


@dataclass
class _Addr:
    """A memory location of type `type`."""

    addr: ssa.Value
    type: Type
    pos: Pos


@dataclass
class _MapEntry:
    map: ssa.Value
    key: ssa.Value
    type: Type
    pos: Pos


class _Blank:
    pass


_BLANK = _Blank()


class _Temp:
    """Variable key for values the lowering itself merges (loop indices, && and ||)."""

    def __init__(self, name: str, type: Type) -> None:
        self.name = name
        self.type = type


@dataclass
class _LoopTargets:
    brk: ssa.BasicBlock
    cont: ssa.BasicBlock


# --- program level -----------------------------------------------------


class Builder:
    """Creates packages in dependency order, then builds every function body."""

    def __init__(self, prog: Optional[ssa.Program] = None) -> None:
        self.prog = prog if prog is not None else ssa.Program()
        self.funcs: Dict[types.Func, ssa.Function] = {}
        self.globals: Dict[types.Var, ssa.Global] = {}
        self._builtins: Dict[str, ssa.Builtin] = {}

    def builtin(self, name: str) -> ssa.Builtin:
        if name not in self._builtins:
            self._builtins[name] = ssa.Builtin(name=name)
        return self._builtins[name]

    def create_package(self, types_pkg: TypesPackage, files: Sequence[ast.File], info: Info) -> ssa.Package:
        path = types_pkg.path
        if path in self.prog.packages:
            raise LoweringError(f"package {path} already created")
        for imp in types_pkg.imports:
            if imp is not UNSAFE and imp.path not in self.prog.packages:
                raise LoweringError(f"package {path} created before its import {imp.path}")
        pkg = ssa.Package(path=path, types=types_pkg, files=list(files), info=info)
        inits = 0
        for f in files:
            for decl in f.decls:
                if isinstance(decl, ast.FuncDecl):
                    obj = info.defs[decl.name]
                    name = decl.name.name
                    if name == "init":
                        inits += 1
                        name = f"init#{inits}"
                    fn = ssa.Function(
                        name=name, signature=obj.type, pkg=pkg, syntax=decl, obj=obj, pos=decl.name.pos
                    )
                    self.funcs[obj] = fn
                    self.prog.func_by_syntax[decl] = fn
                    pkg.funcs.append(fn)
                    if decl.name.name != "init":
                        pkg.members[name] = fn
                elif isinstance(decl, ast.VarDecl):
                    for ident in decl.names:
                        obj = info.defs.get(ident)
                        if obj is None:
                            continue
                        g = ssa.Global(name=ident.name, type=Pointer(obj.type), pkg=pkg, obj=obj, pos=ident.pos)
                        self.globals[obj] = g
                        pkg.members[ident.name] = g
        pkg.init = ssa.Function(name="init", signature=Signature(), pkg=pkg, synthetic="package initializer")
        pkg.members["init"] = pkg.init
        self.prog.packages[path] = pkg
        return pkg

    def build_all(self) -> None:
        for pkg in list(self.prog.packages.values()):
            self.build_package(pkg)

    def build_package(self, pkg: ssa.Package) -> None:
        if pkg.built:
            return
        pkg.built = True
        info = pkg.info
        roots: List[ast.Node] = list(info.init_order)
        FunctionBuilder(self, pkg.init, info, escaping=_escaping_vars(roots, info)).build_init(pkg)
        for fn in pkg.funcs:
            decl = fn.syntax
            FunctionBuilder(self, fn, info, escaping=_escaping_vars([decl], info)).build(decl.type, decl.body)

    def create_test_main(self, pkgs: Sequence[ssa.Package]) -> Optional[ssa.Package]:
        """Synthesize a package whose main runs every TestXxx function of `pkgs`; None if there is none."""
        tests = [fn for pkg in pkgs for fn in pkg.funcs if _is_test_func(fn)]
        if not tests:
            return None
        path = "testmain"
        while path in self.prog.packages:
            path += "_"
        pkg = ssa.Package(path=path, types=None, built=True)
        pkg.init = ssa.Function(name="init", signature=Signature(), pkg=pkg, synthetic="package initializer")
        _build_calls(pkg.init, [p.init for p in pkgs if p.init is not None])
        main = ssa.Function(name="main", signature=Signature(), pkg=pkg, synthetic="test main")
        _build_calls(main, tests)
        pkg.members = {"init": pkg.init, "main": main}
        pkg.funcs.append(main)
        self.prog.packages[path] = pkg
        return pkg


def _is_test_func(fn: ssa.Function) -> bool:
    if not isinstance(fn.syntax, ast.FuncDecl):
        return False
    name = fn.name
    if not name.startswith("Test"):
        return False
    if len(name) > 4 and name[4].islower():
        return False
    return not fn.signature.params and fn.signature.result is None


def _build_calls(fn: ssa.Function, callees: Iterable[ssa.Function]) -> None:
    block = fn.new_block("entry")
    for callee in callees:
        block.append(ssa.Call(callee=callee, args=[], type=INVALID))
    block.append(ssa.Return())
    _number_registers(fn)


def _escaping_vars(roots: Iterable[ast.Node], info: Info) -> Set[types.Var]:
    """Locals referenced from a nested function literal, or non-struct locals whose address is taken."""
    owner: Dict[types.Var, ast.Node] = {}
    escaping: Set[types.Var] = set()

    def is_local(obj: object) -> bool:
        return isinstance(obj, types.Var) and not obj.is_global

    def visit(node: ast.Node, fn_node: Optional[ast.Node]) -> None:
        if isinstance(node, ast.FuncLit):
            fn_node = node
        if isinstance(node, ast.Ident):
            obj = info.defs.get(node)
            if is_local(obj):
                owner[obj] = fn_node
            else:
                obj = info.uses.get(node)
                if is_local(obj) and owner.get(obj, fn_node) is not fn_node:
                    escaping.add(obj)
        elif isinstance(node, ast.UnaryExpr) and node.op == "&":
            target = _unparen(node.x)
            if isinstance(target, ast.Ident):
                obj = info.uses.get(target)
                if is_local(obj) and not isinstance(obj.type.underlying(), Struct):
                    escaping.add(obj)
        for child in ast.iter_children(node):
            visit(child, fn_node)

    for root in roots:
        visit(root, None)
    return escaping


# --- function level ----------------------------------------------------


class FunctionBuilder:
    def __init__(
        self,
        builder: Builder,
        fn: ssa.Function,
        info: Info,
        parent: Optional["FunctionBuilder"] = None,
        escaping: Optional[Set[types.Var]] = None,
    ) -> None:
        self.b = builder
        self.fn = fn
        self.info = info
        self.parent = parent
        self.escaping = escaping if escaping is not None else set()
        self.block: Optional[ssa.BasicBlock] = None
        self.cells: Dict[types.Var, ssa.Value] = {}
        self.defs: Dict[object, Dict[ssa.BasicBlock, ssa.Value]] = {}
        self.sealed: Set[ssa.BasicBlock] = set()
        self.incomplete: Dict[ssa.BasicBlock, List[Tuple[object, ssa.Phi]]] = {}
        self.replaced: Dict[ssa.Phi, ssa.Value] = {}
        self.loops: List[_LoopTargets] = []

    # --- entry points ---------------------------------------------------

    def build(self, ftype: ast.FuncType, body: ast.BlockStmt) -> None:
        self._start()
        param_types = list(self.fn.signature.params)
        idx = 0
        for field in ftype.params:
            names = field.names or [None]
            for ident in names:
                name = ident.name if ident is not None else f"arg{idx}"
                param = ssa.Parameter(
                    name=name, type=param_types[idx], parent=self.fn, pos=ident.pos if ident is not None else NO_POS
                )
                self.fn.params.append(param)
                idx += 1
                obj = self.info.defs.get(ident) if ident is not None else None
                if isinstance(obj, types.Var):
                    self._declare_var(obj, param, ident.pos)
        self.stmts(body.stmts)
        self._finish()

    def build_init(self, pkg: ssa.Package) -> None:
        self._start()
        for imp in pkg.types.imports:
            dep = self.b.prog.packages.get(imp.path)
            if dep is not None and dep.init is not None:
                self._emit(ssa.Call(callee=dep.init, args=[], type=INVALID))
        for decl in self.info.init_order:
            values = [self.expr(v) for v in decl.values]
            for ident, value in zip(decl.names, values):
                obj = self.info.defs.get(ident)
                if obj is None:
                    continue
                g = self.b.globals[obj]
                self._store(g, self._coerce(value, obj.type), obj.type, ident.pos)
        for fn in pkg.funcs:
            if fn.name.startswith("init#"):
                self._emit(ssa.Call(callee=fn, args=[], type=INVALID, pos=fn.pos))
        self._finish()

    def _start(self) -> None:
        entry = self.fn.new_block("entry")
        self.sealed.add(entry)
        self.block = entry

    def _finish(self) -> None:
        if not self.block.terminated():
            self._emit(ssa.Return())
        for block in self.fn.blocks:
            if block not in self.sealed:
                self._seal(block)
        for instr in self.fn.instructions():
            instr.map_operands(self._resolve)
        self.fn.expr_values = {expr: self._resolve(v) for expr, v in self.fn.expr_values.items()}
        _remove_unreachable(self.fn)
        _number_registers(self.fn)

    # --- blocks ---------------------------------------------------------

    def _emit(self, instr):
        self.block.append(instr)
        return instr

    def _new_block(self, comment: str) -> ssa.BasicBlock:
        return self.fn.new_block(comment)

    @staticmethod
    def _add_edge(frm: ssa.BasicBlock, to: ssa.BasicBlock) -> None:
        frm.succs.append(to)
        to.preds.append(frm)

    def _jump(self, target: ssa.BasicBlock) -> None:
        self._emit(ssa.Jump())
        self._add_edge(self.block, target)

    def _branch(self, cond: ssa.Value, then: ssa.BasicBlock, els: ssa.BasicBlock, pos: Pos) -> None:
        self._emit(ssa.If(cond=cond, pos=pos))
        self._add_edge(self.block, then)
        self._add_edge(self.block, els)

    def _unreachable(self) -> None:
        block = self._new_block("unreachable")
        self.sealed.add(block)
        self.block = block

    # --- SSA variables --------------------------------------------------

    def _write(self, var: object, block: ssa.BasicBlock, value: ssa.Value) -> None:
        self.defs.setdefault(var, {})[block] = value

    def _read(self, var: object, block: ssa.BasicBlock) -> ssa.Value:
        value = self.defs.get(var, {}).get(block)
        if value is not None:
            return self._resolve(value)
        return self._read_recursive(var, block)

    def _read_recursive(self, var: object, block: ssa.BasicBlock) -> ssa.Value:
        if block not in self.sealed:
            phi = self._new_phi(var, block)
            self.incomplete.setdefault(block, []).append((var, phi))
            value: ssa.Value = phi
        elif len(block.preds) == 1:
            value = self._read(var, block.preds[0])
        else:
            phi = self._new_phi(var, block)
            self._write(var, block, phi)
            value = self._add_phi_operands(var, phi)
        self._write(var, block, value)
        return value

    def _new_phi(self, var: object, block: ssa.BasicBlock) -> ssa.Phi:
        phi = ssa.Phi(edges=[], type=var.type, comment=var.name)
        phi.block = block
        block.instrs.insert(0, phi)
        return phi

    def _add_phi_operands(self, var: object, phi: ssa.Phi) -> ssa.Value:
        for pred in phi.block.preds:
            phi.edges.append(self._read(var, pred))
        return self._try_remove_trivial(phi)

    def _try_remove_trivial(self, phi: ssa.Phi) -> ssa.Value:
        if phi in self.replaced:
            return self._resolve(phi)
        same: Optional[ssa.Value] = None
        for op in phi.edges:
            op = self._resolve(op)
            if op is same or op is phi:
                continue
            if same is not None:
                return phi
            same = op
        if same is None:
            same = _zero_const(phi.type)
        self.replaced[phi] = same
        phi.block.instrs.remove(phi)
        for user in self._phi_users(phi):
            if user not in self.replaced:
                self._try_remove_trivial(user)
        return same

    def _phi_users(self, phi: ssa.Phi) -> List[ssa.Phi]:
        return [
            other
            for block in self.fn.blocks
            for other in block.phis()
            if other is not phi and any(edge is phi for edge in other.edges)
        ]

    def _resolve(self, value: ssa.Value) -> ssa.Value:
        while isinstance(value, ssa.Phi) and value in self.replaced:
            value = self.replaced[value]
        return value

    def _seal(self, block: ssa.BasicBlock) -> None:
        for var, phi in self.incomplete.pop(block, []):
            self._add_phi_operands(var, phi)
        self.sealed.add(block)

    # --- variables and memory -------------------------------------------

    def _cell(self, obj: types.Var) -> ssa.Value:
        cell = self.cells.get(obj)
        if cell is not None:
            return cell
        if self.parent is None:
            raise LoweringError(f"no storage for captured variable {obj.name}", pos=obj.pos)
        outer = self.parent._cell(obj)
        fv = ssa.FreeVar(name=obj.name, type=outer.type, parent=self.fn, outer=outer, pos=obj.pos)
        self.fn.free_vars.append(fv)
        self.cells[obj] = fv
        return fv

    def _declare_var(self, obj: types.Var, value: ssa.Value, pos: Pos) -> None:
        if obj in self.escaping:
            cell = self._emit(ssa.Alloc(type=Pointer(obj.type), heap=True, comment=obj.name, pos=pos))
            self.cells[obj] = cell
            self._emit(ssa.Store(addr=cell, val=value, pos=pos))
        else:
            self._write(obj, self.block, value)

    def _read_var(self, obj: types.Var, pos: Pos) -> ssa.Value:
        if obj.is_global:
            return self._load(self._global(obj), obj.type, pos)
        if obj in self.escaping:
            return self._emit(ssa.UnOp(op="*", x=self._cell(obj), type=obj.type, pos=pos))
        return self._read(obj, self.block)

    def _global(self, obj: types.Var) -> ssa.Global:
        g = self.b.globals.get(obj)
        if g is None:
            raise LoweringError(f"no package-level variable {obj.name}", pos=obj.pos)
        return g

    def _load(self, addr: ssa.Value, ty: Type, pos: Pos) -> ssa.Value:
        if isinstance(ty.underlying(), Struct):
            return addr
        return self._emit(ssa.UnOp(op="*", x=addr, type=ty, pos=pos))

    def _store(self, addr: ssa.Value, value: ssa.Value, ty: Type, pos: Pos) -> None:
        under = ty.underlying()
        if isinstance(under, Struct):
            # Struct assignment copies field by field.
            for idx, f in enumerate(under.fields):
                dst = self._emit(ssa.FieldAddr(x=addr, field=idx, type=Pointer(f.type), pos=pos))
                src = self._emit(ssa.FieldAddr(x=value, field=idx, type=Pointer(f.type), pos=pos))
                self._store(dst, self._load(src, f.type, pos), f.type, pos)
            return
        self._emit(ssa.Store(addr=addr, val=value, pos=pos))

    def _zero(self, ty: Type, pos: Pos) -> ssa.Value:
        if isinstance(ty.underlying(), Struct):
            return self._emit(ssa.Alloc(type=Pointer(ty), comment="zero", pos=pos))
        return _zero_const(ty)

    def _lvalue(self, expr: ast.Expr):
        expr = _unparen(expr)
        if isinstance(expr, ast.Ident):
            if expr.name == "_":
                return _BLANK
            obj = self.info.object_of(expr)
            if not isinstance(obj, types.Var):
                raise LoweringError(f"cannot assign to {expr.name}", pos=expr.pos)
            if obj.is_global:
                return _Addr(self._global(obj), obj.type, expr.pos)
            if obj in self.escaping:
                return _Cell(self._cell(obj), expr.pos)
            return _Local(obj)
        if isinstance(expr, ast.IndexExpr):
            xt = self._type(expr.x).underlying()
            x = self.expr(expr.x)
            if isinstance(xt, Map):
                key = self._coerce(self.expr(expr.index), xt.key)
                return _MapEntry(x, key, xt.value, expr.pos)
            index = self.expr(expr.index)
            addr = self._emit(ssa.IndexAddr(x=x, index=index, type=Pointer(xt.elem), pos=expr.pos))
            return _Addr(addr, xt.elem, expr.pos)
        if isinstance(expr, ast.SelectorExpr):
            sel = self.info.selections.get(expr)
            if sel is not None:
                return _Addr(self._field_addr(expr), sel.field.type, expr.pos)
            obj = self.info.uses.get(expr.sel)
            if isinstance(obj, types.Var):
                return _Addr(self._global(obj), obj.type, expr.pos)
        if isinstance(expr, ast.StarExpr):
            return _Addr(self.expr(expr.x), self._type(expr), expr.pos)
        raise LoweringError(f"cannot assign to {type(expr).__name__}", pos=expr.pos)

    def _assign(self, target, value: ssa.Value) -> None:
        if isinstance(target, _Blank):
            return
        if isinstance(target, _Local):
            self._write(target.obj, self.block, value)
        elif isinstance(target, _Cell):
            self._emit(ssa.Store(addr=target.cell, val=value, pos=target.pos))
        elif isinstance(target, _Addr):
            self._store(target.addr, value, target.type, target.pos)
        else:
            self._emit(ssa.MapUpdate(map=target.map, key=target.key, value=value, pos=target.pos))

    def _load_target(self, target) -> ssa.Value:
        if isinstance(target, _Local):
            return self._read(target.obj, self.block)
        if isinstance(target, _Cell):
            return self._emit(ssa.UnOp(op="*", x=target.cell, type=target.cell.type.elem, pos=target.pos))
        if isinstance(target, _Addr):
            return self._load(target.addr, target.type, target.pos)
        return self._emit(ssa.Lookup(x=target.map, index=target.key, type=target.type, pos=target.pos))

    # --- statements -----------------------------------------------------

    def stmts(self, stmts: List[ast.Stmt]) -> None:
        for stmt in stmts:
            self.stmt(stmt)

    def stmt(self, stmt: ast.Stmt) -> None:
        if isinstance(stmt, ast.ExprStmt):
            self.expr(stmt.x)
        elif isinstance(stmt, ast.AssignStmt):
            if stmt.tok == ":=":
                self._define(stmt)
            elif stmt.tok == "=":
                self._assign_stmt(stmt)
            else:
                self._op_assign(stmt.lhs[0], stmt.tok[:-1], stmt.rhs[0], stmt.pos)
        elif isinstance(stmt, ast.IncDecStmt):
            self._op_assign(stmt.x, stmt.tok[0], None, stmt.pos)
        elif isinstance(stmt, ast.DeclStmt):
            self._var_decl(stmt.decl)
        elif isinstance(stmt, ast.ReturnStmt):
            result = None
            if stmt.result is not None:
                result = self._coerce(self.expr(stmt.result), self.fn.signature.result)
            self._emit(ssa.Return(result=result, pos=stmt.pos))
            self._unreachable()
        elif isinstance(stmt, ast.BlockStmt):
            self.stmts(stmt.stmts)
        elif isinstance(stmt, ast.IfStmt):
            self._if_stmt(stmt)
        elif isinstance(stmt, ast.ForStmt):
            self._for_stmt(stmt)
        elif isinstance(stmt, ast.RangeStmt):
            self._range_stmt(stmt)
        elif isinstance(stmt, ast.BranchStmt):
            if not self.loops:
                raise LoweringError(f"{stmt.tok} is not in a loop", pos=stmt.pos)
            targets = self.loops[-1]
            self._jump(targets.brk if stmt.tok == "break" else targets.cont)
            self._unreachable()
        else:
            raise LoweringError(f"unexpected statement {type(stmt).__name__}", pos=stmt.pos)

    def _define(self, stmt: ast.AssignStmt) -> None:
        values = [self.expr(v) for v in stmt.rhs]
        for target, value in zip(stmt.lhs, values):
            if target.name == "_":
                continue
            obj = self.info.defs.get(target)
            if isinstance(obj, types.Var):
                value = self._coerce(value, obj.type)
                self._declare_var(obj, value, target.pos)
            else:
                obj = self.info.uses[target]
                value = self._coerce(value, obj.type)
                self._assign(self._lvalue(target), value)
            self.fn.expr_values[target] = value

    def _assign_stmt(self, stmt: ast.AssignStmt) -> None:
        targets = [self._lvalue(t) for t in stmt.lhs]
        values = [self.expr(v) for v in stmt.rhs]
        for lhs, target, value in zip(stmt.lhs, targets, values):
            value = self._coerce(value, self.info.type_of(lhs))
            self._assign(target, value)
            lhs = _unparen(lhs)
            if isinstance(lhs, ast.Ident):
                self.fn.expr_values[lhs] = value

    def _op_assign(self, lhs: ast.Expr, op: str, rhs: Optional[ast.Expr], pos: Pos) -> None:
        ty = self._type(lhs)
        target = self._lvalue(lhs)
        current = self._load_target(target)
        operand = self.expr(rhs) if rhs is not None else ssa.Const(1, ty)
        result = self._emit(ssa.BinOp(op=op, x=current, y=self._coerce(operand, ty), type=ty, pos=pos))
        self._assign(target, result)
        lhs = _unparen(lhs)
        if isinstance(lhs, ast.Ident):
            self.fn.expr_values[lhs] = result

    def _var_decl(self, decl: ast.VarDecl) -> None:
        values: List[Optional[ssa.Value]] = [self.expr(v) for v in decl.values] or [None] * len(decl.names)
        for ident, value in zip(decl.names, values):
            obj = self.info.defs.get(ident)
            if obj is None:
                continue
            value = self._coerce(value, obj.type) if value is not None else self._zero(obj.type, ident.pos)
            self._declare_var(obj, value, ident.pos)
            self.fn.expr_values[ident] = value

    def _if_stmt(self, stmt: ast.IfStmt) -> None:
        if stmt.init is not None:
            self.stmt(stmt.init)
        then = self._new_block("if.then")
        done = self._new_block("if.done")
        els = self._new_block("if.else") if stmt.else_ is not None else done
        self._branch(self.expr(stmt.cond), then, els, stmt.cond.pos)
        self._seal(then)
        self.block = then
        self.stmts(stmt.body.stmts)
        self._jump(done)
        if stmt.else_ is not None:
            self._seal(els)
            self.block = els
            self.stmt(stmt.else_)
            self._jump(done)
        self._seal(done)
        self.block = done

    def _for_stmt(self, stmt: ast.ForStmt) -> None:
        if stmt.init is not None:
            self.stmt(stmt.init)
        loop = self._new_block("for.loop")
        body = self._new_block("for.body")
        done = self._new_block("for.done")
        post = self._new_block("for.post") if stmt.post is not None else loop
        self._jump(loop)
        self.block = loop
        if stmt.cond is not None:
            self._branch(self.expr(stmt.cond), body, done, stmt.cond.pos)
        else:
            self._jump(body)
        self._seal(body)
        self.block = body
        self.loops.append(_LoopTargets(brk=done, cont=post))
        self.stmts(stmt.body.stmts)
        self.loops.pop()
        self._jump(post)
        if post is not loop:
            self._seal(post)
            self.block = post
            self.stmt(stmt.post)
            self._jump(loop)
        self._seal(loop)
        self._seal(done)
        self.block = done

    def _range_stmt(self, stmt: ast.RangeStmt) -> None:
        x = self.expr(stmt.x)
        xt = self._type(stmt.x).underlying()
        if isinstance(xt, Map):
            self._range_map(stmt, x, xt)
        else:
            self._range_indexed(stmt, x, xt)

    def _range_indexed(self, stmt: ast.RangeStmt, x: ssa.Value, xt: Type) -> None:
        if isinstance(xt, Slice) or is_string(xt):
            n = self._emit(ssa.Call(callee=self.b.builtin("len"), args=[x], type=INT, pos=stmt.x.pos))
        else:
            n = self._coerce(x, INT)
        index = _Temp("index", INT)
        self._write(index, self.block, ssa.Const(0, INT))
        loop = self._new_block("rangeindex.loop")
        body = self._new_block("rangeindex.body")
        done = self._new_block("rangeindex.done")
        post = self._new_block("rangeindex.post")
        self._jump(loop)
        self.block = loop
        i = self._read(index, loop)
        cond = self._emit(ssa.BinOp(op="<", x=i, y=n, type=BOOL, pos=stmt.pos))
        self._branch(cond, body, done, stmt.pos)
        self._seal(body)
        self.block = body
        i = self._read(index, body)
        value: Optional[ssa.Value] = None
        if stmt.value is not None:
            if isinstance(xt, Slice):
                addr = self._emit(ssa.IndexAddr(x=x, index=i, type=Pointer(xt.elem), pos=stmt.value.pos))
                value = self._load(addr, xt.elem, stmt.value.pos)
            else:
                value = self._emit(ssa.Index(x=x, index=i, type=INT, pos=stmt.value.pos))
        self._range_bind(stmt, i, value)
        self.loops.append(_LoopTargets(brk=done, cont=post))
        self.stmts(stmt.body.stmts)
        self.loops.pop()
        self._jump(post)
        self._seal(post)
        self.block = post
        i = self._read(index, post)
        incr = self._emit(ssa.BinOp(op="+", x=i, y=ssa.Const(1, INT), type=INT, pos=stmt.pos))
        self._write(index, post, incr)
        self._jump(loop)
        self._seal(loop)
        self._seal(done)
        self.block = done

    def _range_map(self, stmt: ast.RangeStmt, x: ssa.Value, xt: Map) -> None:
        loop = self._new_block("rangeiter.loop")
        body = self._new_block("rangeiter.body")
        done = self._new_block("rangeiter.done")
        self._jump(loop)
        self.block = loop
        ok = self._emit(ssa.Next(x=x, extract="ok", type=BOOL, pos=stmt.pos))
        self._branch(ok, body, done, stmt.pos)
        self._seal(body)
        self.block = body
        key = self._emit(ssa.Next(x=x, extract="key", type=xt.key, pos=stmt.pos))
        value = None
        if stmt.value is not None:
            value = self._emit(ssa.Next(x=x, extract="value", type=xt.value, pos=stmt.pos))
        self._range_bind(stmt, key, value)
        self.loops.append(_LoopTargets(brk=done, cont=loop))
        self.stmts(stmt.body.stmts)
        self.loops.pop()
        self._jump(loop)
        self._seal(loop)
        self._seal(done)
        self.block = done

    def _range_bind(self, stmt: ast.RangeStmt, key: ssa.Value, value: Optional[ssa.Value]) -> None:
        for target, val in ((stmt.key, key), (stmt.value, value)):
            if target is None or val is None:
                continue
            if isinstance(target, ast.Ident) and target.name == "_":
                continue
            if stmt.tok == ":=":
                obj = self.info.defs.get(target)
                if obj is None:
                    continue
                val = self._coerce(val, obj.type)
                self._declare_var(obj, val, target.pos)
            else:
                lv = self._lvalue(target)
                val = self._coerce(val, self._type(target))
                self._assign(lv, val)
            self.fn.expr_values[target] = val

    # --- expressions ----------------------------------------------------

    def expr(self, expr: ast.Expr) -> ssa.Value:
        value = self._expr(expr)
        self.fn.expr_values[expr] = value
        return value

    def _type(self, expr: ast.Expr) -> Type:
        ty = self.info.type_of(expr)
        return ty if ty is not None else INVALID

    def _expr(self, expr: ast.Expr) -> ssa.Value:
        if isinstance(expr, ast.ParenExpr):
            return self.expr(expr.x)
        if isinstance(expr, ast.Ident):
            obj = self.info.object_of(expr)
            if obj is None:
                raise LoweringError(f"undefined: {expr.name}", pos=expr.pos)
            return self._object_value(obj, expr)
        if isinstance(expr, ast.BasicLit):
            return self._literal(expr)
        if isinstance(expr, ast.FuncLit):
            return self._func_lit(expr)
        if isinstance(expr, ast.CompositeLit):
            return self._composite_lit(expr)
        if isinstance(expr, ast.SelectorExpr):
            sel = self.info.selections.get(expr)
            if sel is not None:
                return self._load(self._field_addr(expr), sel.field.type, expr.pos)
            return self._object_value(self.info.uses[expr.sel], expr)
        if isinstance(expr, ast.IndexExpr):
            return self._index(expr)
        if isinstance(expr, ast.SliceExpr):
            x = self.expr(expr.x)
            low = self.expr(expr.low) if expr.low is not None else None
            high = self.expr(expr.high) if expr.high is not None else None
            return self._emit(ssa.Slice(x=x, low=low, high=high, type=default_type(self._type(expr)), pos=expr.pos))
        if isinstance(expr, ast.CallExpr):
            return self._call(expr)
        if isinstance(expr, ast.StarExpr):
            return self._load(self.expr(expr.x), self._type(expr), expr.pos)
        if isinstance(expr, ast.UnaryExpr):
            return self._unary(expr)
        if isinstance(expr, ast.BinaryExpr):
            if expr.op in {"&&", "||"}:
                return self._logical(expr)
            x = self.expr(expr.x)
            y = self.expr(expr.y)
            return self._emit(ssa.BinOp(op=expr.op, x=x, y=y, type=default_type(self._type(expr)), pos=expr.pos))
        raise LoweringError(f"unexpected expression {type(expr).__name__}", pos=expr.pos)

    def _object_value(self, obj: types.Object, expr: ast.Expr) -> ssa.Value:
        if isinstance(obj, types.Var):
            return self._read_var(obj, expr.pos)
        if isinstance(obj, types.Const):
            return ssa.Const(obj.value, default_type(obj.type))
        if isinstance(obj, types.Nil):
            return ssa.Const(None, self._type(expr))
        if isinstance(obj, types.Func):
            fn = self.b.funcs.get(obj)
            if fn is None:
                raise LoweringError(f"no function for {obj.name}", pos=expr.pos)
            return fn
        raise LoweringError(f"{obj.name} is not a value", pos=expr.pos)

    def _literal(self, lit: ast.BasicLit) -> ssa.Const:
        ty = default_type(self._type(lit))
        if lit.kind == "INT":
            return ssa.Const(_parse_int(lit.value), ty)
        if lit.kind == "CHAR":
            return ssa.Const(ord(_unquote(lit.value)), ty)
        return ssa.Const(_unquote(lit.value), ty)

    def _func_lit(self, lit: ast.FuncLit) -> ssa.Value:
        sig = self._type(lit)
        anon = ssa.Function(
            name=f"{self.fn.name}${len(self.fn.anon_funcs) + 1}",
            signature=sig,
            pkg=self.fn.pkg,
            syntax=lit,
            parent=self.fn,
            pos=lit.pos,
        )
        self.fn.anon_funcs.append(anon)
        self.b.prog.func_by_syntax[lit] = anon
        FunctionBuilder(self.b, anon, self.info, parent=self, escaping=self.escaping).build(lit.type, lit.body)
        if not anon.free_vars:
            return anon
        bindings = [fv.outer for fv in anon.free_vars]
        return self._emit(ssa.MakeClosure(func=anon, bindings=bindings, type=sig, pos=lit.pos))

    def _composite_lit(self, lit: ast.CompositeLit) -> ssa.Value:
        ty = self._type(lit)
        under = ty.underlying()
        if isinstance(under, Slice):
            n = ssa.Const(len(lit.elts), INT)
            s = self._emit(ssa.MakeSlice(type=ty, len=n, cap=n, pos=lit.pos))
            for idx, elt in enumerate(lit.elts):
                value = self._coerce(self.expr(elt), under.elem)
                addr = self._emit(
                    ssa.IndexAddr(x=s, index=ssa.Const(idx, INT), type=Pointer(under.elem), pos=elt.pos)
                )
                self._store(addr, value, under.elem, elt.pos)
            return s
        m = self._emit(ssa.MakeMap(type=ty, pos=lit.pos))
        for elt in lit.elts:
            key = self._coerce(self.expr(elt.key), under.key)
            value = self._coerce(self.expr(elt.value), under.value)
            self._emit(ssa.MapUpdate(map=m, key=key, value=value, pos=elt.pos))
        return m

    def _field_addr(self, expr: ast.SelectorExpr) -> ssa.Value:
        sel = self.info.selections[expr]
        # Both a struct value and a pointer to one are the storage address.
        base = self.expr(expr.x)
        return self._emit(ssa.FieldAddr(x=base, field=sel.index, type=Pointer(sel.field.type), pos=expr.pos))

    def _index(self, expr: ast.IndexExpr) -> ssa.Value:
        xt = self._type(expr.x).underlying()
        x = self.expr(expr.x)
        if isinstance(xt, Map):
            key = self._coerce(self.expr(expr.index), xt.key)
            return self._emit(ssa.Lookup(x=x, index=key, type=xt.value, pos=expr.pos))
        index = self.expr(expr.index)
        if is_string(xt):
            return self._emit(ssa.Index(x=x, index=index, type=BYTE, pos=expr.pos))
        addr = self._emit(ssa.IndexAddr(x=x, index=index, type=Pointer(xt.elem), pos=expr.pos))
        return self._load(addr, xt.elem, expr.pos)

    def _unary(self, expr: ast.UnaryExpr) -> ssa.Value:
        if expr.op == "&":
            return self._address_of(expr)
        x = self.expr(expr.x)
        ty = default_type(self._type(expr))
        if isinstance(x, ssa.Const) and x.value is not None:
            if expr.op == "-":
                return ssa.Const(-x.value, ty)
            if expr.op == "!":
                return ssa.Const(not x.value, ty)
        return self._emit(ssa.UnOp(op=expr.op, x=x, type=ty, pos=expr.pos))

    def _address_of(self, expr: ast.UnaryExpr) -> ssa.Value:
        target = _unparen(expr.x)
        ty = self._type(target)
        if isinstance(ty.underlying(), Struct):
            return self.expr(target)
        if isinstance(target, ast.CompositeLit):
            value = self.expr(target)
            cell = self._emit(ssa.Alloc(type=Pointer(ty), heap=True, comment="complit", pos=expr.pos))
            self._emit(ssa.Store(addr=cell, val=value, pos=expr.pos))
            return cell
        lv = self._lvalue(target)
        if isinstance(lv, _Addr):
            return lv.addr
        if isinstance(lv, _Cell):
            return lv.cell
        raise LoweringError("cannot take address of operand", pos=expr.pos)

    def _logical(self, expr: ast.BinaryExpr) -> ssa.Value:
        result = _Temp(expr.op, BOOL)
        rhs = self._new_block("binop.rhs")
        done = self._new_block("binop.done")
        x = self.expr(expr.x)
        self._write(result, self.block, x)
        if expr.op == "&&":
            self._branch(x, rhs, done, expr.pos)
        else:
            self._branch(x, done, rhs, expr.pos)
        self._seal(rhs)
        self.block = rhs
        y = self.expr(expr.y)
        self._write(result, self.block, y)
        self._jump(done)
        self._seal(done)
        self.block = done
        return self._read(result, done)

    def _call(self, expr: ast.CallExpr) -> ssa.Value:
        ftv = self.info.types.get(expr.fun)
        if ftv is not None and ftv.is_type():
            return self._convert(self.expr(expr.args[0]), ftv.type, expr.pos)
        if ftv is not None and ftv.mode == "builtin":
            return self._builtin_call(_unparen(expr.fun).name, expr)
        callee = self.expr(expr.fun)
        sig = self._type(expr.fun).underlying()
        if not isinstance(sig, Signature):
            raise LoweringError("call of non-function", pos=expr.pos)
        args = [self._coerce(self.expr(arg), param) for arg, param in zip(expr.args, sig.params)]
        result = sig.result if sig.result is not None else INVALID
        return self._emit(ssa.Call(callee=callee, args=args, type=result, pos=expr.pos))

    def _builtin_call(self, name: str, expr: ast.CallExpr) -> ssa.Value:
        args = expr.args
        if name == "make":
            ty = self._type(args[0])
            if isinstance(ty.underlying(), Slice):
                n = self._coerce(self.expr(args[1]), INT)
                cap = self._coerce(self.expr(args[2]), INT) if len(args) > 2 else None
                return self._emit(ssa.MakeSlice(type=ty, len=n, cap=cap, pos=expr.pos))
            return self._emit(ssa.MakeMap(type=ty, pos=expr.pos))
        if name == "new":
            return self._emit(ssa.Alloc(type=Pointer(self._type(args[0])), heap=True, comment="new", pos=expr.pos))
        if name == "append":
            st = self._type(args[0])
            s = self.expr(args[0])
            elem = st.underlying().elem
            rest = [self._coerce(self.expr(arg), elem) for arg in args[1:]]
            return self._emit(ssa.Call(callee=self.b.builtin(name), args=[s] + rest, type=st, pos=expr.pos))
        if name == "panic":
            value = self._coerce(self.expr(args[0]), EMPTY_INTERFACE)
            self._emit(ssa.Panic(x=value, pos=expr.pos))
            self._unreachable()
            return ssa.Const(None)
        if name == "delete":
            mt = self._type(args[0]).underlying()
            m = self.expr(args[0])
            key = self._coerce(self.expr(args[1]), mt.key)
            return self._emit(ssa.Call(callee=self.b.builtin(name), args=[m, key], type=INVALID, pos=expr.pos))
        result = INT if name in {"len", "cap", "copy"} else INVALID
        values = [self.expr(arg) for arg in args]
        return self._emit(ssa.Call(callee=self.b.builtin(name), args=values, type=result, pos=expr.pos))

    def _convert(self, value: ssa.Value, target: Type, pos: Pos) -> ssa.Value:
        if isinstance(value, ssa.Const) and not isinstance(target.underlying(), Interface):
            return ssa.Const(value.value, target)
        return self._emit(ssa.Convert(x=value, type=target, pos=pos))

    def _coerce(self, value: ssa.Value, target: Optional[Type]) -> ssa.Value:
        """Give `value` the type of the location it is assigned to."""
        if target is None or target == INVALID:
            return value
        if isinstance(target.underlying(), Interface):
            if isinstance(value.type.underlying(), Interface):
                return value
            if isinstance(value, ssa.Const) and value.value is None:
                return ssa.Const(None, target)
            return self._emit(ssa.Convert(x=value, type=target))
        if isinstance(value, ssa.Const) and value.type != target:
            return ssa.Const(value.value, target)
        return value


# --- helpers -----------------------------------------------------------


def _zero_const(ty: Type) -> ssa.Const:
    if is_integer(ty):
        return ssa.Const(0, ty)
    if is_string(ty):
        return ssa.Const("", ty)
    if is_boolean(ty):
        return ssa.Const(False, ty)
    return ssa.Const(None, ty)


def _remove_unreachable(fn: ssa.Function) -> None:
    if not fn.blocks:
        return
    reachable: Set[ssa.BasicBlock] = set()
    stack = [fn.blocks[0]]
    while stack:
        block = stack.pop()
        if block in reachable:
            continue
        reachable.add(block)
        stack.extend(block.succs)
    for block in fn.blocks:
        if block in reachable:
            continue
        for succ in block.succs:
            if succ not in reachable:
                continue
            idx = succ.preds.index(block)
            del succ.preds[idx]
            for phi in succ.phis():
                del phi.edges[idx]
    fn.blocks = [b for b in fn.blocks if b in reachable]
    for idx, block in enumerate(fn.blocks):
        block.index = idx


def _number_registers(fn: ssa.Function) -> None:
    n = 0
    for instr in fn.instructions():
        if isinstance(instr, ssa.ValueInstruction):
            instr.name = f"t{n}"
            n += 1


def _unparen(expr: ast.Expr) -> ast.Expr:
    while isinstance(expr, ast.ParenExpr):
        expr = expr.x
    return expr


def _parse_int(text: str) -> int:
    text = text.replace("_", "")
    if text[:2] in ("0x", "0X"):
        return int(text, 16)
    if len(text) > 1 and text.startswith("0"):
        return int(text, 8)
    return int(text)


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "a": "\a", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}
_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}|[0-7]{3}|.)")


def _unquote(text: str) -> str:
    if text.startswith("`"):
        return text[1:-1]

    def replace(match: "re.Match[str]") -> str:
        esc = match.group(1)
        if esc[0] in "xuU" and len(esc) > 1:
            return chr(int(esc[1:], 16))
        if len(esc) == 3 and esc.isdigit():
            return chr(int(esc, 8))
        return _ESCAPES.get(esc, esc)

    return _ESCAPE_RE.sub(replace, text[1:-1])


__all__ = ["Builder", "FunctionBuilder", "LoweringError"]
