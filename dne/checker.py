from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from . import ast
from .diagnostics import AnalysisError
from .types import (
    BOOL,
    BYTE,
    EMPTY_INTERFACE,
    INT,
    INVALID,
    STRING,
    UNTYPED_BOOL,
    UNTYPED_INT,
    UNTYPED_NIL,
    UNTYPED_RUNE,
    UNTYPED_STRING,
    Builtin,
    Const,
    Func,
    Info,
    Map,
    Named,
    Nil,
    Object,
    PkgName,
    Pointer,
    Scope,
    Selection,
    Signature,
    Slice,
    Struct,
    StructField,
    Type,
    TypeAndValue,
    TypeName,
    TypesPackage,
    Var,
    assignable,
    convertible,
    default_type,
    identical,
    is_boolean,
    is_integer,
    is_string,
    is_untyped,
)


class CheckError(AnalysisError):
    """A type error in one module; `pos` points at the offending syntax."""

    phase = "typecheck"


ImportFunc = Callable[[str], TypesPackage]

_NOVALUE = TypeAndValue("novalue", INVALID)
_BUILTIN = TypeAndValue("builtin", INVALID)

# Builtins that may stand alone as expression statements.
_STATEMENT_BUILTINS = frozenset({"copy", "delete", "panic", "print", "println"})
_ARITH_OPS = frozenset({"+", "-", "*", "/", "%", "&", "|", "^"})
_COMPARE_OPS = frozenset({"==", "!=", "<", "<=", ">", ">="})
_ORDER_OPS = frozenset({"<", "<=", ">", ">="})


@dataclass
class FunctionContext:
    name: str
    signature: Signature


@dataclass
class _GlobalDecl:
    decl: ast.VarDecl
    scope: Scope
    state: str = "pending"  # pending | checking | done


class Checker:
    """Type-checks one module against already-checked imports."""

    def __init__(self, importer: ImportFunc) -> None:
        self.importer = importer
        self.pkg: Optional[TypesPackage] = None
        self.info = Info()
        self._globals: Dict[Var, _GlobalDecl] = {}
        self._named: Dict[TypeName, Tuple[ast.TypeDecl, Scope]] = {}
        self._named_state: Dict[TypeName, str] = {}

    def check(self, path: str, files: List[ast.File], info: Optional[Info] = None) -> Tuple[TypesPackage, Info]:
        if info is not None:
            self.info = info
        if not files:
            raise CheckError(f"no files for module {path}")
        pkg = TypesPackage(path=path, name=files[0].package.name)
        self.pkg = pkg
        file_scopes = [self._collect_imports(f) for f in files]
        funcs: List[Tuple[ast.FuncDecl, Scope]] = []
        var_decls: List[_GlobalDecl] = []
        for f, file_scope in zip(files, file_scopes):
            for decl in f.decls:
                if isinstance(decl, ast.FuncDecl):
                    self._declare_func(decl)
                    funcs.append((decl, file_scope))
                elif isinstance(decl, ast.TypeDecl):
                    tn = TypeName(name=decl.name.name, pos=decl.name.pos, pkg=pkg, decl=decl)
                    tn.type = Named(obj=tn)
                    self._declare(pkg.scope, decl.name, tn)
                    self._named[tn] = (decl, file_scope)
                elif isinstance(decl, ast.VarDecl):
                    entry = _GlobalDecl(decl=decl, scope=file_scope)
                    var_decls.append(entry)
                    for ident in decl.names:
                        if ident.name == "_":
                            self.info.defs[ident] = None
                            continue
                        var = Var(name=ident.name, pos=ident.pos, pkg=pkg, is_global=True, decl=decl)
                        self._declare(pkg.scope, ident, var)
                        self._globals[var] = entry
        for tn in self._named:
            self._resolve_named(tn)
        for decl, file_scope in funcs:
            obj = self.info.defs[decl.name]
            obj.type = self._signature(decl.type, file_scope)
            name = decl.name.name
            if name == "init" or (name == "main" and pkg.name == "main"):
                if obj.type.params or obj.type.result is not None:
                    raise CheckError(
                        f"func {decl.name.name} must have no arguments and no return values", pos=decl.name.pos
                    )
        for entry in var_decls:
            self._check_global_decl(entry)
        for decl, file_scope in funcs:
            self._check_func_body(decl, file_scope)
        for f, file_scope in zip(files, file_scopes):
            for obj in file_scope.objects.values():
                if isinstance(obj, PkgName) and not obj.used:
                    raise CheckError(f'"{obj.imported.path}" imported and not used', pos=obj.spec.pos)
        pkg.complete = True
        return pkg, self.info

    # --- declarations ---------------------------------------------------

    def _collect_imports(self, f: ast.File) -> Scope:
        scope = Scope(self.pkg.scope, kind="file")
        for spec in f.imports:
            try:
                imported = self.importer(spec.path)
            except CheckError as exc:
                raise CheckError(f"could not import {spec.path} ({exc.message})", pos=spec.pos) from exc
            if imported not in self.pkg.imports:
                self.pkg.imports.append(imported)
            name = spec.name.name if spec.name is not None else imported.name
            if name == "_":
                continue
            pkg_name = PkgName(name=name, pos=spec.pos, pkg=self.pkg, imported=imported, spec=spec)
            if spec.name is not None:
                self.info.defs[spec.name] = pkg_name
            if scope.insert(pkg_name) is not None:
                raise CheckError(f"{name} redeclared in this block", pos=spec.pos)
        return scope

    def _declare(self, scope: Scope, ident: ast.Ident, obj: Object) -> None:
        if ident.name == "_":
            self.info.defs[ident] = None
            return
        if scope.insert(obj) is not None:
            raise CheckError(f"{ident.name} redeclared in this block", pos=ident.pos)
        self.info.defs[ident] = obj

    def _declare_func(self, decl: ast.FuncDecl) -> None:
        fn = Func(name=decl.name.name, pos=decl.name.pos, pkg=self.pkg, decl=decl)
        if decl.name.name == "init":
            # init functions are never referenced by name.
            self.info.defs[decl.name] = fn
            return
        self._declare(self.pkg.scope, decl.name, fn)

    def _resolve_named(self, tn: TypeName) -> Type:
        named = tn.type
        state = self._named_state.get(tn)
        if state == "done":
            return named
        if state == "resolving":
            raise CheckError(f"invalid recursive type {tn.name}", pos=tn.pos)
        self._named_state[tn] = "resolving"
        decl, scope = self._named[tn]
        under = self._type_expr(decl.type, scope)
        if isinstance(under, Named):
            if under.obj in self._named:
                self._resolve_named(under.obj)
            under = under.underlying()
        named.under = under
        self._named_state[tn] = "done"
        return named

    def _check_global_decl(self, entry: _GlobalDecl) -> None:
        if entry.state == "done":
            return
        if entry.state == "checking":
            name = entry.decl.names[0].name
            raise CheckError(f"initialization cycle or invalid reference to {name}", pos=entry.decl.pos)
        entry.state = "checking"
        ctx = FunctionContext(name="<init>", signature=Signature())
        types = self._var_types(entry.decl, entry.scope, ctx)
        for ident, ty in zip(entry.decl.names, types):
            obj = self.info.defs.get(ident)
            if obj is not None:
                obj.type = ty
        entry.state = "done"
        self.info.init_order.append(entry.decl)

    def _var_types(self, decl: ast.VarDecl, scope: Scope, ctx: FunctionContext) -> List[Type]:
        declared = self._type_expr(decl.type, scope) if decl.type is not None else None
        if decl.values and len(decl.values) != len(decl.names):
            raise CheckError(
                f"assignment mismatch: {len(decl.names)} variables but {len(decl.values)} values", pos=decl.pos
            )
        if not decl.values:
            if declared is None:
                raise CheckError("missing type or initializer", pos=decl.pos)
            return [declared for _ in decl.names]
        types: List[Type] = []
        for value in decl.values:
            vt = self._value(value, scope, ctx)
            if declared is not None:
                self._expect_assignable(vt, declared, value, "variable declaration")
                types.append(declared)
            else:
                if vt == UNTYPED_NIL:
                    raise CheckError("use of untyped nil in variable declaration", pos=value.pos)
                types.append(default_type(vt))
        return types

    def _signature(self, ftype: ast.FuncType, scope: Scope) -> Signature:
        params: List[Type] = []
        for param in ftype.params:
            ty = self._type_expr(param.type, scope)
            params.extend([ty] * max(1, len(param.names)))
        result = self._type_expr(ftype.result, scope) if ftype.result is not None else None
        sig = Signature(params=tuple(params), result=result)
        self.info.types[ftype] = TypeAndValue("type", sig)
        return sig

    def _check_func_body(self, decl: ast.FuncDecl, file_scope: Scope) -> None:
        obj = self.info.defs[decl.name]
        scope = Scope(file_scope, kind="function")
        self._declare_params(decl.type, scope)
        ctx = FunctionContext(name=decl.name.name, signature=obj.type)
        self._check_stmts(decl.body.stmts, scope, ctx, in_loop=False)

    def _declare_params(self, ftype: ast.FuncType, scope: Scope) -> None:
        for param in ftype.params:
            ty = self.info.types[param.type].type
            for ident in param.names:
                self._declare(scope, ident, Var(name=ident.name, pos=ident.pos, type=ty, pkg=self.pkg))

    # --- types ----------------------------------------------------------

    def _type_expr(self, expr: ast.Expr, scope: Scope) -> Type:
        ty = self._type_expr_inner(expr, scope)
        self.info.types[expr] = TypeAndValue("type", ty)
        return ty

    def _type_expr_inner(self, expr: ast.Expr, scope: Scope) -> Type:
        if isinstance(expr, ast.Ident):
            obj = self._lookup(expr, scope)
            if not isinstance(obj, TypeName):
                raise CheckError(f"{expr.name} is not a type", pos=expr.pos)
            return obj.type
        if isinstance(expr, ast.SelectorExpr):
            obj = self._qualified(expr, scope)
            if obj is None or not isinstance(obj, TypeName):
                raise CheckError(f"{_render(expr)} is not a type", pos=expr.pos)
            return obj.type
        if isinstance(expr, ast.ParenExpr):
            return self._type_expr(expr.x, scope)
        if isinstance(expr, ast.ArrayType):
            return Slice(self._type_expr(expr.elt, scope))
        if isinstance(expr, ast.StarExpr):
            return Pointer(self._type_expr(expr.x, scope))
        if isinstance(expr, ast.MapType):
            key = self._type_expr(expr.key, scope)
            if isinstance(key.underlying(), (Slice, Map, Signature)):
                raise CheckError(f"invalid map key type {key}", pos=expr.key.pos)
            return Map(key, self._type_expr(expr.value, scope))
        if isinstance(expr, ast.StructType):
            fields: List[StructField] = []
            seen: Set[str] = set()
            for f in expr.fields:
                ty = self._type_expr(f.type, scope)
                for ident in f.names:
                    if ident.name in seen:
                        raise CheckError(f"{ident.name} redeclared", pos=ident.pos)
                    seen.add(ident.name)
                    fields.append(StructField(ident.name, ty))
            return Struct(tuple(fields))
        if isinstance(expr, ast.InterfaceType):
            return EMPTY_INTERFACE
        if isinstance(expr, ast.FuncType):
            return self._signature(expr, scope)
        raise CheckError(f"{_render(expr)} is not a type", pos=expr.pos)

    # --- statements -----------------------------------------------------

    def _check_stmts(self, stmts: List[ast.Stmt], scope: Scope, ctx: FunctionContext, in_loop: bool) -> None:
        for stmt in stmts:
            self._check_stmt(stmt, scope, ctx, in_loop)

    def _check_stmt(self, stmt: ast.Stmt, scope: Scope, ctx: FunctionContext, in_loop: bool = False) -> None:
        if isinstance(stmt, ast.ExprStmt):
            self._check_expr_stmt(stmt, scope, ctx)
            return
        if isinstance(stmt, ast.AssignStmt):
            if stmt.tok == ":=":
                self._check_define(stmt, scope, ctx)
            elif stmt.tok == "=":
                self._check_assign(stmt, scope, ctx)
            else:
                self._check_op_assign(stmt, scope, ctx)
            return
        if isinstance(stmt, ast.IncDecStmt):
            tv = self._expr(stmt.x, scope, ctx)
            self._expect_assignable_target(tv, stmt.x)
            if not is_integer(tv.type):
                raise CheckError(f"invalid operation: {_render(stmt.x)}{stmt.tok} (non-numeric type {tv.type})", pos=stmt.pos)
            return
        if isinstance(stmt, ast.DeclStmt):
            types = self._var_types(stmt.decl, scope, ctx)
            for ident, ty in zip(stmt.decl.names, types):
                self._declare(scope, ident, Var(name=ident.name, pos=ident.pos, type=ty, pkg=self.pkg, decl=stmt.decl))
            return
        if isinstance(stmt, ast.ReturnStmt):
            result = ctx.signature.result
            if stmt.result is None:
                if result is not None:
                    raise CheckError("not enough return values", pos=stmt.pos)
                return
            if result is None:
                raise CheckError("too many return values", pos=stmt.result.pos)
            vt = self._value(stmt.result, scope, ctx)
            self._expect_assignable(vt, result, stmt.result, "return statement")
            return
        if isinstance(stmt, ast.BlockStmt):
            self._check_stmts(stmt.stmts, Scope(scope), ctx, in_loop)
            return
        if isinstance(stmt, ast.IfStmt):
            inner = Scope(scope)
            if stmt.init is not None:
                self._check_stmt(stmt.init, inner, ctx, in_loop)
            self._expect_condition(stmt.cond, inner, ctx, "if")
            self._check_stmts(stmt.body.stmts, Scope(inner), ctx, in_loop)
            if stmt.else_ is not None:
                self._check_stmt(stmt.else_, inner, ctx, in_loop)
            return
        if isinstance(stmt, ast.ForStmt):
            inner = Scope(scope)
            if stmt.init is not None:
                self._check_stmt(stmt.init, inner, ctx, in_loop)
            if stmt.cond is not None:
                self._expect_condition(stmt.cond, inner, ctx, "for")
            if stmt.post is not None:
                if isinstance(stmt.post, ast.AssignStmt) and stmt.post.tok == ":=":
                    raise CheckError("cannot declare in post statement of for loop", pos=stmt.post.pos)
                self._check_stmt(stmt.post, inner, ctx, in_loop)
            self._check_stmts(stmt.body.stmts, Scope(inner), ctx, in_loop=True)
            return
        if isinstance(stmt, ast.RangeStmt):
            self._check_range(stmt, scope, ctx)
            return
        if isinstance(stmt, ast.BranchStmt):
            if not in_loop:
                raise CheckError(f"{stmt.tok} is not in a loop", pos=stmt.pos)
            return
        raise CheckError(f"unsupported statement {type(stmt).__name__}", pos=stmt.pos)

    def _check_expr_stmt(self, stmt: ast.ExprStmt, scope: Scope, ctx: FunctionContext) -> None:
        expr = _unparen(stmt.x)
        tv = self._expr(stmt.x, scope, ctx)
        if isinstance(expr, ast.CallExpr):
            fun_tv = self.info.types.get(expr.fun)
            if fun_tv is None or not fun_tv.is_type():
                builtin = self._builtin_name(expr.fun, scope)
                if builtin is None or builtin in _STATEMENT_BUILTINS:
                    return
        raise CheckError(f"{_render(stmt.x)} (value of type {tv.type}) is not used", pos=stmt.pos)

    def _check_define(self, stmt: ast.AssignStmt, scope: Scope, ctx: FunctionContext) -> None:
        if len(stmt.lhs) != len(stmt.rhs):
            raise CheckError(
                f"assignment mismatch: {len(stmt.lhs)} variables but {len(stmt.rhs)} values", pos=stmt.pos
            )
        rhs_types = [self._value(value, scope, ctx) for value in stmt.rhs]
        new_vars: List[Tuple[ast.Ident, Var]] = []
        for target, vt, value in zip(stmt.lhs, rhs_types, stmt.rhs):
            if not isinstance(target, ast.Ident):
                raise CheckError(f"non-name {_render(target)} on left side of :=", pos=target.pos)
            if target.name == "_":
                self.info.defs[target] = None
                continue
            existing = scope.lookup_local(target.name)
            if isinstance(existing, Var):
                self.info.uses[target] = existing
                self._expect_assignable(vt, existing.type, value, "assignment")
                continue
            if vt == UNTYPED_NIL:
                raise CheckError("use of untyped nil in assignment", pos=value.pos)
            new_vars.append((target, Var(name=target.name, pos=target.pos, type=default_type(vt), pkg=self.pkg)))
        if not new_vars:
            raise CheckError("no new variables on left side of :=", pos=stmt.pos)
        for ident, var in new_vars:
            self._declare(scope, ident, var)

    def _check_assign(self, stmt: ast.AssignStmt, scope: Scope, ctx: FunctionContext) -> None:
        if len(stmt.lhs) != len(stmt.rhs):
            raise CheckError(
                f"assignment mismatch: {len(stmt.lhs)} variables but {len(stmt.rhs)} values", pos=stmt.pos
            )
        for target, value in zip(stmt.lhs, stmt.rhs):
            if isinstance(target, ast.Ident) and target.name == "_":
                self.info.defs[target] = None
                vt = self._value(value, scope, ctx)
                if vt == UNTYPED_NIL:
                    raise CheckError("use of untyped nil in assignment", pos=value.pos)
                continue
            tv = self._expr(target, scope, ctx)
            self._expect_assignable_target(tv, target)
            vt = self._value(value, scope, ctx)
            self._expect_assignable(vt, tv.type, value, "assignment")

    def _check_op_assign(self, stmt: ast.AssignStmt, scope: Scope, ctx: FunctionContext) -> None:
        target, value = stmt.lhs[0], stmt.rhs[0]
        tv = self._expr(target, scope, ctx)
        self._expect_assignable_target(tv, target)
        vt = self._value(value, scope, ctx)
        self._binary_type(stmt.tok[:-1], tv.type, vt, stmt)

    def _check_range(self, stmt: ast.RangeStmt, scope: Scope, ctx: FunctionContext) -> None:
        xt = self._value(stmt.x, scope, ctx)
        under = xt.underlying()
        if isinstance(under, Slice):
            key_t, value_t = INT, under.elem
        elif is_string(under):
            key_t, value_t = INT, INT
        elif isinstance(under, Map):
            key_t, value_t = under.key, under.value
        elif is_integer(under):
            key_t, value_t = default_type(under), None
        else:
            raise CheckError(f"cannot range over {_render(stmt.x)} (variable of type {xt})", pos=stmt.x.pos)
        inner = Scope(scope)
        pairs = [(stmt.key, key_t), (stmt.value, value_t)]
        for target, ty in pairs:
            if target is None:
                continue
            if ty is None:
                raise CheckError(f"range over {_render(stmt.x)} permits only one iteration variable", pos=target.pos)
            if stmt.tok == ":=":
                if not isinstance(target, ast.Ident):
                    raise CheckError(f"non-name {_render(target)} on left side of :=", pos=target.pos)
                self._declare(inner, target, Var(name=target.name, pos=target.pos, type=ty, pkg=self.pkg))
            else:
                if isinstance(target, ast.Ident) and target.name == "_":
                    self.info.defs[target] = None
                    continue
                tv = self._expr(target, scope, ctx)
                self._expect_assignable_target(tv, target)
                self._expect_assignable(ty, tv.type, target, "range")
        self._check_stmts(stmt.body.stmts, Scope(inner), ctx, in_loop=True)

    def _expect_condition(self, cond: ast.Expr, scope: Scope, ctx: FunctionContext, kind: str) -> None:
        ct = self._value(cond, scope, ctx)
        if not is_boolean(ct):
            raise CheckError(f"non-boolean condition in {kind} statement", pos=cond.pos)

    def _expect_assignable_target(self, tv: TypeAndValue, target: ast.Expr) -> None:
        if tv.mode not in {"variable", "mapindex"}:
            raise CheckError(f"cannot assign to {_render(target)}", pos=target.pos)

    def _expect_assignable(self, value: Type, target: Type, node: ast.Expr, context: str) -> None:
        if not assignable(value, target):
            raise CheckError(
                f"cannot use {_render(node)} (value of type {value}) as {target} value in {context}", pos=node.pos
            )

    # --- expressions ----------------------------------------------------

    def _value(self, expr: ast.Expr, scope: Scope, ctx: FunctionContext) -> Type:
        tv = self._expr(expr, scope, ctx)
        if tv.is_type():
            raise CheckError(f"{_render(expr)} (type) is not an expression", pos=expr.pos)
        if tv.mode == "builtin":
            raise CheckError(f"{_render(expr)} (built-in) must be called", pos=expr.pos)
        if tv.mode == "novalue":
            raise CheckError(f"{_render(expr)} (no value) used as value", pos=expr.pos)
        return tv.type

    def _expr(self, expr: ast.Expr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        tv = self._expr_inner(expr, scope, ctx)
        self.info.types[expr] = tv
        return tv

    def _expr_inner(self, expr: ast.Expr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        if isinstance(expr, ast.Ident):
            return self._ident(expr, scope)
        if isinstance(expr, ast.BasicLit):
            lit_types = {"INT": UNTYPED_INT, "CHAR": UNTYPED_RUNE, "STRING": UNTYPED_STRING}
            return TypeAndValue("value", lit_types[expr.kind])
        if isinstance(expr, ast.ParenExpr):
            return self._expr(expr.x, scope, ctx)
        if isinstance(expr, ast.FuncLit):
            sig = self._signature(expr.type, scope)
            inner = Scope(scope, kind="function")
            self._declare_params(expr.type, inner)
            self._check_stmts(expr.body.stmts, inner, FunctionContext(name=f"{ctx.name}$lit", signature=sig), in_loop=False)
            return TypeAndValue("value", sig)
        if isinstance(expr, ast.CompositeLit):
            return self._composite_lit(expr, scope, ctx)
        if isinstance(expr, ast.SelectorExpr):
            return self._selector(expr, scope, ctx)
        if isinstance(expr, ast.IndexExpr):
            return self._index(expr, scope, ctx)
        if isinstance(expr, ast.SliceExpr):
            return self._slice_expr(expr, scope, ctx)
        if isinstance(expr, ast.CallExpr):
            return self._call(expr, scope, ctx)
        if isinstance(expr, ast.StarExpr):
            tv = self._expr(expr.x, scope, ctx)
            if tv.is_type():
                return TypeAndValue("type", Pointer(tv.type))
            under = tv.type.underlying()
            if not isinstance(under, Pointer):
                raise CheckError(f"invalid operation: cannot indirect {_render(expr.x)}", pos=expr.pos)
            return TypeAndValue("variable", under.elem)
        if isinstance(expr, ast.UnaryExpr):
            return self._unary(expr, scope, ctx)
        if isinstance(expr, ast.BinaryExpr):
            xt = self._value(expr.x, scope, ctx)
            yt = self._value(expr.y, scope, ctx)
            return TypeAndValue("value", self._binary_type(expr.op, xt, yt, expr))
        if isinstance(expr, (ast.ArrayType, ast.MapType, ast.StructType, ast.InterfaceType, ast.FuncType)):
            return TypeAndValue("type", self._type_expr_inner(expr, scope))
        if isinstance(expr, ast.KeyValueExpr):
            raise CheckError("unexpected key:value expression", pos=expr.pos)
        raise CheckError(f"unsupported expression {type(expr).__name__}", pos=expr.pos)

    def _lookup(self, ident: ast.Ident, scope: Scope) -> Object:
        if ident.name == "_":
            raise CheckError("cannot use _ as value", pos=ident.pos)
        obj = scope.lookup(ident.name)
        if obj is None:
            raise CheckError(f"undefined: {ident.name}", pos=ident.pos)
        self.info.uses[ident] = obj
        if isinstance(obj, PkgName):
            obj.used = True
        return obj

    def _ident(self, ident: ast.Ident, scope: Scope) -> TypeAndValue:
        obj = self._lookup(ident, scope)
        return self._object_tv(obj, ident)

    def _object_tv(self, obj: Object, ident: ast.Ident) -> TypeAndValue:
        if isinstance(obj, Var):
            if obj.type is None:
                self._check_global_decl(self._globals[obj])
            return TypeAndValue("variable", obj.type)
        if isinstance(obj, (Const, Nil)):
            return TypeAndValue("value", obj.type)
        if isinstance(obj, TypeName):
            if isinstance(obj.type, Named) and obj in self._named:
                self._resolve_named(obj)
            return TypeAndValue("type", obj.type)
        if isinstance(obj, Func):
            return TypeAndValue("value", obj.type)
        if isinstance(obj, Builtin):
            return _BUILTIN
        if isinstance(obj, PkgName):
            raise CheckError(f"use of package {obj.name} without selector", pos=ident.pos)
        raise CheckError(f"unexpected object {obj.name}", pos=ident.pos)

    def _qualified(self, expr: ast.SelectorExpr, scope: Scope) -> Optional[Object]:
        """Resolve `pkg.Name`; None when `expr.x` does not name an imported package."""
        if not isinstance(expr.x, ast.Ident):
            return None
        pkg_name = scope.lookup(expr.x.name)
        if not isinstance(pkg_name, PkgName):
            return None
        pkg_name.used = True
        self.info.uses[expr.x] = pkg_name
        member = pkg_name.imported.lookup(expr.sel.name)
        if member is None:
            raise CheckError(f"undefined: {expr.x.name}.{expr.sel.name}", pos=expr.sel.pos)
        if not member.exported():
            raise CheckError(f"name {expr.sel.name} not exported by package {pkg_name.imported.name}", pos=expr.sel.pos)
        self.info.uses[expr.sel] = member
        return member

    def _selector(self, expr: ast.SelectorExpr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        member = self._qualified(expr, scope)
        if member is not None:
            tv = self._object_tv(member, expr.sel)
            self.info.types[expr.sel] = tv
            return tv
        tv = self._expr(expr.x, scope, ctx)
        if not tv.is_value():
            raise CheckError(f"{_render(expr)} undefined", pos=expr.sel.pos)
        under = tv.type.underlying()
        indirect = False
        if isinstance(under, Pointer) and isinstance(under.elem.underlying(), Struct):
            indirect = True
            under = under.elem.underlying()
        if isinstance(under, Struct):
            idx = under.field_index(expr.sel.name)
            if idx >= 0:
                f = under.fields[idx]
                self.info.selections[expr] = Selection(index=idx, field=f, indirect=indirect)
                mode = "variable" if indirect or tv.addressable() else "value"
                return TypeAndValue(mode, f.type)
        raise CheckError(
            f"{_render(expr)} undefined (type {tv.type} has no field or method {expr.sel.name})", pos=expr.sel.pos
        )

    def _index(self, expr: ast.IndexExpr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        xt = self._value(expr.x, scope, ctx)
        under = xt.underlying()
        if isinstance(under, Map):
            kt = self._value(expr.index, scope, ctx)
            self._expect_assignable(kt, under.key, expr.index, "map index")
            return TypeAndValue("mapindex", under.value)
        self._expect_index(expr.index, scope, ctx)
        if isinstance(under, Slice):
            return TypeAndValue("variable", under.elem)
        if is_string(under):
            return TypeAndValue("value", BYTE)
        raise CheckError(f"invalid operation: cannot index {_render(expr.x)} (variable of type {xt})", pos=expr.pos)

    def _expect_index(self, index: ast.Expr, scope: Scope, ctx: FunctionContext) -> None:
        it = self._value(index, scope, ctx)
        if not is_integer(it):
            raise CheckError(f"invalid argument: index {_render(index)} must be integer", pos=index.pos)

    def _slice_expr(self, expr: ast.SliceExpr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        xt = self._value(expr.x, scope, ctx)
        for bound in (expr.low, expr.high):
            if bound is not None:
                self._expect_index(bound, scope, ctx)
        under = xt.underlying()
        if isinstance(under, Slice):
            return TypeAndValue("value", xt)
        if is_string(under):
            return TypeAndValue("value", STRING if is_untyped(xt) else xt)
        raise CheckError(f"cannot slice {_render(expr.x)} (variable of type {xt})", pos=expr.pos)

    def _composite_lit(self, expr: ast.CompositeLit, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        ty = self._type_expr(expr.type, scope)
        under = ty.underlying()
        if isinstance(under, Slice):
            for elt in expr.elts:
                if isinstance(elt, ast.KeyValueExpr):
                    raise CheckError("indexed slice literals are not supported", pos=elt.pos)
                self._expect_assignable(self._value(elt, scope, ctx), under.elem, elt, "slice literal")
        elif isinstance(under, Map):
            for elt in expr.elts:
                if not isinstance(elt, ast.KeyValueExpr):
                    raise CheckError("missing key in map literal", pos=elt.pos)
                self._expect_assignable(self._value(elt.key, scope, ctx), under.key, elt.key, "map literal")
                self._expect_assignable(self._value(elt.value, scope, ctx), under.value, elt.value, "map literal")
        else:
            raise CheckError(f"invalid composite literal type {ty}", pos=expr.pos)
        return TypeAndValue("value", ty)

    def _unary(self, expr: ast.UnaryExpr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        if expr.op == "&":
            operand = _unparen(expr.x)
            tv = self._expr(expr.x, scope, ctx)
            if not (tv.addressable() or isinstance(operand, ast.CompositeLit)):
                raise CheckError(f"invalid operation: cannot take address of {_render(expr.x)}", pos=expr.pos)
            return TypeAndValue("value", Pointer(tv.type))
        xt = self._value(expr.x, scope, ctx)
        if expr.op == "-" and not is_integer(xt):
            raise CheckError(f"invalid operation: operator - not defined on {_render(expr.x)}", pos=expr.pos)
        if expr.op == "!" and not is_boolean(xt):
            raise CheckError(f"invalid operation: operator ! not defined on {_render(expr.x)}", pos=expr.pos)
        return TypeAndValue("value", xt)

    def _binary_type(self, op: str, xt: Type, yt: Type, node: ast.Node) -> Type:
        if op in {"&&", "||"}:
            if not (is_boolean(xt) and is_boolean(yt)):
                raise CheckError(f"invalid operation: operator {op} not defined on non-boolean operands", pos=node.pos)
            return UNTYPED_BOOL if is_untyped(xt) and is_untyped(yt) else BOOL
        if op in {"<<", ">>"}:
            if not (is_integer(xt) and is_integer(yt)):
                raise CheckError(f"invalid operation: shift of non-integer operands", pos=node.pos)
            return xt
        if op in _COMPARE_OPS:
            if not (assignable(xt, yt) or assignable(yt, xt)):
                raise CheckError(f"invalid operation: mismatched types {xt} and {yt}", pos=node.pos)
            for side, other in ((xt, yt), (yt, xt)):
                if isinstance(side.underlying(), (Slice, Map, Signature)) and other != UNTYPED_NIL:
                    raise CheckError(
                        f"invalid operation: {side} can only be compared to nil", pos=node.pos
                    )
            if op in _ORDER_OPS and not (is_integer(xt) or is_string(xt)):
                raise CheckError(f"invalid operation: operator {op} not defined on {xt}", pos=node.pos)
            return UNTYPED_BOOL
        if op not in _ARITH_OPS:
            raise CheckError(f"unknown operator {op}", pos=node.pos)
        result = self._unify(xt, yt, node)
        if op == "+" and is_string(result):
            return result
        if not is_integer(result):
            raise CheckError(f"invalid operation: operator {op} not defined on {result}", pos=node.pos)
        return result

    def _unify(self, xt: Type, yt: Type, node: ast.Node) -> Type:
        if is_untyped(xt) and is_untyped(yt):
            if UNTYPED_RUNE in (xt, yt) and is_integer(xt) and is_integer(yt):
                return UNTYPED_RUNE
            if xt == yt:
                return xt
        elif is_untyped(xt):
            if assignable(xt, yt):
                return yt
        elif is_untyped(yt):
            if assignable(yt, xt):
                return xt
        elif identical(xt, yt):
            return xt
        raise CheckError(f"invalid operation: mismatched types {xt} and {yt}", pos=node.pos)

    def _call(self, expr: ast.CallExpr, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        ftv = self._expr(expr.fun, scope, ctx)
        if ftv.is_type():
            if len(expr.args) != 1:
                raise CheckError(f"wrong argument count in conversion to {ftv.type}", pos=expr.pos)
            vt = self._value(expr.args[0], scope, ctx)
            if not convertible(vt, ftv.type):
                raise CheckError(f"cannot convert {_render(expr.args[0])} (value of type {vt}) to type {ftv.type}", pos=expr.pos)
            return TypeAndValue("value", ftv.type)
        if ftv.mode == "builtin":
            return self._builtin(expr, self._builtin_name(expr.fun, scope), scope, ctx)
        sig = ftv.type.underlying()
        if not isinstance(sig, Signature):
            raise CheckError(f"invalid operation: cannot call non-function {_render(expr.fun)}", pos=expr.pos)
        if len(expr.args) < len(sig.params):
            raise CheckError(f"not enough arguments in call to {_render(expr.fun)}", pos=expr.pos)
        if len(expr.args) > len(sig.params):
            raise CheckError(f"too many arguments in call to {_render(expr.fun)}", pos=expr.pos)
        for arg, param in zip(expr.args, sig.params):
            self._expect_assignable(self._value(arg, scope, ctx), param, arg, "argument")
        if sig.result is None:
            return _NOVALUE
        return TypeAndValue("value", sig.result)

    def _builtin_name(self, fun: ast.Expr, scope: Scope) -> Optional[str]:
        fun = _unparen(fun)
        if isinstance(fun, ast.Ident):
            obj = self.info.uses.get(fun)
            if isinstance(obj, Builtin):
                return obj.name
        return None

    def _builtin(self, expr: ast.CallExpr, name: str, scope: Scope, ctx: FunctionContext) -> TypeAndValue:
        args = expr.args

        def arity(lo: int, hi: int) -> None:
            if len(args) < lo:
                raise CheckError(f"not enough arguments for {name}", pos=expr.pos)
            if len(args) > hi:
                raise CheckError(f"too many arguments for {name}", pos=expr.pos)

        if name in {"len", "cap"}:
            arity(1, 1)
            xt = self._value(args[0], scope, ctx).underlying()
            if not (isinstance(xt, Slice) or (name == "len" and (is_string(xt) or isinstance(xt, Map)))):
                raise CheckError(f"invalid argument: {_render(args[0])} for built-in {name}", pos=args[0].pos)
            return TypeAndValue("value", INT)
        if name == "make":
            arity(1, 3)
            ty = self._type_expr(args[0], scope)
            under = ty.underlying()
            limit = 3 if isinstance(under, Slice) else 2 if isinstance(under, Map) else 0
            if limit == 0:
                raise CheckError(f"invalid argument: cannot make {ty}", pos=args[0].pos)
            if isinstance(under, Slice) and len(args) < 2:
                raise CheckError(f"invalid operation: {_render(expr)} expects 2 or 3 arguments", pos=expr.pos)
            arity(1, limit)
            for size in args[1:]:
                self._expect_index(size, scope, ctx)
            return TypeAndValue("value", ty)
        if name == "new":
            arity(1, 1)
            return TypeAndValue("value", Pointer(self._type_expr(args[0], scope)))
        if name == "append":
            arity(1, 1 << 16)
            st = self._value(args[0], scope, ctx)
            under = st.underlying()
            if not isinstance(under, Slice):
                raise CheckError(f"invalid argument: {_render(args[0])} (variable of type {st}) is not a slice", pos=args[0].pos)
            for arg in args[1:]:
                self._expect_assignable(self._value(arg, scope, ctx), under.elem, arg, "argument to append")
            return TypeAndValue("value", st)
        if name == "copy":
            arity(2, 2)
            dst = self._value(args[0], scope, ctx).underlying()
            src = self._value(args[1], scope, ctx).underlying()
            if not isinstance(dst, Slice):
                raise CheckError("invalid argument: copy expects slice arguments", pos=expr.pos)
            if not (isinstance(src, Slice) and identical(src.elem, dst.elem)) and not (is_string(src) and dst.elem == BYTE):
                raise CheckError("invalid argument: arguments to copy have different element types", pos=expr.pos)
            return TypeAndValue("value", INT)
        if name == "delete":
            arity(2, 2)
            mt = self._value(args[0], scope, ctx).underlying()
            if not isinstance(mt, Map):
                raise CheckError(f"invalid argument: {_render(args[0])} is not a map", pos=args[0].pos)
            self._expect_assignable(self._value(args[1], scope, ctx), mt.key, args[1], "argument to delete")
            return _NOVALUE
        if name == "panic":
            arity(1, 1)
            self._value(args[0], scope, ctx)
            return _NOVALUE
        if name in {"print", "println"}:
            for arg in args:
                self._value(arg, scope, ctx)
            return _NOVALUE
        raise CheckError(f"unsupported built-in {name}", pos=expr.pos)


def _unparen(expr: ast.Expr) -> ast.Expr:
    while isinstance(expr, ast.ParenExpr):
        expr = expr.x
    return expr


def _render(expr: Optional[ast.Node]) -> str:
    """Short source-like rendering of an expression for messages."""
    if expr is None:
        return ""
    if isinstance(expr, ast.Ident):
        return expr.name
    if isinstance(expr, ast.BasicLit):
        return expr.value
    if isinstance(expr, ast.SelectorExpr):
        return f"{_render(expr.x)}.{expr.sel.name}"
    if isinstance(expr, ast.IndexExpr):
        return f"{_render(expr.x)}[{_render(expr.index)}]"
    if isinstance(expr, ast.SliceExpr):
        return f"{_render(expr.x)}[{_render(expr.low)}:{_render(expr.high)}]"
    if isinstance(expr, ast.CallExpr):
        return f"{_render(expr.fun)}({', '.join(_render(a) for a in expr.args)})"
    if isinstance(expr, ast.StarExpr):
        return f"*{_render(expr.x)}"
    if isinstance(expr, ast.UnaryExpr):
        return f"{expr.op}{_render(expr.x)}"
    if isinstance(expr, ast.BinaryExpr):
        return f"{_render(expr.x)} {expr.op} {_render(expr.y)}"
    if isinstance(expr, ast.ParenExpr):
        return f"({_render(expr.x)})"
    if isinstance(expr, ast.ArrayType):
        return f"[]{_render(expr.elt)}"
    if isinstance(expr, ast.MapType):
        return f"map[{_render(expr.key)}]{_render(expr.value)}"
    if isinstance(expr, ast.FuncLit):
        return "func literal"
    if isinstance(expr, ast.CompositeLit):
        return f"{_render(expr.type)}{{...}}"
    return type(expr).__name__


__all__ = ["Checker", "CheckError", "FunctionContext", "ImportFunc"]
