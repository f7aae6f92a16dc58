from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from . import ast
from .span import NO_POS, Pos


class Type:
    def underlying(self) -> "Type":
        return self


@dataclass(frozen=True)
class Basic(Type):
    name: str

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return self.name

    @property
    def untyped(self) -> bool:
        return self.name.startswith("untyped ")


@dataclass(frozen=True)
class Slice(Type):
    elem: Type

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return f"[]{self.elem}"


@dataclass(frozen=True)
class Pointer(Type):
    elem: Type

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return f"*{self.elem}"


@dataclass(frozen=True)
class Map(Type):
    key: Type
    value: Type

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return f"map[{self.key}]{self.value}"


@dataclass(frozen=True)
class StructField:
    name: str
    type: Type


@dataclass(frozen=True)
class Struct(Type):
    fields: Tuple[StructField, ...] = ()

    def field_index(self, name: str) -> int:
        for idx, f in enumerate(self.fields):
            if f.name == name:
                return idx
        return -1

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        inner = "; ".join(f"{f.name} {f.type}" for f in self.fields)
        return f"struct{{{inner}}}"


@dataclass(frozen=True)
class Interface(Type):
    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return "interface{}"


@dataclass(frozen=True)
class Signature(Type):
    params: Tuple[Type, ...] = ()
    result: Optional[Type] = None

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        inner = ", ".join(str(p) for p in self.params)
        if self.result is None:
            return f"func({inner})"
        return f"func({inner}) {self.result}"


@dataclass(eq=False)
class Named(Type):
    """A declared type. Identity is the object itself."""

    obj: "TypeName"
    under: Optional[Type] = None

    def underlying(self) -> Type:
        # Chains of named types were flattened when the declaration resolved.
        return self.under if self.under is not None else INVALID

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        if self.obj.pkg is not None and self.obj.pkg.path:
            return f"{self.obj.pkg.name}.{self.obj.name}"
        return self.obj.name


INT = Basic("int")
BYTE = Basic("byte")
BOOL = Basic("bool")
STRING = Basic("string")
UNSAFE_POINTER = Basic("unsafe.Pointer")
INVALID = Basic("invalid type")

UNTYPED_INT = Basic("untyped int")
UNTYPED_RUNE = Basic("untyped rune")
UNTYPED_STRING = Basic("untyped string")
UNTYPED_BOOL = Basic("untyped bool")
UNTYPED_NIL = Basic("untyped nil")

EMPTY_INTERFACE = Interface()

_INTEGERS = frozenset({INT, BYTE})
_DEFAULTS: Dict[Basic, Type] = {
    UNTYPED_INT: INT,
    UNTYPED_RUNE: INT,
    UNTYPED_STRING: STRING,
    UNTYPED_BOOL: BOOL,
}


def is_integer(ty: Type) -> bool:
    ty = ty.underlying()
    return ty in _INTEGERS or ty in (UNTYPED_INT, UNTYPED_RUNE)


def is_string(ty: Type) -> bool:
    return ty.underlying() in (STRING, UNTYPED_STRING)


def is_boolean(ty: Type) -> bool:
    return ty.underlying() in (BOOL, UNTYPED_BOOL)


def is_untyped(ty: Type) -> bool:
    return isinstance(ty, Basic) and ty.untyped


def is_nillable(ty: Type) -> bool:
    under = ty.underlying()
    return isinstance(under, (Pointer, Slice, Map, Signature, Interface)) or under == UNSAFE_POINTER


def is_pointer_like(ty: Type) -> bool:
    """Types whose values can refer to memory another value may share."""
    under = ty.underlying()
    return isinstance(under, (Pointer, Slice, Map, Signature, Interface, Struct)) or under == UNSAFE_POINTER


def default_type(ty: Type) -> Type:
    if isinstance(ty, Basic):
        return _DEFAULTS.get(ty, ty)
    return ty


def identical(a: Type, b: Type) -> bool:
    return a == b


def assignable(value: Type, target: Type) -> bool:
    if value == INVALID or target == INVALID:
        return True
    if identical(value, target):
        return True
    target_under = target.underlying()
    if isinstance(target_under, Interface):
        return True
    if value == UNTYPED_NIL:
        return is_nillable(target)
    if is_untyped(value):
        if value in (UNTYPED_INT, UNTYPED_RUNE):
            return target_under in _INTEGERS
        if value == UNTYPED_STRING:
            return target_under == STRING
        if value == UNTYPED_BOOL:
            return target_under == BOOL
        return False
    # Identical underlying types where at least one side is unnamed.
    if not (isinstance(value, Named) and isinstance(target, Named)):
        return identical(value.underlying(), target_under)
    return False


def convertible(value: Type, target: Type) -> bool:
    if assignable(value, target):
        return True
    v, t = value.underlying(), target.underlying()
    if identical(v, t):
        return True
    if is_integer(v) and is_integer(t):
        return True
    if is_string(t) and (is_integer(v) or v == Slice(BYTE)):
        return True
    if is_string(v) and t == Slice(BYTE):
        return True
    if v == UNSAFE_POINTER and isinstance(t, Pointer):
        return True
    if t == UNSAFE_POINTER and isinstance(v, Pointer):
        return True
    return False


# --- objects -----------------------------------------------------------


@dataclass(eq=False)
class Object:
    name: str
    pos: Pos = NO_POS
    type: Optional[Type] = None
    pkg: Optional["TypesPackage"] = None

    def exported(self) -> bool:
        return self.name[:1].isupper()


@dataclass(eq=False)
class Var(Object):
    is_global: bool = False
    decl: Optional[ast.Node] = None


@dataclass(eq=False)
class Func(Object):
    decl: Optional[ast.FuncDecl] = None


@dataclass(eq=False)
class TypeName(Object):
    decl: Optional[ast.TypeDecl] = None


@dataclass(eq=False)
class PkgName(Object):
    imported: Optional["TypesPackage"] = None
    used: bool = False
    spec: Optional[ast.ImportSpec] = None


@dataclass(eq=False)
class Builtin(Object):
    pass


@dataclass(eq=False)
class Nil(Object):
    pass


@dataclass(eq=False)
class Const(Object):
    value: object = None


class Scope:
    def __init__(self, parent: Optional[Scope] = None, kind: str = "block") -> None:
        self.parent = parent
        self.kind = kind
        self.objects: Dict[str, Object] = {}

    def lookup_local(self, name: str) -> Optional[Object]:
        return self.objects.get(name)

    def lookup(self, name: str) -> Optional[Object]:
        scope: Optional[Scope] = self
        while scope is not None:
            obj = scope.objects.get(name)
            if obj is not None:
                return obj
            scope = scope.parent
        return None

    def insert(self, obj: Object) -> Optional[Object]:
        """Insert `obj`; returns the previous object of that name, if any, without replacing it."""
        existing = self.objects.get(obj.name)
        if existing is not None:
            return existing
        self.objects[obj.name] = obj
        return None

    def names(self) -> List[str]:
        return sorted(self.objects)


@dataclass(eq=False)
class TypesPackage:
    path: str
    name: str
    scope: Scope = field(default_factory=lambda: Scope(UNIVERSE, kind="package"))
    imports: List["TypesPackage"] = field(default_factory=list)
    complete: bool = False

    def lookup(self, name: str) -> Optional[Object]:
        return self.scope.lookup_local(name)

    def __repr__(self) -> str:  # pragma: no cover - debug aid
        return f"<TypesPackage {self.path}>"


@dataclass(frozen=True)
class TypeAndValue:
    """Result of checking an expression: its mode and its type."""

    mode: str  # value | variable | type | builtin | novalue | mapindex
    type: Type

    def is_type(self) -> bool:
        return self.mode == "type"

    def is_value(self) -> bool:
        return self.mode in {"value", "variable", "mapindex"}

    def addressable(self) -> bool:
        return self.mode == "variable"


@dataclass(frozen=True)
class Selection:
    """A struct field selection `x.f`; `indirect` when `x` is a pointer to the struct."""

    index: int
    field: StructField
    indirect: bool


@dataclass
class Info:
    types: Dict[ast.Expr, TypeAndValue] = field(default_factory=dict)
    defs: Dict[ast.Ident, Optional[Object]] = field(default_factory=dict)
    uses: Dict[ast.Ident, Object] = field(default_factory=dict)
    selections: Dict[ast.SelectorExpr, Selection] = field(default_factory=dict)
    # Package-level variable declarations in initialization order.
    init_order: List[ast.VarDecl] = field(default_factory=list)

    def type_of(self, expr: ast.Expr) -> Optional[Type]:
        tv = self.types.get(expr)
        if tv is not None:
            return tv.type
        if isinstance(expr, ast.Ident):
            obj = self.defs.get(expr) or self.uses.get(expr)
            if obj is not None:
                return obj.type
        return None

    def object_of(self, ident: ast.Ident) -> Optional[Object]:
        obj = self.defs.get(ident)
        if obj is not None:
            return obj
        return self.uses.get(ident)


def _universe() -> Scope:
    scope = Scope(None, kind="universe")
    for ty in (INT, BYTE, BOOL, STRING):
        tn = TypeName(name=ty.name, type=ty)
        scope.insert(tn)
    scope.insert(TypeName(name="rune", type=INT))
    scope.insert(Const(name="true", type=UNTYPED_BOOL, value=True))
    scope.insert(Const(name="false", type=UNTYPED_BOOL, value=False))
    scope.insert(Nil(name="nil", type=UNTYPED_NIL))
    for name in ("append", "cap", "copy", "delete", "len", "make", "new", "panic", "print", "println"):
        scope.insert(Builtin(name=name))
    return scope


UNIVERSE = _universe()


def _unsafe_package() -> TypesPackage:
    pkg = TypesPackage(path="unsafe", name="unsafe", scope=Scope(UNIVERSE, kind="package"), complete=True)
    pkg.scope.insert(TypeName(name="Pointer", type=UNSAFE_POINTER, pkg=pkg))
    return pkg


UNSAFE = _unsafe_package()


__all__ = [
    "Type",
    "Basic",
    "Slice",
    "Pointer",
    "Map",
    "StructField",
    "Struct",
    "Interface",
    "Signature",
    "Named",
    "INT",
    "BYTE",
    "BOOL",
    "STRING",
    "UNSAFE_POINTER",
    "INVALID",
    "UNTYPED_INT",
    "UNTYPED_RUNE",
    "UNTYPED_STRING",
    "UNTYPED_BOOL",
    "UNTYPED_NIL",
    "EMPTY_INTERFACE",
    "Object",
    "Var",
    "Func",
    "TypeName",
    "PkgName",
    "Builtin",
    "Nil",
    "Const",
    "Scope",
    "TypesPackage",
    "TypeAndValue",
    "Selection",
    "Info",
    "UNIVERSE",
    "UNSAFE",
    "assignable",
    "convertible",
    "default_type",
    "identical",
    "is_boolean",
    "is_integer",
    "is_nillable",
    "is_pointer_like",
    "is_string",
    "is_untyped",
]
