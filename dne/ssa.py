"""Value-level (SSA) program representation.

Every computed quantity is a `Value`. Instructions that produce a value are
themselves values (their register name is assigned once the enclosing
function is built); effect-only instructions (`Store`, `MapUpdate`, control
transfers) produce none. All nodes compare by identity.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

from . import ast
from .span import NO_POS, Pos
from .types import BOOL, INVALID, Object, Signature, Type, TypesPackage


class Value:
    # Declared as fields by each subclass, never given class-level values here.
    name: str
    type: Type

    def operand_name(self) -> str:
        return self.name


@dataclass(eq=False)
class Const(Value):
    value: object
    type: Type = INVALID

    def operand_name(self) -> str:
        if self.value is None:
            return f"nil:{self.type}" if self.type is not INVALID else "nil"
        return f"{self.value!r}:{self.type}"


@dataclass(eq=False)
class Parameter(Value):
    name: str
    type: Type
    parent: Optional["Function"] = None
    pos: Pos = NO_POS


@dataclass(eq=False)
class FreeVar(Value):
    """A variable captured by an anonymous function; `outer` is its binding in the parent."""

    name: str
    type: Type
    parent: Optional["Function"] = None
    outer: Optional[Value] = None
    pos: Pos = NO_POS


@dataclass(eq=False)
class Global(Value):
    """Address of a package-level variable."""

    name: str
    type: Type
    pkg: Optional["Package"] = None
    obj: Optional[Object] = None
    pos: Pos = NO_POS

    def operand_name(self) -> str:
        return f"{self.pkg.path}.{self.name}" if self.pkg is not None else self.name


@dataclass(eq=False)
class Builtin(Value):
    name: str
    type: Type = INVALID


# --- instructions ------------------------------------------------------


class Instruction:
    block: Optional["BasicBlock"] = None
    pos: Pos = NO_POS

    def operands(self) -> List[Value]:
        ops: List[Value] = []
        for f in fields(self):
            if f.name in {"pos", "comment"}:
                continue
            val = getattr(self, f.name)
            if isinstance(val, Value):
                ops.append(val)
            elif isinstance(val, list):
                ops.extend(v for v in val if isinstance(v, Value))
        return ops

    def map_operands(self, fn) -> None:
        """Replace every operand `v` by `fn(v)`."""
        for f in fields(self):
            if f.name in {"pos", "comment", "func"}:
                continue
            val = getattr(self, f.name)
            if isinstance(val, Value):
                setattr(self, f.name, fn(val))
            elif isinstance(val, list):
                setattr(self, f.name, [fn(v) if isinstance(v, Value) else v for v in val])


class ValueInstruction(Instruction, Value):
    # Register name, assigned once the enclosing function is built.
    name = ""


@dataclass(eq=False)
class Alloc(ValueInstruction):
    """Storage for one variable; the instruction's value is its address."""

    type: Type
    heap: bool = False
    comment: str = ""
    pos: Pos = NO_POS


@dataclass(eq=False)
class MakeSlice(ValueInstruction):
    type: Type
    len: Value
    cap: Optional[Value] = None
    pos: Pos = NO_POS


@dataclass(eq=False)
class MakeMap(ValueInstruction):
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class MakeClosure(ValueInstruction):
    func: "Function"
    bindings: List[Value]
    type: Type = INVALID
    pos: Pos = NO_POS


@dataclass(eq=False)
class Phi(ValueInstruction):
    edges: List[Value]
    type: Type
    comment: str = ""
    pos: Pos = NO_POS


@dataclass(eq=False)
class Call(ValueInstruction):
    callee: Value
    args: List[Value]
    type: Type = INVALID
    pos: Pos = NO_POS

    def static_callee(self) -> Optional["Function"]:
        return self.callee if isinstance(self.callee, Function) else None


@dataclass(eq=False)
class BinOp(ValueInstruction):
    op: str
    x: Value
    y: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class UnOp(ValueInstruction):
    """Unary operation; `*` loads through an address."""

    op: str
    x: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class IndexAddr(ValueInstruction):
    """Address of element `index` of slice `x`."""

    x: Value
    index: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class FieldAddr(ValueInstruction):
    """Address of field `field` of the struct `x` points to."""

    x: Value
    field: int
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class Index(ValueInstruction):
    """Byte `index` of string `x`."""

    x: Value
    index: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class Lookup(ValueInstruction):
    """Map read `x[index]`."""

    x: Value
    index: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class Slice(ValueInstruction):
    x: Value
    low: Optional[Value]
    high: Optional[Value]
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class Convert(ValueInstruction):
    x: Value
    type: Type
    pos: Pos = NO_POS


@dataclass(eq=False)
class Next(ValueInstruction):
    """One step of a map range loop: `extract` is ok, key or value."""

    x: Value
    extract: str
    type: Type = BOOL
    pos: Pos = NO_POS


@dataclass(eq=False)
class Store(Instruction):
    addr: Value
    val: Value
    pos: Pos = NO_POS


@dataclass(eq=False)
class MapUpdate(Instruction):
    map: Value
    key: Value
    value: Value
    pos: Pos = NO_POS


@dataclass(eq=False)
class Jump(Instruction):
    pos: Pos = NO_POS


@dataclass(eq=False)
class If(Instruction):
    cond: Value
    pos: Pos = NO_POS


@dataclass(eq=False)
class Return(Instruction):
    result: Optional[Value] = None
    pos: Pos = NO_POS


@dataclass(eq=False)
class Panic(Instruction):
    x: Value
    pos: Pos = NO_POS


TERMINATORS = (Jump, If, Return, Panic)


# --- containers --------------------------------------------------------


@dataclass(eq=False)
class BasicBlock:
    index: int
    comment: str = ""
    parent: Optional["Function"] = None
    instrs: List[Instruction] = field(default_factory=list)
    preds: List["BasicBlock"] = field(default_factory=list)
    succs: List["BasicBlock"] = field(default_factory=list)

    def terminated(self) -> bool:
        return bool(self.instrs) and isinstance(self.instrs[-1], TERMINATORS)

    def append(self, instr: Instruction) -> Instruction:
        instr.block = self
        self.instrs.append(instr)
        return instr

    def phis(self) -> List[Phi]:
        return [i for i in self.instrs if isinstance(i, Phi)]

    def __repr__(self) -> str:  # pragma: no cover - debug aid
        return f"<BasicBlock {self.index}.{self.comment}>"


@dataclass(eq=False)
class Function(Value):
    name: str
    signature: Signature
    pkg: Optional["Package"] = None
    syntax: Optional[ast.Node] = None
    parent: Optional["Function"] = None
    obj: Optional[Object] = None
    synthetic: str = ""
    params: List[Parameter] = field(default_factory=list)
    free_vars: List[FreeVar] = field(default_factory=list)
    blocks: List[BasicBlock] = field(default_factory=list)
    anon_funcs: List["Function"] = field(default_factory=list)
    # Value computed for each lowered syntax expression of this function.
    expr_values: Dict[ast.Expr, Value] = field(default_factory=dict)
    pos: Pos = NO_POS

    @property
    def type(self) -> Type:  # type: ignore[override]
        return self.signature

    def operand_name(self) -> str:
        return self.full_name()

    def full_name(self) -> str:
        if self.parent is not None:
            return self.name
        if self.pkg is not None:
            return f"{self.pkg.path}.{self.name}"
        return self.name

    def value_for_expr(self, expr: ast.Expr) -> Optional[Value]:
        return self.expr_values.get(expr)

    def instructions(self):
        for block in self.blocks:
            yield from block.instrs

    def new_block(self, comment: str) -> BasicBlock:
        block = BasicBlock(index=len(self.blocks), comment=comment, parent=self)
        self.blocks.append(block)
        return block

    def __repr__(self) -> str:  # pragma: no cover - debug aid
        return f"<Function {self.full_name()}>"


@dataclass(eq=False)
class Package:
    path: str
    types: Optional[TypesPackage]
    files: List[ast.File] = field(default_factory=list)
    info: Optional[object] = None
    members: Dict[str, Value] = field(default_factory=dict)
    init: Optional[Function] = None
    # Functions declared in source order (init functions included).
    funcs: List[Function] = field(default_factory=list)
    built: bool = False

    def func(self, name: str) -> Optional[Function]:
        member = self.members.get(name)
        return member if isinstance(member, Function) else None

    def var(self, name: str) -> Optional[Global]:
        member = self.members.get(name)
        return member if isinstance(member, Global) else None


@dataclass(eq=False)
class Program:
    packages: Dict[str, Package] = field(default_factory=dict)
    # FuncDecl / FuncLit syntax -> the function built from it.
    func_by_syntax: Dict[ast.Node, Function] = field(default_factory=dict)

    def package(self, path: str) -> Optional[Package]:
        return self.packages.get(path)

    def all_functions(self) -> List[Function]:
        result: List[Function] = []

        def add(fn: Function) -> None:
            result.append(fn)
            for anon in fn.anon_funcs:
                add(anon)

        for pkg in self.packages.values():
            if pkg.init is not None:
                add(pkg.init)
            for fn in pkg.funcs:
                add(fn)
        return result


__all__ = [
    "Value",
    "Const",
    "Parameter",
    "FreeVar",
    "Global",
    "Builtin",
    "Instruction",
    "ValueInstruction",
    "Alloc",
    "MakeSlice",
    "MakeMap",
    "MakeClosure",
    "Phi",
    "Call",
    "BinOp",
    "UnOp",
    "IndexAddr",
    "FieldAddr",
    "Index",
    "Lookup",
    "Slice",
    "Convert",
    "Next",
    "Store",
    "MapUpdate",
    "Jump",
    "If",
    "Return",
    "Panic",
    "TERMINATORS",
    "BasicBlock",
    "Function",
    "Package",
    "Program",
]
