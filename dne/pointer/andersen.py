"""
Inclusion-based points-to analysis over the value-level program.

Flow- and context-insensitive. Every value and every abstract location has a
points-to set; constraints are copy edges between them plus "complex"
constraints attached to a pointer-valued node (load, store, sub-location
address, dynamic call) that are re-applied to each object newly reaching that
node. Functions are processed only once reachable from the roots, so the call
graph is discovered while solving.

Location layout: a slice value points to its backing array object, whose
elements are the `elem` sub-location; a map object has `key` and `elem`
sub-locations; a struct object has one `field<i>` sub-location per field.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Set, Tuple

from .. import ssa
from ..diagnostics import AliasAnalysisError
from .engine import AbstractObject, QueryHandle, may_alias

# Complex constraint kinds.
_LOAD = "load"  # dst includes the contents of o.label
_STORE = "store"  # the contents of o.label include src
_ADDR = "addr"  # dst points to o.label
_CALL = "call"  # o is a function or closure called by `call`


class _Tmp:
    """Intermediate node for builtins that move elements between arrays."""


class _Ret:
    """Node holding the values a function returns."""

    def __init__(self, fn: ssa.Function) -> None:
        self.fn = fn

    def __repr__(self) -> str:
        return f"<ret {self.fn.full_name()}>"


class AndersenEngine:
    def __init__(self) -> None:
        self.roots: List[ssa.Function] = []
        self.queries: Dict[ssa.Value, QueryHandle] = {}
        self.reachable: Set[ssa.Function] = set()
        # Call graph edges discovered while solving: (call instruction, callee).
        self.call_edges: Set[Tuple[ssa.Call, ssa.Function]] = set()
        self.pts: Dict[object, Set[AbstractObject]] = {}
        self._succs: Dict[object, Set[object]] = {}
        self._complex: Dict[object, List[Tuple[str, object, str]]] = {}
        self._pending: Dict[object, Set[AbstractObject]] = {}
        self._worklist: Deque[object] = deque()
        self._objects: Dict[object, AbstractObject] = {}
        self._rets: Dict[ssa.Function, _Ret] = {}
        self._solved = False

    # --- configuration --------------------------------------------------

    def add_root(self, fn: ssa.Function) -> None:
        if fn not in self.roots:
            self.roots.append(fn)

    def submit_query(self, value: ssa.Value) -> QueryHandle:
        handle = self.queries.get(value)
        if handle is None:
            handle = QueryHandle(value)
            self.queries[value] = handle
        return handle

    def may_alias(self, a: QueryHandle, b: QueryHandle) -> bool:
        return may_alias(a, b)

    # --- solving --------------------------------------------------------

    def run(self) -> None:
        if self._solved:
            return
        if not self.roots:
            raise AliasAnalysisError("no main/test packages to analyze")
        for fn in self.roots:
            self._reach(fn)
        self._solve()
        self._solved = True
        for value, handle in self.queries.items():
            handle._resolve(frozenset(self.pts.get(value, ())))

    def _solve(self) -> None:
        while self._worklist:
            node = self._worklist.popleft()
            delta = self._pending.pop(node, None)
            if not delta:
                continue
            for constraint in list(self._complex.get(node, ())):
                for obj in delta:
                    self._apply(constraint, obj)
            for succ in list(self._succs.get(node, ())):
                self._add_pts(succ, delta)

    def _add_pts(self, node: object, objs) -> None:
        cur = self.pts.setdefault(node, set())
        new = set(objs) - cur
        if not new:
            return
        cur |= new
        pending = self._pending.get(node)
        if pending is None:
            self._pending[node] = new
            self._worklist.append(node)
        else:
            pending |= new

    def _edge(self, src: object, dst: object) -> None:
        succs = self._succs.setdefault(src, set())
        if dst in succs:
            return
        succs.add(dst)
        if self.pts.get(src):
            self._add_pts(dst, self.pts[src])

    def _add_complex(self, node: object, constraint: Tuple[str, object, str]) -> None:
        self._complex.setdefault(node, []).append(constraint)
        for obj in list(self.pts.get(node, ())):
            self._apply(constraint, obj)

    @staticmethod
    def _loc(obj: AbstractObject, label: str) -> AbstractObject:
        return obj.child(label) if label else obj

    def _apply(self, constraint: Tuple[str, object, str], obj: AbstractObject) -> None:
        kind, other, label = constraint
        if kind == _LOAD:
            self._edge(self._loc(obj, label), other)
        elif kind == _STORE:
            self._edge(other, self._loc(obj, label))
        elif kind == _ADDR:
            self._add_pts(other, {self._loc(obj, label)})
        elif kind == _CALL:
            if obj.func is not None:
                self._bind(other, obj.func)

    # --- objects --------------------------------------------------------

    def _object(self, kind: str, site: object) -> AbstractObject:
        obj = self._objects.get(site)
        if obj is None:
            obj = AbstractObject(kind, site)
            if isinstance(site, ssa.Function):
                obj.func = site
            elif isinstance(site, ssa.MakeClosure):
                obj.func = site.func
            self._objects[site] = obj
        return obj

    def _ret(self, fn: ssa.Function) -> _Ret:
        ret = self._rets.get(fn)
        if ret is None:
            ret = self._rets[fn] = _Ret(fn)
        return ret

    def _seed(self, value: ssa.Value) -> None:
        if isinstance(value, ssa.Global):
            self._add_pts(value, {self._object("global", value)})
        elif isinstance(value, ssa.Function):
            self._add_pts(value, {self._object("func", value)})

    # --- constraint generation ------------------------------------------

    def _reach(self, fn: ssa.Function) -> None:
        if fn in self.reachable:
            return
        self.reachable.add(fn)
        for instr in list(fn.instructions()):
            for op in instr.operands():
                self._seed(op)
            self._gen(fn, instr)

    def _bind(self, call: ssa.Call, fn: ssa.Function) -> None:
        if (call, fn) in self.call_edges:
            return
        self.call_edges.add((call, fn))
        self._reach(fn)
        for arg, param in zip(call.args, fn.params):
            self._edge(arg, param)
        self._edge(self._ret(fn), call)

    def _gen(self, fn: ssa.Function, instr: ssa.Instruction) -> None:
        if isinstance(instr, (ssa.Alloc, ssa.MakeSlice, ssa.MakeMap)):
            self._add_pts(instr, {self._object(type(instr).__name__.lower(), instr)})
        elif isinstance(instr, ssa.MakeClosure):
            self._add_pts(instr, {self._object("closure", instr)})
            for fv, binding in zip(instr.func.free_vars, instr.bindings):
                self._edge(binding, fv)
        elif isinstance(instr, ssa.Phi):
            for edge in instr.edges:
                self._edge(edge, instr)
        elif isinstance(instr, (ssa.Slice, ssa.Convert)):
            self._edge(instr.x, instr)
        elif isinstance(instr, ssa.UnOp):
            if instr.op == "*":
                self._add_complex(instr.x, (_LOAD, instr, ""))
        elif isinstance(instr, ssa.Store):
            self._add_complex(instr.addr, (_STORE, instr.val, ""))
        elif isinstance(instr, ssa.IndexAddr):
            self._add_complex(instr.x, (_ADDR, instr, "elem"))
        elif isinstance(instr, ssa.FieldAddr):
            self._add_complex(instr.x, (_ADDR, instr, f"field{instr.field}"))
        elif isinstance(instr, ssa.Lookup):
            self._add_complex(instr.x, (_LOAD, instr, "elem"))
        elif isinstance(instr, ssa.Next):
            if instr.extract != "ok":
                self._add_complex(instr.x, (_LOAD, instr, "key" if instr.extract == "key" else "elem"))
        elif isinstance(instr, ssa.MapUpdate):
            self._add_complex(instr.map, (_STORE, instr.key, "key"))
            self._add_complex(instr.map, (_STORE, instr.value, "elem"))
        elif isinstance(instr, ssa.Return):
            if instr.result is not None:
                self._edge(instr.result, self._ret(fn))
        elif isinstance(instr, ssa.Call):
            self._gen_call(instr)

    def _gen_call(self, call: ssa.Call) -> None:
        callee = call.static_callee()
        if callee is not None:
            self._bind(call, callee)
            return
        if isinstance(call.callee, ssa.Builtin):
            self._gen_builtin(call, call.callee.name)
            return
        self._add_complex(call.callee, (_CALL, call, ""))

    def _gen_builtin(self, call: ssa.Call, name: str) -> None:
        if name == "append":
            # The result is either a fresh array or the operand's own.
            self._add_pts(call, {self._object("append", call)})
            s, elems = call.args[0], call.args[1:]
            self._edge(s, call)
            tmp = _Tmp()
            self._add_complex(s, (_LOAD, tmp, "elem"))
            self._add_complex(call, (_STORE, tmp, "elem"))
            for elem in elems:
                self._add_complex(call, (_STORE, elem, "elem"))
        elif name == "copy":
            dst, src = call.args
            tmp = _Tmp()
            self._add_complex(src, (_LOAD, tmp, "elem"))
            self._add_complex(dst, (_STORE, tmp, "elem"))


__all__ = ["AndersenEngine"]
