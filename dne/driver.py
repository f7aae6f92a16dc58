"""
Alias analysis driver: entry points, overwrite sites and query registration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple

from . import ssa
from .builder import Builder
from .diagnostics import NoEntryPointsError
from .pins import Pin
from .pointer import AliasEngine, AndersenEngine, QueryHandle
from .span import Pos


@dataclass
class OverwriteSite:
    """An indexed write into a slice or map; `base` is the aggregate written to."""

    instr: ssa.Instruction
    base: ssa.Value
    function: ssa.Function

    @property
    def pos(self) -> Pos:
        return self.instr.pos


@dataclass
class AliasConfig:
    engine: AliasEngine
    entry_points: List[ssa.Package]
    pin_queries: List[Tuple[Pin, QueryHandle]] = field(default_factory=list)
    site_queries: List[Tuple[OverwriteSite, QueryHandle]] = field(default_factory=list)


def select_entry_points(builder: Builder, entry_paths: Sequence[str]) -> List[ssa.Package]:
    """Packages with a main function, plus one synthesized test main for the rest."""
    mains: List[ssa.Package] = []
    tests: List[ssa.Package] = []
    for path in entry_paths:
        pkg = builder.prog.package(path)
        if pkg is None:
            continue
        if pkg.func("main") is not None:
            mains.append(pkg)
        else:
            tests.append(pkg)
    if tests:
        testmain = builder.create_test_main(tests)
        if testmain is not None:
            mains.append(testmain)
    if not mains:
        raise NoEntryPointsError("analysis scope has no main and no tests")
    return mains


def root_functions(mains: Sequence[ssa.Package]) -> List[ssa.Function]:
    roots: List[ssa.Function] = []
    for pkg in mains:
        if pkg.init is not None:
            roots.append(pkg.init)
        main = pkg.func("main")
        if main is not None:
            roots.append(main)
    return roots


def reachable_functions(roots: Sequence[ssa.Function]) -> List[ssa.Function]:
    """Functions reachable from `roots` through any reference to a function value."""
    seen: Set[ssa.Function] = set()
    order: List[ssa.Function] = []
    stack = list(reversed(roots))
    while stack:
        fn = stack.pop()
        if fn in seen:
            continue
        seen.add(fn)
        order.append(fn)
        for instr in fn.instructions():
            if isinstance(instr, ssa.MakeClosure):
                stack.append(instr.func)
            for op in instr.operands():
                if isinstance(op, ssa.Function):
                    stack.append(op)
    return order


def overwrite_sites(functions: Sequence[ssa.Function]) -> List[OverwriteSite]:
    sites: List[OverwriteSite] = []
    for fn in functions:
        for instr in fn.instructions():
            if isinstance(instr, ssa.Store) and isinstance(instr.addr, ssa.IndexAddr):
                sites.append(OverwriteSite(instr=instr, base=instr.addr.x, function=fn))
            elif isinstance(instr, ssa.MapUpdate):
                sites.append(OverwriteSite(instr=instr, base=instr.map, function=fn))
    return sites


def configure(
    builder: Builder,
    entry_paths: Sequence[str],
    pins: Sequence[Pin],
    engine_factory: Optional[Callable[[], AliasEngine]] = None,
) -> AliasConfig:
    mains = select_entry_points(builder, entry_paths)
    engine = engine_factory() if engine_factory is not None else AndersenEngine()
    roots = root_functions(mains)
    for fn in roots:
        engine.add_root(fn)
    config = AliasConfig(engine=engine, entry_points=mains)
    for pin in pins:
        config.pin_queries.append((pin, engine.submit_query(pin.value)))
    for site in overwrite_sites(reachable_functions(roots)):
        config.site_queries.append((site, engine.submit_query(site.base)))
    return config


__all__ = [
    "AliasConfig",
    "OverwriteSite",
    "configure",
    "overwrite_sites",
    "reachable_functions",
    "root_functions",
    "select_entry_points",
]
