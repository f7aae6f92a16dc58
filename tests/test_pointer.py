from __future__ import annotations

from typing import List

import pytest

from dne import ssa
from dne.diagnostics import AliasAnalysisError, NoEntryPointsError
from dne.driver import configure, overwrite_sites, reachable_functions, root_functions, select_entry_points
from dne.pointer import AndersenEngine, QueryHandle, may_alias
from dne.pointer.engine import AbstractObject

PROGRAM = {
    "app/main.go": """
        package main

        func keep(s []int) []int {
            return s
        }

        func main() {
            a := make([]int, 2)
            b := make([]int, 2)
            c := keep(a)
            c[0] = 1
            b[1] = 2
        }
    """,
}


def _main(builder) -> ssa.Function:
    return builder.prog.package("app").func("main")


def _makes(fn: ssa.Function) -> List[ssa.MakeSlice]:
    return [instr for instr in fn.instructions() if isinstance(instr, ssa.MakeSlice)]


def test_query_before_run_is_an_error() -> None:
    handle = QueryHandle(ssa.Const(1))
    with pytest.raises(AliasAnalysisError, match="before the analysis ran"):
        handle.points_to()


def test_run_without_roots_fails() -> None:
    with pytest.raises(AliasAnalysisError, match="no main/test packages to analyze"):
        AndersenEngine().run()


def test_values_flow_through_calls(build_ssa) -> None:
    builder = build_ssa(PROGRAM, "app")
    main = _main(builder)
    a, b = _makes(main)
    engine = AndersenEngine()
    engine.add_root(main)
    qa, qb = engine.submit_query(a), engine.submit_query(b)
    sites = overwrite_sites([main])
    handles = [engine.submit_query(site.base) for site in sites]
    engine.run()

    assert len(qa.points_to()) == 1
    assert not may_alias(qa, qb)
    # c[0] writes the array returned by keep(a); b[1] writes b's.
    assert [engine.may_alias(qa, h) for h in handles] == [True, False]
    assert [engine.may_alias(qb, h) for h in handles] == [False, True]


def test_root_functions_run_init_first(build_ssa) -> None:
    builder = build_ssa(PROGRAM, "app")
    pkg = builder.prog.package("app")
    assert root_functions([pkg]) == [pkg.init, pkg.func("main")]


def test_reachable_functions_follow_calls(build_ssa) -> None:
    builder = build_ssa(PROGRAM, "app")
    pkg = builder.prog.package("app")
    names = [fn.name for fn in reachable_functions(root_functions([pkg]))]
    assert names == ["init", "main", "keep"]


def test_library_without_tests_has_no_entry_points(build_ssa) -> None:
    builder = build_ssa({"lib/lib.go": "package lib\n\nfunc F() {}\n"}, "lib")
    with pytest.raises(NoEntryPointsError):
        select_entry_points(builder, ["lib"])


class RecordingEngine:
    """Stand-in engine that treats every pair of handles as aliases."""

    def __init__(self) -> None:
        self.roots: List[ssa.Function] = []
        self.queries: List[QueryHandle] = []

    def add_root(self, fn: ssa.Function) -> None:
        self.roots.append(fn)

    def submit_query(self, value: ssa.Value) -> QueryHandle:
        handle = QueryHandle(value)
        self.queries.append(handle)
        return handle

    def run(self) -> None:
        shared = frozenset({AbstractObject("alloc", None)})
        for handle in self.queries:
            handle._resolve(shared)

    def may_alias(self, a: QueryHandle, b: QueryHandle) -> bool:
        return may_alias(a, b)


def test_configure_uses_supplied_engine(build_ssa) -> None:
    builder = build_ssa(PROGRAM, "app")
    config = configure(builder, ["app"], pins=[], engine_factory=RecordingEngine)
    engine = config.engine
    assert isinstance(engine, RecordingEngine)
    pkg = builder.prog.package("app")
    assert engine.roots == [pkg.init, pkg.func("main")]
    assert len(config.site_queries) == 2
    assert config.pin_queries == []
