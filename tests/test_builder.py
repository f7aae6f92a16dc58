from __future__ import annotations

import io
from pathlib import Path

import pytest

from dne import ssa
from dne.builder import Builder, LoweringError
from dne.importer import resolve_types
from dne.loader import BuildContext, load_program
from dne.ssa_printer import format_function, format_package
from dne.types import INT, Signature, Slice

from conftest import write_tree

SUM = {
    "lib/lib.go": """
        package lib

        func Sum(xs []int) int {
            total := 0
            for _, x := range xs {
                total += x
            }
            return total
        }

        func Double(n int) int {
            m := n + n
            return m
        }
    """,
}


def _instrs(fn: ssa.Function, kind):
    return [instr for instr in fn.instructions() if isinstance(instr, kind)]


def test_loop_carried_variable_gets_phi(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    fn = builder.prog.package("lib").func("Sum")
    phis = _instrs(fn, ssa.Phi)
    assert phis
    # Every phi has one edge per predecessor of its block.
    for phi in phis:
        assert len(phi.edges) == len(phi.block.preds)


def test_straight_line_code_has_no_phi(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    fn = builder.prog.package("lib").func("Double")
    assert _instrs(fn, ssa.Phi) == []
    assert len(fn.blocks) == 1
    [ret] = _instrs(fn, ssa.Return)
    assert isinstance(ret.result, ssa.BinOp)


def test_registers_are_numbered(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    fn = builder.prog.package("lib").func("Sum")
    names = [instr.name for instr in fn.instructions() if isinstance(instr, ssa.ValueInstruction)]
    assert names == [f"t{i}" for i in range(len(names))]


def test_captured_variable_lives_on_heap(build_ssa) -> None:
    builder = build_ssa(
        {
            "app/main.go": """
                package main

                func main() {
                    n := 0
                    inc := func() {
                        n = n + 1
                    }
                    inc()
                    println(n)
                }
            """,
        },
        "app",
    )
    main = builder.prog.package("app").func("main")
    allocs = [a for a in _instrs(main, ssa.Alloc) if a.heap]
    assert [a.comment for a in allocs] == ["n"]
    [anon] = main.anon_funcs
    assert anon.name == "main$1"
    assert [fv.name for fv in anon.free_vars] == ["n"]
    [closure] = _instrs(main, ssa.MakeClosure)
    assert closure.func is anon
    assert closure.bindings == [allocs[0]]


def test_func_syntax_is_registered(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    pkg = builder.prog.package("lib")
    for fn in pkg.funcs:
        assert builder.prog.func_by_syntax[fn.syntax] is fn


def test_init_functions_are_not_members(build_ssa) -> None:
    builder = build_ssa(
        {
            "lib/lib.go": """
                package lib

                var Table []int

                func init() {
                    Table = make([]int, 4)
                }

                func init() {
                    Table[0] = 1
                }
            """,
        },
        "lib",
    )
    pkg = builder.prog.package("lib")
    assert [fn.name for fn in pkg.funcs] == ["init#1", "init#2"]
    assert pkg.func("init") is pkg.init
    assert pkg.var("Table") is not None
    # The package initializer runs each user init in order.
    calls = [instr.callee for instr in _instrs(pkg.init, ssa.Call)]
    assert calls == pkg.funcs


def test_package_must_follow_its_imports(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": 'package main\n\nimport "lib"\n\nfunc main() { lib.F() }\n',
            "lib/lib.go": "package lib\n\nfunc F() {}\n",
        },
    )
    program = load_program(["app"], BuildContext([tmp_path]))
    resolve_types(program, ["app"], out=io.StringIO())
    app = program.module("app")
    builder = Builder()
    with pytest.raises(LoweringError, match="before its import lib"):
        builder.create_package(app.types, app.files, app.info)
    lib = program.module("lib")
    builder.create_package(lib.types, lib.files, lib.info)
    with pytest.raises(LoweringError, match="already created"):
        builder.create_package(lib.types, lib.files, lib.info)


def test_test_main_calls_each_test(build_ssa) -> None:
    builder = build_ssa(
        {
            "lib/lib.go": "package lib\n\nfunc F() {}\n",
            "lib/lib_test.go": """
                package lib

                func TestOne() { F() }

                func Testable() {}

                func TestTwo() {}
            """,
        },
        "lib",
    )
    pkg = builder.prog.package("lib")
    testmain = builder.create_test_main([pkg])
    main = testmain.func("main")
    assert [c.callee.name for c in _instrs(main, ssa.Call)] == ["TestOne", "TestTwo"]
    assert [c.callee for c in _instrs(testmain.init, ssa.Call)] == [pkg.init]


def test_test_main_without_tests(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    assert builder.create_test_main([builder.prog.package("lib")]) is None


def test_printer(build_ssa) -> None:
    builder = build_ssa(SUM, "lib")
    pkg = builder.prog.package("lib")
    text = format_function(pkg.func("Sum"))
    assert text.startswith("func lib.Sum(xs []int)")
    assert "phi" in text
    assert "rangeindex" in text or "rangeiter" in text
    assert format_package(pkg).startswith("package lib")


def test_every_function_has_an_entry_block(build_ssa) -> None:
    builder = build_ssa(
        {
            "app/main.go": """
                package main

                func main() {
                    f := func(x int) int { return x }
                    println(f(1))
                }
            """,
        },
        "app",
    )
    names = [fn.full_name() for fn in builder.prog.all_functions()]
    assert names == ["app.init", "app.main", "main$1"]
    for fn in builder.prog.all_functions():
        assert fn.blocks[0].comment == "entry"


def test_ir_nodes_keep_required_fields() -> None:
    """Value nodes take their required fields explicitly; registers start unnamed."""
    make = ssa.MakeSlice(type=Slice(INT), len=ssa.Const(4, INT))
    assert make.name == ""
    assert make.cap is None
    assert make.operands() == [make.len]
    with pytest.raises(TypeError):
        ssa.MakeSlice(type=Slice(INT))

    fn = ssa.Function(name="f", signature=Signature())
    assert fn.type is fn.signature
    with pytest.raises(TypeError):
        ssa.Function(name="f")
