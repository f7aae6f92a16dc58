from __future__ import annotations

import io
import textwrap
from pathlib import Path

import pytest

from dne import ast
from dne.diagnostics import ParseError, ResolutionError, StructuralError, TypeResolutionError
from dne.importer import Importer, resolve_types
from dne.instrument import insertion_index, instrument_program
from dne.loader import BuildContext, load_program, read_header
from dne.parser import parse_expr, parse_file
from dne.pins import find_binding
from dne.span import FileSet

from conftest import write_tree


def _parse(source: str) -> ast.File:
    return parse_file(FileSet(), "x.go", textwrap.dedent(source).lstrip("\n"))


def _func_body(f: ast.File, name: str) -> ast.BlockStmt:
    for decl in f.decls:
        if isinstance(decl, ast.FuncDecl) and decl.name.name == name:
            return decl.body
    raise AssertionError(f"no func {name}")


# --- parser ----------------------------------------------------------------


def test_parse_collects_comment_groups() -> None:
    f = _parse(
        """
        package main

        func main() {
            // dne: x
            // trailing note
            x := 1

            // separate
            x = 2
        }
        """
    )
    texts = [group.text() for group in f.comments]
    assert texts[0].startswith("dne: x")
    assert len(f.comments) == 2


def test_parse_error_carries_location() -> None:
    with pytest.raises(ParseError) as excinfo:
        _parse(
            """
            package main

            func main() {
                x := := 1
            }
            """
        )
    assert excinfo.value.filename == "x.go"
    assert excinfo.value.line == 4


def test_parse_expr_positions_are_offset() -> None:
    expr = parse_expr("buf[2]", 100)
    assert isinstance(expr, ast.IndexExpr)
    assert expr.pos == 100
    assert expr.x.pos == 100
    assert expr.index.pos == 104


def test_read_header_skips_comments() -> None:
    name, imports = read_header(
        textwrap.dedent(
            """
            // Package doc mentioning import "fake"
            package app

            import (
                "lib"
                /* "hidden" */
                "util/strs"
            )
            import "other"
            """
        )
    )
    assert name == "app"
    assert imports == ["lib", "util/strs", "other"]


# --- loader ----------------------------------------------------------------


def test_closure_includes_transitive_imports(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": 'package main\n\nimport "mid"\n\nfunc main() { mid.F() }\n',
            "mid/mid.go": 'package mid\n\nimport "leaf"\n\nfunc F() { leaf.G() }\n',
            "leaf/leaf.go": "package leaf\n\nfunc G() {}\n",
        },
    )
    program = load_program(["app"], BuildContext([tmp_path]))
    # Dependencies come before the modules importing them.
    assert list(program.modules) == ["leaf", "mid", "app"]


def test_missing_import_is_resolution_error(tmp_path: Path) -> None:
    write_tree(tmp_path, {"app/main.go": 'package main\n\nimport "gone"\n\nfunc main() { gone.F() }\n'})
    with pytest.raises(ResolutionError, match="couldn't import gone"):
        load_program(["app"], BuildContext([tmp_path]))


def test_mixed_package_names_rejected(tmp_path: Path) -> None:
    write_tree(tmp_path, {"lib/a.go": "package a\n", "lib/b.go": "package b\n"})
    with pytest.raises(ResolutionError, match="found packages a"):
        load_program(["lib"], BuildContext([tmp_path]))


def test_later_roots_are_searched(tmp_path: Path) -> None:
    first, second = tmp_path / "one", tmp_path / "two"
    first.mkdir()
    write_tree(second, {"lib/lib.go": "package lib\n"})
    program = load_program(["lib"], BuildContext([first, second]))
    assert program.module("lib").build.dir == second / "lib"


def test_annotations_are_scanned(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": """
                package main

                // ordinary comment
                func main() {
                    a := make([]int, 1)
                    // dne: a
                    a[0] = 1
                }
            """,
        },
    )
    program = load_program(["app"], BuildContext([tmp_path]))
    [ann] = program.module("app").annotations
    assert ann.expr_source() == "a"
    assert program.fset.position(ann.expr_pos()).column == 13


def test_annotation_source_has_no_trailing_newline(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": """
                package main

                func main() {
                    a := make([]int, 2)
                    a[0] = 1 // dne: a[1:]
                    a[1] = 2
                    // dne: a
                }
            """,
        },
    )
    program = load_program(["app"], BuildContext([tmp_path]))
    sources = [ann.expr_source() for ann in program.module("app").annotations]
    assert sources == ["a[1:]", "a"]
    assert len(instrument_program(program)) == 2


# --- importer --------------------------------------------------------------


DIAMOND = {
    "app/main.go": """
        package main

        import (
            "left"
            "right"
        )

        func main() {
            left.L()
            right.R()
        }
    """,
    "left/left.go": 'package left\n\nimport "base"\n\nfunc L() { base.B() }\n',
    "right/right.go": 'package right\n\nimport "base"\n\nfunc R() { base.B() }\n',
    "base/base.go": "package base\n\nfunc B() {}\n",
}


def test_each_module_checked_once(tmp_path: Path) -> None:
    write_tree(tmp_path, DIAMOND)
    program = load_program(["app"], BuildContext([tmp_path]))
    out = io.StringIO()
    importer = resolve_types(program, ["app"], out=out)
    assert importer.check_counts == {"app": 1, "left": 1, "base": 1, "right": 1}
    assert out.getvalue().splitlines() == ["app", "left", "base", "right"]
    assert list(importer.packages) == ["base", "left", "right", "app"]


def test_repeated_import_returns_same_package(tmp_path: Path) -> None:
    write_tree(tmp_path, DIAMOND)
    program = load_program(["app"], BuildContext([tmp_path]))
    importer = Importer(program, out=io.StringIO())
    first = importer.import_module("base")
    assert importer.import_module("base") is first
    assert importer("base") is first
    assert importer.check_counts["base"] == 1
    assert program.module("base").types is first


def test_import_cycle(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "a/a.go": 'package a\n\nimport "b"\n\nfunc A() { b.B() }\n',
            "b/b.go": 'package b\n\nimport "a"\n\nfunc B() { a.A() }\n',
        },
    )
    program = load_program(["a"], BuildContext([tmp_path]))
    with pytest.raises(TypeResolutionError, match="import cycle not allowed"):
        resolve_types(program, ["a"], out=io.StringIO())


def test_failure_is_recorded_on_module(tmp_path: Path) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": 'package main\n\nimport "lib"\n\nfunc main() { lib.F() }\n',
            "lib/lib.go": "package lib\n\nfunc F() { undefinedCall() }\n",
        },
    )
    program = load_program(["app"], BuildContext([tmp_path]))
    with pytest.raises(TypeResolutionError, match="could not import lib"):
        resolve_types(program, ["app"], out=io.StringIO())
    assert program.module("lib").err is not None
    assert "undefined: undefinedCall" in program.module("lib").err.message


# --- instrumentation -------------------------------------------------------


def _load(tmp_path: Path, source: str):
    write_tree(tmp_path, {"app/main.go": source})
    return load_program(["app"], BuildContext([tmp_path]))


def test_pin_call_inserted_before_next_statement(tmp_path: Path) -> None:
    program = _load(
        tmp_path,
        """
        package main

        func main() {
            buf := make([]byte, 4)
            // dne: buf
            buf[0] = 1
        }
        """,
    )
    module = program.module("app")
    original = module.files[0]
    before = list(_func_body(original, "main").stmts)
    [cand] = instrument_program(program)

    instrumented = module.files[0]
    stmts = _func_body(instrumented, "main").stmts
    assert len(stmts) == len(before) + 1
    assert ast.is_synthetic(stmts[1])
    assert stmts[1].x.fun is cand.funclit
    assert stmts[1].x.args == [cand.expr]
    assert instrumented.version == original.version + 1
    # The parsed tree is left as it was.
    assert _func_body(original, "main").stmts == before
    assert cand.block is _func_body(instrumented, "main")
    assert cand.enclosing_function() is instrumented.decls[0]


def test_annotation_at_end_of_block_appends(tmp_path: Path) -> None:
    program = _load(
        tmp_path,
        """
        package main

        func main() {
            buf := make([]byte, 4)
            buf[0] = 1
            // dne: buf
        }
        """,
    )
    instrument_program(program)
    stmts = _func_body(program.module("app").files[0], "main").stmts
    assert ast.is_synthetic(stmts[-1])


def test_two_annotations_bump_version_twice(tmp_path: Path) -> None:
    program = _load(
        tmp_path,
        """
        package main

        func main() {
            a := make([]byte, 4)
            // dne: a
            b := make([]byte, 4)
            // dne: b
            b[0] = a[0]
        }
        """,
    )
    cands = instrument_program(program)
    f = program.module("app").files[0]
    assert f.version == 2
    assert [c.block is _func_body(f, "main") for c in cands] == [True, True]
    kinds = [ast.is_synthetic(s) for s in _func_body(f, "main").stmts]
    assert kinds == [False, True, False, True, False]


def test_annotation_outside_block(tmp_path: Path) -> None:
    program = _load(tmp_path, "package main\n\n// dne: x\nvar x int\n\nfunc main() {}\n")
    with pytest.raises(StructuralError, match="comment is outside function"):
        instrument_program(program)


def test_annotation_that_does_not_parse(tmp_path: Path) -> None:
    program = _load(tmp_path, "package main\n\nfunc main() {\n\t// dne: a +\n}\n")
    with pytest.raises(ParseError, match="couldn't parse expression"):
        instrument_program(program)


def test_insertion_index_skips_synthetic_statements() -> None:
    f = _parse(
        """
        package main

        func main() {
            a := 1
            a = 2
        }
        """
    )
    body = _func_body(f, "main")
    assert insertion_index(body, body.stmts[1].pos) == 1
    assert insertion_index(body, body.stmts[1].pos + 1) == 2
    assert insertion_index(body, 1) == 0


# --- pin binding -----------------------------------------------------------


def test_find_binding_prefers_latest() -> None:
    f = _parse(
        """
        package main

        func main() {
            x := 1
            y := x
            x = y
            z := 3
        }
        """
    )
    body = _func_body(f, "main")
    end = body.stmts[-1].pos - 1
    ident = find_binding(body, "x", end)
    assert ident is body.stmts[2].lhs[0]
    assert find_binding(body, "z", end) is None
    assert find_binding(body, "x", body.stmts[0].pos - 1) is None
