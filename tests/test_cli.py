from __future__ import annotations

import json
from pathlib import Path

from dne import cli

from conftest import write_tree

APP = {
    "app/main.go": """
        package main

        import "lib"

        func main() {
            buf := make([]byte, lib.Size())
            // dne: buf
            buf[2] = 0
        }
    """,
    "lib/lib.go": """
        package lib

        func Size() int { return 10 }
    """,
}


def test_reports_store_through_pinned_slice(tmp_path: Path, capsys) -> None:
    """A write into the pinned buffer prints one `Store detected` line."""
    write_tree(tmp_path, APP)
    exit_code = cli.main(["-M", str(tmp_path), "app"])
    out = capsys.readouterr().out.splitlines()
    main_go = tmp_path / "app" / "main.go"
    assert exit_code == 0
    assert f"{main_go}:7:5: Store detected: {main_go}:8:5" in out
    assert [line for line in out if "Store detected" in line] == [f"{main_go}:7:5: Store detected: {main_go}:8:5"]


def test_prints_each_module_once(tmp_path: Path, capsys) -> None:
    write_tree(tmp_path, APP)
    assert cli.main(["-M", str(tmp_path), "app"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out.count("app") == 1
    assert out.count("lib") == 1
    # The entry module starts resolving before its import does.
    assert out.index("app") < out.index("lib")


def test_module_roots_from_environment(tmp_path: Path, capsys, monkeypatch) -> None:
    write_tree(tmp_path, APP)
    monkeypatch.setenv(cli.ENV_PATH, str(tmp_path))
    assert cli.main(["app"]) == 0
    assert "Store detected" in capsys.readouterr().out


def test_no_entry_points_is_fatal(tmp_path: Path, capsys) -> None:
    """A scope with neither `main` nor tests cannot be analyzed."""
    write_tree(
        tmp_path,
        {
            "lib/lib.go": """
                package lib

                func Fill(s []int) {
                    // dne: s
                    s[0] = 1
                }
            """,
        },
    )
    assert cli.main(["-M", str(tmp_path), "lib"]) == 1
    err = capsys.readouterr().err
    assert "error: analysis scope has no main and no tests" in err


def test_missing_module_is_fatal(tmp_path: Path, capsys) -> None:
    assert cli.main(["-M", str(tmp_path), "nowhere"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("error: couldn't import nowhere")


def test_annotation_outside_function_is_fatal(tmp_path: Path, capsys) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": """
                package main

                // dne: x
                var x int

                func main() {}
            """,
        },
    )
    assert cli.main(["-M", str(tmp_path), "app"]) == 1
    err = capsys.readouterr().err
    assert f"error: {tmp_path / 'app' / 'main.go'}:3:1: comment is outside function" in err


def test_unparsable_annotation_is_fatal(tmp_path: Path, capsys) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": """
                package main

                func main() {
                    buf := make([]byte, 4)
                    // dne: buf[
                    buf[0] = 1
                }
            """,
        },
    )
    assert cli.main(["-M", str(tmp_path), "app"]) == 1
    assert "couldn't parse expression 'buf['" in capsys.readouterr().err


def test_type_error_is_fatal(tmp_path: Path, capsys) -> None:
    write_tree(
        tmp_path,
        {
            "app/main.go": """
                package main

                func main() {
                    x := missing
                    x = 1
                }
            """,
        },
    )
    assert cli.main(["-M", str(tmp_path), "app"]) == 1
    assert "undefined: missing" in capsys.readouterr().err


def test_json_report(tmp_path: Path, capsys) -> None:
    write_tree(tmp_path, APP)
    assert cli.main(["-M", str(tmp_path), "app", "--json"]) == 0
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert payload["exit_code"] == 0
    assert payload["modules"] == ["lib", "app"]
    assert payload["diagnostics"] == []
    [finding] = payload["findings"]
    assert finding["message"] == "Store detected"
    assert finding["file"] == str(tmp_path / "app" / "main.go")
    assert finding["line"] == 8
    assert finding["notes"] == [f"pinned at {tmp_path / 'app' / 'main.go'}:7:5"]
    # Progress lines go to stderr so stdout stays a single document.
    assert "app" in captured.err.splitlines()


def test_json_reports_fatal_error(tmp_path: Path, capsys) -> None:
    assert cli.main(["-M", str(tmp_path), "nowhere", "--json"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["exit_code"] == 1
    [diag] = payload["diagnostics"]
    assert diag["phase"] == "resolve"
    assert diag["severity"] == "error"


def test_dump_ssa(tmp_path: Path, capsys) -> None:
    write_tree(tmp_path, APP)
    assert cli.main(["-M", str(tmp_path), "app", "--dump-ssa"]) == 0
    err = capsys.readouterr().err
    assert "func app.main()" in err
    assert "func lib.Size()" in err
