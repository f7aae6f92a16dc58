from __future__ import annotations

from pathlib import Path


def _lines(report):
    """(pin line, store line) for every finding."""
    fset = report.fset
    return sorted((fset.position(f.pin.pos).line, fset.position(f.site.pos).line) for f in report.findings)


def test_direct_store(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    buf := make([]byte, 8)
                    // dne: buf
                    buf[2] = 0
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(5, 6)]
    assert report.unresolved == []


def test_disjoint_slices_do_not_alias(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    a := make([]int, 4)
                    b := make([]int, 4)
                    // dne: a
                    b[0] = 1
                }
            """,
        },
        "app",
    )
    assert report.findings == []


def test_store_through_copy(analyze) -> None:
    """Assigning a slice to another variable shares its backing array."""
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    a := make([]int, 4)
                    // dne: a
                    b := a
                    b[1] = 7
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(5, 7)]


def test_store_in_callee(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func fill(s []int) {
                    s[0] = 1
                }

                func main() {
                    data := make([]int, 3)
                    // dne: data
                    fill(data)
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(9, 4)]


def test_store_in_unreached_function_is_ignored(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func fill(s []int) {
                    s[0] = 1
                }

                func main() {
                    data := make([]int, 3)
                    // dne: data
                    println(len(data))
                }
            """,
        },
        "app",
    )
    assert report.findings == []


def test_store_in_closure(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    buf := make([]byte, 4)
                    // dne: buf
                    f := func() {
                        buf[1] = 0
                    }
                    f()
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(5, 7)]


def test_store_in_other_module(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                import "lib"

                func main() {
                    xs := make([]int, 2)
                    // dne: xs
                    lib.Zero(xs)
                }
            """,
            "lib/lib.go": """
                package lib

                func Zero(xs []int) {
                    for i := range xs {
                        xs[i] = 0
                    }
                }
            """,
        },
        "app",
    )
    assert len(report.findings) == 1
    [finding] = report.findings
    site = report.fset.position(finding.site.pos)
    assert site.filename.endswith("lib.go")
    assert site.line == 5


def test_map_update(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    m := map[string]int{}
                    // dne: m
                    m["k"] = 1
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(5, 6)]


def test_store_through_global(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                var shared []int

                func clobber() {
                    shared[0] = 9
                }

                func main() {
                    local := make([]int, 1)
                    // dne: local
                    shared = local
                    clobber()
                }
            """,
        },
        "app",
    )
    assert _lines(report) == [(11, 6)]


def test_unresolved_pin_is_reported_and_skipped(analyze) -> None:
    """A name bound outside the annotated block does not resolve; other pins still run."""
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    buf := make([]byte, 4)
                    other := make([]byte, 4)
                    if len(buf) > 0 {
                        // dne: buf
                        buf[0] = 1
                    }
                    // dne: other
                    other[0] = 1
                }
            """,
        },
        "app",
    )
    [miss] = report.unresolved
    assert miss.message == "buf not found"
    assert report.fset.position(miss.pos).line == 7
    assert _lines(report) == [(10, 11)]


def test_pin_of_non_identifier_expression(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    rows := make([][]int, 2)
                    rows[0] = make([]int, 2)
                    // dne: rows[0]
                    rows[0][1] = 5
                }
            """,
        },
        "app",
    )
    assert (6, 7) in _lines(report)


def test_most_recent_binding_is_pinned(analyze) -> None:
    report = analyze(
        {
            "app/main.go": """
                package main

                func main() {
                    buf := make([]int, 1)
                    first := buf
                    buf = make([]int, 1)
                    // dne: buf
                    first[0] = 1
                    buf[0] = 2
                }
            """,
        },
        "app",
    )
    # The reassignment is the closest binding, so only the second slice is pinned.
    assert _lines(report) == [(7, 9)]


def test_tests_are_entry_points(analyze, tmp_path: Path) -> None:
    report = analyze(
        {
            "lib/lib.go": """
                package lib

                func Fill(s []int) {
                    s[0] = 1
                }
            """,
            "lib/lib_test.go": """
                package lib

                func TestFill() {
                    s := make([]int, 1)
                    // dne: s
                    Fill(s)
                }
            """,
        },
        "lib",
    )
    assert len(report.findings) == 1
    assert report.fset.position(report.findings[0].pin.pos).filename == str(tmp_path / "lib" / "lib_test.go")
