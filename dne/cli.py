#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from .diagnostics import AnalysisError
from .pipeline import Analysis, AnalysisOptions

ENV_PATH = "DNE_PATH"


def _default_roots() -> List[Path]:
    value = os.environ.get(ENV_PATH, "")
    roots = [Path(p) for p in value.split(os.pathsep) if p]
    return roots or [Path.cwd()]


def main(argv: Optional[List[str]] = None) -> int:
    """
    Analyze the given modules and print every store that may overwrite a pinned value.

    With --json, prints one JSON document (exit_code/modules/diagnostics/findings)
    to stdout and progress lines to stderr.
    """
    ap = argparse.ArgumentParser(prog="dne", description="dne: find stores that may overwrite `// dne:` pinned values")
    ap.add_argument("modules", nargs="+", help="Entry module import path(s)")
    ap.add_argument(
        "-M",
        "--module-path",
        dest="module_paths",
        action="append",
        type=Path,
        help=f"Module root directory (repeatable); defaults to ${ENV_PATH} or the current directory",
    )
    ap.add_argument("--dump-ssa", action="store_true", help="Print the SSA form of every built function to stderr")
    ap.add_argument("--json", action="store_true", help="Emit a single JSON report on stdout")
    args = ap.parse_args(argv)

    options = AnalysisOptions(
        modules=list(args.modules),
        roots=args.module_paths or _default_roots(),
        dump_ssa=args.dump_ssa,
    )
    analysis = Analysis(options, out=sys.stderr if args.json else sys.stdout, err=sys.stderr)
    try:
        report = analysis.run()
    except AnalysisError as exc:
        if args.json:
            diag = exc.to_diagnostic(analysis.fset)
            print(json.dumps({"exit_code": 1, "modules": [], "diagnostics": [diag.to_json()], "findings": []}))
        else:
            print(f"error: {exc.render(analysis.fset)}", file=sys.stderr)
        return 1

    if args.json:
        diagnostics = [miss.to_diagnostic(report.fset).to_json() for miss in report.unresolved]
        findings = [f.to_diagnostic(report.fset).to_json() for f in report.findings]
        print(
            json.dumps(
                {"exit_code": 0, "modules": report.modules, "diagnostics": diagnostics, "findings": findings},
                indent=2,
            )
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
