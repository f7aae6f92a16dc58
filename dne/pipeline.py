"""
End-to-end analysis run.

Every stage runs to completion before the next one starts. Fatal conditions
raise an `AnalysisError` subclass; unresolved pins are reported and skipped.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, TextIO

from . import ssa
from .builder import Builder
from .detector import Finding, detect
from .driver import configure
from .importer import resolve_types
from .instrument import instrument_program
from .loader import BuildContext, Program, load_program
from .pins import UnresolvedPin, resolve_pins
from .span import FileSet
from .ssa_printer import format_program


@dataclass
class AnalysisOptions:
    modules: List[str]
    roots: List[Path] = field(default_factory=lambda: [Path.cwd()])
    dump_ssa: bool = False


@dataclass
class Report:
    fset: FileSet
    # Modules in the order their type resolution completed.
    modules: List[str] = field(default_factory=list)
    unresolved: List[UnresolvedPin] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    program: Optional[ssa.Program] = None


class Analysis:
    def __init__(self, options: AnalysisOptions, out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> None:
        self.options = options
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        # Positions of every loaded file; fatal errors are rendered against it.
        self.fset: Optional[FileSet] = None
        self.program: Optional[Program] = None

    def run(self) -> Report:
        opts = self.options
        self.fset = FileSet()
        program = load_program(opts.modules, BuildContext(opts.roots), self.fset)
        self.program = program
        candidates = instrument_program(program)
        importer = resolve_types(program, opts.modules, out=self.out)

        builder = Builder()
        for module in program.modules.values():
            if module.types is None:
                continue
            builder.create_package(module.types, module.files, module.info)
        builder.build_all()
        if opts.dump_ssa:
            print(format_program(builder.prog), file=self.err)

        report = Report(fset=program.fset, modules=list(importer.packages), program=builder.prog)
        pins, report.unresolved = resolve_pins(builder.prog, candidates)
        for miss in report.unresolved:
            print(f"{program.fset.position(miss.pos)}: {miss.message}", file=self.out)

        config = configure(builder, opts.modules, pins)
        report.findings = detect(config)
        for finding in report.findings:
            print(finding.render(program.fset), file=self.out)
        return report


def run(options: AnalysisOptions, out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> Report:
    return Analysis(options, out=out, err=err).run()


__all__ = ["Analysis", "AnalysisOptions", "Report", "run"]
