"""
Type Resolution Bootstrap.

Type-checks modules on demand: checking a module asks the importer for each of
its imports, which checks those first. Results and failures are memoized per
module, so each module is checked at most once per run.
"""

from __future__ import annotations

import sys
from typing import Callable, Dict, Iterable, List, Optional, TextIO

from .checker import Checker, CheckError
from .diagnostics import TypeResolutionError
from .loader import PSEUDO_MODULES, Program
from .types import UNSAFE, Info, TypesPackage


class ImportCycleError(CheckError):
    pass


class Importer:
    def __init__(
        self,
        program: Program,
        out: Optional[TextIO] = None,
        checker_factory: Callable[[Callable[[str], TypesPackage]], Checker] = Checker,
    ) -> None:
        self.program = program
        self.out = out if out is not None else sys.stdout
        self.checker_factory = checker_factory
        self.packages: Dict[str, TypesPackage] = {}
        self.errors: Dict[str, CheckError] = {}
        self.in_progress: List[str] = []
        # Number of times each module was actually type-checked.
        self.check_counts: Dict[str, int] = {}

    def import_module(self, path: str) -> TypesPackage:
        if path in PSEUDO_MODULES:
            return UNSAFE
        if path in self.packages:
            return self.packages[path]
        if path in self.errors:
            raise self.errors[path]
        if path in self.in_progress:
            cycle = self.in_progress[self.in_progress.index(path) :] + [path]
            raise ImportCycleError("import cycle not allowed: " + " -> ".join(cycle))
        module = self.program.modules.get(path)
        if module is None:
            raise CheckError(f"module {path} is not part of the loaded program")
        print(path, file=self.out)
        self.in_progress.append(path)
        try:
            info = Info()
            checker = self.checker_factory(self.import_module)
            self.check_counts[path] = self.check_counts.get(path, 0) + 1
            pkg, info = checker.check(path, module.files, info)
        except CheckError as exc:
            module.err = exc
            self.errors[path] = exc
            raise
        finally:
            self.in_progress.pop()
        module.types = pkg
        module.info = info
        self.packages[path] = pkg
        return pkg

    __call__ = import_module


def resolve_types(program: Program, entry_paths: Iterable[str], out: Optional[TextIO] = None) -> Importer:
    """Check the entry modules; their imports are pulled in transitively."""
    importer = Importer(program, out=out)
    for path in entry_paths:
        try:
            importer.import_module(path)
        except CheckError as exc:
            raise TypeResolutionError(exc.message, pos=exc.pos) from exc
    return importer


__all__ = ["Importer", "ImportCycleError", "resolve_types"]
