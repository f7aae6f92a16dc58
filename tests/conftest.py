from __future__ import annotations

import io
import textwrap
from pathlib import Path
from typing import Callable, Dict

import pytest

from dne.builder import Builder
from dne.importer import resolve_types
from dne.instrument import instrument_program
from dne.loader import BuildContext, load_program
from dne.pipeline import AnalysisOptions, Report, run


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    """Write `{"mod/path/file.go": source}` under `root`; sources are dedented."""
    for rel, source in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip("\n"))
    return root


@pytest.fixture
def module_tree(tmp_path: Path) -> Callable[[Dict[str, str]], Path]:
    def write(files: Dict[str, str]) -> Path:
        return write_tree(tmp_path, files)

    return write


@pytest.fixture
def analyze(module_tree) -> Callable[..., Report]:
    """Run the whole pipeline over a module tree; progress output is discarded."""

    def _analyze(files: Dict[str, str], *modules: str) -> Report:
        root = module_tree(files)
        return run(AnalysisOptions(modules=list(modules), roots=[root]), out=io.StringIO(), err=io.StringIO())

    return _analyze


@pytest.fixture
def build_ssa(module_tree) -> Callable[..., Builder]:
    """Load, instrument, type-check and build SSA for the given modules."""

    def _build(files: Dict[str, str], *modules: str) -> Builder:
        root = module_tree(files)
        program = load_program(list(modules), BuildContext([root]))
        instrument_program(program)
        resolve_types(program, modules, out=io.StringIO())
        builder = Builder()
        for module in program.modules.values():
            builder.create_package(module.types, module.files, module.info)
        builder.build_all()
        return builder

    return _build
