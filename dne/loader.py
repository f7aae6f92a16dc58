"""
Dependency resolution and annotation scanning.

Modules are located on disk by import path under a list of module roots. The
closure of the entry modules under the import relation is computed by plain
fixed-point iteration; every file of every module is then parsed once and its
`dne: ` comment groups are collected as annotations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .ast import CommentGroup, File
from .diagnostics import ResolutionError
from .parser import parse_file
from .span import FileSet, Pos
from .types import Info, TypesPackage

ANNOTATION_MARKER = "dne: "

# Pseudo-modules provided by the type checker, never read from disk.
PSEUDO_MODULES = frozenset({"unsafe"})

_COMMENT_RE = re.compile(r"//[^\n]*|/\*.*?\*/", re.S)
_PACKAGE_RE = re.compile(r"\s*package\s+([A-Za-z_][A-Za-z0-9_]*)")
_IMPORT_DECL_RE = re.compile(
    r'[\s;]*import\s*(?:\((?P<group>[^)]*)\)|(?:[A-Za-z_][A-Za-z0-9_]*\s+)?"(?P<single>[^"\n]*)")'
)
_IMPORT_PATH_RE = re.compile(r'"([^"\n]*)"')


@dataclass
class BuildPackage:
    """Build metadata of one module directory."""

    import_path: str
    dir: Path
    name: str
    files: List[str]
    imports: List[str]


def read_header(source: str) -> Tuple[Optional[str], List[str]]:
    """Package name and import paths of a file, read without a full parse."""
    text = _COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n") or " ", source)
    match = _PACKAGE_RE.match(text)
    if match is None:
        return None, []
    imports: List[str] = []
    offset = match.end()
    while True:
        decl = _IMPORT_DECL_RE.match(text, offset)
        if decl is None:
            break
        if decl.group("group") is not None:
            imports.extend(_IMPORT_PATH_RE.findall(decl.group("group")))
        else:
            imports.append(decl.group("single"))
        offset = decl.end()
    return match.group(1), imports


class BuildContext:
    """Locates modules under an ordered list of roots."""

    def __init__(self, roots: Sequence[Path]) -> None:
        self.roots = [Path(root) for root in roots]

    def import_module(self, path: str) -> BuildPackage:
        if not path or path.startswith(("/", ".")) or "\\" in path:
            raise ResolutionError(f"couldn't import {path}: invalid module path")
        searched: List[str] = []
        for root in self.roots:
            directory = root.joinpath(*path.split("/"))
            searched.append(str(directory))
            if not directory.is_dir():
                continue
            files = sorted(p.name for p in directory.iterdir() if p.is_file() and p.suffix == ".go")
            if not files:
                continue
            return self._read_package(path, directory, files)
        where = ", ".join(searched) or "<no module roots>"
        raise ResolutionError(f"couldn't import {path}: cannot find module (searched {where})")

    def _read_package(self, path: str, directory: Path, files: List[str]) -> BuildPackage:
        name: Optional[str] = None
        name_file = ""
        imports: List[str] = []
        for filename in files:
            source = (directory / filename).read_text()
            pkg_name, file_imports = read_header(source)
            if pkg_name is None:
                raise ResolutionError(f"couldn't import {path}: {directory / filename}: expected 'package' clause")
            if name is None:
                name, name_file = pkg_name, filename
            elif pkg_name != name:
                raise ResolutionError(
                    f"couldn't import {path}: found packages {name} ({name_file}) and {pkg_name} ({filename}) in {directory}"
                )
            for imp in file_imports:
                if imp not in imports:
                    imports.append(imp)
        return BuildPackage(import_path=path, dir=directory, name=name or "", files=files, imports=imports)


@dataclass
class Annotation:
    file: File
    comment: CommentGroup

    @property
    def pos(self) -> Pos:
        return self.comment.pos

    @property
    def end(self) -> Pos:
        return self.comment.end

    def expr_source(self) -> str:
        """Annotation expression text; the trailing newline of the comment text is dropped."""
        return self.comment.text()[len(ANNOTATION_MARKER) :].rstrip("\n")

    def expr_pos(self) -> Pos:
        """Position of the first character after the marker inside the comment."""
        for c in self.comment.comments:
            idx = c.text.find(ANNOTATION_MARKER)
            if idx >= 0:
                return c.pos + idx + len(ANNOTATION_MARKER)
        return self.comment.pos


@dataclass
class Module:
    path: str
    build: BuildPackage
    files: List[File] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)
    types: Optional[TypesPackage] = None
    info: Optional[Info] = None
    err: Optional[Exception] = None

    @property
    def name(self) -> str:
        return self.build.name


@dataclass
class Program:
    fset: FileSet
    # Dependencies precede their importers.
    modules: Dict[str, Module]
    entry_paths: List[str]

    def module(self, path: str) -> Module:
        return self.modules[path]

    def annotated_modules(self) -> List[Module]:
        return [m for m in self.modules.values() if m.annotations]


def resolve_closure(entry_paths: Iterable[str], ctx: BuildContext) -> Dict[str, BuildPackage]:
    """Transitive closure of `entry_paths` under imports (pseudo-modules excluded)."""
    pkgs: Dict[str, BuildPackage] = {}
    for path in entry_paths:
        if path in PSEUDO_MODULES or path in pkgs:
            continue
        pkgs[path] = ctx.import_module(path)
    while True:
        added = False
        for pkg in list(pkgs.values()):
            for imp in pkg.imports:
                if imp in pkgs or imp in PSEUDO_MODULES:
                    continue
                pkgs[imp] = ctx.import_module(imp)
                added = True
        if not added:
            break
    return pkgs


def dependency_order(pkgs: Dict[str, BuildPackage], roots: Iterable[str]) -> List[str]:
    """Post-order over imports: every module after the modules it imports."""
    order: List[str] = []
    visited: set = set()

    def visit(path: str) -> None:
        if path in visited or path not in pkgs:
            return
        visited.add(path)
        for imp in pkgs[path].imports:
            visit(imp)
        order.append(path)

    for path in roots:
        visit(path)
    for path in sorted(pkgs):
        visit(path)
    return order


def scan_annotations(f: File) -> List[Annotation]:
    return [Annotation(file=f, comment=group) for group in f.comments if group.text().startswith(ANNOTATION_MARKER)]


def load_program(entry_paths: Sequence[str], ctx: BuildContext, fset: Optional[FileSet] = None) -> Program:
    if not entry_paths:
        raise ResolutionError("no modules given")
    pkgs = resolve_closure(entry_paths, ctx)
    if fset is None:
        fset = FileSet()
    modules: Dict[str, Module] = {}
    for path in dependency_order(pkgs, entry_paths):
        build = pkgs[path]
        module = Module(path=path, build=build)
        for filename in build.files:
            full = build.dir / filename
            f = parse_file(fset, str(full), full.read_text())
            module.files.append(f)
            module.annotations.extend(scan_annotations(f))
        modules[path] = module
    return Program(fset=fset, modules=modules, entry_paths=list(entry_paths))


__all__ = [
    "ANNOTATION_MARKER",
    "PSEUDO_MODULES",
    "Annotation",
    "BuildContext",
    "BuildPackage",
    "Module",
    "Program",
    "dependency_order",
    "load_program",
    "read_header",
    "resolve_closure",
    "scan_annotations",
]
