"""Syntax-tree access to application source files.

``SourceCache`` parses each file at most once per build and can be shared by
worker threads. The helpers below it are pure functions over ``ast`` trees.
"""

import ast
import threading
from pathlib import Path

from loguru import logger

from api_schema_infer.errors import ParseFailure

FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


def parse_text(text: str, filename: str = "<string>") -> ast.Module:
    """Parse source text, raising ``ParseFailure`` instead of ``SyntaxError``."""
    try:
        return ast.parse(text, filename=filename)
    except (SyntaxError, ValueError) as e:
        raise ParseFailure(filename, str(e)) from e


class SourceCache:
    """Per-build memo of parsed trees and of where classes are declared."""

    def __init__(self, roots: list[Path] | None = None):
        self.roots = [Path(r) for r in roots or []]
        self._trees: dict[Path, ast.Module] = {}
        self._class_index: dict[str, list[Path]] | None = None
        self._lock = threading.Lock()

    def parse(self, path: Path | str) -> ast.Module:
        path = Path(path).resolve()
        with self._lock:
            tree = self._trees.get(path)
        if tree is not None:
            return tree
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseFailure(str(path), str(e)) from e
        tree = parse_text(text, filename=str(path))
        with self._lock:
            self._trees.setdefault(path, tree)
        return tree

    def locate_class(self, name: str, preferred: Path | None = None) -> tuple[Path, ast.ClassDef] | None:
        """Find ``class <name>`` in ``preferred`` first, then under the roots."""
        if preferred is not None:
            try:
                node = find_class(self.parse(preferred), name)
            except ParseFailure:
                node = None
            if node is not None:
                return Path(preferred).resolve(), node
        for path in self._index().get(name, []):
            try:
                node = find_class(self.parse(path), name)
            except ParseFailure as e:
                logger.debug("skipping {}: {}", path, e)
                continue
            if node is not None:
                return path, node
        return None

    def _index(self) -> dict[str, list[Path]]:
        with self._lock:
            if self._class_index is not None:
                return self._class_index
        index: dict[str, list[Path]] = {}
        for root in self.roots:
            if not root.is_dir():
                logger.warning("source root {} is not a directory", root)
                continue
            for path in sorted(root.rglob("*.py")):
                try:
                    tree = self.parse(path)
                except ParseFailure as e:
                    logger.debug("skipping {}: {}", path, e)
                    continue
                for node in ast.walk(tree):
                    if isinstance(node, ast.ClassDef):
                        index.setdefault(node.name, []).append(path.resolve())
        with self._lock:
            self._class_index = index
        return index


def find_class(tree: ast.AST, name: str) -> ast.ClassDef | None:
    for node in ast.walk(tree):
        if isinstance(node, ast.ClassDef) and node.name == name:
            return node
    return None


def find_function(tree: ast.AST, name: str, class_name: str | None = None) -> FunctionNode | None:
    """Find a function by name, optionally only as a method of ``class_name``."""
    scope = tree
    if class_name is not None:
        scope = find_class(tree, class_name)
        if scope is None:
            return None
        for node in scope.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == name:
                return node
        return None
    for node in ast.walk(scope):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == name:
            return node
    return None


def import_map(tree: ast.Module) -> dict[str, str]:
    """Map local names to the dotted paths they were imported from."""
    names: dict[str, str] = {}
    for node in tree.body:
        if isinstance(node, ast.Import):
            for alias in node.names:
                local = alias.asname or alias.name.split(".")[0]
                names[local] = alias.name if alias.asname else alias.name.split(".")[0]
        elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
            for alias in node.names:
                if alias.name != "*":
                    names[alias.asname or alias.name] = f"{node.module}.{alias.name}"
    return names


def int_constants(body: list[ast.stmt]) -> dict[str, int]:
    """Integer constants assigned at the top of a module or class body."""
    constants: dict[str, int] = {}
    for node in body:
        if isinstance(node, ast.Assign):
            targets, value = node.targets, node.value
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            targets, value = [node.target], node.value
        else:
            continue
        if not (isinstance(value, ast.Constant) and type(value.value) is int):
            continue
        for target in targets:
            if isinstance(target, ast.Name):
                constants[target.id] = value.value
    return constants


def dotted_name(node: ast.AST) -> str | None:
    """``a.b.C`` for Name/Attribute chains, None for anything else."""
    parts = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return ".".join(reversed(parts))


def call_name(node: ast.Call) -> str | None:
    """Last segment of the called name: ``foo`` for ``a.b.foo(...)``."""
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def call_argument(node: ast.Call, position: int, keywords: tuple[str, ...] = ()) -> ast.expr | None:
    """Positional argument ``position`` or the first matching keyword."""
    if position < len(node.args) and not isinstance(node.args[position], ast.Starred):
        return node.args[position]
    for keyword in node.keywords:
        if keyword.arg in keywords:
            return keyword.value
    return None
