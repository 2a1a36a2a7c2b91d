"""Locate a type by name: loaded class if possible, declaring source otherwise."""

import ast
import builtins
import importlib
import inspect
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from api_schema_infer.errors import ParseFailure, TypeResolutionFailure
from api_schema_infer.source.syntax import SourceCache, find_class, import_map


@dataclass(frozen=True)
class ResolvedType:
    """A type found either at runtime (``obj``) or only in source (``node``)."""

    name: str
    identifier: str
    obj: type | None = None
    source_file: Path | None = None
    node: ast.ClassDef | None = None


def import_dotted(path: str) -> Any:
    """Import ``pkg.mod.Attr.Nested``; None when no prefix is importable."""
    parts = path.split(".")
    for cut in range(len(parts), 0, -1):
        module_name = ".".join(parts[:cut])
        try:
            obj = importlib.import_module(module_name)
        except ImportError:
            continue
        except Exception as e:
            # importing application code may fail in arbitrary ways
            logger.debug("import of {} failed: {!r}", module_name, e)
            return None
        for attr in parts[cut:]:
            obj = getattr(obj, attr, None)
            if obj is None:
                return None
        return obj
    return None


def source_file_of(obj: type) -> Path | None:
    try:
        path = inspect.getsourcefile(obj)
    except TypeError:
        return None
    return Path(path).resolve() if path else None


class TypeResolver:
    """Resolve type references relative to one source file.

    Lookup order: the handler module namespace (when loaded), the origin
    file's imports, a dotted import path, builtins, and finally class
    declarations in the origin file or the cache's source roots.
    """

    def __init__(
        self,
        sources: SourceCache,
        origin_file: Path | None = None,
        namespace: Mapping[str, Any] | None = None,
    ):
        self.sources = sources
        self.origin_file = Path(origin_file).resolve() if origin_file else None
        self.namespace = dict(namespace or {})
        self._imports: dict[str, str] | None = None

    def scoped(self, origin_file: Path | None, namespace: Mapping[str, Any] | None = None) -> "TypeResolver":
        if origin_file is not None and self.origin_file == Path(origin_file).resolve() and namespace is None:
            return self
        return TypeResolver(self.sources, origin_file, namespace)

    def scoped_to(self, resolved: ResolvedType) -> "TypeResolver":
        """Resolver for names appearing inside ``resolved``'s declaration."""
        namespace = None
        if resolved.obj is not None:
            module = sys.modules.get(resolved.obj.__module__)
            namespace = vars(module) if module is not None else None
        return self.scoped(resolved.source_file or self.origin_file, namespace)

    def imports(self) -> dict[str, str]:
        if self._imports is None:
            self._imports = {}
            if self.origin_file is not None:
                try:
                    self._imports = import_map(self.sources.parse(self.origin_file))
                except ParseFailure as e:
                    logger.debug("no imports for {}: {}", self.origin_file, e)
        return self._imports

    def resolve(self, ref: str | type) -> ResolvedType:
        if isinstance(ref, type):
            return self.from_object(ref)
        name = ref.strip().strip("'\"")
        if not name:
            raise TypeResolutionFailure(ref, "empty name")
        obj = self._runtime_lookup(name)
        if isinstance(obj, type):
            return self.from_object(obj)
        short = name.rpartition(".")[2]
        located = self.sources.locate_class(short, self.origin_file)
        if located is not None:
            path, node = located
            return ResolvedType(name=node.name, identifier=f"{path}:{node.name}", source_file=path, node=node)
        raise TypeResolutionFailure(name)

    def from_object(self, obj: type) -> ResolvedType:
        return ResolvedType(
            name=obj.__name__,
            identifier=f"{obj.__module__}.{obj.__qualname__}",
            obj=obj,
            source_file=source_file_of(obj),
        )

    def class_node(self, resolved: ResolvedType) -> ast.ClassDef | None:
        """Syntax node of a resolved type, parsing its file when needed."""
        if resolved.node is not None:
            return resolved.node
        if resolved.source_file is None:
            return None
        try:
            tree = self.sources.parse(resolved.source_file)
        except ParseFailure as e:
            logger.debug("cannot read source of {}: {}", resolved.identifier, e)
            return None
        return find_class(tree, resolved.name)

    def _runtime_lookup(self, name: str) -> Any:
        head, _, rest = name.partition(".")
        if head in self.namespace:
            obj = self.namespace[head]
            for attr in rest.split(".") if rest else []:
                obj = getattr(obj, attr, None)
            return obj
        imports = self.imports()
        if head in imports:
            return import_dotted(imports[head] + (f".{rest}" if rest else ""))
        if rest:
            return import_dotted(name)
        return getattr(builtins, name, None)
