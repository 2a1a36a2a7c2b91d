"""Recursive object-schema builder for DTO and resource types."""

import ast
import enum
import types
import typing
from typing import Any

from loguru import logger
from pydantic.alias_generators import to_camel, to_pascal, to_snake

from api_schema_infer.config import InferenceConfig
from api_schema_infer.dto.introspect import (
    FallbackIntrospector,
    FieldInfo,
    RuntimeIntrospector,
    SourceIntrospector,
    TypeIntrospector,
    TypeShape,
)
from api_schema_infer.dto.resolver import ResolvedType, TypeResolver
from api_schema_infer.errors import ParseFailure, TypeResolutionFailure
from api_schema_infer.schema.base import FieldAnnotation, SchemaFragment
from api_schema_infer.schema.merge import apply_annotation
from api_schema_infer.source.syntax import dotted_name, parse_text

NAMING = {
    "camel": to_camel,
    "snake": to_snake,
    "pascal": to_pascal,
    "kebab": lambda name: to_snake(name).replace("_", "-"),
}

LITERAL_TYPES = {bool: "boolean", int: "integer", float: "number", str: "string"}


def rename(name: str, naming: str | None) -> str:
    """Apply a naming convention (``camel``, ``snake``, ``pascal``, ``kebab``)."""
    if not naming:
        return name
    transform = NAMING.get(naming.lower())
    if transform is None:
        logger.debug("unknown naming convention {!r}", naming)
        return name
    return transform(name)


def _enum_fragment(values: list[Any]) -> SchemaFragment:
    type_ = LITERAL_TYPES.get(type(values[0]), "string") if values else "string"
    return SchemaFragment.primitive(type_, enum=values, example=values[0] if values else None)


def _short(name: str) -> str:
    return name.rpartition(".")[2]


class ResourceSchemaBuilder:
    """Build object fragments from declared fields, recursing into nested types.

    ``visited`` holds the type identifiers on the current path from the
    top-level ``build`` down to the field being built; a type already on
    the path yields ``None`` and the property that referenced it is omitted.
    Each field recurses with its own copy, so sibling fields may repeat a type.
    """

    def __init__(
        self,
        resolver: TypeResolver,
        config: InferenceConfig | None = None,
        introspector: TypeIntrospector | None = None,
        field_overrides: list[FieldAnnotation] | None = None,
    ):
        self.resolver = resolver
        self.config = config or InferenceConfig()
        self.introspector = introspector or FallbackIntrospector([
            RuntimeIntrospector(self.config),
            SourceIntrospector(resolver, self.config),
        ])
        self.field_overrides = list(field_overrides or [])

    def build(self, type_ref: str | type, visited: set[str] | None = None) -> SchemaFragment | None:
        """Object fragment for ``type_ref``; None when the cycle guard trips.

        Raises ``TypeResolutionFailure`` when the type cannot be found.
        """
        visited = set() if visited is None else visited
        resolved = self.resolver.resolve(type_ref)
        return self.build_resolved(resolved, visited, top_level=True)

    def build_resolved(
        self, resolved: ResolvedType, visited: set[str], top_level: bool = False,
    ) -> SchemaFragment | None:
        if resolved.identifier in visited:
            logger.debug("cycle guard: {} already visited", resolved.identifier)
            return None
        visited.add(resolved.identifier)

        shape = self.introspector.introspect(resolved)
        if shape is None:
            if top_level:
                return SchemaFragment.object()
            return SchemaFragment.primitive("string")
        return self._object(shape, self.resolver.scoped_to(resolved), visited)

    def _object(self, shape: TypeShape, resolver: TypeResolver, visited: set[str]) -> SchemaFragment:
        overrides = [*shape.annotations, *self.field_overrides]
        properties = {}
        for info in shape.fields:
            try:
                fragment = self._field(info, resolver, set(visited))
            except TypeResolutionFailure as e:
                logger.debug("omitting field {}: {}", info.name, e)
                continue
            if fragment is None:
                continue
            key = info.alias or rename(info.name, shape.naming)
            for annotation in overrides:
                if annotation.target_field_name in (info.name, key):
                    fragment = apply_annotation(fragment, annotation)
            properties[key] = fragment
        return SchemaFragment.object(properties)

    def _field(self, info: FieldInfo, resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        if info.fragment is not None:
            fragment = info.fragment
        elif isinstance(info.annotation, ast.AST):
            fragment = self.map_node(info.annotation, resolver, visited)
        else:
            fragment = self.map_runtime(info.annotation, resolver, visited)
        if fragment is None:
            return None
        if info.overrides:
            fragment = apply_annotation(fragment, FieldAnnotation(target_field_name=info.name, **info.overrides))
        if info.required:
            fragment = fragment.evolve(required=True)
        return fragment

    def map_runtime(self, tp: Any, resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        """Map a runtime type annotation to a fragment."""
        if tp is None or tp is typing.Any or tp is object:
            return SchemaFragment.primitive("string")
        if isinstance(tp, str):
            return self._map_string(tp, resolver, visited)
        if isinstance(tp, typing.ForwardRef):
            return self._map_string(tp.__forward_arg__, resolver, visited)

        origin = typing.get_origin(tp)
        args = typing.get_args(tp)
        if origin is typing.Annotated:
            return self.map_runtime(args[0], resolver, visited)
        if origin is typing.Union or origin is types.UnionType:
            members = [a for a in args if a is not type(None)]
            if not members:
                return SchemaFragment.unknown(nullable=True)
            fragment = self.map_runtime(members[0], resolver, visited)
            if fragment is not None and len(members) < len(args):
                fragment = fragment.evolve(nullable=True)
            return fragment
        if origin is typing.Literal:
            return _enum_fragment(list(args))
        if origin is not None:
            name = getattr(origin, "__name__", "")
            if name in self.config.array_types:
                item_args = [a for a in args if a is not Ellipsis]
                if not item_args:
                    return SchemaFragment.array_of()
                items = self.map_runtime(item_args[0], resolver, visited)
                return SchemaFragment.array_of(items) if items is not None else None
            if name in self.config.object_types:
                return SchemaFragment.object()
            return self.map_runtime(origin, resolver, visited)

        if not isinstance(tp, type):
            return SchemaFragment.primitive("string")
        if issubclass(tp, enum.Enum):
            return _enum_fragment([member.value for member in tp])
        for klass in tp.__mro__:
            mapping = self.config.type_map.get(klass.__name__)
            if mapping is not None:
                return SchemaFragment.primitive(mapping.type, mapping.format)
            if klass.__name__ in self.config.array_types:
                return SchemaFragment.array_of()
            if klass.__name__ in self.config.object_types:
                return SchemaFragment.object()
        if tp.__module__ == "builtins":
            return SchemaFragment.primitive("string")
        return self.build_resolved(resolver.from_object(tp), visited)

    def _map_string(self, text: str, resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        try:
            node = parse_text(text, filename="<annotation>").body[0]
        except (ParseFailure, IndexError):
            return SchemaFragment.primitive("string")
        if not isinstance(node, ast.Expr):
            return SchemaFragment.primitive("string")
        return self.map_node(node.value, resolver, visited)

    def map_node(self, node: ast.expr, resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        """Map an annotation syntax node; resolves names through ``resolver``."""
        if isinstance(node, ast.Constant):
            if isinstance(node.value, str):
                return self._map_string(node.value, resolver, visited)
            if node.value is None:
                return SchemaFragment.unknown(nullable=True)
            return SchemaFragment.primitive("string")
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            return self._map_union(_union_members(node), resolver, visited)
        if isinstance(node, ast.Subscript):
            return self._map_subscript(node, resolver, visited)

        name = dotted_name(node)
        if name is None:
            return SchemaFragment.primitive("string")
        short = _short(name)
        mapping = self.config.type_map.get(short)
        if mapping is not None:
            return SchemaFragment.primitive(mapping.type, mapping.format)
        if short in self.config.array_types:
            return SchemaFragment.array_of()
        if short in self.config.object_types:
            return SchemaFragment.object()
        if short in ("Any", "object"):
            return SchemaFragment.primitive("string")
        if short == "None":
            return SchemaFragment.unknown(nullable=True)

        resolved = resolver.resolve(name)
        if resolved.obj is not None:
            return self.map_runtime(resolved.obj, resolver, visited)
        return self.build_resolved(resolved, visited)

    def _map_subscript(self, node: ast.Subscript, resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        base = _short(dotted_name(node.value) or "")
        elements = list(node.slice.elts) if isinstance(node.slice, ast.Tuple) else [node.slice]
        if base == "Optional":
            return self._map_union([elements[0], ast.Constant(value=None)], resolver, visited)
        if base == "Union":
            return self._map_union(elements, resolver, visited)
        if base == "Annotated":
            return self.map_node(elements[0], resolver, visited)
        if base == "Literal":
            values = [e.value for e in elements if isinstance(e, ast.Constant)]
            return _enum_fragment(values)
        if base in self.config.array_types:
            items = [e for e in elements if not (isinstance(e, ast.Constant) and e.value is Ellipsis)]
            if not items:
                return SchemaFragment.array_of()
            fragment = self.map_node(items[0], resolver, visited)
            return SchemaFragment.array_of(fragment) if fragment is not None else None
        if base in self.config.object_types:
            return SchemaFragment.object()
        return self.map_node(node.value, resolver, visited)

    def _map_union(self, members: list[ast.expr], resolver: TypeResolver, visited: set[str]) -> SchemaFragment | None:
        concrete = [m for m in members if not (isinstance(m, ast.Constant) and m.value is None)
                    and dotted_name(m) != "None"]
        if not concrete:
            return SchemaFragment.unknown(nullable=True)
        fragment = self.map_node(concrete[0], resolver, visited)
        if fragment is not None and len(concrete) < len(members):
            fragment = fragment.evolve(nullable=True)
        return fragment


def _union_members(node: ast.expr) -> list[ast.expr]:
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return [*_union_members(node.left), *_union_members(node.right)]
    return [node]
