"""Field enumeration for DTO and resource types.

Introspection is a capability: ``RuntimeIntrospector`` reads loaded classes
(dataclasses, pydantic models, TypedDicts, NamedTuples, annotated classes)
and ``SourceIntrospector`` reads the declaring source (the literal dict a
``to_dict``-style method returns, else class-body annotations).
``FallbackIntrospector`` tries them in order. ``introspect`` returns None
when a type is not introspectable by that strategy.
"""

import ast
import dataclasses
import inspect
import typing
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel

from api_schema_infer.config import InferenceConfig
from api_schema_infer.dto.resolver import ResolvedType, TypeResolver
from api_schema_infer.schema.base import FieldAnnotation, SchemaFragment
from api_schema_infer.source.literals import literal_shape, literal_string
from api_schema_infer.source.syntax import call_name, dotted_name

OVERRIDE_KEYS = ("type", "format", "description", "example", "deprecated", "min_length", "max_length",
                 "minimum", "maximum", "pattern")


@dataclass
class FieldInfo:
    """One declared field: either a type annotation or a literal shape."""

    name: str
    annotation: Any = None
    fragment: SchemaFragment | None = None
    required: bool = False
    alias: str | None = None
    overrides: dict[str, Any] = field(default_factory=dict)


@dataclass
class TypeShape:
    fields: list[FieldInfo]
    naming: str | None = None
    annotations: list[FieldAnnotation] = field(default_factory=list)


class TypeIntrospector(Protocol):
    def introspect(self, resolved: ResolvedType) -> TypeShape | None: ...


def declared_annotations(cls: type) -> list[FieldAnnotation]:
    """Annotations attached with the ``schema_field`` decorator."""
    return list(getattr(cls, "__schema_fields__", ()))


def defines_to_map(cls: type, method_names: list[str]) -> bool:
    for klass in cls.__mro__:
        if klass is object:
            continue
        if any(name in vars(klass) for name in method_names):
            return True
    return False


def _public(name: str) -> bool:
    return not name.startswith("_")


def _is_classvar(annotation: Any) -> bool:
    if typing.get_origin(annotation) is typing.ClassVar or annotation is typing.ClassVar:
        return True
    return isinstance(annotation, str) and annotation.startswith(("ClassVar", "typing.ClassVar"))


def _hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls, include_extras=True)
    except Exception as e:
        # unresolvable forward references; fall back to the raw strings
        logger.debug("get_type_hints({}) failed: {!r}", cls.__qualname__, e)
        hints: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            hints.update(inspect.get_annotations(klass))
        return hints


class RuntimeIntrospector:
    """Read declared fields from a loaded class."""

    def __init__(self, config: InferenceConfig | None = None):
        self.config = config or InferenceConfig()

    def introspect(self, resolved: ResolvedType) -> TypeShape | None:
        cls = resolved.obj
        if cls is None:
            return None
        if issubclass(cls, BaseModel):
            fields = self._pydantic(cls)
        elif dataclasses.is_dataclass(cls):
            fields = self._dataclass(cls)
        elif typing.is_typeddict(cls):
            required = getattr(cls, "__required_keys__", frozenset())
            fields = [FieldInfo(name=n, annotation=t, required=n in required) for n, t in _hints(cls).items()]
        elif issubclass(cls, tuple) and hasattr(cls, "_fields"):
            defaults = getattr(cls, "_field_defaults", {})
            hints = _hints(cls)
            fields = [FieldInfo(name=n, annotation=hints.get(n), required=n not in defaults) for n in cls._fields]
        elif defines_to_map(cls, self.config.to_map_methods):
            # the external shape lives in the to-map method body
            return None
        else:
            fields = self._annotated(cls)
            if not fields:
                return None
        return TypeShape(
            fields=[f for f in fields if _public(f.name)],
            naming=getattr(cls, "__schema_naming__", None),
            annotations=declared_annotations(cls),
        )

    def _pydantic(self, cls: type[BaseModel]) -> list[FieldInfo]:
        fields = []
        for name, info in cls.model_fields.items():
            overrides: dict[str, Any] = {}
            if info.description:
                overrides["description"] = info.description
            if info.examples:
                overrides["example"] = info.examples[0]
            if getattr(info, "deprecated", None):
                overrides["deprecated"] = True
            extra = info.json_schema_extra
            if isinstance(extra, dict):
                overrides.update({k: v for k, v in extra.items() if k in OVERRIDE_KEYS})
            for constraint in info.metadata:
                overrides.update(_constraint_overrides(constraint))
            fields.append(FieldInfo(
                name=name,
                annotation=info.annotation,
                required=info.is_required(),
                alias=info.serialization_alias or info.alias,
                overrides=overrides,
            ))
        return fields

    def _dataclass(self, cls: type) -> list[FieldInfo]:
        hints = _hints(cls)
        fields = []
        for f in dataclasses.fields(cls):
            required = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
            overrides = {k: v for k, v in f.metadata.items() if k in OVERRIDE_KEYS}
            fields.append(FieldInfo(name=f.name, annotation=hints.get(f.name, f.type), required=required,
                                    overrides=overrides))
        return fields

    def _annotated(self, cls: type) -> list[FieldInfo]:
        fields = []
        for name, annotation in _hints(cls).items():
            if _is_classvar(annotation):
                continue
            fields.append(FieldInfo(name=name, annotation=annotation, required=not hasattr(cls, name)))
        return fields


def _constraint_overrides(constraint: Any) -> dict[str, Any]:
    # annotated_types markers (MinLen, MaxLen, Ge, Le, ...) and pydantic's general metadata
    mapping = {"min_length": "min_length", "max_length": "max_length", "ge": "minimum", "gt": "minimum",
               "le": "maximum", "lt": "maximum", "pattern": "pattern"}
    overrides = {}
    for attr, key in mapping.items():
        value = getattr(constraint, attr, None)
        if value is not None:
            overrides[key] = value
    return overrides


class SourceIntrospector:
    """Read a type's shape from its declaring source without importing it."""

    def __init__(self, resolver: TypeResolver, config: InferenceConfig | None = None):
        self.resolver = resolver
        self.config = config or InferenceConfig()

    def introspect(self, resolved: ResolvedType) -> TypeShape | None:
        node = self.resolver.class_node(resolved)
        if node is None:
            return None
        naming = None
        fields = None
        for stmt in node.body:
            if isinstance(stmt, ast.Assign) and any(
                isinstance(t, ast.Name) and t.id == "__schema_naming__" for t in stmt.targets
            ):
                naming = literal_string(stmt.value)
        for method in self.config.to_map_methods:
            fields = self._to_map_fields(node, method)
            if fields is not None:
                break
        if fields is None:
            fields = self._annotated_fields(node)
        if not fields:
            return None
        return TypeShape(fields=fields, naming=naming, annotations=self._decorator_annotations(node))

    def _to_map_fields(self, node: ast.ClassDef, method: str) -> list[FieldInfo] | None:
        func = next(
            (s for s in node.body if isinstance(s, (ast.FunctionDef, ast.AsyncFunctionDef)) and s.name == method),
            None,
        )
        if func is None:
            return None
        returned = None
        for stmt in ast.walk(func):
            if isinstance(stmt, ast.Return) and isinstance(stmt.value, ast.Dict):
                returned = stmt.value
        if returned is None:
            return None
        fields = []
        for key, value in zip(returned.keys, returned.values):
            name = literal_string(key)
            if name is None:
                continue
            reference = self._type_reference(value)
            if reference is not None:
                fields.append(FieldInfo(name=name, annotation=reference, required=True))
            else:
                fields.append(FieldInfo(name=name, fragment=literal_shape(value), required=True))
        return fields

    def _type_reference(self, value: ast.AST) -> ast.expr | None:
        """Annotation-like node for values built from another resource type."""
        if isinstance(value, (ast.ListComp, ast.GeneratorExp)):
            inner = self._type_reference(value.elt)
            if inner is not None:
                return ast.Subscript(value=ast.Name(id="list"), slice=inner)
            return None
        if not isinstance(value, ast.Call):
            return None
        if isinstance(value.func, ast.Attribute) and isinstance(value.func.value, ast.Call):
            # X(obj).to_dict()
            if value.func.attr in self.config.dump_methods:
                return self._type_reference(value.func.value)
            return None
        name = dotted_name(value.func)
        if name is None:
            return None
        owner, _, method = name.rpartition(".")
        if owner and method in self.config.collection_methods:
            return ast.Subscript(value=ast.Name(id="list"), slice=ast.Name(id=owner.rpartition(".")[2]))
        if self._looks_like_type(name):
            return ast.Name(id=name) if "." not in name else value.func
        return None

    def _looks_like_type(self, name: str) -> bool:
        short = name.rpartition(".")[2]
        if any(short.endswith(suffix) for suffix in self.config.resource_suffixes):
            return True
        return short[:1].isupper() and self.resolver.sources.locate_class(short, self.resolver.origin_file) is not None

    def _annotated_fields(self, node: ast.ClassDef) -> list[FieldInfo]:
        fields = []
        for stmt in node.body:
            if not (isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name)):
                continue
            name = stmt.target.id
            annotation = stmt.annotation
            base = dotted_name(annotation.value) if isinstance(annotation, ast.Subscript) else dotted_name(annotation)
            if not _public(name) or (base or "").rpartition(".")[2] == "ClassVar":
                continue
            fields.append(FieldInfo(name=name, annotation=annotation, required=stmt.value is None))
        return fields

    def _decorator_annotations(self, node: ast.ClassDef) -> list[FieldAnnotation]:
        annotations = []
        for decorator in node.decorator_list:
            if not (isinstance(decorator, ast.Call) and call_name(decorator) == "schema_field" and decorator.args):
                continue
            target = literal_string(decorator.args[0])
            if target is None:
                continue
            values = {}
            for keyword in decorator.keywords:
                try:
                    values[keyword.arg] = ast.literal_eval(keyword.value)
                except ValueError:
                    continue
            values.setdefault("attached_to", "response")
            annotations.append(FieldAnnotation(target_field_name=target, **values))
        return annotations


class FallbackIntrospector:
    """Try each strategy in order; the first that understands the type wins."""

    def __init__(self, strategies: list[TypeIntrospector]):
        self.strategies = strategies

    def introspect(self, resolved: ResolvedType) -> TypeShape | None:
        for strategy in self.strategies:
            shape = strategy.introspect(resolved)
            if shape is not None:
                return shape
        return None
