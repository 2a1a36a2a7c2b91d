"""Query-string parameters a handler reads.

Three sources are recognised:

- lookups on the request's query mapping (``request.args.get("page", 1, type=int)``,
  ``request.query_params["sort"]``, ``request.args.getlist("tag")``);
- typed accessors on the request (``request.integer("limit", 20)``), only for
  routes whose method carries no body;
- ``Query(...)`` markers in the handler signature, as defaults or inside
  ``Annotated[...]``.

A call to a configured pagination helper adds ``page``/``per_page`` (or
``cursor``/``per_page``).
"""

import ast
from typing import Any

from loguru import logger

from api_schema_infer.config import InferenceConfig, TypeMapping
from api_schema_infer.dto.builder import ResourceSchemaBuilder
from api_schema_infer.errors import TypeResolutionFailure
from api_schema_infer.schema.base import Kind, SchemaFragment
from api_schema_infer.source.literals import literal_string
from api_schema_infer.source.syntax import FunctionNode, call_argument, call_name, dotted_name

MISSING = object()

# Query(...) keyword -> fragment field
MARKER_CONSTRAINTS = {
    "ge": "minimum",
    "gt": "minimum",
    "le": "maximum",
    "lt": "maximum",
    "min_length": "min_length",
    "max_length": "max_length",
    "pattern": "pattern",
    "regex": "pattern",
    "description": "description",
    "deprecated": "deprecated",
}


def _literal(node: ast.AST | None) -> Any:
    if node is None:
        return MISSING
    try:
        return ast.literal_eval(node)
    except (ValueError, TypeError, SyntaxError, RecursionError):
        return MISSING


def _value_type(value: Any) -> str | None:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    return None


def _primitive(mapping: TypeMapping | None, default: Any = MISSING) -> SchemaFragment:
    if mapping is None:
        type_ = _value_type(default) if default is not MISSING else None
        mapping = TypeMapping(type=type_ or "string")
    if mapping.type == "array":
        return SchemaFragment.array_of(SchemaFragment.primitive("string"))
    return SchemaFragment.primitive(mapping.type, mapping.format)


def _with_default(fragment: SchemaFragment, default: Any) -> SchemaFragment:
    if default is MISSING or default is None or default is Ellipsis:
        return fragment
    return fragment.evolve(default=default)


def pagination_parameters(kind: str, per_page: int = 15) -> dict[str, SchemaFragment]:
    """``page`` or ``cursor`` plus ``per_page``."""
    if kind == "cursor":
        first = {"cursor": SchemaFragment.primitive("string", description="Pagination cursor")}
    else:
        first = {"page": SchemaFragment.primitive("integer", description="Page number", example=1)}
    return {
        **first,
        "per_page": SchemaFragment.primitive("integer", description="Number of items per page", example=per_page),
    }


class QueryParameterDetector:
    """Collect the query parameters of one handler; the first read of a name wins."""

    def __init__(self, config: InferenceConfig | None = None, builder: ResourceSchemaBuilder | None = None):
        self.config = config or InferenceConfig()
        self.builder = builder

    def detect(self, node: FunctionNode, http_method: str) -> dict[str, SchemaFragment]:
        found: dict[str, SchemaFragment] = {}
        for name, fragment in self._signature(node):
            found.setdefault(name, fragment)

        accessors = http_method.upper() in self.config.query_methods
        pagination = None
        for sub in self._body_nodes(node):
            if isinstance(sub, ast.Call):
                read = self._lookup(sub) or (self._accessor(sub) if accessors else None)
                if read is not None:
                    found.setdefault(*read)
                elif pagination is None and call_name(sub) in self.config.pagination_helpers:
                    pagination = self.config.pagination_helpers[call_name(sub)]
            elif isinstance(sub, ast.Subscript) and isinstance(sub.ctx, ast.Load):
                read = self._subscript(sub)
                if read is not None:
                    found.setdefault(*read)

        if pagination is not None:
            for name, fragment in pagination_parameters(pagination, self.config.per_page_example).items():
                found.setdefault(name, fragment)
        return found

    def _body_nodes(self, node: FunctionNode) -> list[ast.AST]:
        # source order; ast.walk is breadth first
        nodes = [sub for stmt in node.body for sub in ast.walk(stmt) if hasattr(sub, "lineno")]
        return sorted(nodes, key=lambda sub: (sub.lineno, sub.col_offset))

    def _is_request(self, node: ast.AST) -> bool:
        return isinstance(node, ast.Name) and node.id in self.config.request_names

    def _is_container(self, node: ast.AST) -> bool:
        return (
            isinstance(node, ast.Attribute)
            and node.attr in self.config.query_containers
            and self._is_request(node.value)
        )

    def _type_argument(self, node: ast.AST | None) -> TypeMapping | None:
        name = dotted_name(node) if node is not None else None
        if name is None:
            return None
        return self.config.type_map.get(name.rpartition(".")[2])

    def _lookup(self, call: ast.Call) -> tuple[str, SchemaFragment] | None:
        """``request.args.get("page", 1, type=int)`` and ``getlist``."""
        func = call.func
        if not (isinstance(func, ast.Attribute) and func.attr in self.config.query_getters):
            return None
        if not self._is_container(func.value):
            return None
        name = literal_string(call_argument(call, 0, ("key",)))
        if name is None:
            return None
        mapping = self._type_argument(call_argument(call, 99, ("type",)))
        if func.attr in self.config.query_list_getters:
            return name, SchemaFragment.array_of(_primitive(mapping))
        default = _literal(call_argument(call, 1, ("default",)))
        return name, _with_default(_primitive(mapping, default), default)

    def _accessor(self, call: ast.Call) -> tuple[str, SchemaFragment] | None:
        """``request.integer("limit", 20)``, ``request.boolean("archived")``."""
        func = call.func
        if not (isinstance(func, ast.Attribute) and func.attr in self.config.query_accessors):
            return None
        if not self._is_request(func.value):
            return None
        name = literal_string(call_argument(call, 0))
        if name is None:
            return None
        default = _literal(call_argument(call, 1, ("default",)))
        fragment = _primitive(self.config.query_accessors[func.attr], default)
        return name, _with_default(fragment, default)

    def _subscript(self, node: ast.Subscript) -> tuple[str, SchemaFragment] | None:
        """``request.query_params["sort"]``; a missing key fails the request."""
        if not self._is_container(node.value):
            return None
        name = literal_string(node.slice)
        if name is None:
            return None
        return name, SchemaFragment.primitive("string", required=True)

    def _signature(self, node: FunctionNode) -> list[tuple[str, SchemaFragment]]:
        args = node.args
        positional = [*args.posonlyargs, *args.args]
        defaults: list[ast.expr | None] = [None] * (len(positional) - len(args.defaults)) + list(args.defaults)
        pairs = [*zip(positional, defaults), *zip(args.kwonlyargs, args.kw_defaults)]

        params = []
        for arg, default in pairs:
            marker, annotation = self._marker(arg.annotation), arg.annotation
            if marker is None and self._is_marker(default):
                marker = default
                default_value = _literal(call_argument(marker, 0, ("default",)))
            elif marker is not None:
                default_value = _literal(default)
            else:
                continue
            params.append(self._marker_parameter(arg.arg, annotation, marker, default_value))
        return params

    def _is_marker(self, node: ast.AST | None) -> bool:
        return isinstance(node, ast.Call) and call_name(node) in self.config.query_markers

    def _marker(self, annotation: ast.expr | None) -> ast.Call | None:
        """The ``Query(...)`` inside ``Annotated[T, Query(...)]``."""
        if not isinstance(annotation, ast.Subscript):
            return None
        if (dotted_name(annotation.value) or "").rpartition(".")[2] != "Annotated":
            return None
        if not isinstance(annotation.slice, ast.Tuple):
            return None
        return next((e for e in annotation.slice.elts[1:] if self._is_marker(e)), None)

    def _marker_parameter(self, name: str, annotation: ast.expr | None, marker: ast.Call,
                          default: Any) -> tuple[str, SchemaFragment]:
        fragment = self._annotated_type(annotation) if annotation is not None else None
        if fragment is None:
            fragment = _primitive(None, default)
        values: dict[str, Any] = {}
        for keyword in marker.keywords:
            value = _literal(keyword.value)
            if keyword.arg == "alias" and isinstance(value, str):
                name = value
            elif keyword.arg in MARKER_CONSTRAINTS and value is not MISSING:
                values[MARKER_CONSTRAINTS[keyword.arg]] = value
            elif keyword.arg == "examples" and isinstance(value, list) and value:
                values["example"] = value[0]
            elif keyword.arg == "example" and value is not MISSING:
                values["example"] = value
        if default is MISSING or default is Ellipsis:
            values["required"] = True
        fragment = _with_default(fragment, default)
        return name, fragment.evolve(**values) if values else fragment

    def _annotated_type(self, annotation: ast.expr) -> SchemaFragment | None:
        if self.builder is None:
            return None
        try:
            fragment = self.builder.map_node(annotation, self.builder.resolver, set())
        except TypeResolutionFailure as e:
            logger.debug("query parameter type unresolved: {}", e)
            return None
        if fragment is None or fragment.is_unknown or fragment.kind is Kind.OBJECT:
            return None
        return fragment
