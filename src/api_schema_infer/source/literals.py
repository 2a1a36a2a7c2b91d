"""Literal and constant folding over expression nodes.

Nothing here evaluates code: only shapes that are decidable from the syntax
tree alone (literals, known constant names, casts) are resolved.
"""

import ast
import re
from collections.abc import Callable, Mapping
from typing import Any

from api_schema_infer.schema.base import SchemaFragment
from api_schema_infer.source.syntax import call_name, dotted_name

STATUS_NAME = re.compile(r"^HTTP_(\d{3})(?:_|$)")

CAST_TYPES = {"str": "string", "int": "integer", "float": "number", "bool": "boolean"}

CallResolver = Callable[[ast.Call], SchemaFragment | None]


def _valid(code: int) -> int | None:
    return code if 100 <= code <= 599 else None


def status_by_name(name: str, names: Mapping[str, int]) -> int | None:
    """``HTTP_201_CREATED``, ``HTTP_CREATED`` and ``CREATED`` all give 201."""
    match = STATUS_NAME.match(name)
    if match:
        return _valid(int(match.group(1)))
    key = name[len("HTTP_"):] if name.startswith("HTTP_") else name
    code = names.get(key, names.get(key.upper()))
    return _valid(code) if code is not None else None


def resolve_status(
    node: ast.AST | None,
    names: Mapping[str, int],
    constants: Mapping[str, int] | None = None,
) -> int | None:
    """Resolve a status-code expression, or None when it is not static."""
    constants = constants or {}
    if node is None:
        return None
    if isinstance(node, ast.Constant):
        value = node.value
        if type(value) is int:
            return _valid(value)
        if isinstance(value, str) and value.isdigit():
            return _valid(int(value))
        return None
    if isinstance(node, ast.Name):
        if node.id in constants:
            return _valid(constants[node.id])
        return status_by_name(node.id, names)
    if isinstance(node, ast.Attribute):
        if node.attr == "value":
            return resolve_status(node.value, names, constants)
        if node.attr in constants:
            return _valid(constants[node.attr])
        return status_by_name(node.attr, names)
    if isinstance(node, ast.Call) and node.args and call_name(node) in ("int", "HTTPStatus"):
        return resolve_status(node.args[0], names, constants)
    return None


def literal_string(node: ast.AST | None) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def literal_shape(node: ast.AST, resolve_call: CallResolver | None = None) -> SchemaFragment:
    """Describe the value an expression produces, ``unknown`` when undecidable."""
    if isinstance(node, ast.Constant):
        return _constant_shape(node.value)
    if isinstance(node, ast.JoinedStr):
        return SchemaFragment.primitive("string")
    if isinstance(node, ast.Dict):
        properties = {}
        for key, value in zip(node.keys, node.values):
            name = literal_string(key)
            if name is not None:
                properties[name] = literal_shape(value, resolve_call)
        return SchemaFragment.object(properties)
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        elements = [e for e in node.elts if not isinstance(e, ast.Starred)]
        items = literal_shape(elements[0], resolve_call) if elements else SchemaFragment.unknown()
        return SchemaFragment.array_of(items)
    if isinstance(node, (ast.ListComp, ast.SetComp, ast.GeneratorExp)):
        return SchemaFragment.array_of(literal_shape(node.elt, resolve_call))
    if isinstance(node, ast.DictComp):
        return SchemaFragment.object()
    if isinstance(node, (ast.Compare, ast.BoolOp)) or (isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not)):
        return SchemaFragment.primitive("boolean")
    if isinstance(node, ast.IfExp):
        return literal_shape(node.body, resolve_call)
    if isinstance(node, ast.Call):
        return _call_shape(node, resolve_call)
    return SchemaFragment.unknown()


def _constant_shape(value: Any) -> SchemaFragment:
    if isinstance(value, bool):
        return SchemaFragment.primitive("boolean", example=value)
    if isinstance(value, int):
        return SchemaFragment.primitive("integer", example=value)
    if isinstance(value, float):
        return SchemaFragment.primitive("number", example=value)
    if isinstance(value, str):
        return SchemaFragment.primitive("string", example=value)
    if value is None:
        return SchemaFragment.unknown(nullable=True)
    return SchemaFragment.unknown()


def _call_shape(node: ast.Call, resolve_call: CallResolver | None) -> SchemaFragment:
    if resolve_call is not None:
        resolved = resolve_call(node)
        if resolved is not None:
            return resolved
    name = call_name(node) if isinstance(node.func, ast.Name) else None
    if name in CAST_TYPES:
        return SchemaFragment.primitive(CAST_TYPES[name])
    if name == "dict":
        properties = {kw.arg: literal_shape(kw.value, resolve_call) for kw in node.keywords if kw.arg}
        return SchemaFragment.object(properties)
    if name in ("list", "tuple", "set", "sorted"):
        return SchemaFragment.array_of(SchemaFragment.unknown())
    return SchemaFragment.unknown()


def literal_rules(node: ast.AST | None) -> dict[str, Any] | None:
    """Read a ``{field: rules}`` dict literal; None when ``node`` is not one."""
    if not isinstance(node, ast.Dict):
        return None
    rules: dict[str, Any] = {}
    for key, value in zip(node.keys, node.values):
        field = literal_string(key)
        if field is None:
            continue
        text = literal_string(value)
        if text is not None:
            rules[field] = text
        elif isinstance(value, (ast.List, ast.Tuple)):
            rules[field] = [e for e in (_rule_entry(elt) for elt in value.elts) if e is not None]
        else:
            entry = _rule_entry(value)
            rules[field] = [entry] if entry is not None else []
    return rules


def _rule_entry(node: ast.AST) -> str | None:
    text = literal_string(node)
    if text is not None:
        return text
    if isinstance(node, ast.Call):
        node = node.func
    name = dotted_name(node)
    return name.rpartition(".")[2] if name else None
