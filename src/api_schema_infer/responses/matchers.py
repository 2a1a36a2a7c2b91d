"""Catalogue of response-producing syntax shapes.

Each ``ResponseMatcher`` pairs a predicate with an extractor. The detector
tries them in order on every node inside the target function; the first
predicate that accepts a node consumes it.
"""

import ast
import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

from loguru import logger
from pydantic import BaseModel

from api_schema_infer.config import InferenceConfig, ResponseShape
from api_schema_infer.dto.builder import ResourceSchemaBuilder
from api_schema_infer.dto.resolver import TypeResolver
from api_schema_infer.errors import TypeResolutionFailure
from api_schema_infer.schema.base import Origin, ResponseSignal, SchemaFragment
from api_schema_infer.source.literals import literal_shape, literal_string, resolve_status
from api_schema_infer.source.syntax import call_argument, call_name, dotted_name

STATUS_KEYWORDS = ("status_code", "status", "code")
CONTENT_KEYWORDS = ("content", "data", "body", "response")
MESSAGE_KEYWORDS = ("detail", "description", "message", "msg")
MAX_FOLD = 8


def error_body(status: int, message: str | None = None) -> SchemaFragment:
    """``{message: string}``; validation failures also carry ``errors``."""
    extra = {"example": message} if message else {}
    properties = {"message": SchemaFragment.primitive("string", **extra)}
    if status == 422:
        properties["errors"] = SchemaFragment.object()
    return SchemaFragment.object(properties)


def reason(status: int) -> str | None:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return None


@dataclass
class DetectionContext:
    """Mutable state of one detection pass over one function."""

    config: InferenceConfig
    constants: dict[str, int] = field(default_factory=dict)
    builder: ResourceSchemaBuilder | None = None
    resolver: TypeResolver | None = None
    locals: dict[str, ast.expr] = field(default_factory=dict)
    signals: list[ResponseSignal] = field(default_factory=list)
    pending: list[int] = field(default_factory=list)
    returned: list[int] = field(default_factory=list)
    produced: dict[int, int] = field(default_factory=dict)
    declared_model: ast.expr | None = None
    in_decorator: bool = False
    validates: bool = False

    def status(self, node: ast.AST | None) -> int | None:
        return resolve_status(self.fold(node), self.config.status_names, self.constants)

    def fold(self, node: ast.AST | None) -> ast.AST | None:
        """Follow local ``name = expr`` assignments (last assignment wins)."""
        for _ in range(MAX_FOLD):
            if isinstance(node, ast.Name) and node.id in self.locals:
                node = self.locals[node.id]
            else:
                break
        return node

    def emit(self, signal: ResponseSignal, from_return: bool = False, node: ast.AST | None = None) -> None:
        if from_return:
            self.returned.append(len(self.signals))
        if node is not None:
            self.produced[id(node)] = len(self.signals)
        self.signals.append(signal)

    def mark_returned(self, node: ast.Return) -> None:
        """Count a response object built earlier (or inline) as returned by ``node``."""
        index = self.produced.get(id(self.fold(node.value)))
        if index is not None and index not in self.returned:
            self.returned.append(index)

    def has_success(self) -> bool:
        return any(s.status in self.config.success_statuses for s in self.signals)

    def shape(self, node: ast.AST | None) -> SchemaFragment | None:
        node = self.fold(node)
        if node is None:
            return None
        if isinstance(node, ast.Name):
            return SchemaFragment.unknown()
        return literal_shape(node, self.call_shape)

    def call_shape(self, node: ast.Call) -> SchemaFragment | None:
        name = call_name(node)
        if name in self.config.json_helpers:
            argument = call_argument(node, 0)
            if argument is None and node.keywords:
                return SchemaFragment.object({
                    kw.arg: self.shape(kw.value) for kw in node.keywords if kw.arg
                })
            return self.shape(argument) if argument is not None else SchemaFragment.object()
        if isinstance(node.func, ast.Attribute) and isinstance(node.func.value, ast.Call):
            if node.func.attr in self.config.dump_methods:
                return self.call_shape(node.func.value)
        return self.resource_shape(node)

    def resource_type(self, node: ast.Call) -> tuple[str, bool] | None:
        """``(type name, is collection)`` for ``XResource(obj)`` or ``XResource.collection(items)``."""
        name = dotted_name(node.func)
        if name is None:
            return None
        owner, _, method = name.rpartition(".")
        if owner and method in self.config.collection_methods and self.is_resource(owner):
            return owner, True
        if self.is_resource(name):
            return name, False
        return None

    def resource_shape(self, node: ast.Call) -> SchemaFragment | None:
        found = self.resource_type(node)
        if found is None:
            return None
        name, many = found
        fragment = self.build_type(name)
        return SchemaFragment.array_of(fragment) if many else fragment

    def is_resource(self, name: str) -> bool:
        short = name.rpartition(".")[2]
        if not short[:1].isupper():
            return False
        if any(short.endswith(suffix) for suffix in self.config.resource_suffixes):
            return True
        if (short in self.config.response_classes or short in self.config.exception_statuses
                or short in self.config.status_exceptions):
            return False
        if self.resolver is None:
            return False
        try:
            resolved = self.resolver.resolve(name)
        except TypeResolutionFailure:
            return False
        cls = resolved.obj
        if cls is None:
            return False
        if issubclass(cls, BaseException):
            return False
        return (isinstance(cls, type) and issubclass(cls, BaseModel)) or dataclasses.is_dataclass(cls)

    def build_type(self, name: str) -> SchemaFragment:
        if self.builder is None:
            return SchemaFragment.object()
        try:
            fragment = self.builder.build(name)
        except TypeResolutionFailure as e:
            logger.debug("response type {} unresolved: {}", name, e)
            return SchemaFragment.object()
        return fragment if fragment is not None else SchemaFragment.object()


Predicate = Callable[[ast.AST, DetectionContext], bool]
Extractor = Callable[[ast.AST, DetectionContext], ResponseSignal | None]


@dataclass(frozen=True)
class ResponseMatcher:
    """A response-producing shape; ``returns`` signals may be re-tagged by status setters."""

    name: str
    predicate: Predicate
    extract: Extractor
    returns: bool = False


def _signal(status: int, shape: ResponseShape | None, body: SchemaFragment | None, node: ast.AST,
            origin: Origin = Origin.DETECTED_CALL, description: str | None = None) -> ResponseSignal:
    return ResponseSignal(
        status_code=status,
        content_type=shape.content_type if shape is not None else "application/json",
        body=body,
        origin=origin,
        description=description or reason(status),
        line=getattr(node, "lineno", None),
    )


def _body_for(shape: ResponseShape, content: ast.AST | None, ctx: DetectionContext) -> SchemaFragment | None:
    if shape.content_type is None and content is None:
        return None
    if shape.content_type is not None and not shape.content_type.endswith("json"):
        if shape.content_type.startswith("text/"):
            return SchemaFragment.primitive("string")
        return SchemaFragment.primitive("string", "binary")
    if content is None:
        return SchemaFragment.object()
    return ctx.shape(content)


# response().json(data, 201), response.created(data)

def _is_helper_call(node: ast.AST, ctx: DetectionContext) -> bool:
    if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute)):
        return False
    if node.func.attr not in ctx.config.response_helpers:
        return False
    receiver = node.func.value
    if isinstance(receiver, ast.Call):
        return call_name(receiver) in ctx.config.response_receivers
    return isinstance(receiver, ast.Name) and receiver.id in ctx.config.response_receivers


def _extract_helper_call(node: ast.Call, ctx: DetectionContext) -> ResponseSignal:
    shape = ctx.config.response_helpers[node.func.attr]
    status = shape.status
    if node.func.attr == "json":
        status = ctx.status(call_argument(node, 1, STATUS_KEYWORDS)) or status
    content = call_argument(node, 0, CONTENT_KEYWORDS)
    if status == 204 or status // 100 == 3:
        return _signal(status, shape, None, node)
    return _signal(status, shape, _body_for(shape, content, ctx), node)


# self.return_created(data)

def _is_custom_helper(node: ast.AST, ctx: DetectionContext) -> bool:
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id in ("self", "cls")
        and node.func.attr in ctx.config.custom_helpers
    )


def _extract_custom_helper(node: ast.Call, ctx: DetectionContext) -> ResponseSignal:
    shape = ctx.config.custom_helpers[node.func.attr]
    if shape.status == 204:
        return _signal(shape.status, shape, None, node)
    return _signal(shape.status, shape, _body_for(shape, call_argument(node, 0, CONTENT_KEYWORDS), ctx), node)


# JSONResponse(data, status_code=201)

def _is_response_class(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Call) and call_name(node) in ctx.config.response_classes


def _extract_response_class(node: ast.Call, ctx: DetectionContext) -> ResponseSignal:
    shape = ctx.config.response_classes[call_name(node)]
    status = ctx.status(call_argument(node, 1, STATUS_KEYWORDS)) or shape.status
    media = literal_string(call_argument(node, 99, ("media_type", "content_type")))
    if media is not None:
        shape = ResponseShape(status=shape.status, content_type=media)
    if status == 204 or status // 100 == 3:
        return _signal(status, shape, None, node)
    return _signal(status, shape, _body_for(shape, call_argument(node, 0, CONTENT_KEYWORDS), ctx), node)


# return body, 201

def _is_tuple_return(node: ast.AST, ctx: DetectionContext) -> bool:
    if not isinstance(node, ast.Return):
        return False
    value = ctx.fold(node.value)
    return isinstance(value, ast.Tuple) and len(value.elts) >= 2 and ctx.status(value.elts[1]) is not None


def _extract_tuple_return(node: ast.Return, ctx: DetectionContext) -> ResponseSignal:
    value = ctx.fold(node.value)
    status = ctx.status(value.elts[1])
    if status == 204:
        return _signal(status, None, None, node)
    return _signal(status, None, ctx.shape(value.elts[0]), node)


# abort(404, "message")

def _is_abort(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Call) and call_name(node) in ctx.config.abort_helpers


def _extract_abort(node: ast.Call, ctx: DetectionContext) -> ResponseSignal:
    status = ctx.status(call_argument(node, 0, STATUS_KEYWORDS)) or 500
    message = literal_string(call_argument(node, 1, MESSAGE_KEYWORDS))
    return _signal(status, None, error_body(status, message), node, Origin.DETECTED_THROW, message)


# raise NotFound(), raise HTTPException(404, detail=...), raise ValidationError.with_messages(...)

def _is_raise(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Raise) and node.exc is not None


def _exception_name(exc: ast.AST) -> tuple[str | None, ast.Call | None]:
    call = exc if isinstance(exc, ast.Call) else None
    target = exc.func if call is not None else exc
    name = dotted_name(target)
    if name is None:
        return None, call
    owner, _, last = name.rpartition(".")
    if owner and call is not None and not last[:1].isupper():
        # static factory on an exception class
        return owner, None
    return name, call


def _extract_raise(node: ast.Raise, ctx: DetectionContext) -> ResponseSignal | None:
    name, call = _exception_name(node.exc)
    if name is None:
        return None
    short = name.rpartition(".")[2]
    message = None
    if short in ctx.config.status_exceptions:
        status = ctx.status(call_argument(call, 0, STATUS_KEYWORDS)) if call is not None else None
        status = status or 500
        if call is not None:
            message = literal_string(call_argument(call, 1, MESSAGE_KEYWORDS))
    else:
        status = exception_status(name, ctx)
        if call is not None:
            message = literal_string(call_argument(call, 0, MESSAGE_KEYWORDS))
    return _signal(status, None, error_body(status, message), node, Origin.DETECTED_THROW, message)


def exception_status(name: str, ctx: DetectionContext) -> int:
    """Status of an exception type by name, class attributes or base classes."""
    short = name.rpartition(".")[2]
    table = ctx.config.exception_statuses
    generic = {n for n, s in table.items() if n in ("Exception", "BaseException")}
    if short in table and short not in generic:
        return table[short]
    if ctx.resolver is not None:
        try:
            resolved = ctx.resolver.resolve(name)
        except TypeResolutionFailure:
            resolved = None
        if resolved is not None and resolved.obj is not None:
            status = _runtime_exception_status(resolved.obj, ctx)
            if status is not None:
                return status
        elif resolved is not None and resolved.node is not None:
            status = _source_exception_status(resolved.node, ctx, depth=0)
            if status is not None:
                return status
    return table.get(short, 500)


def _runtime_exception_status(cls: Any, ctx: DetectionContext) -> int | None:
    if not isinstance(cls, type):
        return None
    for attr in ctx.config.status_attributes + ["code", "status"]:
        value = getattr(cls, attr, None)
        if type(value) is int and 100 <= value <= 599:
            return value
    for klass in cls.__mro__:
        if klass.__name__ in ctx.config.exception_statuses:
            return ctx.config.exception_statuses[klass.__name__]
    return None


def _source_exception_status(node: ast.ClassDef, ctx: DetectionContext, depth: int) -> int | None:
    for stmt in node.body:
        if isinstance(stmt, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id in ctx.config.status_attributes for t in stmt.targets
        ):
            status = ctx.status(stmt.value)
            if status is not None:
                return status
    for base in node.bases:
        base_name = dotted_name(base)
        if base_name is None:
            continue
        short = base_name.rpartition(".")[2]
        if short in ctx.config.exception_statuses:
            return ctx.config.exception_statuses[short]
        if depth < MAX_FOLD and ctx.resolver is not None:
            located = ctx.resolver.sources.locate_class(short, ctx.resolver.origin_file)
            if located is not None:
                status = _source_exception_status(located[1], ctx, depth + 1)
                if status is not None:
                    return status
    return None


# return UserResource(user), return UserResource.collection(users)

def _is_resource_return(node: ast.AST, ctx: DetectionContext) -> bool:
    if not isinstance(node, ast.Return):
        return False
    value = ctx.fold(node.value)
    if isinstance(value, ast.Call) and isinstance(value.func, ast.Attribute) and isinstance(value.func.value, ast.Call):
        if value.func.attr in ctx.config.dump_methods:
            value = value.func.value
    return isinstance(value, ast.Call) and ctx.resource_type(value) is not None


def _extract_resource_return(node: ast.Return, ctx: DetectionContext) -> ResponseSignal | None:
    if ctx.has_success():
        return None
    return _signal(200, None, ctx.shape(node.value), node)


# return {"id": 1}, return jsonify(data)

def _is_literal_return(node: ast.AST, ctx: DetectionContext) -> bool:
    if not isinstance(node, ast.Return):
        return False
    value = ctx.fold(node.value)
    if isinstance(value, (ast.Dict, ast.List, ast.ListComp, ast.DictComp)):
        return True
    return isinstance(value, ast.Call) and call_name(value) in ctx.config.json_helpers


def _extract_literal_return(node: ast.Return, ctx: DetectionContext) -> ResponseSignal:
    return _signal(200, None, ctx.shape(node.value), node)


# response.status_code = 201, resp.set_status_code(201)

def _is_status_assignment(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Assign) and any(
        isinstance(t, ast.Attribute) and t.attr in ctx.config.status_attributes for t in node.targets
    )


def _extract_status_assignment(node: ast.Assign, ctx: DetectionContext) -> ResponseSignal | None:
    status = ctx.status(node.value)
    if status is not None:
        ctx.pending.append(status)
    return None


def _is_status_setter(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Call) and call_name(node) in ctx.config.status_setters


def _extract_status_setter(node: ast.Call, ctx: DetectionContext) -> ResponseSignal | None:
    status = ctx.status(call_argument(node, 0, STATUS_KEYWORDS))
    if status is not None:
        ctx.pending.append(status)
    return None


# @router.post("/users", status_code=201, response_model=UserOut)

def _is_route_decorator(node: ast.AST, ctx: DetectionContext) -> bool:
    return (
        ctx.in_decorator
        and isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr in ctx.config.route_decorators
    )


def _extract_route_decorator(node: ast.Call, ctx: DetectionContext) -> ResponseSignal | None:
    for keyword in node.keywords:
        if keyword.arg == "status_code":
            status = ctx.status(keyword.value)
            if status is not None:
                ctx.pending.append(status)
        elif keyword.arg == "response_model":
            ctx.declared_model = keyword.value
    return None


# validate(request, {...}) marks a validating handler

def _is_inline_validation(node: ast.AST, ctx: DetectionContext) -> bool:
    return isinstance(node, ast.Call) and call_name(node) in ctx.config.inline_validators


def _extract_inline_validation(node: ast.Call, ctx: DetectionContext) -> ResponseSignal | None:
    ctx.validates = True
    return None


DEFAULT_MATCHERS = [
    ResponseMatcher("route-decorator", _is_route_decorator, _extract_route_decorator),
    ResponseMatcher("status-assignment", _is_status_assignment, _extract_status_assignment),
    ResponseMatcher("status-setter", _is_status_setter, _extract_status_setter),
    ResponseMatcher("tuple-return", _is_tuple_return, _extract_tuple_return),
    ResponseMatcher("resource-return", _is_resource_return, _extract_resource_return, returns=True),
    ResponseMatcher("literal-return", _is_literal_return, _extract_literal_return, returns=True),
    ResponseMatcher("response-helper", _is_helper_call, _extract_helper_call),
    ResponseMatcher("custom-helper", _is_custom_helper, _extract_custom_helper),
    ResponseMatcher("response-class", _is_response_class, _extract_response_class),
    ResponseMatcher("abort", _is_abort, _extract_abort),
    ResponseMatcher("raise", _is_raise, _extract_raise),
    ResponseMatcher("inline-validation", _is_inline_validation, _extract_inline_validation),
]
