"""Walk one handler's syntax tree and collect the responses it can produce."""

import ast
import re
from enum import Enum
from pathlib import Path

from loguru import logger

from api_schema_infer.config import InferenceConfig
from api_schema_infer.dto.builder import ResourceSchemaBuilder
from api_schema_infer.dto.resolver import TypeResolver
from api_schema_infer.errors import ParseFailure, TypeResolutionFailure
from api_schema_infer.responses.matchers import (
    DEFAULT_MATCHERS,
    DetectionContext,
    ResponseMatcher,
    error_body,
    reason,
)
from api_schema_infer.schema.base import Origin, ResponseSignal, SchemaFragment
from api_schema_infer.source.syntax import SourceCache, dotted_name, int_constants

ID_PARAM = re.compile(r"(^id$|_id$|Id$|^pk$|_pk$)")
WORD = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")
SKIPPED = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)


class State(Enum):
    OUTSIDE = "outside"
    INSIDE = "inside"


def name_words(name: str) -> set[str]:
    """``store_user`` and ``storeUser`` both give ``{"store", "user"}``."""
    return {w.lower() for w in WORD.findall(name)}


class ResponseSignalDetector(ast.NodeVisitor):
    """Collect response signals for one function, optionally a method of one class.

    Only nodes inside the target function's body are matched. Nested
    functions and classes inside it are not attributed to the handler.
    A detector instance is single use.
    """

    def __init__(
        self,
        function_name: str,
        class_name: str | None = None,
        *,
        config: InferenceConfig | None = None,
        builder: ResourceSchemaBuilder | None = None,
        resolver: TypeResolver | None = None,
        matchers: list[ResponseMatcher] | None = None,
        declared_type: str | None = None,
        validating: bool = False,
    ):
        self.function_name = function_name
        self.class_name = class_name
        self.config = config or InferenceConfig()
        self.builder = builder
        self.matchers = matchers if matchers is not None else DEFAULT_MATCHERS
        self.declared_type = declared_type
        self.validating = validating
        self.state = State.OUTSIDE
        self.found: ast.FunctionDef | ast.AsyncFunctionDef | None = None
        self._classes: list[ast.ClassDef] = []
        self.ctx = DetectionContext(config=self.config, builder=builder, resolver=resolver)

    def detect(self, tree: ast.Module) -> list[ResponseSignal]:
        """Visit ``tree`` and return the completed signal list.

        Any failure during traversal degrades to an empty list.
        """
        try:
            self.ctx.constants.update(int_constants(tree.body))
            self.visit(tree)
            if self.found is None:
                logger.debug("handler {} not found", self._qualified())
                return []
            self._finalize()
        except Exception as e:
            logger.warning("response detection failed for {}: {!r}", self._qualified(), e)
            return []
        return list(self.ctx.signals)

    def _qualified(self) -> str:
        return f"{self.class_name}.{self.function_name}" if self.class_name else self.function_name

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._classes.append(node)
        try:
            self.generic_visit(node)
        finally:
            self._classes.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        if self.state is State.OUTSIDE and self.found is None and self._is_target(node):
            self._enter(node)
            return
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def _is_target(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
        if node.name != self.function_name:
            return False
        if self.class_name is None:
            return not self._classes
        return bool(self._classes) and self._classes[-1].name == self.class_name

    def _enter(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        self.state = State.INSIDE
        self.found = node
        if self._classes:
            self.ctx.constants.update(int_constants(self._classes[-1].body))
        try:
            self.ctx.in_decorator = True
            for decorator in node.decorator_list:
                self._match(decorator)
            self.ctx.in_decorator = False
            for stmt in node.body:
                self._match(stmt)
        finally:
            self.ctx.in_decorator = False
            self.state = State.OUTSIDE

    def _match(self, node: ast.AST) -> None:
        if isinstance(node, SKIPPED):
            return
        if isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
            self.ctx.locals[node.targets[0].id] = node.value
        for matcher in self.matchers:
            if matcher.predicate(node, self.ctx):
                signal = matcher.extract(node, self.ctx)
                if signal is not None:
                    self.ctx.emit(signal, from_return=matcher.returns, node=node)
                return
        for child in ast.iter_child_nodes(node):
            self._match(child)
        if isinstance(node, ast.Return):
            self.ctx.mark_returned(node)

    def _finalize(self) -> None:
        self._apply_status_setters()
        if not self.ctx.has_success():
            self.ctx.emit(self._default_success())
        self._add_default_errors()

    def _apply_status_setters(self) -> None:
        """Re-tag what the handler returns with explicitly set status codes."""
        pending = list(dict.fromkeys(self.ctx.pending))
        if not pending:
            return
        returned = [self.ctx.signals[i] for i in self.ctx.returned if self.ctx.signals[i].status == 200]
        source = next((s for s in returned if s.body is not None), None)
        body = source.body if source is not None else self._declared_shape()
        content_type = source.content_type if source is not None else "application/json"
        for status in pending:
            if any(s.status == status for s in self.ctx.signals):
                continue
            self.ctx.emit(ResponseSignal(
                status_code=status,
                body=None if status == 204 else body,
                content_type=None if status == 204 else content_type,
                origin=Origin.DETECTED_CALL,
                description=reason(status),
            ))
        if 200 not in pending and returned:
            retagged = {id(s) for s in returned}
            self.ctx.signals = [s for s in self.ctx.signals if id(s) not in retagged]
            self.ctx.returned = []

    def _declared_shape(self) -> SchemaFragment | None:
        if self.builder is None:
            return None
        candidates = [self.ctx.declared_model, getattr(self.found, "returns", None)]
        for node in candidates:
            if node is None or self._is_response_class(node):
                continue
            try:
                fragment = self.builder.map_node(node, self.builder.resolver, set())
            except TypeResolutionFailure as e:
                logger.debug("return type of {} unresolved: {}", self._qualified(), e)
                continue
            if fragment is not None and not fragment.is_unknown:
                return fragment
        if self.declared_type:
            try:
                return self.builder.build(self.declared_type)
            except TypeResolutionFailure as e:
                logger.debug("declared type {} unresolved: {}", self.declared_type, e)
        return None

    def _is_response_class(self, node: ast.AST) -> bool:
        name = dotted_name(node) or ""
        return name.rpartition(".")[2] in self.config.response_classes

    def _default_success(self) -> ResponseSignal:
        body = self._declared_shape()
        if body is not None:
            return ResponseSignal(status_code=200, body=body, origin=Origin.DETECTED_CALL, description=reason(200))
        return ResponseSignal(
            status_code=200, body=SchemaFragment.object(), origin=Origin.DEFAULT, description=reason(200),
        )

    def _add_default_errors(self) -> None:
        words = name_words(self.function_name)
        params = [a.arg for a in (*self.found.args.posonlyargs, *self.found.args.args, *self.found.args.kwonlyargs)]
        statuses = []
        if words & set(self.config.not_found_verbs) or any(ID_PARAM.search(p) for p in params):
            statuses.append(404)
        if words & set(self.config.auth_verbs):
            statuses.append(401)
        if self.validating or self.ctx.validates or words & set(self.config.validation_verbs):
            statuses.append(422)
        statuses.append(500)
        for status in statuses:
            self.ctx.emit(ResponseSignal(
                status_code=status, body=error_body(status), origin=Origin.DEFAULT, description=reason(status),
            ))


def detect_responses(
    path: Path,
    function_name: str,
    class_name: str | None = None,
    *,
    sources: SourceCache,
    **options,
) -> list[ResponseSignal]:
    """Parse ``path`` and detect the responses of one handler.

    An unreadable or unparsable file gives an empty list.
    """
    try:
        tree = sources.parse(path)
    except ParseFailure as e:
        logger.warning("{}", e)
        return []
    return ResponseSignalDetector(function_name, class_name, **options).detect(tree)
