"""Assemble one ``EndpointSchema`` per endpoint descriptor."""

import ast
import re
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from loguru import logger

from api_schema_infer.annotations import read_annotations
from api_schema_infer.config import InferenceConfig
from api_schema_infer.dto.builder import ResourceSchemaBuilder
from api_schema_infer.dto.resolver import ResolvedType, TypeResolver, import_dotted, source_file_of
from api_schema_infer.errors import ParseFailure, TypeResolutionFailure
from api_schema_infer.query import QueryParameterDetector
from api_schema_infer.responses.detector import ResponseSignalDetector
from api_schema_infer.responses.matchers import ResponseMatcher, reason
from api_schema_infer.rules.builder import SchemaFragmentBuilder
from api_schema_infer.schema.base import (
    AnnotationSet,
    EndpointDescriptor,
    EndpointSchema,
    Kind,
    Origin,
    ResponseSignal,
    SchemaFragment,
)
from api_schema_infer.schema.merge import SchemaMergeEngine, apply_annotation, strip_internal
from api_schema_infer.source.literals import literal_rules
from api_schema_infer.source.syntax import SourceCache, call_name, find_function

PATH_PARAM = re.compile(r"\{(\w+)(?::[^}]*)?\}|<(?:(\w+):)?(\w+)>")
CONVERTERS = {
    "int": SchemaFragment.primitive("integer"),
    "float": SchemaFragment.primitive("number"),
    "uuid": SchemaFragment.primitive("string", "uuid"),
}
IMPLICIT_PARAMS = {"self", "cls", "request", "req"}


def path_parameters(template: str) -> dict[str, str | None]:
    """``/users/{id}`` and ``/users/<int:id>`` -> ``{"id": converter}``."""
    params: dict[str, str | None] = {}
    for match in PATH_PARAM.finditer(template):
        if match.group(1):
            params[match.group(1)] = None
        else:
            params[match.group(3)] = match.group(2)
    return params


def bare_schema(descriptor: EndpointDescriptor) -> EndpointSchema:
    """Fallback when nothing could be inferred: a default 200 with an empty object."""
    return EndpointSchema(
        http_method=descriptor.http_method,
        path_template=descriptor.path_template,
        responses={"200": ResponseSignal(
            status_code=200, body=SchemaFragment.object(), origin=Origin.DEFAULT, description=reason(200),
        )},
    )


class _Handler:
    """What is known about one handler: runtime object, source file and node."""

    def __init__(self, obj: Any, namespace: dict | None, path: Path | None, tree: ast.Module | None,
                 node: ast.FunctionDef | ast.AsyncFunctionDef | None):
        self.obj = obj
        self.namespace = namespace
        self.path = path
        self.tree = tree
        self.node = node


class EndpointSchemaAssembler:
    """Orchestrate rule parsing, response detection, DTO building and merging per endpoint.

    The assembler holds only build-scoped shared state (the source cache).
    Each ``assemble`` call creates its own resolver and builders, so calls may
    run concurrently.
    """

    def __init__(
        self,
        config: InferenceConfig | None = None,
        sources: SourceCache | None = None,
        matchers: list[ResponseMatcher] | None = None,
    ):
        self.config = config or InferenceConfig()
        self.sources = sources or SourceCache(self.config.source_roots)
        self.matchers = matchers
        self.rule_builder = SchemaFragmentBuilder(self.config)
        self.merger = SchemaMergeEngine(self.config.internal_fields)

    def assemble(self, descriptor: EndpointDescriptor, annotations: AnnotationSet | None = None) -> EndpointSchema:
        handler = self._handler(descriptor)
        annotations = annotations or AnnotationSet()
        if handler.obj is not None:
            annotations = annotations.merged_with(read_annotations(handler.obj))

        resolver = TypeResolver(self.sources, handler.path, handler.namespace)
        builder = ResourceSchemaBuilder(resolver, self.config, field_overrides=annotations.for_target("response"))

        rules = self._request_rules(descriptor, resolver, handler)
        rule_object = self.rule_builder.build_object(rules) if rules else None
        parameters = self._path_parameters(descriptor, handler, builder)
        if rule_object is not None:
            parameters.update(rule_object.properties or {})
        if handler.node is not None:
            query = QueryParameterDetector(self.config, builder).detect(handler.node, descriptor.http_method)
            for name, fragment in query.items():
                parameters.setdefault(name, fragment)
        request_body = self._request_body(descriptor, handler, builder, rule_object, parameters)

        for annotation in [*annotations.for_target("handler"), *annotations.for_target("request")]:
            name = annotation.target_field_name
            in_body = request_body is not None and name in (request_body.properties or {})
            if in_body:
                properties = dict(request_body.properties)
                properties[name] = apply_annotation(properties[name], annotation)
                request_body = request_body.evolve(properties=properties)
            if name in parameters or not in_body:
                parameters[name] = apply_annotation(parameters.get(name), annotation)

        signals = self._explicit_signals(annotations, builder)
        if handler.tree is not None and handler.node is not None:
            detector = ResponseSignalDetector(
                descriptor.handler_function,
                descriptor.handler_class,
                config=self.config,
                builder=builder,
                resolver=resolver,
                matchers=self.matchers,
                declared_type=descriptor.declared_response_type_name,
                validating=bool(rules) or descriptor.request_type_name is not None,
            )
            signals.extend(detector.detect(handler.tree))
        responses = self.merger.merge(signals)
        if not any(int(code) in self.config.success_statuses for code in responses if code.isdigit()):
            responses = self.merger.merge([*responses.values(), bare_schema(descriptor).responses["200"]])
        if "422" in responses and rules:
            responses["422"] = self._with_error_fields(responses["422"], rules)

        internal = self.config.internal_fields
        return EndpointSchema(
            http_method=descriptor.http_method,
            path_template=descriptor.path_template,
            parameters={k: strip_internal(v, internal) for k, v in parameters.items() if k not in internal},
            request_body=strip_internal(request_body, internal),
            responses=responses,
        )

    def assemble_all(
        self,
        endpoints: Iterable[tuple[EndpointDescriptor, AnnotationSet | None]],
        max_workers: int | None = None,
    ) -> list[EndpointSchema]:
        """Assemble every endpoint, fanning out over worker threads.

        Output order follows input order. An endpoint that fails outright
        degrades to a bare 200 schema.
        """
        endpoints = list(endpoints)
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda item: self._assemble_safely(*item), endpoints))

    def _assemble_safely(self, descriptor: EndpointDescriptor, annotations: AnnotationSet | None) -> EndpointSchema:
        try:
            return self.assemble(descriptor, annotations)
        except Exception as e:
            logger.warning("{} {}: assembly failed, using default schema: {!r}",
                           descriptor.http_method, descriptor.path_template, e)
            return bare_schema(descriptor)

    def _handler(self, descriptor: EndpointDescriptor) -> _Handler:
        obj = None
        namespace = None
        path = descriptor.handler_file
        if descriptor.handler_module:
            module = import_dotted(descriptor.handler_module)
            if module is not None:
                namespace = vars(module)
                obj = module
                for part in descriptor.handler_name.split("."):
                    obj = getattr(obj, part, None)
                    if obj is None:
                        break
                if path is None:
                    path = source_file_of(module)
            else:
                logger.debug("handler module {} not importable", descriptor.handler_module)

        tree = node = None
        if path is not None:
            try:
                tree = self.sources.parse(path)
            except ParseFailure as e:
                logger.warning("{}", e)
            else:
                node = find_function(tree, descriptor.handler_function, descriptor.handler_class)
                if node is None:
                    logger.debug("{} not found in {}", descriptor.handler_name, path)
        return _Handler(obj, namespace, Path(path).resolve() if path else None, tree, node)

    def _path_parameters(self, descriptor: EndpointDescriptor, handler: _Handler,
                         builder: ResourceSchemaBuilder) -> dict[str, SchemaFragment]:
        annotations = {}
        if handler.node is not None:
            for arg in (*handler.node.args.posonlyargs, *handler.node.args.args, *handler.node.args.kwonlyargs):
                if arg.annotation is not None:
                    annotations[arg.arg] = arg.annotation

        parameters = {}
        for name, converter in path_parameters(descriptor.path_template).items():
            fragment = None
            if name in annotations:
                try:
                    fragment = builder.map_node(annotations[name], builder.resolver, set())
                except TypeResolutionFailure as e:
                    logger.debug("path parameter {} type unresolved: {}", name, e)
            if fragment is None or fragment.kind is not Kind.PRIMITIVE or fragment.is_unknown:
                fragment = CONVERTERS.get(converter or "", SchemaFragment.primitive("string"))
            parameters[name] = fragment.evolve(required=True)
        return parameters

    def _request_rules(self, descriptor: EndpointDescriptor, resolver: TypeResolver,
                       handler: _Handler) -> dict[str, Any]:
        rules: dict[str, Any] = {}
        if descriptor.request_type_name:
            try:
                resolved = resolver.resolve(descriptor.request_type_name)
            except TypeResolutionFailure as e:
                logger.debug("request type unresolved: {}", e)
            else:
                rules.update(self._type_rules(resolved, resolver) or {})
        if handler.node is not None:
            for node in ast.walk(handler.node):
                if isinstance(node, ast.Call) and call_name(node) in self.config.inline_validators:
                    for argument in [*node.args, *(kw.value for kw in node.keywords)]:
                        inline = literal_rules(argument)
                        if inline:
                            rules.update(inline)
                            break
        return rules

    def _type_rules(self, resolved: ResolvedType, resolver: TypeResolver) -> dict[str, Any] | None:
        """Rules declared by a request type as a dict attribute or a literal-returning method."""
        attribute = self.config.rules_attribute
        if resolved.obj is not None:
            value = getattr(resolved.obj, attribute, None)
            if isinstance(value, dict):
                return dict(value)
        node = resolver.class_node(resolved)
        if node is None:
            return None
        for stmt in node.body:
            if isinstance(stmt, ast.Assign) and any(isinstance(t, ast.Name) and t.id == attribute for t in stmt.targets):
                return literal_rules(stmt.value)
            if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name) and stmt.target.id == attribute:
                return literal_rules(stmt.value)
        method = find_function(node, attribute)
        if method is None:
            return None
        found = None
        for sub in ast.walk(method):
            if isinstance(sub, ast.Return):
                found = literal_rules(sub.value) or found
        return found

    def _request_body(self, descriptor: EndpointDescriptor, handler: _Handler, builder: ResourceSchemaBuilder,
                      rule_object: SchemaFragment | None,
                      parameters: dict[str, SchemaFragment]) -> SchemaFragment | None:
        is_body = descriptor.http_method in self.config.body_methods
        if rule_object is not None:
            return rule_object if is_body else None

        dto = None
        if descriptor.request_type_name:
            try:
                dto = builder.build(descriptor.request_type_name)
            except TypeResolutionFailure as e:
                logger.debug("request type unresolved: {}", e)
        elif is_body and handler.node is not None:
            dto = self._parameter_dto(handler.node, builder, set(parameters))
        if dto is None or not dto.properties:
            return None
        if is_body:
            return dto
        parameters.update(dto.properties)
        return None

    def _parameter_dto(self, node: ast.FunctionDef | ast.AsyncFunctionDef, builder: ResourceSchemaBuilder,
                       taken: set[str]) -> SchemaFragment | None:
        """Object schema of the first handler parameter typed with a DTO."""
        for arg in (*node.args.posonlyargs, *node.args.args, *node.args.kwonlyargs):
            if arg.annotation is None or arg.arg in IMPLICIT_PARAMS or arg.arg in taken:
                continue
            try:
                fragment = builder.map_node(arg.annotation, builder.resolver, set())
            except TypeResolutionFailure:
                continue
            if fragment is not None and fragment.kind is Kind.OBJECT and fragment.properties:
                return fragment
        return None

    def _explicit_signals(self, annotations: AnnotationSet, builder: ResourceSchemaBuilder) -> list[ResponseSignal]:
        signals = []
        for annotation in annotations.responses:
            body = annotation.body
            if body is None and annotation.type_name:
                try:
                    body = builder.build(annotation.type_name)
                except TypeResolutionFailure as e:
                    logger.warning("documented response type {} unresolved: {}", annotation.type_name, e)
            signals.append(ResponseSignal(
                status_code=annotation.status_code,
                content_type=annotation.content_type,
                body=body,
                origin=Origin.EXPLICIT,
                description=annotation.description,
            ))
        return signals

    def _with_error_fields(self, signal: ResponseSignal, rules: dict[str, Any]) -> ResponseSignal:
        """List the validated field names under ``errors`` of a 422 body."""
        fields = dict.fromkeys(name.split(".")[0] for name in rules)
        errors = SchemaFragment.object({
            name: SchemaFragment.array_of(SchemaFragment.primitive("string")) for name in fields
        })
        body = signal.body or SchemaFragment.object()
        if body.kind is not Kind.OBJECT:
            return signal
        properties = dict(body.properties or {})
        existing = properties.get("errors")
        if existing is None or (existing.kind is Kind.OBJECT and not existing.properties):
            properties["errors"] = errors
        return signal.model_copy(update={"body": body.evolve(properties=properties)})
