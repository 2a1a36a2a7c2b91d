from pathlib import Path
from unittest.mock import patch

import pytest

from api_schema_infer.assembler import EndpointSchemaAssembler, bare_schema, path_parameters
from api_schema_infer.config import InferenceConfig
from api_schema_infer.schema.base import (
    AnnotationSet,
    EndpointDescriptor,
    FieldAnnotation,
    Kind,
    Origin,
    ResponseAnnotation,
    SchemaFragment,
)

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_APP = FIXTURES / "sample_app"
CONTROLLERS = SAMPLE_APP / "controllers.py"


@pytest.fixture
def assembler():
    return EndpointSchemaAssembler(InferenceConfig(source_roots=[SAMPLE_APP]))


def _descriptor(method, path, handler, **extra):
    return EndpointDescriptor(
        http_method=method, path_template=path, handler_file=CONTROLLERS, handler_name=handler, **extra,
    )


class TestScenarios:
    def test_json_helper_status_in_store(self, assembler):
        schema = assembler.assemble(_descriptor("POST", "/users", "UserController.store"))
        assert "201" in schema.responses
        assert schema.responses["201"].content_type == "application/json"

    def test_request_rules_become_parameters(self, assembler):
        schema = assembler.assemble(
            _descriptor("POST", "/users", "UserController.store", request_type_name="StoreUserRequest")
        )
        email = schema.parameters["email"]
        assert (email.type, email.format, email.required) == ("string", "email", True)
        age = schema.parameters["age"]
        assert (age.type, age.nullable, age.minimum, age.required) == ("integer", True, 0, False)
        assert schema.parameters["email"].to_dict()["format"] == "email"

    def test_no_success_signal_falls_back_to_empty_object(self, assembler):
        schema = assembler.assemble(_descriptor("GET", "/ping", "UserController.ping"))
        ok = schema.responses["200"]
        assert ok.body.kind is Kind.OBJECT
        assert ok.body.properties == {}
        assert "200" in schema.degraded_statuses()


class TestRequest:
    def test_body_method_gets_request_body(self, assembler):
        schema = assembler.assemble(
            _descriptor("POST", "/users", "UserController.store", request_type_name="StoreUserRequest")
        )
        assert set(schema.request_body.properties) == {"email", "age"}

    def test_query_method_has_no_body(self, assembler):
        schema = assembler.assemble(
            _descriptor("GET", "/users", "UserController.index", request_type_name="StoreUserRequest")
        )
        assert schema.request_body is None
        assert "email" in schema.parameters

    def test_rules_method_read_from_source(self, assembler):
        schema = assembler.assemble(
            _descriptor("PUT", "/users/{id}", "UserController.update", request_type_name="UpdateUserRequest")
        )
        body = schema.request_body.properties
        assert body["name"].nullable is True
        assert body["role"].enum == ["admin", "member"]
        assert body["address"].properties["street"].required is True
        assert body["tags"].items.type == "string"
        assert "password_confirmation" in body

    def test_inline_rules(self, assembler):
        schema = assembler.assemble(_descriptor("POST", "/posts", "validate_inline"))
        assert schema.parameters["title"].max_length == 100
        assert schema.request_body.properties["published"].type == "boolean"

    def test_dto_parameter_becomes_body(self, assembler):
        schema = assembler.assemble(_descriptor("POST", "/users", "create_user"))
        assert set(schema.request_body.properties) == {"name", "email", "age"}

    def test_path_parameters_typed_from_signature(self, assembler):
        schema = assembler.assemble(_descriptor("GET", "/documented/{id}", "documented"))
        assert schema.parameters["id"].type == "integer"
        assert schema.parameters["id"].required is True

    def test_path_converter(self, assembler):
        schema = assembler.assemble(_descriptor("GET", "/users/<int:user_id>", "flask_style"))
        assert schema.parameters["user_id"].type == "integer"

    def test_query_reads_become_parameters(self, assembler):
        schema = assembler.assemble(_descriptor("GET", "/search", "search"))
        assert set(schema.parameters) == {"q", "page", "tag", "sort"}
        assert schema.parameters["page"].default == 1
        assert schema.request_body is None

    def test_query_markers_and_pagination(self, assembler):
        users = assembler.assemble(_descriptor("GET", "/users", "find_users"))
        assert users.parameters["per_page"].maximum == 100
        orders = assembler.assemble(_descriptor("GET", "/orders", "list_orders"))
        assert {"limit", "archived", "page", "per_page"} <= set(orders.parameters)
        assert orders.to_dict()["parameters"]["limit"]["default"] == 20

    def test_handler_annotation_overrides_parameter(self, assembler):
        annotations = AnnotationSet(fields=[
            FieldAnnotation(target_field_name="age", attached_to="request", description="Age in years"),
        ])
        schema = assembler.assemble(
            _descriptor("POST", "/users", "UserController.store", request_type_name="StoreUserRequest"),
            annotations,
        )
        assert schema.parameters["age"].description == "Age in years"
        assert schema.request_body.properties["age"].description == "Age in years"


class TestResponses:
    def test_validation_errors_list_rule_fields(self, assembler):
        schema = assembler.assemble(
            _descriptor("POST", "/users", "UserController.store", request_type_name="StoreUserRequest")
        )
        errors = schema.responses["422"].body.properties["errors"]
        assert set(errors.properties) == {"email", "age"}

    def test_internal_fields_stripped(self, assembler):
        schema = assembler.assemble(_descriptor("GET", "/users/{id}", "UserController.show"))
        body = schema.responses["200"].body
        assert "_additional" not in body.properties
        assert "active" in body.properties

    def test_explicit_annotation_wins(self, assembler):
        annotations = AnnotationSet(responses=[
            ResponseAnnotation(status_code=200, type_name="UserResource", description="User"),
        ])
        schema = assembler.assemble(_descriptor("GET", "/health", "health"), annotations)
        ok = schema.responses["200"]
        assert ok.origin is Origin.EXPLICIT
        assert "profile" in ok.body.properties
        assert "status" in ok.body.properties

    def test_decorators_read_with_handler_module(self, assembler):
        descriptor = _descriptor("GET", "/documented/{id}", "documented", handler_module="sample_app.controllers")
        schema = assembler.assemble(descriptor)
        ok = schema.responses["200"]
        assert ok.origin is Origin.EXPLICIT
        assert ok.description == "The user"
        assert ok.body.properties["id"].type == "integer"
        assert "extra" in ok.body.properties
        assert schema.responses["410"].body.properties["reason"].type == "string"
        assert schema.parameters["id"].description == "User identifier"

    def test_responses_ordered(self, assembler):
        schema = assembler.assemble(_descriptor("DELETE", "/users/{id}", "UserController.destroy"))
        codes = list(schema.responses)
        assert codes == sorted(codes, key=int)
        assert {"204", "403", "404", "500"} <= set(codes)

    def test_unparsable_handler_file(self, assembler):
        descriptor = EndpointDescriptor(
            http_method="GET", path_template="/x", handler_file=SAMPLE_APP / "broken.py", handler_name="broken",
        )
        schema = assembler.assemble(descriptor)
        assert list(schema.responses) == ["200"]
        assert schema.responses["200"].origin is Origin.DEFAULT

    def test_unparsable_handler_with_error_annotation_keeps_success(self, assembler):
        descriptor = EndpointDescriptor(
            http_method="GET", path_template="/x", handler_file=SAMPLE_APP / "broken.py", handler_name="broken",
        )
        annotations = AnnotationSet(responses=[ResponseAnnotation(status_code=404, description="Missing")])
        schema = assembler.assemble(descriptor, annotations)
        assert list(schema.responses) == ["200", "404"]
        assert schema.responses["200"].origin is Origin.DEFAULT
        assert schema.responses["200"].body == SchemaFragment.object()
        assert schema.responses["404"].origin is Origin.EXPLICIT

    def test_missing_handler_node_keeps_success(self, assembler):
        annotations = AnnotationSet(responses=[ResponseAnnotation(status_code=403)])
        schema = assembler.assemble(_descriptor("GET", "/x", "no_such_handler"), annotations)
        assert "200" in schema.responses
        assert "403" in schema.responses

    def test_to_dict_uses_camel_case(self, assembler):
        data = assembler.assemble(
            _descriptor("POST", "/users", "UserController.store", request_type_name="StoreUserRequest")
        ).to_dict()
        assert data["httpMethod"] == "POST"
        assert data["responses"]["201"]["contentType"] == "application/json"
        assert "schema" in data["responses"]["201"]


class TestAssembleAll:
    def test_order_preserved(self, assembler):
        endpoints = [
            (_descriptor("GET", "/health", "health"), None),
            (_descriptor("GET", "/ping", "UserController.ping"), AnnotationSet()),
            (_descriptor("POST", "/users", "UserController.store"), None),
        ]
        schemas = assembler.assemble_all(endpoints, max_workers=3)
        assert [s.path_template for s in schemas] == ["/health", "/ping", "/users"]

    def test_repeated_runs_are_identical(self, assembler):
        endpoints = [(_descriptor("GET", "/users/{id}", "UserController.show"), None)] * 4
        first, *rest = assembler.assemble_all(endpoints, max_workers=4)
        assert all(s == first for s in rest)

    def test_failure_degrades_to_bare_schema(self, assembler):
        descriptor = _descriptor("GET", "/health", "health")
        with patch.object(EndpointSchemaAssembler, "assemble", side_effect=RuntimeError("boom")):
            (schema,) = assembler.assemble_all([(descriptor, None)])
        assert schema == bare_schema(descriptor)


class TestPathParameters:
    def test_templates(self):
        assert path_parameters("/users/{id}/posts/{post_id}") == {"id": None, "post_id": None}
        assert path_parameters("/users/<int:id>/<slug>") == {"id": "int", "slug": None}
        assert path_parameters("/files/{path:path}") == {"path": None}


class TestBareSchema:
    def test_default_200(self):
        schema = bare_schema(_descriptor("GET", "/x", "x"))
        assert schema.responses["200"].body == SchemaFragment.object()
