import ast
from pathlib import Path

import pytest

from api_schema_infer.config import InferenceConfig
from api_schema_infer.dto.builder import ResourceSchemaBuilder
from api_schema_infer.dto.resolver import TypeResolver
from api_schema_infer.query import QueryParameterDetector, pagination_parameters
from api_schema_infer.schema.base import Kind
from api_schema_infer.source.syntax import SourceCache, find_function

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_APP = FIXTURES / "sample_app"
CONTROLLERS = SAMPLE_APP / "controllers.py"


@pytest.fixture
def sources():
    return SourceCache([SAMPLE_APP])


@pytest.fixture
def detector(sources):
    return QueryParameterDetector(InferenceConfig(), ResourceSchemaBuilder(TypeResolver(sources, CONTROLLERS)))


def _handler(sources, name):
    return find_function(sources.parse(CONTROLLERS), name)


def _text(text, name="f"):
    return find_function(ast.parse(text), name)


class TestQueryMappingLookups:
    def test_flask_and_starlette_lookups(self, detector, sources):
        params = detector.detect(_handler(sources, "search"), "GET")
        assert list(params) == ["q", "page", "tag", "sort"]
        assert (params["q"].type, params["q"].default) == ("string", "")
        assert (params["page"].type, params["page"].default) == ("integer", 1)
        assert params["tag"].kind is Kind.ARRAY
        assert params["tag"].items.type == "string"
        assert params["sort"].required is True

    def test_first_read_wins(self, detector, sources):
        params = detector.detect(_handler(sources, "search"), "GET")
        assert params["q"].type == "string"

    def test_lookups_apply_to_body_methods(self, detector, sources):
        assert "page" in detector.detect(_handler(sources, "search"), "POST")

    def test_other_receivers_are_ignored(self, detector):
        node = _text("def f(session):\n    return session.args.get('q')\n")
        assert detector.detect(node, "GET") == {}

    def test_dynamic_names_are_ignored(self, detector):
        node = _text("def f(request, key):\n    return request.args.get(key)\n")
        assert detector.detect(node, "GET") == {}


class TestTypedAccessors:
    def test_accessors_on_query_methods(self, detector, sources):
        params = detector.detect(_handler(sources, "list_orders"), "GET")
        assert (params["limit"].type, params["limit"].default) == ("integer", 20)
        assert params["archived"].type == "boolean"
        assert params["limit"].required is False

    def test_accessors_skipped_for_body_methods(self, detector, sources):
        params = detector.detect(_handler(sources, "list_orders"), "POST")
        assert "limit" not in params
        assert "archived" not in params

    def test_collect_is_array(self, detector):
        params = detector.detect(_text("def f(request):\n    return request.collect('ids')\n"), "DELETE")
        assert params["ids"].kind is Kind.ARRAY


class TestPagination:
    def test_page_pagination(self, detector, sources):
        params = detector.detect(_handler(sources, "list_orders"), "GET")
        assert params["page"].type == "integer"
        assert params["page"].example == 1
        assert params["per_page"].example == 15

    def test_cursor_pagination(self, detector, sources):
        params = detector.detect(_handler(sources, "feed"), "GET")
        assert list(params) == ["limit", "cursor", "per_page"]
        assert params["cursor"].type == "string"
        assert params["limit"].type == "integer"

    def test_explicit_read_is_not_replaced(self, detector):
        node = _text("def f(request, repo):\n    page = request.args.get('page', 'first')\n    return repo.paginate(page)\n")
        params = detector.detect(node, "GET")
        assert params["page"].type == "string"
        assert "per_page" in params

    def test_helper_table(self):
        assert set(pagination_parameters("page")) == {"page", "per_page"}
        assert pagination_parameters("cursor", 50)["per_page"].example == 50


class TestQueryMarkers:
    def test_signature_markers(self, detector, sources):
        params = detector.detect(_handler(sources, "find_users"), "GET")
        assert list(params) == ["q", "page", "per_page", "token"]
        q = params["q"]
        assert (q.type, q.nullable, q.max_length, q.description) == ("string", True, 50, "Search text")
        assert q.required is False
        assert (params["page"].minimum, params["page"].default) == (1, 1)
        assert (params["per_page"].maximum, params["per_page"].default) == (100, 20)
        assert params["token"].required is True

    def test_without_builder_types_come_from_defaults(self):
        node = _text("def f(limit=Query(10), name=Query(None), flag: bool = Query(False)):\n    pass\n")
        params = QueryParameterDetector().detect(node, "GET")
        assert params["limit"].type == "integer"
        assert params["name"].type == "string"
        assert params["flag"].type == "boolean"

    def test_plain_defaults_are_not_query_markers(self, detector):
        node = _text("def f(limit: int = 10):\n    pass\n")
        assert detector.detect(node, "GET") == {}
