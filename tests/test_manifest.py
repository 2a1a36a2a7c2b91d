from pathlib import Path

import pytest

from api_schema_infer.errors import ConfigError
from api_schema_infer.manifest import load_manifest

FIXTURES = Path(__file__).parent / "fixtures"


class TestLoadManifest:
    def test_reads_endpoints_in_order(self):
        endpoints = load_manifest(FIXTURES / "endpoints.yaml")
        assert [d.path_template for d, _ in endpoints] == ["/users", "/users/{id}", "/ping"]

    def test_snake_and_camel_keys(self):
        (store, _), (show, _), _ = load_manifest(FIXTURES / "endpoints.yaml")
        assert store.http_method == "POST"
        assert store.request_type_name == "StoreUserRequest"
        assert show.handler_class == "UserController"
        assert show.handler_function == "show"

    def test_relative_handler_file_resolves_against_manifest(self):
        (descriptor, _), *_ = load_manifest(FIXTURES / "endpoints.yaml")
        assert descriptor.handler_file == FIXTURES / "sample_app" / "controllers.py"
        assert descriptor.handler_file.exists()

    def test_annotations(self):
        _, (_, annotations), (_, empty) = load_manifest(FIXTURES / "endpoints.yaml")
        assert annotations.fields[0].target_field_name == "id"
        assert annotations.fields[0].attached_to == "handler"
        assert annotations.responses[0].status_code == "200"
        assert annotations.responses[0].type_name == "UserResource"
        assert empty.fields == [] and empty.responses == []

    def test_missing_endpoints_list(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text("routes: []\n")
        with pytest.raises(ConfigError, match="endpoints"):
            load_manifest(path)

    def test_invalid_entry(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text("endpoints:\n  - http_method: GET\n")
        with pytest.raises(ConfigError, match="#0"):
            load_manifest(path)

    def test_non_mapping_entry(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text("endpoints:\n  - GET /users\n")
        with pytest.raises(ConfigError, match="not a mapping"):
            load_manifest(path)

    def test_unreadable_yaml(self, tmp_path):
        path = tmp_path / "manifest.yaml"
        path.write_text("endpoints: [\n")
        with pytest.raises(ConfigError, match="cannot read"):
            load_manifest(path)
