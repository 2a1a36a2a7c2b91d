from api_schema_infer.schema.base import EndpointSchema, Origin, ResponseSignal, SchemaFragment


class TestSchemaFragmentSerialization:
    def test_false_flags_are_omitted(self):
        data = SchemaFragment.primitive("string").to_dict()
        assert data == {"kind": "primitive", "type": "string"}

    def test_true_flags_are_kept(self):
        data = SchemaFragment.primitive("integer", nullable=True, required=True, deprecated=True).to_dict()
        assert data["nullable"] is True
        assert data["required"] is True
        assert data["deprecated"] is True

    def test_nested_fragments_are_trimmed(self):
        fragment = SchemaFragment.object({
            "tags": SchemaFragment.array_of(SchemaFragment.primitive("string")),
            "code": SchemaFragment.primitive("string", min_length=2, required=True),
        })
        data = fragment.to_dict()
        assert data["properties"]["tags"] == {
            "kind": "array", "type": "array", "items": {"kind": "primitive", "type": "string"},
        }
        assert data["properties"]["code"] == {
            "kind": "primitive", "type": "string", "minLength": 2, "required": True,
        }

    def test_endpoint_schema_output(self):
        schema = EndpointSchema(
            http_method="GET",
            path_template="/ping",
            parameters={"q": SchemaFragment.primitive("string")},
            responses={"200": ResponseSignal(status_code=200, body=SchemaFragment.object(), origin=Origin.DEFAULT)},
        )
        data = schema.to_dict()
        assert data["parameters"]["q"] == {"kind": "primitive", "type": "string"}
        assert data["responses"]["200"]["schema"] == {"kind": "object", "type": "object", "properties": {}}
        assert data["responses"]["200"]["origin"] == "default"
