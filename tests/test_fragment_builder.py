import pytest

from api_schema_infer.config import InferenceConfig, RuleType
from api_schema_infer.rules.builder import SchemaFragmentBuilder, date_format_granularity, strip_delimiters
from api_schema_infer.schema.base import Kind


@pytest.fixture
def builder():
    return SchemaFragmentBuilder()


class TestPresence:
    def test_required_sets_flag(self, builder):
        assert builder.build_rules("required|string").required is True

    def test_required_defaults_to_false(self, builder):
        assert builder.build_rules("string|max:5").required is False

    def test_nullable_in_any_position(self, builder):
        first = builder.build_rules("nullable|integer")
        last = builder.build_rules("integer|nullable")
        assert first.nullable and last.nullable
        assert first.type == last.type == "integer"

    def test_sometimes_relaxes_to_nullable(self, builder):
        fragment = builder.build_rules("sometimes|string")
        assert fragment.nullable is True
        assert fragment.required is False

    def test_explicit_required_wins_over_sometimes(self, builder):
        assert builder.build_rules("sometimes|required|string").required is True


class TestTypes:
    @pytest.mark.parametrize("rules, type_, format_", [
        ("email", "string", "email"),
        ("url", "string", "uri"),
        ("uuid", "string", "uuid"),
        ("date", "string", "date"),
        ("ip", "string", "ipv4"),
        ("numeric", "number", None),
        ("boolean", "boolean", None),
        ("file", "string", "binary"),
    ])
    def test_type_rules(self, builder, rules, type_, format_):
        fragment = builder.build_rules(rules)
        assert fragment.type == type_
        assert fragment.format == format_

    def test_string_then_date_keeps_date_format(self, builder):
        fragment = builder.build_rules("string|date")
        assert (fragment.type, fragment.format) == ("string", "date")

    def test_later_type_overrides_earlier(self, builder):
        assert builder.build_rules("numeric|integer").type == "integer"

    def test_json_is_object(self, builder):
        fragment = builder.build_rules("json")
        assert fragment.kind is Kind.OBJECT
        assert fragment.properties == {}

    def test_array_defaults_items_to_string(self, builder):
        fragment = builder.build_rules("array")
        assert fragment.kind is Kind.ARRAY
        assert fragment.items.type == "string"

    def test_date_format_granularity(self, builder):
        assert builder.build_rules("date_format:Y-m-d").format == "date"
        assert builder.build_rules("date_format:Y-m-d H:i:s").format == "date-time"
        assert builder.build_rules("date_format:%Y-%m-%d").format == "date"
        assert builder.build_rules("date_format:%Y-%m-%dT%H:%M").format == "date-time"

    def test_alpha_sets_pattern(self, builder):
        assert builder.build_rules("alpha").pattern == "^[a-zA-Z]+$"

    def test_unknown_rule_has_no_effect(self, builder):
        fragment = builder.build_rules("required|string|phone_number")
        assert fragment.type == "string"
        assert fragment.format is None

    def test_custom_rule_table(self):
        config = InferenceConfig(rule_types={"phone": RuleType(type="string", format="phone")})
        fragment = SchemaFragmentBuilder(config).build_rules("phone")
        assert fragment.format == "phone"


class TestConstraints:
    def test_integer_bounds(self, builder):
        fragment = builder.build_rules("integer|min:1|max:10")
        assert fragment.kind is Kind.PRIMITIVE
        assert fragment.type == "integer"
        assert (fragment.minimum, fragment.maximum) == (1, 10)
        assert fragment.min_length is None

    def test_string_bounds_are_lengths(self, builder):
        fragment = builder.build_rules("string|min:2|max:255")
        assert (fragment.min_length, fragment.max_length) == (2, 255)
        assert fragment.minimum is None

    def test_size_sets_both_bounds(self, builder):
        fragment = builder.build_rules("string|size:5")
        assert (fragment.min_length, fragment.max_length) == (5, 5)

    def test_between_on_number(self, builder):
        fragment = builder.build_rules("numeric|between:0.5,9.5")
        assert (fragment.minimum, fragment.maximum) == (0.5, 9.5)

    def test_array_bounds_are_descriptive_only(self, builder):
        fragment = builder.build_rules("array|min:1|max:3")
        assert fragment.minimum is None and fragment.min_length is None
        assert fragment.description == "Minimum 1 items; Maximum 3 items"

    def test_in_sets_enum_and_example(self, builder):
        fragment = builder.build_rules("string|in:a,b,c")
        assert fragment.enum == ["a", "b", "c"]
        assert fragment.example == "a"

    def test_in_on_integer_converts_values(self, builder):
        assert builder.build_rules("integer|in:1,2").enum == [1, 2]

    def test_bounds_before_numeric_type_move_to_minimum(self, builder):
        fragment = builder.build_rules("min:3|max:9|integer")
        assert (fragment.minimum, fragment.maximum) == (3, 9)
        assert fragment.min_length is None and fragment.max_length is None

    def test_bounds_before_array_type_become_descriptive(self, builder):
        fragment = builder.build_rules("min:1|array")
        assert fragment.min_length is None
        assert fragment.description == "Minimum 1 items"

    def test_in_before_integer_converts_values(self, builder):
        fragment = builder.build_rules("in:1,2|integer")
        assert fragment.enum == [1, 2]
        assert fragment.example == 1

    def test_not_in_is_documentation_only(self, builder):
        fragment = builder.build_rules("string|not_in:x,y")
        assert fragment.enum is None
        assert fragment.description is None

    def test_regex_strips_delimiters(self, builder):
        assert builder.build_rules("regex:/^[a-z]+$/i").pattern == "^[a-z]+$"

    def test_regex_with_comma_survives(self, builder):
        assert builder.build_rules("regex:/^a{1,3}$/").pattern == "^a{1,3}$"

    def test_conditional_rules_describe(self, builder):
        fragment = builder.build_rules("required_if:type,company|string")
        assert fragment.description == "Required if type = company"
        assert fragment.required is False

    def test_mimes(self, builder):
        fragment = builder.build_rules("mimes:jpg,png")
        assert fragment.format == "binary"
        assert fragment.description == "Accepted types: jpg, png"


class TestBuildObject:
    def test_nested_rule_map(self, builder):
        fragment = builder.build_object({
            "address.street": "required|string",
            "tags.*": "integer",
            "items.*.sku": "required|string",
        })
        address = fragment.properties["address"]
        assert address.kind is Kind.OBJECT
        assert address.properties["street"].required is True
        assert fragment.properties["tags"].items.type == "integer"
        assert fragment.properties["items"].items.properties["sku"].type == "string"

    def test_parent_rules_are_kept_for_arrays(self, builder):
        fragment = builder.build_object({"tags": "required|array", "tags.*": "string|max:20"})
        tags = fragment.properties["tags"]
        assert tags.required is True
        assert tags.items.max_length == 20

    def test_confirmed_adds_twin(self, builder):
        fragment = builder.build_object({"password": "required|string|confirmed"})
        assert "password_confirmation" in fragment.properties


class TestHelpers:
    def test_strip_delimiters_passthrough(self):
        assert strip_delimiters("^abc$") == "^abc$"
        assert strip_delimiters("#\\d+#") == "\\d+"

    def test_granularity_without_pattern(self):
        assert date_format_granularity([]) == "date-time"
