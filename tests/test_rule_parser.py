from enum import Enum

from api_schema_infer.rules.parser import parse_entry, parse_rules


class Color(Enum):
    RED = "red"
    BLUE = "blue"


class Uppercase:
    pass


def _pairs(tokens):
    return [(t.name, t.params) for t in tokens]


class TestParseRules:
    def test_pipe_separated_string(self):
        tokens = parse_rules("required|string|max:255")
        assert _pairs(tokens) == [("required", []), ("string", []), ("max", ["255"])]

    def test_params_split_on_comma(self):
        tokens = parse_rules("in:a,b,c")
        assert tokens[0].params == ["a", "b", "c"]

    def test_only_first_colon_splits_name(self):
        tokens = parse_rules("date_format:H:i:s")
        assert tokens[0].name == "date_format"
        assert tokens[0].params == ["H:i:s"]

    def test_list_is_flattened_one_level(self):
        tokens = parse_rules(["required|integer", "min:1", "max:10"])
        assert [t.name for t in tokens] == ["required", "integer", "min", "max"]

    def test_order_is_preserved(self):
        tokens = parse_rules("numeric|integer")
        assert [t.name for t in tokens] == ["numeric", "integer"]

    def test_unknown_rules_are_kept(self):
        tokens = parse_rules("required|phone_number:NL")
        assert tokens[1].name == "phone_number"
        assert tokens[1].params == ["NL"]

    def test_trailing_and_empty_segments_are_dropped(self):
        assert _pairs(parse_rules("required||string|")) == [("required", []), ("string", [])]

    def test_empty_input(self):
        assert parse_rules("") == []
        assert parse_rules(None) == []
        assert parse_rules([]) == []

    def test_whitespace_is_trimmed(self):
        tokens = parse_rules(" required | in: a , b ")
        assert _pairs(tokens) == [("required", []), ("in", ["a", "b"])]


class TestParseEntry:
    def test_enum_class_becomes_in_rule(self):
        token = parse_entry(Color)
        assert token.name == "in"
        assert token.params == ["red", "blue"]

    def test_rule_object_is_named_after_its_class(self):
        assert parse_entry(Uppercase()).name == "Uppercase"

    def test_colon_without_name_is_dropped(self):
        assert parse_entry(":5") is None
