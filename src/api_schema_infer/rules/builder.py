"""Map rule tokens to schema fragments.

Tokens are applied left to right and later tokens may overwrite what earlier
ones concluded, the way an ordered validation pipeline reads.
"""

import re
from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger

from api_schema_infer.config import InferenceConfig
from api_schema_infer.rules.parser import RuleSpec, parse_rules
from api_schema_infer.schema.base import Kind, RuleToken, SchemaFragment

NUMERIC_TYPES = ("integer", "number")

CONDITIONAL_RULES = {
    "required_if": "Required if",
    "required_unless": "Required unless",
    "required_with": "Required with",
    "required_with_all": "Required with all of",
    "required_without": "Required without",
    "required_without_all": "Required without all of",
    "prohibited_if": "Prohibited if",
    "prohibited_unless": "Prohibited unless",
    "exclude_if": "Excluded if",
    "exclude_unless": "Excluded unless",
}

# Rules with no schema effect; listed so they never reach the type table.
DOCUMENTATION_ONLY = {
    "not_in", "not_regex", "confirmed", "exists", "unique", "present",
    "prohibited", "filled", "bail", "distinct", "different", "same",
}

STRFTIME_TIME = re.compile(r"%[HIMSfpXTcR]")
PHP_TIME = re.compile(r"[HGhgisuvAaUcr]")


def _number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def strip_delimiters(pattern: str) -> str:
    """``/^[a-z]+$/i`` -> ``^[a-z]+$``; undelimited patterns pass through."""
    pattern = pattern.strip()
    if len(pattern) < 2:
        return pattern
    delimiter = pattern[0]
    if delimiter.isalnum() or delimiter in "\\^":
        return pattern
    end = pattern.rfind(delimiter)
    if end <= 0:
        return pattern
    return pattern[1:end]


def date_format_granularity(params: list[str]) -> str:
    """``date-time`` when the format string carries a time component."""
    pattern = ",".join(params)
    if not pattern:
        return "date-time"
    matcher = STRFTIME_TIME if "%" in pattern else PHP_TIME
    return "date-time" if matcher.search(pattern) else "date"


class _Draft:
    """Mutable state while folding tokens into a fragment."""

    def __init__(self):
        self.values: dict[str, Any] = {"kind": Kind.PRIMITIVE}
        self.required = False
        self.notes: list[str] = []

    @property
    def kind(self) -> Kind:
        return self.values["kind"]

    @property
    def type(self) -> str:
        return self.values.get("type", "string")

    def set_type(self, type_: str, format_: str | None = None, pattern: str | None = None) -> None:
        self._rehome_bounds(type_)
        if type_ == "array":
            self.values.pop("format", None)
            self.values.update(kind=Kind.ARRAY, type="array")
            self.values.setdefault("items", SchemaFragment.primitive("string"))
            return
        if type_ == "object":
            self.values.pop("items", None)
            self.values.pop("format", None)
            self.values.update(kind=Kind.OBJECT, type="object")
            self.values.setdefault("properties", {})
            return
        self.values.pop("items", None)
        self.values.pop("properties", None)
        if self.values.get("type", type_) != type_:
            self.values.pop("format", None)
            self.values.pop("pattern", None)
        self.values.update(kind=Kind.PRIMITIVE, type=type_)
        if format_ is not None:
            self.values["format"] = format_
        if pattern is not None:
            self.values["pattern"] = pattern

    def _rehome_bounds(self, type_: str) -> None:
        """Move bounds read before the type rule onto the constraint the new type uses."""
        numeric = type_ in NUMERIC_TYPES
        if type_ == "array":
            for key, label in (("min_length", "Minimum"), ("minimum", "Minimum"),
                               ("max_length", "Maximum"), ("maximum", "Maximum")):
                if key in self.values and self.kind is not Kind.ARRAY:
                    self.notes.append(f"{label} {self.values.pop(key)} items")
            return
        if type_ == "object":
            return
        pairs = (("minimum", "min_length"), ("maximum", "max_length"))
        for number_key, length_key in pairs:
            source, target = (length_key, number_key) if numeric else (number_key, length_key)
            if source in self.values:
                value = self.values.pop(source)
                self.values[target] = value if numeric else int(value)
        enum = self.values.get("enum")
        if numeric and enum:
            numbers = [_number(str(v)) for v in enum]
            if all(n is not None for n in numbers):
                self.values.update(enum=numbers, example=numbers[0])

    def freeze(self) -> SchemaFragment:
        values = dict(self.values)
        if self.required:
            values["required"] = True
        if self.notes:
            values["description"] = "; ".join(self.notes)
        return SchemaFragment(**values)


class SchemaFragmentBuilder:
    """Fold an ordered list of rule tokens into one ``SchemaFragment``."""

    def __init__(self, config: InferenceConfig | None = None):
        self.config = config or InferenceConfig()
        self._handlers: dict[str, Callable[[_Draft, list[str]], None]] = {
            "required": self._required,
            "nullable": self._nullable,
            "sometimes": self._sometimes,
            "array": self._array,
            "date_format": self._date_format,
            "min": self._min,
            "max": self._max,
            "size": self._size,
            "between": self._between,
            "in": self._in,
            "regex": self._regex,
            "accepted": self._accepted,
            "mimes": self._mimes,
            "mimetypes": self._mimes,
        }

    def build(self, tokens: list[RuleToken]) -> SchemaFragment:
        draft = _Draft()
        for token in tokens:
            self._apply(draft, token)
        return draft.freeze()

    def build_rules(self, rule_spec: RuleSpec | None) -> SchemaFragment:
        """Tokenize and build in one step."""
        return self.build(parse_rules(rule_spec))

    def build_object(self, rules: Mapping[str, RuleSpec]) -> SchemaFragment:
        """Build an object fragment from a whole ``{field: rules}`` map.

        Dotted keys nest objects (``address.street``), ``*`` segments build
        array items (``tags.*``, ``items.*.sku``) and ``confirmed`` adds a
        ``<field>_confirmation`` twin.
        """
        root = _Node()
        confirmed = []
        for field, spec in rules.items():
            tokens = parse_rules(spec)
            root.insert(field.split("."), self.build(tokens))
            if "." not in field and any(t.name == "confirmed" for t in tokens):
                confirmed.append(field)
        for field in confirmed:
            twin = f"{field}_confirmation"
            if twin not in root.children:
                root.children[twin] = root.children[field]
        return SchemaFragment.object(root.freeze_properties())

    def _apply(self, draft: _Draft, token: RuleToken) -> None:
        handler = self._handlers.get(token.name)
        if handler is not None:
            handler(draft, token.params)
            return
        if token.name in CONDITIONAL_RULES:
            self._conditional(draft, CONDITIONAL_RULES[token.name], token.params)
            return
        if token.name in DOCUMENTATION_ONLY:
            return
        mapping = self.config.rule_types.get(token.name)
        if mapping is None:
            logger.debug("unrecognised rule {!r} left without schema effect", token.name)
            return
        draft.set_type(mapping.type, mapping.format, mapping.pattern)

    def _required(self, draft: _Draft, params: list[str]) -> None:
        draft.required = True

    def _nullable(self, draft: _Draft, params: list[str]) -> None:
        draft.values["nullable"] = True

    def _sometimes(self, draft: _Draft, params: list[str]) -> None:
        # an explicit "required" anywhere in the list still wins
        draft.values["nullable"] = True

    def _array(self, draft: _Draft, params: list[str]) -> None:
        draft.set_type("array")

    def _date_format(self, draft: _Draft, params: list[str]) -> None:
        draft.set_type("string", date_format_granularity(params))

    def _bound(self, draft: _Draft, value: int | float, lower: bool) -> None:
        if draft.kind is Kind.ARRAY:
            draft.notes.append(f"{'Minimum' if lower else 'Maximum'} {value} items")
        elif draft.type in NUMERIC_TYPES:
            draft.values["minimum" if lower else "maximum"] = value
        else:
            draft.values["min_length" if lower else "max_length"] = int(value)

    def _min(self, draft: _Draft, params: list[str]) -> None:
        value = _number(params[0]) if params else None
        if value is not None:
            self._bound(draft, value, lower=True)

    def _max(self, draft: _Draft, params: list[str]) -> None:
        value = _number(params[0]) if params else None
        if value is not None:
            self._bound(draft, value, lower=False)

    def _size(self, draft: _Draft, params: list[str]) -> None:
        value = _number(params[0]) if params else None
        if value is None:
            return
        if draft.kind is Kind.ARRAY:
            draft.notes.append(f"Exactly {value} items")
            return
        self._bound(draft, value, lower=True)
        self._bound(draft, value, lower=False)

    def _between(self, draft: _Draft, params: list[str]) -> None:
        if len(params) < 2:
            return
        low, high = _number(params[0]), _number(params[1])
        if low is None or high is None:
            return
        if draft.kind is Kind.ARRAY:
            draft.notes.append(f"Between {low} and {high} items")
            return
        self._bound(draft, low, lower=True)
        self._bound(draft, high, lower=False)

    def _in(self, draft: _Draft, params: list[str]) -> None:
        if not params:
            return
        values: list[Any] = list(params)
        if draft.type in NUMERIC_TYPES:
            numbers = [_number(p) for p in params]
            if all(n is not None for n in numbers):
                values = numbers
        draft.values["enum"] = values
        draft.values["example"] = values[0]

    def _regex(self, draft: _Draft, params: list[str]) -> None:
        if params:
            draft.values["pattern"] = strip_delimiters(",".join(params))

    def _accepted(self, draft: _Draft, params: list[str]) -> None:
        draft.set_type("boolean")

    def _mimes(self, draft: _Draft, params: list[str]) -> None:
        draft.set_type("string", "binary")
        if params:
            draft.notes.append("Accepted types: " + ", ".join(params))

    def _conditional(self, draft: _Draft, prefix: str, params: list[str]) -> None:
        if not params:
            return
        if prefix.endswith(("if", "unless")):
            field, values = params[0], params[1:]
            condition = field + (" = " + ", ".join(values) if values else "")
        else:
            condition = ", ".join(params)
        draft.notes.append(f"{prefix} {condition}")


class _Node:
    """Mutable tree used while assembling nested rule maps."""

    def __init__(self):
        self.fragment: SchemaFragment | None = None
        self.children: dict[str, "_Node"] = {}
        self.item: "_Node | None" = None

    def insert(self, path: list[str], fragment: SchemaFragment) -> None:
        head, rest = path[0], path[1:]
        child = self.children.setdefault(head, _Node())
        if not rest:
            child.fragment = fragment
        elif rest[0] == "*":
            if child.item is None:
                child.item = _Node()
            if len(rest) == 1:
                child.item.fragment = fragment
            else:
                child.item.insert(rest[1:], fragment)
        else:
            child.insert(rest, fragment)

    def freeze_properties(self) -> dict[str, SchemaFragment]:
        return {name: child.freeze() for name, child in self.children.items()}

    def freeze(self) -> SchemaFragment:
        base = self.fragment
        if self.item is not None:
            items = self.item.freeze()
            if base is None:
                return SchemaFragment.array_of(items)
            return base.evolve(kind=Kind.ARRAY, type="array", items=items, properties=None, format=None)
        if self.children:
            properties = self.freeze_properties()
            if base is None:
                return SchemaFragment.object(properties)
            merged = {**(base.properties or {}), **properties}
            return base.evolve(kind=Kind.OBJECT, type="object", properties=merged, items=None, format=None)
        return base if base is not None else SchemaFragment()
