"""Validation rule tokenizer.

Turns ``"required|string|max:255"`` (or a list of entries, each possibly a
``|``-joined string) into an ordered list of ``RuleToken``. Never raises:
malformed segments are dropped.
"""

import enum
from collections.abc import Iterable
from typing import Any

from api_schema_infer.schema.base import RuleToken

RuleSpec = str | Iterable[Any]


def parse_rules(rule_spec: RuleSpec | None) -> list[RuleToken]:
    """Parse a rule string or rule list into tokens, preserving order."""
    if rule_spec is None:
        return []
    if isinstance(rule_spec, str):
        entries: list[Any] = rule_spec.split("|")
    else:
        entries = []
        for item in rule_spec:
            if isinstance(item, str):
                entries.extend(item.split("|"))
            else:
                entries.append(item)

    tokens = []
    for entry in entries:
        token = parse_entry(entry)
        if token is not None:
            tokens.append(token)
    return tokens


def parse_entry(entry: Any) -> RuleToken | None:
    """Parse one rule entry; returns None for empty segments."""
    if isinstance(entry, type) and issubclass(entry, enum.Enum):
        return RuleToken(name="in", params=[str(member.value) for member in entry])
    if not isinstance(entry, str):
        return RuleToken(name=type(entry).__name__ if not isinstance(entry, type) else entry.__name__)

    entry = entry.strip()
    if not entry:
        return None
    name, sep, raw_params = entry.partition(":")
    name = name.strip()
    if not name:
        return None
    params = [p.strip() for p in raw_params.split(",")] if sep else []
    return RuleToken(name=name, params=params)
