"""Combine response signals and schema fragments from independent sources."""

from collections.abc import Iterable

from loguru import logger

from api_schema_infer.schema.base import FieldAnnotation, Kind, ResponseSignal, SchemaFragment

# never filled from a lower-priority fragment
STRUCTURAL = {"kind", "type", "properties", "items"}

ANNOTATION_FIELDS = (
    "format", "description", "example", "required", "deprecated",
    "min_length", "max_length", "minimum", "maximum", "pattern",
)


def merge_fragments(primary: SchemaFragment | None, secondary: SchemaFragment | None) -> SchemaFragment | None:
    """Fill the gaps of ``primary`` from ``secondary``.

    Concretely set fields of ``primary`` are never overwritten. Properties
    are unioned and merged by name; items merge recursively. An ``unknown``
    shape counts as a gap as a whole. Fragments of different kinds do not
    merge: ``primary`` is kept.
    """
    if primary is None:
        return secondary
    if secondary is None or secondary.is_unknown:
        return primary
    if primary.is_unknown:
        carried = {
            name: getattr(primary, name)
            for name in primary.model_fields_set - STRUCTURAL
        }
        return secondary.evolve(**carried) if carried else secondary
    if primary.kind is not secondary.kind:
        logger.debug("not merging {} into {}", secondary.kind.value, primary.kind.value)
        return primary

    updates = {}
    for name in secondary.model_fields_set - primary.model_fields_set - STRUCTURAL:
        updates[name] = getattr(secondary, name)
    if primary.kind is Kind.OBJECT:
        properties = dict(primary.properties or {})
        for key, fragment in (secondary.properties or {}).items():
            properties[key] = merge_fragments(properties.get(key), fragment)
        updates["properties"] = properties
    elif primary.kind is Kind.ARRAY:
        updates["items"] = merge_fragments(primary.items, secondary.items)
    elif primary.type is None and secondary.type is not None:
        updates["type"] = secondary.type
    return primary.evolve(**updates) if updates else primary


def strip_internal(fragment: SchemaFragment | None, internal: Iterable[str]) -> SchemaFragment | None:
    """Drop bookkeeping keys from every property map, at every depth."""
    if fragment is None:
        return None
    internal = set(internal)
    if fragment.kind is Kind.OBJECT:
        properties = {
            key: strip_internal(value, internal)
            for key, value in (fragment.properties or {}).items()
            if key not in internal
        }
        return fragment.evolve(properties=properties)
    if fragment.kind is Kind.ARRAY and fragment.items is not None:
        return fragment.evolve(items=strip_internal(fragment.items, internal))
    return fragment


def apply_annotation(fragment: SchemaFragment | None, annotation: FieldAnnotation) -> SchemaFragment:
    """Override ``fragment`` with every value the annotation declares."""
    fragment = fragment or SchemaFragment()
    if annotation.type == "array":
        items = SchemaFragment.primitive(annotation.items) if annotation.items else fragment.items
        fragment = SchemaFragment.array_of(items, **_carried(fragment))
    elif annotation.type == "object":
        fragment = SchemaFragment.object(fragment.properties, **_carried(fragment))
    elif annotation.type is not None:
        fragment = SchemaFragment.primitive(annotation.type, **_carried(fragment))
    elif annotation.items is not None and fragment.kind is Kind.ARRAY:
        fragment = fragment.evolve(items=SchemaFragment.primitive(annotation.items))

    updates = {name: getattr(annotation, name) for name in ANNOTATION_FIELDS if getattr(annotation, name) is not None}
    return fragment.evolve(**updates) if updates else fragment


def _carried(fragment: SchemaFragment) -> dict:
    # keep the non-structural facts when an annotation changes the kind
    return {
        name: getattr(fragment, name)
        for name in fragment.model_fields_set - STRUCTURAL - {"format"}
    }


def required_fields(fragment: SchemaFragment) -> list[str]:
    """Names of the object properties flagged required, in declaration order."""
    return [name for name, prop in (fragment.properties or {}).items() if prop.required]


def _status_key(code: str) -> tuple[int, str]:
    return (int(code), code) if code.isdigit() else (10_000, code)


class SchemaMergeEngine:
    """Resolve competing response signals into one signal per status code."""

    def __init__(self, internal_fields: Iterable[str] = ("_additional", "_data_context")):
        self.internal_fields = list(internal_fields)

    def merge(self, signals: list[ResponseSignal]) -> dict[str, ResponseSignal]:
        """Group by status, keep the highest-priority signal, deep-merge the rest.

        Ties on priority go to the signal that came first, so repeated runs
        over the same source produce the same output.
        """
        groups: dict[str, list[tuple[int, ResponseSignal]]] = {}
        for index, signal in enumerate(signals):
            groups.setdefault(signal.status_code, []).append((index, signal))

        merged = {}
        for code, group in groups.items():
            ordered = [s for _, s in sorted(group, key=lambda pair: (-pair[1].origin.priority, pair[0]))]
            primary = ordered[0]
            body = strip_internal(primary.body, self.internal_fields)
            updates = {}
            for other in ordered[1:]:
                body = merge_fragments(body, strip_internal(other.body, self.internal_fields))
                if primary.description is None and other.description is not None:
                    updates.setdefault("description", other.description)
                if primary.line is None and other.line is not None:
                    updates.setdefault("line", other.line)
            merged[code] = primary.model_copy(update={"body": body, **updates})
        return {code: merged[code] for code in sorted(merged, key=_status_key)}
