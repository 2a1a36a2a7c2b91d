"""Data models shared by every stage of the inference engine.

All models are frozen pydantic models. Field names are snake_case in Python
and serialise with camelCase aliases (``minLength``, ``statusCode``).
"""

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer, model_validator
from pydantic.alias_generators import to_camel

FROZEN = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

UNKNOWN = "unknown"

# only written out when true
FLAGS = ("nullable", "required", "deprecated")


class Kind(str, Enum):
    PRIMITIVE = "primitive"
    OBJECT = "object"
    ARRAY = "array"


class Origin(str, Enum):
    """Provenance of a response signal; decides merge priority."""

    EXPLICIT = "explicit-annotation"
    DETECTED_CALL = "detected-call"
    DETECTED_THROW = "detected-throw"
    DEFAULT = "default"

    @property
    def priority(self) -> int:
        if self is Origin.EXPLICIT:
            return 3
        if self is Origin.DEFAULT:
            return 1
        return 2


class SchemaFragment(BaseModel):
    """Structural description of one value's shape.

    Only the fields passed at construction end up in ``model_fields_set``;
    everything else is a gap that a lower-priority source may fill.
    """

    model_config = FROZEN

    kind: Kind = Kind.PRIMITIVE
    type: str | None = "string"
    format: str | None = None
    nullable: bool = False
    enum: list[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    example: Any = None
    default: Any = None
    properties: dict[str, "SchemaFragment"] | None = None
    items: "SchemaFragment | None" = None
    required: bool = False
    description: str | None = None
    deprecated: bool = False

    @model_validator(mode="before")
    @classmethod
    def _complete_container(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        kind = data.get("kind", Kind.PRIMITIVE)
        if kind in (Kind.OBJECT, "object"):
            data = {**data, "type": "object"}
            if data.get("properties") is None:
                data["properties"] = {}
        elif kind in (Kind.ARRAY, "array"):
            data = {**data, "type": "array"}
            if data.get("items") is None:
                data["items"] = {"kind": Kind.PRIMITIVE, "type": "string"}
        return data

    @model_serializer(mode="wrap")
    def _drop_false_flags(self, handler):
        data = handler(self)
        for flag in FLAGS:
            if data.get(flag) is False:
                del data[flag]
        return data

    @classmethod
    def primitive(cls, type_: str, format_: str | None = None, **extra: Any) -> "SchemaFragment":
        values: dict[str, Any] = {"kind": Kind.PRIMITIVE, "type": type_, **extra}
        if format_ is not None:
            values["format"] = format_
        return cls(**values)

    @classmethod
    def object(cls, properties: dict[str, "SchemaFragment"] | None = None, **extra: Any) -> "SchemaFragment":
        return cls(kind=Kind.OBJECT, properties=properties or {}, **extra)

    @classmethod
    def array_of(cls, items: "SchemaFragment | None" = None, **extra: Any) -> "SchemaFragment":
        return cls(kind=Kind.ARRAY, items=items, **extra)

    @classmethod
    def unknown(cls, **extra: Any) -> "SchemaFragment":
        return cls(kind=Kind.PRIMITIVE, type=UNKNOWN, **extra)

    @property
    def is_unknown(self) -> bool:
        return self.kind is Kind.PRIMITIVE and self.type == UNKNOWN

    def evolve(self, **changes: Any) -> "SchemaFragment":
        """Copy with ``changes`` applied; changed fields count as set."""
        return self.model_copy(update=changes)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RuleToken(BaseModel):
    """One validation rule entry split into its name and parameters."""

    model_config = FROZEN

    name: str
    params: list[str] = []


class ResponseSignal(BaseModel):
    """A candidate (status, schema) pairing detected from one source."""

    model_config = FROZEN

    status_code: str
    content_type: str | None = "application/json"
    body: SchemaFragment | None = Field(default=None, alias="schema")
    origin: Origin = Origin.DEFAULT
    description: str | None = None
    line: int | None = None

    @field_validator("status_code", mode="before")
    @classmethod
    def _status_as_string(cls, value: Any) -> str:
        return str(value)

    @property
    def status(self) -> int:
        return int(self.status_code)


class EndpointDescriptor(BaseModel):
    """One route handed over by route enumeration."""

    model_config = FROZEN

    http_method: str
    path_template: str
    handler_file: Path | None = None
    handler_name: str
    handler_module: str | None = None
    request_type_name: str | None = None
    declared_response_type_name: str | None = None

    @field_validator("http_method")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @property
    def handler_class(self) -> str | None:
        cls_name, _, _ = self.handler_name.rpartition(".")
        return cls_name or None

    @property
    def handler_function(self) -> str:
        return self.handler_name.rpartition(".")[2]


class FieldAnnotation(BaseModel):
    """Declarative override for one field; always wins over inference."""

    model_config = FROZEN

    target_field_name: str
    attached_to: Literal["handler", "request", "response"] = "handler"
    type: str | None = None
    format: str | None = None
    description: str | None = None
    example: Any = None
    required: bool | None = None
    deprecated: bool | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    pattern: str | None = None
    items: str | None = None


class ResponseAnnotation(BaseModel):
    """Declared response for a handler (status plus type or literal schema)."""

    model_config = FROZEN

    status_code: str
    type_name: str | None = None
    body: SchemaFragment | None = Field(default=None, alias="schema")
    description: str | None = None
    content_type: str | None = "application/json"

    @field_validator("status_code", mode="before")
    @classmethod
    def _status_as_string(cls, value: Any) -> str:
        return str(value)


class AnnotationSet(BaseModel):
    """All declarative annotations attached to one endpoint."""

    model_config = FROZEN

    fields: list[FieldAnnotation] = []
    responses: list[ResponseAnnotation] = []

    def merged_with(self, other: "AnnotationSet | None") -> "AnnotationSet":
        """Combine two sets; entries from ``self`` come first."""
        if other is None:
            return self
        return AnnotationSet(fields=[*self.fields, *other.fields], responses=[*self.responses, *other.responses])

    def for_target(self, attached_to: str) -> list[FieldAnnotation]:
        return [a for a in self.fields if a.attached_to == attached_to]


class EndpointSchema(BaseModel):
    """Finalised schema for one endpoint, handed to the document renderer."""

    model_config = FROZEN

    http_method: str
    path_template: str
    parameters: dict[str, SchemaFragment] = {}
    request_body: SchemaFragment | None = None
    responses: dict[str, ResponseSignal] = {}

    def degraded_statuses(self) -> list[str]:
        """Statuses that fell back to a default or carry an empty object schema."""
        degraded = []
        for code, signal in self.responses.items():
            body = signal.body
            empty = body is not None and body.kind is Kind.OBJECT and not body.properties
            if signal.origin is Origin.DEFAULT or empty:
                degraded.append(code)
        return degraded

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
