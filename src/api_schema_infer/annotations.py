"""Decorators that attach declarative schema annotations to handlers and types."""

from typing import Any

from api_schema_infer.schema.base import AnnotationSet, FieldAnnotation, ResponseAnnotation, SchemaFragment

RESPONSES_ATTR = "__api_responses__"
FIELDS_ATTR = "__schema_fields__"


def documented_response(
    status: int | str,
    type_name: str | type | None = None,
    *,
    schema: SchemaFragment | dict | None = None,
    description: str | None = None,
    content_type: str | None = "application/json",
):
    """Declare a response a handler produces.

    ``type_name`` names (or is) a DTO/resource type whose schema is built for
    the response; ``schema`` gives a literal fragment instead.

        @documented_response(201, "UserResource", description="Created")
        def store(request): ...
    """
    if isinstance(type_name, type):
        type_name = f"{type_name.__module__}.{type_name.__qualname__}"
    if isinstance(schema, dict):
        schema = SchemaFragment.model_validate(schema)
    annotation = ResponseAnnotation(
        status_code=status,
        type_name=type_name,
        schema=schema,
        description=description,
        content_type=content_type,
    )

    def decorator(obj):
        existing = list(getattr(obj, RESPONSES_ATTR, ()))
        setattr(obj, RESPONSES_ATTR, [*existing, annotation])
        return obj

    return decorator


def schema_field(name: str, *, attached_to: str | None = None, **overrides: Any):
    """Override what is inferred for one field.

    On a class the annotation targets the class's own fields (``response``
    scope); on a handler it targets request parameters unless ``attached_to``
    says otherwise.
    """

    def decorator(obj):
        scope = attached_to or ("response" if isinstance(obj, type) else "handler")
        annotation = FieldAnnotation(target_field_name=name, attached_to=scope, **overrides)
        # class attributes are inherited; copy before extending
        existing = list(getattr(obj, FIELDS_ATTR, ()))
        setattr(obj, FIELDS_ATTR, [*existing, annotation])
        return obj

    return decorator


def read_annotations(obj: Any) -> AnnotationSet:
    """Annotations attached to ``obj`` by the decorators above."""
    return AnnotationSet(
        fields=list(getattr(obj, FIELDS_ATTR, ())),
        responses=list(getattr(obj, RESPONSES_ATTR, ())),
    )
