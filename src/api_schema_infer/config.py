"""Engine configuration: lookup tables, heuristics and environment settings.

Every table the engine consults is a field of ``InferenceConfig`` so that a
build (or a test) can swap any of them. ``load_config`` overlays a YAML file
onto the defaults; ``Settings`` picks up process-level knobs from the
environment.
"""

from functools import lru_cache
from http import HTTPStatus
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from api_schema_infer.errors import ConfigError


class RuleType(BaseModel):
    """What a validation rule name implies about a field's type."""

    type: str
    format: str | None = None
    pattern: str | None = None


class TypeMapping(BaseModel):
    """Primitive type/format pair for a host-language type name."""

    type: str
    format: str | None = None


class ResponseShape(BaseModel):
    """Default status and content type of a response-producing construct."""

    status: int
    content_type: str | None = "application/json"


def _status_names() -> dict[str, int]:
    # __members__ keeps aliases such as UNPROCESSABLE_ENTITY
    return {name: int(member) for name, member in HTTPStatus.__members__.items()}


def _rule_types() -> dict[str, RuleType]:
    table = {
        "string": {"type": "string"},
        "integer": {"type": "integer"},
        "int": {"type": "integer"},
        "numeric": {"type": "number"},
        "boolean": {"type": "boolean"},
        "bool": {"type": "boolean"},
        "array": {"type": "array"},
        "object": {"type": "object"},
        "json": {"type": "object"},
        "file": {"type": "string", "format": "binary"},
        "image": {"type": "string", "format": "binary"},
        "date": {"type": "string", "format": "date"},
        "date_format": {"type": "string", "format": "date-time"},
        "email": {"type": "string", "format": "email"},
        "url": {"type": "string", "format": "uri"},
        "uuid": {"type": "string", "format": "uuid"},
        "ip": {"type": "string", "format": "ipv4"},
        "ipv4": {"type": "string", "format": "ipv4"},
        "ipv6": {"type": "string", "format": "ipv6"},
        "alpha": {"type": "string", "pattern": "^[a-zA-Z]+$"},
        "alpha_num": {"type": "string", "pattern": "^[a-zA-Z0-9]+$"},
        "alpha_dash": {"type": "string", "pattern": "^[a-zA-Z0-9_-]+$"},
        "digits": {"type": "string", "pattern": "^[0-9]+$"},
        "digits_between": {"type": "string"},
    }
    return {name: RuleType(**spec) for name, spec in table.items()}


def _type_map() -> dict[str, TypeMapping]:
    table = {
        "int": ("integer", None),
        "float": ("number", "double"),
        "Decimal": ("number", None),
        "complex": ("string", None),
        "bool": ("boolean", None),
        "str": ("string", None),
        "bytes": ("string", "byte"),
        "bytearray": ("string", "byte"),
        "datetime": ("string", "date-time"),
        "date": ("string", "date"),
        "time": ("string", "time"),
        "timedelta": ("string", "duration"),
        "UUID": ("string", "uuid"),
        "EmailStr": ("string", "email"),
        "NameEmail": ("string", "email"),
        "AnyUrl": ("string", "uri"),
        "HttpUrl": ("string", "uri"),
        "AnyHttpUrl": ("string", "uri"),
        "IPv4Address": ("string", "ipv4"),
        "IPv6Address": ("string", "ipv6"),
        "SecretStr": ("string", "password"),
        "Path": ("string", None),
    }
    return {name: TypeMapping(type=t, format=f) for name, (t, f) in table.items()}


def _query_accessors() -> dict[str, TypeMapping]:
    table = {
        "integer": ("integer", None),
        "float": ("number", "double"),
        "boolean": ("boolean", None),
        "string": ("string", None),
        "str": ("string", None),
        "input": ("string", None),
        "query": ("string", None),
        "date": ("string", "date-time"),
        "collect": ("array", None),
    }
    return {name: TypeMapping(type=t, format=f) for name, (t, f) in table.items()}


def _shapes(table: dict[str, tuple[int, str | None]]) -> dict[str, ResponseShape]:
    return {name: ResponseShape(status=s, content_type=ct) for name, (s, ct) in table.items()}


JSON = "application/json"
BINARY = "application/octet-stream"


class InferenceConfig(BaseModel):
    """Immutable lookup tables injected into every engine component."""

    model_config = {"frozen": True}

    status_names: dict[str, int] = Field(default_factory=_status_names)
    success_statuses: list[int] = [200, 201, 202, 204]
    exception_statuses: dict[str, int] = {
        "ValidationError": 422,
        "RequestValidationError": 422,
        "UnprocessableEntity": 422,
        "NotFound": 404,
        "NotFoundError": 404,
        "Http404": 404,
        "DoesNotExist": 404,
        "ObjectDoesNotExist": 404,
        "NoResultFound": 404,
        "NotAuthenticated": 401,
        "AuthenticationFailed": 401,
        "AuthenticationError": 401,
        "Unauthorized": 401,
        "PermissionDenied": 403,
        "Forbidden": 403,
        "AuthorizationError": 403,
        "Exception": 500,
        "BaseException": 500,
    }
    status_exceptions: list[str] = ["HTTPException", "StarletteHTTPException", "WebSocketException"]
    rule_types: dict[str, RuleType] = Field(default_factory=_rule_types)
    type_map: dict[str, TypeMapping] = Field(default_factory=_type_map)
    array_types: list[str] = [
        "list", "List", "tuple", "Tuple", "set", "Set", "frozenset", "FrozenSet",
        "Sequence", "MutableSequence", "Iterable", "Iterator", "Collection", "deque",
    ]
    object_types: list[str] = ["dict", "Dict", "Mapping", "MutableMapping", "OrderedDict", "defaultdict"]
    response_receivers: list[str] = ["response"]
    response_helpers: dict[str, ResponseShape] = _shapes({
        "json": (200, JSON),
        "created": (201, JSON),
        "accepted": (202, JSON),
        "no_content": (204, None),
        "noContent": (204, None),
        "redirect": (302, None),
        "redirect_to": (302, None),
        "redirectTo": (302, None),
        "view": (200, "text/html"),
        "download": (200, BINARY),
        "file": (200, BINARY),
        "stream": (200, BINARY),
    })
    custom_helpers: dict[str, ResponseShape] = _shapes({
        "return_ok": (200, JSON),
        "return_created": (201, JSON),
        "return_accepted": (202, JSON),
        "return_no_content": (204, None),
        "returnOk": (200, JSON),
        "returnCreated": (201, JSON),
        "returnAccepted": (202, JSON),
        "returnNoContent": (204, None),
    })
    response_classes: dict[str, ResponseShape] = _shapes({
        "JSONResponse": (200, JSON),
        "JsonResponse": (200, JSON),
        "ORJSONResponse": (200, JSON),
        "UJSONResponse": (200, JSON),
        "HTMLResponse": (200, "text/html"),
        "PlainTextResponse": (200, "text/plain"),
        "Response": (200, None),
        "HttpResponse": (200, None),
        "RedirectResponse": (302, None),
        "HttpResponseRedirect": (302, None),
        "FileResponse": (200, BINARY),
        "StreamingResponse": (200, BINARY),
    })
    json_helpers: list[str] = ["jsonify"]
    abort_helpers: list[str] = ["abort"]
    status_setters: list[str] = ["set_status_code", "setStatusCode", "set_status"]
    status_attributes: list[str] = ["status_code"]
    route_decorators: list[str] = ["get", "post", "put", "patch", "delete", "head", "options", "route", "api_route"]
    resource_suffixes: list[str] = ["Resource", "Transformer"]
    collection_methods: list[str] = ["collection", "many"]
    to_map_methods: list[str] = ["to_dict", "to_array", "to_json", "serialize", "__json__"]
    dump_methods: list[str] = ["to_dict", "model_dump", "dict", "serialize"]
    rules_attribute: str = "rules"
    inline_validators: list[str] = ["validate", "validate_request"]
    internal_fields: list[str] = ["_additional", "_data_context"]
    not_found_verbs: list[str] = ["show", "edit", "update", "destroy", "delete"]
    auth_verbs: list[str] = ["store", "update", "delete", "destroy", "create", "edit", "me", "profile", "settings"]
    validation_verbs: list[str] = ["store", "update", "create", "edit", "login", "register", "change", "reset"]
    body_methods: list[str] = ["POST", "PUT", "PATCH"]
    request_names: list[str] = ["request", "req"]
    query_containers: list[str] = ["args", "query_params", "GET", "query"]
    query_getters: list[str] = ["get", "getlist", "getall", "get_all"]
    query_list_getters: list[str] = ["getlist", "getall", "get_all"]
    query_accessors: dict[str, TypeMapping] = Field(default_factory=_query_accessors)
    query_methods: list[str] = ["GET", "HEAD", "DELETE"]
    query_markers: list[str] = ["Query"]
    pagination_helpers: dict[str, str] = {
        "paginate": "page",
        "simple_paginate": "page",
        "simplePaginate": "page",
        "cursor_paginate": "cursor",
        "cursorPaginate": "cursor",
    }
    per_page_example: int = 15
    source_roots: list[Path] = []


class Settings(BaseSettings):
    """Process-level settings read from ``API_SCHEMA_INFER_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="API_SCHEMA_INFER_", extra="ignore")

    config_file: Path | None = None
    log_level: str = "WARNING"
    max_workers: int = Field(default=4, gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def load_config(path: Path | None) -> InferenceConfig:
    """Load ``InferenceConfig`` from a YAML file, overlaying the defaults.

    Mapping tables in the file extend the default tables (same keys replace
    defaults); every other key replaces the default value outright.
    """
    if path is None:
        return InferenceConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping, got {type(data).__name__}")

    defaults = InferenceConfig().model_dump()
    merged = dict(defaults)
    for key, value in data.items():
        if isinstance(defaults.get(key), dict) and isinstance(value, dict):
            merged[key] = {**defaults[key], **value}
        else:
            merged[key] = value

    base = path.parent
    merged["source_roots"] = [
        root if Path(root).is_absolute() else base / root for root in merged.get("source_roots", [])
    ]
    try:
        return InferenceConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e
