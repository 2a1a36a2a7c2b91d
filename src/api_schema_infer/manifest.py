"""Endpoint manifest: the YAML list of routes a build analyses."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from api_schema_infer.errors import ConfigError
from api_schema_infer.schema.base import AnnotationSet, EndpointDescriptor


def load_manifest(path: Path) -> list[tuple[EndpointDescriptor, AnnotationSet]]:
    """Read endpoint descriptors and their annotations from ``path``.

    Relative ``handler_file`` entries resolve against the manifest's
    directory. Keys may be snake_case or camelCase.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read manifest {path}: {e}") from e
    entries = data.get("endpoints") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ConfigError(f"manifest {path} must contain an 'endpoints' list")

    endpoints = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"manifest {path}: endpoint #{index} is not a mapping")
        entry = dict(entry)
        raw_annotations = entry.pop("annotations", None) or {}
        try:
            descriptor = EndpointDescriptor.model_validate(entry)
            annotations = AnnotationSet.model_validate(raw_annotations)
        except ValidationError as e:
            raise ConfigError(f"manifest {path}: endpoint #{index} is invalid: {e}") from e
        if descriptor.handler_file is not None and not descriptor.handler_file.is_absolute():
            descriptor = descriptor.model_copy(update={"handler_file": path.parent / descriptor.handler_file})
        endpoints.append((descriptor, annotations))
    return endpoints
