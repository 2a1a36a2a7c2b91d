"""Error taxonomy for the inference engine.

None of these are fatal to a documentation build: each one is caught at the
smallest scope that can still produce a (degraded) schema.
"""


class InferenceError(Exception):
    """Base class for all engine errors."""


class ParseFailure(InferenceError):
    """Source text could not be read or parsed into a syntax tree."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"cannot parse {path}: {reason}")
        self.path = path
        self.reason = reason


class TypeResolutionFailure(InferenceError):
    """A referenced type name could not be loaded or located in source."""

    def __init__(self, type_name: str, reason: str = "not found"):
        super().__init__(f"cannot resolve type {type_name!r}: {reason}")
        self.type_name = type_name
        self.reason = reason


class ConfigError(InferenceError):
    """A configuration or manifest file is malformed."""
