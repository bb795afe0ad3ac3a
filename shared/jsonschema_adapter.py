from __future__ import annotations

import json
from threading import Lock
from typing import Any, Dict, List, Mapping

from jsonschema import ValidationError
from jsonschema.exceptions import SchemaError
from jsonschema.validators import Draft202012Validator, validator_for

JsonSchema = Mapping[str, Any]

_validator_cache: Dict[str, Any] = {}
_cache_lock = Lock()


def _cache_key(schema: JsonSchema) -> str:
    return json.dumps(schema, sort_keys=True, separators=(",", ":"), default=str)


def get_validator(schema: JsonSchema) -> Any:
    """
    Compile (and cache) a validator for ``schema``.

    The draft comes from ``$schema`` when present, Draft 2020-12 otherwise.
    """

    key = _cache_key(schema)
    with _cache_lock:
        validator = _validator_cache.get(key)
        if validator is None:
            validator_cls = validator_for(schema, default=Draft202012Validator)
            validator = validator_cls(schema)
            _validator_cache[key] = validator
    return validator


def check_schema(schema: JsonSchema) -> None:
    """
    Ensure the provided schema is itself valid JSON Schema.

    Raises ``SchemaError`` otherwise.
    """

    validator_cls = validator_for(schema, default=Draft202012Validator)
    validator_cls.check_schema(schema)


def format_validation_error(error: ValidationError, *, prefix: str = "$") -> str:
    """
    Convert a jsonschema.ValidationError into ``$.path[0]: message``.
    """

    path = prefix
    for token in error.absolute_path:
        if isinstance(token, int):
            path += f"[{token}]"
        else:
            path += f".{token}"
    return f"{path}: {error.message}"


def collect_errors(schema: JsonSchema, instance: Any) -> List[str]:
    """Every validation failure of ``instance``, formatted and ordered by path."""

    validator = get_validator(schema)
    errors = sorted(validator.iter_errors(instance), key=lambda e: [str(t) for t in e.absolute_path])
    return [format_validation_error(error) for error in errors]


__all__ = [
    "SchemaError",
    "ValidationError",
    "check_schema",
    "collect_errors",
    "format_validation_error",
    "get_validator",
]
