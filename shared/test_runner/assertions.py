"""Assertion evaluation against a workflow execution result."""

import json
import re
from typing import Any, List, Optional, Sequence

from shared.jsonschema_adapter import SchemaError, check_schema, collect_errors
from shared.logger import get_logger
from shared.test_runner.expression import ExpressionError, evaluate_expression
from shared.test_runner.models import Assertion, AssertionResult

logger = get_logger(__name__)

_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


class PathNotFoundError(LookupError):
    pass


def resolve_path(obj: Any, path: Optional[str]) -> Any:
    """Get a nested value using dot notation and ``[n]`` indexes, e.g. ``data.items[0].id``."""
    if not path:
        return obj
    value = obj
    walked = ""
    for key, index in _PATH_TOKEN.findall(path):
        if index:
            walked += f"[{index}]"
            position = int(index)
            if not isinstance(value, list) or position >= len(value):
                raise PathNotFoundError(f"Path not found: {walked}")
            value = value[position]
        else:
            walked += f".{key}" if walked else key
            if isinstance(value, dict) and key in value:
                value = value[key]
            elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
                value = value[int(key)]
            else:
                raise PathNotFoundError(f"Path not found: {walked}")
    return value


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality where booleans never equal numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, (dict, list, tuple)) or isinstance(right, (dict, list, tuple)):
        return False
    return left == right


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), default=str)


class AssertionEvaluator:
    """Evaluates assertions in order. Never raises: failures land in the results."""

    def evaluate(self, assertions: Sequence[Assertion], result: Any) -> List[AssertionResult]:
        return [self.evaluate_one(assertion, result, index) for index, assertion in enumerate(assertions)]

    def evaluate_one(self, assertion: Assertion, result: Any, index: int = 0) -> AssertionResult:
        description = assertion.description or f"Assertion {index}"
        try:
            passed, error = self._dispatch(assertion, result)
        except (ExpressionError, PathNotFoundError, re.error, SchemaError) as e:
            passed, error = False, str(e)
        except Exception as e:
            logger.debug(f"Assertion '{description}' raised", exc_info=True)
            passed, error = False, f"{type(e).__name__}: {e}"
        return AssertionResult(description=description, passed=passed, error=error)

    def _dispatch(self, assertion: Assertion, result: Any):
        kind = assertion.kind
        if kind == "expression":
            return self._expression(assertion, result)
        if kind == "property":
            return self._property(assertion, result)
        if kind == "regex":
            return self._regex(assertion, result)
        if kind == "schema":
            return self._schema(assertion, result)
        return False, f"Unknown assertion type: {kind}"

    def _expression(self, assertion: Assertion, result: Any):
        if not assertion.assertion:
            return False, "Assertion expression is required"
        passed = bool(evaluate_expression(assertion.assertion, result))
        return passed, None if passed else f"Expression evaluated to false: {assertion.assertion}"

    def _property(self, assertion: Assertion, result: Any):
        actual = resolve_path(result, assertion.path)
        if deep_equal(actual, assertion.expected):
            return True, None
        return False, f"Expected {assertion.path} to equal {stringify(assertion.expected)}, got {stringify(actual)}"

    def _regex(self, assertion: Assertion, result: Any):
        if assertion.pattern is None:
            return False, "Regex assertion requires a pattern"
        text = stringify(resolve_path(result, assertion.path))
        if re.search(assertion.pattern, text):
            return True, None
        return False, f"Value {text!r} does not match /{assertion.pattern}/"

    def _schema(self, assertion: Assertion, result: Any):
        if assertion.json_schema is None:
            return False, "Schema assertion requires a schema"
        check_schema(assertion.json_schema)
        errors = collect_errors(assertion.json_schema, resolve_path(result, assertion.path))
        return not errors, "; ".join(errors) or None


__all__ = ["AssertionEvaluator", "PathNotFoundError", "deep_equal", "resolve_path", "stringify"]
