"""
Reading and writing declarative test files.

A test file is a JSON array of test cases. A directory of tests is every
``*.json`` file in it, read in sorted name order.
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from shared.errors import TestFileError
from shared.test_runner.models import Assertion, TestCase, WorkflowSpec

PathLike = Union[str, Path]


def load_test_cases(path: PathLike) -> List[TestCase]:
    path = Path(path)
    if not path.is_file():
        raise TestFileError(f"Test file not found: {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise TestFileError(f"Failed to parse test file {path}: {e}", {"path": str(path)}) from e

    if not isinstance(raw, list):
        raise TestFileError("Test file must contain an array of test cases", {"path": str(path)})

    cases: List[TestCase] = []
    for index, item in enumerate(raw):
        try:
            cases.append(TestCase.model_validate(item))
        except PydanticValidationError as e:
            raise TestFileError(
                f"Invalid test case at index {index} in {path}: {e.error_count()} error(s)",
                {"path": str(path), "errors": e.errors(include_url=False)},
            ) from e
    return cases


def load_test_directory(directory: PathLike) -> List[TestCase]:
    directory = Path(directory)
    if not directory.is_dir():
        raise TestFileError(f"Test directory not found: {directory}")
    cases: List[TestCase] = []
    for path in sorted(directory.glob("*.json")):
        cases.extend(load_test_cases(path))
    return cases


def save_test_cases(test_cases: Sequence[TestCase], path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [tc.model_dump(mode="json", by_alias=True, exclude_unset=True) for tc in test_cases]
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def create_test_case(
    name: str,
    template_name: str = "custom",
    *,
    input: Optional[Dict[str, Any]] = None,
    expected_output: Any = None,
    assertions: Optional[Sequence[Assertion]] = None,
) -> TestCase:
    """Scaffold a single-workflow test case with a default non-null assertion."""
    return TestCase(
        name=name,
        workflows=[WorkflowSpec(name=f"{name} Workflow", template_name=template_name, is_primary=True)],
        input=input or {},
        expected_output=expected_output,
        assertions=list(assertions) if assertions is not None else [
            Assertion(description="Default assertion", assertion="result !== undefined")
        ],
    )


__all__ = ["create_test_case", "load_test_cases", "load_test_directory", "save_test_cases"]
