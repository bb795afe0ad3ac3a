"""
Pre-run checks for declarative test cases.

Every check appends a message instead of stopping, so a test author sees all
problems with a case in one run. Messages for nested items are prefixed with
their position, e.g. ``Workflow 1 (api): Either templateName or nodes is
required``.
"""
import re
from collections import Counter
from typing import List

from shared.jsonschema_adapter import SchemaError, check_schema
from shared.test_runner.expression import ExpressionError, check_expression
from shared.test_runner.models import ASSERTION_KINDS, Assertion, CredentialSpec, TestCase, WorkflowSpec


def validate_workflow_spec(workflow: WorkflowSpec) -> List[str]:
    errors: List[str] = []
    if not workflow.name:
        errors.append("Workflow name is required")
    if workflow.template_name and workflow.nodes is not None:
        errors.append("Use either templateName or nodes, not both")
    elif not workflow.template_name and workflow.nodes is None:
        errors.append("Either templateName or nodes is required")
    return errors


def validate_credential_spec(credential: CredentialSpec) -> List[str]:
    errors: List[str] = []
    if not credential.name:
        errors.append("Credential name is required")
    if credential.data and not credential.type:
        errors.append("Credential type is required when data is provided")
    if credential.type == "env" and not (credential.data or {}).get("name"):
        errors.append('Credential of type "env" requires data.name')
    return errors


def validate_assertion(assertion: Assertion) -> List[str]:
    errors: List[str] = []
    if not assertion.description:
        errors.append("Assertion description is required")

    kind = assertion.kind
    if kind not in ASSERTION_KINDS:
        errors.append(f"Unknown assertion type: {kind}")
    elif kind == "expression":
        if not assertion.assertion:
            errors.append("Assertion expression is required")
        else:
            try:
                check_expression(assertion.assertion)
            except ExpressionError as e:
                errors.append(str(e))
    elif kind == "property":
        if not assertion.path:
            errors.append("Property assertion requires a path")
        if not assertion.has_expected:
            errors.append("Property assertion requires an expected value")
    elif kind == "regex":
        if assertion.pattern is None:
            errors.append("Regex assertion requires a pattern")
        else:
            try:
                re.compile(assertion.pattern)
            except re.error as e:
                errors.append(f"Invalid regex pattern: {e}")
    elif kind == "schema":
        if assertion.json_schema is None:
            errors.append("Schema assertion requires a schema")
        else:
            try:
                check_schema(assertion.json_schema)
            except SchemaError as e:
                errors.append(f"Invalid JSON schema: {e.message}")
    return errors


def validate_test_case(test_case: TestCase) -> List[str]:
    """Return every violation in ``test_case``; an empty list means it can run."""
    errors: List[str] = []

    if not test_case.name:
        errors.append("Test name is required")

    if not test_case.workflows:
        errors.append("At least one workflow is required")
    else:
        for index, workflow in enumerate(test_case.workflows):
            for error in validate_workflow_spec(workflow):
                errors.append(f"Workflow {index} ({workflow.name}): {error}")

        counts = Counter(w.name for w in test_case.workflows if w.name)
        for name, count in counts.items():
            if count > 1:
                errors.append(f"Duplicate workflow name: {name}")

        primaries = sum(1 for w in test_case.workflows if w.is_primary)
        if primaries == 0:
            errors.append("At least one workflow must be marked as primary")
        elif primaries > 1:
            errors.append("Only one workflow can be marked as primary")

    for index, credential in enumerate(test_case.credentials):
        for error in validate_credential_spec(credential):
            errors.append(f"Credential {index} ({credential.name}): {error}")

    counts = Counter(c.name for c in test_case.credentials if c.name)
    for name, count in counts.items():
        if count > 1:
            errors.append(f"Duplicate credential name: {name}")

    for index, assertion in enumerate(test_case.assertions):
        for error in validate_assertion(assertion):
            errors.append(f"Assertion {index}: {error}")

    if test_case.timeout is not None and test_case.timeout <= 0:
        errors.append("Timeout must be a positive number of milliseconds")

    return errors


__all__ = [
    "validate_assertion",
    "validate_credential_spec",
    "validate_test_case",
    "validate_workflow_spec",
]
