"""
Data models for declarative workflow tests.

Test files are JSON with camelCase keys (``isPrimary``, ``templateName``,
``envPrefix``); every model accepts both the camelCase alias and the Python
field name. Construction is deliberately lenient: structural rules such as
"exactly one primary workflow" are checked by ``case_validation`` so that a
single run can report every violation at once.

Durations on results are milliseconds; ``TestCase.timeout`` is milliseconds
too, matching the JSON format.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

ASSERTION_KINDS = ("expression", "property", "regex", "schema")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkflowSpec(_CamelModel):
    """A workflow to provision: a template reference or an inline graph."""

    name: Optional[str] = Field(default=None, description="Display name of the created workflow")
    template_name: Optional[str] = Field(default=None, description="Template to instantiate")
    settings: Optional[Dict[str, Any]] = Field(default=None, description="Settings merged over the template's")
    nodes: Optional[List[Dict[str, Any]]] = Field(default=None, description="Inline graph nodes")
    connections: Optional[Dict[str, Any]] = Field(default=None, description="Inline graph connections")
    is_primary: bool = Field(default=False, description="The workflow that gets executed")
    activate: bool = Field(default=False, description="Activate after creation")


class CredentialSpec(_CamelModel):
    """A credential to create before the workflows.

    Without ``data`` the credential is looked up in the environment.
    """

    name: Optional[str] = None
    type: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    env_prefix: Optional[str] = None


class Assertion(_CamelModel):
    description: Optional[str] = None
    kind: str = Field(default="expression", alias="type", description="expression, property, regex or schema")
    assertion: Optional[str] = Field(default=None, description="Expression evaluated against `result`")
    path: Optional[str] = Field(default=None, description="Dot/index path into the result")
    expected: Any = Field(default=None, description="Expected value for property assertions")
    pattern: Optional[str] = Field(default=None, description="Regular expression for regex assertions")
    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="schema", description="JSON Schema")

    @property
    def has_expected(self) -> bool:
        """True when ``expected`` was given explicitly, even as ``null``."""
        return "expected" in self.model_fields_set


class TestCase(_CamelModel):
    __test__ = False

    name: Optional[str] = None
    description: Optional[str] = None
    workflows: List[WorkflowSpec] = Field(default_factory=list)
    credentials: List[CredentialSpec] = Field(default_factory=list)
    input: Dict[str, Any] = Field(default_factory=dict, description="Payload sent to the primary workflow")
    expected_output: Optional[Any] = None
    assertions: List[Assertion] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    skip: bool = False
    timeout: Optional[int] = Field(default=None, description="Execution timeout in milliseconds")

    @property
    def primary_workflow(self) -> Optional[WorkflowSpec]:
        return next((w for w in self.workflows if w.is_primary), None)


class AssertionResult(_CamelModel):
    description: str
    passed: bool
    error: Optional[str] = None


class ResourceRef(_CamelModel):
    name: str
    id: str


class TestResult(_CamelModel):
    __test__ = False

    name: str
    passed: bool
    skipped: bool = False
    error: Optional[str] = None
    output: Any = None
    assertions: List[AssertionResult] = Field(default_factory=list)
    duration: int = Field(default=0, description="Milliseconds")
    warnings: List[str] = Field(default_factory=list)
    workflows: List[ResourceRef] = Field(default_factory=list)
    credentials: List[ResourceRef] = Field(default_factory=list)


class FailureRecord(_CamelModel):
    test_name: str
    message: str


class TestRunResult(_CamelModel):
    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[TestResult] = Field(default_factory=list)
    failures: List[FailureRecord] = Field(default_factory=list)
    duration: int = Field(default=0, description="Milliseconds")

    @computed_field
    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1


@dataclass
class ResourceHandles:
    """Remote resources created for one test, filled in as they are created."""

    workflow_ids: Dict[str, str] = field(default_factory=dict)
    credential_ids: Dict[str, str] = field(default_factory=dict)
    primary_workflow_id: Optional[str] = None

    def workflow_refs(self) -> List[ResourceRef]:
        return [ResourceRef(name=name, id=rid) for name, rid in self.workflow_ids.items()]

    def credential_refs(self) -> List[ResourceRef]:
        return [ResourceRef(name=name, id=rid) for name, rid in self.credential_ids.items()]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "workflowIds": dict(self.workflow_ids),
            "credentialIds": dict(self.credential_ids),
            "primaryWorkflowId": self.primary_workflow_id,
        }


class TestState(str, Enum):
    __test__ = False

    PENDING = "pending"
    VALIDATING = "validating"
    SKIPPED = "skipped"
    INVALID = "invalid"
    PROVISIONING = "provisioning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    CLEANING_UP = "cleaning_up"
    COMPLETED = "completed"


__all__ = [
    "ASSERTION_KINDS",
    "Assertion",
    "AssertionResult",
    "CredentialSpec",
    "FailureRecord",
    "ResourceHandles",
    "ResourceRef",
    "TestCase",
    "TestResult",
    "TestRunResult",
    "TestState",
    "WorkflowSpec",
]
