"""Test runner package - declarative tests for engine-hosted workflows.

This package provides utilities for:
- Test-case models and pre-run validation
- Provisioning and cleanup of remote credentials and workflows
- Assertion evaluation (expression, property, regex, schema)
- Test orchestration and reporting

Public API:
- TestOrchestrator: Run test cases, files or directories
- load_test_cases: Read a JSON test file
"""

from shared.test_runner.loader import create_test_case, load_test_cases, load_test_directory, save_test_cases
from shared.test_runner.models import TestCase, TestResult, TestRunResult
from shared.test_runner.orchestrator import TestOrchestrator

__all__ = [
    "TestCase",
    "TestOrchestrator",
    "TestResult",
    "TestRunResult",
    "create_test_case",
    "load_test_cases",
    "load_test_directory",
    "save_test_cases",
]
