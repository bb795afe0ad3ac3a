"""
Test orchestration: the per-test state machine and the sequential run loop.

Each test moves through these phases:
1. VALIDATE: Case checks, then structural checks of every resolved workflow
2. PROVISION: Connect, create credentials and workflows
3. EXECUTE: Run the primary workflow with the test input, under a timeout
4. EVALUATE: Check assertions against the execution output
5. CLEANUP: Delete created resources (always, once provisioning started)
"""
import asyncio
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from shared.config import FlowtestConfig
from shared.engine_client import EngineClient, HttpEngineClient
from shared.errors import OperationTimeoutError, ResourceProvisioningError, TestFileError, WorkflowError
from shared.logger import get_logger
from shared.test_runner.assertions import AssertionEvaluator
from shared.test_runner.case_validation import validate_test_case
from shared.test_runner.loader import load_test_cases, load_test_directory
from shared.test_runner.models import (
    FailureRecord,
    ResourceHandles,
    TestCase,
    TestResult,
    TestRunResult,
    TestState,
)
from shared.test_runner.reporters import Reporter, create_reporter
from shared.test_runner.resources import ResourceManager
from workflow_core.manager import WorkflowManager
from workflow_core.templates import TemplateStore
from workflow_core.validation import validate_workflow

logger = get_logger("test_runner.orchestrator")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class TestOrchestrator:
    """Runs declarative test cases against the engine, one at a time."""

    __test__ = False

    def __init__(
        self,
        config: FlowtestConfig,
        client: Optional[EngineClient] = None,
        reporter: Optional[Reporter] = None,
        resource_manager: Optional[ResourceManager] = None,
        workflow_manager: Optional[WorkflowManager] = None,
        evaluator: Optional[AssertionEvaluator] = None,
    ) -> None:
        self.config = config
        self.client = client or HttpEngineClient(config)
        self.workflow_manager = workflow_manager or WorkflowManager(self.client, TemplateStore(config.templates_dir))
        self.resource_manager = resource_manager or ResourceManager(self.workflow_manager, config)
        self.evaluator = evaluator or AssertionEvaluator()
        self.reporter = reporter or create_reporter(config.reporter, config.report_path)
        self.state = TestState.PENDING

    def _transition(self, state: TestState, test_name: str) -> None:
        logger.debug(f"{test_name}: {self.state.value} -> {state.value}")
        self.state = state

    def _validate(self, test_case: TestCase, warnings: List[str]) -> List[str]:
        errors = validate_test_case(test_case)
        if errors or test_case.skip:
            return errors

        for spec in test_case.workflows:
            label = spec.name or spec.template_name
            try:
                definition = self.resource_manager.resolve_workflow(spec)
            except WorkflowError as e:
                errors.append(f"Workflow {label}: {e.message}")
                continue
            report = validate_workflow(definition)
            errors.extend(f"Workflow {label}: {error}" for error in report.errors)
            for warning in report.warnings:
                logger.warning(f"│  Workflow {label}: {warning}")
                warnings.append(f"Workflow {label}: {warning}")
        return errors

    async def run_test(self, test_case: TestCase) -> TestResult:
        """Run one test case through every phase and report its result."""
        started = time.monotonic()
        name = test_case.name or "<unnamed>"
        self.state = TestState.PENDING

        logger.info(f"{'=' * 80}")
        logger.info(f"TEST: {name}")
        logger.info(f"{'=' * 80}")

        # ===== VALIDATE =====
        self._transition(TestState.VALIDATING, name)
        warnings: List[str] = []
        errors = self._validate(test_case, warnings)
        if errors:
            self._transition(TestState.INVALID, name)
            logger.warning(f"└─ ❌ INVALID: {len(errors)} validation error(s)")
            result = TestResult(
                name=name,
                passed=False,
                error=f"Validation errors: {', '.join(errors)}",
                duration=_elapsed_ms(started),
                warnings=warnings,
            )
            return self._complete(result)

        if test_case.skip:
            self._transition(TestState.SKIPPED, name)
            logger.info("└─ SKIPPED")
            return self._complete(TestResult(name=name, passed=True, skipped=True, duration=0))

        handles = ResourceHandles()
        provisioning_started = False
        connected = False
        try:
            # ===== PROVISION =====
            self._transition(TestState.PROVISIONING, name)
            provisioning_started = True
            logger.info(
                f"┌─ PHASE 1: PROVISION ({len(test_case.credentials)} credentials, "
                f"{len(test_case.workflows)} workflows)"
            )
            await self.client.connect()
            connected = True
            await self.resource_manager.create_resources(test_case, handles)
            logger.info(f"└─ Provisioned {len(handles.workflow_ids)} workflows")

            # ===== EXECUTE =====
            self._transition(TestState.EXECUTING, name)
            timeout = test_case.timeout / 1000 if test_case.timeout else self.config.default_test_timeout
            logger.info(f"┌─ PHASE 2: EXECUTE (timeout {timeout:g}s)")
            try:
                output = await asyncio.wait_for(
                    self.workflow_manager.execute_workflow(handles.primary_workflow_id, test_case.input),
                    timeout,
                )
            except OperationTimeoutError:
                # Raised inside the execute call (retry budget, rate-limiter wait)
                raise
            except asyncio.TimeoutError as e:
                raise OperationTimeoutError(f"Execute workflow for test '{name}'", timeout) from e
            logger.info("└─ Execution finished")

            # ===== EVALUATE =====
            self._transition(TestState.EVALUATING, name)
            logger.info(f"┌─ PHASE 3: EVALUATE ({len(test_case.assertions)} assertions)")
            assertion_results = self.evaluator.evaluate(test_case.assertions, output)
            passed = all(a.passed for a in assertion_results)
            if passed:
                logger.info("└─ ✅ ASSERTIONS PASSED")
            else:
                failed = sum(1 for a in assertion_results if not a.passed)
                logger.warning(f"└─ ❌ {failed} ASSERTION(S) FAILED")

            result = TestResult(
                name=name,
                passed=passed,
                output=output,
                assertions=assertion_results,
                warnings=warnings,
            )
        except Exception as e:
            if isinstance(e, ResourceProvisioningError):
                logger.error(f"Provisioning failed: {e}")
            else:
                logger.error(f"Test execution failed: {e}", exc_info=True)
            result = TestResult(
                name=name,
                passed=False,
                error=f"Test execution failed: {e}",
                warnings=warnings,
            )
        finally:
            # ===== CLEANUP =====
            if provisioning_started and self.config.cleanup_after_tests:
                self._transition(TestState.CLEANING_UP, name)
                logger.info(
                    f"┌─ PHASE 4: CLEANUP ({len(handles.workflow_ids)} workflows, "
                    f"{len(handles.credential_ids)} credentials)"
                )
                try:
                    await self.resource_manager.cleanup_resources(handles)
                    logger.info("└─ Cleanup completed")
                except Exception as cleanup_error:
                    logger.error(f"Cleanup failed (non-fatal): {cleanup_error}")
            if connected:
                try:
                    await self.client.disconnect()
                except Exception as disconnect_error:
                    logger.error(f"Disconnect failed (non-fatal): {disconnect_error}")

        result.duration = _elapsed_ms(started)
        result.workflows = handles.workflow_refs()
        result.credentials = handles.credential_refs()
        return self._complete(result)

    def _complete(self, result: TestResult) -> TestResult:
        self._transition(TestState.COMPLETED, result.name)
        logger.info(f"TEST RESULT: {'✅ PASSED' if result.passed else '❌ FAILED'} - {result.name} ({result.duration}ms)")
        self.reporter.report_test_result(result)
        return result

    def _select(self, test_cases: Sequence[TestCase]) -> List[TestCase]:
        tags = set(self.config.tags)
        if not tags:
            return list(test_cases)
        return [tc for tc in test_cases if tags.intersection(tc.tags)]

    async def run_tests(self, test_cases: Sequence[TestCase]) -> TestRunResult:
        """Run ``test_cases`` sequentially and report the aggregate result."""
        started = time.monotonic()
        selected = self._select(test_cases)
        logger.info(f"Starting test run: {len(selected)}/{len(test_cases)} tests selected")

        run = TestRunResult()
        for test_case in selected:
            try:
                result = await self.run_test(test_case)
            except Exception as e:
                logger.error(f"Unexpected error in test {test_case.name}: {e}", exc_info=True)
                result = TestResult(
                    name=test_case.name or "<unnamed>",
                    passed=False,
                    error=f"Unexpected error: {e}",
                )
                self.reporter.report_test_result(result)

            run.results.append(result)
            if result.skipped:
                run.skipped += 1
            elif result.passed:
                run.passed += 1
            else:
                run.failures.append(FailureRecord(test_name=result.name, message=result.error or "Assertions failed"))
                if not self.config.continue_on_failure:
                    logger.warning("Stopping after first failure (continue_on_failure is off)")
                    break

        run.total = len(run.results)
        run.failed = len(run.failures)
        run.duration = _elapsed_ms(started)

        logger.info(f"{'=' * 80}")
        logger.info(
            f"TEST RUN COMPLETE: {run.passed} passed, {run.failed} failed, "
            f"{run.skipped} skipped of {run.total} ({run.duration}ms)"
        )
        logger.info(f"{'=' * 80}")
        self.reporter.report_run_result(run)
        return run

    async def run_tests_from_file(self, path: Union[str, Path]) -> TestRunResult:
        return await self.run_tests(load_test_cases(path))

    async def run_tests_from_directory(self, path: Optional[Union[str, Path]] = None) -> TestRunResult:
        directory = Path(path or self.config.tests_dir)
        if not directory.is_dir():
            raise TestFileError(f"Test directory not found: {directory}")
        return await self.run_tests(load_test_directory(directory))


__all__ = ["TestOrchestrator"]
