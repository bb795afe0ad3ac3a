"""
Reporters for test results: rich console output, a JSON artifact, or nothing.
"""
import json
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shared.logger import get_logger
from shared.test_runner.models import TestResult, TestRunResult

logger = get_logger(__name__)


@runtime_checkable
class Reporter(Protocol):
    def report_test_result(self, result: TestResult) -> None: ...

    def report_run_result(self, run_result: TestRunResult) -> None: ...


class ConsoleReporter:
    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def report_test_result(self, result: TestResult) -> None:
        if result.skipped:
            status = "[yellow]○ SKIP[/yellow]"
        elif result.passed:
            status = "[green]✅ PASS[/green]"
        else:
            status = "[red]❌ FAIL[/red]"
        self.console.print(f"{status} - [bold]{result.name}[/bold] [dim]({result.duration}ms)[/dim]")

        if not result.passed and result.error:
            self.console.print(f"  [red]Error:[/red] {result.error}")
        for warning in result.warnings:
            self.console.print(f"  [yellow]Warning:[/yellow] {warning}")
        for assertion in result.assertions:
            mark = "[green]✓[/green]" if assertion.passed else "[red]✗[/red]"
            self.console.print(f"  {mark} {assertion.description}")
            if not assertion.passed and assertion.error:
                self.console.print(f"    [dim]Error: {assertion.error}[/dim]")
        self.console.print()

    def report_run_result(self, run_result: TestRunResult) -> None:
        table = Table(title="Test Run Summary", box=box.ROUNDED)
        table.add_column("Total", justify="right")
        table.add_column("Passed", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Skipped", justify="right", style="yellow")
        table.add_column("Duration", justify="right", style="dim")
        table.add_row(
            str(run_result.total),
            str(run_result.passed),
            str(run_result.failed),
            str(run_result.skipped),
            f"{run_result.duration}ms",
        )
        self.console.print(table)

        if run_result.failures:
            lines = "\n".join(f"• [bold]{f.test_name}[/bold]: {f.message}" for f in run_result.failures)
            self.console.print(Panel(lines, title="Failed Tests", border_style="red"))


class JsonReporter:
    """Writes the run result as camelCase JSON; individual results are not streamed."""

    def __init__(self, report_path: Union[str, Path]) -> None:
        self.report_path = Path(report_path)

    def report_test_result(self, result: TestResult) -> None:
        pass

    def report_run_result(self, run_result: TestRunResult) -> None:
        self.report_path.parent.mkdir(parents=True, exist_ok=True)
        payload = run_result.model_dump(mode="json", by_alias=True)
        self.report_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(f"Test report written to: {self.report_path}")


class NoopReporter:
    def report_test_result(self, result: TestResult) -> None:
        pass

    def report_run_result(self, run_result: TestRunResult) -> None:
        pass


def create_reporter(kind: str = "console", report_path: Union[str, Path] = "./test-results.json") -> Reporter:
    if kind == "console":
        return ConsoleReporter()
    if kind == "json":
        return JsonReporter(report_path)
    if kind == "none":
        return NoopReporter()
    raise ValueError(f"Unknown reporter: {kind}")


__all__ = ["ConsoleReporter", "JsonReporter", "NoopReporter", "Reporter", "create_reporter"]
