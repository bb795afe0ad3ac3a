#!/usr/bin/env python3
"""
CLI for flowtest, the declarative workflow test runner.

Usage:
    flowtest run workflow-tests/            # Run every *.json test file in a directory
    flowtest run tests.json --tag smoke     # Run the tests in one file, filtered by tag
    flowtest validate my-workflow.json      # Structural checks, no engine needed
    flowtest config                         # Show resolved configuration
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Load .env before building any configuration
load_dotenv()

console = Console()

# Global verbose flag
VERBOSE = False


def _load_config(**overrides: Any):
    from shared.config import load_config
    from shared.logger import set_log_level

    try:
        config = load_config(**{k: v for k, v in overrides.items() if v is not None})
    except PydanticValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(2)
    set_log_level("DEBUG" if VERBOSE else config.log_level)
    return config


@click.group()
@click.version_option(version="0.1.0", prog_name="flowtest")
@click.option('--verbose', '-v', is_flag=True, help='Debug logging and full error tracebacks')
def cli(verbose: bool):
    """
    Declarative tests for workflows hosted on an automation engine.

    \b
    Commands:
      run       - Provision, execute and assert test cases
      validate  - Check a workflow JSON file's structure
      new-test  - Scaffold a test file
      config    - Show resolved configuration
    """
    global VERBOSE
    VERBOSE = verbose


@cli.command()
@click.argument('path', required=False, type=click.Path(path_type=Path))
@click.option('--tag', '-t', 'tags', multiple=True, help='Only run tests with this tag (repeatable)')
@click.option('--reporter', '-r', type=click.Choice(['console', 'json', 'none']), default=None, help='Result reporter')
@click.option('--report-path', type=click.Path(path_type=Path), default=None, help='Output file for the json reporter')
@click.option('--stop-on-failure', is_flag=True, help='Stop after the first failed test')
@click.option('--no-cleanup', is_flag=True, help='Keep created workflows and credentials')
def run(
    path: Optional[Path],
    tags: Tuple[str, ...],
    reporter: Optional[str],
    report_path: Optional[Path],
    stop_on_failure: bool,
    no_cleanup: bool,
):
    """
    Run declarative tests from a file or a directory.

    PATH defaults to the configured tests directory. Exits with 0 when every
    test passed (or was skipped) and 1 otherwise.
    """
    from shared.errors import FlowtestError
    from shared.test_runner import TestOrchestrator

    config = _load_config(
        tags=list(tags) if tags else None,
        reporter=reporter,
        report_path=str(report_path) if report_path else None,
        continue_on_failure=False if stop_on_failure else None,
        cleanup_after_tests=False if no_cleanup else None,
    )
    target = path or Path(config.tests_dir)
    orchestrator = TestOrchestrator(config)

    try:
        if target.is_dir():
            result = asyncio.run(orchestrator.run_tests_from_directory(target))
        else:
            result = asyncio.run(orchestrator.run_tests_from_file(target))
    except FlowtestError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        if VERBOSE:
            console.print_exception()
        sys.exit(1)

    sys.exit(result.exit_code)


@cli.command()
@click.argument('workflow_json', type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(workflow_json: Path):
    """
    Check a workflow JSON file for structural problems.

    Reports missing IDs, dangling connections, isolated nodes and cycles.
    """
    from workflow_core.validation import validate_workflow

    try:
        graph = json.loads(workflow_json.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]❌ Invalid JSON in {workflow_json}: {e}[/red]")
        sys.exit(1)

    result = validate_workflow(graph)
    for error in result.errors:
        console.print(f"[red]✗ {error}[/red]")
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    if result.valid:
        console.print(f"[green]✅ {workflow_json} is valid[/green] ({len(result.warnings)} warnings)")
    else:
        console.print(f"[red]❌ {workflow_json} has {len(result.errors)} error(s)[/red]")
        sys.exit(1)


@cli.command('new-test')
@click.argument('name')
@click.option('--template', 'template_name', default='custom', help='Template the workflow is created from')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), default=None, help='Test file to write')
def new_test(name: str, template_name: str, output: Optional[Path]):
    """
    Scaffold a test file with one test case.
    """
    from shared.test_runner.loader import create_test_case, save_test_cases

    if output is None:
        config = _load_config()
        slug = "".join(c if c.isalnum() else "_" for c in name).lower()
        output = Path(config.tests_dir) / f"{slug}.json"

    written = save_test_cases([create_test_case(name, template_name)], output)
    console.print(f"[green]✅ Test written to {written}[/green]")


@cli.command()
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def config(fmt: str):
    """
    Show current configuration.

    Displays values resolved from N8N_* environment variables, .env and
    n8n-tdd-config.json.
    """
    flowtest_config = _load_config()

    # (attr, env_var, is_secret)
    sections = {
        "Engine": [
            ("api_url", "N8N_API_URL", False),
            ("api_key", "N8N_API_KEY", True),
            ("timeout", "N8N_TIMEOUT", False),
            ("engine_version", "N8N_ENGINE_VERSION", False),
        ],
        "Resilience": [
            ("max_requests_per_minute", "N8N_MAX_REQUESTS_PER_MINUTE", False),
            ("retry_max_attempts", "N8N_RETRY_MAX_ATTEMPTS", False),
            ("retry_timeout", "N8N_RETRY_TIMEOUT", False),
        ],
        "Test Runner": [
            ("tests_dir", "N8N_TESTS_DIR", False),
            ("templates_dir", "N8N_TEMPLATES_DIR", False),
            ("reporter", "N8N_REPORTER", False),
            ("cleanup_after_tests", "N8N_CLEANUP_AFTER_TESTS", False),
            ("continue_on_failure", "N8N_CONTINUE_ON_FAILURE", False),
        ],
    }

    def _mask(value: Any) -> str:
        text = str(value)
        return "***" + text[-4:] if len(text) > 4 else "***"

    if fmt == 'json':
        output: Dict[str, Dict[str, Any]] = {}
        for section, items in sections.items():
            output[section] = {}
            for attr, _, is_secret in items:
                value = getattr(flowtest_config, attr, None)
                output[section][attr] = _mask(value) if is_secret and value else value
        console.print(json.dumps(output, indent=2, default=str))
        return

    console.print(Panel.fit("[bold cyan]flowtest Configuration[/bold cyan]", border_style="cyan"))
    for section, items in sections.items():
        table = Table(title=section, box=box.ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Env Variable", style="dim")
        table.add_column("Value")
        table.add_column("Status", justify="center")

        for attr, env_var, is_secret in items:
            value = getattr(flowtest_config, attr, None)
            if value is None:
                display_value = "[dim]not set[/dim]"
                status = "[yellow]○[/yellow]"
            elif is_secret:
                display_value = _mask(value)
                status = "[green]●[/green]"
            else:
                display_value = str(value)
                status = "[green]●[/green]"
            table.add_row(attr, env_var, display_value, status)

        console.print(table)
        console.print()


def main():
    cli()


if __name__ == "__main__":
    main()
