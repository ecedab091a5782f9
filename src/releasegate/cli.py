"""releasegate Command Line Interface.

Entry point for the releasegate CLI tool.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict
from datetime import timedelta
from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import ValidationError

from releasegate import __version__
from releasegate.contracts import (
    ApprovalEvent,
    CatalogValidationError,
    ReleaseGateError,
    RunState,
    RunStatus,
    TestOutcome,
    UpgradeRequest,
)
from releasegate.core.catalog import (
    InMemoryCatalogSource,
    default_flow_config,
    flow_config_to_records,
    full_flow_config,
    load_flow_config_file,
    parse_flow_config,
)
from releasegate.core.config import ReleaseGateSettings, load_settings
from releasegate.engine.clock import MockClock
from releasegate.engine.orchestrator import Orchestrator

__all__ = [
    "app",
]

INLINE_CATALOG_ID = "inline"
SIMULATION_OPERATOR = "simulator"

app = typer.Typer(
    name="releasegate",
    help="releasegate: Gated multi-stage release approvals.",
    no_args_is_help=True,
)

catalog_app = typer.Typer(help="Stage catalog commands.")
app.add_typer(catalog_app, name="catalog")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"releasegate version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a clearer message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """releasegate: Gated multi-stage release approvals."""
    from releasegate.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(json_output=json_logs, level=log_level)
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    panel = Panel(
        content,
        title=f"[red bold]❌ {title}[/]",
        border_style="red",
        padding=(0, 1),
    )
    console.print(panel)


def _load_settings_or_exit(settings: Path | None) -> ReleaseGateSettings:
    if settings is None:
        return ReleaseGateSettings()

    settings_path = settings.expanduser()
    try:
        return load_settings(settings_path)
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must precede ValueError: ValidationError inherits from it
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None
    except ValueError as e:
        _format_validation_error(title="Configuration Error", message=str(e))
        raise typer.Exit(1) from None


def _apply_logging_settings(config: ReleaseGateSettings, flags: Mapping[str, bool]) -> None:
    """Reconfigure logging from a settings file; --verbose and --json-logs still win."""
    from releasegate.core.logging import configure_logging

    configure_logging(
        json_output=flags.get("json_logs", False) or config.logging.json_output,
        level="DEBUG" if flags.get("verbose", False) else config.logging.level,
    )


# =============================================================================
# catalog
# =============================================================================


@catalog_app.command("default")
def catalog_default(
    full: bool = typer.Option(
        False,
        "--full",
        help="Print the 13-stage catalog including gray release stages.",
    ),
) -> None:
    """Print the built-in stage catalog in the persisted JSON format."""
    config = full_flow_config() if full else default_flow_config()
    typer.echo(json.dumps(flow_config_to_records(config), indent=2, ensure_ascii=False))


@catalog_app.command("validate")
def catalog_validate(
    path: Path = typer.Argument(..., help="Catalog file (.json, .yaml or .yml)."),
) -> None:
    """Validate a stage catalog file."""
    try:
        config = load_flow_config_file(path.expanduser())
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Catalog file does not exist: {path}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except CatalogValidationError as e:
        _format_validation_error(
            title="Catalog Validation Failed",
            message=str(e),
            hint="Each stage needs key, type (approval/prepare/test) and timeout in hours.",
        )
        raise typer.Exit(1) from None

    enabled = config.enabled_stages()
    typer.echo(f"✅ Catalog valid: {len(config.stages)} stages ({len(enabled)} enabled)")
    for stage in enabled:
        flags = " auto-pass" if stage.auto_pass else ""
        typer.echo(f"  {stage.order:>3}. {stage.key} [{stage.kind.value}] {stage.timeout}{flags}")


# =============================================================================
# simulate
# =============================================================================


def _step_fields(step: Mapping[str, Any], verb: str) -> dict[str, Any]:
    """Normalize `approve: key` and `approve: {stage: key, ...}` step forms."""
    value = step[verb]
    if isinstance(value, str):
        return {"stage": value}
    if isinstance(value, Mapping) and isinstance(value.get("stage"), str):
        return dict(value)
    raise ValueError(f"step {verb!r} needs a stage key, got {value!r}")


def _dump_state(state: RunState) -> str:
    return json.dumps(asdict(state), indent=2, ensure_ascii=False)


@app.command()
def simulate(
    ctx: typer.Context,
    script: Path = typer.Argument(..., help="Scenario YAML file."),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Run a scripted upgrade scenario against a simulated clock.

    The script names a version and its catalog (inline `catalog`, or
    `flow_config_id`), then lists steps: `advance_hours: N`,
    `approve: <stage>`, `reject: {stage, operator, comment}` and
    `test: {stage, all_passed}`. The final run state is printed as JSON.
    """
    config = _load_settings_or_exit(settings)
    if settings is not None:
        _apply_logging_settings(config, ctx.obj or {})

    try:
        scenario = yaml.safe_load(script.expanduser().read_text(encoding="utf-8"))
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Scenario file does not exist: {script}",
        )
        raise typer.Exit(1) from None
    except yaml.YAMLError as e:
        _format_validation_error(title="YAML Syntax Error", message=f"Failed to parse {script.name}: {e}")
        raise typer.Exit(1) from None

    if not isinstance(scenario, Mapping) or not isinstance(scenario.get("version_id"), str):
        _format_validation_error(
            title="Invalid Scenario",
            message="Scenario must be a mapping with a string 'version_id'",
        )
        raise typer.Exit(1)

    catalogs = None
    flow_config_id = scenario.get("flow_config_id")
    if "catalog" in scenario:
        try:
            inline = parse_flow_config(scenario["catalog"], config_id=INLINE_CATALOG_ID)
        except CatalogValidationError as e:
            _format_validation_error(title="Catalog Validation Failed", message=str(e))
            raise typer.Exit(1) from None
        catalogs = InMemoryCatalogSource({INLINE_CATALOG_ID: inline})
        flow_config_id = INLINE_CATALOG_ID

    request = UpgradeRequest(
        version_id=scenario["version_id"],
        version_name=str(scenario.get("version_name", "")),
        item_ids=tuple(str(i) for i in scenario.get("item_ids", ())),
        flow_config_id=None if flow_config_id is None else str(flow_config_id),
    )

    clock = MockClock()
    orchestrator = Orchestrator.from_settings(
        config,
        clock=clock,
        catalogs=catalogs,
        sleep=lambda seconds: None,  # retries are instant under simulated time
    )
    with orchestrator.runtime:
        handle = orchestrator.start(request)
        handle.settle()
        index = 0
        try:
            for index, step in enumerate(scenario.get("steps") or [], start=1):
                _apply_step(orchestrator, clock, request.version_id, step)
                handle.settle()
        except (ValueError, ReleaseGateError) as e:
            _format_validation_error(title="Scenario Step Failed", message=f"step {index}: {e}")
            raise typer.Exit(1) from None
        handle.wait_detached(timeout=5.0)
        state = orchestrator.describe(request.version_id)

    typer.echo(_dump_state(state))
    if state.status is RunStatus.FAILED:
        typer.secho(f"Run failed: {state.failure_message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    if state.status is RunStatus.RUNNING:
        typer.secho(f"Run still waiting at stage {state.current_stage}", fg=typer.colors.YELLOW, err=True)


def _apply_step(orchestrator: Orchestrator, clock: MockClock, version_id: str, step: Any) -> None:
    if not isinstance(step, Mapping) or len(step) != 1:
        raise ValueError(f"each step must be a single-key mapping, got {step!r}")

    if "advance_hours" in step:
        hours = step["advance_hours"]
        if isinstance(hours, bool) or not isinstance(hours, (int, float)):
            raise ValueError(f"advance_hours must be a number, got {hours!r}")
        clock.advance(timedelta(hours=hours))
    elif "approve" in step or "reject" in step:
        verb = "approve" if "approve" in step else "reject"
        fields = _step_fields(step, verb)
        orchestrator.submit_approval(
            version_id,
            ApprovalEvent(
                stage_key=fields["stage"],
                operator=str(fields.get("operator", SIMULATION_OPERATOR)),
                approved=verb == "approve",
                comment=str(fields.get("comment", "")),
            ),
        )
    elif "test" in step:
        fields = _step_fields(step, "test")
        all_passed = fields.get("all_passed", True)
        if not isinstance(all_passed, bool):
            raise ValueError(f"all_passed must be true or false, got {all_passed!r}")
        orchestrator.submit_test_result(version_id, TestOutcome(stage_key=fields["stage"], all_passed=all_passed))
    else:
        raise ValueError(f"unknown step {next(iter(step))!r}")
