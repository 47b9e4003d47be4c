"""
Command-line entry points for each step of the DriftHound action.

Each option also reads the environment variable the action passes to its
steps, so the commands run unchanged inside a composite action.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import structlog
import typer

from drifthound_action import actions, scopes
from drifthound_action.checks import CheckSettings, RunResults, run_checks
from drifthound_action.errors import DriftHoundError
from drifthound_action.summary import render_summary, write_summary
from drifthound_action.tools import DEFAULT_BIN_DIR, DEFAULT_CLI_REF, DEFAULT_CLI_REPO, RELEASES, Installer

# App setup
app = typer.Typer(
    name="drifthound-action",
    help="DriftHound action steps: parse-config, setup-tools, install-cli, run-check, summary",
    add_completion=False,
    no_args_is_help=True,
)

LOGGER = structlog.get_logger(__name__)


def _configure_logging(verbose: bool) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


@contextmanager
def _step(title: str) -> Iterator[None]:
    """Run a step inside a log group, turning known failures into ::error:: and exit 1."""
    try:
        with actions.group(title):
            yield
    except DriftHoundError as exc:
        actions.error(str(exc))
        raise typer.Exit(code=1) from exc


def _load_json(raw: str, what: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{what} is not valid JSON: {exc}") from exc


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
) -> None:
    _configure_logging(verbose)


# Commands
@app.command("parse-config")
def parse_config(
    config_file: Annotated[
        str, typer.Option(envvar="CONFIG_FILE", help="Configuration file, relative to the working dir.")
    ] = "drifthound.yaml",
    working_dir: Annotated[Path, typer.Option(envvar="WORKING_DIR", help="Repository working directory.")] = Path("."),
    environment: Annotated[
        str | None, typer.Option(envvar="ENVIRONMENT_FILTER", help="Only run scopes in this environment.")
    ] = None,
    scope: Annotated[str | None, typer.Option(envvar="SINGLE_SCOPE", help="Only run this scope.")] = None,
    scope_list: Annotated[
        str | None,
        typer.Option("--scopes", envvar="SCOPE_FILTER", help="Comma-separated scope names to run."),
    ] = None,
) -> None:
    """Resolve the scopes to run and the tools they need."""
    with _step("Parsing configuration"):
        config_path = working_dir / config_file
        typer.echo(f"Reading configuration from: {config_path}")
        config = scopes.load(config_path)
        typer.echo(f"Found {len(config.scopes)} scope(s) in configuration")
        if config.default_tool:
            typer.echo(f"Default tool set to: {config.default_tool}")

        scope_filter = scopes.build_filter(environment=environment, scope=scope, scopes=scope_list)
        resolution = scopes.resolve(config, scope_filter)
        for name in resolution.unmatched:
            actions.warning(f"Scope '{name}' not found in configuration, skipping")

        scopes_json = json.dumps([s.to_dict() for s in resolution.scopes])
        tools_json = json.dumps(resolution.requirements.to_dict())

        typer.echo(f"Tools needed: {json.dumps(resolution.requirements.tools)}")
        typer.echo(f"Scopes to run: {len(resolution.scopes)}")
        typer.echo("Scope details:")
        for s in resolution.scopes:
            typer.echo(f"  - {s.name} ({s.tool}) in {s.directory}")

        actions.set_output("scopes", scopes_json)
        actions.set_output("tools", tools_json)


@app.command("setup-tools")
def setup_tools(
    tools_json: Annotated[str, typer.Option(envvar="TOOLS_JSON", help="Tool requirements from parse-config.")],
    bin_dir: Annotated[
        Path, typer.Option(envvar="TOOLS_BIN_DIR", help="Directory to install binaries into.")
    ] = DEFAULT_BIN_DIR,
) -> None:
    """Install every tool the resolved scopes need."""
    requirements = scopes.ToolRequirements.from_dict(_load_json(tools_json, "TOOLS_JSON"))
    with _step("Setting up infrastructure tools"):
        typer.echo(f"Tools to install: {json.dumps(requirements.tools)}")
        installed = Installer(bin_dir).install_all(requirements)
        for tool in requirements.tools:
            if tool in installed:
                typer.echo(f"✓ {tool} installed successfully")
            elif tool in RELEASES:
                typer.echo(f"✓ {tool} is already installed")


@app.command("install-cli")
def install_cli(
    cli_version: Annotated[
        str, typer.Option(envvar="CLI_VERSION", help="Git ref of the CLI to install.")
    ] = DEFAULT_CLI_REF,
    cli_repo: Annotated[
        str, typer.Option(envvar="CLI_REPO", help="GitHub repository hosting the CLI.")
    ] = DEFAULT_CLI_REPO,
    install_path: Annotated[
        Path, typer.Option(envvar="CLI_INSTALL_PATH", help="Where to place the drifthound executable.")
    ] = DEFAULT_BIN_DIR / "drifthound",
) -> None:
    """Download the drifthound CLI."""
    with _step("Installing drifthound-cli"):
        typer.echo(f"Installing drifthound-cli from {cli_repo}@{cli_version}...")
        path = Installer(install_path.parent).install_cli(repo=cli_repo, ref=cli_version, dest=install_path)
        typer.echo(f"✓ drifthound-cli installed successfully at {path}")


@app.command("run-check")
def run_check(
    scopes_json: Annotated[str, typer.Option(envvar="SCOPES_JSON", help="Resolved scopes from parse-config.")],
    api_url: Annotated[str, typer.Option(envvar="DRIFTHOUND_URL", help="DriftHound API URL.")],
    token: Annotated[str, typer.Option(envvar="DRIFTHOUND_TOKEN", help="DriftHound API token.")],
    working_dir: Annotated[Path, typer.Option(envvar="WORKING_DIR", help="Repository working directory.")] = Path("."),
    results_file: Annotated[
        Path | None, typer.Option(help="Where to write the JSON results.")
    ] = None,
) -> None:
    """Run drifthound for every scope and record the results."""
    resolved = [scopes.Scope.from_dict(item) for item in _load_json(scopes_json, "SCOPES_JSON")]
    results_file = results_file or Path(tempfile.gettempdir()) / f"drifthound-results-{os.getpid()}.json"
    settings = CheckSettings(api_url=api_url, token=token, working_dir=working_dir)

    with _step("Running drift checks"):
        results = run_checks(resolved, settings)
        results.write(results_file)
        LOGGER.info("results written", path=str(results_file))

    typer.echo("")
    typer.echo("=" * 42)
    typer.echo("SUMMARY")
    typer.echo("=" * 42)
    typer.echo(f"Scopes checked: {results.scopes_run}")
    typer.echo(f"Scopes with drift: {results.scopes_with_drift}")
    typer.echo(f"Drift detected: {str(results.drift_detected).lower()}")
    typer.echo("=" * 42)

    actions.set_output("results-file", str(results_file))


@app.command("summary")
def summary(
    results_file: Annotated[Path, typer.Option(envvar="RESULTS_FILE", help="JSON results from run-check.")],
    output: Annotated[
        Path | None, typer.Option(help="Write here instead of $GITHUB_STEP_SUMMARY.")
    ] = None,
) -> None:
    """Render the job summary for a finished run."""
    if not results_file.exists():
        raise typer.BadParameter(f"Results file not found: {results_file}")

    results = RunResults.read(results_file)
    target = output or actions.step_summary_path()
    if target is None:
        typer.echo(render_summary(results))
        return
    write_summary(results, target)
    typer.echo(f"Wrote job summary to {target}")
