"""
Run the drifthound CLI for each resolved scope and aggregate the results.
"""

from __future__ import annotations

import json
import re
import subprocess as sp
import sys
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from threading import Thread
from typing import IO, Any, TextIO

import structlog
import typer

from drifthound_action import actions
from drifthound_action.scopes import Scope

LOGGER = structlog.get_logger(__name__)


# Types and constants
class ScopeStatus(str, Enum):
    OK = "ok"
    DRIFT = "drift"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass
class CommandResult:
    code: int
    stdout: str


@dataclass
class Classification:
    status: ScopeStatus
    add_count: int = 0
    change_count: int = 0
    destroy_count: int = 0


@dataclass
class CheckSettings:
    api_url: str
    token: str
    working_dir: Path = Path(".")
    executable: str = "drifthound"


@dataclass
class ScopeResult:
    name: str
    status: ScopeStatus
    add_count: int = 0
    change_count: int = 0
    destroy_count: int = 0
    duration: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        if self.error is None:
            del data["error"]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScopeResult:
        return cls(
            name=data["name"],
            status=ScopeStatus(data.get("status", ScopeStatus.UNKNOWN.value)),
            add_count=int(data.get("add_count", 0)),
            change_count=int(data.get("change_count", 0)),
            destroy_count=int(data.get("destroy_count", 0)),
            duration=int(data.get("duration", 0)),
            error=data.get("error"),
        )


@dataclass
class RunResults:
    drift_detected: bool = False
    scopes_run: int = 0
    scopes_with_drift: int = 0
    scopes: list[ScopeResult] = field(default_factory=list)

    def record(self, result: ScopeResult) -> None:
        self.scopes.append(result)
        self.scopes_run += 1
        if result.status is ScopeStatus.DRIFT:
            self.drift_detected = True
            self.scopes_with_drift += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "drift_detected": self.drift_detected,
            "scopes_run": self.scopes_run,
            "scopes_with_drift": self.scopes_with_drift,
            "scopes": [s.to_dict() for s in self.scopes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunResults:
        return cls(
            drift_detected=bool(data.get("drift_detected", False)),
            scopes_run=int(data.get("scopes_run", 0)),
            scopes_with_drift=int(data.get("scopes_with_drift", 0)),
            scopes=[ScopeResult.from_dict(s) for s in data.get("scopes", [])],
        )

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")

    @classmethod
    def read(cls, path: Path) -> RunResults:
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))


NO_CHANGES_RE = re.compile(r"No changes|No drift detected")
ADD_RE = re.compile(r"(\d+) to add")
CHANGE_RE = re.compile(r"(\d+) to change")
DESTROY_RE = re.compile(r"(\d+) to destroy")
ERROR_RE = re.compile(r"error", re.IGNORECASE)
API_OK_RE = re.compile(r"Response: 2")


# Output parsing

def _first_count(pattern: re.Pattern[str], text: str) -> int:
    m = pattern.search(text)
    return int(m.group(1)) if m else 0


def classify_output(text: str) -> Classification:
    """Classify drifthound CLI output as ok, drift, error or unknown."""
    if NO_CHANGES_RE.search(text):
        return Classification(ScopeStatus.OK)
    if ADD_RE.search(text):
        return Classification(
            ScopeStatus.DRIFT,
            add_count=_first_count(ADD_RE, text),
            change_count=_first_count(CHANGE_RE, text),
            destroy_count=_first_count(DESTROY_RE, text),
        )
    if ERROR_RE.search(text):
        return Classification(ScopeStatus.ERROR)
    return Classification(ScopeStatus.UNKNOWN)


def reported_to_api(text: str) -> bool:
    """Whether the CLI output shows a 2xx response from the DriftHound API."""
    return API_OK_RE.search(text) is not None


# Process handling

def run_live(cmd: list[str], *, quiet: bool = False) -> CommandResult:
    """Execute a command with stderr folded into stdout, streaming as it runs."""
    proc = sp.Popen(  # noqa: S603
        cmd,
        stdout=sp.PIPE,
        stderr=sp.STDOUT,
        text=True,
        bufsize=1,
    )

    out_lines: list[str] = []

    def _drain(pipe: IO[str], collector: list[str], target: TextIO) -> None:
        try:
            for ln in iter(pipe.readline, ""):
                collector.append(ln)
                if not quiet:
                    target.write(ln)
                    target.flush()
        finally:
            pipe.close()

    t_out = Thread(target=_drain, args=(proc.stdout, out_lines, sys.stdout), daemon=True)
    t_out.start()
    proc.wait()
    t_out.join()

    return CommandResult(code=proc.returncode, stdout="".join(out_lines))


def build_command(scope: Scope, settings: CheckSettings, directory: Path) -> list[str]:
    cmd = [
        settings.executable,
        f"--tool={scope.tool}",
        f"--project={scope.project}",
        f"--environment={scope.environment}",
        f"--token={settings.token}",
        f"--api-url={settings.api_url}",
        f"--dir={directory}",
    ]
    if scope.slack_channel:
        cmd.append(f"--slack-channel={scope.slack_channel}")
    return cmd


def _redact(cmd: list[str]) -> str:
    return " ".join("--token=***" if part.startswith("--token=") else part for part in cmd)


def _print_scope_header(scope: Scope, directory: Path) -> None:
    typer.echo("")
    typer.echo("=" * 42)
    typer.echo(f"Running scope: {scope.name}")
    typer.echo(f"  Project: {scope.project}")
    typer.echo(f"  Environment: {scope.environment}")
    typer.echo(f"  Directory: {directory}")
    typer.echo(f"  Tool: {scope.tool}")
    if scope.slack_channel:
        typer.echo(f"  Slack Channel: {scope.slack_channel}")
    typer.echo("=" * 42)


Runner = Callable[[list[str]], CommandResult]


def run_scope(scope: Scope, settings: CheckSettings, *, runner: Runner = run_live) -> ScopeResult:
    """Check one scope and turn the CLI's output into a result."""
    directory = settings.working_dir / scope.directory
    _print_scope_header(scope, directory)

    if not directory.is_dir():
        message = f"Directory not found: {directory}"
        actions.error(message)
        return ScopeResult(name=scope.name, status=ScopeStatus.ERROR, error=message)

    cmd = build_command(scope, settings, directory)
    typer.echo(f"Running: {_redact(cmd)}")

    start = time.monotonic()
    try:
        result = runner(cmd)
    except FileNotFoundError:
        message = f"Command not found: {settings.executable}"
        actions.error(message)
        return ScopeResult(name=scope.name, status=ScopeStatus.ERROR, error=message)
    except OSError as exc:
        message = f"Could not run {settings.executable}: {exc}"
        actions.error(message)
        return ScopeResult(name=scope.name, status=ScopeStatus.ERROR, error=message)
    duration = int(time.monotonic() - start)

    output = result.stdout
    classification = classify_output(output)
    status = classification.status
    LOGGER.debug("cli finished", scope=scope.name, code=result.code, status=status.value)

    if reported_to_api(output):
        typer.echo("✓ Successfully reported to DriftHound API")
    else:
        actions.warning("Failed to report to DriftHound API")
        status = ScopeStatus.ERROR

    return ScopeResult(
        name=scope.name,
        status=status,
        add_count=classification.add_count,
        change_count=classification.change_count,
        destroy_count=classification.destroy_count,
        duration=duration,
    )


def run_checks(scopes: list[Scope], settings: CheckSettings, *, runner: Runner = run_live) -> RunResults:
    """Run every scope in order, collecting results."""
    results = RunResults()
    typer.echo(f"Running checks for {len(scopes)} scope(s)...")

    for scope in scopes:
        outcome = run_scope(scope, settings, runner=runner)
        results.record(outcome)

        if outcome.status is ScopeStatus.DRIFT:
            typer.echo(f"⚠️  Drift detected in scope: {scope.name}")
        elif outcome.status is ScopeStatus.OK:
            typer.echo(f"✓ No drift in scope: {scope.name}")
        elif outcome.status is ScopeStatus.ERROR:
            typer.echo(f"✗ Error in scope: {scope.name}")
        LOGGER.info("scope checked", scope=scope.name, status=outcome.status.value)

    return results
