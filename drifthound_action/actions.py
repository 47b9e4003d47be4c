"""GitHub Actions workflow commands and step outputs."""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog
import typer

LOGGER = structlog.get_logger(__name__)

OUTPUT_DELIMITER = "EOF"


def _command(name: str, message: str) -> None:
    typer.echo(f"::{name}::{message}")


def error(message: str) -> None:
    _command("error", message)


def warning(message: str) -> None:
    _command("warning", message)


def notice(message: str) -> None:
    _command("notice", message)


@contextmanager
def group(title: str) -> Iterator[None]:
    """Fold everything printed inside the block into a collapsible log group."""
    _command("group", title)
    try:
        yield
    finally:
        typer.echo("::endgroup::")


def set_output(name: str, value: str, *, output_file: Path | None = None) -> None:
    """Append a multi-line step output to $GITHUB_OUTPUT."""
    target = output_file or os.environ.get("GITHUB_OUTPUT")
    if not target:
        LOGGER.warning("GITHUB_OUTPUT not set, output not recorded", name=name, value=value)
        return
    with Path(target).open("a", encoding="utf-8") as fh:
        fh.write(f"{name}<<{OUTPUT_DELIMITER}\n{value}\n{OUTPUT_DELIMITER}\n")


def step_summary_path() -> Path | None:
    target = os.environ.get("GITHUB_STEP_SUMMARY")
    return Path(target) if target else None


def add_path(directory: Path) -> None:
    """Prepend a directory to PATH for this and later workflow steps."""
    entry = str(directory)
    if entry not in os.environ.get("PATH", "").split(os.pathsep):
        os.environ["PATH"] = os.pathsep.join([entry, os.environ.get("PATH", "")])
    target = os.environ.get("GITHUB_PATH")
    if target:
        with Path(target).open("a", encoding="utf-8") as fh:
            fh.write(f"{entry}\n")
