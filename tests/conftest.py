"""Pytest configuration and shared fixtures for drifthound-action tests."""

import sys
from pathlib import Path

import pytest
import structlog

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


def extract_output(key: str, output_file: Path) -> str:
    """Pull one multi-line step output back out of a GITHUB_OUTPUT file."""
    lines = output_file.read_text().splitlines()
    start = lines.index(f"{key}<<EOF")
    end = lines.index("EOF", start + 1)
    return "\n".join(lines[start + 1 : end])


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI runs bind structlog to their captured stderr; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def write_config(tmp_path):
    """Write YAML text to a config file and return its path."""

    def _write(text: str, name: str = "drifthound.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text)
        return path

    return _write


@pytest.fixture
def github_output(tmp_path, monkeypatch) -> Path:
    """Point GITHUB_OUTPUT at a temp file, as the runner does."""
    path = tmp_path / "github_output"
    path.touch()
    monkeypatch.setenv("GITHUB_OUTPUT", str(path))
    monkeypatch.delenv("GITHUB_STEP_SUMMARY", raising=False)
    monkeypatch.delenv("GITHUB_PATH", raising=False)
    return path


@pytest.fixture
def clean_filters(monkeypatch):
    """Drop filter env vars a developer shell or CI job might carry."""
    for var in ("CONFIG_FILE", "WORKING_DIR", "ENVIRONMENT_FILTER", "SINGLE_SCOPE", "SCOPE_FILTER"):
        monkeypatch.delenv(var, raising=False)
