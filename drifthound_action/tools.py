"""
Install Terraform, OpenTofu and Terragrunt release binaries, and the
drifthound CLI itself.
"""

from __future__ import annotations

import io
import os
import shutil
import stat
import subprocess as sp
import zipfile
from dataclasses import dataclass
from pathlib import Path

import requests
import structlog

from drifthound_action import actions
from drifthound_action.errors import ToolInstallError
from drifthound_action.scopes import LATEST, ToolRequirements

LOGGER = structlog.get_logger(__name__)

GITHUB_API = "https://api.github.com"
CLI_URL = "https://raw.githubusercontent.com/{repo}/{ref}/bin/drifthound-cli"
DEFAULT_CLI_REPO = "treezio/DriftHound"
DEFAULT_CLI_REF = "main"
DEFAULT_BIN_DIR = Path("/usr/local/bin")
TIMEOUT = 60


@dataclass(frozen=True)
class ToolRelease:
    """Where a tool's linux/amd64 release lives and what it unpacks to."""

    repo: str
    url: str
    binary: str
    archive: bool = True
    aliases: tuple[str, ...] = ()

    def download_url(self, version: str) -> str:
        return self.url.format(version=version)


RELEASES = {
    "terraform": ToolRelease(
        repo="hashicorp/terraform",
        url="https://releases.hashicorp.com/terraform/{version}/terraform_{version}_linux_amd64.zip",
        binary="terraform",
    ),
    "opentofu": ToolRelease(
        repo="opentofu/opentofu",
        url="https://github.com/opentofu/opentofu/releases/download/v{version}/tofu_{version}_linux_amd64.zip",
        binary="tofu",
        aliases=("opentofu",),
    ),
    "terragrunt": ToolRelease(
        repo="gruntwork-io/terragrunt",
        url="https://github.com/gruntwork-io/terragrunt/releases/download/v{version}/terragrunt_linux_amd64",
        binary="terragrunt",
        archive=False,
    ),
}


# Helpers

def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _link_alias(target: Path, alias: Path) -> None:
    if alias.is_symlink() or alias.exists():
        alias.unlink()
    alias.symlink_to(target.name)


def tool_version(executable: str) -> str | None:
    """First line of the tool's own version output, if it reports one."""
    for flag in ("--version", "version"):
        try:
            result = sp.run(  # noqa: S603
                [executable, flag], capture_output=True, text=True, check=False, timeout=30
            )
        except (OSError, sp.TimeoutExpired) as exc:
            LOGGER.debug("version query failed", executable=executable, flag=flag, error=str(exc))
            continue
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip().splitlines()[0]
    return None


class Installer:
    def __init__(
        self,
        bin_dir: Path = DEFAULT_BIN_DIR,
        *,
        session: requests.Session | None = None,
        timeout: int = TIMEOUT,
    ) -> None:
        self.bin_dir = bin_dir
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.get(url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ToolInstallError(f"Download failed for {url}: {exc}") from exc
        return resp

    def latest_version(self, release: ToolRelease) -> str:
        """Resolve 'latest' to a concrete version through the GitHub releases API."""
        url = f"{GITHUB_API}/repos/{release.repo}/releases/latest"
        resp = self._get(url, headers={"Accept": "application/vnd.github+json"})
        tag = resp.json().get("tag_name")
        if not tag:
            raise ToolInstallError(f"No tag_name in latest release of {release.repo}")
        return tag.removeprefix("v")

    def install(self, tool: str, version: str = LATEST) -> Path:
        """Download one tool release into bin_dir and return the binary path."""
        release = RELEASES.get(tool)
        if release is None:
            raise ToolInstallError(f"Unknown tool: {tool}")

        if version == LATEST:
            version = self.latest_version(release)
        url = release.download_url(version)
        LOGGER.info("downloading tool", tool=tool, version=version, url=url)

        self.bin_dir.mkdir(parents=True, exist_ok=True)
        target = self.bin_dir / release.binary
        payload = self._get(url).content

        if release.archive:
            try:
                with zipfile.ZipFile(io.BytesIO(payload)) as zf:
                    with zf.open(release.binary) as src, target.open("wb") as dst:
                        shutil.copyfileobj(src, dst)
            except (zipfile.BadZipFile, KeyError) as exc:
                raise ToolInstallError(f"Archive from {url} has no usable '{release.binary}': {exc}") from exc
        else:
            target.write_bytes(payload)

        _make_executable(target)
        for alias in release.aliases:
            _link_alias(target, self.bin_dir / alias)
        return target

    def install_all(self, requirements: ToolRequirements) -> list[str]:
        """Ensure every required tool is on PATH; return the ones installed now."""
        actions.add_path(self.bin_dir)
        installed: list[str] = []
        for tool in requirements.tools:
            if tool not in RELEASES:
                LOGGER.warning("unknown tool", tool=tool)
                actions.warning(f"Unknown tool: {tool}")
                continue

            existing = shutil.which(tool)
            if existing:
                LOGGER.info("tool already installed", tool=tool, path=existing, version=tool_version(existing))
                continue

            version = requirements.version_for(tool)
            path = self.install(tool, version)
            LOGGER.info("tool installed", tool=tool, path=str(path), version=tool_version(str(path)))
            installed.append(tool)
        return installed

    def install_cli(
        self,
        *,
        repo: str = DEFAULT_CLI_REPO,
        ref: str = DEFAULT_CLI_REF,
        dest: Path | None = None,
    ) -> Path:
        """Fetch the drifthound CLI script from its repository."""
        dest = dest or self.bin_dir / "drifthound"
        url = CLI_URL.format(repo=repo, ref=ref)
        LOGGER.info("downloading drifthound cli", url=url)
        try:
            payload = self._get(url).content
        except ToolInstallError as exc:
            raise ToolInstallError(f"Failed to download drifthound-cli from {url}") from exc

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(payload)
        _make_executable(dest)
        actions.add_path(dest.parent)

        if shutil.which(dest.name) is None and not os.access(dest, os.X_OK):
            raise ToolInstallError("drifthound-cli installation failed")
        return dest
