"""Unit tests for tool and CLI installation, with HTTP faked out."""

import io
import os
import zipfile

import pytest
import requests

from drifthound_action import tools
from drifthound_action.errors import ToolInstallError
from drifthound_action.scopes import ToolRequirements
from drifthound_action.tools import Installer


def _zip_with(name, content=b"#!/bin/sh\necho fake\n"):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(name, content)
    return buf.getvalue()


class FakeResponse:
    def __init__(self, status=200, content=b"", payload=None):
        self.status_code = status
        self.content = content
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    """Maps URLs to canned responses and records what was fetched."""

    def __init__(self, routes):
        self.routes = routes
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        if url not in self.routes:
            return FakeResponse(status=404)
        return self.routes[url]


@pytest.fixture(autouse=True)
def isolated_path(tmp_path, monkeypatch):
    """Keep PATH edits local and make every tool look uninstalled."""
    monkeypatch.setenv("PATH", os.environ.get("PATH", ""))
    monkeypatch.delenv("GITHUB_PATH", raising=False)
    monkeypatch.setattr(tools.shutil, "which", lambda name: None)
    monkeypatch.setattr(tools, "tool_version", lambda executable: "v0.0.0")


TF_URL = "https://releases.hashicorp.com/terraform/1.6.0/terraform_1.6.0_linux_amd64.zip"
TOFU_URL = "https://github.com/opentofu/opentofu/releases/download/v1.6.2/tofu_1.6.2_linux_amd64.zip"
TG_URL = "https://github.com/gruntwork-io/terragrunt/releases/download/v0.55.0/terragrunt_linux_amd64"


class TestInstall:
    def test_terraform_zip(self, tmp_path):
        session = FakeSession({TF_URL: FakeResponse(content=_zip_with("terraform"))})
        path = Installer(tmp_path, session=session).install("terraform", "1.6.0")
        assert path == tmp_path / "terraform"
        assert os.access(path, os.X_OK)

    def test_opentofu_alias(self, tmp_path):
        session = FakeSession({TOFU_URL: FakeResponse(content=_zip_with("tofu"))})
        Installer(tmp_path, session=session).install("opentofu", "1.6.2")
        alias = tmp_path / "opentofu"
        assert alias.is_symlink()
        assert alias.resolve() == (tmp_path / "tofu").resolve()

    def test_terragrunt_bare_binary(self, tmp_path):
        session = FakeSession({TG_URL: FakeResponse(content=b"binary")})
        path = Installer(tmp_path, session=session).install("terragrunt", "0.55.0")
        assert path.read_bytes() == b"binary"
        assert os.access(path, os.X_OK)

    def test_latest_resolves_through_github(self, tmp_path):
        latest = f"{tools.GITHUB_API}/repos/hashicorp/terraform/releases/latest"
        session = FakeSession(
            {
                latest: FakeResponse(payload={"tag_name": "v1.6.0"}),
                TF_URL: FakeResponse(content=_zip_with("terraform")),
            }
        )
        Installer(tmp_path, session=session).install("terraform")
        assert session.requested == [latest, TF_URL]

    def test_http_error(self, tmp_path):
        with pytest.raises(ToolInstallError, match="Download failed"):
            Installer(tmp_path, session=FakeSession({})).install("terraform", "9.9.9")

    def test_archive_without_binary(self, tmp_path):
        session = FakeSession({TF_URL: FakeResponse(content=_zip_with("README"))})
        with pytest.raises(ToolInstallError, match="terraform"):
            Installer(tmp_path, session=session).install("terraform", "1.6.0")

    def test_unknown_tool(self, tmp_path):
        with pytest.raises(ToolInstallError, match="Unknown tool"):
            Installer(tmp_path, session=FakeSession({})).install("pulumi", "1.0.0")


class TestInstallAll:
    def test_installs_missing_with_versions(self, tmp_path):
        session = FakeSession(
            {
                TF_URL: FakeResponse(content=_zip_with("terraform")),
                TG_URL: FakeResponse(content=b"binary"),
            }
        )
        requirements = ToolRequirements(
            tools=["terragrunt", "terraform"], versions={"terragrunt": "0.55.0", "terraform": "1.6.0"}
        )
        installed = Installer(tmp_path, session=session).install_all(requirements)
        assert installed == ["terragrunt", "terraform"]
        assert str(tmp_path) in os.environ["PATH"].split(os.pathsep)

    def test_skips_present_tools(self, tmp_path, monkeypatch):
        monkeypatch.setattr(tools.shutil, "which", lambda name: f"/usr/bin/{name}")
        session = FakeSession({})
        requirements = ToolRequirements(tools=["terraform"], versions={})
        assert Installer(tmp_path, session=session).install_all(requirements) == []
        assert session.requested == []

    def test_unknown_tool_warns(self, tmp_path, capsys):
        requirements = ToolRequirements(tools=["pulumi"], versions={})
        assert Installer(tmp_path, session=FakeSession({})).install_all(requirements) == []
        assert "::warning::Unknown tool: pulumi" in capsys.readouterr().out

    def test_records_github_path(self, tmp_path, monkeypatch):
        github_path = tmp_path / "github_path"
        monkeypatch.setenv("GITHUB_PATH", str(github_path))
        bin_dir = tmp_path / "bin"
        Installer(bin_dir, session=FakeSession({})).install_all(ToolRequirements(tools=[], versions={}))
        assert github_path.read_text() == f"{bin_dir}\n"


class TestInstallCli:
    def test_downloads_script(self, tmp_path):
        url = tools.CLI_URL.format(repo="treezio/DriftHound", ref="main")
        session = FakeSession({url: FakeResponse(content=b"#!/usr/bin/env ruby\n")})
        dest = tmp_path / "bin" / "drifthound"
        path = Installer(tmp_path, session=session).install_cli(dest=dest)
        assert path == dest
        assert os.access(dest, os.X_OK)

    def test_custom_repo_and_ref(self, tmp_path):
        url = tools.CLI_URL.format(repo="me/fork", ref="v1.2.0")
        session = FakeSession({url: FakeResponse(content=b"x")})
        Installer(tmp_path, session=session).install_cli(repo="me/fork", ref="v1.2.0")
        assert session.requested == [url]
        assert (tmp_path / "drifthound").exists()

    def test_download_failure(self, tmp_path):
        with pytest.raises(ToolInstallError, match="Failed to download drifthound-cli"):
            Installer(tmp_path, session=FakeSession({})).install_cli()
