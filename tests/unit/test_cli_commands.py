"""Unit tests for the CLI — command registration and basic behavior."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import typer
import yaml
from typer.testing import CliRunner

from dimgforge.cli.app import app
from dimgforge.cli.common import EXIT_INTERNAL_ERROR, load_dappfile, reporting_errors
from dimgforge.core.errors import (
    ConfigurationError,
    GitOperationError,
    InternalInvariantViolation,
)

if TYPE_CHECKING:
    from tests.conftest import GitProject

runner = CliRunner()

DAPPFILE = {
    "dimg": [
        {
            "name": "app",
            "from": "alpine:3.19",
            "gitLocal": [{"add": "/app", "to": "/srv/app"}],
            "shell": {"install": ["echo install"], "setup": ["echo setup"]},
        }
    ]
}


@pytest.fixture
def project(git_project: GitProject, tmp_path: Path, monkeypatch) -> GitProject:
    git_project.write("app/main.py", "print('hi')\n")
    git_project.commit("initial")
    (tmp_path / "dappfile.yaml").write_text(yaml.safe_dump(DAPPFILE))
    monkeypatch.setenv("DIMGFORGE_TMP_DIR", str(tmp_path / "tmp"))
    return git_project


def _args(tmp_path: Path, project: GitProject, *extra: str) -> list[str]:
    return [
        "--dappfile", str(tmp_path / "dappfile.yaml"),
        "--dir", str(project.path),
        "--build-dir", str(tmp_path / "build"),
        *extra,
    ]


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output or "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "build" in result.output
        assert "stages" in result.output

    def test_build_help(self):
        result = runner.invoke(app, ["build", "--help"])
        assert result.exit_code == 0
        assert "--dry-run" in result.output


class TestStagesCommand:
    def test_lists_stages(self, project: GitProject, tmp_path: Path):
        result = runner.invoke(app, ["stages", *_args(tmp_path, project)])
        assert result.exit_code == 0, result.output
        for name in ("from", "gitArchive", "install", "setup", "gitLatestPatch"):
            assert name in result.output
        assert f"@ {project.head()[:12]}" in result.output

    def test_missing_dappfile(self, tmp_path: Path):
        result = runner.invoke(
            app, ["stages", "--dappfile", str(tmp_path / "nope.yaml")]
        )
        assert result.exit_code == 1
        assert "dappfile not found" in result.output


class TestBuildCommand:
    def test_build_then_rebuild(self, project: GitProject, tmp_path: Path):
        first = runner.invoke(app, ["build", *_args(tmp_path, project)])
        assert first.exit_code == 0, first.output
        assert "6 layer(s) built, 0 reused" in first.output

        second = runner.invoke(app, ["build", *_args(tmp_path, project)])
        assert second.exit_code == 0, second.output
        assert "0 layer(s) built, 6 reused" in second.output

    def test_dry_run_persists_nothing(self, project: GitProject, tmp_path: Path):
        dry = runner.invoke(app, ["build", *_args(tmp_path, project, "--dry-run")])
        assert dry.exit_code == 0, dry.output
        assert "6 layer(s) to build, 0 reused" in dry.output

        real = runner.invoke(app, ["build", *_args(tmp_path, project)])
        assert "6 layer(s) built, 0 reused" in real.output

    def test_bad_runtime(self, project: GitProject, tmp_path: Path):
        result = runner.invoke(
            app, ["build", *_args(tmp_path, project, "--runtime", "no_such_module:Runtime")]
        )
        assert result.exit_code == 1
        assert "cannot load runtime" in result.output

    def test_unknown_dimg_builds_nothing(self, project: GitProject, tmp_path: Path):
        result = runner.invoke(app, ["build", *_args(tmp_path, project), "ghost"])
        assert result.exit_code == 0, result.output
        assert "0 layer(s) built, 0 reused" in result.output


class TestLoadDappfile:
    def test_yaml_and_json(self, tmp_path: Path):
        (tmp_path / "d.yaml").write_text("dimg:\n  - name: app\n    from: alpine\n")
        (tmp_path / "d.json").write_text('{"dimg": [{"name": "app", "from": "alpine"}]}')
        assert load_dappfile(tmp_path / "d.yaml") == load_dappfile(tmp_path / "d.json")

    def test_empty_file_is_empty_dappfile(self, tmp_path: Path):
        (tmp_path / "d.yaml").write_text("")
        assert load_dappfile(tmp_path / "d.yaml").dimgs == []

    def test_invalid(self, tmp_path: Path):
        (tmp_path / "d.yaml").write_text("dimg:\n  - name: app\n")
        with pytest.raises(ConfigurationError, match="invalid dappfile"):
            load_dappfile(tmp_path / "d.yaml")

    def test_unparseable(self, tmp_path: Path):
        (tmp_path / "d.json").write_text("{not json")
        with pytest.raises(ConfigurationError, match="cannot parse"):
            load_dappfile(tmp_path / "d.json")


class TestReportingErrors:
    def test_user_error_exits_1(self):
        with pytest.raises(typer.Exit) as excinfo:
            with reporting_errors():
                raise GitOperationError("own", "boom")
        assert excinfo.value.exit_code == 1

    def test_internal_error_exits_70(self):
        with pytest.raises(typer.Exit) as excinfo:
            with reporting_errors():
                raise InternalInvariantViolation("lookup failed")
        assert excinfo.value.exit_code == EXIT_INTERNAL_ERROR == 70
