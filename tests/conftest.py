"""Shared test fixtures for Dimgforge."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from dimgforge.config import ProdConfig
from dimgforge.core.conveyor import Conveyor
from dimgforge.core.runtime import RecordingRuntime
from dimgforge.core.stages_storage import StagesStorage
from dimgforge.git.repo import LocalGitRepo
from dimgforge.models.dimg import Dappfile

GIT_IDENTITY = [
    "-c", "user.name=Dimgforge Tests",
    "-c", "user.email=tests@dimgforge.invalid",
    "-c", "commit.gpgsign=false",
]


class GitProject:
    """A throwaway git working tree driven through the git binary."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.mkdir(parents=True, exist_ok=True)
        self.git("init", "-q")

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *GIT_IDENTITY, *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout

    def write(self, relative: str, content: str | bytes) -> Path:
        target = self.path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
        return target

    def remove(self, relative: str) -> None:
        self.git("rm", "-q", relative)

    def chmod(self, relative: str, mode: int) -> None:
        (self.path / relative).chmod(mode)

    def commit(self, message: str = "change") -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.head()

    def head(self) -> str:
        return self.git("rev-parse", "HEAD").strip()

    def repo(self) -> LocalGitRepo:
        return LocalGitRepo(self.path)


@pytest.fixture
def git_project(tmp_path: Path) -> GitProject:
    """Provide an empty git working tree."""
    return GitProject(tmp_path / "project")


@pytest.fixture
def prod_config(tmp_path: Path) -> ProdConfig:
    """Provide settings rooted in the test's temp directory."""
    return ProdConfig(
        build_dir=tmp_path / "build",
        tmp_dir=tmp_path / "tmp",
        home_dir=tmp_path / "home",
    )


@pytest.fixture
def storage(prod_config: ProdConfig) -> StagesStorage:
    """Provide a fresh StagesStorage in the test build dir."""
    return StagesStorage(prod_config.stages_db_path)


@pytest.fixture
def make_conveyor(
    git_project: GitProject,
    prod_config: ProdConfig,
    storage: StagesStorage,
) -> Callable[..., Conveyor]:
    """Factory fixture: a Conveyor over the test project with a recording runtime."""

    def _factory(dappfile: dict[str, Any] | Dappfile, **overrides: Any) -> Conveyor:
        if not isinstance(dappfile, Dappfile):
            dappfile = Dappfile.model_validate(dappfile)
        kwargs: dict[str, Any] = {
            "project_name": "test",
            "storage": storage,
            "config": prod_config,
        }
        kwargs.update(overrides)
        runtime = kwargs.pop("runtime", None) or RecordingRuntime()
        return Conveyor(dappfile, git_project.path, runtime, **kwargs)

    return _factory
