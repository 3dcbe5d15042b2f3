"""Git repositories backing git artifacts.

All operations shell out to the ``git`` binary and block until it exits.
A non-zero exit status raises ``GitOperationError`` carrying the
repository name and git's stderr.  Nothing is retried.

Two kinds of repository exist:

* ``LocalGitRepo``: the project's own checkout (always named ``own``).
* ``RemoteGitRepo``: a bare clone of a remote URL kept under the build
  directory and refreshed once per run by ``clone_and_fetch()``.
"""

from __future__ import annotations

import abc
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from dimgforge.core.errors import GitOperationError
from dimgforge.core.path_matcher import normalize_path

logger = logging.getLogger(__name__)


class TreeEntry(BaseModel):
    """A blob listed by ``git ls-tree``."""

    model_config = ConfigDict(frozen=True)

    mode: str
    object_type: str
    object_id: str
    path: str


def _run_git(repo_name: str, argv: list[str], input_data: bytes | None = None) -> bytes:
    """Run a git command; a failure to start or a non-zero exit raises."""
    logger.debug("[%s] %s", repo_name, " ".join(argv))
    try:
        result = subprocess.run(
            argv,
            input=input_data,
            capture_output=True,
            env=dict(os.environ, GIT_TERMINAL_PROMPT="0"),
            check=False,
        )
    except OSError as exc:
        raise GitOperationError(repo_name, f"cannot run git: {exc}") from exc
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise GitOperationError(
            repo_name, f"`{' '.join(argv)}` failed: {stderr}"
        )
    return result.stdout


class GitRepository(abc.ABC):
    """Common git plumbing shared by local and remote repositories."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._empty_tree: str | None = None

    @property
    @abc.abstractmethod
    def git_dir(self) -> Path:
        """Path to the repository's git directory."""
        ...

    def default_ref(self) -> str:
        return "HEAD"

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def _git(
        self,
        *args: str,
        input_data: bytes | None = None,
        git_dir: Path | None = None,
    ) -> bytes:
        argv = [
            "git",
            "-c", "core.quotePath=false",
            f"--git-dir={git_dir or self.git_dir}",
            *args,
        ]
        return _run_git(self.name, argv, input_data)

    def _git_text(self, *args: str) -> str:
        return self._git(*args).decode("utf-8", errors="surrogateescape")

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def resolve_commit(self, ref: str) -> str:
        """Resolve *ref* (branch, tag, commit, ``HEAD``) to a commit id."""
        return self._git_text("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}").strip()

    def is_commit_exists(self, commit: str) -> bool:
        if not commit:
            return False
        try:
            self._git("cat-file", "-e", f"{commit}^{{commit}}")
        except GitOperationError:
            return False
        return True

    def empty_tree(self) -> str:
        """Id of the empty tree, the baseline for patches without history."""
        if self._empty_tree is None:
            self._empty_tree = self._git(
                "hash-object", "-t", "tree", "--stdin", input_data=b""
            ).decode().strip()
        return self._empty_tree

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def diff(self, from_commit: str, to_commit: str, base_path: str = "") -> str:
        """Raw diff between two commits, limited to *base_path*.

        An empty *from_commit* diffs against the empty tree.
        """
        args = [
            "diff", "--full-index", "--binary", "--no-renames",
            "--no-color", "--no-ext-diff", "--no-textconv",
            "--src-prefix=a/", "--dst-prefix=b/",
            from_commit or self.empty_tree(), to_commit,
        ]
        base_path = normalize_path(base_path)
        if base_path:
            args += ["--", base_path]
        return self._git_text(*args)

    def archive(self, commit: str, base_path: str = "") -> bytes:
        """Tar stream of the tree at *commit*, limited to *base_path*."""
        args = ["archive", "--format=tar", commit]
        base_path = normalize_path(base_path)
        if base_path:
            args += ["--", base_path]
        return self._git(*args)

    def ls_tree(self, commit: str, base_path: str = "") -> list[TreeEntry]:
        """Every blob below *base_path* at *commit*."""
        args = ["ls-tree", "-r", "-z", "--full-tree", commit]
        base_path = normalize_path(base_path)
        if base_path:
            args += ["--", base_path]
        entries: list[TreeEntry] = []
        for record in self._git_text(*args).split("\0"):
            if not record:
                continue
            meta, path = record.split("\t", 1)
            mode, object_type, object_id = meta.split(" ")
            if object_type == "blob":
                entries.append(
                    TreeEntry(
                        mode=mode, object_type=object_type, object_id=object_id, path=path
                    )
                )
        return entries

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class LocalGitRepo(GitRepository):
    """The project's own git checkout."""

    def __init__(self, path: Path, name: str = "own", git_dir: Path | None = None) -> None:
        super().__init__(name)
        self.path = Path(path)
        self._git_dir = Path(git_dir) if git_dir else self.path / ".git"

    @property
    def git_dir(self) -> Path:
        return self._git_dir


class RemoteGitRepo(GitRepository):
    """A bare clone of a remote repository, cached under the build dir.

    Parameters
    ----------
    name:
        Remote artifact name; unique per dappfile.
    url:
        Anything ``git clone`` accepts, including ``git@host:path``.
    clone_path:
        Where the bare clone lives.  Reused across runs.
    """

    def __init__(self, name: str, url: str, clone_path: Path) -> None:
        super().__init__(name)
        self.url = url
        self.clone_path = Path(clone_path)

    @property
    def git_dir(self) -> Path:
        return self.clone_path

    def clone_and_fetch(self) -> None:
        """Clone on first use, then fetch all branches and tags."""
        if not (self.clone_path / "HEAD").exists():
            self._clone()
        logger.info("Fetching remote git repo '%s' (%s)", self.name, self.url)
        self._git(
            "fetch", "--quiet", "--prune", "--tags", self.url,
            "+refs/heads/*:refs/heads/*",
        )

    def _clone(self) -> None:
        logger.info("Cloning remote git repo '%s' (%s)", self.name, self.url)
        self.clone_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix="clone-", dir=self.clone_path.parent))
        try:
            _run_git(
                self.name,
                ["git", "clone", "--bare", "--quiet", self.url, str(tmp / "repo")],
            )
            try:
                if self.clone_path.exists():
                    # Left behind by an interrupted run: no HEAD, so not a clone.
                    logger.warning("Removing incomplete clone at %s", self.clone_path)
                    shutil.rmtree(self.clone_path)
                (tmp / "repo").rename(self.clone_path)
            except OSError as exc:
                raise GitOperationError(
                    self.name, f"cannot move clone into {self.clone_path}: {exc}"
                ) from exc
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.url})"
