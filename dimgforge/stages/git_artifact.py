"""Git artifact: one repository export bound to one dimg.

A ``GitArtifact`` knows which part of a repository goes where in the
image (``add`` → ``to``), which paths are filtered in or out, who owns
the files, and which extra paths should re-trigger user stages.  It
produces two payload kinds for the build container:

* archive — a filtered tarball of the whole tree at one commit;
* patch — a filtered diff between two commits (or from the empty tree).

The commit a layer was last synced to is stored in the layer's labels
under ``commit_label``; the next build reads it back to size the
incremental patch.
"""

from __future__ import annotations

import io
import logging
import shlex
import tarfile
from pathlib import Path

from dimgforge.core.hasher import sha256_hash, sha256_hex
from dimgforge.core.path_matcher import PathMatcher, normalize_path, path_matches_any
from dimgforge.git.diff_parser import DiffParser
from dimgforge.git.repo import GitRepository
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName

logger = logging.getLogger(__name__)

# Patch and archive payloads are written with this codec so arbitrary
# file bytes survive the str round-trip through the diff parser.
PAYLOAD_ERRORS = "surrogateescape"


class GitArtifact:
    """A filtered, remapped binding of a git repository into a dimg.

    Parameters
    ----------
    name:
        ``own`` for the local repository, the remote name otherwise.
    repo:
        Shared repository handle (not owned by the artifact).
    add:
        Source directory inside the repository.
    to:
        Destination directory inside the image.
    patches_dir / archives_dir:
        Host directories payloads are written to.
    container_patches_dir / container_archives_dir:
        Where those directories are mounted in the build container.
    """

    def __init__(
        self,
        *,
        name: str,
        repo: GitRepository,
        to: str,
        add: str = "/",
        include_paths: list[str] | None = None,
        exclude_paths: list[str] | None = None,
        owner: str = "",
        group: str = "",
        branch: str = "",
        tag: str = "",
        commit: str = "",
        as_: str = "",
        patches_dir: Path,
        archives_dir: Path,
        container_patches_dir: str,
        container_archives_dir: str,
    ) -> None:
        self.name = name
        self.repo = repo
        self.add = add
        self.to = to
        self.include_paths = list(include_paths or [])
        self.exclude_paths = list(exclude_paths or [])
        self.owner = owner
        self.group = group
        self.branch = branch
        self.tag = tag
        self.commit = commit
        self.as_ = as_
        # Per user stage, globs (relative to ``add``) whose changes re-run it.
        self.stages_dependencies: dict[StageName, list[str]] = {}
        self.patches_dir = Path(patches_dir)
        self.archives_dir = Path(archives_dir)
        self.container_patches_dir = container_patches_dir
        self.container_archives_dir = container_archives_dir

        self.matcher = PathMatcher(add, self.include_paths, self.exclude_paths)
        self._latest_commit: str | None = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def params_hash(self) -> str:
        """Stable id of this binding; changes when the export changes."""
        return sha256_hash(
            self.name,
            normalize_path(self.add),
            self.to,
            ",".join(self.include_paths),
            ",".join(self.exclude_paths),
            self.owner,
            self.group,
        )

    @property
    def commit_label(self) -> str:
        return f"dimgforge-git-{self.params_hash[:16]}-commit"

    def set_stage_dependencies(self, stage: StageName, paths: list[str]) -> None:
        """Attach extra trigger paths for *stage*.  Called during initialization."""
        self.stages_dependencies[stage] = list(paths)

    def has_stage_dependencies(self, stage: StageName) -> bool:
        return bool(self.stages_dependencies.get(stage))

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def _ref(self) -> str:
        if self.commit:
            return self.commit
        if self.tag:
            return f"refs/tags/{self.tag}"
        if self.branch:
            return f"refs/heads/{self.branch}"
        return self.repo.default_ref()

    def latest_commit(self) -> str:
        """Resolve the bound ref; raises ``GitOperationError`` if it cannot."""
        if self._latest_commit is None:
            self._latest_commit = self.repo.resolve_commit(self._ref())
        return self._latest_commit

    def get_synced_commit(self, prev_image: BuiltImage | None) -> str:
        """Commit recorded in *prev_image*'s labels, ``""`` if none."""
        if prev_image is None:
            return ""
        return prev_image.label(self.commit_label)

    def is_synced_commit_usable(self, commit: str) -> bool:
        """True if *commit* is set and still present in history."""
        return bool(commit) and self.repo.is_commit_exists(commit)

    def is_empty(self) -> bool:
        """True if no tracked path at the latest commit passes the filters."""
        entries = self.repo.ls_tree(self.latest_commit(), self.matcher.base_path)
        return not any(self.matcher.matches(e.path) for e in entries)

    # ------------------------------------------------------------------
    # Patches
    # ------------------------------------------------------------------

    def _parse_patch(self, from_commit: str, to_commit: str) -> DiffParser:
        raw = self.repo.diff(from_commit, to_commit, self.matcher.base_path)
        parser = DiffParser(self.matcher, artifact=str(self))
        parser.parse(raw)
        return parser

    def build_patch(self, from_commit: str, to_commit: str) -> str:
        """Filtered, remapped diff text between two commits."""
        return self._parse_patch(from_commit, to_commit).output

    def patch_byte_size(self, since_commit: str) -> int:
        """Size in bytes of the patch from *since_commit* to the latest commit."""
        patch = self.build_patch(since_commit, self.latest_commit())
        return len(patch.encode("utf-8", errors=PAYLOAD_ERRORS))

    def patch_checksum(self, since_commit: str) -> str:
        """Hash of the patch from *since_commit* to latest; ``""`` when empty."""
        patch = self.build_patch(since_commit, self.latest_commit())
        if not patch:
            return ""
        return sha256_hex(patch.encode("utf-8", errors=PAYLOAD_ERRORS))

    def _write_patch(self, parser: DiffParser, stage: StageName) -> Path:
        self.patches_dir.mkdir(parents=True, exist_ok=True)
        path = self.patches_dir / f"{self.params_hash[:16]}_{stage.value}.patch"
        path.write_bytes(parser.output.encode("utf-8", errors=PAYLOAD_ERRORS))
        return path

    # ------------------------------------------------------------------
    # Archives
    # ------------------------------------------------------------------

    def build_archive(self, commit: str) -> bytes:
        """Filtered tarball of the tree at *commit*, paths relative to ``add``."""
        raw = self.repo.archive(commit, self.matcher.base_path)
        out = io.BytesIO()
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as src, tarfile.open(
            fileobj=out, mode="w:", format=tarfile.PAX_FORMAT
        ) as dst:
            for member in src:
                if not self.matcher.matches(member.name):
                    continue
                member.name = self.matcher.trim(member.name)
                if member.isfile():
                    dst.addfile(member, src.extractfile(member))
                else:
                    dst.addfile(member)
        return out.getvalue()

    def _write_archive(self, commit: str, stage: StageName) -> Path:
        self.archives_dir.mkdir(parents=True, exist_ok=True)
        path = self.archives_dir / f"{self.params_hash[:16]}_{stage.value}.tar"
        path.write_bytes(self.build_archive(commit))
        return path

    # ------------------------------------------------------------------
    # Stage dependencies
    # ------------------------------------------------------------------

    def stage_dependencies_checksum(self, stage: StageName) -> str:
        """Hash over the watched files of *stage* at the latest commit."""
        globs = self.stages_dependencies.get(stage)
        if not globs:
            return ""
        args: list[str] = []
        for entry in self.repo.ls_tree(self.latest_commit(), self.matcher.base_path):
            if not self.matcher.matches(entry.path):
                continue
            relative = self.matcher.trim(entry.path)
            if path_matches_any(relative, globs):
                args.extend([relative, entry.mode, entry.object_id])
        return sha256_hash(*args) if args else ""

    # ------------------------------------------------------------------
    # Container spec
    # ------------------------------------------------------------------

    def prepare_archive(self, spec: ContainerSpec, stage: StageName) -> None:
        """Extract the full filtered tree at the latest commit into ``to``."""
        commit = self.latest_commit()
        host_path = self._write_archive(commit, stage)
        container_path = f"{self.container_archives_dir}/{host_path.name}"
        spec.add_volume(f"{self.archives_dir}:{self.container_archives_dir}:ro")

        to = shlex.quote(self.to)
        commands = [
            f"mkdir -p {to}",
            f"tar -xf {shlex.quote(container_path)} -C {to}",
        ]
        if self.owner or self.group:
            commands.append(f"chown -R {self._chown_spec()} {to}")
        spec.add_run_commands(*commands)
        spec.add_labels({self.commit_label: commit})
        logger.info("%s: archive of %s at %s", stage.value, self, commit[:12])

    def prepare_patch(
        self,
        spec: ContainerSpec,
        prev_image: BuiltImage | None,
        stage: StageName,
    ) -> None:
        """Bring ``to`` from the synced commit up to the latest commit."""
        to_commit = self.latest_commit()
        from_commit = self.get_synced_commit(prev_image)
        if from_commit == to_commit:
            return

        if from_commit and not self.repo.is_commit_exists(from_commit):
            logger.warning(
                "%s: synced commit %s of %s no longer exists, re-extracting archive",
                stage.value, from_commit[:12], self,
            )
            self.prepare_archive(spec, stage)
            return

        parser = self._parse_patch(from_commit, to_commit)
        if parser.sections:
            host_path = self._write_patch(parser, stage)
            container_path = f"{self.container_patches_dir}/{host_path.name}"
            spec.add_volume(f"{self.patches_dir}:{self.container_patches_dir}:ro")

            to = shlex.quote(self.to)
            commands = [
                f"mkdir -p {to}",
                "git apply --whitespace=nowarn --unsafe-paths "
                f"--directory={to} {shlex.quote(container_path)}",
            ]
            if self.owner or self.group:
                changed = [
                    shlex.quote(f"{self.to.rstrip('/')}/{s.path}")
                    for s in parser.sections
                    if not s.deleted_file
                ]
                if changed:
                    commands.append(f"chown {self._chown_spec()} {' '.join(changed)}")
            spec.add_run_commands(*commands)

        spec.add_labels({self.commit_label: to_commit})
        logger.info(
            "%s: patch of %s %s..%s (%d files)",
            stage.value, self, (from_commit or "empty")[:12], to_commit[:12],
            len(parser.sections),
        )

    def _chown_spec(self) -> str:
        if self.group:
            return f"{self.owner}:{self.group}"
        return self.owner

    def __str__(self) -> str:
        return f"{self.repo.name}:{normalize_path(self.add) or '/'}"

    def __repr__(self) -> str:
        return f"<GitArtifact {self} -> {self.to}>"
