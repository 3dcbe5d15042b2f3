"""Initialization phase — resolved configuration to an ordered build plan.

Steps:

1. Select the dimgs to process (all, or the requested names; unknown
   names are a warning).
2. Flatten each selected dimg's dependency tree into one global order,
   dependencies first, each config scheduled once (by ``dedup_key``).
3. Per dimg: resolve git artifacts (shared local repo, per-run remote
   clone cache), drop empty ones, build the fixed-order stage list and
   bind the artifacts to every stage.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from urllib.parse import urlsplit

from dimgforge.builders.ansible import AnsibleBuilder
from dimgforge.builders.base import Builder
from dimgforge.builders.shell import ShellBuilder
from dimgforge.config import ProdConfig
from dimgforge.core.errors import ConfigurationError, InternalInvariantViolation
from dimgforge.core.tmp_dir import RunTmpDir
from dimgforge.git.repo import LocalGitRepo, RemoteGitRepo
from dimgforge.models.dimg import Dappfile, DimgBase, GitExport, GitRemote
from dimgforge.models.stages import (
    ARTIFACT_STAGE_ORDER,
    DIMG_STAGE_ORDER,
    GIT_DEPENDENT_STAGES,
    StageName,
)
from dimgforge.stages import get_stage_class
from dimgforge.stages.artifact_import import generate_artifact_import_stage
from dimgforge.stages.base import BaseStage, StageOptions, slug
from dimgforge.stages.docker_instructions import generate_docker_instructions_stage
from dimgforge.stages.from_stage import FromStage
from dimgforge.stages.git_archive import GitArchiveStage
from dimgforge.stages.git_artifact import GitArtifact
from dimgforge.stages.git_patch import GitLatestPatchStage, GitPostSetupPatchStage
from dimgforge.stages.user import generate_user_stage

logger = logging.getLogger(__name__)

LOCAL_REPO_NAME = "own"

# Prefixes of scp-like SSH URLs (``git@host:org/repo.git``).
_SSH_USER_PREFIXES = ("git@", "ssh@")

LOCAL_URL_SCHEME = "file"


def url_scheme(url: str) -> str:
    """Scheme of a remote git URL, used to separate clone caches.

    scp-like ``user@host:path`` URLs map to ``ssh`` and plain paths (which
    ``git clone`` treats as local repositories) map to ``file``.  Only a
    URL that cannot be parsed at all is a ``ConfigurationError``.
    """
    if url.startswith(_SSH_USER_PREFIXES):
        return "ssh"
    try:
        scheme = urlsplit(url).scheme
    except ValueError as exc:
        raise ConfigurationError(f"cannot parse git url {url!r}: {exc}") from exc
    return scheme or LOCAL_URL_SCHEME


class DimgPlan:
    """One dimg of the build plan: its config and its ordered stages."""

    def __init__(
        self,
        config: DimgBase,
        stages: list[BaseStage],
        git_artifacts: list[GitArtifact],
    ) -> None:
        self.config = config
        self.stages = stages
        self.git_artifacts = git_artifacts

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_artifact(self) -> bool:
        return self.config.is_artifact

    @property
    def stage_names(self) -> list[StageName]:
        return [stage.name for stage in self.stages]

    def __repr__(self) -> str:
        kind = "artifact" if self.is_artifact else "dimg"
        return f"<DimgPlan {kind}={self.name!r} stages={len(self.stages)}>"


class RemoteRepoCache:
    """Per-run cache of remote repositories, keyed by remote name.

    The first request for a name clones (or fetches) the repository;
    concurrent requests for the same name wait for it and reuse the
    handle.
    """

    def __init__(self, build_dir: Path, cache_version: int = 1) -> None:
        self.build_dir = Path(build_dir)
        self.cache_version = cache_version
        self._repos: dict[str, RemoteGitRepo] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def clone_path(self, name: str, url: str) -> Path:
        return (
            self.build_dir
            / "remote_git_repo"
            / str(self.cache_version)
            / slug(name)
            / url_scheme(url)
        )

    def get(self, remote: GitRemote) -> RemoteGitRepo:
        with self._guard:
            lock = self._locks.setdefault(remote.name, threading.Lock())
        with lock:
            repo = self._repos.get(remote.name)
            if repo is None:
                repo = RemoteGitRepo(
                    remote.name, remote.url, self.clone_path(remote.name, remote.url)
                )
                repo.clone_and_fetch()
                self._repos[remote.name] = repo
            return repo

    def __len__(self) -> int:
        return len(self._repos)


class InitializationPhase:
    """Turns a ``Dappfile`` into an ordered list of ``DimgPlan``.

    Parameters
    ----------
    dappfile:
        Resolved configuration.
    project_dir:
        Root of the project's own git checkout.
    tmp_dir:
        Run temp tree; dimg work dirs and git payloads are created in it.
    config:
        Runtime settings (build dir, payload dir, patch bucket size).
    dimg_names:
        Dimgs to process; empty means all.
    """

    def __init__(
        self,
        dappfile: Dappfile,
        project_dir: Path,
        tmp_dir: RunTmpDir,
        config: ProdConfig,
        dimg_names: list[str] | None = None,
        *,
        remote_repos: RemoteRepoCache | None = None,
    ) -> None:
        self.dappfile = dappfile
        self.project_dir = Path(project_dir)
        self.tmp_dir = tmp_dir
        self.config = config
        self.dimg_names = list(dimg_names or [])
        self.remote_repos = remote_repos or RemoteRepoCache(
            config.build_dir, config.remote_cache_version
        )
        self._local_repo: LocalGitRepo | None = None

    def run(self) -> list[DimgPlan]:
        plans = []
        for dimg in self.dimgs_in_order():
            git_artifacts = self.generate_git_artifacts(dimg)
            stages = self.generate_stages(dimg, git_artifacts)
            plans.append(DimgPlan(dimg, stages, git_artifacts))
        return plans

    # ------------------------------------------------------------------
    # Selection and ordering
    # ------------------------------------------------------------------

    def dimgs_to_process(self) -> list[DimgBase]:
        if not self.dimg_names:
            return list(self.dappfile.dimgs)
        selected: list[DimgBase] = []
        for name in self.dimg_names:
            dimg = self.dappfile.get_dimg(name)
            if dimg is None:
                logger.warning("Specified dimg '%s' isn't defined in dappfile", name)
                continue
            selected.append(dimg)
        return selected

    def dimgs_in_order(self) -> list[DimgBase]:
        """Every dimg to build, dependencies before dependents, each once."""
        seen: set[str] = set()
        ordered: list[DimgBase] = []
        for dimg in self.dimgs_to_process():
            for item in self.dappfile.dimg_tree(dimg):
                if item.dedup_key in seen:
                    continue
                seen.add(item.dedup_key)
                ordered.append(item)
        return ordered

    # ------------------------------------------------------------------
    # Git artifacts
    # ------------------------------------------------------------------

    @property
    def local_repo(self) -> LocalGitRepo:
        if self._local_repo is None:
            self._local_repo = LocalGitRepo(self.project_dir, name=LOCAL_REPO_NAME)
        return self._local_repo

    def generate_git_artifacts(self, dimg: DimgBase) -> list[GitArtifact]:
        artifacts: list[GitArtifact] = []
        for local in dimg.git_local:
            artifacts.append(
                self._git_artifact(
                    dimg, local, LOCAL_REPO_NAME, self.local_repo, as_=local.as_
                )
            )
        for remote in dimg.git_remote:
            artifacts.append(
                self._git_artifact(
                    dimg,
                    remote,
                    remote.name,
                    self.remote_repos.get(remote),
                    branch=remote.branch,
                    tag=remote.tag,
                    commit=remote.commit,
                )
            )

        non_empty = []
        for ga in artifacts:
            if ga.is_empty():
                logger.info("Skipping git artifact %s of dimg '%s': no matching files", ga, dimg.name)
                continue
            non_empty.append(ga)

        for ga in non_empty:
            logger.info("Using commit '%s' of repo '%s'", ga.latest_commit(), ga.repo)
        return non_empty

    def _git_artifact(
        self,
        dimg: DimgBase,
        export: GitExport,
        name: str,
        repo: LocalGitRepo | RemoteGitRepo,
        **extra: str,
    ) -> GitArtifact:
        payload_dir = self.config.container_payload_dir
        ga = GitArtifact(
            name=name,
            repo=repo,
            add=export.add,
            to=export.to,
            include_paths=export.include_paths,
            exclude_paths=export.exclude_paths,
            owner=export.owner,
            group=export.group,
            patches_dir=self.tmp_dir.patches_dir(dimg.name),
            archives_dir=self.tmp_dir.archives_dir(dimg.name),
            container_patches_dir=f"{payload_dir}/patch",
            container_archives_dir=f"{payload_dir}/archive",
            **extra,
        )
        if export.stage_dependencies is not None:
            for stage in GIT_DEPENDENT_STAGES:
                paths = export.stage_dependencies.for_stage(stage)
                if paths:
                    ga.set_stage_dependencies(stage, paths)
        return ga

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def stage_options(self, dimg: DimgBase) -> StageOptions:
        return StageOptions(
            dimg_name=dimg.name,
            mounts=dimg.mounts,
            dimg_tmp_dir=self.tmp_dir.dimg_dir(dimg.name),
            build_dir=self.config.build_dir,
            container_payload_dir=self.config.container_payload_dir,
        )

    def builder_for(self, dimg: DimgBase) -> Builder | None:
        if dimg.shell is not None:
            return ShellBuilder(dimg.shell)
        if dimg.ansible is not None:
            payload_dir = self.config.container_payload_dir
            return AnsibleBuilder(
                dimg.ansible,
                self.tmp_dir.dimg_dir(dimg.name),
                container_work_dir=f"{payload_dir}/ansible-workdir",
                container_tmp_dir=f"{payload_dir}/ansible-tmpdir",
                ansible_args=self.config.ansible_args,
            )
        return None

    def generate_stages(
        self, dimg: DimgBase, git_artifacts: list[GitArtifact]
    ) -> list[BaseStage]:
        options = self.stage_options(dimg)
        builder = self.builder_for(dimg)
        candidates: list[BaseStage | None] = [
            FromStage.from_config(dimg, options),
            generate_user_stage(StageName.BEFORE_INSTALL, builder, options),
            generate_artifact_import_stage(
                StageName.BEFORE_INSTALL_ARTIFACT, dimg.imports, options
            ),
            GitArchiveStage(options),
            generate_user_stage(StageName.INSTALL, builder, options),
            generate_artifact_import_stage(
                StageName.AFTER_INSTALL_ARTIFACT, dimg.imports, options
            ),
            generate_user_stage(StageName.BEFORE_SETUP, builder, options),
            generate_artifact_import_stage(
                StageName.BEFORE_SETUP_ARTIFACT, dimg.imports, options
            ),
            generate_user_stage(StageName.SETUP, builder, options),
            generate_artifact_import_stage(
                StageName.AFTER_SETUP_ARTIFACT, dimg.imports, options
            ),
        ]
        if not dimg.is_artifact:
            docker = getattr(dimg, "docker", None)
            candidates.extend(
                [
                    GitPostSetupPatchStage(options, self.config.patch_size_step),
                    GitLatestPatchStage(options),
                    generate_docker_instructions_stage(docker, options),
                ]
            )

        stages = [stage for stage in candidates if stage is not None]
        self._check_order(dimg, stages)
        for stage in stages:
            stage.set_git_artifacts(git_artifacts)
        return stages

    @staticmethod
    def _check_order(dimg: DimgBase, stages: list[BaseStage]) -> None:
        order = ARTIFACT_STAGE_ORDER if dimg.is_artifact else DIMG_STAGE_ORDER
        names = [stage.name for stage in stages]
        unexpected = [name.value for name in names if name not in order]
        if unexpected:
            kind = "artifact" if dimg.is_artifact else "dimg"
            raise InternalInvariantViolation(
                f"{kind} '{dimg.name}': stages not allowed: {unexpected}"
            )
        positions = [order.index(name) for name in names]
        if positions != sorted(set(positions)):
            raise InternalInvariantViolation(
                f"dimg '{dimg.name}': stages out of order: "
                f"{[name.value for name in names]}"
            )
        for stage in stages:
            expected = get_stage_class(stage.name)
            if type(stage) is not expected:
                raise InternalInvariantViolation(
                    f"dimg '{dimg.name}': stage {stage.name.value} is a "
                    f"{type(stage).__name__}, expected {expected.__name__}"
                )
