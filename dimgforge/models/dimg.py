"""Resolved dimg configuration — the structures the pipeline consumes.

These models are produced by an external loader (or ``Dappfile.model_validate``
on an already-parsed document).  Field aliases follow the camelCase
dappfile spelling, Python names are accepted too.

Resolution is two-pass: the models below are the structural pass;
``Dappfile.dimg_tree()`` performs the semantic pass, resolving base and
import references by name with explicit parent pointers.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from dimgforge.core.errors import ConfigurationError, InternalInvariantViolation
from dimgforge.core.hasher import content_hash
from dimgforge.models.stages import StageName


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="forbid",
    )


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class StageDependencies(_ConfigModel):
    """Extra git paths that re-trigger user stages when they change."""

    install: list[str] = []
    before_setup: list[str] = []
    setup: list[str] = []

    def for_stage(self, stage: StageName) -> list[str]:
        accessor = _STAGE_DEPENDENCY_FIELDS.get(stage)
        if accessor is None:
            return []
        return accessor(self)


_STAGE_DEPENDENCY_FIELDS: dict[StageName, Callable[[StageDependencies], list[str]]] = {
    StageName.INSTALL: lambda sd: sd.install,
    StageName.BEFORE_SETUP: lambda sd: sd.before_setup,
    StageName.SETUP: lambda sd: sd.setup,
}


class GitExport(_ConfigModel):
    """What part of a repository goes where in the image."""

    add: str = "/"
    to: str
    include_paths: list[str] = []
    exclude_paths: list[str] = []
    owner: str = ""
    group: str = ""
    stage_dependencies: StageDependencies | None = None


class GitLocal(GitExport):
    """Export from the project's own repository."""

    as_: str = Field("", alias="as")


class GitRemote(GitExport):
    """Export from a named remote repository."""

    name: str
    url: str
    branch: str = ""
    tag: str = ""
    commit: str = ""

    @model_validator(mode="after")
    def _single_ref(self) -> GitRemote:
        if sum(bool(v) for v in (self.branch, self.tag, self.commit)) > 1:
            raise ValueError(
                f"git remote '{self.name}': specify only one of branch, tag, commit"
            )
        return self


# ---------------------------------------------------------------------------
# Mounts, builders, imports, docker
# ---------------------------------------------------------------------------


class Mount(_ConfigModel):
    """``from`` is ``tmp_dir``, ``build_dir`` or an absolute host path."""

    from_path: str = Field(alias="from")
    to: str


class _UserStagesConfig(_ConfigModel):
    cache_version: str = ""
    before_install_cache_version: str = ""
    install_cache_version: str = ""
    before_setup_cache_version: str = ""
    setup_cache_version: str = ""

    def stage_cache_version(self, stage: StageName) -> str:
        accessor = _STAGE_CACHE_VERSION_FIELDS.get(stage)
        if accessor is None:
            raise InternalInvariantViolation(
                f"{type(self).__name__} has no cache version for stage {stage.value!r}"
            )
        return accessor(self)


_STAGE_CACHE_VERSION_FIELDS: dict[StageName, Callable[[_UserStagesConfig], str]] = {
    StageName.BEFORE_INSTALL: lambda c: c.before_install_cache_version,
    StageName.INSTALL: lambda c: c.install_cache_version,
    StageName.BEFORE_SETUP: lambda c: c.before_setup_cache_version,
    StageName.SETUP: lambda c: c.setup_cache_version,
}


class ShellConfig(_UserStagesConfig):
    """Shell commands per user stage."""

    before_install: list[str] = []
    install: list[str] = []
    before_setup: list[str] = []
    setup: list[str] = []

    def stage_commands(self, stage: StageName) -> list[str]:
        accessor = _SHELL_STAGE_FIELDS.get(stage)
        if accessor is None:
            raise InternalInvariantViolation(
                f"shell config has no commands for stage {stage.value!r}"
            )
        return accessor(self)


_SHELL_STAGE_FIELDS: dict[StageName, Callable[[ShellConfig], list[str]]] = {
    StageName.BEFORE_INSTALL: lambda c: c.before_install,
    StageName.INSTALL: lambda c: c.install,
    StageName.BEFORE_SETUP: lambda c: c.before_setup,
    StageName.SETUP: lambda c: c.setup,
}


class AnsibleConfig(_UserStagesConfig):
    """Ansible tasks per user stage; each task is an opaque mapping."""

    before_install: list[dict[str, Any]] = []
    install: list[dict[str, Any]] = []
    before_setup: list[dict[str, Any]] = []
    setup: list[dict[str, Any]] = []

    def stage_tasks(self, stage: StageName) -> list[dict[str, Any]]:
        accessor = _ANSIBLE_STAGE_FIELDS.get(stage)
        if accessor is None:
            raise InternalInvariantViolation(
                f"ansible config has no tasks for stage {stage.value!r}"
            )
        return accessor(self)


_ANSIBLE_STAGE_FIELDS: dict[StageName, Callable[[AnsibleConfig], list[dict[str, Any]]]] = {
    StageName.BEFORE_INSTALL: lambda c: c.before_install,
    StageName.INSTALL: lambda c: c.install,
    StageName.BEFORE_SETUP: lambda c: c.before_setup,
    StageName.SETUP: lambda c: c.setup,
}


class ArtifactImport(_ConfigModel):
    """Copy files out of an artifact dimg before/after install or setup."""

    artifact_name: str = Field(alias="artifact")
    add: str = "/"
    to: str = ""
    include_paths: list[str] = []
    exclude_paths: list[str] = []
    owner: str = ""
    group: str = ""
    before: Literal["install", "setup"] | None = None
    after: Literal["install", "setup"] | None = None

    @model_validator(mode="after")
    def _single_position(self) -> ArtifactImport:
        if (self.before is None) == (self.after is None):
            raise ValueError(
                f"import of '{self.artifact_name}': specify exactly one of before, after"
            )
        return self

    @property
    def stage(self) -> StageName:
        """The artifact-import stage this import belongs to."""
        return _IMPORT_STAGES[(self.before, self.after)]

    @property
    def destination(self) -> str:
        return self.to or self.add


_IMPORT_STAGES: dict[tuple[str | None, str | None], StageName] = {
    ("install", None): StageName.BEFORE_INSTALL_ARTIFACT,
    (None, "install"): StageName.AFTER_INSTALL_ARTIFACT,
    ("setup", None): StageName.BEFORE_SETUP_ARTIFACT,
    (None, "setup"): StageName.AFTER_SETUP_ARTIFACT,
}


class DockerInstructions(_ConfigModel):
    """Dockerfile-style instructions applied to the final layer."""

    volume: list[str] = []
    expose: list[str] = []
    env: dict[str, str] = {}
    label: dict[str, str] = {}
    cmd: list[str] = []
    onbuild: list[str] = []
    workdir: str = ""
    user: str = ""
    entrypoint: list[str] = []

    @property
    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


# ---------------------------------------------------------------------------
# Dimgs
# ---------------------------------------------------------------------------


class DimgBase(_ConfigModel):
    """Attributes shared by shippable dimgs and artifact dimgs."""

    is_artifact: ClassVar[bool] = False

    name: str = ""
    from_image: str = Field("", alias="from")
    from_dimg: str = ""
    from_dimg_artifact: str = ""
    from_cache_version: str = ""
    mounts: list[Mount] = Field(default=[], alias="mount")
    git_local: list[GitLocal] = []
    git_remote: list[GitRemote] = []
    shell: ShellConfig | None = None
    ansible: AnsibleConfig | None = None
    imports: list[ArtifactImport] = Field(default=[], alias="import")

    @model_validator(mode="after")
    def _validate_base(self) -> DimgBase:
        bases = [b for b in (self.from_image, self.from_dimg, self.from_dimg_artifact) if b]
        if len(bases) != 1:
            raise ValueError(
                f"dimg '{self.name}': specify exactly one of from, fromDimg, fromDimgArtifact"
            )
        if self.shell is not None and self.ansible is not None:
            raise ValueError(f"dimg '{self.name}': shell and ansible are mutually exclusive")
        return self

    @property
    def base_dimg_name(self) -> str:
        """Name of the dimg/artifact this one is built on, or ``""``."""
        return self.from_dimg or self.from_dimg_artifact

    @property
    def dedup_key(self) -> str:
        """Stable identity used to schedule each config once."""
        kind = "artifact" if self.is_artifact else "dimg"
        return f"{kind}:{self.name}:{content_hash(self.model_dump(mode='json'))}"


class Dimg(DimgBase):
    """A shippable image."""

    docker: DockerInstructions | None = None


class DimgArtifact(DimgBase):
    """An intermediate image consumed only through imports."""

    is_artifact: ClassVar[bool] = True

    name: str


class Dappfile(_ConfigModel):
    """All dimg definitions of a project."""

    dimgs: list[Dimg] = Field(default=[], alias="dimg")
    artifacts: list[DimgArtifact] = Field(default=[], alias="artifact")

    @model_validator(mode="after")
    def _unique_names(self) -> Dappfile:
        seen: set[str] = set()
        for item in [*self.dimgs, *self.artifacts]:
            if item.name in seen:
                raise ValueError(f"duplicate dimg name '{item.name}'")
            seen.add(item.name)
        return self

    def get_dimg(self, name: str) -> Dimg | None:
        for dimg in self.dimgs:
            if dimg.name == name:
                return dimg
        return None

    def get_artifact(self, name: str) -> DimgArtifact | None:
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        return None

    def dimg_tree(self, dimg: DimgBase) -> list[DimgBase]:
        """Return *dimg* and everything it depends on, dependencies first.

        Dependencies are the base dimg (``fromDimg`` / ``fromDimgArtifact``)
        and every imported artifact, each with its own tree.

        Raises ``ConfigurationError`` on a cycle or an unknown reference.
        """
        order: list[DimgBase] = []
        self._collect_tree(dimg, order, set(), [])
        return order

    def _collect_tree(
        self,
        dimg: DimgBase,
        order: list[DimgBase],
        done: set[str],
        path: list[str],
    ) -> None:
        key = dimg.dedup_key
        if key in done:
            return
        if dimg.name in path:
            chain = " -> ".join([*path, dimg.name])
            raise ConfigurationError(f"dimg dependency cycle: {chain}")

        path = [*path, dimg.name]
        for parent in self._dependencies_of(dimg):
            self._collect_tree(parent, order, done, path)

        done.add(key)
        order.append(dimg)

    def _dependencies_of(self, dimg: DimgBase) -> list[DimgBase]:
        deps: list[DimgBase] = []
        if dimg.from_dimg:
            base = self.get_dimg(dimg.from_dimg)
            if base is None:
                raise ConfigurationError(
                    f"dimg '{dimg.name}': fromDimg '{dimg.from_dimg}' is not defined"
                )
            deps.append(base)
        elif dimg.from_dimg_artifact:
            base_artifact = self.get_artifact(dimg.from_dimg_artifact)
            if base_artifact is None:
                raise ConfigurationError(
                    f"dimg '{dimg.name}': fromDimgArtifact "
                    f"'{dimg.from_dimg_artifact}' is not defined"
                )
            deps.append(base_artifact)

        for imp in dimg.imports:
            artifact = self.get_artifact(imp.artifact_name)
            if artifact is None:
                raise ConfigurationError(
                    f"dimg '{dimg.name}': imported artifact '{imp.artifact_name}' is not defined"
                )
            deps.append(artifact)
        return deps
