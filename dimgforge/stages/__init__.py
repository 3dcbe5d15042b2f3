"""Dimg pipeline stages — registry mapping stage name to stage class.

Usage::

    from dimgforge.stages import STAGE_REGISTRY, get_stage_class

    stage_cls = STAGE_REGISTRY[StageName.GIT_ARCHIVE]
    stage = stage_cls(options)
"""

from __future__ import annotations

from dimgforge.core.errors import InternalInvariantViolation
from dimgforge.models.stages import StageName
from dimgforge.stages.artifact_import import (
    AfterInstallArtifactStage,
    AfterSetupArtifactStage,
    ArtifactImportStage,
    BeforeInstallArtifactStage,
    BeforeSetupArtifactStage,
)
from dimgforge.stages.base import BaseStage, StageOptions
from dimgforge.stages.docker_instructions import DockerInstructionsStage
from dimgforge.stages.from_stage import FromStage
from dimgforge.stages.git_archive import GitArchiveStage
from dimgforge.stages.git_artifact import GitArtifact
from dimgforge.stages.git_patch import (
    GitLatestPatchStage,
    GitPatchStage,
    GitPostSetupPatchStage,
)
from dimgforge.stages.user import (
    BeforeInstallStage,
    BeforeSetupStage,
    InstallStage,
    SetupStage,
    UserStage,
    UserWithGitPatchStage,
)

# ---------------------------------------------------------------------------
# Stage registry: stage name -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[StageName, type[BaseStage]] = {
    StageName.FROM: FromStage,
    StageName.BEFORE_INSTALL: BeforeInstallStage,
    StageName.BEFORE_INSTALL_ARTIFACT: BeforeInstallArtifactStage,
    StageName.GIT_ARCHIVE: GitArchiveStage,
    StageName.INSTALL: InstallStage,
    StageName.AFTER_INSTALL_ARTIFACT: AfterInstallArtifactStage,
    StageName.BEFORE_SETUP: BeforeSetupStage,
    StageName.BEFORE_SETUP_ARTIFACT: BeforeSetupArtifactStage,
    StageName.SETUP: SetupStage,
    StageName.AFTER_SETUP_ARTIFACT: AfterSetupArtifactStage,
    StageName.GIT_POST_SETUP_PATCH: GitPostSetupPatchStage,
    StageName.GIT_LATEST_PATCH: GitLatestPatchStage,
    StageName.DOCKER_INSTRUCTIONS: DockerInstructionsStage,
}


def get_stage_class(name: StageName | str) -> type[BaseStage]:
    """Look up a stage class by name.

    Raises
    ------
    InternalInvariantViolation
        If *name* is not a registered stage.
    """
    try:
        return STAGE_REGISTRY[StageName(name)]
    except (KeyError, ValueError):
        raise InternalInvariantViolation(f"unknown stage {name!r}") from None


__all__ = [
    "STAGE_REGISTRY",
    "AfterInstallArtifactStage",
    "AfterSetupArtifactStage",
    "ArtifactImportStage",
    "BaseStage",
    "BeforeInstallArtifactStage",
    "BeforeInstallStage",
    "BeforeSetupArtifactStage",
    "BeforeSetupStage",
    "DockerInstructionsStage",
    "FromStage",
    "GitArchiveStage",
    "GitArtifact",
    "GitLatestPatchStage",
    "GitPatchStage",
    "GitPostSetupPatchStage",
    "InstallStage",
    "SetupStage",
    "StageOptions",
    "UserStage",
    "UserWithGitPatchStage",
    "get_stage_class",
]
