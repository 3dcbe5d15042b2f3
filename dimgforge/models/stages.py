"""Stage names and the fixed per-kind stage orders."""

from __future__ import annotations

from enum import Enum


class StageName(str, Enum):
    """Every stage a dimg pipeline may contain."""

    FROM = "from"
    BEFORE_INSTALL = "beforeInstall"
    BEFORE_INSTALL_ARTIFACT = "beforeInstallArtifact"
    GIT_ARCHIVE = "gitArchive"
    INSTALL = "install"
    AFTER_INSTALL_ARTIFACT = "afterInstallArtifact"
    BEFORE_SETUP = "beforeSetup"
    BEFORE_SETUP_ARTIFACT = "beforeSetupArtifact"
    SETUP = "setup"
    AFTER_SETUP_ARTIFACT = "afterSetupArtifact"
    GIT_POST_SETUP_PATCH = "gitPostSetupPatch"
    GIT_LATEST_PATCH = "gitLatestPatch"
    DOCKER_INSTRUCTIONS = "dockerInstructions"


# Shippable dimg: the full pipeline.
DIMG_STAGE_ORDER: tuple[StageName, ...] = tuple(StageName)

# Artifact dimgs are never shipped and stop after the last import stage.
ARTIFACT_STAGE_ORDER: tuple[StageName, ...] = DIMG_STAGE_ORDER[
    : DIMG_STAGE_ORDER.index(StageName.AFTER_SETUP_ARTIFACT) + 1
]

# User stages whose commands re-run when watched git paths change.
GIT_DEPENDENT_STAGES: tuple[StageName, ...] = (
    StageName.INSTALL,
    StageName.BEFORE_SETUP,
    StageName.SETUP,
)
