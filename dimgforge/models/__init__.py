"""Dimgforge data models — all Pydantic v2; configuration models are frozen."""

from dimgforge.models.dimg import (
    AnsibleConfig,
    ArtifactImport,
    Dappfile,
    Dimg,
    DimgArtifact,
    DimgBase,
    DockerInstructions,
    GitExport,
    GitLocal,
    GitRemote,
    Mount,
    ShellConfig,
    StageDependencies,
)
from dimgforge.models.image import (
    DIMG_LABEL,
    SIGNATURE_LABEL,
    STAGE_LABEL,
    BuiltImage,
    ContainerSpec,
)
from dimgforge.models.stages import (
    ARTIFACT_STAGE_ORDER,
    DIMG_STAGE_ORDER,
    GIT_DEPENDENT_STAGES,
    StageName,
)

__all__ = [
    "ARTIFACT_STAGE_ORDER",
    "AnsibleConfig",
    "ArtifactImport",
    "BuiltImage",
    "ContainerSpec",
    "DIMG_LABEL",
    "DIMG_STAGE_ORDER",
    "Dappfile",
    "Dimg",
    "DimgArtifact",
    "DimgBase",
    "DockerInstructions",
    "GIT_DEPENDENT_STAGES",
    "GitExport",
    "GitLocal",
    "GitRemote",
    "Mount",
    "SIGNATURE_LABEL",
    "STAGE_LABEL",
    "ShellConfig",
    "StageDependencies",
    "StageName",
]
