"""Artifact import stages — copy files out of artifact dimgs.

There is one stage per import position (before/after install, before/after
setup).  Each depends on the signatures of the imported artifacts, so
rebuilding an artifact re-runs every import of it.
"""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, ClassVar

from dimgforge.core.hasher import sha256_hash
from dimgforge.core.path_matcher import normalize_path
from dimgforge.models.dimg import ArtifactImport
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage, StageOptions, slug

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor


class ArtifactImportStage(BaseStage):
    """Imports declared for one position."""

    def __init__(self, imports: list[ArtifactImport], options: StageOptions) -> None:
        super().__init__(options)
        self.imports = list(imports)

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        args: list[str] = []
        for imp in self.imports:
            args.extend(
                [
                    conveyor.get_dimg_signature(imp.artifact_name),
                    normalize_path(imp.add),
                    imp.destination,
                    ",".join(imp.include_paths),
                    ",".join(imp.exclude_paths),
                    imp.owner,
                    imp.group,
                ]
            )
        return sha256_hash(*args)

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        for imp in self.imports:
            artifact_image = conveyor.get_dimg_last_image(imp.artifact_name)
            mount_point = (
                f"{self.options.container_payload_dir}/artifact/{slug(imp.artifact_name)}"
            )
            spec.add_image_mount(artifact_image.name, mount_point)
            spec.add_run_commands(*self._import_commands(imp, mount_point))

    @staticmethod
    def _import_commands(imp: ArtifactImport, mount_point: str) -> list[str]:
        source = f"{mount_point}/{normalize_path(imp.add)}".rstrip("/")
        destination = imp.destination

        rsync = ["rsync", "--archive", "--links"]
        if imp.owner or imp.group:
            rsync.append(f"--chown={imp.owner}:{imp.group}")
        for path in imp.exclude_paths:
            rsync.append(f"--exclude={normalize_path(path)}")
        if imp.include_paths:
            for path in imp.include_paths:
                path = normalize_path(path)
                rsync.extend([f"--include={path}", f"--include={path}/**"])
            rsync.extend(["--include=*/", "--exclude=*", "--prune-empty-dirs"])
        rsync.extend([f"{source}/", f"{destination.rstrip('/')}/"])

        return [
            f"mkdir -p {shlex.quote(destination)}",
            " ".join(shlex.quote(part) for part in rsync),
        ]


class BeforeInstallArtifactStage(ArtifactImportStage):
    name: ClassVar[StageName] = StageName.BEFORE_INSTALL_ARTIFACT


class AfterInstallArtifactStage(ArtifactImportStage):
    name: ClassVar[StageName] = StageName.AFTER_INSTALL_ARTIFACT


class BeforeSetupArtifactStage(ArtifactImportStage):
    name: ClassVar[StageName] = StageName.BEFORE_SETUP_ARTIFACT


class AfterSetupArtifactStage(ArtifactImportStage):
    name: ClassVar[StageName] = StageName.AFTER_SETUP_ARTIFACT


ARTIFACT_IMPORT_STAGE_CLASSES: dict[StageName, type[ArtifactImportStage]] = {
    StageName.BEFORE_INSTALL_ARTIFACT: BeforeInstallArtifactStage,
    StageName.AFTER_INSTALL_ARTIFACT: AfterInstallArtifactStage,
    StageName.BEFORE_SETUP_ARTIFACT: BeforeSetupArtifactStage,
    StageName.AFTER_SETUP_ARTIFACT: AfterSetupArtifactStage,
}


def generate_artifact_import_stage(
    stage: StageName, imports: list[ArtifactImport], options: StageOptions
) -> ArtifactImportStage | None:
    """Return the import stage for *stage*, or None if nothing is imported there."""
    selected = [imp for imp in imports if imp.stage == stage]
    if not selected:
        return None
    return ARTIFACT_IMPORT_STAGE_CLASSES[stage](selected, options)
