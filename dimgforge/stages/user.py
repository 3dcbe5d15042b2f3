"""User stages — commands declared by the dimg author, run by a builder.

``beforeInstall`` is a plain ``UserStage``.  ``install``, ``beforeSetup``
and ``setup`` are ``UserWithGitPatchStage``: besides the builder
checksum they fold in a checksum of the git paths declared as that
stage's dependencies, so the commands re-run when watched files change
even without a cache-version bump.  Before such a stage's commands run,
the watched artifacts are patched up to the latest commit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from dimgforge.builders.base import Builder
from dimgforge.core.hasher import sha256_hash
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage, StageOptions

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor


class UserStage(BaseStage):
    """A stage whose content comes entirely from the builder."""

    def __init__(self, builder: Builder, options: StageOptions) -> None:
        super().__init__(options)
        self.builder = builder

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        return self.builder.checksum(self.name)

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        self.builder.apply(self.name, spec)


class UserWithGitPatchStage(UserStage):
    """User stage that also watches git paths."""

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        args = [self.builder.checksum(self.name)]
        for ga in self.git_artifacts:
            args.append(ga.stage_dependencies_checksum(self.name))
        return sha256_hash(*args)

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        BaseStage.prepare_image(self, conveyor, prev_built_image, spec)
        for ga in self.git_artifacts:
            if ga.has_stage_dependencies(self.name):
                ga.prepare_patch(spec, prev_built_image, self.name)
        self.builder.apply(self.name, spec)


class BeforeInstallStage(UserStage):
    name: ClassVar[StageName] = StageName.BEFORE_INSTALL


class InstallStage(UserWithGitPatchStage):
    name: ClassVar[StageName] = StageName.INSTALL


class BeforeSetupStage(UserWithGitPatchStage):
    name: ClassVar[StageName] = StageName.BEFORE_SETUP


class SetupStage(UserWithGitPatchStage):
    name: ClassVar[StageName] = StageName.SETUP


USER_STAGE_CLASSES: dict[StageName, type[UserStage]] = {
    StageName.BEFORE_INSTALL: BeforeInstallStage,
    StageName.INSTALL: InstallStage,
    StageName.BEFORE_SETUP: BeforeSetupStage,
    StageName.SETUP: SetupStage,
}


def generate_user_stage(
    stage: StageName, builder: Builder | None, options: StageOptions
) -> UserStage | None:
    """Return the user stage for *stage*, or None if nothing is declared."""
    if builder is None or builder.is_empty(stage):
        return None
    return USER_STAGE_CLASSES[stage](builder, options)
