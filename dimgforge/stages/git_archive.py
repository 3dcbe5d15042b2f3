"""``gitArchive`` stage — full filtered snapshot of every git artifact.

Its signature ignores commits on purpose: once built, the archive layer
is reused and later commits reach the image through the patch stages.
Adding, removing or re-filtering an artifact does change it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from dimgforge.core.hasher import sha256_hash
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor

# Bump to force every archive layer to be rebuilt.
GIT_ARCHIVE_CACHE_VERSION = "1"


class GitArchiveStage(BaseStage):
    name: ClassVar[StageName] = StageName.GIT_ARCHIVE

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        return sha256_hash(
            GIT_ARCHIVE_CACHE_VERSION, *(ga.params_hash for ga in self.git_artifacts)
        )

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        for ga in self.git_artifacts:
            ga.prepare_archive(spec, self.name)
