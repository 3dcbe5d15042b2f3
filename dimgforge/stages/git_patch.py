"""Git patch stages — bring archived git content up to date.

``gitPostSetupPatch`` absorbs large accumulated changes.  Its dependency
is the total patch size since each artifact's synced commit, divided
into fixed buckets (1 MiB by default): the layer is rebuilt only when
the accumulated change crosses a bucket boundary, so the expensive
layers after it are not invalidated by every small commit.

``gitLatestPatch`` applies whatever is left.  Its dependency is the
checksum of the remaining filtered patch, so any relevant change
rebuilds it and nothing outside the filters does.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar

from dimgforge.config import DEFAULT_PATCH_SIZE_STEP
from dimgforge.core.hasher import sha256_hash
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage, StageOptions

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor

logger = logging.getLogger(__name__)


class GitPatchStage(BaseStage):
    """Applies a patch per artifact from its synced commit to the latest."""

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        for ga in self.git_artifacts:
            ga.prepare_patch(spec, prev_built_image, self.name)


class GitPostSetupPatchStage(GitPatchStage):
    name: ClassVar[StageName] = StageName.GIT_POST_SETUP_PATCH

    def __init__(
        self, options: StageOptions, patch_size_step: int = DEFAULT_PATCH_SIZE_STEP
    ) -> None:
        super().__init__(options)
        self.patch_size_step = patch_size_step

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        size = 0
        for ga in self.git_artifacts:
            commit = ga.get_synced_commit(prev_image)
            if not commit:
                continue
            if not ga.repo.is_commit_exists(commit):
                logger.debug(
                    "Synced commit %s of %s is gone; contributing 0 bytes",
                    commit[:12], ga,
                )
                continue
            size += ga.patch_byte_size(commit)
        return sha256_hash(str(size // self.patch_size_step))


class GitLatestPatchStage(GitPatchStage):
    name: ClassVar[StageName] = StageName.GIT_LATEST_PATCH

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        args: list[str] = []
        for ga in self.git_artifacts:
            commit = ga.get_synced_commit(prev_image)
            if not ga.is_synced_commit_usable(commit):
                commit = ""
            args.append(ga.patch_checksum(commit))
        return sha256_hash(*args)
