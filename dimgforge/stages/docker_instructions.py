"""``dockerInstructions`` stage — image metadata applied to the final layer."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from dimgforge.core.hasher import content_hash
from dimgforge.models.dimg import DockerInstructions
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage, StageOptions

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor


class DockerInstructionsStage(BaseStage):
    name: ClassVar[StageName] = StageName.DOCKER_INSTRUCTIONS

    def __init__(self, instructions: DockerInstructions, options: StageOptions) -> None:
        super().__init__(options)
        self.instructions = instructions

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        return content_hash(self.instructions.model_dump(mode="json"))

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        spec.add_docker_instructions(
            self.instructions.model_dump(mode="json", exclude_defaults=True)
        )
        if self.instructions.label:
            spec.add_labels(self.instructions.label)


def generate_docker_instructions_stage(
    instructions: DockerInstructions | None, options: StageOptions
) -> DockerInstructionsStage | None:
    if instructions is None or instructions.is_empty:
        return None
    return DockerInstructionsStage(instructions, options)
