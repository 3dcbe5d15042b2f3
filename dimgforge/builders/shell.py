"""Shell builder: stage commands run verbatim inside the build container."""

from __future__ import annotations

from dimgforge.builders.base import Builder
from dimgforge.models.dimg import ShellConfig
from dimgforge.models.image import ContainerSpec
from dimgforge.models.stages import StageName


class ShellBuilder(Builder):
    config: ShellConfig

    def __init__(self, config: ShellConfig) -> None:
        super().__init__(config)

    def _stage_payload(self, stage: StageName) -> list[str]:
        return list(self.config.stage_commands(stage))

    def apply(self, stage: StageName, spec: ContainerSpec) -> None:
        commands = self.config.stage_commands(stage)
        if commands:
            spec.add_run_commands(*commands)
