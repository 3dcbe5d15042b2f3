"""Builder contract consumed by user stages."""

from __future__ import annotations

import abc

from dimgforge.core.hasher import sha256_hash
from dimgforge.models.dimg import AnsibleConfig, ShellConfig
from dimgforge.models.image import ContainerSpec
from dimgforge.models.stages import StageName


class Builder(abc.ABC):
    """Pluggable producer of per-stage commands and checksums.

    Subclasses implement ``_stage_payload()`` (the serialized declarations
    of one stage) and ``apply()``.  ``checksum()`` folds in the global and
    per-stage cache versions, so bumping either re-runs the stage.
    """

    def __init__(self, config: ShellConfig | AnsibleConfig) -> None:
        self.config = config

    @abc.abstractmethod
    def _stage_payload(self, stage: StageName) -> list[str]:
        """Deterministic string form of every declaration of *stage*."""
        ...

    @abc.abstractmethod
    def apply(self, stage: StageName, spec: ContainerSpec) -> None:
        """Add the stage's commands to the container spec."""
        ...

    def is_empty(self, stage: StageName) -> bool:
        return self.checksum(stage) == ""

    def checksum(self, stage: StageName) -> str:
        """Hash of the stage declarations plus cache versions; ``""`` if none."""
        args = list(self._stage_payload(stage))
        version_checksum = self._stage_version_checksum(stage)
        if version_checksum:
            args.append(version_checksum)
        return sha256_hash(*args) if args else ""

    def _stage_version_checksum(self, stage: StageName) -> str:
        args = [
            v
            for v in (self.config.stage_cache_version(stage), self.config.cache_version)
            if v
        ]
        return sha256_hash(*args) if args else ""
