"""Abstract base stage with an enforced signature computation.

Every concrete stage inherits from BaseStage and implements
``get_dependencies()``; it may extend ``prepare_image()``.  The
``signature()`` wrapper is **not overridable** — it chains the stage's
dependency material to the predecessor's signature:

    signature_i = sha256(dependencies_i, signature_{i-1})

so a change in stage *i* invalidates every later stage and never an
earlier one.
"""

from __future__ import annotations

import abc
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, final

from pydantic import BaseModel, ConfigDict

from dimgforge.core.hasher import compute_signature
from dimgforge.models.dimg import Mount
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor
    from dimgforge.stages.git_artifact import GitArtifact

logger = logging.getLogger(__name__)


def slug(value: str) -> str:
    """Filesystem-safe form of *value* (``/var/lib`` → ``var-lib``)."""
    return re.sub(r"[^A-Za-z0-9_.]+", "-", value).strip("-") or "root"


class StageOptions(BaseModel):
    """Per-dimg settings shared by all of its stages."""

    model_config = ConfigDict(frozen=True)

    dimg_name: str
    mounts: list[Mount] = []
    dimg_tmp_dir: Path
    build_dir: Path
    container_payload_dir: str = "/.dimgforge"


class BaseStage(abc.ABC):
    """Abstract base for all dimg pipeline stages.

    Subclasses **must** set ``name`` and implement ``get_dependencies()``.
    Subclasses **must not** override ``signature()``.
    """

    name: ClassVar[StageName]

    def __init__(self, options: StageOptions) -> None:
        self.options = options
        self.git_artifacts: list[GitArtifact] = []

    @property
    def dimg_name(self) -> str:
        return self.options.dimg_name

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        """Stage-specific material folded into the signature.

        Must be a pure function of the configuration, the resolved git
        state and *prev_image*.
        """
        ...

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        """Add this stage's env, volumes and commands to *spec*."""
        for mount in self.options.mounts:
            spec.add_volume(f"{self._mount_host_path(mount)}:{mount.to}")

    def set_git_artifacts(self, artifacts: list[GitArtifact]) -> None:
        self.git_artifacts = list(artifacts)

    # ------------------------------------------------------------------
    # Signature (NOT overridable)
    # ------------------------------------------------------------------

    @final
    def signature(
        self,
        conveyor: Conveyor,
        prev_image: BuiltImage | None,
        prev_signature: str,
    ) -> str:
        dependencies = self.get_dependencies(conveyor, prev_image)
        signature = compute_signature(dependencies, prev_signature)
        logger.debug(
            "%s [%s] dependencies=%s signature=%s",
            self.dimg_name or "-",
            self.name.value,
            dependencies[:12],
            signature[:12],
        )
        return signature

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mount_host_path(self, mount: Mount) -> str:
        if mount.from_path == "tmp_dir":
            path = self.options.dimg_tmp_dir / "mount" / slug(mount.to)
        elif mount.from_path == "build_dir":
            path = self.options.build_dir / "mount" / slug(mount.to)
        else:
            return mount.from_path
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} dimg={self.dimg_name!r} stage={self.name.value!r}>"
