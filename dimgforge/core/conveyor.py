"""Conveyor — walks the build plan and materializes stage layers.

For each dimg in plan order, for each stage in fixed order:

1. ``signature = stage.signature(conveyor, prev_image, prev_signature)``
   (the first stage is seeded with ``""``);
2. if a layer with that signature is already stored, reuse it without
   preparing anything (cache hit);
3. otherwise prepare a ``ContainerSpec`` on top of the previous layer,
   hand it to the ``ContainerRuntime`` and store the resulting layer
   with its labels (cache miss).

Labels are inherited from the previous layer and overlaid by what the
stage adds.  Git stages add the commit each artifact was synced to; the
conveyor always adds the signature, dimg and stage labels.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from dimgforge.config import ProdConfig
from dimgforge.core.errors import (
    DimgforgeError,
    InternalInvariantViolation,
    StageBuildError,
)
from dimgforge.core.initialization_phase import (
    DimgPlan,
    InitializationPhase,
    RemoteRepoCache,
)
from dimgforge.core.lock import BuildLock
from dimgforge.core.runtime import ContainerRuntime
from dimgforge.core.stages_storage import StagesStorage, stage_image_name
from dimgforge.core.tmp_dir import RunTmpDir
from dimgforge.models.dimg import Dappfile
from dimgforge.models.image import (
    DIMG_LABEL,
    SIGNATURE_LABEL,
    STAGE_LABEL,
    BuiltImage,
    ContainerSpec,
)
from dimgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)


class StageResult(BaseModel):
    """Outcome of one stage of one dimg."""

    model_config = ConfigDict(frozen=True)

    dimg_name: str
    stage: str
    signature: str
    image_name: str
    cached: bool


class BuildResult(BaseModel):
    """Outcome of a whole build, stages in build order."""

    model_config = ConfigDict(frozen=True)

    stages: list[StageResult] = []

    @property
    def built_count(self) -> int:
        return sum(1 for s in self.stages if not s.cached)

    @property
    def cached_count(self) -> int:
        return sum(1 for s in self.stages if s.cached)

    def for_dimg(self, dimg_name: str) -> list[StageResult]:
        return [s for s in self.stages if s.dimg_name == dimg_name]

    def signatures(self, dimg_name: str) -> dict[str, str]:
        """Stage name → signature for one dimg."""
        return {s.stage: s.signature for s in self.for_dimg(dimg_name)}


class Conveyor:
    """Builds the requested dimgs of a project.

    Parameters
    ----------
    dappfile:
        Resolved configuration.
    project_dir:
        Root of the project's own git checkout.
    runtime:
        Materializes layers on cache misses.
    project_name:
        Prefix of layer image names.  Defaults to the project dir name.
    storage:
        Persisted layer metadata.  Defaults to ``config.stages_db_path``.
    config:
        Runtime settings.  Uses defaults if not provided.
    dimg_names:
        Dimgs to build; empty means all.
    """

    def __init__(
        self,
        dappfile: Dappfile,
        project_dir: Path,
        runtime: ContainerRuntime,
        *,
        project_name: str = "",
        storage: StagesStorage | None = None,
        config: ProdConfig | None = None,
        dimg_names: list[str] | None = None,
    ) -> None:
        self.dappfile = dappfile
        self.project_dir = Path(project_dir)
        self.runtime = runtime
        self.config = config or ProdConfig()
        self.project_name = project_name or self.project_dir.resolve().name
        self.storage = storage or StagesStorage(self.config.stages_db_path)
        self.dimg_names = list(dimg_names or [])

        self.remote_repos = RemoteRepoCache(
            self.config.build_dir, self.config.remote_cache_version
        )
        self._dimg_signatures: dict[str, str] = {}
        self._dimg_last_images: dict[str, BuiltImage] = {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def plan(self, tmp_dir: RunTmpDir) -> list[DimgPlan]:
        """Resolve the build plan without building anything."""
        phase = InitializationPhase(
            self.dappfile,
            self.project_dir,
            tmp_dir,
            self.config,
            self.dimg_names,
            remote_repos=self.remote_repos,
        )
        return phase.run()

    def build(self) -> BuildResult:
        """Build every planned dimg, holding the build lock throughout."""
        self.config.build_dir.mkdir(parents=True, exist_ok=True)
        results: list[StageResult] = []
        with BuildLock(self.config.lock_path, self.config.lock_timeout_seconds):
            with RunTmpDir(self.config.tmp_dir) as tmp_dir:
                for dimg_plan in self.plan(tmp_dir):
                    results.extend(self.build_dimg(dimg_plan))
        result = BuildResult(stages=results)
        logger.info(
            "Build finished: %d layer(s) built, %d reused",
            result.built_count,
            result.cached_count,
        )
        return result

    def build_dimg(self, dimg_plan: DimgPlan) -> list[StageResult]:
        results: list[StageResult] = []
        prev_image: BuiltImage | None = None
        prev_signature = ""

        for stage in dimg_plan.stages:
            signature = stage.signature(self, prev_image, prev_signature)
            image_name = stage_image_name(self.project_name, signature)

            image = self.storage.get(image_name)
            cached = image is not None
            if image is None:
                image = self._build_stage(stage, prev_image, signature, image_name)

            logger.info(
                "%s [%s] %s %s",
                dimg_plan.name or "-",
                stage.name.value,
                signature[:12],
                "(cached)" if cached else "(built)",
            )
            results.append(
                StageResult(
                    dimg_name=dimg_plan.name,
                    stage=stage.name.value,
                    signature=signature,
                    image_name=image_name,
                    cached=cached,
                )
            )
            prev_image, prev_signature = image, signature

        if prev_image is None:
            raise InternalInvariantViolation(
                f"dimg '{dimg_plan.name}' has no stages"
            )
        self._dimg_signatures[dimg_plan.name] = prev_signature
        self._dimg_last_images[dimg_plan.name] = prev_image
        return results

    # ------------------------------------------------------------------
    # Cross-dimg accessors (from / artifact import stages)
    # ------------------------------------------------------------------

    def get_dimg_signature(self, dimg_name: str) -> str:
        """Signature of the last stage of an already built dimg."""
        try:
            return self._dimg_signatures[dimg_name]
        except KeyError:
            raise InternalInvariantViolation(
                f"dimg '{dimg_name}' is referenced before it was built"
            ) from None

    def get_dimg_last_image(self, dimg_name: str) -> BuiltImage:
        """Last layer of an already built dimg."""
        try:
            return self._dimg_last_images[dimg_name]
        except KeyError:
            raise InternalInvariantViolation(
                f"dimg '{dimg_name}' is referenced before it was built"
            ) from None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_stage(
        self,
        stage: BaseStage,
        prev_image: BuiltImage | None,
        signature: str,
        image_name: str,
    ) -> BuiltImage:
        spec = ContainerSpec()
        if prev_image is not None:
            spec.from_image = prev_image.name
            spec.add_labels(prev_image.labels)

        stage.prepare_image(self, prev_image, spec)
        spec.add_labels(
            {
                SIGNATURE_LABEL: signature,
                DIMG_LABEL: stage.dimg_name,
                STAGE_LABEL: stage.name.value,
            }
        )

        try:
            self.runtime.build_layer(image_name, spec)
        except DimgforgeError:
            raise
        except Exception as exc:
            raise StageBuildError(stage.dimg_name, stage.name.value, str(exc)) from exc

        return self.storage.commit(
            BuiltImage(
                name=image_name,
                dimg_name=stage.dimg_name,
                stage=stage.name.value,
                signature=signature,
                labels=spec.labels,
            )
        )
