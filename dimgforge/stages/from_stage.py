"""``from`` stage — the base image every other stage builds on."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from dimgforge.core.hasher import sha256_hash
from dimgforge.core.path_matcher import normalize_path
from dimgforge.models.dimg import DimgBase
from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import BaseStage, StageOptions

if TYPE_CHECKING:
    from dimgforge.core.conveyor import Conveyor


class FromStage(BaseStage):
    """Depends on the external base image name or the base dimg's signature."""

    name: ClassVar[StageName] = StageName.FROM

    def __init__(
        self,
        options: StageOptions,
        *,
        base_image_name: str = "",
        base_dimg_name: str = "",
        cache_version: str = "",
    ) -> None:
        super().__init__(options)
        self.base_image_name = base_image_name
        self.base_dimg_name = base_dimg_name
        self.cache_version = cache_version

    @classmethod
    def from_config(cls, dimg: DimgBase, options: StageOptions) -> FromStage:
        return cls(
            options,
            base_image_name=dimg.from_image,
            base_dimg_name=dimg.base_dimg_name,
            cache_version=dimg.from_cache_version,
        )

    def get_dependencies(self, conveyor: Conveyor, prev_image: BuiltImage | None) -> str:
        args: list[str] = []
        if self.cache_version:
            args.append(self.cache_version)
        for mount in self.options.mounts:
            args.extend([mount.from_path, "/" + normalize_path(mount.to)])
        if self.base_dimg_name:
            args.append(conveyor.get_dimg_signature(self.base_dimg_name))
        else:
            args.append(self.base_image_name)
        return sha256_hash(*args)

    def prepare_image(
        self,
        conveyor: Conveyor,
        prev_built_image: BuiltImage | None,
        spec: ContainerSpec,
    ) -> None:
        super().prepare_image(conveyor, prev_built_image, spec)
        if self.base_dimg_name:
            base = conveyor.get_dimg_last_image(self.base_dimg_name)
            spec.from_image = base.name
        else:
            spec.from_image = self.base_image_name
