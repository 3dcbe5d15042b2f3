"""Build-container specification and built layer models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

SIGNATURE_LABEL = "dimgforge-signature"
DIMG_LABEL = "dimgforge-dimg"
STAGE_LABEL = "dimgforge-stage"


class ContainerSpec(BaseModel):
    """Mutable description of the container that will produce a layer.

    Stages only add to the spec; executing it is the container runtime's
    job.
    """

    from_image: str = ""
    env: dict[str, str] = {}
    volumes: list[str] = []
    image_mounts: dict[str, str] = {}  # image name -> read-only mount point
    run_commands: list[str] = []
    labels: dict[str, str] = {}
    docker_instructions: dict[str, object] = {}

    def add_env(self, env: dict[str, str]) -> None:
        self.env.update(env)

    def add_volume(self, *volumes: str) -> None:
        for volume in volumes:
            if volume not in self.volumes:
                self.volumes.append(volume)

    def add_image_mount(self, image_name: str, container_path: str) -> None:
        self.image_mounts[image_name] = container_path

    def add_run_commands(self, *commands: str) -> None:
        self.run_commands.extend(commands)

    def add_labels(self, labels: dict[str, str]) -> None:
        self.labels.update(labels)

    def add_docker_instructions(self, instructions: dict[str, object]) -> None:
        self.docker_instructions.update(instructions)


class BuiltImage(BaseModel):
    """A committed stage layer and the metadata persisted with it."""

    model_config = ConfigDict(frozen=True)

    name: str
    dimg_name: str
    stage: str
    signature: str
    labels: dict[str, str] = {}
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def label(self, key: str) -> str:
        return self.labels.get(key, "")
