"""Ansible builder: stage tasks rendered into a playbook run in the container.

Each stage gets a host work dir holding ``playbook.yml``, ``hosts`` and
``ansible.cfg``.  It is mounted read-only into the container next to a
read-write tmp dir, and ``ansible-playbook`` runs against localhost.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from dimgforge.builders.base import Builder
from dimgforge.core.hasher import canonical_json_bytes
from dimgforge.models.dimg import AnsibleConfig
from dimgforge.models.image import ContainerSpec
from dimgforge.models.stages import StageName

logger = logging.getLogger(__name__)

_ANSIBLE_CFG = """\
[defaults]
inventory = {inventory}
transport = local
retry_files_enabled = False
nocows = 1
local_tmp = {tmp}/local
remote_tmp = {tmp}/remote
"""


class AnsibleBuilder(Builder):
    """Builds ansible stages.

    Parameters
    ----------
    config:
        Ansible tasks per user stage.
    tmp_path:
        Host directory for per-stage work dirs (the dimg's tmp dir).
    container_work_dir:
        Where the work dir is mounted inside the build container.
    ansible_args:
        Extra command-line arguments appended to ``ansible-playbook``.
    """

    config: AnsibleConfig

    def __init__(
        self,
        config: AnsibleConfig,
        tmp_path: Path,
        container_work_dir: str = "/.dimgforge/ansible-workdir",
        container_tmp_dir: str = "/.dimgforge/ansible-tmpdir",
        ansible_args: str = "",
    ) -> None:
        super().__init__(config)
        self.tmp_path = Path(tmp_path)
        self.container_work_dir = container_work_dir
        self.container_tmp_dir = container_tmp_dir
        self.ansible_args = ansible_args

    def _stage_payload(self, stage: StageName) -> list[str]:
        # Round-trip through YAML so checksums match what the playbook contains.
        payload: list[str] = []
        for task in self.config.stage_tasks(stage):
            normalized = yaml.safe_load(yaml.safe_dump(task))
            payload.append(canonical_json_bytes(normalized).decode("utf-8"))
        return payload

    def apply(self, stage: StageName, spec: ContainerSpec) -> None:
        tasks = self.config.stage_tasks(stage)
        if not tasks:
            return

        work_dir = self._create_stage_work_dir(stage, tasks)
        tmp_dir = self.tmp_path / f"ansible-tmpdir-{stage.value}"
        tmp_dir.mkdir(parents=True, exist_ok=True)

        spec.add_env(
            {
                "ANSIBLE_CONFIG": f"{self.container_work_dir}/ansible.cfg",
                "PYTHONIOENCODING": "utf-8",
            }
        )
        spec.add_volume(
            f"{work_dir}:{self.container_work_dir}:ro",
            f"{tmp_dir}:{self.container_tmp_dir}:rw",
        )

        command = f"ansible-playbook {self.container_work_dir}/playbook.yml"
        if self.ansible_args:
            command = f"{command} {self.ansible_args}"
        spec.add_run_commands(command)

    def _create_stage_work_dir(
        self, stage: StageName, tasks: list[dict[str, Any]]
    ) -> Path:
        work_dir = self.tmp_path / f"ansible-workdir-{stage.value}"
        work_dir.mkdir(parents=True, exist_ok=True)

        playbook = [
            {
                "hosts": "all",
                "gather_facts": "no",
                "tasks": tasks,
            }
        ]
        (work_dir / "playbook.yml").write_text(
            yaml.safe_dump(playbook, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
        (work_dir / "hosts").write_text(
            "localhost ansible_connection=local ansible_python_interpreter=python3\n",
            encoding="utf-8",
        )
        (work_dir / "ansible.cfg").write_text(
            _ANSIBLE_CFG.format(
                inventory=f"{self.container_work_dir}/hosts",
                tmp=self.container_tmp_dir,
            ),
            encoding="utf-8",
        )
        logger.debug("Rendered ansible work dir for %s at %s", stage.value, work_dir)
        return work_dir
