"""Tests for the shell and ansible builders."""

from __future__ import annotations

from pathlib import Path

import yaml

from dimgforge.builders.ansible import AnsibleBuilder
from dimgforge.builders.shell import ShellBuilder
from dimgforge.models.dimg import AnsibleConfig, ShellConfig
from dimgforge.models.image import ContainerSpec
from dimgforge.models.stages import StageName


class TestShellBuilder:
    def test_empty_stage(self):
        builder = ShellBuilder(ShellConfig(install=["make"]))
        assert builder.is_empty(StageName.BEFORE_INSTALL)
        assert builder.checksum(StageName.BEFORE_INSTALL) == ""
        assert not builder.is_empty(StageName.INSTALL)

    def test_checksum_deterministic(self):
        a = ShellBuilder(ShellConfig(install=["make", "make test"]))
        b = ShellBuilder(ShellConfig(install=["make", "make test"]))
        assert a.checksum(StageName.INSTALL) == b.checksum(StageName.INSTALL)

    def test_checksum_follows_commands(self):
        a = ShellBuilder(ShellConfig(install=["make"]))
        b = ShellBuilder(ShellConfig(install=["make all"]))
        assert a.checksum(StageName.INSTALL) != b.checksum(StageName.INSTALL)

    def test_cache_version_only_makes_stage_non_empty(self):
        builder = ShellBuilder(ShellConfig(setup_cache_version="1"))
        assert not builder.is_empty(StageName.SETUP)
        assert builder.is_empty(StageName.INSTALL)

    def test_global_cache_version_changes_every_stage(self):
        plain = ShellBuilder(ShellConfig(install=["make"], setup=["run"]))
        bumped = ShellBuilder(
            ShellConfig(install=["make"], setup=["run"], cache_version="2")
        )
        for stage in (StageName.INSTALL, StageName.SETUP):
            assert plain.checksum(stage) != bumped.checksum(stage)

    def test_stage_cache_version_changes_only_that_stage(self):
        plain = ShellBuilder(ShellConfig(install=["make"], setup=["run"]))
        bumped = ShellBuilder(
            ShellConfig(install=["make"], setup=["run"], setup_cache_version="2")
        )
        assert plain.checksum(StageName.INSTALL) == bumped.checksum(StageName.INSTALL)
        assert plain.checksum(StageName.SETUP) != bumped.checksum(StageName.SETUP)

    def test_apply_adds_commands(self):
        spec = ContainerSpec()
        ShellBuilder(ShellConfig(install=["make", "make install"])).apply(
            StageName.INSTALL, spec
        )
        assert spec.run_commands == ["make", "make install"]


class TestAnsibleBuilder:
    TASKS = [{"name": "install curl", "apk": {"name": "curl"}}]

    def test_checksum_ignores_key_order(self, tmp_path: Path):
        a = AnsibleBuilder(
            AnsibleConfig(install=[{"name": "t", "shell": "echo"}]), tmp_path
        )
        b = AnsibleBuilder(
            AnsibleConfig(install=[{"shell": "echo", "name": "t"}]), tmp_path
        )
        assert a.checksum(StageName.INSTALL) == b.checksum(StageName.INSTALL)
        assert a.is_empty(StageName.SETUP)

    def test_apply_renders_playbook(self, tmp_path: Path):
        builder = AnsibleBuilder(AnsibleConfig(install=self.TASKS), tmp_path)
        spec = ContainerSpec()
        builder.apply(StageName.INSTALL, spec)

        work_dir = tmp_path / "ansible-workdir-install"
        playbook = yaml.safe_load((work_dir / "playbook.yml").read_text())
        assert playbook[0]["tasks"] == self.TASKS
        assert (work_dir / "hosts").exists()
        assert "transport = local" in (work_dir / "ansible.cfg").read_text()

        assert spec.env["ANSIBLE_CONFIG"] == "/.dimgforge/ansible-workdir/ansible.cfg"
        assert f"{work_dir}:/.dimgforge/ansible-workdir:ro" in spec.volumes
        assert spec.run_commands == [
            "ansible-playbook /.dimgforge/ansible-workdir/playbook.yml"
        ]

    def test_apply_empty_stage_is_noop(self, tmp_path: Path):
        builder = AnsibleBuilder(AnsibleConfig(install=self.TASKS), tmp_path)
        spec = ContainerSpec()
        builder.apply(StageName.SETUP, spec)
        assert spec.run_commands == []
        assert not (tmp_path / "ansible-workdir-setup").exists()

    def test_extra_args_from_builder_not_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("ANSIBLE_ARGS", "--from-environment")
        builder = AnsibleBuilder(
            AnsibleConfig(install=self.TASKS), tmp_path, ansible_args="-vvv --diff"
        )
        spec = ContainerSpec()
        builder.apply(StageName.INSTALL, spec)
        assert spec.run_commands == [
            "ansible-playbook /.dimgforge/ansible-workdir/playbook.yml -vvv --diff"
        ]
