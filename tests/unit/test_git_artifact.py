"""Tests for GitArtifact: filtered archives, patches and commit tracking."""

from __future__ import annotations

import io
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from dimgforge.models.image import BuiltImage, ContainerSpec
from dimgforge.models.stages import StageName
from dimgforge.stages.base import StageOptions
from dimgforge.stages.git_artifact import GitArtifact
from dimgforge.stages.git_patch import GitPostSetupPatchStage

if TYPE_CHECKING:
    from tests.conftest import GitProject


@pytest.fixture
def project(git_project: GitProject) -> GitProject:
    git_project.write("app/x.txt", "hello\n")
    git_project.write("app/requirements.txt", "rich\n")
    git_project.write("docs/readme.md", "docs\n")
    git_project.commit("initial")
    return git_project


@pytest.fixture
def make_artifact(project: GitProject, tmp_path: Path) -> Callable[..., GitArtifact]:
    def _factory(**overrides: Any) -> GitArtifact:
        kwargs: dict[str, Any] = {
            "name": "own",
            "repo": project.repo(),
            "to": "/srv/app",
            "patches_dir": tmp_path / "payload" / "patch",
            "archives_dir": tmp_path / "payload" / "archive",
            "container_patches_dir": "/.dimgforge/patch",
            "container_archives_dir": "/.dimgforge/archive",
        }
        kwargs.update(overrides)
        return GitArtifact(**kwargs)

    return _factory


def _image_synced_to(ga: GitArtifact, commit: str) -> BuiltImage:
    return BuiltImage(
        name="dimgstage-test:prev",
        dimg_name="app",
        stage="setup",
        signature="prev",
        labels={ga.commit_label: commit},
    )


class TestIdentity:
    def test_params_hash_follows_export(self, make_artifact):
        a = make_artifact()
        assert a.params_hash == make_artifact().params_hash
        assert a.params_hash != make_artifact(to="/other").params_hash
        assert a.params_hash != make_artifact(include_paths=["app"]).params_hash

    def test_commit_label(self, make_artifact):
        ga = make_artifact()
        assert ga.commit_label == f"dimgforge-git-{ga.params_hash[:16]}-commit"

    def test_str(self, make_artifact):
        assert str(make_artifact(add="/app/")) == "own:app"
        assert str(make_artifact()) == "own:/"


class TestCommits:
    def test_latest_commit_default_head(self, make_artifact, project: GitProject):
        assert make_artifact().latest_commit() == project.head()

    def test_latest_commit_branch_and_tag(self, make_artifact, project: GitProject):
        first = project.head()
        project.git("branch", "stable")
        project.git("tag", "v1")
        project.write("app/x.txt", "changed\n")
        project.commit()

        assert make_artifact(branch="stable").latest_commit() == first
        assert make_artifact(tag="v1").latest_commit() == first
        assert make_artifact(commit=first).latest_commit() == first

    def test_synced_commit_from_labels(self, make_artifact, project: GitProject):
        ga = make_artifact()
        assert ga.get_synced_commit(None) == ""
        assert ga.get_synced_commit(_image_synced_to(ga, project.head())) == project.head()

    def test_synced_commit_usable(self, make_artifact, project: GitProject):
        ga = make_artifact()
        assert ga.is_synced_commit_usable(project.head())
        assert not ga.is_synced_commit_usable("")
        assert not ga.is_synced_commit_usable("f" * 40)

    def test_is_empty(self, make_artifact):
        assert not make_artifact(add="/app").is_empty()
        assert make_artifact(add="/missing").is_empty()
        assert make_artifact(include_paths=["nothing-here"]).is_empty()


class TestPatches:
    def test_patch_from_empty_tree(self, make_artifact):
        ga = make_artifact(add="/app", exclude_paths=["requirements.txt"])
        patch = ga.build_patch("", ga.latest_commit())
        assert patch.startswith("diff --git a/x.txt b/x.txt\nnew file mode 100644\n")
        assert "requirements.txt" not in patch
        assert "docs" not in patch

    def test_no_change_gives_empty_patch(self, make_artifact, project: GitProject):
        ga = make_artifact()
        assert ga.build_patch(project.head(), project.head()) == ""
        assert ga.patch_checksum(project.head()) == ""
        assert ga.patch_byte_size(project.head()) == 0

    def test_change_outside_filter_is_invisible(self, make_artifact, project: GitProject):
        first = project.head()
        project.write("docs/readme.md", "rewritten\n")
        project.commit()

        ga = make_artifact(include_paths=["app"])
        assert ga.patch_checksum(first) == ""
        assert ga.patch_byte_size(first) == 0

    def test_change_inside_filter(self, make_artifact, project: GitProject):
        first = project.head()
        project.write("app/x.txt", "hello again\n")
        project.commit()

        ga = make_artifact(add="app")
        patch = ga.build_patch(first, ga.latest_commit())
        assert ga.patch_byte_size(first) == len(patch.encode())
        assert ga.patch_checksum(first) != ""
        assert "--- a/x.txt\n+++ b/x.txt\n" in patch


class TestArchive:
    def test_archive_trimmed_and_filtered(self, make_artifact):
        ga = make_artifact(add="/app", exclude_paths=["requirements.txt"])
        raw = ga.build_archive(ga.latest_commit())
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as tar:
            members = {m.name: tar.extractfile(m).read() for m in tar if m.isfile()}
        assert members == {"x.txt": b"hello\n"}

    def test_prepare_archive(self, make_artifact, project: GitProject, tmp_path: Path):
        ga = make_artifact(add="/app", owner="app", group="www")
        spec = ContainerSpec()
        ga.prepare_archive(spec, StageName.GIT_ARCHIVE)

        archive = tmp_path / "payload" / "archive" / f"{ga.params_hash[:16]}_gitArchive.tar"
        assert archive.exists()
        assert f"{tmp_path / 'payload' / 'archive'}:/.dimgforge/archive:ro" in spec.volumes
        assert spec.run_commands == [
            "mkdir -p /srv/app",
            f"tar -xf /.dimgforge/archive/{archive.name} -C /srv/app",
            "chown -R app:www /srv/app",
        ]
        assert spec.labels == {ga.commit_label: project.head()}


class TestPreparePatch:
    def test_applies_patch_since_synced_commit(self, make_artifact, project: GitProject):
        first = project.head()
        project.write("app/x.txt", "v2\n")
        latest = project.commit()

        ga = make_artifact(add="/app", owner="app")
        spec = ContainerSpec()
        ga.prepare_patch(spec, _image_synced_to(ga, first), StageName.GIT_LATEST_PATCH)

        patch_name = f"{ga.params_hash[:16]}_gitLatestPatch.patch"
        assert spec.run_commands == [
            "mkdir -p /srv/app",
            "git apply --whitespace=nowarn --unsafe-paths "
            f"--directory=/srv/app /.dimgforge/patch/{patch_name}",
            "chown app /srv/app/x.txt",
        ]
        assert spec.labels == {ga.commit_label: latest}
        assert (ga.patches_dir / patch_name).read_text().startswith("diff --git a/x.txt")

    def test_nothing_when_already_synced(self, make_artifact, project: GitProject):
        ga = make_artifact()
        spec = ContainerSpec()
        ga.prepare_patch(spec, _image_synced_to(ga, project.head()), StageName.GIT_LATEST_PATCH)
        assert spec.run_commands == []
        assert spec.labels == {}

    def test_filtered_changes_only_move_label(self, make_artifact, project: GitProject):
        first = project.head()
        project.write("docs/readme.md", "rewritten\n")
        latest = project.commit()

        ga = make_artifact(include_paths=["app"])
        spec = ContainerSpec()
        ga.prepare_patch(spec, _image_synced_to(ga, first), StageName.GIT_LATEST_PATCH)
        assert spec.run_commands == []
        assert spec.labels == {ga.commit_label: latest}

    def test_missing_synced_commit_falls_back_to_archive(self, make_artifact):
        ga = make_artifact()
        spec = ContainerSpec()
        ga.prepare_patch(spec, _image_synced_to(ga, "f" * 40), StageName.GIT_POST_SETUP_PATCH)
        assert any(cmd.startswith("tar -xf ") for cmd in spec.run_commands)
        assert spec.labels == {ga.commit_label: ga.latest_commit()}

    def test_deleted_files_not_chowned(self, make_artifact, project: GitProject):
        first = project.head()
        project.remove("app/x.txt")
        project.commit()

        ga = make_artifact(add="app", owner="app")
        spec = ContainerSpec()
        ga.prepare_patch(spec, _image_synced_to(ga, first), StageName.GIT_LATEST_PATCH)
        assert not any(cmd.startswith("chown") for cmd in spec.run_commands)


class TestStageDependencies:
    WATCHED = {StageName.INSTALL: ["requirements.txt"]}

    def _watching(self, ga: GitArtifact) -> GitArtifact:
        for stage, paths in self.WATCHED.items():
            ga.set_stage_dependencies(stage, paths)
        return ga

    def test_empty_without_declaration(self, make_artifact):
        assert make_artifact().stage_dependencies_checksum(StageName.INSTALL) == ""

    def test_tracks_only_watched_files(self, make_artifact, project: GitProject):
        before = self._watching(make_artifact(add="/app"))
        checksum = before.stage_dependencies_checksum(StageName.INSTALL)
        assert checksum != ""
        assert before.has_stage_dependencies(StageName.INSTALL)
        assert not before.has_stage_dependencies(StageName.SETUP)

        project.write("app/x.txt", "unrelated\n")
        project.commit()
        unrelated = self._watching(make_artifact(add="/app"))
        assert unrelated.stage_dependencies_checksum(StageName.INSTALL) == checksum

        project.write("app/requirements.txt", "rich\ntyper\n")
        project.commit()
        watched = self._watching(make_artifact(add="/app"))
        assert watched.stage_dependencies_checksum(StageName.INSTALL) != checksum

    def test_set_stage_dependencies_replaces(self, make_artifact):
        ga = make_artifact()
        ga.set_stage_dependencies(StageName.SETUP, ["app"])
        ga.set_stage_dependencies(StageName.SETUP, ["docs"])
        assert ga.stages_dependencies == {StageName.SETUP: ["docs"]}


class TestPostSetupPatchDependencies:
    """Bucketed patch size behind the gitPostSetupPatch signature."""

    @pytest.fixture
    def make_stage(self, make_artifact, tmp_path: Path):
        def _factory(patch_size_step: int, **overrides: Any) -> GitPostSetupPatchStage:
            options = StageOptions(
                dimg_name="app",
                dimg_tmp_dir=tmp_path / "run" / "app",
                build_dir=tmp_path / "build",
            )
            stage = GitPostSetupPatchStage(options, patch_size_step)
            stage.set_git_artifacts([make_artifact(**overrides)])
            return stage

        return _factory

    @pytest.fixture
    def first(self, project: GitProject) -> str:
        first = project.head()
        project.write("app/x.txt", "hello again\n")
        project.commit()
        return first

    def test_gone_synced_commit_counts_as_synced(self, make_stage, project: GitProject):
        stage = make_stage(patch_size_step=1)
        (ga,) = stage.git_artifacts
        synced = stage.get_dependencies(None, _image_synced_to(ga, project.head()))
        gone = stage.get_dependencies(None, _image_synced_to(ga, "f" * 40))
        assert gone == synced

    def test_no_synced_commit_counts_as_synced(self, make_stage, project: GitProject):
        stage = make_stage(patch_size_step=1)
        (ga,) = stage.git_artifacts
        synced = stage.get_dependencies(None, _image_synced_to(ga, project.head()))
        assert stage.get_dependencies(None, None) == synced

    def test_crossing_bucket_boundary_rebuilds(self, make_artifact, make_stage, first: str):
        size = make_artifact(add="/app").patch_byte_size(first)
        assert size > 0

        stage = make_stage(patch_size_step=size, add="/app")
        (ga,) = stage.git_artifacts
        synced = stage.get_dependencies(None, _image_synced_to(ga, ga.latest_commit()))
        behind = stage.get_dependencies(None, _image_synced_to(ga, first))
        assert behind != synced

    def test_within_bucket_keeps_dependencies(self, make_artifact, make_stage, first: str):
        size = make_artifact(add="/app").patch_byte_size(first)

        stage = make_stage(patch_size_step=size + 1, add="/app")
        (ga,) = stage.git_artifacts
        synced = stage.get_dependencies(None, _image_synced_to(ga, ga.latest_commit()))
        behind = stage.get_dependencies(None, _image_synced_to(ga, first))
        assert behind == synced
