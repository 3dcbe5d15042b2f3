"""Per-run and per-dimg temporary directories.

The run directory is created on first use and removed by ``release()``
whatever the build outcome.  Each dimg gets ``<run>/<dimg>/`` with
``patch/`` and ``archive/`` subdirectories for git payloads.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def dimg_dir_name(dimg_name: str) -> str:
    return dimg_name or "_"


class RunTmpDir:
    """Lazily created temp tree for a single build run."""

    def __init__(self, parent: Path | None = None) -> None:
        self._parent = parent
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            if self._parent is not None:
                self._parent.mkdir(parents=True, exist_ok=True)
            self._path = Path(tempfile.mkdtemp(prefix="dimgforge-", dir=self._parent))
            logger.debug("Created run tmp dir %s", self._path)
        return self._path

    def dimg_dir(self, dimg_name: str) -> Path:
        path = self.path / dimg_dir_name(dimg_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def patches_dir(self, dimg_name: str) -> Path:
        path = self.dimg_dir(dimg_name) / "patch"
        path.mkdir(exist_ok=True)
        return path

    def archives_dir(self, dimg_name: str) -> Path:
        path = self.dimg_dir(dimg_name) / "archive"
        path.mkdir(exist_ok=True)
        return path

    def release(self) -> None:
        if self._path is None:
            return
        shutil.rmtree(self._path, ignore_errors=True)
        logger.debug("Removed run tmp dir %s", self._path)
        self._path = None

    def __enter__(self) -> RunTmpDir:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
