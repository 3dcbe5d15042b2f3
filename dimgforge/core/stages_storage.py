"""Persisted stage layers backed by SQLite.

Each committed layer is stored with its signature and its labels.  The
labels are the only state that survives between runs: they record the
commit each git artifact was last synced to, which decides how large the
next incremental patch is.

Design:
- Layers are keyed by image name (``dimgstage-<project>:<signature>``).
- Committing an existing name is idempotent.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from dimgforge.core.errors import InternalInvariantViolation
from dimgforge.models.image import BuiltImage

_CREATE_STAGES = """
CREATE TABLE IF NOT EXISTS stage_images (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT NOT NULL UNIQUE,
    dimg_name     TEXT NOT NULL,
    stage         TEXT NOT NULL,
    signature     TEXT NOT NULL,
    labels_json   TEXT NOT NULL DEFAULT '{}',
    created_at    TEXT NOT NULL
);
"""

_CREATE_IDX_SIGNATURE = """
CREATE INDEX IF NOT EXISTS idx_signature ON stage_images(signature);
"""


def stage_image_name(project: str, signature: str) -> str:
    return f"dimgstage-{project}:{signature}"


class StagesStorage:
    """SQLite store of built stage layers.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_STAGES)
            conn.execute(_CREATE_IDX_SIGNATURE)
            conn.commit()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def commit(self, image: BuiltImage) -> BuiltImage:
        """Persist a built layer; returns the stored record."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO stage_images
                    (name, dimg_name, stage, signature, labels_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    image.name,
                    image.dimg_name,
                    image.stage,
                    image.signature,
                    json.dumps(image.labels, sort_keys=True),
                    image.created_at.isoformat(),
                ),
            )
            conn.commit()
        stored = self.get(image.name)
        if stored is None:
            raise InternalInvariantViolation(f"layer {image.name} vanished after commit")
        return stored

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get(self, name: str) -> BuiltImage | None:
        """Return the layer stored under *name*, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT name, dimg_name, stage, signature, labels_json, created_at "
                "FROM stage_images WHERE name = ?",
                (name,),
            ).fetchone()
        return self._row_to_image(row) if row else None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def copy_to(self, db_path: Path) -> StagesStorage:
        """Snapshot this store into *db_path* and open the copy."""
        target = Path(db_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        source = self._connect()
        dest = sqlite3.connect(str(target))
        try:
            source.backup(dest)
        finally:
            dest.close()
            source.close()
        return StagesStorage(target)

    def count(self) -> int:
        with self._connect() as conn:
            (total,) = conn.execute("SELECT COUNT(*) FROM stage_images").fetchone()
        return int(total)

    @staticmethod
    def _row_to_image(row: tuple) -> BuiltImage:
        name, dimg_name, stage, signature, labels_json, created_at = row
        return BuiltImage(
            name=name,
            dimg_name=dimg_name,
            stage=stage,
            signature=signature,
            labels=json.loads(labels_json),
            created_at=datetime.fromisoformat(created_at),
        )
