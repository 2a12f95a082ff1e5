"""Snapshot persistence: a snapshot owns exactly one front and one top photo."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from mosh.store.database import connect
from mosh.utils import generate_id, utc_timestamp

if TYPE_CHECKING:
    import sqlite3
    from pathlib import Path

logger = logging.getLogger(__name__)


class PhotoType(StrEnum):
    FRONT = "front"
    TOP = "top"


class SnapshotIntegrityError(RuntimeError):
    """A stored snapshot is missing one of its photos."""


@dataclass(frozen=True)
class Photo:
    id: str
    snapshot_id: str
    type: PhotoType
    image_data: str
    created_at: str


@dataclass(frozen=True)
class Snapshot:
    id: str
    notes: str
    created_at: str
    updated_at: str
    front_photo: Photo
    top_photo: Photo


def _row_to_photo(row: sqlite3.Row) -> Photo:
    return Photo(
        id=row["id"],
        snapshot_id=row["snapshot_id"],
        type=PhotoType(row["type"]),
        image_data=row["image_data"],
        created_at=row["created_at"],
    )


def _assemble(snapshot_row: sqlite3.Row, photo_rows: list[sqlite3.Row]) -> Snapshot:
    photos = {row["type"]: _row_to_photo(row) for row in photo_rows}
    front = photos.get(PhotoType.FRONT)
    top = photos.get(PhotoType.TOP)
    if front is None or top is None:
        raise SnapshotIntegrityError(f"Snapshot {snapshot_row['id']} is missing required photos")

    return Snapshot(
        id=snapshot_row["id"],
        notes=snapshot_row["notes"] or "",
        created_at=snapshot_row["created_at"],
        updated_at=snapshot_row["updated_at"],
        front_photo=front,
        top_photo=top,
    )


class SnapshotStore:
    """CRUD over the ``snapshots`` and ``photos`` tables."""

    def __init__(self, database_path: Path | str) -> None:
        self._conn = connect(database_path)
        self._lock = threading.Lock()

    def list(self) -> list[Snapshot]:
        with self._lock:
            snapshot_rows = self._conn.execute("SELECT * FROM snapshots ORDER BY created_at DESC").fetchall()
            return [self._load(row) for row in snapshot_rows]

    def get(self, snapshot_id: str) -> Snapshot | None:
        with self._lock:
            return self._get(snapshot_id)

    def create(self, front_image: str, top_image: str) -> Snapshot:
        now = utc_timestamp()
        snapshot_id = generate_id("snap")

        with self._lock:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO snapshots (id, notes, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (snapshot_id, "", now, now),
                )
                for photo_type, image in ((PhotoType.FRONT, front_image), (PhotoType.TOP, top_image)):
                    self._conn.execute(
                        "INSERT INTO photos (id, snapshot_id, type, image_data, created_at) VALUES (?, ?, ?, ?, ?)",
                        (generate_id("photo"), snapshot_id, str(photo_type), image, now),
                    )
            created = self._get(snapshot_id)

        if created is None:
            raise SnapshotIntegrityError(f"Snapshot {snapshot_id} vanished after creation")
        logger.info("Created snapshot %s", snapshot_id)
        return created

    def update(
        self,
        snapshot_id: str,
        *,
        notes: str | None = None,
        front_image: str | None = None,
        top_image: str | None = None,
    ) -> Snapshot | None:
        """Apply the given changes; ``None`` fields are left alone.

        Returns ``None`` when the snapshot does not exist.
        """
        now = utc_timestamp()
        with self._lock:
            if self._get(snapshot_id) is None:
                return None

            with self._conn:
                if notes is not None:
                    self._conn.execute(
                        "UPDATE snapshots SET notes = ?, updated_at = ? WHERE id = ?",
                        (notes, now, snapshot_id),
                    )
                else:
                    self._conn.execute("UPDATE snapshots SET updated_at = ? WHERE id = ?", (now, snapshot_id))

                for photo_type, image in ((PhotoType.FRONT, front_image), (PhotoType.TOP, top_image)):
                    if image:
                        self._conn.execute(
                            "UPDATE photos SET image_data = ?, created_at = ? WHERE snapshot_id = ? AND type = ?",
                            (image, now, snapshot_id, str(photo_type)),
                        )
            return self._get(snapshot_id)

    def delete(self, snapshot_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted snapshot %s", snapshot_id)
        return deleted

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- Internal -----------------------------------------------------------

    def _get(self, snapshot_id: str) -> Snapshot | None:
        row = self._conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
        if row is None:
            return None
        return self._load(row)

    def _load(self, snapshot_row: sqlite3.Row) -> Snapshot:
        photo_rows = self._conn.execute(
            "SELECT * FROM photos WHERE snapshot_id = ?", (snapshot_row["id"],)
        ).fetchall()
        return _assemble(snapshot_row, photo_rows)
