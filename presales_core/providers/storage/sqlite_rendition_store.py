"""SQLite-backed PDF rendition status store.

One row per document version.  A regenerated rendition replaces the row
of its version.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from presales_core.interfaces.rendition_store import IRenditionStore
from presales_core.models.rendition import PdfRendition, PdfRenditionStatus
from presales_core.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/presales_core.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS pdf_renditions (
    version_id     TEXT PRIMARY KEY,
    status         TEXT NOT NULL,
    file_path      TEXT,
    file_size      INTEGER,
    error_message  TEXT,
    created_at     TEXT NOT NULL
);
"""

_UPSERT_SQL = """\
INSERT INTO pdf_renditions (version_id, status, file_path, file_size, error_message, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(version_id)
DO UPDATE SET status        = excluded.status,
              file_path     = excluded.file_path,
              file_size     = excluded.file_size,
              error_message = excluded.error_message,
              created_at    = excluded.created_at;
"""


class SQLiteRenditionStore(IRenditionStore):
    """PDF rendition records in SQLite."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_CREATE_TABLE_SQL)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot initialise rendition store: {exc}", provider_name="sqlite"
            ) from exc
        logger.info("rendition_store_initialized", path=str(self._db_path))

    async def save(self, rendition: PdfRendition) -> PdfRendition:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _UPSERT_SQL,
                    (
                        rendition.version_id,
                        rendition.status.value,
                        rendition.file_path,
                        rendition.file_size,
                        rendition.error_message,
                        rendition.created_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot save rendition status: {exc}", provider_name="sqlite"
            ) from exc
        return rendition

    async def get(self, version_id: str) -> PdfRendition | None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM pdf_renditions WHERE version_id = ?", (version_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot read rendition status: {exc}", provider_name="sqlite"
            ) from exc
        if row is None:
            return None
        return PdfRendition(
            version_id=row["version_id"],
            status=PdfRenditionStatus(row["status"]),
            file_path=row["file_path"],
            file_size=row["file_size"],
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
