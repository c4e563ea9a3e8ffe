"""SQLite-backed indexing status store.

Two small tables: the last successfully completed ingestion stage per
version, and the indexed flag per document.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

from presales_core.interfaces.document_status_store import IDocumentStatusStore
from presales_core.models.pipeline import IngestionStage
from presales_core.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/presales_core.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS version_status (
    version_id            TEXT PRIMARY KEY,
    document_id           TEXT NOT NULL,
    last_completed_stage  TEXT NOT NULL,
    updated_at            TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_status (
    document_id  TEXT PRIMARY KEY,
    indexed      INTEGER NOT NULL DEFAULT 0,
    updated_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
""",
]

_UPSERT_STAGE_SQL = """\
INSERT INTO version_status (version_id, document_id, last_completed_stage)
VALUES (?, ?, ?)
ON CONFLICT(version_id)
DO UPDATE SET last_completed_stage = excluded.last_completed_stage,
              document_id          = excluded.document_id,
              updated_at           = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_UPSERT_INDEXED_SQL = """\
INSERT INTO document_status (document_id, indexed)
VALUES (?, ?)
ON CONFLICT(document_id)
DO UPDATE SET indexed    = excluded.indexed,
              updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""


class SQLiteDocumentStatusStore(IDocumentStatusStore):
    """Indexing status in SQLite."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            await db.commit()
        logger.info("status_store_initialized", path=str(self._db_path))

    async def record_stage(
        self, document_id: str, version_id: str, stage: IngestionStage
    ) -> None:
        await self._write(_UPSERT_STAGE_SQL, (version_id, document_id, stage.value))

    async def get_last_completed_stage(self, version_id: str) -> IngestionStage | None:
        row = await self._read_one(
            "SELECT last_completed_stage FROM version_status WHERE version_id = ?",
            (version_id,),
        )
        return IngestionStage(row[0]) if row else None

    async def set_indexed(self, document_id: str, indexed: bool) -> None:
        await self._write(_UPSERT_INDEXED_SQL, (document_id, int(indexed)))
        logger.info("document_indexed_flag_set", document_id=document_id, indexed=indexed)

    async def is_indexed(self, document_id: str) -> bool:
        row = await self._read_one(
            "SELECT indexed FROM document_status WHERE document_id = ?", (document_id,)
        )
        return bool(row[0]) if row else False

    async def _write(self, sql: str, params: tuple) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(sql, params)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot write indexing status: {exc}", provider_name="sqlite"
            ) from exc

    async def _read_one(self, sql: str, params: tuple) -> tuple | None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(sql, params)
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot read indexing status: {exc}", provider_name="sqlite"
            ) from exc
        return tuple(row) if row else None
