"""SQLite-backed case-study validation result store.

Every validation run is a new row; nothing is updated in place.  The
"latest" result of a version is the newest ``created_at``, with the
autoincrement ``seq`` breaking ties between rows written in the same
instant.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from presales_core.interfaces.validation_result_store import IValidationResultStore
from presales_core.models.case_study import ValidationIssue, ValidationResult
from presales_core.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/presales_core.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS validation_results (
    seq                   INTEGER PRIMARY KEY AUTOINCREMENT,
    id                    TEXT    NOT NULL UNIQUE,
    document_version_id   TEXT    NOT NULL,
    score                 REAL    NOT NULL,
    acceptance_threshold  REAL    NOT NULL,
    issues_json           TEXT    NOT NULL,
    prompt_version        TEXT,
    created_at            TEXT    NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_validation_version "
    "ON validation_results(document_version_id, created_at);",
]

_INSERT_SQL = """\
INSERT INTO validation_results
    (id, document_version_id, score, acceptance_threshold, issues_json, prompt_version, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_COLUMNS = (
    "SELECT id, document_version_id, score, acceptance_threshold, issues_json, prompt_version, "
    "created_at "
    "FROM validation_results WHERE document_version_id = ? "
    "ORDER BY created_at DESC, seq DESC"
)


class SQLiteValidationResultStore(IValidationResultStore):
    """Append-only validation results in SQLite."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_CREATE_TABLE_SQL)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot initialise validation store: {exc}", provider_name="sqlite"
            ) from exc
        logger.info("validation_store_initialized", path=str(self._db_path))

    async def save(self, result: ValidationResult) -> ValidationResult:
        issues_json = json.dumps([issue.model_dump(mode="json") for issue in result.issues])
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _INSERT_SQL,
                    (
                        result.id,
                        result.document_version_id,
                        result.score,
                        result.acceptance_threshold,
                        issues_json,
                        result.prompt_version,
                        result.created_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot save validation result: {exc}", provider_name="sqlite"
            ) from exc
        logger.info(
            "validation_result_saved",
            result_id=result.id,
            version_id=result.document_version_id,
            score=result.score,
            issues=len(result.issues),
        )
        return result

    async def get_latest(self, document_version_id: str) -> ValidationResult | None:
        rows = await self._fetch(_SELECT_COLUMNS + " LIMIT 1", document_version_id)
        return self._row_to_result(rows[0]) if rows else None

    async def list_for_version(self, document_version_id: str) -> list[ValidationResult]:
        rows = await self._fetch(_SELECT_COLUMNS, document_version_id)
        return [self._row_to_result(r) for r in rows]

    async def _fetch(self, sql: str, document_version_id: str) -> list[aiosqlite.Row]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, (document_version_id,))
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Cannot read validation results: {exc}", provider_name="sqlite"
            ) from exc

    @staticmethod
    def _row_to_result(row: aiosqlite.Row) -> ValidationResult:
        return ValidationResult(
            id=row["id"],
            document_version_id=row["document_version_id"],
            score=row["score"],
            acceptance_threshold=row["acceptance_threshold"],
            issues=tuple(ValidationIssue(**i) for i in json.loads(row["issues_json"])),
            prompt_version=row["prompt_version"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
