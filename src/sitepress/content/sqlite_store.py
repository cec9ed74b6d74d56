"""SQLite content store.

One ``markdown_content`` table holds every record.  Reconciliation
reads only ``(slug, version_hash)`` pairs per source.  Selected with
``backend = "sqlite"`` in the ``[store]`` section.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sitepress.content.models import ContentRecord
from sitepress.content.store import ContentStore, StoreError

logger = logging.getLogger(__name__)

SQLITE_FILENAME = "sitepress-content.sqlite3"

_JSON_COLUMNS = (
    "tags",
    "links",
    "after_reading_this",
    "related_playbooks",
    "related_code",
    "related_docs",
)

_COLUMNS = (
    "id",
    "source_id",
    "slug",
    "category_id",
    "version_hash",
    "title",
    "body",
    "description",
    "author",
    "published_at",
    "keywords",
    "kind",
    "image",
    "category",
    *_JSON_COLUMNS,
    "created_at",
    "updated_at",
    "deleted_at",
)

# id and created_at survive an upsert of an existing row; updated_at is
# stamped separately so fresh inserts keep it NULL.
_UPDATE_COLUMNS = tuple(
    c for c in _COLUMNS if c not in {"id", "source_id", "slug", "created_at", "updated_at"}
)


def _ensure_schema(connection: sqlite3.Connection) -> None:
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS markdown_content (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL,
            slug TEXT NOT NULL,
            category_id TEXT,
            version_hash TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            author TEXT NOT NULL DEFAULT '',
            published_at TEXT NOT NULL,
            keywords TEXT NOT NULL DEFAULT '',
            kind TEXT NOT NULL,
            image TEXT,
            category TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            links TEXT NOT NULL DEFAULT '[]',
            after_reading_this TEXT NOT NULL DEFAULT '[]',
            related_playbooks TEXT NOT NULL DEFAULT '[]',
            related_code TEXT NOT NULL DEFAULT '[]',
            related_docs TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT,
            deleted_at TEXT,
            UNIQUE (source_id, slug)
        );

        CREATE INDEX IF NOT EXISTS idx_markdown_content_source_id
            ON markdown_content(source_id);
        """
    )


def _to_row(record: ContentRecord) -> tuple[Any, ...]:
    data = record.model_dump(mode="json")
    for column in _JSON_COLUMNS:
        data[column] = json.dumps(data[column], sort_keys=True)
    return tuple(data[column] for column in _COLUMNS)


def _from_row(row: sqlite3.Row) -> ContentRecord:
    data = dict(row)
    for column in _JSON_COLUMNS:
        data[column] = json.loads(data[column] or "[]")
    return ContentRecord.model_validate(data)


class SqliteContentStore(ContentStore):
    """SQLite-backed content store.

    Every mutation runs in its own transaction; ``UNIQUE(source_id, slug)``
    plus ``ON CONFLICT DO UPDATE`` gives one row per natural key.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        connection = self._connect()
        try:
            _ensure_schema(connection)
        finally:
            connection.close()
        logger.debug("Opened SQLite content store at %s", self._db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0)
        connection.row_factory = sqlite3.Row
        return connection

    def _execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> list[sqlite3.Row]:
        try:
            connection = self._connect()
            try:
                with connection:
                    return connection.execute(sql, params).fetchall()
            finally:
                connection.close()
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite store error ({self._db_path}): {exc}") from exc

    def upsert(self, record: ContentRecord) -> ContentRecord:
        now = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
        placeholders = ", ".join("?" for _ in _COLUMNS)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in _UPDATE_COLUMNS)
        rows = self._execute(
            f"""
            INSERT INTO markdown_content ({", ".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT (source_id, slug) DO UPDATE SET {assignments}, updated_at = ?
            RETURNING *
            """,
            (*_to_row(record), now),
        )
        return _from_row(rows[0])

    def delete_by_slugs(self, source_id: str, slugs: Iterable[str]) -> int:
        doomed = sorted(set(slugs))
        if not doomed:
            return 0
        placeholders = ", ".join("?" for _ in doomed)
        rows = self._execute(
            f"""
            DELETE FROM markdown_content
            WHERE source_id = ? AND slug IN ({placeholders})
            RETURNING id
            """,
            [source_id, *doomed],
        )
        return len(rows)

    def list_slugs_and_hashes(self, source_id: str) -> dict[str, str]:
        rows = self._execute(
            "SELECT slug, version_hash FROM markdown_content WHERE source_id = ?",
            (source_id,),
        )
        return {row["slug"]: row["version_hash"] for row in rows}

    def list_by_source(self, source_id: str) -> list[ContentRecord]:
        rows = self._execute(
            """
            SELECT * FROM markdown_content
            WHERE source_id = ?
            ORDER BY published_at DESC, slug DESC
            """,
            (source_id,),
        )
        return [_from_row(row) for row in rows]

    def get(self, source_id: str, slug: str) -> ContentRecord | None:
        rows = self._execute(
            "SELECT * FROM markdown_content WHERE source_id = ? AND slug = ?",
            (source_id, slug),
        )
        return _from_row(rows[0]) if rows else None

    def get_by_id(self, content_id: str) -> ContentRecord | None:
        rows = self._execute("SELECT * FROM markdown_content WHERE id = ?", (content_id,))
        return _from_row(rows[0]) if rows else None

    def source_ids(self) -> list[str]:
        rows = self._execute(
            "SELECT DISTINCT source_id FROM markdown_content ORDER BY source_id"
        )
        return [row["source_id"] for row in rows]
