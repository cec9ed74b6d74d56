"""Content store boundary and the JSON-backed implementation.

The reconciliation engine and every pipeline stage talk to the store
only through ContentStore.  JsonContentStore persists all records in a
single JSON file, loaded on init and rewritten atomically after every
mutation.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from sitepress.content.models import ContentRecord
from sitepress.core import _atomic_write

logger = logging.getLogger(__name__)

STORE_FILENAME = ".sitepress-content-store.json"

# Alias to avoid shadowing inside ContentStore subclasses
_list = list


class StoreError(Exception):
    """Raised when a store read or write fails."""


class ContentStore(ABC):
    """Persistence boundary for content records."""

    @abstractmethod
    def list_slugs_and_hashes(self, source_id: str) -> dict[str, str]:
        """Return ``{slug: version_hash}`` for every record of a source."""

    @abstractmethod
    def upsert(self, record: ContentRecord) -> ContentRecord:
        """Insert or fully replace the record at ``(source_id, slug)``.

        An existing row keeps its ``id`` and ``created_at``; everything
        else is replaced in one write.
        """

    @abstractmethod
    def delete_by_slugs(self, source_id: str, slugs: Iterable[str]) -> int:
        """Delete the given slugs of a source, returning the number removed."""

    @abstractmethod
    def list_by_source(self, source_id: str) -> _list[ContentRecord]:
        """All records of a source, newest publish date first."""

    @abstractmethod
    def get(self, source_id: str, slug: str) -> ContentRecord | None:
        """Return one record, or None."""

    @abstractmethod
    def source_ids(self) -> _list[str]:
        """Distinct source ids present in the store."""

    def list_published(
        self, source_id: str, now: datetime | None = None
    ) -> _list[ContentRecord]:
        """Records that are live: published in the past and not soft-deleted."""
        now = now or datetime.now(tz=UTC)
        return [r for r in self.list_by_source(source_id) if r.is_published(now)]

    def get_by_id(self, content_id: str) -> ContentRecord | None:
        for source_id in self.source_ids():
            for record in self.list_by_source(source_id):
                if record.id == content_id:
                    return record
        return None


class _StoreData(BaseModel):
    """Internal wrapper for JSON serialization."""

    records: _list[ContentRecord] = Field(default_factory=_list)


def _sort_newest_first(records: Iterable[ContentRecord]) -> _list[ContentRecord]:
    return sorted(records, key=lambda r: (r.published_at, r.slug), reverse=True)


class JsonContentStore(ContentStore):
    """JSON-backed content store.

    Loads the store file on init and saves after every mutation.  A
    re-entrant lock serializes writers, so two threads never interleave
    partial writes to the same record.
    """

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / STORE_FILENAME
        self._lock = threading.RLock()
        self._data = self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> _StoreData:
        if not self._path.exists():
            return _StoreData()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return _StoreData.model_validate(raw)
        except (json.JSONDecodeError, ValueError, KeyError):
            logger.warning("Corrupt content store at %s, starting fresh", self._path)
            return _StoreData()

    def _save(self) -> None:
        try:
            _atomic_write(self._path, self._data.model_dump_json(indent=2))
        except OSError as exc:
            raise StoreError(f"Failed to write content store {self._path}: {exc}") from exc

    def _find(self, source_id: str, slug: str) -> ContentRecord | None:
        for record in self._data.records:
            if record.source_id == source_id and record.slug == slug:
                return record
        return None

    # ── Write operations ─────────────────────────────────────────

    def upsert(self, record: ContentRecord) -> ContentRecord:
        with self._lock:
            existing = self._find(record.source_id, record.slug)
            now = datetime.now(tz=UTC)
            if existing is not None:
                record = record.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": now,
                    }
                )
            previous = self._data.records
            self._data.records = [
                r
                for r in previous
                if not (r.source_id == record.source_id and r.slug == record.slug)
            ]
            self._data.records.append(record)
            try:
                self._save()
            except StoreError:
                self._data.records = previous
                raise
            return record

    def delete_by_slugs(self, source_id: str, slugs: Iterable[str]) -> int:
        doomed = set(slugs)
        if not doomed:
            return 0
        with self._lock:
            previous = self._data.records
            kept = [
                r for r in previous if not (r.source_id == source_id and r.slug in doomed)
            ]
            removed = len(previous) - len(kept)
            if removed:
                self._data.records = kept
                try:
                    self._save()
                except StoreError:
                    self._data.records = previous
                    raise
            return removed

    # ── Read operations ──────────────────────────────────────────

    def list_slugs_and_hashes(self, source_id: str) -> dict[str, str]:
        with self._lock:
            return {
                r.slug: r.version_hash for r in self._data.records if r.source_id == source_id
            }

    def list_by_source(self, source_id: str) -> _list[ContentRecord]:
        with self._lock:
            return _sort_newest_first(
                r for r in self._data.records if r.source_id == source_id
            )

    def get(self, source_id: str, slug: str) -> ContentRecord | None:
        with self._lock:
            return self._find(source_id, slug)

    def source_ids(self) -> _list[str]:
        with self._lock:
            return sorted({r.source_id for r in self._data.records})

    def get_by_id(self, content_id: str) -> ContentRecord | None:
        with self._lock:
            for record in self._data.records:
                if record.id == content_id:
                    return record
            return None


def create_store(backend: str, state_dir: Path) -> ContentStore:
    """Create the content store for a configured backend name.

    Raises:
        ValueError: If the backend is unknown.
    """
    from sitepress.content.sqlite_store import SQLITE_FILENAME, SqliteContentStore

    if backend == "json":
        return JsonContentStore(state_dir)
    if backend == "sqlite":
        return SqliteContentStore(state_dir / SQLITE_FILENAME)
    raise ValueError(f"Unknown store backend: {backend!r}")
