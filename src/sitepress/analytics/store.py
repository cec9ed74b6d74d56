"""JSON-backed storage for engagement events and aggregated metrics."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from sitepress.analytics.models import ContentMetrics, EngagementEvent
from sitepress.content.store import StoreError
from sitepress.core import _atomic_write

logger = logging.getLogger(__name__)

ANALYTICS_FILENAME = ".sitepress-analytics.json"


class _AnalyticsData(BaseModel):
    events: list[EngagementEvent] = Field(default_factory=list)
    metrics: dict[str, ContentMetrics] = Field(default_factory=dict)


class JsonAnalyticsStore:
    """Events are append-only; metrics rows are upserted by content id."""

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / ANALYTICS_FILENAME
        self._lock = threading.RLock()
        self._data = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> _AnalyticsData:
        if not self._path.exists():
            return _AnalyticsData()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return _AnalyticsData.model_validate(raw)
        except (json.JSONDecodeError, ValueError, KeyError):
            logger.warning("Corrupt analytics store at %s, starting fresh", self._path)
            return _AnalyticsData()

    def _save(self) -> None:
        try:
            _atomic_write(self._path, self._data.model_dump_json(indent=2))
        except OSError as exc:
            raise StoreError(f"Failed to write analytics store {self._path}: {exc}") from exc

    def record_event(self, event: EngagementEvent) -> EngagementEvent:
        with self._lock:
            self._data.events.append(event)
            try:
                self._save()
            except StoreError:
                self._data.events.pop()
                raise
            return event

    def list_events(self) -> list[EngagementEvent]:
        with self._lock:
            return list(self._data.events)

    def upsert_metrics(self, metrics: ContentMetrics) -> ContentMetrics:
        """Insert or replace the row for ``metrics.content_id``.

        An existing row keeps its ``id`` and ``created_at``.
        """
        with self._lock:
            existing = self._data.metrics.get(metrics.content_id)
            if existing is not None:
                metrics = metrics.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": datetime.now(tz=UTC),
                    }
                )
            self._data.metrics[metrics.content_id] = metrics
            try:
                self._save()
            except StoreError:
                if existing is None:
                    del self._data.metrics[metrics.content_id]
                else:
                    self._data.metrics[metrics.content_id] = existing
                raise
            return metrics

    def get_metrics(self, content_id: str) -> ContentMetrics | None:
        with self._lock:
            return self._data.metrics.get(content_id)

    def list_metrics(self) -> list[ContentMetrics]:
        with self._lock:
            return sorted(self._data.metrics.values(), key=lambda m: -m.total_views)
