"""Stage definitions, results, and the persistent stage ledger."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from sitepress.core import _atomic_write

if TYPE_CHECKING:
    from sitepress.analytics.store import JsonAnalyticsStore
    from sitepress.config import SitepressConfig, SourceConfig
    from sitepress.content.models import ContentRecord
    from sitepress.content.store import ContentStore
    from sitepress.ingest.engine import ReconciliationEngine
    from sitepress.render import TemplateRenderer

logger = logging.getLogger(__name__)

LEDGER_FILENAME = ".sitepress-stages.json"


class StageError(Exception):
    """Raised by a stage body to mark the invocation as failed.

    ``stats`` carries whatever the stage counted before giving up.
    """

    def __init__(self, message: str, stats: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.stats = dict(stats or {})


class StageStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageResult(BaseModel):
    """Outcome of one stage invocation."""

    stage: str
    status: StageStatus
    started_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    duration_ms: int = 0
    stats: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED


@dataclass
class PipelineContext:
    """Everything a stage body may read or write."""

    config: SitepressConfig
    store: ContentStore
    engine: ReconciliationEngine
    renderer: TemplateRenderer
    analytics: JsonAnalyticsStore
    now_fn: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))

    @property
    def output_dir(self) -> Path:
        return self.config.output_dir

    def published(self) -> list[tuple[SourceConfig, list[ContentRecord]]]:
        """Published records of every enabled source, in configuration order."""
        now = self.now_fn()
        return [
            (source, self.store.list_published(source.source_id, now))
            for source in self.config.enabled_sources()
        ]


StageFn = Callable[[PipelineContext], dict[str, Any]]


@dataclass(frozen=True)
class StageDefinition:
    """One named, independently schedulable unit of work.

    ``run`` returns the stage's stats and raises to fail.  A composite
    stage has no body and runs ``members`` in order instead.
    """

    name: str
    description: str
    run: StageFn | None = None
    depends_on: tuple[str, ...] = ()
    members: tuple[str, ...] = ()
    cadence: str = "0 0 * * * *"
    run_on_startup: bool = False

    @property
    def is_composite(self) -> bool:
        return bool(self.members)


class _LedgerEntry(BaseModel):
    status: StageStatus
    finished_at: datetime
    duration_ms: int = 0
    error: str | None = None
    last_success_at: datetime | None = None


class StageLedger:
    """Last known result per stage, persisted in the state directory.

    Dependency gating reads ``has_succeeded`` so "completed at least
    once" survives process restarts.
    """

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / LEDGER_FILENAME
        self._lock = threading.Lock()
        self._entries = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, _LedgerEntry]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return {name: _LedgerEntry.model_validate(entry) for name, entry in raw.items()}
        except (json.JSONDecodeError, ValueError, AttributeError):
            logger.warning("Corrupt stage ledger at %s, starting fresh", self._path)
            return {}

    def _save(self) -> None:
        payload = {name: entry.model_dump(mode="json") for name, entry in self._entries.items()}
        try:
            _atomic_write(self._path, json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            logger.warning("Failed to write stage ledger %s: %s", self._path, exc)

    def record(self, result: StageResult) -> None:
        if result.status == StageStatus.SKIPPED:
            return
        finished_at = datetime.now(tz=UTC)
        with self._lock:
            previous = self._entries.get(result.stage)
            last_success = previous.last_success_at if previous else None
            if result.succeeded:
                last_success = finished_at
            self._entries[result.stage] = _LedgerEntry(
                status=result.status,
                finished_at=finished_at,
                duration_ms=result.duration_ms,
                error=result.error,
                last_success_at=last_success,
            )
            self._save()

    def has_succeeded(self, stage: str) -> bool:
        with self._lock:
            entry = self._entries.get(stage)
            return entry is not None and entry.last_success_at is not None

    def last_status(self, stage: str) -> StageStatus | None:
        with self._lock:
            entry = self._entries.get(stage)
            return entry.status if entry else None

    def last_success_at(self, stage: str) -> datetime | None:
        with self._lock:
            entry = self._entries.get(stage)
            return entry.last_success_at if entry else None
