"""Per-run ingestion report."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class DocumentError(BaseModel):
    """A failure attributed to a single document (or the orphan cleanup)."""

    message: str
    slug: str | None = None
    path: str | None = None
    error_type: str = "parse_error"


class IngestionReport(BaseModel):
    """Outcome of reconciling one content source.

    Created fresh for each run and filled in while the run progresses;
    once ``complete()`` has been called every mutator raises.
    """

    source_id: str
    dry_run: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    finished_at: datetime | None = None
    files_found: int = 0
    files_skipped: int = 0
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    errors: list[DocumentError] = Field(default_factory=list)
    source_error: str | None = None
    orphan_cleanup_skipped: str | None = None

    # ── Accumulation ─────────────────────────────────────────────

    def _check_open(self) -> None:
        if self.finished_at is not None:
            raise RuntimeError(f"Ingestion report for {self.source_id!r} is already complete")

    def add_created(self, slug: str) -> None:
        self._check_open()
        self.created.append(slug)

    def add_updated(self, slug: str) -> None:
        self._check_open()
        self.updated.append(slug)

    def add_unchanged(self, slug: str) -> None:
        self._check_open()
        self.unchanged.append(slug)

    def add_deleted(self, slugs: list[str]) -> None:
        self._check_open()
        self.deleted.extend(slugs)

    def add_error(
        self,
        message: str,
        *,
        slug: str | None = None,
        path: str | None = None,
        error_type: str = "parse_error",
    ) -> None:
        self._check_open()
        self.errors.append(
            DocumentError(message=message, slug=slug, path=path, error_type=error_type)
        )

    def fail_source(self, message: str) -> None:
        self._check_open()
        self.source_error = message

    def skip_orphan_cleanup(self, reason: str) -> None:
        self._check_open()
        self.orphan_cleanup_skipped = reason

    def complete(self) -> IngestionReport:
        """Seal the report; lists are sorted so reports compare deterministically."""
        self._check_open()
        for bucket in (self.created, self.updated, self.unchanged, self.deleted):
            bucket.sort()
        self.finished_at = datetime.now(tz=UTC)
        return self

    # ── Summary ──────────────────────────────────────────────────

    @property
    def succeeded(self) -> bool:
        return self.source_error is None

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    @property
    def unchanged_count(self) -> int:
        return len(self.unchanged)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def error_count(self) -> int:
        return len(self.errors) + (1 if self.source_error else 0)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def summary(self) -> str:
        if self.source_error:
            return f"{self.source_id}: source error: {self.source_error}"
        return (
            f"{self.source_id}: {self.files_found} found, "
            f"{self.created_count} created, {self.updated_count} updated, "
            f"{self.unchanged_count} unchanged, {self.deleted_count} deleted, "
            f"{len(self.errors)} errors"
        )
