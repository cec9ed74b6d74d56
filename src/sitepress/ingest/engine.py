"""Reconciliation engine: bring a source's stored records in line with its files.

One pass enumerates the source, fingerprints every document, classifies
each slug as create / update / unchanged / delete against the stored
``(slug, version_hash)`` pairs, and applies only the writes that are
needed.  Deletion of orphans is gated on the enumeration having fully
succeeded, so a failed or partial scan never removes content.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from sitepress.config import SitepressConfig, SourceConfig
from sitepress.content.fingerprint import fingerprint
from sitepress.content.models import ContentRecord, SourceDocument
from sitepress.content.store import ContentStore, StoreError
from sitepress.ingest.report import IngestionReport
from sitepress.sources import EnumerationResult, SourceEnumerationError, enumerate_source

logger = logging.getLogger(__name__)

EnumerateFn = Callable[..., EnumerationResult]


@dataclass
class ReconciliationPlan:
    """Classification of one enumeration against the stored state."""

    source_id: str
    creates: list[tuple[SourceDocument, str]] = field(default_factory=list)
    updates: list[tuple[SourceDocument, str]] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    delete_blocked_reason: str | None = None


class ReconciliationEngine:
    """Reconciles configured content sources into a ContentStore.

    Reconciling two different sources concurrently is safe; calls for the
    same source are serialized by a per-source lock.
    """

    def __init__(
        self,
        store: ContentStore,
        sources: list[SourceConfig],
        *,
        max_workers: int = 4,
        delete_orphans: bool = True,
        extensions: list[str] | None = None,
        enumerate_fn: EnumerateFn = enumerate_source,
    ) -> None:
        self._store = store
        self._sources = {s.source_id: s for s in sources}
        self._max_workers = max(1, max_workers)
        self._delete_orphans = delete_orphans
        self._extensions = extensions
        self._enumerate = enumerate_fn
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: SitepressConfig, store: ContentStore) -> ReconciliationEngine:
        return cls(
            store,
            config.sources,
            max_workers=config.ingestion.max_workers,
            delete_orphans=config.ingestion.delete_orphans,
            extensions=config.ingestion.extensions,
        )

    @property
    def source_ids(self) -> list[str]:
        return [s.source_id for s in self._sources.values() if s.enabled]

    def _source_lock(self, source_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(source_id, threading.Lock())

    # ── Public API ───────────────────────────────────────────────

    def reconcile(self, source_id: str, *, dry_run: bool = False) -> IngestionReport:
        """Reconcile one source and return its report.

        Never raises for source or document failures; those are recorded
        on the report instead.
        """
        with self._source_lock(source_id):
            report = IngestionReport(source_id=source_id, dry_run=dry_run)
            self._reconcile(source_id, report, dry_run=dry_run)
            report.complete()

        if report.source_error:
            logger.error("Source ingestion failed: %s", report.summary())
        else:
            for error in report.errors:
                logger.warning(
                    "Ingestion warning in %s (%s): %s",
                    source_id,
                    error.path or error.slug,
                    error.message,
                )
            logger.info("Source ingested: %s", report.summary())
        return report

    def reconcile_all(self, *, dry_run: bool = False) -> list[IngestionReport]:
        """Reconcile every enabled source, in configuration order."""
        return [self.reconcile(source_id, dry_run=dry_run) for source_id in self.source_ids]

    def plan(self, source_id: str) -> IngestionReport:
        """Classify a source without writing anything."""
        return self.reconcile(source_id, dry_run=True)

    # ── Internals ────────────────────────────────────────────────

    def _reconcile(self, source_id: str, report: IngestionReport, *, dry_run: bool) -> None:
        source = self._sources.get(source_id)
        if source is None:
            report.fail_source(f"Unknown content source: {source_id!r}")
            return
        if not source.enabled:
            report.fail_source(f"Content source {source_id!r} is disabled")
            return

        # 1. Enumerate.  Any failure here aborts before the store is touched.
        try:
            enumeration = self._enumerate(source, extensions=self._extensions)
        except SourceEnumerationError as exc:
            report.fail_source(str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected error enumerating source %s", source_id)
            report.fail_source(f"Failed to enumerate source {source_id!r}: {exc}")
            return

        report.files_found = enumeration.files_found
        report.files_skipped = len(enumeration.skipped)
        for failure in enumeration.failures:
            report.add_error(
                f"Failed to ingest {failure.path}: {failure.message}",
                path=failure.path,
                error_type=failure.error_type,
            )

        # 2. Stored state.
        try:
            stored = self._store.list_slugs_and_hashes(source_id)
        except StoreError as exc:
            report.fail_source(f"Failed to read stored records for {source_id!r}: {exc}")
            return

        # 3-4. Classify.
        plan = self._classify(
            source_id, enumeration, stored, report, category_id=source.category_id or None
        )

        if dry_run:
            self._record_plan(plan, report)
            return

        # 5. Apply creates/updates per document, then orphan deletes.
        for document, version_hash in plan.creates:
            if self._write(source, document, version_hash, report):
                report.add_created(document.slug)
        for document, version_hash in plan.updates:
            if self._write(source, document, version_hash, report):
                report.add_updated(document.slug)
        for slug in plan.unchanged:
            report.add_unchanged(slug)

        self._apply_deletes(plan, report)

    def _fingerprint_all(
        self, documents: list[SourceDocument], category_id: str | None
    ) -> list[tuple[SourceDocument, str | None, str | None]]:
        def _one(document: SourceDocument) -> tuple[SourceDocument, str | None, str | None]:
            try:
                return document, fingerprint(document, category_id=category_id), None
            except Exception as exc:
                return document, None, str(exc)

        if self._max_workers == 1 or len(documents) < 2:
            return [_one(d) for d in documents]
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            return list(pool.map(_one, documents))

    def _classify(
        self,
        source_id: str,
        enumeration: EnumerationResult,
        stored: dict[str, str],
        report: IngestionReport,
        *,
        category_id: str | None = None,
    ) -> ReconciliationPlan:
        plan = ReconciliationPlan(source_id=source_id)
        seen: dict[str, str] = {}

        for document, version_hash, error in self._fingerprint_all(
            enumeration.documents, category_id
        ):
            if document.slug in seen:
                report.add_error(
                    f"Duplicate slug {document.slug!r} in {document.file_path} "
                    f"(already defined by {seen[document.slug]})",
                    slug=document.slug,
                    path=document.file_path,
                    error_type="duplicate_slug",
                )
                continue
            seen[document.slug] = document.file_path

            if version_hash is None:
                report.add_error(
                    f"Failed to fingerprint {document.file_path}: {error}",
                    slug=document.slug,
                    path=document.file_path,
                    error_type="fingerprint_error",
                )
                continue

            existing_hash = stored.get(document.slug)
            if existing_hash is None:
                plan.creates.append((document, version_hash))
            elif existing_hash != version_hash:
                plan.updates.append((document, version_hash))
            else:
                plan.unchanged.append(document.slug)

        plan.deletes = sorted(set(stored) - set(seen))

        if not plan.deletes:
            return plan
        if not self._delete_orphans:
            plan.delete_blocked_reason = "orphan cleanup disabled by configuration"
        elif enumeration.failures:
            plan.delete_blocked_reason = (
                f"{len(enumeration.failures)} document(s) failed to parse; "
                "orphans are only removed after a clean scan"
            )
        return plan

    def _record_plan(self, plan: ReconciliationPlan, report: IngestionReport) -> None:
        for document, _ in plan.creates:
            report.add_created(document.slug)
        for document, _ in plan.updates:
            report.add_updated(document.slug)
        for slug in plan.unchanged:
            report.add_unchanged(slug)
        if plan.delete_blocked_reason:
            report.skip_orphan_cleanup(plan.delete_blocked_reason)
        else:
            report.add_deleted(plan.deletes)

    def _write(
        self,
        source: SourceConfig,
        document: SourceDocument,
        version_hash: str,
        report: IngestionReport,
    ) -> bool:
        try:
            record = ContentRecord.from_document(
                document,
                source_id=source.source_id,
                version_hash=version_hash,
                category_id=source.category_id or None,
            )
            self._store.upsert(record)
        except StoreError as exc:
            report.add_error(
                f"Failed to store {document.slug}: {exc}",
                slug=document.slug,
                path=document.file_path,
                error_type="store_error",
            )
            return False
        except Exception as exc:
            logger.warning("Failed to ingest %s", document.file_path, exc_info=True)
            report.add_error(
                f"Failed to ingest {document.file_path}: {exc}",
                slug=document.slug,
                path=document.file_path,
                error_type="ingest_error",
            )
            return False
        return True

    def _apply_deletes(self, plan: ReconciliationPlan, report: IngestionReport) -> None:
        if not plan.deletes:
            return
        if plan.delete_blocked_reason:
            logger.warning(
                "Skipping orphan cleanup for %s (%d orphan(s)): %s",
                plan.source_id,
                len(plan.deletes),
                plan.delete_blocked_reason,
            )
            report.skip_orphan_cleanup(plan.delete_blocked_reason)
            return
        try:
            removed = self._store.delete_by_slugs(plan.source_id, plan.deletes)
        except StoreError as exc:
            report.add_error(
                f"Failed to delete orphaned slugs for source {plan.source_id}: {exc}",
                error_type="store_error",
            )
            return
        report.add_deleted(plan.deletes)
        logger.info(
            "Deleted %d orphaned content record(s) from %s", removed, plan.source_id
        )
