"""Ingestion stage: reconcile every enabled source into the store."""

from __future__ import annotations

import logging
from typing import Any

from sitepress.pipeline.stages import PipelineContext, StageError

logger = logging.getLogger(__name__)


def ingest_sources(ctx: PipelineContext) -> dict[str, Any]:
    """Run one reconciliation pass per enabled source.

    Per-document errors are counted; only a source-level failure fails
    the stage.  Every source is attempted either way.
    """
    reports = ctx.engine.reconcile_all()
    stats: dict[str, Any] = {
        "sources": len(reports),
        "files_found": sum(r.files_found for r in reports),
        "created": sum(r.created_count for r in reports),
        "updated": sum(r.updated_count for r in reports),
        "unchanged": sum(r.unchanged_count for r in reports),
        "deleted": sum(r.deleted_count for r in reports),
        "errors": sum(len(r.errors) for r in reports),
    }

    failed = [r for r in reports if not r.succeeded]
    if failed:
        details = "; ".join(f"{r.source_id}: {r.source_error}" for r in failed)
        raise StageError(f"{len(failed)} source(s) failed to ingest: {details}", stats)
    return stats
