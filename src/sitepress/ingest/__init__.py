"""Ingestion: reconcile content sources into the content store."""

from sitepress.ingest.engine import ReconciliationEngine, ReconciliationPlan
from sitepress.ingest.report import DocumentError, IngestionReport

__all__ = [
    "DocumentError",
    "IngestionReport",
    "ReconciliationEngine",
    "ReconciliationPlan",
]
