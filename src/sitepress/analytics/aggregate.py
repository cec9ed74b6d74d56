"""Aggregate engagement events into per-content performance metrics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import urlparse

from sitepress.analytics.models import ContentMetrics, EngagementEvent, TrendDirection
from sitepress.analytics.store import JsonAnalyticsStore
from sitepress.config import SourceConfig
from sitepress.content.models import ContentRecord
from sitepress.content.store import ContentStore, StoreError

logger = logging.getLogger(__name__)

TREND_UP_RATIO = 1.2
TREND_DOWN_RATIO = 0.8


def trend_direction(views_7d: int, views_30d: int) -> TrendDirection:
    """Compare the last week with the weekly average of the 23 days before it."""
    avg_previous_week = (views_30d - views_7d) / 3.0
    if views_7d > avg_previous_week * TREND_UP_RATIO:
        return TrendDirection.UP
    if views_7d < avg_previous_week * TREND_DOWN_RATIO:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def page_slug(page_url: str, source: SourceConfig) -> str | None:
    """Map a page URL onto a slug of ``source``, or None if it is not one."""
    path = urlparse(page_url).path.rstrip("/")
    prefix = f"{source.url_prefix}/"
    if not path.startswith(prefix):
        return None
    slug = path[len(prefix) :]
    if not slug or "/" in slug:
        return None
    return slug


def resolve_record(
    page_url: str, sources: list[SourceConfig], store: ContentStore
) -> ContentRecord | None:
    # Longest prefix first so "/docs/api" is not claimed by a "/" source.
    for source in sorted(sources, key=lambda s: len(s.url_prefix), reverse=True):
        slug = page_slug(page_url, source)
        if slug is None:
            continue
        record = store.get(source.source_id, slug)
        if record is not None:
            return record
    return None


@dataclass
class _Bucket:
    record: ContentRecord
    events: list[EngagementEvent] = field(default_factory=list)


def compute_metrics(
    record: ContentRecord, events: list[EngagementEvent], now: datetime
) -> ContentMetrics:
    viewed = [e for e in events if e.time_on_page_ms > 0]
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)
    views_7d = sum(1 for e in viewed if e.created_at >= week_ago)
    views_30d = sum(1 for e in viewed if e.created_at >= month_ago)
    avg_seconds = sum(e.time_on_page_ms for e in events) / len(events) / 1000.0 if events else 0.0
    return ContentMetrics(
        content_id=record.id,
        source_id=record.source_id,
        slug=record.slug,
        total_views=len(viewed),
        unique_visitors=len({e.session_id for e in events}),
        avg_time_on_page_seconds=round(avg_seconds, 3),
        views_last_7_days=views_7d,
        views_last_30_days=views_30d,
        trend_direction=trend_direction(views_7d, views_30d),
    )


@dataclass
class AggregationResult:
    events: int = 0
    unmatched: int = 0
    updated: int = 0
    failed: int = 0


def aggregate_metrics(
    store: ContentStore,
    analytics: JsonAnalyticsStore,
    sources: list[SourceConfig],
    *,
    now: datetime | None = None,
) -> AggregationResult:
    """Recompute and upsert metrics for every content record with events.

    A row that fails to save is counted and skipped.
    """
    now = now or datetime.now(tz=UTC)
    result = AggregationResult()
    buckets: dict[str, _Bucket] = {}
    resolved: dict[str, ContentRecord | None] = {}

    for event in analytics.list_events():
        result.events += 1
        if event.page_url not in resolved:
            resolved[event.page_url] = resolve_record(event.page_url, sources, store)
        record = resolved[event.page_url]
        if record is None:
            result.unmatched += 1
            continue
        buckets.setdefault(record.id, _Bucket(record=record)).events.append(event)

    for content_id in sorted(buckets):
        bucket = buckets[content_id]
        metrics = compute_metrics(bucket.record, bucket.events, now)
        try:
            analytics.upsert_metrics(metrics)
        except StoreError as exc:
            logger.warning("Failed to update content metrics for %s: %s", content_id, exc)
            result.failed += 1
            continue
        logger.debug("Updated content metrics for %s: %d views", content_id, metrics.total_views)
        result.updated += 1

    logger.info(
        "Aggregated %d event(s) into %d metric row(s), %d unmatched, %d failed",
        result.events,
        result.updated,
        result.unmatched,
        result.failed,
    )
    return result
