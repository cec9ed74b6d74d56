"""Engagement analytics: event storage and metric aggregation."""

from sitepress.analytics.aggregate import (
    AggregationResult,
    aggregate_metrics,
    compute_metrics,
    trend_direction,
)
from sitepress.analytics.models import ContentMetrics, EngagementEvent, TrendDirection
from sitepress.analytics.store import JsonAnalyticsStore

__all__ = [
    "AggregationResult",
    "ContentMetrics",
    "EngagementEvent",
    "JsonAnalyticsStore",
    "TrendDirection",
    "aggregate_metrics",
    "compute_metrics",
    "trend_direction",
]
