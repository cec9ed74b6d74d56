"""Analytics aggregation stage."""

from __future__ import annotations

from typing import Any

from sitepress.analytics.aggregate import aggregate_metrics
from sitepress.pipeline.stages import PipelineContext


def aggregate_analytics(ctx: PipelineContext) -> dict[str, Any]:
    result = aggregate_metrics(
        ctx.store,
        ctx.analytics,
        ctx.config.enabled_sources(),
        now=ctx.now_fn(),
    )
    return {
        "events": result.events,
        "updated": result.updated,
        "unmatched": result.unmatched,
        "failed": result.failed,
    }
