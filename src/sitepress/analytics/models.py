"""Analytics data types: raw engagement events and aggregated metrics."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class TrendDirection(StrEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class EngagementEvent(BaseModel):
    """One page view as reported by the site's client."""

    id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex}")
    page_url: str
    session_id: str
    time_on_page_ms: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class ContentMetrics(BaseModel):
    """Aggregated performance of one content record, keyed by ``content_id``."""

    id: str = Field(default_factory=lambda: f"cpm_{uuid.uuid4().hex}")
    content_id: str
    source_id: str = ""
    slug: str = ""
    total_views: int = 0
    unique_visitors: int = 0
    avg_time_on_page_seconds: float = 0.0
    views_last_7_days: int = 0
    views_last_30_days: int = 0
    trend_direction: TrendDirection = TrendDirection.STABLE
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
