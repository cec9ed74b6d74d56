"""feed.xml: an RSS 2.0 feed of the newest published content."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import Any
from xml.sax.saxutils import escape

from sitepress.config import SiteConfig, SourceConfig
from sitepress.content.models import ContentRecord
from sitepress.core import _atomic_write
from sitepress.pipeline.sitemap import record_url
from sitepress.pipeline.stages import PipelineContext

logger = logging.getLogger(__name__)

FEED_FILENAME = "feed.xml"
FEED_ITEM_LIMIT = 20


def _rfc822(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return format_datetime(value.astimezone(UTC), usegmt=True)


def _item(site: SiteConfig, source: SourceConfig, record: ContentRecord) -> list[str]:
    url = escape(record_url(site.base_url, source, record.slug))
    lines = [
        "    <item>",
        f"      <title>{escape(record.title)}</title>",
        f"      <link>{url}</link>",
        f'      <guid isPermaLink="true">{url}</guid>',
        f"      <pubDate>{_rfc822(record.published_at)}</pubDate>",
    ]
    if record.description:
        lines.append(f"      <description>{escape(record.description)}</description>")
    if record.author:
        lines.append(f"      <dc:creator>{escape(record.author)}</dc:creator>")
    if record.category:
        lines.append(f"      <category>{escape(record.category)}</category>")
    lines.append("    </item>")
    return lines


def feed_items(
    published: list[tuple[SourceConfig, list[ContentRecord]]],
    limit: int = FEED_ITEM_LIMIT,
) -> list[tuple[SourceConfig, ContentRecord]]:
    """The newest ``limit`` records across every source with a ``url_prefix``."""
    items = [
        (source, record)
        for source, records in published
        if source.url_prefix
        for record in records
    ]
    items.sort(key=lambda pair: (pair[1].published_at, pair[1].slug), reverse=True)
    return items[:limit]


def build_feed(
    site: SiteConfig,
    published: list[tuple[SourceConfig, list[ContentRecord]]],
    limit: int = FEED_ITEM_LIMIT,
) -> str:
    items = feed_items(published, limit)
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">',
        "  <channel>",
        f"    <title>{escape(site.name)}</title>",
        f"    <link>{escape(site.base_url)}/</link>",
        f"    <description>{escape(site.description or site.name)}</description>",
    ]
    if items:
        newest = items[0][1].published_at
        lines.append(f"    <lastBuildDate>{_rfc822(newest)}</lastBuildDate>")
    for source, record in items:
        lines.extend(_item(site, source, record))
    lines.extend(["  </channel>", "</rss>"])
    return "\n".join(lines) + "\n"


def generate_feed(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: rewrite ``feed.xml``."""
    content = build_feed(ctx.config.site, ctx.published())
    path = ctx.output_dir / FEED_FILENAME
    _atomic_write(path, content)

    items = content.count("<item>")
    logger.info("Wrote %s with %d items", path, items)
    return {"items": items, "path": str(path)}
