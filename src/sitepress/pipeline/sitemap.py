"""sitemap.xml generation from published content records."""

from __future__ import annotations

import logging
from typing import Any
from xml.sax.saxutils import escape

from sitepress.config import SiteConfig, SourceConfig
from sitepress.content.models import ContentRecord
from sitepress.core import _atomic_write
from sitepress.pipeline.stages import PipelineContext

logger = logging.getLogger(__name__)

SITEMAP_FILENAME = "sitemap.xml"
SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"


def record_url(base_url: str, source: SourceConfig, slug: str) -> str:
    return f"{base_url}{source.url_prefix}/{slug}"


def _url_entry(loc: str, lastmod: str | None, changefreq: str, priority: float) -> list[str]:
    lines = ["  <url>", f"    <loc>{escape(loc)}</loc>"]
    if lastmod:
        lines.append(f"    <lastmod>{lastmod}</lastmod>")
    lines.append(f"    <changefreq>{escape(changefreq)}</changefreq>")
    lines.append(f"    <priority>{priority:.1f}</priority>")
    lines.append("  </url>")
    return lines


def build_sitemap(
    site: SiteConfig,
    published: list[tuple[SourceConfig, list[ContentRecord]]],
) -> str:
    """Render the full sitemap document.

    Entries are sorted by ``loc`` so the output depends only on the
    records, never on store iteration order.  Sources without a
    ``url_prefix`` have no public pages and are left out.  When two
    records map to the same URL the first one listed is kept.
    """
    entries: dict[str, tuple[str | None, str, float]] = {}
    newest: str | None = None

    for source, records in published:
        if not source.url_prefix:
            continue
        for record in records:
            lastmod = record.last_modified.date().isoformat()
            loc = record_url(site.base_url, source, record.slug)
            if loc in entries:
                logger.warning(
                    "Duplicate sitemap URL %s from source %s, keeping the first",
                    loc,
                    source.source_id,
                )
                continue
            entries[loc] = (lastmod, source.changefreq, source.priority)
            if newest is None or lastmod > newest:
                newest = lastmod

    entries.setdefault(f"{site.base_url}/", (newest, "daily", 1.0))

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<urlset xmlns="{SITEMAP_NAMESPACE}">',
    ]
    for loc in sorted(entries):
        lastmod, changefreq, priority = entries[loc]
        lines.extend(_url_entry(loc, lastmod, changefreq, priority))
    lines.append("</urlset>")
    return "\n".join(lines) + "\n"


def generate_sitemap(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: rewrite ``sitemap.xml`` in the output directory."""
    published = ctx.published()
    content = build_sitemap(ctx.config.site, published)
    path = ctx.output_dir / SITEMAP_FILENAME
    _atomic_write(path, content)

    url_count = content.count("<url>")
    logger.info("Wrote %s with %d URLs", path, url_count)
    return {"urls": url_count, "path": str(path)}
