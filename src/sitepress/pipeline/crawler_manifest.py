"""llms.txt: the crawler-facing manifest of published content.

Layout::

    # <site name>

    > <site description>

    ## Quick Links
    - Homepage: <base_url>
    ...

    ## <source title>

    <source description>

    - [Title](url): description
    ...

    ## Resources
    - Sitemap: <base_url>/sitemap.xml
"""

from __future__ import annotations

import logging
from typing import Any

from sitepress.config import SiteConfig, SourceConfig
from sitepress.content.models import ContentRecord
from sitepress.core import _atomic_write
from sitepress.pipeline.sitemap import record_url
from sitepress.pipeline.stages import PipelineContext

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "llms.txt"


def _entry(site: SiteConfig, source: SourceConfig, record: ContentRecord) -> str:
    url = record_url(site.base_url, source, record.slug)
    line = f"- [{record.title}]({url})"
    if record.description:
        line += f": {record.description}"
    return line


def build_manifest(
    site: SiteConfig,
    published: list[tuple[SourceConfig, list[ContentRecord]]],
) -> str:
    """Render llms.txt from the published records of each source.

    ``published`` lists are expected newest first, as the store returns
    them; a source ``limit`` keeps only the newest entries.  Sources
    without a ``url_prefix`` have no public pages and are left out.
    """
    lines = [f"# {site.name}", ""]
    if site.description:
        lines.extend([f"> {site.description}", ""])

    lines.extend(["## Quick Links", "", f"- Homepage: {site.base_url}"])
    for label, target in site.quick_links.items():
        url = target if target.startswith(("http://", "https://")) else f"{site.base_url}{target}"
        lines.append(f"- {label}: {url}")
    lines.append("")

    for source, records in published:
        if not source.url_prefix:
            continue
        selected = records[: source.limit] if source.limit else records
        lines.extend([f"## {source.title or source.source_id}", ""])
        if source.description:
            lines.extend([source.description, ""])
        if not selected:
            continue
        for record in sorted(selected, key=lambda r: (r.title, r.slug)):
            lines.append(_entry(site, source, record))
        lines.append("")

    lines.extend(["## Resources", "", f"- Sitemap: {site.base_url}/sitemap.xml"])
    return "\n".join(lines) + "\n"


def generate_manifest(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: rewrite ``llms.txt``."""
    published = ctx.published()
    path = ctx.output_dir / MANIFEST_FILENAME
    _atomic_write(path, build_manifest(ctx.config.site, published))

    entries = sum(
        len(records[: source.limit] if source.limit else records)
        for source, records in published
        if source.url_prefix
    )
    logger.info("Wrote %s with %d entries", path, entries)
    return {"entries": entries, "sources": len(published), "path": str(path)}
