"""robots.txt generation from static site configuration."""

from __future__ import annotations

import logging
from typing import Any

from sitepress.config import SiteConfig
from sitepress.core import _atomic_write
from sitepress.pipeline.stages import PipelineContext

logger = logging.getLogger(__name__)

ROBOTS_FILENAME = "robots.txt"


def build_robots(site: SiteConfig) -> str:
    lines = ["User-agent: *", "Allow: /", ""]
    if site.robots_disallow:
        lines.extend(f"Disallow: {path}" for path in site.robots_disallow)
        lines.append("")
    lines.append(f"Sitemap: {site.base_url}/sitemap.xml")
    return "\n".join(lines) + "\n"


def generate_robots(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: rewrite ``robots.txt``."""
    path = ctx.output_dir / ROBOTS_FILENAME
    _atomic_write(path, build_robots(ctx.config.site))
    logger.info("Wrote %s", path)
    return {"disallow_rules": len(ctx.config.site.robots_disallow), "path": str(path)}
