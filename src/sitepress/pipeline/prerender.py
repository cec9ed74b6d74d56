"""Prerender published content to static HTML pages.

Pages land at ``<output>/<url_prefix>/<slug>/index.html`` with one
listing page per source at ``<output>/<url_prefix>/index.html``.  The
set of written pages is tracked in ``.prerender-manifest.json`` so pages
whose record disappeared are removed on the next run.
"""

from __future__ import annotations

import contextlib
import json
import logging
from pathlib import Path
from typing import Any

from sitepress.config import SourceConfig
from sitepress.content.models import ContentRecord
from sitepress.core import _atomic_write
from sitepress.pipeline.sitemap import record_url
from sitepress.pipeline.stages import PipelineContext, StageError
from sitepress.render import TemplateRenderer

logger = logging.getLogger(__name__)

PRERENDER_MANIFEST = ".prerender-manifest.json"
FALLBACK_TEMPLATE = "page"
LIST_TEMPLATE = "list"


def template_for(renderer: TemplateRenderer, record: ContentRecord) -> str:
    """The record's kind if a template exists for it, else ``page``."""
    kind = str(record.kind)
    return kind if renderer.has_template(kind) else FALLBACK_TEMPLATE


def page_path(source: SourceConfig, slug: str) -> str:
    """Output-relative path of a record's page."""
    return f"{source.url_prefix.lstrip('/')}/{slug}/index.html"


def listing_path(source: SourceConfig) -> str:
    return f"{source.url_prefix.lstrip('/')}/index.html"


def _page_data(base_url: str, source: SourceConfig, record: ContentRecord) -> dict[str, Any]:
    data = record.model_dump(mode="json")
    data["url"] = record_url(base_url, source, record.slug)
    data["source_title"] = source.title or source.source_id
    return data


def _listing_data(
    base_url: str, source: SourceConfig, records: list[ContentRecord]
) -> dict[str, Any]:
    return {
        "title": source.title or source.source_id,
        "description": source.description,
        "source_id": source.source_id,
        "items": [
            {
                "title": r.title,
                "url": record_url(base_url, source, r.slug),
                "description": r.description,
                "published_at": r.published_at.isoformat(),
            }
            for r in records
        ],
    }


def load_manifest(output_dir: Path) -> set[str]:
    path = output_dir / PRERENDER_MANIFEST
    if not path.exists():
        return set()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return set(data.get("pages", []))
    except (json.JSONDecodeError, OSError, AttributeError):
        logger.warning("Corrupt prerender manifest at %s, nothing will be pruned", path)
        return set()


def _contained(root: Path, output_dir: Path, rel: str) -> bool:
    return root in (output_dir / rel).resolve().parents


def _prune(output_dir: Path, stale: set[str]) -> int:
    removed = 0
    root = output_dir.resolve()
    for rel in sorted(stale):
        if not _contained(root, output_dir, rel):
            logger.warning("Refusing to prune path outside output directory: %s", rel)
            continue
        target = (output_dir / rel).resolve()
        try:
            target.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to remove stale page %s: %s", target, exc)
            continue
        removed += 1
        parent = target.parent
        while parent != root:
            with contextlib.suppress(OSError):
                parent.rmdir()
            parent = parent.parent
    return removed


def prerender(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: render every published record and prune stale pages."""
    output_dir = ctx.output_dir
    base_url = ctx.config.site.base_url
    previous = load_manifest(output_dir)
    root = output_dir.resolve()
    written: set[str] = set()
    failed: list[str] = []

    for source, records in ctx.published():
        if not source.url_prefix:
            logger.debug("Source %s has no url_prefix, not prerendered", source.source_id)
            continue

        jobs: list[tuple[str, str, dict[str, Any]]] = [
            (
                page_path(source, record.slug),
                template_for(ctx.renderer, record),
                _page_data(base_url, source, record),
            )
            for record in records
        ]
        jobs.append(
            (listing_path(source), LIST_TEMPLATE, _listing_data(base_url, source, records))
        )

        for rel, template_id, data in jobs:
            if not _contained(root, output_dir, rel):
                logger.warning("Refusing to write page outside output directory: %s", rel)
                failed.append(rel)
                continue
            try:
                html = ctx.renderer.render(template_id, data)
                _atomic_write(output_dir / rel, html)
            except Exception as exc:
                logger.warning("Failed to prerender %s: %s", rel, exc)
                failed.append(rel)
                continue
            written.add(rel)

    # A page that failed to render keeps its previous copy.
    keep = written | (previous & set(failed))
    removed = _prune(output_dir, previous - keep)
    _atomic_write(
        output_dir / PRERENDER_MANIFEST,
        json.dumps({"pages": sorted(keep)}, indent=2) + "\n",
    )

    logger.info(
        "Prerendered %d page(s), removed %d stale, %d failed", len(written), removed, len(failed)
    )
    stats = {"pages": len(written), "removed": removed, "failed": len(failed)}
    if failed:
        raise StageError(
            f"{len(failed)} page(s) failed to render: {', '.join(failed[:5])}", stats
        )
    return stats
