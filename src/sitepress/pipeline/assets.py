"""Copy configured static assets (CSS, JS, images) into the output tree."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sitepress.config import AssetConfig
from sitepress.core import _atomic_copy
from sitepress.pipeline.stages import PipelineContext, StageError

logger = logging.getLogger(__name__)


def asset_destination(output_dir: Path, asset: AssetConfig) -> Path:
    """Resolve an asset's destination, which must stay inside ``output_dir``."""
    rel = Path(asset.destination)
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"Asset destination must be a relative path: {asset.destination!r}")
    return output_dir / rel


def copy_asset(output_dir: Path, asset: AssetConfig) -> Path:
    source = Path(asset.source)
    if not source.is_file():
        raise FileNotFoundError(f"Asset source not found: {source}")
    destination = asset_destination(output_dir, asset)
    _atomic_copy(source, destination)
    logger.debug("Copied asset %s -> %s", source, destination)
    return destination


def copy_assets(ctx: PipelineContext) -> dict[str, Any]:
    """Stage body: copy every ``[[assets]]`` entry.

    A required asset that cannot be copied fails the stage immediately;
    optional ones are logged and counted.
    """
    copied = 0
    failed = 0
    for asset in ctx.config.assets:
        try:
            copy_asset(ctx.output_dir, asset)
        except (OSError, ValueError) as exc:
            if asset.required:
                raise StageError(
                    f"Required asset copy failed: {exc}", {"copied": copied, "failed": failed + 1}
                ) from exc
            logger.warning("Optional asset copy failed (%s): %s", asset.source, exc)
            failed += 1
            continue
        copied += 1

    logger.info("Copied %d asset(s), %d failed", copied, failed)
    return {"copied": copied, "failed": failed}
