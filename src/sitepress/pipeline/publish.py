"""PublishPipeline: a fixed, ordered list of independently runnable stages.

The pipeline is cadence-agnostic: it only knows how to run one named
stage now.  Scheduling lives in ``sitepress.scheduler``.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from sitepress.analytics.store import JsonAnalyticsStore
from sitepress.config import SitepressConfig
from sitepress.content.store import ContentStore, create_store
from sitepress.ingest.engine import ReconciliationEngine
from sitepress.pipeline.analytics import aggregate_analytics
from sitepress.pipeline.assets import copy_assets
from sitepress.pipeline.crawler_manifest import generate_manifest
from sitepress.pipeline.feed import generate_feed
from sitepress.pipeline.ingestion import ingest_sources
from sitepress.pipeline.prerender import prerender
from sitepress.pipeline.robots import generate_robots
from sitepress.pipeline.sitemap import generate_sitemap
from sitepress.pipeline.stages import (
    PipelineContext,
    StageDefinition,
    StageError,
    StageLedger,
    StageResult,
    StageStatus,
)
from sitepress.render import create_renderer

logger = logging.getLogger(__name__)

PUBLISH_STAGE = "publish"


def build_stages(config: SitepressConfig | None = None) -> list[StageDefinition]:
    """The stage list, in execution order.

    ``[schedule.<stage>]`` entries in ``config`` override the default
    cadence and startup flag.
    """
    stages = [
        StageDefinition(
            name="ingestion",
            description="Reconcile content sources into the content store",
            run=ingest_sources,
            cadence="0 0 * * * *",
        ),
        StageDefinition(
            name="copy_assets",
            description="Copy static assets into the output directory",
            run=copy_assets,
            cadence="0 */15 * * * *",
        ),
        StageDefinition(
            name="prerender",
            description="Render published content to static HTML",
            run=prerender,
            depends_on=("ingestion",),
            cadence="0 */15 * * * *",
        ),
        StageDefinition(
            name="sitemap",
            description="Generate sitemap.xml from published content",
            run=generate_sitemap,
            depends_on=("ingestion",),
            cadence="0 0 * * * *",
        ),
        StageDefinition(
            name="crawler_manifest",
            description="Generate llms.txt for AI crawlers",
            run=generate_manifest,
            depends_on=("ingestion",),
            cadence="0 0 * * * *",
        ),
        StageDefinition(
            name="feed",
            description="Generate the feed.xml RSS feed",
            run=generate_feed,
            depends_on=("ingestion",),
            cadence="0 0 * * * *",
        ),
        StageDefinition(
            name="robots",
            description="Generate robots.txt",
            run=generate_robots,
            cadence="0 0 * * * *",
            run_on_startup=True,
        ),
        StageDefinition(
            name="analytics",
            description="Aggregate engagement events into content metrics",
            run=aggregate_analytics,
            cadence="0 */30 * * * *",
        ),
    ]
    stages.append(
        StageDefinition(
            name=PUBLISH_STAGE,
            description="Run every stage in order",
            members=tuple(s.name for s in stages),
            cadence="0 */15 * * * *",
            run_on_startup=True,
        )
    )

    if config is None:
        return stages
    overridden = []
    for stage in stages:
        entry = config.schedule.get(stage.name)
        if entry is not None:
            changes: dict[str, Any] = {}
            if entry.cadence is not None:
                changes["cadence"] = entry.cadence
            if entry.run_on_startup is not None:
                changes["run_on_startup"] = entry.run_on_startup
            stage = dataclasses.replace(stage, **changes)
        overridden.append(stage)
    return overridden


class PipelineRunResult(BaseModel):
    """Aggregate of one ``run_all`` pass."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    duration_ms: int = 0
    results: list[StageResult] = Field(default_factory=list)

    def _count(self, status: StageStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(StageStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(StageStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(StageStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def get(self, stage: str) -> StageResult | None:
        for result in self.results:
            if result.stage == stage:
                return result
        return None


class PublishPipeline:
    """Runs named stages against a shared PipelineContext.

    A stage never runs twice at once; a second invocation while the first
    is still going returns a skipped result.  Stage failures are returned
    as failed results, never raised.
    """

    def __init__(
        self,
        stages: list[StageDefinition],
        context: PipelineContext,
        ledger: StageLedger,
    ) -> None:
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names: {names}")
        for stage in stages:
            for ref in (*stage.depends_on, *stage.members):
                if ref not in names:
                    raise ValueError(f"Stage {stage.name!r} references unknown stage {ref!r}")
        self._stages = {s.name: s for s in stages}
        self._order = names
        self._context = context
        self._ledger = ledger
        self._locks = {name: threading.Lock() for name in names}

    @property
    def context(self) -> PipelineContext:
        return self._context

    @property
    def ledger(self) -> StageLedger:
        return self._ledger

    @property
    def stages(self) -> list[StageDefinition]:
        return [self._stages[name] for name in self._order]

    def get(self, name: str) -> StageDefinition:
        """Raises KeyError for an unknown stage name."""
        try:
            return self._stages[name]
        except KeyError:
            raise KeyError(f"Unknown stage: {name!r}") from None

    def is_running(self, name: str) -> bool:
        return self._locks[name].locked()

    # ── Execution ────────────────────────────────────────────────

    def run_stage(self, name: str, *, timeout: float | None = None) -> StageResult:
        """Run one stage now and return its result."""
        stage = self.get(name)
        lock = self._locks[name]
        if not lock.acquire(blocking=False):
            logger.warning("Stage %s is still running, skipping this invocation", name)
            return StageResult(stage=name, status=StageStatus.SKIPPED, error="already running")

        missing = [dep for dep in stage.depends_on if not self._ledger.has_succeeded(dep)]
        if missing:
            lock.release()
            message = f"waiting for {', '.join(missing)} to complete at least once"
            logger.info("Stage %s skipped: %s", name, message)
            return StageResult(stage=name, status=StageStatus.SKIPPED, error=message)

        logger.info("Stage %s started", name)
        if stage.is_composite:
            try:
                result = self._run_composite(stage, timeout)
            finally:
                lock.release()
        else:
            result = self._run_body(stage, lock, timeout)

        self._ledger.record(result)
        if result.status == StageStatus.FAILED:
            logger.error("Stage %s failed after %dms: %s", name, result.duration_ms, result.error)
        else:
            logger.info("Stage %s %s in %dms", name, result.status, result.duration_ms)
        return result

    def run_all(self, *, timeout: float | None = None) -> PipelineRunResult:
        """Run every non-composite stage in order; one failure never blocks the rest."""
        run = PipelineRunResult()
        start = time.monotonic()
        for name in self._order:
            if self._stages[name].is_composite:
                continue
            run.results.append(self.run_stage(name, timeout=timeout))
        run.duration_ms = int((time.monotonic() - start) * 1000)
        return run

    def _run_body(
        self, stage: StageDefinition, lock: threading.Lock, timeout: float | None
    ) -> StageResult:
        started_at = datetime.now(tz=UTC)
        start = time.monotonic()
        outcome: dict[str, Any] = {}
        body: Callable[[PipelineContext], dict[str, Any]] = stage.run  # type: ignore[assignment]

        def _invoke() -> None:
            try:
                outcome["stats"] = body(self._context) or {}
            except StageError as exc:
                outcome["error"] = str(exc)
                outcome["stats"] = exc.stats
            except Exception as exc:
                logger.exception("Stage %s raised", stage.name)
                outcome["error"] = f"{type(exc).__name__}: {exc}"
            finally:
                lock.release()

        if timeout is None:
            _invoke()
        else:
            worker = threading.Thread(
                target=_invoke, name=f"sitepress-stage-{stage.name}", daemon=True
            )
            worker.start()
            worker.join(timeout)
            if worker.is_alive():
                return StageResult(
                    stage=stage.name,
                    status=StageStatus.FAILED,
                    started_at=started_at,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    error=f"timed out after {timeout:g}s",
                )

        duration_ms = int((time.monotonic() - start) * 1000)
        error = outcome.get("error")
        return StageResult(
            stage=stage.name,
            status=StageStatus.FAILED if error else StageStatus.SUCCEEDED,
            started_at=started_at,
            duration_ms=duration_ms,
            stats=outcome.get("stats", {}),
            error=error,
        )

    def _run_composite(self, stage: StageDefinition, timeout: float | None) -> StageResult:
        started_at = datetime.now(tz=UTC)
        start = time.monotonic()
        member_results = [self.run_stage(member, timeout=timeout) for member in stage.members]
        failed = [r.stage for r in member_results if r.status == StageStatus.FAILED]

        stats: dict[str, Any] = {r.stage: str(r.status) for r in member_results}
        stats["succeeded"] = sum(1 for r in member_results if r.succeeded)
        stats["failed"] = len(failed)
        stats["skipped"] = sum(1 for r in member_results if r.status == StageStatus.SKIPPED)
        return StageResult(
            stage=stage.name,
            status=StageStatus.FAILED if failed else StageStatus.SUCCEEDED,
            started_at=started_at,
            duration_ms=int((time.monotonic() - start) * 1000),
            stats=stats,
            error=f"failed stages: {', '.join(failed)}" if failed else None,
        )


def create_pipeline(
    config: SitepressConfig,
    *,
    store: ContentStore | None = None,
    stages: list[StageDefinition] | None = None,
    now_fn: Callable[[], datetime] | None = None,
) -> PublishPipeline:
    """Wire a pipeline from configuration."""
    store = store or create_store(config.store.backend, config.state_dir)
    context = PipelineContext(
        config=config,
        store=store,
        engine=ReconciliationEngine.from_config(config, store),
        renderer=create_renderer(config.render.template_dir),
        analytics=JsonAnalyticsStore(config.state_dir),
    )
    if now_fn is not None:
        context.now_fn = now_fn
    return PublishPipeline(
        stages if stages is not None else build_stages(config),
        context,
        StageLedger(config.state_dir),
    )
