"""Publish pipeline: ingestion plus the stages that derive site artifacts."""

from sitepress.pipeline.publish import (
    PUBLISH_STAGE,
    PipelineRunResult,
    PublishPipeline,
    build_stages,
    create_pipeline,
)
from sitepress.pipeline.stages import (
    PipelineContext,
    StageDefinition,
    StageError,
    StageLedger,
    StageResult,
    StageStatus,
)

__all__ = [
    "PUBLISH_STAGE",
    "PipelineContext",
    "PipelineRunResult",
    "PublishPipeline",
    "StageDefinition",
    "StageError",
    "StageLedger",
    "StageResult",
    "StageStatus",
    "build_stages",
    "create_pipeline",
]
