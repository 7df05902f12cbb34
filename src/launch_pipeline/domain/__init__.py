"""Domain models and enumerations."""

from launch_pipeline.domain.enums import (
    AdStatus,
    LaunchPhase,
    MediaStage,
    MediaStatus,
    MediaType,
    StageName,
)
from launch_pipeline.domain.models import (
    AdCreativeConfig,
    AdSetConfig,
    CampaignConfig,
    LaunchInput,
    LaunchOptions,
    MediaInput,
    MediaItem,
    PipelineSnapshot,
    PipelineStats,
)

__all__ = [
    "AdCreativeConfig",
    "AdSetConfig",
    "AdStatus",
    "CampaignConfig",
    "LaunchInput",
    "LaunchOptions",
    "LaunchPhase",
    "MediaInput",
    "MediaItem",
    "MediaStage",
    "MediaStatus",
    "MediaType",
    "PipelineSnapshot",
    "PipelineStats",
    "StageName",
]
