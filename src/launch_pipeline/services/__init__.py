"""Launch pipeline services."""

from launch_pipeline.services.controller import LaunchController
from launch_pipeline.services.progress import ProgressSink, SnapshotChannel
from launch_pipeline.services.scheduler import TickScheduler
from launch_pipeline.services.stages import (
    CampaignSetupError,
    StageExecutor,
    apply_ad_failure,
    apply_upload_failure,
)
from launch_pipeline.services.state import MediaStore, PipelineState

__all__ = [
    "CampaignSetupError",
    "LaunchController",
    "MediaStore",
    "PipelineState",
    "ProgressSink",
    "SnapshotChannel",
    "StageExecutor",
    "TickScheduler",
    "apply_ad_failure",
    "apply_upload_failure",
]
