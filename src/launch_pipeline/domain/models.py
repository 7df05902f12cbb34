"""Domain models for a launch run.

Inputs (manifest, campaign parameters, options) are pydantic models so they can be
validated straight from JSON. Runtime state (media items, stats, snapshots) is plain
dataclasses owned by the controller.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from launch_pipeline.domain.enums import (
    AdStatus,
    LaunchPhase,
    MediaStage,
    MediaStatus,
    MediaType,
)

MAX_RETRIES_EXCEEDED = "Max retries exceeded"


# =============================================================================
# Inputs
# =============================================================================


class CampaignConfig(BaseModel):
    """Parameters for the campaign created at the start of a run."""

    name: str = Field(..., min_length=1)
    objective: str = Field(default="OUTCOME_SALES")
    status: AdStatus = Field(default=AdStatus.PAUSED)
    buying_type: str = Field(default="AUCTION")
    special_ad_categories: list[str] = Field(default_factory=list)
    daily_budget: int | None = Field(
        default=None, ge=100, description="Campaign budget in minor currency units (CBO)"
    )
    bid_strategy: str | None = None


class AdSetConfig(BaseModel):
    """Parameters for the ad set created inside the campaign."""

    name: str = Field(..., min_length=1)
    daily_budget: int | None = Field(
        default=None, ge=100, description="Ad set budget in minor currency units"
    )
    billing_event: str = Field(default="IMPRESSIONS")
    optimization_goal: str = Field(default="OFFSITE_CONVERSIONS")
    custom_event_type: str = Field(default="PURCHASE")
    bid_strategy: str = Field(default="LOWEST_COST_WITHOUT_CAP")
    bid_amount: int | None = None
    targeting: dict[str, Any] = Field(
        default_factory=lambda: {"geo_locations": {"countries": ["US"]}}
    )
    status: AdStatus = Field(default=AdStatus.PAUSED)
    start_time: str | None = Field(default=None, description="ISO 8601 start time")


class AdCreativeConfig(BaseModel):
    """Creative copy shared by every ad in the run."""

    link_url: str = Field(..., min_length=1)
    message: str = ""
    headline: str = ""
    description: str | None = None
    call_to_action: str = Field(default="SHOP_NOW")
    ad_status: AdStatus = Field(default=AdStatus.PAUSED)
    instagram_user_id: str | None = None
    url_tags: str | None = None


class MediaInput(BaseModel):
    """One asset as supplied by the caller."""

    type: MediaType
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    fallback_url: str | None = None
    fb_video_id: str | None = Field(
        default=None, description="Known platform video ID; skips the upload stage"
    )
    thumbnail_url: str | None = Field(
        default=None, description="Known thumbnail for a video given with fb_video_id"
    )


class LaunchOptions(BaseModel):
    """Tunables for batching, pacing and retries."""

    check_library_first: bool = True
    force_reupload: bool = False
    upload_batch_size: int = Field(default=10, ge=1, le=50)
    ad_batch_size: int = Field(default=25, ge=1, le=50)
    upload_stagger_ms: int = Field(default=1000, ge=0)
    tick_interval_ms: int = Field(default=10000, ge=0)
    initial_poll_delay_ms: int = Field(default=8000, ge=0)
    max_ticks: int = Field(default=15, ge=0)
    max_retries: int = Field(default=3, ge=1)


class LaunchInput(BaseModel):
    """Everything a controller needs for one run."""

    account_id: str = Field(..., min_length=1)
    page_id: str = Field(..., min_length=1)
    pixel_id: str = Field(..., min_length=1)
    campaign: CampaignConfig
    ad_set: AdSetConfig
    ad_creative: AdCreativeConfig
    media: list[MediaInput] = Field(default_factory=list)
    options: LaunchOptions = Field(default_factory=LaunchOptions)

    # Set both to add ads to an existing ad set instead of creating one
    campaign_id: str | None = None
    adset_id: str | None = None

    @field_validator("account_id")
    @classmethod
    def strip_act_prefix(cls, value: str) -> str:
        return value.removeprefix("act_")

    @model_validator(mode="after")
    def check_media_and_ids(self) -> "LaunchInput":
        seen: set[str] = set()
        duplicates: list[str] = []
        for item in self.media:
            if item.name in seen:
                duplicates.append(item.name)
            seen.add(item.name)
        if duplicates:
            raise ValueError(f"Media names must be unique, duplicated: {', '.join(duplicates)}")

        if bool(self.campaign_id) != bool(self.adset_id):
            raise ValueError("campaign_id and adset_id must be given together")
        return self


# =============================================================================
# Runtime state
# =============================================================================


@dataclass
class MediaItem:
    """Per-item pipeline state."""

    type: MediaType
    name: str
    url: str
    stage: MediaStage
    status: MediaStatus = MediaStatus.QUEUED
    fallback_url: str | None = None
    retry_count: int = 0
    used_fallback: bool = False
    fb_video_id: str | None = None
    thumbnail_url: str | None = None
    ad_id: str | None = None
    error: str | None = None

    @classmethod
    def from_input(cls, media: MediaInput) -> "MediaItem":
        """Create an item in its initial stage.

        Videos without a known platform ID start at upload; everything else is ready
        for ad creation.
        """
        is_new_video = media.type == MediaType.VIDEO and not media.fb_video_id
        return cls(
            type=media.type,
            name=media.name,
            url=media.url,
            fallback_url=media.fallback_url,
            fb_video_id=media.fb_video_id or None,
            thumbnail_url=media.thumbnail_url or None,
            stage=MediaStage.UPLOAD if is_new_video else MediaStage.AD,
        )

    @property
    def is_video(self) -> bool:
        return self.type == MediaType.VIDEO

    @property
    def is_terminal(self) -> bool:
        return self.stage in (MediaStage.DONE, MediaStage.FAILED)

    @property
    def upload_url(self) -> str:
        """URL to send on upload; videos keep ``url`` and switch on ``used_fallback``."""
        if self.used_fallback and self.fallback_url:
            return self.fallback_url
        return self.url

    @property
    def can_use_fallback(self) -> bool:
        return bool(self.fallback_url) and not self.used_fallback

    def mark_failed(self, error: str = MAX_RETRIES_EXCEEDED) -> None:
        self.stage = MediaStage.FAILED
        self.status = MediaStatus.FAILED
        self.error = error

    def copy(self) -> "MediaItem":
        return replace(self)


@dataclass(frozen=True)
class PipelineStats:
    """Aggregate counts over the media collection."""

    upload_queued: int = 0
    upload_in_progress: int = 0
    upload_failed: int = 0
    poll_waiting: int = 0
    ad_queued: int = 0
    ad_in_progress: int = 0
    ad_failed: int = 0
    done: int = 0
    failed: int = 0
    total: int = 0

    @property
    def accounted(self) -> int:
        """Sum of every bucket; always equals ``total``."""
        return (
            self.upload_queued
            + self.upload_in_progress
            + self.upload_failed
            + self.poll_waiting
            + self.ad_queued
            + self.ad_in_progress
            + self.ad_failed
            + self.done
            + self.failed
        )

    @property
    def is_complete(self) -> bool:
        return self.done + self.failed == self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "upload": {
                "queued": self.upload_queued,
                "in_progress": self.upload_in_progress,
                "failed": self.upload_failed,
            },
            "poll": {"waiting": self.poll_waiting},
            "ad": {
                "queued": self.ad_queued,
                "in_progress": self.ad_in_progress,
                "failed": self.ad_failed,
            },
            "done": self.done,
            "failed": self.failed,
            "total": self.total,
        }


@dataclass(frozen=True)
class PipelineSnapshot:
    """Read-only view of a run handed to callers and progress sinks."""

    phase: LaunchPhase
    is_running: bool
    is_stopped: bool
    campaign_id: str | None
    adset_id: str | None
    tick: int
    rate: float
    started_at: datetime | None
    elapsed_seconds: float
    stats: PipelineStats
    media: tuple[MediaItem, ...] = field(default_factory=tuple)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "phase": str(self.phase),
            "is_running": self.is_running,
            "is_stopped": self.is_stopped,
            "campaign_id": self.campaign_id,
            "adset_id": self.adset_id,
            "tick": self.tick,
            "rate": self.rate,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "stats": self.stats.to_dict(),
            "media": [asdict(item) for item in self.media],
            "error": self.error,
        }
