"""In-memory state of a launch run.

``MediaStore`` owns the media items and exposes the derived views stages select from;
``PipelineState`` holds the run-level fields. Both are mutated only by the controller and
its stage executors; everyone else gets a ``PipelineSnapshot``.
"""

import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from launch_pipeline.domain.enums import LaunchPhase, MediaStage, MediaStatus
from launch_pipeline.domain.models import (
    MediaInput,
    MediaItem,
    PipelineSnapshot,
    PipelineStats,
)


class MediaStore:
    """The run's media items, in input order. Items are never removed."""

    def __init__(self, items: Iterable[MediaItem]) -> None:
        self._items = list(items)

    @classmethod
    def from_inputs(cls, media: Iterable[MediaInput]) -> "MediaStore":
        return cls(MediaItem.from_input(entry) for entry in media)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MediaItem]:
        return iter(self._items)

    def get(self, name: str) -> MediaItem | None:
        for item in self._items:
            if item.name == name:
                return item
        return None

    def videos(self) -> list[MediaItem]:
        return [item for item in self._items if item.is_video]

    def pending_uploads(self) -> list[MediaItem]:
        """Videos waiting for (re)upload."""
        return [
            item
            for item in self._items
            if item.is_video and item.stage == MediaStage.UPLOAD and item.status.is_pending
        ]

    def missing_thumbnails(self) -> list[MediaItem]:
        """Waiting videos an ad cannot reference yet; done and failed items are left alone."""
        return [
            item
            for item in self._items
            if item.is_video
            and not item.is_terminal
            and not item.thumbnail_url
            and item.status.is_pending
        ]

    def awaiting_poll(self) -> list[MediaItem]:
        """Uploaded videos the platform may still be processing."""
        return [
            item
            for item in self._items
            if item.is_video and item.stage == MediaStage.POLL and item.fb_video_id
        ]

    def pending_ads(self) -> list[MediaItem]:
        return [
            item
            for item in self._items
            if item.stage == MediaStage.AD and item.status.is_pending
        ]

    def failed(self) -> list[MediaItem]:
        return [item for item in self._items if item.status == MediaStatus.FAILED]

    def has_upload_retries(self) -> bool:
        return any(
            item.is_video and item.stage == MediaStage.UPLOAD and item.status == MediaStatus.RETRY
            for item in self._items
        )

    def stats(self) -> PipelineStats:
        counts = {
            "upload_queued": 0,
            "upload_in_progress": 0,
            "upload_failed": 0,
            "poll_waiting": 0,
            "ad_queued": 0,
            "ad_in_progress": 0,
            "ad_failed": 0,
            "done": 0,
            "failed": 0,
        }
        for item in self._items:
            if item.stage == MediaStage.UPLOAD:
                if item.status == MediaStatus.IN_PROGRESS:
                    counts["upload_in_progress"] += 1
                elif item.status == MediaStatus.FAILED:
                    counts["upload_failed"] += 1
                else:
                    counts["upload_queued"] += 1
            elif item.stage == MediaStage.POLL:
                counts["poll_waiting"] += 1
            elif item.stage == MediaStage.AD:
                if item.status == MediaStatus.IN_PROGRESS:
                    counts["ad_in_progress"] += 1
                elif item.status == MediaStatus.FAILED:
                    counts["ad_failed"] += 1
                else:
                    counts["ad_queued"] += 1
            elif item.stage == MediaStage.DONE:
                counts["done"] += 1
            else:
                counts["failed"] += 1
        return PipelineStats(**counts, total=len(self._items))

    def copies(self) -> tuple[MediaItem, ...]:
        return tuple(item.copy() for item in self._items)


@dataclass
class PipelineState:
    """Run-level state; one per controller."""

    media: MediaStore
    phase: LaunchPhase = LaunchPhase.IDLE
    campaign_id: str | None = None
    adset_id: str | None = None
    tick: int = 0
    rate: float = 0.0
    is_running: bool = False
    is_stopped: bool = False
    started_at: datetime | None = None
    error: str | None = None
    _started_monotonic: float | None = field(default=None, init=False, repr=False)

    def mark_started(self) -> None:
        self.started_at = datetime.now(UTC)
        self._started_monotonic = time.monotonic()

    @property
    def elapsed_seconds(self) -> float:
        if self._started_monotonic is None:
            return 0.0
        return time.monotonic() - self._started_monotonic

    def record_rate(self, rate: float) -> None:
        self.rate = max(0.0, min(100.0, rate))

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(
            phase=self.phase,
            is_running=self.is_running,
            is_stopped=self.is_stopped,
            campaign_id=self.campaign_id,
            adset_id=self.adset_id,
            tick=self.tick,
            rate=self.rate,
            started_at=self.started_at,
            elapsed_seconds=self.elapsed_seconds,
            stats=self.media.stats(),
            media=self.media.copies(),
            error=self.error,
        )
