"""Base interface for advertising platform clients."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from launch_pipeline.domain.models import (
    AdCreativeConfig,
    AdSetConfig,
    CampaignConfig,
    MediaItem,
)

READY_STATUS = "ready"


class AdsPlatformError(Exception):
    """Raised when the platform cannot be reached or returns an unreadable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass
class LibraryVideo:
    """A video as the platform's media library reports it."""

    id: str
    title: str | None = None
    video_status: str | None = None
    picture: str | None = None

    @property
    def is_ready(self) -> bool:
        """Processed and has a thumbnail, so an ad can reference it."""
        return self.video_status == READY_STATUS and bool(self.picture)


@dataclass
class LibraryLookup:
    """Library entries keyed by title (name lookups) or by ID (polls)."""

    items: dict[str, LibraryVideo] = field(default_factory=dict)
    rate: float = 0.0


@dataclass
class VideoUpload:
    """One entry of an upload batch."""

    name: str
    url: str


@dataclass
class BatchItemResult:
    """Result of one request inside a batch call."""

    code: int
    body: str | None = None

    def payload(self) -> dict[str, Any]:
        if not self.body:
            return {}
        try:
            parsed = json.loads(self.body)
        except (TypeError, ValueError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    @property
    def created_id(self) -> str | None:
        """ID of the created object, or None if this item failed."""
        if self.code != 200:
            return None
        created = self.payload().get("id")
        return str(created) if created else None

    @property
    def error_message(self) -> str:
        error = self.payload().get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if self.code == 200:
            return "Response did not include an ID"
        return f"HTTP {self.code}"


@dataclass
class BatchResult:
    """Per-item results of a batch call.

    ``items`` is None when the platform answered with something other than a list of
    results (e.g. a top-level error); every item of the batch then counts as failed.
    """

    items: list[BatchItemResult] | None = None
    rate: float = 0.0
    error: str | None = None

    def result_for(self, index: int) -> BatchItemResult | None:
        if self.items is None or index >= len(self.items):
            return None
        return self.items[index]


@dataclass
class CreateResult:
    """Result of creating a campaign or ad set."""

    id: str | None = None
    error: str | None = None
    rate: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None and self.id is not None


class AdsPlatformClient(ABC):
    """Abstract base class for advertising platform clients.

    Every call reports the platform's usage rate (0-100) alongside its payload.

    Implementations:
    - GraphAdsClient: Meta Graph / Marketing API over httpx
    - StubAdsClient: In-memory simulation for dry runs and tests
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name for logging."""
        ...

    @abstractmethod
    async def check_library_by_name(self, account_id: str, names: list[str]) -> LibraryLookup:
        """Look up existing library videos by title.

        Args:
            account_id: Ad account ID (without the ``act_`` prefix)
            names: Video titles to look for

        Returns:
            LibraryLookup keyed by title
        """
        ...

    @abstractmethod
    async def upload_video_batch(
        self, account_id: str, videos: list[VideoUpload]
    ) -> BatchResult:
        """Upload videos from URLs in one batch call.

        Returns:
            BatchResult with one item per video, in request order
        """
        ...

    @abstractmethod
    async def poll_library(self, account_id: str, video_ids: list[str]) -> LibraryLookup:
        """Fetch processing status for uploaded videos.

        Returns:
            LibraryLookup keyed by video ID
        """
        ...

    @abstractmethod
    async def create_campaign(self, account_id: str, config: CampaignConfig) -> CreateResult:
        """Create a campaign."""
        ...

    @abstractmethod
    async def create_ad_set(
        self,
        account_id: str,
        campaign_id: str,
        config: AdSetConfig,
        pixel_id: str,
    ) -> CreateResult:
        """Create an ad set inside a campaign, optimizing for the given pixel."""
        ...

    @abstractmethod
    async def create_ads_batch(
        self,
        account_id: str,
        adset_id: str,
        page_id: str,
        items: list[MediaItem],
        creative: AdCreativeConfig,
    ) -> BatchResult:
        """Create one ad per media item in a single batch call.

        Returns:
            BatchResult with one item per media item, in request order
        """
        ...

    async def health_check(self) -> bool:
        """Check if the platform is reachable and the credentials work."""
        return True

    async def aclose(self) -> None:
        """Release network resources."""
        return None
