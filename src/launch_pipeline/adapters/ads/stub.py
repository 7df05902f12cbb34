"""Stub ads platform client for dry runs and testing."""

import asyncio
import json
from itertools import count
from typing import Any

from launch_pipeline.adapters.ads.base import (
    READY_STATUS,
    AdsPlatformClient,
    AdsPlatformError,
    BatchItemResult,
    BatchResult,
    CreateResult,
    LibraryLookup,
    LibraryVideo,
    VideoUpload,
)
from launch_pipeline.domain.models import (
    AdCreativeConfig,
    AdSetConfig,
    CampaignConfig,
    MediaItem,
)
from launch_pipeline.logging import get_logger

logger = get_logger(__name__)


def _ok(object_id: str) -> BatchItemResult:
    return BatchItemResult(code=200, body=json.dumps({"id": object_id}))


def _failed(message: str, code: int = 400) -> BatchItemResult:
    return BatchItemResult(code=code, body=json.dumps({"error": {"message": message}}))


class StubAdsClient(AdsPlatformClient):
    """Client that simulates the platform in memory.

    Failure injection:
    - upload_failures / ad_failures: name -> number of attempts that fail before success
    - failing_urls: source URLs that always fail (drives fallback behaviour)
    - transport_failures: method name -> number of calls that raise AdsPlatformError
    - campaign_error / ad_set_error: error payload returned on creation

    Uploaded videos report "processing" until polled ``polls_until_ready`` times.
    Every call is appended to ``calls`` as (method, payload).
    """

    def __init__(
        self,
        library: list[LibraryVideo] | None = None,
        polls_until_ready: int = 1,
        upload_failures: dict[str, int] | None = None,
        ad_failures: dict[str, int] | None = None,
        failing_urls: set[str] | None = None,
        transport_failures: dict[str, int] | None = None,
        campaign_error: str | None = None,
        ad_set_error: str | None = None,
        rate: float = 0.0,
        latency: float = 0.0,
    ) -> None:
        self.library = {video.title: video for video in library or [] if video.title}
        self.polls_until_ready = polls_until_ready
        self.upload_failures = dict(upload_failures or {})
        self.ad_failures = dict(ad_failures or {})
        self.failing_urls = set(failing_urls or ())
        self.transport_failures = dict(transport_failures or {})
        self.campaign_error = campaign_error
        self.ad_set_error = ad_set_error
        self.rate = rate
        self.latency = latency

        self.calls: list[tuple[str, Any]] = []
        self._ids = count(1)
        self._poll_counts: dict[str, int] = {}
        self._uploaded: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "stub"

    def calls_to(self, method: str) -> list[Any]:
        """Payloads of every recorded call to ``method``, in order."""
        return [payload for name, payload in self.calls if name == method]

    def _next_id(self, prefix: str) -> str:
        return f"stub_{prefix}_{next(self._ids)}"

    @staticmethod
    def _consume(failures: dict[str, int], key: str) -> bool:
        remaining = failures.get(key, 0)
        if remaining > 0:
            failures[key] = remaining - 1
            return True
        return False

    async def _simulate(self, method: str, payload: Any) -> None:
        self.calls.append((method, payload))
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._consume(self.transport_failures, method):
            raise AdsPlatformError(f"Simulated transport failure in {method}")

    async def check_library_by_name(self, account_id: str, names: list[str]) -> LibraryLookup:
        await self._simulate("check_library_by_name", list(names))
        items = {name: self.library[name] for name in names if name in self.library}
        return LibraryLookup(items=items, rate=self.rate)

    async def upload_video_batch(
        self, account_id: str, videos: list[VideoUpload]
    ) -> BatchResult:
        await self._simulate("upload_video_batch", list(videos))

        results = []
        for video in videos:
            if video.url in self.failing_urls:
                results.append(_failed(f"Could not fetch {video.url}"))
            elif self._consume(self.upload_failures, video.name):
                results.append(_failed("Simulated upload failure", code=500))
            else:
                video_id = self._next_id("video")
                self._uploaded[video_id] = video.name
                self._poll_counts[video_id] = 0
                results.append(_ok(video_id))

        logger.info("stub_upload_batch", size=len(videos), rate=self.rate)
        return BatchResult(items=results, rate=self.rate)

    async def poll_library(self, account_id: str, video_ids: list[str]) -> LibraryLookup:
        await self._simulate("poll_library", list(video_ids))

        items = {}
        for video_id in video_ids:
            polls = self._poll_counts.get(video_id, 0) + 1
            self._poll_counts[video_id] = polls
            ready = polls >= self.polls_until_ready
            items[video_id] = LibraryVideo(
                id=video_id,
                title=self._uploaded.get(video_id),
                video_status=READY_STATUS if ready else "processing",
                picture=f"https://stub.example.com/thumbs/{video_id}.jpg" if ready else None,
            )
        return LibraryLookup(items=items, rate=self.rate)

    async def create_campaign(self, account_id: str, config: CampaignConfig) -> CreateResult:
        await self._simulate("create_campaign", config)
        if self.campaign_error:
            return CreateResult(error=self.campaign_error, rate=self.rate)
        return CreateResult(id=self._next_id("campaign"), rate=self.rate)

    async def create_ad_set(
        self,
        account_id: str,
        campaign_id: str,
        config: AdSetConfig,
        pixel_id: str,
    ) -> CreateResult:
        await self._simulate("create_ad_set", {"campaign_id": campaign_id, "pixel_id": pixel_id})
        if self.ad_set_error:
            return CreateResult(error=self.ad_set_error, rate=self.rate)
        return CreateResult(id=self._next_id("adset"), rate=self.rate)

    async def create_ads_batch(
        self,
        account_id: str,
        adset_id: str,
        page_id: str,
        items: list[MediaItem],
        creative: AdCreativeConfig,
    ) -> BatchResult:
        await self._simulate("create_ads_batch", [item.copy() for item in items])

        results = []
        for item in items:
            if not item.is_video and item.url in self.failing_urls:
                results.append(_failed(f"Could not fetch image {item.url}"))
            elif self._consume(self.ad_failures, item.name):
                results.append(_failed("Simulated ad creation failure"))
            else:
                results.append(_ok(self._next_id("ad")))

        logger.info("stub_ads_batch", size=len(items), adset_id=adset_id)
        return BatchResult(items=results, rate=self.rate)
