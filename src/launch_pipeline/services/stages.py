"""Stage executors for the launch pipeline.

Each stage reads the media store, calls the ads platform client and writes the results
back. Per-item failures go through the retry/fallback policy below and never abort the
run; only campaign/ad set creation is fatal.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from launch_pipeline.adapters.ads.base import AdsPlatformClient, VideoUpload
from launch_pipeline.domain.enums import LaunchPhase, MediaStage, MediaStatus
from launch_pipeline.domain.models import LaunchInput, MediaItem
from launch_pipeline.logging import get_logger
from launch_pipeline.services.state import PipelineState

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class CampaignSetupError(Exception):
    """Raised when the campaign or ad set cannot be created."""

    pass


def chunk(items: list[T], size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most ``size``."""
    return [items[i : i + size] for i in range(0, len(items), size)]


# =============================================================================
# Retry / fallback policy
# =============================================================================


def apply_upload_failure(item: MediaItem, max_retries: int, reason: str | None = None) -> None:
    """Record a failed upload attempt.

    The first failure of an item with a fallback URL switches it to the fallback; the
    switch shares the retry counter. Videos keep ``url`` and send the fallback via
    ``upload_url``.
    """
    item.retry_count += 1
    item.error = reason

    if item.can_use_fallback and item.retry_count <= max_retries:
        item.used_fallback = True
        item.status = MediaStatus.RETRY
    elif item.retry_count < max_retries:
        item.status = MediaStatus.RETRY
    else:
        item.mark_failed()


def apply_ad_failure(item: MediaItem, max_retries: int, reason: str | None = None) -> None:
    """Record a failed ad creation attempt.

    Images with an unused fallback have their ``url`` permanently replaced by it.
    """
    item.retry_count += 1
    item.error = reason

    if not item.is_video and item.can_use_fallback and item.retry_count <= max_retries:
        item.used_fallback = True
        item.url = item.fallback_url or item.url
        item.status = MediaStatus.RETRY
    elif item.retry_count < max_retries:
        item.status = MediaStatus.RETRY
    else:
        item.mark_failed()


# =============================================================================
# Stages
# =============================================================================


class StageExecutor:
    """Runs the individual pipeline stages against one run's state.

    Every stage returns early when the run is stopped; batch loops re-check the stop
    flag before each dispatch.
    """

    def __init__(
        self,
        state: PipelineState,
        client: AdsPlatformClient,
        launch: LaunchInput,
        emit: Callable[[], None],
        sleep: SleepFunc,
    ) -> None:
        self.state = state
        self.client = client
        self.launch = launch
        self.options = launch.options
        self.emit = emit
        self.sleep = sleep

    @property
    def account_id(self) -> str:
        return self.launch.account_id

    def _enter(self, phase: LaunchPhase) -> None:
        self.state.phase = phase
        self.emit()

    # -------------------------------------------------------------------------
    # Check library
    # -------------------------------------------------------------------------

    async def check_library(self) -> None:
        """Fast-forward videos that already exist, processed, in the media library.

        Videos given with a platform ID but no thumbnail are looked up too, so their ads
        can reference the library thumbnail.
        """
        if self.state.is_stopped:
            return

        self._enter(LaunchPhase.CHECKING)

        candidates = self.state.media.missing_thumbnails()
        if not candidates:
            return

        try:
            lookup = await self.client.check_library_by_name(
                self.account_id, [video.name for video in candidates]
            )
        except Exception as e:
            logger.error("library_check_failed", error=str(e), videos=len(candidates))
            return

        self.state.record_rate(lookup.rate)

        matched = 0
        for video in candidates:
            existing = lookup.items.get(video.name)
            if existing is None or not existing.is_ready:
                continue
            # Same title, different upload: the thumbnail belongs to another video
            if video.fb_video_id and video.fb_video_id != existing.id:
                continue
            video.fb_video_id = existing.id
            video.thumbnail_url = existing.picture
            video.stage = MediaStage.AD
            video.status = MediaStatus.QUEUED
            matched += 1

        logger.info("library_check_completed", checked=len(candidates), matched=matched)
        self.emit()

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------

    async def upload_videos(self) -> None:
        """Upload pending videos in staggered, sequential batches."""
        if self.state.is_stopped:
            return

        self._enter(LaunchPhase.UPLOADING)

        to_upload = self.state.media.pending_uploads()
        if not to_upload:
            return

        batches = chunk(to_upload, self.options.upload_batch_size)

        for video in to_upload:
            video.status = MediaStatus.IN_PROGRESS
        self.emit()

        logger.info("upload_started", videos=len(to_upload), batches=len(batches))

        for index, batch in enumerate(batches):
            if self.state.is_stopped:
                self._requeue([video for rest in batches[index:] for video in rest])
                break

            if index > 0:
                await self.sleep(self.options.upload_stagger_ms / 1000)
                if self.state.is_stopped:
                    self._requeue([video for rest in batches[index:] for video in rest])
                    break

            await self._upload_batch(index, batch)

    def _requeue(self, videos: list[MediaItem]) -> None:
        """Return never-dispatched videos to the queue after a stop."""
        for video in videos:
            video.status = MediaStatus.RETRY if video.retry_count else MediaStatus.QUEUED
        logger.info("upload_halted", undispatched=len(videos))
        self.emit()

    async def _upload_batch(self, index: int, batch: list[MediaItem]) -> None:
        uploads = [VideoUpload(name=video.name, url=video.upload_url) for video in batch]
        max_retries = self.options.max_retries

        try:
            result = await self.client.upload_video_batch(self.account_id, uploads)
        except Exception as e:
            logger.error("upload_batch_failed", batch=index, size=len(batch), error=str(e))
            for video in batch:
                apply_upload_failure(video, max_retries, str(e))
            self.emit()
            return

        self.state.record_rate(result.rate)

        uploaded = 0
        for position, video in enumerate(batch):
            item_result = result.result_for(position)
            video_id = item_result.created_id if item_result else None
            if video_id:
                video.fb_video_id = video_id
                video.stage = MediaStage.POLL
                video.status = MediaStatus.QUEUED
                video.error = None
                uploaded += 1
            else:
                reason = (
                    item_result.error_message
                    if item_result
                    else result.error or "Malformed batch response"
                )
                apply_upload_failure(video, max_retries, reason)

        logger.info(
            "upload_batch_completed",
            batch=index,
            uploaded=uploaded,
            failed=len(batch) - uploaded,
            rate=self.state.rate,
        )
        self.emit()

    # -------------------------------------------------------------------------
    # Poll
    # -------------------------------------------------------------------------

    async def poll_videos(self) -> None:
        """Move processed videos on to ad creation."""
        if self.state.is_stopped:
            return

        self._enter(LaunchPhase.POLLING)

        to_poll = self.state.media.awaiting_poll()
        if not to_poll:
            return

        try:
            lookup = await self.client.poll_library(
                self.account_id, [video.fb_video_id for video in to_poll if video.fb_video_id]
            )
        except Exception as e:
            logger.error("poll_failed", videos=len(to_poll), error=str(e))
            return

        self.state.record_rate(lookup.rate)

        ready = 0
        for video in to_poll:
            entry = lookup.items.get(video.fb_video_id or "")
            if entry is None or not entry.is_ready:
                continue
            video.thumbnail_url = entry.picture
            video.stage = MediaStage.AD
            video.status = MediaStatus.QUEUED
            ready += 1

        logger.info("poll_completed", polled=len(to_poll), ready=ready)
        self.emit()

    # -------------------------------------------------------------------------
    # Campaign & ad set
    # -------------------------------------------------------------------------

    async def create_campaign_and_ad_set(self) -> None:
        """Create the campaign and ad set once per run.

        Raises:
            CampaignSetupError: On any platform or transport error. The run moves to the
                error phase before the exception propagates.
        """
        if self.state.is_stopped:
            return
        if self.state.campaign_id and self.state.adset_id:
            return

        self._enter(LaunchPhase.CREATING_CAMPAIGN)

        try:
            await self._create_campaign_and_ad_set()
        except Exception as e:
            error = e if isinstance(e, CampaignSetupError) else CampaignSetupError(str(e))
            logger.error("campaign_setup_failed", error=str(error))
            self.state.phase = LaunchPhase.ERROR
            self.state.error = str(error)
            self.emit()
            if error is e:
                raise
            raise error from e

    async def _create_campaign_and_ad_set(self) -> None:
        # A campaign left over from a failed ad set attempt is reused
        if not self.state.campaign_id:
            campaign = await self.client.create_campaign(self.account_id, self.launch.campaign)
            self.state.record_rate(campaign.rate)
            if not campaign.success:
                raise CampaignSetupError(f"Campaign: {campaign.error}")
            self.state.campaign_id = campaign.id
            logger.info("campaign_created", campaign_id=campaign.id)
            self.emit()

        if self.state.is_stopped:
            return

        ad_set = await self.client.create_ad_set(
            self.account_id,
            self.state.campaign_id or "",
            self.launch.ad_set,
            self.launch.pixel_id,
        )
        self.state.record_rate(ad_set.rate)
        if not ad_set.success:
            raise CampaignSetupError(f"AdSet: {ad_set.error}")
        self.state.adset_id = ad_set.id
        logger.info("ad_set_created", adset_id=ad_set.id, campaign_id=self.state.campaign_id)
        self.emit()

    # -------------------------------------------------------------------------
    # Ads
    # -------------------------------------------------------------------------

    async def create_ads(self) -> None:
        """Create ads for every item ready for one, in sequential batches."""
        if self.state.is_stopped:
            return

        self._enter(LaunchPhase.CREATING_ADS)

        to_create = self.state.media.pending_ads()
        if not to_create:
            return

        if not self.state.adset_id:
            logger.warning("ads_skipped_without_ad_set", ready=len(to_create))
            return

        for index, batch in enumerate(chunk(to_create, self.options.ad_batch_size)):
            if self.state.is_stopped:
                break

            for item in batch:
                item.status = MediaStatus.IN_PROGRESS
            self.emit()

            await self._ads_batch(index, batch)

    async def _ads_batch(self, index: int, batch: list[MediaItem]) -> None:
        max_retries = self.options.max_retries

        try:
            result = await self.client.create_ads_batch(
                self.account_id,
                self.state.adset_id or "",
                self.launch.page_id,
                [item.copy() for item in batch],
                self.launch.ad_creative,
            )
        except Exception as e:
            logger.error("ads_batch_failed", batch=index, size=len(batch), error=str(e))
            for item in batch:
                apply_ad_failure(item, max_retries, str(e))
            self.emit()
            return

        self.state.record_rate(result.rate)

        created = 0
        for position, item in enumerate(batch):
            item_result = result.result_for(position)
            ad_id = item_result.created_id if item_result else None
            if ad_id:
                item.ad_id = ad_id
                item.stage = MediaStage.DONE
                item.status = MediaStatus.COMPLETED
                item.error = None
                created += 1
            else:
                reason = (
                    item_result.error_message
                    if item_result
                    else result.error or "Malformed batch response"
                )
                apply_ad_failure(item, max_retries, reason)

        logger.info(
            "ads_batch_completed",
            batch=index,
            created=created,
            failed=len(batch) - created,
            rate=self.state.rate,
        )
        self.emit()
