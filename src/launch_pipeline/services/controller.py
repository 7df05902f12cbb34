"""Launch pipeline controller.

Composes the stage executors and the tick scheduler into one run:

    idle -> checking -> uploading -> creating_campaign -> (polling <-> creating_ads) -> complete

``stopped`` and ``error`` are reachable from any non-terminal phase.
"""

import asyncio

from launch_pipeline.adapters.ads.base import AdsPlatformClient
from launch_pipeline.domain.enums import LaunchPhase, MediaStage, MediaStatus, StageName
from launch_pipeline.domain.models import LaunchInput, PipelineSnapshot
from launch_pipeline.logging import bind_launch_context, clear_launch_context, get_logger
from launch_pipeline.services.progress import ProgressSink
from launch_pipeline.services.scheduler import TickScheduler
from launch_pipeline.services.stages import SleepFunc, StageExecutor
from launch_pipeline.services.state import MediaStore, PipelineState

logger = get_logger(__name__)

TERMINAL_PHASES = (LaunchPhase.COMPLETE, LaunchPhase.ERROR)


class LaunchController:
    """Owns one launch run: its state, phase machine and progress reporting.

    The controller is single-writer: only it and its stage executors mutate state, all on
    one event loop. Progress sinks and callers only ever see snapshots.
    """

    def __init__(
        self,
        launch: LaunchInput,
        client: AdsPlatformClient,
        on_progress: ProgressSink | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the controller.

        Args:
            launch: Validated launch input (media, campaign parameters, options).
            client: Ads platform client used by every stage.
            on_progress: Sink called with a snapshot after every state change.
            sleep: Awaitable delay in seconds; injectable for tests.
        """
        self.launch = launch
        self.options = launch.options
        self.client = client
        self.on_progress = on_progress

        self.state = PipelineState(
            media=MediaStore.from_inputs(launch.media),
            campaign_id=launch.campaign_id,
            adset_id=launch.adset_id,
        )
        self.stages = StageExecutor(self.state, client, launch, self._emit, sleep)
        self.scheduler = TickScheduler(self.state, self.stages, self.options, self._emit, sleep)

    def _emit(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.state.snapshot())
        except Exception:
            logger.exception("progress_sink_failed")

    async def start(self) -> PipelineSnapshot:
        """Run the whole pipeline and return the final snapshot.

        No-op (returns the current snapshot) if the run is already in progress.

        Raises:
            CampaignSetupError: If the campaign or ad set cannot be created.
        """
        if self.state.is_running:
            return self.get_state()

        self.state.is_running = True
        self.state.is_stopped = False
        self.state.error = None
        self.state.mark_started()

        bind_launch_context(account_id=self.launch.account_id, campaign=self.launch.campaign.name)
        logger.info(
            "launch_started",
            media=len(self.state.media),
            videos=len(self.state.media.videos()),
            client=self.client.name,
        )
        self._emit()

        try:
            await self._run_stages()
        except Exception as e:
            self.state.phase = LaunchPhase.ERROR
            self.state.error = str(e)
            logger.error("launch_failed", error=str(e))
            raise
        else:
            stats = self.state.media.stats()
            logger.info(
                "launch_finished",
                phase=str(self.state.phase),
                done=stats.done,
                failed=stats.failed,
                total=stats.total,
                elapsed_seconds=round(self.state.elapsed_seconds, 1),
            )
        finally:
            self.state.is_running = False
            self._emit()
            clear_launch_context()

        return self.get_state()

    async def _run_stages(self) -> None:
        if self.options.check_library_first and not self.options.force_reupload:
            await self.stages.check_library()
        if self.state.is_stopped:
            return

        await self.stages.upload_videos()
        if self.state.is_stopped:
            return

        await self.stages.create_campaign_and_ad_set()
        if self.state.is_stopped:
            return

        await self.scheduler.run()

    def stop(self) -> None:
        """Stop dispatching new batches. In-flight calls finish; idempotent."""
        if self.state.is_stopped:
            return

        self.state.is_stopped = True
        if self.state.phase not in TERMINAL_PHASES:
            self.state.phase = LaunchPhase.STOPPED
        logger.info("launch_stopped", tick=self.state.tick)
        self._emit()

    def get_state(self) -> PipelineSnapshot:
        """Snapshot of the run with fresh stats."""
        return self.state.snapshot()

    def retry_failed(self) -> int:
        """Give every failed item a fresh set of retries.

        Each item resumes from the first stage it has no result for. Does not restart the
        run; call ``run_phase`` or ``start`` afterwards.

        Returns:
            Number of items reset.
        """
        failed = self.state.media.failed()
        for item in failed:
            item.status = MediaStatus.RETRY
            item.retry_count = 0
            item.error = None
            if item.is_video and not item.fb_video_id:
                item.stage = MediaStage.UPLOAD
            elif item.is_video and not item.thumbnail_url:
                item.stage = MediaStage.POLL
            else:
                item.stage = MediaStage.AD

        logger.info("failed_items_reset", count=len(failed))
        self._emit()
        return len(failed)

    async def run_phase(self, name: StageName | str) -> PipelineSnapshot:
        """Run a single stage out of band, e.g. after ``retry_failed``.

        Raises:
            ValueError: If ``name`` is not a known stage.
            CampaignSetupError: If the campaign stage fails.
        """
        stage = StageName(name)
        self.state.is_stopped = False

        handlers = {
            StageName.CHECK: self.stages.check_library,
            StageName.UPLOAD: self.stages.upload_videos,
            StageName.CAMPAIGN: self.stages.create_campaign_and_ad_set,
            StageName.ADS: self.stages.create_ads,
            StageName.POLL: self.stages.poll_videos,
        }

        logger.info("phase_requested", stage=str(stage))
        await handlers[stage]()
        return self.get_state()
