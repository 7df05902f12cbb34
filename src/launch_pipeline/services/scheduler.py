"""Tick loop that drives uploaded media to live ads."""

from collections.abc import Callable

from launch_pipeline.domain.enums import LaunchPhase
from launch_pipeline.domain.models import LaunchOptions
from launch_pipeline.logging import get_logger
from launch_pipeline.services.stages import SleepFunc, StageExecutor
from launch_pipeline.services.state import PipelineState

logger = get_logger(__name__)


class TickScheduler:
    """Bounded polling loop.

    Each tick: poll processing videos, create ads for ready items, re-upload videos
    waiting for a retry, then stop early if every item is done or failed. Running out of
    ticks is not a failure; the run keeps whatever phase it last reached.
    """

    def __init__(
        self,
        state: PipelineState,
        stages: StageExecutor,
        options: LaunchOptions,
        emit: Callable[[], None],
        sleep: SleepFunc,
    ) -> None:
        self.state = state
        self.stages = stages
        self.options = options
        self.emit = emit
        self.sleep = sleep

    async def run(self) -> None:
        # Budget already spent by an earlier start()
        if self.state.tick >= self.options.max_ticks:
            return

        # Platform-side processing is never instant
        await self.sleep(self.options.initial_poll_delay_ms / 1000)

        while self.state.tick < self.options.max_ticks and not self.state.is_stopped:
            self.state.tick += 1
            logger.info("tick_started", tick=self.state.tick, max_ticks=self.options.max_ticks)
            self.emit()

            await self.stages.poll_videos()
            await self.stages.create_ads()

            if self.state.media.has_upload_retries():
                await self.stages.upload_videos()

            stats = self.state.media.stats()
            if stats.is_complete and not self.state.is_stopped:
                self.state.phase = LaunchPhase.COMPLETE
                logger.info(
                    "launch_complete",
                    tick=self.state.tick,
                    done=stats.done,
                    failed=stats.failed,
                )
                self.emit()
                return

            if self.state.tick < self.options.max_ticks and not self.state.is_stopped:
                await self.sleep(self.options.tick_interval_ms / 1000)

        if not self.state.is_stopped:
            stats = self.state.media.stats()
            logger.warning(
                "tick_budget_exhausted",
                ticks=self.state.tick,
                done=stats.done,
                failed=stats.failed,
                pending=stats.total - stats.done - stats.failed,
            )
