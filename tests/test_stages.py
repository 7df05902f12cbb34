"""Tests for stage executors and the retry/fallback policy."""

import pytest

from launch_pipeline.adapters.ads.base import BatchResult, LibraryVideo
from launch_pipeline.adapters.ads.stub import StubAdsClient
from launch_pipeline.domain.enums import LaunchPhase, MediaStage, MediaStatus, MediaType
from launch_pipeline.domain.models import MAX_RETRIES_EXCEEDED, MediaItem
from launch_pipeline.services.stages import (
    CampaignSetupError,
    apply_ad_failure,
    apply_upload_failure,
    chunk,
)


def _video(**kw) -> MediaItem:
    return MediaItem(type=MediaType.VIDEO, name="v1", url="https://a/v1.mp4",
                     stage=MediaStage.UPLOAD, **kw)


def _image(**kw) -> MediaItem:
    return MediaItem(type=MediaType.IMAGE, name="i1", url="https://a/i1.jpg",
                     stage=MediaStage.AD, **kw)


class TestChunk:
    def test_splits_in_order(self):
        assert chunk(list(range(12)), 10) == [list(range(10)), [10, 11]]

    def test_empty(self):
        assert chunk([], 5) == []


class TestUploadFailure:
    """Tests for apply_upload_failure."""

    def test_first_failure_switches_to_fallback(self):
        item = _video(fallback_url="https://b/v1.mp4")
        apply_upload_failure(item, max_retries=3, reason="fetch failed")

        assert item.used_fallback is True
        assert item.status == MediaStatus.RETRY
        assert item.retry_count == 1
        assert item.error == "fetch failed"
        assert item.url == "https://a/v1.mp4"
        assert item.upload_url == "https://b/v1.mp4"

    def test_retry_without_fallback(self):
        item = _video()
        apply_upload_failure(item, max_retries=3)
        assert item.status == MediaStatus.RETRY
        assert item.stage == MediaStage.UPLOAD
        assert item.retry_count == 1

    def test_exhausts_retries(self):
        item = _video()
        for _ in range(3):
            apply_upload_failure(item, max_retries=3)

        assert item.retry_count == 3
        assert item.stage == MediaStage.FAILED
        assert item.status == MediaStatus.FAILED
        assert item.error == MAX_RETRIES_EXCEEDED

    def test_fallback_shares_retry_counter(self):
        item = _video(fallback_url="https://b/v1.mp4")
        apply_upload_failure(item, max_retries=2)
        assert item.status == MediaStatus.RETRY
        apply_upload_failure(item, max_retries=2)
        assert item.stage == MediaStage.FAILED
        assert item.retry_count == 2

    def test_single_attempt_budget_still_tries_fallback(self):
        item = _video(fallback_url="https://b/v1.mp4")
        apply_upload_failure(item, max_retries=1)
        assert item.status == MediaStatus.RETRY
        assert item.used_fallback

    @pytest.mark.parametrize("has_fallback", [True, False])
    def test_retry_count_bounded_while_alive(self, has_fallback):
        item = _video(fallback_url="https://b/v1.mp4" if has_fallback else None)
        while item.stage != MediaStage.FAILED:
            apply_upload_failure(item, max_retries=3)
            if item.stage != MediaStage.FAILED:
                assert item.retry_count <= 3
        assert item.retry_count <= 3


class TestAdFailure:
    """Tests for apply_ad_failure."""

    def test_image_fallback_replaces_url(self):
        item = _image(fallback_url="https://b/i1.jpg")
        apply_ad_failure(item, max_retries=3, reason="bad image")

        assert item.url == "https://b/i1.jpg"
        assert item.used_fallback is True
        assert item.status == MediaStatus.RETRY
        assert item.stage == MediaStage.AD
        assert item.retry_count == 1

    def test_video_ad_failure_keeps_url(self):
        item = MediaItem(
            type=MediaType.VIDEO,
            name="v1",
            url="https://a/v1.mp4",
            fallback_url="https://b/v1.mp4",
            stage=MediaStage.AD,
            fb_video_id="vid",
        )
        apply_ad_failure(item, max_retries=3)
        assert item.url == "https://a/v1.mp4"
        assert item.used_fallback is False
        assert item.status == MediaStatus.RETRY

    def test_exhausts_retries(self):
        item = _image()
        for _ in range(2):
            apply_ad_failure(item, max_retries=2)
        assert item.stage == MediaStage.FAILED
        assert item.error == MAX_RETRIES_EXCEEDED


class TestCheckLibrary:
    """Tests for the library check stage."""

    @pytest.mark.asyncio
    async def test_fast_forwards_ready_videos(self, make_launch, make_controller, media_factory):
        video = media_factory["video"]
        client = StubAdsClient(
            library=[
                LibraryVideo(id="lib_1", title="v1", video_status="ready", picture="https://t/1"),
                LibraryVideo(id="lib_2", title="v2", video_status="processing"),
            ]
        )
        controller = make_controller(make_launch([video("v1"), video("v2")]), client=client)

        await controller.stages.check_library()

        v1 = controller.state.media.get("v1")
        v2 = controller.state.media.get("v2")
        assert v1.stage == MediaStage.AD
        assert v1.fb_video_id == "lib_1"
        assert v1.thumbnail_url == "https://t/1"
        assert v2.stage == MediaStage.UPLOAD
        assert v2.fb_video_id is None
        assert client.calls_to("check_library_by_name") == [["v1", "v2"]]

    @pytest.mark.asyncio
    async def test_known_video_gets_library_thumbnail(
        self, make_launch, make_controller, media_factory
    ):
        video = media_factory["video"]
        image = media_factory["image"]
        client = StubAdsClient(
            library=[
                LibraryVideo(id="123", title="known", video_status="ready",
                             picture="https://t/known.jpg"),
            ]
        )
        launch = make_launch([video("v1"), video("known", fb_video_id="123"), image("i1")])
        controller = make_controller(launch, client=client)

        await controller.stages.check_library()

        assert client.calls_to("check_library_by_name") == [["v1", "known"]]
        known = controller.state.media.get("known")
        assert known.fb_video_id == "123"
        assert known.thumbnail_url == "https://t/known.jpg"
        assert known.stage == MediaStage.AD

    @pytest.mark.asyncio
    async def test_skips_videos_with_thumbnail_or_terminal(
        self, make_launch, make_controller, media_factory, stub_client
    ):
        video = media_factory["video"]
        launch = make_launch(
            [
                video("v1"),
                video("thumbed", fb_video_id="1", thumbnail_url="https://t/1.jpg"),
                video("finished", fb_video_id="2"),
            ]
        )
        controller = make_controller(launch)
        finished = controller.state.media.get("finished")
        finished.stage = MediaStage.DONE
        finished.status = MediaStatus.COMPLETED

        await controller.stages.check_library()

        assert stub_client.calls_to("check_library_by_name") == [["v1"]]
        assert finished.stage == MediaStage.DONE

    @pytest.mark.asyncio
    async def test_title_match_with_other_id_is_ignored(
        self, make_launch, make_controller, media_factory
    ):
        client = StubAdsClient(
            library=[
                LibraryVideo(id="999", title="known", video_status="ready",
                             picture="https://t/other.jpg"),
            ]
        )
        launch = make_launch([media_factory["video"]("known", fb_video_id="123")])
        controller = make_controller(launch, client=client)

        await controller.stages.check_library()

        known = controller.state.media.get("known")
        assert known.fb_video_id == "123"
        assert known.thumbnail_url is None

    @pytest.mark.asyncio
    async def test_lookup_failure_is_not_fatal(self, make_launch, make_controller, media_factory):
        client = StubAdsClient(transport_failures={"check_library_by_name": 1})
        controller = make_controller(make_launch([media_factory["video"]("v1")]), client=client)

        await controller.stages.check_library()

        assert controller.state.media.get("v1").stage == MediaStage.UPLOAD
        assert controller.state.phase == LaunchPhase.CHECKING


class TestUploadVideos:
    """Tests for the upload stage."""

    @pytest.mark.asyncio
    async def test_staggered_batches(
        self, make_launch, make_controller, media_factory, stub_client, sleeper
    ):
        video = media_factory["video"]
        launch = make_launch([video(f"v{i}") for i in range(12)], upload_stagger_ms=1000)
        controller = make_controller(launch)

        await controller.stages.upload_videos()

        batches = stub_client.calls_to("upload_video_batch")
        assert [len(batch) for batch in batches] == [10, 2]
        assert sleeper.calls == [1.0]
        assert all(item.stage == MediaStage.POLL for item in controller.state.media)
        assert all(item.fb_video_id for item in controller.state.media)

    @pytest.mark.asyncio
    async def test_failed_primary_retries_with_fallback(
        self, make_launch, make_controller, media_factory
    ):
        video = media_factory["video"]
        primary = "https://cdn.example.com/v1.mp4"
        client = StubAdsClient(failing_urls={primary})
        launch = make_launch([video("v1", fallback_url="https://backup.example.com/v1.mp4")])
        controller = make_controller(launch, client=client)

        await controller.stages.upload_videos()

        item = controller.state.media.get("v1")
        assert item.status == MediaStatus.RETRY
        assert item.used_fallback is True
        assert item.retry_count == 1
        assert item.error == f"Could not fetch {primary}"

        await controller.stages.upload_videos()

        second = client.calls_to("upload_video_batch")[1]
        assert second[0].url == "https://backup.example.com/v1.mp4"
        assert item.stage == MediaStage.POLL
        assert item.fb_video_id is not None
        assert item.error is None

    @pytest.mark.asyncio
    async def test_transport_error_fails_whole_batch(
        self, make_launch, make_controller, media_factory
    ):
        video = media_factory["video"]
        client = StubAdsClient(transport_failures={"upload_video_batch": 1})
        controller = make_controller(make_launch([video("v1"), video("v2")]), client=client)

        await controller.stages.upload_videos()

        for item in controller.state.media:
            assert item.status == MediaStatus.RETRY
            assert item.retry_count == 1
            assert "Simulated transport failure" in item.error

    @pytest.mark.asyncio
    async def test_malformed_batch_response(self, make_launch, make_controller, media_factory):
        class RejectingClient(StubAdsClient):
            async def upload_video_batch(self, account_id, videos):
                return BatchResult(items=None, error="Invalid batch", rate=12.0)

        video = media_factory["video"]
        controller = make_controller(
            make_launch([video("v1"), video("v2")]), client=RejectingClient()
        )

        await controller.stages.upload_videos()

        assert controller.state.rate == 12.0
        for item in controller.state.media:
            assert item.status == MediaStatus.RETRY
            assert item.error == "Invalid batch"

    @pytest.mark.asyncio
    async def test_stop_between_batches_requeues_rest(
        self, make_launch, make_controller, media_factory
    ):
        holder = {}

        class StoppingClient(StubAdsClient):
            async def upload_video_batch(self, account_id, videos):
                result = await super().upload_video_batch(account_id, videos)
                holder["controller"].stop()
                return result

        video = media_factory["video"]
        client = StoppingClient()
        launch = make_launch([video(f"v{i}") for i in range(5)], upload_batch_size=2)
        controller = make_controller(launch, client=client)
        holder["controller"] = controller

        await controller.stages.upload_videos()

        assert len(client.calls_to("upload_video_batch")) == 1
        stages = [item.stage for item in controller.state.media]
        assert stages[:2] == [MediaStage.POLL, MediaStage.POLL]
        for item in list(controller.state.media)[2:]:
            assert item.stage == MediaStage.UPLOAD
            assert item.status == MediaStatus.QUEUED

    @pytest.mark.asyncio
    async def test_nothing_to_upload(self, make_launch, make_controller, media_factory, stub_client):
        controller = make_controller(make_launch([media_factory["image"]("i1")]))
        await controller.stages.upload_videos()
        assert stub_client.calls_to("upload_video_batch") == []
        assert controller.state.phase == LaunchPhase.UPLOADING


class TestPollVideos:
    """Tests for the poll stage."""

    @pytest.mark.asyncio
    async def test_ready_videos_move_to_ad(self, make_launch, make_controller, media_factory):
        video = media_factory["video"]
        client = StubAdsClient(polls_until_ready=2)
        controller = make_controller(make_launch([video("v1")]), client=client)
        await controller.stages.upload_videos()
        item = controller.state.media.get("v1")

        await controller.stages.poll_videos()
        assert item.stage == MediaStage.POLL
        assert item.thumbnail_url is None

        await controller.stages.poll_videos()
        assert item.stage == MediaStage.AD
        assert item.status == MediaStatus.QUEUED
        assert item.thumbnail_url == f"https://stub.example.com/thumbs/{item.fb_video_id}.jpg"

    @pytest.mark.asyncio
    async def test_poll_error_leaves_items(self, make_launch, make_controller, media_factory):
        video = media_factory["video"]
        client = StubAdsClient(transport_failures={"poll_library": 1})
        controller = make_controller(make_launch([video("v1")]), client=client)
        await controller.stages.upload_videos()

        await controller.stages.poll_videos()

        assert controller.state.media.get("v1").stage == MediaStage.POLL


class TestCampaignSetup:
    """Tests for campaign and ad set creation."""

    @pytest.mark.asyncio
    async def test_creates_campaign_then_ad_set(self, make_launch, make_controller, stub_client):
        controller = make_controller(make_launch())

        await controller.stages.create_campaign_and_ad_set()

        assert controller.state.campaign_id == "stub_campaign_1"
        assert controller.state.adset_id == "stub_adset_2"
        assert stub_client.calls_to("create_ad_set") == [
            {"campaign_id": "stub_campaign_1", "pixel_id": "pixel_1"}
        ]

    @pytest.mark.asyncio
    async def test_campaign_error_is_fatal(self, make_launch, make_controller):
        client = StubAdsClient(campaign_error="Invalid objective")
        controller = make_controller(make_launch(), client=client)

        with pytest.raises(CampaignSetupError, match="Campaign: Invalid objective"):
            await controller.stages.create_campaign_and_ad_set()

        assert controller.state.phase == LaunchPhase.ERROR
        assert controller.state.error == "Campaign: Invalid objective"
        assert client.calls_to("create_ad_set") == []

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, make_launch, make_controller):
        client = StubAdsClient(transport_failures={"create_campaign": 1})
        controller = make_controller(make_launch(), client=client)

        with pytest.raises(CampaignSetupError):
            await controller.stages.create_campaign_and_ad_set()
        assert controller.state.phase == LaunchPhase.ERROR

    @pytest.mark.asyncio
    async def test_ad_set_retry_reuses_campaign(self, make_launch, make_controller):
        client = StubAdsClient(ad_set_error="Pixel not found")
        controller = make_controller(make_launch(), client=client)

        with pytest.raises(CampaignSetupError, match="AdSet: Pixel not found"):
            await controller.stages.create_campaign_and_ad_set()
        assert controller.state.campaign_id is not None

        client.ad_set_error = None
        await controller.stages.create_campaign_and_ad_set()

        assert len(client.calls_to("create_campaign")) == 1
        assert len(client.calls_to("create_ad_set")) == 2
        assert controller.state.adset_id is not None

    @pytest.mark.asyncio
    async def test_existing_ids_skip_creation(self, make_launch, make_controller, stub_client):
        controller = make_controller(make_launch())
        controller.state.campaign_id = "c1"
        controller.state.adset_id = "as1"

        await controller.stages.create_campaign_and_ad_set()

        assert stub_client.calls == []


class TestCreateAds:
    """Tests for the ad creation stage."""

    @pytest.mark.asyncio
    async def test_batches_and_marks_done(
        self, make_launch, make_controller, media_factory, stub_client
    ):
        image = media_factory["image"]
        controller = make_controller(make_launch([image(f"i{i}") for i in range(30)]))
        controller.state.adset_id = "as1"

        await controller.stages.create_ads()

        batches = stub_client.calls_to("create_ads_batch")
        assert [len(batch) for batch in batches] == [25, 5]
        for item in controller.state.media:
            assert item.stage == MediaStage.DONE
            assert item.status == MediaStatus.COMPLETED
            assert item.ad_id

    @pytest.mark.asyncio
    async def test_image_fallback_on_ad_failure(
        self, make_launch, make_controller, media_factory
    ):
        image = media_factory["image"]
        client = StubAdsClient(failing_urls={"https://cdn.example.com/i1.jpg"})
        launch = make_launch([image("i1", fallback_url="https://backup.example.com/i1.jpg")])
        controller = make_controller(launch, client=client)
        controller.state.adset_id = "as1"

        await controller.stages.create_ads()
        item = controller.state.media.get("i1")
        assert item.url == "https://backup.example.com/i1.jpg"
        assert item.status == MediaStatus.RETRY

        await controller.stages.create_ads()
        assert item.stage == MediaStage.DONE
        assert client.calls_to("create_ads_batch")[1][0].url == "https://backup.example.com/i1.jpg"

    @pytest.mark.asyncio
    async def test_skipped_without_ad_set(
        self, make_launch, make_controller, media_factory, stub_client
    ):
        controller = make_controller(make_launch([media_factory["image"]("i1")]))

        await controller.stages.create_ads()

        assert stub_client.calls_to("create_ads_batch") == []
        assert controller.state.media.get("i1").status == MediaStatus.QUEUED

    @pytest.mark.asyncio
    async def test_stopped_run_does_nothing(
        self, make_launch, make_controller, media_factory, stub_client
    ):
        controller = make_controller(make_launch([media_factory["image"]("i1")]))
        controller.state.adset_id = "as1"
        controller.stop()

        await controller.stages.create_ads()

        assert stub_client.calls == []
        assert controller.state.phase == LaunchPhase.STOPPED
