"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable
from typing import Any

import pytest

# Set test environment before importing app modules
os.environ["LOG_LEVEL"] = "WARNING"
for _name in (
    "META_ACCESS_TOKEN",
    "META_APP_SECRET",
    "META_AD_ACCOUNT_ID",
    "META_PAGE_ID",
    "META_PIXEL_ID",
    "ALERT_DISCORD_WEBHOOK_URL",
):
    os.environ.pop(_name, None)


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def stub_client():
    """Get a stub ads client where videos are ready on the first poll."""
    from launch_pipeline.adapters.ads.stub import StubAdsClient

    return StubAdsClient(polls_until_ready=1)


def video(name: str, **extra: Any) -> dict[str, Any]:
    return {"type": "video", "name": name, "url": f"https://cdn.example.com/{name}.mp4", **extra}


def image(name: str, **extra: Any) -> dict[str, Any]:
    return {"type": "image", "name": name, "url": f"https://cdn.example.com/{name}.jpg", **extra}


@pytest.fixture
def media_factory() -> dict[str, Callable[..., dict[str, Any]]]:
    return {"video": video, "image": image}


@pytest.fixture
def make_launch():
    """Build a LaunchInput; delays default to zero so runs never wait."""
    from launch_pipeline.domain.models import LaunchInput

    def _make(media: list[dict[str, Any]] | None = None, **options: Any) -> LaunchInput:
        merged = {
            "upload_stagger_ms": 0,
            "tick_interval_ms": 0,
            "initial_poll_delay_ms": 0,
            **options,
        }
        return LaunchInput.model_validate(
            {
                "account_id": "act_123",
                "page_id": "page_1",
                "pixel_id": "pixel_1",
                "campaign": {"name": "Test Campaign"},
                "ad_set": {"name": "Test Ad Set", "daily_budget": 5000},
                "ad_creative": {
                    "link_url": "https://shop.example.com",
                    "message": "Buy now",
                    "headline": "Great product",
                },
                "media": media or [],
                "options": merged,
            }
        )

    return _make


@pytest.fixture
def make_controller(stub_client, sleeper):
    """Build a LaunchController around the stub client and sleep recorder."""
    from launch_pipeline.services.controller import LaunchController

    def _make(launch, client=None, on_progress=None) -> LaunchController:
        return LaunchController(
            launch,
            client or stub_client,
            on_progress=on_progress,
            sleep=sleeper,
        )

    return _make
