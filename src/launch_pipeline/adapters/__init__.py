"""Adapters for external services."""

from launch_pipeline.adapters.ads.base import AdsPlatformClient

__all__ = [
    "AdsPlatformClient",
]
