"""Advertising platform clients."""

from launch_pipeline.adapters.ads.base import (
    AdsPlatformClient,
    AdsPlatformError,
    BatchItemResult,
    BatchResult,
    CreateResult,
    LibraryLookup,
    LibraryVideo,
    VideoUpload,
)
from launch_pipeline.adapters.ads.graph import GraphAdsClient
from launch_pipeline.adapters.ads.stub import StubAdsClient

__all__ = [
    # Base
    "AdsPlatformClient",
    "AdsPlatformError",
    "BatchItemResult",
    "BatchResult",
    "CreateResult",
    "LibraryLookup",
    "LibraryVideo",
    "VideoUpload",
    # Graph API
    "GraphAdsClient",
    # Stub
    "StubAdsClient",
]
