"""Meta Graph API client for the launch pipeline.

Thin per-endpoint wrappers around the Marketing API. Uploads and ad creation go through
the Graph batch endpoint so one HTTP call carries a whole batch; every call reports the
usage rate from the platform's throttling headers.
"""

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

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
from launch_pipeline.config import GRAPH_REQUIRED_SETTINGS, Settings, get_settings
from launch_pipeline.domain.models import (
    AdCreativeConfig,
    AdSetConfig,
    CampaignConfig,
    MediaItem,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v21.0"

# Throttling headers and the utilization fields they carry
USAGE_HEADERS = ("x-business-use-case-usage", "x-ad-account-usage", "x-app-usage")
USAGE_FIELDS = ("call_count", "total_cputime", "total_time", "acc_id_util_pct")

LIBRARY_FIELDS = "id,title,status,picture"
POLL_FIELDS = "id,status,picture"
LIBRARY_PAGE_LIMIT = 500


def appsecret_proof(app_secret: str, access_token: str) -> str:
    """HMAC-SHA256 of the access token keyed by the app secret, hex encoded."""
    return hmac.new(
        app_secret.encode("utf-8"),
        access_token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _collect_usage(value: Any, peaks: list[float]) -> None:
    if isinstance(value, list):
        for entry in value:
            _collect_usage(entry, peaks)
    elif isinstance(value, dict):
        for key, entry in value.items():
            if key in USAGE_FIELDS and isinstance(entry, int | float):
                peaks.append(float(entry))
            elif isinstance(entry, dict | list):
                _collect_usage(entry, peaks)


def parse_usage_rate(headers: Mapping[str, str]) -> float:
    """Highest utilization percentage reported by any throttling header.

    ``x-business-use-case-usage`` is keyed by business/account ID with a list of usage
    dicts; the ad-account and app headers are flat dicts.
    """
    peaks: list[float] = []
    for header in USAGE_HEADERS:
        raw = headers.get(header)
        if not raw:
            continue
        try:
            _collect_usage(json.loads(raw), peaks)
        except ValueError:
            logger.debug(f"Ignoring unparseable {header} header: {raw[:100]}")
    return min(100.0, max(peaks, default=0.0))


def _error_message(payload: Any) -> str | None:
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        error = payload["error"]
        message = error.get("error_user_msg") or error.get("message") or "Unknown error"
        return str(message)
    return None


def _expect_object(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise AdsPlatformError(f"Unexpected {type(payload).__name__} response to {what}")
    return payload


def build_object_story_spec(
    item: MediaItem,
    page_id: str,
    creative: AdCreativeConfig,
) -> dict[str, Any]:
    """Build the inline creative spec for one media item.

    Videos reference the uploaded video and its platform thumbnail; images link the
    picture by URL.
    """
    call_to_action = {"type": creative.call_to_action, "value": {"link": creative.link_url}}

    spec: dict[str, Any] = {"page_id": page_id}
    if item.is_video:
        video_data: dict[str, Any] = {
            "video_id": item.fb_video_id,
            "image_url": item.thumbnail_url,
            "message": creative.message,
            "title": creative.headline,
            "call_to_action": call_to_action,
        }
        if creative.description:
            video_data["link_description"] = creative.description
        spec["video_data"] = video_data
    else:
        link_data: dict[str, Any] = {
            "picture": item.url,
            "link": creative.link_url,
            "message": creative.message,
            "name": creative.headline,
            "call_to_action": call_to_action,
        }
        if creative.description:
            link_data["description"] = creative.description
        spec["link_data"] = link_data

    if creative.instagram_user_id:
        spec["instagram_user_id"] = creative.instagram_user_id
    return spec


class GraphAdsClient(AdsPlatformClient):
    """Ads platform client backed by the Meta Graph API.

    Request flow for a launch:
    1. GET  /act_{id}/advideos?filtering=title IN [...]    - library check
    2. POST /  batch=[POST act_{id}/advideos, ...]         - upload from URLs
    3. GET  /?ids=...&fields=status,picture                - poll processing
    4. POST /act_{id}/campaigns, /act_{id}/adsets           - campaign + ad set
    5. POST /  batch=[POST act_{id}/ads, ...]              - ads with inline creatives
    """

    def __init__(
        self,
        access_token: str,
        app_secret: str | None = None,
        api_version: str = DEFAULT_API_VERSION,
        graph_url: str = DEFAULT_GRAPH_URL,
        timeout: float = 60.0,
        rate_warning_threshold: float = 80.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the Graph client.

        Args:
            access_token: Token used for every call.
            app_secret: If set, calls are signed with ``appsecret_proof``.
            api_version: Graph API version, e.g. "v21.0".
            graph_url: Graph API host.
            timeout: HTTP timeout in seconds.
            rate_warning_threshold: Usage percentage that triggers a warning log.
            client: Pre-built httpx client (tests inject one with a mock transport).
        """
        self.access_token = access_token
        self.app_secret = app_secret
        self.api_version = api_version
        self.graph_url = graph_url.rstrip("/")
        self.timeout = timeout
        self.rate_warning_threshold = rate_warning_threshold
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GraphAdsClient":
        """Build a client from application settings.

        Raises:
            ConfigurationError: If any required Graph setting is missing.
        """
        settings = settings or get_settings()
        settings.require(*GRAPH_REQUIRED_SETTINGS)
        return cls(
            access_token=settings.meta_access_token or "",
            app_secret=settings.meta_app_secret,
            api_version=settings.meta_api_version,
            graph_url=settings.meta_graph_url,
            timeout=settings.meta_http_timeout_seconds,
            rate_warning_threshold=settings.rate_warning_threshold,
        )

    @property
    def name(self) -> str:
        return "graph"

    @property
    def base_url(self) -> str:
        return f"{self.graph_url}/{self.api_version}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _auth_params(self) -> dict[str, str]:
        params = {"access_token": self.access_token}
        if self.app_secret:
            params["appsecret_proof"] = appsecret_proof(self.app_secret, self.access_token)
        return params

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> tuple[Any, float]:
        """Send one signed request and return (decoded JSON, usage rate).

        Raises:
            AdsPlatformError: On transport failures or non-JSON responses.
        """
        client = await self._get_client()
        url = f"{self.base_url}/{path}" if path else f"{self.base_url}/"

        if method == "GET":
            params = {**(params or {}), **self._auth_params()}
        else:
            data = {**(data or {}), **self._auth_params()}

        try:
            response = await client.request(method, url, params=params, data=data)
        except httpx.HTTPError as e:
            raise AdsPlatformError(f"{method} {path or '/'} failed: {e}") from e

        rate = parse_usage_rate(response.headers)
        if rate >= self.rate_warning_threshold:
            logger.warning(f"Graph API usage at {rate:.0f}% after {method} {path or '/'}")

        try:
            payload = response.json()
        except ValueError as e:
            raise AdsPlatformError(
                f"Non-JSON response from {method} {path or '/'} (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

        return payload, rate

    async def _batch(self, requests: list[dict[str, Any]]) -> BatchResult:
        payload, rate = await self._request(
            "POST",
            "",
            data={"batch": json.dumps(requests), "include_headers": "false"},
        )

        if not isinstance(payload, list):
            error = _error_message(payload) or "Batch response was not a list"
            logger.warning(f"Graph batch call rejected: {error}")
            return BatchResult(items=None, rate=rate, error=error)

        items = []
        for entry in payload:
            # Timed-out batch entries come back as null
            if not isinstance(entry, dict):
                items.append(BatchItemResult(code=0, body=None))
                continue
            items.append(BatchItemResult(code=int(entry.get("code") or 0), body=entry.get("body")))
        return BatchResult(items=items, rate=rate)

    @staticmethod
    def _library_video(entry: dict[str, Any]) -> LibraryVideo:
        status = entry.get("status")
        return LibraryVideo(
            id=str(entry.get("id")),
            title=entry.get("title"),
            video_status=status.get("video_status") if isinstance(status, dict) else None,
            picture=entry.get("picture"),
        )

    async def check_library_by_name(self, account_id: str, names: list[str]) -> LibraryLookup:
        filtering = [{"field": "title", "operator": "IN", "value": names}]
        payload, rate = await self._request(
            "GET",
            f"act_{account_id}/advideos",
            params={
                "fields": LIBRARY_FIELDS,
                "filtering": json.dumps(filtering),
                "limit": LIBRARY_PAGE_LIMIT,
            },
        )
        payload = _expect_object(payload, "library lookup")

        error = _error_message(payload)
        if error:
            logger.warning(f"Library lookup failed: {error}")
            return LibraryLookup(rate=rate)

        items: dict[str, LibraryVideo] = {}
        for entry in payload.get("data") or []:
            video = self._library_video(entry)
            if not video.title:
                continue
            # Several uploads can share a title; prefer one that is ready
            current = items.get(video.title)
            if current is None or (video.is_ready and not current.is_ready):
                items[video.title] = video

        logger.info(f"Library lookup matched {len(items)}/{len(names)} videos by title")
        return LibraryLookup(items=items, rate=rate)

    async def upload_video_batch(
        self, account_id: str, videos: list[VideoUpload]
    ) -> BatchResult:
        requests = [
            {
                "method": "POST",
                "relative_url": f"act_{account_id}/advideos",
                "body": urlencode({"file_url": video.url, "name": video.name, "title": video.name}),
            }
            for video in videos
        ]
        logger.info(f"Uploading batch of {len(videos)} videos to act_{account_id}")
        return await self._batch(requests)

    async def poll_library(self, account_id: str, video_ids: list[str]) -> LibraryLookup:
        payload, rate = await self._request(
            "GET",
            "",
            params={"ids": ",".join(video_ids), "fields": POLL_FIELDS},
        )
        payload = _expect_object(payload, "library poll")

        error = _error_message(payload)
        if error:
            logger.warning(f"Poll of {len(video_ids)} videos failed: {error}")
            return LibraryLookup(rate=rate)

        items = {
            str(video_id): self._library_video(entry)
            for video_id, entry in payload.items()
            if isinstance(entry, dict)
        }
        return LibraryLookup(items=items, rate=rate)

    async def create_campaign(self, account_id: str, config: CampaignConfig) -> CreateResult:
        data: dict[str, Any] = {
            "name": config.name,
            "objective": config.objective,
            "status": str(config.status),
            "buying_type": config.buying_type,
            "special_ad_categories": json.dumps(config.special_ad_categories),
        }
        if config.daily_budget is not None:
            data["daily_budget"] = config.daily_budget
        if config.bid_strategy:
            data["bid_strategy"] = config.bid_strategy

        payload, rate = await self._request("POST", f"act_{account_id}/campaigns", data=data)
        return self._create_result(payload, rate)

    async def create_ad_set(
        self,
        account_id: str,
        campaign_id: str,
        config: AdSetConfig,
        pixel_id: str,
    ) -> CreateResult:
        data: dict[str, Any] = {
            "name": config.name,
            "campaign_id": campaign_id,
            "billing_event": config.billing_event,
            "optimization_goal": config.optimization_goal,
            "bid_strategy": config.bid_strategy,
            "targeting": json.dumps(config.targeting),
            "promoted_object": json.dumps(
                {"pixel_id": pixel_id, "custom_event_type": config.custom_event_type}
            ),
            "status": str(config.status),
        }
        # Without a budget here the campaign budget (CBO) applies
        if config.daily_budget is not None:
            data["daily_budget"] = config.daily_budget
        if config.bid_amount is not None:
            data["bid_amount"] = config.bid_amount
        if config.start_time:
            data["start_time"] = config.start_time

        payload, rate = await self._request("POST", f"act_{account_id}/adsets", data=data)
        return self._create_result(payload, rate)

    @staticmethod
    def _create_result(payload: Any, rate: float) -> CreateResult:
        error = _error_message(payload)
        if error:
            return CreateResult(error=error, rate=rate)
        created = payload.get("id") if isinstance(payload, dict) else None
        if not created:
            return CreateResult(error="Response did not include an ID", rate=rate)
        return CreateResult(id=str(created), rate=rate)

    async def create_ads_batch(
        self,
        account_id: str,
        adset_id: str,
        page_id: str,
        items: list[MediaItem],
        creative: AdCreativeConfig,
    ) -> BatchResult:
        requests = []
        for item in items:
            creative_spec: dict[str, Any] = {
                "name": f"{item.name} - Creative",
                "object_story_spec": build_object_story_spec(item, page_id, creative),
            }
            if creative.url_tags:
                creative_spec["url_tags"] = creative.url_tags
            body = {
                "name": item.name,
                "adset_id": adset_id,
                "status": str(creative.ad_status),
                "creative": json.dumps(creative_spec),
            }
            requests.append(
                {
                    "method": "POST",
                    "relative_url": f"act_{account_id}/ads",
                    "body": urlencode(body),
                }
            )

        logger.info(f"Creating batch of {len(items)} ads in ad set {adset_id}")
        return await self._batch(requests)

    async def health_check(self) -> bool:
        """Verify the token by fetching the token owner."""
        try:
            payload, _ = await self._request("GET", "me", params={"fields": "id"})
        except AdsPlatformError as e:
            logger.warning(f"Graph health check failed: {e}")
            return False
        return isinstance(payload, dict) and "id" in payload

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
