"""Alerting for failed or incomplete launches."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import httpx

from launch_pipeline.config import settings
from launch_pipeline.domain.models import PipelineSnapshot
from launch_pipeline.logging import get_logger

logger = get_logger(__name__)


class AlertSeverity(StrEnum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class Alert:
    """An alert to be sent to the operator channel."""

    title: str
    message: str
    severity: AlertSeverity = AlertSeverity.ERROR
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AlertingService:
    """Sends alerts to a Discord webhook."""

    # Discord embed colors by severity
    DISCORD_COLORS = {
        AlertSeverity.INFO: 0x3498DB,  # Blue
        AlertSeverity.WARNING: 0xF39C12,  # Orange
        AlertSeverity.ERROR: 0xE74C3C,  # Red
        AlertSeverity.CRITICAL: 0x9B59B6,  # Purple
    }

    def __init__(self, webhook_url: str | None = None) -> None:
        self.discord_webhook_url = webhook_url or settings.alert_discord_webhook_url

    @property
    def enabled(self) -> bool:
        return bool(self.discord_webhook_url)

    async def send_alert(self, alert: Alert) -> bool:
        """Send an alert; returns True if it was delivered."""
        if not self.discord_webhook_url:
            return False

        try:
            return await self._send_discord(alert)
        except httpx.HTTPError as e:
            logger.error("discord_alert_failed", error=str(e))
            return False

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        fields = []
        for key, value in alert.context.items():
            # Truncate long values
            str_value = str(value)
            if len(str_value) > 200:
                str_value = str_value[:197] + "..."
            fields.append(
                {
                    "name": key.replace("_", " ").title(),
                    "value": str_value,
                    "inline": True,
                }
            )

        return {
            "embeds": [
                {
                    "title": f"[{alert.severity.value.upper()}] {alert.title}",
                    "description": alert.message,
                    "color": self.DISCORD_COLORS.get(alert.severity, 0xE74C3C),
                    "fields": fields[:25],  # Discord limit
                    "timestamp": alert.timestamp.isoformat(),
                    "footer": {"text": "Launch Pipeline Alerting"},
                }
            ]
        }

    async def _send_discord(self, alert: Alert) -> bool:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.discord_webhook_url or "",
                json=self.build_payload(alert),
                timeout=10.0,
            )
            response.raise_for_status()

        logger.info("discord_alert_sent", severity=alert.severity.value, title=alert.title)
        return True


def _snapshot_context(snapshot: PipelineSnapshot) -> dict[str, Any]:
    return {
        "phase": str(snapshot.phase),
        "campaign_id": snapshot.campaign_id or "-",
        "adset_id": snapshot.adset_id or "-",
        "done": f"{snapshot.stats.done}/{snapshot.stats.total}",
        "failed": snapshot.stats.failed,
        "tick": snapshot.tick,
    }


async def alert_launch_failure(
    snapshot: PipelineSnapshot,
    error_message: str,
    service: AlertingService | None = None,
) -> bool:
    """Alert that a launch aborted (campaign or ad set could not be created)."""
    if not settings.alert_on_launch_failure:
        return False

    alert = Alert(
        title="Launch Failed",
        message=error_message,
        severity=AlertSeverity.CRITICAL,
        context=_snapshot_context(snapshot),
    )
    return await (service or AlertingService()).send_alert(alert)


async def alert_launch_incomplete(
    snapshot: PipelineSnapshot,
    service: AlertingService | None = None,
) -> bool:
    """Alert that a launch finished with failed or still-pending items."""
    if not settings.alert_on_launch_failure:
        return False

    stats = snapshot.stats
    pending = stats.total - stats.done - stats.failed
    failed_names = [item.name for item in snapshot.media if item.stage == "failed"]

    message = f"{stats.failed} failed, {pending} still pending after {snapshot.tick} ticks."
    if failed_names:
        message += f"\nFailed: {', '.join(failed_names[:20])}"

    alert = Alert(
        title="Launch Incomplete",
        message=message,
        severity=AlertSeverity.ERROR if stats.failed else AlertSeverity.WARNING,
        context=_snapshot_context(snapshot),
    )
    return await (service or AlertingService()).send_alert(alert)
