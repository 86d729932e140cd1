"""
Notification Service - Webhook and Slack delivery of goal conversions.

Delivery is best-effort: every failure is logged and reported as False,
nothing is raised or retried.
"""
import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

import httpx

from beacon.core.config import settings
from beacon.core.exceptions import NotificationDeliveryError
from beacon.core.logging import get_logger

if TYPE_CHECKING:
    from beacon.services.outbox import GoalNotification

logger = get_logger(__name__)


class NotificationService:
    """
    Outbound notification channels.

    Channels:
    - Webhook: JSON POST with optional HMAC signature
    - Slack: incoming-webhook text message
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        signing_secret: Optional[str] = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.notification_timeout
        self.signing_secret = signing_secret or settings.webhook_signing_secret

    async def _post(self, url: str, body: str, headers: dict[str, str]) -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                url,
                headers=headers,
                content=body,
                timeout=self.timeout,
            )
        if not 200 <= response.status_code < 300:
            raise NotificationDeliveryError(
                "Non-success response",
                url=url,
                status=response.status_code,
            )

    async def send_webhook(
        self,
        url: str,
        payload: dict[str, Any],
        secret: Optional[str] = None,
    ) -> bool:
        """
        Send webhook HTTP POST with optional HMAC signature.

        Args:
            url: Webhook endpoint URL
            payload: JSON payload to send
            secret: Optional secret for HMAC signature

        Returns:
            True if delivered successfully
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.webhook_user_agent,
        }
        body = json.dumps(payload)

        if secret:
            signature = hmac.new(
                secret.encode(),
                body.encode(),
                hashlib.sha256,
            ).hexdigest()
            headers["X-Webhook-Signature"] = f"sha256={signature}"

        try:
            await self._post(url, body, headers)
        except NotificationDeliveryError as e:
            logger.warning("Webhook delivery failed", url=url, status=e.context.get("status"))
            return False
        except Exception as e:
            logger.error("Webhook error", url=url, error=str(e))
            return False

        logger.info("Webhook delivered", url=url)
        return True

    async def send_slack_message(self, url: str, text: str) -> bool:
        """Post a plain text message to a Slack incoming webhook."""
        try:
            await self._post(
                url,
                json.dumps({"text": text}),
                {"Content-Type": "application/json"},
            )
        except NotificationDeliveryError as e:
            logger.warning("Slack delivery failed", status=e.context.get("status"))
            return False
        except Exception as e:
            logger.error("Slack error", error=str(e))
            return False

        logger.info("Slack message delivered")
        return True

    def format_goal_webhook_payload(self, notification: "GoalNotification") -> dict[str, Any]:
        """Format a conversion as the goal.converted webhook payload."""
        return {
            "event": "goal.converted",
            "data": {
                "goal_name": notification.goal_name,
                "goal_id": str(notification.goal_id),
                "event_id": notification.event_id,
                "revenue": notification.revenue,
            },
            "timestamp": (notification.converted_at or datetime.now(timezone.utc)).isoformat(),
        }

    def format_goal_slack_text(self, notification: "GoalNotification") -> str:
        text = f'🎯 Goal "{notification.goal_name}" converted'
        if notification.revenue:
            text += f" (${notification.revenue})"
        return text

    async def deliver_goal_notification(self, notification: "GoalNotification") -> dict[str, bool]:
        """
        Send a conversion to every configured channel concurrently.

        Returns:
            Channel name -> delivered flag
        """
        channels: dict[str, Any] = {}
        if notification.webhook_url:
            channels["webhook"] = self.send_webhook(
                notification.webhook_url,
                self.format_goal_webhook_payload(notification),
                secret=self.signing_secret,
            )
        if notification.slack_webhook_url:
            channels["slack"] = self.send_slack_message(
                notification.slack_webhook_url,
                self.format_goal_slack_text(notification),
            )

        if not channels:
            return {}

        results = await asyncio.gather(*channels.values())
        delivered = dict(zip(channels.keys(), results))

        logger.info(
            "Goal notification processed",
            goal_id=str(notification.goal_id),
            event_id=notification.event_id,
            channels=delivered,
        )
        return delivered


# Singleton instance
notification_service = NotificationService()
