"""Slack implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from slack_sdk.errors import SlackApiError

from eodwatch.notifications.channels import DeliveryError

if TYPE_CHECKING:
    from slack_sdk.web.async_client import AsyncWebClient

    from eodwatch.notifications.render import RenderedMessage

logger = logging.getLogger(__name__)


class SlackChannel:
    """Posts status tables and alerts to a single Slack channel.

    Args:
        client: Slack ``AsyncWebClient`` authenticated with the bot token.
        channel_id: Target channel (e.g. ``C01ABC123``).
        enabled: When False every call is a logged no-op.
    """

    def __init__(self, client: AsyncWebClient, channel_id: str, *, enabled: bool = True) -> None:
        self._client = client
        self._channel_id = channel_id
        self._enabled = enabled
        if enabled and not channel_id:
            logger.warning("Slack is enabled but SLACK_CHANNEL_ID is not configured")

    @property
    def name(self) -> str:
        return "slack"

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def post_message(self, message: RenderedMessage) -> str:
        """Post a message and return its ``ts``, which identifies it for edits."""
        if not self._enabled:
            logger.debug("Slack is disabled, skipping post")
            return ""
        try:
            resp = await self._client.chat_postMessage(
                channel=self._channel_id, text=message.text, blocks=message.blocks
            )
        except SlackApiError as exc:
            logger.exception("SlackChannel.post_message failed")
            raise DeliveryError(f"chat.postMessage failed: {exc.response['error']}") from exc
        except Exception as exc:
            logger.exception("SlackChannel.post_message failed")
            raise DeliveryError("chat.postMessage failed") from exc
        ts = resp["ts"]
        logger.info("Posted Slack message ts=%s", ts)
        return ts

    async def edit_message(self, handle: str, message: RenderedMessage) -> None:
        if not self._enabled:
            logger.debug("Slack is disabled, skipping edit")
            return
        try:
            await self._client.chat_update(
                channel=self._channel_id, ts=handle, text=message.text, blocks=message.blocks
            )
        except SlackApiError as exc:
            logger.exception("SlackChannel.edit_message failed for ts=%s", handle)
            raise DeliveryError(f"chat.update failed: {exc.response['error']}") from exc
        except Exception as exc:
            logger.exception("SlackChannel.edit_message failed for ts=%s", handle)
            raise DeliveryError("chat.update failed") from exc
        logger.info("Updated Slack message ts=%s", handle)

    async def post_alert(self, message: RenderedMessage) -> None:
        """Alerts are ordinary posts; the handle is not kept."""
        logger.info("Sending %s alert", message.alert_type or "untyped")
        await self.post_message(message)
