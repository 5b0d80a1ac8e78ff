from __future__ import annotations

import logging

import httpx

from liveness_checks.checks import CheckResult
from liveness_checks.config import MonitorSettings
from liveness_checks.identity import ServerIdentity
from liveness_checks.messagebird import MessageBirdConfig, redact_messagebird_response, send_sms


LOGGER = logging.getLogger("liveness-monitor")


def build_down_alert_message(target_id: str, server: ServerIdentity) -> str:
    return f"📢 {target_id} not running on server {server.describe()}!"


def messagebird_config_from_settings(settings: MonitorSettings) -> MessageBirdConfig | None:
    if not settings.notifications_enabled:
        return None
    return MessageBirdConfig(
        token=settings.message_bird_token,
        sender=settings.message_bird_sender,
        recipients=settings.recipients,
    )


class AlertNotifier:
    """Sends one SMS per down target. Delivery failures are logged and dropped."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        sms_config: MessageBirdConfig | None,
        server: ServerIdentity,
    ) -> None:
        self._client = client
        self._sms_config = sms_config
        self._server = server

    async def notify(self, result: CheckResult) -> bool:
        target_id = result.target.identifier
        msg = build_down_alert_message(target_id, self._server)

        if self._sms_config is None:
            LOGGER.warning("Notifications disabled (no MessageBird token); alert=%r", msg)
            return False

        ok, resp = await send_sms(self._client, self._sms_config, msg)
        if not ok:
            LOGGER.warning(
                "Notification failed target=%s messagebird=%s",
                target_id,
                redact_messagebird_response(resp),
            )
            return False

        LOGGER.info("Notification sent target=%s messagebird=%s", target_id, redact_messagebird_response(resp))
        return True
