"""
Approval notification channels.

Notifications are fire-and-forget: ``send`` reports success as a bool and
never raises, so a dead channel cannot fail approval creation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from spendgate.approvals.models import Approval
from spendgate.approvals.replies import format_approval_message
from spendgate.config import Settings
from spendgate.policy.models import PolicyConfig


logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Sends an approval prompt to the user."""

    @abstractmethod
    def send(self, approval: Approval, policy: PolicyConfig) -> bool:
        ...


class LogNotifier(Notifier):
    """Writes the prompt to the log. Used in development and tests."""

    def send(self, approval: Approval, policy: PolicyConfig) -> bool:
        logger.info(
            f"Approval prompt for {approval.user_id} [{approval.approval_id}]:\n"
            f"{format_approval_message(approval)}"
        )
        return True


class TelegramNotifier(Notifier):
    """
    Posts the prompt through the Telegram Bot API.

    Users without a configured chat id are skipped.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.client = client

    def send(self, approval: Approval, policy: PolicyConfig) -> bool:
        if not self.bot_token:
            logger.warning("Telegram notification skipped: bot token not configured")
            return False
        if not policy.telegram_chat_id:
            logger.warning(f"Telegram notification skipped: no chat id for {approval.user_id}")
            return False

        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        body = {
            "chat_id": policy.telegram_chat_id,
            "text": format_approval_message(approval),
        }

        try:
            if self.client is not None:
                response = self.client.post(url, json=body, timeout=self.timeout)
            else:
                with httpx.Client() as client:
                    response = client.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Telegram send failed for {approval.approval_id}: {e}")
            return False

        if not payload.get("ok"):
            logger.warning(
                f"Telegram send rejected for {approval.approval_id}: "
                f"{payload.get('description', 'unknown error')}"
            )
            return False

        logger.info(f"Telegram approval prompt sent for {approval.approval_id}")
        return True


class ChannelNotifier(Notifier):
    """Dispatches to the channel named in the user's policy."""

    def __init__(self, default: Notifier, telegram: Optional[Notifier] = None):
        self.default = default
        self.telegram = telegram

    def send(self, approval: Approval, policy: PolicyConfig) -> bool:
        if policy.approval_channel == "telegram" and self.telegram is not None:
            return self.telegram.send(approval, policy)
        return self.default.send(approval, policy)


def build_notifier(settings: Settings) -> Notifier:
    """Construct the notifier for the configured channel."""
    telegram = None
    if settings.notification_channel == "telegram" or settings.telegram_bot_token:
        telegram = TelegramNotifier(
            bot_token=settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
        )
    return ChannelNotifier(default=LogNotifier(), telegram=telegram)
