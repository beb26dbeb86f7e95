"""Tests for approval prompts, reply parsing and notifiers."""

import json
import pytest
from datetime import datetime, timedelta, UTC
from decimal import Decimal

import httpx

from spendgate.approvals.models import Approval
from spendgate.approvals.notifier import (
    ChannelNotifier,
    LogNotifier,
    TelegramNotifier,
    build_notifier,
)
from spendgate.approvals.replies import format_approval_message, parse_approval_reply
from spendgate.config import Settings
from spendgate.policy import PolicyConfig


NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


def make_approval(**overrides) -> Approval:
    fields = dict(
        user_id="user_1",
        item="USB-C cable",
        amount=Decimal("10"),
        merchant="New Shop",
        risk_flags=["always_ask", "new_merchant"],
        expires_at=NOW + timedelta(seconds=300),
    )
    fields.update(overrides)
    return Approval(**fields)


class TestReplyParsing:
    """Test interpretation of free-text replies."""

    @pytest.mark.parametrize("text", ["yes", "YES", " Yes! ", "approve", "approve."])
    def test_approve_words(self, text):
        assert parse_approval_reply(text) is True

    @pytest.mark.parametrize("text", ["no", "No.", "reject", "CANCEL"])
    def test_reject_words(self, text):
        assert parse_approval_reply(text) is False

    @pytest.mark.parametrize("text", ["", None, "maybe", "yes please", "not now", "yesno"])
    def test_not_a_decision(self, text):
        assert parse_approval_reply(text) is None


class TestApprovalMessage:
    """Test the prompt text."""

    def test_message_contents(self):
        message = format_approval_message(make_approval())

        assert "Item: USB-C cable" in message
        assert "Amount: 10.00 USD" in message
        assert "Merchant: New Shop" in message
        assert "Why: always_ask, new_merchant" in message
        assert "Reply YES to approve" in message
        assert "Reply NO to reject" in message

    def test_remaining_time(self):
        message = format_approval_message(make_approval(), now=NOW + timedelta(seconds=60))

        assert message.endswith("(240s left)")

    def test_no_flags_line_without_flags(self):
        message = format_approval_message(make_approval(risk_flags=[]))

        assert "Why:" not in message


class TestTelegramNotifier:
    """Test Telegram delivery against a mock transport."""

    def setup_method(self):
        self.requests = []
        self.policy = PolicyConfig(approval_channel="telegram", telegram_chat_id="4242")

    def client(self, status_code=200, body=None):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(status_code, json=body if body is not None else {"ok": True})

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_send_posts_to_bot_endpoint(self):
        notifier = TelegramNotifier("TOKEN", api_base="https://tg.example", client=self.client())

        assert notifier.send(make_approval(), self.policy) is True

        request = self.requests[0]
        assert str(request.url) == "https://tg.example/botTOKEN/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == "4242"
        assert "Merchant: New Shop" in body["text"]

    def test_http_error_returns_false(self):
        notifier = TelegramNotifier("TOKEN", client=self.client(status_code=500))

        assert notifier.send(make_approval(), self.policy) is False

    def test_api_error_returns_false(self):
        notifier = TelegramNotifier(
            "TOKEN",
            client=self.client(body={"ok": False, "description": "chat not found"}),
        )

        assert notifier.send(make_approval(), self.policy) is False

    def test_skipped_without_chat_id(self):
        notifier = TelegramNotifier("TOKEN", client=self.client())

        assert notifier.send(make_approval(), PolicyConfig()) is False
        assert self.requests == []

    def test_skipped_without_token(self):
        notifier = TelegramNotifier(None, client=self.client())

        assert notifier.send(make_approval(), self.policy) is False
        assert self.requests == []


class TestChannelNotifier:
    """Test per-policy channel dispatch."""

    class Recorder(LogNotifier):
        def __init__(self):
            self.calls = 0

        def send(self, approval, policy):
            self.calls += 1
            return True

    def test_dispatch_by_policy_channel(self):
        default, telegram = self.Recorder(), self.Recorder()
        notifier = ChannelNotifier(default, telegram)

        notifier.send(make_approval(), PolicyConfig(approval_channel="telegram"))
        notifier.send(make_approval(), PolicyConfig())

        assert telegram.calls == 1
        assert default.calls == 1

    def test_telegram_falls_back_when_unconfigured(self):
        default = self.Recorder()
        notifier = ChannelNotifier(default)

        notifier.send(make_approval(), PolicyConfig(approval_channel="telegram"))

        assert default.calls == 1

    def test_log_notifier(self):
        assert LogNotifier().send(make_approval(), PolicyConfig()) is True

    def test_build_notifier_with_bot_token(self):
        notifier = build_notifier(Settings(telegram_bot_token="TOKEN"))

        assert isinstance(notifier.telegram, TelegramNotifier)

    def test_build_notifier_log_only(self):
        notifier = build_notifier(Settings(notification_channel="log", telegram_bot_token=None))

        assert notifier.telegram is None
