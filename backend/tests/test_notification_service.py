# Overview: Pytest coverage for notification channels and the dispatcher.

import threading

import httpx
import pytest

from conftest import RecordingChannel
from retailops.config import NotificationConfig
from retailops.services.notification_service import (
    DeliveryResult,
    EmailChannel,
    NotificationDispatcher,
    NotificationError,
    NotificationEvent,
    WhatsAppChannel,
    format_status,
    render_subject,
    render_text,
)


EVENT = NotificationEvent(
    event_type="repair.custom_update",
    ticket_number="181020264321" "1234",
    status="ready_for_pickup",
    customer_name="Asha Rao",
    customer_phone="+919812344321",
    customer_email="asha@example.com",
    device="Laptop Dell Inspiron 15",
    issue="Screen flickers",
    total_cost_cents=150000,
    message="Your laptop is ready.",
)

CONFIG = NotificationConfig(
    enabled=True,
    whatsapp_url="https://gateway.test/messages",
    whatsapp_token="wa-token",
    whatsapp_from="+910000000000",
    email_url="https://mail.test/send",
    max_attempts=3,
    timeout_seconds=1,
    store_display_name="Laptop Store",
    store_contact_phone="+91 98765 43210",
)


def _transport(statuses, calls):
    """MockTransport answering with the given status codes in order."""
    codes = iter(statuses)

    def handler(request):
        calls.append(request)
        return httpx.Response(next(codes), json={})

    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr("retailops.services.notification_service.time.sleep", lambda seconds: None)


# =============================================================================
# TEMPLATES
# =============================================================================


class TestTemplates:

    def test_format_status(self):
        assert format_status("ready_for_pickup") == "Ready For Pickup"

    def test_custom_update_text(self):
        text = render_text(EVENT, CONFIG)
        assert text.startswith("Repair Update #1810202643211234")
        assert "Status: Ready For Pickup" in text
        assert "Your laptop is ready." in text
        assert text.endswith("Laptop Store\n+91 98765 43210")

    def test_completed_text_shows_total(self):
        event = NotificationEvent(
            event_type="repair.completed",
            ticket_number="T1",
            status="delivered",
            customer_name="Asha",
            total_cost_cents=150000,
        )
        assert "Total: ₹1,500.00" in render_text(event, CONFIG)
        assert render_subject(event) == "Repair Completed - #T1"


# =============================================================================
# CHANNELS
# =============================================================================


class TestWhatsAppChannel:

    def test_posts_message(self):
        calls = []
        channel = WhatsAppChannel(CONFIG, transport=_transport([200], calls))
        channel.send(EVENT)

        request = calls[0]
        assert request.url == "https://gateway.test/messages"
        assert request.headers["Authorization"] == "Bearer wa-token"
        body = request.read().decode()
        assert '"to":"+919812344321"' in body.replace(" ", "")

    def test_retries_server_errors(self):
        calls = []
        channel = WhatsAppChannel(CONFIG, transport=_transport([500, 502, 200], calls))
        channel.send(EVENT)
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self):
        calls = []
        channel = WhatsAppChannel(CONFIG, transport=_transport([500, 500, 500], calls))
        with pytest.raises(NotificationError, match="after 3 attempt"):
            channel.send(EVENT)
        assert len(calls) == 3

    def test_client_errors_are_not_retried(self):
        calls = []
        channel = WhatsAppChannel(CONFIG, transport=_transport([400, 200], calls))
        with pytest.raises(NotificationError, match="rejected"):
            channel.send(EVENT)
        assert len(calls) == 1

    def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            return httpx.Response(200)

        channel = WhatsAppChannel(CONFIG, transport=httpx.MockTransport(handler))
        channel.send(EVENT)
        assert len(calls) == 2

    def test_requires_phone(self):
        channel = WhatsAppChannel(CONFIG, transport=_transport([200], []))
        event = NotificationEvent("repair.created", "T1", "received", "Asha", customer_phone=None)
        with pytest.raises(NotificationError):
            channel.send(event)

    def test_configuration(self):
        assert WhatsAppChannel(CONFIG).is_configured()
        assert not WhatsAppChannel(NotificationConfig(enabled=True)).is_configured()


class TestEmailChannel:

    def test_posts_subject_and_text(self):
        calls = []
        EmailChannel(CONFIG, transport=_transport([202], calls)).send(EVENT)
        body = calls[0].read().decode()
        assert "Repair Update - Ready For Pickup - #1810202643211234" in body
        assert "asha@example.com" in body

    def test_requires_email(self):
        channel = EmailChannel(CONFIG, transport=_transport([200], []))
        event = NotificationEvent("repair.created", "T1", "received", "Asha", customer_email=None)
        with pytest.raises(NotificationError):
            channel.send(event)


# =============================================================================
# DISPATCHER
# =============================================================================


class TestDispatcher:

    def test_delivers_to_every_channel(self):
        first, second = RecordingChannel("whatsapp"), RecordingChannel("email")
        dispatcher = NotificationDispatcher(CONFIG, channels=[first, second])
        try:
            outcomes = dispatcher.submit(EVENT).outcomes(timeout=2)
        finally:
            dispatcher.shutdown()

        assert outcomes == [DeliveryResult(True, "whatsapp"), DeliveryResult(True, "email")]
        assert first.events == [EVENT] and second.events == [EVENT]

    def test_disabled_answers_immediately(self):
        channel = RecordingChannel()
        dispatcher = NotificationDispatcher(NotificationConfig(enabled=False), channels=[channel])
        try:
            outcomes = dispatcher.submit(EVENT).outcomes(timeout=0)
        finally:
            dispatcher.shutdown()

        assert outcomes == [DeliveryResult(False, "whatsapp", "Notifications are disabled")]
        assert channel.events == []

    def test_unconfigured_channel_is_skipped(self):
        channel = RecordingChannel()
        channel.configured = False
        dispatcher = NotificationDispatcher(CONFIG, channels=[channel])
        try:
            outcomes = dispatcher.submit(EVENT).outcomes(timeout=1)
        finally:
            dispatcher.shutdown()
        assert outcomes == [DeliveryResult(False, "whatsapp", "Channel is not configured")]

    def test_slow_channel_reports_pending(self):
        release = threading.Event()
        slow = RecordingChannel("email", block=release)
        fast = RecordingChannel("whatsapp")
        dispatcher = NotificationDispatcher(CONFIG, channels=[fast, slow])
        try:
            ticket = dispatcher.submit(EVENT)
            outcomes = ticket.outcomes(timeout=0.2)
            assert outcomes[0] == DeliveryResult(True, "whatsapp")
            assert outcomes[1].delivered is False
            assert outcomes[1].error.startswith("pending")
        finally:
            release.set()
            dispatcher.shutdown()

        # The background task still finishes
        assert ticket.outcomes(timeout=1)[1] == DeliveryResult(True, "email")

    def test_channel_failure_is_captured(self):
        channel = RecordingChannel(fail_with=NotificationError("gateway rejected the message (401)"))
        dispatcher = NotificationDispatcher(CONFIG, channels=[channel])
        try:
            outcomes = dispatcher.submit(EVENT).outcomes(timeout=2)
        finally:
            dispatcher.shutdown()
        assert outcomes == [DeliveryResult(False, "whatsapp", "gateway rejected the message (401)")]

    def test_submit_after_shutdown(self):
        dispatcher = NotificationDispatcher(CONFIG, channels=[RecordingChannel()])
        dispatcher.shutdown()
        outcomes = dispatcher.submit(EVENT).outcomes(timeout=0)
        assert outcomes == [DeliveryResult(False, "whatsapp", "Dispatcher is not accepting work")]

    def test_config_from_mapping(self):
        config = NotificationConfig.from_mapping({
            "NOTIFICATIONS_ENABLED": True,
            "NOTIFY_WHATSAPP_URL": "https://gateway.test",
            "NOTIFY_MAX_ATTEMPTS": 0,
        })
        assert config.enabled is True
        assert config.whatsapp_url == "https://gateway.test"
        assert config.max_attempts == 1
