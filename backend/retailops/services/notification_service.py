# Overview: Outbound customer notifications for repair lifecycle events.

"""
Notification Dispatcher

Lifecycle managers hand a NotificationEvent to the dispatcher after their
transaction has committed. Delivery happens on a bounded thread pool, one
task per channel (WhatsApp gateway, email relay), and never touches the
database or the Flask app context: events carry plain values only.

CONTRACT:
- submit() never raises for delivery problems; it returns a DispatchTicket.
- ticket.outcomes(timeout) waits at most `timeout` seconds and returns one
  DeliveryResult per channel. A channel still running at the deadline is
  reported as undelivered with a "pending" error; its task keeps running
  in the background.
- Each HTTP call has its own timeout; a channel retries up to
  max_attempts times on transport errors and 5xx responses.
- A disabled or unconfigured dispatcher answers immediately with
  undelivered results, so callers do not need a separate code path.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Sequence

import httpx

from ..config import NotificationConfig


logger = logging.getLogger(__name__)


EVENT_REPAIR_CREATED = "repair.created"
EVENT_REPAIR_COMPLETED = "repair.completed"
EVENT_REPAIR_CUSTOM_UPDATE = "repair.custom_update"
VALID_EVENT_TYPES = {EVENT_REPAIR_CREATED, EVENT_REPAIR_COMPLETED, EVENT_REPAIR_CUSTOM_UPDATE}

CHANNEL_WHATSAPP = "whatsapp"
CHANNEL_EMAIL = "email"


class NotificationError(Exception):
    """Raised by a channel when a message could not be delivered."""


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    ticket_number: str
    status: str
    customer_name: str
    customer_phone: str | None = None
    customer_email: str | None = None
    device: str = ""
    issue: str = ""
    total_cost_cents: int = 0
    message: str | None = None


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    channel: str
    error: str | None = None

    def to_dict(self) -> dict:
        return {"delivered": self.delivered, "channel": self.channel, "error": self.error}


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

def format_status(status: str) -> str:
    """'ready_for_pickup' -> 'Ready For Pickup'."""
    return " ".join(word.capitalize() for word in (status or "").split("_"))


def _format_amount(cents: int) -> str:
    return f"₹{cents / 100:,.2f}"


def render_text(event: NotificationEvent, config: NotificationConfig) -> str:
    lines: list[str]
    if event.event_type == EVENT_REPAIR_CREATED:
        lines = [
            f"Hello {event.customer_name}, we have received your device.",
            f"Ticket: #{event.ticket_number}",
            f"Device: {event.device}",
            f"Issue: {event.issue}",
        ]
    elif event.event_type == EVENT_REPAIR_COMPLETED:
        lines = [
            f"Hello {event.customer_name}, your repair #{event.ticket_number} is complete.",
            f"Device: {event.device}",
            f"Total: {_format_amount(event.total_cost_cents)}",
        ]
    else:
        lines = [
            f"Repair Update #{event.ticket_number}",
            f"Status: {format_status(event.status)}",
            f"Device: {event.device}",
        ]
        if event.message:
            lines.extend(["", event.message])

    footer = [config.store_display_name]
    if config.store_contact_phone:
        footer.append(config.store_contact_phone)
    return "\n".join(lines + [""] + footer)


def render_subject(event: NotificationEvent) -> str:
    if event.event_type == EVENT_REPAIR_CREATED:
        return f"Repair Received - #{event.ticket_number}"
    if event.event_type == EVENT_REPAIR_COMPLETED:
        return f"Repair Completed - #{event.ticket_number}"
    return f"Repair Update - {format_status(event.status)} - #{event.ticket_number}"


# =============================================================================
# CHANNELS
# =============================================================================

class NotificationChannel:
    """Base class: one outbound transport."""
    name = "base"

    def __init__(self, config: NotificationConfig, *, transport: httpx.BaseTransport | None = None):
        self.config = config
        self._transport = transport

    def is_configured(self) -> bool:
        raise NotImplementedError

    def send(self, event: NotificationEvent) -> None:
        raise NotImplementedError

    def _post(self, url: str, *, json: dict, headers: dict) -> None:
        """POST with per-call timeout and bounded retry on transient failures."""
        attempts = self.config.max_attempts
        last_error = "no attempt made"
        for attempt in range(attempts):
            try:
                with httpx.Client(timeout=self.config.timeout_seconds, transport=self._transport) as client:
                    response = client.post(url, json=json, headers=headers)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code < 400:
                    return
                if response.status_code < 500:
                    # Client errors are not retried
                    raise NotificationError(
                        f"{self.name} gateway rejected the message ({response.status_code})"
                    )
                last_error = f"gateway returned {response.status_code}"
            if attempt < attempts - 1:
                time.sleep(0.2 * (2 ** attempt))
        raise NotificationError(f"{self.name} delivery failed after {attempts} attempt(s): {last_error}")


class WhatsAppChannel(NotificationChannel):
    name = CHANNEL_WHATSAPP

    def is_configured(self) -> bool:
        return bool(self.config.whatsapp_url and self.config.whatsapp_from)

    def send(self, event: NotificationEvent) -> None:
        if not event.customer_phone:
            raise NotificationError("Customer has no phone number")
        headers = {}
        if self.config.whatsapp_token:
            headers["Authorization"] = f"Bearer {self.config.whatsapp_token}"
        self._post(
            self.config.whatsapp_url,
            json={
                "from": self.config.whatsapp_from,
                "to": event.customer_phone,
                "body": render_text(event, self.config),
            },
            headers=headers,
        )


class EmailChannel(NotificationChannel):
    name = CHANNEL_EMAIL

    def is_configured(self) -> bool:
        return bool(self.config.email_url)

    def send(self, event: NotificationEvent) -> None:
        if not event.customer_email:
            raise NotificationError("Customer has no email address")
        headers = {}
        if self.config.email_api_key:
            headers["Authorization"] = f"Bearer {self.config.email_api_key}"
        self._post(
            self.config.email_url,
            json={
                "from": self.config.email_from,
                "to": event.customer_email,
                "subject": render_subject(event),
                "text": render_text(event, self.config),
            },
            headers=headers,
        )


# =============================================================================
# DISPATCHER
# =============================================================================

def _completed_future(result: DeliveryResult) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


@dataclass
class DispatchTicket:
    """Handle for one submitted event: channel name -> Future[DeliveryResult]."""
    event: NotificationEvent
    futures: dict[str, Future] = field(default_factory=dict)

    def outcomes(self, timeout: float | None = None) -> list[DeliveryResult]:
        if self.futures:
            wait(list(self.futures.values()), timeout=timeout)

        results = []
        for channel, future in self.futures.items():
            if not future.done():
                results.append(DeliveryResult(False, channel, "pending: delivery still in progress"))
                continue
            results.append(future.result())
        return results


def any_delivered(results: Sequence[DeliveryResult]) -> bool:
    return any(result.delivered for result in results)


class NotificationDispatcher:
    """Fans an event out to every channel on a bounded worker pool."""

    def __init__(
        self,
        config: NotificationConfig,
        channels: Sequence[NotificationChannel] | None = None,
        *,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.config = config
        if channels is None:
            channels = [WhatsAppChannel(config), EmailChannel(config)]
        self.channels = list(channels)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.max_workers,
            thread_name_prefix="notify",
        )

    def submit(self, event: NotificationEvent) -> DispatchTicket:
        ticket = DispatchTicket(event=event)

        if not self.config.enabled:
            for channel in self.channels:
                ticket.futures[channel.name] = _completed_future(
                    DeliveryResult(False, channel.name, "Notifications are disabled")
                )
            return ticket

        for channel in self.channels:
            if not channel.is_configured():
                ticket.futures[channel.name] = _completed_future(
                    DeliveryResult(False, channel.name, "Channel is not configured")
                )
                continue
            try:
                ticket.futures[channel.name] = self._executor.submit(_deliver, channel, event)
            except RuntimeError as exc:
                # Executor already shut down
                logger.warning("Could not queue %s notification for %s: %s", channel.name, event.ticket_number, exc)
                ticket.futures[channel.name] = _completed_future(
                    DeliveryResult(False, channel.name, "Dispatcher is not accepting work")
                )
        return ticket

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _deliver(channel: NotificationChannel, event: NotificationEvent) -> DeliveryResult:
    try:
        channel.send(event)
    except NotificationError as exc:
        logger.warning(
            "Notification %s via %s for ticket %s failed: %s",
            event.event_type, channel.name, event.ticket_number, exc,
        )
        return DeliveryResult(False, channel.name, str(exc))
    except Exception as exc:
        logger.exception(
            "Unexpected error sending %s via %s for ticket %s",
            event.event_type, channel.name, event.ticket_number,
        )
        return DeliveryResult(False, channel.name, str(exc))

    logger.info("Notification %s via %s for ticket %s delivered", event.event_type, channel.name, event.ticket_number)
    return DeliveryResult(True, channel.name, None)


def build_dispatcher(config: NotificationConfig) -> NotificationDispatcher:
    return NotificationDispatcher(config)
