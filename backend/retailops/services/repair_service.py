# Overview: Repair ticket lifecycle: intake, costs, status machine, customer updates.

"""
Repair Service

Repair Status Machine (authoritative):

    received -> diagnosed -> in_repair -> ready_for_pickup -> delivered
       │             │            │               │
       └─────────────┴────────────┴───────────────┴──────> cancelled

- Forward moves may skip states (received -> ready_for_pickup is fine).
- Any non-terminal state may be cancelled.
- delivered and cancelled are terminal; nothing leaves them.
- Moving to the current state is rejected.

Append-only history:
- price_history gets a snapshot on creation and on every cost update.
- timeline gets an entry on creation, on every transition and for every
  custom message. Existing rows are never edited, except the notified flag
  of an entry once its delivery settles.

Notifications are submitted only after the commit. A dispatcher failure is
logged and reported back to the caller; it never rolls the repair back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Repair, RepairPriceSnapshot, RepairTimelineEntry
from ..time_utils import parse_iso_datetime, utcnow
from .access_service import Principal, ensure_store_access, resolve_store_scope, resolve_target_store
from .concurrency import run_with_retry
from .customer_service import resolve_customer
from .identifier_service import IdentifierSeed, is_unique_violation, next_ticket_number
from .notification_service import (
    EVENT_REPAIR_COMPLETED,
    EVENT_REPAIR_CREATED,
    EVENT_REPAIR_CUSTOM_UPDATE,
    DeliveryResult,
    DispatchTicket,
    NotificationDispatcher,
    NotificationEvent,
    any_delivered,
)
from . import transaction_store


REPAIR_STATUS_RECEIVED = "received"
REPAIR_STATUS_DIAGNOSED = "diagnosed"
REPAIR_STATUS_IN_REPAIR = "in_repair"
REPAIR_STATUS_READY = "ready_for_pickup"
REPAIR_STATUS_DELIVERED = "delivered"
REPAIR_STATUS_CANCELLED = "cancelled"

FORWARD_ORDER = [
    REPAIR_STATUS_RECEIVED,
    REPAIR_STATUS_DIAGNOSED,
    REPAIR_STATUS_IN_REPAIR,
    REPAIR_STATUS_READY,
    REPAIR_STATUS_DELIVERED,
]
VALID_REPAIR_STATUSES = set(FORWARD_ORDER) | {REPAIR_STATUS_CANCELLED}
TERMINAL_STATUSES = {REPAIR_STATUS_DELIVERED, REPAIR_STATUS_CANCELLED}
ACTIVE_STATUSES = {REPAIR_STATUS_RECEIVED, REPAIR_STATUS_DIAGNOSED, REPAIR_STATUS_IN_REPAIR}

PRIORITIES = {"low", "medium", "high"}
DEFAULT_PRIORITY = "medium"
DEFAULT_WARRANTY_DAYS = 30

COST_FIELDS = ("repair_cost_cents", "parts_cost_cents", "labor_cost_cents")

ENTRY_STATUS = "status"
ENTRY_MESSAGE = "message"


@dataclass
class RepairChange:
    """A committed repair mutation plus the notification it submitted, if any."""
    repair: Repair
    ticket: DispatchTicket | None = None
    timeline_entry_id: int | None = None
    notification_error: str | None = None
    outcomes: list[DeliveryResult] = field(default_factory=list)


def _actor_name(principal: Principal | None) -> str:
    return principal.username if principal else "system"


# =============================================================================
# INPUT PARSING
# =============================================================================

def _parse_cost(value, field_name: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError.for_field(field_name, f"{field_name} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError.for_field(field_name, f"{field_name} must be a whole number of cents")
    try:
        cents = int(value)
    except (TypeError, ValueError):
        raise ValidationError.for_field(field_name, f"{field_name} must be an integer")
    if cents < 0:
        raise ValidationError.for_field(field_name, f"{field_name} cannot be negative")
    return cents


def _parse_costs(costs: dict | None) -> dict[str, int]:
    """Only the keys present in costs; values validated as cents >= 0."""
    if costs is None:
        return {}
    if not isinstance(costs, dict):
        raise ValidationError.for_field("cost_estimate", "cost_estimate must be an object")
    return {key: _parse_cost(costs[key], key) for key in COST_FIELDS if costs.get(key) is not None}


def _parse_device(device) -> dict:
    if not isinstance(device, dict):
        raise ValidationError.for_field("device", "device is required")
    errors = []
    cleaned = {}
    for key in ("device_type", "brand", "model"):
        value = str(device.get(key) or "").strip()
        if not value:
            errors.append({"field": f"device.{key}", "message": f"{key} is required"})
        cleaned[key] = value
    if errors:
        raise ValidationError("Invalid device details", details=errors)
    cleaned["serial_number"] = str(device.get("serial_number") or "").strip() or None
    return cleaned


def _parse_estimated_completion(value) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError.for_field("estimated_completion", "estimated_completion must be an ISO-8601 datetime")


def _snapshot(repair: Repair, actor: str) -> RepairPriceSnapshot:
    return RepairPriceSnapshot(
        repair_cost_cents=repair.repair_cost_cents,
        parts_cost_cents=repair.parts_cost_cents,
        labor_cost_cents=repair.labor_cost_cents,
        total_cost_cents=repair.total_cost_cents,
        updated_at=utcnow(),
        updated_by=actor,
    )


def _apply_costs(repair: Repair, costs: dict[str, int]) -> None:
    for key in COST_FIELDS:
        if key in costs:
            setattr(repair, key, costs[key])
        elif getattr(repair, key) is None:
            setattr(repair, key, 0)
    repair.total_cost_cents = repair.repair_cost_cents + repair.parts_cost_cents + repair.labor_cost_cents


# =============================================================================
# NOTIFICATION HELPERS
# =============================================================================

def build_event(repair: Repair, event_type: str, message: str | None = None) -> NotificationEvent:
    customer = repair.customer
    return NotificationEvent(
        event_type=event_type,
        ticket_number=repair.ticket_number,
        status=repair.status,
        customer_name=customer.name if customer else "Customer",
        customer_phone=customer.phone if customer else None,
        customer_email=customer.email if customer else None,
        device=repair.device_label,
        issue=repair.issue_description or "",
        total_cost_cents=repair.total_cost_cents or 0,
        message=message,
    )


def _submit(change: RepairChange, dispatcher: NotificationDispatcher | None, event_type: str, message: str | None = None) -> None:
    if dispatcher is None:
        return
    try:
        change.ticket = dispatcher.submit(build_event(change.repair, event_type, message))
    except Exception as exc:
        current_app.logger.exception(
            "Failed to submit %s notification for repair %s", event_type, change.repair.ticket_number
        )
        change.notification_error = str(exc)


def settle_notification(change: RepairChange, timeout: float | None) -> list[DeliveryResult]:
    """
    Wait up to `timeout` seconds for delivery outcomes and record whether any
    channel delivered on the related timeline entry. Never raises.
    """
    if change.ticket is None:
        return []

    change.outcomes = change.ticket.outcomes(timeout)
    if change.timeline_entry_id is None or not any_delivered(change.outcomes):
        return change.outcomes

    try:
        entry = db.session.get(RepairTimelineEntry, change.timeline_entry_id)
        if entry is not None and not entry.notified:
            entry.notified = True
            db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Could not mark timeline entry %s as notified", change.timeline_entry_id
        )
    return change.outcomes


# =============================================================================
# CREATE
# =============================================================================

def create_repair(
    *,
    principal: Principal,
    customer,
    device,
    issue_description: str,
    store_id: int | None = None,
    cost_estimate: dict | None = None,
    priority: str | None = None,
    technician: str | None = None,
    notes: str | None = None,
    estimated_completion=None,
    warranty_period_days=None,
    dispatcher: NotificationDispatcher | None = None,
) -> RepairChange:
    """
    Open a repair ticket.

    The customer is resolved by id or upserted by email/phone. A ticket
    number that loses an insert race is regenerated a bounded number of
    times before giving up with ConflictError.
    """
    device_fields = _parse_device(device)
    issue = str(issue_description or "").strip()
    if not issue:
        raise ValidationError.for_field("issue_description", "issue_description is required")

    costs = _parse_costs(cost_estimate)
    priority = priority or DEFAULT_PRIORITY
    if priority not in PRIORITIES:
        raise ValidationError.for_field("priority", f"priority must be one of: {', '.join(sorted(PRIORITIES))}")

    if warranty_period_days is None:
        warranty = DEFAULT_WARRANTY_DAYS
    else:
        warranty = _parse_cost(warranty_period_days, "warranty_period_days")

    eta = _parse_estimated_completion(estimated_completion)
    target_store_id = resolve_target_store(principal, store_id)
    actor = _actor_name(principal)
    max_attempts = current_app.config.get("TICKET_MAX_ATTEMPTS", 5)

    for attempt in range(max_attempts):
        resolved = resolve_customer(customer, store_id=target_store_id)
        now = utcnow()

        repair = Repair(
            ticket_number=next_ticket_number(
                IdentifierSeed(on_date=now.date(), phone=resolved.phone),
                max_attempts=max_attempts,
            ),
            customer=resolved,
            store_id=target_store_id,
            issue_description=issue,
            status=REPAIR_STATUS_RECEIVED,
            priority=priority,
            technician=(technician or "").strip() or None,
            notes=(notes or "").strip() or None,
            estimated_completion=eta,
            warranty_period_days=warranty,
            received_at=now,
            created_by_user_id=principal.user_id,
            **device_fields,
        )
        _apply_costs(repair, costs)
        repair.price_history.append(_snapshot(repair, actor))
        repair.timeline.append(RepairTimelineEntry(
            entry_type=ENTRY_STATUS,
            status=REPAIR_STATUS_RECEIVED,
            note="Repair received",
            actor=actor,
            occurred_at=now,
        ))

        db.session.add(repair)
        try:
            db.session.commit()
            break
        except IntegrityError as exc:
            db.session.rollback()
            if not is_unique_violation(exc, "ticket_number"):
                raise ConflictError("Customer record conflicts with an existing one; please retry") from exc
            current_app.logger.warning(
                "Ticket number %s taken at insert (attempt %d/%d)",
                repair.ticket_number, attempt + 1, max_attempts,
            )
    else:
        raise ConflictError("Could not allocate a unique ticket number; please retry")

    current_app.logger.info(
        "Repair %s created in store %s for customer %s", repair.ticket_number, repair.store_id, repair.customer_id
    )

    change = RepairChange(repair=repair, timeline_entry_id=repair.timeline[0].id)
    _submit(change, dispatcher, EVENT_REPAIR_CREATED)
    return change


# =============================================================================
# COSTS
# =============================================================================

def update_cost(repair_id: int, costs: dict | None, *, principal: Principal) -> Repair:
    """Merge the given cost fields, recompute the total, append a snapshot."""
    parsed = _parse_costs(costs)
    if not parsed:
        raise ValidationError(
            "At least one cost field is required",
            details=[{"field": key, "message": "cost value expected"} for key in COST_FIELDS],
        )
    actor = _actor_name(principal)

    def _op() -> Repair:
        repair = transaction_store.get_repair(repair_id, for_update=True)
        if repair is None:
            raise NotFoundError("Repair not found")
        ensure_store_access(principal, repair.store_id)

        _apply_costs(repair, parsed)
        repair.price_history.append(_snapshot(repair, actor))
        db.session.commit()

        current_app.logger.info(
            "Repair %s cost updated to %d cents by %s", repair.ticket_number, repair.total_cost_cents, actor
        )
        return repair

    return _guarded(_op)


def _guarded(op):
    try:
        return run_with_retry(op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# STATUS
# =============================================================================

def check_transition(current: str, new_status: str) -> None:
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Repair is already {current}; status cannot change")
    if new_status == current:
        raise InvalidTransition(f"Repair is already {current}")
    if new_status == REPAIR_STATUS_CANCELLED:
        return
    if FORWARD_ORDER.index(new_status) < FORWARD_ORDER.index(current):
        raise InvalidTransition(f"Cannot move repair from {current} back to {new_status}")


def transition_status(
    repair_id: int,
    new_status: str,
    *,
    principal: Principal,
    note: str | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> RepairChange:
    if new_status not in VALID_REPAIR_STATUSES:
        raise ValidationError.for_field(
            "status",
            f"status must be one of: {', '.join(FORWARD_ORDER + [REPAIR_STATUS_CANCELLED])}",
        )
    actor = _actor_name(principal)

    def _op() -> tuple[Repair, int, str]:
        repair = transaction_store.get_repair(repair_id, for_update=True)
        if repair is None:
            raise NotFoundError("Repair not found")
        ensure_store_access(principal, repair.store_id)

        previous = repair.status
        check_transition(previous, new_status)

        now = utcnow()
        repair.status = new_status
        if new_status == REPAIR_STATUS_DELIVERED:
            repair.completed_at = now
        elif new_status == REPAIR_STATUS_CANCELLED:
            repair.cancelled_at = now

        entry = RepairTimelineEntry(
            entry_type=ENTRY_STATUS,
            status=new_status,
            note=(note or "").strip() or f"Status changed to {new_status}",
            actor=actor,
            occurred_at=now,
        )
        repair.timeline.append(entry)
        db.session.commit()
        return repair, entry.id, previous

    repair, entry_id, previous = _guarded(_op)
    current_app.logger.info("Repair %s status %s -> %s by %s", repair.ticket_number, previous, new_status, actor)

    change = RepairChange(repair=repair, timeline_entry_id=entry_id)
    if new_status == REPAIR_STATUS_DELIVERED:
        _submit(change, dispatcher, EVENT_REPAIR_COMPLETED)
    return change


def send_custom_update(
    repair_id: int,
    message: str,
    *,
    principal: Principal,
    dispatcher: NotificationDispatcher | None,
) -> RepairChange:
    """Log a customer message on the timeline and forward it to the dispatcher."""
    text = str(message or "").strip()
    if not text:
        raise ValidationError.for_field("message", "message is required")
    actor = _actor_name(principal)

    def _op() -> tuple[Repair, int]:
        repair = transaction_store.get_repair(repair_id, for_update=True)
        if repair is None:
            raise NotFoundError("Repair not found")
        ensure_store_access(principal, repair.store_id)

        entry = RepairTimelineEntry(
            entry_type=ENTRY_MESSAGE,
            status=repair.status,
            note=text,
            actor=actor,
            occurred_at=utcnow(),
        )
        repair.timeline.append(entry)
        repair.updated_at = utcnow()
        db.session.commit()
        return repair, entry.id

    repair, entry_id = _guarded(_op)
    change = RepairChange(repair=repair, timeline_entry_id=entry_id)
    _submit(change, dispatcher, EVENT_REPAIR_CUSTOM_UPDATE, text)
    if change.ticket is None and change.notification_error is None:
        change.notification_error = "Notifications are not available"
    return change


# =============================================================================
# READS
# =============================================================================

def get_repair(repair_id: int, *, principal: Principal) -> Repair:
    repair = transaction_store.get_repair(repair_id)
    if repair is None:
        raise NotFoundError("Repair not found")
    ensure_store_access(principal, repair.store_id)
    return repair


def list_repairs(
    *,
    principal: Principal,
    store_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Repair], int]:
    if status is not None and status not in VALID_REPAIR_STATUSES:
        raise ValidationError.for_field("status", "Invalid status filter")
    filters = dict(
        store_id=resolve_store_scope(principal, store_id),
        statuses=[status] if status else None,
    )
    total = transaction_store.count_repairs(**filters)
    rows = transaction_store.find_repairs(
        **filters,
        newest_first=True,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return rows, total


def track_repairs(*, ticket_number: str | None = None, phone: str | None = None) -> list[dict]:
    """Public lookup; returns the customer-facing subset only."""
    ticket_number = (ticket_number or "").strip() or None
    phone = (phone or "").strip() or None
    if not ticket_number and not phone:
        raise ValidationError("Please provide a ticket number or phone number")

    repairs = transaction_store.find_repairs_for_tracking(ticket_number=ticket_number, phone=phone)
    if not repairs:
        raise NotFoundError("No repairs found matching the provided criteria")
    return [repair.tracking_dict() for repair in repairs]
