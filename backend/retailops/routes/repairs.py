# Overview: Flask API routes for repair tickets; parses input and returns enveloped JSON.

"""Repair API routes"""

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..errors import ServiceError, ValidationError
from ..responses import envelope, service_error_response, unexpected_error_response
from ..services import repair_service
from ..validation import page_meta, pagination, query_int


repairs_bp = Blueprint("repairs", __name__, url_prefix="/api/repairs")


def _dispatcher():
    return current_app.extensions.get("notification_dispatcher")


def _response_wait() -> float:
    return float(current_app.config.get("NOTIFY_RESPONSE_WAIT_SECONDS", 5))


def _notification_payload(change: repair_service.RepairChange) -> dict:
    """Settle (bounded wait) and describe the notification outcome."""
    results = repair_service.settle_notification(change, _response_wait())
    return {
        "submitted": change.ticket is not None,
        "delivered": any(result.delivered for result in results),
        "channels": [result.to_dict() for result in results],
        "error": change.notification_error,
    }


# Price endpoint accepts the short keys used by the counter UI
PRICE_KEY_ALIASES = {
    "price": "repair_cost_cents",
    "repair_cost": "repair_cost_cents",
    "parts_cost": "parts_cost_cents",
    "labor_cost": "labor_cost_cents",
}


def _cost_payload(data: dict) -> dict:
    costs = {}
    for key in repair_service.COST_FIELDS:
        if data.get(key) is not None:
            costs[key] = data[key]
    for alias, key in PRICE_KEY_ALIASES.items():
        if data.get(alias) is not None:
            if key in costs:
                raise ValidationError.for_field(alias, f"{alias} and {key} cannot both be given")
            costs[key] = data[alias]
    return costs


@repairs_bp.post("")
@require_auth
def create_repair_route():
    """
    Open a repair ticket.

    Body: customer (id or {name, email, phone, address}), device
    {device_type, brand, model, serial_number}, issue_description,
    cost_estimate {repair_cost_cents, parts_cost_cents, labor_cost_cents},
    priority, technician, notes, estimated_completion, warranty_period_days,
    store_id (global principals only).
    """
    data = request.get_json(silent=True) or {}
    try:
        change = repair_service.create_repair(
            principal=g.principal,
            customer=data.get("customer", data.get("customer_id")),
            device=data.get("device"),
            issue_description=data.get("issue_description"),
            store_id=data.get("store_id"),
            cost_estimate=data.get("cost_estimate"),
            priority=data.get("priority"),
            technician=data.get("technician"),
            notes=data.get("notes"),
            estimated_completion=data.get("estimated_completion"),
            warranty_period_days=data.get("warranty_period_days"),
            dispatcher=_dispatcher(),
        )
        repair = change.repair
        return envelope(
            repair.to_dict(),
            message=f"Repair created with ticket number {repair.ticket_number}",
            status=201,
            ticket_number=repair.ticket_number,
        )

    except ServiceError as e:
        return service_error_response(e, operation="create_repair")
    except Exception as e:
        return unexpected_error_response(e, operation="create_repair")


@repairs_bp.get("")
@require_auth
def list_repairs_route():
    try:
        page, per_page = pagination(request.args)
        rows, total = repair_service.list_repairs(
            principal=g.principal,
            store_id=query_int(request.args, "store_id"),
            status=request.args.get("status") or None,
            page=page,
            per_page=per_page,
        )
        return envelope(
            [repair.to_dict() for repair in rows],
            pagination=page_meta(page, per_page, total),
        )

    except ServiceError as e:
        return service_error_response(e, operation="list_repairs")
    except Exception as e:
        return unexpected_error_response(e, operation="list_repairs")


@repairs_bp.get("/track")
def track_repair_route():
    """Public status lookup: ?ticket=...&phone=..."""
    try:
        results = repair_service.track_repairs(
            ticket_number=request.args.get("ticket"),
            phone=request.args.get("phone"),
        )
        return envelope(results)

    except ServiceError as e:
        return service_error_response(e, operation="track_repair")
    except Exception as e:
        return unexpected_error_response(e, operation="track_repair")


@repairs_bp.get("/<int:repair_id>")
@require_auth
def get_repair_route(repair_id: int):
    try:
        repair = repair_service.get_repair(repair_id, principal=g.principal)
        return envelope(repair.to_dict())

    except ServiceError as e:
        return service_error_response(e, operation="get_repair", entity_id=repair_id)
    except Exception as e:
        return unexpected_error_response(e, operation="get_repair", entity_id=repair_id)


@repairs_bp.put("/<int:repair_id>/status")
@require_auth
def update_repair_status_route(repair_id: int):
    data = request.get_json(silent=True) or {}
    try:
        change = repair_service.transition_status(
            repair_id,
            data.get("status"),
            principal=g.principal,
            note=data.get("note"),
            dispatcher=_dispatcher(),
        )
        notification = _notification_payload(change)
        return envelope(
            change.repair.to_dict(),
            message=f"Repair status updated to {change.repair.status}",
            notification=notification,
        )

    except ServiceError as e:
        return service_error_response(e, operation="update_repair_status", entity_id=repair_id)
    except Exception as e:
        return unexpected_error_response(e, operation="update_repair_status", entity_id=repair_id)


@repairs_bp.put("/<int:repair_id>/price")
@require_auth
def update_repair_price_route(repair_id: int):
    data = request.get_json(silent=True) or {}
    try:
        repair = repair_service.update_cost(repair_id, _cost_payload(data), principal=g.principal)
        return envelope(repair.to_dict(), message="Repair price updated")

    except ServiceError as e:
        return service_error_response(e, operation="update_repair_price", entity_id=repair_id)
    except Exception as e:
        return unexpected_error_response(e, operation="update_repair_price", entity_id=repair_id)


@repairs_bp.post("/<int:repair_id>/send-update")
@require_auth
def send_repair_update_route(repair_id: int):
    """Message the customer; the request succeeds even if delivery does not."""
    data = request.get_json(silent=True) or {}
    try:
        change = repair_service.send_custom_update(
            repair_id,
            data.get("message"),
            principal=g.principal,
            dispatcher=_dispatcher(),
        )
        notification = _notification_payload(change)
        message = "Update sent" if notification["delivered"] else "Update recorded; delivery not confirmed"
        return envelope(change.repair.to_dict(), message=message, notification=notification)

    except ServiceError as e:
        return service_error_response(e, operation="send_repair_update", entity_id=repair_id)
    except Exception as e:
        return unexpected_error_response(e, operation="send_repair_update", entity_id=repair_id)
