# Overview: Flask API routes for sales; parses input and returns enveloped JSON.

"""Sales API routes"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models import ROLE_ADMIN
from ..responses import envelope, service_error_response, unexpected_error_response
from ..services import reporting_service, sales_service
from ..validation import page_meta, pagination, query_datetime, query_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a sale.

    Body: customer_id, store_id (global principals only), items[],
    payment_method, notes.
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.create_sale(
            principal=g.principal,
            customer_id=data.get("customer_id"),
            store_id=data.get("store_id"),
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
        return envelope(sale.to_dict(), message="Sale created", status=201)

    except ServiceError as e:
        return service_error_response(e, operation="create_sale")
    except Exception as e:
        return unexpected_error_response(e, operation="create_sale")


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        page, per_page = pagination(request.args)
        rows, total = sales_service.list_sales(
            principal=g.principal,
            store_id=query_int(request.args, "store_id"),
            customer_id=query_int(request.args, "customer_id"),
            status=request.args.get("status") or None,
            payment_method=request.args.get("payment_method") or None,
            start=query_datetime(request.args, "start"),
            end=query_datetime(request.args, "end"),
            page=page,
            per_page=per_page,
        )
        return envelope(
            [sale.to_dict(include_items=False) for sale in rows],
            pagination=page_meta(page, per_page, total),
        )

    except ServiceError as e:
        return service_error_response(e, operation="list_sales")
    except Exception as e:
        return unexpected_error_response(e, operation="list_sales")


@sales_bp.get("/daily")
@require_auth
def daily_sales_route():
    """Sales for one day: ?date=YYYY-MM-DD&store_id&limit (1-1000)."""
    try:
        report = reporting_service.daily_sales(
            principal=g.principal,
            on_date=request.args.get("date"),
            store_id=query_int(request.args, "store_id"),
            limit=request.args.get("limit"),
        )
        return envelope(report)

    except ServiceError as e:
        return service_error_response(e, operation="daily_sales")
    except Exception as e:
        return unexpected_error_response(e, operation="daily_sales")


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, principal=g.principal)
        return envelope(sale.to_dict())

    except ServiceError as e:
        return service_error_response(e, operation="get_sale", entity_id=sale_id)
    except Exception as e:
        return unexpected_error_response(e, operation="get_sale", entity_id=sale_id)


@sales_bp.get("/number/<string:sale_number>")
@require_auth
def get_sale_by_number_route(sale_number: str):
    try:
        sale = sales_service.get_sale_by_number(sale_number, principal=g.principal)
        return envelope(sale.to_dict())

    except ServiceError as e:
        return service_error_response(e, operation="get_sale_by_number", entity_id=sale_number)
    except Exception as e:
        return unexpected_error_response(e, operation="get_sale_by_number", entity_id=sale_number)


@sales_bp.put("/<int:sale_id>/status")
@require_auth
def update_sale_status_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.transition_status(
            sale_id,
            data.get("status"),
            principal=g.principal,
            reason=data.get("reason"),
        )
        return envelope(sale.to_dict(), message=f"Sale status is {sale.status}")

    except ServiceError as e:
        return service_error_response(e, operation="update_sale_status", entity_id=sale_id)
    except Exception as e:
        return unexpected_error_response(e, operation="update_sale_status", entity_id=sale_id)


@sales_bp.post("/<int:sale_id>/refund")
@require_auth
def refund_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.refund(
            sale_id,
            data.get("amount_cents"),
            principal=g.principal,
            reason=data.get("reason"),
        )
        return envelope(sale.to_dict(), message="Refund recorded")

    except ServiceError as e:
        return service_error_response(e, operation="refund_sale", entity_id=sale_id)
    except Exception as e:
        return unexpected_error_response(e, operation="refund_sale", entity_id=sale_id)


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN)
def deactivate_sale_route(sale_id: int):
    """Soft delete; admin only."""
    try:
        sale = sales_service.deactivate_sale(sale_id, principal=g.principal)
        return envelope({"id": sale.id, "sale_number": sale.sale_number}, message="Sale deleted")

    except ServiceError as e:
        return service_error_response(e, operation="deactivate_sale", entity_id=sale_id)
    except Exception as e:
        return unexpected_error_response(e, operation="deactivate_sale", entity_id=sale_id)
