# Overview: Sale lifecycle: creation, status transitions, refunds, soft delete.

"""
Sales Service

Sale Lifecycle (authoritative):

    pending ──> completed ──> partially_refunded ──> refunded
       │            │
       └────────────┴──> cancelled (restores catalog stock once)

- total_amount_cents is computed from the line items at creation and never
  rewritten. Refunds are separate append-only rows.
- Stock for catalog lines is taken with a conditional decrement when the
  sale is created. If any line cannot be satisfied the already-taken units
  are given back and nothing is persisted.
- Cancellation is only valid from pending/completed. The "was it already
  cancelled" check and the stock restore happen in the same versioned write,
  so a retried or concurrent cancel cannot restore twice.
- Every refund adds to refunded_total_cents on the sale row, so a refund is
  always a versioned UPDATE even when the status does not change.
- Every mutation of an existing sale runs inside run_with_retry; the
  version_id column turns a concurrent write into StaleDataError, which is
  retried and finally surfaced as ConflictError.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    NotRefundable,
    RefundExceedsBalance,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, SaleItem, SaleRefund
from ..time_utils import utcnow
from .access_service import Principal, ensure_store_access, resolve_store_scope, resolve_target_store
from .concurrency import run_with_retry
from .identifier_service import IdentifierSeed, is_unique_violation, next_sale_number
from .line_items import CatalogLineItem, LineItem, line_total_cents, parse_line_items
from . import transaction_store
from .transaction_store import StockRequest


SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_PARTIALLY_REFUNDED = "partially_refunded"
SALE_STATUS_REFUNDED = "refunded"

VALID_SALE_STATUSES = {
    SALE_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_PARTIALLY_REFUNDED,
    SALE_STATUS_REFUNDED,
}

# Forward order for non-cancel moves
STATUS_RANK = {
    SALE_STATUS_PENDING: 0,
    SALE_STATUS_COMPLETED: 1,
    SALE_STATUS_PARTIALLY_REFUNDED: 2,
    SALE_STATUS_REFUNDED: 3,
}

CANCELLABLE_STATUSES = {SALE_STATUS_PENDING, SALE_STATUS_COMPLETED}

PAYMENT_METHODS = {"cash", "card", "upi", "emi", "bank_transfer", "cheque"}


def _actor_name(principal: Principal | None) -> str:
    return principal.username if principal else "system"


def _append_note(sale: Sale, text: str) -> None:
    sale.notes = f"{sale.notes}\n{text}" if sale.notes else text


def _catalog_stock_requests(sale: Sale) -> list[StockRequest]:
    return [
        StockRequest(item.product_id, item.quantity)
        for item in sale.items
        if item.item_type == CatalogLineItem.item_type and item.product_id is not None
    ]


# =============================================================================
# CREATE
# =============================================================================

def _price_catalog_lines(items: list[LineItem], store_id: int) -> list[LineItem]:
    """Check catalog products belong to the store and fill in default prices."""
    catalog_ids = [item.product_id for item in items if isinstance(item, CatalogLineItem)]
    products = transaction_store.get_products(catalog_ids)

    priced: list[LineItem] = []
    for index, item in enumerate(items):
        if not isinstance(item, CatalogLineItem):
            priced.append(item)
            continue

        product = products.get(item.product_id)
        if product is None or product.store_id != store_id or not product.is_active:
            raise NotFoundError(
                f"Product {item.product_id} not found in this store",
                details=[{"field": f"items[{index}].product_id", "message": "Product not found"}],
            )
        if item.unit_price_cents is None:
            if product.price_cents is None:
                raise ValidationError.for_field(
                    f"items[{index}].unit_price_cents",
                    f"Product {product.name} has no price; unit_price_cents is required",
                )
            item = item.priced(product.price_cents)
        priced.append(item)
    return priced


def _merged_stock_requests(items: list[LineItem]) -> list[StockRequest]:
    totals: dict[int, int] = {}
    for item in items:
        if isinstance(item, CatalogLineItem):
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return [StockRequest(product_id, qty) for product_id, qty in totals.items()]


def create_sale(
    *,
    principal: Principal,
    customer_id,
    store_id: int | None,
    items,
    payment_method: str,
    notes: str | None = None,
) -> Sale:
    """
    Create and persist a sale.

    Validation runs before any write. Stock is reserved last; a failure
    there leaves stock untouched and raises InsufficientStock.
    """
    parsed = parse_line_items(items)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationError.for_field(
            "payment_method",
            f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}",
        )

    if customer_id is None or isinstance(customer_id, bool):
        raise ValidationError.for_field("customer_id", "customer_id is required")
    try:
        customer_id = int(customer_id)
    except (TypeError, ValueError):
        raise ValidationError.for_field("customer_id", "customer_id must be an integer")

    target_store_id = resolve_target_store(principal, store_id)

    customer = transaction_store.get_customer(customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")

    priced = _price_catalog_lines(parsed, target_store_id)
    total = sum(line_total_cents(item) for item in priced)
    stock_requests = _merged_stock_requests(priced)
    max_attempts = current_app.config.get("TICKET_MAX_ATTEMPTS", 5)

    for attempt in range(max_attempts):
        transaction_store.reserve_stock(stock_requests)

        sale = Sale(
            sale_number=next_sale_number(
                IdentifierSeed(on_date=utcnow().date(), phone=customer.phone),
                max_attempts=max_attempts,
            ),
            customer_id=customer.id,
            store_id=target_store_id,
            total_amount_cents=total,
            payment_method=payment_method,
            status=SALE_STATUS_PENDING,
            notes=(notes or "").strip() or None,
            created_by_user_id=principal.user_id,
        )
        for position, item in enumerate(priced, start=1):
            sale.items.append(_to_row(item, position))

        db.session.add(sale)
        try:
            db.session.commit()
            break
        except IntegrityError as exc:
            # Rollback also undoes this attempt's stock decrements
            db.session.rollback()
            if not is_unique_violation(exc, "sale_number"):
                raise
            current_app.logger.warning(
                "Sale number %s taken at insert (attempt %d/%d)", sale.sale_number, attempt + 1, max_attempts
            )
    else:
        raise ConflictError("Could not allocate a unique sale number; please retry")

    current_app.logger.info(
        "Sale %s created in store %s: %d item(s), total %d cents",
        sale.sale_number, sale.store_id, len(priced), total,
    )
    return sale


def _to_row(item: LineItem, position: int) -> SaleItem:
    if isinstance(item, CatalogLineItem):
        return SaleItem(
            position=position,
            item_type=item.item_type,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            line_total_cents=line_total_cents(item),
        )
    return SaleItem(
        position=position,
        item_type=item.item_type,
        product_name=item.product_name,
        serial_number=item.serial_number,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        line_total_cents=line_total_cents(item),
    )


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def _check_transition(sale: Sale, new_status: str) -> None:
    current = sale.status

    if new_status == SALE_STATUS_CANCELLED:
        if current not in CANCELLABLE_STATUSES:
            raise InvalidTransition(f"Cannot cancel a sale with status {current}")
        return

    if current == SALE_STATUS_CANCELLED:
        raise InvalidTransition("Cancelled sales cannot change status")

    if STATUS_RANK[new_status] < STATUS_RANK[current]:
        raise InvalidTransition(f"Cannot move sale from {current} to {new_status}")

    refunded = sale.refunded_total_cents
    if new_status == SALE_STATUS_REFUNDED and sale.refundable_balance_cents != 0:
        raise InvalidTransition("Sale can only be marked refunded once its full amount has been refunded")
    if new_status == SALE_STATUS_PARTIALLY_REFUNDED and not (0 < refunded < sale.total_amount_cents):
        raise InvalidTransition("Sale can only be marked partially_refunded after a partial refund")


def transition_status(
    sale_id: int,
    new_status: str,
    *,
    principal: Principal,
    reason: str | None = None,
) -> Sale:
    """Move a sale to new_status; a no-op if it is already there."""
    if new_status not in VALID_SALE_STATUSES:
        raise ValidationError.for_field(
            "status",
            f"status must be one of: {', '.join(sorted(VALID_SALE_STATUSES))}",
        )

    def _op() -> Sale:
        sale = transaction_store.get_sale(sale_id, for_update=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        ensure_store_access(principal, sale.store_id)

        if sale.status == new_status:
            return sale

        _check_transition(sale, new_status)
        previous = sale.status

        # Same-status moves returned above, so this runs once per sale
        if new_status == SALE_STATUS_CANCELLED:
            transaction_store.restore_stock(_catalog_stock_requests(sale))
            sale.cancelled_at = utcnow()

        sale.status = new_status
        if reason:
            _append_note(sale, f"[{new_status}] {reason.strip()}")
        db.session.commit()

        current_app.logger.info(
            "Sale %s status %s -> %s by %s", sale.sale_number, previous, new_status, _actor_name(principal)
        )
        return sale

    return _guarded(_op)


def _guarded(op):
    try:
        return run_with_retry(op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# REFUNDS
# =============================================================================

def _parse_amount(value) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError.for_field("amount_cents", "amount_cents is required")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError.for_field("amount_cents", "amount_cents must be a whole number of cents")
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise ValidationError.for_field("amount_cents", "amount_cents must be an integer")
    if amount <= 0:
        raise ValidationError.for_field("amount_cents", "amount_cents must be positive")
    return amount


def refund(
    sale_id: int,
    amount_cents,
    *,
    principal: Principal,
    reason: str | None,
) -> Sale:
    """
    Record a refund against a sale.

    Status becomes refunded when the balance reaches zero, otherwise
    partially_refunded. The original total is never changed.
    """
    amount = _parse_amount(amount_cents)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError.for_field("reason", "reason is required")

    def _op() -> Sale:
        sale = transaction_store.get_sale(sale_id, for_update=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        ensure_store_access(principal, sale.store_id)

        if sale.status in (SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED):
            raise NotRefundable(f"Sale with status {sale.status} cannot be refunded")

        balance = sale.refundable_balance_cents
        if amount > balance:
            raise RefundExceedsBalance(
                "Refund amount exceeds remaining balance",
                details=[{"field": "amount_cents", "remaining_balance_cents": balance}],
            )

        sale.refunds.append(SaleRefund(
            amount_cents=amount,
            reason=reason,
            processed_by=_actor_name(principal),
            processed_at=utcnow(),
        ))
        sale.refunded_total_cents = sale.refunded_total_cents + amount
        sale.status = SALE_STATUS_REFUNDED if amount == balance else SALE_STATUS_PARTIALLY_REFUNDED
        db.session.commit()

        current_app.logger.info(
            "Sale %s refunded %d cents (%s) by %s", sale.sale_number, amount, sale.status, _actor_name(principal)
        )
        return sale

    return _guarded(_op)


# =============================================================================
# SOFT DELETE
# =============================================================================

def deactivate_sale(sale_id: int, *, principal: Principal) -> Sale:
    """Hide a sale from reads and reports. Stock is not touched."""
    def _op() -> Sale:
        sale = transaction_store.get_sale(sale_id, for_update=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        ensure_store_access(principal, sale.store_id)

        sale.is_active = False
        sale.deactivated_at = utcnow()
        db.session.commit()

        current_app.logger.info("Sale %s deactivated by %s", sale.sale_number, _actor_name(principal))
        return sale

    return _guarded(_op)


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int, *, principal: Principal) -> Sale:
    sale = transaction_store.get_sale(sale_id)
    if sale is None:
        raise NotFoundError("Sale not found")
    ensure_store_access(principal, sale.store_id)
    return sale


def get_sale_by_number(sale_number: str, *, principal: Principal) -> Sale:
    sale = transaction_store.get_sale_by_number(sale_number)
    if sale is None:
        raise NotFoundError("Sale not found")
    ensure_store_access(principal, sale.store_id)
    return sale


def list_sales(
    *,
    principal: Principal,
    store_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Sale], int]:
    """Page of active sales, newest first, plus the total match count."""
    if status is not None and status not in VALID_SALE_STATUSES:
        raise ValidationError.for_field("status", "Invalid status filter")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError.for_field("payment_method", "Invalid payment_method filter")

    filters = dict(
        store_id=resolve_store_scope(principal, store_id),
        customer_id=customer_id,
        statuses=[status] if status else None,
        payment_method=payment_method,
        start=start,
        end=end,
    )
    total = transaction_store.count_sales(**filters)
    rows = transaction_store.find_sales(
        **filters,
        newest_first=True,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return rows, total
