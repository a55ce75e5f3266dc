# Overview: Query and conditional-update layer over sales, repairs, stock and customers.

"""
Transaction Store

The only module that builds queries against the persisted records. Lifecycle
managers and reports go through these functions so that scoping rules
(active flag, store filter) and stock semantics live in one place.

Stock semantics (authoritative):
- decrement_stock is a single conditional UPDATE that only matches while
  stock_quantity >= quantity, so stock can never go negative even when two
  requests sell the last unit at the same time.
- reserve_stock decrements several products for one request. If any
  decrement fails it issues compensating increments for the ones that
  already succeeded before raising, so the session is back to net zero
  whether the caller rolls back or not.
- Stock writes do not commit; the calling lifecycle operation owns the
  transaction boundary.

Scope: store_id=None means "all stores". Callers resolve the principal's
scope first (see access_service) and pass the result here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import func, update

from ..errors import InsufficientStock
from ..extensions import db
from ..models import Customer, Product, Repair, Sale, Store
from .concurrency import lock_for_update


@dataclass(frozen=True)
class StockRequest:
    product_id: int
    quantity: int


# =============================================================================
# LOOKUPS
# =============================================================================

def get_store(store_id: int) -> Store | None:
    return db.session.get(Store, store_id)


def get_customer(customer_id: int) -> Customer | None:
    customer = db.session.get(Customer, customer_id)
    if customer is None or not customer.is_active:
        return None
    return customer


def find_customer_by_contact(email: str | None, phone: str | None) -> Customer | None:
    """Match an existing customer by email (case-insensitive) or phone."""
    conditions = []
    if email:
        conditions.append(Customer.email == email.strip().lower())
    if phone:
        conditions.append(Customer.phone == phone.strip())
    if not conditions:
        return None
    return (
        db.session.query(Customer)
        .filter(db.or_(*conditions))
        .order_by(Customer.id.asc())
        .first()
    )


def get_products(product_ids: Iterable[int]) -> dict[int, Product]:
    ids = set(product_ids)
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids)).all()
    return {product.id: product for product in rows}


def get_sale(sale_id: int, *, for_update: bool = False, include_inactive: bool = False) -> Sale | None:
    query = db.session.query(Sale).filter(Sale.id == sale_id)
    if not include_inactive:
        query = query.filter(Sale.is_active.is_(True))
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_sale_by_number(sale_number: str) -> Sale | None:
    return (
        db.session.query(Sale)
        .filter(Sale.sale_number == sale_number, Sale.is_active.is_(True))
        .first()
    )


def get_repair(repair_id: int, *, for_update: bool = False) -> Repair | None:
    query = db.session.query(Repair).filter(Repair.id == repair_id)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def ticket_number_exists(value: str) -> bool:
    return db.session.query(Repair.id).filter_by(ticket_number=value).first() is not None


def sale_number_exists(value: str) -> bool:
    return db.session.query(Sale.id).filter_by(sale_number=value).first() is not None


# =============================================================================
# RANGE QUERIES
# =============================================================================

def find_sales(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    store_id: int | None = None,
    statuses: Sequence[str] | None = None,
    exclude_statuses: Sequence[str] | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    newest_first: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> list[Sale]:
    """Active sales with created_at in [start, end] (both inclusive)."""
    query = _sales_query(
        start=start,
        end=end,
        store_id=store_id,
        statuses=statuses,
        exclude_statuses=exclude_statuses,
        customer_id=customer_id,
        payment_method=payment_method,
    )
    if newest_first:
        query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    else:
        query = query.order_by(Sale.created_at.asc(), Sale.id.asc())
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_sales(**filters) -> int:
    return _sales_query(**filters).count()


def _sales_query(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    store_id: int | None = None,
    statuses: Sequence[str] | None = None,
    exclude_statuses: Sequence[str] | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
):
    query = db.session.query(Sale).filter(Sale.is_active.is_(True))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)
    if statuses:
        query = query.filter(Sale.status.in_(list(statuses)))
    if exclude_statuses:
        query = query.filter(Sale.status.notin_(list(exclude_statuses)))
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    return query


def find_repairs(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    store_id: int | None = None,
    statuses: Sequence[str] | None = None,
    newest_first: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> list[Repair]:
    """Repairs with received_at in [start, end] (both inclusive)."""
    query = _repairs_query(start=start, end=end, store_id=store_id, statuses=statuses)
    if newest_first:
        query = query.order_by(Repair.received_at.desc(), Repair.id.desc())
    else:
        query = query.order_by(Repair.received_at.asc(), Repair.id.asc())
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_repairs(**filters) -> int:
    return _repairs_query(**filters).count()


def _repairs_query(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    store_id: int | None = None,
    statuses: Sequence[str] | None = None,
):
    query = db.session.query(Repair)
    if start is not None:
        query = query.filter(Repair.received_at >= start)
    if end is not None:
        query = query.filter(Repair.received_at <= end)
    if store_id is not None:
        query = query.filter(Repair.store_id == store_id)
    if statuses:
        query = query.filter(Repair.status.in_(list(statuses)))
    return query


def find_repairs_for_tracking(*, ticket_number: str | None, phone: str | None) -> list[Repair]:
    query = db.session.query(Repair).join(Customer, Repair.customer_id == Customer.id)
    if ticket_number:
        query = query.filter(Repair.ticket_number == ticket_number.strip())
    if phone:
        query = query.filter(Customer.phone == phone.strip())
    return query.order_by(Repair.received_at.desc()).all()


# =============================================================================
# AGGREGATE HELPERS (summary)
# =============================================================================

def sales_totals(*, store_id: int | None, exclude_statuses: Sequence[str] = ()) -> tuple[int, int]:
    """(count, gross amount in cents) of active sales."""
    query = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
    ).filter(Sale.is_active.is_(True))
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)
    if exclude_statuses:
        query = query.filter(Sale.status.notin_(list(exclude_statuses)))
    count, amount = query.one()
    return int(count or 0), int(amount or 0)


def count_customers(*, store_id: int | None) -> int:
    query = db.session.query(func.count(Customer.id)).filter(Customer.is_active.is_(True))
    if store_id is not None:
        query = query.filter(Customer.store_id == store_id)
    return int(query.scalar() or 0)


# =============================================================================
# STOCK
# =============================================================================

def decrement_stock(product_id: int, quantity: int) -> bool:
    """Conditional decrement; returns False when stock would go negative."""
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_active.is_(True),
            Product.stock_quantity >= quantity,
        )
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def increment_stock(product_id: int, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)


def reserve_stock(requests: Sequence[StockRequest]) -> None:
    """
    Decrement every request or none of them.

    Raises InsufficientStock (with per-item detail) after compensating the
    decrements already applied in this call.
    """
    applied: list[StockRequest] = []
    for req in requests:
        if decrement_stock(req.product_id, req.quantity):
            applied.append(req)
            continue

        for done in reversed(applied):
            increment_stock(done.product_id, done.quantity)

        product = db.session.get(Product, req.product_id)
        on_hand = _current_stock(req.product_id)
        name = product.name if product else f"product {req.product_id}"
        raise InsufficientStock(
            f"Not enough stock for {name}",
            details=[{
                "product_id": req.product_id,
                "requested_quantity": req.quantity,
                "on_hand": on_hand,
            }],
        )


def restore_stock(requests: Sequence[StockRequest]) -> None:
    for req in requests:
        increment_stock(req.product_id, req.quantity)


def _current_stock(product_id: int) -> int:
    value = (
        db.session.query(Product.stock_quantity)
        .filter(Product.id == product_id)
        .scalar()
    )
    return int(value or 0)
