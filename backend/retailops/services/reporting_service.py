# Overview: Calendar-window reports over sales and repairs.

"""
Reporting Service

Windows are resolved in the configured report timezone (REPORT_TIMEZONE)
and converted to UTC-naive bounds before querying:

- day:     00:00:00 .. 23:59:59.999999
- month:   first day 00:00 .. first day of next month minus 1 microsecond
- quarter: months (q-1)*3+1 .. (q-1)*3+3
- year:    Jan 1 00:00 .. Dec 31 23:59:59.999999

Both bounds are inclusive. Anchors are validated before any query runs.

Scope: sales reports only see active, non-cancelled sales. Repairs are
placed in a window by received_at. Non-global principals are always
restricted to their own store.

compute_sales_metrics / compute_repair_metrics are pure single-pass
functions over already-fetched rows so they can be tested without a
database.
"""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from flask import current_app

from ..errors import ValidationError
from ..time_utils import local_to_utc_naive, to_utc_z, utc_naive_to_local, utcnow
from .access_service import Principal, resolve_store_scope
from .repair_service import ACTIVE_STATUSES, REPAIR_STATUS_DELIVERED
from .sales_service import SALE_STATUS_CANCELLED
from . import transaction_store


GRANULARITY_DAY = "day"
GRANULARITY_MONTH = "month"
GRANULARITY_QUARTER = "quarter"
GRANULARITY_YEAR = "year"
VALID_GRANULARITIES = {GRANULARITY_DAY, GRANULARITY_MONTH, GRANULARITY_QUARTER, GRANULARITY_YEAR}

MIN_YEAR = 1970
MAX_YEAR = 2100
TOP_N = 5
UNKNOWN_PRODUCT = "Unknown Product"
UNKNOWN_ISSUE = "Unknown"

REPORT_EXCLUDED_SALE_STATUSES = (SALE_STATUS_CANCELLED,)

END_OF_DAY = time(23, 59, 59, 999999)


@dataclass(frozen=True)
class ReportWindow:
    granularity: str
    start: datetime
    end: datetime
    timezone: str
    label: str
    store_id: int | None = None

    @property
    def start_utc(self) -> datetime:
        return local_to_utc_naive(self.start, self.timezone)

    @property
    def end_utc(self) -> datetime:
        return local_to_utc_naive(self.end, self.timezone)

    def to_dict(self) -> dict:
        return {
            "granularity": self.granularity,
            "period": self.label,
            "timezone": self.timezone,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "start_utc": to_utc_z(self.start_utc),
            "end_utc": to_utc_z(self.end_utc),
            "store_id": self.store_id,
        }


# =============================================================================
# WINDOWS
# =============================================================================

def _int_param(value, name: str, low: int, high: int) -> int:
    if value is None or value == "":
        raise ValidationError.for_field(name, f"{name} is required")
    if isinstance(value, bool):
        raise ValidationError.for_field(name, f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError.for_field(name, f"{name} must be an integer")
    if not low <= number <= high:
        raise ValidationError.for_field(name, f"{name} must be between {low} and {high}")
    return number


def resolve_window(
    granularity: str,
    *,
    year=None,
    month=None,
    quarter=None,
    day=None,
    tz_name: str = "UTC",
    store_id: int | None = None,
) -> ReportWindow:
    """Calendar window for an anchor. Raises ValidationError on bad anchors."""
    if granularity not in VALID_GRANULARITIES:
        raise ValidationError.for_field("granularity", f"Unknown report granularity: {granularity}")

    y = _int_param(year, "year", MIN_YEAR, MAX_YEAR)

    if granularity == GRANULARITY_YEAR:
        start = datetime(y, 1, 1)
        end = datetime.combine(date(y, 12, 31), END_OF_DAY)
        label = f"{y}"
    elif granularity == GRANULARITY_QUARTER:
        q = _int_param(quarter, "quarter", 1, 4)
        first_month = (q - 1) * 3 + 1
        last_month = first_month + 2
        start = datetime(y, first_month, 1)
        end = datetime.combine(date(y, last_month, calendar.monthrange(y, last_month)[1]), END_OF_DAY)
        label = f"Q{q} {y}"
    elif granularity == GRANULARITY_MONTH:
        m = _int_param(month, "month", 1, 12)
        start = datetime(y, m, 1)
        next_start = datetime(y + 1, 1, 1) if m == 12 else datetime(y, m + 1, 1)
        end = next_start - timedelta(microseconds=1)
        label = f"{calendar.month_name[m]} {y}"
    else:
        m = _int_param(month, "month", 1, 12)
        d = _int_param(day, "day", 1, 31)
        try:
            anchor = date(y, m, d)
        except ValueError:
            raise ValidationError.for_field("day", f"{y:04d}-{m:02d} has no day {d}")
        start = datetime.combine(anchor, time.min)
        end = datetime.combine(anchor, END_OF_DAY)
        label = anchor.isoformat()

    return ReportWindow(
        granularity=granularity,
        start=start,
        end=end,
        timezone=tz_name,
        label=label,
        store_id=store_id,
    )


def parse_report_date(value: str | None) -> date:
    if not value:
        raise ValidationError.for_field("date", "date is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError.for_field("date", "Date must be in ISO format (YYYY-MM-DD)")


# =============================================================================
# METRICS
# =============================================================================

def compute_sales_metrics(sales: Iterable) -> dict:
    """
    Single pass over sales.

    total_revenue_cents is gross (refunds are reported separately).
    Items without a catalog product are grouped under "Unknown Product".
    """
    total_sales = 0
    revenue = 0
    refunded = 0
    items_sold = 0
    products: dict = {}

    for sale in sales:
        total_sales += 1
        revenue += sale.total_amount_cents
        refunded += sale.refunded_total_cents
        for item in sale.items:
            items_sold += item.quantity
            product = item.product if item.product_id is not None else None
            if product is None:
                key, name, product_id = "unknown", UNKNOWN_PRODUCT, None
            else:
                key, name, product_id = product.id, product.name or UNKNOWN_PRODUCT, product.id
            bucket = products.get(key)
            if bucket is None:
                bucket = products[key] = {"product_id": product_id, "name": name, "quantity": 0}
            bucket["quantity"] += item.quantity

    # sorted() is stable, so ties keep first-seen order
    top_products = sorted(products.values(), key=lambda entry: -entry["quantity"])[:TOP_N]

    return {
        "total_sales": total_sales,
        "total_revenue_cents": revenue,
        "total_refunded_cents": refunded,
        "total_items_sold": items_sold,
        "average_order_value_cents": round(revenue / total_sales, 2) if total_sales else 0,
        "top_products": top_products,
    }


def _repair_days(repair) -> int | None:
    if repair.received_at is None or repair.completed_at is None:
        return None
    seconds = (repair.completed_at - repair.received_at).total_seconds()
    return math.ceil(seconds / 86400)


def compute_repair_metrics(repairs: Iterable) -> dict:
    """Single pass over repairs; revenue counts delivered repairs only."""
    total = 0
    completed = 0
    revenue = 0
    day_total = 0
    timed = 0
    issues: dict[str, int] = {}
    stores: dict = {}

    for repair in repairs:
        total += 1
        delivered = repair.status == REPAIR_STATUS_DELIVERED
        earned = (repair.total_cost_cents or 0) if delivered else 0

        if delivered:
            completed += 1
            revenue += earned
            days = _repair_days(repair)
            if days is not None:
                day_total += days
                timed += 1

        issue = repair.issue_description or UNKNOWN_ISSUE
        issues[issue] = issues.get(issue, 0) + 1

        store = stores.get(repair.store_id)
        if store is None:
            store = stores[repair.store_id] = {"store_id": repair.store_id, "repairs": 0, "revenue_cents": 0}
        store["repairs"] += 1
        store["revenue_cents"] += earned

    top_issues = sorted(
        ({"issue": issue, "count": count} for issue, count in issues.items()),
        key=lambda entry: -entry["count"],
    )[:TOP_N]

    return {
        "total_repairs": total,
        "completed_repairs": completed,
        "average_repair_time_days": round(day_total / timed, 2) if timed else 0,
        "total_revenue_cents": revenue,
        "top_issues": top_issues,
        "per_store_breakdown": list(stores.values()),
    }


# =============================================================================
# REPORTS
# =============================================================================

def _report_timezone() -> str:
    return current_app.config.get("REPORT_TIMEZONE") or "UTC"


def period_report(
    granularity: str,
    *,
    principal: Principal,
    store_id: int | None = None,
    year=None,
    month=None,
    quarter=None,
    day=None,
) -> dict:
    """Sales and repair metrics for one calendar window."""
    scope = resolve_store_scope(principal, store_id)
    window = resolve_window(
        granularity,
        year=year,
        month=month,
        quarter=quarter,
        day=day,
        tz_name=_report_timezone(),
        store_id=scope,
    )

    sales = transaction_store.find_sales(
        start=window.start_utc,
        end=window.end_utc,
        store_id=scope,
        exclude_statuses=REPORT_EXCLUDED_SALE_STATUSES,
    )
    repairs = transaction_store.find_repairs(start=window.start_utc, end=window.end_utc, store_id=scope)

    return {
        "period": window.label,
        "window": window.to_dict(),
        "sales": compute_sales_metrics(sales),
        "repairs": compute_repair_metrics(repairs),
    }


def daily_sales(
    *,
    principal: Principal,
    on_date: str | None,
    store_id: int | None = None,
    limit=None,
    today: date | None = None,
) -> dict:
    """
    Sales for one local calendar day.

    Metrics cover every sale of the day; only the returned list is cut to
    `limit`.
    """
    config = current_app.config
    max_limit = config.get("DAILY_REPORT_MAX_LIMIT", 1000)
    if limit is None or limit == "":
        limit = config.get("DAILY_REPORT_DEFAULT_LIMIT", max_limit)
    limit = _int_param(limit, "limit", 1, max_limit)

    report_date = parse_report_date(on_date)
    tz_name = _report_timezone()
    if today is None:
        today = utc_naive_to_local(utcnow(), tz_name).date()

    earliest = today - timedelta(days=config.get("DAILY_REPORT_MAX_DAYS_PAST", 365))
    latest = today + timedelta(days=config.get("DAILY_REPORT_MAX_DAYS_FUTURE", 730))
    if report_date < earliest:
        raise ValidationError.for_field("date", f"Date must not be earlier than {earliest.isoformat()}")
    if report_date > latest:
        raise ValidationError.for_field("date", f"Date must not be later than {latest.isoformat()}")

    scope = resolve_store_scope(principal, store_id)
    window = resolve_window(
        GRANULARITY_DAY,
        year=report_date.year,
        month=report_date.month,
        day=report_date.day,
        tz_name=tz_name,
        store_id=scope,
    )

    sales = transaction_store.find_sales(
        start=window.start_utc,
        end=window.end_utc,
        store_id=scope,
        exclude_statuses=REPORT_EXCLUDED_SALE_STATUSES,
        newest_first=True,
    )
    listed = sales[:limit]
    metrics = compute_sales_metrics(sales)

    # Totals cover the whole day, not just the listed rows
    return {
        "date": report_date.isoformat(),
        "window": window.to_dict(),
        "total_sales": metrics["total_sales"],
        "total_amount_cents": metrics["total_revenue_cents"],
        "total_refunded_cents": metrics["total_refunded_cents"],
        "total_items_sold": metrics["total_items_sold"],
        "average_order_value_cents": metrics["average_order_value_cents"],
        "top_products": metrics["top_products"],
        "sales": [sale.to_dict() for sale in listed],
        "returned": len(listed),
        "truncated": len(sales) > len(listed),
        "limit": limit,
    }


def get_summary(*, principal: Principal, store_id: int | None = None) -> dict:
    """All-time headline numbers for the principal's scope."""
    scope = resolve_store_scope(principal, store_id)
    sale_count, revenue = transaction_store.sales_totals(
        store_id=scope,
        exclude_statuses=REPORT_EXCLUDED_SALE_STATUSES,
    )
    return {
        "store_id": scope,
        "total_sales": sale_count,
        "total_revenue_cents": revenue,
        "active_repairs": transaction_store.count_repairs(store_id=scope, statuses=sorted(ACTIVE_STATUSES)),
        "total_customers": transaction_store.count_customers(store_id=scope),
    }
