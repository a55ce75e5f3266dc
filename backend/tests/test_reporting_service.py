# Overview: Pytest coverage for calendar windows and report metrics.

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from retailops.errors import ValidationError
from retailops.extensions import db
from retailops.services import repair_service, reporting_service, sales_service
from retailops.services.reporting_service import (
    compute_repair_metrics,
    compute_sales_metrics,
    resolve_window,
)


# =============================================================================
# WINDOWS
# =============================================================================


class TestResolveWindow:

    def test_leap_february(self):
        window = resolve_window("month", year=2024, month=2)
        assert window.start == datetime(2024, 2, 1)
        assert window.end == datetime(2024, 2, 29, 23, 59, 59, 999999)
        assert window.label == "February 2024"

    def test_non_leap_february(self):
        window = resolve_window("month", year=2026, month=2)
        assert window.end == datetime(2026, 2, 28, 23, 59, 59, 999999)

    def test_december_rolls_into_next_year(self):
        window = resolve_window("month", year=2026, month=12)
        assert window.end == datetime(2026, 12, 31, 23, 59, 59, 999999)

    def test_fourth_quarter(self):
        window = resolve_window("quarter", year=2026, quarter=4)
        assert window.start == datetime(2026, 10, 1)
        assert window.end == datetime(2026, 12, 31, 23, 59, 59, 999999)
        assert window.label == "Q4 2026"

    def test_first_quarter_of_leap_year(self):
        window = resolve_window("quarter", year=2024, quarter=1)
        assert window.end == datetime(2024, 3, 31, 23, 59, 59, 999999)

    def test_year(self):
        window = resolve_window("year", year="2026")
        assert window.start == datetime(2026, 1, 1)
        assert window.end == datetime(2026, 12, 31, 23, 59, 59, 999999)
        assert window.label == "2026"

    def test_day(self):
        window = resolve_window("day", year=2026, month=10, day=18)
        assert window.start == datetime(2026, 10, 18)
        assert window.end == datetime(2026, 10, 18, 23, 59, 59, 999999)
        assert window.label == "2026-10-18"

    def test_timezone_shifts_utc_bounds(self):
        window = resolve_window("day", year=2026, month=10, day=18, tz_name="Asia/Kolkata")
        assert window.start_utc == datetime(2026, 10, 17, 18, 30)
        assert window.end_utc == datetime(2026, 10, 18, 18, 29, 59, 999999)

    @pytest.mark.parametrize("granularity,anchor,field", [
        ("month", {"year": 2026, "month": 13}, "month"),
        ("month", {"year": 2026, "month": 0}, "month"),
        ("month", {"year": 2026}, "month"),
        ("quarter", {"year": 2026, "quarter": 5}, "quarter"),
        ("year", {"year": 1969}, "year"),
        ("year", {"year": 2101}, "year"),
        ("year", {"year": "20x6"}, "year"),
        ("day", {"year": 2026, "month": 2, "day": 30}, "day"),
        ("day", {"year": 2025, "month": 2, "day": 29}, "day"),
    ])
    def test_invalid_anchor(self, granularity, anchor, field):
        with pytest.raises(ValidationError) as exc_info:
            resolve_window(granularity, **anchor)
        assert exc_info.value.details[0]["field"] == field

    def test_unknown_granularity(self):
        with pytest.raises(ValidationError):
            resolve_window("week", year=2026)


def test_parse_report_date():
    assert reporting_service.parse_report_date("2026-10-18") == date(2026, 10, 18)
    with pytest.raises(ValidationError):
        reporting_service.parse_report_date("18/10/2026")
    with pytest.raises(ValidationError):
        reporting_service.parse_report_date(None)


# =============================================================================
# PURE METRICS
# =============================================================================


def _item(quantity, product=None):
    return SimpleNamespace(
        quantity=quantity,
        product_id=product.id if product else None,
        product=product,
    )


def _sale(total, items, refunded=0):
    return SimpleNamespace(total_amount_cents=total, refunded_total_cents=refunded, items=items)


LAPTOP = SimpleNamespace(id=1, name="ThinkPad E14")
CHARGER = SimpleNamespace(id=2, name="USB-C Charger")
MOUSE = SimpleNamespace(id=3, name="Mouse")


class TestSalesMetrics:

    def test_empty(self):
        metrics = compute_sales_metrics([])
        assert metrics["total_sales"] == 0
        assert metrics["total_revenue_cents"] == 0
        assert metrics["average_order_value_cents"] == 0
        assert metrics["top_products"] == []

    def test_totals_and_average(self):
        metrics = compute_sales_metrics([
            _sale(100000, [_item(2, LAPTOP)], refunded=40000),
            _sale(25000, [_item(1, CHARGER)]),
            _sale(1, [_item(1)]),
        ])
        assert metrics["total_sales"] == 3
        assert metrics["total_revenue_cents"] == 125001
        assert metrics["total_refunded_cents"] == 40000
        assert metrics["total_items_sold"] == 4
        assert metrics["average_order_value_cents"] == 41667.0

    def test_manual_items_group_as_unknown_product(self):
        metrics = compute_sales_metrics([_sale(10, [_item(2), _item(3)])])
        assert metrics["top_products"] == [{"product_id": None, "name": "Unknown Product", "quantity": 5}]

    def test_top_products_ties_keep_first_seen_order(self):
        metrics = compute_sales_metrics([
            _sale(1, [_item(2, MOUSE), _item(5, LAPTOP)]),
            _sale(1, [_item(2, CHARGER)]),
        ])
        assert [entry["name"] for entry in metrics["top_products"]] == ["ThinkPad E14", "Mouse", "USB-C Charger"]

    def test_top_products_capped_at_five(self):
        products = [SimpleNamespace(id=i, name=f"P{i}") for i in range(1, 8)]
        metrics = compute_sales_metrics([_sale(1, [_item(i, p) for i, p in enumerate(products, start=1)])])
        assert [entry["product_id"] for entry in metrics["top_products"]] == [7, 6, 5, 4, 3]


def _repair(status, issue, cost, store_id=1, days=None):
    received = datetime(2026, 10, 1, 9, 0)
    completed = received + timedelta(days=days) if days is not None else None
    return SimpleNamespace(
        status=status,
        issue_description=issue,
        total_cost_cents=cost,
        store_id=store_id,
        received_at=received,
        completed_at=completed,
    )


class TestRepairMetrics:

    def test_empty(self):
        metrics = compute_repair_metrics([])
        assert metrics == {
            "total_repairs": 0,
            "completed_repairs": 0,
            "average_repair_time_days": 0,
            "total_revenue_cents": 0,
            "top_issues": [],
            "per_store_breakdown": [],
        }

    def test_revenue_counts_delivered_only(self):
        metrics = compute_repair_metrics([
            _repair("delivered", "Screen", 1500, days=2),
            _repair("in_repair", "Screen", 9999),
            _repair("delivered", "Battery", 500, store_id=2, days=1.2),
            _repair("cancelled", "Keyboard", 700, store_id=2),
        ])
        assert metrics["total_repairs"] == 4
        assert metrics["completed_repairs"] == 2
        assert metrics["total_revenue_cents"] == 2000
        # 2 days and 1.2 days (rounded up to 2)
        assert metrics["average_repair_time_days"] == 2
        assert metrics["per_store_breakdown"] == [
            {"store_id": 1, "repairs": 2, "revenue_cents": 1500},
            {"store_id": 2, "repairs": 2, "revenue_cents": 500},
        ]

    def test_top_issues_with_ties(self):
        metrics = compute_repair_metrics([
            _repair("received", "Battery", 0),
            _repair("received", "Screen", 0),
            _repair("received", "Screen", 0),
            _repair("received", "Hinge", 0),
            _repair("received", "", 0),
        ])
        assert metrics["top_issues"] == [
            {"issue": "Screen", "count": 2},
            {"issue": "Battery", "count": 1},
            {"issue": "Hinge", "count": 1},
            {"issue": "Unknown", "count": 1},
        ]


# =============================================================================
# PERSISTED REPORTS
# =============================================================================


def _sale_at(principal, customer, product, quantity, when):
    sale = sales_service.create_sale(
        principal=principal,
        customer_id=customer.id,
        store_id=None,
        items=[{"product_id": product.id, "quantity": quantity}],
        payment_method="cash",
    )
    sale.created_at = when
    db.session.commit()
    return sale


class TestPeriodReports:

    @pytest.fixture
    def october(self, staff, customer, charger, laptop):
        """Three October sales on the month edges, one cancelled, two outside."""
        _sale_at(staff, customer, charger, 1, datetime(2026, 10, 1, 0, 0))
        _sale_at(staff, customer, laptop, 1, datetime(2026, 10, 15, 12, 0))
        _sale_at(staff, customer, charger, 2, datetime(2026, 10, 31, 23, 59, 59, 999999))
        cancelled = _sale_at(staff, customer, laptop, 1, datetime(2026, 10, 20, 9, 0))
        sales_service.transition_status(cancelled.id, "cancelled", principal=staff)
        _sale_at(staff, customer, laptop, 1, datetime(2026, 9, 30, 23, 59, 59, 999999))
        _sale_at(staff, customer, laptop, 1, datetime(2026, 11, 1, 0, 0))

    def test_monthly_totals(self, staff, october):
        report = reporting_service.period_report("month", principal=staff, year=2026, month=10)
        assert report["period"] == "October 2026"
        assert report["sales"]["total_sales"] == 3
        assert report["sales"]["total_revenue_cents"] == 25000 + 50000 + 50000
        assert report["sales"]["top_products"][0]["name"] == "USB-C Charger 65W"

    def test_monthly_equals_sum_of_daily(self, staff, october):
        monthly = reporting_service.period_report("month", principal=staff, year=2026, month=10)

        count = revenue = 0
        for day in range(1, 32):
            daily = reporting_service.period_report("day", principal=staff, year=2026, month=10, day=day)
            count += daily["sales"]["total_sales"]
            revenue += daily["sales"]["total_revenue_cents"]

        assert count == monthly["sales"]["total_sales"]
        assert revenue == monthly["sales"]["total_revenue_cents"]

    def test_quarter_and_year_include_neighbours(self, staff, october):
        q3 = reporting_service.period_report("quarter", principal=staff, year=2026, quarter=3)
        q4 = reporting_service.period_report("quarter", principal=staff, year=2026, quarter=4)
        year = reporting_service.period_report("year", principal=staff, year=2026)
        assert q3["sales"]["total_sales"] == 1
        assert q4["sales"]["total_sales"] == 4
        assert year["sales"]["total_sales"] == 5

    def test_staff_report_ignores_other_store(self, staff, october, other_staff):
        report = reporting_service.period_report(
            "month", principal=other_staff, store_id=staff.store_id, year=2026, month=10
        )
        assert report["window"]["store_id"] == other_staff.store_id
        assert report["sales"]["total_sales"] == 0

    def test_repairs_in_window(self, staff, customer):
        change = repair_service.create_repair(
            principal=staff,
            customer=customer.id,
            device={"device_type": "Laptop", "brand": "HP", "model": "15s"},
            issue_description="No power",
            cost_estimate={"repair_cost_cents": 80000},
        )
        repair_service.transition_status(change.repair.id, "delivered", principal=staff)
        repair = change.repair
        repair.received_at = datetime(2026, 10, 3, 10, 0)
        repair.completed_at = datetime(2026, 10, 5, 9, 0)
        db.session.commit()

        report = reporting_service.period_report("month", principal=staff, year=2026, month=10)
        assert report["repairs"]["total_repairs"] == 1
        assert report["repairs"]["completed_repairs"] == 1
        assert report["repairs"]["total_revenue_cents"] == 80000
        assert report["repairs"]["average_repair_time_days"] == 2
        assert report["repairs"]["top_issues"] == [{"issue": "No power", "count": 1}]


class TestDailySales:

    TODAY = date(2026, 10, 18)

    def test_empty_day(self, staff, store_main):
        report = reporting_service.daily_sales(principal=staff, on_date="2026-10-18", today=self.TODAY)
        assert report["total_sales"] == 0
        assert report["average_order_value_cents"] == 0
        assert report["sales"] == []
        assert report["truncated"] is False

    def test_limit_truncates_list_not_summary(self, staff, customer, charger):
        for hour in (9, 10, 11):
            _sale_at(staff, customer, charger, 1, datetime(2026, 10, 18, hour, 0))

        report = reporting_service.daily_sales(principal=staff, on_date="2026-10-18", limit="2", today=self.TODAY)
        assert report["total_sales"] == 3
        assert report["returned"] == 2
        assert report["truncated"] is True
        # Newest first
        assert report["sales"][0]["created_at"] == "2026-10-18T11:00:00Z"

    def test_day_metrics_sit_beside_the_sale_list(self, staff, customer, laptop, charger):
        _sale_at(staff, customer, laptop, 1, datetime(2026, 10, 18, 9, 30))
        _sale_at(staff, customer, charger, 2, datetime(2026, 10, 18, 15, 0))

        report = reporting_service.daily_sales(principal=staff, on_date="2026-10-18", today=self.TODAY)

        assert "summary" not in report
        assert report["date"] == "2026-10-18"
        assert report["total_sales"] == 2
        assert report["total_amount_cents"] == 50000 + 2 * 25000
        assert report["total_items_sold"] == 3
        assert report["average_order_value_cents"] == 50000
        assert len(report["sales"]) == 2

    @pytest.mark.parametrize("limit", ["0", "1001", "ten"])
    def test_invalid_limit(self, staff, store_main, limit):
        with pytest.raises(ValidationError):
            reporting_service.daily_sales(principal=staff, on_date="2026-10-18", limit=limit, today=self.TODAY)

    @pytest.mark.parametrize("on_date", ["2025-10-17", "2028-10-18", "not-a-date", None])
    def test_date_bounds(self, staff, store_main, on_date):
        with pytest.raises(ValidationError):
            reporting_service.daily_sales(principal=staff, on_date=on_date, today=self.TODAY)


def test_summary(staff, customer, laptop, charger):
    _sale_at(staff, customer, laptop, 1, datetime(2026, 10, 1, 10, 0))
    cancelled = _sale_at(staff, customer, charger, 1, datetime(2026, 10, 2, 10, 0))
    sales_service.transition_status(cancelled.id, "cancelled", principal=staff)
    repair_service.create_repair(
        principal=staff,
        customer=customer.id,
        device={"device_type": "Phone", "brand": "Apple", "model": "iPhone 13"},
        issue_description="Cracked screen",
    )

    summary = reporting_service.get_summary(principal=staff)
    assert summary == {
        "store_id": staff.store_id,
        "total_sales": 1,
        "total_revenue_cents": 50000,
        "active_repairs": 1,
        "total_customers": 1,
    }
