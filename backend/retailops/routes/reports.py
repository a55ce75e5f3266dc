# Overview: Flask API routes for calendar reports and the dashboard summary.

"""Reporting API routes"""

from flask import Blueprint, g, request

from ..decorators import require_auth
from ..errors import ServiceError
from ..responses import envelope, service_error_response, unexpected_error_response
from ..services import reporting_service
from ..validation import query_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _period(granularity: str, operation: str, **anchor):
    args = request.args
    try:
        report = reporting_service.period_report(
            granularity,
            principal=g.principal,
            store_id=query_int(args, "store_id"),
            year=anchor.get("year", args.get("year")),
            month=anchor.get("month", args.get("month")),
            quarter=args.get("quarter"),
            day=anchor.get("day", args.get("day")),
        )
        return envelope(report)

    except ServiceError as e:
        return service_error_response(e, operation=operation)
    except Exception as e:
        return unexpected_error_response(e, operation=operation)


@reports_bp.get("/daily")
@require_auth
def daily_report_route():
    """?year&month&day, or ?date=YYYY-MM-DD."""
    on_date = request.args.get("date")
    anchor = {}
    if on_date:
        try:
            parsed = reporting_service.parse_report_date(on_date)
        except ServiceError as e:
            return service_error_response(e, operation="daily_report")
        anchor = {"year": parsed.year, "month": parsed.month, "day": parsed.day}
    return _period(reporting_service.GRANULARITY_DAY, "daily_report", **anchor)


@reports_bp.get("/monthly")
@require_auth
def monthly_report_route():
    """?year&month"""
    return _period(reporting_service.GRANULARITY_MONTH, "monthly_report")


@reports_bp.get("/quarterly")
@require_auth
def quarterly_report_route():
    """?year&quarter"""
    return _period(reporting_service.GRANULARITY_QUARTER, "quarterly_report")


@reports_bp.get("/annual")
@require_auth
def annual_report_route():
    """?year"""
    return _period(reporting_service.GRANULARITY_YEAR, "annual_report")


@reports_bp.get("/summary")
@require_auth
def summary_report_route():
    try:
        summary = reporting_service.get_summary(
            principal=g.principal,
            store_id=query_int(request.args, "store_id"),
        )
        return envelope(summary)

    except ServiceError as e:
        return service_error_response(e, operation="summary_report")
    except Exception as e:
        return unexpected_error_response(e, operation="summary_report")
