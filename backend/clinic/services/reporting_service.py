# Overview: Service-layer operations for reporting; read-only projections over sales and appointments.

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import case, func

from ..errors import InvalidInputError
from ..extensions import db
from ..models import Account, Appointment, InventoryItem, Sale, SaleLine
from ..models.accounts import ACCOUNT_TYPES
from ..models.appointments import (
    APPOINTMENT_STATUSES,
    METHOD_ONLINE,
    PAYMENT_PAID,
    STATUS_COMPLETED,
)
from ..models.sales import SALE_PAYMENT_METHODS
from clinic.time_utils import parse_iso_datetime, to_utc_z, utcnow

EARNINGS_PERIODS = ("daily", "weekly", "monthly", "yearly")
DEFAULT_EARNINGS_PERIOD = "monthly"


def parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """
    Parse an ISO window. A date-only end ("2026-03-31") covers that whole day.
    """
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise InvalidInputError("start/end must be ISO-8601 dates", {"start": start, "end": end})

    if end_dt is not None and len(end.strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    if start_dt and end_dt and start_dt > end_dt:
        raise InvalidInputError("start must not be after end", {"start": start, "end": end})
    return start_dt, end_dt


def _minus_one_month(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period: str, now: datetime | None = None) -> datetime:
    now = now or utcnow()
    if period == "daily":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        return now - timedelta(days=7)
    if period == "monthly":
        return _minus_one_month(now)
    if period == "yearly":
        if now.month == 2 and now.day == 29:
            return now.replace(year=now.year - 1, day=28)
        return now.replace(year=now.year - 1)
    raise InvalidInputError(f"period must be one of {list(EARNINGS_PERIODS)}", {"period": period})


def _sales_filter(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    return query


def _appointment_date_filter(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(Appointment.appointment_date >= start_dt.date())
    if end_dt:
        query = query.filter(Appointment.appointment_date <= end_dt.date())
    return query


# =============================================================================
# DOCTOR EARNINGS
# =============================================================================

def earnings_summary(
    doctor_id: int,
    period: str | None = None,
    *,
    start: str | None = None,
    end: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Completed appointments grouped by calendar day.

    Either an explicit start/end window or a trailing period (daily, weekly,
    monthly, yearly; monthly by default). "received" counts appointments
    whose payment is paid, "pending" everything else.
    """
    if start or end:
        start_dt, end_dt = parse_range(start, end)
        period = None
    else:
        period = period or DEFAULT_EARNINGS_PERIOD
        now = now or utcnow()
        start_dt, end_dt = period_start(period, now), now

    received = case((Appointment.payment_status == PAYMENT_PAID, Appointment.payment_amount_cents), else_=0)

    query = db.session.query(
        Appointment.appointment_date.label("day"),
        func.count(Appointment.id).label("appointments_count"),
        func.coalesce(func.sum(Appointment.payment_amount_cents), 0).label("total_cents"),
        func.coalesce(func.sum(received), 0).label("received_cents"),
    ).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == STATUS_COMPLETED,
    )
    query = _appointment_date_filter(query, start_dt, end_dt)
    rows = query.group_by(Appointment.appointment_date).order_by(Appointment.appointment_date).all()

    days = []
    for row in rows:
        total = int(row.total_cents or 0)
        paid = int(row.received_cents or 0)
        day = row.day.isoformat() if isinstance(row.day, date) else str(row.day)
        days.append({
            "date": day,
            "appointments_count": int(row.appointments_count or 0),
            "total_cents": total,
            "received_cents": paid,
            "pending_cents": total - paid,
        })

    return {
        "doctor_id": doctor_id,
        "period": period,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "summary": days,
        "totals": {
            "appointments_count": sum(d["appointments_count"] for d in days),
            "total_cents": sum(d["total_cents"] for d in days),
            "received_cents": sum(d["received_cents"] for d in days),
            "pending_cents": sum(d["pending_cents"] for d in days),
        },
    }


def doctor_earnings(
    doctor_id: int,
    *,
    start: str | None = None,
    end: str | None = None,
    status: str | None = None,
) -> dict:
    status = status or STATUS_COMPLETED
    if status not in APPOINTMENT_STATUSES:
        raise InvalidInputError(f"status must be one of {list(APPOINTMENT_STATUSES)}", {"status": status})
    start_dt, end_dt = parse_range(start, end)

    query = db.session.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == status,
    )
    appointments = _appointment_date_filter(query, start_dt, end_dt).order_by(
        Appointment.appointment_date.asc(), Appointment.appointment_time.asc()
    ).all()

    total = sum(a.payment.amount_cents for a in appointments)
    received = sum(a.payment.amount_cents for a in appointments if a.payment.status == PAYMENT_PAID)

    return {
        "doctor_id": doctor_id,
        "status": status,
        "total_appointments": len(appointments),
        "total_earnings_cents": total,
        "received_cents": received,
        "pending_cents": total - received,
        "appointments": [
            {
                "id": a.id,
                "reference": a.reference,
                "date": a.appointment_date.isoformat(),
                "time": a.appointment_time,
                "amount_cents": a.payment.amount_cents,
                "payment_status": a.payment.status,
                "status": a.status,
            }
            for a in appointments
        ],
    }


# =============================================================================
# PHARMACY SALES
# =============================================================================

def top_selling_items(start: str | None = None, end: str | None = None, limit: int = 10) -> dict:
    start_dt, end_dt = parse_range(start, end)

    quantity = func.sum(SaleLine.quantity)
    query = db.session.query(
        SaleLine.item_id.label("item_id"),
        InventoryItem.name.label("name"),
        func.coalesce(quantity, 0).label("quantity_sold"),
        func.coalesce(func.sum(SaleLine.quantity * SaleLine.unit_price_cents_at_sale), 0).label("revenue_cents"),
        func.coalesce(
            func.sum(SaleLine.quantity * (SaleLine.unit_price_cents_at_sale - SaleLine.unit_cost_cents_at_sale)),
            0,
        ).label("profit_cents"),
    ).join(Sale, SaleLine.sale_id == Sale.id).join(InventoryItem, SaleLine.item_id == InventoryItem.id)

    query = _sales_filter(query, start_dt, end_dt)
    rows = query.group_by(SaleLine.item_id, InventoryItem.name).order_by(
        quantity.desc(), SaleLine.item_id.asc()
    ).limit(limit).all()

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "rows": [
            {
                "item_id": row.item_id,
                "name": row.name,
                "quantity_sold": int(row.quantity_sold or 0),
                "revenue_cents": int(row.revenue_cents or 0),
                "profit_cents": int(row.profit_cents or 0),
            }
            for row in rows
        ],
    }


def _sales_totals(start_dt, end_dt) -> tuple[int, int, int]:
    query = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.coalesce(func.sum(Sale.profit_cents), 0),
    )
    count, revenue, profit = _sales_filter(query, start_dt, end_dt).one()
    return int(count or 0), int(revenue or 0), int(profit or 0)


def sale_stats(start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = parse_range(start, end)
    count, revenue, profit = _sales_totals(start_dt, end_dt)

    by_method = {method: {"count": 0, "revenue_cents": 0} for method in sorted(SALE_PAYMENT_METHODS)}
    query = db.session.query(
        Sale.payment_method,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
    )
    for method, method_count, method_revenue in _sales_filter(query, start_dt, end_dt).group_by(Sale.payment_method):
        by_method[method] = {"count": int(method_count), "revenue_cents": int(method_revenue)}

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "total_sales": count,
        "total_revenue_cents": revenue,
        "total_profit_cents": profit,
        "average_transaction_cents": revenue // count if count else 0,
        "payment_methods": by_method,
    }


# =============================================================================
# ADMIN
# =============================================================================

def financial_report(start: str | None = None, end: str | None = None) -> dict:
    """
    Sales plus paid appointments over a window.

    platform_share_cents is the application fee taken on online appointment
    payments (PLATFORM_FEE_BPS), the rest of that revenue goes to doctors.
    """
    start_dt, end_dt = parse_range(start, end)
    sales_count, sales_revenue, sales_profit = _sales_totals(start_dt, end_dt)

    online = case((Appointment.payment_method == METHOD_ONLINE, Appointment.payment_amount_cents), else_=0)
    query = db.session.query(
        func.count(Appointment.id),
        func.coalesce(func.sum(Appointment.payment_amount_cents), 0),
        func.coalesce(func.sum(online), 0),
    ).filter(Appointment.payment_status == PAYMENT_PAID)
    appt_count, appt_revenue, online_revenue = _appointment_date_filter(query, start_dt, end_dt).one()
    appt_count, appt_revenue, online_revenue = int(appt_count or 0), int(appt_revenue or 0), int(online_revenue or 0)

    platform_share = online_revenue * current_app.config["PLATFORM_FEE_BPS"] // 10_000

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "sales": {
            "count": sales_count,
            "revenue_cents": sales_revenue,
            "profit_cents": sales_profit,
        },
        "appointments": {
            "paid_count": appt_count,
            "revenue_cents": appt_revenue,
            "online_revenue_cents": online_revenue,
            "platform_share_cents": platform_share,
        },
        "totals": {
            "revenue_cents": sales_revenue + appt_revenue,
            "clinic_income_cents": sales_profit + platform_share,
        },
    }


def dashboard_stats() -> dict:
    accounts = {account_type: 0 for account_type in ACCOUNT_TYPES}
    for account_type, count in db.session.query(Account.account_type, func.count(Account.id)).group_by(
        Account.account_type
    ):
        accounts[account_type] = int(count)

    appointments = {status: 0 for status in APPOINTMENT_STATUSES}
    for status, count in db.session.query(Appointment.status, func.count(Appointment.id)).group_by(
        Appointment.status
    ):
        appointments[status] = int(count)

    recent_appointments = db.session.query(Appointment).order_by(
        Appointment.created_at.desc(), Appointment.id.desc()
    ).limit(5).all()
    recent_sales = db.session.query(Sale).order_by(Sale.created_at.desc(), Sale.id.desc()).limit(5).all()

    _, revenue, profit = _sales_totals(None, None)

    return {
        "accounts": accounts,
        "appointments": appointments,
        "recent_appointments": [a.to_dict() for a in recent_appointments],
        "recent_sales": [s.to_dict(include_lines=False) for s in recent_sales],
        "sales_revenue_cents": revenue,
        "sales_profit_cents": profit,
    }
