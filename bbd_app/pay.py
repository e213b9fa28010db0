"""Sales rep pay plans and the monthly pay ledger."""

import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import and_, or_

from bbd_app import db
from bbd_app.constants import OFFICES, ROLE_SALES_REP
from bbd_app.models import (
    OfficePayPlan,
    Order,
    PayAuditLog,
    PayLedger,
    PayPlan,
    Role,
    User,
)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _dec(value):
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _round(value):
    return _dec(value).quantize(CENT, rounding=ROUND_HALF_UP)


def find_matching_tier(value, tiers):
    value = _dec(value)
    for tier in tiers:
        upper = tier.max_value
        if _dec(tier.min_value) <= value and (upper is None or value <= _dec(upper)):
            return tier
    return None


def calculate_formula_for_rep(buildings_sold, total_order_amount, salary, tiers):
    """Evaluate one rep's plan for a month.

    ``tiers`` is the office tier list (``BUILDINGS_SOLD`` and ``ORDER_TOTAL``).
    Returns a dict of Decimals keyed like the ledger columns.
    """
    buildings_sold = int(buildings_sold or 0)
    total_order_amount = _dec(total_order_amount)
    salary = _dec(salary)

    building_tiers = [t for t in tiers if t.tier_type == "BUILDINGS_SOLD"]
    total_tiers = [t for t in tiers if t.tier_type == "ORDER_TOTAL"]

    tier_bonus = ZERO
    building_tier = find_matching_tier(buildings_sold, building_tiers)
    if building_tier is not None:
        tier_bonus = _round(buildings_sold * _dec(building_tier.bonus_amount))

    monthly_salary = _round(salary / 12) if salary > 0 else ZERO

    commission = ZERO
    total_tier = find_matching_tier(total_order_amount, total_tiers)
    if total_tier is not None:
        amount = _dec(total_tier.bonus_amount)
        if total_tier.bonus_type == "PERCENTAGE":
            commission = _round(total_order_amount * amount / 100)
        else:
            commission = _round(amount)

    return {
        "tier_bonus": tier_bonus,
        "monthly_salary": monthly_salary,
        "commission_amount": commission,
        "plan_total": _round(tier_bonus + monthly_salary + commission),
    }


def month_bounds(month, year):
    start = datetime.datetime(year, month, 1)
    end = datetime.datetime(year + 1, 1, 1) if month == 12 else datetime.datetime(year, month + 1, 1)
    return start, end


def get_order_stats_for_month(month, year):
    """``{sales_rep_id: {"count": n, "total": Decimal}}`` for the month."""
    start, end = month_bounds(month, year)
    orders = Order.query.filter(
        Order.status != "CANCELLED",
        Order.sales_rep_id.isnot(None),
        or_(
            and_(Order.date_sold >= start, Order.date_sold < end),
            and_(Order.date_sold.is_(None), Order.created_at >= start, Order.created_at < end),
        ),
    ).all()

    stats = {}
    for order in orders:
        entry = stats.setdefault(order.sales_rep_id, {"count": 0, "total": ZERO})
        entry["count"] += 1
        entry["total"] += _dec(order.total_price)
    return stats


def active_sales_reps():
    return (
        User.query.join(Role)
        .filter(Role.name == ROLE_SALES_REP, User.active.is_(True))
        .order_by(User.first_name, User.last_name)
        .all()
    )


def get_office_pay_plans(month, year):
    plans = {office: None for office in OFFICES}
    for plan in OfficePayPlan.query.filter_by(month=month, year=year).all():
        plans[plan.office] = plan
    return plans


def generate_ledger(month, year):
    stats = get_order_stats_for_month(month, year)
    office_plans = get_office_pay_plans(month, year)
    entries = []

    for rep in active_sales_reps():
        plan = PayPlan.query.filter_by(sales_rep_id=rep.id, month=month, year=year).first()
        office_plan = office_plans.get(rep.office)
        tiers = list(office_plan.tiers) if office_plan else []
        rep_stats = stats.get(rep.id, {"count": 0, "total": ZERO})

        formula = calculate_formula_for_rep(
            rep_stats["count"],
            rep_stats["total"],
            plan.salary if plan else ZERO,
            tiers,
        )

        ledger = PayLedger.query.filter_by(month=month, year=year, sales_rep_id=rep.id).first()
        if ledger is None:
            ledger = PayLedger(
                month=month,
                year=year,
                sales_rep_id=rep.id,
                adjustment=ZERO,
                status="PENDING",
            )
            db.session.add(ledger)
        deduction = _dec(ledger.cancellation_deduction)

        ledger.buildings_sold = rep_stats["count"]
        ledger.total_order_amount = _round(rep_stats["total"])
        ledger.monthly_salary = formula["monthly_salary"]
        ledger.tier_bonus = formula["tier_bonus"]
        ledger.commission_amount = formula["commission_amount"]
        ledger.plan_total = formula["plan_total"]
        ledger.cancellation_deduction = deduction
        ledger.final_amount = _round(formula["plan_total"] - deduction + _dec(ledger.adjustment))
        ledger.status = ledger.status or "PENDING"
        entries.append(ledger)

    db.session.commit()
    return entries


def add_audit(action, description, user_id=None, sales_rep_id=None, month=None, year=None):
    entry = PayAuditLog(
        action=action,
        description=description,
        user_id=user_id,
        sales_rep_id=sales_rep_id,
        month=month,
        year=year,
    )
    db.session.add(entry)
    return entry


def recent_audit_logs(limit=50):
    return (
        PayAuditLog.query.order_by(PayAuditLog.created_at.desc(), PayAuditLog.id.desc())
        .limit(limit)
        .all()
    )


def format_money(value):
    return f"{_round(value):,.2f}"


def get_ledger_for_month(month, year):
    """Ledger rows for active reps, each with that month's pay plan attached."""
    entries = (
        PayLedger.query.join(User, PayLedger.sales_rep_id == User.id)
        .filter(PayLedger.month == month, PayLedger.year == year, User.active.is_(True))
        .order_by(User.first_name, User.last_name)
        .all()
    )
    plans = {
        plan.sales_rep_id: plan
        for plan in PayPlan.query.filter_by(month=month, year=year).all()
    }
    rows = []
    for entry in entries:
        data = entry.to_dict()
        plan = plans.get(entry.sales_rep_id)
        data["payPlan"] = plan.to_dict() if plan else None
        rows.append(data)
    return rows


def get_pay_plans_for_month(month, year):
    plans = {
        plan.sales_rep_id: plan
        for plan in PayPlan.query.filter_by(month=month, year=year).all()
    }
    stats = get_order_stats_for_month(month, year)
    rows = []
    for rep in active_sales_reps():
        plan = plans.get(rep.id)
        rep_stats = stats.get(rep.id, {"count": 0, "total": ZERO})
        rows.append(
            {
                "id": rep.id,
                "firstName": rep.first_name,
                "lastName": rep.last_name,
                "email": rep.email,
                "office": rep.office,
                "payPlan": plan.to_dict() if plan else None,
                "salary": float(_dec(plan.salary if plan else None)),
                "orderStats": {
                    "buildingsSold": rep_stats["count"],
                    "totalOrderAmount": float(_round(rep_stats["total"])),
                },
            }
        )
    return rows


def get_cancelled_orders_for_month(month, year, sales_rep_id=None):
    start, end = month_bounds(month, year)
    query = Order.query.filter(
        Order.status == "CANCELLED",
        Order.cancelled_at >= start,
        Order.cancelled_at < end,
    )
    if sales_rep_id is not None:
        query = query.filter(Order.sales_rep_id == sales_rep_id)

    rows = []
    for order in query.order_by(Order.cancelled_at.desc()).all():
        rep = order.sales_rep
        rows.append(
            {
                "id": order.id,
                "orderNumber": order.order_number,
                "customerName": order.customer_name,
                "totalPrice": float(_dec(order.total_price)),
                "cancelledAt": order.cancelled_at.isoformat() if order.cancelled_at else None,
                "cancelReason": order.cancel_reason,
                "salesRep": (
                    {"id": rep.id, "firstName": rep.first_name, "lastName": rep.last_name}
                    if rep
                    else None
                ),
            }
        )
    return rows
