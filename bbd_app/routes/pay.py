from flask import Blueprint, current_app, request

from bbd_app import db
from bbd_app.auth import require_permission
from bbd_app.common_import_utils import parse_decimal_field, parse_int_field
from bbd_app.constants import BONUS_TYPES, LEDGER_STATUSES, OFFICES, TIER_TYPES
from bbd_app.errors import ApiError, NotFound, ok
from bbd_app.models import (
    OfficePayPlan,
    OfficePayPlanTier,
    PayLedger,
    PayPlan,
    PayPlanLineItem,
    User,
    utcnow,
)
from bbd_app.pay import (
    ZERO,
    _dec,
    _round,
    add_audit,
    generate_ledger,
    get_cancelled_orders_for_month,
    get_ledger_for_month,
    get_office_pay_plans,
    get_pay_plans_for_month,
    recent_audit_logs,
)
from bbd_app.routes import get_or_404, json_body

pay_bp = Blueprint("pay", __name__, url_prefix="/api/pay")

MONTH_YEAR_ERROR = "Valid month (1-12) and year are required"


def _month_year(source):
    month, month_err = parse_int_field(source.get("month"), "month")
    year, year_err = parse_int_field(source.get("year"), "year")
    if month_err or year_err or not month or not year or not 1 <= month <= 12:
        raise ApiError(MONTH_YEAR_ERROR)
    return month, year


def _amount(value, label):
    amount, err = parse_decimal_field(value, label)
    if err:
        raise ApiError(err)
    return amount


@pay_bp.route("/ledger", methods=["GET"])
def ledger():
    require_permission("pay.ledger.view")
    month, year = _month_year(request.args)
    return ok(get_ledger_for_month(month, year))


@pay_bp.route("/ledger/generate", methods=["POST"])
def ledger_generate():
    user = require_permission("pay.ledger.edit")
    month, year = _month_year(json_body())
    entries = generate_ledger(month, year)
    add_audit(
        "LEDGER_GENERATED",
        f"Generated {len(entries)} ledger entries for {month}/{year}",
        user_id=user.id,
        month=month,
        year=year,
    )
    db.session.commit()
    current_app.logger.info("Pay ledger %s/%s generated by %s", month, year, user.email)
    return ok([entry.to_dict() for entry in entries])


@pay_bp.route("/ledger/<int:ledger_id>", methods=["PATCH"])
def ledger_update(ledger_id):
    user = require_permission("pay.ledger.edit")
    entry = get_or_404(PayLedger, ledger_id, "Ledger entry not found")
    data = json_body()

    changes = []
    if "adjustment" in data:
        adjustment = _amount(data.get("adjustment"), "adjustment")
        entry.adjustment = _round(adjustment if adjustment is not None else ZERO)
        changes.append(f"adjustment=${entry.adjustment}")
    if "adjustmentNote" in data:
        entry.adjustment_note = data.get("adjustmentNote")
        changes.append("adjustmentNote updated")
    if "notes" in data:
        entry.notes = data.get("notes")
        changes.append("notes updated")
    if "status" in data:
        status = data.get("status")
        if status not in LEDGER_STATUSES:
            raise ApiError(f"Invalid status: {status}")
        entry.status = status
        if status == "PENDING":
            entry.reviewed_by_id = None
            entry.reviewed_at = None
        else:
            entry.reviewed_by_id = user.id
            entry.reviewed_at = utcnow()
        changes.append(f"status={status}")

    entry.final_amount = _round(
        _dec(entry.plan_total) - _dec(entry.cancellation_deduction) + _dec(entry.adjustment)
    )

    rep = entry.sales_rep
    rep_name = rep.full_name if rep else str(entry.sales_rep_id)
    add_audit(
        "LEDGER_ADJUSTED",
        f"Updated ledger for {rep_name} ({entry.month}/{entry.year}): {', '.join(changes)}",
        user_id=user.id,
        sales_rep_id=entry.sales_rep_id,
        month=entry.month,
        year=entry.year,
    )
    db.session.commit()
    return ok(entry.to_dict())


@pay_bp.route("/plans", methods=["GET"])
def plans():
    require_permission("pay.plan.view")
    month, year = _month_year(request.args)
    return ok(get_pay_plans_for_month(month, year))


@pay_bp.route("/plans", methods=["PUT"])
def save_plan():
    user = require_permission("pay.plan.edit")
    data = json_body()
    month, year = _month_year(data)
    rep_id, _ = parse_int_field(data.get("salesRepId"), "salesRepId")
    if not rep_id:
        raise ApiError("Sales rep ID is required")
    rep = db.session.get(User, rep_id)
    if rep is None:
        raise NotFound("Sales rep not found")

    line_items = data.get("lineItems") or []
    if not isinstance(line_items, list):
        raise ApiError("lineItems must be a list")
    parsed_items = []
    for item in line_items:
        name = (item.get("name") or "").strip() if isinstance(item, dict) else ""
        if not name:
            raise ApiError("Name is required")
        amount = _amount(item.get("amount"), "amount")
        parsed_items.append((name, amount if amount is not None else ZERO))

    salary = _amount(data["salary"], "salary") if "salary" in data else None
    deduction = (
        _amount(data["cancellationDeduction"], "cancellationDeduction")
        if "cancellationDeduction" in data
        else None
    )

    plan = PayPlan.query.filter_by(sales_rep_id=rep.id, month=month, year=year).first()
    if plan is None:
        plan = PayPlan(sales_rep_id=rep.id, month=month, year=year, salary=ZERO,
                       cancellation_deduction=ZERO)
        db.session.add(plan)
    if salary is not None:
        plan.salary = salary
    if deduction is not None:
        plan.cancellation_deduction = deduction

    plan.line_items = [
        PayPlanLineItem(name=name, amount=amount, sort_order=index)
        for index, (name, amount) in enumerate(parsed_items)
    ]

    period = f"({month}/{year})"
    if salary is not None:
        add_audit("SALARY_UPDATED", f"Updated salary for {rep.full_name} to ${salary} {period}",
                  user_id=user.id, sales_rep_id=rep.id, month=month, year=year)
    if deduction is not None:
        add_audit(
            "CANCELLATION_UPDATED",
            f"Updated cancellation deduction for {rep.full_name} to ${deduction} {period}",
            user_id=user.id, sales_rep_id=rep.id, month=month, year=year,
        )
    if parsed_items:
        add_audit(
            "LINE_ITEMS_UPDATED",
            f"Updated {len(parsed_items)} line item(s) for {rep.full_name} {period}",
            user_id=user.id, sales_rep_id=rep.id, month=month, year=year,
        )
    db.session.commit()
    return ok(plan.to_dict())


@pay_bp.route("/office-plans", methods=["GET"])
def office_plans():
    require_permission("pay.plan.view")
    month, year = _month_year(request.args)
    plans = get_office_pay_plans(month, year)
    return ok({office: (plan.to_dict() if plan else None) for office, plan in plans.items()})


@pay_bp.route("/office-plans", methods=["PUT"])
def save_office_plan():
    user = require_permission("pay.plan.edit")
    data = json_body()
    month, year = _month_year(data)
    office = data.get("office")
    if office not in OFFICES:
        raise ApiError(f"Invalid office: {office}")

    tiers = []
    for index, raw in enumerate(data.get("tiers") or []):
        tier_type = raw.get("type") or raw.get("tierType")
        if tier_type not in TIER_TYPES:
            raise ApiError(f"Invalid tier type: {tier_type}")
        bonus_type = raw.get("bonusType") or "FLAT"
        if bonus_type not in BONUS_TYPES:
            raise ApiError(f"Invalid bonus type: {bonus_type}")
        min_value = _amount(raw.get("minValue"), "minValue")
        bonus_amount = _amount(raw.get("bonusAmount"), "bonusAmount")
        tiers.append(
            OfficePayPlanTier(
                tier_type=tier_type,
                min_value=min_value if min_value is not None else ZERO,
                max_value=_amount(raw.get("maxValue"), "maxValue"),
                bonus_amount=bonus_amount if bonus_amount is not None else ZERO,
                bonus_type=bonus_type,
                sort_order=index,
            )
        )

    plan = OfficePayPlan.query.filter_by(office=office, month=month, year=year).first()
    if plan is None:
        plan = OfficePayPlan(office=office, month=month, year=year)
        db.session.add(plan)
    plan.tiers = tiers

    add_audit(
        "OFFICE_TIERS_UPDATED",
        f"Updated {office} pay plan tiers ({len(tiers)} tier(s)) for {month}/{year}",
        user_id=user.id,
        month=month,
        year=year,
    )
    db.session.commit()
    return ok(plan.to_dict())


@pay_bp.route("/cancelled-orders", methods=["GET"])
def cancelled_orders():
    require_permission("pay.ledger.view")
    month, year = _month_year(request.args)
    rep_id, _ = parse_int_field(request.args.get("salesRepId"), "salesRepId")
    return ok(get_cancelled_orders_for_month(month, year, rep_id))


@pay_bp.route("/audit-log", methods=["GET"])
def audit_log():
    require_permission("pay.ledger.view")
    return ok([entry.to_dict() for entry in recent_audit_logs()])
