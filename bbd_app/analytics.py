import datetime

from sqlalchemy import func, or_

from bbd_app.common_import_utils import parse_datetime_value
from bbd_app.constants import ROLE_ADMIN, ROLE_MANAGER
from bbd_app.errors import ApiError
from bbd_app.models import Order, Revision, User
from bbd_app.order_process import to_float, get_change_orders, get_office_sales_persons

DRILLDOWN_TYPES = ("salesRep", "state", "manufacturer")


def date_range(start_date=None, end_date=None):
    """Inclusive day range -> ``(start, end_exclusive)``."""
    start = parse_datetime_value(start_date) if start_date else None
    end = parse_datetime_value(end_date) if end_date else None
    if end is not None:
        end = end + datetime.timedelta(days=1)
    return start, end


def _apply_range(query, column, start, end):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column < end)
    return query


def _bucket(mapping, key, label_key, amount, label=None, **extra):
    entry = mapping.get(key)
    if entry is None:
        entry = mapping[key] = {
            label_key: key if label is None else label,
            "quantity": 0,
            "totalAmount": 0.0,
            **extra,
        }
    entry["quantity"] += 1
    entry["totalAmount"] += amount


def _sorted(mapping):
    rows = list(mapping.values())
    for row in rows:
        row["totalAmount"] = round(row["totalAmount"], 2)
    return sorted(rows, key=lambda row: row["totalAmount"], reverse=True)


def sales_analytics(user, start_date=None, end_date=None, view_all=False):
    start, end = date_range(start_date, end_date)
    query = Order.query
    if not view_all:
        query = query.filter(Order.sales_rep_id == user.id)
    query = _apply_range(query, Order.date_sold, start, end)

    reps, states, manufacturers = {}, {}, {}
    for order in query.all():
        amount = float(order.total_price or 0)
        if order.sales_rep is not None:
            # Keyed by id; two reps can share a display name.
            _bucket(
                reps, order.sales_rep_id, "name", amount,
                label=order.sales_rep.full_name, id=order.sales_rep_id,
            )
        if order.delivery_state:
            _bucket(states, order.delivery_state.upper(), "state", amount)
        if order.installer:
            _bucket(manufacturers, order.installer, "manufacturer", amount)

    return {
        "salesRep": _sorted(reps),
        "state": _sorted(states),
        "manufacturer": _sorted(manufacturers),
    }


def drilldown(filter_type, value, start_date=None, end_date=None):
    if not filter_type or not value:
        raise ApiError("type and value are required")
    if filter_type not in DRILLDOWN_TYPES:
        raise ApiError("Invalid filter type")

    start, end = date_range(start_date, end_date)
    orders = Order.query.filter(Order.status != "CANCELLED")
    revisions = Revision.query

    if filter_type == "salesRep":
        first_name, _, last_name = value.partition(" ")
        rep = User.query.filter_by(first_name=first_name, last_name=last_name).first()
        if rep is None:
            return {"totalSales": 0, "totalOrderAmount": 0, "totalDeposits": 0, "totalRevisions": 0}
        orders = orders.filter(Order.sales_rep_id == rep.id)
        revisions = revisions.filter(Revision.sales_rep_id == rep.id)
    elif filter_type == "state":
        orders = orders.filter(Order.delivery_state == value)
        revisions = revisions.join(Order, Revision.order_id == Order.id).filter(
            Order.delivery_state == value
        )
    else:
        orders = orders.filter(Order.installer == value)
        revisions = revisions.filter(
            or_(Revision.original_manufacturer == value, Revision.new_manufacturer == value)
        )

    orders = _apply_range(orders, Order.date_sold, start, end)
    revisions = _apply_range(revisions, Revision.revision_date, start, end)

    count, total = orders.with_entities(func.count(Order.id), func.sum(Order.total_price)).one()
    deposits = (
        orders.filter(Order.deposit_collected.is_(True))
        .with_entities(func.sum(Order.deposit_amount))
        .scalar()
    )
    return {
        "totalSales": count or 0,
        "totalOrderAmount": float(total or 0),
        "totalDeposits": float(deposits or 0),
        "totalRevisions": revisions.count(),
    }


def allowed_sales_persons(user, view_all=False):
    """``None`` means unrestricted."""
    if user.role_name == ROLE_MANAGER and user.office:
        return set(get_office_sales_persons(user.office))
    if user.role_name != ROLE_ADMIN and not view_all:
        return {user.full_name}
    return None


def revisions_analytics(user, start_date=None, end_date=None, view_all=False):
    start, end = date_range(start_date, end_date)
    allowed = allowed_sales_persons(user, view_all)

    reps, states, manufacturers = {}, {}, {}
    for change in get_change_orders(start, end):
        parent = change.order
        if parent is None:
            continue
        sales_person = parent.sales_person or ""
        if allowed is not None and sales_person not in allowed:
            continue

        new_values = change.new_values or {}
        previous_values = change.previous_values or {}
        amount = to_float(
            new_values.get("subtotalBeforeTax") or previous_values.get("subtotalBeforeTax")
        )

        if sales_person:
            _bucket(reps, sales_person, "name", amount)
        state = (change.new_customer or {}).get("state") or (parent.customer or {}).get("state")
        if state:
            _bucket(states, state, "state", amount)
        manufacturer = (change.new_building or {}).get("manufacturer") or (
            parent.building or {}
        ).get("manufacturer")
        if manufacturer:
            _bucket(manufacturers, manufacturer, "manufacturer", amount)

    return {
        "salesRep": _sorted(reps),
        "state": _sorted(states),
        "manufacturer": _sorted(manufacturers),
    }
