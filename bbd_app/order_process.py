"""Order Process store.

The Order Process database is the system of record for order status. Its
tables live behind the ``order_process`` bind and are read here and merged
with BBD data in application code; nothing spans both stores in a single
transaction.
"""

import datetime
import math
import uuid

from flask import current_app
from sqlalchemy import or_

from bbd_app import db
from bbd_app.models import iso, utcnow

OP_STATUS_ORDER = [
    "draft",
    "pending_payment",
    "sent_for_signature",
    "signed",
    "ready_for_manufacturer",
    "cancelled",
]

OP_STAGE_MAP = {
    "draft": {"label": "Draft", "color": "#6B7280"},
    "pending_payment": {"label": "Pending Payment", "color": "#F59E0B"},
    "sent_for_signature": {"label": "Sent to Customer", "color": "#3B82F6"},
    "signed": {"label": "Signed", "color": "#8B5CF6"},
    "ready_for_manufacturer": {"label": "Sent to Manufacturer", "color": "#10B981"},
    "cancelled": {"label": "Cancelled", "color": "#EF4444"},
}

PAID_STATUSES = ("paid", "manually_approved")

MONTH_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

# field -> (status when true, timestamp column, status when false)
OP_WORKFLOW_FIELDS = {
    "sentToCustomer": ("sent_for_signature", "sent_for_signature_at", "pending_payment"),
    "customerSigned": ("signed", "signed_at", "sent_for_signature"),
    "sentToManufacturer": ("ready_for_manufacturer", "ready_for_manufacturer_at", "signed"),
}

OP_UPDATABLE_FIELDS = tuple(OP_WORKFLOW_FIELDS) + ("depositCollected", "wcStatus", "lppStatus")


def _new_id():
    return str(uuid.uuid4())


class OPOrder(db.Model):
    __bind_key__ = "order_process"
    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    order_number = db.Column(db.String(50), unique=True, nullable=False)
    status = db.Column(db.String(40), default="draft", nullable=False)
    customer = db.Column(db.JSON, nullable=True)
    building = db.Column(db.JSON, nullable=True)
    pricing = db.Column(db.JSON, nullable=True)
    payment = db.Column(db.JSON, nullable=True)
    files = db.Column(db.JSON, nullable=True)
    ledger_summary = db.Column(db.JSON, nullable=True)
    sales_person = db.Column(db.String(150), nullable=True)
    order_form_name = db.Column(db.String(255), nullable=True)
    payment_notes = db.Column(db.Text, nullable=True)
    referred_by = db.Column(db.String(150), nullable=True)
    special_notes = db.Column(db.Text, nullable=True)
    is_test_mode = db.Column(db.Boolean, default=False, nullable=False)
    sent_for_signature_at = db.Column(db.DateTime, nullable=True)
    signed_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    ready_for_manufacturer_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by_email = db.Column(db.String(255), nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)
    wc_status = db.Column(db.String(50), nullable=True)
    wc_status_date = db.Column(db.DateTime, nullable=True)
    lpp_status = db.Column(db.String(50), nullable=True)
    lpp_status_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class OPOrderEvent(db.Model):
    __bind_key__ = "order_process"
    __tablename__ = "order_processing_events"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    order_id = db.Column(db.String(64), nullable=False, index=True)
    event_type = db.Column(db.String(60), nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False)
    source = db.Column(db.String(40), default="bbd", nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "type": self.event_type,
            "status": self.status,
            "source": self.source,
            "payload": self.payload,
            "errorMessage": self.error_message,
            "createdAt": iso(self.created_at),
            "processedAt": iso(self.processed_at),
        }


class OPChangeOrder(db.Model):
    __bind_key__ = "order_process"
    __tablename__ = "change_orders"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False)
    change_order_number = db.Column(db.String(60), nullable=True)
    status = db.Column(db.String(40), default="draft", nullable=False)
    reason = db.Column(db.Text, nullable=True)
    previous_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    new_customer = db.Column(db.JSON, nullable=True)
    new_building = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    order = db.relationship("OPOrder")


def _customer_field(name):
    return OPOrder.customer[name].as_string()


def _building_field(name):
    return OPOrder.building[name].as_string()


def is_deposit_paid(row):
    payment = row.payment or {}
    return payment.get("status") in PAID_STATUSES or row.paid_at is not None


def to_float(value):
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def map_to_display(row):
    customer = row.customer or {}
    building = row.building or {}
    pricing = row.pricing or {}
    payment = row.payment or {}
    files = row.files or {}

    status = row.status or "draft"
    index = OP_STATUS_ORDER.index(status) if status in OP_STATUS_ORDER else 0
    cancelled = status == "cancelled"

    first_name = customer.get("firstName") or ""
    last_name = customer.get("lastName") or ""
    width = building.get("overallWidth")
    length = building.get("buildingLength")

    return {
        "id": row.id,
        "orderNumber": row.order_number,
        "status": status,
        "stage": OP_STAGE_MAP.get(status, OP_STAGE_MAP["draft"]),
        "customerName": f"{first_name} {last_name}".strip() or "Unknown",
        "firstName": first_name,
        "lastName": last_name,
        "email": customer.get("email"),
        "phone": customer.get("phone"),
        "deliveryAddress": customer.get("deliveryAddress"),
        "city": customer.get("city"),
        "state": customer.get("state"),
        "zip": customer.get("zip"),
        "manufacturer": building.get("manufacturer"),
        "buildingType": building.get("buildingType"),
        "buildingSize": f"{width}x{length}" if width and length else None,
        "buildingHeight": building.get("buildingHeight"),
        "foundationType": building.get("foundationType"),
        "totalPrice": to_float(pricing.get("subtotalBeforeTax")),
        "depositAmount": to_float(pricing.get("deposit")),
        "depositPaid": is_deposit_paid(row),
        "paymentType": payment.get("type"),
        "paymentStatus": payment.get("status"),
        "sentToCustomer": not cancelled and index >= 2,
        "customerSigned": not cancelled and index >= 3,
        "sentToManufacturer": not cancelled and index >= 4,
        "salesPerson": row.sales_person,
        "orderFormName": row.order_form_name,
        "paymentNotes": row.payment_notes,
        "referredBy": row.referred_by,
        "specialNotes": row.special_notes,
        "isTestMode": bool(row.is_test_mode),
        "ledgerSummary": row.ledger_summary,
        "dateSold": iso(row.created_at),
        "sentForSignatureAt": iso(row.sent_for_signature_at),
        "signedAt": iso(row.signed_at),
        "paidAt": iso(row.paid_at),
        "readyForManufacturerAt": iso(row.ready_for_manufacturer_at),
        "cancelledAt": iso(row.cancelled_at),
        "cancelledByEmail": row.cancelled_by_email,
        "cancelReason": row.cancel_reason,
        "wcStatus": row.wc_status,
        "wcStatusDate": iso(row.wc_status_date),
        "lppStatus": row.lpp_status,
        "lppStatusDate": iso(row.lpp_status_date),
        "files": {
            "orderFormPdf": files.get("orderFormPdf"),
            "renderings": files.get("renderings") or [],
            "extraFiles": files.get("extraFiles") or [],
            "installerFiles": files.get("installerFiles") or [],
        },
        "createdAt": iso(row.created_at),
        "updatedAt": iso(row.updated_at),
    }


def _sort_column(sort_by):
    if sort_by == "orderNumber":
        return OPOrder.order_number
    if sort_by == "customerName":
        return _customer_field("lastName")
    if sort_by == "totalPrice":
        return OPOrder.pricing["subtotalBeforeTax"].as_float()
    if sort_by == "depositAmount":
        return OPOrder.pricing["deposit"].as_float()
    if sort_by == "state":
        return _customer_field("state")
    if sort_by == "salesPerson":
        return OPOrder.sales_person
    return OPOrder.created_at


def paginate_query(query, page, page_size):
    page = max(int(page or 1), 1)
    page_size = max(int(page_size or 20), 1)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return rows, total, page, page_size, (math.ceil(total / page_size) if total else 0)


def get_orders(
    page=1,
    page_size=20,
    status=None,
    exclude_cancelled=False,
    sales_person=None,
    sales_persons=None,
    search=None,
    payment_status=None,
    state=None,
    installer=None,
    sales_rep_filter=None,
    sort_by=None,
    sort_dir="desc",
):
    query = OPOrder.query

    if status:
        query = query.filter(OPOrder.status == status)
    if exclude_cancelled:
        query = query.filter(OPOrder.status != "cancelled")
    if sales_persons is not None:
        query = query.filter(OPOrder.sales_person.in_(list(sales_persons)))
    elif sales_person:
        query = query.filter(OPOrder.sales_person == sales_person)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                OPOrder.order_number.ilike(pattern),
                OPOrder.sales_person.ilike(pattern),
                _customer_field("email").ilike(pattern),
                _customer_field("firstName").ilike(pattern),
                _customer_field("lastName").ilike(pattern),
            )
        )

    pay_status = OPOrder.payment["status"].as_string()
    if payment_status == "paid":
        query = query.filter(pay_status.in_(PAID_STATUSES))
    elif payment_status == "pending":
        query = query.filter(pay_status == "pending")
    elif payment_status == "unpaid":
        query = query.filter(or_(pay_status.is_(None), pay_status == "unpaid"))

    if state:
        query = query.filter(_customer_field("state").ilike(f"%{state}%"))
    if installer:
        query = query.filter(_building_field("manufacturer").ilike(f"%{installer}%"))
    if sales_rep_filter:
        query = query.filter(OPOrder.sales_person.ilike(f"%{sales_rep_filter}%"))

    column = _sort_column(sort_by)
    query = query.order_by(column.asc() if sort_dir == "asc" else column.desc())

    rows, total, page, page_size, total_pages = paginate_query(query, page, page_size)
    return {
        "orders": [map_to_display(row) for row in rows],
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": total_pages,
    }


def get_order_filter_options():
    states, installers, reps = set(), set(), set()
    rows = db.session.query(OPOrder.customer, OPOrder.building, OPOrder.sales_person).all()
    for customer, building, sales_person in rows:
        if customer and customer.get("state"):
            states.add(customer["state"])
        if building and building.get("manufacturer"):
            installers.add(building["manufacturer"])
        if sales_person:
            reps.add(sales_person)
    return {
        "states": sorted(states),
        "installers": sorted(installers),
        "salesReps": sorted(reps),
    }


def get_order(order_id):
    row = db.session.get(OPOrder, order_id)
    return map_to_display(row) if row else None


def get_orders_by_customer_email(email, limit=50):
    if not email:
        return []
    rows = (
        OPOrder.query.filter(_customer_field("email").ilike(email.strip()))
        .order_by(OPOrder.created_at.desc())
        .limit(limit)
        .all()
    )
    return [map_to_display(row) for row in rows]


def get_customer_list(search=None, page=1, page_size=20):
    rows = (
        OPOrder.query.filter(
            OPOrder.status != "draft",
            OPOrder.is_test_mode.is_(False),
        )
        .order_by(OPOrder.created_at.desc())
        .all()
    )

    customers = {}
    for row in rows:
        customer = row.customer or {}
        email = (customer.get("email") or "").strip().lower()
        if not email:
            continue
        name = f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip()
        entry = customers.get(email)
        if entry is None:
            # Rows arrive newest first, so the first hit carries the current contact details.
            entry = customers[email] = {
                "email": email,
                "name": name or "Unknown",
                "phone": customer.get("phone"),
                "orderCount": 0,
                "totalValue": 0.0,
                "sentToMfr": 0,
                "lastOrderDate": row.created_at,
            }
        entry["orderCount"] += 1
        entry["totalValue"] += to_float((row.pricing or {}).get("subtotalBeforeTax"))
        if row.status == "ready_for_manufacturer":
            entry["sentToMfr"] += 1
        if row.created_at and row.created_at > entry["lastOrderDate"]:
            entry["lastOrderDate"] = row.created_at

    results = list(customers.values())
    if search:
        needle = search.strip().lower()
        results = [
            item
            for item in results
            if needle in item["name"].lower()
            or needle in item["email"]
            or needle in (item["phone"] or "").lower()
        ]
    results.sort(key=lambda item: item["lastOrderDate"], reverse=True)

    page = max(int(page or 1), 1)
    page_size = max(int(page_size or 20), 1)
    total = len(results)
    start = (page - 1) * page_size
    sliced = results[start:start + page_size]
    for item in sliced:
        item["totalValue"] = round(item["totalValue"], 2)
        item["lastOrderDate"] = iso(item["lastOrderDate"])
    return {
        "customers": sliced,
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": math.ceil(total / page_size) if total else 0,
    }


def _year_bounds(year):
    return datetime.datetime(year, 1, 1), datetime.datetime(year + 1, 1, 1)


def _year_rows(year, sales_persons=None):
    start, end = _year_bounds(year)
    query = OPOrder.query.filter(
        OPOrder.status != "cancelled",
        OPOrder.created_at >= start,
        OPOrder.created_at < end,
    )
    if sales_persons is not None:
        query = query.filter(OPOrder.sales_person.in_(list(sales_persons)))
    return query


def get_order_stats(year, sales_persons=None):
    rows = _year_rows(year, sales_persons).all()
    deposits = sum(
        to_float((row.pricing or {}).get("deposit")) for row in rows if is_deposit_paid(row)
    )
    return {
        "totalOrders": len(rows),
        "sentToManufacturer": sum(1 for row in rows if row.status == "ready_for_manufacturer"),
        "totalDepositsCollected": round(deposits, 2),
    }


def get_monthly_breakdown(year, sales_persons=None):
    months = [
        {"month": label, "year": year, "monthNum": index, "quantity": 0, "totalSales": 0.0}
        for index, label in enumerate(MONTH_LABELS)
    ]
    for row in _year_rows(year, sales_persons).all():
        bucket = months[row.created_at.month - 1]
        bucket["quantity"] += 1
        bucket["totalSales"] += to_float((row.pricing or {}).get("subtotalBeforeTax"))
    for bucket in months:
        bucket["totalSales"] = round(bucket["totalSales"], 2)
    return months


def get_orders_not_sent_to_manufacturer(year, sales_persons=None):
    rows = (
        _year_rows(year, sales_persons)
        .filter(OPOrder.status != "ready_for_manufacturer")
        .order_by(OPOrder.created_at.desc())
        .all()
    )
    return [map_to_display(row) for row in rows]


def get_available_years():
    current_year = utcnow().year
    earliest = db.session.query(db.func.min(OPOrder.created_at)).scalar()
    first_year = earliest.year if earliest else current_year
    return list(range(current_year, min(first_year, current_year) - 1, -1))


def get_order_locations(sales_person=None, limit=500):
    query = OPOrder.query.filter(OPOrder.status != "cancelled")
    if sales_person:
        query = query.filter(OPOrder.sales_person == sales_person)
    rows = (
        query.order_by(OPOrder.created_at.desc())
        .limit(limit)
        .all()
    )
    locations = []
    for row in rows:
        display = map_to_display(row)
        locations.append(
            {
                "id": display["id"],
                "orderNumber": display["orderNumber"],
                "customerName": display["customerName"],
                "address": display["deliveryAddress"],
                "city": display["city"],
                "state": display["state"],
                "zip": display["zip"],
                "status": display["status"],
                "manufacturer": display["manufacturer"],
            }
        )
    return locations


def update_order_field(order_id, field, value):
    """Apply one workflow toggle to an Order Process order.

    Returns the refreshed display dict, or ``None`` when the order does not
    exist. Unknown fields are logged and leave the order untouched.
    """
    row = db.session.get(OPOrder, order_id)
    if row is None:
        return None

    now = utcnow()
    if field in OP_WORKFLOW_FIELDS:
        on_status, stamp_column, off_status = OP_WORKFLOW_FIELDS[field]
        if value:
            row.status = on_status
            setattr(row, stamp_column, now)
        else:
            row.status = off_status
            setattr(row, stamp_column, None)
    elif field == "depositCollected":
        if value:
            row.payment = {**(row.payment or {}), "status": "paid"}
            row.paid_at = now
        else:
            row.payment = {**(row.payment or {}), "status": "pending"}
            row.paid_at = None
    elif field == "wcStatus":
        row.wc_status = value or None
        row.wc_status_date = now if value else None
    elif field == "lppStatus":
        row.lpp_status = value or None
        row.lpp_status_date = now if value else None
    else:
        current_app.logger.warning("Ignoring update to unknown order field %s", field)
        return map_to_display(row)

    row.updated_at = now
    db.session.commit()
    return map_to_display(row)


def get_office_sales_persons(office):
    from bbd_app.models import User

    if not office:
        return []
    users = (
        User.query.filter(User.office == office, User.active.is_(True))
        .order_by(User.first_name, User.last_name)
        .all()
    )
    return [user.full_name for user in users]


def get_change_orders(start=None, end=None):
    query = OPChangeOrder.query.filter(OPChangeOrder.status != "cancelled")
    if start is not None:
        query = query.filter(OPChangeOrder.created_at >= start)
    if end is not None:
        query = query.filter(OPChangeOrder.created_at < end)
    return query.order_by(OPChangeOrder.created_at.desc()).all()

