"""Order change log, spreadsheet import and order revisions."""

from flask import Blueprint, current_app, request
from sqlalchemy import or_

from bbd_app import db
from bbd_app.auth import can_view_all_orders, require_permission
from bbd_app.common_import_utils import (
    page_args,
    parse_date_field,
    parse_decimal_field,
    parse_int_field,
)
from bbd_app.constants import ROLE_ADMIN
from bbd_app.errors import ApiError, ok
from bbd_app.models import Order, OrderChange, Revision, User, utcnow
from bbd_app.order_changes_import import import_order_changes
from bbd_app.routes import get_or_404, json_body
from utils.activity import log_order_activity

order_changes_bp = Blueprint("order_changes", __name__, url_prefix="/api")

CHANGE_TEXT_FIELDS = {
    "orderFormName": "order_form_name",
    "manufacturer": "manufacturer",
    "customerEmail": "customer_email",
    "changeType": "change_type",
    "additionalNotes": "additional_notes",
    "uploadsUrl": "uploads_url",
    "depositCharged": "deposit_charged",
    "rexProcess": "rex_process",
    "newSalesRef": "new_sales_ref",
    "revisionsRef": "revisions_ref",
    "cancellationsRef": "cancellations_ref",
}

CHANGE_MONEY_FIELDS = {
    "oldOrderTotal": "old_order_total",
    "newOrderTotal": "new_order_total",
    "oldDepositTotal": "old_deposit_total",
    "newDepositTotal": "new_deposit_total",
    "orderTotalDiff": "order_total_diff",
    "depositDiff": "deposit_diff",
}

CHANGE_BOOLEAN_FIELDS = {
    "sabrinaProcess": "sabrina_process",
    "updatedInNewSale": "updated_in_new_sale",
}

SORTABLE = {
    "changeDate": OrderChange.change_date,
    "createdAt": OrderChange.change_date,
    "changeType": OrderChange.change_type,
    "orderTotalDiff": OrderChange.order_total_diff,
}


def _apply_change_fields(change, data):
    errors = {}
    for key, attr in CHANGE_TEXT_FIELDS.items():
        if key in data:
            value = data.get(key)
            setattr(change, attr, str(value).strip() if value not in (None, "") else None)
    for key, attr in CHANGE_MONEY_FIELDS.items():
        if key in data:
            amount, err = parse_decimal_field(data.get(key), key)
            if err:
                errors[key] = err
            else:
                setattr(change, attr, amount)
    for key, attr in CHANGE_BOOLEAN_FIELDS.items():
        if key in data:
            setattr(change, attr, data.get(key) is True)
    if "changeDate" in data:
        change_date, err = parse_date_field(data.get("changeDate"), "changeDate")
        if err or change_date is None:
            errors["changeDate"] = err or "changeDate is required"
        else:
            change.change_date = change_date
    if "salesRepId" in data:
        rep_id, err = parse_int_field(data.get("salesRepId"), "salesRepId")
        if err:
            errors["salesRepId"] = err
        elif rep_id is not None and db.session.get(User, rep_id) is None:
            errors["salesRepId"] = "Sales rep not found"
        else:
            change.sales_rep_id = rep_id
    if errors:
        raise ApiError("Validation failed", errors=errors)


@order_changes_bp.route("/order-changes", methods=["GET"])
def list_order_changes():
    user = require_permission("orders.view", "orders.view_all")
    page, page_size = page_args(request.args, default_size=20, max_size=100)

    query = OrderChange.query.outerjoin(Order, OrderChange.order_id == Order.id)
    if not (user.role_name == ROLE_ADMIN or can_view_all_orders(user)):
        query = query.filter(OrderChange.sales_rep_id == user.id)
    if request.args.get("changeType"):
        query = query.filter(OrderChange.change_type == request.args["changeType"])
    if request.args.get("depositCharged"):
        query = query.filter(OrderChange.deposit_charged == request.args["depositCharged"])
    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
                OrderChange.order_form_name.ilike(pattern),
                OrderChange.additional_notes.ilike(pattern),
                OrderChange.customer_email.ilike(pattern),
            )
        )

    column = SORTABLE.get(request.args.get("sortBy"), OrderChange.change_date)
    ordering = column.asc() if request.args.get("sortOrder") == "asc" else column.desc()
    total = query.count()
    items = query.order_by(ordering).offset((page - 1) * page_size).limit(page_size).all()
    return ok(
        {
            "items": [item.to_dict() for item in items],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": -(-total // page_size),
        }
    )


@order_changes_bp.route("/order-changes", methods=["POST"])
def create_order_change():
    user = require_permission("orders.edit")
    data = json_body()
    order_id, _ = parse_int_field(data.get("orderId"), "orderId")
    if not order_id:
        raise ApiError("Validation failed", errors={"orderId": "Order is required"})
    if not data.get("changeDate"):
        raise ApiError("Validation failed", errors={"changeDate": "changeDate is required"})
    get_or_404(Order, order_id, "Order not found")

    change = OrderChange(order_id=order_id)
    _apply_change_fields(change, data)
    if change.sales_rep_id is None:
        change.sales_rep_id = user.id
    db.session.add(change)
    db.session.commit()
    return ok(change.to_dict(), 201)


@order_changes_bp.route("/order-changes/<int:change_id>", methods=["GET"])
def get_order_change(change_id):
    require_permission("orders.view", "orders.view_all")
    change = get_or_404(OrderChange, change_id, "Order change not found")
    return ok(change.to_dict())


@order_changes_bp.route("/order-changes/<int:change_id>", methods=["PATCH", "PUT"])
def update_order_change(change_id):
    require_permission("orders.edit")
    change = get_or_404(OrderChange, change_id, "Order change not found")
    data = json_body()
    data.pop("orderId", None)
    _apply_change_fields(change, data)
    db.session.commit()
    return ok(change.to_dict())


@order_changes_bp.route("/order-changes/<int:change_id>", methods=["DELETE"])
def delete_order_change(change_id):
    require_permission("orders.delete")
    change = get_or_404(OrderChange, change_id, "Order change not found")
    db.session.delete(change)
    db.session.commit()
    return ok({"id": change_id})


@order_changes_bp.route("/order-changes/import", methods=["POST"])
def import_changes():
    user = require_permission("orders.edit")
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ApiError("No file provided")

    result = import_order_changes(upload)
    if result is None:
        raise ApiError("No data rows found in CSV")
    current_app.logger.info(
        "Order change import by %s: %s imported, %s skipped, %s errors",
        user.email,
        result.imported,
        result.skipped,
        len(result.errors),
    )
    return ok(result.to_dict())


@order_changes_bp.route("/revisions", methods=["GET"])
def list_revisions():
    require_permission("orders.view", "orders.view_all")
    order_id, err = parse_int_field(request.args.get("orderId"), "orderId")
    if err:
        raise ApiError(err)
    query = Revision.query
    if order_id:
        query = query.filter(Revision.order_id == order_id)
    revisions = query.order_by(Revision.revision_date.desc(), Revision.id.desc()).all()
    return ok([revision.to_dict() for revision in revisions])


@order_changes_bp.route("/revisions", methods=["POST"])
def create_revision():
    user = require_permission("orders.edit")
    data = json_body()
    order_id, _ = parse_int_field(data.get("orderId"), "orderId")
    if not order_id:
        raise ApiError("Order ID is required")
    order = get_or_404(Order, order_id, "Order not found")

    revision_date, err = parse_date_field(data.get("revisionDate"), "revisionDate")
    if err:
        raise ApiError(err)
    new_total, err = parse_decimal_field(data.get("newTotalPrice"), "newTotalPrice")
    if err:
        raise ApiError(err)
    fee, err = parse_decimal_field(data.get("revisionFee"), "revisionFee")
    if err:
        raise ApiError(err)

    existing = Revision.query.filter_by(order_id=order.id).count()
    revision_number = f"Revision{existing + 1}"
    old_total = order.total_price
    changing_manufacturer = data.get("changingManufacturer") is True
    description = (data.get("changeDescription") or "").strip() or None

    revision = Revision(
        order_id=order.id,
        revision_number=revision_number,
        revision_date=revision_date or utcnow(),
        change_description=description,
        change_in_price=data.get("changeInPrice") or None,
        old_order_total=old_total,
        new_order_total=new_total,
        order_total_diff=(new_total - old_total) if new_total is not None and old_total is not None else None,
        changing_manufacturer=changing_manufacturer,
        original_manufacturer=(data.get("originalManufacturer") or None) if changing_manufacturer else None,
        new_manufacturer=(data.get("newManufacturer") or None) if changing_manufacturer else None,
        revision_fee=fee,
        payment_method=(data.get("paymentMethod") or None) if fee else None,
    )
    db.session.add(revision)
    log_order_activity(
        order.id,
        "REVISION_CREATED",
        f"{revision_number} created" + (f": {description}" if description else ""),
        user_id=user.id,
    )
    db.session.commit()
    return ok(revision.to_dict(), 201)
