"""Local BBD orders: CRUD, workflow toggles, cancellation, deposit and e-sign."""

from flask import Blueprint, current_app, request
from sqlalchemy import or_

from bbd_app import db
from bbd_app.auth import (
    can_view_all_orders,
    has_permission,
    has_role,
    is_order_sales_rep,
    is_staff_editor,
    require_auth,
    require_permission,
    require_roles,
)
from bbd_app.common_import_utils import (
    clean_str,
    form_truthy,
    page_args,
    parse_date_field,
    parse_decimal_field,
    parse_int_field,
)
from bbd_app.constants import (
    DEPOSIT_CHARGE_STATUSES,
    ORDER_BOOLEAN_FIELDS,
    ORDER_BST_FIELDS,
    ORDER_STATUSES,
    PRIORITIES,
    ROLE_ADMIN,
    ROLE_BST,
    ROLE_MANAGER,
)
from bbd_app.customers import find_or_create_customer
from bbd_app.errors import ApiError, Forbidden, ok
from bbd_app.models import (
    Order,
    OrderActivity,
    OrderStage,
    OrderStageHistory,
    User,
    iso,
    utcnow,
)
from bbd_app.routes import get_or_404, json_body
from integrations.order_process.events import get_events_by_order, publish_event
from utils.activity import log_order_activity

orders_bp = Blueprint("orders", __name__, url_prefix="/api")

# json key -> model attribute for plain text fields
TEXT_FIELDS = {
    "customerName": "customer_name",
    "customerEmail": "customer_email",
    "customerPhone": "customer_phone",
    "buildingType": "building_type",
    "buildingSize": "building_size",
    "buildingWidth": "building_width",
    "buildingLength": "building_length",
    "buildingHeight": "building_height",
    "buildingColor": "building_color",
    "foundationType": "foundation_type",
    "installer": "installer",
    "deliveryAddress": "delivery_address",
    "deliveryCity": "delivery_city",
    "deliveryState": "delivery_state",
    "deliveryZip": "delivery_zip",
    "deliveryNotes": "delivery_notes",
    "cancelReason": "cancel_reason",
    "specialNotes": "special_notes",
    "paymentNotes": "payment_notes",
}

MONEY_FIELDS = {
    "totalPrice": ("total_price", "Total price"),
    "depositAmount": ("deposit_amount", "Deposit amount"),
    "depositPercentage": ("deposit_percentage", "Deposit percentage"),
}

COLLECTED_CHARGE_STATUSES = ("Charged", "Accepted After Decline")
UNCOLLECTED_CHARGE_STATUSES = ("Declined", "Ready")


def load_order(order_id):
    return get_or_404(Order, order_id, "Order not found")


def ensure_order_access(user, order):
    if user.role_name == ROLE_ADMIN or can_view_all_orders(user) or is_order_sales_rep(user, order):
        return
    raise Forbidden("Access denied")


def _scoped_query(user):
    query = Order.query
    if user.role_name == ROLE_ADMIN:
        return query
    if user.role_name == ROLE_MANAGER and user.office:
        rep_ids = [
            row.id for row in User.query.filter(User.office == user.office).with_entities(User.id)
        ]
        return query.filter(Order.sales_rep_id.in_(rep_ids))
    if can_view_all_orders(user):
        return query
    return query.filter(Order.sales_rep_id == user.id)


def _apply_fields(order, data, errors):
    for key, attr in TEXT_FIELDS.items():
        if key in data:
            setattr(order, attr, clean_str(data.get(key)) or None)

    for key, (attr, label) in MONEY_FIELDS.items():
        if key not in data:
            continue
        value, err = parse_decimal_field(data.get(key), label)
        if err:
            errors[key] = err
        elif value is not None and value < 0:
            errors[key] = f"{label} cannot be negative."
        elif value is None and key != "depositPercentage":
            setattr(order, attr, 0)
        else:
            setattr(order, attr, value)

    if "dateSold" in data:
        value, err = parse_date_field(data.get("dateSold"), "Date sold")
        if err:
            errors["dateSold"] = err
        else:
            order.date_sold = value

    if "priority" in data:
        priority = data.get("priority") or "NORMAL"
        if priority not in PRIORITIES:
            errors["priority"] = f"Priority must be one of: {', '.join(PRIORITIES)}"
        else:
            order.priority = priority

    if order.delivery_state:
        order.delivery_state = order.delivery_state.upper()


@orders_bp.route("/orders", methods=["GET"])
def list_orders():
    user = require_permission("orders.view", "orders.view_all")
    page, page_size = page_args(request.args, default_size=20, max_size=100)
    query = _scoped_query(user)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
                Order.customer_email.ilike(pattern),
                Order.delivery_city.ilike(pattern),
            )
        )
    if request.args.get("status"):
        query = query.filter(Order.status == request.args["status"])
    stage_id, _ = parse_int_field(request.args.get("stageId"), "stageId")
    if stage_id:
        query = query.filter(Order.current_stage_id == stage_id)

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return ok(
        {
            "items": [order.to_dict() for order in orders],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": -(-total // page_size),
        }
    )


@orders_bp.route("/orders", methods=["POST"])
def create_order():
    user = require_permission("orders.create")
    data = json_body()

    errors = {}
    order_number = clean_str(data.get("orderNumber"))
    if not order_number:
        errors["orderNumber"] = "Order number is required"
    elif Order.query.filter_by(order_number=order_number).first() is not None:
        errors["orderNumber"] = "Order number already exists"
    if not clean_str(data.get("customerName")):
        errors["customerName"] = "Customer name is required"

    order = Order(order_number=order_number, status="ACTIVE", priority="NORMAL")
    _apply_fields(order, data, errors)

    sales_rep_id, err = parse_int_field(data.get("salesRepId"), "Sales rep")
    if err:
        errors["salesRepId"] = err
    elif sales_rep_id and db.session.get(User, sales_rep_id) is None:
        errors["salesRepId"] = "Sales rep not found"
    if errors:
        raise ApiError("Validation failed", errors=errors)

    order.sales_rep_id = sales_rep_id or user.id
    order.date_sold = order.date_sold or utcnow()
    default_stage = OrderStage.query.filter_by(is_default=True).first()
    if default_stage is not None:
        order.current_stage_id = default_stage.id
    if order.customer_email:
        customer = find_or_create_customer(
            order.customer_email, order.customer_name, order.customer_phone
        )
        order.customer_id = customer.id

    db.session.add(order)
    db.session.flush()
    if default_stage is not None:
        db.session.add(
            OrderStageHistory(order_id=order.id, stage_id=default_stage.id, changed_by_id=user.id)
        )
    log_order_activity(
        order.id, "ORDER_CREATED", f"Order {order.order_number} created", user.id
    )
    db.session.commit()
    current_app.logger.info("Order %s created by %s", order.order_number, user.email)
    return ok(order.to_dict(), 201)


@orders_bp.route("/orders/<int:order_id>", methods=["GET"])
def get_order(order_id):
    user = require_permission("orders.view", "orders.view_all")
    order = load_order(order_id)
    ensure_order_access(user, order)

    data = order.to_dict()
    history = (
        OrderStageHistory.query.filter_by(order_id=order.id)
        .order_by(OrderStageHistory.created_at.asc(), OrderStageHistory.id.asc())
        .all()
    )
    data["stageHistory"] = [
        {
            "id": entry.id,
            "stage": entry.stage.to_dict() if entry.stage else None,
            "notes": entry.notes,
            "changedById": entry.changed_by_id,
            "createdAt": iso(entry.created_at),
        }
        for entry in history
    ]
    return ok(data)


@orders_bp.route("/orders/<int:order_id>", methods=["PATCH"])
def update_order(order_id):
    user = require_permission("orders.edit")
    order = load_order(order_id)
    ensure_order_access(user, order)
    data = json_body()

    old_status = order.status
    was_collected = order.deposit_collected
    errors = {}
    _apply_fields(order, data, errors)

    if "status" in data:
        if data["status"] not in ORDER_STATUSES:
            errors["status"] = f"Status must be one of: {', '.join(ORDER_STATUSES)}"
        else:
            order.status = data["status"]
    if "depositCollected" in data:
        order.deposit_collected = form_truthy(data.get("depositCollected"))
    if errors:
        db.session.rollback()
        raise ApiError(next(iter(errors.values())), errors=errors)

    now = utcnow()
    if order.status == "COMPLETED" and old_status != "COMPLETED":
        order.completed_at = now
    if order.status == "CANCELLED" and old_status != "CANCELLED":
        order.cancelled_at = now
    if order.deposit_collected and not was_collected:
        order.deposit_date = now

    if order.status != old_status:
        log_order_activity(
            order.id,
            "STATUS_CHANGED",
            f"Status changed from {old_status} to {order.status}",
            user.id,
        )
    else:
        log_order_activity(order.id, "ORDER_UPDATED", "Order details updated", user.id)
    db.session.commit()
    return ok(order.to_dict())


@orders_bp.route("/orders/<int:order_id>/activities", methods=["GET"])
def list_order_activities(order_id):
    user = require_permission("orders.view", "orders.view_all")
    order = load_order(order_id)
    ensure_order_access(user, order)
    activities = (
        OrderActivity.query.filter_by(order_id=order.id)
        .order_by(OrderActivity.created_at.desc(), OrderActivity.id.desc())
        .all()
    )
    return ok([activity.to_dict() for activity in activities])


@orders_bp.route("/orders/<int:order_id>/stage", methods=["POST"])
def advance_stage(order_id):
    user = require_permission("orders.advance_stage")
    data = json_body()
    stage_id, _ = parse_int_field(data.get("stageId"), "stageId")
    if not stage_id:
        raise ApiError("Stage ID is required")

    order = load_order(order_id)
    ensure_order_access(user, order)
    stage = get_or_404(OrderStage, stage_id, "Stage not found")

    previous = order.current_stage
    notes = clean_str(data.get("notes")) or None
    db.session.add(
        OrderStageHistory(order_id=order.id, stage_id=stage.id, notes=notes, changed_by_id=user.id)
    )
    log_order_activity(
        order.id,
        "STAGE_CHANGED",
        f'Stage changed from "{previous.name if previous else "None"}" to "{stage.name}"',
        user.id,
        {"fromStageId": order.current_stage_id, "toStageId": stage.id, "notes": notes},
    )
    order.current_stage_id = stage.id
    if stage.is_final:
        order.status = "COMPLETED"
        order.completed_at = utcnow()
    db.session.commit()
    return ok(order.to_dict())


def _can_edit_status(user):
    return is_staff_editor(user) or has_permission(user, "orders.edit")


@orders_bp.route("/orders/<int:order_id>/status", methods=["PATCH"])
def update_order_status(order_id):
    user = require_permission("orders.edit", "orders.view")
    if not _can_edit_status(user):
        raise Forbidden("You don't have permission to edit order status")

    data = json_body()
    field = data.get("field")
    value = data.get("value")

    if field in ORDER_BOOLEAN_FIELDS:
        if not isinstance(value, bool):
            raise ApiError(f"Invalid value for {field}")
    elif field in ORDER_BST_FIELDS:
        choices = ORDER_BST_FIELDS[field][3]
        if value is not None and value not in choices:
            raise ApiError(f"Invalid value for {field}")
    else:
        raise ApiError(f"Invalid field: {field}")

    order = load_order(order_id)
    if not (is_staff_editor(user) or can_view_all_orders(user) or is_order_sales_rep(user, order)):
        raise Forbidden("Access denied")

    now = utcnow()
    if field in ORDER_BOOLEAN_FIELDS:
        attr, date_attr, label = ORDER_BOOLEAN_FIELDS[field]
        old_value = bool(getattr(order, attr))
        setattr(order, attr, value)
        setattr(order, date_attr, now if value else None)
        activity_type = "STATUS_CHANGED"
        description = (
            f"{label} changed from {'Yes' if old_value else 'No'} to {'Yes' if value else 'No'}"
        )
    else:
        attr, date_attr, label, _choices = ORDER_BST_FIELDS[field]
        old_value = getattr(order, attr)
        setattr(order, attr, value)
        setattr(order, date_attr, now if value is not None else None)
        activity_type = "BST_STATUS_CHANGED"
        description = (
            f'{label} changed from "{old_value or "Not Set"}" to "{value or "Not Set"}"'
        )

    log_order_activity(
        order.id,
        activity_type,
        description,
        user.id,
        {"field": field, "oldValue": old_value, "newValue": value, "changedAt": iso(now)},
    )
    db.session.commit()
    return ok({"field": field, "value": value, "updatedAt": iso(now)})


@orders_bp.route("/orders/<int:order_id>/cancel", methods=["POST"])
def cancel_order(order_id):
    user = require_roles(
        ROLE_ADMIN, ROLE_MANAGER, ROLE_BST, message="You don't have permission to cancel orders"
    )
    data = json_body()
    reason = clean_str(data.get("reason"))
    notes = clean_str(data.get("notes"))
    if not reason:
        raise ApiError("Cancellation reason is required")

    order = load_order(order_id)
    if order.status == "CANCELLED":
        raise ApiError("Order is already cancelled")

    now = utcnow()
    order.status = "CANCELLED"
    order.cancelled_at = now
    order.cancel_reason = f"{reason} | {notes}" if notes else reason
    log_order_activity(
        order.id,
        "CANCELLED",
        f"Order cancelled: {reason}",
        user.id,
        {"reason": reason, "notes": notes or None, "cancelledBy": user.id, "cancelledAt": iso(now)},
    )
    db.session.commit()
    current_app.logger.info("Order %s cancelled by %s", order.order_number, user.email)
    return ok(order.to_dict())


@orders_bp.route("/orders/<int:order_id>/deposit", methods=["PATCH"])
def update_deposit(order_id):
    user = require_auth()
    if not has_role(user, ROLE_ADMIN, ROLE_MANAGER):
        raise Forbidden("Only Admin or Manager can update deposit status")

    data = json_body()
    new_status = data.get("depositChargeStatus")
    if new_status is not None and new_status not in DEPOSIT_CHARGE_STATUSES:
        raise ApiError(f"Invalid deposit charge status: {new_status}")

    order = load_order(order_id)
    now = utcnow()
    descriptions = []
    metadata = {"changedAt": iso(now)}

    if new_status is not None:
        metadata.update(oldStatus=order.deposit_charge_status, newStatus=new_status)
        descriptions.append(
            f'Deposit charge status changed from "{order.deposit_charge_status or "Not Set"}" '
            f'to "{new_status}"'
        )
        order.deposit_charge_status = new_status
        if new_status in COLLECTED_CHARGE_STATUSES:
            order.deposit_collected = True
            order.deposit_date = now
        elif new_status in UNCOLLECTED_CHARGE_STATUSES:
            order.deposit_collected = False
            order.deposit_date = None
        elif new_status == "Refunded":
            order.deposit_collected = False

    if "depositNotes" in data:
        metadata.update(oldNotes=order.deposit_notes, newNotes=data.get("depositNotes"))
        order.deposit_notes = data.get("depositNotes")
        descriptions.append("Deposit notes updated")

    if not descriptions:
        raise ApiError("No changes provided")

    log_order_activity(order.id, "DEPOSIT_STATUS_CHANGED", ". ".join(descriptions), user.id, metadata)
    db.session.commit()
    return ok(
        {
            "depositChargeStatus": order.deposit_charge_status,
            "depositNotes": order.deposit_notes,
            "depositCollected": bool(order.deposit_collected),
            "updatedAt": iso(now),
        }
    )


def _esign_payload(order, pdf):
    first_name, _, last_name = (order.customer_name or "").strip().partition(" ")
    return {
        "bbdOrderId": order.id,
        "orderNumber": order.order_number,
        "customerFirstName": first_name,
        "customerLastName": last_name.strip(),
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone or "",
        "deliveryAddress": order.delivery_address,
        "deliveryCity": order.delivery_city,
        "deliveryState": order.delivery_state,
        "deliveryZip": order.delivery_zip,
        "buildingType": order.building_type,
        "buildingWidth": order.building_width or "",
        "buildingLength": order.building_length or "",
        "buildingHeight": order.building_height or "",
        "totalPrice": float(order.total_price or 0),
        "depositAmount": float(order.deposit_amount or 0),
        "installer": order.installer or "",
        "pdfFileId": pdf.id,
        "pdfStorageKey": pdf.storage_key,
        "pdfFileName": pdf.filename,
    }


@orders_bp.route("/orders/<int:order_id>/esign/send", methods=["POST"])
def send_for_esign(order_id):
    user = require_permission("orders.edit", "documents.send")
    order = load_order(order_id)
    if order.sent_to_customer:
        raise ApiError("Order has already been sent for processing")

    pdf = next((link.file for link in order.files if link.file and link.file.is_pdf), None)
    if pdf is None:
        raise ApiError("No PDF file attached to this order")

    event = publish_event(order.id, "esign_requested", _esign_payload(order, pdf))

    now = utcnow()
    order.sent_to_customer = True
    order.sent_to_customer_date = now
    log_order_activity(
        order.id,
        "ESIGN_SENT",
        "Order sent for processing (e-sign, signature, deposit)",
        user.id,
        {"eventId": event.id, "pdfFileName": pdf.filename, "timestamp": iso(now)},
    )
    db.session.commit()
    return ok({"eventId": event.id})


@orders_bp.route("/orders/<int:order_id>/esign/status", methods=["GET"])
def esign_status(order_id):
    require_permission("orders.view")
    events = get_events_by_order(order_id)
    types = {event.event_type for event in events}
    last = events[0] if events else None
    return ok(
        {
            "esignRequested": "esign_requested" in types,
            "esignSent": "esign_sent" in types,
            "customerSigned": "customer_signed" in types,
            "depositCollected": "deposit_collected" in types,
            "hasError": "error" in types,
            "lastEvent": {
                "type": last.event_type,
                "status": last.status,
                "createdAt": iso(last.created_at),
                "payload": last.payload,
            }
            if last
            else None,
            "events": [event.to_dict() for event in events],
        }
    )


@orders_bp.route("/order-stages", methods=["GET"])
def list_order_stages():
    require_auth()
    stages = OrderStage.query.order_by(OrderStage.sort_order.asc(), OrderStage.id.asc()).all()
    return ok([stage.to_dict() for stage in stages])
