"""Read and workflow endpoints over the Order Process store."""

from flask import Blueprint, current_app, request

from bbd_app.analytics import allowed_sales_persons
from bbd_app.auth import (
    can_view_all_orders,
    has_permission,
    is_staff_editor,
    original_user_of,
    require_auth,
    require_permission,
)
from bbd_app.common_import_utils import page_args, parse_int_field
from bbd_app.constants import LPP_STATUSES, ROLE_ADMIN, ROLE_MANAGER, WC_STATUSES
from bbd_app.errors import ApiError, Forbidden, NotFound, ok
from bbd_app.models import utcnow
from bbd_app.order_process import (
    OP_UPDATABLE_FIELDS,
    get_available_years,
    get_customer_list,
    get_monthly_breakdown,
    get_office_sales_persons,
    get_order,
    get_order_filter_options,
    get_order_locations,
    get_order_stats,
    get_orders,
    get_orders_by_customer_email,
    get_orders_not_sent_to_manufacturer,
    update_order_field,
)
from bbd_app.routes import json_body

op_bp = Blueprint("op", __name__, url_prefix="/api")

STRING_CHOICES = {"wcStatus": WC_STATUSES, "lppStatus": LPP_STATUSES}


def _sales_scope(user):
    """Return ``(sales_person, sales_persons)`` for OP order queries."""
    if user.role_name == ROLE_ADMIN:
        return None, None
    if user.role_name == ROLE_MANAGER and user.office:
        return None, get_office_sales_persons(user.office)
    if can_view_all_orders(user):
        return None, None
    return user.full_name, None


def _ensure_visible(user, order):
    sales_person, sales_persons = _sales_scope(user)
    if sales_persons is not None and order["salesPerson"] not in sales_persons:
        raise Forbidden("Access denied")
    if sales_person and order["salesPerson"] != sales_person:
        raise Forbidden("Access denied")


@op_bp.route("/op/orders", methods=["GET"])
def list_op_orders():
    user = require_permission("orders.view", "orders.view_all")
    page, page_size = page_args(request.args, default_size=20, max_size=100)
    sales_person, sales_persons = _sales_scope(user)
    args = request.args
    return ok(
        get_orders(
            page=page,
            page_size=page_size,
            status=args.get("status") or None,
            exclude_cancelled=args.get("excludeCancelled") == "true",
            sales_person=sales_person,
            sales_persons=sales_persons,
            search=args.get("search") or None,
            payment_status=args.get("paymentStatus") or None,
            state=args.get("state") or None,
            installer=args.get("installer") or None,
            sales_rep_filter=args.get("salesRep") or None,
            sort_by=args.get("sortBy") or None,
            sort_dir="asc" if args.get("sortDir") == "asc" else "desc",
        )
    )


@op_bp.route("/op/orders/<order_id>", methods=["GET"])
def get_op_order(order_id):
    user = require_permission("orders.view", "orders.view_all")
    order = get_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    _ensure_visible(user, order)
    return ok(order)


@op_bp.route("/op/orders/<order_id>", methods=["PATCH"])
def update_op_order(order_id):
    user = require_auth()
    if not (is_staff_editor(user) or has_permission(user, "orders.edit")):
        raise Forbidden("You don't have permission to edit order status")

    data = json_body()
    field = data.get("field")
    value = data.get("value")
    if field not in OP_UPDATABLE_FIELDS:
        raise ApiError(f"Invalid field: {field}")
    if field in STRING_CHOICES:
        if value is not None and value not in STRING_CHOICES[field]:
            raise ApiError(f"Invalid value for {field}")
    elif not isinstance(value, bool):
        raise ApiError(f"Invalid value for {field}")

    existing = get_order(order_id)
    if existing is None:
        raise NotFound("Order not found")
    _ensure_visible(user, existing)

    updated = update_order_field(order_id, field, value)
    current_app.logger.info("OP order %s: %s set to %r by %s", order_id, field, value, user.email)
    return ok({"field": field, "value": value, "order": updated, "updatedAt": utcnow().isoformat()})


@op_bp.route("/op/filter-options", methods=["GET"])
def op_filter_options():
    require_permission("orders.view", "orders.view_all")
    return ok(get_order_filter_options())


@op_bp.route("/op/stats", methods=["GET"])
def op_stats():
    user = require_permission("orders.view", "orders.view_all")
    year, err = parse_int_field(request.args.get("year"), "year")
    if err:
        raise ApiError(err)
    year = year or utcnow().year

    allowed = allowed_sales_persons(user, can_view_all_orders(user))
    sales_persons = sorted(allowed) if allowed is not None else None
    return ok(
        {
            "year": year,
            "years": get_available_years(),
            "stats": get_order_stats(year, sales_persons),
            "monthly": get_monthly_breakdown(year, sales_persons),
            "notSentToManufacturer": get_orders_not_sent_to_manufacturer(year, sales_persons),
        }
    )


@op_bp.route("/op/locations", methods=["GET"])
@op_bp.route("/orders/locations", methods=["GET"])
def op_locations():
    user = require_permission("orders.view")
    full_access = user.role_name in (ROLE_ADMIN, ROLE_MANAGER) or can_view_all_orders(user)
    return ok(get_order_locations(sales_person=None if full_access else user.full_name))


@op_bp.route("/customers", methods=["GET"])
def list_customers():
    user = require_auth()
    if original_user_of(user).role_name != ROLE_ADMIN:
        raise Forbidden()
    page, page_size = page_args(request.args, default_size=100)
    return ok(
        get_customer_list(
            search=request.args.get("search") or None, page=page, page_size=page_size
        )
    )


@op_bp.route("/customers/<path:email>/orders", methods=["GET"])
def customer_orders(email):
    user = require_auth()
    is_self = (user.email or "").lower() == email.strip().lower()
    if not is_self and original_user_of(user).role_name != ROLE_ADMIN:
        raise Forbidden()
    return ok(get_orders_by_customer_email(email))
