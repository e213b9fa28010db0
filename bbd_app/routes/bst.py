from flask import Blueprint, request

from bbd_app.auth import can_view_all_orders, is_staff_editor, require_auth
from bbd_app.bst import (
    BST_PAGE_SIZE,
    BST_STAGES,
    get_bst_pipeline,
    get_bst_stage_counts,
    get_bst_tab_counts,
    get_bst_tickets,
    get_cancellation_stats,
    get_cancelled_orders,
    get_ticket_stats,
    get_wc_stage_orders,
)
from bbd_app.common_import_utils import form_truthy, page_args
from bbd_app.constants import PRIORITIES, TICKET_STATUSES, TICKET_TYPES
from bbd_app.errors import ApiError, Forbidden, ok

bst_bp = Blueprint("bst", __name__, url_prefix="/api/bst")


def _require_bst_access():
    user = require_auth()
    if not (is_staff_editor(user) or can_view_all_orders(user)):
        raise Forbidden()
    return user


@bst_bp.route("/pipeline", methods=["GET"])
def pipeline():
    _require_bst_access()
    stage = request.args.get("stage") or None
    if stage is not None and stage not in BST_STAGES:
        raise ApiError(f"Invalid stage: {stage}")
    page, page_size = page_args(request.args, default_size=BST_PAGE_SIZE, max_size=100)
    return ok(
        get_bst_pipeline(stage, request.args.get("search") or None, page, page_size)
    )


@bst_bp.route("/stage-counts", methods=["GET"])
def stage_counts():
    _require_bst_access()
    return ok(get_bst_stage_counts())


@bst_bp.route("/wc-stages", methods=["GET"])
def wc_stages():
    _require_bst_access()
    return ok(get_wc_stage_orders())


@bst_bp.route("/cancellations", methods=["GET"])
def cancellations():
    _require_bst_access()
    page, page_size = page_args(request.args, default_size=BST_PAGE_SIZE, max_size=100)
    return ok(get_cancelled_orders(request.args.get("search") or None, page, page_size))


@bst_bp.route("/cancellation-stats", methods=["GET"])
def cancellation_stats():
    _require_bst_access()
    return ok(get_cancellation_stats())


@bst_bp.route("/tab-counts", methods=["GET"])
def tab_counts():
    _require_bst_access()
    return ok(get_bst_tab_counts())


@bst_bp.route("/tickets", methods=["GET"])
def tickets():
    user = _require_bst_access()
    status = request.args.get("status") or None
    if status is not None and status not in TICKET_STATUSES:
        raise ApiError(f"Invalid status: {status}")
    ticket_type = request.args.get("type") or None
    if ticket_type is not None and ticket_type not in TICKET_TYPES:
        raise ApiError(f"Invalid type: {ticket_type}")
    priority = request.args.get("priority") or None
    if priority is not None and priority not in PRIORITIES:
        raise ApiError(f"Invalid priority: {priority}")
    page, page_size = page_args(request.args, default_size=BST_PAGE_SIZE, max_size=100)
    return ok(
        get_bst_tickets(
            status,
            page,
            page_size,
            ticket_type=ticket_type,
            priority=priority,
            assigned_to_id=user.id if form_truthy(request.args.get("assignedToMe")) else None,
            search=(request.args.get("search") or "").strip() or None,
        )
    )


@bst_bp.route("/ticket-stats", methods=["GET"])
def ticket_stats():
    user = _require_bst_access()
    return ok(get_ticket_stats(user.id))
