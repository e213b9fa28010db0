from flask import Blueprint, request

from bbd_app.analytics import drilldown, revisions_analytics, sales_analytics
from bbd_app.auth import can_view_all_orders, require_auth
from bbd_app.constants import ROLE_ADMIN
from bbd_app.errors import Forbidden, ok

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


def _sees_everything(user):
    return user.role_name == ROLE_ADMIN or can_view_all_orders(user)


@dashboard_bp.route("/analytics", methods=["GET"])
def analytics():
    user = require_auth()
    return ok(
        sales_analytics(
            user,
            request.args.get("startDate"),
            request.args.get("endDate"),
            view_all=_sees_everything(user),
        )
    )


@dashboard_bp.route("/drilldown", methods=["GET"])
def drilldown_totals():
    user = require_auth()
    if not _sees_everything(user):
        raise Forbidden()
    return ok(
        drilldown(
            request.args.get("type"),
            request.args.get("value"),
            request.args.get("startDate"),
            request.args.get("endDate"),
        )
    )


@dashboard_bp.route("/revisions-analytics", methods=["GET"])
def revision_analytics():
    user = require_auth()
    return ok(
        revisions_analytics(
            user,
            request.args.get("startDate"),
            request.args.get("endDate"),
            view_all=can_view_all_orders(user),
        )
    )
