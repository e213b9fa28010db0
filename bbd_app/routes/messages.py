from flask import Blueprint, request

from bbd_app import db
from bbd_app.auth import (
    can_view_all_orders,
    has_permission,
    is_order_customer,
    is_order_sales_rep,
    require_permission,
)
from bbd_app.constants import ROLE_ADMIN
from bbd_app.errors import ApiError, Forbidden, ok
from bbd_app.models import Message, Order
from bbd_app.routes import get_or_404, json_body
from utils.activity import log_order_activity

messages_bp = Blueprint("messages", __name__, url_prefix="/api/messages")


def can_see_internal(user):
    return user.role_name == ROLE_ADMIN or has_permission(user, "messages.view_internal")


def _order_for(user, order_id):
    if not order_id:
        raise ApiError("orderId required")
    order = get_or_404(Order, order_id, "Order not found")
    if not (
        user.role_name == ROLE_ADMIN
        or can_view_all_orders(user)
        or is_order_sales_rep(user, order)
        or is_order_customer(user, order)
    ):
        raise Forbidden("Access denied")
    return order


@messages_bp.route("", methods=["GET"])
def list_messages():
    user = require_permission("messages.view")
    order = _order_for(user, request.args.get("orderId"))
    query = Message.query.filter(Message.order_id == order.id)
    if not can_see_internal(user):
        query = query.filter(Message.is_internal.is_(False))
    messages = query.order_by(Message.created_at.desc(), Message.id.desc()).all()
    return ok([message.to_dict() for message in messages])


@messages_bp.route("", methods=["POST"])
def send_message():
    user = require_permission("messages.send")
    data = json_body()
    order = _order_for(user, data.get("orderId"))
    content = (data.get("content") or "").strip()
    if not content:
        raise ApiError("Message content is required")

    parent_id = data.get("parentId")
    if parent_id:
        parent = get_or_404(Message, parent_id, "Parent message not found")
        if parent.order_id != order.id:
            raise ApiError("Parent message belongs to another order")
        parent_id = parent.id

    is_internal = can_see_internal(user) and data.get("isInternal") is True
    message = Message(
        order_id=order.id,
        sender_id=user.id,
        content=content,
        is_internal=is_internal,
        parent_id=parent_id or None,
    )
    db.session.add(message)
    log_order_activity(
        order.id,
        "MESSAGE_SENT",
        "Internal message sent" if is_internal else "Message sent",
        user_id=user.id,
    )
    db.session.commit()
    return ok(message.to_dict(), 201)
