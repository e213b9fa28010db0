import hmac

from flask import Blueprint, current_app, jsonify, request

from bbd_app import db
from bbd_app.models import utcnow
from bbd_app.order_process import OPOrderEvent

order_events_bp = Blueprint("order_events", __name__)


def _authorized():
    secret = current_app.config.get("ORDER_WEBHOOK_SECRET") or ""
    header = request.headers.get("Authorization", "")
    if not secret or not header.startswith("Bearer "):
        return False
    return hmac.compare_digest(header[len("Bearer "):], secret)


@order_events_bp.route("/api/webhooks/order-events", methods=["POST"])
def order_events_webhook():
    if not _authorized():
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    data = request.get_json(silent=True) or {}
    order_id = data.get("orderId")
    event_type = data.get("eventType")
    if not order_id or not event_type:
        return jsonify({"success": False, "error": "Missing orderId or eventType"}), 400

    event = OPOrderEvent(
        order_id=str(order_id),
        event_type=event_type,
        status="completed",
        source="order_processor",
        payload=data.get("payload") or {},
        processed_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    current_app.logger.info("Recorded %s event for order %s", event_type, order_id)

    return jsonify({"success": True, "data": {"received": True, "eventId": event.id}})
