import json


def log_order_activity(order_id, activity_type, description, user_id=None, metadata=None, *, commit=False):
    """
    Record an entry in an order's activity timeline.
    The caller usually commits alongside the change being described.
    """
    if not order_id:
        return None

    from bbd_app import db
    from bbd_app.models import OrderActivity

    activity = OrderActivity(
        order_id=order_id,
        type=activity_type,
        description=description,
        user_id=user_id,
        meta=json.dumps(metadata) if metadata else None,
    )
    db.session.add(activity)
    if commit:
        db.session.commit()
    return activity


def log_ticket_activity(ticket_id, action, description, user_id=None, metadata=None, *, commit=False):
    if not ticket_id:
        return None

    from bbd_app import db
    from bbd_app.models import TicketActivity

    activity = TicketActivity(
        ticket_id=ticket_id,
        action=action,
        description=description,
        user_id=user_id,
        meta=json.dumps(metadata) if metadata else None,
    )
    db.session.add(activity)
    if commit:
        db.session.commit()
    return activity
