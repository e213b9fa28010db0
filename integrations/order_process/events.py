from bbd_app import db
from bbd_app.order_process import OPOrderEvent


def publish_event(order_id, event_type, payload=None):
    """Queue an event for the order processor. Commits on the Order Process bind."""
    event = OPOrderEvent(
        order_id=str(order_id),
        event_type=event_type,
        status="pending",
        source="bbd",
        payload=payload or {},
    )
    db.session.add(event)
    db.session.commit()
    return event


def get_events_by_order(order_id):
    return (
        OPOrderEvent.query.filter_by(order_id=str(order_id))
        .order_by(OPOrderEvent.created_at.desc(), OPOrderEvent.id.desc())
        .all()
    )
