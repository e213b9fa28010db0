import re

from sqlalchemy import or_

from bbd_app import db
from bbd_app.constants import PRIORITIES, TICKET_DONE_STATUSES, TICKET_STATUSES, TICKET_TYPES
from bbd_app.errors import ApiError
from bbd_app.models import Order, Ticket, TicketNote, User, utcnow
from utils.activity import log_ticket_activity

TICKET_NUMBER_PATTERN = re.compile(r"TKT-(\d+)")
SUBJECT_MAX_LENGTH = 200


def next_ticket_number():
    latest = Ticket.query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).first()
    next_value = 1
    if latest is not None:
        match = TICKET_NUMBER_PATTERN.search(latest.ticket_number or "")
        if match:
            next_value = int(match.group(1)) + 1
    return f"TKT-{next_value:05d}"


def _validate_choice(value, choices, label):
    if value not in choices:
        raise ApiError(f"Invalid {label}: {value}")
    return value


def _load_assignee(assignee_id):
    if assignee_id in (None, ""):
        return None
    try:
        assignee = db.session.get(User, int(assignee_id))
    except (TypeError, ValueError):
        assignee = None
    if assignee is None:
        raise ApiError("Assigned user not found")
    return assignee


def create_ticket(data, user):
    errors = {}
    order_id = data.get("orderId")
    subject = (data.get("subject") or "").strip()
    if not order_id:
        errors["orderId"] = "Order is required"
    if not subject:
        errors["subject"] = "Subject is required"
    elif len(subject) > SUBJECT_MAX_LENGTH:
        errors["subject"] = f"Subject must be {SUBJECT_MAX_LENGTH} characters or less"
    if errors:
        raise ApiError("Validation failed", errors=errors)

    order = db.session.get(Order, order_id)
    if order is None:
        raise ApiError("Order not found", status=404)

    ticket_type = _validate_choice(data.get("type") or "OTHER", TICKET_TYPES, "type")
    priority = _validate_choice(data.get("priority") or "NORMAL", PRIORITIES, "priority")
    assignee = _load_assignee(data.get("assignedToId"))

    ticket = Ticket(
        ticket_number=next_ticket_number(),
        order_id=order.id,
        type=ticket_type,
        status="OPEN",
        priority=priority,
        subject=subject,
        description=(data.get("description") or "").strip() or None,
        assigned_to_id=assignee.id if assignee else None,
        created_by_id=user.id,
    )
    db.session.add(ticket)
    db.session.flush()

    log_ticket_activity(ticket.id, "CREATED", f"Ticket {ticket.ticket_number} created", user.id)
    if assignee is not None:
        log_ticket_activity(
            ticket.id, "ASSIGNED", f"Ticket assigned to {assignee.full_name}", user.id
        )
    db.session.commit()
    return ticket


def list_tickets_query(
    user,
    status=None,
    ticket_type=None,
    priority=None,
    search=None,
    assigned_to_me=False,
    order_id=None,
):
    query = Ticket.query.join(Order, Ticket.order_id == Order.id)
    if status:
        query = query.filter(Ticket.status == status)
    if ticket_type:
        query = query.filter(Ticket.type == ticket_type)
    if priority:
        query = query.filter(Ticket.priority == priority)
    if order_id:
        query = query.filter(Ticket.order_id == order_id)
    if assigned_to_me:
        query = query.filter(Ticket.assigned_to_id == user.id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Ticket.ticket_number.ilike(pattern),
                Ticket.subject.ilike(pattern),
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
            )
        )
    return query


def update_ticket(ticket, data, user):
    """Apply a PATCH body, logging one activity per meaningful change."""
    now = utcnow()

    if "subject" in data:
        subject = (data.get("subject") or "").strip()
        if not subject or len(subject) > SUBJECT_MAX_LENGTH:
            raise ApiError(f"Subject must be 1-{SUBJECT_MAX_LENGTH} characters")
        if subject != ticket.subject:
            ticket.subject = subject
            log_ticket_activity(ticket.id, "UPDATED", "Subject updated", user.id)

    if "description" in data:
        description = data.get("description")
        if description != ticket.description:
            ticket.description = description
            log_ticket_activity(ticket.id, "UPDATED", "Description updated", user.id)

    if "resolution" in data:
        ticket.resolution = data.get("resolution")

    if data.get("status") and data["status"] != ticket.status:
        new_status = _validate_choice(data["status"], TICKET_STATUSES, "status")
        old_status = ticket.status
        ticket.status = new_status

        if new_status == "RESOLVED" and ticket.resolved_at is None:
            ticket.resolved_at = now
        if new_status == "CLOSED" and ticket.closed_at is None:
            ticket.closed_at = now

        if old_status in TICKET_DONE_STATUSES and new_status not in TICKET_DONE_STATUSES:
            ticket.resolved_at = None
            ticket.closed_at = None
            log_ticket_activity(
                ticket.id, "REOPENED", f"Ticket reopened from {old_status} to {new_status}", user.id
            )
        elif new_status in TICKET_DONE_STATUSES:
            log_ticket_activity(
                ticket.id, new_status, f"Status changed from {old_status} to {new_status}", user.id
            )
        else:
            log_ticket_activity(
                ticket.id,
                "STATUS_CHANGED",
                f"Status changed from {old_status} to {new_status}",
                user.id,
            )

    if data.get("priority") and data["priority"] != ticket.priority:
        new_priority = _validate_choice(data["priority"], PRIORITIES, "priority")
        log_ticket_activity(
            ticket.id,
            "PRIORITY_CHANGED",
            f"Priority changed from {ticket.priority} to {new_priority}",
            user.id,
        )
        ticket.priority = new_priority

    if "type" in data and data["type"] and data["type"] != ticket.type:
        ticket.type = _validate_choice(data["type"], TICKET_TYPES, "type")

    if "assignedToId" in data:
        new_assignee = _load_assignee(data.get("assignedToId"))
        new_id = new_assignee.id if new_assignee else None
        if new_id != ticket.assigned_to_id:
            previous = ticket.assigned_to
            ticket.assigned_to_id = new_id
            if new_assignee is not None:
                log_ticket_activity(
                    ticket.id, "ASSIGNED", f"Ticket assigned to {new_assignee.full_name}", user.id
                )
            elif previous is not None:
                log_ticket_activity(
                    ticket.id, "UNASSIGNED", f"Ticket unassigned from {previous.full_name}", user.id
                )

    ticket.updated_at = now
    db.session.commit()
    return ticket


def add_note(ticket, content, is_internal, user):
    content = (content or "").strip()
    if not content:
        raise ApiError("Note content is required")
    note = TicketNote(
        ticket_id=ticket.id,
        user_id=user.id,
        content=content,
        is_internal=bool(is_internal),
    )
    db.session.add(note)
    db.session.flush()
    log_ticket_activity(
        ticket.id,
        "NOTE_ADDED",
        "Internal note added" if note.is_internal else "Note added",
        user.id,
        {"noteId": note.id, "isInternal": note.is_internal, "contentPreview": content[:100]},
    )
    db.session.commit()
    return note
