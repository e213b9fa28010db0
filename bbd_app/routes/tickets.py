from flask import Blueprint, current_app, request

from bbd_app import db
from bbd_app.auth import is_staff_editor, require_admin, require_permission
from bbd_app.common_import_utils import form_truthy, page_args, parse_int_field
from bbd_app.errors import Forbidden, ok
from bbd_app.models import Ticket
from bbd_app.routes import get_or_404, json_body
from bbd_app.tickets import add_note, create_ticket, list_tickets_query, update_ticket

tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


def _require_ticket_editor(message):
    user = require_permission("orders.view")
    if not is_staff_editor(user):
        raise Forbidden(message)
    return user


@tickets_bp.route("", methods=["GET"])
def list_tickets():
    user = require_permission("orders.view")
    page, page_size = page_args(request.args, default_size=20, max_size=100)
    order_id, _ = parse_int_field(request.args.get("orderId"), "orderId")

    query = list_tickets_query(
        user,
        status=request.args.get("status") or None,
        ticket_type=request.args.get("type") or None,
        priority=request.args.get("priority") or None,
        search=request.args.get("search") or None,
        assigned_to_me=form_truthy(request.args.get("assignedToMe")),
        order_id=order_id,
    )
    total = query.count()
    tickets = (
        query.order_by(Ticket.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return ok(
        {
            "items": [ticket.to_dict() for ticket in tickets],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": -(-total // page_size),
        }
    )


@tickets_bp.route("", methods=["POST"])
def create():
    user = _require_ticket_editor("You don't have permission to create tickets")
    ticket = create_ticket(json_body(), user)
    current_app.logger.info("Ticket %s created by %s", ticket.ticket_number, user.email)
    return ok(ticket.to_dict(detail=True), 201)


@tickets_bp.route("/<int:ticket_id>", methods=["GET"])
def detail(ticket_id):
    require_permission("orders.view")
    ticket = get_or_404(Ticket, ticket_id, "Ticket not found")
    return ok(ticket.to_dict(detail=True))


@tickets_bp.route("/<int:ticket_id>", methods=["PATCH"])
def update(ticket_id):
    user = _require_ticket_editor("You don't have permission to update tickets")
    ticket = get_or_404(Ticket, ticket_id, "Ticket not found")
    update_ticket(ticket, json_body(), user)
    return ok(ticket.to_dict(detail=True))


@tickets_bp.route("/<int:ticket_id>", methods=["DELETE"])
def delete(ticket_id):
    require_admin("Only administrators can delete tickets")
    ticket = get_or_404(Ticket, ticket_id, "Ticket not found")
    db.session.delete(ticket)
    db.session.commit()
    return ok({"id": ticket_id})


@tickets_bp.route("/<int:ticket_id>/notes", methods=["POST"])
def create_note(ticket_id):
    user = _require_ticket_editor("You don't have permission to add notes")
    ticket = get_or_404(Ticket, ticket_id, "Ticket not found")
    data = json_body()
    note = add_note(ticket, data.get("content"), form_truthy(data.get("isInternal")), user)
    return ok(note.to_dict(), 201)
