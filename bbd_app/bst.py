"""Building Success Team views: post-sale pipeline, cancellations and tickets."""

import datetime
import math

from sqlalchemy import and_, case, or_

from bbd_app.constants import TICKET_ACTIVE_STATUSES, TICKET_DONE_STATUSES
from bbd_app.models import Order, Ticket, utcnow
from bbd_app.order_process import OPOrder, map_to_display, paginate_query

BST_PAGE_SIZE = 20
WC_STAGE_LIMIT = 100

BST_STAGES = ("stmPending", "wcPending", "noContactMade", "wcDoneLpp", "readyToInstall")


def _stage_condition(stage):
    if stage == "stmPending":
        return OPOrder.wc_status.is_(None)
    if stage == "wcPending":
        return OPOrder.wc_status == "Pending"
    if stage == "noContactMade":
        return OPOrder.wc_status == "No Contact Made"
    if stage == "wcDoneLpp":
        return and_(
            OPOrder.wc_status == "Contact Made",
            or_(OPOrder.lpp_status.is_(None), OPOrder.lpp_status == "Pending"),
        )
    if stage == "readyToInstall":
        return and_(
            OPOrder.wc_status == "Contact Made",
            OPOrder.lpp_status == "Ready for Install",
        )
    return None


def _sent_to_manufacturer_query():
    return OPOrder.query.filter(OPOrder.status == "ready_for_manufacturer")


def _search_condition(search, include_cancel_reason=False):
    pattern = f"%{search.strip()}%"
    conditions = [
        OPOrder.order_number.ilike(pattern),
        OPOrder.sales_person.ilike(pattern),
        OPOrder.customer["firstName"].as_string().ilike(pattern),
        OPOrder.customer["lastName"].as_string().ilike(pattern),
        OPOrder.customer["email"].as_string().ilike(pattern),
        OPOrder.building["manufacturer"].as_string().ilike(pattern),
    ]
    if include_cancel_reason:
        conditions.append(OPOrder.cancel_reason.ilike(pattern))
    return or_(*conditions)


def _page_payload(key, rows, total, page, page_size, total_pages):
    return {
        key: [map_to_display(row) for row in rows],
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": total_pages,
    }


def get_bst_pipeline(bst_stage=None, search=None, page=1, page_size=BST_PAGE_SIZE):
    query = _sent_to_manufacturer_query()
    condition = _stage_condition(bst_stage)
    if condition is not None:
        query = query.filter(condition)
    if search:
        query = query.filter(_search_condition(search))
    query = query.order_by(OPOrder.ready_for_manufacturer_at.desc())
    return _page_payload("orders", *paginate_query(query, page, page_size))


def get_bst_stage_counts():
    base = _sent_to_manufacturer_query()
    return {stage: base.filter(_stage_condition(stage)).count() for stage in BST_STAGES}


def get_wc_stage_orders():
    result = {}
    for key, stage in (
        ("stmPendingOrders", "stmPending"),
        ("wcPendingOrders", "wcPending"),
        ("noContactMadeOrders", "noContactMade"),
    ):
        rows = (
            _sent_to_manufacturer_query()
            .filter(_stage_condition(stage))
            .order_by(OPOrder.ready_for_manufacturer_at.desc())
            .limit(WC_STAGE_LIMIT)
            .all()
        )
        result[key] = [map_to_display(row) for row in rows]
    return result


def get_bst_stage_label(wc_status, lpp_status):
    if wc_status is None:
        return "STM Pending"
    if wc_status == "Pending":
        return "WC Pending"
    if wc_status == "No Contact Made":
        return "No Contact"
    if wc_status == "Contact Made":
        if lpp_status == "Ready for Install":
            return "Ready"
        return "LP&P"
    return "-"


def get_cancelled_orders(search=None, page=1, page_size=BST_PAGE_SIZE):
    query = OPOrder.query.filter(OPOrder.status == "cancelled")
    if search:
        query = query.filter(_search_condition(search, include_cancel_reason=True))
    query = query.order_by(
        case((OPOrder.cancelled_at.is_(None), 1), else_=0),
        OPOrder.cancelled_at.desc(),
    )
    return _page_payload("orders", *paginate_query(query, page, page_size))


def get_cancellation_stats(now=None):
    now = now or utcnow()
    today = datetime.datetime(now.year, now.month, now.day)
    month_start = datetime.datetime(now.year, now.month, 1)
    # Weeks start on Sunday; Python's weekday() has Monday == 0.
    week_start = today - datetime.timedelta(days=(now.weekday() + 1) % 7)

    base = OPOrder.query.filter(OPOrder.status == "cancelled")
    return {
        "total": base.count(),
        "thisMonth": base.filter(OPOrder.cancelled_at >= month_start).count(),
        "thisWeek": base.filter(OPOrder.cancelled_at >= week_start).count(),
    }


def get_bst_tab_counts():
    return {
        "pipeline": _sent_to_manufacturer_query().count(),
        "tickets": Ticket.query.filter(Ticket.status.notin_(TICKET_DONE_STATUSES)).count(),
        "cancellations": OPOrder.query.filter(OPOrder.status == "cancelled").count(),
    }


def get_ticket_stats(user_id):
    return {
        "open": Ticket.query.filter_by(status="OPEN").count(),
        "inProgress": Ticket.query.filter_by(status="IN_PROGRESS").count(),
        "pending": Ticket.query.filter_by(status="PENDING").count(),
        "assignedToMe": Ticket.query.filter(
            Ticket.assigned_to_id == user_id, Ticket.status != "CLOSED"
        ).count(),
    }


_PRIORITY_RANK = case(
    (Ticket.priority == "URGENT", 0),
    (Ticket.priority == "HIGH", 1),
    (Ticket.priority == "NORMAL", 2),
    else_=3,
)


def _filtered_tickets(ticket_type=None, priority=None, assigned_to_id=None, search=None):
    query = Ticket.query
    if ticket_type:
        query = query.filter(Ticket.type == ticket_type)
    if priority:
        query = query.filter(Ticket.priority == priority)
    if assigned_to_id is not None:
        query = query.filter(Ticket.assigned_to_id == assigned_to_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.outerjoin(Order, Ticket.order_id == Order.id).filter(
            or_(
                Ticket.ticket_number.ilike(pattern),
                Ticket.subject.ilike(pattern),
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
            )
        )
    return query


def get_bst_tickets(status=None, page=1, page_size=BST_PAGE_SIZE, ticket_type=None,
                    priority=None, assigned_to_id=None, search=None):
    """Ticket queue for the BST board.

    Type, priority, assignee and search narrow both the page and the total.
    With an explicit status the list is ordered by priority then age.
    Without one, active tickets come first (newest first) followed by
    resolved and closed ones, and pagination runs across both groups.
    """
    page = max(int(page or 1), 1)
    page_size = max(int(page_size or BST_PAGE_SIZE), 1)
    offset = (page - 1) * page_size
    base = _filtered_tickets(ticket_type, priority, assigned_to_id, search)

    if status:
        query = base.filter(Ticket.status == status)
        total = query.count()
        tickets = (
            query.order_by(_PRIORITY_RANK, Ticket.created_at.desc(), Ticket.id.desc())
            .offset(offset)
            .limit(page_size)
            .all()
        )
    else:
        active = base.filter(Ticket.status.in_(TICKET_ACTIVE_STATUSES))
        done = base.filter(Ticket.status.in_(TICKET_DONE_STATUSES))
        active_total = active.count()
        total = active_total + done.count()

        tickets = (
            active.order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .offset(offset)
            .limit(page_size)
            .all()
        )
        remaining = page_size - len(tickets)
        if remaining > 0:
            done_offset = max(offset - active_total, 0)
            tickets += (
                done.order_by(Ticket.created_at.desc(), Ticket.id.desc())
                .offset(done_offset)
                .limit(remaining)
                .all()
            )

    return {
        "tickets": [ticket.to_dict() for ticket in tickets],
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": math.ceil(total / page_size) if total else 0,
    }
