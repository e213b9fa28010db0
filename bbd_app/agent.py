"""Analytics chat assistant backed by Gemini function calling.

The model is given read-only query tools over the BBD store. Each reply is
produced by a bounded loop: the model either asks for tool calls, which are
executed here and fed back, or answers with text. The route streams the
result to the browser as server-sent events.
"""

import datetime
import json
from decimal import Decimal

from flask import current_app
from google import genai
from google.genai import types as genai_types
from sqlalchemy import func, or_

from bbd_app import db
from bbd_app.constants import ROLE_CUSTOMER
from bbd_app.models import Order, PayLedger, Role, Ticket, User

MODEL_NAME = "gemini-2.5-flash"
MAX_TOOL_ROUNDS = 8
MAX_RESULTS = 50
TEXT_CHUNK_SIZE = 20

RATE_LIMIT_MESSAGE = (
    "The AI service rate limit has been exceeded. Please wait a minute and try "
    "again. If this persists, the API key may need to be upgraded from the free tier."
)
INVALID_KEY_MESSAGE = (
    "The Gemini API key is invalid or has been revoked. Please check the "
    "GEMINI_API_KEY in your environment settings."
)
GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

SYSTEM_PROMPT = """You are an analytics assistant for Big Buildings Direct, a company that sells and installs metal buildings/carports. You have access to query tools to look up real data from the database.

## Available Data
- **Orders**: order number, customer name, building type/size, delivery state and city, pricing (total, deposit), deposit status, order status (ACTIVE, COMPLETED, CANCELLED, ON_HOLD), priority, sales rep, installer, dates (date sold, created, cancelled)
- **Order Stats**: aggregate counts and revenue grouped by status, month, salesRep, buildingType, or state
- **Tickets**: BST workflow tickets (welcome calls, LPP, building updates) with status, priority, assignee
- **Users**: team members with roles (Admin, Manager, Sales Rep, BST, Customer), office (Marion/Harbor), department
- **Pay Data**: monthly pay ledgers with buildings sold, commissions, bonuses, salary, deductions
- **Deposit Status**: deposit tracking across orders with charge status (Ready, Charged, Declined, Refunded, Accepted After Decline)
- **Cancellations**: cancelled orders with cancel reason, cancelled date, sales rep
- **Customers**: customer profiles with order counts

## Response Guidelines
- Always query data before answering, never guess or make up numbers
- Use multiple tool calls when needed to fully answer a question
- Format responses clearly with markdown: use **bold** for emphasis, tables for comparisons, lists for enumerations
- When showing financial data, format as currency (e.g., $12,345.67)
- When dates are ambiguous, clarify the range you used
- If a query returns no results, say so clearly and suggest alternate filters
- Keep responses concise but thorough
- When asked about "this year" use the current year, "last month" means the previous calendar month, etc.
- Today's date: {today}"""


def system_prompt(today=None):
    today = today or datetime.date.today()
    return SYSTEM_PROMPT.format(today=today.isoformat())


def _json_safe(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _limit(params):
    try:
        requested = int(params.get("limit") or MAX_RESULTS)
    except (TypeError, ValueError):
        requested = MAX_RESULTS
    return max(1, min(requested, MAX_RESULTS))


def _parse_date(value):
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(str(value).replace("Z", ""))
    except ValueError:
        return None


def _date_filter(query, column, params):
    start = _parse_date(params.get("dateFrom"))
    end = _parse_date(params.get("dateTo"))
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def _contains(column, value):
    return column.ilike(f"%{value}%")


def _name_match(value):
    return or_(_contains(User.first_name, value), _contains(User.last_name, value))


def _full_name(user):
    return user.full_name if user is not None else None


def get_orders(params):
    query = Order.query
    if params.get("status"):
        query = query.filter(Order.status == params["status"])
    if params.get("buildingType"):
        query = query.filter(_contains(Order.building_type, params["buildingType"]))
    if params.get("state"):
        query = query.filter(_contains(Order.delivery_state, params["state"]))
    if params.get("installer"):
        query = query.filter(_contains(Order.installer, params["installer"]))
    if params.get("customerName"):
        query = query.filter(_contains(Order.customer_name, params["customerName"]))
    query = _date_filter(query, Order.date_sold, params)
    if params.get("salesRepName"):
        query = query.join(User, Order.sales_rep_id == User.id).filter(
            _name_match(params["salesRepName"])
        )

    orders = query.order_by(Order.created_at.desc()).limit(_limit(params)).all()
    return [
        {
            "id": order.id,
            "orderNumber": order.order_number,
            "customerName": order.customer_name,
            "buildingType": order.building_type,
            "buildingSize": order.building_size,
            "deliveryState": order.delivery_state,
            "deliveryCity": order.delivery_city,
            "totalPrice": order.total_price,
            "depositAmount": order.deposit_amount,
            "depositCollected": order.deposit_collected,
            "status": order.status,
            "priority": order.priority,
            "installer": order.installer,
            "dateSold": order.date_sold,
            "createdAt": order.created_at,
            "cancelledAt": order.cancelled_at,
            "cancelReason": order.cancel_reason,
            "salesRepName": _full_name(order.sales_rep),
        }
        for order in orders
    ]


def _stats_key(order, group_by):
    if group_by == "month":
        return order.date_sold.strftime("%Y-%m") if order.date_sold else "No Date"
    if group_by == "salesRep":
        return order.sales_rep.full_name if order.sales_rep else "Unassigned"
    if group_by == "buildingType":
        return order.building_type or "Unknown"
    if group_by == "state":
        return order.delivery_state or "Unknown"
    return order.status


def get_order_stats(params):
    query = Order.query
    if params.get("status"):
        query = query.filter(Order.status == params["status"])
    query = _date_filter(query, Order.date_sold, params)

    group_by = params.get("groupBy") or "status"
    groups = {}
    for order in query.all():
        key = _stats_key(order, group_by)
        entry = groups.setdefault(key, {"count": 0, "totalRevenue": 0.0})
        entry["count"] += 1
        entry["totalRevenue"] += float(order.total_price or 0)

    rows = [
        {"group": key, "count": entry["count"], "totalRevenue": round(entry["totalRevenue"], 2)}
        for key, entry in groups.items()
    ]
    return sorted(rows, key=lambda row: row["count"], reverse=True)


def get_tickets(params):
    query = Ticket.query
    for key, column in (("status", Ticket.status), ("type", Ticket.type), ("priority", Ticket.priority)):
        if params.get(key):
            query = query.filter(column == params[key])
    if params.get("assigneeName"):
        query = query.join(User, Ticket.assigned_to_id == User.id).filter(
            _name_match(params["assigneeName"])
        )

    tickets = query.order_by(Ticket.created_at.desc()).limit(_limit(params)).all()
    return [
        {
            "id": ticket.id,
            "ticketNumber": ticket.ticket_number,
            "subject": ticket.subject,
            "type": ticket.type,
            "status": ticket.status,
            "priority": ticket.priority,
            "resolution": ticket.resolution,
            "resolvedAt": ticket.resolved_at,
            "createdAt": ticket.created_at,
            "orderNumber": ticket.order.order_number if ticket.order else None,
            "customerName": ticket.order.customer_name if ticket.order else None,
            "createdByName": _full_name(ticket.created_by),
            "assignedToName": _full_name(ticket.assigned_to),
        }
        for ticket in tickets
    ]


def _order_counts(column, user_ids):
    if not user_ids:
        return {}
    rows = (
        db.session.query(column, func.count(Order.id))
        .filter(column.in_(user_ids))
        .group_by(column)
        .all()
    )
    return dict(rows)


def get_users(params):
    query = User.query.join(Role, User.role_id == Role.id)
    if params.get("isActive") is not None:
        query = query.filter(User.active.is_(bool(params["isActive"])))
    if params.get("office"):
        query = query.filter(_contains(User.office, params["office"]))
    if params.get("role"):
        query = query.filter(_contains(Role.name, params["role"]))

    users = query.order_by(User.last_name.asc()).limit(_limit(params)).all()
    counts = _order_counts(Order.sales_rep_id, [user.id for user in users])
    return [
        {
            "id": user.id,
            "name": user.full_name,
            "email": user.email,
            "phone": user.phone,
            "office": user.office,
            "department": user.department,
            "role": user.role_name,
            "isActive": user.active,
            "orderCount": counts.get(user.id, 0),
            "createdAt": user.created_at,
        }
        for user in users
    ]


def get_pay_data(params):
    query = PayLedger.query
    if params.get("month"):
        query = query.filter(PayLedger.month == int(params["month"]))
    if params.get("year"):
        query = query.filter(PayLedger.year == int(params["year"]))
    if params.get("salesRepName"):
        query = query.join(User, PayLedger.sales_rep_id == User.id).filter(
            _name_match(params["salesRepName"])
        )

    ledgers = (
        query.order_by(PayLedger.year.desc(), PayLedger.month.desc())
        .limit(_limit(params))
        .all()
    )
    return [
        {
            "id": ledger.id,
            "month": ledger.month,
            "year": ledger.year,
            "buildingsSold": ledger.buildings_sold,
            "totalOrderAmount": ledger.total_order_amount,
            "planTotal": ledger.plan_total,
            "tierBonusAmount": ledger.tier_bonus,
            "monthlySalary": ledger.monthly_salary,
            "commissionAmount": ledger.commission_amount,
            "cancellationDeduction": ledger.cancellation_deduction,
            "adjustment": ledger.adjustment,
            "finalAmount": ledger.final_amount,
            "status": ledger.status,
            "salesRepName": _full_name(ledger.sales_rep),
        }
        for ledger in ledgers
    ]


def get_deposit_status(params):
    query = Order.query
    if params.get("collected") is not None:
        query = query.filter(Order.deposit_collected.is_(bool(params["collected"])))
    if params.get("chargeStatus"):
        query = query.filter(_contains(Order.deposit_charge_status, params["chargeStatus"]))

    orders = query.order_by(Order.created_at.desc()).limit(_limit(params)).all()
    return [
        {
            "orderNumber": order.order_number,
            "customerName": order.customer_name,
            "totalPrice": order.total_price,
            "depositAmount": order.deposit_amount,
            "depositCollected": order.deposit_collected,
            "depositChargeStatus": order.deposit_charge_status,
            "depositDate": order.deposit_date,
            "depositPercentage": order.deposit_percentage,
            "depositNotes": order.deposit_notes,
            "status": order.status,
            "salesRepName": _full_name(order.sales_rep),
        }
        for order in orders
    ]


def get_cancellations(params):
    query = _date_filter(
        Order.query.filter(Order.status == "CANCELLED"), Order.cancelled_at, params
    )
    if params.get("salesRepName"):
        query = query.join(User, Order.sales_rep_id == User.id).filter(
            _name_match(params["salesRepName"])
        )

    orders = query.order_by(Order.cancelled_at.desc()).limit(_limit(params)).all()
    return [
        {
            "orderNumber": order.order_number,
            "customerName": order.customer_name,
            "buildingType": order.building_type,
            "totalPrice": order.total_price,
            "cancelReason": order.cancel_reason,
            "cancelledAt": order.cancelled_at,
            "dateSold": order.date_sold,
            "salesRepName": _full_name(order.sales_rep),
        }
        for order in orders
    ]


def get_customers(params):
    query = User.query.join(Role, User.role_id == Role.id).filter(Role.name == ROLE_CUSTOMER)
    if params.get("name"):
        query = query.filter(_name_match(params["name"]))
    if params.get("email"):
        query = query.filter(_contains(User.email, params["email"]))

    customers = query.order_by(User.last_name.asc()).limit(_limit(params)).all()
    counts = _order_counts(Order.customer_id, [user.id for user in customers])
    return [
        {
            "id": user.id,
            "name": user.full_name,
            "email": user.email,
            "phone": user.phone,
            "isActive": user.active,
            "orderCount": counts.get(user.id, 0),
            "createdAt": user.created_at,
        }
        for user in customers
    ]


TOOL_FUNCTIONS = {
    "getOrders": get_orders,
    "getOrderStats": get_order_stats,
    "getTickets": get_tickets,
    "getUsers": get_users,
    "getPayData": get_pay_data,
    "getDepositStatus": get_deposit_status,
    "getCancellations": get_cancellations,
    "getCustomers": get_customers,
}


def execute_tool(name, args):
    handler = TOOL_FUNCTIONS.get(name)
    if handler is None:
        raise ValueError(f"Unknown tool: {name}")
    return _json_safe(handler(dict(args or {})))


def _string(description):
    return {"type": "STRING", "description": description}


def _number(description):
    return {"type": "NUMBER", "description": description}


def _boolean(description):
    return {"type": "BOOLEAN", "description": description}


_LIMIT_PARAM = _number("Max results (default 50)")

TOOL_DECLARATIONS = [
    {
        "name": "getOrders",
        "description": "Search and filter orders by status, date range, sales rep, customer, "
        "building type, state, or installer. Returns up to 50 orders with key details.",
        "properties": {
            "status": _string("Order status: ACTIVE, COMPLETED, CANCELLED, or ON_HOLD"),
            "dateFrom": _string("Start date (ISO format, e.g. 2025-01-01)"),
            "dateTo": _string("End date (ISO format)"),
            "salesRepName": _string("Sales rep first or last name"),
            "customerName": _string("Customer name (partial match)"),
            "buildingType": _string("Building type (partial match)"),
            "state": _string("Delivery state (partial match)"),
            "installer": _string("Installer name (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getOrderStats",
        "description": "Get aggregate order statistics (count and total revenue) grouped by "
        "status, month, salesRep, buildingType, or state. Useful for summary/analytics questions.",
        "properties": {
            "groupBy": _string("Group by: status, month, salesRep, buildingType, or state"),
            "dateFrom": _string("Start date (ISO format)"),
            "dateTo": _string("End date (ISO format)"),
            "status": _string("Filter to specific status before grouping"),
        },
    },
    {
        "name": "getTickets",
        "description": "Search tickets (BST workflow) by status (OPEN, IN_PROGRESS, PENDING, "
        "RESOLVED, CLOSED), type (WELCOME_CALL, LPP, BUILDING_UPDATE, etc.), priority, or assignee.",
        "properties": {
            "status": _string("Ticket status: OPEN, IN_PROGRESS, PENDING, RESOLVED, CLOSED"),
            "type": _string(
                "Ticket type: WELCOME_CALL, LPP, BUILDING_UPDATE, INFO_UPDATE, "
                "MANUFACTURER_CHANGE, OTHER"
            ),
            "priority": _string("Priority: LOW, NORMAL, HIGH, URGENT"),
            "assigneeName": _string("Assignee name (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getUsers",
        "description": "List users/sales reps by role, office, or active status. Never returns passwords.",
        "properties": {
            "role": _string("Role name (partial match, e.g. 'Sales', 'Admin')"),
            "office": _string("Office name (partial match, e.g. 'Marion', 'Harbor')"),
            "isActive": _boolean("Filter by active status"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getPayData",
        "description": "Get monthly pay ledger data including buildings sold, commissions, "
        "bonuses, salary, deductions, and final pay amounts for sales reps.",
        "properties": {
            "month": _number("Month number (1-12)"),
            "year": _number("Year (e.g. 2025)"),
            "salesRepName": _string("Sales rep name (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getDepositStatus",
        "description": "Get deposit collection tracking across orders. Filter by collected "
        "status or charge status (Ready, Charged, Declined, Refunded, Accepted After Decline).",
        "properties": {
            "collected": _boolean("Filter by deposit collected (true/false)"),
            "chargeStatus": _string("Deposit charge status (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getCancellations",
        "description": "Get cancelled orders with cancel reasons, dates, and sales rep info.",
        "properties": {
            "dateFrom": _string("Start date (ISO format)"),
            "dateTo": _string("End date (ISO format)"),
            "salesRepName": _string("Sales rep name (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
    {
        "name": "getCustomers",
        "description": "Search customer profiles with order counts.",
        "properties": {
            "name": _string("Customer name (partial match)"),
            "email": _string("Customer email (partial match)"),
            "limit": _LIMIT_PARAM,
        },
    },
]


def build_tool():
    declarations = [
        genai_types.FunctionDeclaration(
            name=decl["name"],
            description=decl["description"],
            parameters=genai_types.Schema(
                type="OBJECT",
                properties={
                    key: genai_types.Schema(**schema)
                    for key, schema in decl["properties"].items()
                },
            ),
        )
        for decl in TOOL_DECLARATIONS
    ]
    return genai_types.Tool(function_declarations=declarations)


def build_contents(messages):
    """Chat history in Gemini's shape; anything not from the user is the model."""
    contents = []
    for message in messages:
        role = "user" if message.get("role") == "user" else "model"
        contents.append(
            genai_types.Content(
                role=role, parts=[genai_types.Part.from_text(text=str(message.get("content") or ""))]
            )
        )
    return contents


def friendly_error(exc):
    text = str(exc)
    if "429" in text or "quota" in text or "Too Many Requests" in text:
        return RATE_LIMIT_MESSAGE
    if "401" in text or "API_KEY_INVALID" in text or "PERMISSION_DENIED" in text:
        return INVALID_KEY_MESSAGE
    return GENERIC_ERROR_MESSAGE


def sse_event(payload):
    return f"data: {json.dumps(payload)}\n\n"


def _tool_response_part(name, args):
    try:
        result = {"result": execute_tool(name, args)}
    except Exception as exc:  # noqa: BLE001 - tool errors go back to the model
        db.session.rollback()
        current_app.logger.warning("AI tool %s failed: %s", name, exc)
        result = {"error": str(exc) or "Tool execution failed"}
    return genai_types.Part.from_function_response(name=name, response=result)


def run_agent(messages, api_key, client=None):
    """Yield server-sent event strings for one assistant reply."""
    client = client or genai.Client(api_key=api_key)
    config = genai_types.GenerateContentConfig(
        system_instruction=system_prompt(),
        tools=[build_tool()],
        automatic_function_calling=genai_types.AutomaticFunctionCallingConfig(disable=True),
    )
    contents = build_contents(messages)

    try:
        response = client.models.generate_content(
            model=MODEL_NAME, contents=contents, config=config
        )
        tool_round = 0
        while tool_round < MAX_TOOL_ROUNDS:
            calls = response.function_calls or []
            if not calls:
                break

            parts = []
            for call in calls:
                yield sse_event({"type": "tool", "tool": call.name})
                parts.append(_tool_response_part(call.name, call.args))

            contents.append(response.candidates[0].content)
            contents.append(genai_types.Content(role="user", parts=parts))
            response = client.models.generate_content(
                model=MODEL_NAME, contents=contents, config=config
            )
            tool_round += 1

        text = response.text or ""
        for start in range(0, len(text), TEXT_CHUNK_SIZE):
            yield sse_event({"type": "text", "content": text[start:start + TEXT_CHUNK_SIZE]})
        yield sse_event({"type": "done"})
    except Exception as exc:  # noqa: BLE001 - reported to the client as an event
        current_app.logger.exception("AI agent stream error: %s", exc)
        yield sse_event({"type": "error", "content": friendly_error(exc)})
