import unittest

from tests.helpers import AppTestCase, make_order, make_user

from bbd_app.constants import ROLE_BST, ROLE_MANAGER, ROLE_SALES_REP
from bbd_app.errors import ApiError
from bbd_app.models import TicketActivity
from bbd_app.tickets import add_note, create_ticket, next_ticket_number, update_ticket


def _actions(ticket):
    return [
        activity.action
        for activity in TicketActivity.query.filter_by(ticket_id=ticket.id)
        .order_by(TicketActivity.id.asc())
        .all()
    ]


class TicketServiceTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.staff = make_user(ROLE_BST, first_name="Bea", last_name="Staff")
        self.order = make_order()

    def test_numbers_are_sequential(self):
        self.assertEqual(next_ticket_number(), "TKT-00001")
        first = create_ticket({"orderId": self.order.id, "subject": "Welcome call"}, self.staff)
        second = create_ticket({"orderId": self.order.id, "subject": "Permit"}, self.staff)
        self.assertEqual(first.ticket_number, "TKT-00001")
        self.assertEqual(second.ticket_number, "TKT-00002")

    def test_validation(self):
        with self.assertRaises(ApiError) as ctx:
            create_ticket({"subject": "  "}, self.staff)
        self.assertEqual(
            ctx.exception.errors,
            {"orderId": "Order is required", "subject": "Subject is required"},
        )

        with self.assertRaises(ApiError) as ctx:
            create_ticket({"orderId": self.order.id, "subject": "x" * 201}, self.staff)
        self.assertIn("200 characters", ctx.exception.errors["subject"])

        with self.assertRaises(ApiError) as ctx:
            create_ticket({"orderId": 999999, "subject": "Lost"}, self.staff)
        self.assertEqual(ctx.exception.status, 404)

        with self.assertRaises(ApiError) as ctx:
            create_ticket({"orderId": self.order.id, "subject": "Odd", "type": "PARTY"}, self.staff)
        self.assertEqual(ctx.exception.message, "Invalid type: PARTY")

    def test_create_with_assignee_logs_assignment(self):
        assignee = make_user(ROLE_BST, first_name="Ivy", last_name="Helper")
        ticket = create_ticket(
            {
                "orderId": self.order.id,
                "subject": "Schedule install",
                "priority": "HIGH",
                "assignedToId": assignee.id,
            },
            self.staff,
        )
        self.assertEqual(ticket.status, "OPEN")
        self.assertEqual(ticket.assigned_to_id, assignee.id)
        self.assertEqual(_actions(ticket), ["CREATED", "ASSIGNED"])

    def test_resolve_then_reopen(self):
        ticket = create_ticket({"orderId": self.order.id, "subject": "Leak"}, self.staff)

        update_ticket(ticket, {"status": "RESOLVED", "resolution": "Sealed"}, self.staff)
        self.assertIsNotNone(ticket.resolved_at)
        self.assertIsNone(ticket.closed_at)

        update_ticket(ticket, {"status": "CLOSED"}, self.staff)
        self.assertIsNotNone(ticket.closed_at)

        update_ticket(ticket, {"status": "IN_PROGRESS"}, self.staff)
        self.assertIsNone(ticket.resolved_at)
        self.assertIsNone(ticket.closed_at)
        self.assertEqual(_actions(ticket), ["CREATED", "RESOLVED", "CLOSED", "REOPENED"])

    def test_priority_and_assignment_changes(self):
        helper = make_user(ROLE_BST, first_name="Ivy", last_name="Helper")
        ticket = create_ticket({"orderId": self.order.id, "subject": "Colors"}, self.staff)

        update_ticket(ticket, {"priority": "URGENT", "assignedToId": helper.id}, self.staff)
        update_ticket(ticket, {"assignedToId": None}, self.staff)

        self.assertEqual(ticket.priority, "URGENT")
        self.assertIsNone(ticket.assigned_to_id)
        self.assertEqual(
            _actions(ticket), ["CREATED", "PRIORITY_CHANGED", "ASSIGNED", "UNASSIGNED"]
        )

    def test_notes(self):
        ticket = create_ticket({"orderId": self.order.id, "subject": "Anchors"}, self.staff)
        with self.assertRaises(ApiError):
            add_note(ticket, "   ", False, self.staff)

        note = add_note(ticket, "Called the customer", True, self.staff)
        self.assertTrue(note.is_internal)
        self.assertEqual(_actions(ticket)[-1], "NOTE_ADDED")


class TicketApiTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.order = make_order()

    def test_sales_rep_cannot_create(self):
        self.login(make_user(ROLE_SALES_REP))
        resp = self.post("/api/tickets", json={"orderId": self.order.id, "subject": "Hi"})
        self.assertEqual(resp.status_code, 403)

    def test_manager_creates_and_lists(self):
        self.login(make_user(ROLE_MANAGER))
        resp = self.post(
            "/api/tickets",
            json={"orderId": self.order.id, "subject": "Site prep", "type": "LPP"},
        )
        self.assertEqual(resp.status_code, 201)
        created = resp.get_json()["data"]
        self.assertEqual(created["ticketNumber"], "TKT-00001")

        listing = self.get(f"/api/tickets?orderId={self.order.id}").get_json()["data"]
        self.assertEqual(listing["total"], 1)
        self.assertEqual(listing["items"][0]["subject"], "Site prep")

    def test_validation_errors_are_reported(self):
        self.login(make_user(ROLE_BST))
        resp = self.post("/api/tickets", json={})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Validation failed")
        self.assertIn("subject", resp.get_json()["errors"])


if __name__ == "__main__":
    unittest.main()
