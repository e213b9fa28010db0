import datetime
import unittest

from tests.helpers import AppTestCase, make_op_order, make_order, make_user

from bbd_app import db
from bbd_app.bst import (
    get_bst_pipeline,
    get_bst_stage_counts,
    get_bst_stage_label,
    get_bst_tickets,
    get_cancellation_stats,
    get_wc_stage_orders,
)
from bbd_app.constants import ROLE_ADMIN, ROLE_BST, ROLE_SALES_REP
from bbd_app.models import Ticket


class StageLabelTests(unittest.TestCase):
    def test_labels(self):
        self.assertEqual(get_bst_stage_label(None, None), "STM Pending")
        self.assertEqual(get_bst_stage_label("Pending", None), "WC Pending")
        self.assertEqual(get_bst_stage_label("No Contact Made", "Pending"), "No Contact")
        self.assertEqual(get_bst_stage_label("Contact Made", None), "LP&P")
        self.assertEqual(get_bst_stage_label("Contact Made", "Pending"), "LP&P")
        self.assertEqual(get_bst_stage_label("Contact Made", "Ready for Install"), "Ready")
        self.assertEqual(get_bst_stage_label("Something Else", None), "-")


class PipelineTests(AppTestCase):
    def setUp(self):
        super().setUp()
        rfm = "ready_for_manufacturer"
        self.stm = make_op_order(rfm, last_name="Stm")
        self.wc = make_op_order(rfm, last_name="Wc", wc_status="Pending")
        self.nc = make_op_order(rfm, last_name="Nc", wc_status="No Contact Made")
        make_op_order(rfm, last_name="Lpp", wc_status="Contact Made")
        make_op_order(rfm, last_name="LppPending", wc_status="Contact Made", lpp_status="Pending")
        self.ready = make_op_order(
            rfm, last_name="Ready", wc_status="Contact Made", lpp_status="Ready for Install"
        )
        # Not yet with the manufacturer, so outside the pipeline.
        make_op_order("signed", last_name="Early")

    def test_stage_counts(self):
        self.assertEqual(
            get_bst_stage_counts(),
            {
                "stmPending": 1,
                "wcPending": 1,
                "noContactMade": 1,
                "wcDoneLpp": 2,
                "readyToInstall": 1,
            },
        )

    def test_wc_stage_lists(self):
        stages = get_wc_stage_orders()
        self.assertEqual(
            sorted(stages), ["noContactMadeOrders", "stmPendingOrders", "wcPendingOrders"]
        )
        self.assertEqual([o["id"] for o in stages["stmPendingOrders"]], [self.stm.id])
        self.assertEqual([o["id"] for o in stages["wcPendingOrders"]], [self.wc.id])
        self.assertEqual([o["id"] for o in stages["noContactMadeOrders"]], [self.nc.id])

    def test_pipeline_filters_by_stage_and_search(self):
        result = get_bst_pipeline("readyToInstall")
        self.assertEqual([o["id"] for o in result["orders"]], [self.ready.id])

        self.assertEqual(get_bst_pipeline()["total"], 6)
        self.assertEqual(get_bst_pipeline(search="Early")["total"], 0)
        self.assertEqual(get_bst_pipeline(search="nc")["orders"][0]["id"], self.nc.id)

    def test_pipeline_api_access(self):
        self.login(make_user(ROLE_SALES_REP))
        self.assertEqual(self.get("/api/bst/pipeline").status_code, 403)

        self.login(make_user(ROLE_BST))
        resp = self.get("/api/bst/pipeline?stage=wcPending")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([o["id"] for o in resp.get_json()["data"]["orders"]], [self.wc.id])

        resp = self.get("/api/bst/pipeline?stage=bogus")
        self.assertEqual(resp.status_code, 400)

        counts = self.get("/api/bst/tab-counts").get_json()["data"]
        self.assertEqual(counts["pipeline"], 6)


class CancellationStatsTests(AppTestCase):
    def test_week_starts_on_sunday(self):
        # 2026-10-14 is a Wednesday; its week began Sunday 2026-10-11.
        now = datetime.datetime(2026, 10, 14, 15, 30)
        make_op_order("cancelled", cancelled_at=datetime.datetime(2026, 10, 12, 9, 0))
        make_op_order("cancelled", cancelled_at=datetime.datetime(2026, 10, 3, 9, 0))
        make_op_order("cancelled", cancelled_at=datetime.datetime(2026, 9, 20, 9, 0))
        make_op_order("cancelled")
        make_op_order("signed")

        self.assertEqual(
            get_cancellation_stats(now), {"total": 4, "thisMonth": 2, "thisWeek": 1}
        )

    def test_sunday_is_its_own_week_start(self):
        now = datetime.datetime(2026, 10, 11, 8, 0)
        make_op_order("cancelled", cancelled_at=datetime.datetime(2026, 10, 11, 7, 0))
        make_op_order("cancelled", cancelled_at=datetime.datetime(2026, 10, 10, 23, 0))

        stats = get_cancellation_stats(now)
        self.assertEqual(stats["thisWeek"], 1)
        self.assertEqual(stats["thisMonth"], 2)


class BstTicketQueueTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.creator = make_user(ROLE_ADMIN)
        self.order = make_order(self.creator)
        self.counter = 0

    def _ticket(self, status, priority, created_at, **fields):
        self.counter += 1
        values = {
            "ticket_number": f"TKT-{self.counter:05d}",
            "order_id": self.order.id,
            "subject": f"Ticket {self.counter}",
            "created_by_id": self.creator.id,
        }
        values.update(fields)
        ticket = Ticket(status=status, priority=priority, created_at=created_at, **values)
        db.session.add(ticket)
        db.session.commit()
        return ticket

    def test_status_filter_orders_by_priority(self):
        base = datetime.datetime(2026, 5, 1)
        low = self._ticket("OPEN", "LOW", base)
        urgent = self._ticket("OPEN", "URGENT", base - datetime.timedelta(days=3))
        normal = self._ticket("OPEN", "NORMAL", base + datetime.timedelta(days=1))
        high = self._ticket("OPEN", "HIGH", base)
        self._ticket("CLOSED", "URGENT", base)

        result = get_bst_tickets(status="OPEN")
        self.assertEqual(result["total"], 4)
        self.assertEqual(
            [t["id"] for t in result["tickets"]], [urgent.id, high.id, normal.id, low.id]
        )

    def test_active_tickets_precede_done_across_pages(self):
        base = datetime.datetime(2026, 5, 1)
        closed = self._ticket("CLOSED", "NORMAL", base + datetime.timedelta(days=5))
        resolved = self._ticket("RESOLVED", "NORMAL", base + datetime.timedelta(days=4))
        older = self._ticket("OPEN", "NORMAL", base)
        newer = self._ticket("IN_PROGRESS", "LOW", base + datetime.timedelta(days=1))

        first = get_bst_tickets(page=1, page_size=3)
        self.assertEqual(first["total"], 4)
        self.assertEqual([t["id"] for t in first["tickets"]], [newer.id, older.id, closed.id])

        second = get_bst_tickets(page=2, page_size=3)
        self.assertEqual([t["id"] for t in second["tickets"]], [resolved.id])

    def test_filters_narrow_page_and_total(self):
        base = datetime.datetime(2026, 5, 1)
        helper = make_user(ROLE_BST, first_name="Ivy", last_name="Helper")
        other_order = make_order(self.creator, order_number="BBD-7788", customer_name="Dana Oak")
        welcome = self._ticket("OPEN", "HIGH", base, type="WELCOME_CALL", assigned_to_id=helper.id)
        lpp = self._ticket("OPEN", "URGENT", base, type="LPP", subject="Permit anchors")
        update = self._ticket(
            "CLOSED", "HIGH", base, type="BUILDING_UPDATE", order_id=other_order.id
        )

        by_type = get_bst_tickets(ticket_type="LPP")
        self.assertEqual((by_type["total"], [t["id"] for t in by_type["tickets"]]), (1, [lpp.id]))

        by_priority = get_bst_tickets(priority="HIGH")
        self.assertEqual(by_priority["total"], 2)
        self.assertEqual([t["id"] for t in by_priority["tickets"]], [welcome.id, update.id])

        mine = get_bst_tickets(assigned_to_id=helper.id)
        self.assertEqual([t["id"] for t in mine["tickets"]], [welcome.id])

        self.assertEqual(get_bst_tickets(search="anchors")["total"], 1)
        self.assertEqual(get_bst_tickets(search=welcome.ticket_number)["tickets"][0]["id"], welcome.id)
        self.assertEqual(get_bst_tickets(search="7788")["tickets"][0]["id"], update.id)
        self.assertEqual(get_bst_tickets(search="dana")["total"], 1)
        self.assertEqual(get_bst_tickets(status="OPEN", priority="HIGH")["total"], 1)

    def test_ticket_route_filters(self):
        helper = make_user(ROLE_BST, first_name="Ivy", last_name="Helper")
        base = datetime.datetime(2026, 5, 1)
        assigned = self._ticket("OPEN", "NORMAL", base, assigned_to_id=helper.id)
        self._ticket("OPEN", "NORMAL", base)
        self.login(helper)

        resp = self.get("/api/bst/tickets?assignedToMe=true")
        data = resp.get_json()["data"]
        self.assertEqual((data["total"], data["tickets"][0]["id"]), (1, assigned.id))
        self.assertEqual(self.get("/api/bst/tickets?type=PARTY").status_code, 400)
        resp = self.get("/api/bst/tickets?priority=SOON")
        self.assertEqual(resp.get_json()["error"], "Invalid priority: SOON")


if __name__ == "__main__":
    unittest.main()
