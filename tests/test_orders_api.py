import unittest

from tests.helpers import AppTestCase, make_order, make_user

from bbd_app import db
from bbd_app.constants import ROLE_ADMIN, ROLE_BST, ROLE_MANAGER, ROLE_SALES_REP
from bbd_app.models import Order, OrderActivity, User


class OrderCrudTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.admin = make_user(ROLE_ADMIN)
        self.login(self.admin)

    def test_create_order_links_customer_and_default_stage(self):
        resp = self.post(
            "/api/orders",
            json={
                "orderNumber": "BBD-1001",
                "customerName": "Morgan Field",
                "customerEmail": "morgan.field@example.com",
                "totalPrice": "18500.00",
                "depositAmount": "1850",
                "deliveryState": "va",
            },
        )
        self.assertEqual(resp.status_code, 201)
        data = resp.get_json()["data"]
        self.assertEqual(data["status"], "ACTIVE")
        self.assertEqual(data["currentStage"]["name"], "Deposit Placed")
        self.assertEqual(data["deliveryState"], "VA")
        self.assertEqual(data["totalPrice"], 18500.0)
        self.assertEqual(data["salesRep"]["id"], self.admin.id)

        customer = User.query.filter_by(email="morgan.field@example.com").one()
        self.assertEqual(customer.role_name, "Customer")
        self.assertEqual(data["customerId"], customer.id)

        activity = OrderActivity.query.filter_by(order_id=data["id"]).one()
        self.assertEqual(activity.type, "ORDER_CREATED")

    def test_create_validation(self):
        make_order(order_number="BBD-DUP")
        resp = self.post("/api/orders", json={"orderNumber": "BBD-DUP", "totalPrice": "-5"})
        self.assertEqual(resp.status_code, 400)
        errors = resp.get_json()["errors"]
        self.assertEqual(errors["orderNumber"], "Order number already exists")
        self.assertEqual(errors["customerName"], "Customer name is required")
        self.assertIn("totalPrice", errors)

    def test_patch_status_stamps_dates(self):
        order = make_order(self.admin)
        resp = self.patch(f"/api/orders/{order.id}", json={"status": "CANCELLED"})
        self.assertEqual(resp.status_code, 200)
        self.assertIsNotNone(resp.get_json()["data"]["cancelledAt"])

        resp = self.patch(f"/api/orders/{order.id}", json={"status": "LOST"})
        self.assertEqual(resp.status_code, 400)

    def test_advance_to_final_stage_completes_order(self):
        order = make_order(self.admin)
        stages = self.get("/api/order-stages").get_json()["data"]
        final = [stage for stage in stages if stage["isFinal"]][0]

        resp = self.post(f"/api/orders/{order.id}/stage", json={"stageId": final["id"]})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["data"]["status"], "COMPLETED")

        history = self.get(f"/api/orders/{order.id}").get_json()["data"]["stageHistory"]
        self.assertEqual(history[-1]["stage"]["name"], final["name"])


class OrderScopeTests(AppTestCase):
    def test_sales_rep_sees_only_own_orders(self):
        rep = make_user(ROLE_SALES_REP)
        other = make_user(ROLE_SALES_REP)
        mine = make_order(rep)
        theirs = make_order(other)
        self.login(rep)

        items = self.get("/api/orders").get_json()["data"]["items"]
        self.assertEqual([item["id"] for item in items], [mine.id])
        self.assertEqual(self.get(f"/api/orders/{theirs.id}").status_code, 403)

    def test_manager_sees_office(self):
        manager = make_user(ROLE_MANAGER, office="Marion Office")
        local_rep = make_user(ROLE_SALES_REP, office="Marion Office")
        remote_rep = make_user(ROLE_SALES_REP, office="Harbor Office")
        local = make_order(local_rep)
        make_order(remote_rep)
        self.login(manager)

        items = self.get("/api/orders").get_json()["data"]["items"]
        self.assertEqual([item["id"] for item in items], [local.id])


class OrderStatusTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.rep = make_user(ROLE_SALES_REP)
        self.order = make_order(self.rep)

    def test_boolean_toggle_logs_activity(self):
        self.login(make_user(ROLE_BST))
        resp = self.patch(
            f"/api/orders/{self.order.id}/status",
            json={"field": "depositCollected", "value": True},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.get_json()["data"]["value"])

        order = db.session.get(Order, self.order.id)
        self.assertTrue(order.deposit_collected)
        self.assertIsNotNone(order.deposit_date)
        activity = OrderActivity.query.filter_by(order_id=order.id, type="STATUS_CHANGED").one()
        self.assertEqual(activity.description, "Deposit Collected changed from No to Yes")

    def test_bst_field_choices(self):
        self.login(make_user(ROLE_BST))
        resp = self.patch(
            f"/api/orders/{self.order.id}/status",
            json={"field": "wcStatus", "value": "Contact Made"},
        )
        self.assertEqual(resp.status_code, 200)
        activity = OrderActivity.query.filter_by(
            order_id=self.order.id, type="BST_STATUS_CHANGED"
        ).one()
        self.assertEqual(activity.description, 'WC Status changed from "Not Set" to "Contact Made"')

        resp = self.patch(
            f"/api/orders/{self.order.id}/status",
            json={"field": "wcStatus", "value": "Maybe"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Invalid value for wcStatus")

    def test_rejects_unknown_field_and_non_boolean(self):
        self.login(self.rep)
        resp = self.patch(f"/api/orders/{self.order.id}/status", json={"field": "bogus", "value": 1})
        self.assertEqual(resp.get_json()["error"], "Invalid field: bogus")
        resp = self.patch(
            f"/api/orders/{self.order.id}/status",
            json={"field": "customerSigned", "value": "yes"},
        )
        self.assertEqual(resp.status_code, 400)

    def test_rep_cannot_toggle_someone_elses_order(self):
        self.login(make_user(ROLE_SALES_REP))
        resp = self.patch(
            f"/api/orders/{self.order.id}/status",
            json={"field": "customerSigned", "value": True},
        )
        self.assertEqual(resp.status_code, 403)


class CancelAndDepositTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.order = make_order(make_user(ROLE_SALES_REP))

    def test_sales_rep_cannot_cancel(self):
        self.login(make_user(ROLE_SALES_REP))
        resp = self.post(f"/api/orders/{self.order.id}/cancel", json={"reason": "Changed mind"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "You don't have permission to cancel orders")

    def test_cancel_records_reason_once(self):
        self.login(make_user(ROLE_BST))
        resp = self.post(f"/api/orders/{self.order.id}/cancel", json={"notes": "no reason"})
        self.assertEqual(resp.get_json()["error"], "Cancellation reason is required")

        resp = self.post(
            f"/api/orders/{self.order.id}/cancel",
            json={"reason": "Customer request", "notes": "Financing fell through"},
        )
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()["data"]
        self.assertEqual(data["status"], "CANCELLED")
        self.assertEqual(data["cancelReason"], "Customer request | Financing fell through")

        resp = self.post(f"/api/orders/{self.order.id}/cancel", json={"reason": "Again"})
        self.assertEqual(resp.get_json()["error"], "Order is already cancelled")

    def test_deposit_charge_status_drives_collection(self):
        self.login(make_user(ROLE_MANAGER))
        resp = self.patch(
            f"/api/orders/{self.order.id}/deposit", json={"depositChargeStatus": "Charged"}
        )
        self.assertTrue(resp.get_json()["data"]["depositCollected"])

        resp = self.patch(
            f"/api/orders/{self.order.id}/deposit",
            json={"depositChargeStatus": "Declined", "depositNotes": "Card expired"},
        )
        data = resp.get_json()["data"]
        self.assertFalse(data["depositCollected"])
        self.assertEqual(data["depositNotes"], "Card expired")

        activity = (
            OrderActivity.query.filter_by(order_id=self.order.id, type="DEPOSIT_STATUS_CHANGED")
            .order_by(OrderActivity.id.desc())
            .first()
        )
        self.assertEqual(
            activity.description,
            'Deposit charge status changed from "Charged" to "Declined". Deposit notes updated',
        )

    def test_deposit_validation(self):
        self.login(make_user(ROLE_MANAGER))
        resp = self.patch(f"/api/orders/{self.order.id}/deposit", json={"depositChargeStatus": "Lost"})
        self.assertEqual(resp.get_json()["error"], "Invalid deposit charge status: Lost")
        resp = self.patch(f"/api/orders/{self.order.id}/deposit", json={})
        self.assertEqual(resp.get_json()["error"], "No changes provided")

    def test_bst_cannot_update_deposit(self):
        self.login(make_user(ROLE_BST))
        resp = self.patch(
            f"/api/orders/{self.order.id}/deposit", json={"depositChargeStatus": "Charged"}
        )
        self.assertEqual(resp.status_code, 403)


if __name__ == "__main__":
    unittest.main()
