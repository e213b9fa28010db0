import datetime
import unittest
from decimal import Decimal
from io import BytesIO

from openpyxl import Workbook
from werkzeug.datastructures import FileStorage

from tests.helpers import AppTestCase, make_order, make_user

from bbd_app.constants import ROLE_ADMIN, ROLE_SALES_REP
from bbd_app.models import OrderActivity, OrderChange
from bbd_app.order_changes_import import import_order_changes

HEADER = (
    "Order Number,Date of Change,Sales rep,Old Order Total,New Order Total,"
    "Sabrina Process,Change Type,Additional Notes\n"
)


def upload(text, filename="changes.csv"):
    return FileStorage(stream=BytesIO(text.encode("utf-8")), filename=filename)


class OrderChangeImportTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.rep = make_user(ROLE_SALES_REP, first_name="Rita", last_name="Moreno")
        self.order = make_order(self.rep, order_number="BBD-2001")

    def _csv(self):
        return HEADER + (
            'BBD-2001,03/15/2026,Rita Moreno,"$12,500.00","$13,100.00",Yes,Size change,Wider doors\n'
            "BBD-9999,03/16/2026,Rita Moreno,,,No,Color,Unknown order\n"
            "BBD-2001,someday,Rita Moreno,,,No,Color,Bad date\n"
            ",03/18/2026,,,,,,Blank order number\n"
        )

    def test_import_reports_rows(self):
        result = import_order_changes(upload(self._csv()))

        self.assertEqual(
            (result.total, result.imported, result.skipped), (4, 1, 3)
        )
        self.assertEqual(
            [(e["row"], e["error"]) for e in result.errors],
            [(3, "Order #BBD-9999 not found"), (4, "Invalid or missing change date")],
        )

        change = OrderChange.query.one()
        self.assertEqual(change.order_id, self.order.id)
        self.assertEqual(change.change_date, datetime.datetime(2026, 3, 15))
        self.assertEqual(change.old_order_total, Decimal("12500.00"))
        self.assertEqual(change.new_order_total, Decimal("13100.00"))
        self.assertTrue(change.sabrina_process)
        self.assertEqual(change.sales_rep_id, self.rep.id)
        self.assertEqual(change.change_type, "Size change")

    def test_import_xlsx(self):
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(HEADER.strip().split(","))
        sheet.append(["BBD-2001", datetime.datetime(2026, 3, 20), "Rita", 12500, 12900.5,
                      "no", "Upgrade", "From the sheet"])
        sheet.append([None] * 8)
        buffer = BytesIO()
        workbook.save(buffer)

        upload = FileStorage(stream=BytesIO(buffer.getvalue()), filename="changes.xlsx")
        result = import_order_changes(upload)

        self.assertEqual((result.total, result.imported), (1, 1))
        change = OrderChange.query.one()
        self.assertEqual(change.change_date, datetime.datetime(2026, 3, 20))
        self.assertEqual(change.new_order_total, Decimal("12900.50"))
        self.assertFalse(change.sabrina_process)
        self.assertEqual(change.sales_rep_id, self.rep.id)

    def test_reimport_skips_duplicates(self):
        import_order_changes(upload(self._csv()))
        result = import_order_changes(upload(self._csv()))
        self.assertEqual(result.imported, 0)
        self.assertEqual(result.skipped, 4)
        self.assertEqual(OrderChange.query.count(), 1)

    def test_header_only_file(self):
        self.assertIsNone(import_order_changes(upload(HEADER)))

    def test_import_endpoint(self):
        self.login(make_user(ROLE_ADMIN))
        resp = self.post("/api/order-changes/import", data={}, content_type="multipart/form-data")
        self.assertEqual(resp.get_json()["error"], "No file provided")

        resp = self.post(
            "/api/order-changes/import",
            data={"file": (BytesIO(HEADER.encode()), "empty.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.get_json()["error"], "No data rows found in CSV")

        resp = self.post(
            "/api/order-changes/import",
            data={"file": (BytesIO(self._csv().encode()), "changes.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["data"]["imported"], 1)


class OrderChangeApiTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.admin = make_user(ROLE_ADMIN)
        self.order = make_order(self.admin, order_number="BBD-3001", customer_name="Lee Park")
        self.login(self.admin)

    def test_create_update_delete(self):
        resp = self.post(
            "/api/order-changes",
            json={
                "orderId": self.order.id,
                "changeDate": "2026-04-02",
                "changeType": "Upgrade",
                "newOrderTotal": "15000",
                "sabrinaProcess": True,
            },
        )
        self.assertEqual(resp.status_code, 201)
        change_id = resp.get_json()["data"]["id"]

        resp = self.patch(f"/api/order-changes/{change_id}", json={"newOrderTotal": "abc"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("newOrderTotal", resp.get_json()["errors"])

        listing = self.get("/api/order-changes?search=lee").get_json()["data"]
        self.assertEqual(listing["total"], 1)

        self.assertEqual(self.delete(f"/api/order-changes/{change_id}").status_code, 200)
        self.assertEqual(self.get(f"/api/order-changes/{change_id}").status_code, 404)

    def test_create_requires_order_and_date(self):
        resp = self.post("/api/order-changes", json={"changeType": "Upgrade"})
        self.assertEqual(resp.status_code, 400)

    def test_revisions_are_numbered_per_order(self):
        resp = self.post(
            "/api/revisions",
            json={
                "orderId": self.order.id,
                "newTotalPrice": "11250.50",
                "changingManufacturer": False,
                "originalManufacturer": "Eagle",
                "revisionFee": "0",
                "paymentMethod": "Card",
            },
        )
        self.assertEqual(resp.status_code, 201)
        first = resp.get_json()["data"]
        self.assertEqual(first["revisionNumber"], "Revision1")
        self.assertEqual(first["orderTotalDiff"], 1250.5)
        self.assertIsNone(first["originalManufacturer"])
        self.assertIsNone(first["paymentMethod"])

        resp = self.post(
            "/api/revisions",
            json={
                "orderId": self.order.id,
                "changingManufacturer": True,
                "originalManufacturer": "Eagle",
                "newManufacturer": "Titan",
                "revisionFee": "75",
                "paymentMethod": "Card",
            },
        )
        second = resp.get_json()["data"]
        self.assertEqual(second["revisionNumber"], "Revision2")
        self.assertEqual(second["newManufacturer"], "Titan")
        self.assertEqual(second["paymentMethod"], "Card")

        self.assertEqual(
            OrderActivity.query.filter_by(order_id=self.order.id, type="REVISION_CREATED").count(), 2
        )
        listing = self.get(f"/api/revisions?orderId={self.order.id}").get_json()["data"]
        self.assertEqual(len(listing), 2)

    def test_revision_requires_order(self):
        resp = self.post("/api/revisions", json={})
        self.assertEqual(resp.get_json()["error"], "Order ID is required")


if __name__ == "__main__":
    unittest.main()
