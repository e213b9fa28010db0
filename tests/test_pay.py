import datetime
import unittest
from decimal import Decimal
from types import SimpleNamespace

from tests.helpers import AppTestCase, make_order, make_user

from bbd_app import db
from bbd_app.constants import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP
from bbd_app.models import OfficePayPlan, OfficePayPlanTier, PayAuditLog, PayLedger, PayPlan
from bbd_app.pay import calculate_formula_for_rep, find_matching_tier, generate_ledger


def tier(tier_type, min_value, max_value, bonus_amount, bonus_type="FLAT"):
    return SimpleNamespace(
        tier_type=tier_type,
        min_value=min_value,
        max_value=max_value,
        bonus_amount=bonus_amount,
        bonus_type=bonus_type,
    )


TIERS = [
    tier("BUILDINGS_SOLD", 0, 4, 0),
    tier("BUILDINGS_SOLD", 5, 9, 100),
    tier("BUILDINGS_SOLD", 10, None, 150),
    tier("ORDER_TOTAL", 0, 50000, 1, "PERCENTAGE"),
    tier("ORDER_TOTAL", "50000.01", None, 1000),
]


class FormulaTests(unittest.TestCase):
    def test_matching_tier_bounds_are_inclusive(self):
        buildings = [t for t in TIERS if t.tier_type == "BUILDINGS_SOLD"]
        self.assertIs(find_matching_tier(4, buildings), buildings[0])
        self.assertIs(find_matching_tier(5, buildings), buildings[1])
        self.assertIs(find_matching_tier(250, buildings), buildings[2])
        self.assertIsNone(find_matching_tier(-1, buildings))

    def test_percentage_commission_and_salary(self):
        result = calculate_formula_for_rep(6, Decimal("40000"), Decimal("60000"), TIERS)
        self.assertEqual(result["tier_bonus"], Decimal("600.00"))
        self.assertEqual(result["monthly_salary"], Decimal("5000.00"))
        self.assertEqual(result["commission_amount"], Decimal("400.00"))
        self.assertEqual(result["plan_total"], Decimal("6000.00"))

    def test_flat_commission_without_salary(self):
        result = calculate_formula_for_rep(12, 80000, 0, TIERS)
        self.assertEqual(result["tier_bonus"], Decimal("1800.00"))
        self.assertEqual(result["monthly_salary"], Decimal("0"))
        self.assertEqual(result["commission_amount"], Decimal("1000.00"))
        self.assertEqual(result["plan_total"], Decimal("2800.00"))

    def test_no_tiers_pays_salary_only(self):
        result = calculate_formula_for_rep(3, 1000, 50000, [])
        self.assertEqual(result["monthly_salary"], Decimal("4166.67"))
        self.assertEqual(result["plan_total"], Decimal("4166.67"))


class PayFixture(AppTestCase):
    def setUp(self):
        super().setUp()
        self.rep = make_user(ROLE_SALES_REP, first_name="Rex", office="Marion Office")
        plan = OfficePayPlan(office="Marion Office", month=3, year=2026)
        plan.tiers = [
            OfficePayPlanTier(tier_type="BUILDINGS_SOLD", min_value=0, max_value=None,
                              bonus_amount=Decimal("50"), sort_order=0),
            OfficePayPlanTier(tier_type="ORDER_TOTAL", min_value=0, max_value=None,
                              bonus_amount=Decimal("2"), bonus_type="PERCENTAGE", sort_order=1),
        ]
        db.session.add(plan)
        db.session.add(PayPlan(sales_rep_id=self.rep.id, month=3, year=2026, salary=Decimal("36000")))
        db.session.commit()

        make_order(self.rep, total_price=Decimal("10000"), date_sold=datetime.datetime(2026, 3, 2))
        make_order(self.rep, total_price=Decimal("15000"), date_sold=datetime.datetime(2026, 3, 30))
        make_order(self.rep, total_price=Decimal("99999"), date_sold=datetime.datetime(2026, 4, 1))
        make_order(self.rep, total_price=Decimal("5000"), status="CANCELLED",
                   date_sold=datetime.datetime(2026, 3, 15))

    def _entry(self):
        return PayLedger.query.filter_by(sales_rep_id=self.rep.id, month=3, year=2026).one()


class LedgerTests(PayFixture):
    def test_generate_ledger(self):
        generate_ledger(3, 2026)
        entry = self._entry()
        self.assertEqual(entry.buildings_sold, 2)
        self.assertEqual(entry.total_order_amount, Decimal("25000.00"))
        self.assertEqual(entry.tier_bonus, Decimal("100.00"))
        self.assertEqual(entry.monthly_salary, Decimal("3000.00"))
        self.assertEqual(entry.commission_amount, Decimal("500.00"))
        self.assertEqual(entry.plan_total, Decimal("3600.00"))
        self.assertEqual(entry.final_amount, Decimal("3600.00"))
        self.assertEqual(entry.status, "PENDING")

    def test_regenerate_keeps_adjustments(self):
        generate_ledger(3, 2026)
        entry = self._entry()
        entry.adjustment = Decimal("-100")
        entry.cancellation_deduction = Decimal("250")
        db.session.commit()

        generate_ledger(3, 2026)
        entry = self._entry()
        self.assertEqual(PayLedger.query.filter_by(month=3, year=2026).count(), 1)
        self.assertEqual(entry.final_amount, Decimal("3250.00"))

    def test_inactive_reps_are_skipped(self):
        make_user(ROLE_SALES_REP, office="Marion Office", active=False)
        entries = generate_ledger(3, 2026)
        self.assertEqual([e.sales_rep_id for e in entries], [self.rep.id])


class PayApiTests(PayFixture):
    def test_generate_and_adjust_via_api(self):
        admin = make_user(ROLE_ADMIN)
        self.login(admin)

        resp = self.post("/api/pay/ledger/generate", json={"month": 3, "year": 2026})
        self.assertEqual(resp.status_code, 200)
        entry_id = resp.get_json()["data"][0]["id"]

        resp = self.patch(
            f"/api/pay/ledger/{entry_id}",
            json={"adjustment": "150", "adjustmentNote": "Spiff", "status": "APPROVED"},
        )
        data = resp.get_json()["data"]
        self.assertEqual(data["adjustment"], 150.0)
        self.assertEqual(data["finalAmount"], 3750.0)
        self.assertEqual(data["reviewedBy"]["id"], admin.id)

        resp = self.patch(f"/api/pay/ledger/{entry_id}", json={"status": "PENDING"})
        self.assertIsNone(resp.get_json()["data"]["reviewedBy"])

        resp = self.patch(f"/api/pay/ledger/{entry_id}", json={"status": "PAID"})
        self.assertEqual(resp.get_json()["error"], "Invalid status: PAID")

        actions = [log.action for log in PayAuditLog.query.order_by(PayAuditLog.id).all()]
        self.assertEqual(actions, ["LEDGER_GENERATED", "LEDGER_ADJUSTED", "LEDGER_ADJUSTED"])

        ledger = self.get("/api/pay/ledger?month=3&year=2026").get_json()["data"]
        self.assertEqual(len(ledger), 1)
        self.assertEqual(ledger[0]["payPlan"]["salary"], 36000.0)

    def test_month_and_year_required(self):
        self.login(make_user(ROLE_ADMIN))
        resp = self.get("/api/pay/ledger?month=13&year=2026")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Valid month (1-12) and year are required")

    def test_manager_cannot_view_ledger(self):
        self.login(make_user(ROLE_MANAGER))
        self.assertEqual(self.get("/api/pay/ledger?month=3&year=2026").status_code, 403)

    def test_save_plan_replaces_line_items(self):
        self.login(make_user(ROLE_ADMIN))
        body = {
            "salesRepId": self.rep.id,
            "month": 3,
            "year": 2026,
            "salary": 48000,
            "cancellationDeduction": 75,
            "lineItems": [{"name": "Phone stipend", "amount": 50}],
        }
        self.assertEqual(self.put("/api/pay/plans", json=body).status_code, 200)
        body["lineItems"] = [{"name": "Car allowance", "amount": 300}, {"name": "Gas", "amount": 40}]
        self.put("/api/pay/plans", json=body)

        plans = self.get("/api/pay/plans?month=3&year=2026").get_json()["data"]
        mine = [p for p in plans if p["id"] == self.rep.id][0]
        self.assertEqual(mine["salary"], 48000.0)
        self.assertEqual(
            [item["name"] for item in mine["payPlan"]["lineItems"]], ["Car allowance", "Gas"]
        )
        self.assertEqual(mine["orderStats"]["buildingsSold"], 2)

        body["lineItems"] = [{"amount": 5}]
        resp = self.put("/api/pay/plans", json=body)
        self.assertEqual(resp.status_code, 400)

    def test_office_plan_rejects_unknown_office(self):
        self.login(make_user(ROLE_ADMIN))
        resp = self.put(
            "/api/pay/office-plans",
            json={"office": "Moon Office", "month": 3, "year": 2026, "tiers": []},
        )
        self.assertEqual(resp.status_code, 400)

        plans = self.get("/api/pay/office-plans?month=3&year=2026").get_json()["data"]
        self.assertEqual(len(plans["Marion Office"]["tiers"]), 2)
        self.assertIsNone(plans["Harbor Office"])


if __name__ == "__main__":
    unittest.main()
