import datetime
import unittest
import uuid
from decimal import Decimal

from flask import g

import app
from bbd_app import db
from bbd_app.constants import ROLE_SALES_REP
from bbd_app.models import Order, Role, User
from bbd_app.order_process import OPOrder

PASSWORD = "Sturdy#Barn2024"


class AppTestCase(unittest.TestCase):
    """Runs each test inside an app context against a freshly seeded database."""

    def setUp(self):
        self.ctx = app.app.app_context()
        self.ctx.push()
        app.ensure_bootstrap()
        db.session.remove()
        db.drop_all()
        app.bootstrap_db()
        self.client = app.app.test_client()

    def tearDown(self):
        db.session.rollback()
        db.session.remove()
        self.ctx.pop()

    def login(self, user):
        with self.client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True

    def call(self, method, path, **kwargs):
        # The test app context outlives each request, so drop the cached user.
        g.pop("_login_user", None)
        return self.client.open(path, method=method, **kwargs)

    def get(self, path, **kwargs):
        return self.call("GET", path, **kwargs)

    def post(self, path, **kwargs):
        return self.call("POST", path, **kwargs)

    def patch(self, path, **kwargs):
        return self.call("PATCH", path, **kwargs)

    def put(self, path, **kwargs):
        return self.call("PUT", path, **kwargs)

    def delete(self, path, **kwargs):
        return self.call("DELETE", path, **kwargs)


def make_user(role_name=ROLE_SALES_REP, first_name="Test", last_name=None, office=None,
              password=PASSWORD, active=True, email=None):
    role = Role.query.filter_by(name=role_name).one()
    user = User(
        email=email or f"{uuid.uuid4().hex[:10]}@example.com",
        first_name=first_name,
        last_name=last_name or uuid.uuid4().hex[:6].title(),
        office=office,
        role_id=role.id,
        active=active,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def make_order(sales_rep=None, **fields):
    values = {
        "order_number": f"ORD-{uuid.uuid4().hex[:8].upper()}",
        "customer_name": "Pat Buyer",
        "customer_email": "pat.buyer@example.com",
        "total_price": Decimal("10000.00"),
        "deposit_amount": Decimal("1000.00"),
        "status": "ACTIVE",
        "priority": "NORMAL",
        "date_sold": datetime.datetime(2026, 3, 10),
    }
    values.update(fields)
    order = Order(sales_rep_id=sales_rep.id if sales_rep else None, **values)
    db.session.add(order)
    db.session.commit()
    return order


def make_op_order(status="draft", first_name="Casey", last_name="Client", email=None, **fields):
    values = {
        "order_number": f"OP-{uuid.uuid4().hex[:8].upper()}",
        "status": status,
        "customer": {
            "firstName": first_name,
            "lastName": last_name,
            "email": email or f"{first_name.lower()}.{last_name.lower()}@example.com",
            "state": "VA",
        },
        "building": {"overallWidth": "20", "buildingLength": "30", "manufacturer": "Eagle"},
        "pricing": {"subtotalBeforeTax": "12000", "deposit": "1200"},
        "payment": {"status": "pending", "type": "card"},
    }
    values.update(fields)
    order = OPOrder(**values)
    db.session.add(order)
    db.session.commit()
    return order
