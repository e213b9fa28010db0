from dataclasses import dataclass, field
from typing import List

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from bbd_app import db
from bbd_app.common_import_utils import (
    clean_str,
    parse_currency,
    parse_datetime_value,
    parse_yes,
)
from bbd_app.models import Order, OrderChange, User
from utils.excel_utils import iter_rows_from_upload

ORDER_NUMBER_HEADER = "Order Number"
CHANGE_DATE_HEADER = "Date of Change"
SALES_REP_HEADER = "Sales rep"
NOTES_HEADER = "Additional Notes"

TEXT_FIELDS = {
    "Order Form Name": "order_form_name",
    "Manufacturer": "manufacturer",
    "Uploads": "uploads_url",
    "Change Type": "change_type",
    "Deposit Charged": "deposit_charged",
    "Rex Process": "rex_process",
    "Cust Email": "customer_email",
    "New Sales": "new_sales_ref",
    "Revisions": "revisions_ref",
    "Cancellations": "cancellations_ref",
}

CURRENCY_FIELDS = {
    "Old Order Total": "old_order_total",
    "New Order Total": "new_order_total",
    "Old Deposit Total": "old_deposit_total",
    "New Deposit Total": "new_deposit_total",
    "Order Total Difference": "order_total_diff",
    "Deposit difference": "deposit_diff",
}

BOOLEAN_FIELDS = {
    "Sabrina Process": "sabrina_process",
    "Updated numbers in New Sale": "updated_in_new_sale",
}


@dataclass
class OrderChangeImportResult:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: List[dict] = field(default_factory=list)

    def add_error(self, row_number, order_number, message):
        self.errors.append({"row": row_number, "orderNumber": order_number, "error": message})
        self.skipped += 1

    def to_dict(self):
        return {
            "total": self.total,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _sales_rep_lookup():
    lookup = {}
    for user in User.query.all():
        lookup[user.full_name.lower()] = user.id
        if user.first_name:
            # Exports sometimes carry only the first name.
            lookup.setdefault(user.first_name.lower(), user.id)
    return lookup


def _row_value(row, header):
    return clean_str(row.get(header))


def import_order_changes(upload):
    """Import order change rows from a CSV or XLSX upload.

    Returns ``None`` when the upload has no data rows.
    """
    _headers, rows = iter_rows_from_upload(upload)
    if not rows:
        return None

    result = OrderChangeImportResult(total=len(rows))

    order_numbers = {_row_value(row, ORDER_NUMBER_HEADER) for row in rows} - {""}
    order_map = {
        order.order_number: order.id
        for order in Order.query.filter(Order.order_number.in_(order_numbers)).all()
    }
    rep_lookup = _sales_rep_lookup()

    for index, row in enumerate(rows):
        row_number = index + 2
        order_number = _row_value(row, ORDER_NUMBER_HEADER)
        if not order_number:
            result.skipped += 1
            continue

        order_id = order_map.get(order_number)
        if order_id is None:
            result.add_error(row_number, order_number, f"Order #{order_number} not found")
            continue

        change_date = parse_datetime_value(row.get(CHANGE_DATE_HEADER))
        if change_date is None:
            result.add_error(row_number, order_number, "Invalid or missing change date")
            continue

        notes = _row_value(row, NOTES_HEADER) or None
        duplicate = OrderChange.query.filter_by(
            order_id=order_id, change_date=change_date, additional_notes=notes
        ).first()
        if duplicate is not None:
            result.skipped += 1
            continue

        rep_name = _row_value(row, SALES_REP_HEADER).lower()
        change = OrderChange(
            order_id=order_id,
            change_date=change_date,
            sales_rep_id=rep_lookup.get(rep_name) if rep_name else None,
            additional_notes=notes,
        )
        for header, attr in TEXT_FIELDS.items():
            setattr(change, attr, _row_value(row, header) or None)
        for header, attr in CURRENCY_FIELDS.items():
            setattr(change, attr, parse_currency(row.get(header)))
        for header, attr in BOOLEAN_FIELDS.items():
            setattr(change, attr, parse_yes(row.get(header)))

        try:
            db.session.add(change)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.warning("Order change row %s failed: %s", row_number, exc)
            result.add_error(row_number, order_number, str(exc))
            continue
        result.imported += 1

    return result
