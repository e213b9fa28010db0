import datetime
from decimal import Decimal, InvalidOperation

DATE_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y-%m-%d",
    "%Y/%m/%d",
)


def clean_str(value):
    """
    Convert any cell or JSON value to a clean string.

    - None -> ""
    - Datetime/date -> "YYYY-MM-DD"
    - Anything else -> stripped str
    """
    if value is None:
        return ""

    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.strftime("%Y-%m-%d")

    return str(value).strip()


def parse_int_field(value, label):
    value = clean_str(value)
    if value == "":
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, f"{label} must be a whole number."


def parse_decimal_field(value, label):
    if isinstance(value, bool):
        return None, f"{label} must be a number."
    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
    else:
        value = clean_str(value)
        if value == "":
            return None, None
        try:
            amount = Decimal(value)
        except InvalidOperation:
            return None, f"{label} must be a number."
    if not amount.is_finite():
        return None, f"{label} must be a number."
    return amount, None


def parse_currency(value):
    """``"$1,234.50"`` -> ``Decimal("1234.50")``; blanks and junk -> ``None``."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        amount = Decimal(str(value))
    else:
        text = clean_str(value).replace("$", "").replace(",", "").strip()
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    return amount if amount.is_finite() else None


def parse_yes(value):
    return clean_str(value).lower() == "yes"


def form_truthy(value):
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


def parse_datetime_value(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    text = clean_str(value)
    if text.endswith("Z"):
        text = text[:-1]
    try:
        parsed = datetime.datetime.fromisoformat(text)
        return parsed.replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_date_field(value, label):
    if value is None or clean_str(value) == "":
        return None, None
    parsed = parse_datetime_value(value)
    if parsed is None:
        return None, f"{label} must be a valid date."
    return parsed, None


def stringify_cell(value):
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        value = value.date()
    if isinstance(value, datetime.time):
        return value.strftime("%H:%M")
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def page_args(args, default_size=20, max_size=None):
    page, _ = parse_int_field(args.get("page"), "page")
    page_size, _ = parse_int_field(args.get("pageSize") or args.get("limit"), "pageSize")
    page = page if page and page > 0 else 1
    page_size = page_size if page_size and page_size > 0 else default_size
    if max_size is not None:
        page_size = min(page_size, max_size)
    return page, page_size
