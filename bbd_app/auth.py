"""Session identity, permission checks and admin impersonation."""

from flask import session
from flask_login import UserMixin, current_user

from bbd_app import db
from bbd_app.constants import ROLE_ADMIN, ROLE_BST, ROLE_CUSTOMER, ROLE_MANAGER
from bbd_app.errors import ApiError, Forbidden, NotFound, Unauthorized
from bbd_app.models import User

IMPERSONATE_USER_KEY = "impersonate_user_id"
IMPERSONATE_CUSTOMER_KEY = "impersonate_customer_email"


class TransientCustomer(UserMixin):
    """Customer identity for an email that has orders but no account."""

    role_name = ROLE_CUSTOMER
    permission_names = []
    is_admin = False
    is_transient = True
    office = None
    department = None
    phone = None
    must_change_password = False
    original_user = None

    def __init__(self, email, first_name="", last_name=""):
        self.email = email
        self.first_name = first_name or ""
        self.last_name = last_name or ""
        self.id = f"customer_{email}"

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip() or self.email

    def get_id(self):
        return self.id


def has_permission(user, *names):
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    if user.role_name == ROLE_ADMIN:
        return True
    held = set(user.permission_names)
    return any(name in held for name in names)


def has_role(user, *roles):
    return user is not None and getattr(user, "role_name", None) in roles


def can_view_all_orders(user):
    return has_permission(user, "orders.view_all")


def is_staff_editor(user):
    return has_role(user, ROLE_ADMIN, ROLE_MANAGER, ROLE_BST)


def original_user_of(user):
    return getattr(user, "original_user", None) or user


def is_impersonating(user=None):
    user = user if user is not None else current_user
    return getattr(user, "original_user", None) is not None


def require_auth():
    if not current_user or not current_user.is_authenticated:
        raise Unauthorized()
    return current_user._get_current_object()


def require_permission(*names):
    user = require_auth()
    if not has_permission(user, *names):
        raise Forbidden()
    return user


def require_roles(*roles, message="Forbidden"):
    user = require_auth()
    if not has_role(user, *roles):
        raise Forbidden(message)
    return user


def require_admin(message="Admin access required"):
    return require_roles(ROLE_ADMIN, message=message)


def is_order_customer(user, order):
    if getattr(user, "is_transient", False):
        return bool(order.customer_email) and order.customer_email.lower() == user.email.lower()
    return order.customer_id is not None and order.customer_id == user.id


def is_order_sales_rep(user, order):
    return not getattr(user, "is_transient", False) and order.sales_rep_id == user.id


def session_user_payload(user):
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role_name,
        "permissions": list(user.permission_names),
        "office": user.office,
        "mustChangePassword": bool(user.must_change_password),
    }


def _transient_customer(email):
    from bbd_app.order_process import get_orders_by_customer_email

    orders = get_orders_by_customer_email(email, limit=1)
    if orders:
        return TransientCustomer(email, orders[0]["firstName"], orders[0]["lastName"])
    return TransientCustomer(email)


def resolve_effective_user(real_user):
    """Swap in the impersonated identity when the admin has one active."""
    if real_user is None or not real_user.is_admin:
        session.pop(IMPERSONATE_USER_KEY, None)
        session.pop(IMPERSONATE_CUSTOMER_KEY, None)
        return real_user

    target_id = session.get(IMPERSONATE_USER_KEY)
    if target_id is not None:
        target = db.session.get(User, target_id)
        if target is None or not target.is_active:
            session.pop(IMPERSONATE_USER_KEY, None)
            return real_user
        target.original_user = real_user
        return target

    customer_email = session.get(IMPERSONATE_CUSTOMER_KEY)
    if customer_email:
        target = _transient_customer(customer_email)
        target.original_user = real_user
        return target

    return real_user


def start_impersonation(user_id=None, customer_email=None):
    user = require_auth()
    actual = original_user_of(user)
    if not actual.is_admin:
        raise Forbidden("Forbidden - Admin access required")
    if is_impersonating(user):
        raise ApiError("Cannot nest impersonation. Exit current view first.")
    if not user_id and not customer_email:
        raise ApiError("userId or customerEmail is required")

    if user_id:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise NotFound("User not found or inactive")
        if user_id == actual.id:
            raise ApiError("Cannot impersonate yourself")
        target = db.session.get(User, user_id)
        if target is None or not target.is_active:
            raise NotFound("User not found or inactive")
        session[IMPERSONATE_USER_KEY] = target.id
        target.original_user = actual
        return target

    email = customer_email.strip().lower()
    if email == (actual.email or "").lower():
        raise ApiError("Cannot impersonate yourself")
    existing = User.query.filter(db.func.lower(User.email) == email).first()
    if existing is not None:
        if not existing.is_active:
            raise NotFound("User not found or inactive")
        session[IMPERSONATE_USER_KEY] = existing.id
        existing.original_user = actual
        return existing

    session[IMPERSONATE_CUSTOMER_KEY] = email
    target = _transient_customer(email)
    target.original_user = actual
    return target


def stop_impersonation():
    user = require_auth()
    if not is_impersonating(user):
        raise ApiError("Not currently impersonating")
    session.pop(IMPERSONATE_USER_KEY, None)
    session.pop(IMPERSONATE_CUSTOMER_KEY, None)
    return original_user_of(user)
