import secrets

from bbd_app import db
from bbd_app.constants import ROLE_CUSTOMER
from bbd_app.models import Role, User


def _split_name(name):
    parts = (name or "").strip().split()
    if not parts:
        return "Customer", ""
    return parts[0], " ".join(parts[1:])


def find_or_create_customer(email, name=None, phone=None):
    """Return the customer account for ``email``, creating one if needed.

    An existing Customer-role account wins over any other account with the
    same address; failing both, a Customer account with a random password
    is created (the customer signs in via password reset).
    """
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValueError("Customer email is required")

    matches = User.query.filter(db.func.lower(User.email) == normalized).all()
    for user in matches:
        if user.role_name == ROLE_CUSTOMER:
            return user
    if matches:
        return matches[0]

    role = Role.query.filter_by(name=ROLE_CUSTOMER).first()
    if role is None:
        raise RuntimeError("Customer role not found. Run the seed first.")

    first_name, last_name = _split_name(name)
    user = User(
        email=normalized,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role_id=role.id,
        active=True,
    )
    user.set_password(secrets.token_urlsafe(24))
    db.session.add(user)
    db.session.flush()
    return user
