import re

from flask import Blueprint, current_app, request

from bbd_app import db
from bbd_app.auth import require_admin, require_permission
from bbd_app.common_import_utils import form_truthy, page_args, parse_int_field
from bbd_app.constants import OFFICES, ROLE_ADMIN
from bbd_app.emailer import send_email, welcome_email
from bbd_app.errors import ApiError, ok
from bbd_app.models import Role, User
from bbd_app.passwords import reset_to_temp_password
from bbd_app.routes import get_or_404, json_body

users_bp = Blueprint("users", __name__, url_prefix="/api/users")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SORT_COLUMNS = {
    "email": User.email,
    "firstName": User.first_name,
    "lastName": User.last_name,
    "createdAt": User.created_at,
}


def _email_taken(email, exclude_id=None):
    query = User.query.filter(db.func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def _load_role(role_id):
    role_id, _ = parse_int_field(role_id, "roleId")
    return db.session.get(Role, role_id) if role_id else None


def _validate_office(office):
    if office and office not in OFFICES:
        raise ApiError(f"Office must be one of: {', '.join(OFFICES)}")
    return office or None


@users_bp.route("", methods=["GET"])
def list_users():
    require_permission("users.view")
    page, page_size = page_args(request.args, default_size=10, max_size=100)
    search = (request.args.get("search") or "").strip()
    role_id, _ = parse_int_field(request.args.get("roleId"), "roleId")

    query = User.query
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            db.or_(
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    if role_id:
        query = query.filter(User.role_id == role_id)

    column = SORT_COLUMNS.get(request.args.get("sortBy"), User.created_at)
    column = column.asc() if request.args.get("sortOrder") == "asc" else column.desc()

    total = query.count()
    users = query.order_by(column).offset((page - 1) * page_size).limit(page_size).all()
    return ok(
        {
            "items": [user.to_dict() for user in users],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": -(-total // page_size),
        }
    )


@users_bp.route("", methods=["POST"])
def create_user():
    actor = require_permission("users.create")
    data = json_body()

    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    first_name = (data.get("firstName") or "").strip()
    last_name = (data.get("lastName") or "").strip()

    errors = {}
    if not EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email address"
    if len(password) < 8:
        errors["password"] = "Password must be at least 8 characters"
    if not first_name:
        errors["firstName"] = "First name is required"
    if not last_name:
        errors["lastName"] = "Last name is required"
    if not data.get("roleId"):
        errors["roleId"] = "Role is required"
    if errors:
        raise ApiError("Validation failed", errors=errors)

    if _email_taken(email):
        raise ApiError("Validation failed", errors={"email": "Email already in use"})
    role = _load_role(data.get("roleId"))
    if role is None:
        raise ApiError("Validation failed", errors={"roleId": "Role not found"})

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=(data.get("phone") or "").strip() or None,
        office=_validate_office(data.get("office")),
        department=(data.get("department") or "").strip() or None,
        role_id=role.id,
        active=form_truthy(data.get("isActive", True)),
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("User %s created by %s", user.email, actor.email)

    if form_truthy(data.get("sendWelcomeEmail")):
        login_url = f"{current_app.config['APP_URL']}/login"
        subject, html, text = welcome_email(user.first_name, login_url, password)
        send_email(user.email, subject, html, text)

    return ok(user.to_dict(), 201)


@users_bp.route("/<int:user_id>", methods=["GET"])
def get_user(user_id):
    require_permission("users.view")
    user = get_or_404(User, user_id, "User not found")
    return ok(user.to_dict(include_permissions=True))


@users_bp.route("/<int:user_id>", methods=["PATCH"])
def update_user(user_id):
    require_permission("users.edit")
    user = get_or_404(User, user_id, "User not found")
    data = json_body()

    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ApiError("Invalid email address")
        if _email_taken(email, exclude_id=user.id):
            raise ApiError("Email already in use")
        user.email = email
    if "roleId" in data:
        role = _load_role(data.get("roleId"))
        if role is None:
            raise ApiError("Role not found")
        user.role_id = role.id
    if data.get("password"):
        if len(data["password"]) < 8:
            raise ApiError("Password must be at least 8 characters")
        user.set_password(data["password"])

    for key, attr in (
        ("firstName", "first_name"),
        ("lastName", "last_name"),
        ("phone", "phone"),
        ("department", "department"),
        ("avatar", "avatar"),
    ):
        if key in data:
            setattr(user, attr, (data.get(key) or "").strip() or None)
    if not user.first_name or not user.last_name:
        raise ApiError("First and last name are required")
    if "office" in data:
        user.office = _validate_office(data.get("office"))
    if "isActive" in data:
        user.active = form_truthy(data.get("isActive"))

    db.session.commit()
    return ok(user.to_dict())


@users_bp.route("/<int:user_id>", methods=["DELETE"])
def delete_user(user_id):
    require_permission("users.delete")
    user = get_or_404(User, user_id, "User not found")

    if user.role_name == ROLE_ADMIN:
        active_admins = (
            User.query.join(Role)
            .filter(Role.name == ROLE_ADMIN, User.active.is_(True))
            .count()
        )
        if active_admins <= 1:
            raise ApiError("Cannot delete the last admin user")

    # Accounts are deactivated, never removed; orders and audit rows point at them.
    user.active = False
    db.session.commit()
    return ok({"id": user.id, "isActive": False})


@users_bp.route("/<int:user_id>/reset-password", methods=["POST"])
def reset_user_password(user_id):
    actor = require_admin()
    user = get_or_404(User, user_id, "User not found")
    temp_password = reset_to_temp_password(user)
    current_app.logger.info("Password for %s reset by %s", user.email, actor.email)
    return ok({"tempPassword": temp_password})
