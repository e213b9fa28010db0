from flask import Blueprint

from bbd_app import db
from bbd_app.auth import require_permission
from bbd_app.constants import ROLE_ADMIN
from bbd_app.errors import ApiError, ok
from bbd_app.models import Permission, Role, User
from bbd_app.routes import get_or_404, json_body

roles_bp = Blueprint("roles", __name__, url_prefix="/api")


def _role_payload(role, user_count=None):
    data = role.to_dict()
    if user_count is not None:
        data["userCount"] = user_count
    return data


def _load_permissions(permission_ids):
    if not isinstance(permission_ids, list):
        raise ApiError("Invalid permission IDs")
    try:
        ids = {int(value) for value in permission_ids}
    except (TypeError, ValueError):
        raise ApiError("Invalid permission IDs")
    permissions = Permission.query.filter(Permission.id.in_(ids)).all() if ids else []
    if len(permissions) != len(ids):
        raise ApiError("One or more permissions not found")
    return permissions


def _name_taken(name, exclude_id=None):
    query = Role.query.filter(Role.name == name)
    if exclude_id is not None:
        query = query.filter(Role.id != exclude_id)
    return query.first() is not None


@roles_bp.route("/roles", methods=["GET"])
def list_roles():
    require_permission("roles.view")
    counts = dict(
        db.session.query(User.role_id, db.func.count(User.id)).group_by(User.role_id).all()
    )
    roles = Role.query.order_by(Role.name.asc()).all()
    return ok([_role_payload(role, counts.get(role.id, 0)) for role in roles])


@roles_bp.route("/roles", methods=["POST"])
def create_role():
    require_permission("roles.create")
    data = json_body()
    name = (data.get("name") or "").strip()
    if not name:
        raise ApiError("Role name is required")
    if _name_taken(name):
        raise ApiError("Role name already exists")

    role = Role(name=name, description=(data.get("description") or "").strip() or None)
    if data.get("permissionIds"):
        role.permissions = _load_permissions(data["permissionIds"])
    db.session.add(role)
    db.session.commit()
    return ok(_role_payload(role), 201)


@roles_bp.route("/roles/<int:role_id>", methods=["GET"])
def get_role(role_id):
    require_permission("roles.view")
    role = get_or_404(Role, role_id, "Role not found")
    return ok(_role_payload(role, len(role.users)))


@roles_bp.route("/roles/<int:role_id>", methods=["PATCH"])
def update_role(role_id):
    require_permission("roles.edit")
    role = get_or_404(Role, role_id, "Role not found")
    if role.is_system:
        raise ApiError("Cannot modify system roles")

    data = json_body()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ApiError("Role name is required")
        if _name_taken(name, exclude_id=role.id):
            raise ApiError("Role name already exists")
        role.name = name
    if "description" in data:
        role.description = (data.get("description") or "").strip() or None

    db.session.commit()
    return ok(_role_payload(role))


@roles_bp.route("/roles/<int:role_id>", methods=["DELETE"])
def delete_role(role_id):
    require_permission("roles.delete")
    role = get_or_404(Role, role_id, "Role not found")
    if role.is_system:
        raise ApiError("Cannot delete system roles")
    if role.users:
        raise ApiError("Cannot delete role with assigned users")

    db.session.delete(role)
    db.session.commit()
    return ok({"id": role_id})


@roles_bp.route("/roles/<int:role_id>/permissions", methods=["PUT"])
def replace_role_permissions(role_id):
    require_permission("roles.edit")
    role = get_or_404(Role, role_id, "Role not found")
    if role.is_system and role.name == ROLE_ADMIN:
        raise ApiError("Cannot modify Admin role permissions")

    role.permissions = _load_permissions(json_body().get("permissionIds"))
    db.session.commit()
    return ok(_role_payload(role))


@roles_bp.route("/permissions", methods=["GET"])
def list_permissions():
    require_permission("roles.view")
    permissions = Permission.query.order_by(Permission.category.asc(), Permission.name.asc()).all()
    grouped = {}
    for permission in permissions:
        grouped.setdefault(permission.category, []).append(permission.to_dict())
    return ok({"permissions": [perm.to_dict() for perm in permissions], "grouped": grouped})
