"""Reference data every installation needs, plus optional demo accounts."""

from bbd_app import db
from bbd_app.constants import (
    DEFAULT_ORDER_STAGES,
    DEFAULT_PERMISSIONS,
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_DEFINITIONS,
    ROLE_SALES_REP,
)
from bbd_app.models import OrderStage, Permission, Role, User

DEMO_PASSWORD = "admin123"

DEMO_USERS = [
    ("admin@bigbuildingsdirect.com", "Admin", "User", ROLE_ADMIN),
    ("sales@bigbuildingsdirect.com", "John", "Sales", ROLE_SALES_REP),
    ("customer@example.com", "Jane", "Customer", ROLE_CUSTOMER),
]


def seed_permissions():
    existing = {perm.name: perm for perm in Permission.query.all()}
    for name, category, description in DEFAULT_PERMISSIONS:
        perm = existing.get(name)
        if perm is None:
            perm = Permission(name=name)
            db.session.add(perm)
            existing[name] = perm
        perm.category = category
        perm.description = description
    db.session.flush()
    return existing


def seed_roles(permissions):
    roles = {}
    for name, definition in ROLE_DEFINITIONS.items():
        role = Role.query.filter_by(name=name).first()
        if role is None:
            role = Role(name=name)
            db.session.add(role)
        role.description = definition["description"]
        role.is_system = True
        role.permissions = [permissions[perm] for perm in definition["permissions"]]
        roles[name] = role
    db.session.flush()
    return roles


def seed_order_stages():
    existing = {stage.name: stage for stage in OrderStage.query.all()}
    for index, (name, color, is_default, is_final) in enumerate(DEFAULT_ORDER_STAGES, start=1):
        stage = existing.get(name)
        if stage is None:
            stage = OrderStage(name=name)
            db.session.add(stage)
        stage.sort_order = index
        stage.color = color
        stage.is_default = is_default
        stage.is_final = is_final
    db.session.flush()


def seed_permissions_roles_stages():
    permissions = seed_permissions()
    roles = seed_roles(permissions)
    seed_order_stages()
    db.session.commit()
    return roles


def seed_demo_users(password=DEMO_PASSWORD):
    """Create the demo accounts that are missing. Returns the emails created."""
    roles = {role.name: role for role in Role.query.all()}
    created = []
    for email, first_name, last_name, role_name in DEMO_USERS:
        if User.query.filter_by(email=email).first() is not None:
            continue
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            role_id=roles[role_name].id,
        )
        user.set_password(password)
        db.session.add(user)
        created.append(email)
    db.session.commit()
    return created
