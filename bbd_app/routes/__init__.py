from flask import request

from bbd_app import csrf, db
from bbd_app.errors import NotFound


def json_body():
    return request.get_json(silent=True) or {}


def get_or_404(model, ident, message="Not found"):
    try:
        ident = int(ident) if isinstance(ident, str) and ident.isdigit() else ident
        obj = db.session.get(model, ident)
    except (TypeError, ValueError):
        obj = None
    if obj is None:
        raise NotFound(message)
    return obj


def register_blueprints(app):
    from bbd_app.routes.agent import agent_bp
    from bbd_app.routes.auth import auth_bp
    from bbd_app.routes.bst import bst_bp
    from bbd_app.routes.dashboard import dashboard_bp
    from bbd_app.routes.documents import documents_bp
    from bbd_app.routes.files import files_bp
    from bbd_app.routes.manufacturers import manufacturers_bp
    from bbd_app.routes.messages import messages_bp
    from bbd_app.routes.op import op_bp
    from bbd_app.routes.order_changes import order_changes_bp
    from bbd_app.routes.orders import orders_bp
    from bbd_app.routes.pay import pay_bp
    from bbd_app.routes.roles import roles_bp
    from bbd_app.routes.tickets import tickets_bp
    from bbd_app.routes.users import users_bp

    for blueprint in (
        auth_bp,
        users_bp,
        roles_bp,
        orders_bp,
        op_bp,
        tickets_bp,
        bst_bp,
        pay_bp,
        order_changes_bp,
        files_bp,
        documents_bp,
        messages_bp,
        manufacturers_bp,
        dashboard_bp,
        agent_bp,
    ):
        # Session-cookie JSON API; forms are not rendered server side.
        csrf.exempt(blueprint)
        app.register_blueprint(blueprint)
