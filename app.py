import threading

import click

from bbd_app import create_app, db, login_manager
from bbd_app.auth import resolve_effective_user
from bbd_app.models import User
from bbd_app.seed import seed_demo_users, seed_permissions_roles_stages

app = create_app()


@login_manager.user_loader
def load_user(user_id):
    # Flask-Login can resolve the session user before the before_request hook
    # runs on a fresh database.
    ensure_bootstrap()
    try:
        user_obj = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
    if user_obj is None or not user_obj.is_active:
        return None
    return resolve_effective_user(user_obj)


def bootstrap_db():
    # Creates tables on the default bind and the Order Process bind.
    db.create_all()
    seed_permissions_roles_stages()


@app.cli.command("initdb")
def initdb():
    """Create tables and seed permissions, roles and order stages."""
    bootstrap_db()
    print("Database initialized with permissions, roles and order stages.")


@app.cli.command("seed")
@click.option("--password", default=None, help="Password for the demo accounts.")
def seed(password):
    """Bootstrap the database and add the demo accounts."""
    bootstrap_db()
    created = seed_demo_users(password) if password else seed_demo_users()
    if created:
        print("Created demo users: " + ", ".join(created))
    else:
        print("Demo users already exist.")


_bootstrap_lock = threading.Lock()
_bootstrapped = False


def ensure_bootstrap():
    global _bootstrapped
    if _bootstrapped:
        return
    with _bootstrap_lock:
        if _bootstrapped:
            return
        try:
            bootstrap_db()
            _bootstrapped = True
        except Exception as exc:
            db.session.rollback()
            app.logger.exception("Database bootstrap failed: %s", exc)


@app.before_request
def _ensure_db_ready():
    ensure_bootstrap()


if __name__ == "__main__":
    with app.app_context():
        bootstrap_db()
    app.run(debug=True)
