import os

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

try:
    from flask_wtf.csrf import CSRFProtect
except ImportError as exc:  # pragma: no cover - startup dependency guard
    raise ImportError(
        "Flask-WTF is required to run this application. Activate your virtual "
        "environment and install the project with `pip install -e .` "
        "before launching the server."
    ) from exc


BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


def _env_flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name, default):
    raw = os.environ.get(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def create_app():
    instance_dir = os.path.join(BASE_DIR, "instance")

    app = Flask(
        __name__,
        instance_relative_config=True,
        instance_path=instance_dir,
    )

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-bbd-secret")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "SQLALCHEMY_DATABASE_URI",
        "sqlite:///" + os.path.join(instance_dir, "bbd.db"),
    )
    # Order Process store lives behind its own engine.
    app.config["SQLALCHEMY_BINDS"] = {
        "order_process": os.environ.get(
            "ORDER_PROCESS_DATABASE_URI",
            "sqlite:///" + os.path.join(instance_dir, "order_process.db"),
        )
    }
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["WTF_CSRF_ENABLED"] = _env_flag("WTF_CSRF_ENABLED", True)
    app.config["MAX_CONTENT_LENGTH"] = _env_int(
        "MAX_CONTENT_LENGTH", 25 * 1024 * 1024
    )

    app.config["APP_URL"] = os.environ.get("APP_URL", "http://localhost:5000").rstrip("/")

    app.config["STORAGE_ADAPTER"] = os.environ.get("STORAGE_ADAPTER", "local").strip().lower()
    app.config["UPLOAD_FOLDER"] = os.environ.get(
        "UPLOAD_FOLDER", os.path.join(BASE_DIR, "uploads")
    )
    app.config["S3_BUCKET"] = os.environ.get("S3_BUCKET", "")
    app.config["S3_REGION"] = os.environ.get("S3_REGION", "us-east-1")
    app.config["S3_ENDPOINT_URL"] = os.environ.get("S3_ENDPOINT_URL") or None
    app.config["S3_ACCESS_KEY_ID"] = os.environ.get("S3_ACCESS_KEY_ID") or None
    app.config["S3_SECRET_ACCESS_KEY"] = os.environ.get("S3_SECRET_ACCESS_KEY") or None
    app.config["SUPABASE_URL"] = os.environ.get("SUPABASE_URL", "")
    app.config["SUPABASE_SERVICE_KEY"] = os.environ.get("SUPABASE_SERVICE_KEY", "")
    app.config["SUPABASE_BUCKET"] = os.environ.get("SUPABASE_BUCKET", "files")

    app.config["SMTP_HOST"] = os.environ.get("SMTP_HOST", "")
    app.config["SMTP_PORT"] = _env_int("SMTP_PORT", 587)
    app.config["SMTP_USERNAME"] = os.environ.get("SMTP_USERNAME", "")
    app.config["SMTP_PASSWORD"] = os.environ.get("SMTP_PASSWORD", "")
    app.config["SMTP_USE_TLS"] = _env_flag("SMTP_USE_TLS", True)
    app.config["EMAIL_FROM"] = os.environ.get(
        "EMAIL_FROM", "noreply@bigbuildingsdirect.com"
    )

    app.config["GEMINI_API_KEY"] = os.environ.get("GEMINI_API_KEY", "")
    app.config["ORDER_WEBHOOK_SECRET"] = os.environ.get("ORDER_WEBHOOK_SECRET", "")

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    os.makedirs(instance_dir, exist_ok=True)
    if app.config["STORAGE_ADAPTER"] == "local":
        os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    from bbd_app import models, order_process  # noqa: F401
    from bbd_app.errors import register_error_handlers
    from bbd_app.routes import register_blueprints
    from integrations.order_process.routes import order_events_bp

    register_error_handlers(app)
    register_blueprints(app)
    csrf.exempt(order_events_bp)
    app.register_blueprint(order_events_bp)

    return app
