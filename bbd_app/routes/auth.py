from flask import Blueprint, current_app
from flask_login import current_user, login_user, logout_user

from bbd_app import db
from bbd_app.auth import (
    is_impersonating,
    original_user_of,
    require_auth,
    session_user_payload,
    start_impersonation,
    stop_impersonation,
)
from bbd_app.emailer import password_reset_email, send_email
from bbd_app.errors import ApiError, Unauthorized, ok
from bbd_app.models import User, utcnow
from bbd_app.passwords import change_password, issue_reset_token, reset_password_with_token
from bbd_app.routes import json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _find_by_email(email):
    email = (email or "").strip().lower()
    if not email:
        return None
    return User.query.filter(db.func.lower(User.email) == email).first()


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    user = _find_by_email(data.get("email"))
    if user is None or not user.is_active or not user.verify_password(data.get("password") or ""):
        raise Unauthorized("Invalid email or password")

    login_user(user, remember=bool(data.get("remember")))
    user.last_login_at = utcnow()
    db.session.commit()
    current_app.logger.info("User %s signed in", user.email)
    return ok(session_user_payload(user))


@auth_bp.route("/logout", methods=["POST"])
def logout():
    stop = is_impersonating() if current_user.is_authenticated else False
    if stop:
        stop_impersonation()
    logout_user()
    return ok({"loggedOut": True})


@auth_bp.route("/me", methods=["GET"])
def me():
    user = require_auth()
    payload = session_user_payload(user)
    payload["isImpersonating"] = is_impersonating(user)
    payload["originalUser"] = (
        session_user_payload(original_user_of(user)) if payload["isImpersonating"] else None
    )
    return ok(payload)


@auth_bp.route("/impersonate", methods=["POST"])
def impersonate():
    data = json_body()
    target = start_impersonation(data.get("userId"), data.get("customerEmail"))
    current_app.logger.info(
        "%s is now viewing as %s", original_user_of(target).email, target.email
    )
    return ok({"impersonatingAs": session_user_payload(target)})


@auth_bp.route("/impersonate", methods=["DELETE"])
def end_impersonation():
    stop_impersonation()
    return ok({"stopImpersonation": True})


@auth_bp.route("/change-password", methods=["POST"])
def change_own_password():
    user = require_auth()
    if getattr(user, "is_transient", False) or is_impersonating(user):
        raise ApiError("Cannot change password while viewing as another user", status=403)
    data = json_body()
    change_password(user, data.get("currentPassword") or "", data.get("newPassword") or "")
    return ok()


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    email = (json_body().get("email") or "").strip()
    if "@" not in email:
        raise ApiError("Invalid email address")

    user = _find_by_email(email)
    if user is None:
        return ok()

    token = issue_reset_token(user)
    reset_url = f"{current_app.config['APP_URL']}/reset-password?token={token.token}"
    subject, html, text = password_reset_email(user.first_name, reset_url)
    result = send_email(user.email, subject, html, text)
    if not result.success:
        current_app.logger.warning("Password reset email to %s failed: %s", user.email, result.error)
    return ok()


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = json_body()
    reset_password_with_token(data.get("token"), data.get("password"))
    return ok({"message": "Password has been reset successfully"})
