import datetime
import re
import secrets
import string
import uuid

from werkzeug.security import check_password_hash

from bbd_app import db
from bbd_app.constants import PASSWORD_HISTORY_DEPTH, RESET_TOKEN_TTL_SECONDS
from bbd_app.errors import ApiError
from bbd_app.models import PasswordHistory, PasswordResetToken, utcnow

SPECIAL_CHARACTERS = "!@#$%^&*"

PASSWORD_RULES = [
    ("At least 12 characters", lambda pw: len(pw) >= 12),
    ("At least one uppercase letter", lambda pw: re.search(r"[A-Z]", pw) is not None),
    ("At least one lowercase letter", lambda pw: re.search(r"[a-z]", pw) is not None),
    ("At least one number", lambda pw: re.search(r"[0-9]", pw) is not None),
    ("At least one special character", lambda pw: re.search(r"[^A-Za-z0-9]", pw) is not None),
]


def validate_password_complexity(password):
    """Return the labels of every rule the password fails, in rule order."""
    password = password or ""
    return [label for label, check in PASSWORD_RULES if not check(password)]


def generate_temp_password(length=16):
    classes = [
        string.ascii_uppercase,
        string.ascii_lowercase,
        string.digits,
        SPECIAL_CHARACTERS,
    ]
    charset = "".join(classes)
    chars = [secrets.choice(group) for group in classes]
    chars.extend(secrets.choice(charset) for _ in range(max(length, len(classes)) - len(classes)))

    # Fisher-Yates with a CSPRNG.
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def _archive_password(user):
    db.session.add(PasswordHistory(user_id=user.id, password_hash=user.password_hash))
    db.session.flush()
    history = (
        PasswordHistory.query.filter_by(user_id=user.id)
        .order_by(PasswordHistory.created_at.desc(), PasswordHistory.id.desc())
        .all()
    )
    for stale in history[PASSWORD_HISTORY_DEPTH:]:
        db.session.delete(stale)


def change_password(user, current_password, new_password):
    failures = validate_password_complexity(new_password)
    if failures:
        raise ApiError("Password does not meet requirements", details=failures)
    if not user.verify_password(current_password):
        raise ApiError("Current password is incorrect")
    if user.verify_password(new_password):
        raise ApiError("New password cannot be the same as your current password")

    recent = (
        PasswordHistory.query.filter_by(user_id=user.id)
        .order_by(PasswordHistory.created_at.desc(), PasswordHistory.id.desc())
        .limit(PASSWORD_HISTORY_DEPTH)
        .all()
    )
    if any(check_password_hash(entry.password_hash, new_password) for entry in recent):
        raise ApiError(f"Cannot reuse any of your last {PASSWORD_HISTORY_DEPTH} passwords")

    _archive_password(user)
    user.set_password(new_password)
    user.must_change_password = False
    db.session.commit()


def reset_to_temp_password(user):
    temp_password = generate_temp_password()
    _archive_password(user)
    user.set_password(temp_password)
    user.must_change_password = True
    db.session.commit()
    return temp_password


def issue_reset_token(user):
    PasswordResetToken.query.filter_by(user_id=user.id).delete()
    token = PasswordResetToken(
        user_id=user.id,
        token=uuid.uuid4().hex,
        expires_at=utcnow() + datetime.timedelta(seconds=RESET_TOKEN_TTL_SECONDS),
    )
    db.session.add(token)
    db.session.commit()
    return token


def reset_password_with_token(token_value, new_password):
    if not new_password or len(new_password) < 8:
        raise ApiError("Password must be at least 8 characters")

    token = PasswordResetToken.query.filter_by(token=token_value or "").first()
    if token is None:
        raise ApiError("Invalid or expired reset link")
    if token.is_expired:
        db.session.delete(token)
        db.session.commit()
        raise ApiError("Reset link has expired")

    user = token.user
    user.set_password(new_password)
    user.must_change_password = False
    db.session.delete(token)
    db.session.commit()
    return user
