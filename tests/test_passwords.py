import datetime
import unittest

from tests.helpers import AppTestCase, make_user

from bbd_app import db
from bbd_app.constants import PASSWORD_HISTORY_DEPTH
from bbd_app.errors import ApiError
from bbd_app.models import PasswordHistory, PasswordResetToken, utcnow
from bbd_app.passwords import (
    change_password,
    generate_temp_password,
    issue_reset_token,
    reset_password_with_token,
    reset_to_temp_password,
    validate_password_complexity,
)


class PasswordComplexityTests(unittest.TestCase):
    def test_strong_password_passes_every_rule(self):
        self.assertEqual(validate_password_complexity("Sturdy#Barn2024"), [])

    def test_reports_each_failed_rule_in_order(self):
        self.assertEqual(
            validate_password_complexity("short"),
            [
                "At least 12 characters",
                "At least one uppercase letter",
                "At least one number",
                "At least one special character",
            ],
        )

    def test_missing_password_fails_everything(self):
        self.assertEqual(len(validate_password_complexity(None)), 5)

    def test_temp_passwords_always_meet_the_rules(self):
        seen = set()
        for _ in range(25):
            password = generate_temp_password()
            self.assertEqual(len(password), 16)
            self.assertEqual(validate_password_complexity(password), [])
            seen.add(password)
        self.assertEqual(len(seen), 25)


class PasswordChangeTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.user = make_user(password="Original#Pass1")

    def _change(self, current, new):
        change_password(self.user, current, new)

    def test_change_updates_hash_and_clears_flag(self):
        self.user.must_change_password = True
        db.session.commit()

        self._change("Original#Pass1", "Second#Passw0rd")

        self.assertTrue(self.user.verify_password("Second#Passw0rd"))
        self.assertFalse(self.user.must_change_password)

    def test_weak_password_lists_failures(self):
        with self.assertRaises(ApiError) as ctx:
            self._change("Original#Pass1", "weak")
        self.assertEqual(ctx.exception.message, "Password does not meet requirements")
        self.assertIn("At least 12 characters", ctx.exception.details)

    def test_wrong_current_password(self):
        with self.assertRaises(ApiError) as ctx:
            self._change("Not#TheRight1", "Second#Passw0rd")
        self.assertEqual(ctx.exception.message, "Current password is incorrect")

    def test_new_password_must_differ_from_current(self):
        with self.assertRaises(ApiError) as ctx:
            self._change("Original#Pass1", "Original#Pass1")
        self.assertEqual(
            ctx.exception.message, "New password cannot be the same as your current password"
        )

    def test_recent_passwords_cannot_be_reused(self):
        self._change("Original#Pass1", "Second#Passw0rd")
        with self.assertRaises(ApiError) as ctx:
            self._change("Second#Passw0rd", "Original#Pass1")
        self.assertEqual(
            ctx.exception.message,
            f"Cannot reuse any of your last {PASSWORD_HISTORY_DEPTH} passwords",
        )

    def test_history_is_trimmed(self):
        passwords = ["Original#Pass1", "Second#Passw0rd", "Third#Passw0rd", "Fourth#Passw0rd",
                     "Fifth#Passw0rd1"]
        for current, new in zip(passwords, passwords[1:]):
            self._change(current, new)

        self.assertEqual(
            PasswordHistory.query.filter_by(user_id=self.user.id).count(),
            PASSWORD_HISTORY_DEPTH,
        )
        # The oldest password has aged out of the history window.
        self._change("Fifth#Passw0rd1", "Original#Pass1")

    def test_reset_to_temp_password_forces_change(self):
        temp = reset_to_temp_password(self.user)

        self.assertTrue(self.user.verify_password(temp))
        self.assertTrue(self.user.must_change_password)
        self.assertEqual(PasswordHistory.query.filter_by(user_id=self.user.id).count(), 1)


class ResetTokenTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.user = make_user()

    def test_token_resets_password_once(self):
        token = issue_reset_token(self.user).token

        reset_password_with_token(token, "brand-new-pass")

        self.assertTrue(self.user.verify_password("brand-new-pass"))
        with self.assertRaises(ApiError) as ctx:
            reset_password_with_token(token, "another-pass")
        self.assertEqual(ctx.exception.message, "Invalid or expired reset link")

    def test_issuing_replaces_previous_tokens(self):
        issue_reset_token(self.user)
        issue_reset_token(self.user)
        self.assertEqual(PasswordResetToken.query.filter_by(user_id=self.user.id).count(), 1)

    def test_short_password_rejected(self):
        token = issue_reset_token(self.user).token
        with self.assertRaises(ApiError) as ctx:
            reset_password_with_token(token, "short")
        self.assertEqual(ctx.exception.message, "Password must be at least 8 characters")

    def test_expired_token_is_removed(self):
        token = issue_reset_token(self.user)
        token.expires_at = utcnow() - datetime.timedelta(minutes=1)
        db.session.commit()
        value = token.token

        with self.assertRaises(ApiError) as ctx:
            reset_password_with_token(value, "brand-new-pass")
        self.assertEqual(ctx.exception.message, "Reset link has expired")
        self.assertIsNone(PasswordResetToken.query.filter_by(token=value).first())


if __name__ == "__main__":
    unittest.main()
