import smtplib
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from flask import current_app

COMPANY_NAME = "Big Buildings Direct"


@dataclass
class EmailResult:
    success: bool
    message_id: str = None
    error: str = None


def send_email(to, subject, html, text=None, reply_to=None):
    """Send one message over SMTP.

    Without ``SMTP_HOST`` nothing leaves the process: the message is logged
    and reported as sent with the ``dev-mode-skip`` id.
    """
    config = current_app.config
    sender = config.get("EMAIL_FROM") or "noreply@bigbuildingsdirect.com"

    if not config.get("SMTP_HOST"):
        current_app.logger.info("Email (dev mode) to=%s subject=%s", to, subject)
        return EmailResult(success=True, message_id="dev-mode-skip")

    message_id = f"<{uuid.uuid4().hex}@{sender.split('@')[-1]}>"
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg["Message-ID"] = message_id
    if reply_to:
        msg["Reply-To"] = reply_to
    if text:
        msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(config["SMTP_HOST"], config.get("SMTP_PORT", 587), timeout=30) as server:
            if config.get("SMTP_USE_TLS", True):
                server.starttls()
            if config.get("SMTP_USERNAME"):
                server.login(config["SMTP_USERNAME"], config.get("SMTP_PASSWORD", ""))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        current_app.logger.exception("Email to %s failed: %s", to, exc)
        return EmailResult(success=False, error=str(exc))

    return EmailResult(success=True, message_id=message_id)


def _layout(heading, body_html):
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #1f2937;">{heading}</h2>'
        f"{body_html}"
        f'<p style="color: #6b7280; font-size: 12px; margin-top: 32px;">{COMPANY_NAME}</p>'
        "</div>"
    )


def _button(url, label):
    return (
        f'<p><a href="{escape(url)}" style="display: inline-block; padding: 12px 24px; '
        'background: #2563eb; color: #ffffff; text-decoration: none; border-radius: 6px;">'
        f"{label}</a></p>"
    )


def signing_request_email(customer_name, document_title, signing_url, sender_name=None):
    subject = f"Please sign: {document_title}"
    intro = f"{escape(sender_name)} has sent you" if sender_name else "You have been sent"
    html = _layout(
        "Document ready for your signature",
        f"<p>Hi {escape(customer_name or 'there')},</p>"
        f"<p>{intro} <strong>{escape(document_title)}</strong> to review and sign.</p>"
        + _button(signing_url, "Review and Sign")
        + f'<p style="color: #6b7280;">Or copy this link: {escape(signing_url)}</p>',
    )
    text = (
        f"Hi {customer_name or 'there'},\n\n"
        f"Please review and sign {document_title}:\n{signing_url}\n"
    )
    return subject, html, text


def welcome_email(first_name, login_url, temp_password=None):
    subject = f"Welcome to {COMPANY_NAME}"
    password_line = (
        f"<p>Your temporary password is <code>{escape(temp_password)}</code>. "
        "You will be asked to change it when you first sign in.</p>"
        if temp_password
        else ""
    )
    html = _layout(
        subject,
        f"<p>Hi {escape(first_name or 'there')},</p>"
        "<p>An account has been created for you.</p>"
        + password_line
        + _button(login_url, "Sign In"),
    )
    text = f"Hi {first_name or 'there'},\n\nAn account has been created for you: {login_url}\n"
    return subject, html, text


def password_reset_email(first_name, reset_url):
    subject = f"Reset Your Password - {COMPANY_NAME}"
    html = _layout(
        "Reset your password",
        f"<p>Hi {escape(first_name or 'there')},</p>"
        "<p>We received a request to reset your password. This link expires in one hour.</p>"
        + _button(reset_url, "Reset Password")
        + "<p>If you did not request this, you can ignore this email.</p>",
    )
    text = f"Hi {first_name or 'there'},\n\nReset your password (valid one hour): {reset_url}\n"
    return subject, html, text
