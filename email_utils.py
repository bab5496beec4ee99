"""Outgoing email for Book Bazaar account features."""

from __future__ import annotations

import os
import smtplib
import ssl
from contextlib import contextmanager
from email.message import EmailMessage
from typing import Iterator

from dotenv import load_dotenv

from utils import env_flag, logger

load_dotenv()

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", SMTP_USERNAME)
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Book Bazaar")

SMTP_USE_SSL = env_flag("SMTP_USE_SSL", default=False)
SMTP_USE_TLS = env_flag("SMTP_USE_TLS", default=not SMTP_USE_SSL)
SMTP_REQUIRE_AUTH = env_flag("SMTP_REQUIRE_AUTH", default=True)
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "30"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")


class EmailConfigurationError(RuntimeError):
    """Raised when the email system is not properly configured."""


def is_email_configured() -> bool:
    """Return True if email sending is configured."""
    if SMTP_REQUIRE_AUTH:
        return bool(SMTP_USERNAME and SMTP_PASSWORD)
    return bool(SMTP_HOST and SMTP_PORT)


@contextmanager
def smtp_connection() -> Iterator[smtplib.SMTP]:
    """
    Context manager yielding an SMTP connection with proper security.

    Raises:
        EmailConfigurationError: If SMTP settings are incomplete.
    """
    if not SMTP_HOST or not SMTP_PORT:
        raise EmailConfigurationError("SMTP_HOST/SMTP_PORT are not configured.")
    if SMTP_REQUIRE_AUTH and (not SMTP_USERNAME or not SMTP_PASSWORD):
        raise EmailConfigurationError("SMTP credentials are not configured.")

    context = ssl.create_default_context()
    if SMTP_USE_SSL or SMTP_PORT == 465:
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=context, timeout=SMTP_TIMEOUT)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
    try:
        if SMTP_USE_TLS and not isinstance(server, smtplib.SMTP_SSL):
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
        if SMTP_REQUIRE_AUTH:
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
        yield server
    finally:
        try:
            server.quit()
        except smtplib.SMTPException as exc:
            logger.debug(f"Failed to close SMTP connection cleanly: {exc}")


def build_reset_link(token: str) -> str:
    return f"{FRONTEND_URL.rstrip('/')}/reset-password?token={token}"


def send_password_reset_email(to_email: str, username: str, token: str) -> bool:
    """Mail a reset link. Returns False when SMTP is not configured."""
    if not is_email_configured():
        logger.warning(f"Email not configured; password reset link for {username} was not sent")
        return False

    message = EmailMessage()
    message["Subject"] = "Reset your Book Bazaar password"
    message["From"] = f"{SMTP_FROM_NAME} <{SMTP_FROM_EMAIL}>"
    message["To"] = to_email
    message.set_content(
        f"Hi {username},\n\n"
        f"Someone asked to reset the password for your Book Bazaar account.\n"
        f"Use this link within the next hour:\n\n{build_reset_link(token)}\n\n"
        f"If this wasn't you, you can ignore this email.\n"
    )

    with smtp_connection() as server:
        server.send_message(message)
    logger.info(f"Password reset email sent to {to_email}")
    return True
