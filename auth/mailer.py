"""
auth/mailer.py -- Transactional email for the authentication flows.

Three messages: verify your email, reset your password, welcome aboard.
EmailService sends them through AWS SES; in development mode it logs the
recipient and subject instead of sending (the body is never logged because
it carries a live token).

Delivery is best-effort everywhere except resend-verification. Providers hand
sends to a task scheduler (FastAPI BackgroundTasks in the HTTP layer,
InlineTasks otherwise) wrapped in deliver_best_effort(), so a failed send is
logged and never rolls back the state change that preceded it.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings

logger = logging.getLogger("shopfront.auth.mailer")


class Mailer(Protocol):
    def send_verification_email(self, email: str, token: str) -> bool: ...

    def send_password_reset_email(self, email: str, token: str) -> bool: ...

    def send_welcome_email(self, email: str, name: Optional[str]) -> bool: ...


class TaskScheduler(Protocol):
    """Anything with BackgroundTasks' add_task signature."""

    def add_task(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None: ...


class InlineTasks:
    """Scheduler that runs the task immediately. Used outside a request."""

    def add_task(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        func(*args, **kwargs)


def deliver_best_effort(send: Callable[..., bool], *args: Any) -> None:
    """Run one mailer call; log and swallow any failure."""
    try:
        delivered = send(*args)
    except Exception:
        logger.exception("Email delivery raised in %s", getattr(send, "__name__", "send"))
        return
    if not delivered:
        logger.warning("Email delivery failed in %s", getattr(send, "__name__", "send"))


class EmailService:
    """Mailer backed by AWS SES.

    Attributes:
        from_email / from_name: sender shown to recipients
        app_url: base URL for links embedded in messages
        development_mode: log instead of sending
    """

    def __init__(self, settings: Settings, ses_client: Any = None) -> None:
        self.from_email = settings.email_from
        self.from_name = settings.email_from_name
        self.app_url = settings.app_url.rstrip("/")
        self.app_name = settings.app_name
        self.verification_hours = settings.verification_token_hours
        self.reset_hours = settings.reset_token_hours
        self.development_mode = settings.email_development_mode

        if ses_client is not None:
            self.ses_client = ses_client
        elif self.development_mode:
            self.ses_client = None
            logger.info("Email service in development mode (emails will be logged)")
        else:
            self.ses_client = boto3.client("ses", region_name=settings.aws_region)
            logger.info("AWS SES client initialized")

    def send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Send one message. Returns False on any delivery error, never raises."""
        if self.ses_client is None:
            logger.info("EMAIL (development mode, not sent) to=%s subject=%r", to_email, subject)
            return True

        try:
            response = self.ses_client.send_email(
                Source=f"{self.from_name} <{self.from_email}>",
                Destination={"ToAddresses": [to_email]},
                Message={
                    "Subject": {"Charset": "UTF-8", "Data": subject},
                    "Body": {
                        "Html": {"Charset": "UTF-8", "Data": html_body},
                        "Text": {"Charset": "UTF-8", "Data": text_body},
                    },
                },
            )
        except ClientError as exc:
            error = exc.response.get("Error", {})
            logger.error("SES error sending to %s: %s - %s", to_email, error.get("Code"), error.get("Message"))
            return False
        except BotoCoreError as exc:
            logger.error("SES transport error sending to %s: %s", to_email, exc)
            return False

        logger.info("Email sent to %s (MessageId: %s)", to_email, response.get("MessageId", "unknown"))
        return True

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _render(self, heading: str, paragraphs: list[str], link: Optional[str] = None, label: str = "") -> str:
        body = "".join(f"<p>{p}</p>" for p in paragraphs)
        button = ""
        if link:
            button = (
                f'<p><a href="{html.escape(link)}" style="background:#4A90E2;color:#fff;padding:12px 30px;'
                f'text-decoration:none;border-radius:5px;display:inline-block">{label}</a></p>'
                f'<p style="word-break:break-all">{html.escape(link)}</p>'
            )
        year = datetime.now(timezone.utc).year
        return (
            '<!DOCTYPE html><html><body style="font-family:Arial,sans-serif;color:#333">'
            f'<div style="max-width:600px;margin:0 auto;padding:20px"><h2>{heading}</h2>{body}{button}'
            f'<p style="color:#999;font-size:12px">&copy; {year} {html.escape(self.app_name)}</p>'
            "</div></body></html>"
        )

    def send_verification_email(self, email: str, token: str) -> bool:
        link = f"{self.app_url}/auth/verify-email?token={token}"
        subject = f"Verify Your Email - {self.app_name}"
        html_body = self._render(
            f"Welcome to {html.escape(self.app_name)}!",
            [
                "Thank you for signing up! Please verify your email address.",
                f"This link expires in {self.verification_hours} hours.",
            ],
            link,
            "Verify Email Address",
        )
        text_body = f"Verify your email address: {link}\nThis link expires in {self.verification_hours} hours."
        return self.send_email(email, subject, html_body, text_body)

    def send_password_reset_email(self, email: str, token: str) -> bool:
        link = f"{self.app_url}/auth/reset-password-confirm?token={token}"
        subject = f"Reset Your Password - {self.app_name}"
        html_body = self._render(
            "Password reset requested",
            [
                "Someone asked to reset the password for this account.",
                f"This link expires in {self.reset_hours} hour(s). If it wasn't you, ignore this email.",
            ],
            link,
            "Reset Password",
        )
        text_body = f"Reset your password: {link}\nThis link expires in {self.reset_hours} hour(s)."
        return self.send_email(email, subject, html_body, text_body)

    def send_welcome_email(self, email: str, name: Optional[str]) -> bool:
        greeting = f"Hi {html.escape(name)}," if name else "Hello,"
        subject = f"Welcome to {self.app_name}!"
        html_body = self._render(
            f"Welcome to {html.escape(self.app_name)}!",
            [greeting, "Your email is verified. You can now sign in and start shopping."],
        )
        text_body = f"{'Hi ' + name + ',' if name else 'Hello,'}\nYour email is verified."
        return self.send_email(email, subject, html_body, text_body)
