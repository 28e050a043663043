from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Protocol

import anyio
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.sanitize import sanitize_for_log
from app.services.audit import log_email_sent

logger = logging.getLogger("rp.email")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

APPLICATION_RECEIVED = "application-received"
GC_INVITATION = "general-competencies-invitation"
SC_INVITATION = "specialized-competencies-invitation"
INTERVIEW_INVITATION = "interview-invitation"
OFFER_LETTER = "offer-letter"
REJECTION = "rejection"

EMAIL_TEMPLATES: dict[str, str] = {
    APPLICATION_RECEIVED: "We received your application",
    GC_INVITATION: "Next step: general competencies assessment",
    SC_INVITATION: "Next step: specialized competencies assessment",
    INTERVIEW_INVITATION: "Interview invitation",
    OFFER_LETTER: "Your offer",
    REJECTION: "Update on your application",
}

STATUS_SENT = "sent"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    template_name: str


@dataclass(frozen=True)
class PendingEmail:
    """An email a handler wants sent once its unit of work has committed."""

    template_name: str
    to: str
    context: dict[str, Any] = field(default_factory=dict)
    person_id: str | None = None
    application_id: str | None = None


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> str: ...


class LoggingEmailSender:
    """Default transport: records what would have been sent."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str:
        self.outbox.append(message)
        logger.info(
            "email_delivery_disabled",
            extra={"template": message.template_name, "to": sanitize_for_log(message.to)},
        )
        return STATUS_SKIPPED


class SmtpEmailSender:
    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender = f"{settings.email_sender_name} <{settings.email_sender_address}>"
        self.reply_to = settings.email_sender_address

    def _deliver(self, message: EmailMessage) -> None:
        msg = MIMEText(message.html, "html", "utf-8")
        msg["To"] = message.to
        msg["From"] = self.sender
        msg["Reply-To"] = self.reply_to
        msg["Subject"] = message.subject
        with smtplib.SMTP(self.host, self.port, timeout=30) as client:
            if self.use_tls:
                client.starttls()
            if self.username:
                client.login(self.username, self.password)
            client.send_message(msg)

    async def send(self, message: EmailMessage) -> str:
        await anyio.to_thread.run_sync(self._deliver, message)
        return STATUS_SENT


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.enable_email and settings.smtp_host:
        return SmtpEmailSender(settings)
    return LoggingEmailSender()


class _TemplateContext(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_template(name: str, context: dict[str, Any]) -> str:
    raw = (TEMPLATE_DIR / f"{name}.html").read_text(encoding="utf-8")
    return raw.format_map(_TemplateContext({k: ("" if v is None else v) for k, v in context.items()}))


def build_message(email: PendingEmail) -> EmailMessage:
    if email.template_name not in EMAIL_TEMPLATES:
        raise KeyError(f"Unknown email template: {email.template_name}")
    return EmailMessage(
        to=email.to,
        subject=EMAIL_TEMPLATES[email.template_name],
        html=render_template(email.template_name, email.context),
        template_name=email.template_name,
    )


async def deliver_pending_emails(
    session: AsyncSession,
    sender: EmailSender,
    emails: list[PendingEmail],
) -> list[dict[str, Any]]:
    """
    Send queued emails after the state change has committed.

    Delivery problems are logged and recorded on the audit trail; they never
    undo or fail the transition that queued them.
    """
    results: list[dict[str, Any]] = []
    for email in emails:
        error: str | None = None
        try:
            status = await sender.send(build_message(email))
        except Exception as exc:  # noqa: BLE001
            status = STATUS_FAILED
            error = sanitize_for_log(str(exc))
            logger.warning(
                "email_delivery_failed",
                extra={"template": email.template_name, "application_id": email.application_id, "error": error},
            )
        results.append({"template": email.template_name, "status": status})
        await log_email_sent(
            session,
            template_name=email.template_name,
            recipient_email=email.to,
            status=status,
            person_id=email.person_id,
            application_id=email.application_id,
            error=error,
        )
    if emails:
        await session.commit()
    return results
