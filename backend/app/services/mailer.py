"""Outbound batch messages: composition and SMTP delivery."""

import html
import logging
import smtplib
import ssl
import uuid
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Protocol, Sequence

from backend.app.core.settings import get_settings
from backend.app.services.documents import DocumentSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class MessageSender(Protocol):
    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body_html: str,
        body_text: str,
        attachments: Sequence[Attachment],
    ) -> SendResult:
        """Attempt delivery exactly once."""


def _totals(sources: Sequence[DocumentSource]) -> tuple[int, int, int]:
    invoices = sum(1 for s in sources if s.entity_type == "invoice")
    supervisory = sum(1 for s in sources if s.entity_type != "invoice" and s.is_supervisory)
    regular = len(sources) - invoices - supervisory
    return regular, supervisory, invoices


def build_batch_text(sources: Sequence[DocumentSource], batch_date: str) -> str:
    regular, supervisory, invoices = _totals(sources)
    lines = [
        f"Approved documents batch ({batch_date})",
        f"Regular timesheets: {regular}",
        f"Supervisory timesheets: {supervisory}",
        f"Invoices: {invoices}",
        "",
    ]
    for source in sources:
        summary = f"- {source.title}: {source.client_name}"
        if source.provider_name:
            summary += f" / {source.provider_name}"
        if source.period:
            summary += f" ({source.period})"
        lines.append(summary)
    return "\n".join(lines)


def build_batch_html(sources: Sequence[DocumentSource], batch_date: str) -> str:
    regular, supervisory, invoices = _totals(sources)
    rows = "".join(
        "<tr><td>{}</td><td>{}</td><td>{}</td><td>{}</td></tr>".format(
            html.escape(s.title),
            html.escape(s.client_name),
            html.escape(s.provider_name or ""),
            html.escape(s.period),
        )
        for s in sources
    )
    return (
        f"<h2>Approved documents batch ({html.escape(batch_date)})</h2>"
        f"<p>Regular timesheets: {regular}<br>Supervisory timesheets: {supervisory}<br>Invoices: {invoices}</p>"
        "<table><thead><tr><th>Document</th><th>Client</th><th>Provider</th><th>Period</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
    )


class SmtpMessageSender:
    """Deliver one multipart message over SMTP; failures come back as ``SendResult``."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def _build_message(self, recipients, subject, body_html, body_text, attachments) -> MIMEMultipart:
        message = MIMEMultipart("mixed")
        message["Subject"] = subject
        message["From"] = self.settings.mail_from
        message["To"] = ", ".join(recipients)
        message["Message-ID"] = make_msgid(idstring=uuid.uuid4().hex[:12])

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(body_text, "plain"))
        body.attach(MIMEText(body_html, "html"))
        message.attach(body)

        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(attachment.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            message.attach(part)
        return message

    def send(self, recipients, subject, body_html, body_text, attachments) -> SendResult:
        message = self._build_message(recipients, subject, body_html, body_text, attachments)
        settings = self.settings
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.delivery_timeout_seconds) as server:
                if settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", ", ".join(recipients), exc)
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)
        logger.info("Delivered message %s to %s recipient(s)", message["Message-ID"], len(recipients))
        return SendResult(success=True, message_id=message["Message-ID"])
