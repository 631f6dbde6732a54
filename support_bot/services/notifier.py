import base64
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from html import escape

from support_bot.errors import NotificationError
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import Attachment, TicketRecord

logger = get_logger(__name__)


def _attachment_list(attachments: list[Attachment]) -> str:
    if not attachments:
        return ""
    items = "".join(
        f'<li><a href="{escape(a.url, quote=True)}">{escape(a.name)}</a></li>' for a in attachments
    )
    return f"<p><strong>Attachments:</strong></p><ul>{items}</ul>"


def _paragraphs(text: str) -> str:
    return escape(text).replace("\n", "<br>")


def render_ticket_email(ticket: TicketRecord) -> tuple[str, str]:
    subject = f"[{ticket.protocol}] {ticket.subject}"
    html = (
        f"<h2>New ticket - Protocol: {escape(ticket.protocol)}</h2>"
        f"<p><strong>From:</strong> {escape(ticket.owner.display_name or 'N/A')}"
        f" &lt;{escape(ticket.owner.email or 'N/A')}&gt;</p>"
        f"<p><strong>Department:</strong> {escape(ticket.department)}</p>"
        f"<p><strong>Subject:</strong> {escape(ticket.subject)}</p>"
        f"<p><strong>Description:</strong></p><p>{_paragraphs(ticket.description)}</p>"
        f"{_attachment_list(ticket.attachments)}"
        "<hr><p><em>Reply to this email to answer the requester.</em></p>"
    )
    return subject, html


def render_reply_email(ticket: TicketRecord, body: str, attachments: list[Attachment]) -> tuple[str, str]:
    subject = f"Re: [{ticket.protocol}] {ticket.subject}"
    html = (
        f"<h2>Ticket update - Protocol: {escape(ticket.protocol)}</h2>"
        f"<p><strong>From:</strong> {escape(ticket.owner.display_name or 'N/A')}"
        f" &lt;{escape(ticket.owner.email or 'N/A')}&gt;</p>"
        f"<p>{_paragraphs(body)}</p>"
        f"{_attachment_list(attachments)}"
    )
    return subject, html


class Notifier(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one message; raises NotificationError on failure."""

    def notify_department(self, department_email: str, ticket: TicketRecord) -> bool:
        subject, html = render_ticket_email(ticket)
        return self._deliver(department_email, subject, html, ticket.protocol)

    def notify_reply(self, department_email: str, ticket: TicketRecord, body: str,
                     attachments: list[Attachment] | None = None) -> bool:
        subject, html = render_reply_email(ticket, body, attachments or [])
        return self._deliver(department_email, subject, html, ticket.protocol)

    def _deliver(self, to: str, subject: str, html: str, protocol: str) -> bool:
        try:
            self.send(to, subject, html)
        except NotificationError as e:
            logger.error(f"Notification for {protocol} to {to} failed: {e.message}", exc_info=e.__cause__)
            return False
        logger.info(f"Notification for {protocol} sent to {to}")
        return True


class NullNotifier(Notifier):
    def send(self, to: str, subject: str, html: str) -> None:
        logger.debug(f"Email not configured, skipping '{subject}' to {to}")


class GmailNotifier(Notifier):
    def __init__(self, gmail_service, sender: str):
        self.gmail_service = gmail_service
        self.sender = sender

    def send(self, to: str, subject: str, html: str) -> None:
        message = MIMEText(html, "html", "utf-8")
        message["to"] = to
        message["from"] = self.sender
        message["subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()
        try:
            self.gmail_service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except Exception as e:
            raise NotificationError(f"Gmail send failed: {e}") from e
