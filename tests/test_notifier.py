import base64
import datetime
import email
from unittest.mock import MagicMock

from support_bot.schemas.ticket import Attachment, TicketRecord, TicketStatus, UserRecord
from support_bot.services.notifier import GmailNotifier, render_reply_email, render_ticket_email


def _ticket() -> TicketRecord:
    return TicketRecord(
        protocol="CAR123456789",
        owner=UserRecord(external_id="U1", email="a@b.com", display_name="Ana <script>"),
        department="Financeiro",
        subject="Invoice",
        description="Line one\nLine two",
        attachments=[Attachment(name="a.pdf", url="https://files.example/a.pdf?x=1&y=2")],
        status=TicketStatus.OPEN,
        opened_at=datetime.datetime(2024, 5, 10, 14, 30, 5),
    )


def test_ticket_email_renders_metadata_and_attachments() -> None:
    subject, html = render_ticket_email(_ticket())

    assert subject == "[CAR123456789] Invoice"
    assert "Protocol: CAR123456789" in html
    assert "Line one<br>Line two" in html
    assert "Ana &lt;script&gt;" in html
    assert 'href="https://files.example/a.pdf?x=1&amp;y=2"' in html
    assert ">a.pdf</a>" in html


def test_reply_email_without_attachments() -> None:
    subject, html = render_reply_email(_ticket(), "Paid already", [])

    assert subject == "Re: [CAR123456789] Invoice"
    assert "Paid already" in html
    assert "Attachments" not in html


def test_gmail_notifier_sends_html_message() -> None:
    service = MagicMock()
    notifier = GmailNotifier(service, "bot@kx3.com.br")

    assert notifier.notify_department("financeiro@kx3.com.br", _ticket()) is True

    send = service.users.return_value.messages.return_value.send
    assert send.call_args.kwargs["userId"] == "me"
    raw = send.call_args.kwargs["body"]["raw"]
    message = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert message["to"] == "financeiro@kx3.com.br"
    assert message["from"] == "bot@kx3.com.br"
    assert message["subject"] == "[CAR123456789] Invoice"


def test_gmail_failure_is_logged_and_reported(caplog) -> None:
    service = MagicMock()
    service.users.return_value.messages.return_value.send.return_value.execute.side_effect = RuntimeError("401")
    notifier = GmailNotifier(service, "bot@kx3.com.br")

    assert notifier.notify_department("financeiro@kx3.com.br", _ticket()) is False
    assert "Notification for CAR123456789" in caplog.text
