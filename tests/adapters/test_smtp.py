from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Self

from spotifier.adapters.smtp import SmtpMailer, build_email, render_plain_text
from spotifier.config.mail import MailConfig
from spotifier.domain.ports.notification import MailMessage

CONTEXT = {
    "artists": [
        {
            "name": "Band",
            "release": {"id": "alb1", "title": "Second Album", "release_date": "2024-05-01"},
        },
        {"name": "Other", "release": {"id": None, "title": "Untitled", "release_date": None}},
    ]
}


class FakeSMTP:
    instances: list[FakeSMTP] = []
    fail_with: Exception | None = None

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.calls: list[str] = []
        self.sent: list[EmailMessage] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.calls.append("quit")

    def starttls(self) -> None:
        self.calls.append("starttls")

    def login(self, user: str, password: str) -> None:
        self.calls.append(f"login:{user}")

    def send_message(self, message: EmailMessage) -> None:
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.calls.append("send")
        self.sent.append(message)


def _mailer(**overrides: object) -> SmtpMailer:
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    config = MailConfig(host="smtp.test", sender="bot@example.com", port=2525, **overrides)  # type: ignore[arg-type]
    return SmtpMailer(config, smtp_factory=FakeSMTP)  # type: ignore[arg-type]


def test_plain_text_lists_releases_with_links() -> None:
    body = render_plain_text(CONTEXT)

    assert "- Band: Second Album (2024-05-01)" in body
    assert "https://open.spotify.com/album/alb1" in body
    assert "- Other: Untitled\n" in body


def test_recipients_are_hidden_in_bcc() -> None:
    message = MailMessage(
        recipients=("a@example.com", "b@example.com"), subject="New from Band", context=CONTEXT
    )

    email = build_email(message, sender="bot@example.com")

    assert email["To"] == "bot@example.com"
    assert email["Bcc"] == "a@example.com, b@example.com"
    assert email["Subject"] == "New from Band"


def test_send_uses_tls_and_login() -> None:
    mailer = _mailer(username="bot", password="pw")
    message = MailMessage(recipients=("a@example.com",), subject="New", context=CONTEXT)

    result = asyncio.run(mailer.send(message))

    assert result.success
    smtp = FakeSMTP.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.test", 2525)
    assert smtp.calls == ["starttls", "login:bot", "send", "quit"]


def test_send_without_credentials_skips_login() -> None:
    mailer = _mailer(use_tls=False)

    result = asyncio.run(
        mailer.send(MailMessage(recipients=("a@example.com",), subject="New", context=CONTEXT))
    )

    assert result.success
    assert FakeSMTP.instances[0].calls == ["send", "quit"]


def test_smtp_failure_is_reported_not_raised() -> None:
    mailer = _mailer()
    FakeSMTP.fail_with = smtplib.SMTPRecipientsRefused({})

    result = asyncio.run(
        mailer.send(MailMessage(recipients=("a@example.com",), subject="New", context=CONTEXT))
    )

    assert not result.success
    assert result.error is not None
    assert "SMTPRecipientsRefused" in result.error


def test_message_without_recipients_is_not_sent() -> None:
    mailer = _mailer()

    result = asyncio.run(mailer.send(MailMessage(recipients=(), subject="New")))

    assert not result.success
    assert FakeSMTP.instances == []
