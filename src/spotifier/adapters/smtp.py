"""SMTP mailer for new-release messages."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from logging import getLogger
from typing import TYPE_CHECKING, Any

from spotifier.domain.ports.notification import SendResult

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from spotifier.config.mail import MailConfig
    from spotifier.domain.ports.notification import MailMessage

log = getLogger(__name__)


def render_plain_text(context: Mapping[str, Any]) -> str:
    lines = ["New music from artists you saved:", ""]
    for artist in context.get("artists", []):
        release = artist.get("release", {})
        line = f"- {artist.get('name')}: {release.get('title')}"
        if release.get("release_date"):
            line = f"{line} ({release['release_date']})"
        lines.append(line)
        if release.get("id"):
            lines.append(f"  https://open.spotify.com/album/{release['id']}")
    return "\n".join(lines) + "\n"


def build_email(message: MailMessage, *, sender: str) -> EmailMessage:
    """Recipients go in Bcc so group members never see each other's addresses."""

    email = EmailMessage()
    email["Subject"] = message.subject
    email["From"] = sender
    email["To"] = sender
    email["Bcc"] = ", ".join(message.recipients)
    email.set_content(render_plain_text(message.context))
    return email


class SmtpMailer:
    def __init__(
        self,
        config: MailConfig,
        *,
        smtp_factory: Callable[[str, int], smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self._config = config
        self._smtp_factory = smtp_factory

    async def send(self, message: MailMessage) -> SendResult:
        if not message.recipients:
            return SendResult(success=False, error="message has no recipients")
        email = build_email(message, sender=self._config.sender)
        try:
            await asyncio.to_thread(self._deliver, email)
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("SMTP delivery of %r failed: %s", message.subject, exc)
            return SendResult(success=False, error=f"{type(exc).__name__}: {exc}")
        log.info("Sent %r to %d recipient(s)", message.subject, len(message.recipients))
        return SendResult(success=True)

    def _deliver(self, email: EmailMessage) -> None:
        with self._smtp_factory(self._config.host, self._config.port) as smtp:
            if self._config.use_tls:
                smtp.starttls()
            if self._config.username and self._config.password:
                smtp.login(self._config.username, self._config.password)
            smtp.send_message(email)
