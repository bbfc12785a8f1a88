"""Outbound mail configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_int, require_env_vars

DEFAULT_SMTP_PORT = 587


@dataclass(frozen=True, slots=True)
class MailConfig:
    host: str
    sender: str
    port: int = DEFAULT_SMTP_PORT
    username: str | None = None
    password: str | None = None
    use_tls: bool = True


def get_mail_config() -> MailConfig:
    values = require_env_vars(("SMTP_HOST", "MAIL_FROM"))
    return MailConfig(
        host=values["SMTP_HOST"],
        sender=values["MAIL_FROM"],
        port=env_int("SMTP_PORT", DEFAULT_SMTP_PORT),
        username=os.getenv("SMTP_USER") or None,
        password=os.getenv("SMTP_PASSWORD") or None,
        use_tls=os.getenv("SMTP_STARTTLS", "1").strip().lower() not in {"0", "false", "no"},
    )
