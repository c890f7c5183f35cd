"""
core/mailer.py -- Outgoing email over SMTP.

Only one message exists today: the welcome email sent after registration,
which carries the activation token. The plaintext token appears in the message
body and nowhere else -- it is never logged, including when delivery is
disabled or fails.

Delivery is attempted up to three times with a short pause between attempts.
The last failure is re-raised; callers run send() on the BackgroundRunner,
which logs it.

When SMTP_HOST is empty the mailer is disabled: send() logs the recipient and
template name and returns.
"""

from __future__ import annotations

import logging
import smtplib
import time
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("marquee.mailer")

_ATTEMPTS = 3
_RETRY_PAUSE_SECONDS = 0.5

_TEMPLATES: dict[str, tuple[str, str]] = {
    "user_welcome": (
        "Welcome to Marquee!",
        "Hi,\n\n"
        "Thanks for signing up for a Marquee account. We're excited to have you on board!\n\n"
        "For future reference, your user ID number is {user_id}.\n\n"
        "Please send a request to the PUT /v1/users/{user_id}/activated endpoint with the "
        'following JSON body to activate your account:\n\n{{"token": "{activation_token}"}}\n\n'
        "Please note that this is a one-time use token and it will expire in {expires_in}.\n\n"
        "Thanks,\n\nThe Marquee Team\n",
    ),
}


def describe_duration(seconds: int) -> str:
    """Render a TTL for humans: "3 days", "1 hour", "90 minutes"."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return f"{seconds} seconds"


class Mailer:
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_sender,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def render(self, template: str, data: dict) -> EmailMessage:
        subject, body = _TEMPLATES[template]
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg.set_content(body.format(**data))
        return msg

    def send(self, recipient: str, template: str, data: dict) -> None:
        if not self.enabled:
            logger.info("Mail delivery disabled; dropping %s message to %s", template, recipient)
            return
        msg = self.render(template, data)
        msg["To"] = recipient
        for attempt in range(1, _ATTEMPTS + 1):
            try:
                self._deliver(msg)
                logger.info("Sent %s message to %s", template, recipient)
                return
            except (smtplib.SMTPException, OSError):
                if attempt == _ATTEMPTS:
                    raise
                logger.warning("SMTP attempt %d/%d failed for %s", attempt, _ATTEMPTS, recipient)
                time.sleep(_RETRY_PAUSE_SECONDS)

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
