"""
notify/mailer.py -- SMTP delivery of the welcome message sent after registration.

EmailNotifier is the notification collaborator AuthService submits to the
Dispatcher. It is called only from inside a dispatcher slot, so a slow or
unreachable SMTP server ties up a pool thread, never a request.

An empty SMTP host disables delivery: send_welcome() logs and returns. That
keeps local development and tests working without a mail server.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from auth.errors import NotificationError

logger = logging.getLogger("authservice.notify")

_WELCOME_SUBJECT = "Welcome to Auth Service"

_WELCOME_BODY = """\
Welcome, {name}!

Your account has been created and is ready to use.

If you have any questions, just reply to this message and our support team
will get back to you.

-- The {sender} team
"""


class EmailNotifier:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_email: str = "no-reply@localhost",
        from_name: str = "Auth Service",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout
        if not host:
            logger.warning("SMTP_HOST not configured -- welcome emails will not be delivered")

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_welcome(self, address: str, display_name: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = address
        msg["Subject"] = _WELCOME_SUBJECT
        msg.set_content(_WELCOME_BODY.format(name=display_name, sender=self.from_name))
        return msg

    def send_welcome(self, address: str, display_name: str) -> None:
        """Deliver the welcome message to address.

        Raises NotificationError if the SMTP exchange fails.
        """
        if not self.enabled:
            logger.info("SMTP disabled, skipping welcome email to %s", address)
            return
        msg = self.build_welcome(address, display_name)
        logger.info("Sending welcome email to %s", address)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"welcome email to {address} failed: {exc}") from exc
        logger.info("Welcome email sent to %s", address)
