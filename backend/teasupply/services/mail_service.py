# Overview: Outbound mail collaborator; SMTP delivery with fire-and-forget sends.

from __future__ import annotations

import logging
import smtplib
import threading
from email.message import EmailMessage


class Mailer:
    """
    Process-wide SMTP mailer, created once in create_app and stored in
    app.extensions["mailer"].

    send() never raises: failures are logged and reported as False.
    send_async() runs send() on a daemon thread so the triggering request
    never waits on SMTP.
    """

    def __init__(
        self,
        *,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        use_tls: bool = True,
        timeout: int = 10,
        enabled: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls
        self.timeout = timeout
        self.enabled = enabled and bool(host) and bool(self.sender)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger: logging.Logger | None = None) -> "Mailer":
        return cls(
            host=config.get("MAIL_HOST"),
            port=config.get("MAIL_PORT", 587),
            username=config.get("MAIL_USER"),
            password=config.get("MAIL_PASS"),
            sender=config.get("MAIL_FROM"),
            use_tls=config.get("MAIL_USE_TLS", True),
            timeout=config.get("MAIL_TIMEOUT", 10),
            enabled=config.get("MAIL_ENABLED", True),
            logger=logger,
        )

    def _build(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    def send(self, to: str, subject: str, body: str) -> bool:
        if not self.enabled:
            self.logger.info("Mail disabled, not sending %r to %s", subject, to)
            return False
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(self._build(to, subject, body))
        except (smtplib.SMTPException, OSError):
            self.logger.warning("Failed to send %r to %s", subject, to, exc_info=True)
            return False
        self.logger.info("Sent %r to %s", subject, to)
        return True

    def send_async(self, to: str, subject: str, body: str) -> threading.Thread:
        thread = threading.Thread(
            target=self.send,
            args=(to, subject, body),
            name="mailer",
            daemon=True,
        )
        thread.start()
        return thread


def supplier_welcome_message(name: str, email: str, supplier_id: str, password: str | None, login_url: str) -> tuple[str, str]:
    """(subject, body) for a newly created supplier account."""
    lines = [
        f"Dear {name},",
        "",
        "Your supplier account has been created.",
        "",
        f"Supplier ID: {supplier_id}",
        f"Login email: {email}",
    ]
    if password:
        lines += [
            f"Temporary password: {password}",
            "",
            "Please change this password after your first login.",
        ]
    lines += ["", f"Sign in at {login_url}", "", "Tea Supply Management"]
    return "Your supplier account", "\n".join(lines)
