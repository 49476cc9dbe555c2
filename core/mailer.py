"""
core/mailer.py -- Best-effort transactional email over SMTP.

Mailer.send() never raises. Every failure is logged and reported as False,
so callers can fire a message without wrapping it in try/except and a mail
outage can never fail the request that triggered it.

smtplib is blocking; send() runs it in a worker thread via asyncio.to_thread
so the event loop keeps serving other requests while the SMTP dialog runs.

Dev mode: when SMTP_HOST is empty the message is logged instead of sent.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText

logger = logging.getLogger("gatekeeper.mail")


def redact_email(email: str) -> str:
    """Return a log-safe form of an email address (first two chars + domain)."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    async def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text email. Returns True on success, False on any failure."""
        if not self.is_configured:
            logger.info("Mail not configured; would send %r to %s", subject, redact_email(to))
            return True
        try:
            await asyncio.to_thread(self._send_sync, to, subject, body)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Mail delivery to %s failed: %s: %s",
                redact_email(to),
                type(exc).__name__,
                exc,
            )
            return False
        logger.info("Mail %r sent to %s", subject, redact_email(to))
        return True

    def _send_sync(self, to: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [to], msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [to], msg.as_string())
