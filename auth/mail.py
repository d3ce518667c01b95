"""
auth/mail.py -- Outbound mail for verification and password-reset links.

Bodies are rendered from Jinja2 templates in auth/templates/email/ (one .txt
and one .html per message) and sent as multipart/alternative over SMTP.

Delivery is best-effort. Mailer.send() never raises for transport problems:
SMTP, TLS and socket errors are logged and reported as False. The auth flows
treat a False (or any exception from a substitute mailer) as "logged, move
on" and still report success to the caller.

When SMTP_HOST is empty the message is not sent and counts as delivered.
Only the redacted recipient and the subject are logged. The body is added to
the log line only when the mailer is built with debug=True (DEBUG=true), so a
production deploy without SMTP never writes a working link to its logs.

Recipient addresses are redacted in every log line. Link URLs carry a plain
ephemeral token and appear in no log line outside debug mode.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("campgate.auth.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    keep_trailing_newline=True,
)


def redact_email(email: str) -> str:
    """Return a log-safe form of an address: first two chars of the local part."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def render_message(template: str, **context) -> tuple[str, str]:
    """Render (text_body, html_body) for the named template pair."""
    text_body = _env.get_template(f"{template}.txt").render(**context)
    html_body = _env.get_template(f"{template}.html").render(**context)
    return text_body, html_body


class Mailer:
    """SMTP mail sender.

    Usage:
        mailer = Mailer.from_settings(get_settings())
        mailer.send_verification_email("a@x.com", "alice", "https://.../verify-email/<token>")
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        product_name: str = "Campgate",
        timeout: float = 30.0,
        debug: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.product_name = product_name
        self.timeout = timeout
        self.debug = debug

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            product_name=settings.mail_product_name,
            debug=settings.debug,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_verification_email(self, to_email: str, username: str, verification_url: str) -> bool:
        text_body, html_body = render_message(
            "verify_email",
            username=username,
            action_url=verification_url,
            product_name=self.product_name,
        )
        return self.send(to_email, "Please verify your email", text_body, html_body)

    def send_password_reset_email(self, to_email: str, username: str, reset_url: str) -> bool:
        text_body, html_body = render_message(
            "reset_password",
            username=username,
            action_url=reset_url,
            product_name=self.product_name,
        )
        return self.send(to_email, "Password reset request", text_body, html_body)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def send(self, to_email: str, subject: str, text_body: str, html_body: str) -> bool:
        """Send one message. Returns True on success (or when SMTP is not configured), False on failure."""
        if not self.is_configured:
            if self.debug:
                logger.info(
                    "SMTP not configured, mail not sent (to=%s subject=%r)\n%s",
                    redact_email(to_email),
                    subject,
                    text_body,
                )
            else:
                logger.warning(
                    "SMTP not configured, mail not sent (to=%s subject=%r)", redact_email(to_email), subject
                )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.product_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, [to_email], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.from_email, [to_email], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s: %s", self.smtp_user or "<anonymous>", exc.smtp_code)
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Mail delivery failed (to=%s host=%s:%d): %s: %s",
                redact_email(to_email),
                self.smtp_host,
                self.smtp_port,
                type(exc).__name__,
                exc,
            )
            return False

        logger.info("Mail sent (to=%s subject=%r)", redact_email(to_email), subject)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)
