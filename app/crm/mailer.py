from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


class MailerError(RuntimeError):
    pass


class Mailer:
    def send(self, to: str, subject: str, body: str, *, html: str | None = None) -> None:
        raise NotImplementedError


class LogMailer(Mailer):
    """Development mailer: writes the message to the log instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    def send(self, to: str, subject: str, body: str, *, html: str | None = None) -> None:
        self.sent.append({"to": to, "subject": subject, "body": body})
        logger.info("MAIL (log backend) to=%s subject=%s\n%s", to, subject, body)


class SmtpMailer(Mailer):
    def __init__(
        self,
        *,
        server: str,
        port: int,
        use_tls: bool,
        username: str,
        password: str,
        email_from: str,
    ) -> None:
        self.server = server
        self.port = port
        self.use_tls = use_tls
        self.username = username
        self.password = password
        self.email_from = email_from

    def send(self, to: str, subject: str, body: str, *, html: str | None = None) -> None:
        if not self.server or not self.email_from:
            raise MailerError("SMTP not configured (SMTP_SERVER and EMAIL_FROM are required)")

        if html:
            msg = MIMEMultipart("alternative")
            msg.attach(MIMEText(body, "plain"))
            msg.attach(MIMEText(html, "html"))
        else:
            msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = to

        try:
            with smtplib.SMTP(self.server, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise MailerError(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise MailerError(f"SMTP error: {e}") from e
        logger.info("Sent mail to=%s subject=%s", to, subject)


def mailer_from_config(config) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "log").strip().lower()
    if backend == "smtp":
        return SmtpMailer(
            server=config.get("SMTP_SERVER") or "",
            port=int(config.get("SMTP_PORT") or 587),
            use_tls=bool(config.get("SMTP_USE_TLS")),
            username=config.get("SMTP_USERNAME") or "",
            password=config.get("SMTP_PASSWORD") or "",
            email_from=config.get("EMAIL_FROM") or "",
        )
    return LogMailer()
