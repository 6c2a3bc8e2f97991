"""
Outgoing email for verification and password reset codes.

Sends through SMTP when ``EMAIL_HOST``/``EMAIL_USER``/``EMAIL_PASS`` are set.
Without them the service runs in log-only mode: the message (including the
code) is written to the log so local development works without a mail server.
"""
import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from jinja2 import DictLoader, Environment, select_autoescape

from core.config import EmailConfig, config
from core.observability import get_logger

logger = get_logger(__name__)


_TEMPLATES = {
    "otp.txt": (
        "{{ title }}\n\n"
        "{{ message }}\n\n"
        "    {{ otp }}\n\n"
        "{{ note }}\n"
        "If you did not request this, you can ignore this email.\n"
    ),
    "otp.html": (
        "<!DOCTYPE html>\n"
        "<html><body style=\"font-family: Arial, sans-serif; color: #1f2937;\">\n"
        "  <h2>{{ title }}</h2>\n"
        "  <p>{{ message }}</p>\n"
        "  <p style=\"font-size: 28px; letter-spacing: 6px; font-weight: bold;\">{{ otp }}</p>\n"
        "  <p style=\"color: #6b7280;\">{{ note }}</p>\n"
        "  <p style=\"color: #6b7280;\">If you did not request this, you can ignore this email.</p>\n"
        "</body></html>\n"
    ),
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


class EmailService:
    """SMTP sender with a log-only fallback."""

    def __init__(self, email_config: EmailConfig = None, timeout: float = 15.0):
        self.config = email_config or config.email
        self.timeout = timeout
        if not self.is_configured:
            logger.warning("Email configuration is incomplete, emails will only be logged")

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _build_message(self, email: OutgoingEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.config.sender
        message["To"] = email.to
        message["Subject"] = email.subject
        message.set_content(email.text)
        if email.html:
            message.add_alternative(email.html, subtype="html")
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.config.port == 465:
            with smtplib.SMTP_SSL(self.config.host, self.config.port, timeout=self.timeout, context=context) as smtp:
                smtp.login(self.config.user, self.config.password)
                smtp.send_message(message)
        else:
            with smtplib.SMTP(self.config.host, self.config.port, timeout=self.timeout) as smtp:
                smtp.starttls(context=context)
                smtp.login(self.config.user, self.config.password)
                smtp.send_message(message)

    async def send(self, email: OutgoingEmail) -> bool:
        """
        Send one email.

        Returns:
            True if handed to the SMTP server, False in log-only mode

        Raises:
            smtplib.SMTPException, OSError: the server rejected or was unreachable
        """
        if not self.is_configured:
            logger.info(
                f"Email not sent (log-only mode): {email.subject}",
                extra={"to": email.to, "body": email.text},
            )
            return False

        message = self._build_message(email)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {email.to}: {e}", extra={"subject": email.subject})
            raise

        logger.info(f"Email sent: {email.subject}", extra={"to": email.to})
        return True

    def _otp_email(self, to: str, subject: str, otp: str, title: str, message: str, note: str) -> OutgoingEmail:
        context = {"otp": otp, "title": title, "message": message, "note": note}
        return OutgoingEmail(
            to=to,
            subject=subject,
            text=_env.get_template("otp.txt").render(**context),
            html=_env.get_template("otp.html").render(**context),
        )

    async def send_verification_otp(self, to: str, otp: str) -> bool:
        minutes = config.auth.verify_otp_ttl_seconds // 60
        return await self.send(self._otp_email(
            to,
            subject="Verify Your Email Address",
            otp=otp,
            title="Verify Your Email",
            message="Please use the following code to verify your email address:",
            note=f"This code is valid for {minutes} minutes.",
        ))

    async def send_password_reset_otp(self, to: str, otp: str) -> bool:
        minutes = config.auth.reset_otp_ttl_seconds // 60
        return await self.send(self._otp_email(
            to,
            subject="Reset Your Password",
            otp=otp,
            title="Password Reset",
            message="Use the following code to reset your password:",
            note=f"This code is valid for {minutes} minutes.",
        ))
