"""
Transactional email over SMTP.

Templates use {{name}} placeholders. When delivery is disabled the message
is logged instead of sent, which is also how development runs without an
SMTP server.

Environment Variables:
    FINDITNOW_EMAIL_ENABLED: "false" to log instead of send
                             (default: enabled when SMTP_SERVER is set)
    SMTP_SERVER, SMTP_PORT: Relay address (port default 465)
    SMTP_USER, SMTP_PASS: Relay credentials
    SMTP_FROM: Sender address (default SMTP_USER)
    SMTP_USE_SSL: "false" to use STARTTLS instead of implicit TLS
"""

import os
import re
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from ..observability import get_logger, get_metrics


logger = get_logger("finditnow.mailer")


class EmailDeliveryError(Exception):
    """Raised when a message could not be handed to the relay."""
    pass


TEMPLATES: dict[str, dict[str, str]] = {
    "claim-approval": {
        "subject": "Your claim for {{itemName}} has been approved!",
        "body": (
            "Hello {{name}},\n\n"
            "Good news! Your claim for the item \"{{itemName}}\" has been approved "
            "by the owner. You can now chat with them to arrange the pickup.\n\n"
            "Thank you,\nThe FindItNow Team"
        ),
    },
    "new-enquiry": {
        "subject": "New Enquiry for your item: {{itemName}}",
        "body": (
            "Hello {{name}},\n\n"
            "You have received a new enquiry about your item \"{{itemName}}\". "
            "Please log in to your account to view the details and respond.\n\n"
            "Thank you,\nThe FindItNow Team"
        ),
    },
    "report-confirmation": {
        "subject": "Your {{itemType}} item report for \"{{itemName}}\" has been submitted.",
        "body": (
            "Hello,\n\n"
            "This is a confirmation that your report for the following item has been submitted:\n\n"
            "Item Name: {{itemName}}\n"
            "Category: {{category}}\n"
            "Location: {{location}}\n"
            "Date: {{date}}\n\n"
            "Thank you for using FindItNow."
        ),
    },
    "user-otp": {
        "subject": "Your FindItNow Verification Code",
        "body": (
            "Hello,\n\n"
            "Your one-time password (OTP) for verifying your account is: {{otp}}\n\n"
            "This code will expire in 10 minutes.\n\n"
            "Thank you,\nThe FindItNow Team"
        ),
    },
    "partner-otp": {
        "subject": "Your FindItNow Partner Verification Code",
        "body": (
            "Hello,\n\n"
            "Your one-time password (OTP) for verifying your partner account is: {{otp}}\n\n"
            "This code will expire in 10 minutes.\n\n"
            "Thank you,\nThe FindItNow Team"
        ),
    },
    "password-otp": {
        "subject": "Your FindItNow Password Reset Code",
        "body": (
            "Hello,\n\n"
            "Your one-time password (OTP) for resetting your password is: {{otp}}\n\n"
            "If you did not request this, please ignore this email.\n\n"
            "Thank you,\nThe FindItNow Team"
        ),
    },
}

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template_id: str, **params: object) -> tuple[str, str]:
    """
    Render (subject, body) for a template.

    Unknown placeholders render as empty strings.

    Raises:
        KeyError: template_id is not a known template
    """
    template = TEMPLATES[template_id]

    def fill(text: str) -> str:
        return _PLACEHOLDER.sub(lambda m: str(params.get(m.group(1), "")), text)

    return fill(template["subject"]), fill(template["body"])


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes")


@dataclass
class EmailConfig:
    enabled: bool = False
    host: str = ""
    port: int = 465
    user: str = ""
    password: str = ""
    sender: str = "noreply@finditnow.local"
    use_ssl: bool = True
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "EmailConfig":
        host = os.getenv("SMTP_SERVER", "")
        user = os.getenv("SMTP_USER", "")
        return cls(
            enabled=_env_flag("FINDITNOW_EMAIL_ENABLED", default=bool(host)),
            host=host,
            port=int(os.getenv("SMTP_PORT") or 465),
            user=user,
            password=os.getenv("SMTP_PASS", ""),
            sender=os.getenv("SMTP_FROM") or user or "noreply@finditnow.local",
            use_ssl=_env_flag("SMTP_USE_SSL", default=True),
        )


class Mailer:
    """Renders templates and hands them to the SMTP relay."""

    def __init__(self, config: Optional[EmailConfig] = None):
        self.config = config or EmailConfig.from_env()

    def send(self, template_id: str, to_email: str, **params: object) -> None:
        """
        Render and deliver one templated message.

        Raises:
            EmailDeliveryError: the relay is not configured or refused the message
        """
        subject, body = render_template(template_id, **params)

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.config.sender
        msg["To"] = to_email
        msg.set_content(body)

        if not self.config.enabled:
            logger.info(
                "Email delivery disabled, not sending",
                template=template_id,
                to=to_email,
                subject=subject,
                body=body,
            )
            return

        if not self.config.host:
            get_metrics().incr("emails_failed")
            raise EmailDeliveryError("SMTP_SERVER is not configured")

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            get_metrics().incr("emails_failed")
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        get_metrics().incr("emails_sent")
        logger.info("Email sent", template=template_id, to=to_email)

    def send_best_effort(self, template_id: str, to_email: str, **params: object) -> bool:
        """Send, logging instead of raising on delivery failure."""
        try:
            self.send(template_id, to_email, **params)
            return True
        except EmailDeliveryError as e:
            logger.warning(
                "Email not delivered",
                template=template_id,
                to=to_email,
                error=str(e),
            )
            return False

    def _deliver(self, msg: EmailMessage) -> None:
        if self.config.use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(
                self.config.host, self.config.port, context=context, timeout=self.config.timeout
            ) as server:
                self._login_and_send(server, msg)
        else:
            with smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout) as server:
                server.starttls(context=ssl.create_default_context())
                self._login_and_send(server, msg)

    def _login_and_send(self, server: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.config.user:
            server.login(self.config.user, self.config.password)
        server.send_message(msg)
