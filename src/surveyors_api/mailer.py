import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from src.surveyors_api.config import Settings
from src.surveyors_api.errors import AppError, ErrorKind

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


def _build_message(sender: str, to: str, subject: str, text: Optional[str], html: Optional[str]) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text or "")
    if html:
        message.add_alternative(html, subtype="html")
    return message


# PUBLIC_INTERFACE
def send_email(settings: Settings, to: str, subject: str, text: Optional[str] = None, html: Optional[str] = None) -> None:
    """Hand one message to the configured SMTP relay."""
    if not settings.smtp_host:
        raise AppError(ErrorKind.SERVICE_UNAVAILABLE, "Email delivery is not configured", code="EMAIL_NOT_CONFIGURED")

    sender = settings.mail_from or settings.smtp_user or f"no-reply@{settings.smtp_host}"
    message = _build_message(sender, to, subject, text, html)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if settings.smtp_starttls:
                smtp.starttls()
            if settings.smtp_user and settings.smtp_password:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email to %s failed: %s", to, exc)
        raise AppError(ErrorKind.SERVICE_UNAVAILABLE, "Email delivery failed", code="EMAIL_DELIVERY_ERROR") from exc

    logger.info("Email sent to %s (subject=%r)", to, subject)
