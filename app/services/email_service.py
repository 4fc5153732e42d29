"""
services/email_service.py
Async email sending through a configured SMTP relay.
"""
import asyncio
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from pathlib import Path
from typing import Optional

import aiosmtplib
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import EmailDispatchError
from app.models.settings_model import SmtpConfig
from app.utils.helpers import get_logger

logger = get_logger(__name__)

SMTPS_PORT = 465


class Attachment(BaseModel):
    filename: str
    path: str


class SmtpVerifyResult(BaseModel):
    success: bool
    message: str


def _connection_options(smtp: SmtpConfig) -> dict:
    """Implicit TLS on the SMTPS port, otherwise STARTTLS when the server offers it."""
    implicit_tls = smtp.port == SMTPS_PORT
    return {
        "hostname": smtp.host,
        "port": smtp.port,
        "use_tls": implicit_tls,
        "start_tls": False if implicit_tls else None,
        "validate_certs": settings.SMTP_VALIDATE_CERTS,
        "timeout": settings.SMTP_TIMEOUT_SECONDS,
    }


def _from_address(smtp: SmtpConfig) -> str:
    if smtp.from_name:
        return formataddr((smtp.from_name, smtp.username))
    return smtp.username


def build_message(
    to: str,
    subject: str,
    html: str,
    smtp: SmtpConfig,
    attachments: Optional[list[Attachment]] = None,
) -> MIMEMultipart:
    message = MIMEMultipart()
    message["From"] = _from_address(smtp)
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(html, "html"))

    for attachment in attachments or []:
        path = Path(attachment.path)
        if not path.exists():
            raise EmailDispatchError(f"Attachment not found: {path}")
        part = MIMEApplication(path.read_bytes(), _subtype="pdf")
        part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
        message.attach(part)

    return message


async def send_email(
    to: str,
    subject: str,
    html: str,
    smtp: SmtpConfig,
    attachments: Optional[list[Attachment]] = None,
) -> None:
    """
    Send a single HTML email, optionally with PDF attachments.

    Args:
        to: Recipient address
        subject: Rendered subject line
        html: Rendered HTML body
        smtp: Relay to send through
        attachments: Files to attach

    Raises:
        EmailDispatchError: If the relay rejects the message or cannot be reached.
            The relay's own error text is kept in the message.
    """
    message = build_message(to, subject, html, smtp, attachments)

    try:
        await aiosmtplib.send(
            message,
            username=smtp.username,
            password=smtp.password,
            **_connection_options(smtp),
        )
    except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
        raise EmailDispatchError(str(e) or e.__class__.__name__) from e

    logger.info(f"Email sent successfully to {to}")


async def verify_smtp(smtp: SmtpConfig) -> SmtpVerifyResult:
    """Connect and authenticate without sending. Failures are returned, not raised."""
    client = aiosmtplib.SMTP(**_connection_options(smtp))
    try:
        await client.connect()
        await client.login(smtp.username, smtp.password)
        await client.quit()
    except Exception as e:
        logger.warning(f"SMTP verification failed for {smtp.host}:{smtp.port}: {e}")
        return SmtpVerifyResult(success=False, message=f"SMTP connection failed: {e}")
    finally:
        if client.is_connected:
            client.close()

    return SmtpVerifyResult(success=True, message="SMTP connection successful")
