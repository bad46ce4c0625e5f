"""E-Mail-Service for registration OTPs and password resets via SMTP."""
import logging
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from parley.config import settings
from parley.errors import DependencyError

logger = logging.getLogger(__name__)

FOOTER_TEXT = "This is an automated email, please do not reply.\n"
FOOTER_HTML = "<p><em>This is an automated email, please do not reply.</em></p>"


def _build_message(to_email: str, subject: str, body_text: str, body_html: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.smtp_from
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(body_text, "plain", "utf-8"))
    msg.attach(MIMEText(body_html, "html", "utf-8"))
    return msg


async def _deliver(msg: MIMEMultipart, failure: str) -> None:
    try:
        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_use_tls,
        )
    except Exception as e:
        logger.error("E-mail '%s' to %s failed: %s", msg["Subject"], msg["To"], e)
        raise DependencyError(failure) from e
    logger.info("E-mail '%s' sent to %s", msg["Subject"], msg["To"])


async def send_otp_email(to_email: str, otp: str, expires_at: datetime) -> None:
    """Send the registration OTP; raises ``DependencyError`` if SMTP fails."""
    minutes = settings.otp_expire_minutes
    body_text = (
        f"Hello,\n\n"
        f"Please use the following OTP to verify your Parley account: {otp}\n\n"
        f"This OTP will expire in {minutes} minutes "
        f"({expires_at:%Y-%m-%d %H:%M} UTC). "
        f"If you did not register with Parley, please ignore this email.\n\n"
        + FOOTER_TEXT
    )
    body_html = (
        f"<html><body>"
        f"<p>Please use the following OTP to verify your Parley account:</p>"
        f"<p>OTP: <strong>{otp}</strong></p>"
        f"<p>This OTP will expire in {minutes} minutes. "
        f"If you did not register with Parley, please ignore this email.</p>"
        f"{FOOTER_HTML}</body></html>"
    )
    msg = _build_message(to_email, "Parley OTP Verification", body_text, body_html)
    await _deliver(msg, "Failed to send OTP, please try again")


async def send_password_reset_email(
    to_email: str,
    expires_at: datetime,
    otp: str | None = None,
    link: str | None = None,
) -> None:
    """Send either a reset OTP or a reset link, whichever is given."""
    if otp:
        instruction_text = f"Please use the following OTP to reset your password: {otp}"
        instruction_html = (
            f"<p>Please use the following OTP to reset your password:</p>"
            f"<p>OTP: <strong>{otp}</strong></p>"
        )
    else:
        instruction_text = f"Please open the following link to reset your password:\n{link}"
        instruction_html = (
            f"<p>Please open the following link to reset your password:</p>"
            f'<p><a href="{link}">Reset password</a></p>'
        )

    body_text = (
        f"Hello,\n\n"
        f"We received a request to reset your Parley password.\n"
        f"{instruction_text}\n\n"
        f"This request expires at {expires_at:%Y-%m-%d %H:%M} UTC. "
        f"If you did not request a password reset, please ignore this email.\n\n"
        + FOOTER_TEXT
    )
    body_html = (
        f"<html><body>"
        f"<p>We received a request to reset your Parley password.</p>"
        f"{instruction_html}"
        f"<p>If you did not request a password reset, please ignore this email.</p>"
        f"{FOOTER_HTML}</body></html>"
    )
    msg = _build_message(to_email, "Parley Password Reset", body_text, body_html)
    await _deliver(msg, "Failed to send password reset email, please try again")
