"""
Delivery of one-time verification codes by email.

Plain-text message over SMTP with STARTTLS. When SMTP is not configured
(local development) the code is written to the log instead.
"""

import logging
import smtplib
from email.mime.text import MIMEText

from starlette.concurrency import run_in_threadpool

from cosmocard.config import settings
from cosmocard.exceptions import UpstreamError

logger = logging.getLogger(__name__)

SUBJECT = "Код подтверждения CosmoCard"


def _build_message(email: str, code: str, name: str) -> MIMEText:
    greeting = f"Здравствуйте, {name}!\n\n" if name else ""
    body = (
        f"{greeting}Ваш код подтверждения: {code}\n\n"
        f"Код действует {settings.verification_code_ttl // 60} минут."
    )
    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = SUBJECT
    msg["From"] = settings.smtp_from
    msg["To"] = email
    return msg


def _send(email: str, msg: MIMEText) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_user:
            server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.smtp_from, [email], msg.as_string())


class EmailService:
    async def send_verification_code(self, email: str, code: str, name: str = "") -> bool:
        """Returns True if an email was sent, False if the code was only logged."""
        if not settings.smtp_configured:
            logger.info("SMTP not configured; verification code for %s is %s", email, code)
            return False
        try:
            await run_in_threadpool(_send, email, _build_message(email, code, name))
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send verification code to %s: %s", email, e)
            raise UpstreamError(service="smtp", message="Could not send the verification email") from e
        logger.info("Verification code sent to %s", email)
        return True


email_service = EmailService()
