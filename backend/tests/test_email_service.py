"""Tests for verification code delivery."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from cosmocard.exceptions import UpstreamError
from cosmocard.services.email_service import EmailService


@pytest.fixture
def smtp_settings():
    with patch("cosmocard.services.email_service.settings") as mock_settings:
        mock_settings.smtp_configured = True
        mock_settings.smtp_host = "smtp.example.com"
        mock_settings.smtp_port = 587
        mock_settings.smtp_use_tls = True
        mock_settings.smtp_user = "bot"
        mock_settings.smtp_password = "secret"
        mock_settings.smtp_from = "noreply@example.com"
        mock_settings.verification_code_ttl = 600
        yield mock_settings


@pytest.mark.asyncio
async def test_code_only_logged_without_smtp():
    with patch("cosmocard.services.email_service.settings") as mock_settings:
        mock_settings.smtp_configured = False
        with patch("cosmocard.services.email_service.smtplib.SMTP") as smtp:
            assert await EmailService().send_verification_code("a@example.com", "123456") is False
            smtp.assert_not_called()


@pytest.mark.asyncio
async def test_code_sent_over_smtp(smtp_settings):
    with patch("cosmocard.services.email_service.smtplib.SMTP") as smtp:
        server = smtp.return_value.__enter__.return_value

        sent = await EmailService().send_verification_code("a@example.com", "123456", "Anna")

    assert sent is True
    smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
    server.login.assert_called_once_with("bot", "secret")
    recipients = server.sendmail.call_args.args[1]
    assert recipients == ["a@example.com"]


@pytest.mark.asyncio
async def test_smtp_failure_is_upstream_error(smtp_settings):
    with patch("cosmocard.services.email_service.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value.sendmail.side_effect = smtplib.SMTPException("down")

        with pytest.raises(UpstreamError):
            await EmailService().send_verification_code("a@example.com", "123456")
