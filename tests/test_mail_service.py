"""Tests for the SMTP digest transport."""

import smtplib
import uuid
from unittest.mock import MagicMock

import pytest

from app.core.exceptions import MailTransportError
from app.schemas.listing import CachedListing
from app.services.mail_service import SmtpMailTransport, digest_subject


def _listing(title="Backend Engineer", apply_link="https://jobs.example.com/1"):
    return CachedListing(
        id=uuid.uuid4(),
        external_id=f"ext-{uuid.uuid4().hex[:6]}",
        title=title,
        company="Acme <Corp>",
        location="Berlin",
        description_snippet="Python & SQL",
        apply_link=apply_link,
    )


def _transport(smtp, **kwargs):
    factory = MagicMock(return_value=smtp)
    kwargs.setdefault("host", "smtp.example.com")
    kwargs.setdefault("port", 587)
    kwargs.setdefault("username", "mailer")
    kwargs.setdefault("password", "secret")
    kwargs.setdefault("from_email", "alerts@example.com")
    return SmtpMailTransport(smtp_factory=factory, **kwargs), factory


class TestDigestMessage:
    def test_subject_pluralization(self):
        assert digest_subject("Python Developer", 1) == '1 new job for "Python Developer"'
        assert digest_subject("Python Developer", 3) == '3 new jobs for "Python Developer"'

    def test_message_lists_every_listing_and_escapes_html(self):
        transport, _ = _transport(MagicMock())
        listings = [_listing("First <b>role</b>"), _listing("Second role")]

        message = transport.build_message("dev@example.com", "Dev", "Python Developer", listings)

        assert message["To"] == "Dev <dev@example.com>"
        assert message["Message-ID"].endswith("@example.com>")
        text = message.get_body(preferencelist=("plain",)).get_content()
        html = message.get_body(preferencelist=("html",)).get_content()
        assert "First <b>role</b>" in text
        assert "Second role" in text
        assert "First &lt;b&gt;role&lt;/b&gt;" in html
        assert "Acme &lt;Corp&gt;" in html


class TestSmtpDelivery:
    @pytest.mark.asyncio
    async def test_sends_with_starttls_and_login(self):
        smtp = MagicMock()
        transport, factory = _transport(smtp)

        receipt = await transport.send_alert_digest("dev@example.com", "Dev", "Python Developer", [_listing()])

        factory.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "secret")
        smtp.send_message.assert_called_once()
        smtp.quit.assert_called_once()
        sent = smtp.send_message.call_args.args[0]
        assert receipt.message_id == sent["Message-ID"]

    @pytest.mark.asyncio
    async def test_skips_login_without_credentials(self):
        smtp = MagicMock()
        transport, _ = _transport(smtp, username="", password="", use_tls=False)

        await transport.send_alert_digest("dev@example.com", "Dev", "Python Developer", [_listing()])

        smtp.starttls.assert_not_called()
        smtp.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_error_becomes_transport_error(self):
        smtp = MagicMock()
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({"dev@example.com": (550, b"no")})
        transport, _ = _transport(smtp)

        with pytest.raises(MailTransportError):
            await transport.send_alert_digest("dev@example.com", "Dev", "Python Developer", [_listing()])
        smtp.quit.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transport_error(self):
        factory = MagicMock(side_effect=ConnectionRefusedError("refused"))
        transport = SmtpMailTransport(host="smtp.example.com", port=587, smtp_factory=factory)

        with pytest.raises(MailTransportError):
            await transport.send_alert_digest("dev@example.com", "Dev", "Python Developer", [_listing()])
