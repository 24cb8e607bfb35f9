"""
Mail service - delivers the per-check alert digest.

The SMTP transport wraps smtplib and runs the blocking send in a worker
thread so the event loop keeps serving other checks.
"""
import asyncio
import html
import smtplib
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Callable, Optional, Sequence

from app.core.config import settings
from app.core.exceptions import MailTransportError
from app.core.logging import get_logger
from app.schemas.listing import CachedListing

logger = get_logger(__name__)


@dataclass
class MailReceipt:
    """Proof of hand-off to the mail server."""

    message_id: str


class MailTransport(ABC):
    """Anything that can deliver an alert digest."""

    @abstractmethod
    async def send_alert_digest(
        self,
        to_email: str,
        to_name: str,
        alert_title: str,
        listings: Sequence[CachedListing],
    ) -> MailReceipt:
        """
        Send ONE email listing every new job of a check.

        Raises:
            MailTransportError: delivery failed
        """


def digest_subject(alert_title: str, count: int) -> str:
    noun = "job" if count == 1 else "jobs"
    return f'{count} new {noun} for "{alert_title}"'


def render_digest_text(to_name: str, alert_title: str, listings: Sequence[CachedListing]) -> str:
    lines = [
        f"Hi {to_name},",
        "",
        f'We found {len(listings)} new job(s) matching your alert "{alert_title}":',
        "",
    ]
    for listing in listings:
        lines.append(f"- {listing.title} at {listing.company} ({listing.location})")
        if listing.description_snippet:
            lines.append(f"  {listing.description_snippet}")
        lines.append(f"  Apply: {listing.apply_link}")
        lines.append("")
    return "\n".join(lines)


def render_digest_html(to_name: str, alert_title: str, listings: Sequence[CachedListing]) -> str:
    items = "".join(
        "<li>"
        f'<a href="{html.escape(listing.apply_link, quote=True)}">{html.escape(listing.title)}</a>'
        f" at {html.escape(listing.company)} ({html.escape(listing.location)})"
        f"<br><small>{html.escape(listing.description_snippet)}</small>"
        "</li>"
        for listing in listings
    )
    return (
        f"<p>Hi {html.escape(to_name)},</p>"
        f"<p>We found {len(listings)} new job(s) matching your alert "
        f"<strong>{html.escape(alert_title)}</strong>:</p>"
        f"<ul>{items}</ul>"
    )


class SmtpMailTransport(MailTransport):
    """
    smtplib-backed transport.

    Port 465 uses implicit TLS, any other port plain SMTP with optional
    STARTTLS. `smtp_factory` / `smtp_ssl_factory` exist for tests.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: float = 30.0,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.from_email = from_email or settings.smtp_from_email
        self.from_name = from_name or settings.smtp_from_name
        self.timeout = timeout
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def build_message(
        self,
        to_email: str,
        to_name: str,
        alert_title: str,
        listings: Sequence[CachedListing],
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = digest_subject(alert_title, len(listings))
        message["From"] = formataddr((self.from_name, self.from_email))
        message["To"] = formataddr((to_name, to_email))
        message["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        message.set_content(render_digest_text(to_name, alert_title, listings))
        message.add_alternative(
            render_digest_html(to_name, alert_title, listings),
            subtype="html",
        )
        return message

    def _deliver(self, message: EmailMessage) -> None:
        smtp = None
        try:
            if self.port == 465:
                smtp = self.smtp_ssl_factory(
                    self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout
                )
            else:
                smtp = self.smtp_factory(self.host, self.port, timeout=self.timeout)
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if self.username and self.password:
                smtp.login(self.username, self.password)

            smtp.send_message(message)
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning("smtp_quit_failed", error=str(e))

    async def send_alert_digest(
        self,
        to_email: str,
        to_name: str,
        alert_title: str,
        listings: Sequence[CachedListing],
    ) -> MailReceipt:
        message = self.build_message(to_email, to_name, alert_title, listings)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("alert_email_send_failed", to=to_email, error=str(e))
            raise MailTransportError(f"SMTP delivery failed: {e}") from e

        logger.info("alert_email_sent", to=to_email, listings=len(listings))
        return MailReceipt(message_id=message["Message-ID"])
