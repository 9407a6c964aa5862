"""Delivery transports.

``ChannelRouter`` is the process's delivery sink: it maps a channel name to a
transport and turns whatever the transport does into a ``DeliveryResult``.
The SMTP password may be stored encrypted using Fernet (AES-128-CBC) derived
from SECRET_KEY.
"""

import base64
import hashlib
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from html import escape
from typing import Protocol

from cryptography.fernet import Fernet

from ..config import settings
from ..errors import DeliveryError
from .models import Notification

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    error: str | None = None
    response: dict | None = None


class DeliverySink(Protocol):
    """Anything able to push a notification through a named channel."""

    def attempt_delivery(self, channel: str, notification: Notification) -> DeliveryResult: ...


class Transport(Protocol):
    """A single channel implementation. Raises DeliveryError on failure."""

    def send(self, notification: Notification) -> dict: ...


# ── Credential encryption ─────────────────────────────────────────────


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from the app SECRET_KEY using SHA-256."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value using the app's SECRET_KEY."""
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a string value using the app's SECRET_KEY."""
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.decrypt(ciphertext.encode()).decode()


# ── E-mail ────────────────────────────────────────────────────────────


def build_email(notification: Notification, to_addr: str, from_addr: str, sender_name: str) -> MIMEMultipart:
    """Build a multipart notification email with proper anti-spam headers."""
    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((sender_name, from_addr))
    msg["To"] = to_addr
    msg["Reply-To"] = from_addr
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=from_addr.split("@")[-1] if "@" in from_addr else "local")
    msg["Subject"] = notification.title

    text_body = (
        f"{notification.title}\n"
        f"{'=' * len(notification.title)}\n\n"
        f"{notification.message}\n\n"
        f"--\n"
        f"{sender_name}\n"
        f"This message was sent automatically.\n"
    )
    html_body = f"""\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{escape(notification.title)}</title></head>
<body style="margin:0; padding:24px; background-color:#f4f4f5; font-family:Arial,Helvetica,sans-serif;">
  <h1 style="margin:0 0 16px; color:#1e3a8a; font-size:20px;">{escape(notification.title)}</h1>
  <p style="margin:0 0 16px; color:#374151; font-size:15px; line-height:1.6;">{escape(notification.message)}</p>
  <p style="margin:0; color:#9ca3af; font-size:11px;">Sent automatically by {escape(sender_name)}.</p>
</body>
</html>"""

    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


class EmailChannel:
    """SMTP transport with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender_name: str = "Welfare Portal",
        timeout: int = 15,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._sender_name = sender_name
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> "EmailChannel":
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.smtp_sender_name,
        )

    @property
    def configured(self) -> bool:
        return bool(self._user and self._password)

    def send(self, notification: Notification) -> dict:
        if not self.configured:
            raise DeliveryError("SMTP not configured")
        recipient = notification.recipient
        if recipient is None or not recipient.email:
            raise DeliveryError("Recipient has no email address")

        msg = build_email(notification, recipient.email, self._user, self._sender_name)

        # Fernet tokens start with 'gAAAAA'
        password = self._password
        if password.startswith("gAAAAA"):
            password = decrypt_value(password)

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self._user, password)
                refused = server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP send failed: {exc}") from exc

        if refused:
            raise DeliveryError("Recipient refused", response={"refused": sorted(refused)})
        return {"message_id": msg["Message-ID"], "to": recipient.email}


class ChannelRouter:
    """Delivery sink dispatching to one transport per channel."""

    def __init__(self, transports: dict[str, Transport] | None = None) -> None:
        self._transports = dict(transports or {})

    def register(self, channel: str, transport: Transport) -> None:
        self._transports[channel] = transport

    def attempt_delivery(self, channel: str, notification: Notification) -> DeliveryResult:
        transport = self._transports.get(channel)
        if transport is None:
            return DeliveryResult(False, error=f"No transport configured for {channel}")
        try:
            response = transport.send(notification)
        except DeliveryError as exc:
            return DeliveryResult(False, error=str(exc), response=exc.response)
        return DeliveryResult(True, response=response)


def create_channel_router() -> ChannelRouter:
    """Factory: wire the transports available in this deployment."""
    router = ChannelRouter()
    email = EmailChannel.from_settings()
    if email.configured:
        router.register("email", email)
    else:
        logger.info("SMTP not configured, email channel disabled")
    return router
