"""Tests for delivery transports and the channel router."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from welfare.errors import DeliveryError
from welfare.notifications.channels import (
    ChannelRouter,
    DeliveryResult,
    EmailChannel,
    build_email,
    decrypt_value,
    encrypt_value,
)
from welfare.notifications.models import Notification
from welfare.users.models import User


class TestEncryptDecrypt:
    def test_roundtrip(self):
        plaintext = "my-secret-smtp-password"
        encrypted = encrypt_value(plaintext)
        assert encrypted != plaintext
        assert decrypt_value(encrypted) == plaintext

    def test_different_values_produce_different_ciphertexts(self):
        a = encrypt_value("password1")
        b = encrypt_value("password2")
        assert a != b

    def test_encrypted_starts_with_gAAAAA(self):
        encrypted = encrypt_value("test")
        assert encrypted.startswith("gAAAAA")


def _notification(email="officer@example.com"):
    n = Notification(title="Scheme <update>", message="Apply before Friday & save")
    n.recipient = User(email=email)
    return n


class TestBuildEmail:
    def test_headers(self):
        msg = build_email(_notification(), "to@example.com", "from@portal.gov", "Welfare Portal")
        assert msg["To"] == "to@example.com"
        assert msg["Subject"] == "Scheme <update>"
        assert "Welfare Portal" in msg["From"]
        assert msg["Message-ID"].endswith("@portal.gov>")

    def test_html_part_escaped(self):
        msg = build_email(_notification(), "to@example.com", "from@portal.gov", "Welfare Portal")
        text_part, html_part = msg.get_payload()
        assert "Apply before Friday & save" in text_part.get_payload(decode=True).decode()
        assert "Scheme &lt;update&gt;" in html_part.get_payload(decode=True).decode()


class TestEmailChannel:
    def _channel(self, password="secret"):
        return EmailChannel("smtp.example.com", 587, "bot@portal.gov", password)

    def test_unconfigured_raises(self):
        channel = EmailChannel("smtp.example.com", 587, "", "")
        assert channel.configured is False
        with pytest.raises(DeliveryError, match="not configured"):
            channel.send(_notification())

    def test_missing_address_raises(self):
        with pytest.raises(DeliveryError, match="no email"):
            self._channel().send(_notification(email=""))

    @patch("welfare.notifications.channels.smtplib.SMTP")
    def test_sends_via_starttls(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        server.send_message.return_value = {}

        response = self._channel().send(_notification())

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@portal.gov", "secret")
        assert response["to"] == "officer@example.com"

    @patch("welfare.notifications.channels.smtplib.SMTP")
    def test_decrypts_stored_password(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        server.send_message.return_value = {}

        self._channel(password=encrypt_value("real-password")).send(_notification())
        server.login.assert_called_once_with("bot@portal.gov", "real-password")

    @patch("welfare.notifications.channels.smtplib.SMTP")
    def test_smtp_error_wrapped(self, mock_smtp):
        mock_smtp.return_value.__enter__.return_value.login.side_effect = smtplib.SMTPAuthenticationError(
            535, b"bad credentials"
        )
        with pytest.raises(DeliveryError, match="SMTP send failed"):
            self._channel().send(_notification())

    @patch("welfare.notifications.channels.smtplib.SMTP")
    def test_refused_recipient(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        server.send_message.return_value = {"officer@example.com": (550, b"no such user")}
        with pytest.raises(DeliveryError) as exc_info:
            self._channel().send(_notification())
        assert exc_info.value.response == {"refused": ["officer@example.com"]}


class TestChannelRouter:
    def test_no_transport(self):
        result = ChannelRouter().attempt_delivery("sms", _notification())
        assert result == DeliveryResult(False, error="No transport configured for sms")

    def test_success(self):
        transport = MagicMock()
        transport.send.return_value = {"id": "42"}
        router = ChannelRouter({"push": transport})

        result = router.attempt_delivery("push", _notification())
        assert result.success is True
        assert result.response == {"id": "42"}

    def test_delivery_error_becomes_failure(self):
        transport = MagicMock()
        transport.send.side_effect = DeliveryError("gateway down", response={"code": 503})
        router = ChannelRouter()
        router.register("sms", transport)

        result = router.attempt_delivery("sms", _notification())
        assert result.success is False
        assert result.error == "gateway down"
        assert result.response == {"code": 503}
