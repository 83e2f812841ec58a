# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for SMTP delivery."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from gpgmailer.config import SMTPConfig
from gpgmailer.message import MailMessage
from gpgmailer.transport import (
    DeliveryResult,
    SMTPSendError,
    SMTPTransport,
    _extract_domain,
)


@pytest.fixture
def smtp_config() -> SMTPConfig:
    """Authenticated SMTP config."""
    return SMTPConfig(
        server="smtp.example.com",
        port=587,
        username="mailer",
        password="smtp-secret",
        from_address="Mailer <mailer@example.com>",
    )


def _mock_smtp(mock_smtp_class: MagicMock, starttls: bool = True) -> MagicMock:
    mock_server = MagicMock()
    mock_server.has_extn.side_effect = lambda name: (
        starttls and name == "STARTTLS"
    )
    mock_server.send_message.return_value = {}
    mock_smtp_class.return_value.__enter__.return_value = mock_server
    return mock_server


def test_send_success(smtp_config, message):
    """Message is submitted with STARTTLS and login."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        result = transport.send(message)

        mock_smtp_class.assert_called_once_with("smtp.example.com", 587)
        mock_server.starttls.assert_called_once()
        assert mock_server.ehlo.call_count == 2
        mock_server.login.assert_called_once_with("mailer", "smtp-secret")
        mock_server.send_message.assert_called_once()

        sent = mock_server.send_message.call_args[0][0]
        assert mock_server.send_message.call_args[1] == {
            "to_addrs": ["recipient@example.com"]
        }
        assert sent["From"] == "Sender <sender@example.com>"
        assert sent["To"] == "recipient@example.com"
        assert sent["Subject"] == "Quarterly report"
        assert sent["Date"]
        assert sent["Message-ID"].endswith("@example.com>")

    assert isinstance(result, DeliveryResult)
    assert result.ok
    assert result.message_id == sent["Message-ID"]
    assert result.recipients == ("recipient@example.com",)


def test_send_includes_bcc_in_envelope_only(smtp_config, message):
    """Bcc recipients are envelope recipients but not headers."""
    message.bcc = ["audit@example.com"]
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        transport.send(message)

        sent = mock_server.send_message.call_args[0][0]
        assert "Bcc" not in sent
        assert mock_server.send_message.call_args[1]["to_addrs"] == [
            "recipient@example.com",
            "audit@example.com",
        ]


def test_send_without_starttls(smtp_config, message):
    """STARTTLS is skipped when the server does not offer it."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class, starttls=False)
        transport.send(message)

        mock_server.starttls.assert_not_called()
        mock_server.ehlo.assert_called_once()


def test_send_without_auth(message):
    """Login is skipped when auth is not required."""
    config = SMTPConfig(server="localhost", port=25, require_auth=False)
    transport = SMTPTransport(config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        transport.send(message)

        mock_server.login.assert_not_called()


def test_send_fills_default_from(smtp_config, message):
    """Configured From address is used when the message has none."""
    message.from_address = ""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        transport.send(message)

        sent = mock_server.send_message.call_args[0][0]
        assert sent["From"] == "Mailer <mailer@example.com>"
    assert message.from_address == "Mailer <mailer@example.com>"


def test_send_keeps_existing_message_id(smtp_config, message):
    """A caller-provided Message-ID is not replaced."""
    message.headers["Message-ID"] = "<fixed@example.com>"
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        _mock_smtp(mock_smtp_class)
        result = transport.send(message)

    assert result.message_id == "<fixed@example.com>"


def test_send_reports_refused_recipients(smtp_config, message):
    """Partially refused recipients are reported, not raised."""
    message.cc = ["bad@example.com"]
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        mock_server.send_message.return_value = {
            "bad@example.com": (550, b"No such user")
        }
        result = transport.send(message)

    assert not result.ok
    assert result.refused == {"bad@example.com": (550, b"No such user")}


def test_send_no_recipients(smtp_config):
    """A message without recipients is rejected before connecting."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        with pytest.raises(SMTPSendError, match="no recipients"):
            transport.send(MailMessage(subject="x", body="y"))
        mock_smtp_class.assert_not_called()


def test_send_no_from_address(message):
    """A message without any From address is rejected."""
    config = SMTPConfig(server="localhost", require_auth=False)
    message.from_address = ""
    transport = SMTPTransport(config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        with pytest.raises(SMTPSendError, match="no From address"):
            transport.send(message)
        mock_smtp_class.assert_not_called()


def test_send_smtp_exception(smtp_config, message):
    """SMTP errors are wrapped in SMTPSendError."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        mock_server.send_message.side_effect = smtplib.SMTPException(
            "SMTP error"
        )

        with pytest.raises(SMTPSendError, match="Failed to send email"):
            transport.send(message)


def test_send_connection_error(smtp_config, message):
    """Connection errors are wrapped in SMTPSendError."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_smtp_class.side_effect = OSError("Connection refused")

        with pytest.raises(SMTPSendError, match="Connection refused"):
            transport.send(message)


def test_send_auth_error(smtp_config, message):
    """Authentication failures are wrapped in SMTPSendError."""
    transport = SMTPTransport(smtp_config)

    with patch("smtplib.SMTP") as mock_smtp_class:
        mock_server = _mock_smtp(mock_smtp_class)
        mock_server.login.side_effect = smtplib.SMTPAuthenticationError(
            535, b"Authentication failed"
        )

        with pytest.raises(SMTPSendError, match="Failed to send email"):
            transport.send(message)
        mock_server.send_message.assert_not_called()


@pytest.mark.parametrize(
    "address,domain",
    [
        ("Sender <sender@example.com>", "example.com"),
        ("plain@mail.example.org", "mail.example.org"),
        ("no-domain", "localhost"),
        ("", "localhost"),
    ],
)
def test_extract_domain(address, domain):
    assert _extract_domain(address) == domain
