# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mail transports for delivering prepared messages.

The mailer only mutates a ``MailMessage`` and calls ``send()`` on a
``MailTransport``.  ``SMTPTransport`` is the stock implementation.
"""

import logging
import re
import smtplib
from dataclasses import dataclass, field
from email.utils import formatdate, make_msgid, parseaddr
from typing import Protocol

from gpgmailer.config import SMTPConfig
from gpgmailer.message import MailMessage


logger = logging.getLogger(__name__)

# Pattern to extract domain from an email address.
_EMAIL_DOMAIN_RE = re.compile(r"@([\w.-]+)")


class SMTPSendError(Exception):
    """Raised when an SMTP send operation fails."""


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of handing a message to a transport.

    Attributes:
        message_id: Message-ID header of the delivered message.
        recipients: Envelope recipients the message was submitted for.
        refused: Recipients the server refused, mapped to
            ``(smtp_code, response)``.
    """

    message_id: str
    recipients: tuple[str, ...]
    refused: dict[str, tuple[int, bytes]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when every recipient was accepted."""
        return not self.refused


class MailTransport(Protocol):
    """Delivery contract: send a prepared message, report the outcome."""

    def send(self, message: MailMessage) -> DeliveryResult:
        """Deliver ``message``."""
        ...


def _extract_domain(address: str) -> str:
    """Extract the domain from a From address, or "localhost"."""
    _, addr = parseaddr(address)
    match = _EMAIL_DOMAIN_RE.search(addr)
    return match.group(1) if match else "localhost"


class SMTPTransport:
    """Deliver messages over SMTP with opportunistic STARTTLS.

    Attributes:
        config: SMTP settings.
    """

    def __init__(self, config: SMTPConfig) -> None:
        """Initialize SMTP transport.

        Args:
            config: SMTP settings.
        """
        self.config = config
        logger.debug(
            "Initialized SMTP transport for %s:%d",
            config.server,
            config.port,
        )

    def send(self, message: MailMessage) -> DeliveryResult:
        """Send a message.

        Fills in the configured From address, a Date and a Message-ID when
        the message lacks them.

        Args:
            message: Prepared message.

        Returns:
            Delivery result with any refused recipients.

        Raises:
            SMTPSendError: If the message has no recipients or sender, or
                sending fails.
        """
        recipients = message.recipients
        if not recipients:
            raise SMTPSendError("Message has no recipients")

        if not message.from_address:
            message.from_address = self.config.from_address
        if not message.from_address:
            raise SMTPSendError("Message has no From address")

        mime = message.to_mime()
        if "Date" not in mime:
            mime["Date"] = formatdate(localtime=True)
        if "Message-ID" not in mime:
            mime["Message-ID"] = make_msgid(
                domain=_extract_domain(message.from_address)
            )
        message_id = mime["Message-ID"]

        logger.debug("Sending email to %s: %s", recipients, message.subject)
        try:
            with smtplib.SMTP(self.config.server, self.config.port) as server:
                server.ehlo()
                # Only use STARTTLS if the server supports it
                if server.has_extn("STARTTLS"):
                    server.starttls()
                    server.ehlo()
                if self.config.require_auth:
                    server.login(self.config.username, self.config.password)
                refused = server.send_message(mime, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email: %s", e)
            raise SMTPSendError(f"Failed to send email: {e}") from e

        if refused:
            logger.warning("Recipients refused: %s", ", ".join(refused))
        logger.info("Sent email %s to %s", message_id, ", ".join(recipients))
        return DeliveryResult(
            message_id=message_id,
            recipients=tuple(recipients),
            refused=dict(refused),
        )
