# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""OpenPGP-encrypting mail adapter.

Provides:
- GPGMailer: encrypts (and optionally signs) a message's body and
  attachments, then hands it to a transport
- MailMessage / Attachment: the mutable outbound message
- GnuPGEngine: python-gnupg backed OpenPGP engine
- SMTPTransport: SMTP delivery
- MailerConfig / GPGConfig / SMTPConfig: YAML and environment configuration
"""

from gpgmailer.config import ConfigError, GPGConfig, MailerConfig, SMTPConfig
from gpgmailer.engine import EngineError, GnuPGEngine, OpenPGPEngine
from gpgmailer.mailer import GPGMailer
from gpgmailer.message import Attachment, MailMessage, encode_subject
from gpgmailer.transport import (
    DeliveryResult,
    MailTransport,
    SMTPSendError,
    SMTPTransport,
)


__all__ = [
    # config
    "ConfigError",
    "GPGConfig",
    "MailerConfig",
    "SMTPConfig",
    # engine
    "EngineError",
    "GnuPGEngine",
    "OpenPGPEngine",
    # mailer
    "GPGMailer",
    # message
    "Attachment",
    "MailMessage",
    "encode_subject",
    # transport
    "DeliveryResult",
    "MailTransport",
    "SMTPSendError",
    "SMTPTransport",
]
