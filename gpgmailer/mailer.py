# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mailer that encrypts message contents with OpenPGP before delivery.

``GPGMailer`` decorates a ``MailMessage``: the body and every attachment
are encrypted (and signed, when a signing key is configured) to a single
recipient key, the subject is re-encoded as a UTF-8 encoded-word, and the
result is handed to a ``MailTransport``.

Encrypting HTML is not supported.  ``send_html()`` logs a warning and sends
the plain-text rendering of the HTML body instead.

Key validation happens in two phases.  The encryption key must resolve at
construction time, before any gpg process is started.  A missing signing
passphrase is only reported on the first encrypt call, because whether a
passphrase is needed depends on the key and the gpg agent.
"""

import logging
from pathlib import Path

from gpgmailer.config import ConfigError, GPGConfig
from gpgmailer.engine import GnuPGEngine, OpenPGPEngine
from gpgmailer.html_to_text import xml_to_raw
from gpgmailer.logging import SecretFilter
from gpgmailer.message import (
    ENCRYPTED_SUFFIX,
    Attachment,
    MailMessage,
    encode_subject,
    encrypted_attachment_content_type,
)
from gpgmailer.transport import DeliveryResult, MailTransport


logger = logging.getLogger(__name__)

HTML_WARNING = (
    "HTML email content cannot be encrypted, only the plain text component "
    "of this email will be generated."
)

# Name used for in-memory attachments given without a destination name
_DEFAULT_ATTACHMENT_NAME = "attachment"


def _delegated(name: str) -> property:
    """Expose ``MailMessage.<name>`` as a read/write property."""

    def getter(self: "GPGMailer") -> object:
        return getattr(self.message, name)

    def setter(self: "GPGMailer", value: object) -> None:
        setattr(self.message, name, value)

    return property(getter, setter, doc=f"``MailMessage.{name}``.")


class GPGMailer:
    """Encrypting wrapper around a ``MailMessage``.

    One instance prepares and sends one message.  Attachments may be added
    any number of times before sending.

    Attributes:
        message: The wrapped message, mutated in place on send.
        encrypt_key: Resolved recipient key identifier.
        sign_key: Resolved signing key identifier, or None.
        sign_key_passphrase: Passphrase for ``sign_key``, or None.
        signing_enabled: Whether every encryption is also signed.
    """

    from_address = _delegated("from_address")
    to = _delegated("to")
    cc = _delegated("cc")
    bcc = _delegated("bcc")
    reply_to = _delegated("reply_to")
    subject = _delegated("subject")
    body = _delegated("body")
    attachments = _delegated("attachments")

    def __init__(
        self,
        config: GPGConfig,
        transport: MailTransport,
        *,
        encrypt_key: str | None = None,
        sign_key: str | None = None,
        sign_key_passphrase: str | None = None,
        message: MailMessage | None = None,
        engine: OpenPGPEngine | None = None,
    ) -> None:
        """Resolve keys and prepare the encryption engine.

        Explicit arguments win over the defaults in ``config``.  Signing is
        enabled whenever a signing key resolves from either source.

        Args:
            config: GPG settings and process-wide key defaults.
            transport: Delivery backend receiving the encrypted message.
            encrypt_key: Recipient key (email address or fingerprint).
            sign_key: Signing key (email address or fingerprint).
            sign_key_passphrase: Passphrase for the signing key.
            message: Message to wrap.  A blank one is created when None.
            engine: OpenPGP engine.  A ``GnuPGEngine`` is built from
                ``config`` when None.

        Raises:
            ConfigError: If no encryption key is given or configured.
            EngineError: If the default engine cannot start gpg.
        """
        resolved_encrypt_key = encrypt_key or config.encrypt_key
        if not resolved_encrypt_key:
            raise ConfigError("missing encryption key")

        self.config = config
        self.transport = transport
        self.message = message if message is not None else MailMessage()
        self.encrypt_key = resolved_encrypt_key

        self.sign_key: str | None = None
        self.sign_key_passphrase: str | None = None
        self.signing_enabled = False
        if sign_key or config.sign_key:
            if sign_key_passphrase is None:
                sign_key_passphrase = config.sign_key_passphrase
            self.sign_key = sign_key or config.sign_key
            self.sign_key_passphrase = sign_key_passphrase
            self.signing_enabled = True
            SecretFilter.register_secret(sign_key_passphrase)

        self.engine: OpenPGPEngine = (
            engine if engine is not None else GnuPGEngine(config)
        )

        # Plaintext retained so that repeated sends re-encrypt the original
        self._encoded_subject: str | None = None
        self._plain_body: str | None = None
        self._encrypted_body: str | None = None

        logger.debug(
            "GPG mailer ready: encrypt to %s, sign as %s",
            self.encrypt_key,
            self.sign_key or "-",
        )

    def send(self) -> DeliveryResult:
        """Encrypt and send the message.  Same as ``send_plain()``."""
        return self.send_plain()

    def send_plain(self) -> DeliveryResult:
        """Encrypt the body, re-encode the subject and deliver.

        The message is rewritten in place: the subject becomes a UTF-8
        encoded-word, header folding is disabled so the armor is never
        re-wrapped, the body becomes ``text/plain`` with the configured
        transfer encoding, and the body text is replaced by ASCII-armored
        ciphertext.

        Returns:
            The transport's delivery result, unchanged.

        Raises:
            ConfigError: If signing needs a passphrase that is missing.
            EngineError: If encryption or signing fails.
            SMTPSendError: If the stock SMTP transport fails to deliver.
        """
        message = self.message

        if message.subject != self._encoded_subject:
            self._encoded_subject = encode_subject(message.subject)
        message.subject = self._encoded_subject

        message.max_line_length = 0
        message.content_type = "text/plain"
        message.transfer_encoding = self.config.transfer_encoding

        if message.body != self._encrypted_body:
            self._plain_body = message.body
        plaintext = self._plain_body or ""
        ciphertext = self._encrypt(plaintext.encode("utf-8"))
        self._encrypted_body = ciphertext.decode("ascii")
        message.body = self._encrypted_body

        return self.transport.send(message)

    def send_html(self) -> DeliveryResult:
        """Send the plain-text rendering of an HTML body, encrypted.

        HTML cannot be encrypted, so a warning is logged and the body is
        replaced by its plain-text rendering before ``send_plain()``.
        """
        logger.warning(HTML_WARNING)
        self.message.body = xml_to_raw(self.message.body)
        return self.send_plain()

    def add_attachment(
        self,
        source: str | Path | bytes | None,
        dest_filename: str | None = None,
        mime_type: str | None = None,
    ) -> "GPGMailer":
        """Encrypt a file and attach it as ``<name>.pgp``.

        A missing or unreadable source is logged as a warning and ignored.
        The attachment is always typed ``application/octet-stream``; the
        original type no longer describes the encrypted bytes.

        Args:
            source: Path of the file to attach, or its contents.
            dest_filename: Name to present to the recipient, before the
                ``.pgp`` suffix.  Defaults to the source's base name.
            mime_type: Accepted for interface compatibility; ignored.

        Returns:
            self, for chaining.

        Raises:
            ConfigError: If signing needs a passphrase that is missing.
            EngineError: If encryption or signing fails.
        """
        if not source:
            logger.warning(
                "add_attachment: not passed a filename and/or data"
            )
            return self

        if isinstance(source, bytes):
            contents = source
            base = dest_filename or _DEFAULT_ATTACHMENT_NAME
        else:
            path = Path(source)
            try:
                contents = path.read_bytes()
            except OSError as e:
                logger.warning("add_attachment: cannot read %s: %s", path, e)
                return self
            base = dest_filename or path.name

        if mime_type:
            logger.debug(
                "Ignoring MIME type %s for encrypted attachment %s",
                mime_type,
                base,
            )

        filename = base + ENCRYPTED_SUFFIX
        self.message.attach(
            Attachment(
                filename=filename,
                contents=self._encrypt(contents),
                content_type=encrypted_attachment_content_type(filename),
            )
        )
        logger.debug(
            "Attached encrypted %s (%d plaintext bytes)",
            filename,
            len(contents),
        )
        return self

    def _encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt with the job's key material, signing when enabled."""
        if not self.signing_enabled:
            return self.engine.encrypt(plaintext, self.encrypt_key)

        assert self.sign_key is not None
        if (
            self.sign_key_passphrase is None
            and self.config.sign_passphrase_required
        ):
            raise ConfigError(
                f"missing passphrase for signing key {self.sign_key}"
            )
        return self.engine.encrypt_and_sign(
            plaintext,
            self.encrypt_key,
            self.sign_key,
            self.sign_key_passphrase,
        )
