# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Outbound message value and its MIME serialization.

``MailMessage`` is the mutable message the mailer decorates with
encryption: the mailer rewrites its subject, body, content metadata and
attachments in place, then hands it to a transport which calls
``to_mime()`` to produce the wire form.
"""

import base64
import logging
from dataclasses import dataclass, field
from email import encoders
from email.message import Message
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.nonmultipart import MIMENonMultipart
from email.mime.text import MIMEText
from email.policy import compat32

from gpgmailer.html_to_text import xml_to_raw


logger = logging.getLogger(__name__)

#: Content type forced onto every encrypted attachment.
ENCRYPTED_ATTACHMENT_TYPE = "application/octet-stream"

#: Filename suffix marking an attachment as OpenPGP ciphertext.
ENCRYPTED_SUFFIX = ".pgp"


def encode_subject(subject: str) -> str:
    """Wrap a subject in a UTF-8 base64 MIME encoded-word.

    The subject is first reduced to raw text (entities decoded, markup
    stripped) and always encoded, even when it is plain ASCII.

    Args:
        subject: Subject as composed by the caller.

    Returns:
        ``=?UTF-8?B?<base64>?=``.
    """
    raw = xml_to_raw(subject)
    encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def encrypted_attachment_content_type(filename: str) -> str:
    """Return the Content-Type header value for an encrypted attachment.

    The folded form with a trailing newline and single-quoted name is the
    value historically produced for these attachments; ``to_mime()``
    unfolds it when writing the header.
    """
    return f"{ENCRYPTED_ATTACHMENT_TYPE};\n\tname='{filename}'\n"


def _unfold(value: str) -> str:
    """Collapse header folding whitespace into single spaces."""
    return " ".join(value.split())


@dataclass
class Attachment:
    """A file attached to a ``MailMessage``.

    Attributes:
        filename: Name presented to the recipient.
        contents: Raw attachment bytes.
        content_type: Content-Type header value (may be folded).
    """

    filename: str
    contents: bytes
    content_type: str = ENCRYPTED_ATTACHMENT_TYPE

    def to_mime(self) -> MIMEApplication:
        """Build the base64-encoded MIME part for this attachment."""
        content_type = _unfold(self.content_type)
        subtype = content_type.split(";", 1)[0].split("/", 1)[-1].strip()
        part = MIMEApplication(
            self.contents, _subtype=subtype or "octet-stream"
        )
        part.replace_header("Content-Type", content_type)
        part.add_header(
            "Content-Disposition", "attachment", filename=self.filename
        )
        return part


@dataclass
class MailMessage:
    """Mutable outbound email message.

    Attributes:
        from_address: From header.  Transports may fill in a default.
        to: Primary recipients.
        cc: Carbon-copy recipients.
        bcc: Blind carbon-copy recipients (never written as a header).
        reply_to: Optional Reply-To header.
        subject: Subject header value, written as-is.
        body: Message body text.
        content_type: MIME type of the body part.
        transfer_encoding: Content-Transfer-Encoding of the body part.
            None lets the serializer choose.
        max_line_length: Header folding limit.  0 or None disables
            folding.
        attachments: Attachments in presentation order.
        headers: Additional headers (e.g. Message-ID).
    """

    from_address: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    reply_to: str | None = None
    subject: str = ""
    body: str = ""
    content_type: str = "text/plain"
    transfer_encoding: str | None = None
    max_line_length: int | None = 78
    attachments: list[Attachment] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def recipients(self) -> list[str]:
        """All envelope recipients (To, Cc and Bcc)."""
        return [*self.to, *self.cc, *self.bcc]

    def attach(self, attachment: Attachment) -> None:
        """Append an attachment."""
        self.attachments.append(attachment)

    def to_mime(self) -> Message:
        """Serialize to a stdlib email message.

        A message without attachments is a single body part; otherwise a
        ``multipart/mixed`` container holds the body part first, followed
        by one part per attachment.

        Returns:
            Message ready for ``smtplib.SMTP.send_message``.

        Raises:
            ValueError: If a ``7bit`` transfer encoding is requested for a
                body that is not ASCII.
        """
        policy = compat32.clone(max_line_length=self.max_line_length or None)

        body_part = self._body_part()
        if self.attachments:
            msg: Message = MIMEMultipart("mixed", policy=policy)
            msg.attach(body_part)
            for attachment in self.attachments:
                msg.attach(attachment.to_mime())
                logger.debug(
                    "Attached file: %s (%d bytes)",
                    attachment.filename,
                    len(attachment.contents),
                )
        else:
            msg = body_part
            msg.policy = policy

        if self.from_address:
            msg["From"] = self.from_address
        if self.to:
            msg["To"] = ", ".join(self.to)
        if self.cc:
            msg["Cc"] = ", ".join(self.cc)
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg["Subject"] = self.subject
        for name, value in self.headers.items():
            msg[name] = value
        return msg

    def _body_part(self) -> Message:
        maintype, _, subtype = self.content_type.partition("/")
        subtype = subtype or "plain"
        charset = "us-ascii" if self.body.isascii() else "utf-8"

        encoding = self.transfer_encoding
        if encoding is None:
            return MIMEText(self.body, subtype, charset)

        part = MIMENonMultipart(maintype, subtype, charset=charset)
        if encoding == "base64":
            part.set_payload(self.body.encode(charset))
            encoders.encode_base64(part)
        elif encoding == "7bit" and charset != "us-ascii":
            raise ValueError("7bit transfer encoding requires an ASCII body")
        else:
            # Header first so set_payload applies the charset without
            # re-encoding the body
            part["Content-Transfer-Encoding"] = encoding
            part.set_payload(self.body, charset)
        return part
