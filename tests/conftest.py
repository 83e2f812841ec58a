# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test modules."""

import base64
import itertools
from pathlib import Path

import pytest

from gpgmailer import dotenv_loader
from gpgmailer.config import GPGConfig
from gpgmailer.logging import SecretFilter
from gpgmailer.message import MailMessage
from gpgmailer.transport import DeliveryResult


ARMOR_BEGIN = "-----BEGIN PGP MESSAGE-----"
ARMOR_END = "-----END PGP MESSAGE-----"


class FakeEngine:
    """In-memory OpenPGP engine producing armor-shaped, reversible output.

    Each call embeds a fresh counter so repeated encryptions of the same
    plaintext differ, like real OpenPGP output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self._nonce = itertools.count(1)

    def encrypt(self, plaintext: bytes, recipient: str) -> bytes:
        self.calls.append(("encrypt", plaintext, recipient))
        return self._armor(plaintext, recipient, None)

    def encrypt_and_sign(
        self,
        plaintext: bytes,
        recipient: str,
        signer: str,
        passphrase: str | None,
    ) -> bytes:
        self.calls.append(
            ("encrypt_and_sign", plaintext, recipient, signer, passphrase)
        )
        return self._armor(plaintext, recipient, signer)

    def _armor(
        self, plaintext: bytes, recipient: str, signer: str | None
    ) -> bytes:
        nonce = next(self._nonce)
        payload = base64.b64encode(plaintext).decode("ascii")
        lines = [ARMOR_BEGIN, f"Comment: to {recipient} #{nonce}"]
        if signer:
            lines.append(f"Comment: signed {signer}")
        lines += ["", payload, ARMOR_END, ""]
        return "\n".join(lines).encode("ascii")


def _fake_decrypt(armored: bytes | str) -> tuple[bytes, str | None]:
    """Reverse ``FakeEngine`` output into ``(plaintext, signer)``."""
    if isinstance(armored, bytes):
        armored = armored.decode("ascii")
    lines = armored.splitlines()
    assert lines[0] == ARMOR_BEGIN
    signer = None
    for line in lines:
        if line.startswith("Comment: signed "):
            signer = line.removeprefix("Comment: signed ")
    payload = lines[lines.index("") + 1]
    return base64.b64decode(payload), signer


class FakeTransport:
    """Transport recording messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[MailMessage] = []
        self.snapshots: list[dict] = []

    def send(self, message: MailMessage) -> DeliveryResult:
        self.sent.append(message)
        self.snapshots.append(
            {
                "subject": message.subject,
                "body": message.body,
                "content_type": message.content_type,
                "transfer_encoding": message.transfer_encoding,
            }
        )
        return DeliveryResult(
            message_id=f"<fake.{len(self.sent)}@example.com>",
            recipients=tuple(message.recipients),
        )


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch: pytest.MonkeyPatch):
    """Keep secrets and .env loading from leaking between tests."""
    SecretFilter.clear_secrets()
    monkeypatch.setattr(dotenv_loader, "_dotenv_loaded", True)
    for name in (
        "GPGMAILER_ENCRYPT_KEY",
        "GPGMAILER_SIGN_KEY",
        "GPGMAILER_SIGN_KEY_PASSPHRASE",
        "GPGMAILER_HOMEDIR",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def engine() -> FakeEngine:
    """Fake OpenPGP engine."""
    return FakeEngine()


@pytest.fixture
def decrypt():
    """Function reversing FakeEngine output into ``(plaintext, signer)``."""
    return _fake_decrypt


@pytest.fixture
def transport() -> FakeTransport:
    """Recording transport."""
    return FakeTransport()


@pytest.fixture
def gpg_config() -> GPGConfig:
    """GPG config with an encryption key and no signing."""
    return GPGConfig(encrypt_key="recipient@example.com")


@pytest.fixture
def message() -> MailMessage:
    """Plain message with one recipient."""
    return MailMessage(
        from_address="Sender <sender@example.com>",
        to=["recipient@example.com"],
        subject="Quarterly report",
        body="Numbers are attached.\n",
    )


@pytest.fixture
def report_file(tmp_path: Path) -> Path:
    """A small PDF-looking file on disk."""
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\nfake pdf body\n")
    return path
