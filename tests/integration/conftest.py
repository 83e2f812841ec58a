# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared fixtures for integration tests.

Provides an in-process SMTP server (aiosmtpd) that records delivered
messages, and a throwaway GnuPG home with generated keys when a gpg
binary is available.
"""

import logging
import shutil
import socket
import threading
import time
from collections.abc import Generator
from dataclasses import dataclass
from email.message import Message
from pathlib import Path

import gnupg
import pytest
from aiosmtpd.controller import Controller
from aiosmtpd.handlers import Message as SMTPMessageHandler


logger = logging.getLogger(__name__)


def find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        return s.getsockname()[1]


class RecordingSMTPHandler(SMTPMessageHandler):
    """SMTP handler that keeps every received message."""

    def __init__(self) -> None:
        super().__init__()
        self.messages: list[Message] = []
        self._lock = threading.Lock()
        self._received = threading.Event()

    def handle_message(  # type: ignore[override]
        self, message: Message
    ) -> None:
        """Store a received message."""
        logger.info("SMTP received message: %s", message.get("Subject", ""))
        with self._lock:
            self.messages.append(message)
        self._received.set()

    def wait_for_message(self, timeout: float = 10.0) -> Message | None:
        """Return the first received message, waiting up to ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                if self.messages:
                    return self.messages[0]
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._received.clear()
            self._received.wait(timeout=min(remaining, 1.0))


@pytest.fixture
def smtp_server() -> Generator[tuple[int, RecordingSMTPHandler]]:
    """Run an SMTP server on localhost.

    Yields:
        ``(port, handler)``; ``handler.messages`` holds what was received.
    """
    # aiosmtpd's Controller cannot be started on port 0
    port = find_free_port()
    handler = RecordingSMTPHandler()
    controller = Controller(handler, hostname="127.0.0.1", port=port)
    controller.start()
    try:
        yield port, handler
    finally:
        controller.stop()


@dataclass(frozen=True)
class GnuPGHome:
    """A generated GnuPG home with one recipient and one signing key."""

    path: Path
    recipient: str
    recipient_fingerprint: str
    signer: str
    signer_fingerprint: str

    def gpg(self) -> gnupg.GPG:
        """Return a python-gnupg handle on this home."""
        return gnupg.GPG(gnupghome=str(self.path))


def _generate_key(gpg: gnupg.GPG, email: str) -> str:
    key_input = gpg.gen_key_input(
        key_type="RSA",
        key_length=2048,
        name_real="GPG Mailer Test",
        name_email=email,
        expire_date=0,
        no_protection=True,
    )
    result = gpg.gen_key(key_input)
    assert result.fingerprint, f"key generation failed: {result.stderr}"
    return str(result.fingerprint)


@pytest.fixture(scope="session")
def gnupg_home(
    tmp_path_factory: pytest.TempPathFactory,
) -> Generator[GnuPGHome]:
    """Create a GnuPG home holding unprotected test keys.

    Skips when no gpg binary is installed.
    """
    if shutil.which("gpg") is None:
        pytest.skip("gpg binary not available")

    path = tmp_path_factory.mktemp("gnupg")
    path.chmod(0o700)
    gpg = gnupg.GPG(gnupghome=str(path))
    home = GnuPGHome(
        path=path,
        recipient="recipient@example.com",
        recipient_fingerprint=_generate_key(gpg, "recipient@example.com"),
        signer="signer@example.com",
        signer_fingerprint=_generate_key(gpg, "signer@example.com"),
    )
    yield home
