# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""OpenPGP engine used by the mailer.

The mailer needs exactly two operations from OpenPGP: encrypt to one
recipient key, and encrypt to one recipient key while signing with one
signing key.  ``OpenPGPEngine`` is that contract; ``GnuPGEngine`` fulfils
it by driving the ``gpg`` binary through python-gnupg.

Every gpg invocation is a subprocess that can block (pinentry, a stuck
agent, a keyserver lookup), so ``GnuPGEngine`` bounds each call with the
configured timeout.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

import gnupg

from gpgmailer.config import GPGConfig


logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Raised when gpg is unavailable or an encrypt/sign call fails."""


class OpenPGPEngine(Protocol):
    """Encryption backend contract.

    Both operations return ASCII-armored OpenPGP text.
    """

    def encrypt(self, plaintext: bytes, recipient: str) -> bytes:
        """Encrypt ``plaintext`` to ``recipient``."""
        ...

    def encrypt_and_sign(
        self,
        plaintext: bytes,
        recipient: str,
        signer: str,
        passphrase: str | None,
    ) -> bytes:
        """Encrypt ``plaintext`` to ``recipient`` and sign as ``signer``."""
        ...


class GnuPGEngine:
    """``OpenPGPEngine`` backed by python-gnupg.

    Attributes:
        config: GPG settings (homedir, binary, trust, timeout).
    """

    def __init__(self, config: GPGConfig) -> None:
        """Start a gpg handle for the configured homedir.

        Args:
            config: GPG settings.

        Raises:
            EngineError: If the gpg binary cannot be run.
        """
        self.config = config
        homedir = str(config.homedir) if config.homedir else None
        try:
            self._gpg = gnupg.GPG(
                gnupghome=homedir, gpgbinary=config.gpg_binary
            )
        except (OSError, ValueError) as e:
            raise EngineError(
                f"Cannot start gpg ({config.gpg_binary}): {e}"
            ) from e

        logger.debug(
            "Initialized gpg %s (homedir=%s)",
            ".".join(str(v) for v in self._gpg.version or ()),
            homedir or "default",
        )

    def encrypt(self, plaintext: bytes, recipient: str) -> bytes:
        """Encrypt to a single recipient key.

        Raises:
            EngineError: If gpg reports a failure or times out.
        """
        return self._encrypt(plaintext, recipient)

    def encrypt_and_sign(
        self,
        plaintext: bytes,
        recipient: str,
        signer: str,
        passphrase: str | None,
    ) -> bytes:
        """Encrypt to a single recipient key and sign with ``signer``.

        Raises:
            EngineError: If gpg reports a failure (including a rejected
                passphrase) or times out.
        """
        return self._encrypt(
            plaintext, recipient, sign=signer, passphrase=passphrase
        )

    def _encrypt(
        self, plaintext: bytes, recipient: str, **kwargs: Any
    ) -> bytes:
        result = self._call(
            self._gpg.encrypt,
            plaintext,
            [recipient],
            armor=True,
            always_trust=self.config.always_trust,
            **kwargs,
        )
        if not result.ok:
            # gnupg only exposes a coarse status line; stderr has the detail
            logger.debug("gpg stderr: %s", result.stderr)
            raise EngineError(
                f"Encryption to {recipient} failed: {result.status}"
            )
        logger.debug(
            "Encrypted %d bytes to %s%s",
            len(plaintext),
            recipient,
            f" (signed by {kwargs['sign']})" if kwargs.get("sign") else "",
        )
        return result.data

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a gpg call, bounded by the configured timeout."""
        timeout = self.config.engine_timeout_seconds
        if timeout is None:
            return func(*args, **kwargs)

        outcome: dict[str, Any] = {}

        def run() -> None:
            try:
                outcome["result"] = func(*args, **kwargs)
            except Exception as e:
                outcome["error"] = e

        # A hung gpg must not block interpreter exit
        worker = threading.Thread(
            target=run, name="gpgmailer-gpg", daemon=True
        )
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise EngineError(f"gpg did not finish within {timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]
