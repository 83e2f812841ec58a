# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading for the mailer's environment defaults.

``GPGMAILER_*`` variables may live in a ``.env`` file next to the
deployment instead of the real environment.  Values already present in
the environment are never overwritten.
"""

import logging
from pathlib import Path

from dotenv import find_dotenv, load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(env_path: Path | None = None) -> None:
    """Load a ``.env`` file once per process.

    Args:
        env_path: Explicit path to a ``.env`` file.  When None or missing,
            python-dotenv searches upwards from the working directory.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    if env_path is not None and env_path.exists():
        load_dotenv(env_path)
        logger.debug("Loaded .env from %s", env_path)
    else:
        load_dotenv(find_dotenv(usecwd=True))
        logger.debug("Loaded .env from current directory")
    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the loaded flag.  For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
