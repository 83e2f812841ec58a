# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the encrypting mailer.

Configuration is loaded from a YAML file with support for ``!env`` tags
that resolve values from environment variables at load time::

    gpg:
      encrypt_key: !env GPGMAILER_ENCRYPT_KEY
      sign_key: !env GPGMAILER_SIGN_KEY
      sign_key_passphrase: !env GPGMAILER_SIGN_KEY_PASSPHRASE
      relative_homedir: keys/
    smtp:
      server: smtp.example.com
      password: !env SMTP_PASSWORD

Without a file, ``GPGConfig.from_env()`` reads the process-wide defaults
straight from ``GPGMAILER_*`` environment variables.  Either way the
result is an immutable value that is passed explicitly to ``GPGMailer``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml

from gpgmailer.dotenv_loader import load_dotenv_once
from gpgmailer.logging import SecretFilter


logger = logging.getLogger(__name__)

ENV_ENCRYPT_KEY = "GPGMAILER_ENCRYPT_KEY"
ENV_SIGN_KEY = "GPGMAILER_SIGN_KEY"
ENV_SIGN_KEY_PASSPHRASE = "GPGMAILER_SIGN_KEY_PASSPHRASE"
ENV_HOMEDIR = "GPGMAILER_HOMEDIR"

#: Content-Transfer-Encoding values accepted for the encrypted body.
TRANSFER_ENCODINGS = frozenset({"7bit", "8bit", "base64"})

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


class ConfigError(Exception):
    """Raised for missing or invalid mailer configuration."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``,
            ``Path``).
        default: Default when the value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


# ---------------------------------------------------------------------------
# GPG configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GPGConfig:
    """OpenPGP settings and process-wide key defaults.

    Attributes:
        encrypt_key: Default recipient key (email address or fingerprint)
            used when ``GPGMailer`` is not given one explicitly.
        sign_key: Default signing key.  When set, every mailer built from
            this config signs unless given another key.
        sign_key_passphrase: Passphrase for the signing key (auto-redacted
            in logs).
        homedir: GnuPG home directory holding the keyrings.  None uses
            gpg's own default.
        gpg_binary: Name or path of the gpg executable.
        always_trust: Skip key validity checks when encrypting.
        engine_timeout_seconds: Upper bound for a single gpg invocation.
            None waits indefinitely.
        transfer_encoding: Content-Transfer-Encoding declared for the
            armored body.
        sign_passphrase_required: Whether signing without a passphrase is
            a configuration error.  Disable for agent-held or unprotected
            signing keys.
    """

    encrypt_key: str | None = None
    sign_key: str | None = None
    sign_key_passphrase: str | None = None
    homedir: Path | None = None
    gpg_binary: str = "gpg"
    always_trust: bool = False
    engine_timeout_seconds: float | None = 30.0
    transfer_encoding: str = "7bit"
    sign_passphrase_required: bool = True

    def __post_init__(self) -> None:
        """Validate configuration and register the passphrase secret.

        Raises:
            ConfigError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.sign_key_passphrase)

        if self.transfer_encoding not in TRANSFER_ENCODINGS:
            raise ConfigError(
                f"Unsupported transfer encoding: {self.transfer_encoding!r} "
                f"(expected one of {', '.join(sorted(TRANSFER_ENCODINGS))})"
            )
        if (
            self.engine_timeout_seconds is not None
            and self.engine_timeout_seconds <= 0
        ):
            raise ConfigError(
                f"Engine timeout must be > 0: {self.engine_timeout_seconds}"
            )
        if not self.gpg_binary:
            raise ConfigError("gpg_binary cannot be empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> "GPGConfig":
        """Build a config from ``GPGMAILER_*`` environment variables.

        A ``.env`` file is loaded first if present.

        Args:
            **overrides: Field values taking precedence over the
                environment.

        Returns:
            GPGConfig instance.
        """
        load_dotenv_once()
        homedir = _resolve(_EnvVar(ENV_HOMEDIR), Path)
        values: dict[str, Any] = {
            "encrypt_key": os.environ.get(ENV_ENCRYPT_KEY) or None,
            "sign_key": os.environ.get(ENV_SIGN_KEY) or None,
            "sign_key_passphrase": os.environ.get(ENV_SIGN_KEY_PASSPHRASE),
            "homedir": homedir,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def _from_raw(cls, raw: dict, base_dir: Path) -> "GPGConfig":
        """Build config from the parsed ``gpg`` section.

        ``relative_homedir`` is resolved against ``base_dir``.  An explicit
        ``GPGMAILER_HOMEDIR`` environment variable overrides both homedir
        settings.
        """
        homedir = _resolve(raw.get("homedir"), Path)
        relative_homedir = _resolve(raw.get("relative_homedir"), Path)
        if relative_homedir is not None:
            if homedir is not None:
                raise ConfigError(
                    "gpg.homedir and gpg.relative_homedir are mutually "
                    "exclusive"
                )
            homedir = (base_dir / relative_homedir).resolve()

        env_homedir = _resolve(_EnvVar(ENV_HOMEDIR), Path)
        if env_homedir is not None:
            logger.debug(
                "%s overrides configured homedir %s", ENV_HOMEDIR, homedir
            )
            homedir = env_homedir

        timeout = raw.get("engine_timeout", _MISSING)
        return cls(
            encrypt_key=_resolve(raw.get("encrypt_key"), str),
            sign_key=_resolve(raw.get("sign_key"), str),
            sign_key_passphrase=_raw_resolve(raw.get("sign_key_passphrase")),
            homedir=homedir,
            gpg_binary=_resolve(raw.get("gpg_binary"), str, default="gpg"),
            always_trust=_resolve(
                raw.get("always_trust"), bool, default=False
            ),
            engine_timeout_seconds=(
                30.0
                if timeout is _MISSING
                else _resolve(timeout, float)
            ),
            transfer_encoding=_resolve(
                raw.get("transfer_encoding"), str, default="7bit"
            ),
            sign_passphrase_required=_resolve(
                raw.get("sign_passphrase_required"), bool, default=True
            ),
        )


# ---------------------------------------------------------------------------
# SMTP configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SMTPConfig:
    """SMTP delivery settings.

    Attributes:
        server: SMTP server hostname.
        port: SMTP port.
        username: Account username for AUTH.
        password: Account password (auto-redacted in logs).
        from_address: Default From address for outgoing mail.
        require_auth: Whether to authenticate before sending.
    """

    server: str
    port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = ""
    require_auth: bool = True

    def __post_init__(self) -> None:
        """Validate configuration and register the password secret.

        Raises:
            ConfigError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.password)

        if not self.server:
            raise ConfigError("smtp.server cannot be empty")
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid SMTP port: {self.port}")
        if self.require_auth and not self.username:
            raise ConfigError("smtp.username is required when require_auth")

    @classmethod
    def _from_raw(cls, raw: dict) -> "SMTPConfig":
        """Build config from the parsed ``smtp`` section."""
        server = _resolve(raw.get("server"), str)
        if not server:
            raise ConfigError("Required config 'smtp.server' is missing")
        return cls(
            server=server,
            port=_resolve(raw.get("port"), int, default=587),
            username=_resolve(raw.get("username"), str, default=""),
            password=_resolve(raw.get("password"), str, default=""),
            from_address=_resolve(raw.get("from_address"), str, default=""),
            require_auth=_resolve(raw.get("require_auth"), bool, default=True),
        )


# ---------------------------------------------------------------------------
# Complete configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MailerConfig:
    """Complete mailer configuration.

    Attributes:
        gpg: OpenPGP settings and key defaults.
        smtp: SMTP delivery settings, or None when the caller supplies its
            own transport.
    """

    gpg: GPGConfig
    smtp: SMTPConfig | None = None

    @classmethod
    def from_yaml(cls, config_path: Path) -> "MailerConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to the YAML config file.

        Returns:
            MailerConfig instance.

        Raises:
            ConfigError: If the file is missing or malformed.
        """
        load_dotenv_once()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(
                    f"Invalid YAML in {config_path}: {e}"
                ) from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw, config_path.parent.resolve())
        logger.info(
            "Mailer config loaded from %s: homedir=%s, signing=%s, smtp=%s",
            config_path,
            config.gpg.homedir,
            bool(config.gpg.sign_key),
            config.smtp.server if config.smtp else None,
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict, base_dir: Path) -> "MailerConfig":
        """Build config from a parsed (but unresolved) YAML dict."""
        gpg_raw = raw.get("gpg") or {}
        if not isinstance(gpg_raw, dict):
            raise ConfigError("'gpg' must be a YAML mapping")

        smtp_raw = raw.get("smtp")
        if smtp_raw is not None and not isinstance(smtp_raw, dict):
            raise ConfigError("'smtp' must be a YAML mapping")

        return cls(
            gpg=GPGConfig._from_raw(gpg_raw, base_dir),
            smtp=SMTPConfig._from_raw(smtp_raw) if smtp_raw else None,
        )
