"""
TicketKeeper Configuration

Settings for automatic sign-in: the configured accounts, scheduler timing,
directory session options and the external tool commands.

Configuration is read from a JSON document; scalar settings can be
overridden through ``TICKETKEEPER_*`` environment variables.

Example:
    {
        "accounts": [
            "alice@EXAMPLE.COM",
            {"upn": "bob@EXAMPLE.COM", "display_name": "Bob", "automatic": true}
        ],
        "check_interval": 900,
        "single_user_mode": false,
        "custom_attributes": ["employeeNumber"]
    }
"""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import attrs
import structlog
from attrs import validators

from ticketkeeper.core.exceptions import ConfigError
from ticketkeeper.core.types import Account

logger = structlog.get_logger()

DEFAULT_CHECK_INTERVAL = 15 * 60.0
DEFAULT_DEBOUNCE_DELAY = 3.0
DEFAULT_SESSION_TIMEOUT = 60.0
DEFAULT_DNS_TIMEOUT = 5.0
DEFAULT_CACHE_POLL_INTERVAL = 10.0

ENV_PREFIX = "TICKETKEEPER_"


class RestoreDefault(Enum):
    """When the coordinator restores the pre-pass default principal."""

    DISPATCH = "dispatch"
    COMPLETION = "completion"


def _positive(instance: Any, attribute: attrs.Attribute, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, got {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


@attrs.define(frozen=True)
class DirectorySessionOptions:
    """Per-session settings handed to every directory client."""

    use_ssl: bool = False
    anonymous_bind: bool = False
    recursive_group_lookup: bool = False
    custom_attributes: Tuple[str, ...] = attrs.field(default=(), converter=tuple)
    ldap_servers: Tuple[str, ...] = attrs.field(default=(), converter=tuple)


def load_accounts(entries: Iterable[Union[str, Mapping[str, Any]]]) -> List[Account]:
    """
    Build the account list from configuration entries.

    Entries are either a principal string or a mapping with ``upn`` and
    optional ``display_name`` / ``automatic``. Accounts are de-duplicated by
    lower-cased principal (first entry wins) and entries without a user part
    ("@DOMAIN") are dropped.
    """
    accounts: List[Account] = []
    seen = set()

    for entry in entries:
        if isinstance(entry, str):
            upn, display_name, automatic = entry, "", True
        elif isinstance(entry, Mapping):
            upn = entry.get("upn") or entry.get("principal") or ""
            display_name = entry.get("display_name", "")
            automatic = _to_bool(entry.get("automatic", True))
        else:
            raise ConfigError(f"Invalid account entry: {entry!r}")

        upn = str(upn).strip()
        if upn.startswith("@"):
            logger.warning("account_without_user_skipped", upn=upn)
            continue
        if upn.lower() in seen:
            logger.debug("duplicate_account_skipped", upn=upn)
            continue

        try:
            account = Account(upn, display_name=display_name, automatic=automatic)
        except ValueError as e:
            raise ConfigError(f"Invalid account {upn!r}: {e}") from e

        seen.add(account.key)
        accounts.append(account)

    return accounts


@attrs.define(frozen=True)
class SignInConfig:
    """
    Automatic sign-in configuration.

    Attributes:
        accounts: Accounts to keep signed in
        check_interval: Seconds between periodic sign-in passes
        debounce_delay: Quiet period after a change notification
        session_timeout: Upper bound on each directory library callback
        dns_timeout: SRV lookup lifetime
        cache_poll_interval: Ticket cache watcher poll period
        single_user_mode: Only sign in the cache's default principal
        restore_default_after: When to restore the pre-pass default principal
        klist_command: Ticket cache listing tool
        kswitch_command: Ticket cache default selection tool
        keyring_service: Service name of stored secrets
    """

    accounts: Tuple[Account, ...] = attrs.field(default=(), converter=tuple)
    check_interval: float = attrs.field(default=DEFAULT_CHECK_INTERVAL, converter=float, validator=_positive)
    debounce_delay: float = attrs.field(default=DEFAULT_DEBOUNCE_DELAY, converter=float, validator=_positive)
    session_timeout: float = attrs.field(default=DEFAULT_SESSION_TIMEOUT, converter=float, validator=_positive)
    dns_timeout: float = attrs.field(default=DEFAULT_DNS_TIMEOUT, converter=float, validator=_positive)
    cache_poll_interval: float = attrs.field(
        default=DEFAULT_CACHE_POLL_INTERVAL, converter=float, validator=_positive
    )
    single_user_mode: bool = attrs.field(default=False, converter=_to_bool)
    restore_default_after: RestoreDefault = attrs.field(
        default=RestoreDefault.COMPLETION, converter=RestoreDefault
    )

    # Directory session options
    use_ssl: bool = attrs.field(default=False, converter=_to_bool)
    anonymous_bind: bool = attrs.field(default=False, converter=_to_bool)
    recursive_group_lookup: bool = attrs.field(default=False, converter=_to_bool)
    custom_attributes: Tuple[str, ...] = attrs.field(default=(), converter=tuple)
    ldap_servers: Tuple[str, ...] = attrs.field(default=(), converter=tuple)

    # External tools and storage
    klist_command: str = attrs.field(default="klist", validator=validators.min_len(1))
    kswitch_command: str = attrs.field(default="kswitch", validator=validators.min_len(1))
    keyring_service: str = attrs.field(default="ticketkeeper", validator=validators.min_len(1))

    @property
    def automatic_accounts(self) -> List[Account]:
        return [a for a in self.accounts if a.automatic]

    def session_options(self) -> DirectorySessionOptions:
        return DirectorySessionOptions(
            use_ssl=self.use_ssl,
            anonymous_bind=self.anonymous_bind,
            recursive_group_lookup=self.recursive_group_lookup,
            custom_attributes=self.custom_attributes,
            ldap_servers=self.ldap_servers,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SignInConfig:
        """
        Build a validated config from a mapping.

        Raises:
            ConfigError: on unknown keys or invalid values
        """
        known = {a.name for a in attrs.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values = dict(data)
        values["accounts"] = load_accounts(values.get("accounts", ()))
        try:
            return cls(**values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> SignInConfig:
        """Apply ``TICKETKEEPER_<SETTING>`` overrides for scalar settings."""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for name in _ENV_SETTINGS:
            env_name = ENV_PREFIX + name.upper()
            if env_name in environ:
                overrides[name] = environ[env_name]
        if not overrides:
            return self

        logger.debug("config_env_overrides", settings=sorted(overrides))
        try:
            return attrs.evolve(self, **overrides)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid environment override: {e}") from e


_ENV_SETTINGS = (
    "check_interval",
    "debounce_delay",
    "session_timeout",
    "dns_timeout",
    "cache_poll_interval",
    "single_user_mode",
    "restore_default_after",
    "klist_command",
    "kswitch_command",
    "keyring_service",
)


def load_config(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
) -> SignInConfig:
    """
    Load configuration from a JSON file and apply environment overrides.

    Raises:
        ConfigError: if the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root in {path} must be an object")

    config = SignInConfig.from_dict(data).with_env_overrides(environ)
    logger.info(
        "config_loaded",
        path=str(path),
        accounts=len(config.accounts),
        automatic=len(config.automatic_accounts),
    )
    return config
