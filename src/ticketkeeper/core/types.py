"""
TicketKeeper Core Types

Identity and record types shared by service discovery, ticket cache
inspection, credential storage and the automatic sign-in workers.

Design Principles:
- Immutable: all records use frozen attrs classes
- Validated: constraints enforced at construction
- Case-insensitive identity: principals are compared lower-cased
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Iterable, Optional, Tuple

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class SessionState(Enum):
    """
    Authentication session states.

    IDLE -> AUTHENTICATING -> AUTHENTICATED -> INFO_REFRESHED
                           -> AUTHENTICATION_FAILED

    PASSWORD_EXPIRED is reported by directory libraries that keep a session
    alive while a password change is pending.
    """

    IDLE = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    PASSWORD_EXPIRED = auto()
    AUTHENTICATION_FAILED = auto()
    INFO_REFRESHED = auto()

    @property
    def is_authenticated(self) -> bool:
        """True when the directory has accepted the account's ticket."""
        return self in (SessionState.AUTHENTICATED, SessionState.INFO_REFRESHED)


class FailureReason(Enum):
    """
    Classified reason for an authentication failure.

    Only BAD_CREDENTIAL and PASSWORD_EXPIRED invalidate the stored secret.
    Everything else is assumed to be transient.
    """

    BAD_CREDENTIAL = auto()
    PASSWORD_EXPIRED = auto()
    OFF_DOMAIN = auto()
    TIMEOUT = auto()
    OTHER = auto()

    @property
    def invalidates_credential(self) -> bool:
        return self in (FailureReason.BAD_CREDENTIAL, FailureReason.PASSWORD_EXPIRED)


# =============================================================================
# IDENTITY TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Realm:
    """
    Kerberos realm / directory domain.

    INVARIANT: name is uppercase per convention
    """

    name: str = field(validator=validators.instance_of(str))

    def __attrs_post_init__(self) -> None:
        if self.name != self.name.upper():
            object.__setattr__(self, "name", self.name.upper())

    def __str__(self) -> str:
        return self.name


def split_principal(principal: str) -> Tuple[str, str]:
    """
    Split "user@REALM" on the last "@".

    Raises:
        ValueError: if either part is empty
    """
    at_pos = principal.rfind("@")
    if at_pos <= 0 or at_pos == len(principal) - 1:
        raise ValueError(f"Invalid principal format: {principal!r}")
    return principal[:at_pos], principal[at_pos + 1 :]


def principals_equal(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive principal comparison; None never matches."""
    if left is None or right is None:
        return False
    return left.lower() == right.lower()


@attrs.define(frozen=True, slots=True, eq=False)
class Account:
    """
    A directory account configured for automatic sign-in.

    Identity is the principal name compared case-insensitively, so
    "alice@EXAMPLE.COM" and "Alice@example.com" are the same account.

    Example:
        account = Account("alice@EXAMPLE.COM")
        account.domain              # "EXAMPLE.COM"
        account.short_user          # "alice"
        account.kerberos_principal  # "alice@EXAMPLE.COM"
    """

    principal_name: str = field(validator=validators.instance_of(str))
    display_name: str = ""
    automatic: bool = True

    def __attrs_post_init__(self) -> None:
        split_principal(self.principal_name)

    @property
    def short_user(self) -> str:
        return split_principal(self.principal_name)[0]

    @property
    def domain(self) -> str:
        return split_principal(self.principal_name)[1]

    @property
    def realm(self) -> Realm:
        return Realm(self.domain)

    @property
    def kerberos_principal(self) -> str:
        """Principal as the ticket cache tools expect it (upper-case realm)."""
        return f"{self.short_user}@{self.realm}"

    @property
    def key(self) -> str:
        """Identity key used for maps and locks."""
        return self.principal_name.lower()

    def matches(self, principal: Optional[str]) -> bool:
        return principals_equal(self.principal_name, principal)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.principal_name


# =============================================================================
# DISCOVERY AND CACHE RECORDS
# =============================================================================


_uint16 = [validators.instance_of(int), validators.ge(0), validators.le(65535)]


@attrs.define(frozen=True, slots=True)
class SRVRecord:
    """
    DNS service location record.

    INVARIANT: port is in 1..65535, priority and weight in 0..65535
    """

    target: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    port: int = field(validator=[validators.instance_of(int), validators.ge(1), validators.le(65535)])
    priority: int = field(default=0, validator=_uint16)
    weight: int = field(default=0, validator=_uint16)

    @property
    def sort_key(self) -> Tuple[int, int]:
        """Lower priority first, heavier weight first within a priority."""
        return (self.priority, -self.weight)

    def __str__(self) -> str:
        return f"{self.target} {self.priority} {self.weight} {self.port}"


@attrs.define(frozen=True, slots=True)
class TicketPrincipal:
    """One entry of the ticket cache listing."""

    principal: str
    is_default: bool = False
    expired: bool = False
    cache_name: str = ""


def find_usable_ticket(entries: Iterable[TicketPrincipal], principal: str) -> Optional[TicketPrincipal]:
    """
    The cache entry holding a usable ticket for principal, if any.

    Matches case-insensitively and ignores the default flag. Entries the
    cache tool marks as expired do not count. The returned entry carries the
    principal spelled the way the cache spells it.
    """
    for entry in entries:
        if principals_equal(entry.principal, principal) and not entry.expired:
            return entry
    return None


def has_usable_ticket(entries: Iterable[TicketPrincipal], principal: str) -> bool:
    """Does the cache hold a usable ticket for principal?"""
    return find_usable_ticket(entries, principal) is not None


# =============================================================================
# SECRETS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Credential:
    """A stored secret for an account. The secret never appears in repr."""

    account: Account
    secret: bytes = field(validator=validators.instance_of(bytes), repr=False)


# =============================================================================
# USER ATTRIBUTES
# =============================================================================


def _tuple_of_str(value: Optional[Iterable[str]]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@attrs.define(frozen=True, slots=True)
class UserAttributes:
    """
    Directory-sourced user profile.

    Published as a whole on every successful info refresh; a new snapshot
    replaces the previous one, fields are never merged.
    """

    user_principal: str
    cn: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    short_name: str = ""
    upn: str = ""
    email: Optional[str] = None
    groups: Tuple[str, ...] = field(default=(), converter=_tuple_of_str)
    home_directory: Optional[str] = None
    domain: str = ""
    password_set: Optional[datetime] = field(default=None, converter=_parse_datetime)
    password_expire: Optional[datetime] = field(default=None, converter=_parse_datetime)
    password_aging: Optional[bool] = None
    computed_expire_date: Optional[datetime] = field(default=None, converter=_parse_datetime)
    custom_attributes: Dict[str, Any] = attrs.Factory(dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> UserAttributes:
        """Build from a mapping, ignoring keys that are not attributes."""
        names = {a.name for a in attrs.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        result: Dict[str, Any] = {}
        for attribute in attrs.fields(type(self)):
            value = getattr(self, attribute.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            result[attribute.name] = value
        return result
