"""
TicketKeeper Directory User Lookup

Reads an account's user record from the directory over LDAP, bound with the
Kerberos ticket the sign-in just obtained (SASL/GSSAPI) or anonymously:

- Servers from the configured list, else the domain's SRV records
- Profile, password-expiry and custom attributes of the user object
- Direct groups from memberOf, or the transitive closure through the
  in-chain matching rule when recursive group lookup is enabled
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import attrs
import structlog
from ldap3 import ANONYMOUS, BASE, FIRST, KERBEROS, SASL, SUBTREE, Connection, Server, ServerPool
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import parse_dn
from returns.result import Failure

from ticketkeeper.core.config import DirectorySessionOptions
from ticketkeeper.core.exceptions import DirectoryLookupError
from ticketkeeper.core.types import UserAttributes, split_principal
from ticketkeeper.discovery.srv import ServiceDiscovery

logger = structlog.get_logger()

# userAccountControl: DONT_EXPIRE_PASSWORD
UF_DONT_EXPIRE_PASSWD = 0x10000

# LDAP_MATCHING_RULE_IN_CHAIN
IN_CHAIN_RULE = "1.2.840.113556.1.4.1941"

_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
_FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF

USER_ATTRIBUTES = (
    "cn",
    "givenName",
    "sn",
    "displayName",
    "sAMAccountName",
    "userPrincipalName",
    "mail",
    "memberOf",
    "homeDirectory",
    "pwdLastSet",
    "userAccountControl",
    "msDS-UserPasswordExpiryTimeComputed",
)

# (host, port or None) -> bound connection
Endpoint = Tuple[str, Optional[int]]
Connector = Callable[[Sequence[Endpoint], str, DirectorySessionOptions], Any]


def search_base_for(domain: str) -> str:
    """EXAMPLE.COM -> DC=example,DC=com"""
    return ",".join(f"DC={part}" for part in domain.lower().split(".") if part)


def filetime_to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert an AD timestamp to an aware datetime.

    Accepts the raw 100ns interval count (int or str) or a datetime already
    formatted by ldap3. Zero and the "never" sentinel map to None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.year <= 1601 or value.year >= 9999:
            return None
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    ticks = int(value)
    if ticks <= 0 or ticks >= _FILETIME_NEVER:
        return None
    return _FILETIME_EPOCH + timedelta(microseconds=ticks // 10)


def interval_to_timedelta(value: Any) -> Optional[timedelta]:
    """maxPwdAge is a negative 100ns interval; zero means no expiry."""
    if value is None or value == "":
        return None
    if isinstance(value, timedelta):
        if value in (timedelta.min, timedelta.max):
            return None
        return abs(value) or None
    ticks = abs(int(value))
    if ticks == 0 or ticks >= _FILETIME_NEVER:
        return None
    return timedelta(microseconds=ticks // 10)


def _single(attributes: Mapping[str, Any], name: str) -> Any:
    value = attributes.get(name)
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _plain(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        if len(value) == 1:
            return _plain(value[0])
        return [_plain(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def group_name(dn: str) -> str:
    """Leading RDN value of a group DN."""
    try:
        return parse_dn(dn)[0][1]
    except Exception:
        return dn


def user_attributes_from_entry(
    principal: str,
    attributes: Mapping[str, Any],
    groups: Sequence[str],
    custom_attributes: Sequence[str] = (),
    max_password_age: Optional[timedelta] = None,
) -> UserAttributes:
    """Build a UserAttributes snapshot from a user object's attributes."""
    user, realm = split_principal(principal)

    control = _single(attributes, "userAccountControl")
    aging = None if control in (None, "") else not (int(control) & UF_DONT_EXPIRE_PASSWD)

    password_set = filetime_to_datetime(_single(attributes, "pwdLastSet"))
    computed = filetime_to_datetime(_single(attributes, "msDS-UserPasswordExpiryTimeComputed"))
    if password_set is not None and max_password_age is not None:
        password_expire = password_set + max_password_age
    else:
        password_expire = computed

    first_name = _single(attributes, "givenName") or ""
    last_name = _single(attributes, "sn") or ""
    upn = _single(attributes, "userPrincipalName") or principal

    return UserAttributes(
        user_principal=principal,
        cn=_single(attributes, "cn") or user,
        first_name=first_name,
        last_name=last_name,
        full_name=_single(attributes, "displayName") or f"{first_name} {last_name}".strip(),
        short_name=_single(attributes, "sAMAccountName") or user,
        upn=upn.lower(),
        email=_single(attributes, "mail"),
        groups=sorted(set(groups)),
        home_directory=_single(attributes, "homeDirectory"),
        domain=realm,
        password_set=password_set,
        password_expire=password_expire,
        password_aging=aging,
        computed_expire_date=computed,
        custom_attributes={name: _plain(attributes.get(name)) for name in custom_attributes},
    )


def connect(endpoints: Sequence[Endpoint], principal: str, options: DirectorySessionOptions) -> Connection:
    """Bind to the first reachable server, SASL/GSSAPI as principal or anonymously."""
    servers = [
        Server(host, port=port, use_ssl=options.use_ssl, connect_timeout=10)
        if port
        else Server(host, use_ssl=options.use_ssl, connect_timeout=10)
        for host, port in endpoints
    ]
    pool = ServerPool(servers, FIRST, active=1, exhaust=True)

    if options.anonymous_bind:
        return Connection(pool, authentication=ANONYMOUS, auto_bind=True, read_only=True)
    return Connection(
        pool,
        user=principal,
        authentication=SASL,
        sasl_mechanism=KERBEROS,
        auto_bind=True,
        read_only=True,
    )


@attrs.define
class DirectoryLookup:
    """
    Reads one user's record from the directory.

    Example:
        lookup = DirectoryLookup(options=DirectorySessionOptions(recursive_group_lookup=True))
        attributes = lookup.lookup("alice@EXAMPLE.COM")
    """

    options: DirectorySessionOptions = attrs.Factory(DirectorySessionOptions)
    discovery: ServiceDiscovery = attrs.Factory(ServiceDiscovery)
    _connect: Connector = attrs.field(default=connect, alias="connector")
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def endpoints(self, domain: str) -> List[Endpoint]:
        """Configured servers, else the SRV targets, else the domain name."""
        if self.options.ldap_servers:
            return [(host, None) for host in self.options.ldap_servers]

        records = self.discovery.resolve_domain(domain)
        if isinstance(records, Failure) or not records.unwrap():
            return [(domain.lower(), None)]
        # SRV ports are the plain LDAP ones
        return [
            (record.target, None if self.options.use_ssl else record.port)
            for record in records.unwrap()
        ]

    def lookup(self, principal: str) -> UserAttributes:
        """
        Read the user record for principal.

        Raises:
            DirectoryLookupError: on bind or search failure, or when the
                user object is not found
        """
        user, realm = split_principal(principal)
        base = search_base_for(realm)
        log = self._logger.bind(principal=principal)

        try:
            conn = self._connect(self.endpoints(realm), principal, self.options)
        except Exception as e:
            log.warning("directory_bind_failed", error=str(e))
            raise DirectoryLookupError(f"bind to {realm} failed: {e}") from e

        try:
            user_filter = (
                "(&(objectCategory=person)(objectClass=user)"
                f"(sAMAccountName={escape_filter_chars(user)}))"
            )
            wanted = list(USER_ATTRIBUTES) + [
                name for name in self.options.custom_attributes if name not in USER_ATTRIBUTES
            ]
            conn.search(base, user_filter, search_scope=SUBTREE, attributes=wanted)
            entries = _entries(conn.response)
            if not entries:
                raise DirectoryLookupError(f"no user object for {principal} under {base}")
            dn, attributes = entries[0]

            if self.options.recursive_group_lookup:
                groups = self._nested_groups(conn, base, dn)
            else:
                groups = [group_name(g) for g in attributes.get("memberOf") or []]

            max_age = self._max_password_age(conn, base)
        except DirectoryLookupError:
            raise
        except Exception as e:
            log.warning("directory_search_failed", error=str(e))
            raise DirectoryLookupError(f"search for {principal} failed: {e}") from e
        finally:
            conn.unbind()

        log.debug("directory_user_found", dn=dn, groups=len(groups))
        return user_attributes_from_entry(
            principal,
            attributes,
            groups,
            custom_attributes=self.options.custom_attributes,
            max_password_age=max_age,
        )

    def _nested_groups(self, conn: Any, base: str, user_dn: str) -> List[str]:
        conn.search(
            base,
            f"(&(objectClass=group)(member:{IN_CHAIN_RULE}:={escape_filter_chars(user_dn)}))",
            search_scope=SUBTREE,
            attributes=["cn"],
        )
        return [_single(attributes, "cn") or group_name(dn) for dn, attributes in _entries(conn.response)]

    def _max_password_age(self, conn: Any, base: str) -> Optional[timedelta]:
        conn.search(base, "(objectClass=domain)", search_scope=BASE, attributes=["maxPwdAge"])
        entries = _entries(conn.response)
        if not entries:
            return None
        return interval_to_timedelta(_single(entries[0][1], "maxPwdAge"))


def _entries(response: Optional[Sequence[Mapping[str, Any]]]) -> List[Tuple[str, Dict[str, Any]]]:
    """Search result entries, without referrals."""
    return [
        (item["dn"], dict(item.get("attributes") or {}))
        for item in response or []
        if item.get("type") == "searchResEntry"
    ]
