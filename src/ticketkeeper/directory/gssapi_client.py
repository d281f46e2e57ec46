"""
TicketKeeper GSSAPI Directory Client

Directory client on top of the ``gssapi`` package (MIT Kerberos or
Heimdal) and ``ldap3``:

- Password credential acquisition (the kinit equivalent), stored into the
  user's credential cache
- GSSAPI minor status mapped onto FailureReason
- User information read from the directory over LDAP, bound with the
  cache's default credential

Requirements:
- gssapi Python package (pip install ticketkeeper[native])
- Kerberos libraries and a krb5.conf that knows the realms
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Tuple

import attrs
import structlog

from ticketkeeper.core.config import DirectorySessionOptions
from ticketkeeper.core.exceptions import KerberosError
from ticketkeeper.core.types import Account, FailureReason
from ticketkeeper.directory.client import DirectoryClient, DirectoryDelegate
from ticketkeeper.directory.ldap_lookup import DirectoryLookup

logger = structlog.get_logger()

try:
    import gssapi
    import gssapi.raw

    _gssapi_available = True
    _gssapi_error = ""
except ImportError as e:
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
except OSError as e:
    # package present but the Kerberos shared libraries are missing
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)


def gssapi_available() -> Tuple[bool, str]:
    """(available, reason-if-not)."""
    return _gssapi_available, _gssapi_error


def _spawn(target: Callable[[], None], name: str) -> None:
    threading.Thread(target=target, name=name, daemon=True).start()


@attrs.define
class GSSAPIDirectoryClient(DirectoryClient):
    """
    Directory client using native GSSAPI credentials.

    Each call runs on its own daemon thread and reports through the
    delegate, mirroring the asynchronous library contract.
    """

    account: Account
    options: DirectorySessionOptions = attrs.Factory(DirectorySessionOptions)
    lookup: DirectoryLookup = attrs.Factory(
        lambda self: DirectoryLookup(options=self.options), takes_self=True
    )
    _spawner: Callable[[Callable[[], None], str], None] = attrs.field(default=_spawn, alias="spawner")
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        if not _gssapi_available:
            raise RuntimeError(f"GSSAPI is not available: {_gssapi_error}")

    def authenticate(self, secret: bytes, delegate: DirectoryDelegate) -> None:
        self._spawner(
            lambda: self._authenticate(secret, delegate),
            f"gssapi-auth-{self.account.key}",
        )

    def request_user_info(self, delegate: DirectoryDelegate) -> None:
        """
        Look up the cache's default principal in the directory.

        The default credential is read before returning, so a later change
        of the cache default does not affect this request.

        Raises:
            GSSError: if the cache holds no default credential
        """
        principal = str(gssapi.Credentials(usage="initiate").name)
        self._spawner(
            lambda: self._user_info(principal, delegate),
            f"gssapi-info-{self.account.key}",
        )

    def _authenticate(self, secret: bytes, delegate: DirectoryDelegate) -> None:
        try:
            name = gssapi.Name(
                self.account.kerberos_principal,
                name_type=gssapi.NameType.kerberos_principal,
            )
            acquired = gssapi.raw.acquire_cred_with_password(name, secret, usage="initiate")
            gssapi.raw.store_cred(acquired.creds, usage="initiate", overwrite=True)
        except gssapi.exceptions.GSSError as e:
            reason = KerberosError.classify(e.min_code)
            self._logger.info(
                "gssapi_authentication_failed",
                account=self.account.key,
                reason=reason.name,
                minor_code=e.min_code,
            )
            delegate.authentication_failed(reason, e.gen_message())
            return
        except Exception as e:
            self._logger.error(
                "gssapi_authentication_error",
                account=self.account.key,
                error=str(e),
            )
            delegate.authentication_failed(FailureReason.OTHER, str(e))
            return

        self._logger.info("gssapi_credentials_stored", account=self.account.key)
        delegate.authentication_succeeded()

    def _user_info(self, principal: str, delegate: DirectoryDelegate) -> None:
        try:
            attributes = self.lookup.lookup(principal)
        except Exception as e:
            # no callback: the waiting session runs into its timeout
            self._logger.warning(
                "gssapi_user_info_failed",
                account=self.account.key,
                principal=principal,
                error=str(e),
            )
            return

        delegate.user_information(attributes)


def create_gssapi_client(account: Account, options: DirectorySessionOptions) -> DirectoryClient:
    """DirectoryClientFactory for GSSAPIDirectoryClient."""
    return GSSAPIDirectoryClient(account=account, options=options)
