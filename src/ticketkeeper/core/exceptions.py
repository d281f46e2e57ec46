"""
TicketKeeper Exception Types

Errors surfaced by discovery, ticket cache tooling, credential storage and
authentication sessions. Components return them inside
``returns.result.Failure`` rather than raising; only state machine
invariant violations are raised.
"""

from enum import Enum, auto
from typing import Optional

from ticketkeeper.core.types import FailureReason


class TicketKeeperError(Exception):
    """Base exception for all TicketKeeper errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(TicketKeeperError):
    """Configuration could not be loaded or failed validation."""

    pass


class DiscoveryErrorKind(Enum):
    NO_RECORDS = auto()
    LOOKUP_FAILED = auto()


class DiscoveryError(TicketKeeperError):
    """
    SRV lookup did not produce a directory server.

    NO_RECORDS is the expected outcome for an off-network domain.
    LOOKUP_FAILED wraps a resolver or transport failure.
    """

    def __init__(
        self,
        kind: DiscoveryErrorKind,
        query: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        if kind is DiscoveryErrorKind.NO_RECORDS:
            message = f"No SRV records for {query}"
        else:
            message = f"SRV lookup for {query} failed: {cause}"
        super().__init__(message)
        self.kind = kind
        self.query = query
        self.cause = cause

    @classmethod
    def no_records(cls, query: str) -> "DiscoveryError":
        return cls(DiscoveryErrorKind.NO_RECORDS, query)

    @classmethod
    def lookup_failed(cls, query: str, cause: BaseException) -> "DiscoveryError":
        return cls(DiscoveryErrorKind.LOOKUP_FAILED, query, cause)


class TicketCacheError(TicketKeeperError):
    """The ticket cache tool could not be run or exited non-zero."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, code=returncode)
        self.returncode = returncode
        self.stderr = stderr


class CredentialStoreError(TicketKeeperError):
    """The secure secret store refused or failed an operation."""

    pass


class DirectoryLookupError(TicketKeeperError):
    """The user record could not be read from the directory."""

    pass


class AuthenticationError(TicketKeeperError):
    """
    Authentication against the directory failed.

    Carries the classified reason so callers can decide whether the stored
    secret must be invalidated.
    """

    def __init__(
        self,
        reason: FailureReason,
        message: str = "",
        code: Optional[int] = None,
    ) -> None:
        super().__init__(message or reason.name.replace("_", " ").lower(), code)
        self.reason = reason


class StateError(TicketKeeperError):
    """
    Invalid state transition.

    Raised when an operation is not valid in the current session state,
    e.g. reusing a single-use authentication session.
    """

    pass


class InvariantViolation(TicketKeeperError):
    """
    A session invariant was violated.

    Indicates a programming error; the state machine refuses to commit the
    transition that caused it.
    """

    pass


class KerberosError:
    """
    Kerberos error codes as reported in GSSAPI minor status.

    MIT krb5 reports KDC error n as ERROR_TABLE_BASE + n.
    """

    ERROR_TABLE_BASE = -1765328384

    KDC_ERR_C_PRINCIPAL_UNKNOWN = 6
    KDC_ERR_CLIENT_REVOKED = 18
    KDC_ERR_KEY_EXPIRED = 23
    KDC_ERR_PREAUTH_FAILED = 24
    KRB_AP_ERR_BAD_INTEGRITY = 31
    KRB_AP_ERR_SKEW = 37
    KDC_UNREACH = 156
    REALM_CANT_RESOLVE = 220

    @classmethod
    def status(cls, code: int) -> int:
        """Minor status value for a table-relative code."""
        return cls.ERROR_TABLE_BASE + code

    @classmethod
    def classify(cls, minor_status: int) -> FailureReason:
        """Map a GSSAPI minor status onto a FailureReason."""
        code = minor_status - cls.ERROR_TABLE_BASE
        if code in (
            cls.KDC_ERR_PREAUTH_FAILED,
            cls.KRB_AP_ERR_BAD_INTEGRITY,
            cls.KDC_ERR_C_PRINCIPAL_UNKNOWN,
        ):
            return FailureReason.BAD_CREDENTIAL
        if code == cls.KDC_ERR_KEY_EXPIRED:
            return FailureReason.PASSWORD_EXPIRED
        if code in (cls.KDC_UNREACH, cls.REALM_CANT_RESOLVE):
            return FailureReason.OFF_DOMAIN
        return FailureReason.OTHER
