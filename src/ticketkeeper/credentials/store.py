"""
TicketKeeper Credential Store

Retrieve and remove the stored secret of an account.

The production store is the OS secret service reached through the
``keyring`` package. Entries are keyed by the account's lower-cased
principal under a single service name.

Semantics:
- retrieve returning Success(None) means "no automatic sign-in possible"
- remove of a missing entry succeeds
- every failure is returned as CredentialStoreError, never raised
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import attrs
import keyring
import keyring.errors
import structlog
from returns.result import Failure, Result, Success

from ticketkeeper.core.exceptions import CredentialStoreError
from ticketkeeper.core.types import Account

logger = structlog.get_logger()


class CredentialStore(ABC):
    """Secret storage keyed by account."""

    @abstractmethod
    def retrieve(self, account: Account) -> Result[Optional[bytes], CredentialStoreError]:
        """Return the stored secret, or None if there is none."""
        ...

    @abstractmethod
    def remove(self, account: Account) -> Result[None, CredentialStoreError]:
        """Delete the stored secret. Missing entries are not an error."""
        ...

    @abstractmethod
    def store(self, account: Account, secret: bytes) -> Result[None, CredentialStoreError]:
        """Create or overwrite the stored secret."""
        ...


@attrs.define
class KeyringCredentialStore(CredentialStore):
    """
    Credential store backed by the OS keyring.

    Example:
        store = KeyringCredentialStore(service="ticketkeeper")
        store.store(Account("alice@EXAMPLE.COM"), b"s3cret")
    """

    service: str = "ticketkeeper"
    _backend: Any = attrs.field(default=keyring, alias="backend")
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def retrieve(self, account: Account) -> Result[Optional[bytes], CredentialStoreError]:
        try:
            secret = self._backend.get_password(self.service, account.key)
        except keyring.errors.KeyringError as e:
            self._logger.warning("secret_retrieve_failed", account=account.key, error=str(e))
            return Failure(CredentialStoreError(f"Cannot read secret for {account}: {e}"))

        if secret is None:
            self._logger.debug("secret_not_found", account=account.key)
            return Success(None)
        return Success(secret.encode("utf-8"))

    def remove(self, account: Account) -> Result[None, CredentialStoreError]:
        try:
            self._backend.delete_password(self.service, account.key)
        except keyring.errors.PasswordDeleteError:
            # nothing stored for this account
            return Success(None)
        except keyring.errors.KeyringError as e:
            self._logger.warning("secret_remove_failed", account=account.key, error=str(e))
            return Failure(CredentialStoreError(f"Cannot remove secret for {account}: {e}"))

        self._logger.info("secret_removed", account=account.key)
        return Success(None)

    def store(self, account: Account, secret: bytes) -> Result[None, CredentialStoreError]:
        try:
            self._backend.set_password(self.service, account.key, secret.decode("utf-8"))
        except UnicodeDecodeError as e:
            return Failure(CredentialStoreError(f"Secret for {account} is not valid UTF-8: {e}"))
        except keyring.errors.KeyringError as e:
            self._logger.warning("secret_store_failed", account=account.key, error=str(e))
            return Failure(CredentialStoreError(f"Cannot store secret for {account}: {e}"))

        self._logger.info("secret_stored", account=account.key)
        return Success(None)


@attrs.define
class MemoryCredentialStore(CredentialStore):
    """Process-local credential store for embedding and tests."""

    _secrets: Dict[str, bytes] = attrs.Factory(dict)
    _lock: threading.Lock = attrs.Factory(threading.Lock)

    def retrieve(self, account: Account) -> Result[Optional[bytes], CredentialStoreError]:
        with self._lock:
            return Success(self._secrets.get(account.key))

    def remove(self, account: Account) -> Result[None, CredentialStoreError]:
        with self._lock:
            self._secrets.pop(account.key, None)
        return Success(None)

    def store(self, account: Account, secret: bytes) -> Result[None, CredentialStoreError]:
        with self._lock:
            self._secrets[account.key] = bytes(secret)
        return Success(None)

    def __contains__(self, account: Account) -> bool:
        with self._lock:
            return account.key in self._secrets
