"""
TicketKeeper Directory Client Boundary

The directory authentication library performs the actual Kerberos bind and
attribute lookup. TicketKeeper only depends on this callback contract:

- ``authenticate(secret, delegate)`` starts an attempt and returns; the
  outcome arrives later as exactly one of
  ``delegate.authentication_succeeded()`` or
  ``delegate.authentication_failed(reason, description)``
- ``request_user_info(delegate)`` fetches attributes for the cache's
  current default principal and answers with
  ``delegate.user_information(attributes)``

Callbacks may arrive on any thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from ticketkeeper.core.config import DirectorySessionOptions
from ticketkeeper.core.types import Account, FailureReason, UserAttributes


class DirectoryDelegate(ABC):
    """Receiver of directory library callbacks."""

    @abstractmethod
    def authentication_succeeded(self) -> None:
        ...

    @abstractmethod
    def authentication_failed(self, reason: FailureReason, description: str = "") -> None:
        ...

    @abstractmethod
    def user_information(self, attributes: UserAttributes) -> None:
        ...


class DirectoryClient(ABC):
    """One account's handle on the directory authentication library."""

    @abstractmethod
    def authenticate(self, secret: bytes, delegate: DirectoryDelegate) -> None:
        """Start authenticating with secret; the result arrives via delegate."""
        ...

    @abstractmethod
    def request_user_info(self, delegate: DirectoryDelegate) -> None:
        """Start a user attribute lookup; the result arrives via delegate."""
        ...


DirectoryClientFactory = Callable[[Account, DirectorySessionOptions], DirectoryClient]
