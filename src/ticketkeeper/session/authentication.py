"""
TicketKeeper Authentication Session

Drives one account's authentication attempt against the directory library
and turns its callbacks into state machine events.

Callbacks arrive on library threads and are handed to the waiting worker
through queues. Exactly one completion is accepted per attempt: a second
success/failure callback, or any callback after the session has closed,
is dropped and counted.

A session is single-use. Workers build a fresh one for every pass so a
late callback from an earlier attempt can never land in a new one.
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Optional

import attrs
import structlog
from returns.result import Failure, Result

from ticketkeeper.core.exceptions import StateError, TicketCacheError
from ticketkeeper.core.types import Account, FailureReason, SessionState, UserAttributes
from ticketkeeper.credentials.store import CredentialStore
from ticketkeeper.directory.client import DirectoryClient, DirectoryDelegate
from ticketkeeper.session.machine import SessionStateMachine, create_session_machine
from ticketkeeper.session.types import (
    AuthenticationRejected,
    AuthenticationStarted,
    AuthenticationSucceeded,
    SessionOutcome,
    UserInfoReceived,
)
from ticketkeeper.state.store import Notification, UserStateStore
from ticketkeeper.tickets.cache import TicketCacheInspector

logger = structlog.get_logger()


@attrs.define
class AuthenticationSession(DirectoryDelegate):
    """
    One authentication attempt for one account.

    Example:
        session = AuthenticationSession(
            account=account,
            client=client,
            credential_store=store,
            ticket_cache=cache,
            state_store=state,
            timeout=60.0,
        )
        outcome = session.authenticate(secret)
        if outcome.succeeded:
            ...
    """

    account: Account
    client: DirectoryClient
    credential_store: CredentialStore
    ticket_cache: TicketCacheInspector
    state_store: UserStateStore
    timeout: float = 60.0

    _machine: SessionStateMachine = attrs.field(
        default=attrs.Factory(lambda self: create_session_machine(self.account), takes_self=True),
        alias="_machine",
    )
    _completions: "queue.Queue[Any]" = attrs.Factory(queue.Queue)
    _user_info: "queue.Queue[UserInfoReceived]" = attrs.Factory(queue.Queue)
    _completion_delivered: bool = False
    _started: bool = False
    _closed: bool = False
    _dropped_callbacks: int = 0
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def machine(self) -> SessionStateMachine:
        return self._machine

    @property
    def dropped_callbacks(self) -> int:
        return self._dropped_callbacks

    # -------------------------------------------------------------------------
    # Directory library callbacks
    # -------------------------------------------------------------------------

    def authentication_succeeded(self) -> None:
        self._deliver_completion(AuthenticationSucceeded())

    def authentication_failed(self, reason: FailureReason, description: str = "") -> None:
        self._deliver_completion(AuthenticationRejected(reason=reason, description=description))

    def user_information(self, attributes: UserAttributes) -> None:
        with self._lock:
            if self._closed:
                self._drop("user_information")
                return
        self._user_info.put(UserInfoReceived(attributes=attributes))

    def _deliver_completion(self, event: Any) -> None:
        with self._lock:
            if self._closed or self._completion_delivered:
                self._drop(type(event).__name__)
                return
            self._completion_delivered = True
        self._completions.put(event)

    def _drop(self, callback: str) -> None:
        self._dropped_callbacks += 1
        self._logger.warning(
            "session_callback_dropped",
            account=self.account.key,
            callback=callback,
            state=self._machine.state.name,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def authenticate(self, secret: bytes) -> SessionOutcome:
        """
        Authenticate with secret and, on success, refresh user info.

        Blocks the calling worker until the library answers or the
        session timeout expires; a timeout is classified TIMEOUT.

        Raises:
            StateError: if the session was already used
        """
        self._begin("authenticate")
        self._machine.process_event(AuthenticationStarted())
        self.state_store.record_session_state(self.account, self._machine.state)
        self._logger.info("authentication_started", account=self.account.key)

        try:
            self.client.authenticate(secret, self)
        except Exception as e:
            self._logger.error("directory_client_failed", account=self.account.key, error=str(e))
            self.authentication_failed(FailureReason.OTHER, str(e))

        event = self._wait(self._completions)
        if event is None:
            with self._lock:
                # late callbacks for this attempt are dropped from here on
                self._completion_delivered = True
            event = AuthenticationRejected(
                reason=FailureReason.TIMEOUT,
                description=f"no answer from directory within {self.timeout:g}s",
            )

        self._machine.process_event(event)
        if isinstance(event, AuthenticationRejected):
            return self._failed(event)

        self.state_store.record_session_state(self.account, self._machine.state)
        self.state_store.record_stored_secret(self.account, True)
        self.state_store.notify(Notification.AUTH_SUCCEEDED, self.account)
        self._logger.info("authentication_succeeded", account=self.account.key)
        return self._refresh_info(fresh_ticket=True)

    def refresh_user_info(self) -> SessionOutcome:
        """
        Refresh user info for an account whose ticket is already cached.

        Raises:
            StateError: if the session was already used
        """
        self._begin("refresh_user_info")
        return self._refresh_info(fresh_ticket=False)

    def close(self) -> None:
        """Refuse every callback from now on."""
        with self._lock:
            self._closed = True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _begin(self, operation: str) -> None:
        with self._lock:
            if self._started or self._closed:
                raise StateError(
                    f"Authentication session for {self.account} is single-use "
                    f"({operation} after {self._machine.state.name})"
                )
            self._started = True

    def _wait(self, channel: "queue.Queue[Any]") -> Optional[Any]:
        try:
            return channel.get(timeout=self.timeout)
        except queue.Empty:
            return None

    def _failed(self, event: AuthenticationRejected) -> SessionOutcome:
        self.close()
        self.state_store.record_session_state(self.account, self._machine.state)
        self._logger.warning(
            "authentication_failed",
            account=self.account.key,
            reason=event.reason.name,
            description=event.description,
        )

        removed = False
        if event.reason.invalidates_credential:
            result = self.credential_store.remove(self.account)
            if isinstance(result, Failure):
                self._logger.warning(
                    "secret_invalidation_failed",
                    account=self.account.key,
                    error=str(result.failure()),
                )
            else:
                removed = True
                self.state_store.record_stored_secret(self.account, False)
            self.state_store.notify(
                Notification.AUTH_FAILED,
                self.account,
                reason=event.reason.name,
                description=event.description,
            )
        elif event.reason is FailureReason.OFF_DOMAIN:
            self.state_store.notify(Notification.OFF_DOMAIN, self.account)

        return SessionOutcome(
            account=self.account,
            state=self._machine.state,
            failure_reason=event.reason,
            description=event.description,
            credential_removed=removed,
        )

    def _refresh_info(self, fresh_ticket: bool) -> SessionOutcome:
        # user info acts on the cache default: select it and issue the request
        # under the cache lock, await the answer outside it
        with self.ticket_cache.exclusive():
            selected = self._select_own_principal()
            if isinstance(selected, Failure):
                self._logger.warning(
                    "user_info_skipped",
                    account=self.account.key,
                    error=str(selected.failure()),
                )
                return self._unrefreshed(
                    fresh_ticket, f"default principal not selected: {selected.failure()}"
                )
            requested = self._request_user_info()

        event = self._wait(self._user_info) if requested else None
        if event is None:
            self._logger.warning(
                "user_info_not_received",
                account=self.account.key,
                timeout=self.timeout,
            )
            return self._unrefreshed(fresh_ticket, "user information not received")

        self.close()
        self._machine.process_event(event)
        self.state_store.record_session_state(self.account, self._machine.state)
        self.state_store.publish_user_info(self.account, event.attributes)
        return SessionOutcome(
            account=self.account,
            state=self._machine.state,
            user_attributes=event.attributes,
            fresh_ticket=fresh_ticket,
        )

    def _select_own_principal(self) -> Result[str, TicketCacheError]:
        """Make this account's cached principal the default, spelled as the cache has it."""
        listing = self.ticket_cache.list_principals()
        if isinstance(listing, Failure):
            return Failure(listing.failure())

        entry = self.ticket_cache.ticket_for(listing.unwrap(), self.account)
        if entry is None:
            return Failure(TicketCacheError(f"no usable ticket for {self.account} in the cache"))

        return self.ticket_cache.select_default(entry.principal).map(lambda _: entry.principal)

    def _request_user_info(self) -> bool:
        try:
            self.client.request_user_info(self)
        except Exception as e:
            self._logger.error(
                "user_info_request_failed",
                account=self.account.key,
                error=str(e),
            )
            return False
        return True

    def _unrefreshed(self, fresh_ticket: bool, description: str) -> SessionOutcome:
        self.close()
        self.state_store.record_session_state(self.account, self._machine.state)
        return SessionOutcome(
            account=self.account,
            state=self._machine.state,
            description=description,
            fresh_ticket=fresh_ticket,
        )
