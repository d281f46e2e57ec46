"""
TicketKeeper Automatic Sign-In Worker

Per-account orchestration, one worker per account per pass:

1. Discover the account's directory through SRV; stop if not advertised
2. Read the ticket cache
3. Ticket present: refresh user info only (no secret is read)
4. Ticket absent: read the stored secret and authenticate with it

Every outcome is reported, none is raised. Only a programming error
(e.g. an invariant violation) escapes run().
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Callable, Optional

import attrs
import structlog
from returns.result import Failure

from ticketkeeper.core.exceptions import DiscoveryErrorKind
from ticketkeeper.core.types import Account
from ticketkeeper.credentials.store import CredentialStore
from ticketkeeper.discovery.srv import ServiceDiscovery
from ticketkeeper.session.authentication import AuthenticationSession
from ticketkeeper.session.types import SessionOutcome
from ticketkeeper.state.store import Notification, UserStateStore
from ticketkeeper.tickets.cache import TicketCacheInspector

logger = structlog.get_logger()


class WorkerMode(Enum):
    """SIGN_IN may authenticate; REFRESH_ONLY never reads a secret."""

    SIGN_IN = auto()
    REFRESH_ONLY = auto()


class WorkerOutcome(Enum):
    NOT_ADVERTISED = auto()
    DISCOVERY_FAILED = auto()
    CACHE_UNAVAILABLE = auto()
    REFRESHED = auto()
    NO_SECRET = auto()
    AUTHENTICATED = auto()
    FAILED = auto()
    SKIPPED = auto()


@attrs.define(frozen=True, slots=True)
class WorkerReport:
    """What one worker did for its account."""

    account: Account
    outcome: WorkerOutcome
    session: Optional[SessionOutcome] = None
    detail: str = ""

    @property
    def fresh_ticket(self) -> bool:
        return self.session is not None and self.session.fresh_ticket


SessionFactory = Callable[[Account], AuthenticationSession]


@attrs.define
class AutomaticSignInWorker:
    """
    Keep one account signed in.

    Example:
        worker = AutomaticSignInWorker(
            account=account,
            discovery=ServiceDiscovery(),
            ticket_cache=cache,
            credential_store=store,
            session_factory=make_session,
            state_store=state,
        )
        report = worker.run()
    """

    account: Account
    discovery: ServiceDiscovery
    ticket_cache: TicketCacheInspector
    credential_store: CredentialStore
    session_factory: SessionFactory
    state_store: UserStateStore
    mode: WorkerMode = WorkerMode.SIGN_IN
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def run(self) -> WorkerReport:
        log = self._logger.bind(account=self.account.key, mode=self.mode.name)

        discovered = self.discovery.resolve_domain(self.account.domain)
        if isinstance(discovered, Failure):
            error = discovered.failure()
            if error.kind is DiscoveryErrorKind.NO_RECORDS:
                log.info("directory_not_advertised", domain=self.account.domain)
                return self._report(WorkerOutcome.NOT_ADVERTISED, detail=str(error))
            log.warning("directory_discovery_failed", error=str(error))
            return self._report(WorkerOutcome.DISCOVERY_FAILED, detail=str(error))

        with self.ticket_cache.exclusive():
            listing = self.ticket_cache.list_principals()
        if isinstance(listing, Failure):
            log.warning("ticket_cache_unavailable", error=str(listing.failure()))
            return self._report(WorkerOutcome.CACHE_UNAVAILABLE, detail=str(listing.failure()))

        if self.ticket_cache.holds_ticket(listing.unwrap(), self.account):
            log.debug("ticket_present")
            outcome = self.session_factory(self.account).refresh_user_info()
            return self._report(WorkerOutcome.REFRESHED, session=outcome)

        if self.mode is WorkerMode.REFRESH_ONLY:
            log.debug("ticket_absent_refresh_skipped")
            return self._report(WorkerOutcome.SKIPPED, detail="no ticket")

        return self._sign_in(log)

    def _sign_in(self, log: Any) -> WorkerReport:
        retrieved = self.credential_store.retrieve(self.account)
        if isinstance(retrieved, Failure):
            log.warning("secret_unavailable", error=str(retrieved.failure()))
            self.state_store.record_stored_secret(self.account, None)
            self.state_store.notify(Notification.NO_STORED_SECRET, self.account)
            return self._report(WorkerOutcome.NO_SECRET, detail=str(retrieved.failure()))

        secret = retrieved.unwrap()
        if secret is None:
            log.info("no_stored_secret")
            self.state_store.record_stored_secret(self.account, False)
            self.state_store.notify(Notification.NO_STORED_SECRET, self.account)
            return self._report(WorkerOutcome.NO_SECRET)

        outcome = self.session_factory(self.account).authenticate(secret)
        if outcome.succeeded:
            return self._report(WorkerOutcome.AUTHENTICATED, session=outcome)
        return self._report(WorkerOutcome.FAILED, session=outcome, detail=outcome.description)

    def _report(
        self,
        outcome: WorkerOutcome,
        session: Optional[SessionOutcome] = None,
        detail: str = "",
    ) -> WorkerReport:
        return WorkerReport(account=self.account, outcome=outcome, session=session, detail=detail)
