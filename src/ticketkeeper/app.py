"""
TicketKeeper Service Assembly

Builds the component graph from a SignInConfig:

    TicketLifecycleScheduler
      -> AutomaticSignInCoordinator
           -> AutomaticSignInWorker (per account, per pass)
                -> ServiceDiscovery, TicketCacheInspector, CredentialStore
                -> AuthenticationSession -> DirectoryClient

Every collaborator can be replaced, which is how the tests run the whole
graph without DNS, Kerberos tools or a keyring.
"""

from __future__ import annotations

from typing import Any, Optional

import attrs
import structlog

from ticketkeeper.core.config import SignInConfig
from ticketkeeper.core.types import Account
from ticketkeeper.credentials.store import CredentialStore, KeyringCredentialStore
from ticketkeeper.directory.client import DirectoryClientFactory
from ticketkeeper.directory.gssapi_client import create_gssapi_client
from ticketkeeper.discovery.srv import ServiceDiscovery
from ticketkeeper.session.authentication import AuthenticationSession
from ticketkeeper.signin.coordinator import AutomaticSignInCoordinator
from ticketkeeper.signin.scheduler import TicketLifecycleScheduler
from ticketkeeper.signin.worker import AutomaticSignInWorker, WorkerMode
from ticketkeeper.state.store import UserStateStore
from ticketkeeper.tickets.cache import TicketCacheInspector

logger = structlog.get_logger()


@attrs.define
class TicketKeeper:
    """
    The assembled automatic sign-in service.

    Example:
        keeper = create_ticket_keeper(load_config("ticketkeeper.json"))
        keeper.start()
        ...
        keeper.stop(timeout=30)
    """

    config: SignInConfig
    ticket_cache: TicketCacheInspector
    discovery: ServiceDiscovery
    credential_store: CredentialStore
    state_store: UserStateStore
    client_factory: DirectoryClientFactory
    coordinator: AutomaticSignInCoordinator = attrs.field(init=False)
    scheduler: TicketLifecycleScheduler = attrs.field(init=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        self.coordinator = AutomaticSignInCoordinator(
            worker_factory=self.make_worker,
            ticket_cache=self.ticket_cache,
            single_user_mode=self.config.single_user_mode,
            restore_default_after=self.config.restore_default_after,
        )
        self.scheduler = TicketLifecycleScheduler(
            coordinator=self.coordinator,
            ticket_cache=self.ticket_cache,
            accounts=self.config.automatic_accounts,
            interval=self.config.check_interval,
            debounce_delay=self.config.debounce_delay,
            cache_poll_interval=self.config.cache_poll_interval,
        )

    def make_session(self, account: Account) -> AuthenticationSession:
        """Fresh single-use session with a client configured from the options."""
        return AuthenticationSession(
            account=account,
            client=self.client_factory(account, self.config.session_options()),
            credential_store=self.credential_store,
            ticket_cache=self.ticket_cache,
            state_store=self.state_store,
            timeout=self.config.session_timeout,
        )

    def make_worker(self, account: Account, mode: WorkerMode) -> AutomaticSignInWorker:
        return AutomaticSignInWorker(
            account=account,
            discovery=self.discovery,
            ticket_cache=self.ticket_cache,
            credential_store=self.credential_store,
            session_factory=self.make_session,
            state_store=self.state_store,
            mode=mode,
        )

    def start(self, run_immediately: bool = True) -> bool:
        return self.scheduler.start(run_immediately=run_immediately)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop scheduling and wait up to timeout for in-flight workers."""
        return self.scheduler.stop(wait=True, timeout=timeout)


def create_ticket_keeper(
    config: SignInConfig,
    client_factory: Optional[DirectoryClientFactory] = None,
    credential_store: Optional[CredentialStore] = None,
    ticket_cache: Optional[TicketCacheInspector] = None,
    discovery: Optional[ServiceDiscovery] = None,
    state_store: Optional[UserStateStore] = None,
) -> TicketKeeper:
    """Assemble the service, defaulting to the OS-backed collaborators."""
    keeper = TicketKeeper(
        config=config,
        ticket_cache=ticket_cache or TicketCacheInspector(
            klist_command=config.klist_command,
            kswitch_command=config.kswitch_command,
        ),
        discovery=discovery or ServiceDiscovery(timeout=config.dns_timeout),
        credential_store=credential_store or KeyringCredentialStore(service=config.keyring_service),
        state_store=state_store or UserStateStore(),
        client_factory=client_factory or create_gssapi_client,
    )
    logger.debug(
        "ticket_keeper_created",
        accounts=[a.key for a in config.automatic_accounts],
        single_user_mode=config.single_user_mode,
    )
    return keeper
