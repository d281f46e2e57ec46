"""
TicketKeeper - Automatic Kerberos sign-in for directory accounts

Keeps the workstation's Kerberos ticket cache populated with valid tickets
for one or more Active-Directory-style accounts and keeps the locally
published user attributes in sync with the directory.

Features:
- SRV discovery of directory servers (_ldap._tcp.<domain>)
- Ticket cache inspection and default principal selection (klist/kswitch)
- Stored secrets in the OS keyring, invalidated on bad credentials
- Periodic and debounced event-driven sign-in passes

Example Usage:
    from ticketkeeper import create_ticket_keeper, load_config

    keeper = create_ticket_keeper(load_config("ticketkeeper.json"))
    keeper.start()
    ...
    keeper.scheduler.notify_network_change()
    ...
    keeper.stop(timeout=30)
"""

__version__ = "0.1.0"

from ticketkeeper.core.types import Account, FailureReason, SessionState, UserAttributes
from ticketkeeper.core.config import SignInConfig, load_config
from ticketkeeper.app import TicketKeeper, create_ticket_keeper

__all__ = [
    # Main API
    "TicketKeeper",
    "create_ticket_keeper",
    "SignInConfig",
    "load_config",
    # Types
    "Account",
    "FailureReason",
    "SessionState",
    "UserAttributes",
    # Metadata
    "__version__",
]
