"""
TicketKeeper Core Module

Foundational types and abstractions shared by every component.

Components:
- types: Account, SRVRecord, TicketPrincipal, UserAttributes, states
- state_machine: Base state machine with invariant checking
- config: SignInConfig and its loader
- exceptions: Custom exception types
- logging: structlog setup for the command line
"""

from ticketkeeper.core.types import (
    Account,
    Credential,
    FailureReason,
    Realm,
    SessionState,
    SRVRecord,
    TicketPrincipal,
    UserAttributes,
)
from ticketkeeper.core.state_machine import StateMachineBase, Transition
from ticketkeeper.core.config import (
    DirectorySessionOptions,
    RestoreDefault,
    SignInConfig,
    load_config,
)
from ticketkeeper.core.exceptions import (
    AuthenticationError,
    ConfigError,
    CredentialStoreError,
    DirectoryLookupError,
    DiscoveryError,
    InvariantViolation,
    StateError,
    TicketCacheError,
    TicketKeeperError,
)

__all__ = [
    # Types
    "Account",
    "Credential",
    "FailureReason",
    "Realm",
    "SessionState",
    "SRVRecord",
    "TicketPrincipal",
    "UserAttributes",
    # State machine
    "StateMachineBase",
    "Transition",
    # Config
    "DirectorySessionOptions",
    "RestoreDefault",
    "SignInConfig",
    "load_config",
    # Exceptions
    "AuthenticationError",
    "ConfigError",
    "CredentialStoreError",
    "DirectoryLookupError",
    "DiscoveryError",
    "InvariantViolation",
    "StateError",
    "TicketCacheError",
    "TicketKeeperError",
]
