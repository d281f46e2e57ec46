"""
TicketKeeper Credentials Module

Stored secrets used for automatic sign-in.
"""

from ticketkeeper.credentials.store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
)

__all__ = [
    "CredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
]
