"""
TicketKeeper Directory Module

Boundary to the directory authentication library.

Components:
- client: DirectoryClient / DirectoryDelegate callback contract
- gssapi_client: native GSSAPI implementation (optional dependency)
- ldap_lookup: user record lookup over LDAP
"""

from ticketkeeper.directory.client import (
    DirectoryClient,
    DirectoryClientFactory,
    DirectoryDelegate,
)
from ticketkeeper.directory.gssapi_client import (
    GSSAPIDirectoryClient,
    create_gssapi_client,
    gssapi_available,
)
from ticketkeeper.directory.ldap_lookup import DirectoryLookup, user_attributes_from_entry

__all__ = [
    "DirectoryClient",
    "DirectoryClientFactory",
    "DirectoryDelegate",
    "DirectoryLookup",
    "GSSAPIDirectoryClient",
    "create_gssapi_client",
    "gssapi_available",
    "user_attributes_from_entry",
]
