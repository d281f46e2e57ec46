"""
TicketKeeper Tickets Module

Ticket cache inspection and change watching.

Components:
- cache: TicketCacheInspector (klist / kswitch)
- watcher: TicketCacheWatcher (polling change detection)
"""

from ticketkeeper.tickets.cache import (
    TicketCacheInspector,
    parse_cache_listing,
    parse_default_principal,
)
from ticketkeeper.tickets.watcher import TicketCacheWatcher

__all__ = [
    "TicketCacheInspector",
    "TicketCacheWatcher",
    "parse_cache_listing",
    "parse_default_principal",
]
