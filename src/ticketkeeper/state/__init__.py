"""
TicketKeeper State Module

Published per-account state and sign-in notifications.
"""

from ticketkeeper.state.store import AccountState, Listener, Notification, UserStateStore

__all__ = [
    "AccountState",
    "Listener",
    "Notification",
    "UserStateStore",
]
