"""
TicketKeeper Sign-In Module

Automatic sign-in of the configured accounts.

Components:
- worker: per-account discovery, cache check and authentication
- coordinator: fans passes out across accounts, one worker per account
- scheduler: periodic and debounced event-driven passes
"""

from ticketkeeper.signin.worker import (
    AutomaticSignInWorker,
    WorkerMode,
    WorkerOutcome,
    WorkerReport,
)
from ticketkeeper.signin.coordinator import AutomaticSignInCoordinator, SignInPass
from ticketkeeper.signin.scheduler import TicketLifecycleScheduler

__all__ = [
    "AutomaticSignInWorker",
    "WorkerMode",
    "WorkerOutcome",
    "WorkerReport",
    "AutomaticSignInCoordinator",
    "SignInPass",
    "TicketLifecycleScheduler",
]
