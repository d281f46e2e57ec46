"""
TicketKeeper Session Module

Per-account authentication session and its state machine.
"""

from ticketkeeper.session.authentication import AuthenticationSession
from ticketkeeper.session.machine import SessionStateMachine, create_session_machine
from ticketkeeper.session.types import (
    AuthenticationRejected,
    AuthenticationStarted,
    AuthenticationSucceeded,
    SessionContext,
    SessionOutcome,
    UserInfoReceived,
)

__all__ = [
    "AuthenticationSession",
    "SessionStateMachine",
    "create_session_machine",
    "AuthenticationRejected",
    "AuthenticationStarted",
    "AuthenticationSucceeded",
    "SessionContext",
    "SessionOutcome",
    "UserInfoReceived",
]
