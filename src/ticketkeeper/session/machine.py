"""
TicketKeeper Session State Machine

    IDLE --AuthenticationStarted--> AUTHENTICATING
    AUTHENTICATING --AuthenticationSucceeded--> AUTHENTICATED
    AUTHENTICATING --AuthenticationRejected--> AUTHENTICATION_FAILED
    AUTHENTICATED --UserInfoReceived--> INFO_REFRESHED
    IDLE --UserInfoReceived--> INFO_REFRESHED    (ticket already cached)

Terminal states accept no further events.
"""

from __future__ import annotations

from typing import Any, Dict, Tuple

import attrs
import structlog

from ticketkeeper.core.state_machine import StateMachineBase, TransitionEntry
from ticketkeeper.core.types import Account, SessionState
from ticketkeeper.session.types import (
    AuthenticationRejected,
    AuthenticationStarted,
    AuthenticationSucceeded,
    SessionContext,
    UserInfoReceived,
)

logger = structlog.get_logger()


# =============================================================================
# INVARIANTS
# =============================================================================


def failure_has_reason(state: SessionState, ctx: SessionContext) -> bool:
    """A failed session always carries its classified reason."""
    if state is SessionState.AUTHENTICATION_FAILED:
        return ctx.failure_reason is not None
    return True


def refreshed_has_attributes(state: SessionState, ctx: SessionContext) -> bool:
    """INFO_REFRESHED is only reached with a user attribute snapshot."""
    if state is SessionState.INFO_REFRESHED:
        return ctx.user_attributes is not None
    return True


# =============================================================================
# STATE MACHINE
# =============================================================================


@attrs.define
class SessionStateMachine(StateMachineBase[SessionState, Any, SessionContext]):
    """Authentication session state machine for one account."""

    def initial_state(self) -> SessionState:
        return SessionState.IDLE

    def transition_table(self) -> Dict[Tuple[SessionState, type], TransitionEntry]:
        return {
            (SessionState.IDLE, AuthenticationStarted): (
                SessionState.AUTHENTICATING,
                self._handle_started,
            ),
            (SessionState.AUTHENTICATING, AuthenticationSucceeded): (
                SessionState.AUTHENTICATED,
                self._handle_succeeded,
            ),
            (SessionState.AUTHENTICATING, AuthenticationRejected): (
                SessionState.AUTHENTICATION_FAILED,
                self._handle_rejected,
            ),
            (SessionState.AUTHENTICATED, UserInfoReceived): (
                SessionState.INFO_REFRESHED,
                self._handle_user_info,
            ),
            (SessionState.IDLE, UserInfoReceived): (
                SessionState.INFO_REFRESHED,
                self._handle_user_info,
            ),
        }

    @staticmethod
    def _handle_started(event: AuthenticationStarted, ctx: SessionContext) -> SessionContext:
        return attrs.evolve(ctx, failure_reason=None, description="")

    @staticmethod
    def _handle_succeeded(event: AuthenticationSucceeded, ctx: SessionContext) -> SessionContext:
        return ctx

    @staticmethod
    def _handle_rejected(event: AuthenticationRejected, ctx: SessionContext) -> SessionContext:
        return attrs.evolve(ctx, failure_reason=event.reason, description=event.description)

    @staticmethod
    def _handle_user_info(event: UserInfoReceived, ctx: SessionContext) -> SessionContext:
        return attrs.evolve(ctx, user_attributes=event.attributes)


def create_session_machine(account: Account) -> SessionStateMachine:
    """A fresh machine in IDLE with the standard invariants registered."""
    machine = SessionStateMachine(
        _state=SessionState.IDLE,
        _context=SessionContext(account=account),
    )
    machine.add_invariant("failure_has_reason", failure_has_reason)
    machine.add_invariant("refreshed_has_attributes", refreshed_has_attributes)
    return machine
