"""
TicketKeeper Session Types

Events, context and outcome of a single authentication attempt.

Events are produced from directory library callbacks (or from the session
itself when it starts or times out) and consumed by SessionStateMachine.
"""

from __future__ import annotations

from typing import Optional

import attrs

from ticketkeeper.core.types import Account, FailureReason, SessionState, UserAttributes


# =============================================================================
# EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class AuthenticationStarted:
    """The session handed a secret to the directory library."""

    pass


@attrs.define(frozen=True, slots=True)
class AuthenticationSucceeded:
    """Library callback: the directory accepted the secret."""

    pass


@attrs.define(frozen=True, slots=True)
class AuthenticationRejected:
    """Library callback (or session timeout): the attempt failed."""

    reason: FailureReason
    description: str = ""


@attrs.define(frozen=True, slots=True)
class UserInfoReceived:
    """Library callback: user attributes for the cache's default principal."""

    attributes: UserAttributes


# =============================================================================
# CONTEXT AND OUTCOME
# =============================================================================


@attrs.define
class SessionContext:
    """
    Session context.

    Replaced (never mutated in place) on every transition.
    """

    account: Account
    failure_reason: Optional[FailureReason] = None
    description: str = ""
    user_attributes: Optional[UserAttributes] = None


@attrs.define(frozen=True, slots=True)
class SessionOutcome:
    """
    Result of one session run.

    Attributes:
        state: Final session state
        failure_reason: Set when state is AUTHENTICATION_FAILED
        fresh_ticket: A new ticket was obtained with the stored secret
        credential_removed: The stored secret was invalidated
    """

    account: Account
    state: SessionState
    failure_reason: Optional[FailureReason] = None
    description: str = ""
    user_attributes: Optional[UserAttributes] = None
    fresh_ticket: bool = False
    credential_removed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state.is_authenticated

    @property
    def info_refreshed(self) -> bool:
        return self.state is SessionState.INFO_REFRESHED
