"""
TicketKeeper Published User State

Per-account state consumed by other layers (menu, mounts, scripts):

- the last UserAttributes snapshot
- when the account was last checked
- whether a secret is stored for it (True / False / unknown)
- whether the directory currently accepts the account

Snapshots are replaced wholesale, never merged. Listeners receive
notifications for sign-in events; a failing listener is logged and
otherwise ignored.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import attrs
import structlog

from ticketkeeper.core.types import Account, SessionState, UserAttributes

logger = structlog.get_logger()


class Notification(Enum):
    AUTH_SUCCEEDED = auto()
    AUTH_FAILED = auto()
    OFF_DOMAIN = auto()
    NO_STORED_SECRET = auto()
    USER_INFO_UPDATED = auto()


Listener = Callable[[Notification, Account, Dict[str, Any]], None]


@attrs.define(frozen=True, slots=True)
class AccountState:
    """Published state of one account."""

    account: Account
    user_attributes: Optional[UserAttributes] = None
    last_checked: Optional[datetime] = None
    has_stored_secret: Optional[bool] = None
    session_state: SessionState = SessionState.IDLE

    @property
    def is_authenticated(self) -> bool:
        return self.session_state.is_authenticated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal": self.account.principal_name,
            "display_name": self.account.display_name,
            "user_attributes": self.user_attributes.to_dict() if self.user_attributes else None,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "has_stored_secret": self.has_stored_secret,
            "session_state": self.session_state.name,
            "is_authenticated": self.is_authenticated,
        }


def _published(attributes: UserAttributes) -> UserAttributes:
    # expiry is only meaningful when the directory ages the password
    if attributes.password_aging:
        return attributes
    return attrs.evolve(attributes, password_expire=None, computed_expire_date=None)


@attrs.define
class UserStateStore:
    """
    Thread-safe store of published account state.

    Example:
        store = UserStateStore()
        store.add_listener(lambda note, account, details: print(note, account))
        store.publish_user_info(account, attributes)
        store.get(account).user_attributes
    """

    _states: Dict[str, AccountState] = attrs.Factory(dict)
    _listeners: List[Listener] = attrs.Factory(list)
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _clock: Callable[[], datetime] = attrs.field(
        default=lambda: datetime.now(timezone.utc), alias="clock"
    )
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def get(self, account: Account) -> AccountState:
        with self._lock:
            return self._states.get(account.key) or AccountState(account=account)

    def is_authenticated(self, account: Account) -> bool:
        return self.get(account).is_authenticated

    def snapshot(self) -> Dict[str, AccountState]:
        with self._lock:
            return dict(self._states)

    def publish_user_info(self, account: Account, attributes: UserAttributes) -> AccountState:
        """Replace the account's attribute snapshot and mark it checked."""
        with self._lock:
            state = attrs.evolve(
                self.get(account),
                user_attributes=_published(attributes),
                last_checked=self._clock(),
            )
            self._states[account.key] = state

        self._logger.info("user_info_published", account=account.key)
        self.notify(Notification.USER_INFO_UPDATED, account)
        return state

    def record_session_state(self, account: Account, session_state: SessionState) -> None:
        with self._lock:
            self._states[account.key] = attrs.evolve(
                self.get(account),
                session_state=session_state,
                last_checked=self._clock(),
            )

    def record_stored_secret(self, account: Account, present: Optional[bool]) -> None:
        with self._lock:
            self._states[account.key] = attrs.evolve(self.get(account), has_stored_secret=present)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def notify(self, notification: Notification, account: Account, **details: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)

        self._logger.debug("notification", notification=notification.name, account=account.key)
        for listener in listeners:
            try:
                listener(notification, account, details)
            except Exception as e:
                self._logger.error(
                    "notification_listener_failed",
                    notification=notification.name,
                    account=account.key,
                    error=str(e),
                )

    def export_json(self, path: Union[str, Path]) -> None:
        """Write every account's published state to a JSON file."""
        data = {key: state.to_dict() for key, state in sorted(self.snapshot().items())}
        path = Path(path)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(path)
        self._logger.debug("user_state_exported", path=str(path), accounts=len(data))
