"""
TicketKeeper Ticket Cache Watcher

Polls the ticket cache listing on a background thread and reports changes
(principal added or removed, ticket expired, default switched). Used to
turn external kinit/kdestroy/kswitch activity into a "ticket cache
changed" notification for the scheduler.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, FrozenSet, Optional

import attrs
import structlog
from returns.result import Failure

from ticketkeeper.core.types import TicketPrincipal
from ticketkeeper.tickets.cache import TicketCacheInspector

logger = structlog.get_logger()


@attrs.define
class TicketCacheWatcher:
    """
    Watch the ticket cache for changes.

    Example:
        watcher = TicketCacheWatcher(
            ticket_cache=cache,
            on_change=scheduler.notify_ticket_cache_change,
            poll_interval=10.0,
        )
        watcher.start()
        ...
        watcher.stop()
    """

    ticket_cache: TicketCacheInspector
    on_change: Callable[[], None]
    poll_interval: float = 10.0

    _last_snapshot: Optional[FrozenSet[TicketPrincipal]] = None
    _running: bool = False
    _thread: Optional[threading.Thread] = None
    _stop_event: threading.Event = attrs.Factory(threading.Event)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start polling. Returns False if already running."""
        if self._running:
            self._logger.warning("cache_watcher_already_running")
            return False

        self._stop_event.clear()
        self._last_snapshot = self._read()
        self._running = True
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="TicketCacheWatcher",
            daemon=True,
        )
        self._thread.start()
        self._logger.info("cache_watcher_started", poll_interval=self.poll_interval)
        return True

    def stop(self) -> None:
        if not self._running:
            return

        self._stop_event.set()
        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        self._logger.info("cache_watcher_stopped")

    def poll_once(self) -> bool:
        """Compare the cache with the last snapshot; True if it changed."""
        snapshot = self._read()
        if snapshot is None:
            return False

        changed = self._last_snapshot is not None and snapshot != self._last_snapshot
        self._last_snapshot = snapshot
        if not changed:
            return False

        self._logger.info(
            "ticket_cache_changed",
            principals=sorted(e.principal for e in snapshot),
        )
        try:
            self.on_change()
        except Exception as e:
            self._logger.error("cache_change_handler_failed", error=str(e))
        return True

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.poll_interval):
            self.poll_once()

    def _read(self) -> Optional[FrozenSet[TicketPrincipal]]:
        with self.ticket_cache.exclusive():
            listing = self.ticket_cache.list_principals()
        if isinstance(listing, Failure):
            return None
        return listing.unwrap()
