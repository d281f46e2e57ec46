"""
TicketKeeper Ticket Lifecycle Scheduler

Drives sign-in passes from two independent triggers:

- Periodic: every ``interval`` seconds a full pass over all accounts
- Debounced: network or ticket cache change notifications start a short
  delay; notifications arriving before it elapses restart it, and only
  the last one triggers check_tickets()

check_tickets() signs in accounts missing from the ticket cache and only
refreshes user info for accounts that still hold a ticket.

The scheduler never raises to its caller; failures end the pass they
happened in and are logged.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional, Sequence

import attrs
import structlog
from returns.result import Failure

from ticketkeeper.core.types import Account
from ticketkeeper.signin.coordinator import AutomaticSignInCoordinator, SignInPass
from ticketkeeper.tickets.cache import TicketCacheInspector
from ticketkeeper.tickets.watcher import TicketCacheWatcher

logger = structlog.get_logger()

TimerFactory = Callable[[float, Callable[[], None]], Any]


@attrs.define
class TicketLifecycleScheduler:
    """
    Periodic and event-driven sign-in scheduling.

    Example:
        scheduler = TicketLifecycleScheduler(
            coordinator=coordinator,
            ticket_cache=cache,
            accounts=config.automatic_accounts,
            interval=900,
            debounce_delay=3,
            cache_poll_interval=10,
        )
        scheduler.start()
        ...
        scheduler.notify_network_change()
        ...
        scheduler.stop(wait=True, timeout=30)
    """

    coordinator: AutomaticSignInCoordinator
    ticket_cache: TicketCacheInspector
    accounts: Sequence[Account] = attrs.field(factory=tuple, converter=tuple)
    interval: float = 15 * 60.0
    debounce_delay: float = 3.0
    cache_poll_interval: Optional[float] = None
    timer_factory: TimerFactory = threading.Timer

    _debounce_timer: Optional[Any] = None
    _generation: int = 0
    _watcher: Optional[TicketCacheWatcher] = None
    _thread: Optional[threading.Thread] = None
    _stop_event: threading.Event = attrs.Factory(threading.Event)
    _running: bool = False
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def debounce_pending(self) -> bool:
        with self._lock:
            return self._debounce_timer is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, run_immediately: bool = True) -> bool:
        """Start the periodic thread and the cache watcher."""
        with self._lock:
            if self._running:
                self._logger.warning("scheduler_already_running")
                return False
            self._running = True
            self._stop_event.clear()

        self._thread = threading.Thread(
            target=self._periodic_loop,
            args=(run_immediately,),
            name="TicketLifecycleScheduler",
            daemon=True,
        )
        self._thread.start()

        if self.cache_poll_interval:
            self._watcher = TicketCacheWatcher(
                ticket_cache=self.ticket_cache,
                on_change=self.notify_ticket_cache_change,
                poll_interval=self.cache_poll_interval,
            )
            self._watcher.start()

        self._logger.info(
            "scheduler_started",
            interval=self.interval,
            debounce_delay=self.debounce_delay,
            accounts=[a.key for a in self.accounts],
        )
        return True

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Stop timers and the watcher; optionally wait for in-flight workers.

        Returns False only if waiting timed out.
        """
        with self._lock:
            was_running = self._running
            self._running = False
            self._stop_event.set()
            timer, self._debounce_timer = self._debounce_timer, None
            self._generation += 1

        if timer is not None:
            timer.cancel()
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        if was_running:
            self._logger.info("scheduler_stopped")

        if wait:
            return self.coordinator.wait(timeout)
        return True

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def run_pass(self) -> Optional[SignInPass]:
        """Full sign-in pass over every account."""
        try:
            return self.coordinator.run_pass(self.accounts)
        except Exception as e:
            self._logger.error("sign_in_pass_failed", error=str(e), exc_info=True)
            return None

    def check_tickets(self) -> List[SignInPass]:
        """
        Sign in accounts without a ticket, refresh the others.

        Returns the dispatched passes (possibly none).
        """
        try:
            with self.ticket_cache.exclusive():
                listing = self.ticket_cache.list_principals()
            if isinstance(listing, Failure):
                self._logger.warning("check_tickets_cache_unavailable", error=str(listing.failure()))
                return []

            entries = listing.unwrap()
            missing = [a for a in self.accounts if not self.ticket_cache.holds_ticket(entries, a)]
            present = [a for a in self.accounts if a not in missing]
            self._logger.info(
                "check_tickets",
                missing=[a.key for a in missing],
                present=[a.key for a in present],
            )

            passes = []
            if missing:
                passes.append(self.coordinator.run_pass(missing))
            if present:
                passes.append(self.coordinator.refresh_user_info(present))
            return passes
        except Exception as e:
            self._logger.error("check_tickets_failed", error=str(e), exc_info=True)
            return []

    def notify_network_change(self) -> None:
        self._schedule_check("network_change")

    def notify_ticket_cache_change(self) -> None:
        self._schedule_check("ticket_cache_change")

    def _schedule_check(self, trigger: str) -> None:
        with self._lock:
            if self._stop_event.is_set():
                return
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            self._generation += 1
            generation = self._generation
            timer = self.timer_factory(self.debounce_delay, lambda: self._debounce_elapsed(generation))
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()
        self._logger.debug("check_scheduled", trigger=trigger, delay=self.debounce_delay)

    def _debounce_elapsed(self, generation: int) -> None:
        with self._lock:
            # superseded by a later notification or by stop()
            if generation != self._generation:
                return
            self._debounce_timer = None
        self.check_tickets()

    def _periodic_loop(self, run_immediately: bool) -> None:
        if run_immediately:
            self.run_pass()
        while not self._stop_event.wait(timeout=self.interval):
            self.run_pass()
