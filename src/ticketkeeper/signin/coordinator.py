"""
TicketKeeper Automatic Sign-In Coordinator

Fans a sign-in pass out across accounts, one worker thread per account.

Guarantees:
- run_pass never blocks on workers; it returns a SignInPass handle
- at most one worker per account is in flight; an account whose previous
  worker is still running is skipped by later passes
- the cache default principal found before the pass is restored after
  dispatch or after completion (RestoreDefault)
- worker errors end at the pass root: they are logged, never raised
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import attrs
import structlog
from returns.result import Failure

from ticketkeeper.core.config import RestoreDefault
from ticketkeeper.core.types import Account, principals_equal
from ticketkeeper.signin.worker import (
    AutomaticSignInWorker,
    WorkerMode,
    WorkerOutcome,
    WorkerReport,
)
from ticketkeeper.tickets.cache import TicketCacheInspector

logger = structlog.get_logger()


WorkerFactory = Callable[[Account, WorkerMode], AutomaticSignInWorker]


@attrs.define(eq=False)
class SignInPass:
    """Handle on one dispatched pass."""

    pass_id: str
    mode: WorkerMode
    previous_default: Optional[str]
    accounts: Tuple[Account, ...] = ()
    skipped: Tuple[Account, ...] = ()
    _reports: List[WorkerReport] = attrs.Factory(list)
    _pending: int = 0
    _done: threading.Event = attrs.Factory(threading.Event)
    _lock: threading.Lock = attrs.Factory(threading.Lock)

    @property
    def reports(self) -> List[WorkerReport]:
        with self._lock:
            return list(self._reports)

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    @property
    def fresh_ticket(self) -> bool:
        """Did any worker of this pass authenticate with a stored secret?"""
        return any(r.fresh_ticket for r in self.reports)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every worker of the pass has reported."""
        return self._done.wait(timeout)

    def _record(self, report: WorkerReport) -> bool:
        # True for the last outstanding report
        with self._lock:
            self._reports.append(report)
            self._pending -= 1
            return self._pending == 0


@attrs.define
class AutomaticSignInCoordinator:
    """
    Run sign-in passes over the configured accounts.

    Example:
        coordinator = AutomaticSignInCoordinator(
            worker_factory=make_worker,
            ticket_cache=cache,
        )
        sign_in_pass = coordinator.run_pass(config.automatic_accounts)
        sign_in_pass.wait(timeout=120)
    """

    worker_factory: WorkerFactory
    ticket_cache: TicketCacheInspector
    single_user_mode: bool = False
    restore_default_after: RestoreDefault = RestoreDefault.COMPLETION

    _in_flight: Dict[str, threading.Thread] = attrs.Factory(dict)
    _active_passes: Set[SignInPass] = attrs.Factory(set)
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def run_pass(
        self,
        accounts: Iterable[Account],
        mode: WorkerMode = WorkerMode.SIGN_IN,
    ) -> SignInPass:
        """Dispatch one worker per account and return without waiting."""
        accounts = list(dict.fromkeys(accounts))
        previous_default = self._current_default()

        if self.single_user_mode and len(accounts) > 1:
            accounts = [a for a in accounts if a.matches(previous_default)]
            self._logger.debug(
                "single_user_mode_filter",
                default=previous_default,
                accounts=[a.key for a in accounts],
            )

        dispatched: List[Account] = []
        skipped: List[Account] = []
        threads: List[threading.Thread] = []
        with self._lock:
            for account in accounts:
                if account.key in self._in_flight:
                    skipped.append(account)
                else:
                    dispatched.append(account)
            sign_in_pass = SignInPass(
                pass_id=uuid.uuid4().hex[:12],
                mode=mode,
                previous_default=previous_default,
                accounts=tuple(dispatched),
                skipped=tuple(skipped),
                pending=len(dispatched),
            )
            for account in dispatched:
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(sign_in_pass, account, mode),
                    name=f"signin-{account.key}",
                    daemon=True,
                )
                self._in_flight[account.key] = thread
                threads.append(thread)
            if dispatched:
                self._active_passes.add(sign_in_pass)

        log = self._logger.bind(pass_id=sign_in_pass.pass_id, mode=mode.name)
        for account in skipped:
            log.info("account_still_in_flight", account=account.key)
        log.info(
            "sign_in_pass_dispatched",
            accounts=[a.key for a in sign_in_pass.accounts],
            previous_default=previous_default,
        )

        for thread in threads:
            thread.start()

        if self.restore_default_after is RestoreDefault.DISPATCH:
            self._restore_default(sign_in_pass)
        if not dispatched:
            sign_in_pass._done.set()
        return sign_in_pass

    def refresh_user_info(self, accounts: Iterable[Account]) -> SignInPass:
        """Pass that only refreshes user info of accounts holding a ticket."""
        return self.run_pass(accounts, mode=WorkerMode.REFRESH_ONLY)

    def in_flight(self) -> List[str]:
        """Keys of the accounts whose worker is still running."""
        with self._lock:
            return sorted(self._in_flight)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for every active pass; False if timeout expired first."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            passes = list(self._active_passes)
        for sign_in_pass in passes:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not sign_in_pass.wait(remaining):
                return False
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _run_worker(self, sign_in_pass: SignInPass, account: Account, mode: WorkerMode) -> None:
        try:
            report = self.worker_factory(account, mode).run()
        except Exception as e:
            self._logger.error(
                "sign_in_worker_crashed",
                pass_id=sign_in_pass.pass_id,
                account=account.key,
                error=str(e),
                exc_info=True,
            )
            report = WorkerReport(account=account, outcome=WorkerOutcome.FAILED, detail=str(e))
        finally:
            with self._lock:
                self._in_flight.pop(account.key, None)

        self._logger.info(
            "sign_in_worker_finished",
            pass_id=sign_in_pass.pass_id,
            account=account.key,
            outcome=report.outcome.name,
        )
        if sign_in_pass._record(report):
            self._complete(sign_in_pass)

    def _complete(self, sign_in_pass: SignInPass) -> None:
        try:
            if self.restore_default_after is RestoreDefault.COMPLETION:
                self._restore_default(sign_in_pass)
        finally:
            with self._lock:
                self._active_passes.discard(sign_in_pass)
            sign_in_pass._done.set()
        self._logger.info(
            "sign_in_pass_complete",
            pass_id=sign_in_pass.pass_id,
            outcomes={r.account.key: r.outcome.name for r in sign_in_pass.reports},
        )

    def _current_default(self) -> Optional[str]:
        with self.ticket_cache.exclusive():
            result = self.ticket_cache.default_principal()
        if isinstance(result, Failure):
            self._logger.warning("default_principal_unknown", error=str(result.failure()))
            return None
        return result.unwrap()

    def _restore_default(self, sign_in_pass: SignInPass) -> None:
        previous = sign_in_pass.previous_default
        log = self._logger.bind(pass_id=sign_in_pass.pass_id, principal=previous)
        if previous is None:
            log.debug("restore_default_skipped", reason="no_previous_default")
            return
        if self.restore_default_after is RestoreDefault.COMPLETION and sign_in_pass.fresh_ticket:
            log.debug("restore_default_skipped", reason="fresh_ticket")
            return

        with self.ticket_cache.exclusive():
            listing = self.ticket_cache.list_principals()
            if isinstance(listing, Failure):
                log.warning("restore_default_skipped", reason="cache_unavailable")
                return
            entries = [e for e in listing.unwrap() if principals_equal(e.principal, previous)]
            if not entries:
                log.info("restore_default_skipped", reason="principal_gone")
                return
            if any(e.is_default for e in entries):
                return
            self.ticket_cache.select_default(previous)
        log.info("default_principal_restored")
