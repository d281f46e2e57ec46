"""
TicketKeeper Ticket Cache Inspector

Reads and switches the OS Kerberos ticket cache through its command line
tools:

- ``klist -l``     list cached principals (``*`` marks the default)
- ``klist``        fallback for the default principal
- ``kswitch -p P`` make P the default principal

The cache's default principal is global state shared by every worker.
Callers that read the cache and then act on it must hold ``exclusive()``
for the whole sequence.
"""

from __future__ import annotations

import subprocess
import threading
from contextlib import contextmanager
from typing import Any, Callable, FrozenSet, Iterator, List, Optional, Sequence

import attrs
import structlog
from returns.result import Failure, Result, Success

from ticketkeeper.core.exceptions import TicketCacheError
from ticketkeeper.core.types import Account, TicketPrincipal, find_usable_ticket

logger = structlog.get_logger()

CommandRunner = Callable[[Sequence[str], float], "subprocess.CompletedProcess[str]"]

# Messages printed by MIT and Heimdal klist when no cache exists at all
_EMPTY_CACHE_MARKERS = (
    "no credentials cache",
    "no ccache",
    "no ticket file",
    "no kerberos credentials",
)


def run_command(argv: Sequence[str], timeout: float) -> "subprocess.CompletedProcess[str]":
    """Run a cache tool and capture its text output."""
    return subprocess.run(
        list(argv),
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def parse_cache_listing(output: str) -> FrozenSet[TicketPrincipal]:
    """
    Parse ``klist -l`` output into ticket principals.

    Understands the Heimdal layout

          Name               Cache name       Expires
        * alice@EXAMPLE.COM  API:1234         Oct 18 18:00:00
          bob@EXAMPLE.COM    API:5678         >>> Expired <<<

    and the MIT layout, which has no default marker

        Principal name                 Cache name
        --------------                 ----------
        alice@EXAMPLE.COM              KCM:0:1234 (Expired)
    """
    seen: dict = {}
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        is_default = line.startswith("*")
        if is_default:
            line = line[1:].strip()

        tokens = line.split()
        if not tokens or "@" not in tokens[0]:
            continue

        seen.setdefault(tokens[0].lower(), []).append(
            TicketPrincipal(
                principal=tokens[0],
                is_default=is_default,
                expired=any("expired" in t.lower() for t in tokens[1:]),
                cache_name=tokens[1] if len(tokens) > 1 else "",
            )
        )

    # a principal held in several caches is usable if any of them is
    entries = set()
    for candidates in seen.values():
        usable = [c for c in candidates if not c.expired]
        chosen = (usable or candidates)[0]
        entries.add(attrs.evolve(chosen, is_default=any(c.is_default for c in candidates)))
    return frozenset(entries)


def parse_default_principal(output: str) -> Optional[str]:
    """Extract the default principal from plain ``klist`` output."""
    for raw_line in output.splitlines():
        label, sep, value = raw_line.partition(":")
        if not sep:
            continue
        if label.strip().lower() in ("default principal", "principal"):
            value = value.strip()
            return value or None
    return None


@attrs.define
class TicketCacheInspector:
    """
    Read-only view of the ticket cache plus default selection.

    Example:
        cache = TicketCacheInspector()
        with cache.exclusive():
            listing = cache.list_principals()
            if isinstance(listing, Success) and cache.holds_ticket(listing.unwrap(), account):
                cache.select_default(account.kerberos_principal)
    """

    klist_command: str = "klist"
    kswitch_command: str = "kswitch"
    timeout: float = 10.0
    _runner: CommandRunner = attrs.field(default=run_command, alias="runner")
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @contextmanager
    def exclusive(self) -> Iterator[TicketCacheInspector]:
        """Critical section for read-then-act sequences on the cache."""
        with self._lock:
            yield self

    def list_principals(self) -> Result[FrozenSet[TicketPrincipal], TicketCacheError]:
        """List the principals currently held in the cache."""
        result = self._run([self.klist_command, "-l"])
        return result.map(parse_cache_listing)

    def default_principal(self) -> Result[Optional[str], TicketCacheError]:
        """The cache's current default principal, if any."""
        listing = self.list_principals()
        if isinstance(listing, Failure):
            return listing

        for entry in listing.unwrap():
            if entry.is_default:
                return Success(entry.principal)

        return self._run([self.klist_command]).map(parse_default_principal)

    def select_default(self, principal: str) -> Result[None, TicketCacheError]:
        """
        Make principal the cache's default.

        Failures are logged and returned, never raised; the next check of
        the account notices a stale default on its own.
        """
        result = self._run([self.kswitch_command, "-p", principal], empty_is_ok=False)
        if isinstance(result, Failure):
            self._logger.warning(
                "select_default_failed",
                principal=principal,
                error=str(result.failure()),
            )
            return Failure(result.failure())

        self._logger.debug("default_principal_selected", principal=principal)
        return Success(None)

    @staticmethod
    def ticket_for(entries: FrozenSet[TicketPrincipal], account: Account) -> Optional[TicketPrincipal]:
        """The listing entry with a usable ticket for account, as the cache spells it."""
        return find_usable_ticket(entries, account.principal_name)

    @classmethod
    def holds_ticket(cls, entries: FrozenSet[TicketPrincipal], account: Account) -> bool:
        """Does the listing contain a usable ticket for account?"""
        return cls.ticket_for(entries, account) is not None

    def _run(self, argv: List[str], empty_is_ok: bool = True) -> Result[str, TicketCacheError]:
        try:
            completed = self._runner(argv, self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            self._logger.warning("cache_tool_failed", command=argv[0], error=str(e))
            return Failure(TicketCacheError(f"{argv[0]} could not be run: {e}"))

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            if empty_is_ok and any(m in stderr.lower() for m in _EMPTY_CACHE_MARKERS):
                return Success("")
            self._logger.warning(
                "cache_tool_failed",
                command=argv[0],
                returncode=completed.returncode,
                stderr=stderr,
            )
            return Failure(
                TicketCacheError(
                    f"{argv[0]} exited with status {completed.returncode}",
                    returncode=completed.returncode,
                    stderr=stderr,
                )
            )

        return Success(completed.stdout or "")
