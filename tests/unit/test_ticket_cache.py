"""
Unit tests for ticketkeeper.tickets.cache module.

Tests klist output parsing and the command-line backed inspector.
"""

import subprocess

from returns.result import Failure, Success

from ticketkeeper.core.types import Account
from ticketkeeper.tickets.cache import (
    TicketCacheInspector,
    parse_cache_listing,
    parse_default_principal,
)


HEIMDAL_LISTING = """\
  Name                 Cache name          Expires
* alice@EXAMPLE.COM    API:1234-5678       Oct 18 18:00:00
  bob@EXAMPLE.COM      API:8765-4321       >>> Expired <<<
"""

MIT_LISTING = """\
Principal name                 Cache name
--------------                 ----------
alice@EXAMPLE.COM              KCM:1000:1
bob@EXAMPLE.COM                KCM:1000:2 (Expired)
"""

MIT_KLIST = """\
Ticket cache: KCM:1000:1
Default principal: alice@EXAMPLE.COM

Valid starting       Expires              Service principal
10/18/2026 08:00:00  10/18/2026 18:00:00  krbtgt/EXAMPLE.COM@EXAMPLE.COM
"""


def completed(argv, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


class TestParseCacheListing:
    """Tests for klist -l parsing."""

    def test_heimdal_layout(self):
        entries = {e.principal: e for e in parse_cache_listing(HEIMDAL_LISTING)}

        assert set(entries) == {"alice@EXAMPLE.COM", "bob@EXAMPLE.COM"}
        assert entries["alice@EXAMPLE.COM"].is_default
        assert entries["alice@EXAMPLE.COM"].cache_name == "API:1234-5678"
        assert not entries["bob@EXAMPLE.COM"].is_default
        assert entries["bob@EXAMPLE.COM"].expired

    def test_mit_layout(self):
        entries = {e.principal: e for e in parse_cache_listing(MIT_LISTING)}

        assert set(entries) == {"alice@EXAMPLE.COM", "bob@EXAMPLE.COM"}
        assert not any(e.is_default for e in entries.values())
        assert entries["bob@EXAMPLE.COM"].expired
        assert not entries["alice@EXAMPLE.COM"].expired

    def test_empty_output(self):
        assert parse_cache_listing("") == frozenset()

    def test_principal_in_two_caches_prefers_usable_entry(self):
        listing = (
            "* alice@EXAMPLE.COM  API:1  >>> Expired <<<\n"
            "  ALICE@example.com  API:2  Oct 18 18:00:00\n"
        )
        (entry,) = parse_cache_listing(listing)
        assert not entry.expired
        assert entry.is_default
        assert entry.cache_name == "API:2"


class TestParseDefaultPrincipal:
    def test_mit_klist(self):
        assert parse_default_principal(MIT_KLIST) == "alice@EXAMPLE.COM"

    def test_heimdal_klist(self):
        assert parse_default_principal("Credentials cache: API:1\n  Principal: bob@EXAMPLE.COM\n") == (
            "bob@EXAMPLE.COM"
        )

    def test_nothing(self):
        assert parse_default_principal("") is None


class TestTicketCacheInspector:
    """Tests for the inspector over a fake command runner."""

    def test_list_principals(self, tools, ticket_cache):
        tools.add("alice@EXAMPLE.COM")
        tools.add("bob@EXAMPLE.COM", expired=True)

        result = ticket_cache.list_principals()

        assert isinstance(result, Success)
        assert {e.principal for e in result.unwrap()} == {"alice@EXAMPLE.COM", "bob@EXAMPLE.COM"}
        assert tools.commands[-1] == ["klist", "-l"]

    def test_default_from_listing(self, tools, ticket_cache):
        tools.add("alice@EXAMPLE.COM")
        tools.add("bob@EXAMPLE.COM", default=True)
        assert ticket_cache.default_principal().unwrap() == "bob@EXAMPLE.COM"

    def test_default_falls_back_to_plain_klist(self):
        def runner(argv, timeout):
            if argv == ["klist", "-l"]:
                return completed(argv, stdout=MIT_LISTING)
            return completed(argv, stdout=MIT_KLIST)

        inspector = TicketCacheInspector(runner=runner)
        assert inspector.default_principal().unwrap() == "alice@EXAMPLE.COM"

    def test_empty_cache_is_not_an_error(self, ticket_cache):
        assert ticket_cache.list_principals().unwrap() == frozenset()
        assert ticket_cache.default_principal().unwrap() is None

    def test_select_default(self, tools, ticket_cache):
        tools.add("alice@EXAMPLE.COM")
        tools.add("bob@EXAMPLE.COM")

        assert isinstance(ticket_cache.select_default("bob@EXAMPLE.COM"), Success)
        assert tools.default == "bob@EXAMPLE.COM"
        assert tools.switches == ["bob@EXAMPLE.COM"]

    def test_select_default_failure_is_returned(self, ticket_cache, recording_logger):
        inspector = TicketCacheInspector(runner=ticket_cache._runner, logger=recording_logger)

        result = inspector.select_default("ghost@EXAMPLE.COM")

        assert isinstance(result, Failure)
        assert result.failure().returncode == 1
        assert "select_default_failed" in recording_logger.names()

    def test_tool_failure(self, tools, ticket_cache):
        tools.failing["klist"] = 2
        result = ticket_cache.list_principals()
        assert isinstance(result, Failure)
        assert result.failure().returncode == 2

    def test_missing_tool(self):
        def runner(argv, timeout):
            raise FileNotFoundError(2, "No such file or directory", argv[0])

        result = TicketCacheInspector(runner=runner).list_principals()
        assert isinstance(result, Failure)
        assert "could not be run" in result.failure().message

    def test_holds_ticket(self, tools, ticket_cache):
        tools.add("alice@EXAMPLE.COM")
        tools.add("bob@EXAMPLE.COM", expired=True)
        entries = ticket_cache.list_principals().unwrap()

        assert ticket_cache.holds_ticket(entries, Account("Alice@example.com"))
        assert not ticket_cache.holds_ticket(entries, Account("bob@EXAMPLE.COM"))

    def test_ticket_for_keeps_cached_spelling(self, tools, ticket_cache):
        tools.add("alice@EXAMPLE.COM")
        tools.add("bob@EXAMPLE.COM", expired=True)
        entries = ticket_cache.list_principals().unwrap()

        entry = ticket_cache.ticket_for(entries, Account("Alice@example.com"))

        assert entry.principal == "alice@EXAMPLE.COM"
        assert ticket_cache.ticket_for(entries, Account("bob@EXAMPLE.COM")) is None
        assert ticket_cache.ticket_for(entries, Account("carol@EXAMPLE.COM")) is None

    def test_exclusive_is_reentrant(self, ticket_cache):
        with ticket_cache.exclusive():
            with ticket_cache.exclusive() as inner:
                assert inner is ticket_cache
