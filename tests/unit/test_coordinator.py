"""
Unit tests for ticketkeeper.signin.coordinator module.

Tests pass dispatch, per-account exclusivity, single-user mode and
restoring the pre-pass default principal.
"""

import threading
import time

import pytest

from ticketkeeper.signin.coordinator import AutomaticSignInCoordinator
from ticketkeeper.signin.worker import WorkerMode, WorkerOutcome
from ticketkeeper.state.store import Notification


class TestRunPass:
    """Tests for dispatching workers."""

    def test_pass_signs_in_every_account(self, make_keeper, alice, bob, credential_store):
        credential_store.store(alice, b"a")
        credential_store.store(bob, b"b")
        keeper = make_keeper(["alice@EXAMPLE.COM", "bob@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([alice, bob])

        assert sign_in_pass.wait(5.0)
        outcomes = {r.account.key: r.outcome for r in sign_in_pass.reports}
        assert outcomes == {
            "alice@example.com": WorkerOutcome.AUTHENTICATED,
            "bob@example.com": WorkerOutcome.AUTHENTICATED,
        }
        assert keeper.coordinator.in_flight() == []

    def test_empty_pass_is_finished(self, make_keeper):
        keeper = make_keeper([])
        sign_in_pass = keeper.coordinator.run_pass([])
        assert sign_in_pass.finished
        assert sign_in_pass.reports == []

    def test_duplicate_accounts_dispatched_once(self, make_keeper, alice, credential_store, directory):
        credential_store.store(alice, b"a")
        keeper = make_keeper(["alice@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([alice, alice])

        assert sign_in_pass.wait(5.0)
        assert len(sign_in_pass.reports) == 1
        assert len(directory.clients_for("alice@EXAMPLE.COM")) == 1

    def test_account_in_flight_is_skipped(self, make_keeper, bob, credential_store, directory):
        gate = threading.Event()
        credential_store.store(bob, b"b")
        directory.script("bob@EXAMPLE.COM", gate=gate)
        keeper = make_keeper(["bob@EXAMPLE.COM"])

        first = keeper.coordinator.run_pass([bob])
        second = keeper.coordinator.run_pass([bob])

        assert first.accounts == (bob,)
        assert second.accounts == ()
        assert second.skipped == (bob,)
        assert second.finished
        assert keeper.coordinator.in_flight() == ["bob@example.com"]
        assert not keeper.coordinator.wait(0.05)

        gate.set()
        assert first.wait(5.0)
        assert keeper.coordinator.wait(1.0)
        assert keeper.coordinator.in_flight() == []
        assert len(directory.clients_for("bob@EXAMPLE.COM")) == 1

    def test_worker_crash_ends_at_pass_root(self, ticket_cache, alice, recording_logger):
        def broken_factory(account, mode):
            raise RuntimeError("cannot build worker")

        coordinator = AutomaticSignInCoordinator(
            worker_factory=broken_factory,
            ticket_cache=ticket_cache,
            logger=recording_logger,
        )

        sign_in_pass = coordinator.run_pass([alice])

        assert sign_in_pass.wait(5.0)
        (report,) = sign_in_pass.reports
        assert report.outcome is WorkerOutcome.FAILED
        assert "cannot build worker" in report.detail
        assert "sign_in_worker_crashed" in recording_logger.names()
        assert coordinator.in_flight() == []

    def test_refresh_user_info_uses_refresh_only_mode(self, make_keeper, alice, bob, tools, credential_store):
        tools.add("alice@EXAMPLE.COM")
        credential_store.store(bob, b"b")
        keeper = make_keeper(["alice@EXAMPLE.COM", "bob@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.refresh_user_info([alice, bob])

        assert sign_in_pass.mode is WorkerMode.REFRESH_ONLY
        assert sign_in_pass.wait(5.0)
        outcomes = {r.account.key: r.outcome for r in sign_in_pass.reports}
        assert outcomes == {
            "alice@example.com": WorkerOutcome.REFRESHED,
            "bob@example.com": WorkerOutcome.SKIPPED,
        }

    def test_run_pass_returns_while_worker_awaits_user_info(
        self, make_keeper, alice, bob, tools, credential_store, directory
    ):
        tools.add("alice@EXAMPLE.COM")
        credential_store.store(bob, b"b")
        directory.script("alice@EXAMPLE.COM", user_info=None)
        keeper = make_keeper(["alice@EXAMPLE.COM", "bob@EXAMPLE.COM"], session_timeout=2.0)

        first = keeper.coordinator.run_pass([alice])
        deadline = time.monotonic() + 5.0
        while not any(c.info_requests for c in directory.clients_for("alice@EXAMPLE.COM")):
            assert time.monotonic() < deadline
            time.sleep(0.01)

        started = time.monotonic()
        second = keeper.coordinator.run_pass([bob])
        assert time.monotonic() - started < 0.5

        assert second.wait(1.5)
        assert not first.finished
        assert first.wait(5.0)


class TestSingleUserMode:
    def test_only_default_principal_signed_in(self, make_keeper, alice, bob, tools, directory):
        tools.add("alice@EXAMPLE.COM", default=True)
        keeper = make_keeper(["alice@EXAMPLE.COM", "bob@EXAMPLE.COM"], single_user_mode=True)

        sign_in_pass = keeper.coordinator.run_pass([alice, bob])

        assert sign_in_pass.accounts == (alice,)
        assert sign_in_pass.wait(5.0)
        assert directory.clients_for("bob@EXAMPLE.COM") == []

    def test_single_account_always_processed(self, make_keeper, bob, credential_store):
        credential_store.store(bob, b"b")
        keeper = make_keeper(["bob@EXAMPLE.COM"], single_user_mode=True)

        sign_in_pass = keeper.coordinator.run_pass([bob])

        assert sign_in_pass.accounts == (bob,)


class TestRestoreDefault:
    """Tests for restoring the pre-pass default principal."""

    def test_restored_after_cheap_path(self, make_keeper, alice, tools):
        tools.add("zed@EXAMPLE.COM", default=True)
        tools.add("alice@EXAMPLE.COM")
        keeper = make_keeper(["alice@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([alice])

        assert sign_in_pass.previous_default == "zed@EXAMPLE.COM"
        assert sign_in_pass.wait(5.0)
        assert tools.switches == ["alice@EXAMPLE.COM", "zed@EXAMPLE.COM"]
        assert tools.default == "zed@EXAMPLE.COM"

    def test_not_restored_after_fresh_ticket(self, make_keeper, bob, tools, credential_store):
        tools.add("zed@EXAMPLE.COM", default=True)
        credential_store.store(bob, b"b")
        keeper = make_keeper(["bob@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([bob])

        assert sign_in_pass.wait(5.0)
        assert sign_in_pass.fresh_ticket
        assert tools.default == "bob@EXAMPLE.COM"

    def test_not_restored_without_previous_default(self, make_keeper, alice, bob, tools, credential_store):
        credential_store.store(bob, b"b")
        keeper = make_keeper(["bob@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([bob])

        assert sign_in_pass.previous_default is None
        assert sign_in_pass.wait(5.0)
        assert tools.switches == ["bob@EXAMPLE.COM"]

    def test_not_restored_when_principal_gone(self, make_keeper, alice, tools, state_store):
        tools.add("zed@EXAMPLE.COM", default=True)
        tools.add("alice@EXAMPLE.COM")

        def kdestroy_zed(note, account, details):
            if note is Notification.USER_INFO_UPDATED:
                tools.remove("zed@EXAMPLE.COM")

        state_store.add_listener(kdestroy_zed)
        keeper = make_keeper(["alice@EXAMPLE.COM"])

        sign_in_pass = keeper.coordinator.run_pass([alice])

        assert sign_in_pass.wait(5.0)
        assert tools.switches == ["alice@EXAMPLE.COM"]

    def test_dispatch_mode_restores_before_workers_finish(
        self, make_keeper, bob, tools, credential_store, directory
    ):
        gate = threading.Event()
        tools.add("zed@EXAMPLE.COM", default=True)
        credential_store.store(bob, b"b")
        directory.script("bob@EXAMPLE.COM", gate=gate)
        keeper = make_keeper(["bob@EXAMPLE.COM"], restore_default_after="dispatch")

        sign_in_pass = keeper.coordinator.run_pass([bob])
        assert tools.default == "zed@EXAMPLE.COM"

        gate.set()
        assert sign_in_pass.wait(5.0)
        # the worker's own selection wins once restore already happened
        assert tools.default == "bob@EXAMPLE.COM"
        assert "zed@EXAMPLE.COM" not in tools.switches
