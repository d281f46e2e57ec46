"""
Unit tests for ticketkeeper.signin.worker module.

Tests per-account orchestration: discovery, cache check, cheap path and
authentication with the stored secret.
"""

import dns.exception
import pytest
from returns.result import Failure

from ticketkeeper.core.config import DirectorySessionOptions
from ticketkeeper.core.exceptions import CredentialStoreError
from ticketkeeper.core.types import FailureReason, SessionState, UserAttributes
from ticketkeeper.credentials.store import MemoryCredentialStore
from ticketkeeper.session.authentication import AuthenticationSession
from ticketkeeper.signin.worker import AutomaticSignInWorker, WorkerMode, WorkerOutcome
from ticketkeeper.state.store import Notification


class SpyCredentialStore(MemoryCredentialStore):
    """Memory store recording every call."""

    def __init__(self, fail_retrieve=False):
        super().__init__()
        self.calls = []
        self.fail_retrieve = fail_retrieve

    def retrieve(self, account):
        self.calls.append(("retrieve", account.key))
        if self.fail_retrieve:
            return Failure(CredentialStoreError("keychain locked"))
        return super().retrieve(account)

    def remove(self, account):
        self.calls.append(("remove", account.key))
        return super().remove(account)


@pytest.fixture
def spy_store():
    return SpyCredentialStore()


@pytest.fixture
def make_worker(discovery, ticket_cache, directory, state_store, spy_store):
    options = DirectorySessionOptions(custom_attributes=("employeeNumber",))

    def session_factory(account):
        return AuthenticationSession(
            account=account,
            client=directory(account, options),
            credential_store=spy_store,
            ticket_cache=ticket_cache,
            state_store=state_store,
            timeout=2.0,
        )

    def _make(account, mode=WorkerMode.SIGN_IN, store=None):
        return AutomaticSignInWorker(
            account=account,
            discovery=discovery,
            ticket_cache=ticket_cache,
            credential_store=store or spy_store,
            session_factory=session_factory,
            state_store=state_store,
            mode=mode,
        )

    return _make


class TestCheapPath:
    """Accounts that already hold a ticket."""

    def test_cached_ticket_refreshes_without_secret(self, make_worker, alice, tools, spy_store, directory):
        tools.add("bob@EXAMPLE.COM", default=True)
        tools.add("alice@EXAMPLE.COM")

        report = make_worker(alice).run()

        assert report.outcome is WorkerOutcome.REFRESHED
        assert report.session.state is SessionState.INFO_REFRESHED
        assert tools.default == "alice@EXAMPLE.COM"
        assert directory.clients_for("alice@EXAMPLE.COM")[0].info_requests == ["alice@EXAMPLE.COM"]
        assert spy_store.calls == []

    def test_expired_ticket_is_not_reused(self, make_worker, alice, tools, spy_store):
        tools.add("alice@EXAMPLE.COM", expired=True)
        spy_store.store(alice, b"pw")

        report = make_worker(alice).run()

        assert report.outcome is WorkerOutcome.AUTHENTICATED
        assert spy_store.calls == [("retrieve", "alice@example.com")]


class TestSignIn:
    """Accounts without a ticket."""

    def test_sign_in_with_stored_secret(self, make_worker, bob, tools, spy_store, directory, state_store):
        spy_store.store(bob, b"pw")
        directory.script("bob@EXAMPLE.COM", user_info=UserAttributes(user_principal="bob@EXAMPLE.COM", cn="Bob B"))

        report = make_worker(bob).run()

        assert report.outcome is WorkerOutcome.AUTHENTICATED
        assert report.fresh_ticket
        assert state_store.get(bob).user_attributes.cn == "Bob B"
        assert tools.default == "bob@EXAMPLE.COM"
        assert directory.options[0].custom_attributes == ("employeeNumber",)

    def test_password_expired_removes_secret(self, make_worker, bob, spy_store, directory, state_store):
        spy_store.store(bob, b"pw")
        directory.script("bob@EXAMPLE.COM", auth=FailureReason.PASSWORD_EXPIRED)

        report = make_worker(bob).run()

        assert report.outcome is WorkerOutcome.FAILED
        assert report.session.credential_removed
        assert spy_store.calls.count(("remove", "bob@example.com")) == 1
        assert bob not in spy_store
        assert state_store.get(bob).user_attributes is None

    def test_no_stored_secret(self, make_worker, bob, directory, state_store):
        received = []
        state_store.add_listener(lambda note, account, details: received.append(note))

        report = make_worker(bob).run()

        assert report.outcome is WorkerOutcome.NO_SECRET
        assert directory.clients == []
        assert state_store.get(bob).has_stored_secret is False
        assert received == [Notification.NO_STORED_SECRET]

    def test_store_failure_means_no_secret(self, make_worker, bob, directory, state_store):
        store = SpyCredentialStore(fail_retrieve=True)

        report = make_worker(bob, store=store).run()

        assert report.outcome is WorkerOutcome.NO_SECRET
        assert "keychain locked" in report.detail
        assert directory.clients == []
        assert state_store.get(bob).has_stored_secret is None

    def test_refresh_only_never_reads_secret(self, make_worker, bob, spy_store, directory):
        spy_store.store(bob, b"pw")

        report = make_worker(bob, mode=WorkerMode.REFRESH_ONLY).run()

        assert report.outcome is WorkerOutcome.SKIPPED
        assert spy_store.calls == []
        assert directory.clients == []


class TestEarlyExits:
    """Discovery and cache failures end the account's pass quietly."""

    def test_no_srv_records_no_side_effects(self, make_worker, carol, tools, spy_store, directory, state_store):
        spy_store.store(carol, b"pw")

        report = make_worker(carol).run()

        assert report.outcome is WorkerOutcome.NOT_ADVERTISED
        assert tools.commands == []
        assert spy_store.calls == []
        assert directory.clients == []
        assert state_store.snapshot() == {}

    def test_lookup_failure(self, make_worker, resolver, bob, spy_store):
        resolver.answers["_ldap._tcp.example.com"] = dns.exception.Timeout()

        report = make_worker(bob).run()

        assert report.outcome is WorkerOutcome.DISCOVERY_FAILED
        assert spy_store.calls == []

    def test_cache_unavailable(self, make_worker, bob, tools, spy_store):
        tools.failing["klist"] = 1
        spy_store.store(bob, b"pw")

        report = make_worker(bob).run()

        assert report.outcome is WorkerOutcome.CACHE_UNAVAILABLE
        assert spy_store.calls == []
