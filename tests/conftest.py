"""
Pytest configuration and shared fixtures for TicketKeeper tests.

Fakes stand in for the outside world:
- FakeResolver: dnspython resolver answering SRV queries from a table
- FakeKerberosTools: klist/kswitch command runner over an in-memory cache
- ScriptedDirectoryClient: directory library answering from a script
- FakeTimer: threading.Timer replacement fired by hand
"""

import subprocess
import threading
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Sequence

import dns.resolver
import pytest

from ticketkeeper.app import create_ticket_keeper
from ticketkeeper.core.config import DirectorySessionOptions, SignInConfig
from ticketkeeper.core.types import Account, FailureReason, UserAttributes
from ticketkeeper.credentials.store import MemoryCredentialStore
from ticketkeeper.directory.client import DirectoryClient, DirectoryDelegate
from ticketkeeper.discovery.srv import ServiceDiscovery
from ticketkeeper.state.store import UserStateStore
from ticketkeeper.tickets.cache import TicketCacheInspector


# =============================================================================
# DNS
# =============================================================================


def srv(target: str, port: int = 389, priority: int = 0, weight: int = 100) -> SimpleNamespace:
    """SRV rdata lookalike."""
    return SimpleNamespace(target=target, port=port, priority=priority, weight=weight)


class FakeResolver:
    """Answers SRV queries from a table; unknown names are NXDOMAIN."""

    def __init__(self, answers: Optional[Dict[str, Any]] = None) -> None:
        self.answers: Dict[str, Any] = dict(answers or {})
        self.queries: List[str] = []
        self._lock = threading.Lock()

    def resolve(self, qname: str, rdtype: str = "A", lifetime: Optional[float] = None) -> List[Any]:
        with self._lock:
            self.queries.append(qname)
        answer = self.answers.get(qname)
        if answer is None:
            raise dns.resolver.NXDOMAIN()
        if isinstance(answer, Exception):
            raise answer
        return list(answer)


# =============================================================================
# TICKET CACHE TOOLS
# =============================================================================


class FakeKerberosTools:
    """
    In-memory ticket cache driven through klist/kswitch command lines.

    Listing output uses the Heimdal ``klist -l`` layout. With case_sensitive
    set, ``kswitch -p`` only accepts the principal exactly as cached.
    """

    def __init__(self, case_sensitive: bool = False) -> None:
        self.case_sensitive = case_sensitive
        self.tickets: Dict[str, bool] = {}  # principal -> expired
        self.default: Optional[str] = None
        self.commands: List[List[str]] = []
        self.failing: Dict[str, int] = {}
        self._lock = threading.Lock()

    def add(self, principal: str, expired: bool = False, default: bool = False) -> None:
        with self._lock:
            for existing in list(self.tickets):
                if existing.lower() == principal.lower():
                    del self.tickets[existing]
            self.tickets[principal] = expired
            if default or self.default is None:
                self.default = principal

    def remove(self, principal: str) -> None:
        with self._lock:
            self.tickets.pop(principal, None)
            if self.default == principal:
                self.default = None

    @property
    def switches(self) -> List[str]:
        """Principals passed to ``kswitch -p`` in order."""
        return [argv[2] for argv in self.commands if argv[0] == "kswitch"]

    def __call__(self, argv: Sequence[str], timeout: float) -> "subprocess.CompletedProcess[str]":
        argv = list(argv)
        with self._lock:
            self.commands.append(argv)
            if argv[0] in self.failing:
                return subprocess.CompletedProcess(argv, self.failing[argv[0]], "", "tool failure")
            if argv[0] == "klist" and argv[1:] == ["-l"]:
                return subprocess.CompletedProcess(argv, 0, self._listing(), "")
            if argv[0] == "klist":
                if self.default is None:
                    return subprocess.CompletedProcess(
                        argv, 1, "", "klist: No credentials cache found"
                    )
                return subprocess.CompletedProcess(
                    argv, 0, f"Credentials cache: API:1\n        Principal: {self.default}\n", ""
                )
            if argv[0] == "kswitch":
                for principal in self.tickets:
                    if principal == argv[2] or (
                        not self.case_sensitive and principal.lower() == argv[2].lower()
                    ):
                        self.default = principal
                        return subprocess.CompletedProcess(argv, 0, "", "")
                return subprocess.CompletedProcess(
                    argv, 1, "", f"kswitch: Principal {argv[2]} not found"
                )
        raise AssertionError(f"unexpected command {argv}")

    def _listing(self) -> str:
        lines = ["  Name                 Cache name       Expires"]
        for index, (principal, expired) in enumerate(self.tickets.items()):
            marker = "*" if principal == self.default else " "
            expires = ">>> Expired <<<" if expired else "Oct 18 18:00:00"
            lines.append(f"{marker} {principal}  API:{index}  {expires}")
        return "\n".join(lines) + "\n"


# =============================================================================
# DIRECTORY LIBRARY
# =============================================================================


SUCCESS = "success"


class ScriptedDirectoryClient(DirectoryClient):
    """
    Directory client answering from a script.

    auth: SUCCESS, a FailureReason, or None for "never answers"
    extra_callbacks: completions delivered after the first one
    user_info: attributes delivered on request_user_info, None for silence
    """

    def __init__(
        self,
        account: Account,
        tools: FakeKerberosTools,
        auth: Any = SUCCESS,
        user_info: Optional[UserAttributes] = None,
        extra_callbacks: Sequence[Any] = (),
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.account = account
        self.tools = tools
        self.auth = auth
        self.user_info = user_info
        self.extra_callbacks = list(extra_callbacks)
        self.gate = gate
        self.secrets: List[bytes] = []
        self.info_requests: List[Optional[str]] = []

    def authenticate(self, secret: bytes, delegate: DirectoryDelegate) -> None:
        self.secrets.append(secret)
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        for outcome in [self.auth] + self.extra_callbacks:
            self._deliver(outcome, delegate)

    def _deliver(self, outcome: Any, delegate: DirectoryDelegate) -> None:
        if outcome is None:
            return
        if outcome == SUCCESS:
            self.tools.add(self.account.kerberos_principal)
            delegate.authentication_succeeded()
        else:
            delegate.authentication_failed(outcome, f"{outcome.name.lower()} for {self.account}")

    def request_user_info(self, delegate: DirectoryDelegate) -> None:
        # user info acts on whatever the cache default is right now
        self.info_requests.append(self.tools.default)
        if self.user_info is not None:
            delegate.user_information(self.user_info)


class DirectoryScript:
    """DirectoryClientFactory whose clients follow a per-account script."""

    def __init__(self, tools: FakeKerberosTools) -> None:
        self.tools = tools
        self.scripts: Dict[str, Dict[str, Any]] = {}
        self.clients: List[ScriptedDirectoryClient] = []
        self.options: List[DirectorySessionOptions] = []
        self._lock = threading.Lock()

    def script(self, principal: str, **behaviour: Any) -> None:
        self.scripts[principal.lower()] = behaviour

    def clients_for(self, principal: str) -> List[ScriptedDirectoryClient]:
        return [c for c in self.clients if c.account.key == principal.lower()]

    def __call__(self, account: Account, options: DirectorySessionOptions) -> DirectoryClient:
        behaviour = dict(self.scripts.get(account.key, {}))
        behaviour.setdefault("user_info", UserAttributes(user_principal=account.kerberos_principal))
        client = ScriptedDirectoryClient(account, self.tools, **behaviour)
        with self._lock:
            self.clients.append(client)
            self.options.append(options)
        return client


# =============================================================================
# TIMERS
# =============================================================================


class FakeTimer:
    """threading.Timer lookalike that only fires through fire()."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.function()


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


class RecordingLogger:
    """structlog-compatible logger that records events."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def bind(self, **kw: Any) -> "RecordingLogger":
        return self

    def _record(self, level: str, event: str, **kw: Any) -> None:
        self.events.append({"level": level, "event": event, **kw})

    def debug(self, event: str, **kw: Any) -> None:
        self._record("debug", event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._record("info", event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._record("warning", event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._record("error", event, **kw)

    def names(self) -> List[str]:
        return [e["event"] for e in self.events]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def alice() -> Account:
    return Account("alice@EXAMPLE.COM")


@pytest.fixture
def bob() -> Account:
    return Account("bob@EXAMPLE.COM")


@pytest.fixture
def carol() -> Account:
    """Account whose domain advertises no directory."""
    return Account("carol@OFFSITE.EXAMPLE")


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({"_ldap._tcp.example.com": [srv("dc1.example.com.")]})


@pytest.fixture
def discovery(resolver: FakeResolver) -> ServiceDiscovery:
    return ServiceDiscovery(timeout=1.0, resolver=resolver)


@pytest.fixture
def tools() -> FakeKerberosTools:
    return FakeKerberosTools()


@pytest.fixture
def ticket_cache(tools: FakeKerberosTools) -> TicketCacheInspector:
    return TicketCacheInspector(runner=tools)


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def state_store() -> UserStateStore:
    return UserStateStore()


@pytest.fixture
def directory(tools: FakeKerberosTools) -> DirectoryScript:
    return DirectoryScript(tools)


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def make_keeper(directory, credential_store, ticket_cache, discovery, state_store):
    """Build a TicketKeeper over the fakes with config overrides."""

    def _make(accounts: Sequence[str], **settings: Any):
        settings.setdefault("session_timeout", 2.0)
        config = SignInConfig.from_dict({"accounts": list(accounts), **settings})
        return create_ticket_keeper(
            config,
            client_factory=directory,
            credential_store=credential_store,
            ticket_cache=ticket_cache,
            discovery=discovery,
            state_store=state_store,
        )

    return _make


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real directory and KDC"
    )
    config.addinivalue_line(
        "markers", "native: marks tests requiring native GSSAPI"
    )
