"""
Pytest configuration and fixtures for Toolsmith tests.

This module provides shared fixtures used across unit and integration
tests: a temporary database with the catalog, relay, secrets and storage
on top of it, a deterministic cipher, and an in-memory fake sandbox.
No test talks to the network or to a real model.
"""

import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest

from toolsmith.capabilities.catalog import CapabilityCatalog
from toolsmith.capabilities.crypto import SecretCipher
from toolsmith.capabilities.executor import RESULT_MARKER
from toolsmith.capabilities.secrets import SecretStore
from toolsmith.capabilities.storage import CapabilityStorage
from toolsmith.config import BuilderConfig, SandboxConfig
from toolsmith.relay.queue import MessageRelay
from toolsmith.sandbox.base import CodeResult, CommandResult, Sandbox
from toolsmith.store.db import ToolsmithDB

TEST_KEY = bytes(range(32))


class FakeClock:
    """Manually advanced monotonic clock; sleep() advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeSandbox(Sandbox):
    """
    In-memory sandbox.

    run_code / run_command delegate to handlers so each test decides what
    the "interpreter" returns. Every call is recorded.
    """

    def __init__(
        self,
        index: int,
        lifetime_seconds: float,
        code_handler: Callable[["FakeSandbox", str], CodeResult] | None = None,
        command_handler: Callable[["FakeSandbox", str], CommandResult] | None = None,
    ) -> None:
        self.sandbox_id = f"fake-{index}"
        self.lifetime_seconds = lifetime_seconds
        self.files: dict[str, str] = {}
        self.code_runs: list[str] = []
        self.commands: list[str] = []
        self.destroy_calls = 0
        self.code_handler = code_handler or (lambda sandbox, code: CodeResult())
        self.command_handler = command_handler or (lambda sandbox, command: CommandResult(0))

    def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    def run_code(self, code: str, timeout: float) -> CodeResult:
        self.code_runs.append(code)
        return self.code_handler(self, code)

    def run_command(self, command: str, timeout: float) -> CommandResult:
        self.commands.append(command)
        return self.command_handler(self, command)

    def destroy(self) -> None:
        self.destroy_calls += 1

    @property
    def invocation(self) -> dict[str, Any]:
        """The parsed .invocation.json written by the executor."""
        return json.loads(self.files[".invocation.json"])


class FakeSandboxFactory:
    """SandboxFactory that hands out FakeSandboxes and remembers them."""

    def __init__(
        self,
        code_handler: Callable[[FakeSandbox, str], CodeResult] | None = None,
        command_handler: Callable[[FakeSandbox, str], CommandResult] | None = None,
    ) -> None:
        self.code_handler = code_handler
        self.command_handler = command_handler
        self.created: list[FakeSandbox] = []

    def __call__(self, lifetime_seconds: float) -> Sandbox:
        sandbox = FakeSandbox(
            len(self.created), lifetime_seconds, self.code_handler, self.command_handler
        )
        self.created.append(sandbox)
        return sandbox


def harness_result(value: Any, printed: str = "") -> CodeResult:
    """CodeResult as produced by the executor harness returning value."""
    return CodeResult(stdout=f"{printed}{RESULT_MARKER}\n{json.dumps(value)}\n")


ENV_VARS = (
    "TOOLSMITH_DATA_DIR",
    "TOOLSMITH_SECRET_KEY",
    "TOOLSMITH_MODEL",
    "TOOLSMITH_OLLAMA_URL",
    "TAVILY_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir: Path) -> Generator[ToolsmithDB, None, None]:
    """A fresh database in the temporary directory."""
    database = ToolsmithDB(temp_dir / "toolsmith.db")
    yield database
    database.close()


@pytest.fixture
def catalog(db: ToolsmithDB, temp_dir: Path) -> CapabilityCatalog:
    return CapabilityCatalog(db, temp_dir / "capabilities")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def relay(db: ToolsmithDB, clock: FakeClock) -> MessageRelay:
    """Relay whose waits run on the fake clock (no real sleeping)."""
    return MessageRelay(db, clock=clock, sleep=clock.sleep)


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(TEST_KEY)


@pytest.fixture
def secrets(db: ToolsmithDB, cipher: SecretCipher) -> SecretStore:
    return SecretStore(db, cipher)


@pytest.fixture
def storage(db: ToolsmithDB) -> CapabilityStorage:
    return CapabilityStorage(db)


@pytest.fixture
def sandbox_factory() -> FakeSandboxFactory:
    """Fake sandbox factory with default (always succeeding) handlers."""
    return FakeSandboxFactory()


@pytest.fixture
def make_sandbox_factory() -> type[FakeSandboxFactory]:
    """The FakeSandboxFactory class, for tests that need custom handlers."""
    return FakeSandboxFactory


@pytest.fixture
def make_harness_result() -> Callable[..., CodeResult]:
    return harness_result


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    return SandboxConfig()


@pytest.fixture
def builder_config() -> BuilderConfig:
    """Short waits; the relay's fake clock makes them instant anyway."""
    return BuilderConfig(ask_timeout_seconds=6, secret_timeout_seconds=6, poll_interval_seconds=2)


@pytest.fixture
def cap_ids(catalog: CapabilityCatalog) -> list[str]:
    """Ids of three catalog rows; secrets and storage reference capabilities."""
    return [catalog.create(name, f"{name} test capability").id for name in ("alpha", "beta", "gamma")]
