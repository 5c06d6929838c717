"""Pytest fixtures for warmd tests."""

import asyncio
import sys
import threading
import time
from collections.abc import Iterator, Sequence
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from warmd.color import ColorSettings
from warmd.config import DaemonConfig
from warmd.daemon.environment import SharedEnvironment
from warmd.daemon.protocol import Command, Request, encode_request
from warmd.daemon.server import WarmDaemon
from warmd.daemon.service import DaemonService

TOKEN = "token"

SAMPLE_TOOL = '''\
import sys

data = sys.stdin.read()
print("args:", " ".join(sys.argv[1:]))
if data:
    print("stdin:", data)
if sys.argv[1:2] == ["fail"]:
    raise SystemExit(3)
if sys.argv[1:2] == ["message"]:
    raise SystemExit("bad input")
if sys.argv[1:2] == ["boom"]:
    raise RuntimeError("kaboom")
'''


class FakeConnection:
    """Connection that records what the daemon sends."""

    def __init__(self, data: bytes = b"") -> None:
        self.data = data
        self.writes: list[str] = []
        self.ends: list[str | None] = []

    async def read_all(self) -> bytes:
        return self.data

    def write(self, data: str) -> None:
        self.writes.append(data)

    def end(self, data: str | None = None) -> None:
        self.ends.append(data)


class ControlledEngine:
    """Engine whose runs finish only when the test resolves them."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str | None, bool]] = []
        self.runs: list[asyncio.Future[int]] = []

    def execute(
        self, argv: Sequence[str], text: str | None, allow_errors: bool
    ) -> "asyncio.Future[int]":
        self.calls.append((list(argv), text, allow_errors))
        future: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self.runs.append(future)
        return future


class EchoEngine:
    """Engine that echoes its arguments to stdout and its text to stderr.

    ``fail`` as first argument raises; a numeric last argument is the status;
    ``slow`` writes the first argument twice with a pause in between.
    """

    async def execute(self, argv: Sequence[str], text: str | None, allow_errors: bool) -> int:
        if argv and argv[0] == "fail":
            raise RuntimeError("Ouch!")
        if argv and argv[0] == "slow":
            sys.stdout.write(argv[1])
            await asyncio.sleep(0.05)
            sys.stdout.write(argv[1])
            return 0
        sys.stdout.write(" ".join(argv))
        if text:
            sys.stderr.write(text)
        return int(argv[-1]) if argv and argv[-1].isdigit() else 0


class StaticResolver:
    """Resolver handing out a fixed engine."""

    def __init__(self, engine: object) -> None:
        self.engine = engine

    def resolve(self) -> object:
        return self.engine


def make_request(
    token: str = TOKEN,
    command: Command = Command.TASK,
    color_level: int | None = 3,
    cwd: str = "/",
    argv: Sequence[str] = (),
    text: str | None = None,
    debug: str = "",
) -> bytes:
    """Encode a request the way the client sends it."""
    return encode_request(
        Request(
            token=token,
            command=command,
            color_level=color_level,
            cwd=cwd,
            argv=tuple(argv),
            debug=debug,
            text=text,
        )
    )


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def debug_toggle() -> MagicMock:
    """Fake debug-logging subsystem."""
    return MagicMock(spec=["enable", "disable"])


@pytest.fixture
def chdir() -> MagicMock:
    """Fake directory change."""
    return MagicMock()


@pytest.fixture
def color() -> ColorSettings:
    """Color settings with no level set."""
    return ColorSettings()


@pytest.fixture
def environment(debug_toggle: MagicMock, color: ColorSettings, chdir: MagicMock) -> SharedEnvironment:
    """Shared environment with faked side effects and no debug baseline."""
    return SharedEnvironment("", debug_toggle=debug_toggle, color=color, chdir=chdir)


@pytest.fixture
def engine() -> ControlledEngine:
    """Engine controlled by the test."""
    return ControlledEngine()


@pytest.fixture
def shutdown() -> MagicMock:
    """Shutdown callback."""
    return MagicMock()


@pytest.fixture
def service(
    engine: ControlledEngine, shutdown: MagicMock, environment: SharedEnvironment
) -> DaemonService:
    """Service running jobs on the controlled engine."""
    return DaemonService(StaticResolver(engine), TOKEN, shutdown, environment)


@pytest.fixture
def sample_tool(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Importable module behaving like a small command-line tool.

    Returns:
        The module name.
    """
    module_dir = tmp_path / "modules"
    module_dir.mkdir()
    (module_dir / "warmd_sample_tool.py").write_text(SAMPLE_TOOL, encoding="utf-8")
    monkeypatch.syspath_prepend(str(module_dir))
    return "warmd_sample_tool"


class DaemonThread:
    """A WarmDaemon running on its own event loop in a background thread."""

    def __init__(self, daemon: WarmDaemon, config: DaemonConfig) -> None:
        self.daemon = daemon
        self.config = config
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_until_complete(self.daemon.run_forever())

    def start(self, timeout: float = 5.0) -> None:
        self.thread.start()
        deadline = time.time() + timeout
        while not self.config.runtime_file.exists():
            if time.time() > deadline:
                raise TimeoutError("Daemon did not start")
            time.sleep(0.01)

    def wait_idle(self, timeout: float = 5.0) -> None:
        """Wait until no job holds the execution slot."""
        deadline = time.time() + timeout
        service = self.daemon.service
        while service is not None and (service.slot.busy or service.slot.pending):
            if time.time() > deadline:
                raise TimeoutError("Daemon did not become idle")
            time.sleep(0.01)

    def stop(self, timeout: float = 5.0) -> None:
        if self.thread.is_alive():
            future = asyncio.run_coroutine_threadsafe(self.daemon.stop(), self.loop)
            future.result(timeout)
        self.thread.join(timeout)
        self.loop.close()


@pytest.fixture
def daemon_config(tmp_path: Path) -> DaemonConfig:
    """Configuration rooted in a temporary home directory."""
    return DaemonConfig(home=tmp_path / "home")


@pytest.fixture
def running_daemon(daemon_config: DaemonConfig) -> Iterator[DaemonThread]:
    """A daemon serving EchoEngine over a real Unix socket."""
    environment = SharedEnvironment(
        "",
        debug_toggle=MagicMock(spec=["enable", "disable"]),
        color=ColorSettings(),
        chdir=MagicMock(),
    )
    daemon = WarmDaemon(daemon_config, resolver=StaticResolver(EchoEngine()), environment=environment)
    runner = DaemonThread(daemon, daemon_config)
    runner.start()
    try:
        yield runner
    finally:
        runner.stop()
