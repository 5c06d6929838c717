"""Shared process state that jobs take turns mutating.

There is one working directory, one pair of standard streams, one color
level and one debug pattern per process. ``SharedEnvironment`` groups them
so the execution slot can hand them to exactly one job at a time.
"""

import contextlib
import io
import logging
import os
from collections.abc import Callable, Iterator
from typing import Any, Protocol

from warmd import color as color_module
from warmd import debuglog
from warmd.config import DEBUG_ENV_VAR
from warmd.daemon.debug import DebugReconciler, DebugToggle
from warmd.exceptions import SlotError

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    """Anything that can receive forwarded output."""

    def write(self, data: str) -> None: ...


class ConnectionStream(io.TextIOBase):
    """Text stream that forwards every write to a connection."""

    def __init__(self, sink: OutputSink) -> None:
        super().__init__()
        self._sink = sink

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def write(self, s: str) -> int:
        if self.closed:
            raise ValueError("I/O operation on detached output stream")
        if not isinstance(s, str):
            raise TypeError(f"write() argument must be str, not {type(s).__name__}")
        if s:
            self._sink.write(s)
        return len(s)


class OutputRouter:
    """Route ``sys.stdout`` and ``sys.stderr`` to one connection at a time."""

    def __init__(self) -> None:
        self._owner: OutputSink | None = None

    @property
    def owner(self) -> OutputSink | None:
        """Get the sink currently receiving output, if any."""
        return self._owner

    @contextlib.contextmanager
    def attach(self, sink: OutputSink) -> Iterator[ConnectionStream]:
        """Forward all standard output to a sink until the block exits.

        The streams in place before attaching are restored on exit, even if
        the block raises.

        Args:
            sink: The connection to forward to.

        Yields:
            The stream installed as stdout and stderr.

        Raises:
            SlotError: If another sink is already attached.
        """
        if self._owner is not None:
            raise SlotError("Output is already routed to another connection")

        stream = ConnectionStream(sink)
        self._owner = sink
        logger.debug("Output routed to %r", sink)
        try:
            with contextlib.redirect_stdout(stream), contextlib.redirect_stderr(stream):
                yield stream
        finally:
            self._owner = None
            stream.close()


class SharedEnvironment:
    """The working directory, streams, color level and debug pattern."""

    def __init__(
        self,
        debug_baseline: str = "",
        *,
        debug_toggle: DebugToggle | None = None,
        color: color_module.ColorSettings | None = None,
        chdir: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the environment.

        Args:
            debug_baseline: Debug pattern to fall back to when a job has none.
                Enabled immediately if non-empty.
            debug_toggle: Debug-logging subsystem. Defaults to ``warmd.debuglog``.
            color: Color settings. Defaults to ``warmd.color.settings``.
            chdir: Function changing the working directory. Defaults to ``os.chdir``.
        """
        self.debug = DebugReconciler(debug_baseline, debug_toggle or debuglog.debug_logging)
        self.output = OutputRouter()
        self.color = color or color_module.settings
        self._chdir = chdir or os.chdir

    @classmethod
    def from_env(cls, **kwargs: Any) -> "SharedEnvironment":
        """Create an environment whose debug baseline comes from ``WARMD_DEBUG``."""
        return cls(os.environ.get(DEBUG_ENV_VAR, ""), **kwargs)

    def chdir(self, path: str) -> None:
        """Change the process working directory."""
        self._chdir(path)
