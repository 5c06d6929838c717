"""Daemon client for CLI communication.

This module provides a thin client that sends one request per connection to
the warmd daemon over its Unix socket and streams the reply back.
"""

import codecs
import os
import socket
from collections.abc import Callable, Sequence
from pathlib import Path

from warmd.config import DaemonConfig, RuntimeInfo, read_runtime_info
from warmd.daemon.protocol import (
    EXIT_MARKER_SIZE,
    Command,
    Request,
    decode_exit,
    encode_request,
)

RECV_SIZE = 64 * 1024


class DaemonError(Exception):
    """Error communicating with the daemon."""

    pass


class DaemonUnavailableError(DaemonError):
    """Daemon is not running or unreachable."""

    pass


class DaemonClient:
    """Client for communicating with the warmd daemon.

    Example:
        client = DaemonClient(config)
        if client.is_running():
            status = client.run(["--check", "src"], write=sys.stdout.write)
    """

    def __init__(self, config: DaemonConfig) -> None:
        """Initialize the daemon client.

        Args:
            config: Configuration pointing at the daemon's home directory.
        """
        self._config = config

    def runtime_info(self) -> RuntimeInfo:
        """Get the running daemon's runtime info.

        Raises:
            DaemonUnavailableError: If no daemon has left a runtime file.
        """
        info = read_runtime_info(self._config.runtime_file)
        if info is None:
            raise DaemonUnavailableError("Daemon is not running")
        return info

    def is_running(self) -> bool:
        """Check if the daemon is running and reachable.

        Returns:
            True if the daemon accepts connections, False otherwise.
        """
        info = read_runtime_info(self._config.runtime_file)
        if info is None or not info.socket_path.exists():
            return False

        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(0.5)  # 500ms timeout for health check
            sock.connect(str(info.socket_path))
            sock.close()
            return True
        except OSError:
            return False

    def run(
        self,
        argv: Sequence[str],
        write: Callable[[str], object],
        text: str | None = None,
        cwd: str | None = None,
        color_level: int | None = None,
        debug: str = "",
        timeout: float | None = None,
    ) -> int:
        """Run a task on the daemon, streaming its output.

        Args:
            argv: Arguments for the engine.
            write: Called with each piece of output as it arrives.
            text: Optional input text for the engine.
            cwd: Working directory for the task. Defaults to the current one.
            color_level: Color level of the client's terminal, None if unknown.
            debug: Debug pattern for this task, empty for the daemon's default.
            timeout: Socket timeout in seconds, None to wait indefinitely.

        Returns:
            The task's exit status.

        Raises:
            DaemonUnavailableError: If the daemon is not running.
            DaemonError: If the daemon closed the connection without a status.
        """
        info = self.runtime_info()
        request = Request(
            token=info.token,
            command=Command.TASK,
            color_level=color_level,
            cwd=cwd or os.getcwd(),
            argv=tuple(argv),
            debug=debug,
            text=text,
        )
        return self._exchange(info, request, write, timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Ask the daemon to shut down.

        Raises:
            DaemonUnavailableError: If the daemon is not running.
        """
        info = self.runtime_info()
        request = Request(token=info.token, command=Command.SHUTDOWN)
        sock = self._connect(info, timeout)
        try:
            sock.sendall(encode_request(request))
            sock.shutdown(socket.SHUT_WR)
            while sock.recv(RECV_SIZE):
                pass
        except OSError as e:
            raise DaemonError(f"Shutdown request failed: {e}") from e
        finally:
            sock.close()

    def _connect(self, info: RuntimeInfo, timeout: float | None) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(str(info.socket_path))
        except FileNotFoundError as e:
            sock.close()
            raise DaemonUnavailableError("Daemon socket not found") from e
        except ConnectionRefusedError as e:
            sock.close()
            raise DaemonUnavailableError("Daemon refused connection") from e
        except OSError as e:
            sock.close()
            raise DaemonUnavailableError(f"Failed to connect to daemon: {e}") from e
        return sock

    def _exchange(
        self,
        info: RuntimeInfo,
        request: Request,
        write: Callable[[str], object],
        timeout: float | None,
    ) -> int:
        sock = self._connect(info, timeout)
        try:
            sock.sendall(encode_request(request))
            sock.shutdown(socket.SHUT_WR)
            tail = _stream_reply(sock, write)
        except TimeoutError as e:
            raise DaemonError("Daemon request timed out") from e
        except OSError as e:
            raise DaemonError(f"Connection to daemon failed: {e}") from e
        finally:
            sock.close()

        status = decode_exit(tail.decode("ascii", errors="replace"))
        if status is None:
            raise DaemonError("Daemon closed the connection without an exit status")
        return status


def _stream_reply(sock: socket.socket, write: Callable[[str], object]) -> bytes:
    """Forward a reply to ``write``, holding back the completion marker.

    Args:
        sock: Connected socket with the request already sent.
        write: Output callback.

    Returns:
        The last bytes of the reply, which should be the marker.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = b""
    while True:
        chunk = sock.recv(RECV_SIZE)
        if not chunk:
            break
        pending += chunk
        if len(pending) > EXIT_MARKER_SIZE:
            text = decoder.decode(pending[:-EXIT_MARKER_SIZE])
            if text:
                write(text)
            pending = pending[-EXIT_MARKER_SIZE:]

    text = decoder.decode(b"", final=True)
    if text:
        write(text)
    return pending
