"""Unix socket transport for the warmd daemon.

Each connection carries a single request which ends when the client shuts
down its sending side. The reply is streamed back and the daemon closes the
connection once the completion marker has been written.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from warmd.daemon.connection import StreamConnection

logger = logging.getLogger(__name__)


class UnixSocketTransport:
    """Unix socket transport handing each connection to a handler.

    The socket file is created with owner-only permissions; the shared token
    is checked by the handler.
    """

    def __init__(
        self,
        socket_path: Path,
        handler: Callable[[StreamConnection], Awaitable[None]],
    ) -> None:
        """Initialize the Unix socket transport.

        Args:
            socket_path: Path to the Unix domain socket.
            handler: Async function serving one connection.
        """
        self._socket_path = socket_path
        self._handler = handler
        self._server: asyncio.Server | None = None
        self._clients: set[asyncio.Task[None]] = set()

    @property
    def socket_path(self) -> Path:
        """Get the socket path."""
        return self._socket_path

    @property
    def is_running(self) -> bool:
        """Check if the transport is running."""
        return self._server is not None and self._server.is_serving()

    @property
    def client_count(self) -> int:
        """Get the number of open connections."""
        return len(self._clients)

    async def start(self) -> None:
        """Start the Unix socket server.

        Creates the socket file and begins accepting connections.
        Sets socket permissions to owner-only (0o600) for security.
        """
        # Ensure parent directory exists
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)

        # Remove stale socket file if present
        if self._socket_path.exists():
            self._socket_path.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self._socket_path),
        )

        self._socket_path.chmod(0o600)

        logger.info("Unix socket listening at %s", self._socket_path)

    async def stop(self) -> None:
        """Stop the Unix socket server.

        Closes all client connections and removes the socket file.
        """
        if self._server is None:
            return

        # Stop accepting new connections
        server = self._server
        server.close()
        self._server = None

        # Cancel all client tasks
        clients = list(self._clients)
        for task in clients:
            task.cancel()

        if clients:
            await asyncio.gather(*clients, return_exceptions=True)
        await server.wait_closed()

        self._socket_path.unlink(missing_ok=True)

        logger.info("Unix socket server stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a client connection.

        Args:
            reader: Stream reader for receiving data.
            writer: Stream writer for sending data.
        """
        connection = StreamConnection(reader, writer)
        logger.debug("Client connected: %s", connection.peer)

        # Track this client task
        task = asyncio.current_task()
        if task:
            self._clients.add(task)

        try:
            await self._handler(connection)
        except asyncio.CancelledError:
            logger.debug("Client connection cancelled: %s", connection.peer)
        except Exception as e:
            logger.exception("Error handling client %s: %s", connection.peer, e)
        finally:
            # Untrack before awaiting, a cancelled wait_closed must not skip it
            if task:
                self._clients.discard(task)

            connection.end()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

            logger.debug("Client disconnected: %s", connection.peer)
