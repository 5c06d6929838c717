"""Connections as seen by the daemon service."""

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from warmd.daemon.protocol import MAX_REQUEST_SIZE

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class Connection(Protocol):
    """One client connection carrying one request."""

    async def read_all(self) -> bytes: ...

    def write(self, data: str) -> None: ...

    def end(self, data: str | None = None) -> None: ...


class StreamConnection:
    """Connection backed by an asyncio stream pair.

    ``write`` and ``end`` may be called from worker threads (an engine
    printing while it runs in ``asyncio.to_thread``); such calls are handed
    to the event loop in call order.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_size: int = MAX_REQUEST_SIZE,
    ) -> None:
        """Initialize the connection.

        Args:
            reader: Stream reader for receiving data.
            writer: Stream writer for sending data.
            max_size: Maximum request size in bytes.
        """
        self._reader = reader
        self._writer = writer
        self._max_size = max_size
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._ended = False

    @property
    def ended(self) -> bool:
        """Check if the connection has been ended."""
        return self._ended

    @property
    def peer(self) -> str:
        """Get a printable name for the remote end."""
        return str(self._writer.get_extra_info("peername") or "unknown")

    async def read_all(self) -> bytes:
        """Read everything the client sends until it closes its side.

        Returns:
            The received bytes.

        Raises:
            ValueError: If the request is larger than the maximum size.
        """
        chunks: list[bytes] = []
        size = 0
        while True:
            chunk = await self._reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > self._max_size:
                raise ValueError(f"Request too large: more than {self._max_size} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    def write(self, data: str) -> None:
        """Send text to the client."""
        self._call(self._write, data)

    def end(self, data: str | None = None) -> None:
        """Optionally send a last piece of text, then close the connection."""
        self._call(self._end, data)

    def _call(self, func: Callable[..., None], *args: Any) -> None:
        if threading.get_ident() == self._loop_thread:
            func(*args)
        else:
            self._loop.call_soon_threadsafe(func, *args)

    def _write(self, data: str) -> None:
        if self._ended:
            logger.debug("Dropping %d characters written after end", len(data))
            return
        self._writer.write(data.encode("utf-8"))

    def _end(self, data: str | None) -> None:
        if self._ended:
            return
        if data:
            self._writer.write(data.encode("utf-8"))
        self._ended = True
        self._writer.close()

    def __repr__(self) -> str:
        return f"<StreamConnection {self.peer}>"
