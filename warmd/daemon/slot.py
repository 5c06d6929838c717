"""Execution slot: exclusive, FIFO-ordered ownership of the shared environment.

Jobs arrive on many connections at once but the working directory, the
standard streams, the color level and the debug pattern exist once per
process. A job must hold the slot for the whole time its engine runs,
because the engine writes to the shared streams whenever it likes and the
output can only be routed unambiguously while a single job is live.

Example:
    slot = ExecutionSlot(environment)

    async with slot.hold() as lease:
        lease.chdir(request.cwd)
        with lease.redirect_output(connection):
            status = await engine.execute(argv, text, True)
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterator

from warmd.daemon.environment import ConnectionStream, OutputSink, SharedEnvironment
from warmd.exceptions import SlotError

logger = logging.getLogger(__name__)


class Lease:
    """Proof of ownership of the execution slot.

    All mutations of the shared environment go through the lease, and only
    while it is the slot's current holder.
    """

    def __init__(self, slot: "ExecutionSlot", number: int) -> None:
        self._slot = slot
        self._number = number

    @property
    def number(self) -> int:
        """Get the position in which the lease was requested."""
        return self._number

    @property
    def active(self) -> bool:
        """Check whether this lease currently holds the slot."""
        return self._slot.holder is self

    def _ensure_active(self) -> SharedEnvironment:
        if not self.active:
            raise SlotError(f"Lease #{self._number} does not hold the execution slot")
        return self._slot.environment

    def chdir(self, path: str) -> None:
        """Change the working directory for this job."""
        self._ensure_active().chdir(path)

    def set_color_level(self, level: int | None) -> None:
        """Set the color level for this job."""
        self._ensure_active().color.level = level

    def reconcile_debug(self, pattern: str) -> None:
        """Apply this job's debug pattern, falling back to the baseline."""
        self._ensure_active().debug.reconcile(pattern)

    @contextlib.contextmanager
    def redirect_output(self, sink: OutputSink) -> Iterator[ConnectionStream]:
        """Route standard output to this job's connection for the block."""
        with self._ensure_active().output.attach(sink) as stream:
            yield stream

    def __repr__(self) -> str:
        return f"<Lease #{self._number} active={self.active}>"


class ExecutionSlot:
    """Single-owner gate around the shared environment.

    Leases are granted strictly in the order ``acquire()`` was called. A
    waiter cancelled while queued is skipped; a waiter cancelled after it
    was granted the slot hands it straight on.
    """

    def __init__(self, environment: SharedEnvironment) -> None:
        """Initialize the slot.

        Args:
            environment: The shared state the slot guards.
        """
        self._environment = environment
        self._holder: Lease | None = None
        self._waiters: deque[tuple[Lease, asyncio.Future[None]]] = deque()
        self._issued = 0

    @property
    def environment(self) -> SharedEnvironment:
        """Get the guarded environment."""
        return self._environment

    @property
    def holder(self) -> Lease | None:
        """Get the lease currently holding the slot."""
        return self._holder

    @property
    def busy(self) -> bool:
        """Check if a job holds the slot."""
        return self._holder is not None

    @property
    def pending(self) -> int:
        """Get the number of jobs waiting for the slot."""
        return sum(1 for _, waiter in self._waiters if not waiter.cancelled())

    async def acquire(self) -> Lease:
        """Wait for the slot and take exclusive ownership of it.

        Returns:
            The lease, which must be passed to ``release()`` when done.
        """
        self._issued += 1
        lease = Lease(self, self._issued)

        if self._holder is None:
            # Any waiters left behind a free slot were cancelled
            self._waiters.clear()
            self._holder = lease
            logger.debug("Slot granted to lease #%d", lease.number)
            return lease

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((lease, waiter))
        logger.debug("Lease #%d queued behind %d job(s)", lease.number, len(self._waiters))

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Granted just before the cancellation landed
                self.release(lease)
            raise

        return lease

    def release(self, lease: Lease) -> None:
        """Give up the slot and wake the next waiter.

        Args:
            lease: The lease returned by ``acquire()``.

        Raises:
            SlotError: If the lease does not hold the slot.
        """
        if self._holder is not lease:
            raise SlotError(f"Lease #{lease.number} does not hold the execution slot")

        self._holder = None
        logger.debug("Slot released by lease #%d", lease.number)

        while self._waiters:
            next_lease, waiter = self._waiters.popleft()
            if waiter.cancelled():
                continue
            self._holder = next_lease
            waiter.set_result(None)
            logger.debug("Slot granted to lease #%d", next_lease.number)
            break

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[Lease]:
        """Hold the slot for the duration of an ``async with`` block."""
        lease = await self.acquire()
        try:
            yield lease
        finally:
            self.release(lease)
