"""Request dispatching for the warmd daemon.

Every connection goes through ``DaemonService.handle``: read one request,
check its token, then either shut the daemon down or queue a job on the
execution slot. While a job holds the slot it owns the working directory,
the standard streams, the color level and the debug pattern.
"""

import logging
from collections.abc import Callable

from warmd.daemon.auth import authenticate
from warmd.daemon.connection import Connection
from warmd.daemon.environment import SharedEnvironment
from warmd.daemon.protocol import (
    FAILURE_STATUS,
    Command,
    Request,
    describe_failure,
    encode_exit,
    parse_request,
)
from warmd.daemon.slot import ExecutionSlot
from warmd.engine import EngineSource, exit_status

logger = logging.getLogger(__name__)

# Engines are always asked to report errors through the exit status
ALLOW_ERRORS = True


class DaemonService:
    """Serve task and shutdown requests against one shared environment."""

    def __init__(
        self,
        resolver: EngineSource,
        token: str,
        shutdown: Callable[[], object],
        environment: SharedEnvironment | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            resolver: Provides the engine jobs run on.
            token: Shared token every request must carry.
            shutdown: Called when a client asks the daemon to stop.
            environment: Shared state guarded by the execution slot. Defaults
                to the process environment with the debug baseline taken
                from ``WARMD_DEBUG``.
        """
        self._resolver = resolver
        self._token = token
        self._shutdown = shutdown
        self._environment = environment or SharedEnvironment.from_env()
        self._slot = ExecutionSlot(self._environment)

    @property
    def slot(self) -> ExecutionSlot:
        """Get the execution slot."""
        return self._slot

    @property
    def environment(self) -> SharedEnvironment:
        """Get the shared environment."""
        return self._environment

    async def handle(self, connection: Connection) -> None:
        """Serve one connection.

        Args:
            connection: The client connection.
        """
        try:
            data = await connection.read_all()
        except (ValueError, ConnectionError) as e:
            logger.warning("Failed to read request: %s", e)
            data = b""

        request = parse_request(data)
        if request is None:
            logger.debug("No request received, closing connection")
            connection.end()
            return

        if not authenticate(request, self._token):
            logger.warning("Rejected request with invalid token")
            connection.end()
            return

        if request.command is Command.SHUTDOWN:
            self._handle_shutdown(connection)
        else:
            await self._run_task(request, connection)

    def _handle_shutdown(self, connection: Connection) -> None:
        in_flight = int(self._slot.busy) + self._slot.pending
        if in_flight:
            logger.warning("Shutting down with %d job(s) running or queued", in_flight)
        logger.info("Shutdown requested by client")
        self._shutdown()
        connection.end()

    async def _run_task(self, request: Request, connection: Connection) -> None:
        async with self._slot.hold() as lease:
            logger.debug("Job #%d: %s in %s", lease.number, list(request.argv), request.cwd)

            with lease.redirect_output(connection):
                try:
                    lease.reconcile_debug(request.debug)
                    lease.chdir(request.cwd)
                    lease.set_color_level(request.color_level)
                    engine = self._resolver.resolve()
                    status = await engine.execute(list(request.argv), request.text, ALLOW_ERRORS)
                    marker = encode_exit(status)
                except SystemExit as e:
                    # Engines wrapping argparse or click exit instead of returning
                    marker = encode_exit(exit_status(e.code))
                except Exception as e:
                    logger.debug("Job #%d failed", lease.number, exc_info=True)
                    connection.write(describe_failure(e))
                    marker = encode_exit(FAILURE_STATUS)

                connection.end(marker)
                logger.debug("Job #%d finished with %s", lease.number, marker)
