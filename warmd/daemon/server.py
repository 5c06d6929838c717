"""warmd daemon server orchestration.

Main entry point for the daemon process: owns the service, the transport and
the runtime file clients use to find the daemon.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any

from warmd.config import (
    DaemonConfig,
    RuntimeInfo,
    load_config,
    remove_runtime_info,
    write_runtime_info,
)
from warmd.daemon.auth import generate_token
from warmd.daemon.environment import SharedEnvironment
from warmd.daemon.service import DaemonService
from warmd.daemon.transports.unix_socket import UnixSocketTransport
from warmd.engine import EngineResolver, EngineSource

logger = logging.getLogger(__name__)


class WarmDaemon:
    """warmd daemon server.

    Serves requests on a Unix socket until a client sends SHUTDOWN or the
    process receives SIGINT/SIGTERM.
    """

    def __init__(
        self,
        config: DaemonConfig,
        resolver: EngineSource | None = None,
        environment: SharedEnvironment | None = None,
        token: str | None = None,
    ) -> None:
        """Initialize the daemon.

        Args:
            config: Daemon configuration.
            resolver: Engine source. Defaults to loading ``config.engine``.
            environment: Shared environment. Defaults to the process
                environment with ``config.debug`` as the debug baseline.
            token: Shared token. Defaults to a fresh random token.
        """
        self._config = config
        self._resolver = resolver or EngineResolver(config.engine)
        self._environment = environment
        self._token = token or generate_token()

        self._service: DaemonService | None = None
        self._transport: UnixSocketTransport | None = None

        # State
        self._running = False
        self._shutdown_event: asyncio.Event | None = None
        self._stop_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Check if the daemon is running."""
        return self._running

    @property
    def token(self) -> str:
        """Get the shared token."""
        return self._token

    @property
    def service(self) -> DaemonService | None:
        """Get the service, once started."""
        return self._service

    async def start(self) -> None:
        """Start the daemon.

        Creates the service, starts the transport and writes the runtime file.
        """
        if self._running:
            logger.warning("Daemon is already running")
            return

        logger.info("Starting warmd daemon...")

        environment = self._environment or SharedEnvironment(self._config.debug)
        self._service = DaemonService(
            self._resolver,
            self._token,
            self.request_shutdown,
            environment,
        )

        self._transport = UnixSocketTransport(self._config.socket, self._service.handle)
        await self._transport.start()

        write_runtime_info(
            self._config.runtime_file,
            RuntimeInfo(
                pid=os.getpid(),
                socket_path=self._config.socket,
                token=self._token,
                engine=self._config.engine,
            ),
        )

        self._running = True
        self._shutdown_event = asyncio.Event()

        logger.info("warmd daemon started successfully")
        logger.info("  Engine: %s", self._config.engine or "(none configured)")
        logger.info("  Unix socket: %s", self._config.socket)
        logger.info("  Runtime file: %s", self._config.runtime_file)

    async def stop(self) -> None:
        """Stop the daemon.

        Stops the transport and removes the runtime file.
        """
        if not self._running:
            return

        logger.info("Stopping warmd daemon...")
        self._running = False

        if self._transport:
            await self._transport.stop()
            self._transport = None

        remove_runtime_info(self._config.runtime_file, pid=os.getpid())

        # Signal shutdown
        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("warmd daemon stopped")

    def request_shutdown(self) -> None:
        """Schedule a stop without waiting for running or queued jobs."""
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def run_forever(self) -> None:
        """Run the daemon until interrupted.

        Blocks until shutdown is requested via signal, client or stop().
        """
        await self.start()

        if self._shutdown_event:
            await self._shutdown_event.wait()

    def health_check(self) -> dict[str, Any]:
        """Get health status of the daemon.

        Returns:
            Dictionary with health information.
        """
        status: dict[str, Any] = {
            "status": "healthy" if self._running else "stopped",
            "engine": self._config.engine,
        }

        if self._service:
            status["slot"] = {
                "busy": self._service.slot.busy,
                "pending": self._service.slot.pending,
            }
            status["debug"] = self._service.environment.debug.active

        if self._transport:
            status["socket"] = {
                "path": str(self._config.socket),
                "running": self._transport.is_running,
                "clients": self._transport.client_count,
            }

        return status


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the daemon."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> None:
    """Entry point for the warmd-daemon command."""
    import argparse

    parser = argparse.ArgumentParser(description="warmd daemon server")
    parser.add_argument(
        "--home",
        type=Path,
        default=None,
        help="warmd home directory (default: $WARMD_HOME or ~/.warmd)",
    )
    parser.add_argument(
        "--engine", "-e",
        help="Engine to serve (default: from config.yaml or $WARMD_ENGINE)",
    )
    parser.add_argument(
        "--socket",
        type=Path,
        help="Unix socket path (default: <home>/daemon.sock)",
    )
    parser.add_argument(
        "--verbose", "-V",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    _setup_logging(args.verbose)

    config = load_config(args.home)
    if args.engine:
        config.engine = args.engine
    if args.socket:
        config.socket_path = args.socket

    daemon = WarmDaemon(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_shutdown(signum: int) -> None:
        """Handle shutdown signal."""
        logger.info("Received signal %s, shutting down...", signal.Signals(signum).name)
        loop.create_task(daemon.stop())

    # Register signal handlers
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_shutdown, sig)

    try:
        loop.run_until_complete(daemon.run_forever())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(daemon.stop())
        loop.close()


if __name__ == "__main__":
    main()
