"""Run the daemon with ``python -m warmd.daemon``."""

from warmd.daemon.server import main

main()
