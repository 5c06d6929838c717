"""Transport layer for the warmd daemon."""

from warmd.daemon.transports.unix_socket import UnixSocketTransport

__all__ = [
    "UnixSocketTransport",
]
