"""warmd daemon - one warm process serving many short-lived clients.

Connections arrive concurrently, but jobs run one at a time against the
process's working directory, standard streams, color level and debug
pattern, in the order they arrived.
"""

from warmd.daemon.environment import OutputRouter, SharedEnvironment
from warmd.daemon.protocol import Command, Request, encode_exit, parse_request
from warmd.daemon.server import WarmDaemon
from warmd.daemon.service import DaemonService
from warmd.daemon.slot import ExecutionSlot, Lease

__all__ = [
    "WarmDaemon",
    "DaemonService",
    "ExecutionSlot",
    "Lease",
    "SharedEnvironment",
    "OutputRouter",
    "Command",
    "Request",
    "encode_exit",
    "parse_request",
]
