"""Wire protocol for the warmd daemon.

A connection carries exactly one request::

    ["<token>", "<command>", <color level>, "<cwd>", [<argv>...], "<debug>"]
    <optional raw text payload>

The header is a single line of JSON. When the client has input text it
follows the header after a newline. End of stream marks the end of the
payload, so there is no length field.

The daemon answers with whatever the engine wrote, followed by a completion
marker ``EXITnnn`` carrying the exit status zero-padded to three digits.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MAX_REQUEST_SIZE = 10 * 1024 * 1024  # 10 MB max request size

EXIT_MARKER_PREFIX = "EXIT"
EXIT_MARKER_SIZE = len(EXIT_MARKER_PREFIX) + 3

# Exit status reported when the engine fails instead of returning a status
FAILURE_STATUS = 1

# Sentinel sent by clients that have no color preference
COLOR_UNSET = "-"


class Command(str, Enum):
    """Commands understood by the daemon."""

    TASK = "task"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Request:
    """A single request read from one connection."""

    token: str
    command: Command
    color_level: int | None = None
    cwd: str = "/"
    argv: tuple[str, ...] = field(default_factory=tuple)
    debug: str = ""
    text: str | None = None

    @classmethod
    def from_header(cls, header: Any, text: str | None = None) -> "Request":
        """Build a request from a decoded header array.

        Args:
            header: The decoded JSON header.
            text: Optional raw payload that followed the header.

        Returns:
            Parsed Request.

        Raises:
            ValueError: If the header does not have the expected shape.
        """
        if not isinstance(header, list) or len(header) != 6:
            raise ValueError("Header must be an array of 6 fields")

        token, command, color_level, cwd, argv, debug = header

        if not isinstance(token, str):
            raise ValueError("Token must be a string")
        if not isinstance(cwd, str):
            raise ValueError("Working directory must be a string")
        if not isinstance(argv, list) or not all(isinstance(arg, str) for arg in argv):
            raise ValueError("Arguments must be an array of strings")
        if not isinstance(debug, str):
            raise ValueError("Debug pattern must be a string")

        return cls(
            token=token,
            command=Command(command),
            color_level=_parse_color_level(color_level),
            cwd=cwd,
            argv=tuple(argv),
            debug=debug,
            text=text,
        )

    def header(self) -> list[Any]:
        """Return the header fields in wire order."""
        color_level: int | str = COLOR_UNSET if self.color_level is None else self.color_level
        return [
            self.token,
            self.command.value,
            color_level,
            self.cwd,
            list(self.argv),
            self.debug,
        ]


def _parse_color_level(value: Any) -> int | None:
    """Get the color level from a header field.

    JSON integers and integral numbers such as ``3.0`` are levels; anything
    else, the client's ``"-"`` included, means unset.
    """
    # bool is an int subclass but never a valid level
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_request(data: bytes) -> Request | None:
    """Parse the bytes received on a connection into a request.

    Args:
        data: Everything the client sent before closing its side.

    Returns:
        The parsed Request, or None if nothing usable was received.
    """
    if not data:
        return None

    if len(data) > MAX_REQUEST_SIZE:
        logger.warning("Discarding oversized request: %d bytes", len(data))
        return None

    try:
        decoded = data.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.debug("Discarding undecodable request: %s", e)
        return None

    header_line, newline, payload = decoded.partition("\n")

    try:
        header = json.loads(header_line)
        return Request.from_header(header, payload if newline else None)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError too
        logger.debug("Discarding malformed request: %s", e)
        return None


def encode_request(request: Request) -> bytes:
    """Encode a request for the wire.

    Args:
        request: The request to send.

    Returns:
        Header line plus optional payload, UTF-8 encoded.
    """
    message = json.dumps(request.header())
    if request.text is not None:
        message += "\n" + request.text
    return message.encode("utf-8")


def encode_exit(status: int) -> str:
    """Encode the completion marker for an exit status.

    Args:
        status: Exit status returned by the engine.

    Returns:
        The marker, e.g. ``EXIT000`` or ``EXIT123``.

    Raises:
        TypeError: If the status is not an integer.
    """
    if isinstance(status, bool) or not isinstance(status, int):
        raise TypeError(f"Exit status must be an integer, got {status!r}")
    return f"{EXIT_MARKER_PREFIX}{status % 256:03d}"


def decode_exit(marker: str) -> int | None:
    """Decode a completion marker.

    Args:
        marker: The trailing bytes of a response, decoded.

    Returns:
        The exit status, or None if the marker is not valid.
    """
    if len(marker) != EXIT_MARKER_SIZE or not marker.startswith(EXIT_MARKER_PREFIX):
        return None
    digits = marker[len(EXIT_MARKER_PREFIX):]
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(digits)


def describe_failure(exc: BaseException) -> str:
    """Describe an engine failure the way it is reported to clients."""
    return f"Error: {exc}"
