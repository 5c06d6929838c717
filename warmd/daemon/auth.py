"""Shared-token authentication for daemon requests."""

import hmac
import secrets

from warmd.daemon.protocol import Request

TOKEN_BYTES = 16


def generate_token() -> str:
    """Generate a random token shared between the daemon and its clients."""
    return secrets.token_hex(TOKEN_BYTES)


def authenticate(request: Request | None, expected_token: str) -> bool:
    """Check that a request carries the daemon's token.

    Args:
        request: The parsed request, or None if nothing usable arrived.
        expected_token: The token the daemon was started with.

    Returns:
        True if the tokens match exactly.
    """
    if request is None:
        return False
    return hmac.compare_digest(
        request.token.encode("utf-8"),
        expected_token.encode("utf-8"),
    )
