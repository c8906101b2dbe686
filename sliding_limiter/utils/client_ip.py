"""Client identity resolution from proxy headers."""

from __future__ import annotations

UNKNOWN_ADDRESS = "unknown"


def resolve_client_identity(forwarded_for: str | None, peer_address: str | None) -> str:
    """Resolve the rate limit identity of a request.

    Behind a proxy the original client is the first entry of the
    forwarded-address header ("client, proxy1, proxy2"). Without a usable
    header the direct peer address is used.

    Args:
        forwarded_for: Raw forwarded-address header value, if any.
        peer_address: Address of the direct TCP peer, if known.

    Returns:
        Client identity string. Falls back to "unknown" when neither source
        is available, so such clients share one budget.

    Examples:
        >>> resolve_client_identity("203.0.113.7, 10.0.0.1", "10.0.0.2")
        '203.0.113.7'
        >>> resolve_client_identity(None, "10.0.0.2")
        '10.0.0.2'
        >>> resolve_client_identity("Unknown", "10.0.0.2")
        '10.0.0.2'
    """
    if forwarded_for and forwarded_for.strip() and forwarded_for.strip().lower() != UNKNOWN_ADDRESS:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    return peer_address or UNKNOWN_ADDRESS
