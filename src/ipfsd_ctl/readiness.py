"""Parsing of daemon startup output.

The daemon announces its listeners on stdout, one line each, e.g.:

    API server listening on /ip4/127.0.0.1/tcp/5001
    RPC API server listening on /ip4/127.0.0.1/tcp/5001      (newer releases)
    Gateway (readonly) server listening on /ip4/127.0.0.1/tcp/8080

and reports fatal startup problems on stderr, e.g.:

    Error: Unrecognized option 'should-not-exist'
    Error: serveHTTPApi: manet.Listen(/ip4/127.0.0.1/tcp/5001) failed: listen tcp 127.0.0.1:5001: bind: address already in use
    Error: lock /home/u/.ipfs/repo.lock: someone else has the lock

This module is the only place that knows these formats.
"""

from __future__ import annotations

__all__ = [
    "FATAL_PATTERNS",
    "LOCK_HELD_PATTERN",
    "MarkerKind",
    "ReadinessMarker",
    "is_lock_conflict",
    "match_fatal_line",
    "parse_multiaddr",
    "parse_readiness_line",
]

import re
from typing import Literal, NamedTuple

from ipfsd_ctl.models import Endpoint

MarkerKind = Literal["api", "gateway"]

_API_MARKER = re.compile(r"^(?:RPC )?API server listening on (?P<addr>\S+)")
_GATEWAY_MARKER = re.compile(r"^Gateway(?: \([^)]*\))? server listening on (?P<addr>\S+)")

# Another process owns the repository
LOCK_HELD_PATTERN = re.compile(r"someone else has the lock|lock .*already held|already locked", re.IGNORECASE)

# Checked in order; the first match classifies the line as fatal
FATAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Unrecognized option", re.IGNORECASE),
    re.compile(r"address already in use", re.IGNORECASE),
    LOCK_HELD_PATTERN,
    re.compile(r"^Error:"),
)

_ADDRESS_FAMILIES = frozenset({"ip4", "ip6", "dns", "dns4", "dns6"})
_TRANSPORTS = frozenset({"tcp", "udp"})


class ReadinessMarker(NamedTuple):
    """A listener announcement parsed from a stdout line."""

    kind: MarkerKind
    endpoint: Endpoint


def parse_multiaddr(text: str) -> Endpoint:
    """Parse /<family>/<host>/<transport>/<port>[/...] into an Endpoint.

    Trailing protocol segments (e.g. /http) are ignored.

    Args:
        text: Multiaddr text.

    Returns:
        Endpoint with the parsed parts and the original text.

    Raises:
        ValueError: If the text is not a supported multiaddr.
    """
    parts = text.strip().split("/")
    # Leading "/" yields an empty first element
    if len(parts) < 5 or parts[0] != "":
        raise ValueError(f"Not a host/port multiaddr: {text!r}")

    family, host, transport, port_text = parts[1:5]
    if family not in _ADDRESS_FAMILIES:
        raise ValueError(f"Unsupported address family {family!r} in {text!r}")
    if transport not in _TRANSPORTS:
        raise ValueError(f"Unsupported transport {transport!r} in {text!r}")
    if not port_text.isdigit():
        raise ValueError(f"Invalid port {port_text!r} in {text!r}")

    return Endpoint(
        family=family,  # type: ignore[arg-type]
        host=host,
        transport=transport,  # type: ignore[arg-type]
        port=int(port_text),
        multiaddr=text.strip(),
    )


def parse_readiness_line(line: str) -> ReadinessMarker | None:
    """Classify a stdout line as an API/Gateway readiness marker.

    Args:
        line: One line of daemon stdout.

    Returns:
        ReadinessMarker, or None if the line is not a marker or its
        address cannot be parsed.
    """
    text = line.strip()
    for kind, pattern in (("api", _API_MARKER), ("gateway", _GATEWAY_MARKER)):
        match = pattern.match(text)
        if match is None:
            continue
        try:
            endpoint = parse_multiaddr(match.group("addr"))
        except ValueError:
            return None
        return ReadinessMarker(kind=kind, endpoint=endpoint)  # type: ignore[arg-type]
    return None


def match_fatal_line(line: str) -> str | None:
    """Return the line (stripped) if it reports a fatal startup error."""
    text = line.strip()
    if not text:
        return None
    for pattern in FATAL_PATTERNS:
        if pattern.search(text):
            return text
    return None


def is_lock_conflict(line: str | None) -> bool:
    """True if a diagnostic says another process holds the repository lock."""
    return bool(line) and LOCK_HELD_PATTERN.search(line) is not None
