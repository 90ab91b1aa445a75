"""
Input validation and unit conversion utilities.

Handles:
- Print option ranges (scale, paper size, margins)
- Margin strings with units ("1cm", "0.5 in", "96px") → inches
- Page-range grammar ("1-5, 8, 11-13")
- Navigation and DevTools WebSocket URLs
- Caller-supplied URLs that must not reach internal hosts

Every check raises ValueError with a human-readable reason. Only
check_url_allowed() touches the network, to resolve the host it vets.
"""

import ipaddress
import math
import re
import socket
from collections.abc import Iterable
from urllib.parse import urlparse

# =============================================================================
# PATTERNS
# =============================================================================

# Sign is allowed so negative values get a precise error instead of "malformed"
MARGIN_PATTERN = re.compile(r'^(-?[0-9]*\.?[0-9]+)\s*([a-zA-Z]+)$')
PAGE_RANGE_TOKEN_PATTERN = re.compile(r'^(\d+)(?:-(\d+))?$')

# Inches per unit. CSS reference pixel: 96px = 1in.
MARGIN_UNITS: dict[str, float] = {
    "in": 1.0,
    "cm": 1 / 2.54,
    "mm": 1 / 25.4,
    "px": 1 / 96,
}

MIN_SCALE = 0.1
MAX_SCALE = 2.0

NAVIGABLE_SCHEMES = frozenset({"http", "https", "data", "about"})
PUBLIC_SCHEMES = frozenset({"http", "https", "data"})
LOCALHOST_NAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"})
WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})


# =============================================================================
# NUMERIC OPTIONS
# =============================================================================

def _require_number(value: object, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{label} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"{label} must be a finite number, got {value}")
    return float(value)


def validate_scale(value: object) -> float:
    """
    Validate a print scale factor.

    Raises:
        ValueError: If value is outside [0.1, 2.0]
    """
    scale = _require_number(value, "Scale")
    if not MIN_SCALE <= scale <= MAX_SCALE:
        raise ValueError(f"Scale must be between {MIN_SCALE} and {MAX_SCALE}, got {scale}")
    return scale


def validate_positive(value: object, label: str) -> float:
    """Validate a strictly positive length or size."""
    number = _require_number(value, label)
    if number <= 0:
        raise ValueError(f"{label} must be positive, got {number}")
    return number


def validate_margin(value: object, label: str = "Margin") -> float:
    """Validate a margin in inches (zero allowed)."""
    number = _require_number(value, label)
    if number < 0:
        raise ValueError(f"{label} cannot be negative, got {number}")
    return number


# =============================================================================
# MARGIN STRINGS
# =============================================================================

def parse_margin(margin: str | None) -> float:
    """
    Parse a margin string with unit and convert to inches.

    Accepts:
    - "1in", "0.5in"
    - "2.54cm", "1 cm"  (whitespace allowed before the unit)
    - "10mm"
    - "96px"

    Units are case-insensitive ("1CM" == "1cm").

    Returns:
        Margin in inches

    Raises:
        ValueError: If the string is None, malformed, negative, or has an
            unsupported unit
    """
    if margin is None:
        raise ValueError("Margin string cannot be None")
    if not isinstance(margin, str):
        raise ValueError(f"Margin string must be a str, got {type(margin).__name__}")

    trimmed = margin.strip()
    if not trimmed:
        raise ValueError("Margin string cannot be empty")

    match = MARGIN_PATTERN.match(trimmed)
    if not match:
        raise ValueError(
            f"Invalid margin format: '{margin}'. "
            "Expected number + unit (e.g., '1cm', '0.5in', '10mm', '96px')"
        )

    value = float(match.group(1))
    unit = match.group(2).lower()

    if unit not in MARGIN_UNITS:
        supported = ", ".join(sorted(MARGIN_UNITS))
        raise ValueError(f"Unsupported margin unit: '{unit}'. Supported: {supported}")
    if value < 0:
        raise ValueError(f"Margin value cannot be negative: '{margin}'")

    return value * MARGIN_UNITS[unit]


# =============================================================================
# PAGE RANGES
# =============================================================================

def normalize_page_ranges(ranges: str | None) -> str:
    """
    Validate a page-range string and return it trimmed.

    Grammar: comma-separated tokens, each a page number ("8") or an
    inclusive range ("1-5"). Pages start at 1 and a range must not run
    backwards. None and "" both mean "all pages" and normalize to "".

    Examples:
        "1-5, 8, 11-13" -> "1-5, 8, 11-13"
        None -> ""

    Raises:
        ValueError: On malformed tokens, page 0, or reversed ranges
    """
    if ranges is None:
        return ""

    trimmed = ranges.strip()
    if not trimmed:
        return ""

    for raw_token in trimmed.split(","):
        token = raw_token.strip()
        match = PAGE_RANGE_TOKEN_PATTERN.match(token)
        if not match:
            raise ValueError(
                f"Invalid page ranges format: '{ranges}'. "
                "Expected format: '1-5, 8, 11-13' (comma-separated page numbers or ranges)"
            )

        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) is not None else start

        if start < 1 or end < 1:
            raise ValueError(f"Page numbers must start from 1, got: '{token}'")
        if end < start:
            raise ValueError(f"Invalid page range '{token}': end page must be >= start page")

    return trimmed


# =============================================================================
# URLS
# =============================================================================

def validate_navigation_url(url: str | None) -> str:
    """
    Check a URL before handing it to Page.navigate.

    Raises:
        ValueError: If the URL is empty or uses a scheme Chrome can't print
    """
    if url is None or not url.strip():
        raise ValueError("URL cannot be None or empty")

    url = url.strip()
    scheme = urlparse(url).scheme.lower()
    if scheme not in NAVIGABLE_SCHEMES:
        allowed = ", ".join(sorted(NAVIGABLE_SCHEMES))
        raise ValueError(f"Unsupported URL scheme '{scheme}' in {url[:80]!r}. Allowed: {allowed}")
    return url


def _domain_matches(host: str, domains: Iterable[str]) -> bool:
    for domain in domains:
        domain = domain.strip().lower().lstrip(".")
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


def _resolve_host(host: str) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    """Literal addresses are returned as-is; names go through getaddrinfo."""
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass

    try:
        infos = socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError) as e:
        raise ValueError(f"Unable to resolve host: {host}") from e

    addresses = []
    for info in infos:
        # IPv6 sockaddr may carry a "%scope" suffix
        raw = str(info[4][0]).split("%", 1)[0]
        addresses.append(ipaddress.ip_address(raw))
    if not addresses:
        raise ValueError(f"Unable to resolve host: {host}")
    return addresses


def _is_internal_address(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped
    return (
        address.is_private
        or getattr(address, "is_site_local", False)
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


def check_url_allowed(
    url: str | None,
    allow_private_hosts: bool = False,
    allowed_domains: Iterable[str] = (),
    blocked_domains: Iterable[str] = (),
) -> str:
    """
    Vet a caller-supplied URL before Chrome is pointed at it.

    Only http, https and data URLs pass. data: URLs carry their own
    content and skip every host check. For the others:

    - allowed_domains, when non-empty, is a whitelist: the host must equal
      one of them or be a subdomain of one. A whitelisted host is trusted
      and skips the internal-address check.
    - blocked_domains rejects a host equal to, or under, any listed domain.
    - Unless allow_private_hosts is set, localhost names and hosts that
      resolve to loopback, private, link-local or site-local addresses
      are rejected.

    Returns:
        The stripped URL

    Raises:
        ValueError: On any rejected URL, including a host that doesn't resolve
    """
    url = validate_navigation_url(url)
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()

    if scheme not in PUBLIC_SCHEMES:
        allowed = ", ".join(sorted(PUBLIC_SCHEMES))
        raise ValueError(f"URL scheme '{scheme}' is not allowed. Allowed: {allowed}")
    if scheme == "data":
        return url

    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        raise ValueError(f"URL must contain a host: {url[:80]!r}")

    allowed_domains = [d for d in allowed_domains if d.strip()]
    if allowed_domains and not _domain_matches(host, allowed_domains):
        raise ValueError(f"Domain is not in the allowed list: {host}")
    if _domain_matches(host, blocked_domains):
        raise ValueError(f"Domain is blocked: {host}")

    if allow_private_hosts or allowed_domains:
        return url

    if host in LOCALHOST_NAMES or host.endswith(".localhost"):
        raise ValueError(f"Access to localhost is not allowed. Host: {host}")

    for address in _resolve_host(host):
        if _is_internal_address(address):
            raise ValueError(
                f"Access to internal address {address} is not allowed. Host: {host}"
            )
    return url


def parse_websocket_url(ws_url: str) -> tuple[str, int]:
    """
    Extract (host, port) from a DevTools WebSocket URL.

    Example:
        "ws://127.0.0.1:9222/devtools/page/ABC" -> ("127.0.0.1", 9222)

    Raises:
        ValueError: If the scheme isn't ws/wss or host/port are missing
    """
    parsed = urlparse(ws_url)
    if parsed.scheme not in WEBSOCKET_SCHEMES:
        raise ValueError(f"Invalid WebSocket URL scheme: '{parsed.scheme}'")
    try:
        port = parsed.port
    except ValueError:
        port = None
    if not parsed.hostname or port is None:
        raise ValueError(f"WebSocket URL must contain host and port: {ws_url}")
    return parsed.hostname, port
