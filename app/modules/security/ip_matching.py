"""
IPv4 CIDR / literal address matching for allowlists.

Allowlist values come straight from admin input and the database, so every
function here treats malformed data as "no match" and never raises.
IPv6 is not supported: IPv6 callers only match literal string entries.
"""

from typing import Iterable, Optional, Union

from app.models.ip_allowlist import AllowlistEntry

MAX_PREFIX = 32
ALL_ONES = 0xFFFFFFFF


def ip_to_int(ip: str) -> Optional[int]:
    """
    Convert a dotted-quad IPv4 address to a 32-bit unsigned integer.

    Returns None for anything that is not exactly four decimal octets
    in the range 0-255.

    Example:
        >>> ip_to_int("10.0.0.5")
        167772165
    """
    if not isinstance(ip, str):
        return None

    parts = ip.strip().split(".")
    if len(parts) != 4:
        return None

    value = 0
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            return None
        octet = int(part)
        if octet > 255:
            return None
        value = (value << 8) | octet
    return value


def parse_cidr(value: str) -> Optional[tuple[int, int]]:
    """
    Parse "network/prefix" into (network_int, mask).

    Returns None if the network is not a valid IPv4 address or the prefix
    is not an integer between 0 and 32.
    """
    if not isinstance(value, str) or value.count("/") != 1:
        return None

    network, prefix_str = value.strip().split("/")
    prefix_str = prefix_str.strip()
    if not (prefix_str.isascii() and prefix_str.isdigit()):
        return None

    prefix = int(prefix_str)
    if prefix > MAX_PREFIX:
        return None

    network_int = ip_to_int(network)
    if network_int is None:
        return None

    mask = ~((1 << (MAX_PREFIX - prefix)) - 1) & ALL_ONES
    return network_int, mask


def is_ip_in_cidr(ip: str, cidr: str) -> bool:
    """Check if an IPv4 address falls inside a CIDR block."""
    parsed = parse_cidr(cidr)
    ip_int = ip_to_int(ip)
    if parsed is None or ip_int is None:
        return False

    network_int, mask = parsed
    return (ip_int & mask) == (network_int & mask)


def matches(ip: Optional[str], entry: Union[str, AllowlistEntry, None]) -> bool:
    """
    Decide whether a client IP matches one allowlist value.

    Args:
        ip: Client IPv4 address
        entry: CIDR block / literal address, or an AllowlistEntry

    Returns:
        True if `entry` is a CIDR block containing `ip`, or a literal equal to `ip`

    Example:
        >>> matches("10.0.0.5", "10.0.0.0/24")
        True
        >>> matches("10.0.0.5", "10.0.1.0/24")
        False
    """
    value = entry.ip_address if isinstance(entry, AllowlistEntry) else entry
    if not ip or not isinstance(value, str):
        return False

    if "/" in value:
        return is_ip_in_cidr(ip, value)
    return ip == value


def matches_any(ip: Optional[str], entries: Iterable[Union[str, AllowlistEntry]]) -> bool:
    """True if `ip` matches at least one entry."""
    return any(matches(ip, entry) for entry in entries)


def is_valid_allowlist_value(value: str) -> bool:
    """
    Validate admin input for a new allowlist entry.

    Accepts a CIDR block or a literal IPv4 address.
    """
    if not isinstance(value, str) or not value.strip():
        return False
    if "/" in value:
        return parse_cidr(value) is not None
    return ip_to_int(value) is not None
