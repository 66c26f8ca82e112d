import ipaddress
from typing import Iterable, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(value: str) -> Optional[IPAddress]:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def matches_ip(ip: str, candidate: str) -> bool:
    """
    Check if two strings denote the same IP address.

    Malformed input on either side never matches.
    """
    parsed_ip = _parse_ip(ip)
    parsed_candidate = _parse_ip(candidate)
    if parsed_ip is None or parsed_candidate is None:
        return False
    return parsed_ip == parsed_candidate


def matches_cidr(ip: str, cidr: str) -> bool:
    """
    Check if an IP address falls within a CIDR range.

    Args:
        ip: IPv4 or IPv6 address
        cidr: CIDR range, or a single address when it has no prefix length

    Returns:
        True if the IP is inside the range. Malformed input, or an address
        family mismatch, returns False instead of raising.
    """
    parsed_ip = _parse_ip(ip)
    if parsed_ip is None or not cidr:
        return False

    if "/" not in cidr:
        return matches_ip(ip, cidr)

    try:
        network = ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError:
        return False

    if network.version != parsed_ip.version:
        return False
    return parsed_ip in network


def matches_any(ip: str, candidates: Iterable[str]) -> bool:
    """Check if an IP matches any of the given IPs or CIDR ranges"""
    return any(matches_cidr(ip, candidate) for candidate in candidates)


def is_valid_ip(value: str) -> bool:
    return _parse_ip(value) is not None


def is_valid_cidr(value: str) -> bool:
    """Check if a string is CIDR notation, i.e. an address with a prefix length"""
    if not value or "/" not in value:
        return False
    try:
        ipaddress.ip_network(value.strip(), strict=False)
    except ValueError:
        return False
    return True


def is_ipv4(value: str) -> bool:
    parsed = _parse_ip(value)
    return parsed is not None and parsed.version == 4


def is_ipv6(value: str) -> bool:
    parsed = _parse_ip(value)
    return parsed is not None and parsed.version == 6


def normalize_ip(value: str) -> str:
    """Return the canonical form of an IP address, or the input if it is not one"""
    parsed = _parse_ip(value)
    return str(parsed) if parsed is not None else value


def get_client_ip(request) -> str:
    """
    Get client IP address from request.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address
    """
    # Check for X-Forwarded-For header (if behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain
        return normalize_ip(forwarded.split(",")[0].strip())

    # Otherwise use client.host
    return normalize_ip(request.client.host) if request.client else "unknown"
