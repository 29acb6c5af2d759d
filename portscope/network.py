"""Parsing of target specifications into lists of IP addresses."""

from __future__ import annotations

import ipaddress
import socket
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_MAX_RANGE_SPAN = 10000
_MAX_IPV6_HOSTS = 1000


class TargetParseError(ValueError):
    """A target specification could not be turned into addresses."""


def parse_targets(target_spec: str) -> list[IPAddress]:
    """Expand a comma-separated target specification into sorted, unique addresses.

    Each part may be a single address, a hostname, a CIDR block or an
    IPv4 range of the form ``start-end``.
    """
    targets: list[IPAddress] = []
    for raw_part in target_spec.split(","):
        part = raw_part.strip()
        if "/" in part:
            targets.extend(_parse_cidr(part))
        elif "-" in part and ":" not in part:
            targets.extend(_parse_ip_range(part))
        else:
            targets.append(_parse_single_target(part))

    unique = set(targets)
    return sorted(unique, key=lambda address: (address.version, int(address)))


def _parse_cidr(cidr: str) -> list[IPAddress]:
    _, _, prefix = cidr.partition("/")
    if not prefix.isdigit():
        raise TargetParseError(f"Invalid CIDR notation: {cidr}")
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        raise TargetParseError(f"Invalid CIDR notation: {cidr}") from None

    first = int(network.network_address)
    if isinstance(network, ipaddress.IPv4Network):
        last = int(network.broadcast_address)
        if network.prefixlen < 31:
            first += 1
            last -= 1
        return [ipaddress.IPv4Address(value) for value in range(first, last + 1)]

    count = min(network.num_addresses, _MAX_IPV6_HOSTS)
    return [ipaddress.IPv6Address(first + offset) for offset in range(count)]


def _parse_ip(text: str, label: str) -> IPAddress:
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        raise TargetParseError(f"Invalid {label} IP: {text}") from None


def _parse_ip_range(spec: str) -> list[IPAddress]:
    parts = spec.split("-")
    if len(parts) != 2:
        raise TargetParseError(f"Invalid IP range format: {spec}")

    start = _parse_ip(parts[0], "start")
    end = _parse_ip(parts[1], "end")

    if isinstance(start, ipaddress.IPv4Address) and isinstance(end, ipaddress.IPv4Address):
        low, high = int(start), int(end)
        if low > high:
            raise TargetParseError("Start IP must be less than or equal to end IP")
        if high - low > _MAX_RANGE_SPAN:
            raise TargetParseError("IP range too large (max 10000 addresses)")
        return [ipaddress.IPv4Address(value) for value in range(low, high + 1)]
    if isinstance(start, ipaddress.IPv6Address) and isinstance(end, ipaddress.IPv6Address):
        raise TargetParseError("IPv6 ranges not yet supported")
    raise TargetParseError("Start and end IP must be the same version")


def _parse_single_target(target: str) -> IPAddress:
    try:
        return ipaddress.ip_address(target)
    except ValueError:
        pass

    if not target:
        raise TargetParseError(f"Failed to resolve hostname: {target}")
    try:
        infos = socket.getaddrinfo(target, 0)
    except (socket.gaierror, UnicodeError, OSError):
        raise TargetParseError(f"Failed to resolve hostname: {target}") from None
    if not infos:
        raise TargetParseError(f"No IP address found for hostname: {target}")
    try:
        return ipaddress.ip_address(infos[0][4][0])
    except ValueError:
        raise TargetParseError(f"No IP address found for hostname: {target}") from None