"""Port-agnostic service identification by sending a set of protocol probes."""

from __future__ import annotations

import asyncio
import ipaddress
from dataclasses import dataclass
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_PROBE_TIMEOUT = 2.0
_REPLY_WAIT = 0.2
_BANNER_WAIT = 1.0
_READ_SIZE = 4096
_MIN_CONFIDENCE = 0.5
_BANNER_GRAB = "Banner-Grab"
_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ServiceProbe:
    """Bytes to send and the byte patterns that identify a matching reply."""

    name: str
    probe_data: bytes
    expected_patterns: tuple[bytes, ...]
    confidence_if_match: float


@dataclass(frozen=True)
class ProbeResult:
    probe_name: str
    response: bytes
    matched: bool
    confidence: float
    service_name: str


@dataclass(frozen=True)
class DetectedService:
    """A service identified on a port."""

    name: str
    version: str | None
    confidence: float


@dataclass(frozen=True)
class _ServiceSignature:
    pattern: bytes
    service_name: str
    confidence: float
    offset: int = 0


def tls_client_hello() -> bytes:
    """Minimal TLS 1.2 ClientHello offering one cipher suite."""
    return (
        bytes([0x16, 0x03, 0x01, 0x00, 0x2C])
        + bytes([0x01, 0x00, 0x00, 0x28])
        + bytes([0x03, 0x03])
        + bytes(32)
        + bytes([0x00])
        + bytes([0x00, 0x02])
        + bytes([0x00, 0x35])
        + bytes([0x01, 0x00])
    )


def dns_query() -> bytes:
    """DNS query for the A record of google.com with transaction id 0x1234."""
    return (
        bytes([0x12, 0x34, 0x01, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00])
        + b"\x06google\x03com\x00"
        + bytes([0x00, 0x01, 0x00, 0x01])
    )


def _default_probes() -> list[ServiceProbe]:
    return [
        ServiceProbe(
            "HTTP-GET",
            b"GET / HTTP/1.1\r\nHost: test\r\nUser-Agent: PortScope\r\n\r\n",
            (b"HTTP/", b"Content-Type", b"Server:"),
            0.9,
        ),
        ServiceProbe("TLS-ClientHello", tls_client_hello(), (b"\x16\x03", b"\x15\x03"), 0.95),
        ServiceProbe("SSH-Version", b"", (b"SSH-", b"OpenSSH"), 0.95),
        ServiceProbe("FTP-Banner", b"", (b"220", b"FTP", b"FileZilla", b"vsftpd"), 0.9),
        ServiceProbe("SMTP-EHLO", b"EHLO test.local\r\n", (b"250", b"SMTP", b"ESMTP"), 0.9),
        ServiceProbe("DNS-Query", dns_query(), (b"\x12\x34", b"\x81\x80"), 0.85),
        ServiceProbe("MySQL-Handshake", b"", (b"\x0a", b"mysql_native_password"), 0.9),
        ServiceProbe(
            "PostgreSQL-StartupMessage",
            bytes([0x00, 0x00, 0x00, 0x08, 0x04, 0xD2, 0x16, 0x2F]),
            (b"S", b"N"),
            0.85,
        ),
        ServiceProbe(
            "Redis-PING",
            b"*1\r\n$4\r\nPING\r\n",
            (b"+PONG", b"-NOAUTH", b"-ERR"),
            0.9,
        ),
        ServiceProbe(_BANNER_GRAB, b"", (), 0.3),
    ]


def _default_signatures() -> dict[str, list[_ServiceSignature]]:
    return {
        "HTTP": [
            _ServiceSignature(b"Apache", "Apache HTTP Server", 0.9),
            _ServiceSignature(b"nginx", "nginx", 0.9),
            _ServiceSignature(b"IIS", "Microsoft IIS", 0.9),
            _ServiceSignature(b"lighttpd", "lighttpd", 0.9),
        ],
        "SSH": [
            _ServiceSignature(b"OpenSSH", "OpenSSH", 0.95),
            _ServiceSignature(b"dropbear", "Dropbear SSH", 0.95),
        ],
    }


def contains_pattern(haystack: bytes, needle: bytes) -> bool:
    """True if ``needle`` occurs in ``haystack``; an empty needle never matches."""
    return bool(needle) and needle in haystack


def _lower_text(response: bytes) -> str:
    return response.decode("utf-8", errors="replace").lower()


def identify_specific_service(probe_name: str, text: str) -> str:
    """Service name for a reply that matched the named probe; ``text`` is lower case."""
    if probe_name == "HTTP-GET":
        if "apache" in text:
            return "Apache HTTP Server"
        if "nginx" in text:
            return "nginx"
        if "iis" in text:
            return "Microsoft IIS"
        return "HTTP Server"
    if probe_name == "SSH-Version":
        if "openssh" in text:
            return "OpenSSH"
        if "dropbear" in text:
            return "Dropbear SSH"
        return "SSH Server"
    if probe_name == "FTP-Banner":
        if "filezilla" in text:
            return "FileZilla FTP"
        if "vsftpd" in text:
            return "vsftpd"
        return "FTP Server"
    return {
        "TLS-ClientHello": "TLS/SSL Server",
        "SMTP-EHLO": "SMTP Server",
        "DNS-Query": "DNS Server",
        "MySQL-Handshake": "MySQL Database",
        "PostgreSQL-StartupMessage": "PostgreSQL Database",
        "Redis-PING": "Redis Database",
    }.get(probe_name, "Unknown Service")


def identify_from_banner(text: str) -> str:
    """Service name guessed from a lower-case banner, or an empty string."""
    if text.startswith("ssh-"):
        return "SSH Server"
    if text.startswith("220") and "ftp" in text:
        return "FTP Server"
    if text.startswith("220") and "smtp" in text:
        return "SMTP Server"
    if "http" in text and ("server:" in text or "content-type" in text):
        return "HTTP Server"
    return ""


def analyze_response(probe: ServiceProbe, response: bytes) -> tuple[bool, float, str]:
    """Whether the reply matches the probe, with the confidence and service name."""
    if not response:
        return False, 0.0, _UNKNOWN

    text = _lower_text(response)
    if any(contains_pattern(response, pattern) for pattern in probe.expected_patterns):
        return True, probe.confidence_if_match, identify_specific_service(probe.name, text)

    if probe.name == _BANNER_GRAB:
        service_name = identify_from_banner(text)
        if service_name:
            return True, 0.7, service_name

    return False, 0.0, _UNKNOWN


_VERSION_MARKERS = (
    ("OpenSSH", "OpenSSH_"),
    ("Apache", "Apache/"),
    ("nginx", "nginx/"),
)


def extract_version(response: bytes, service_name: str) -> str | None:
    """Version string following the product marker in the reply, if present."""
    text = response.decode("utf-8", errors="replace")
    for product, marker in _VERSION_MARKERS:
        if product not in service_name:
            continue
        start = text.find(marker)
        if start < 0:
            return None
        end = text.find(" ", start)
        if end < 0:
            return None
        return text[start + len(marker):end]
    return None


async def _exchange(host: str, port: int, probe: ServiceProbe) -> bytes:
    reader, writer = await asyncio.open_connection(host, port)
    try:
        if probe.probe_data:
            writer.write(probe.probe_data)
            await writer.drain()
            await asyncio.sleep(_REPLY_WAIT)
        else:
            await asyncio.sleep(_BANNER_WAIT)
        return await reader.read(_READ_SIZE)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


class AdaptiveServiceDetector:
    """Identifies services by trying every probe, whatever the port number."""

    def __init__(self) -> None:
        self.probes: list[ServiceProbe] = _default_probes()
        self.service_signatures: dict[str, list[_ServiceSignature]] = _default_signatures()

    async def detect_service(self, target: IPAddress | str, port: int) -> DetectedService | None:
        """Run all probes in parallel and report the most confident identification."""
        host = str(target)
        results = await asyncio.gather(
            *(self._execute_probe(host, port, probe) for probe in self.probes)
        )
        ranked = sorted(results, key=lambda result: result.confidence, reverse=True)
        if not ranked or ranked[0].confidence <= _MIN_CONFIDENCE:
            return None
        best = ranked[0]
        return DetectedService(
            name=best.service_name,
            version=extract_version(best.response, best.service_name),
            confidence=best.confidence,
        )

    @staticmethod
    async def _execute_probe(host: str, port: int, probe: ServiceProbe) -> ProbeResult:
        try:
            response = await asyncio.wait_for(_exchange(host, port, probe), _PROBE_TIMEOUT)
        except (OSError, asyncio.TimeoutError, TimeoutError):
            response = b""
        matched, confidence, service_name = analyze_response(probe, response)
        return ProbeResult(
            probe_name=probe.name,
            response=response,
            matched=matched,
            confidence=confidence,
            service_name=service_name,
        )