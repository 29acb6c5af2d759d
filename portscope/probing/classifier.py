"""Classification of probe replies into service names with a confidence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

Classification = tuple[str, float]
Detector = Callable[[bytes], Optional[Classification]]

_BITTORRENT_PROTOCOL = b"BitTorrent protocol"
_BITTORRENT_PEER_ID = b"MLSCAN-TEST-PEER-ID-"
_BITTORRENT_MIN_REPLY = 28
_TLS_MARKER = "tls_service_detected:"


@dataclass(frozen=True)
class SignaturePattern:
    """Text and byte patterns that identify a product in a reply.

    ``timing`` is a characteristic reply time in seconds, when one is known.
    """

    name: str
    byte_patterns: tuple[bytes, ...] = ()
    text_patterns: tuple[str, ...] = ()
    timing: float | None = None
    confidence_weight: float = 0.0


def _default_patterns() -> dict[str, list[SignaturePattern]]:
    return {
        "HTTP": [
            SignaturePattern("Apache", text_patterns=("Apache", "Server: Apache"), confidence_weight=0.9),
            SignaturePattern("Nginx", text_patterns=("nginx", "Server: nginx"), confidence_weight=0.9),
        ],
        "SSH": [
            SignaturePattern(
                "OpenSSH", text_patterns=("OpenSSH", "SSH-2.0-OpenSSH"), confidence_weight=0.95
            ),
        ],
        "IRC": [
            SignaturePattern(
                "ErgoIRCd",
                text_patterns=("ergo.test", "ErgoTest", "001", "Welcome"),
                confidence_weight=0.95,
            ),
            SignaturePattern(
                "IRC Server",
                text_patterns=("NOTICE", "PRIVMSG", "MODE", "IRC"),
                confidence_weight=0.85,
            ),
        ],
        "Syncthing": [
            SignaturePattern(
                "Syncthing",
                text_patterns=("syncthing", "BEP", "device", "folder"),
                confidence_weight=0.9,
            ),
        ],
        "DNS": [
            SignaturePattern(
                "BIND DNS",
                byte_patterns=(b"\x12\x34", b"\x81\x80"),
                text_patterns=("BIND", "version"),
                confidence_weight=0.9,
            ),
            SignaturePattern(
                "DNS Server",
                byte_patterns=(b"\x81\x80", b"\x84\x00"),
                confidence_weight=0.8,
            ),
        ],
        "SSL": [
            SignaturePattern(
                "SSL/TLS Service",
                byte_patterns=(b"\x16\x03", b"\x15\x03"),
                text_patterns=("certificate", "handshake"),
                confidence_weight=0.85,
            ),
        ],
    }


def contains_byte_pattern(haystack: bytes, needle: bytes) -> bool:
    """True if ``needle`` occurs in ``haystack``; an empty needle never matches."""
    if not needle or len(haystack) < len(needle):
        return False
    return needle in haystack


def _lower_text(response: bytes) -> str:
    return response.decode("utf-8", errors="replace").lower()


_TLS_SERVICE_NAMES = {
    "syncthing_tls": "Syncthing",
    "irc_ssl": "IRC",
    "https": "HTTPS",
    "imaps": "IMAPS",
    "pop3s": "POP3S",
    "smtps": "SMTPS",
    "ldaps": "LDAPS",
    "ftps": "FTPS",
}


def extract_tls_service(response_str: str) -> str:
    """Service named after the last colon of a lower-case TLS detection string."""
    head, sep, service = response_str.rpartition(":")
    if not sep:
        return "TLS Service"
    return _TLS_SERVICE_NAMES.get(service, "TLS Service")


_TLS_VERSIONS = {
    (0x03, 0x00): "SSL_3.0_INSECURE",
    (0x03, 0x01): "TLS_1.0_DEPRECATED",
    (0x03, 0x02): "TLS_1.1_DEPRECATED",
    (0x03, 0x03): "TLS_1.2",
    (0x03, 0x04): "TLS_1.3",
}

_TLS_PORT_SERVICES = {
    443: "HTTPS",
    8443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    465: "SMTPS",
    587: "SMTPS",
    636: "LDAPS",
    989: "FTPS",
    990: "FTPS",
    6697: "IRC_SSL",
    22000: "SYNCTHING_TLS",
}


def describe_tls_response(port: int, response: bytes) -> bytes:
    """Detection marker for a TLS ServerHello: protocol version and likely service."""
    info = "TLS_SERVICE_DETECTED:"
    if len(response) > 10:
        version = _TLS_VERSIONS.get((response[9], response[10]), "Unknown_TLS_Version")
        info += version + ":"
    info += _TLS_PORT_SERVICES.get(port, "UNKNOWN_TLS_SERVICE")
    return info.encode("ascii")


_SSL_PORT_MARKERS = {
    6697: b"IRC_OVER_SSL_DETECTED",
    443: b"HTTPS_DETECTED",
    8443: b"HTTPS_DETECTED",
    993: b"IMAPS_DETECTED",
    995: b"POP3S_DETECTED",
    22000: b"SYNCTHING_TLS_DETECTED",
}


def ssl_service_marker(port: int) -> bytes:
    """Marker naming the service most likely wrapped in SSL on this port."""
    return _SSL_PORT_MARKERS.get(port, b"GENERIC_SSL_TLS_DETECTED")


def bittorrent_handshake() -> bytes:
    """BitTorrent peer handshake with a zero info hash and a fixed peer id."""
    return (
        bytes([len(_BITTORRENT_PROTOCOL)])
        + _BITTORRENT_PROTOCOL
        + bytes(8)
        + bytes(20)
        + _BITTORRENT_PEER_ID
    )


def analyze_bittorrent_response(response: bytes) -> Classification | None:
    """Identify a reply to the BitTorrent handshake, if it looks like one."""
    if len(response) < _BITTORRENT_MIN_REPLY:
        return None
    if response[0] == len(_BITTORRENT_PROTOCOL) and response[1:20] == _BITTORRENT_PROTOCOL:
        return "qBittorrent/BitTorrent", 0.95
    text = _lower_text(response)
    if "torrent" in text or "peer" in text:
        return "BitTorrent-like", 0.7
    return None


_PORT_PROTOCOLS = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    8080: "HTTP",
    8000: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    8443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    6667: "IRC",
    6697: "IRC",
    22000: "Syncthing",
}


def guess_protocol(port: int, service_name: str) -> str:
    """Protocol implied by a well-known port, else by the service name so far."""
    protocol = _PORT_PROTOCOLS.get(port)
    if protocol is not None:
        return protocol
    name = service_name.lower()
    if "http" in name:
        return "HTTP"
    if "ssh" in name:
        return "SSH"
    if "irc" in name or "ergo" in name:
        return "IRC"
    if "syncthing" in name:
        return "Syncthing"
    if "dns" in name:
        return "DNS"
    return "Generic"


_TLS_DETAIL_RULES = (
    ("ssl_3.0_insecure", "SSL 3.0 INSECURE!", 0.95),
    ("tls_1.0_deprecated", "TLS 1.0 deprecated", 0.90),
    ("tls_1.1_deprecated", "TLS 1.1 deprecated", 0.90),
)

_TLS_SERVICE_RULES = (
    ("syncthing_tls", "Syncthing", 0.95),
    ("irc_ssl", "IRC-over-SSL", 0.90),
    ("https", "HTTPS", 0.90),
    ("imaps", "IMAPS", 0.90),
    ("unknown_tls_service", "Unknown-TLS-Service", 0.75),
)

_SSL_MARKER_RULES = (
    ("irc_over_ssl_detected", "IRC-over-SSL", 0.85),
    ("https_detected", "HTTPS", 0.85),
    ("imaps_detected", "IMAPS", 0.85),
    ("pop3s_detected", "POP3S", 0.85),
    ("syncthing_tls_detected", "Syncthing", 0.90),
    ("ssl_tls_detected", "SSL-TLS-Service", 0.75),
)


class ResponseClassifier:
    """Matches replies against known product signatures and protocol heuristics.

    ``detectors`` holds extra protocol detectors: callables taking the raw
    reply and returning a ``(service, confidence)`` pair or ``None``. They are
    consulted in order before the generic fallbacks.
    """

    def __init__(self) -> None:
        self.protocol_patterns: dict[str, list[SignaturePattern]] = _default_patterns()
        self.learned_signatures: dict[str, float] = {}
        self.detectors: list[Detector] = field(default_factory=list) if False else []

    def classify_response(self, response: bytes) -> Classification | None:
        """First known signature found in the reply, with its weight."""
        text = _lower_text(response)
        for patterns in self.protocol_patterns.values():
            for pattern in patterns:
                if any(candidate.lower() in text for candidate in pattern.text_patterns):
                    return pattern.name, pattern.confidence_weight
                if any(contains_byte_pattern(response, raw) for raw in pattern.byte_patterns):
                    return pattern.name, pattern.confidence_weight
        return None

    def analyze_unknown_response(self, response: bytes) -> Classification | None:
        """Best guess at the service behind an arbitrary reply."""
        text = _lower_text(response)

        if _TLS_MARKER in text:
            for marker, note, confidence in _TLS_DETAIL_RULES:
                if marker in text:
                    return f"{extract_tls_service(text)} ({note})", confidence
            for marker, service, confidence in _TLS_SERVICE_RULES:
                if marker in text:
                    return service, confidence

        for marker, service, confidence in _SSL_MARKER_RULES:
            if marker in text:
                return service, confidence

        for detector in self.detectors:
            result = detector(response)
            if result is not None:
                return result

        return self._fallback(response, text)

    @staticmethod
    def _fallback(response: bytes, text: str) -> Classification | None:
        if "ssh" in text or "openssh" in text:
            return "SSH-Service", 0.7
        if "ftp" in text or "220" in text:
            return "FTP-Service", 0.7
        if len(response) >= 3 and response[0] == 0x16 and response[1] == 0x03:
            return "SSL-TLS-Service", 0.7
        if not response:
            return None
        binary = sum(1 for byte in response if byte > 127 or byte < 32)
        if binary / len(response) > 0.3:
            return "Binary-Protocol", 0.5
        if "error" in text or "invalid" in text:
            return "Protocol-Mismatch", 0.4
        if len(response) > 10:
            return "Text-Protocol", 0.4
        return "Unknown-Service", 0.2