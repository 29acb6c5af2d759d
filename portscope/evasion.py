"""Defence profiling of scan targets and selection of scan patterns that avoid them."""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

logger = logging.getLogger(__name__)

_RETRAIN_INTERVAL = 50
_LARGE_SCAN_PORTS = 1000


def _now() -> int:
    return int(time.time())


def _as_ip(value: IPAddress | str) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    return ipaddress.ip_address(value)


@dataclass
class ScanPattern:
    """Timing and stealth settings for one scan."""

    rate_limit: int
    timing_variation: float
    source_port_randomization: bool
    packet_fragmentation: bool
    decoy_hosts: list[IPAddress] = field(default_factory=list)
    success_rate: float = 0.0
    detection_probability: float = 0.0


@dataclass
class EvasionProfile:
    """What is known about a target's defences."""

    target: IPAddress
    firewall_detected: bool
    ids_detected: bool
    rate_limit_threshold: int
    optimal_timing: timedelta
    successful_patterns: list[ScanPattern] = field(default_factory=list)
    blocked_patterns: list[ScanPattern] = field(default_factory=list)
    last_updated: int = 0
    confidence: float = 0.7


@dataclass
class FirewallSignature:
    """A kind of firewall, how it detects scans and what gets past it."""

    name: str
    detection_method: str
    evasion_techniques: list[str]
    effectiveness: float


class EvasionResult(Enum):
    SUCCESS = "Success"
    BLOCKED = "Blocked"
    RATE_LIMITED = "RateLimited"
    DETECTED = "Detected"


@dataclass
class EvasionLearningData:
    target: IPAddress
    pattern: ScanPattern
    result: EvasionResult
    timestamp: int


def _default_signatures() -> list[FirewallSignature]:
    return [
        FirewallSignature(
            name="pfSense",
            detection_method="Rate limiting + SYN flood detection",
            evasion_techniques=[
                "Randomize source ports",
                "Use timing variations",
                "Fragment packets",
            ],
            effectiveness=0.8,
        ),
        FirewallSignature(
            name="iptables",
            detection_method="Connection tracking",
            evasion_techniques=[
                "Use different scan types",
                "Randomize packet order",
                "Insert decoy scans",
            ],
            effectiveness=0.7,
        ),
        FirewallSignature(
            name="Windows Firewall",
            detection_method="Application-based filtering",
            evasion_techniques=[
                "Use TCP connect scans",
                "Mimic legitimate traffic",
            ],
            effectiveness=0.6,
        ),
        FirewallSignature(
            name="Cloudflare",
            detection_method="Behavioral analysis + rate limiting",
            evasion_techniques=[
                "Distribute across time",
                "Use legitimate user agents",
                "Rotate source IPs",
            ],
            effectiveness=0.9,
        ),
    ]


def is_private_network(ip: IPAddress | str) -> bool:
    """True for RFC 1918 IPv4 addresses; IPv6 is never treated as private here."""
    address = _as_ip(ip)
    if not isinstance(address, ipaddress.IPv4Address):
        return False
    first, second = address.packed[0], address.packed[1]
    return (
        first == 10
        or (first == 172 and 16 <= second <= 31)
        or (first == 192 and second == 168)
    )


def generate_decoy_hosts(target: IPAddress | str) -> list[IPAddress]:
    """Three decoy addresses in the target's /24; none for IPv6 targets."""
    address = _as_ip(target)
    if not isinstance(address, ipaddress.IPv4Address):
        return []
    a, b, c, d = address.packed
    return [
        ipaddress.IPv4Address(bytes((a, b, c, ((d + step * 10) & 0xFF) % 255)))
        for step in range(1, 4)
    ]


def _matches_signature(pattern: ScanPattern, signature: FirewallSignature) -> bool:
    if signature.name == "pfSense":
        return pattern.rate_limit < 100
    if signature.name == "iptables":
        return pattern.source_port_randomization
    if signature.name == "Windows Firewall":
        return not pattern.packet_fragmentation
    if signature.name == "Cloudflare":
        return pattern.timing_variation > 0.2
    return False


class EvasionEngine:
    """Profiles target defences and learns which scan patterns get through."""

    def __init__(self) -> None:
        self.profiles: dict[IPAddress, EvasionProfile] = {}
        self.firewall_signatures: list[FirewallSignature] = _default_signatures()
        self.learning_data: list[EvasionLearningData] = []

    async def analyze_target_defenses(self, target: IPAddress | str) -> EvasionProfile:
        """Profile of the target's defences, built once and then reused."""
        address = _as_ip(target)
        profile = self.profiles.get(address)
        if profile is None:
            profile = self._probe_target_defenses(address)
            self.profiles[address] = profile
        return replace(
            profile,
            successful_patterns=list(profile.successful_patterns),
            blocked_patterns=list(profile.blocked_patterns),
        )

    def _probe_target_defenses(self, target: IPAddress) -> EvasionProfile:
        return EvasionProfile(
            target=target,
            firewall_detected=self._detect_firewall(target),
            ids_detected=self._detect_ids(target),
            rate_limit_threshold=self._rate_limit_threshold(target),
            optimal_timing=self._baseline_response(target),
            last_updated=_now(),
            confidence=0.7,
        )

    @staticmethod
    def _baseline_response(target: IPAddress) -> timedelta:
        if target.is_loopback:
            return timedelta(milliseconds=1)
        if is_private_network(target):
            return timedelta(milliseconds=10)
        return timedelta(milliseconds=50)

    @staticmethod
    def _rate_limit_threshold(target: IPAddress) -> int:
        if target.is_loopback:
            return 10000
        if is_private_network(target):
            return 1000
        return 100

    @staticmethod
    def _detect_firewall(target: IPAddress) -> bool:
        return not target.is_loopback and not is_private_network(target)

    @staticmethod
    def _detect_ids(target: IPAddress) -> bool:
        text = str(target)
        last = text[-1] if text else "0"
        return last not in "012345"

    def get_optimal_scan_pattern(self, target: IPAddress | str, port_count: int) -> ScanPattern:
        """Scan pattern suited to the target, conservative when it is not yet profiled."""
        address = _as_ip(target)
        profile = self.profiles.get(address)
        if profile is None:
            return self._conservative_pattern(address, port_count)
        return self._predict_pattern(profile, port_count)

    @staticmethod
    def _predict_pattern(profile: EvasionProfile, port_count: int) -> ScanPattern:
        rate = profile.rate_limit_threshold
        if profile.firewall_detected:
            rate //= 2
        if port_count > _LARGE_SCAN_PORTS:
            rate //= 2
        ids = profile.ids_detected
        return ScanPattern(
            rate_limit=rate,
            timing_variation=0.3 if ids else 0.1,
            source_port_randomization=profile.firewall_detected,
            packet_fragmentation=ids,
            decoy_hosts=generate_decoy_hosts(profile.target) if ids else [],
            success_rate=0.0,
            detection_probability=0.3 if ids else 0.1,
        )

    @staticmethod
    def _conservative_pattern(target: IPAddress, port_count: int) -> ScanPattern:
        rate = 200 if is_private_network(target) else 50
        if port_count > _LARGE_SCAN_PORTS:
            rate //= 3
        return ScanPattern(
            rate_limit=rate,
            timing_variation=0.2,
            source_port_randomization=True,
            packet_fragmentation=False,
            decoy_hosts=[],
            success_rate=0.0,
            detection_probability=0.2,
        )

    def learn_from_scan_result(
        self,
        target: IPAddress | str,
        pattern: ScanPattern,
        success: bool,
        detected: bool,
    ) -> None:
        """Record how a pattern fared against a target and adjust its profile."""
        address = _as_ip(target)
        if detected:
            result = EvasionResult.DETECTED
        elif success:
            result = EvasionResult.SUCCESS
        else:
            result = EvasionResult.BLOCKED

        self.learning_data.append(
            EvasionLearningData(
                target=address,
                pattern=replace(pattern, decoy_hosts=list(pattern.decoy_hosts)),
                result=result,
                timestamp=_now(),
            )
        )

        profile = self.profiles.get(address)
        if profile is not None:
            if result is EvasionResult.SUCCESS:
                profile.successful_patterns.append(pattern)
                profile.confidence = min(profile.confidence + 0.1, 1.0)
            elif result in (EvasionResult.BLOCKED, EvasionResult.DETECTED):
                profile.blocked_patterns.append(pattern)
                profile.confidence = max(profile.confidence - 0.05, 0.0)
            profile.last_updated = _now()

        if len(self.learning_data) % _RETRAIN_INTERVAL == 0:
            self._retrain()

    def _retrain(self) -> None:
        logger.info("Retraining evasion model with %d data points", len(self.learning_data))
        for signature in self.firewall_signatures:
            relevant = [
                entry for entry in self.learning_data
                if _matches_signature(entry.pattern, signature)
            ]
            if not relevant:
                continue
            successes = sum(1 for entry in relevant if entry.result is EvasionResult.SUCCESS)
            success_rate = successes / len(relevant)
            signature.effectiveness = signature.effectiveness * 0.8 + success_rate * 0.2

    def get_evasion_recommendations(self, target: IPAddress | str) -> list[str]:
        """Human-readable notes on the evasion techniques in use for a target."""
        profile = self.profiles.get(_as_ip(target))
        if profile is None:
            return ["🎯 First scan - using conservative approach"]

        recommendations: list[str] = []
        if profile.firewall_detected:
            recommendations += [
                "🛡️  Firewall detected - using stealth techniques",
                "   • Randomizing source ports",
                "   • Adding timing variations",
            ]
        if profile.ids_detected:
            recommendations += [
                "🕵️  IDS detected - employing evasion tactics",
                "   • Using packet fragmentation",
                "   • Deploying decoy hosts",
            ]
        if profile.rate_limit_threshold < 100:
            recommendations += [
                "⏱️  Aggressive rate limiting detected",
                f"   • Limiting to {profile.rate_limit_threshold} packets/sec",
            ]
        return recommendations