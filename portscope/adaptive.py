"""Adaptive learning of network behaviour and port statistics across scans."""

from __future__ import annotations

import ipaddress
import json
import time
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Union

import platformdirs

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_LEARNING_RATE = 0.1
_RECENCY_WINDOW = 86400.0 * 30.0
_SMART_LIST_LIMIT = 100
_COMMON_PORTS_LIMIT = 50

# (port, baseline success rate) for well-known services.
_BASELINE_PORTS = (
    (21, 0.1), (22, 0.8), (23, 0.05),
    (25, 0.3), (53, 0.9), (80, 0.9),
    (110, 0.1), (143, 0.2), (443, 0.9),
    (993, 0.1), (995, 0.05),
)


class NetworkType(Enum):
    """Broad class of network a target lives on."""

    LOCAL_HOST = "LocalHost"
    PRIVATE_LAN = "PrivateLAN"
    PUBLIC_INTERNET = "PublicInternet"
    CLOUD_PROVIDER = "CloudProvider"


@dataclass
class NetworkProfile:
    network_type: NetworkType
    avg_response_time: float
    timeout_rate: float
    optimal_parallelism: int
    optimal_rate_limit: int
    last_updated: int
    scan_count: int


@dataclass
class PortIntelligence:
    port: int
    found_count: int
    success_rate: float
    avg_response_time: float
    service_confidence: float
    last_seen: int


@dataclass
class ResponsePattern:
    rst_timing: float = 0.0
    syn_ack_timing: float = 0.0
    timeout_pattern: float = 0.0
    icmp_responses: bool = False


@dataclass
class HostIntelligence:
    host: str
    network_profile: NetworkProfile
    open_ports: list[int] = field(default_factory=list)
    os_fingerprint: str | None = None
    response_pattern: ResponsePattern = field(default_factory=ResponsePattern)
    firewall_detected: bool = False
    last_scan: int = 0


@dataclass
class GlobalStats:
    total_scans: int = 0
    total_ports_found: int = 0
    total_hosts_scanned: int = 0
    success_rate: float = 0.0
    avg_scan_time: float = 0.0
    most_common_ports: list[tuple[int, int]] = field(default_factory=list)


@dataclass
class PortScanResult:
    port: int
    is_open: bool
    is_filtered: bool
    response_time: float | None = None
    service_detected: str | None = None


@dataclass
class ScanLearningData:
    """Summary of a finished scan; ``scan_duration`` is in seconds."""

    target: IPAddress | str
    network_type: NetworkType
    port_results: list[PortScanResult]
    scan_duration: float
    avg_response_time: float
    timeout_rate: float
    parallelism_used: int
    rate_limit_used: int
    scan_performance: float


_DEFAULT_PARAMS = {
    NetworkType.LOCAL_HOST: (200, 10, 100, (22, 80, 443, 8080, 3306, 5432)),
    NetworkType.PRIVATE_LAN: (200, 20, 100, (22, 80, 443, 445, 135, 3389)),
    NetworkType.PUBLIC_INTERNET: (2000, 200, 20, (80, 443, 22, 21, 25, 53)),
    NetworkType.CLOUD_PROVIDER: (1000, 100, 30, (22, 80, 443, 8080, 9000, 3000)),
}


@dataclass
class OptimalScanParams:
    timeout: int
    rate_limit: int
    parallelism: int
    suggested_ports: list[int]
    network_type: NetworkType

    @classmethod
    def default_for_network(cls, network_type: NetworkType) -> OptimalScanParams:
        """Baseline parameters used before anything is learned about a network."""
        timeout, rate_limit, parallelism, ports = _DEFAULT_PARAMS[network_type]
        return cls(
            timeout=timeout,
            rate_limit=rate_limit,
            parallelism=parallelism,
            suggested_ports=list(ports),
            network_type=network_type,
        )


def _now() -> int:
    return int(time.time())


def _as_ip(value: IPAddress | str) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    return ipaddress.ip_address(value)


def _is_cloud_provider(octets: bytes) -> bool:
    first, second = octets[0], octets[1]
    return (
        (first == 3 and second <= 7)
        or first in (13, 15, 20, 40)
        or (first == 34 and 64 <= second <= 127)
    )


def classify_network(ip: IPAddress | str) -> NetworkType:
    """Classify an address as localhost, private LAN, cloud or public internet."""
    address = _as_ip(ip)
    if isinstance(address, ipaddress.IPv4Address):
        octets = address.packed
        if octets[0] == 127:
            return NetworkType.LOCAL_HOST
        if (
            octets[0] == 10
            or (octets[0] == 172 and 16 <= octets[1] <= 31)
            or (octets[0] == 192 and octets[1] == 168)
        ):
            return NetworkType.PRIVATE_LAN
        if _is_cloud_provider(octets):
            return NetworkType.CLOUD_PROVIDER
        return NetworkType.PUBLIC_INTERNET

    if address.is_loopback:
        return NetworkType.LOCAL_HOST
    first_segment = int(address) >> 112
    if first_segment == 0xFE80 or first_segment & 0xFE00 == 0xFC00:
        return NetworkType.PRIVATE_LAN
    return NetworkType.PUBLIC_INTERNET


def default_config_path() -> Path:
    """Location of the learning file in the user's configuration directory."""
    directory = Path(platformdirs.user_config_dir()) / "portscan"
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    return directory / "adaptive_learning.json"


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _encode(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(key): _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode_profile(data: dict[str, Any]) -> NetworkProfile:
    return NetworkProfile(
        network_type=NetworkType(data["network_type"]),
        avg_response_time=float(data["avg_response_time"]),
        timeout_rate=float(data["timeout_rate"]),
        optimal_parallelism=int(data["optimal_parallelism"]),
        optimal_rate_limit=int(data["optimal_rate_limit"]),
        last_updated=int(data["last_updated"]),
        scan_count=int(data["scan_count"]),
    )


def _decode_port(data: dict[str, Any]) -> PortIntelligence:
    return PortIntelligence(
        port=int(data["port"]),
        found_count=int(data["found_count"]),
        success_rate=float(data["success_rate"]),
        avg_response_time=float(data["avg_response_time"]),
        service_confidence=float(data["service_confidence"]),
        last_seen=int(data["last_seen"]),
    )


def _decode_host(data: dict[str, Any]) -> HostIntelligence:
    pattern = data["response_pattern"]
    return HostIntelligence(
        host=str(data["host"]),
        network_profile=_decode_profile(data["network_profile"]),
        open_ports=[int(port) for port in data["open_ports"]],
        os_fingerprint=data.get("os_fingerprint"),
        response_pattern=ResponsePattern(
            rst_timing=float(pattern["rst_timing"]),
            syn_ack_timing=float(pattern["syn_ack_timing"]),
            timeout_pattern=float(pattern["timeout_pattern"]),
            icmp_responses=bool(pattern["icmp_responses"]),
        ),
        firewall_detected=bool(data["firewall_detected"]),
        last_scan=int(data["last_scan"]),
    )


def _decode_stats(data: dict[str, Any]) -> GlobalStats:
    return GlobalStats(
        total_scans=int(data["total_scans"]),
        total_ports_found=int(data["total_ports_found"]),
        total_hosts_scanned=int(data["total_hosts_scanned"]),
        success_rate=float(data["success_rate"]),
        avg_scan_time=float(data["avg_scan_time"]),
        most_common_ports=[(int(port), int(count)) for port, count in data["most_common_ports"]],
    )


def _baseline_port_intelligence() -> dict[int, PortIntelligence]:
    now = _now()
    return {
        port: PortIntelligence(
            port=port,
            found_count=1,
            success_rate=rate,
            avg_response_time=100.0,
            service_confidence=0.9,
            last_seen=now,
        )
        for port, rate in _BASELINE_PORTS
    }


_NETWORK_BONUS_PORTS = {
    NetworkType.LOCAL_HOST: ({22, 80}, 2.0),
    NetworkType.PRIVATE_LAN: ({445, 135}, 1.5),
    NetworkType.PUBLIC_INTERNET: ({80, 443}, 1.5),
    NetworkType.CLOUD_PROVIDER: ({22, 80, 443}, 1.5),
}


class AdaptiveLearning:
    """Learned knowledge about networks, ports and hosts, persisted as JSON."""

    def __init__(self, config_path: str | Path | None = None) -> None:
        self.config_path = Path(config_path) if config_path is not None else default_config_path()
        self._reset()
        if self.config_path.exists():
            try:
                self._restore(json.loads(self.config_path.read_text(encoding="utf-8")))
            except (OSError, ValueError):
                self._reset()

    def _reset(self) -> None:
        self.network_profiles: dict[str, NetworkProfile] = {}
        self.port_intelligence: dict[int, PortIntelligence] = _baseline_port_intelligence()
        self.host_intelligence: dict[str, HostIntelligence] = {}
        self.global_stats = GlobalStats()

    def _restore(self, data: dict[str, Any]) -> None:
        try:
            profiles = {key: _decode_profile(value) for key, value in data["network_profiles"].items()}
            ports = {int(key): _decode_port(value) for key, value in data["port_intelligence"].items()}
            hosts = {key: _decode_host(value) for key, value in data["host_intelligence"].items()}
            stats = _decode_stats(data["global_stats"])
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid learning data: {exc}") from exc
        self.network_profiles = profiles
        self.port_intelligence = ports
        self.host_intelligence = hosts
        self.global_stats = stats

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready representation of the learned state."""
        return {
            "network_profiles": _encode(self.network_profiles),
            "port_intelligence": _encode(self.port_intelligence),
            "host_intelligence": _encode(self.host_intelligence),
            "global_stats": _encode(self.global_stats),
            "config_path": str(self.config_path),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: str | Path) -> AdaptiveLearning:
        """Rebuild learned state from ``to_dict`` output; raises ValueError if malformed."""
        instance = cls.__new__(cls)
        instance.config_path = Path(config_path)
        instance._restore(data)
        return instance

    def save(self) -> None:
        """Write the learned state to the configuration file."""
        self.config_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    def learn_from_scan(self, scan_result: ScanLearningData) -> None:
        """Fold a completed scan into the learned state and persist it."""
        self._update_network_profile(scan_result)
        self._update_port_intelligence(scan_result)
        self._update_host_intelligence(scan_result)
        self._update_global_stats(scan_result)
        try:
            self.save()
        except OSError:
            pass

    def get_optimal_params(self, target: IPAddress | str) -> OptimalScanParams:
        """Scan parameters tuned for the network the target belongs to."""
        network_type = classify_network(target)
        profile = self.network_profiles.get(network_type.value)
        if profile is None:
            return OptimalScanParams.default_for_network(network_type)
        return OptimalScanParams(
            timeout=max(0, int(profile.avg_response_time * 3.0)),
            rate_limit=profile.optimal_rate_limit,
            parallelism=profile.optimal_parallelism,
            suggested_ports=self.get_smart_port_list(network_type),
            network_type=network_type,
        )

    def get_smart_port_list(self, network_type: NetworkType) -> list[int]:
        """Known ports ordered by how likely they are to be open, at most 100."""
        bonus_ports, bonus = _NETWORK_BONUS_PORTS[network_type]
        now = _now()

        def score(intel: PortIntelligence) -> float:
            recency = 1.0 - min((now - intel.last_seen) / _RECENCY_WINDOW, 1.0)
            network_bonus = bonus if intel.port in bonus_ports else 1.0
            return intel.success_rate * intel.service_confidence * recency * network_bonus

        scored = [(port, score(intel)) for port, intel in self.port_intelligence.items()]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [port for port, _ in scored[:_SMART_LIST_LIMIT]]

    def _update_network_profile(self, data: ScanLearningData) -> None:
        key = data.network_type.value
        profile = self.network_profiles.get(key)
        if profile is None:
            profile = NetworkProfile(
                network_type=data.network_type,
                avg_response_time=data.avg_response_time,
                timeout_rate=data.timeout_rate,
                optimal_parallelism=data.parallelism_used,
                optimal_rate_limit=data.rate_limit_used,
                last_updated=_now(),
                scan_count=0,
            )
            self.network_profiles[key] = profile

        alpha = _LEARNING_RATE
        profile.avg_response_time = profile.avg_response_time * (1.0 - alpha) + data.avg_response_time * alpha
        profile.timeout_rate = profile.timeout_rate * (1.0 - alpha) + data.timeout_rate * alpha

        if data.scan_performance > 0.8:
            profile.optimal_parallelism = int(min(profile.optimal_parallelism * 1.1, 100.0))
            profile.optimal_rate_limit = int(max(profile.optimal_rate_limit * 0.9, 10.0))
        elif data.scan_performance < 0.5:
            profile.optimal_parallelism = int(max(profile.optimal_parallelism * 0.9, 1.0))
            profile.optimal_rate_limit = int(profile.optimal_rate_limit * 1.2)

        profile.scan_count += 1
        profile.last_updated = _now()

    def _update_port_intelligence(self, data: ScanLearningData) -> None:
        for result in data.port_results:
            intel = self.port_intelligence.setdefault(
                result.port,
                PortIntelligence(
                    port=result.port,
                    found_count=0,
                    success_rate=0.5,
                    avg_response_time=1000.0,
                    service_confidence=0.5,
                    last_seen=0,
                ),
            )
            if not result.is_open:
                continue
            intel.found_count += 1
            intel.last_seen = _now()
            alpha = 1.0 / (intel.found_count + 1.0)
            intel.success_rate = intel.success_rate * (1.0 - alpha) + alpha
            if result.response_time is not None:
                intel.avg_response_time = intel.avg_response_time * 0.8 + result.response_time * 0.2

    def _update_host_intelligence(self, data: ScanLearningData) -> None:
        host = str(_as_ip(data.target))
        intel = self.host_intelligence.get(host)
        if intel is None:
            intel = HostIntelligence(
                host=host,
                network_profile=NetworkProfile(
                    network_type=data.network_type,
                    avg_response_time=data.avg_response_time,
                    timeout_rate=data.timeout_rate,
                    optimal_parallelism=data.parallelism_used,
                    optimal_rate_limit=data.rate_limit_used,
                    last_updated=_now(),
                    scan_count=1,
                ),
                last_scan=_now(),
            )
            self.host_intelligence[host] = intel

        intel.open_ports = [result.port for result in data.port_results if result.is_open]
        total = len(data.port_results)
        filtered = sum(1 for result in data.port_results if result.is_filtered)
        intel.firewall_detected = bool(total) and filtered / total > 0.7
        intel.last_scan = _now()

    def _update_global_stats(self, data: ScanLearningData) -> None:
        stats = self.global_stats
        stats.total_scans += 1

        port_counts: dict[int, int] = {}
        for result in data.port_results:
            if result.is_open:
                port_counts[result.port] = port_counts.get(result.port, 0) + 1
        stats.total_ports_found += sum(port_counts.values())

        merged = dict(stats.most_common_ports)
        for port, count in port_counts.items():
            merged[port] = merged.get(port, 0) + count
        ranked = sorted(merged.items(), key=lambda item: item[1], reverse=True)
        stats.most_common_ports = ranked[:_COMMON_PORTS_LIMIT]