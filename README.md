# portscope

Building blocks for a network port scanner: parsing of target
specifications, network-aware tuning that learns from past scans, profiling
of a target's defences, protocol probing to identify services, and
classification of probe replies.

## Parsing targets

`portscope.network.parse_targets` accepts a comma separated specification of
single addresses, host names, IPv4 ranges (`IP1-IP2`) and CIDR blocks. It
returns a sorted list of unique `ipaddress` objects and raises
`TargetParseError` (a `ValueError`) for anything it cannot understand: an
invalid prefix length, a host name that does not resolve, a range whose end
is below its start, a range spanning more than 10000 addresses, or an IPv6
range. IPv4 CIDR blocks yield their usable hosts; IPv6 blocks are cut off
after 1000 addresses.

```python
from portscope.network import parse_targets

parse_targets("192.168.1.0/30")               # 192.168.1.1 and 192.168.1.2
parse_targets("192.168.1.1,192.168.1.10-192.168.1.11")
```

## Network classification and adaptive tuning

`portscope.adaptive.classify_network` sorts an address (an `ipaddress`
object or a string) into a `NetworkType`: `LOCAL_HOST`, `PRIVATE_LAN`,
`CLOUD_PROVIDER` or `PUBLIC_INTERNET`.

`AdaptiveLearning` keeps per-network profiles, per-port statistics, per-host
notes and global counters. It starts with baseline statistics for common
ports, and loads earlier state from its config path if the file is there and
readable. Feed it a `ScanLearningData` (with a `PortScanResult` per port)
after each scan with `learn_from_scan`; it updates its state and writes it as
JSON with `save`. `to_dict` and `from_dict` give the same state as plain
data. Without an argument the config path is `default_config_path()`, a file
in the per-user configuration directory.

```python
from portscope.adaptive import AdaptiveLearning, NetworkType

learning = AdaptiveLearning("learning.json")
params = learning.get_optimal_params("192.168.1.1")
print(params.timeout, params.rate_limit, params.parallelism, params.suggested_ports)
print(learning.get_smart_port_list(NetworkType.PUBLIC_INTERNET)[:10])
```

Networks with no history get `OptimalScanParams.default_for_network`.
`get_smart_port_list` returns at most 100 ports, best first.

## Defence profiling

`portscope.evasion.EvasionEngine` builds an `EvasionProfile` for a target
with the coroutine `analyze_target_defenses` (judged from the kind of
address; no traffic is sent), proposes a `ScanPattern` with
`get_optimal_scan_pattern`, records how each scan went with
`learn_from_scan_result`, and lists notes with `get_evasion_recommendations`.
`is_private_network` and `generate_decoy_hosts` are available on their own.

## Service detection

`portscope.service_detector.AdaptiveServiceDetector` sends every known probe
(HTTP, TLS, SSH, FTP, SMTP, DNS, MySQL, PostgreSQL, Redis and a plain banner
grab) to a port at once, whatever its number, and returns the most confident
match as a `DetectedService` with a version where the banner carries one, or
`None` if nothing matched with confidence above 0.5.

```python
import asyncio
from portscope.service_detector import AdaptiveServiceDetector

detector = AdaptiveServiceDetector()
found = asyncio.run(detector.detect_service("127.0.0.1", 22))
```

The reply analysis is also available without a network:
`analyze_response`, `identify_specific_service`, `identify_from_banner` and
`extract_version`.

## Classifying replies

`portscope.probing.classifier.ResponseClassifier` turns raw replies into a
`(service, confidence)` pair. `classify_response` matches known product
signatures (Apache, nginx, OpenSSH, IRC, Syncthing, DNS, TLS);
`analyze_unknown_response` also reads TLS and SSL detection markers, asks any
callables in its `detectors` list, and falls back to text and binary
heuristics. Helpers in the same module build and read handshakes and markers:
`bittorrent_handshake`, `analyze_bittorrent_response`,
`describe_tls_response`, `ssl_service_marker`, `extract_tls_service` and
`guess_protocol`.

## What this package does not do

It does not scan ports. There is no scanning engine that sends SYN, connect,
UDP or other probes across a list of ports, no command to run, and no
writers for human, JSON, XML or CSV results. Nor does it carry per-port probe
templates or a multi-stage prober that drives the classifier against a live
service; `ResponseClassifier` only judges replies it is given. The modules
here are meant to be used from your own code.

Only probe hosts you are permitted to probe.