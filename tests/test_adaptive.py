import json

import pytest

from portscope.adaptive import (
    AdaptiveLearning,
    NetworkType,
    OptimalScanParams,
    PortScanResult,
    ScanLearningData,
    classify_network,
)


@pytest.fixture
def learning(tmp_path):
    return AdaptiveLearning(tmp_path / "adaptive_learning.json")


def lan_scan(performance=0.9):
    return ScanLearningData(
        target="192.168.1.100",
        network_type=NetworkType.PRIVATE_LAN,
        port_results=[
            PortScanResult(22, True, False, 50.0, "SSH"),
            PortScanResult(80, True, False, 30.0, "HTTP"),
            PortScanResult(443, False, False, 25.0, None),
        ],
        scan_duration=0.2,
        avg_response_time=35.0,
        timeout_rate=0.1,
        parallelism_used=50,
        rate_limit_used=50,
        scan_performance=performance,
    )


def internet_scan():
    return ScanLearningData(
        target="8.8.8.8",
        network_type=NetworkType.PUBLIC_INTERNET,
        port_results=[
            PortScanResult(53, True, False, 150.0, "DNS"),
            PortScanResult(443, True, False, 200.0, "HTTPS"),
            PortScanResult(80, False, True, None, None),
        ],
        scan_duration=2.0,
        avg_response_time=175.0,
        timeout_rate=0.3,
        parallelism_used=20,
        rate_limit_used=200,
        scan_performance=0.7,
    )


def test_network_classification():
    assert classify_network("127.0.0.1") == NetworkType.LOCAL_HOST
    assert classify_network("192.168.1.1") == NetworkType.PRIVATE_LAN
    assert classify_network("8.8.8.8") == NetworkType.PUBLIC_INTERNET


@pytest.mark.parametrize(
    "address, expected",
    [
        ("10.1.2.3", NetworkType.PRIVATE_LAN),
        ("172.16.0.1", NetworkType.PRIVATE_LAN),
        ("172.31.255.1", NetworkType.PRIVATE_LAN),
        ("172.32.0.1", NetworkType.PUBLIC_INTERNET),
        ("34.64.0.1", NetworkType.CLOUD_PROVIDER),
        ("3.5.0.1", NetworkType.CLOUD_PROVIDER),
        ("20.1.1.1", NetworkType.CLOUD_PROVIDER),
        ("::1", NetworkType.LOCAL_HOST),
        ("fe80::1", NetworkType.PRIVATE_LAN),
        ("fd00::1", NetworkType.PRIVATE_LAN),
        ("2001:4860::8888", NetworkType.PUBLIC_INTERNET),
    ],
)
def test_network_classification_ranges(address, expected):
    assert classify_network(address) == expected


def test_adaptive_learning_creation(learning):
    assert learning.port_intelligence
    assert learning.global_stats.total_scans == 0
    assert set(learning.port_intelligence) == {21, 22, 23, 25, 53, 80, 110, 143, 443, 993, 995}


def test_default_params_without_profile(learning):
    params = learning.get_optimal_params("127.0.0.1")
    assert params == OptimalScanParams.default_for_network(NetworkType.LOCAL_HOST)
    assert params.timeout == 200
    assert params.rate_limit == 10
    assert params.parallelism == 100
    assert params.suggested_ports == [22, 80, 443, 8080, 3306, 5432]


def test_default_params_public_internet():
    params = OptimalScanParams.default_for_network(NetworkType.PUBLIC_INTERNET)
    assert (params.timeout, params.rate_limit, params.parallelism) == (2000, 200, 20)
    assert params.suggested_ports == [80, 443, 22, 21, 25, 53]


def test_learn_updates_network_profile(learning):
    learning.learn_from_scan(lan_scan())
    profile = learning.network_profiles["PrivateLAN"]
    assert profile.avg_response_time == pytest.approx(35.0)
    assert profile.optimal_parallelism == 55
    assert profile.optimal_rate_limit == 45
    assert profile.scan_count == 1

    params = learning.get_optimal_params("192.168.1.1")
    assert params.network_type == NetworkType.PRIVATE_LAN
    assert params.timeout == pytest.approx(105, abs=1)
    assert params.parallelism == 55


def test_poor_performance_backs_off(learning):
    data = internet_scan()
    data.scan_performance = 0.3
    learning.learn_from_scan(data)
    profile = learning.network_profiles["PublicInternet"]
    assert profile.optimal_parallelism == 18
    assert profile.optimal_rate_limit == 240


def test_port_intelligence_updates(learning):
    learning.learn_from_scan(lan_scan())
    ssh = learning.port_intelligence[22]
    assert ssh.found_count == 2
    assert ssh.success_rate == pytest.approx(0.8 * 2 / 3 + 1 / 3)
    assert ssh.avg_response_time == pytest.approx(90.0)
    https = learning.port_intelligence[443]
    assert https.found_count == 1


def test_unknown_closed_port_gets_neutral_entry(learning):
    data = lan_scan()
    data.port_results.append(PortScanResult(3306, False, False))
    learning.learn_from_scan(data)
    intel = learning.port_intelligence[3306]
    assert intel.found_count == 0
    assert intel.success_rate == 0.5
    assert intel.last_seen == 0


def test_host_intelligence(learning):
    learning.learn_from_scan(lan_scan())
    host = learning.host_intelligence["192.168.1.100"]
    assert host.open_ports == [22, 80]
    assert host.firewall_detected is False


def test_firewall_detected_when_mostly_filtered(learning):
    data = internet_scan()
    data.port_results = [PortScanResult(p, False, True) for p in (80, 443, 53)]
    learning.learn_from_scan(data)
    assert learning.host_intelligence["8.8.8.8"].firewall_detected is True


def test_empty_results_do_not_flag_firewall(learning):
    data = internet_scan()
    data.port_results = []
    learning.learn_from_scan(data)
    assert learning.host_intelligence["8.8.8.8"].firewall_detected is False
    assert learning.global_stats.total_ports_found == 0


def test_global_stats(learning):
    learning.learn_from_scan(lan_scan())
    learning.learn_from_scan(internet_scan())
    stats = learning.global_stats
    assert stats.total_scans == 2
    assert stats.total_ports_found == 4
    assert dict(stats.most_common_ports) == {22: 1, 80: 1, 53: 1, 443: 1}
    counts = [count for _, count in stats.most_common_ports]
    assert counts == sorted(counts, reverse=True)


def test_smart_port_list_localhost_prefers_bonus_ports(learning):
    ports = learning.get_smart_port_list(NetworkType.LOCAL_HOST)
    assert ports[:2] == [80, 22]
    assert sorted(ports) == sorted(learning.port_intelligence)


def test_smart_port_list_limited_to_hundred(learning):
    data = lan_scan()
    data.port_results = [PortScanResult(p, False, False) for p in range(2000, 2200)]
    learning.learn_from_scan(data)
    ports = learning.get_smart_port_list(NetworkType.PUBLIC_INTERNET)
    assert len(ports) == 100
    assert ports[:2] == [80, 443]


def test_learning_is_persisted(tmp_path):
    path = tmp_path / "adaptive_learning.json"
    first = AdaptiveLearning(path)
    first.learn_from_scan(lan_scan())
    assert path.exists()

    reloaded = AdaptiveLearning(path)
    assert reloaded.global_stats.total_scans == 1
    assert reloaded.host_intelligence["192.168.1.100"].open_ports == [22, 80]
    assert reloaded.network_profiles["PrivateLAN"].network_type == NetworkType.PRIVATE_LAN
    assert reloaded.to_dict() == first.to_dict()


def test_saved_file_uses_network_type_names(tmp_path):
    path = tmp_path / "adaptive_learning.json"
    learning = AdaptiveLearning(path)
    learning.learn_from_scan(internet_scan())
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["network_profiles"]["PublicInternet"]["network_type"] == "PublicInternet"
    assert "443" in saved["port_intelligence"]


def test_dict_round_trip(learning, tmp_path):
    learning.learn_from_scan(lan_scan())
    rebuilt = AdaptiveLearning.from_dict(learning.to_dict(), tmp_path / "other.json")
    assert rebuilt.port_intelligence == learning.port_intelligence
    assert rebuilt.global_stats == learning.global_stats
    assert rebuilt.host_intelligence == learning.host_intelligence


def test_from_dict_rejects_malformed(tmp_path):
    with pytest.raises(ValueError):
        AdaptiveLearning.from_dict({"network_profiles": {}}, tmp_path / "x.json")


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "adaptive_learning.json"
    path.write_text("{not json", encoding="utf-8")
    learning = AdaptiveLearning(path)
    assert learning.global_stats.total_scans == 0
    assert 22 in learning.port_intelligence