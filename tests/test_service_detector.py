import asyncio
import socket

import pytest

from portscope.service_detector import (
    AdaptiveServiceDetector,
    DetectedService,
    analyze_response,
    contains_pattern,
    dns_query,
    extract_version,
    identify_from_banner,
    identify_specific_service,
    tls_client_hello,
)


def probe_named(name):
    detector = AdaptiveServiceDetector()
    return next(probe for probe in detector.probes if probe.name == name)


def test_contains_pattern():
    assert contains_pattern(b"hello SSH-2.0", b"SSH-") is True
    assert contains_pattern(b"abc", b"") is False
    assert contains_pattern(b"ab", b"abc") is False


def test_tls_client_hello_wire_bytes():
    hello = tls_client_hello()
    assert hello[:5] == bytes([0x16, 0x03, 0x01, 0x00, 0x2C])
    assert hello[5] == 0x01
    assert hello.endswith(bytes([0x00, 0x35, 0x01, 0x00]))


def test_dns_query_wire_bytes():
    query = dns_query()
    assert query[:2] == bytes([0x12, 0x34])
    assert b"\x06google\x03com\x00" in query
    assert query.endswith(bytes([0x00, 0x01, 0x00, 0x01]))


def test_probe_set_names():
    names = [probe.name for probe in AdaptiveServiceDetector().probes]
    assert names[0] == "HTTP-GET"
    assert names[-1] == "Banner-Grab"
    assert len(names) == len(set(names))


def test_analyze_empty_response():
    assert analyze_response(probe_named("HTTP-GET"), b"") == (False, 0.0, "Unknown")


def test_analyze_http_response_identifies_nginx():
    probe = probe_named("HTTP-GET")
    matched, confidence, name = analyze_response(
        probe, b"HTTP/1.1 200 OK\r\nServer: nginx/1.2\r\n\r\n"
    )
    assert matched is True
    assert confidence == probe.confidence_if_match
    assert name == "nginx"


def test_analyze_unmatched_response():
    probe = probe_named("Redis-PING")
    assert analyze_response(probe, b"hello there") == (False, 0.0, "Unknown")


def test_banner_grab_falls_back_to_banner_identification():
    matched, confidence, name = analyze_response(probe_named("Banner-Grab"), b"SSH-2.0-x")
    assert (matched, confidence, name) == (True, 0.7, "SSH Server")


def test_banner_grab_without_known_banner():
    assert analyze_response(probe_named("Banner-Grab"), b"zzz") == (False, 0.0, "Unknown")


def test_identify_specific_service():
    assert identify_specific_service("SSH-Version", "ssh-2.0-dropbear") == "Dropbear SSH"
    assert identify_specific_service("FTP-Banner", "220 welcome") == "FTP Server"
    assert identify_specific_service("Redis-PING", "+pong") == "Redis Database"
    assert identify_specific_service("Nothing", "") == "Unknown Service"


def test_identify_from_banner():
    assert identify_from_banner("220 example ftp ready") == "FTP Server"
    assert identify_from_banner("220 mail smtp ready") == "SMTP Server"
    assert identify_from_banner("http/1.0 200\r\ncontent-type: x") == "HTTP Server"
    assert identify_from_banner("random") == ""


def test_extract_version():
    assert extract_version(b"SSH-2.0-OpenSSH_8.9p1 Ubuntu", "OpenSSH") == "8.9p1"
    assert extract_version(b"Server: Apache/2.4 (Unix)", "Apache HTTP Server") == "2.4"
    assert extract_version(b"Server: nginx/1.2", "nginx") is None
    assert extract_version(b"anything", "Redis Database") is None


def _unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_detect_service_on_closed_port():
    detector = AdaptiveServiceDetector()
    assert await detector.detect_service("127.0.0.1", _unused_port()) is None


@pytest.mark.asyncio
async def test_detect_service_identifies_ssh_banner():
    async def handle(reader, writer):
        writer.write(b"SSH-2.0-OpenSSH_9.0 test\r\n")
        await writer.drain()
        try:
            await reader.read(4096)
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        detected = await AdaptiveServiceDetector().detect_service("127.0.0.1", port)
    finally:
        server.close()
        await server.wait_closed()

    assert detected == DetectedService(name="OpenSSH", version="9.0", confidence=0.95)