import os
import socket
import threading
import time

import pytest

from omamori.config import ConfigError, SiteData, default_config, reverse_domain
from omamori.dns_config import SystemDNSManager
from omamori.events import Event, EventBus, EventType
from omamori.packet import Header, Query, Question, decode_answers, decode_header
from omamori.radix import RadixTree
from omamori.resolver import Resolver
from omamori.server import Controller, handle_datagram, serve_udp
from omamori.sysdns_helpers import DNSState


@pytest.fixture
def config(tmp_path):
    cfg = default_config(tmp_path)
    os.makedirs(cfg.config_dir)
    with open(cfg.map_file, "w", encoding="utf-8") as handle:
        handle.write("0.0.0.0 ads.example.com\n")
    cfg.upstream1 = "127.0.0.1"
    cfg.upstream2 = "127.0.0.1"
    return cfg


@pytest.fixture
def resolver(config):
    tree = RadixTree()
    tree.insert(reverse_domain("ads.example.com"), "0.0.0.0")
    return Resolver(config, tree, timeout=0.2)


def _query_bytes(name):
    return Query(Header(id=0x1234, flags=0x0100, qdcount=1), Question(name, 1, 1)).encode()


def _wait_for(bus, predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    seen = []
    while time.monotonic() < deadline:
        for event in bus.drain():
            seen.append(event)
            if predicate(event):
                return event, seen
        time.sleep(0.02)
    raise AssertionError(f"event not seen; got {seen!r}")


def test_handle_datagram_rejects_malformed():
    assert handle_datagram(None, b"\x00" * 5) is None


def test_handle_datagram_answers_blocked_domain(resolver):
    response = handle_datagram(resolver, _query_bytes("ads.example.com"))
    header = decode_header(response)
    assert header.id == 0x1234
    assert header.flags & 0x8000
    assert header.ancount == 1
    answers = decode_answers(response)
    assert answers[0].data == bytes(4)
    assert answers[0].ttl == 600


def test_serve_udp_round_trip(resolver):
    events = EventBus(maxsize=100)
    stop = threading.Event()
    thread = threading.Thread(
        target=serve_udp, args=(resolver, stop, "127.0.0.1", 0, events), daemon=True
    )
    thread.start()
    started, _ = _wait_for(events, lambda e: str(e.payload).startswith("🚀 DNS Server started"))
    port = int(started.payload.split()[-1])

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.settimeout(5)
        client.sendto(_query_bytes("ads.example.com"), ("127.0.0.1", port))
        response, _ = client.recvfrom(512)

    assert decode_answers(response)[0].data == bytes(4)
    stop.set()
    thread.join(5)
    assert not thread.is_alive()
    stopped, _ = _wait_for(events, lambda e: e.payload == "🛑 DNS Server stopped")
    assert stopped.type is EventType.LOG


def test_serve_udp_reports_bind_failure(resolver):
    events = EventBus(maxsize=100)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
        taken.bind(("127.0.0.1", 0))
        port = taken.getsockname()[1]
        serve_udp(resolver, threading.Event(), "127.0.0.1", port, events)
    errors = [e for e in events.drain() if e.type is EventType.ERROR]
    assert len(errors) == 1
    assert "failed to bind to address" in str(errors[0].payload)


def test_site_list_add_and_delete(config, resolver):
    controller = Controller(config, resolver, events=EventBus(maxsize=100))
    site = SiteData(domain="tracker.example.org", ip="0.0.0.0")

    controller.dispatch(Event(EventType.UPDATE_SITE_LIST, {"operation": "add", "site_data": site}))
    assert resolver.blocked.search(reverse_domain("tracker.example.org")) is True
    with open(config.map_file, encoding="utf-8") as handle:
        assert "0.0.0.0 tracker.example.org" in handle.read().splitlines()

    controller.dispatch(
        Event(EventType.UPDATE_SITE_LIST, {"operation": "delete", "site_data": site})
    )
    assert resolver.blocked.search(reverse_domain("tracker.example.org")) is False
    with open(config.map_file, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    assert "0.0.0.0 tracker.example.org" not in lines
    assert "0.0.0.0 ads.example.com" in lines


def test_update_config_rejects_invalid_upstream(config, resolver):
    events = EventBus(maxsize=100)
    controller = Controller(config, resolver, events=events)
    new_config = default_config(os.path.dirname(config.config_dir))
    new_config.upstream1 = "not-an-ip"
    new_config.map_file = config.map_file

    controller.dispatch(Event(EventType.UPDATE_CONFIG, new_config))

    errors = [e for e in events.drain() if e.type is EventType.ERROR]
    assert len(errors) == 1
    assert isinstance(errors[0].payload, ConfigError)
    assert config.upstream1 == "127.0.0.1"


def test_update_config_applies_and_saves(config, resolver):
    controller = Controller(config, resolver, events=EventBus(maxsize=100))
    new_config = default_config(os.path.dirname(config.config_dir))
    new_config.upstream1 = "9.9.9.9"
    new_config.upstream2 = "1.1.1.1"
    new_config.map_file = config.map_file

    controller.dispatch(Event(EventType.UPDATE_CONFIG, new_config))

    assert config.upstream1 == "9.9.9.9"
    with open(config.config_file, encoding="utf-8") as handle:
        assert '"upstream1": "9.9.9.9"' in handle.read()


def test_start_and_stop_server(config, resolver):
    config.udp_server_port = 0
    events = EventBus(maxsize=100)
    manager = SystemDNSManager(DNSState(events=events), "plan9")
    controller = Controller(config, resolver, manager, events, "127.0.0.1")

    controller.dispatch(Event(EventType.START_DNS_SERVER))
    assert controller.is_running is True
    error, _ = _wait_for(events, lambda e: e.type is EventType.ERROR)
    assert error.payload == "Failed to configure system DNS: unsupported platform: plan9"

    controller.dispatch(Event(EventType.STOP_DNS_SERVER))
    assert controller.is_running is False
    controller.shutdown()
    assert controller.is_running is False