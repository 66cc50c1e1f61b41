import socket
import threading
import time

import pytest

from omamori.cache import LRUCache, Record
from omamori.config import default_config, reverse_domain
from omamori.events import EventBus
from omamori.packet import Answer, Header, Query, Question, decode_query
from omamori.radix import RadixTree
from omamori.resolver import Resolver

UPSTREAM_ADDRESS = bytes([93, 184, 216, 34])


@pytest.fixture
def config(tmp_path):
    cfg = default_config(tmp_path)
    cfg.upstream1 = "127.0.0.1"
    cfg.upstream2 = "127.0.0.1"
    return cfg


@pytest.fixture
def blocked():
    tree = RadixTree()
    tree.insert(reverse_domain("ads.example.com"), "0.0.0.0")
    return tree


def _query(name, qtype=1, flags=0x0100, ident=0x1234):
    return Query(Header(id=ident, flags=flags, qdcount=1), Question(name, qtype, 1))


def _fake_upstream(reply_for):
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    received = []

    def serve():
        try:
            data, addr = sock.recvfrom(512)
        except OSError:
            return
        received.append(data)
        sock.sendto(reply_for(data), addr)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return sock, thread, received


def _answer_reply(data):
    incoming = decode_query(data)
    return Query(
        Header(id=incoming.header.id, flags=0x8180, qdcount=1, ancount=1),
        incoming.question,
        [Answer(b"\xc0\x0c", 1, 1, 300, 4, UPSTREAM_ADDRESS)],
    ).encode()


def test_is_resolvable(config, blocked):
    resolver = Resolver(config, blocked)
    assert resolver.is_resolvable("ads.example.com") is False
    assert resolver.is_resolvable("example.com") is True


def test_blocked_domain_gets_null_address(config, blocked):
    resolver = Resolver(config, blocked)
    result = resolver.lookup(_query("ads.example.com"))
    assert result.header.flags & 0x8000
    assert result.header.flags & 0x0080
    assert result.header.ancount == 1
    assert result.header.qdcount == 1
    assert len(result.answers) == 1
    answer = result.answers[0]
    assert answer.data == bytes(4)
    assert answer.ttl == 600
    assert answer.length == 4


def test_cache_hit_is_served_and_logged(config, blocked):
    cache = LRUCache()
    data = bytes([10, 0, 0, 7])
    cache.set("example.com", Record(1, time.time() + 100, data))
    events = EventBus(maxsize=100)
    resolver = Resolver(config, blocked, cache, events)

    result = resolver.lookup(_query("example.com"))

    assert result.answers[0].data == data
    assert result.answers[0].length == len(data)
    assert 0 <= result.answers[0].ttl <= 100
    assert result.header.ancount == 1
    assert [event.payload for event in events.drain()] == ["Cache hit for example.com\n"]


def test_upstream_answer_is_returned_and_cached(config, blocked):
    sock, thread, received = _fake_upstream(_answer_reply)
    with sock:
        resolver = Resolver(config, blocked, LRUCache(), timeout=2.0)
        resolver.upstream_port = sock.getsockname()[1]
        result = resolver.lookup(_query("example.com"))
        thread.join(5)

    assert result.answers[0].data == UPSTREAM_ADDRESS
    assert result.answers[0].ttl == 300
    assert result.header.ancount == 1
    upstream = decode_query(received[0])
    assert upstream.header.flags == 0x0100
    assert upstream.header.id == 0x1234
    assert upstream.question.name == "example.com"
    cached = resolver.cache.get("example.com", 1)
    assert cached is not None and cached.data == UPSTREAM_ADDRESS


def test_upstream_without_answers_keeps_default(config, blocked):
    def empty_reply(data):
        incoming = decode_query(data)
        return Header(id=incoming.header.id, flags=0x8180, qdcount=1).encode()

    sock, thread, _ = _fake_upstream(empty_reply)
    with sock:
        resolver = Resolver(config, blocked, LRUCache(), timeout=0.3)
        resolver.upstream_port = sock.getsockname()[1]
        result = resolver.lookup(_query("example.com"))
        thread.join(5)

    assert result.answers[0].data == bytes(4)
    assert len(resolver.cache) == 0


def test_invalid_upstream_returns_default_answer(config, blocked):
    config.upstream1 = "not-an-ip"
    resolver = Resolver(config, blocked, LRUCache(), timeout=0.2)
    result = resolver.lookup(_query("example.com"))
    assert result.answers[0].data == bytes(4)
    assert result.header.ancount == 1


def test_overlong_label_leaves_no_answer(config, blocked):
    resolver = Resolver(config, blocked)
    result = resolver.lookup(_query("a" * 64 + ".com"))
    assert result.answers == []
    assert result.header.ancount == 1