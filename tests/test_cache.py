import time

import pytest

from omamori.cache import (
    CacheKey,
    LRUCache,
    Record,
    RecordType,
    make_cache_key,
    normalize_domain,
)


def fresh(rtype=RecordType.A, data=b"\x01\x02\x03\x04", ttl=600):
    return Record(type=rtype, expires_at=time.time() + ttl, data=data)


def stale(rtype=RecordType.A):
    return Record(type=rtype, expires_at=time.time() - 10, data=b"\x00")


@pytest.mark.parametrize(
    "rtype, expected",
    [
        (RecordType.A, "1:example.com"),
        (RecordType.AAAA, "28:example.com"),
        (RecordType.NXDOMAIN, "65535:example.com"),
    ],
)
def test_record_type_values_in_cache_keys(rtype, expected):
    assert str(make_cache_key("example.com", rtype)) == expected


def test_record_types_keep_separate_entries():
    cache = LRUCache(10)
    cache.set("example.com", fresh(RecordType.A, data=b"v4"))
    cache.set("example.com", fresh(RecordType.AAAA, data=b"v6"))
    assert cache.keys() == ["28:example.com", "1:example.com"]
    assert cache.get("example.com", RecordType.AAAA).data == b"v6"


def test_normalize_and_key():
    assert normalize_domain("Example.COM") == "example.com"
    key = make_cache_key("Example.COM", RecordType.A)
    assert key == CacheKey("example.com", 1)
    assert str(key) == "1:example.com"


def test_set_then_get_case_insensitive():
    cache = LRUCache(10)
    record = fresh()
    cache.set("Example.com", record)
    assert cache.get("example.COM", RecordType.A) is record
    assert cache.get("example.com", RecordType.AAAA) is None


def test_expired_entry_is_dropped_on_get():
    cache = LRUCache(10)
    cache.set("example.com", stale())
    assert len(cache) == 1
    assert cache.get("example.com", RecordType.A) is None
    assert len(cache) == 0


def test_eviction_of_least_recently_used():
    cache = LRUCache(2)
    cache.set("a.com", fresh())
    cache.set("b.com", fresh())
    assert cache.get("a.com", RecordType.A) is not None
    cache.set("c.com", fresh())
    assert len(cache) == 2
    assert cache.get("b.com", RecordType.A) is None
    assert cache.get("a.com", RecordType.A) is not None
    assert cache.get("c.com", RecordType.A) is not None


def test_keys_most_recent_first():
    cache = LRUCache(5)
    for name in ["a.com", "b.com", "c.com"]:
        cache.set(name, fresh())
    cache.get("a.com", RecordType.A)
    assert cache.keys() == ["1:a.com", "1:c.com", "1:b.com"]


def test_set_existing_replaces_record():
    cache = LRUCache(5)
    cache.set("a.com", fresh(data=b"old"))
    cache.set("a.com", fresh(data=b"new"))
    assert len(cache) == 1
    assert cache.get("a.com", RecordType.A).data == b"new"


def test_remove():
    cache = LRUCache(5)
    cache.set("a.com", fresh())
    cache.remove("A.com", RecordType.A)
    cache.remove("missing.com", RecordType.A)
    assert len(cache) == 0


def test_remove_expired_keeps_live_entries():
    cache = LRUCache(5)
    cache.set("old.com", stale())
    cache.set("new.com", fresh())
    cache.remove_expired()
    assert cache.keys() == ["1:new.com"]


@pytest.mark.timeout(5)
def test_background_cleanup_removes_expired():
    cache = LRUCache(5, cleanup_interval=0.01)
    cache.set("old.com", stale())
    cache.start_cleanup()
    try:
        deadline = time.time() + 2
        while len(cache) and time.time() < deadline:
            time.sleep(0.01)
    finally:
        cache.close()
    assert len(cache) == 0