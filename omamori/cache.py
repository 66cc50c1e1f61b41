"""In-memory LRU cache of DNS records with expiry."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple

DEFAULT_CAPACITY = 1000


class RecordType(IntEnum):
    A = 1
    NS = 2
    CNAME = 5
    SOA = 6
    PTR = 12
    MX = 15
    TXT = 16
    AAAA = 28
    SRV = 33
    CAA = 257
    NXDOMAIN = 65535


@dataclass
class Record:
    """A cached answer: its type, expiry (epoch seconds) and raw data."""

    type: int
    expires_at: float
    data: bytes


class CacheKey(NamedTuple):
    domain: str
    type: int

    def __str__(self) -> str:
        return f"{self.type}:{self.domain}"


def normalize_domain(domain: str) -> str:
    """Return the canonical form of a domain used in cache keys."""
    return domain.lower()


def make_cache_key(domain: str, record_type: int) -> CacheKey:
    return CacheKey(normalize_domain(domain), int(record_type))


class LRUCache:
    """Thread-safe LRU cache keyed by domain and record type."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, cleanup_interval: float = 5.0) -> None:
        self.capacity = capacity
        self.cleanup_interval = cleanup_interval
        self._entries: OrderedDict[str, Record] = OrderedDict()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def get(self, domain: str, record_type: int) -> Record | None:
        """Return the live record for the key, or None if absent or expired."""
        key = str(make_cache_key(domain, record_type))
        with self._lock:
            record = self._entries.get(key)
            if record is None:
                return None
            if time.time() > record.expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key, last=False)
            return record

    def set(self, domain: str, record: Record) -> None:
        """Store a record, evicting the least recently used one when full."""
        key = str(make_cache_key(domain, record.type))
        with self._lock:
            self._entries[key] = record
            self._entries.move_to_end(key, last=False)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=True)

    def remove(self, domain: str, record_type: int) -> None:
        key = str(make_cache_key(domain, record_type))
        with self._lock:
            self._entries.pop(key, None)

    def remove_expired(self) -> None:
        now = time.time()
        with self._lock:
            expired = [key for key, rec in self._entries.items() if now > rec.expires_at]
            for key in expired:
                del self._entries[key]

    def keys(self) -> list[str]:
        """Return cache keys from most to least recently used."""
        with self._lock:
            return list(self._entries)

    def _cleanup_loop(self) -> None:
        while not self._stop.wait(self.cleanup_interval):
            self.remove_expired()

    def start_cleanup(self) -> None:
        """Start the background thread that drops expired entries."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._cleanup_loop, daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the background cleanup thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.cleanup_interval + 1)
            self._thread = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)