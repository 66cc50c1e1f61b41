"""Answer DNS queries: block listed names, serve from cache, or ask upstream."""

from __future__ import annotations

import logging
import socket
import time
from typing import Optional

from omamori.cache import LRUCache, Record
from omamori.config import Config, is_valid_ip, reverse_domain
from omamori.events import EventBus
from omamori.packet import (
    Answer,
    Header,
    PacketError,
    Query,
    Question,
    decode_answers,
    encode_domain_name,
)
from omamori.radix import RadixTree

logger = logging.getLogger(__name__)

FLAG_QR = 1 << 15
FLAG_RA = 1 << 7
BLOCKED_TTL = 600
BLOCKED_ADDRESS = bytes(4)
MAX_UDP_SIZE = 512


class Resolver:
    """Resolves single-question queries against the block list, cache and upstreams."""

    upstream_port = 53

    def __init__(
        self,
        config: Config,
        blocked: RadixTree,
        cache: Optional[LRUCache] = None,
        events: Optional[EventBus] = None,
        timeout: float = 1.0,
    ) -> None:
        self.config = config
        self.blocked = blocked
        self.cache = cache if cache is not None else LRUCache()
        self.events = events
        self.timeout = timeout

    def is_resolvable(self, domain: str) -> bool:
        """False when the domain is in the block list."""
        return not self.blocked.search(reverse_domain(domain))

    def _log(self, message: str) -> None:
        if self.events is not None:
            self.events.log(message)

    def lookup(self, query: Query) -> Query:
        """Turn ``query`` into its response in place and return it."""
        header = query.header
        question = query.question
        flags = header.flags

        header.qdcount = 1
        header.arcount = 0
        header.ancount = 1
        header.flags = flags | FLAG_QR | FLAG_RA

        try:
            name = encode_domain_name(question.name)
        except PacketError as exc:
            logger.warning("Error encoding domain name %s: %s", question.name, exc)
            return query

        query.answers = [
            Answer(name, question.type, question.qclass, BLOCKED_TTL, len(BLOCKED_ADDRESS), BLOCKED_ADDRESS)
        ]

        if not self.is_resolvable(question.name):
            logger.info("%s is not resolvable", question.name)
            return query

        record = self.cache.get(question.name, question.type)
        if record is not None:
            ttl = max(0, int(record.expires_at - time.time()))
            query.answers = [
                Answer(name, question.type, question.qclass, ttl, len(record.data), record.data)
            ]
            header.ancount = 1
            self._log(f"Cache hit for {question.name}\n")
            return query

        try:
            upstream_query = Query(
                Header(id=header.id, flags=flags, qdcount=1),
                Question(question.name, question.type, question.qclass),
            ).encode()
        except PacketError as exc:
            logger.warning("Error encoding upstream query for %s: %s", question.name, exc)
            return query

        for upstream in (self.config.upstream1, self.config.upstream2):
            reply = self._ask(upstream, upstream_query)
            if reply is None:
                if not self._reachable(upstream):
                    return query
                continue
            try:
                answers = decode_answers(reply)
            except PacketError as exc:
                logger.warning(
                    "Error while fetching answer for %s [Record %d] via %s: %s",
                    question.name, question.type, upstream, exc,
                )
                logger.debug("Received: %r", reply)
                continue

            if answers:
                query.answers = answers
                header.ancount = len(answers)
                now = time.time()
                for answer in answers:
                    self.cache.set(question.name, Record(answer.type, now + answer.ttl, answer.data))
            break

        return query

    @staticmethod
    def _reachable(upstream: str) -> bool:
        return is_valid_ip(upstream) and ":" not in upstream

    def _ask(self, upstream: str, payload: bytes) -> Optional[bytes]:
        """Send ``payload`` to one upstream server and return its reply, if any."""
        if not self._reachable(upstream):
            logger.warning("Error: invalid upstream address %r", upstream)
            return None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as exc:
            logger.warning("Error %s", exc)
            return None
        with sock:
            try:
                sock.connect((upstream, self.upstream_port))
                sock.send(payload)
                sock.settimeout(self.timeout)
                return sock.recv(MAX_UDP_SIZE)
            except OSError as exc:
                logger.warning("Error %s", exc)
                return None