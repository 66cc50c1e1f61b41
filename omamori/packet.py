"""DNS message encoding and decoding for single-question queries."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

_HEADER = struct.Struct(">6H")
_TYPE_CLASS = struct.Struct(">HH")
_RR_FIXED = struct.Struct(">HHIH")

HEADER_SIZE = _HEADER.size
MAX_LABEL_LENGTH = 63
_POINTER_MASK = 0xC0
_TEXT_ERRORS = "surrogateescape"


class PacketError(ValueError):
    """Raised when a DNS message cannot be encoded or decoded."""


def _pack(packer: struct.Struct, *values: int) -> bytes:
    try:
        return packer.pack(*values)
    except struct.error as exc:
        raise PacketError(str(exc)) from exc


def _label_bytes(label: str) -> bytes:
    raw = label.encode("utf-8", _TEXT_ERRORS)
    if len(raw) > MAX_LABEL_LENGTH:
        raise PacketError("label too long")
    return raw


@dataclass
class Header:
    """The fixed twelve-byte DNS header."""

    id: int = 0
    flags: int = 0
    qdcount: int = 0
    ancount: int = 0
    nscount: int = 0
    arcount: int = 0

    def encode(self) -> bytes:
        return _pack(
            _HEADER,
            self.id,
            self.flags,
            self.qdcount,
            self.ancount,
            self.nscount,
            self.arcount,
        )


@dataclass
class Question:
    """A question entry: name, type and class."""

    name: str
    type: int = 1
    qclass: int = 1

    def encode(self) -> bytes:
        out = bytearray()
        for label in self.name.split("."):
            raw = _label_bytes(label)
            out.append(len(raw))
            out += raw
        out.append(0)
        out += _pack(_TYPE_CLASS, self.type, self.qclass)
        return bytes(out)


@dataclass
class Answer:
    """A resource record with its name kept as raw wire bytes."""

    name: bytes
    type: int
    rclass: int
    ttl: int
    length: int
    data: bytes

    def encode(self) -> bytes:
        fixed = _pack(_RR_FIXED, self.type, self.rclass, self.ttl, self.length)
        return bytes(self.name) + fixed + bytes(self.data)


@dataclass
class Query:
    """A DNS message with one question and any number of answers."""

    header: Header
    question: Question
    answers: list[Answer] = field(default_factory=list)

    def encode(self) -> bytes:
        parts = [self.header.encode(), self.question.encode()]
        parts.extend(answer.encode() for answer in self.answers)
        return b"".join(parts)


def encode_domain_name(name: str) -> bytes:
    """Encode a dotted name as length-prefixed labels, skipping empty ones."""
    out = bytearray()
    for label in name.split("."):
        if not label:
            continue
        raw = _label_bytes(label)
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def decode_header(data: bytes) -> Header:
    if len(data) < HEADER_SIZE:
        raise PacketError("malformed DNS header")
    return Header(*_HEADER.unpack_from(data, 0))


def decode_question(data: bytes, offset: int) -> Question:
    """Decode the question that starts at ``offset``."""
    labels: list[str] = []
    while True:
        if offset >= len(data):
            raise PacketError("malformed DNS question")
        length = data[offset]
        offset += 1
        if length == 0:
            break
        if offset + length > len(data):
            raise PacketError("malformed DNS question")
        labels.append(data[offset:offset + length].decode("utf-8", _TEXT_ERRORS))
        offset += length
    if offset + _TYPE_CLASS.size > len(data):
        raise PacketError("malformed DNS question")
    qtype, qclass = _TYPE_CLASS.unpack_from(data, offset)
    return Question(".".join(labels), qtype, qclass)


def decode_query(data: bytes) -> Query:
    """Decode a query's header and its first question."""
    header = decode_header(data)
    question = decode_question(data, HEADER_SIZE)
    return Query(header, question)


def _skip_name(data: bytes, offset: int) -> int:
    while offset < len(data):
        length = data[offset]
        if length == 0:
            return offset + 1
        if length >= _POINTER_MASK:
            return offset + 2
        offset += 1 + length
    return offset


def decode_answers(data: bytes) -> list[Answer]:
    """Decode the answer section of a response."""
    if len(data) < HEADER_SIZE:
        raise PacketError("invalid DNS response")
    ancount = decode_header(data).ancount
    if ancount == 0:
        raise PacketError("no answers in DNS response")

    offset = _skip_name(data, HEADER_SIZE) + _TYPE_CLASS.size
    answers: list[Answer] = []
    for _ in range(ancount):
        if offset >= len(data):
            raise PacketError("truncated DNS answer")
        if data[offset] >= _POINTER_MASK:
            name_end = offset + 2
        else:
            name_end = _skip_name(data, offset)
        name = bytes(data[offset:name_end])
        offset = name_end

        if offset + _RR_FIXED.size > len(data):
            raise PacketError("truncated DNS answer")
        rtype, rclass, ttl, length = _RR_FIXED.unpack_from(data, offset)
        offset += _RR_FIXED.size

        if offset + length > len(data):
            raise PacketError("incomplete DNS answer data")
        answers.append(
            Answer(name, rtype, rclass, ttl, length, bytes(data[offset:offset + length]))
        )
        offset += length
    return answers