"""Parsing of hosts files into address and host-name records."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Union

_MAX_LINE_LENGTH = 64 * 1024 - 1
_MIN_LINE_LENGTH = 6
_MAX_LONG_IP = 4294967295

_WORD_SEPARATORS = re.compile(rb"[ \t]+")
_IPV4 = re.compile(rb"([0-9]+)\.([0-9]+)\.([0-9]+)\.([0-9]+)")
_HOSTNAME = re.compile(
    rb"((-?)(xn--|_)?[a-z0-9\-_]{0,61}[a-z0-9\-_]\.)*"
    rb"(xn--)?([a-z0-9][a-z0-9\-]{0,60}|[a-z0-9\-]{1,30}\.[a-z]{2,})",
    re.IGNORECASE,
)
_DECIMAL_FLOAT = re.compile(rb"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_HEX_FLOAT = re.compile(
    rb"[+-]?0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)[pP][+-]?[0-9]+"
)
_SPECIAL_FLOAT = re.compile(rb"[+-]?(?:infinity|inf)|nan", re.IGNORECASE)

Source = Union[str, bytes, bytearray, Iterable[Union[str, bytes]]]


@dataclass
class Record:
    """One hosts file line: an address and the host names bound to it."""

    ip: str
    host: str
    additional_hosts: list[str] = field(default_factory=list)


def is_valid_hostname(name: str | bytes) -> bool:
    """Tell whether the value looks like a usable host name."""
    if isinstance(name, str):
        try:
            name = name.encode("ascii")
        except UnicodeEncodeError:
            return False
    return _HOSTNAME.fullmatch(name) is not None


def parse(source: Source) -> list[Record]:
    """Parse hosts file content and return its records in source order.

    The source may be text, bytes or an iterable of lines (an open file).
    Raises ValueError when a line is too long to be read.
    """
    records = []
    for line in _lines(source):
        if len(line) > _MAX_LINE_LENGTH:
            raise ValueError("token too long")
        if line.endswith(b"\r"):
            line = line[:-1]
        record = _parse_line(line)
        if record is not None:
            records.append(record)
    return records


def _lines(source: Source) -> Iterator[bytes]:
    if isinstance(source, str):
        source = source.encode("utf-8")
    if isinstance(source, (bytes, bytearray)):
        chunks = bytes(source).split(b"\n")
        if chunks and not chunks[-1]:
            chunks.pop()
        yield from chunks
        return
    for chunk in source:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        yield chunk[:-1] if chunk.endswith(b"\n") else chunk


def _parse_line(line: bytes) -> Record | None:
    if len(line) < _MIN_LINE_LENGTH or line.startswith(b"#"):
        return None

    words = [word for word in _WORD_SEPARATORS.split(line) if word]
    if not words or words[0].startswith(b"#"):
        return None

    ip = words[0].decode("ascii") if _is_ip(words[0]) else None
    hosts: list[str] = []
    for word in words[1:]:
        if word.startswith(b"#"):  # comment at the end of the line
            break
        if ip is not None and is_valid_hostname(word):
            hosts.append(word.decode("ascii"))

    if ip is None or not hosts:
        return None
    return Record(ip=ip, host=hosts[0], additional_hosts=hosts[1:])


def _is_ip(word: bytes) -> bool:
    return (
        (b"." in word and _is_ipv4(word))
        or (b":" in word and _is_ipv6(word))
        or _is_long_ip(word)
    )


def _is_ipv4(word: bytes) -> bool:
    match = _IPV4.fullmatch(word)
    return match is not None and all(int(octet) <= 0xFF for octet in match.groups())


def _is_ipv6(word: bytes) -> bool:
    try:
        text = word.decode("ascii")
    except UnicodeDecodeError:
        return False
    if "%" in text:
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _parse_float(word: bytes) -> float | None:
    if _DECIMAL_FLOAT.fullmatch(word) or _SPECIAL_FLOAT.fullmatch(word):
        return float(word)
    if _HEX_FLOAT.fullmatch(word):
        try:
            return float.fromhex(word.decode("ascii"))
        except OverflowError:
            return None
    return None


def _is_long_ip(word: bytes) -> bool:
    value = _parse_float(word)
    if value is None:
        return False
    return not (value < 0 or value > _MAX_LONG_IP)