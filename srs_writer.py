#!/usr/bin/env python3
# filename: srs_writer.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Writer for sing-box binary rule-sets (.srs, version 1).

Layout:
    "SRS" magic (3 bytes) + version (uint8)
    zlib stream:
        uvarint rule count
        per rule: type (uint8, 0 = default)
                  items: item type (uint8) + payload, repeated
                  0xFF final marker + invert flag (uint8)

An ip_cidr item (type 6) carries an IP set: set version (uint8, 1),
range count (uint64 BE), then per merged range the first and last address,
each as uvarint length + raw bytes. IPv4 ranges sort before IPv6.
"""

import struct
import zlib
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from netaddr import AddrFormatError, IPNetwork, IPSet

from errors import EncodeError
from utils import atomic_write, get_logger

logger = get_logger("SRSWriter")

MAGIC = b'SRS'
RULE_SET_VERSION = 1

RULE_TYPE_DEFAULT = 0
RULE_ITEM_IP_CIDR = 6
RULE_ITEM_FINAL = 0xFF

IP_SET_VERSION = 1


@dataclass
class HeadlessRule:
    ip_cidr: List[str] = field(default_factory=list)
    invert: bool = False


def build_rule_set(networks: Sequence) -> List[HeadlessRule]:
    """A rule-set holding one default rule that matches every network."""
    return [HeadlessRule(ip_cidr=[str(net) for net in networks])]


def write_uvarint(buf: bytearray, value: int) -> None:
    while value >= 0x80:
        buf.append((value & 0x7F) | 0x80)
        value >>= 7
    buf.append(value)


def merged_ranges(cidrs: Sequence[str]) -> List[Tuple[int, int, int]]:
    """(version, first, last) spans with overlapping or adjacent networks joined."""
    try:
        ip_set = IPSet(IPNetwork(cidr) for cidr in cidrs)
    except (AddrFormatError, ValueError) as e:
        raise EncodeError(f"Invalid CIDR in rule-set: {e}") from e

    ranges: List[Tuple[int, int, int]] = []
    for cidr in sorted(ip_set.iter_cidrs(), key=lambda c: (c.version, c.first)):
        if ranges and ranges[-1][0] == cidr.version and cidr.first <= ranges[-1][2] + 1:
            version, first, last = ranges[-1]
            ranges[-1] = (version, first, max(last, cidr.last))
        else:
            ranges.append((cidr.version, cidr.first, cidr.last))
    return ranges


def _encode_ip_set(buf: bytearray, cidrs: Sequence[str]) -> None:
    ranges = merged_ranges(cidrs)

    buf.append(IP_SET_VERSION)
    buf.extend(struct.pack('!Q', len(ranges)))
    for version, first, last in ranges:
        width = 4 if version == 4 else 16
        for value in (first, last):
            write_uvarint(buf, width)
            buf.extend(value.to_bytes(width, 'big'))


def _encode_rule(buf: bytearray, rule: HeadlessRule) -> None:
    buf.append(RULE_TYPE_DEFAULT)
    if rule.ip_cidr:
        buf.append(RULE_ITEM_IP_CIDR)
        _encode_ip_set(buf, rule.ip_cidr)
    buf.append(RULE_ITEM_FINAL)
    buf.append(1 if rule.invert else 0)


def encode_rule_set(rules: Sequence[HeadlessRule]) -> bytes:
    body = bytearray()
    write_uvarint(body, len(rules))
    for rule in rules:
        _encode_rule(body, rule)

    return MAGIC + struct.pack('!B', RULE_SET_VERSION) + zlib.compress(bytes(body), 9)


def write_rule_set(path, networks: Sequence) -> bytes:
    data = encode_rule_set(build_rule_set(networks))
    try:
        atomic_write(path, data)
    except OSError as e:
        raise EncodeError(f"Cannot write {path}: {e}") from e
    logger.info(f"write {path}")
    return data
