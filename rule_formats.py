#!/usr/bin/env python3
# filename: rule_formats.py
"""
Plain-text rule-set formats.

Each emitter turns a list of networks into one text artifact. Emitters keep
the order they are given and never filter. New formats are added with
register_format() without touching the others.
"""

import os
from typing import Callable, Dict, List, Sequence

from country_map import IPNetwork
from errors import EncodeError
from utils import atomic_write, get_logger

logger = get_logger("RuleFormats")

Emitter = Callable[[Sequence[IPNetwork]], str]

FILE_PREFIX = "geoip-"


def _lines(lines) -> str:
    return "".join(f"{line}\n" for line in lines)


def emit_txt(networks: Sequence[IPNetwork]) -> str:
    return _lines(str(net) for net in networks)


def emit_list(networks: Sequence[IPNetwork]) -> str:
    return _lines(
        f"IP-CIDR,{net}" if net.version == 4 else f"IP-CIDR6,{net}"
        for net in networks
    )


def emit_yaml(networks: Sequence[IPNetwork]) -> str:
    return "payload:\n" + _lines(f"  - {net}" for net in networks)


def emit_snippet(networks: Sequence[IPNetwork]) -> str:
    return _lines(
        f"ip-cidr, {net}" if net.version == 4 else f"ip6-cidr, {net}"
        for net in networks
    )


EMITTERS: Dict[str, Emitter] = {
    'txt': emit_txt,
    'list': emit_list,
    'yaml': emit_yaml,
    'snippet': emit_snippet,
}

DEFAULT_FORMATS = tuple(EMITTERS)


def register_format(name: str, emitter: Emitter) -> None:
    if name in EMITTERS:
        raise ValueError(f"Format '{name}' already registered")
    EMITTERS[name] = emitter


def available_formats() -> List[str]:
    return list(EMITTERS)


def render(fmt: str, networks: Sequence[IPNetwork]) -> str:
    return EMITTERS[fmt](networks)


def rule_file_name(code: str, ext: str) -> str:
    return f"{FILE_PREFIX}{code}.{ext}"


def write_rule_file(directory, code: str, fmt: str, networks: Sequence[IPNetwork]) -> str:
    """Write geoip-<code>.<fmt> into directory and return its absolute path."""
    try:
        content = render(fmt, networks)
    except KeyError:
        raise EncodeError(f"Unknown rule format '{fmt}'") from None

    path = os.path.abspath(os.path.join(directory, rule_file_name(code, fmt)))
    try:
        atomic_write(path, content.encode('utf-8'))
    except OSError as e:
        raise EncodeError(f"Cannot write {path}: {e}") from e

    logger.info(f"write {path}")
    return path
