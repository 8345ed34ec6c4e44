#!/usr/bin/env python3
# filename: cidr_sources.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Reader for plain-text CIDR lists (one network per line).

Lines are trimmed; blank lines and '#' comments are ignored. A line that is
not a valid CIDR is reported and skipped, it never aborts the read. Sources
are read in order and concatenated without de-duplication.
"""

import ipaddress
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence, Union
from urllib.parse import urlparse

from errors import MalformedLineError, SourceUnavailableError
from utils import get_logger

logger = get_logger("CidrSources")

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

CHNROUTES_URL = "https://raw.githubusercontent.com/misakaio/chnroutes2/master/chnroutes.txt"
CHINA6_URL = "https://raw.githubusercontent.com/gaoyifan/china-operator-ip/ip-lists/china6.txt"

DEFAULT_OVERRIDE_SOURCES = (CHNROUTES_URL, CHINA6_URL)

DEFAULT_TIMEOUT = 60.0
COMMENT_PREFIX = '#'


@dataclass
class CidrReadResult:
    networks: List[IPNetwork] = field(default_factory=list)
    skipped: int = 0

    def extend(self, other: "CidrReadResult"):
        self.networks.extend(other.networks)
        self.skipped += other.skipped


def parse_cidr_line(line: str) -> IPNetwork:
    """
    Parse 'address/prefix' into a network with host bits cleared.

    A bare address or a netmask-style suffix is rejected.
    """
    text = line.strip()
    if '/' not in text:
        raise MalformedLineError(line, "missing prefix length")

    address, prefix = text.split('/', 1)
    if not prefix.isdigit():
        raise MalformedLineError(line, "prefix length must be numeric")

    try:
        return ipaddress.ip_network(f"{address}/{int(prefix)}", strict=False)
    except ValueError as e:
        raise MalformedLineError(line, str(e)) from e


def parse_cidr_lines(lines: Iterable[str], source: str = "<input>") -> CidrReadResult:
    result = CidrReadResult()

    for lineno, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        try:
            result.networks.append(parse_cidr_line(line))
        except MalformedLineError as e:
            result.skipped += 1
            logger.warning(f"{source}:{lineno}: {e}")

    return result


def _fetch_text(source: str, timeout: float) -> str:
    scheme = urlparse(source).scheme

    try:
        if scheme in ('http', 'https', 'file'):
            logger.info(f"  ⬇ download {source}")
            with urllib.request.urlopen(source, timeout=timeout) as response:
                payload = response.read()
        else:
            with open(Path(source).expanduser(), 'rb') as f:
                payload = f.read()
    except (urllib.error.URLError, OSError, ValueError) as e:
        raise SourceUnavailableError(f"Cannot read CIDR source {source}: {e}") from e

    return payload.decode('utf-8', errors='replace')


def read_cidr_source(source: str, timeout: float = DEFAULT_TIMEOUT) -> CidrReadResult:
    text = _fetch_text(source, timeout)
    result = parse_cidr_lines(text.splitlines(), source=source)
    logger.info(f"     {source}: {len(result.networks)} networks, {result.skipped} skipped")
    return result


def read_cidr_sources(sources: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> CidrReadResult:
    """Read every source in order; any unreachable source fails the whole read."""
    combined = CidrReadResult()
    for source in sources:
        combined.extend(read_cidr_source(source, timeout=timeout))

    if combined.skipped:
        logger.warning(f"Skipped {combined.skipped} malformed CIDR line(s)")

    return combined
