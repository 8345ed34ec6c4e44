#!/usr/bin/env python3
# filename: country_map.py
"""
Country range map: networks grouped by lowercase country code.

The map is populated by the decoder and changed only by apply_override,
which replaces one code's list outright.
"""

import ipaddress
from collections import defaultdict
from typing import Dict, Iterable, List, Sequence, Tuple, Union

from utils import get_logger

logger = get_logger("CountryMap")

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
CountryRangeMap = Dict[str, List[IPNetwork]]

DEFAULT_OVERRIDE_CODE = "cn"


def group_by_country(pairs: Iterable[Tuple[str, IPNetwork]]) -> CountryRangeMap:
    grouped = defaultdict(list)
    for code, network in pairs:
        grouped[code].append(network)
    return dict(grouped)


def sorted_codes(country_map: CountryRangeMap) -> List[str]:
    return sorted(country_map)


def count_networks(country_map: CountryRangeMap) -> int:
    return sum(len(networks) for networks in country_map.values())


def apply_override(country_map: CountryRangeMap, code: str,
                   replacement: Sequence[IPNetwork]) -> CountryRangeMap:
    """
    Return a copy of country_map with code's ranges replaced by replacement.

    The previous ranges for code are discarded, never merged. An empty
    replacement keeps code as a key with no ranges.
    """
    result = {key: list(networks) for key, networks in country_map.items()}
    previous = len(result.get(code, []))
    result[code] = list(replacement)
    logger.info(f"  🔁 Override '{code}': {previous} -> {len(result[code])} ranges")
    return result


def find_overlaps(country_map: CountryRangeMap,
                  limit: int = 0) -> List[Tuple[str, IPNetwork, str, IPNetwork]]:
    """
    Find networks of different codes that share addresses.

    Returns (code_a, net_a, code_b, net_b) tuples, net_a starting first.
    A sweep per address family compares each network against the
    furthest-reaching one seen so far. limit > 0 stops early.
    """
    overlaps = []

    for version in (4, 6):
        spans = sorted(
            (int(net.network_address), int(net.broadcast_address), code, net)
            for code, networks in country_map.items()
            for net in networks
            if net.version == version
        )

        reach = None
        for first, last, code, net in spans:
            if reach is not None and first <= reach[1] and code != reach[2]:
                overlaps.append((reach[2], reach[3], code, net))
                if limit and len(overlaps) >= limit:
                    return overlaps
            if reach is None or last > reach[1]:
                reach = (first, last, code, net)

    return overlaps
