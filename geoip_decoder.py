#!/usr/bin/env python3
# filename: geoip_decoder.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Decodes a MaxMind DB (Country.mmdb) into a country range map.

Every leaf network is keyed by its registered country ISO code, lower-cased.
The reader's network walk visits each canonical network once and skips the
IPv4 aliases of an IPv6 tree, so IPv4 ranges come back as IPv4Network.
"""

import io
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import maxminddb

from country_map import CountryRangeMap, group_by_country
from errors import DecodeError, SourceUnavailableError
from utils import get_logger

logger = get_logger("GeoIPDecoder")


@dataclass(frozen=True)
class BuildMetadata:
    """Addressing parameters carried from the source tree into the output trees"""
    ip_version: int = 6
    record_size: int = 24
    database_type: str = "geoip"
    languages: Tuple[str, ...] = ()
    build_epoch: int = 0

    @classmethod
    def from_reader(cls, metadata) -> "BuildMetadata":
        return cls(
            ip_version=int(metadata.ip_version),
            record_size=int(metadata.record_size),
            database_type=str(metadata.database_type),
            languages=tuple(metadata.languages or ()),
            build_epoch=int(metadata.build_epoch),
        )


def _country_code(record) -> Optional[str]:
    # trees this tool writes hold the bare code; upstream trees hold a country record
    if isinstance(record, str):
        return record.lower() or None
    if not isinstance(record, dict):
        return None
    country = record.get('registered_country')
    if not isinstance(country, dict):
        return None
    code = country.get('iso_code')
    if not code:
        return None
    return str(code).lower()


def _decode(database, mode, name: str) -> Tuple[BuildMetadata, CountryRangeMap]:
    logger.info(f"  🔍 Extracting networks from {name}...")
    started = time.time()
    pairs = []
    unassigned = 0

    try:
        with maxminddb.open_database(database, mode=mode) as reader:
            metadata = BuildMetadata.from_reader(reader.metadata())
            for network, record in reader:
                code = _country_code(record)
                if code is None:
                    unassigned += 1
                    continue
                pairs.append((code, network))
    except maxminddb.InvalidDatabaseError as e:
        raise DecodeError(f"Invalid MMDB {name}: {e}") from e
    except (ValueError, LookupError, TypeError) as e:
        raise DecodeError(f"Failed walking MMDB {name}: {e}") from e

    country_map = group_by_country(pairs)

    if unassigned:
        logger.debug(f"     {unassigned} networks without a registered country skipped")
    logger.info(f"     IPv{metadata.ip_version}, record size {metadata.record_size}: "
                f"{len(pairs):,} networks in {len(country_map)} countries "
                f"({time.time() - started:.1f}s)")

    return metadata, country_map


def decode_mmdb_file(path) -> Tuple[BuildMetadata, CountryRangeMap]:
    """
    Decode an MMDB file on disk.

    Raises DecodeError if the file is not a valid database or the walk
    fails part way; no partial map is returned.
    """
    path = Path(path)
    if not path.is_file():
        raise SourceUnavailableError(f"MMDB file not found: {path}")
    return _decode(str(path), maxminddb.MODE_MEMORY, path.name)


def decode_mmdb(data: bytes) -> Tuple[BuildMetadata, CountryRangeMap]:
    """Decode raw MMDB bytes (e.g. a downloaded release asset)."""
    if not data:
        raise DecodeError("Empty MMDB payload")
    return _decode(io.BytesIO(data), maxminddb.MODE_FD, "payload")
