#!/usr/bin/env python3
# filename: geoip_compiler.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Compiles a country range map into a MaxMind DB.

Codes are inserted in ascending order and a later insertion replaces
earlier data for the addresses it covers, so where two codes overlap the
lexicographically later code wins. Each leaf holds the lowercase country
code as a plain string.

The output carries the build epoch and (at least) the record size of the
source database, so identical input always yields identical bytes.
"""

import os
import struct
import tempfile
import time
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from mmdb_writer import MMDBWriter, TreeWriter
from netaddr import AddrFormatError, IPNetwork, IPSet

from country_map import CountryRangeMap
from errors import EncodeError
from geoip_decoder import BuildMetadata
from utils import atomic_write, get_logger

logger = get_logger("GeoIPCompiler")

RECORD_SIZES = (24, 28, 32)


@dataclass(frozen=True)
class TrieBuildOptions:
    ip_version: int = 6
    record_size: int = 24
    codes: Tuple[str, ...] = ()
    database_type: str = "geoip"
    description: str = "geoip"
    build_epoch: int = 0

    @classmethod
    def from_metadata(cls, metadata: BuildMetadata, codes: Iterable[str] = ()) -> "TrieBuildOptions":
        return cls(
            ip_version=metadata.ip_version,
            record_size=metadata.record_size,
            codes=tuple(codes),
            build_epoch=metadata.build_epoch,
        )

    def ordered_codes(self, country_map: CountryRangeMap) -> List[str]:
        """Codes to write, sorted; an empty filter keeps every code in the map."""
        if self.codes:
            return sorted(set(self.codes))
        return sorted(country_map)


class _SizedTreeWriter(TreeWriter):
    """Tree writer whose records are never narrower than min_record_size."""

    def __init__(self, *args, min_record_size: int = 24, **kwargs):
        super().__init__(*args, **kwargs)
        self.min_record_size = min_record_size

    def _adjust_record_size(self) -> None:
        super()._adjust_record_size()
        if self.record_size < self.min_record_size:
            self.record_size = self.min_record_size
            self.data_offset = self.record_size * 2 / 8 * self._node_counter


class _PinnedMMDBWriter(MMDBWriter):
    """MMDB writer with a fixed build epoch and a minimum record size."""

    def __init__(self, *args, build_epoch: int = 0, record_size: int = 24, **kwargs):
        super().__init__(*args, **kwargs)
        self.build_epoch = build_epoch
        self.record_size = record_size

    def _build_meta(self):
        meta = super()._build_meta()
        meta["build_epoch"] = self.build_epoch
        return meta

    def to_db_file(self, filename: str) -> None:
        _SizedTreeWriter(self.tree, self._build_meta(), self.int_type, self.float_type,
                         min_record_size=self.record_size).write(filename)


class GeoIPCompiler:
    def __init__(self, options: TrieBuildOptions):
        if options.ip_version not in (4, 6):
            raise EncodeError(f"Unsupported IP version {options.ip_version}")
        if options.record_size not in RECORD_SIZES:
            raise EncodeError(f"Unsupported record size {options.record_size}")
        self.options = options
        self.inserted = 0

    def _new_writer(self, codes: List[str]) -> MMDBWriter:
        # IPv4 ranges live once at ::/96 of an IPv6 tree, without aliases
        return _PinnedMMDBWriter(
            ip_version=self.options.ip_version,
            database_type=self.options.database_type,
            languages=list(codes),
            description=self.options.description,
            ipv4_compatible=self.options.ip_version == 6,
            build_epoch=self.options.build_epoch,
            record_size=self.options.record_size,
        )

    def _insert(self, writer: MMDBWriter, code: str, network) -> None:
        try:
            cidr = IPNetwork(str(network))
            # the writer needs at least one bit of path; /0 goes in as two /1 halves
            parts = list(cidr.subnet(1)) if cidr.prefixlen == 0 else [cidr]
            for part in parts:
                writer.insert_network(IPSet([part]), code)
        except (AddrFormatError, ValueError, TypeError, IndexError) as e:
            raise EncodeError(f"Cannot insert {network} for '{code}': {e}") from e
        self.inserted += 1

    def _serialize(self, writer: MMDBWriter) -> bytes:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "output.mmdb")
            try:
                writer.to_db_file(path)
            except (ValueError, OverflowError, struct.error, OSError) as e:
                raise EncodeError(f"Failed serializing MMDB: {e}") from e
            with open(path, 'rb') as f:
                return f.read()

    def compile(self, country_map: CountryRangeMap) -> bytes:
        codes = self.options.ordered_codes(country_map)
        writer = self._new_writer(codes)
        started = time.time()

        for code in codes:
            for network in country_map.get(code, ()):
                self._insert(writer, code, network)

        data = self._serialize(writer)
        logger.info(f"  💾 {self.inserted:,} networks, {len(codes)} codes -> "
                    f"{len(data) / 1024:.1f} KiB ({time.time() - started:.1f}s)")
        return data


def encode_mmdb(country_map: CountryRangeMap, options: TrieBuildOptions) -> bytes:
    return GeoIPCompiler(options).compile(country_map)


def write_mmdb(path, country_map: CountryRangeMap, options: TrieBuildOptions) -> bytes:
    """Encode and write the database; nothing is written if encoding fails."""
    data = encode_mmdb(country_map, options)
    try:
        atomic_write(path, data)
    except OSError as e:
        raise EncodeError(f"Cannot write {path}: {e}") from e
    logger.info(f"write {os.path.abspath(path)}")
    return data
