#!/usr/bin/env python3
# filename: build_geoip.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Builds geoip.db, a single-country database and per-country rule-sets.

Pipeline:
    fetch Country.mmdb -> decode -> override one country from CIDR lists
    -> compile full MMDB + single-country MMDB
    -> geoip-<code>.{srs,txt,list,yaml,snippet} for every code, in order
"""

import os
import shutil
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from cidr_sources import read_cidr_sources
from config_validator import BuildConfig, ConfigValidationError, load_config
from country_map import CountryRangeMap, apply_override, count_networks, find_overlaps, sorted_codes
from errors import GeoIPBuildError, SourceUnavailableError
from geoip_compiler import TrieBuildOptions, write_mmdb
from geoip_decoder import BuildMetadata, decode_mmdb, decode_mmdb_file
from release import Release, ReleaseClient, is_up_to_date, set_action_output
from rule_formats import rule_file_name, write_rule_file
from srs_writer import write_rule_set
from utils import get_logger, setup_logging

logger = get_logger("Builder")

OVERLAP_SAMPLES = 5


@dataclass
class BuildResult:
    skipped: bool = False
    tag: Optional[str] = None
    codes: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


# ============================================================================
# PHASE 1: Source
# ============================================================================

def _load_source(config: BuildConfig, client: ReleaseClient,
                 result: BuildResult) -> Optional[Tuple[BuildMetadata, CountryRangeMap]]:
    """Decoded source database, or None when the destination is already current."""
    if config.input_path:
        logger.info(f"Using local database {config.input_path}")
        return decode_mmdb_file(config.input_path)

    source_release = client.fetch_release(config.source_repo, config.fixed_release)
    result.tag = source_release.name

    destination_release: Optional[Release] = None
    if config.destination_repo:
        try:
            destination_release = client.fetch_release(config.destination_repo, config.fixed_release)
        except SourceUnavailableError as e:
            logger.warning(f"missing destination latest release: {e}")

    if not config.no_skip and is_up_to_date(source_release, destination_release):
        logger.info("already latest")
        return None

    binary = client.download_asset(source_release, config.asset_name)
    return decode_mmdb(binary)


def _report_overlaps(country_map: CountryRangeMap):
    overlaps = find_overlaps(country_map, limit=OVERLAP_SAMPLES)
    if not overlaps:
        return
    logger.warning(f"Ranges of different countries overlap; later codes win "
                   f"(first {len(overlaps)} shown)")
    for code_a, net_a, code_b, net_b in overlaps:
        logger.warning(f"     {code_a} {net_a} <> {code_b} {net_b}")


# ============================================================================
# PHASE 2: Artifacts
# ============================================================================

def write_rule_sets(directory: str, country_map: CountryRangeMap, formats) -> List[str]:
    """Recreate directory and write every code's rule-set files, codes ascending."""
    if os.path.isdir(directory):
        shutil.rmtree(directory)
    os.makedirs(directory, mode=0o755, exist_ok=True)

    written = []
    for code in sorted_codes(country_map):
        networks = country_map[code]
        srs_path = os.path.abspath(os.path.join(directory, rule_file_name(code, 'srs')))
        write_rule_set(srs_path, networks)
        written.append(srs_path)
        for fmt in formats:
            written.append(write_rule_file(directory, code, fmt, networks))
    return written


def run_build(config: BuildConfig, client: Optional[ReleaseClient] = None) -> BuildResult:
    """
    Run one build. Fatal problems raise GeoIPBuildError subclasses; artifacts
    completed before the failure are left in place.
    """
    client = client or ReleaseClient(token=config.access_token, timeout=config.timeout)
    result = BuildResult()

    source = _load_source(config, client, result)
    if source is None:
        result.skipped = True
        set_action_output("skip", "true")
        return result
    metadata, country_map = source

    override = read_cidr_sources(config.override_sources, timeout=config.timeout)
    country_map = apply_override(country_map, config.override_code, override.networks)
    _report_overlaps(country_map)

    result.codes = sorted_codes(country_map)
    logger.info(f"  📊 {count_networks(country_map):,} networks in {len(result.codes)} countries")

    write_mmdb(config.output, country_map, TrieBuildOptions.from_metadata(metadata))
    result.files.append(os.path.abspath(config.output))

    write_mmdb(config.country_output, country_map,
               TrieBuildOptions.from_metadata(metadata, codes=[config.override_code]))
    result.files.append(os.path.abspath(config.country_output))

    result.files.extend(write_rule_sets(config.rule_set_output, country_map, config.formats))

    if result.tag:
        set_action_output("tag", result.tag)
    logger.info(f"✓ Build complete: {len(result.files)} files")
    return result


def _parse_args(argv):
    import argparse
    parser = argparse.ArgumentParser(description="GeoIP database and rule-set builder")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--input", help="Local source .mmdb (skips release download)")
    parser.add_argument("--source", help="Upstream GitHub repository (owner/name)")
    parser.add_argument("--destination", help="Repository whose release marks the last build")
    parser.add_argument("--asset", help="Release asset to download")
    parser.add_argument("--tag", help="Use this release tag instead of the latest")
    parser.add_argument("--no-skip", action="store_true", default=None,
                        help="Build even if the destination release is current")
    parser.add_argument("--override-code", help="Country code replaced from CIDR lists")
    parser.add_argument("--override-source", action="append",
                        help="CIDR list URL or path (repeatable)")
    parser.add_argument("--output", help="Full database output path")
    parser.add_argument("--country-output", help="Single-country database output path")
    parser.add_argument("--rule-set-output", help="Rule-set output directory")
    parser.add_argument("--format", action="append", dest="formats",
                        help="Text rule format (repeatable)")
    parser.add_argument("--timeout", type=float, help="Network timeout in seconds")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return parser.parse_args(argv)


def _overrides_from_args(args) -> dict:
    return {
        'logging': {'level': args.log_level},
        'release': {
            'source': args.source,
            'destination': args.destination,
            'asset': args.asset,
            'fixed_release': args.tag,
            'no_skip': args.no_skip,
        },
        'input': {'mmdb_path': args.input},
        'override': {
            'code': args.override_code,
            'sources': args.override_source,
            'timeout': args.timeout,
        },
        'output': {
            'database': args.output,
            'country_database': args.country_output,
            'rule_set_dir': args.rule_set_output,
            'formats': args.formats,
        },
    }


def main(argv=None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level or "INFO")

    try:
        config = load_config(_overrides_from_args(args), config_path=args.config)
    except ConfigValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    setup_logging(config.log_level)

    try:
        run_build(config)
    except GeoIPBuildError as e:
        logger.error(f"Build failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
