#!/usr/bin/env python3
# filename: config_validator.py
# Version: 1.0.0
"""
Build configuration: defaults, loading and validation.

The configuration is assembled once at process start (defaults, then the
environment, then an optional JSON file, then command-line values) and
handed to the pipeline as an explicit BuildConfig.
"""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import orjson as json

from cidr_sources import DEFAULT_OVERRIDE_SOURCES, DEFAULT_TIMEOUT
from rule_formats import DEFAULT_FORMATS, available_formats
from utils import get_logger
from validation import is_valid_country_code, is_valid_repo, is_valid_source

logger = get_logger("ConfigValidator")

DEFAULT_CONFIG: Dict[str, Any] = {
    'logging': {
        'level': 'INFO',
    },
    'release': {
        'source': 'Dreamacro/maxmind-geoip',
        'destination': 'caocaocc/geoip',
        'asset': 'Country.mmdb',
        'fixed_release': None,
        'access_token': None,
        'no_skip': False,
    },
    'input': {
        'mmdb_path': None,
    },
    'override': {
        'code': 'cn',
        'sources': list(DEFAULT_OVERRIDE_SOURCES),
        'timeout': DEFAULT_TIMEOUT,
    },
    'output': {
        'database': 'geoip.db',
        'country_database': 'geoip-cn.db',
        'rule_set_dir': 'rule-set',
        'formats': list(DEFAULT_FORMATS),
    },
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass(frozen=True)
class BuildConfig:
    source_repo: str = DEFAULT_CONFIG['release']['source']
    destination_repo: Optional[str] = DEFAULT_CONFIG['release']['destination']
    asset_name: str = DEFAULT_CONFIG['release']['asset']
    fixed_release: Optional[str] = None
    access_token: Optional[str] = field(default=None, repr=False)
    no_skip: bool = False
    input_path: Optional[str] = None
    override_code: str = DEFAULT_CONFIG['override']['code']
    override_sources: Tuple[str, ...] = DEFAULT_OVERRIDE_SOURCES
    timeout: float = DEFAULT_TIMEOUT
    output: str = DEFAULT_CONFIG['output']['database']
    country_output: str = DEFAULT_CONFIG['output']['country_database']
    rule_set_output: str = DEFAULT_CONFIG['output']['rule_set_dir']
    formats: Tuple[str, ...] = DEFAULT_FORMATS
    log_level: str = 'INFO'

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "BuildConfig":
        release = config.get('release') or {}
        override = config.get('override') or {}
        sources = override['sources']
        if isinstance(sources, str):
            sources = [sources]
        output = config.get('output') or {}
        return cls(
            source_repo=release['source'],
            destination_repo=release.get('destination') or None,
            asset_name=release['asset'],
            fixed_release=release.get('fixed_release') or None,
            access_token=release.get('access_token') or None,
            no_skip=bool(release.get('no_skip')),
            input_path=(config.get('input') or {}).get('mmdb_path') or None,
            override_code=override['code'],
            override_sources=tuple(sources),
            timeout=float(override['timeout']),
            output=output['database'],
            country_output=output['country_database'],
            rule_set_output=output['rule_set_dir'],
            formats=tuple(output['formats']),
            log_level=(config.get('logging') or {}).get('level', 'INFO').upper(),
        )


class ConfigValidator:
    """Validates the build configuration for common errors and inconsistencies"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self, config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """
        Validate entire configuration.

        Returns:
            (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        if not isinstance(config, dict):
            self.errors.append("Configuration must be a dictionary")
            return False, self.errors, self.warnings

        self._validate_logging(config.get('logging', {}))
        self._validate_release(config.get('release', {}))
        self._validate_input(config.get('input', {}))
        self._validate_override(config.get('override', {}))
        self._validate_output(config.get('output', {}))

        is_valid = len(self.errors) == 0

        for err in self.errors:
            logger.error(f"config: {err}")
        for warn in self.warnings:
            logger.warning(f"config: {warn}")

        return is_valid, self.errors, self.warnings

    def _section(self, name: str, cfg: Any) -> bool:
        if not isinstance(cfg, dict):
            if cfg is not None:
                self.errors.append(f"{name}: Must be a dictionary")
            return False
        return True

    # =========================================================================
    # LOGGING SECTION
    # =========================================================================
    def _validate_logging(self, log_cfg: Dict[str, Any]):
        if not self._section('logging', log_cfg):
            return

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        level = log_cfg.get('level', 'INFO')
        if isinstance(level, str):
            if level.upper() not in valid_levels:
                self.errors.append(f"logging.level: Invalid level '{level}', must be one of {valid_levels}")
        else:
            self.errors.append(f"logging.level: Must be a string, got {type(level).__name__}")

    # =========================================================================
    # RELEASE SECTION
    # =========================================================================
    def _validate_release(self, release_cfg: Dict[str, Any]):
        if not self._section('release', release_cfg):
            return

        if not is_valid_repo(release_cfg.get('source')):
            self.errors.append(f"release.source: Invalid repository '{release_cfg.get('source')}' (expected owner/name)")

        destination = release_cfg.get('destination')
        if destination is not None and not is_valid_repo(destination):
            self.errors.append(f"release.destination: Invalid repository '{destination}' (expected owner/name)")

        asset = release_cfg.get('asset')
        if not isinstance(asset, str) or not asset:
            self.errors.append("release.asset: Must be a non-empty string")

        for str_key in ['fixed_release', 'access_token']:
            val = release_cfg.get(str_key)
            if val is not None and not isinstance(val, str):
                self.errors.append(f"release.{str_key}: Must be string")

        no_skip = release_cfg.get('no_skip')
        if no_skip is not None and not isinstance(no_skip, bool):
            self.errors.append(f"release.no_skip: Must be boolean, got {type(no_skip).__name__}")

    def _validate_input(self, input_cfg: Dict[str, Any]):
        if not self._section('input', input_cfg):
            return

        path = input_cfg.get('mmdb_path')
        if path is None:
            return
        if not isinstance(path, str):
            self.errors.append("input.mmdb_path: Must be string")
        elif not os.path.isfile(path):
            self.errors.append(f"input.mmdb_path: File '{path}' not found")

    # =========================================================================
    # OVERRIDE SECTION
    # =========================================================================
    def _validate_override(self, override_cfg: Dict[str, Any]):
        if not self._section('override', override_cfg):
            return

        code = override_cfg.get('code')
        if not is_valid_country_code(code):
            self.errors.append(f"override.code: Invalid country code '{code}' (two lowercase letters)")

        sources = override_cfg.get('sources')
        if isinstance(sources, str):
            sources = [sources]
        if not isinstance(sources, list):
            self.errors.append("override.sources: Must be a string or list")
        else:
            if not sources:
                self.warnings.append("override.sources: Empty, the override country will have no ranges")
            for source in sources:
                if not is_valid_source(source):
                    self.errors.append(f"override.sources: Invalid source '{source}'")

        timeout = override_cfg.get('timeout')
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            self.errors.append(f"override.timeout: Must be a positive number, got {timeout}")

    # =========================================================================
    # OUTPUT SECTION
    # =========================================================================
    def _validate_output(self, output_cfg: Dict[str, Any]):
        if not self._section('output', output_cfg):
            return

        for path_key in ['database', 'country_database', 'rule_set_dir']:
            val = output_cfg.get(path_key)
            if not isinstance(val, str) or not val:
                self.errors.append(f"output.{path_key}: Must be a non-empty string")

        if output_cfg.get('database') and output_cfg.get('database') == output_cfg.get('country_database'):
            self.errors.append("output.country_database: Must differ from output.database")

        formats = output_cfg.get('formats')
        if not isinstance(formats, list):
            self.errors.append("output.formats: Must be a list")
        else:
            known = available_formats()
            for fmt in formats:
                if fmt not in known:
                    self.errors.append(f"output.formats: Unknown format '{fmt}', must be one of {known}")
            if len(set(formats)) != len(formats):
                self.warnings.append("output.formats: Duplicate entries")


def validate_config(config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
    """
    Convenience function to validate configuration.

    Returns:
        (is_valid, errors, warnings)
    """
    validator = ConfigValidator()
    return validator.validate(config)


def _merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        elif value is not None:
            base[key] = value
    return base


def config_from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
    """ACCESS_TOKEN, FIXED_RELEASE and NO_SKIP, as used by the CI workflow."""
    return {
        'release': {
            'access_token': environ.get('ACCESS_TOKEN') or None,
            'fixed_release': environ.get('FIXED_RELEASE') or None,
            'no_skip': True if environ.get('NO_SKIP') == 'true' else None,
        },
    }


def load_config_file(path) -> Dict[str, Any]:
    try:
        with open(Path(path).expanduser(), 'rb') as f:
            data = json.loads(f.read())
    except OSError as e:
        raise ConfigValidationError([f"Cannot read config file {path}: {e}"]) from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError([f"Invalid JSON in {path}: {e}"]) from e

    if not isinstance(data, dict):
        raise ConfigValidationError([f"{path}: Top level must be an object"])
    return data


def load_config(overrides: Optional[Mapping[str, Any]] = None,
                environ: Optional[Mapping[str, str]] = None,
                config_path: Optional[str] = None) -> BuildConfig:
    """
    Assemble and validate the build configuration.

    Raises ConfigValidationError listing every problem found.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    _merge(config, config_from_environ(os.environ if environ is None else environ))
    if config_path:
        _merge(config, load_config_file(config_path))
    if overrides:
        _merge(config, overrides)

    is_valid, errors, _ = validate_config(config)
    if not is_valid:
        raise ConfigValidationError(errors)

    return BuildConfig.from_dict(config)
