#!/usr/bin/env python3
# filename: errors.py
"""
Error taxonomy for the GeoIP build.

SourceUnavailableError, DecodeError and EncodeError are fatal and abort the
run. MalformedLineError is raised for a single bad CIDR line and is always
recovered by the reader.
"""


class GeoIPBuildError(Exception):
    """Base class for build failures"""
    pass


class SourceUnavailableError(GeoIPBuildError):
    """A required remote or local input could not be retrieved"""
    pass


class DecodeError(GeoIPBuildError):
    """Input MMDB bytes are not a readable database"""
    pass


class EncodeError(GeoIPBuildError):
    """Inserting into or serializing an output artifact failed"""
    pass


class MalformedLineError(GeoIPBuildError):
    """A single CIDR line could not be parsed"""

    def __init__(self, line: str, reason: str = ""):
        self.line = line
        self.reason = reason
        super().__init__(f"Invalid CIDR: {line!r}" + (f" ({reason})" if reason else ""))
