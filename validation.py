#!/usr/bin/env python3
# filename: validation.py
"""
Small value validators used by the configuration layer.
"""

import re
from urllib.parse import urlparse

_COUNTRY_RE = re.compile(r'^[a-z]{2}$')
_REPO_RE = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')


def is_valid_country_code(value) -> bool:
    """Lowercase ISO 3166-1 alpha-2 style code."""
    return isinstance(value, str) and bool(_COUNTRY_RE.match(value))


def is_valid_repo(value) -> bool:
    """GitHub 'owner/name' slug."""
    return isinstance(value, str) and bool(_REPO_RE.match(value))


def is_valid_source(value) -> bool:
    """http(s) or file URL, or a plain local path."""
    if not isinstance(value, str) or not value.strip():
        return False
    parsed = urlparse(value)
    if parsed.scheme in ('http', 'https'):
        return bool(parsed.netloc)
    return parsed.scheme in ('', 'file')
