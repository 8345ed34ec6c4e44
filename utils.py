#!/usr/bin/env python3
# filename: utils.py
# -----------------------------------------------------------------------------
# Project: GeoIP Rule-Set Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Shared logging and file helpers.
"""

import logging
import os
import tempfile
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '[%(asctime)s] %(message)s'
LOG_DATEFMT = '%H:%M:%S'

ROOT_LOGGER = "GeoIPBuilder"


def get_logger(name: str) -> logging.Logger:
    """Return a component logger under the builder's root logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: str = "INFO", stream: Optional[object] = None) -> logging.Logger:
    """Configure the root builder logger once per process."""
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        root.addHandler(handler)

    return root


def atomic_write(path, data: bytes) -> None:
    """Write data to path via a temp file in the same directory and os.replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
