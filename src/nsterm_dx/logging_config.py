"""
Logging setup, called once by the CLI group.

Every module does ``logger = logging.getLogger(__name__)`` and inherits this
config. Level precedence: --debug > -v > NSTERM_DX_LOG_LEVEL > WARNING.
Reports go to stdout; log records go to stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_FMT_MINIMAL = "%(levelname)s: %(message)s"
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d - %(message)s"
_DATEFMT = "%H:%M:%S"


def resolve_level(verbose: bool = False, debug: bool = False, env_level: Optional[str] = None) -> int:
    """Pick the numeric level from CLI flags, falling back to the environment."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    name = (env_level or os.environ.get("NSTERM_DX_LOG_LEVEL") or "WARNING").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(level: int = logging.WARNING) -> None:
    """Install a single stderr handler on the root logger."""
    if level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT
    elif level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
