"""
cfgssa.config
=============

Tuning knobs for a whole-program analysis run, plus logging setup.

``AnalysisConfig`` also understands the string option protocol used by
extractor-style front ends: :meth:`AnalysisConfig.handle_option` for
``key=value`` options and :meth:`AnalysisConfig.handle_flag` for boolean
flags.  Both return ``False`` for keys they do not know, so a front end can
chain several option consumers.

Typical usage::

    from cfgssa.config import AnalysisConfig, configure_logging

    config = AnalysisConfig(min_field_accesses=1)
    config.handle_option("threads", "4")
    config.handle_flag("prune-call-graph", False)
    for warning in config.validate():
        print("config:", warning)
    configure_logging(config.verbosity)
"""

from __future__ import annotations

import enum
import logging
import sys
from dataclasses import dataclass
from typing import List

from cfgssa.errors import ConfigError, ErrorCodes


class Verbosity(enum.IntEnum):
    """Output verbosity, numbered as on the command line."""

    OFF = 0
    ERROR = 1
    WARNING = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5

    def to_logging_level(self) -> int:
        return {
            Verbosity.OFF: logging.CRITICAL + 10,
            Verbosity.ERROR: logging.ERROR,
            Verbosity.WARNING: logging.WARNING,
            Verbosity.INFO: logging.INFO,
            Verbosity.DEBUG: logging.DEBUG,
            Verbosity.TRACE: logging.DEBUG,
        }[self]


@dataclass
class AnalysisConfig:
    """Tuning knobs for control-flow and SSA construction."""

    track_fields: bool = True
    track_properties: bool = True
    track_captured: bool = True
    min_field_accesses: int = 2
    implicit_throws: bool = True
    fold_constants: bool = True
    prune_call_graph: bool = True
    threads: int = 1
    verbosity: Verbosity = Verbosity.INFO

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if self.threads <= 0:
            warnings.append("threads must be positive")
        if self.min_field_accesses < 1:
            warnings.append("min_field_accesses must be at least 1")
        if not (self.track_fields or self.track_properties or self.track_captured):
            warnings.append("only local variables will be tracked")
        return warnings

    # ----- option protocol -------------------------------------------------

    def handle_option(self, key: str, value: str) -> bool:
        """Apply ``key=value``; ``False`` if *key* is not an option of ours."""
        if key == "threads":
            self.threads = _parse_int(key, value)
            return True
        if key == "verbosity":
            level = _parse_int(key, value)
            try:
                self.verbosity = Verbosity(level)
            except ValueError as exc:
                raise ConfigError(
                    f"verbosity must be between 0 and 5, got {value!r}",
                    ErrorCodes.BAD_OPTION_VALUE,
                ) from exc
            return True
        if key == "min_field_accesses":
            self.min_field_accesses = _parse_int(key, value)
            return True
        return False

    def handle_flag(self, flag: str, value: bool) -> bool:
        """Apply a boolean flag; ``False`` if *flag* is not one of ours."""
        if flag == "verbose":
            self.verbosity = Verbosity.DEBUG if value else Verbosity.ERROR
            return True
        attr = _FLAGS.get(flag)
        if attr is None:
            return False
        setattr(self, attr, bool(value))
        return True


_FLAGS = {
    "track-fields": "track_fields",
    "track-properties": "track_properties",
    "track-captured": "track_captured",
    "implicit-throws": "implicit_throws",
    "fold-constants": "fold_constants",
    "prune-call-graph": "prune_call_graph",
}


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"option {key!r} expects an integer, got {value!r}",
            ErrorCodes.BAD_OPTION_VALUE,
        ) from exc


def configure_logging(verbosity: Verbosity = Verbosity.INFO) -> logging.Logger:
    """Set up the package-level ``cfgssa`` logger.

    Installs a single stderr handler; calling it again only changes the level.
    """
    root = logging.getLogger("cfgssa")
    root.setLevel(Verbosity(verbosity).to_logging_level())
    if not any(getattr(h, "_cfgssa", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handler._cfgssa = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return root
