# tests/test_config_errors.py
"""
Tests for AnalysisConfig, its option protocol, logging setup and the
error hierarchy.
"""

import logging

import pytest

from cfgssa.ast_nodes import SourceLoc
from cfgssa.config import AnalysisConfig, Verbosity, configure_logging
from cfgssa.errors import (
    CfgSsaError,
    ConfigError,
    ErrorCodes,
    ErrorPhase,
    QueryError,
    ReaderError,
)


# ── AnalysisConfig ───────────────────────────────────────────────

class TestAnalysisConfig:

    def test_defaults(self):
        cfg = AnalysisConfig()
        assert cfg.track_fields and cfg.track_properties and cfg.track_captured
        assert cfg.min_field_accesses == 2
        assert cfg.implicit_throws and cfg.fold_constants and cfg.prune_call_graph
        assert cfg.threads == 1
        assert cfg.verbosity is Verbosity.INFO
        assert cfg.validate() == []

    def test_validation_warnings(self):
        cfg = AnalysisConfig(threads=0, min_field_accesses=0, track_fields=False,
                             track_properties=False, track_captured=False)
        warnings = cfg.validate()
        assert len(warnings) == 3
        assert any("threads" in w for w in warnings)
        assert any("min_field_accesses" in w for w in warnings)

    def test_handle_option(self):
        cfg = AnalysisConfig()
        assert cfg.handle_option("threads", "4")
        assert cfg.handle_option("min_field_accesses", "1")
        assert cfg.handle_option("verbosity", "4")
        assert cfg.threads == 4
        assert cfg.min_field_accesses == 1
        assert cfg.verbosity is Verbosity.DEBUG

    def test_unknown_option_is_not_consumed(self):
        cfg = AnalysisConfig()
        assert not cfg.handle_option("colour", "blue")
        assert not cfg.handle_flag("colour", True)

    @pytest.mark.parametrize("key, value", [
        ("threads", "many"),
        ("min_field_accesses", ""),
        ("verbosity", "9"),
    ])
    def test_bad_option_values(self, key, value):
        with pytest.raises(ConfigError) as info:
            AnalysisConfig().handle_option(key, value)
        assert info.value.code == ErrorCodes.BAD_OPTION_VALUE

    def test_flags(self):
        cfg = AnalysisConfig()
        assert cfg.handle_flag("implicit-throws", False)
        assert cfg.handle_flag("prune-call-graph", False)
        assert not cfg.implicit_throws
        assert not cfg.prune_call_graph
        assert cfg.handle_flag("verbose", True)
        assert cfg.verbosity is Verbosity.DEBUG
        cfg.handle_flag("verbose", False)
        assert cfg.verbosity is Verbosity.ERROR

    def test_verbosity_levels(self):
        assert Verbosity.WARNING.to_logging_level() == logging.WARNING
        assert Verbosity.TRACE.to_logging_level() == logging.DEBUG
        assert Verbosity.OFF.to_logging_level() > logging.CRITICAL


# ── Logging ──────────────────────────────────────────────────────

class TestLogging:

    def test_single_handler(self):
        log = configure_logging(Verbosity.DEBUG)
        configure_logging(Verbosity.WARNING)
        ours = [h for h in log.handlers if getattr(h, "_cfgssa", False)]
        assert len(ours) == 1
        assert log.name == "cfgssa"
        assert log.level == logging.WARNING

    def test_invalid_config_is_logged(self, program_analysis, caplog):
        with caplog.at_level(logging.WARNING, logger="cfgssa"):
            program_analysis("(class C)", AnalysisConfig(threads=0))
        assert "threads must be positive" in caplog.text


# ── Errors ───────────────────────────────────────────────────────

class TestErrors:

    def test_code_rendering(self):
        assert str(ErrorCodes.SEXP_SYNTAX) == "CFGSSA-1000"
        assert ErrorCodes.BAD_OPTION_VALUE.phase is ErrorPhase.CONFIG
        assert ErrorCodes.FOREIGN_NODE != ErrorCodes.FOREIGN_BLOCK

    def test_hierarchy(self):
        for cls in (ReaderError, QueryError, ConfigError):
            assert issubclass(cls, CfgSsaError)
        assert QueryError("x").code == ErrorCodes.FOREIGN_NODE
        assert ConfigError("x").code == ErrorCodes.BAD_OPTION_VALUE

    def test_messages(self):
        err = QueryError("no such node", ErrorCodes.UNKNOWN_VARIABLE)
        assert str(err) == "[CFGSSA-2003] no such node"
        loc = SourceLoc("prog.sexp", 3, 7)
        rerr = ReaderError("bad form", ErrorCodes.UNKNOWN_FORM, loc)
        assert str(rerr) == f"[CFGSSA-1002] at {loc} bad form"
        assert rerr.message == "bad form"
