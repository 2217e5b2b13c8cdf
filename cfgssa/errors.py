# cfgssa/errors.py
"""
Error types raised at the boundary of the analysis library.

The analysis core is permissive: unreachable code, unknown node kinds and
ambiguous exception matches are over-approximated, never reported.  Errors
therefore only arise where a *caller* hands the library something it cannot
interpret.

Error Hierarchy:
────────────────
    CfgSsaError (base)
    ├── ReaderError   - malformed S-expression program text      (CFGSSA-1xxx)
    ├── QueryError    - a query about a foreign node/variable     (CFGSSA-2xxx)
    └── ConfigError   - an option value that cannot be parsed     (CFGSSA-3xxx)

Example Usage:
──────────────
    from cfgssa.errors import ReaderError, ErrorCodes

    try:
        program = parse_program(text)
    except ReaderError as exc:
        print(exc.code, exc.loc, exc)
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Optional

from cfgssa.ast_nodes import SourceLoc


@unique
class ErrorPhase(Enum):
    """Which layer of the library raised the error."""

    READER = "reader"
    QUERY = "query"
    CONFIG = "config"


class ErrorCode:
    """A stable, numbered error code (``CFGSSA-NNNN``)."""

    __slots__ = ("number", "phase", "title")

    def __init__(self, number: int, phase: ErrorPhase, title: str) -> None:
        self.number = number
        self.phase = phase
        self.title = title

    @property
    def code(self) -> str:
        return f"CFGSSA-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.title!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, ErrorCode):
            return self.number == other.number
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.number)


class ErrorCodes:
    """Predefined error codes."""

    # ── reader (1000-1999) ─────────────────────────────────────────────────
    SEXP_SYNTAX = ErrorCode(1000, ErrorPhase.READER, "S-expression syntax error")
    UNEXPECTED_FORM = ErrorCode(1001, ErrorPhase.READER, "unexpected form")
    UNKNOWN_FORM = ErrorCode(1002, ErrorPhase.READER, "unknown form head")
    UNRESOLVED_NAME = ErrorCode(1003, ErrorPhase.READER, "unresolved name")
    DUPLICATE_DECLARATION = ErrorCode(1004, ErrorPhase.READER, "duplicate declaration")
    MISSING_OPERAND = ErrorCode(1005, ErrorPhase.READER, "missing operand")

    # ── queries (2000-2999) ────────────────────────────────────────────────
    FOREIGN_NODE = ErrorCode(2000, ErrorPhase.QUERY, "node not in this graph")
    FOREIGN_BLOCK = ErrorCode(2001, ErrorPhase.QUERY, "block not in this graph")
    UNKNOWN_CALLABLE = ErrorCode(2002, ErrorPhase.QUERY, "unknown callable")
    UNKNOWN_VARIABLE = ErrorCode(2003, ErrorPhase.QUERY, "unknown source variable")

    # ── configuration (3000-3999) ──────────────────────────────────────────
    BAD_OPTION_VALUE = ErrorCode(3000, ErrorPhase.CONFIG, "bad option value")


class CfgSsaError(Exception):
    """Base exception for all errors raised by this package."""

    default_code: ErrorCode = ErrorCodes.UNEXPECTED_FORM

    def __init__(self, message: str, code: Optional[ErrorCode] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ReaderError(CfgSsaError):
    """Raised when program text cannot be turned into a syntax tree."""

    default_code = ErrorCodes.UNEXPECTED_FORM

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        loc: Optional[SourceLoc] = None,
    ) -> None:
        super().__init__(message, code)
        self.loc = loc

    def __str__(self) -> str:
        where = f" at {self.loc}" if self.loc is not None else ""
        return f"[{self.code}]{where} {self.message}"


class QueryError(CfgSsaError):
    """Raised when a query mentions something the queried structure does not own."""

    default_code = ErrorCodes.FOREIGN_NODE


class ConfigError(CfgSsaError):
    """Raised when a configuration option value cannot be parsed."""

    default_code = ErrorCodes.BAD_OPTION_VALUE
