"""
cfgssa.completion
=================

Completions describe *how* the evaluation of an element ends: normally
(possibly with a boolean, nullness, matching or emptiness outcome) or
abruptly (return, break, continue, throw, goto).  The control-flow builder
threads completions upwards through the syntax tree until some ancestor
decides where control goes next; the completion that reaches that decision
also determines the type of the resulting edge.

Public API
----------
    CompletionKind   - enum of completion shapes
    Completion       - immutable completion value
    SuccessorType    - edge label of a control-flow edge
    NORMAL           - the plain normal completion
    normalize        - the completion remembered by a finally split
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional


class CompletionKind(enum.Enum):
    """Shape of a completion."""

    NORMAL = "normal"
    BOOLEAN = "boolean"
    NULLNESS = "nullness"
    MATCHING = "matching"
    EMPTINESS = "emptiness"
    RETURN = "return"
    BREAK = "break"
    BREAK_NORMAL = "break-normal"    # a break already consumed by its loop
    CONTINUE = "continue"
    THROW = "throw"
    GOTO_LABEL = "goto-label"
    GOTO_CASE = "goto-case"
    GOTO_DEFAULT = "goto-default"


_NORMAL_CLASS = frozenset({
    CompletionKind.NORMAL,
    CompletionKind.BOOLEAN,
    CompletionKind.NULLNESS,
    CompletionKind.MATCHING,
    CompletionKind.EMPTINESS,
    CompletionKind.BREAK_NORMAL,
})

_ABRUPT_LABELS = {
    CompletionKind.RETURN: "return",
    CompletionKind.BREAK: "break",
    CompletionKind.CONTINUE: "continue",
    CompletionKind.THROW: "throw",
    CompletionKind.GOTO_LABEL: "goto",
    CompletionKind.GOTO_CASE: "goto case",
    CompletionKind.GOTO_DEFAULT: "goto default",
}


@dataclass(frozen=True, slots=True)
class Completion:
    """A completion value.

    Attributes
    ----------
    kind : CompletionKind
        The completion shape.
    value : bool or None
        Outcome of boolean / nullness / matching / emptiness completions
        (``Nullness(True)`` means *is null*, ``Emptiness(True)`` means
        *collection is empty*).
    exception_type : str or None
        Thrown type of a ``THROW`` completion.
    label : Any
        Target of a ``GOTO_*`` completion (label name or case value).
    """

    kind: CompletionKind
    value: Optional[bool] = None
    exception_type: Optional[str] = None
    label: Any = None

    # ----- constructors ----------------------------------------------------

    @staticmethod
    def boolean(value: bool) -> "Completion":
        return Completion(CompletionKind.BOOLEAN, value=value)

    @staticmethod
    def nullness(is_null: bool) -> "Completion":
        return Completion(CompletionKind.NULLNESS, value=is_null)

    @staticmethod
    def matching(matched: bool) -> "Completion":
        return Completion(CompletionKind.MATCHING, value=matched)

    @staticmethod
    def emptiness(is_empty: bool) -> "Completion":
        return Completion(CompletionKind.EMPTINESS, value=is_empty)

    @staticmethod
    def throw(exception_type: str) -> "Completion":
        return Completion(CompletionKind.THROW, exception_type=exception_type)

    @staticmethod
    def goto_label(label: str) -> "Completion":
        return Completion(CompletionKind.GOTO_LABEL, label=label)

    @staticmethod
    def goto_case(value: Any) -> "Completion":
        return Completion(CompletionKind.GOTO_CASE, label=value)

    # ----- predicates ------------------------------------------------------

    @property
    def is_normal(self) -> bool:
        """Normal-class completions: evaluation finished without a jump."""
        return self.kind in _NORMAL_CLASS

    @property
    def is_abrupt(self) -> bool:
        return self.kind not in _NORMAL_CLASS

    def is_boolean(self, value: Optional[bool] = None) -> bool:
        return self.kind is CompletionKind.BOOLEAN and (value is None or self.value is value)

    def is_nullness(self, value: Optional[bool] = None) -> bool:
        return self.kind is CompletionKind.NULLNESS and (value is None or self.value is value)

    def is_matching(self, value: Optional[bool] = None) -> bool:
        return self.kind is CompletionKind.MATCHING and (value is None or self.value is value)

    @property
    def is_throw(self) -> bool:
        return self.kind is CompletionKind.THROW

    def __str__(self) -> str:
        k = self.kind
        if k is CompletionKind.NORMAL:
            return "normal"
        if k is CompletionKind.BREAK_NORMAL:
            return "normal (break)"
        if self.value is not None:
            return f"{k.value}({str(self.value).lower()})"
        if k is CompletionKind.THROW:
            return f"throw({self.exception_type})"
        if k in (CompletionKind.GOTO_LABEL, CompletionKind.GOTO_CASE):
            return f"{_ABRUPT_LABELS[k]} {self.label}"
        return _ABRUPT_LABELS.get(k, k.value)


NORMAL = Completion(CompletionKind.NORMAL)
BREAK = Completion(CompletionKind.BREAK)
BREAK_NORMAL = Completion(CompletionKind.BREAK_NORMAL)
CONTINUE = Completion(CompletionKind.CONTINUE)
RETURN = Completion(CompletionKind.RETURN)
GOTO_DEFAULT = Completion(CompletionKind.GOTO_DEFAULT)
TRUE = Completion.boolean(True)
FALSE = Completion.boolean(False)


def normalize(c: Completion) -> Completion:
    """The completion a finally block resumes with after it ends normally.

    All normal-class completions collapse to :data:`NORMAL`; abrupt ones
    keep their payload (thrown type, goto target).
    """
    return NORMAL if c.is_normal else c


# ---------------------------------------------------------------------------
# Edge labels
# ---------------------------------------------------------------------------

class SuccessorKind(enum.Enum):
    DIRECT = "direct"
    BOOLEAN = "boolean"
    NULLNESS = "nullness"
    MATCHING = "matching"
    EMPTINESS = "emptiness"
    RETURN = "return"
    BREAK = "break"
    CONTINUE = "continue"
    GOTO = "goto"
    EXCEPTION = "exception"


@dataclass(frozen=True, slots=True)
class SuccessorType:
    """The label of a control-flow edge."""

    kind: SuccessorKind
    value: Optional[bool] = None
    exception_type: Optional[str] = None
    label: Any = None

    @staticmethod
    def of(c: Completion) -> "SuccessorType":
        """Edge type induced by the completion that produced the edge."""
        k = c.kind
        if k in (CompletionKind.NORMAL,):
            return DIRECT
        if k is CompletionKind.BOOLEAN:
            return SuccessorType(SuccessorKind.BOOLEAN, value=c.value)
        if k is CompletionKind.NULLNESS:
            return SuccessorType(SuccessorKind.NULLNESS, value=c.value)
        if k is CompletionKind.MATCHING:
            return SuccessorType(SuccessorKind.MATCHING, value=c.value)
        if k is CompletionKind.EMPTINESS:
            return SuccessorType(SuccessorKind.EMPTINESS, value=c.value)
        if k is CompletionKind.RETURN:
            return SuccessorType(SuccessorKind.RETURN)
        if k in (CompletionKind.BREAK, CompletionKind.BREAK_NORMAL):
            return SuccessorType(SuccessorKind.BREAK)
        if k is CompletionKind.CONTINUE:
            return SuccessorType(SuccessorKind.CONTINUE)
        if k is CompletionKind.THROW:
            return SuccessorType(SuccessorKind.EXCEPTION, exception_type=c.exception_type)
        if k is CompletionKind.GOTO_DEFAULT:
            return SuccessorType(SuccessorKind.GOTO, label="default")
        return SuccessorType(SuccessorKind.GOTO, label=c.label)

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.kind.value}({str(self.value).lower()})"
        if self.exception_type is not None:
            return f"exception({self.exception_type})"
        if self.label is not None:
            return f"goto({self.label})"
        return self.kind.value


DIRECT = SuccessorType(SuccessorKind.DIRECT)
