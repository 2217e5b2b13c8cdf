"""
cfgssa.splitting
================

Splitting duplicates control-flow nodes so that a node remembers *how* it
was reached.  Two kinds of split are maintained:

* **finally splits** - one per enclosing ``finally`` block, recording the
  (normalized) completion with which that block was entered.  When the
  block ends normally it resumes exactly that completion, so a finally
  entered by ``return`` does not flow into the code after the try
  statement.
* **exception-handler splits** - inside the catch *header* of a try
  statement (catch clause nodes and filters), the exception type being
  matched.  A clause that does not match re-dispatches the same type to
  the next clause.

Splits are immutable; ``Splits`` is hashable and is part of the identity of
a control-flow node.  Splits are ordered by rank: finally splits by their
nesting level (outermost first), the exception-handler split last.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from cfgssa.ast_helper import catch_header_try, finally_chain
from cfgssa.ast_nodes import CatchClause, Node, TryStmt
from cfgssa.completion import Completion, normalize


@dataclass(frozen=True, slots=True)
class FinallySplit:
    """The completion with which the finally block at *level* was entered."""

    level: int
    kind: Completion

    def __str__(self) -> str:
        return f"finally{self.level}:{self.kind}"


@dataclass(frozen=True, slots=True)
class ExceptionHandlerSplit:
    """The exception type being matched against a catch header."""

    exception_type: str

    def __str__(self) -> str:
        return f"handler:{self.exception_type}"


@dataclass(frozen=True, slots=True)
class Splits:
    """The split context of a control-flow node."""

    finally_splits: Tuple[FinallySplit, ...] = ()
    handler: Optional[ExceptionHandlerSplit] = None

    def finally_at(self, level: int) -> Optional[FinallySplit]:
        for s in self.finally_splits:
            if s.level == level:
                return s
        return None

    def exception_handler(self) -> Optional[ExceptionHandlerSplit]:
        return self.handler

    # ----- split context queries used by the control-flow builder ---------

    def finally_completion(self, try_stmt: TryStmt) -> Optional[Completion]:
        """Completion to resume when the finally block of *try_stmt* ends."""
        if try_stmt.finally_ is None:
            return None
        split = self.finally_at(len(finally_chain(try_stmt.finally_)) - 1)
        return split.kind if split is not None else None

    def exception_type(self) -> Optional[str]:
        """Exception type being matched in the current catch header."""
        return self.handler.exception_type if self.handler is not None else None

    def ranked(self) -> Tuple[object, ...]:
        """All splits in rank order."""
        if self.handler is None:
            return self.finally_splits
        return self.finally_splits + (self.handler,)

    def __bool__(self) -> bool:
        return bool(self.finally_splits) or self.handler is not None

    def __str__(self) -> str:
        return ", ".join(str(s) for s in self.ranked())


NO_SPLITS = Splits()


def transition(splits: Splits, pred: Optional[Node], succ: Node,
               c: Completion) -> Splits:
    """Splits of *succ* when reached from *pred* (with *splits*) via *c*.

    *pred* is ``None`` for the edge leaving the callable entry.
    """
    succ_chain = finally_chain(succ)
    pred_chain = finally_chain(pred) if pred is not None else ()
    entered = normalize(c)
    fins = []
    for level, block in enumerate(succ_chain):
        same = level < len(pred_chain) and pred_chain[level] is block
        kept = splits.finally_at(level) if same else None
        fins.append(kept if kept is not None else FinallySplit(level, entered))

    handler = None
    header = catch_header_try(succ)
    if header is not None:
        if c.is_throw and isinstance(succ, CatchClause):
            handler = ExceptionHandlerSplit(c.exception_type)
        elif pred is not None and catch_header_try(pred) is header:
            handler = splits.handler
    if not fins and handler is None:
        return NO_SPLITS
    return Splits(tuple(fins), handler)
