"""
cfgssa.cfg_builder
==================

Structural control-flow rules for a single callable.

For every element the builder knows

* ``first(e)``        - the first sub-element evaluated when ``e`` starts,
* ``own_completions`` - the completions with which ``e`` itself may finish,
* ``last(e)``         - every ``(sub-element, completion)`` pair at which the
  evaluation of ``e`` may end,
* ``successors``      - where control goes after a leaf finished with a
  given completion.

Successors are found by handing the completion of a finished element to its
parent's *handler*.  A handler either decides the next element (``first`` of
a sibling, a loop header, a catch clause, ...) or passes a (possibly
converted) completion further up.  ``last`` is built bottom-up from the very
same handlers, so the two views can never disagree.

Evaluation order
----------------
Statements are pre-order nodes (the statement precedes its children) except
the jump statements (``return``, ``throw``, ``break``, ``continue``, the
``goto`` family), which follow their operand.  Expressions are post-order,
except the short-circuit family (``&&``, ``||``, ``!``, ``??``, ``?:``) which
is pre-order.  Type operands of ``is`` / ``as`` / casts and type qualifiers
are never evaluated.  Lambdas are leaves: their bodies have their own graph.

The optional ``ctx`` argument of the successor functions is the split
context of the node being left (see :mod:`cfgssa.splitting`); it tells the
builder how a ``finally`` block was entered and which exception type is
being matched against catch clauses.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, List, Optional, Tuple

from cfgssa.ast_helper import (
    NOT_CONSTANT,
    ROOT_EXCEPTION,
    TypeHierarchy,
    constant_value,
    is_nonzero_constant,
    is_tried,
    static_type,
)
from cfgssa.ast_nodes import (
    CALLABLE_TYPES,
    ArrayCreation,
    Binary,
    BlockStmt,
    BreakStmt,
    Call,
    CastExpr,
    CatchClause,
    CompoundAssign,
    Conditional,
    ConstantPattern,
    ConstructorDecl,
    ConstructorInitializer,
    ContinueStmt,
    DelegateCall,
    DoStmt,
    Element,
    ElementAccess,
    ForeachStmt,
    ForStmt,
    GotoCaseStmt,
    GotoDefaultStmt,
    GotoStmt,
    IfStmt,
    Lambda,
    LabeledStmt,
    LocalAccess,
    LogicalAnd,
    LogicalNot,
    LogicalOr,
    MethodRef,
    Node,
    NullCoalescing,
    ObjectCreation,
    ReturnStmt,
    Stmt,
    SwitchCase,
    SwitchStmt,
    ThisAccess,
    ThrowExpr,
    ThrowStmt,
    TryStmt,
    TypeAccess,
    TypePattern,
    WhileStmt,
)
from cfgssa.completion import (
    BREAK,
    BREAK_NORMAL,
    CONTINUE,
    FALSE,
    GOTO_DEFAULT,
    NORMAL,
    RETURN,
    TRUE,
    Completion,
    CompletionKind,
    normalize,
)
from cfgssa.config import AnalysisConfig

logger = logging.getLogger(__name__)


class _Marker:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


SELF = _Marker("SELF")
EXIT = _Marker("EXIT")
"""Successor target standing for the exit of the callable."""

Outcome = Tuple[Optional[object], Completion]


class Context(enum.Enum):
    """How the value of an expression is consumed by its parent."""

    VALUE = "value"
    BOOLEAN = "boolean"
    NULLNESS = "nullness"


class MatchKind(enum.Enum):
    DEFINITE = "definite"
    MAYBE = "maybe"
    NONE = "none"


_SHORT_CIRCUIT = (LogicalAnd, LogicalOr, LogicalNot, NullCoalescing, Conditional)
_JUMPS = (BreakStmt, ContinueStmt, ReturnStmt, ThrowStmt, GotoStmt,
          GotoCaseStmt, GotoDefaultStmt)
_NON_NULL = (ObjectCreation, ArrayCreation, Lambda, ThisAccess, MethodRef)


class CfgBuilder:
    """Control-flow rules for the elements of one callable.

    Parameters
    ----------
    callable_ :
        A ``MethodDecl``, ``ConstructorDecl`` or ``Lambda``.
    hierarchy : TypeHierarchy
        Used to classify exception types.
    config : AnalysisConfig
        ``implicit_throws`` and ``fold_constants`` are honoured.
    """

    def __init__(
        self,
        callable_: Node,
        hierarchy: Optional[TypeHierarchy] = None,
        config: Optional[AnalysisConfig] = None,
    ) -> None:
        self.callable = callable_
        self.hierarchy = hierarchy or TypeHierarchy()
        self.config = config or AnalysisConfig()
        self._seq: Dict[Node, Tuple] = {}
        self._first: Dict[Node, Element] = {}
        self._last: Dict[Node, List[Tuple[Element, Completion]]] = {}
        self._own: Dict[Node, List[Completion]] = {}
        self._labels: Dict[Node, Dict[str, LabeledStmt]] = {}
        self._finally_entries: Dict[Node, List[Completion]] = {}

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def is_leaf(self, e: Node) -> bool:
        return self.sequence(e) == (SELF,)

    def is_folded(self, e: Node) -> bool:
        """Constant short-circuit expressions collapse into a single node."""
        return (
            self.config.fold_constants
            and isinstance(e, _SHORT_CIRCUIT)
            and constant_value(e) is not NOT_CONSTANT
        )

    def sequence(self, e: Node) -> Tuple:
        """Control-flow children of *e* in evaluation order, with ``SELF``
        marking where *e* itself is evaluated."""
        seq = self._seq.get(e)
        if seq is None:
            seq = self._compute_sequence(e)
            self._seq[e] = seq
        return seq

    def _compute_sequence(self, e: Node) -> Tuple:
        if isinstance(e, Lambda) or self.is_folded(e):
            return (SELF,)
        if isinstance(e, BlockStmt):
            return (SELF,) + e.stmts
        if isinstance(e, IfStmt):
            return (SELF, e.cond, e.then) + ((e.else_,) if e.else_ is not None else ())
        if isinstance(e, WhileStmt):
            return (SELF, e.cond, e.body)
        if isinstance(e, DoStmt):
            return (SELF, e.body, e.cond)
        if isinstance(e, ForStmt):
            cond = (e.cond,) if e.cond is not None else ()
            return (SELF,) + e.inits + cond + (e.body,) + e.updates
        if isinstance(e, ForeachStmt):
            return (e.collection, SELF, e.variable, e.body)
        if isinstance(e, SwitchStmt):
            return (SELF, e.expr) + e.cases
        if isinstance(e, SwitchCase):
            guard = (e.guard,) if e.guard is not None else ()
            return (SELF,) + guard + e.body
        if isinstance(e, TryStmt):
            fin = (e.finally_,) if e.finally_ is not None else ()
            return (SELF, e.block) + e.catches + fin
        if isinstance(e, CatchClause):
            flt = (e.filter,) if e.filter is not None else ()
            return (SELF,) + flt + (e.block,)
        if isinstance(e, _JUMPS):
            return _elements(e.children()) + (SELF,)
        if isinstance(e, Stmt):
            # ExprStmt, LocalDeclStmt, LabeledStmt, EmptyStmt: pre-order
            return (SELF,) + _elements(e.children())
        if isinstance(e, _SHORT_CIRCUIT):
            return (SELF,) + _elements(e.children())
        if isinstance(e, Call):
            qual = _elements((e.qualifier,)) if e.qualifier is not None else ()
            return qual + e.args + (SELF,)
        if isinstance(e, ObjectCreation):
            return e.args + (SELF,) + e.initializers
        if isinstance(e, Element):
            return _elements(e.children()) + (SELF,)
        return (SELF,)

    def first(self, e: Node) -> Element:
        """The first element evaluated when *e* begins executing."""
        f = self._first.get(e)
        if f is None:
            head = self.sequence(e)[0]
            f = e if head is SELF else self.first(head)
            self._first[e] = f
        return f

    def entry_target(self):
        """First element of the callable (``EXIT`` for bodiless callables)."""
        c = self.callable
        if isinstance(c, ConstructorDecl) and c.initializer is not None:
            return self.first(c.initializer)
        if c.body is None:
            return EXIT
        return self.first(c.body)

    def context(self, e: Node) -> Context:
        p = e.parent
        if p is None or p is self.callable:
            return Context.VALUE
        if isinstance(p, (IfStmt, WhileStmt, DoStmt, ForStmt)) and e is p.cond:
            return Context.BOOLEAN
        if isinstance(p, (LogicalAnd, LogicalOr, LogicalNot)):
            return Context.BOOLEAN
        if isinstance(p, Conditional):
            return Context.BOOLEAN if e is p.cond else self.context(p)
        if isinstance(p, NullCoalescing):
            return Context.NULLNESS if e is p.left else self.context(p)
        if isinstance(p, SwitchCase) and e is p.guard:
            return Context.BOOLEAN
        if isinstance(p, CatchClause) and e is p.filter:
            return Context.BOOLEAN
        return Context.VALUE

    # ------------------------------------------------------------------
    # Own completions
    # ------------------------------------------------------------------

    def own_completions(self, e: Node, ctx=None) -> List[Completion]:
        """Completions with which the evaluation of *e* itself may end."""
        if isinstance(e, CatchClause) and ctx is not None:
            thrown = ctx.exception_type()
            if thrown is not None:
                return self._clause_completions(e, thrown)
        own = self._own.get(e)
        if own is None:
            own = self._compute_own(e)
            self._own[e] = own
        return own

    def _compute_own(self, e: Node) -> List[Completion]:
        if isinstance(e, BreakStmt):
            return [BREAK]
        if isinstance(e, ContinueStmt):
            return [CONTINUE]
        if isinstance(e, ReturnStmt):
            return [RETURN]
        if isinstance(e, GotoStmt):
            return [Completion.goto_label(e.label)]
        if isinstance(e, GotoCaseStmt):
            return [Completion.goto_case(e.value)]
        if isinstance(e, GotoDefaultStmt):
            return [GOTO_DEFAULT]
        if isinstance(e, (ThrowStmt, ThrowExpr)):
            return [Completion.throw(self.thrown_type(e))]
        if isinstance(e, ForeachStmt):
            return [Completion.emptiness(True), Completion.emptiness(False)]
        if isinstance(e, SwitchCase):
            if _pattern_always_matches(e):
                return [Completion.matching(True)]
            return [Completion.matching(True), Completion.matching(False)]
        if isinstance(e, CatchClause):
            return self._clause_completions(e, None)
        if isinstance(e, Stmt) or (isinstance(e, _SHORT_CIRCUIT) and not self.is_folded(e)):
            return [NORMAL]
        out = self._value_completions(e)
        if self.config.implicit_throws and is_tried(e):
            thrown = self.implicit_exception(e)
            if thrown is not None:
                out.append(Completion.throw(thrown))
        return out

    def _value_completions(self, e: Node) -> List[Completion]:
        ctx = self.context(e)
        if ctx is Context.BOOLEAN:
            v = constant_value(e)
            if isinstance(v, bool):
                return [Completion.boolean(v)]
            return [TRUE, FALSE]
        if ctx is Context.NULLNESS:
            v = constant_value(e)
            if v is None:
                return [Completion.nullness(True)]
            if v is not NOT_CONSTANT or isinstance(e, _NON_NULL):
                return [Completion.nullness(False)]
            return [Completion.nullness(True), Completion.nullness(False)]
        return [NORMAL]

    def implicit_exception(self, e: Node) -> Optional[str]:
        """Exception type an element may throw without a ``throw`` statement."""
        if isinstance(e, (Call, DelegateCall, ObjectCreation, ConstructorInitializer)):
            return ROOT_EXCEPTION
        if isinstance(e, CastExpr):
            return "InvalidCastException"
        if isinstance(e, ElementAccess):
            return "IndexOutOfRangeException"
        if isinstance(e, (Binary, CompoundAssign)) and e.op in ("/", "%"):
            divisor = e.right if isinstance(e, Binary) else e.source
            if not is_nonzero_constant(divisor):
                return "DivideByZeroException"
        return None

    def thrown_type(self, e: Node) -> str:
        """Static type of the exception thrown by a throw statement/expression."""
        x = getattr(e, "expr", None)
        if x is None:
            clause = _enclosing_clause(e)
            if clause is not None and clause.type_name is not None:
                return clause.type_name
            return ROOT_EXCEPTION
        if isinstance(x, ObjectCreation):
            return x.type_name
        if isinstance(x, LocalAccess) and isinstance(x.variable.parent, CatchClause):
            return x.variable.parent.type_name or ROOT_EXCEPTION
        t = static_type(x, self.hierarchy)
        if t is not None and self.hierarchy.is_subtype(t, ROOT_EXCEPTION):
            return t
        return ROOT_EXCEPTION

    # ------------------------------------------------------------------
    # Catch clause matching
    # ------------------------------------------------------------------

    def type_match(self, clause: CatchClause, thrown: str) -> MatchKind:
        """How the *type* of *clause* matches an exception of type *thrown*."""
        caught = clause.type_name
        if caught is None or caught == ROOT_EXCEPTION:
            return MatchKind.DEFINITE
        h = self.hierarchy
        if h.is_subtype(thrown, caught):
            return MatchKind.DEFINITE
        if h.is_subtype(caught, thrown):
            return MatchKind.MAYBE
        if h.is_known(thrown) and h.is_known(caught):
            return MatchKind.NONE
        return MatchKind.MAYBE

    def catch_match(self, clause: CatchClause, thrown: str) -> MatchKind:
        """Type match refined by the clause filter: a filter is never definite."""
        kind = self.type_match(clause, thrown)
        if kind is MatchKind.DEFINITE and clause.filter is not None:
            return MatchKind.MAYBE
        return kind

    def _clause_completions(self, clause: CatchClause, thrown: Optional[str]
                            ) -> List[Completion]:
        if thrown is None:
            definite = clause.type_name is None or clause.type_name == ROOT_EXCEPTION
        else:
            definite = self.type_match(clause, thrown) is MatchKind.DEFINITE
        if definite:
            return [Completion.matching(True)]
        return [Completion.matching(True), Completion.matching(False)]

    # ------------------------------------------------------------------
    # Successors
    # ------------------------------------------------------------------

    def successors(self, leaf: Element, c: Completion, ctx=None) -> List[Outcome]:
        """Successor elements (or ``EXIT``) of *leaf* finishing with *c*.

        Each outcome pairs the target with the completion that determines
        the type of the edge leading to it.
        """
        out: List[Outcome] = []
        work: List[Tuple[Node, object, Completion]] = [(leaf, SELF, c)]
        while work:
            node, frm, comp = work.pop()
            if node is self.callable:
                results = self._handle_callable(frm, comp)
            else:
                results = self._handle(node, frm, leaf, comp, ctx)
            for target, c2 in results:
                if target is None:
                    work.append((node.parent, node, c2))
                else:
                    out.append((target, c2))
        return _dedupe(out)

    def last(self, e: Node) -> List[Tuple[Element, Completion]]:
        """Every ``(element, completion)`` at which evaluating *e* may end."""
        cached = self._last.get(e)
        if cached is not None:
            return cached
        result: List[Tuple[Element, Completion]] = []
        for c in self.own_completions(e):
            for target, c2 in self._handle(e, SELF, e, c, None):
                if target is None:
                    result.append((e, c2))
        for child in self.sequence(e):
            if child is SELF:
                continue
            for leaf, c in self.last(child):
                for target, c2 in self._handle(e, child, leaf, c, None):
                    if target is None:
                        result.append((leaf, c2))
        result = _dedupe(result)
        self._last[e] = result
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_callable(self, frm, c: Completion) -> List[Outcome]:
        cal = self.callable
        if isinstance(cal, ConstructorDecl) and frm is cal.initializer and c.is_normal:
            if cal.body is None:
                return [(EXIT, c)]
            return [(self.first(cal.body), c)]
        return [(EXIT, c)]

    def _handle(self, node: Node, frm, leaf: Element, c: Completion, ctx) -> List[Outcome]:
        if c.kind is CompletionKind.GOTO_LABEL and frm is not SELF:
            target = self._label_table(node).get(c.label)
            if target is not None:
                return [(target, c)]
        if self.is_folded(node):
            return self._handle_sequence(node, frm, c)
        if isinstance(node, (IfStmt, Conditional)):
            return self._handle_if(node, frm, c)
        if isinstance(node, WhileStmt):
            return self._handle_while(node, frm, c)
        if isinstance(node, DoStmt):
            return self._handle_do(node, frm, c)
        if isinstance(node, ForStmt):
            return self._handle_for(node, frm, c)
        if isinstance(node, ForeachStmt):
            return self._handle_foreach(node, frm, c)
        if isinstance(node, SwitchStmt):
            return self._handle_switch(node, frm, leaf, c)
        if isinstance(node, SwitchCase):
            return self._handle_case(node, frm, c)
        if isinstance(node, TryStmt):
            return self._handle_try(node, frm, leaf, c, ctx)
        if isinstance(node, CatchClause):
            return self._handle_catch(node, frm, c)
        if isinstance(node, (LogicalAnd, LogicalOr)):
            return self._handle_and_or(node, frm, c)
        if isinstance(node, LogicalNot):
            return self._handle_not(node, frm, c)
        if isinstance(node, NullCoalescing):
            return self._handle_coalesce(node, frm, c)
        return self._handle_sequence(node, frm, c)

    def _handle_sequence(self, node: Node, frm, c: Completion) -> List[Outcome]:
        if c.is_abrupt:
            return [(None, c)]
        seq = self.sequence(node)
        i = _index(seq, frm)
        if i + 1 < len(seq):
            nxt = seq[i + 1]
            return [(node if nxt is SELF else self.first(nxt), c)]
        return [(None, c)]

    def _handle_if(self, node, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.cond), c)]
        if frm is node.cond:
            if c.is_abrupt:
                return [(None, c)]
            out: List[Outcome] = []
            for b in _booleans(c):
                branch = node.then if b.value else node.else_
                out.append((self.first(branch), b) if branch is not None else (None, b))
            return out
        return [(None, c)]

    def _loop_body_end(self, c: Completion, continue_target: Element) -> List[Outcome]:
        if c.is_normal or c.kind is CompletionKind.CONTINUE:
            return [(continue_target, c)]
        if c.kind is CompletionKind.BREAK:
            return [(None, BREAK_NORMAL)]
        return [(None, c)]

    def _handle_while(self, node: WhileStmt, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.cond), c)]
        if frm is node.cond:
            return self._loop_condition(c, node.body)
        return self._loop_body_end(c, self.first(node.cond))

    def _handle_do(self, node: DoStmt, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.body), c)]
        if frm is node.cond:
            return self._loop_condition(c, node.body)
        return self._loop_body_end(c, self.first(node.cond))

    def _loop_condition(self, c: Completion, body: Stmt) -> List[Outcome]:
        if c.is_abrupt:
            return [(None, c)]
        return [
            (self.first(body), b) if b.value else (None, b)
            for b in _booleans(c)
        ]

    def _handle_for(self, node: ForStmt, frm, c: Completion) -> List[Outcome]:
        loop_head = self.first(node.cond) if node.cond is not None else self.first(node.body)
        if frm is SELF:
            return [(self.first(node.inits[0]) if node.inits else loop_head, c)]
        if frm is node.cond:
            return self._loop_condition(c, node.body)
        if frm is node.body:
            after = self.first(node.updates[0]) if node.updates else loop_head
            return self._loop_body_end(c, after)
        if c.is_abrupt:
            return [(None, c)]
        if frm in node.inits:
            i = _index(node.inits, frm)
            return [(self.first(node.inits[i + 1]) if i + 1 < len(node.inits) else loop_head, c)]
        i = _index(node.updates, frm)
        return [(self.first(node.updates[i + 1]) if i + 1 < len(node.updates) else loop_head, c)]

    def _handle_foreach(self, node: ForeachStmt, frm, c: Completion) -> List[Outcome]:
        if frm is node.collection:
            return [(None, c)] if c.is_abrupt else [(node, c)]
        if frm is SELF:
            if c.kind is CompletionKind.EMPTINESS and not c.value:
                return [(self.first(node.variable), c)]
            return [(None, c)]
        if frm is node.variable:
            return [(None, c)] if c.is_abrupt else [(self.first(node.body), c)]
        return self._loop_body_end(c, node)

    # ----- switch ----------------------------------------------------------

    def _case_order(self, node: SwitchStmt) -> List[SwitchCase]:
        return [k for k in node.cases if not k.is_default] + [k for k in node.cases if k.is_default]

    def _body_from(self, node: SwitchStmt, case: SwitchCase) -> Optional[Element]:
        """First statement of *case*'s section, falling through empty sections."""
        i = _index(node.cases, case)
        for k in node.cases[i:]:
            if k.body:
                return self.first(k.body[0])
        return None

    def _handle_switch(self, node: SwitchStmt, frm, leaf: Element, c: Completion
                       ) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.expr), c)]
        order = self._case_order(node)
        if frm is node.expr:
            if c.is_abrupt or not order:
                return [(None, c)]
            return [(order[0], c)]
        case: SwitchCase = frm
        in_header = leaf is case or (case.guard is not None and _within(leaf, case.guard))
        if in_header:
            if c.is_abrupt:
                return [(None, c)]
            if c.is_matching(False):
                i = _index(order, case)
                if i + 1 < len(order):
                    return [(order[i + 1], c)]
                return [(None, c)]
            nxt = self._body_from(node, case)
            return [(nxt, c)] if nxt is not None else [(None, c)]
        if c.kind is CompletionKind.BREAK:
            return [(None, BREAK_NORMAL)]
        if c.kind in (CompletionKind.GOTO_CASE, CompletionKind.GOTO_DEFAULT):
            target = self._goto_case_target(node, c)
            if target is None:
                return [(None, c)]
            nxt = self._body_from(node, target)
            return [(nxt, c)] if nxt is not None else [(None, c)]
        if c.is_abrupt:
            return [(None, c)]
        i = _index(node.cases, case)
        if i + 1 < len(node.cases):
            nxt = self._body_from(node, node.cases[i + 1])
            if nxt is not None:
                return [(nxt, c)]
        return [(None, c)]

    def _goto_case_target(self, node: SwitchStmt, c: Completion) -> Optional[SwitchCase]:
        for k in node.cases:
            if c.kind is CompletionKind.GOTO_DEFAULT:
                if k.is_default:
                    return k
            elif isinstance(k.pattern, ConstantPattern) and k.pattern.value == c.label:
                return k
        return None

    def _handle_case(self, node: SwitchCase, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            if c.is_matching(False):
                return [(None, c)]
            if node.guard is not None:
                return [(self.first(node.guard), c)]
            return [(self.first(node.body[0]), c)] if node.body else [(None, c)]
        if node.guard is not None and frm is node.guard:
            if c.is_abrupt:
                return [(None, c)]
            out: List[Outcome] = []
            for b in _booleans(c):
                if not b.value:
                    out.append((None, Completion.matching(False)))
                elif node.body:
                    out.append((self.first(node.body[0]), b))
                else:
                    out.append((None, Completion.matching(True)))
            return out
        if c.is_abrupt:
            return [(None, c)]
        i = _index(node.body, frm)
        if i + 1 < len(node.body):
            return [(self.first(node.body[i + 1]), c)]
        return [(None, c)]

    # ----- try / catch / finally ------------------------------------------

    def _to_finally_or_up(self, node: TryStmt, c: Completion) -> Outcome:
        if node.finally_ is not None:
            return (self.first(node.finally_), c)
        return (None, c)

    def _dispatch(self, node: TryStmt, thrown: str, start: int) -> List[Outcome]:
        """Route an exception of type *thrown* to the clauses from *start* on."""
        out: List[Outcome] = []
        exc = Completion.throw(thrown)
        for clause in node.catches[start:]:
            kind = self.catch_match(clause, thrown)
            if kind is MatchKind.NONE:
                continue
            out.append((clause, exc))
            if kind is MatchKind.DEFINITE:
                return out
        out.append(self._to_finally_or_up(node, exc))
        return out

    def thrown_types(self, node: TryStmt) -> List[str]:
        """Exception types that may escape the protected block of *node*."""
        seen: List[str] = []
        for _, c in self.last(node.block):
            if c.is_throw and c.exception_type not in seen:
                seen.append(c.exception_type)
        return seen

    def _types_reaching(self, node: TryStmt, clause: CatchClause) -> List[str]:
        return [
            t for t in self.thrown_types(node)
            if any(target is clause for target, _ in self._dispatch(node, t, 0))
        ]

    def _handle_try(self, node: TryStmt, frm, leaf: Element, c: Completion, ctx
                    ) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.block), c)]
        if frm is node.block:
            if c.is_throw and node.catches:
                return self._dispatch(node, c.exception_type, 0)
            return [self._to_finally_or_up(node, c)]
        if node.finally_ is not None and frm is node.finally_:
            if c.is_abrupt:
                return [(None, c)]
            resumed = ctx.finally_completion(node) if ctx is not None else None
            if resumed is not None:
                return [(None, resumed)]
            return [(None, k) for k in self.finally_entries(node)]
        clause: CatchClause = frm
        if c.is_matching(False):
            thrown = ctx.exception_type() if ctx is not None else None
            types = [thrown] if thrown is not None else self._types_reaching(node, clause)
            i = _index(node.catches, clause)
            out: List[Outcome] = []
            for t in types:
                out.extend(self._dispatch(node, t, i + 1))
            return _dedupe(out)
        return [self._to_finally_or_up(node, c)]

    def finally_entries(self, node: TryStmt) -> List[Completion]:
        """Normalized completions with which the finally block of *node* is entered."""
        cached = self._finally_entries.get(node)
        if cached is not None:
            return cached
        entry = self.first(node.finally_)
        kinds: List[Completion] = []
        for part in (node.block,) + node.catches:
            for leaf, c in self.last(part):
                for target, c2 in self._handle_try(node, part, leaf, c, None):
                    if target is entry:
                        k = normalize(c2)
                        if k not in kinds:
                            kinds.append(k)
        self._finally_entries[node] = kinds
        return kinds

    def _handle_catch(self, node: CatchClause, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            if c.is_matching(False):
                return [(None, c)]
            head = node.filter if node.filter is not None else node.block
            return [(self.first(head), c)]
        if node.filter is not None and frm is node.filter:
            if c.is_abrupt:
                return [(None, c)]
            return [
                (self.first(node.block), b) if b.value else (None, Completion.matching(False))
                for b in _booleans(c)
            ]
        return [(None, c)]

    # ----- short circuit --------------------------------------------------

    def _handle_and_or(self, node, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.left), c)]
        if c.is_abrupt:
            return [(None, c)]
        if frm is node.left:
            short = isinstance(node, LogicalOr)
            return [
                (None, b) if b.value is short else (self.first(node.right), b)
                for b in _booleans(c)
            ]
        return [(None, b) for b in _booleans(c)]

    def _handle_not(self, node: LogicalNot, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.operand), c)]
        if c.is_abrupt:
            return [(None, c)]
        return [(None, Completion.boolean(not b.value)) for b in _booleans(c)]

    def _handle_coalesce(self, node: NullCoalescing, frm, c: Completion) -> List[Outcome]:
        if frm is SELF:
            return [(self.first(node.left), c)]
        if frm is node.left:
            if c.is_abrupt:
                return [(None, c)]
            if c.is_nullness(True):
                return [(self.first(node.right), c)]
            if c.is_nullness(False):
                return [(None, c)]
            return [
                (self.first(node.right), Completion.nullness(True)),
                (None, Completion.nullness(False)),
            ]
        return [(None, c)]

    # ----- labels ---------------------------------------------------------

    def _label_table(self, node: Node) -> Dict[str, LabeledStmt]:
        table = self._labels.get(node)
        if table is None:
            stmts: Tuple = ()
            if isinstance(node, BlockStmt):
                stmts = node.stmts
            elif isinstance(node, SwitchCase):
                stmts = node.body
            table = {s.label: s for s in stmts if isinstance(s, LabeledStmt)}
            self._labels[node] = table
        return table


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _elements(nodes) -> Tuple[Element, ...]:
    return tuple(
        n for n in nodes
        if isinstance(n, Element) and not isinstance(n, TypeAccess)
    )


def _index(seq, item) -> int:
    for i, x in enumerate(seq):
        if x is item:
            return i
    raise ValueError(f"{item!r} is not a control-flow child")


def _within(node: Node, ancestor: Node) -> bool:
    cur = node
    while cur is not None:
        if cur is ancestor:
            return True
        cur = cur.parent
    return False


def _booleans(c: Completion) -> List[Completion]:
    """A normal completion observed in a boolean position: both outcomes."""
    if c.is_boolean():
        return [c]
    if c.is_normal:
        return [TRUE, FALSE]
    return []


def _dedupe(items: List) -> List:
    seen = set()
    out = []
    for it in items:
        if it not in seen:
            seen.add(it)
            out.append(it)
    return out


def _pattern_always_matches(case: SwitchCase) -> bool:
    p = case.pattern
    return p is None or (isinstance(p, TypePattern) and p.type_name is None)


def _enclosing_clause(node: Node) -> Optional[CatchClause]:
    child, cur = node, node.parent
    while cur is not None and not isinstance(cur, CALLABLE_TYPES):
        if isinstance(cur, CatchClause) and child is cur.block:
            return cur
        child, cur = cur, cur.parent
    return None
