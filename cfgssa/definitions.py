"""
cfgssa.definitions
==================

Assignable definitions: the concrete write sites of a callable.

Every write site is attached to the control-flow *element* at which the
write takes effect:

================  ==========================================  =================
kind              source construct                            element
================  ==========================================  =================
ASSIGNMENT        ``x = e``                                   the assignment
COMPOUND          ``x += e`` (also reads ``x``)               the assignment
INCREMENT         ``x++`` / ``--x`` (also reads ``x``)        the increment
DECLARATION       ``var x = e``                               the declarator
FOREACH           ``foreach (var x in ...)``                  the declarator
IS_PATTERN        ``e is T x``                                the ``is``
CASE_PATTERN      ``case T x:``                               the switch case
CATCH             ``catch (T x)``                             the catch clause
OUT_ARGUMENT      ``M(out x)``                                the call
REF_ARGUMENT      ``M(ref x)`` (also reads ``x``)             the call
PARAMETER         value and ``ref`` parameters                the callable entry
================  ==========================================  =================

When one call writes the same variable through several ``out`` / ``ref``
arguments, only the first such argument yields a definition, and that
definition is *uncertain*.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from cfgssa.ast_helper import walk_callable
from cfgssa.ast_nodes import (
    CALL_TYPES,
    Assign,
    CatchClause,
    CompoundAssign,
    ForeachStmt,
    Increment,
    IsExpr,
    LocalVarDecl,
    Node,
    PassingMode,
    SwitchCase,
    TypePattern,
)
from cfgssa.source_variables import (
    SourceVariable,
    SourceVariableResolver,
    is_access,
    is_read,
)


class DefinitionKind(enum.Enum):
    ASSIGNMENT = "assignment"
    COMPOUND = "compound"
    INCREMENT = "increment"
    DECLARATION = "declaration"
    FOREACH = "foreach"
    IS_PATTERN = "is-pattern"
    CASE_PATTERN = "case-pattern"
    CATCH = "catch"
    OUT_ARGUMENT = "out"
    REF_ARGUMENT = "ref"
    PARAMETER = "parameter"


@dataclass(eq=False)
class AssignableDefinition:
    """A write site.

    Attributes
    ----------
    kind : DefinitionKind
    element : Node
        Control-flow element at which the write happens (the callable
        itself for parameter definitions).
    target : Node
        The written access expression or declared variable.
    variable : SourceVariable
    source : Node or None
        The assigned expression, when there is one.
    certain : bool
        ``False`` for duplicate ``out``/``ref`` targets of one call.
    """

    kind: DefinitionKind
    element: Node
    target: Node
    variable: SourceVariable
    source: Optional[Node] = None
    certain: bool = True

    @property
    def is_parameter(self) -> bool:
        return self.kind is DefinitionKind.PARAMETER

    def __repr__(self) -> str:
        return f"AssignableDefinition({self.kind.value}, {self.variable})"


_WRITE_OPS = {
    Assign: DefinitionKind.ASSIGNMENT,
    CompoundAssign: DefinitionKind.COMPOUND,
}


@dataclass
class VariableReferences:
    """Reads and write sites of one callable, indexed by element."""

    callable: Node
    resolver: SourceVariableResolver
    definitions: List[AssignableDefinition] = field(default_factory=list)
    reads: List[Tuple[Node, SourceVariable]] = field(default_factory=list)
    _defs_at: Dict[Node, List[AssignableDefinition]] = field(default_factory=dict, repr=False)
    _reads_at: Dict[Node, List[Tuple[Node, SourceVariable]]] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._collect()

    # ----- collection -----------------------------------------------------

    def _add(self, kind, element, target, variable, source=None, certain=True) -> None:
        d = AssignableDefinition(kind, element, target, variable, source, certain)
        self.definitions.append(d)
        self._defs_at.setdefault(element, []).append(d)

    def _collect(self) -> None:
        resolver = self.resolver
        callable_ = self.callable
        for p in callable_.params:
            if p.mode is not PassingMode.OUT:
                self._add(DefinitionKind.PARAMETER, callable_, p, resolver.local(p))
        for node in walk_callable(callable_):
            if is_access(node):
                sv = resolver.resolve(node)
                if sv is not None and is_read(node):
                    self.reads.append((node, sv))
                    self._reads_at.setdefault(node, []).append((node, sv))
            if isinstance(node, (Assign, CompoundAssign)):
                sv = resolver.resolve(node.target) if is_access(node.target) else None
                if sv is not None:
                    self._add(_WRITE_OPS[type(node)], node, node.target, sv, node.source)
            elif isinstance(node, Increment):
                sv = resolver.resolve(node.operand) if is_access(node.operand) else None
                if sv is not None:
                    self._add(DefinitionKind.INCREMENT, node, node.operand, sv)
            elif isinstance(node, LocalVarDecl):
                if isinstance(node.parent, ForeachStmt) and node is node.parent.variable:
                    self._add(DefinitionKind.FOREACH, node, node.variable,
                              resolver.local(node.variable), node.parent.collection)
                elif node.init is not None:
                    self._add(DefinitionKind.DECLARATION, node, node.variable,
                              resolver.local(node.variable), node.init)
            elif isinstance(node, IsExpr) and node.variable is not None:
                self._add(DefinitionKind.IS_PATTERN, node, node.variable,
                          resolver.local(node.variable), node.expr)
            elif isinstance(node, SwitchCase) and isinstance(node.pattern, TypePattern) \
                    and node.pattern.variable is not None:
                self._add(DefinitionKind.CASE_PATTERN, node, node.pattern.variable,
                          resolver.local(node.pattern.variable))
            elif isinstance(node, CatchClause) and node.variable is not None:
                self._add(DefinitionKind.CATCH, node, node.variable, resolver.local(node.variable))
            elif isinstance(node, CALL_TYPES):
                self._collect_arguments(node)

    def _collect_arguments(self, call: Node) -> None:
        first: Dict[SourceVariable, int] = {}
        pending: List[Tuple[DefinitionKind, Node, SourceVariable]] = []
        duplicated = set()
        for i, arg in enumerate(call.args):
            mode = call.mode_of(i)
            if mode is PassingMode.VALUE or not is_access(arg):
                continue
            sv = self.resolver.resolve(arg)
            if sv is None:
                continue
            if sv in first:
                duplicated.add(sv)
                continue
            first[sv] = len(pending)
            kind = DefinitionKind.OUT_ARGUMENT if mode is PassingMode.OUT else DefinitionKind.REF_ARGUMENT
            pending.append((kind, arg, sv))
        for kind, arg, sv in pending:
            self._add(kind, call, arg, sv, certain=sv not in duplicated)

    # ----- queries --------------------------------------------------------

    def definitions_at(self, element: Node) -> List[AssignableDefinition]:
        return self._defs_at.get(element, [])

    def reads_at(self, element: Node) -> List[Tuple[Node, SourceVariable]]:
        return self._reads_at.get(element, [])

    def parameter_definitions(self) -> List[AssignableDefinition]:
        return self._defs_at.get(self.callable, [])

    def definitions_of(self, variable: SourceVariable) -> List[AssignableDefinition]:
        return [d for d in self.definitions if d.variable == variable]
