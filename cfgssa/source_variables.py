"""
cfgssa.source_variables
=======================

Canonical identities of the variables SSA is built for.

Source variables
----------------
``LocalScopeVariable(callable, declaration)``
    A parameter or local variable.  A local that is *captured* by a lambda
    is identified, inside that lambda, by the lambda (the using callable),
    so every closure gets its own copy of the variable.
``PlainFieldOrProp(callable, member)``
    A field or property accessed on ``this`` (explicitly, implicitly or via
    ``base``), or a static member regardless of how it is qualified.
``QualifiedFieldOrProp(callable, qualifier, member)``
    ``q.member`` where ``q`` is itself a source variable, so ``a.b.c`` is
    resolved recursively.

Source variables are frozen dataclasses; syntax nodes inside them compare
by identity, so two variables are equal exactly when they denote the same
declaration chain in the same callable.

Trackability
------------
Locals are always tracked (captured locals inside a closure only when
``AnalysisConfig.track_captured``).  A field or property is tracked iff it
is field-like and not volatile, its qualifier (if any) is tracked, and it
is accessed at least ``min_field_accesses`` times, or inside a loop, or
both read and written, within the callable.  Untracked variables get a
trivial one-definition-per-read SSA form.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set

from cfgssa.ast_helper import declaring_callable, enclosing_callable, in_loop, walk, walk_callable
from cfgssa.ast_nodes import (
    CALL_TYPES,
    Assign,
    BaseAccess,
    CompoundAssign,
    FieldAccess,
    FieldDecl,
    Increment,
    LocalAccess,
    Node,
    Parameter,
    PassingMode,
    PropertyAccess,
    PropertyDecl,
    ThisAccess,
    TypeAccess,
    Variable,
)
from cfgssa.config import AnalysisConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Source variables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceVariable:
    """Base class of canonical variable identities."""

    callable: Node

    @property
    def depth(self) -> int:
        """Qualifier nesting depth: 0 for locals and plain members."""
        return 0

    @property
    def root(self) -> "SourceVariable":
        return self


@dataclass(frozen=True)
class LocalScopeVariable(SourceVariable):
    declaration: Variable

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def type_name(self) -> Optional[str]:
        return self.declaration.type_name

    @property
    def is_captured(self) -> bool:
        """Declared in an enclosing callable and used in this closure."""
        return declaring_callable(self.declaration) is not self.callable

    @property
    def is_parameter(self) -> bool:
        return isinstance(self.declaration, Parameter)

    @property
    def is_ref_or_out(self) -> bool:
        return self.is_parameter and self.declaration.mode is not PassingMode.VALUE

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FieldOrPropVariable(SourceVariable):
    member: Node

    @property
    def name(self) -> str:
        return self.member.name

    @property
    def type_name(self) -> Optional[str]:
        return self.member.type_name

    @property
    def is_static(self) -> bool:
        return self.member.is_static


@dataclass(frozen=True)
class PlainFieldOrProp(FieldOrPropVariable):
    def __str__(self) -> str:
        if self.member.is_static and self.member.declaring_class is not None:
            return f"{self.member.declaring_class.name}.{self.name}"
        return f"this.{self.name}"


@dataclass(frozen=True)
class QualifiedFieldOrProp(FieldOrPropVariable):
    qualifier: SourceVariable = None  # type: ignore[assignment]

    @property
    def depth(self) -> int:
        return self.qualifier.depth + 1

    @property
    def root(self) -> SourceVariable:
        return self.qualifier.root

    def __str__(self) -> str:
        return f"{self.qualifier}.{self.name}"


# ---------------------------------------------------------------------------
# Access classification
# ---------------------------------------------------------------------------

_ACCESS_TYPES = (LocalAccess, FieldAccess, PropertyAccess)


def is_access(node: Node) -> bool:
    return isinstance(node, _ACCESS_TYPES)


def writer_of(access: Node) -> Optional[Node]:
    """The element that writes through *access*, if it is an l-value."""
    p = access.parent
    if isinstance(p, (Assign, CompoundAssign)) and p.target is access:
        return p
    if isinstance(p, Increment) and p.operand is access:
        return p
    if isinstance(p, CALL_TYPES) and access in p.args:
        mode = p.mode_of(_arg_index(p, access))
        if mode is not PassingMode.VALUE:
            return p
    return None


def argument_mode(access: Node) -> PassingMode:
    p = access.parent
    if isinstance(p, CALL_TYPES) and access in p.args:
        return p.mode_of(_arg_index(p, access))
    return PassingMode.VALUE


def is_read(access: Node) -> bool:
    """Whether evaluating *access* reads the variable's current value."""
    p = access.parent
    if isinstance(p, Assign) and p.target is access:
        return False
    return argument_mode(access) is not PassingMode.OUT


def _arg_index(call: Node, arg: Node) -> int:
    for i, a in enumerate(call.args):
        if a is arg:
            return i
    return -1


def _is_this_like(qualifier: Optional[Node]) -> bool:
    return qualifier is None or isinstance(qualifier, (ThisAccess, BaseAccess, TypeAccess))


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class _AccessStats:
    __slots__ = ("count", "in_loop", "read", "written")

    def __init__(self) -> None:
        self.count = 0
        self.in_loop = False
        self.read = False
        self.written = False


class SourceVariableResolver:
    """Resolves the accesses of one callable to source variables.

    Parameters
    ----------
    callable_ :
        The method, constructor or lambda whose code is resolved.
    config : AnalysisConfig, optional
    """

    def __init__(self, callable_: Node, config: Optional[AnalysisConfig] = None) -> None:
        self.callable = callable_
        self.config = config or AnalysisConfig()
        self._stats: Dict[SourceVariable, _AccessStats] = {}
        self._by_access: Dict[Node, Optional[SourceVariable]] = {}
        self._tracked: Dict[SourceVariable, bool] = {}
        self.closure_reads: Set[Variable] = set()
        self.closure_writes: Set[Variable] = set()
        self._scan()

    def _scan(self) -> None:
        for node in walk_callable(self.callable):
            if not is_access(node):
                continue
            sv = self.resolve(node)
            if sv is None:
                continue
            st = self._stats.get(sv)
            if st is None:
                st = self._stats[sv] = _AccessStats()
            st.count += 1
            if in_loop(node):
                st.in_loop = True
            if is_read(node):
                st.read = True
            if writer_of(node) is not None:
                st.written = True
        # locals of this callable that nested lambdas read or write
        for node in walk(self.callable):
            if isinstance(node, LocalAccess) \
                    and enclosing_callable(node) is not self.callable \
                    and declaring_callable(node.variable) is self.callable:
                if is_read(node):
                    self.closure_reads.add(node.variable)
                if writer_of(node) is not None:
                    self.closure_writes.add(node.variable)
        logger.debug("resolver %s: %d source variables, %d tracked",
                     getattr(self.callable, "qualified_name", "?"),
                     len(self._stats), sum(1 for v in self._stats if self.is_tracked(v)))

    # ----- resolution -----------------------------------------------------

    def resolve(self, access: Node) -> Optional[SourceVariable]:
        """Source variable denoted by an access expression, or ``None``."""
        if access in self._by_access:
            return self._by_access[access]
        sv = self._resolve(access)
        self._by_access[access] = sv
        return sv

    def _resolve(self, access: Node) -> Optional[SourceVariable]:
        if isinstance(access, LocalAccess):
            return LocalScopeVariable(self.callable, access.variable)
        if isinstance(access, (FieldAccess, PropertyAccess)):
            member = access.field if isinstance(access, FieldAccess) else access.property
            if member is None:
                return None
            if member.is_static or _is_this_like(access.qualifier):
                return PlainFieldOrProp(self.callable, member)
            qualifier = self.resolve(access.qualifier) if is_access(access.qualifier) else None
            if qualifier is None:
                return None
            return QualifiedFieldOrProp(self.callable, member, qualifier)
        return None

    def local(self, declaration: Variable) -> LocalScopeVariable:
        return LocalScopeVariable(self.callable, declaration)

    # ----- trackability ---------------------------------------------------

    def is_tracked(self, sv: SourceVariable) -> bool:
        cached = self._tracked.get(sv)
        if cached is None:
            cached = self._is_tracked(sv)
            self._tracked[sv] = cached
        return cached

    def _is_tracked(self, sv: SourceVariable) -> bool:
        config = self.config
        if isinstance(sv, LocalScopeVariable):
            return config.track_captured or not sv.is_captured
        member = sv.member
        if isinstance(member, FieldDecl) and not config.track_fields:
            return False
        if isinstance(member, PropertyDecl) and not config.track_properties:
            return False
        if not member.is_field_like or member.is_volatile:
            return False
        if isinstance(sv, QualifiedFieldOrProp) and not self.is_tracked(sv.qualifier):
            return False
        st = self._stats.get(sv)
        if st is None:
            return False
        return st.count >= config.min_field_accesses or st.in_loop or (st.read and st.written)

    # ----- enumeration ----------------------------------------------------

    def variables(self) -> List[SourceVariable]:
        """Every source variable accessed in the callable, in access order."""
        return list(self._stats)

    def tracked_variables(self) -> List[SourceVariable]:
        return [v for v in self._stats if self.is_tracked(v)]

    def accesses(self) -> Iterator[Node]:
        return iter(self._by_access)

    def access_count(self, sv: SourceVariable) -> int:
        st = self._stats.get(sv)
        return st.count if st is not None else 0

    def is_captured_here(self, declaration: Variable) -> bool:
        """Whether a local declared in this callable is used by a nested lambda."""
        return declaration in self.closure_reads or declaration in self.closure_writes
