"""
cfgssa.ast_nodes
================

Typed syntax tree for the object-oriented source programs analysed by this
package.  The tree is produced by :mod:`cfgssa.reader` (or built directly
in code) and is **immutable in shape** once :func:`cfgssa.ast_helper.link_program`
has run: that pass fills in the back-references (``parent``, declaring
callable, declaring class) every analysis relies on.

Node families
-------------
Declarations
    ``Program``, ``ClassDecl``, ``FieldDecl``, ``PropertyDecl``,
    ``MethodDecl``, ``ConstructorDecl``, ``Parameter``, ``LocalVariable``.
Elements (nodes of a control-flow graph)
    Every ``Stmt`` and ``Expr`` subclass, plus ``SwitchCase`` and
    ``CatchClause``.
Patterns
    ``ConstantPattern`` and ``TypePattern`` (case labels; never evaluated
    as control-flow elements).

Identity
--------
All node classes are ``eq=False`` dataclasses, so two nodes compare equal
only if they are the same object.  This makes nodes usable as dictionary
keys in every analysis table.

References vs. children
-----------------------
Fields declared with :func:`_ref` point at nodes owned elsewhere (for
instance ``LocalAccess.variable``).  They are *not* syntactic children and
are skipped by :meth:`Node.children`.
"""

from __future__ import annotations

import enum
import functools
from dataclasses import dataclass, field, fields
from typing import Any, Optional, Tuple


# ---------------------------------------------------------------------------
# Source locations
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SourceLoc:
    """A position in the program text (1-based; 0 means unknown)."""

    file: str = "<input>"
    line: int = 0
    col: int = 0

    def __str__(self) -> str:
        if self.line:
            return f"{self.file}:{self.line}:{self.col}"
        return self.file


NO_LOC = SourceLoc()

_REF = {"ref": True}


def _ref(default: Any = None):
    """A field that references a node owned by some other part of the tree."""
    return field(default=default, metadata=_REF, repr=False)


def _backref():
    """A reference filled in by the linking pass."""
    return field(default=None, init=False, repr=False, metadata=_REF)


class PassingMode(enum.Enum):
    """How a parameter is declared, or how an argument is passed."""

    VALUE = "value"
    REF = "ref"
    OUT = "out"


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Node:
    """Base class of every syntax tree node."""

    loc: SourceLoc = field(default=NO_LOC, kw_only=True, repr=False)
    parent: Optional["Node"] = field(default=None, init=False, repr=False)

    def children(self) -> Tuple["Node", ...]:
        """Syntactic children in declaration order (references excluded)."""
        out = []
        for name in _child_fields(type(self)):
            value = getattr(self, name)
            if isinstance(value, Node):
                out.append(value)
            elif isinstance(value, tuple):
                out.extend(v for v in value if isinstance(v, Node))
        return tuple(out)

    @property
    def kind(self) -> str:
        return type(self).__name__


@functools.lru_cache(maxsize=None)
def _child_fields(cls: type) -> Tuple[str, ...]:
    return tuple(
        f.name for f in fields(cls)
        if f.name not in ("loc", "parent") and not f.metadata.get("ref")
    )


@dataclass(eq=False)
class Element(Node):
    """A node that may become a control-flow graph node."""


@dataclass(eq=False)
class Stmt(Element):
    pass


@dataclass(eq=False)
class Expr(Element):
    pass


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Variable(Node):
    """A local scope variable: a parameter or a local variable."""

    name: str
    type_name: Optional[str] = None

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class Parameter(Variable):
    mode: PassingMode = PassingMode.VALUE


@dataclass(eq=False)
class LocalVariable(Variable):
    pass


@dataclass(eq=False)
class FieldDecl(Node):
    name: str
    type_name: Optional[str] = None
    is_static: bool = False
    is_volatile: bool = False
    is_readonly: bool = False
    declaring_class: Optional["ClassDecl"] = _backref()

    @property
    def is_field_like(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class PropertyDecl(Node):
    """A property; auto-implemented non-virtual properties behave like fields."""

    name: str
    type_name: Optional[str] = None
    is_static: bool = False
    is_auto: bool = True
    is_virtual: bool = False
    declaring_class: Optional["ClassDecl"] = _backref()

    @property
    def is_volatile(self) -> bool:
        return False

    @property
    def is_field_like(self) -> bool:
        return self.is_auto and not self.is_virtual

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class MethodDecl(Node):
    name: str
    params: Tuple[Parameter, ...] = ()
    body: Optional[Stmt] = None
    return_type: Optional[str] = None
    is_static: bool = False
    is_virtual: bool = False
    is_abstract: bool = False
    is_override: bool = False
    declaring_class: Optional["ClassDecl"] = _backref()

    @property
    def is_dispatched(self) -> bool:
        """Whether calls to this method are dispatched on the receiver type."""
        return self.is_virtual or self.is_abstract or self.is_override

    @property
    def qualified_name(self) -> str:
        cls = self.declaring_class.name if self.declaring_class else "?"
        return f"{cls}.{self.name}"

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(eq=False)
class ConstructorDecl(Node):
    params: Tuple[Parameter, ...] = ()
    body: Optional[Stmt] = None
    initializer: Optional["ConstructorInitializer"] = None
    is_static: bool = False
    declaring_class: Optional["ClassDecl"] = _backref()

    @property
    def name(self) -> str:
        return self.declaring_class.name if self.declaring_class else "<ctor>"

    @property
    def qualified_name(self) -> str:
        return f"{self.name}.ctor"

    @property
    def return_type(self) -> Optional[str]:
        return None

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(eq=False)
class ClassDecl(Node):
    name: str
    base_name: Optional[str] = None
    members: Tuple[Node, ...] = ()

    def fields(self) -> Tuple[FieldDecl, ...]:
        return tuple(m for m in self.members if isinstance(m, FieldDecl))

    def properties(self) -> Tuple[PropertyDecl, ...]:
        return tuple(m for m in self.members if isinstance(m, PropertyDecl))

    def methods(self) -> Tuple[MethodDecl, ...]:
        return tuple(m for m in self.members if isinstance(m, MethodDecl))

    def constructors(self) -> Tuple[ConstructorDecl, ...]:
        return tuple(m for m in self.members if isinstance(m, ConstructorDecl))

    def member(self, name: str) -> Optional[Node]:
        """The field or property called *name* declared in this class."""
        for m in self.members:
            if isinstance(m, (FieldDecl, PropertyDecl)) and m.name == name:
                return m
        return None

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class Program(Node):
    classes: Tuple[ClassDecl, ...] = ()
    callables: list = field(default_factory=list, init=False, repr=False)

    def class_named(self, name: str) -> Optional[ClassDecl]:
        for c in self.classes:
            if c.name == name:
                return c
        return None


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class BlockStmt(Stmt):
    stmts: Tuple[Stmt, ...] = ()


@dataclass(eq=False)
class ExprStmt(Stmt):
    expr: Expr


@dataclass(eq=False)
class LocalDeclStmt(Stmt):
    decls: Tuple["LocalVarDecl", ...] = ()


@dataclass(eq=False)
class IfStmt(Stmt):
    cond: Expr
    then: Stmt
    else_: Optional[Stmt] = None


@dataclass(eq=False)
class WhileStmt(Stmt):
    cond: Expr
    body: Stmt


@dataclass(eq=False)
class DoStmt(Stmt):
    body: Stmt
    cond: Expr


@dataclass(eq=False)
class ForStmt(Stmt):
    inits: Tuple[Element, ...] = ()
    cond: Optional[Expr] = None
    updates: Tuple[Expr, ...] = ()
    body: Stmt = None  # type: ignore[assignment]


@dataclass(eq=False)
class ForeachStmt(Stmt):
    """``foreach (variable in collection) body``; the node itself is the
    emptiness test performed on every iteration."""

    collection: Expr
    variable: "LocalVarDecl"
    body: Stmt


@dataclass(eq=False)
class ConstantPattern(Node):
    value: Any = None


@dataclass(eq=False)
class TypePattern(Node):
    """``case T x``; a ``None`` type matches everything (``var x`` / ``_``)."""

    type_name: Optional[str] = None
    variable: Optional[LocalVariable] = None


@dataclass(eq=False)
class SwitchCase(Element):
    """A switch section; ``pattern is None`` marks the ``default`` section."""

    pattern: Optional[Node] = None
    guard: Optional[Expr] = None
    body: Tuple[Stmt, ...] = ()

    @property
    def is_default(self) -> bool:
        return self.pattern is None

    @property
    def matches_everything(self) -> bool:
        if self.guard is not None:
            return False
        if self.pattern is None:
            return True
        return isinstance(self.pattern, TypePattern) and self.pattern.type_name is None


@dataclass(eq=False)
class SwitchStmt(Stmt):
    expr: Expr
    cases: Tuple[SwitchCase, ...] = ()


@dataclass(eq=False)
class CatchClause(Element):
    """``catch (T variable) when (filter) block``; ``type_name is None`` is a
    catch-all clause."""

    type_name: Optional[str] = None
    variable: Optional[LocalVariable] = None
    filter: Optional[Expr] = None
    block: "BlockStmt" = None  # type: ignore[assignment]


@dataclass(eq=False)
class TryStmt(Stmt):
    block: BlockStmt
    catches: Tuple[CatchClause, ...] = ()
    finally_: Optional[BlockStmt] = None


@dataclass(eq=False)
class BreakStmt(Stmt):
    pass


@dataclass(eq=False)
class ContinueStmt(Stmt):
    pass


@dataclass(eq=False)
class ReturnStmt(Stmt):
    expr: Optional[Expr] = None


@dataclass(eq=False)
class ThrowStmt(Stmt):
    """``throw e;`` or, with no expression, a rethrow inside a catch clause."""

    expr: Optional[Expr] = None


@dataclass(eq=False)
class GotoStmt(Stmt):
    label: str


@dataclass(eq=False)
class GotoCaseStmt(Stmt):
    value: Any = None


@dataclass(eq=False)
class GotoDefaultStmt(Stmt):
    pass


@dataclass(eq=False)
class LabeledStmt(Stmt):
    label: str
    stmt: Stmt


@dataclass(eq=False)
class EmptyStmt(Stmt):
    pass


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Literal(Expr):
    value: Any = None

    @property
    def is_null(self) -> bool:
        return self.value is None


@dataclass(eq=False)
class LocalAccess(Expr):
    variable: Variable = _ref()


@dataclass(eq=False)
class ThisAccess(Expr):
    pass


@dataclass(eq=False)
class BaseAccess(Expr):
    pass


@dataclass(eq=False)
class TypeAccess(Expr):
    """A type name used as a qualifier; never evaluated."""

    type_name: str = ""


@dataclass(eq=False)
class FieldAccess(Expr):
    """``qualifier.field``; a ``None`` qualifier is an implicit ``this`` (or
    the declaring type, for static fields)."""

    field: FieldDecl = _ref()
    qualifier: Optional[Expr] = None


@dataclass(eq=False)
class PropertyAccess(Expr):
    property: PropertyDecl = _ref()
    qualifier: Optional[Expr] = None


@dataclass(eq=False)
class ElementAccess(Expr):
    array: Expr
    index: Expr


@dataclass(eq=False)
class LocalVarDecl(Expr):
    """A local variable declarator, with optional initializer."""

    variable: LocalVariable
    init: Optional[Expr] = None


@dataclass(eq=False)
class Assign(Expr):
    target: Expr
    source: Expr


@dataclass(eq=False)
class CompoundAssign(Expr):
    op: str
    target: Expr
    source: Expr


@dataclass(eq=False)
class Increment(Expr):
    """``++x``, ``x++``, ``--x`` or ``x--``."""

    op: str
    operand: Expr
    prefix: bool = True


@dataclass(eq=False)
class Unary(Expr):
    op: str
    operand: Expr


@dataclass(eq=False)
class Binary(Expr):
    op: str
    left: Expr
    right: Expr


@dataclass(eq=False)
class LogicalAnd(Expr):
    left: Expr
    right: Expr


@dataclass(eq=False)
class LogicalOr(Expr):
    left: Expr
    right: Expr


@dataclass(eq=False)
class LogicalNot(Expr):
    operand: Expr


@dataclass(eq=False)
class NullCoalescing(Expr):
    left: Expr
    right: Expr


@dataclass(eq=False)
class Conditional(Expr):
    cond: Expr
    then: Expr
    else_: Expr


@dataclass(eq=False)
class Call(Expr):
    """A method call; ``qualifier is None`` for unqualified calls."""

    method_name: str
    args: Tuple[Expr, ...] = ()
    qualifier: Optional[Expr] = None
    modes: Tuple[PassingMode, ...] = ()

    def mode_of(self, index: int) -> PassingMode:
        if index < len(self.modes):
            return self.modes[index]
        return PassingMode.VALUE


@dataclass(eq=False)
class DelegateCall(Expr):
    """Invocation of a delegate value, e.g. ``f(x)`` where ``f`` is a lambda."""

    delegate: Expr
    args: Tuple[Expr, ...] = ()
    modes: Tuple[PassingMode, ...] = ()

    def mode_of(self, index: int) -> PassingMode:
        if index < len(self.modes):
            return self.modes[index]
        return PassingMode.VALUE


@dataclass(eq=False)
class MemberInitializer(Expr):
    """``Member = value`` inside an object initializer."""

    member: Node = _ref()
    value: Expr = None  # type: ignore[assignment]


@dataclass(eq=False)
class ObjectCreation(Expr):
    type_name: str
    args: Tuple[Expr, ...] = ()
    initializers: Tuple[MemberInitializer, ...] = ()
    modes: Tuple[PassingMode, ...] = ()

    def mode_of(self, index: int) -> PassingMode:
        if index < len(self.modes):
            return self.modes[index]
        return PassingMode.VALUE


@dataclass(eq=False)
class ArrayCreation(Expr):
    lengths: Tuple[Expr, ...] = ()
    elements: Tuple[Expr, ...] = ()


@dataclass(eq=False)
class ConstructorInitializer(Expr):
    """``: base(...)`` (``is_base``) or ``: this(...)``."""

    args: Tuple[Expr, ...] = ()
    is_base: bool = True
    modes: Tuple[PassingMode, ...] = ()

    def mode_of(self, index: int) -> PassingMode:
        if index < len(self.modes):
            return self.modes[index]
        return PassingMode.VALUE


@dataclass(eq=False)
class IsExpr(Expr):
    """``expr is T`` with an optional pattern variable."""

    expr: Expr
    type_name: str
    variable: Optional[LocalVariable] = None


@dataclass(eq=False)
class AsExpr(Expr):
    expr: Expr
    type_name: str


@dataclass(eq=False)
class CastExpr(Expr):
    type_name: str
    expr: Expr


@dataclass(eq=False)
class ThrowExpr(Expr):
    expr: Expr


@dataclass(eq=False)
class Lambda(Expr):
    """An anonymous function.  It is a leaf in the enclosing callable's graph
    and a callable of its own."""

    params: Tuple[Parameter, ...] = ()
    body: Optional[Element] = None
    declaring_class: Optional[ClassDecl] = _backref()
    outer: Optional[Node] = _backref()

    is_static: bool = field(default=False, init=False, repr=False)
    return_type: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def name(self) -> str:
        return "<lambda>"

    @property
    def qualified_name(self) -> str:
        outer = getattr(self.outer, "qualified_name", "?")
        return f"{outer}.<lambda@{self.loc.line}>" if self.loc.line else f"{outer}.<lambda>"

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(eq=False)
class MethodRef(Expr):
    """A method group converted to a delegate, e.g. ``Action a = this.M;``."""

    method_name: str
    qualifier: Optional[Expr] = None


CALLABLE_TYPES = (MethodDecl, ConstructorDecl, Lambda)
CALL_TYPES = (Call, DelegateCall, ObjectCreation, ConstructorInitializer)
MEMBER_ACCESS_TYPES = (FieldAccess, PropertyAccess)
LOOP_TYPES = (WhileStmt, DoStmt, ForStmt, ForeachStmt)
