"""
cfgssa.ast_helper
=================

Traversal, linking and querying utilities over :mod:`cfgssa.ast_nodes`.

The helpers here are free functions shared by every analysis module
(control-flow construction, source-variable resolution, call-graph
construction), which all ask the same structural questions, e.g.
*"which finally blocks enclose this element?"* or *"is this element inside
a loop of its own callable?"*.

Public API
----------
    link_program        - fill in parent / declaring-class back-references
    walk                - pre-order iteration over a subtree
    walk_callable       - pre-order iteration that stops at nested lambdas
    enclosing_callable  - innermost method, constructor or lambda
    declaring_callable  - callable that declares a local variable
    finally_chain       - finally blocks enclosing an element
    catch_header_try    - try statement whose catch header holds an element
    is_tried            - whether an element may transfer to a handler
    in_loop             - whether an element is inside a loop body
    constant_value      - compile-time value of an expression
    static_type         - declared type of an expression, when known
    render              - short source-like rendering of a node
    TypeHierarchy       - class hierarchy with the builtin exception types
"""

from __future__ import annotations

import logging
import operator
from typing import Any, Dict, Iterator, List, Optional, Tuple

from cfgssa.ast_nodes import (
    CALLABLE_TYPES,
    LOOP_TYPES,
    ArrayCreation,
    AsExpr,
    Assign,
    BaseAccess,
    Binary,
    BlockStmt,
    Call,
    CastExpr,
    CatchClause,
    ClassDecl,
    CompoundAssign,
    Conditional,
    ConstructorDecl,
    DelegateCall,
    ElementAccess,
    ExprStmt,
    FieldAccess,
    FieldDecl,
    ForeachStmt,
    ForStmt,
    Increment,
    IsExpr,
    Lambda,
    Literal,
    LocalAccess,
    LocalVarDecl,
    LogicalAnd,
    LogicalNot,
    LogicalOr,
    MethodDecl,
    MethodRef,
    Node,
    NullCoalescing,
    ObjectCreation,
    Program,
    PropertyAccess,
    PropertyDecl,
    ThisAccess,
    ThrowExpr,
    TryStmt,
    TypeAccess,
    Unary,
    Variable,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------

def link_program(program: Program) -> Program:
    """Set ``parent`` pointers and declaring-class / outer-callable links.

    Also collects every callable (methods, constructors and lambdas, in
    source order) into ``program.callables``.  Safe to call more than once.
    """
    program.callables = []
    stack: List[Tuple[Node, Optional[ClassDecl], Optional[Node]]] = [
        (program, None, None)
    ]
    while stack:
        node, cls, callable_ = stack.pop()
        if isinstance(node, ClassDecl):
            cls = node
        if isinstance(node, (FieldDecl, PropertyDecl, MethodDecl, ConstructorDecl)):
            node.declaring_class = cls
        if isinstance(node, CALLABLE_TYPES):
            if isinstance(node, Lambda):
                node.declaring_class = cls
                node.outer = callable_
            program.callables.append(node)
            callable_ = node
        children = node.children()
        for child in reversed(children):
            child.parent = node
            stack.append((child, cls, callable_))
    logger.debug("linked program: %d classes, %d callables",
                 len(program.classes), len(program.callables))
    return program


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def walk(node: Optional[Node]) -> Iterator[Node]:
    """Pre-order iteration over *node* and all its descendants."""
    if node is None:
        return
    stack = [node]
    while stack:
        n = stack.pop()
        yield n
        stack.extend(reversed(n.children()))


def walk_callable(callable_: Node) -> Iterator[Node]:
    """Pre-order iteration over the code of *callable_*.

    Nested lambdas are yielded themselves but their parameters and bodies
    are not entered: they belong to their own callable.
    """
    stack = list(reversed(callable_.children()))
    while stack:
        n = stack.pop()
        yield n
        if isinstance(n, Lambda):
            continue
        stack.extend(reversed(n.children()))


def ancestors(node: Node) -> Iterator[Node]:
    cur = node.parent
    while cur is not None:
        yield cur
        cur = cur.parent


def is_within(node: Optional[Node], ancestor: Optional[Node]) -> bool:
    """``True`` if *node* is *ancestor* or one of its descendants."""
    if node is None or ancestor is None:
        return False
    cur = node
    while cur is not None:
        if cur is ancestor:
            return True
        cur = cur.parent
    return False


def enclosing_callable(node: Node) -> Optional[Node]:
    """The innermost callable strictly enclosing *node*."""
    for a in ancestors(node):
        if isinstance(a, CALLABLE_TYPES):
            return a
    return None


def enclosing_class(node: Node) -> Optional[ClassDecl]:
    for a in ancestors(node):
        if isinstance(a, ClassDecl):
            return a
    return None


def outermost_callable(callable_: Node) -> Node:
    """Follow lambda nesting out to the enclosing method or constructor."""
    cur = callable_
    while isinstance(cur, Lambda) and cur.outer is not None:
        cur = cur.outer
    return cur


def declaring_callable(variable: Variable) -> Optional[Node]:
    """The callable in which a parameter or local variable is declared."""
    for a in ancestors(variable):
        if isinstance(a, CALLABLE_TYPES):
            return a
    return None


def is_nested_in(inner: Node, outer: Node) -> bool:
    """Whether callable *inner* is (transitively) a lambda inside *outer*."""
    cur = inner
    while isinstance(cur, Lambda):
        cur = cur.outer
        if cur is outer:
            return True
    return False


def _ancestors_in_callable(node: Node) -> Iterator[Tuple[Node, Node]]:
    """Yield ``(child, ancestor)`` pairs up to (excluding) the callable."""
    child = node
    cur = node.parent
    while cur is not None and not isinstance(cur, CALLABLE_TYPES):
        yield child, cur
        child = cur
        cur = cur.parent


def finally_chain(node: Node) -> Tuple[Node, ...]:
    """Finally blocks (of the same callable) containing *node*, outermost first."""
    chain = [
        a.finally_ for child, a in _ancestors_in_callable(node)
        if isinstance(a, TryStmt) and a.finally_ is child
    ]
    chain.reverse()
    return tuple(chain)


def catch_header_try(node: Node) -> Optional[TryStmt]:
    """The try statement whose catch *header* (clause node or filter) holds *node*."""
    if isinstance(node, CatchClause):
        return node.parent
    for child, a in _ancestors_in_callable(node):
        if isinstance(a, CatchClause):
            return a.parent if child is a.filter else None
    return None


def is_tried(node: Node) -> bool:
    """Whether an exception raised by *node* may be observed by a handler.

    That is the case when *node* sits inside the protected block of a try
    statement that has at least one catch clause or a finally block.
    """
    for child, a in _ancestors_in_callable(node):
        if isinstance(a, TryStmt) and a.block is child and (a.catches or a.finally_):
            return True
    return False


def in_loop(node: Node) -> bool:
    """Whether *node* is evaluated repeatedly by a loop of its own callable."""
    for child, a in _ancestors_in_callable(node):
        if isinstance(a, LOOP_TYPES):
            if isinstance(a, ForStmt) and child in a.inits:
                continue
            if isinstance(a, ForeachStmt) and child is a.collection:
                continue
            return True
    return False


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

class _NotConstant:
    def __repr__(self) -> str:
        return "NOT_CONSTANT"

    def __bool__(self) -> bool:
        return False


NOT_CONSTANT: Any = _NotConstant()

_BINARY_OPS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
    "&": operator.and_,
    "|": operator.or_,
    "^": operator.xor,
    "<<": operator.lshift,
    ">>": operator.rshift,
}


_SHIFT_OPS = ("<<", ">>")
_INT_WIDTHS = (32, 64)
_FOLD_ERRORS = (TypeError, ValueError, ArithmeticError, MemoryError)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _int_width(*values: int) -> Optional[int]:
    """Narrowest integer width (32 or 64 bits) that holds every value."""
    for bits in _INT_WIDTHS:
        bound = 1 << (bits - 1)
        if all(-bound <= v < bound for v in values):
            return bits
    return None


def _wrap(value: int, bits: int) -> int:
    """Two's-complement truncation of *value* to *bits*."""
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _fold_binary(op: str, a: Any, b: Any) -> Any:
    if _is_int(a) and _is_int(b):
        if op in _SHIFT_OPS:
            # the count is a 32-bit int masked to the width of the left operand
            bits = _int_width(a)
            if bits is None or _int_width(b) != 32:
                return NOT_CONSTANT
            return _wrap(_BINARY_OPS[op](a, b & (bits - 1)), bits)
        bits = _int_width(a, b)
        if bits is None:
            return NOT_CONSTANT
        value = _BINARY_OPS[op](a, b)
        return _wrap(value, bits) if _is_int(value) else value
    if op in _SHIFT_OPS:
        return NOT_CONSTANT
    if isinstance(a, bool) != isinstance(b, bool) and op not in ("==", "!="):
        return NOT_CONSTANT
    return _BINARY_OPS[op](a, b)

def constant_value(expr: Optional[Node]) -> Any:
    """Compile-time value of *expr*, or :data:`NOT_CONSTANT`.

    Only expressions whose operands are *all* constant are folded.
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, LogicalNot):
        v = constant_value(expr.operand)
        return (not v) if isinstance(v, bool) else NOT_CONSTANT
    if isinstance(expr, (LogicalAnd, LogicalOr)):
        a, b = constant_value(expr.left), constant_value(expr.right)
        if not (isinstance(a, bool) and isinstance(b, bool)):
            return NOT_CONSTANT
        return (a and b) if isinstance(expr, LogicalAnd) else (a or b)
    if isinstance(expr, Conditional):
        c = constant_value(expr.cond)
        t, e = constant_value(expr.then), constant_value(expr.else_)
        if not isinstance(c, bool) or t is NOT_CONSTANT or e is NOT_CONSTANT:
            return NOT_CONSTANT
        return t if c else e
    if isinstance(expr, NullCoalescing):
        a, b = constant_value(expr.left), constant_value(expr.right)
        if a is NOT_CONSTANT or b is NOT_CONSTANT:
            return NOT_CONSTANT
        return b if a is None else a
    if isinstance(expr, Unary) and expr.op == "-":
        v = constant_value(expr.operand)
        if _is_int(v):
            bits = _int_width(v)
            return NOT_CONSTANT if bits is None else _wrap(-v, bits)
        if isinstance(v, float):
            return -v
        return NOT_CONSTANT
    if isinstance(expr, Binary) and expr.op in _BINARY_OPS:
        a, b = constant_value(expr.left), constant_value(expr.right)
        if a is NOT_CONSTANT or b is NOT_CONSTANT:
            return NOT_CONSTANT
        try:
            return _fold_binary(expr.op, a, b)
        except _FOLD_ERRORS:
            return NOT_CONSTANT
    return NOT_CONSTANT


def is_nonzero_constant(expr: Node) -> bool:
    v = constant_value(expr)
    return isinstance(v, (int, float)) and not isinstance(v, bool) and v != 0


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

ROOT_EXCEPTION = "Exception"

BUILTIN_EXCEPTIONS: Dict[str, Optional[str]] = {
    "Exception": None,
    "SystemException": "Exception",
    "NullReferenceException": "SystemException",
    "InvalidCastException": "SystemException",
    "IndexOutOfRangeException": "SystemException",
    "ArithmeticException": "SystemException",
    "DivideByZeroException": "ArithmeticException",
    "OverflowException": "ArithmeticException",
    "InvalidOperationException": "SystemException",
    "ArgumentException": "SystemException",
    "ArgumentNullException": "ArgumentException",
    "ArgumentOutOfRangeException": "ArgumentException",
}


class TypeHierarchy:
    """Single-inheritance class hierarchy of a program.

    Knows the builtin exception classes in addition to the program's own
    classes, and answers member/method lookups along the base chain.
    """

    def __init__(self, program: Optional[Program] = None) -> None:
        self._base: Dict[str, Optional[str]] = dict(BUILTIN_EXCEPTIONS)
        self._classes: Dict[str, ClassDecl] = {}
        self._subclasses: Dict[str, List[str]] = {}
        if program is not None:
            for cls in program.classes:
                self._classes[cls.name] = cls
                self._base[cls.name] = cls.base_name
        for name, base in self._base.items():
            if base is not None:
                self._subclasses.setdefault(base, []).append(name)

    def is_known(self, type_name: Optional[str]) -> bool:
        return type_name is not None and type_name in self._base

    def class_decl(self, type_name: Optional[str]) -> Optional[ClassDecl]:
        if type_name is None:
            return None
        return self._classes.get(type_name)

    def supertypes(self, type_name: str) -> List[str]:
        """*type_name* followed by its base classes, nearest first."""
        chain: List[str] = []
        cur: Optional[str] = type_name
        while cur is not None and cur not in chain:
            chain.append(cur)
            cur = self._base.get(cur)
        return chain

    def is_subtype(self, sub: Optional[str], sup: Optional[str]) -> bool:
        if sub is None or sup is None:
            return False
        if sup == "object":
            return True
        return sup in self.supertypes(sub)

    def subtypes(self, type_name: str) -> List[str]:
        """All transitive subclasses of *type_name* (excluding itself)."""
        out: List[str] = []
        work = list(self._subclasses.get(type_name, ()))
        while work:
            t = work.pop()
            if t in out or t == type_name:
                continue
            out.append(t)
            work.extend(self._subclasses.get(t, ()))
        return out

    def lookup_member(self, type_name: Optional[str], name: str) -> Optional[Node]:
        """Field or property *name*, searching *type_name* and its bases."""
        if type_name is None:
            return None
        for t in self.supertypes(type_name):
            cls = self._classes.get(t)
            if cls is not None:
                m = cls.member(name)
                if m is not None:
                    return m
        return None

    def lookup_method(
        self,
        type_name: Optional[str],
        name: str,
        arity: Optional[int] = None,
    ) -> Optional[MethodDecl]:
        if type_name is None:
            return None
        for t in self.supertypes(type_name):
            cls = self._classes.get(t)
            if cls is None:
                continue
            for m in cls.methods():
                if m.name == name and (arity is None or len(m.params) == arity):
                    return m
        return None

    def methods_named(self, name: str, arity: Optional[int] = None) -> List[MethodDecl]:
        return [
            m for cls in self._classes.values() for m in cls.methods()
            if m.name == name and (arity is None or len(m.params) == arity)
        ]

    def constructors(self, type_name: Optional[str], arity: Optional[int] = None
                     ) -> List[ConstructorDecl]:
        cls = self.class_decl(type_name)
        if cls is None:
            return []
        return [c for c in cls.constructors()
                if not c.is_static and (arity is None or len(c.params) == arity)]


def static_type(expr: Optional[Node], hierarchy: Optional[TypeHierarchy] = None
                ) -> Optional[str]:
    """Declared type of *expr* when it can be read off the tree."""
    if expr is None:
        return None
    if isinstance(expr, LocalAccess):
        return expr.variable.type_name
    if isinstance(expr, FieldAccess):
        return expr.field.type_name
    if isinstance(expr, PropertyAccess):
        return expr.property.type_name
    if isinstance(expr, ThisAccess):
        cls = enclosing_class(expr)
        return cls.name if cls else None
    if isinstance(expr, BaseAccess):
        cls = enclosing_class(expr)
        return cls.base_name if cls else None
    if isinstance(expr, TypeAccess):
        return expr.type_name
    if isinstance(expr, ObjectCreation):
        return expr.type_name
    if isinstance(expr, (CastExpr, AsExpr)):
        return expr.type_name
    if isinstance(expr, Assign):
        return static_type(expr.target, hierarchy)
    if isinstance(expr, Conditional):
        return static_type(expr.then, hierarchy) or static_type(expr.else_, hierarchy)
    if isinstance(expr, Literal):
        v = expr.value
        if isinstance(v, bool):
            return "bool"
        if isinstance(v, int):
            return "int"
        if isinstance(v, str):
            return "string"
        return None
    if isinstance(expr, Call) and hierarchy is not None:
        if expr.qualifier is None:
            cls = enclosing_class(expr)
            owner = cls.name if cls else None
        else:
            owner = static_type(expr.qualifier, hierarchy)
        m = hierarchy.lookup_method(owner, expr.method_name, len(expr.args))
        return m.return_type if m else None
    return None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _args(args) -> str:
    return ", ".join(render(a) for a in args)


def render(node: Optional[Node], limit: int = 40) -> str:
    """A short, source-like rendering of *node* used in labels and reprs."""
    text = _render(node)
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def _render(n: Optional[Node]) -> str:
    if n is None:
        return ""
    if isinstance(n, Literal):
        if n.value is None:
            return "null"
        if isinstance(n.value, bool):
            return "true" if n.value else "false"
        if isinstance(n.value, str):
            return repr(n.value)
        return str(n.value)
    if isinstance(n, LocalAccess):
        return n.variable.name
    if isinstance(n, ThisAccess):
        return "this"
    if isinstance(n, BaseAccess):
        return "base"
    if isinstance(n, TypeAccess):
        return n.type_name
    if isinstance(n, FieldAccess):
        q = _render(n.qualifier)
        return f"{q}.{n.field.name}" if q else n.field.name
    if isinstance(n, PropertyAccess):
        q = _render(n.qualifier)
        return f"{q}.{n.property.name}" if q else n.property.name
    if isinstance(n, ElementAccess):
        return f"{_render(n.array)}[{_render(n.index)}]"
    if isinstance(n, LocalVarDecl):
        init = f" = {_render(n.init)}" if n.init is not None else ""
        return f"var {n.variable.name}{init}"
    if isinstance(n, Assign):
        return f"{_render(n.target)} = {_render(n.source)}"
    if isinstance(n, CompoundAssign):
        return f"{_render(n.target)} {n.op}= {_render(n.source)}"
    if isinstance(n, Increment):
        return f"{n.op}{_render(n.operand)}" if n.prefix else f"{_render(n.operand)}{n.op}"
    if isinstance(n, Unary):
        return f"{n.op}{_render(n.operand)}"
    if isinstance(n, Binary):
        return f"{_render(n.left)} {n.op} {_render(n.right)}"
    if isinstance(n, LogicalAnd):
        return f"{_render(n.left)} && {_render(n.right)}"
    if isinstance(n, LogicalOr):
        return f"{_render(n.left)} || {_render(n.right)}"
    if isinstance(n, LogicalNot):
        return f"!{_render(n.operand)}"
    if isinstance(n, NullCoalescing):
        return f"{_render(n.left)} ?? {_render(n.right)}"
    if isinstance(n, Conditional):
        return f"{_render(n.cond)} ? {_render(n.then)} : {_render(n.else_)}"
    if isinstance(n, Call):
        q = _render(n.qualifier)
        name = f"{q}.{n.method_name}" if q else n.method_name
        return f"{name}({_args(n.args)})"
    if isinstance(n, DelegateCall):
        return f"{_render(n.delegate)}({_args(n.args)})"
    if isinstance(n, ObjectCreation):
        return f"new {n.type_name}({_args(n.args)})"
    if isinstance(n, ArrayCreation):
        return f"new[{_args(n.lengths)}]{{{_args(n.elements)}}}"
    if isinstance(n, IsExpr):
        var = f" {n.variable.name}" if n.variable is not None else ""
        return f"{_render(n.expr)} is {n.type_name}{var}"
    if isinstance(n, AsExpr):
        return f"{_render(n.expr)} as {n.type_name}"
    if isinstance(n, CastExpr):
        return f"({n.type_name}){_render(n.expr)}"
    if isinstance(n, ThrowExpr):
        return f"throw {_render(n.expr)}"
    if isinstance(n, Lambda):
        return f"({', '.join(p.name for p in n.params)}) => ..."
    if isinstance(n, MethodRef):
        q = _render(n.qualifier)
        return f"{q}.{n.method_name}" if q else n.method_name
    if isinstance(n, ExprStmt):
        return f"{_render(n.expr)};"
    if isinstance(n, BlockStmt):
        return "{...}"
    if isinstance(n, CatchClause):
        t = n.type_name or ""
        return f"catch ({t})" if t else "catch"
    if isinstance(n, CALLABLE_TYPES):
        return n.qualified_name
    name = getattr(n, "name", None)
    if isinstance(name, str):
        return name
    if n.kind.endswith("Stmt"):
        return n.kind[:-4].lower()
    return n.kind
