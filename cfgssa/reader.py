"""
cfgssa.reader
=============

Reads programs written as S-expressions into :mod:`cfgssa.ast_nodes` trees.

Parsing is done by the ``sexpdata`` library; this module turns the nested
lists into typed nodes and resolves every name to its declaration.  Names
are resolved lexically: locals and parameters (including those of
enclosing callables, which lambdas capture), then fields and properties of
the enclosing class and its bases, then class names.

Grammar
-------
::

    program   := class*
    class     := (class NAME [:base NAME] member*)
    member    := (field NAME [TYPE] [:static] [:volatile] [:readonly])
               | (property NAME [TYPE] [:static] [:virtual] [:computed])
               | (method NAME (param*) [:returns TYPE] [:static] [:virtual]
                         [:abstract] [:override] stmt*)
               | (ctor (param*) [:static] [(init-base arg*) | (init-this arg*)] stmt*)
    param     := NAME | (NAME TYPE) | (ref NAME [TYPE]) | (out NAME [TYPE])

    stmt      := (block stmt*) | (expr e) | (var DECL [e]) | (if e stmt [stmt])
               | (while e stmt) | (do stmt e) | (for (init*) e|() (e*) stmt)
               | (foreach DECL e stmt) | (switch e case*)
               | (try (block stmt*) catch* [(finally stmt*)])
               | (break) | (continue) | (return [e]) | (throw [e])
               | (goto NAME) | (goto-case CONST) | (goto-default)
               | (label NAME stmt) | (empty) | e
    DECL      := NAME | (NAME TYPE)
    case      := (case PATTERN [:when e] stmt*) | (default stmt*)
    PATTERN   := CONST | (type TYPE [NAME]) | (var NAME) | _
    catch     := (catch [TYPE [NAME]] [:when e] stmt*)

    e         := NAME | NUMBER | "string" | this | base | true | false | null
               | (= e e) | (OP= e e) | (++ e) | (-- e) | (post++ e) | (post-- e)
               | (BINOP e e) | (neg e) | (~ e) | (and e e+) | (or e e+) | (not e)
               | (? e e e) | (?? e e) | (call NAME arg*) | (invoke e NAME arg*)
               | (dcall e arg*) | (new TYPE arg* [(init (NAME e)*)])
               | (new-array e*) | (array e*) | (is e TYPE [NAME]) | (as e TYPE)
               | (cast TYPE e) | (get e NAME) | (index e e) | (throw-expr e)
               | (lambda (param*) e|(block stmt*)) | (methodref [e] NAME)
    arg       := e | (ref e) | (out e)

Typical usage::

    from cfgssa.reader import parse_program

    program = parse_program('''
        (class C
          (field f int)
          (method M ((x int))
            (if (> x 0) (= f x) (= f 0))
            (return)))
    ''')
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import sexpdata
from sexpdata import Symbol

from cfgssa.ast_helper import TypeHierarchy, link_program
from cfgssa.ast_nodes import (
    ArrayCreation,
    AsExpr,
    Assign,
    BaseAccess,
    Binary,
    BlockStmt,
    BreakStmt,
    Call,
    CastExpr,
    CatchClause,
    ClassDecl,
    CompoundAssign,
    Conditional,
    ConstantPattern,
    ConstructorDecl,
    ConstructorInitializer,
    ContinueStmt,
    DelegateCall,
    DoStmt,
    ElementAccess,
    EmptyStmt,
    Expr,
    ExprStmt,
    FieldAccess,
    FieldDecl,
    ForeachStmt,
    ForStmt,
    GotoCaseStmt,
    GotoDefaultStmt,
    GotoStmt,
    IfStmt,
    Increment,
    IsExpr,
    LabeledStmt,
    Lambda,
    Literal,
    LocalAccess,
    LocalDeclStmt,
    LocalVarDecl,
    LocalVariable,
    LogicalAnd,
    LogicalNot,
    LogicalOr,
    MemberInitializer,
    MethodDecl,
    MethodRef,
    Node,
    NullCoalescing,
    ObjectCreation,
    Parameter,
    PassingMode,
    Program,
    PropertyAccess,
    PropertyDecl,
    ReturnStmt,
    SourceLoc,
    Stmt,
    SwitchCase,
    SwitchStmt,
    ThisAccess,
    ThrowExpr,
    ThrowStmt,
    TryStmt,
    TypeAccess,
    TypePattern,
    Unary,
    Variable,
    WhileStmt,
)
from cfgssa.errors import ErrorCodes, ReaderError

logger = logging.getLogger(__name__)

BINARY_OPS = frozenset({
    "+", "-", "*", "/", "%", "<", "<=", ">", ">=", "==", "!=",
    "&", "|", "^", "<<", ">>",
})
COMPOUND_OPS = frozenset(op + "=" for op in BINARY_OPS - {"<", "<=", ">", ">=", "==", "!="}) \
    | {"??="}
CONSTANT_SYMBOLS = {"true": True, "false": False, "null": None}


# ===================================================================
#  S-EXPRESSION LAYER
# ===================================================================

def _parse_sexp_many(text: str, file: str) -> List[Any]:
    """Parse a string holding any number of top-level S-expressions."""
    # sexpdata parses a single form; wrap the stream in a list
    wrapped = f"({text}\n)"
    try:
        parsed = sexpdata.loads(wrapped, nil=None, true=None, false=None)
    except Exception as e:
        raise ReaderError(f"failed to parse S-expression stream: {e}",
                          ErrorCodes.SEXP_SYNTAX, SourceLoc(file)) from e
    if not isinstance(parsed, list):
        raise ReaderError("expected a list of forms", ErrorCodes.SEXP_SYNTAX, SourceLoc(file))
    return parsed


def _sym(obj: Any) -> Optional[str]:
    return str(obj) if isinstance(obj, Symbol) else None


def _head(form: Any) -> Optional[str]:
    if isinstance(form, list) and form:
        return _sym(form[0])
    return None


def _is_flag(obj: Any) -> bool:
    s = _sym(obj)
    return s is not None and s.startswith(":")


def _show(form: Any) -> str:
    try:
        text = sexpdata.dumps(form)
    except Exception:
        text = repr(form)
    return text if len(text) <= 60 else text[:57] + "..."


# ===================================================================
#  SCOPES
# ===================================================================

class _Scope:
    __slots__ = ("names", "parent")

    def __init__(self, parent: Optional["_Scope"] = None) -> None:
        self.names: Dict[str, Variable] = {}
        self.parent = parent

    def lookup(self, name: str) -> Optional[Variable]:
        scope: Optional[_Scope] = self
        while scope is not None:
            v = scope.names.get(name)
            if v is not None:
                return v
            scope = scope.parent
        return None


# ===================================================================
#  READER
# ===================================================================

class ProgramReader:
    """Builds a linked :class:`Program` from S-expression text.

    Class and member headers are read first, so bodies may refer to any
    class, field, property or method of the program regardless of order.
    """

    def __init__(self, file: str = "<input>") -> None:
        self.file = file
        self.loc = SourceLoc(file)
        self.hierarchy: Optional[TypeHierarchy] = None
        self._cls: Optional[ClassDecl] = None
        self._scope: Optional[_Scope] = None
        self._stmt_forms: Dict[str, Callable[[list], Stmt]] = {
            "block": self._block,
            "expr": self._expr_stmt,
            "var": self._var_stmt,
            "if": self._if,
            "while": self._while,
            "do": self._do,
            "for": self._for,
            "foreach": self._foreach,
            "switch": self._switch,
            "try": self._try,
            "break": lambda f: BreakStmt(loc=self.loc),
            "continue": lambda f: ContinueStmt(loc=self.loc),
            "return": self._return,
            "throw": self._throw,
            "goto": self._goto,
            "goto-case": self._goto_case,
            "goto-default": lambda f: GotoDefaultStmt(loc=self.loc),
            "label": self._label,
            "empty": lambda f: EmptyStmt(loc=self.loc),
        }
        self._expr_forms: Dict[str, Callable[[list], Expr]] = {
            "=": self._assign,
            "++": self._increment,
            "--": self._increment,
            "post++": self._increment,
            "post--": self._increment,
            "neg": lambda f: Unary("-", self._expr(self._arg(f, 1)), loc=self.loc),
            "~": lambda f: Unary("~", self._expr(self._arg(f, 1)), loc=self.loc),
            "and": self._logical,
            "or": self._logical,
            "not": lambda f: LogicalNot(self._expr(self._arg(f, 1)), loc=self.loc),
            "?": self._conditional,
            "??": lambda f: NullCoalescing(self._expr(self._arg(f, 1)),
                                           self._expr(self._arg(f, 2)), loc=self.loc),
            "call": self._call,
            "invoke": self._invoke,
            "dcall": self._dcall,
            "new": self._new,
            "new-array": lambda f: ArrayCreation(
                lengths=tuple(self._expr(x) for x in f[1:]), loc=self.loc),
            "array": lambda f: ArrayCreation(
                elements=tuple(self._expr(x) for x in f[1:]), loc=self.loc),
            "is": self._is,
            "as": lambda f: AsExpr(self._expr(self._arg(f, 1)), self._type(self._arg(f, 2)),
                                   loc=self.loc),
            "cast": lambda f: CastExpr(self._type(self._arg(f, 1)),
                                       self._expr(self._arg(f, 2)), loc=self.loc),
            "get": self._get,
            "index": lambda f: ElementAccess(self._expr(self._arg(f, 1)),
                                             self._expr(self._arg(f, 2)), loc=self.loc),
            "throw-expr": lambda f: ThrowExpr(self._expr(self._arg(f, 1)), loc=self.loc),
            "lambda": self._lambda,
            "methodref": self._methodref,
        }

    # ----- entry point ------------------------------------------------------

    def read(self, text: str) -> Program:
        forms = _parse_sexp_many(text, self.file)
        pending: List[Tuple[ClassDecl, Node, list]] = []
        classes = []
        names = set()
        for form in forms:
            if _head(form) != "class":
                raise ReaderError(f"expected (class ...), got {_show(form)}",
                                  ErrorCodes.UNEXPECTED_FORM, self.loc)
            cls, bodies = self._class_header(form)
            if cls.name in names:
                raise ReaderError(f"class {cls.name} declared twice",
                                  ErrorCodes.DUPLICATE_DECLARATION, self.loc)
            names.add(cls.name)
            classes.append(cls)
            pending.extend((cls, decl, body) for decl, body in bodies)

        program = Program(tuple(classes), loc=self.loc)
        self.hierarchy = TypeHierarchy(program)
        for cls, decl, body in pending:
            self._cls = cls
            self._callable_body(decl, body)
        self._cls = None
        link_program(program)
        logger.debug("read %s: %d classes, %d callables",
                     self.file, len(program.classes), len(program.callables))
        return program

    # ----- small helpers ----------------------------------------------------

    def _error(self, message: str, code=ErrorCodes.UNEXPECTED_FORM) -> ReaderError:
        return ReaderError(message, code, self.loc)

    def _arg(self, form: list, i: int) -> Any:
        if i >= len(form):
            raise self._error(f"{_head(form)} needs at least {i} operand(s): {_show(form)}",
                              ErrorCodes.MISSING_OPERAND)
        return form[i]

    def _name(self, obj: Any) -> str:
        s = _sym(obj)
        if s is None or s.startswith(":"):
            raise self._error(f"expected a name, got {_show(obj)}")
        return s

    def _type(self, obj: Any) -> str:
        return self._name(obj)

    def _push(self) -> _Scope:
        self._scope = _Scope(self._scope)
        return self._scope

    def _pop(self) -> None:
        assert self._scope is not None
        self._scope = self._scope.parent

    def _declare(self, var: Variable) -> Variable:
        assert self._scope is not None
        if var.name in self._scope.names:
            raise self._error(f"{var.name} is already declared in this scope",
                              ErrorCodes.DUPLICATE_DECLARATION)
        self._scope.names[var.name] = var
        return var

    def _decl(self, obj: Any) -> LocalVariable:
        """``NAME`` or ``(NAME TYPE)``."""
        if isinstance(obj, list):
            name = self._name(self._arg(obj, 0))
            type_name = self._type(obj[1]) if len(obj) > 1 else None
            return LocalVariable(name, type_name, loc=self.loc)
        return LocalVariable(self._name(obj), loc=self.loc)

    # ----- declarations -----------------------------------------------------

    def _class_header(self, form: list) -> Tuple[ClassDecl, List[Tuple[Node, list]]]:
        name = self._name(self._arg(form, 1))
        base = None
        items = form[2:]
        if items and _sym(items[0]) == ":base":
            base = self._type(self._arg(items, 1))
            items = items[2:]
        members: List[Node] = []
        bodies: List[Tuple[Node, list]] = []
        seen = set()
        for item in items:
            head = _head(item)
            if head == "field":
                member = self._field(item)
            elif head == "property":
                member = self._property(item)
            elif head == "method":
                member, body = self._method_header(item)
                bodies.append((member, body))
            elif head == "ctor":
                member, body = self._ctor_header(item)
                bodies.append((member, body))
            else:
                raise self._error(f"unknown class member {_show(item)}", ErrorCodes.UNKNOWN_FORM)
            if isinstance(member, (FieldDecl, PropertyDecl)):
                if member.name in seen:
                    raise self._error(f"member {name}.{member.name} declared twice",
                                      ErrorCodes.DUPLICATE_DECLARATION)
                seen.add(member.name)
            members.append(member)
        return ClassDecl(name, base, tuple(members), loc=self.loc), bodies

    def _flags(self, items: list) -> Tuple[set, List[Any], Dict[str, Any]]:
        """Split member items into flags, ``:key value`` options and the rest."""
        flags, rest, options = set(), [], {}
        i = 0
        while i < len(items):
            s = _sym(items[i])
            if s in (":returns", ":base"):
                options[s] = self._type(self._arg(items, i + 1))
                i += 2
                continue
            if s is not None and s.startswith(":"):
                flags.add(s[1:])
            else:
                rest.append(items[i])
            i += 1
        return flags, rest, options

    def _field(self, form: list) -> FieldDecl:
        flags, rest, _ = self._flags(form[2:])
        type_name = self._type(rest[0]) if rest else None
        return FieldDecl(self._name(self._arg(form, 1)), type_name,
                         is_static="static" in flags, is_volatile="volatile" in flags,
                         is_readonly="readonly" in flags, loc=self.loc)

    def _property(self, form: list) -> PropertyDecl:
        flags, rest, _ = self._flags(form[2:])
        type_name = self._type(rest[0]) if rest else None
        return PropertyDecl(self._name(self._arg(form, 1)), type_name,
                            is_static="static" in flags, is_auto="computed" not in flags,
                            is_virtual="virtual" in flags, loc=self.loc)

    def _params(self, obj: Any) -> Tuple[Parameter, ...]:
        if not isinstance(obj, list):
            raise self._error(f"expected a parameter list, got {_show(obj)}")
        params = []
        for p in obj:
            mode = PassingMode.VALUE
            if isinstance(p, list) and _head(p) in ("ref", "out") and len(p) > 1:
                mode = PassingMode.REF if _head(p) == "ref" else PassingMode.OUT
                p = p[1:] if len(p) > 2 else p[1]
            if isinstance(p, list):
                name = self._name(self._arg(p, 0))
                type_name = self._type(p[1]) if len(p) > 1 else None
            else:
                name, type_name = self._name(p), None
            params.append(Parameter(name, type_name, mode, loc=self.loc))
        names = [p.name for p in params]
        if len(set(names)) != len(names):
            raise self._error(f"duplicate parameter in {_show(obj)}",
                              ErrorCodes.DUPLICATE_DECLARATION)
        return tuple(params)

    def _method_header(self, form: list) -> Tuple[MethodDecl, list]:
        name = self._name(self._arg(form, 1))
        params = self._params(self._arg(form, 2))
        flags, body, options = self._flags(form[3:])
        m = MethodDecl(name, params, None, options.get(":returns"),
                       is_static="static" in flags, is_virtual="virtual" in flags,
                       is_abstract="abstract" in flags, is_override="override" in flags,
                       loc=self.loc)
        return m, body

    def _ctor_header(self, form: list) -> Tuple[ConstructorDecl, list]:
        params = self._params(self._arg(form, 1))
        flags, body, _ = self._flags(form[2:])
        return ConstructorDecl(params, is_static="static" in flags, loc=self.loc), body

    def _callable_body(self, decl: Node, body: list) -> None:
        self._scope = _Scope()
        for p in decl.params:
            self._declare(p)
        if isinstance(decl, ConstructorDecl) and body and _head(body[0]) in ("init-base", "init-this"):
            init = body[0]
            args, modes = self._args(init[1:])
            decl.initializer = ConstructorInitializer(args, _head(init) == "init-base", modes,
                                                      loc=self.loc)
            body = body[1:]
        if isinstance(decl, MethodDecl) and decl.is_abstract and not body:
            decl.body = None
        else:
            decl.body = BlockStmt(tuple(self._stmt(s) for s in body), loc=self.loc)
        self._scope = None

    # ----- statements -------------------------------------------------------

    def _stmt(self, form: Any) -> Stmt:
        handler = self._stmt_forms.get(_head(form) or "")
        if handler is not None:
            return handler(form)
        return ExprStmt(self._expr(form), loc=self.loc)

    def _stmts(self, forms: list) -> Tuple[Stmt, ...]:
        return tuple(self._stmt(f) for f in forms)

    def _block(self, form: list) -> BlockStmt:
        self._push()
        try:
            return BlockStmt(self._stmts(form[1:]), loc=self.loc)
        finally:
            self._pop()

    def _scoped_stmt(self, form: Any) -> Stmt:
        self._push()
        try:
            return self._stmt(form)
        finally:
            self._pop()

    def _expr_stmt(self, form: list) -> ExprStmt:
        return ExprStmt(self._expr(self._arg(form, 1)), loc=self.loc)

    def _local_var_decl(self, form: list) -> LocalVarDecl:
        var = self._decl(self._arg(form, 1))
        init = self._expr(form[2]) if len(form) > 2 else None
        self._declare(var)
        return LocalVarDecl(var, init, loc=self.loc)

    def _var_stmt(self, form: list) -> LocalDeclStmt:
        return LocalDeclStmt((self._local_var_decl(form),), loc=self.loc)

    def _if(self, form: list) -> IfStmt:
        cond = self._expr(self._arg(form, 1))
        then = self._scoped_stmt(self._arg(form, 2))
        else_ = self._scoped_stmt(form[3]) if len(form) > 3 else None
        return IfStmt(cond, then, else_, loc=self.loc)

    def _while(self, form: list) -> WhileStmt:
        cond = self._expr(self._arg(form, 1))
        return WhileStmt(cond, self._scoped_stmt(self._arg(form, 2)), loc=self.loc)

    def _do(self, form: list) -> DoStmt:
        body = self._scoped_stmt(self._arg(form, 1))
        return DoStmt(body, self._expr(self._arg(form, 2)), loc=self.loc)

    def _for(self, form: list) -> ForStmt:
        self._push()
        try:
            inits = []
            for i in self._arg(form, 1):
                if _head(i) == "var":
                    inits.append(self._local_var_decl(i))
                else:
                    inits.append(self._expr(i))
            cond_form = self._arg(form, 2)
            cond = None if cond_form == [] else self._expr(cond_form)
            updates = tuple(self._expr(u) for u in self._arg(form, 3))
            body = self._scoped_stmt(self._arg(form, 4))
            return ForStmt(tuple(inits), cond, updates, body, loc=self.loc)
        finally:
            self._pop()

    def _foreach(self, form: list) -> ForeachStmt:
        var = self._decl(self._arg(form, 1))
        collection = self._expr(self._arg(form, 2))
        self._push()
        try:
            self._declare(var)
            decl = LocalVarDecl(var, None, loc=self.loc)
            body = self._scoped_stmt(self._arg(form, 3))
            return ForeachStmt(collection, decl, body, loc=self.loc)
        finally:
            self._pop()

    def _switch(self, form: list) -> SwitchStmt:
        expr = self._expr(self._arg(form, 1))
        cases = []
        for c in form[2:]:
            head = _head(c)
            self._push()
            try:
                if head == "default":
                    cases.append(SwitchCase(None, None, self._stmts(c[1:]), loc=self.loc))
                elif head == "case":
                    pattern = self._pattern(self._arg(c, 1))
                    rest = c[2:]
                    guard = None
                    if rest and _sym(rest[0]) == ":when":
                        guard = self._expr(self._arg(rest, 1))
                        rest = rest[2:]
                    cases.append(SwitchCase(pattern, guard, self._stmts(rest), loc=self.loc))
                else:
                    raise self._error(f"expected (case ...) or (default ...), got {_show(c)}")
            finally:
                self._pop()
        return SwitchStmt(expr, tuple(cases), loc=self.loc)

    def _pattern(self, obj: Any) -> Node:
        head = _head(obj)
        if head == "type":
            type_name = self._type(self._arg(obj, 1))
            var = None
            if len(obj) > 2:
                var = self._declare(LocalVariable(self._name(obj[2]), type_name, loc=self.loc))
            return TypePattern(type_name, var, loc=self.loc)
        if head == "var":
            var = self._declare(LocalVariable(self._name(self._arg(obj, 1)), loc=self.loc))
            return TypePattern(None, var, loc=self.loc)
        if _sym(obj) == "_":
            return TypePattern(None, None, loc=self.loc)
        return ConstantPattern(self._constant(obj), loc=self.loc)

    def _constant(self, obj: Any) -> Any:
        s = _sym(obj)
        if s is not None:
            if s in CONSTANT_SYMBOLS:
                return CONSTANT_SYMBOLS[s]
            raise self._error(f"expected a constant, got {s}")
        if isinstance(obj, (int, float, str)):
            return obj
        if _head(obj) == "neg" and len(obj) == 2 and isinstance(obj[1], (int, float)):
            return -obj[1]
        raise self._error(f"expected a constant, got {_show(obj)}")

    def _try(self, form: list) -> TryStmt:
        block_form = self._arg(form, 1)
        if _head(block_form) != "block":
            raise self._error(f"try expects a (block ...) first, got {_show(block_form)}")
        block = self._block(block_form)
        catches, finally_ = [], None
        for item in form[2:]:
            head = _head(item)
            if head == "catch":
                catches.append(self._catch(item))
            elif head == "finally" and finally_ is None:
                finally_ = self._block(item)
            else:
                raise self._error(f"unexpected try clause {_show(item)}")
        if not catches and finally_ is None:
            raise self._error("try needs a catch or a finally clause", ErrorCodes.MISSING_OPERAND)
        return TryStmt(block, tuple(catches), finally_, loc=self.loc)

    def _catch(self, form: list) -> CatchClause:
        rest = form[1:]
        type_name = var = None
        self._push()
        try:
            if rest and _sym(rest[0]) is not None and not _is_flag(rest[0]):
                type_name = self._type(rest[0])
                rest = rest[1:]
                if rest and _sym(rest[0]) is not None and not _is_flag(rest[0]):
                    var = self._declare(LocalVariable(self._name(rest[0]), type_name,
                                                      loc=self.loc))
                    rest = rest[1:]
            filter_ = None
            if rest and _sym(rest[0]) == ":when":
                filter_ = self._expr(self._arg(rest, 1))
                rest = rest[2:]
            block = BlockStmt(self._stmts(rest), loc=self.loc)
            return CatchClause(type_name, var, filter_, block, loc=self.loc)
        finally:
            self._pop()

    def _return(self, form: list) -> ReturnStmt:
        return ReturnStmt(self._expr(form[1]) if len(form) > 1 else None, loc=self.loc)

    def _throw(self, form: list) -> ThrowStmt:
        return ThrowStmt(self._expr(form[1]) if len(form) > 1 else None, loc=self.loc)

    def _goto(self, form: list) -> GotoStmt:
        return GotoStmt(self._name(self._arg(form, 1)), loc=self.loc)

    def _goto_case(self, form: list) -> GotoCaseStmt:
        return GotoCaseStmt(self._constant(self._arg(form, 1)), loc=self.loc)

    def _label(self, form: list) -> LabeledStmt:
        return LabeledStmt(self._name(self._arg(form, 1)), self._stmt(self._arg(form, 2)),
                           loc=self.loc)

    # ----- expressions ------------------------------------------------------

    def _expr(self, form: Any) -> Expr:
        if isinstance(form, Symbol):
            return self._name_expr(str(form))
        if isinstance(form, bool):
            return Literal(form, loc=self.loc)
        if isinstance(form, (int, float, str)):
            return Literal(form, loc=self.loc)
        head = _head(form)
        if head is None:
            raise self._error(f"cannot read expression {_show(form)}")
        handler = self._expr_forms.get(head)
        if handler is not None:
            return handler(form)
        if head in BINARY_OPS:
            if head == "-" and len(form) == 2:
                return Unary("-", self._expr(form[1]), loc=self.loc)
            return Binary(head, self._expr(self._arg(form, 1)), self._expr(self._arg(form, 2)),
                          loc=self.loc)
        if head in COMPOUND_OPS:
            return CompoundAssign(head[:-1], self._expr(self._arg(form, 1)),
                                  self._expr(self._arg(form, 2)), loc=self.loc)
        raise self._error(f"unknown form {head!r} in {_show(form)}", ErrorCodes.UNKNOWN_FORM)

    def _name_expr(self, name: str) -> Expr:
        if name in CONSTANT_SYMBOLS:
            return Literal(CONSTANT_SYMBOLS[name], loc=self.loc)
        if name == "this":
            return ThisAccess(loc=self.loc)
        if name == "base":
            return BaseAccess(loc=self.loc)
        var = self._scope.lookup(name) if self._scope is not None else None
        if var is not None:
            return LocalAccess(variable=var, loc=self.loc)
        if self._cls is not None:
            member = self.hierarchy.lookup_member(self._cls.name, name)
            if member is not None:
                return self._member_access(member, None)
        if self.hierarchy.is_known(name):
            return TypeAccess(type_name=name, loc=self.loc)
        raise self._error(f"unresolved name {name!r}", ErrorCodes.UNRESOLVED_NAME)

    def _member_access(self, member: Node, qualifier: Optional[Expr]) -> Expr:
        if isinstance(member, FieldDecl):
            return FieldAccess(field=member, qualifier=qualifier, loc=self.loc)
        return PropertyAccess(property=member, qualifier=qualifier, loc=self.loc)

    def _type_of(self, expr: Optional[Expr]) -> Optional[str]:
        """Declared type of an already-read expression."""
        cls = self._cls
        if isinstance(expr, LocalAccess):
            return expr.variable.type_name
        if isinstance(expr, ThisAccess):
            return cls.name if cls else None
        if isinstance(expr, BaseAccess):
            return cls.base_name if cls else None
        if isinstance(expr, (TypeAccess, ObjectCreation, CastExpr, AsExpr)):
            return expr.type_name
        if isinstance(expr, FieldAccess):
            return expr.field.type_name
        if isinstance(expr, PropertyAccess):
            return expr.property.type_name
        if isinstance(expr, Assign):
            return self._type_of(expr.target)
        if isinstance(expr, Call):
            if expr.qualifier is None:
                owner = cls.name if cls else None
            else:
                owner = self._type_of(expr.qualifier)
            m = self.hierarchy.lookup_method(owner, expr.method_name, len(expr.args))
            return m.return_type if m else None
        return None

    def _get(self, form: list) -> Expr:
        target = self._expr(self._arg(form, 1))
        name = self._name(self._arg(form, 2))
        type_name = self._type_of(target)
        member = self.hierarchy.lookup_member(type_name, name)
        if member is None:
            raise self._error(f"no field or property {name!r} on {type_name or '?'}",
                              ErrorCodes.UNRESOLVED_NAME)
        return self._member_access(member, target)

    def _assign(self, form: list) -> Assign:
        return Assign(self._expr(self._arg(form, 1)), self._expr(self._arg(form, 2)),
                      loc=self.loc)

    def _increment(self, form: list) -> Increment:
        head = _head(form)
        prefix = not head.startswith("post")
        op = head[4:] if not prefix else head
        return Increment(op, self._expr(self._arg(form, 1)), prefix, loc=self.loc)

    def _logical(self, form: list) -> Expr:
        cls = LogicalAnd if _head(form) == "and" else LogicalOr
        operands = [self._expr(x) for x in form[1:]]
        if len(operands) < 2:
            raise self._error(f"{_head(form)} needs two operands", ErrorCodes.MISSING_OPERAND)
        result = operands[0]
        for right in operands[1:]:
            result = cls(result, right, loc=self.loc)
        return result

    def _conditional(self, form: list) -> Conditional:
        return Conditional(self._expr(self._arg(form, 1)), self._expr(self._arg(form, 2)),
                           self._expr(self._arg(form, 3)), loc=self.loc)

    def _args(self, forms: list) -> Tuple[Tuple[Expr, ...], Tuple[PassingMode, ...]]:
        args, modes = [], []
        for f in forms:
            head = _head(f)
            if head in ("ref", "out") and len(f) == 2:
                modes.append(PassingMode.REF if head == "ref" else PassingMode.OUT)
                args.append(self._expr(f[1]))
            else:
                modes.append(PassingMode.VALUE)
                args.append(self._expr(f))
        if all(m is PassingMode.VALUE for m in modes):
            modes = []
        return tuple(args), tuple(modes)

    def _call(self, form: list) -> Call:
        name = self._name(self._arg(form, 1))
        args, modes = self._args(form[2:])
        return Call(name, args, None, modes, loc=self.loc)

    def _invoke(self, form: list) -> Call:
        target = self._expr(self._arg(form, 1))
        name = self._name(self._arg(form, 2))
        args, modes = self._args(form[3:])
        return Call(name, args, target, modes, loc=self.loc)

    def _dcall(self, form: list) -> DelegateCall:
        delegate = self._expr(self._arg(form, 1))
        args, modes = self._args(form[2:])
        return DelegateCall(delegate, args, modes, loc=self.loc)

    def _new(self, form: list) -> ObjectCreation:
        type_name = self._type(self._arg(form, 1))
        rest = form[2:]
        inits: List[MemberInitializer] = []
        if rest and _head(rest[-1]) == "init":
            for pair in rest[-1][1:]:
                if not isinstance(pair, list) or len(pair) != 2:
                    raise self._error(f"expected (NAME value) in initializer, got {_show(pair)}")
                name = self._name(pair[0])
                member = self.hierarchy.lookup_member(type_name, name)
                if member is None:
                    raise self._error(f"no field or property {name!r} on {type_name}",
                                      ErrorCodes.UNRESOLVED_NAME)
                inits.append(MemberInitializer(member=member, value=self._expr(pair[1]),
                                               loc=self.loc))
            rest = rest[:-1]
        args, modes = self._args(rest)
        return ObjectCreation(type_name, args, tuple(inits), modes, loc=self.loc)

    def _is(self, form: list) -> IsExpr:
        expr = self._expr(self._arg(form, 1))
        type_name = self._type(self._arg(form, 2))
        var = None
        if len(form) > 3:
            var = self._declare(LocalVariable(self._name(form[3]), type_name, loc=self.loc))
        return IsExpr(expr, type_name, var, loc=self.loc)

    def _lambda(self, form: list) -> Lambda:
        params = self._params(self._arg(form, 1))
        body_form = self._arg(form, 2)
        self._push()
        try:
            for p in params:
                self._declare(p)
            if _head(body_form) == "block":
                body: Union[Stmt, Expr] = self._block(body_form)
            else:
                body = self._expr(body_form)
            return Lambda(params, body, loc=self.loc)
        finally:
            self._pop()

    def _methodref(self, form: list) -> MethodRef:
        if len(form) > 2:
            return MethodRef(self._name(form[2]), self._expr(form[1]), loc=self.loc)
        return MethodRef(self._name(self._arg(form, 1)), None, loc=self.loc)


# ===================================================================
#  PUBLIC API
# ===================================================================

def parse_program(text: str, file: str = "<input>") -> Program:
    """Read a whole program and link it.

    Raises
    ------
    ReaderError
        If the text is not well-formed or a name cannot be resolved.
    """
    return ProgramReader(file).read(text)


def read_program(path: Union[str, Path]) -> Program:
    """Read a program from a file."""
    path = Path(path)
    return parse_program(path.read_text(encoding="utf-8"), str(path))
