# tests/test_reader.py
"""
Tests for the S-expression reader: tree shapes, name resolution, linking
and the errors raised for malformed programs.
"""

import pytest

from cfgssa.ast_nodes import (
    Assign,
    BlockStmt,
    Call,
    ConstructorDecl,
    ExprStmt,
    FieldAccess,
    Lambda,
    LocalAccess,
    LocalDeclStmt,
    PassingMode,
    PropertyAccess,
    TryStmt,
    TypeAccess,
)
from cfgssa.errors import ErrorCodes, ReaderError
from cfgssa.reader import parse_program, read_program


# ── Declarations ─────────────────────────────────────────────────

class TestDeclarations:

    def test_class_members(self):
        program = parse_program("""
            (class Shape
              (field area int :readonly)
              (property Name string)
              (property Size int :virtual)
              (method Draw ((x int) (y int)) :virtual)
              (ctor ((a int)) (= area a)))
        """)
        cls = program.class_named("Shape")
        assert cls is not None
        assert [f.name for f in cls.fields()] == ["area"]
        assert cls.fields()[0].is_readonly
        assert [p.name for p in cls.properties()] == ["Name", "Size"]
        assert cls.member("Name").is_field_like
        assert not cls.member("Size").is_field_like
        draw = cls.methods()[0]
        assert draw.is_virtual and draw.is_dispatched
        assert [p.type_name for p in draw.params] == ["int", "int"]
        assert draw.declaring_class is cls
        assert cls.constructors()[0].qualified_name == "Shape.ctor"

    def test_base_class_and_returns(self):
        program = parse_program("""
            (class A (method Get () :returns int (return 1)))
            (class B :base A)
        """)
        b = program.class_named("B")
        assert b.base_name == "A"
        get = program.class_named("A").methods()[0]
        assert get.return_type == "int"
        assert get.qualified_name == "A.Get"

    def test_abstract_method_has_no_body(self):
        program = parse_program("(class A (method Run () :abstract))")
        run = program.class_named("A").methods()[0]
        assert run.is_abstract
        assert run.body is None

    def test_ref_and_out_parameters(self):
        program = parse_program("(class A (method M ((ref a int) (out b)) (= b a)))")
        a, b = program.class_named("A").methods()[0].params
        assert a.mode is PassingMode.REF and a.type_name == "int"
        assert b.mode is PassingMode.OUT and b.type_name is None

    def test_constructor_initializer(self):
        program = parse_program("""
            (class A (ctor ((n int))))
            (class B :base A (ctor () (init-base 1) (return)))
        """)
        ctor = program.class_named("B").constructors()[0]
        assert isinstance(ctor, ConstructorDecl)
        assert ctor.initializer is not None
        assert ctor.initializer.is_base
        assert len(ctor.initializer.args) == 1
        assert len(ctor.body.stmts) == 1


# ── Name resolution ──────────────────────────────────────────────

class TestNameResolution:

    def test_local_resolves_to_declaration(self):
        program = parse_program("(class C (method M ((x int)) (var y x) (return y)))")
        m = program.class_named("C").methods()[0]
        decl_stmt = m.body.stmts[0]
        assert isinstance(decl_stmt, LocalDeclStmt)
        decl = decl_stmt.decls[0]
        assert decl.variable.name == "y"
        assert isinstance(decl.init, LocalAccess)
        assert decl.init.variable is m.params[0]
        ret = m.body.stmts[1]
        assert ret.expr.variable is decl.variable

    def test_implicit_this_member(self):
        program = parse_program("""
            (class C
              (field f int)
              (property P int)
              (method M () (= f P)))
        """)
        stmt = program.class_named("C").methods()[0].body.stmts[0]
        assert isinstance(stmt, ExprStmt) and isinstance(stmt.expr, Assign)
        assert isinstance(stmt.expr.target, FieldAccess)
        assert stmt.expr.target.qualifier is None
        assert isinstance(stmt.expr.source, PropertyAccess)

    def test_inherited_member(self):
        program = parse_program("""
            (class A (field f int))
            (class B :base A (method M () (= f 1)))
        """)
        target = program.class_named("B").methods()[0].body.stmts[0].expr.target
        assert target.field is program.class_named("A").member("f")

    def test_qualified_member(self):
        program = parse_program("""
            (class Node (field next Node) (field value int))
            (class L (method M ((n Node)) (return (get (get n next) value))))
        """)
        value = program.class_named("L").methods()[0].body.stmts[0].expr
        assert isinstance(value, FieldAccess) and value.field.name == "value"
        assert isinstance(value.qualifier, FieldAccess)
        assert isinstance(value.qualifier.qualifier, LocalAccess)

    def test_class_name_is_type_access(self):
        program = parse_program("""
            (class Util (method Twice ((x int)) :static (return (* x 2))))
            (class C (method M () (invoke Util Twice 3)))
        """)
        call = program.class_named("C").methods()[0].body.stmts[0].expr
        assert isinstance(call, Call)
        assert isinstance(call.qualifier, TypeAccess)
        assert call.qualifier.type_name == "Util"

    def test_block_scoping(self):
        program = parse_program("""
            (class C (method M ()
              (block (var x 1))
              (block (var x 2))))
        """)
        first, second = program.class_named("C").methods()[0].body.stmts
        assert isinstance(first, BlockStmt)
        assert first.stmts[0].decls[0].variable is not second.stmts[0].decls[0].variable

    def test_ref_argument_modes(self):
        program = parse_program("""
            (class C
              (method Swap ((ref a int) (ref b int)))
              (method M () (var x 1) (var y 2) (call Swap (ref x) (ref y))))
        """)
        call = program.class_named("C").methods()[1].body.stmts[2].expr
        assert call.modes == (PassingMode.REF, PassingMode.REF)
        assert call.mode_of(0) is PassingMode.REF

    def test_value_arguments_have_no_modes(self):
        program = parse_program("(class C (method M () (call Foo 1 2)))")
        call = program.class_named("C").methods()[0].body.stmts[0].expr
        assert call.modes == ()
        assert call.mode_of(1) is PassingMode.VALUE


# ── Linking ──────────────────────────────────────────────────────

class TestLinking:

    def test_callables_include_lambdas(self):
        program = parse_program("""
            (class C (method M ()
              (var x 0)
              (var f (lambda ((a int)) (+ a x)))
              (dcall f 1)))
        """)
        names = [c.qualified_name for c in program.callables]
        assert names == ["C.M", "C.M.<lambda>"]
        lam = program.callables[1]
        assert isinstance(lam, Lambda)
        assert lam.outer is program.callables[0]
        assert lam.declaring_class is program.class_named("C")

    def test_parents_are_set(self):
        program = parse_program("(class C (method M ((x int)) (return x)))")
        m = program.callables[0]
        ret = m.body.stmts[0]
        assert ret.parent is m.body
        assert ret.expr.parent is ret
        assert m.body.parent is m

    def test_try_with_catch_and_finally(self):
        program = parse_program("""
            (class C (method M ((x int))
              (try (block (call Foo))
                   (catch ArgumentException e :when (> x 0) (throw))
                   (catch (= x 1))
                   (finally (= x 2)))))
        """)
        t = program.callables[0].body.stmts[0]
        assert isinstance(t, TryStmt)
        first, second = t.catches
        assert first.type_name == "ArgumentException"
        assert first.variable.name == "e"
        assert first.filter is not None
        assert second.type_name is None and second.variable is None
        assert t.finally_ is not None

    def test_read_program_from_file(self, tmp_path):
        path = tmp_path / "prog.sexp"
        path.write_text("(class C (method M ()))", encoding="utf-8")
        program = read_program(path)
        assert program.callables[0].qualified_name == "C.M"


# ── Errors ───────────────────────────────────────────────────────

class TestReaderErrors:

    @pytest.mark.parametrize("text, code", [
        ("(class C (method M ()", ErrorCodes.SEXP_SYNTAX),
        ("(method M ())", ErrorCodes.UNEXPECTED_FORM),
        ("(class C) (class C)", ErrorCodes.DUPLICATE_DECLARATION),
        ("(class C (field f) (field f))", ErrorCodes.DUPLICATE_DECLARATION),
        ("(class C (method M ((a int) (a int))))", ErrorCodes.DUPLICATE_DECLARATION),
        ("(class C (method M () (var x 1) (var x 2)))", ErrorCodes.DUPLICATE_DECLARATION),
        ("(class C (method M () (return y)))", ErrorCodes.UNRESOLVED_NAME),
        ("(class C (method M () (frobnicate 1)))", ErrorCodes.UNKNOWN_FORM),
        ("(class C (widget))", ErrorCodes.UNKNOWN_FORM),
        ("(class C (method M () (if)))", ErrorCodes.MISSING_OPERAND),
        ("(class C (method M () (try (block))))", ErrorCodes.MISSING_OPERAND),
        ("(class C (method M () (and true)))", ErrorCodes.MISSING_OPERAND),
    ])
    def test_error_codes(self, text, code):
        with pytest.raises(ReaderError) as info:
            parse_program(text)
        assert info.value.code == code

    def test_error_mentions_file(self):
        with pytest.raises(ReaderError) as info:
            parse_program("(class C (method M () (return nope)))", file="prog.sexp")
        assert info.value.loc.file == "prog.sexp"
        assert "prog.sexp" in str(info.value)
        assert "nope" in str(info.value)

    def test_local_not_visible_after_block(self):
        with pytest.raises(ReaderError) as info:
            parse_program("(class C (method M () (block (var x 1)) (return x)))")
        assert info.value.code == ErrorCodes.UNRESOLVED_NAME
