# tests/test_callgraph.py
"""
Tests for call-graph construction (direct, virtual, delegate and
unresolved edges), graph queries, and the call-site mutation oracle.
"""

import pytest

from cfgssa.callgraph import (
    CallEffects,
    CallResolutionKind,
    NodeKind,
    build_callgraph,
    callgraph_summary,
)
from cfgssa.reader import parse_program


SETTERS = """
(class C
  (field f int)
  (method SetF () (= f 1))
  (method Wrap () (call SetF))
  (method Other ((c C)) (invoke c SetF)))
"""


def _graph(text):
    program = parse_program(text)
    return program, build_callgraph(program)


def _node(cg, name):
    (node,) = cg.callables_named(name)
    return node


def _names(callables):
    return {c.qualified_name for c in callables}


def _site(program, qualified_name, index=0):
    c = [c for c in program.callables if c.qualified_name == qualified_name][0]
    return c.body.stmts[index].expr


# ── Resolution ───────────────────────────────────────────────────

class TestResolution:

    def test_unqualified_call_is_direct_and_intra(self, setter_call):
        program, cg = _graph(setter_call)
        (edge,) = cg.edges
        assert edge.caller is _node(cg, "M")
        assert edge.callee is _node(cg, "SetF")
        assert edge.resolution is CallResolutionKind.DIRECT
        assert edge.intra_instance

    def test_qualified_call_is_not_intra(self):
        program, cg = _graph(SETTERS)
        (edge,) = cg.edges_at(_site(program, "C.Other"))
        assert edge.callee is _node(cg, "SetF")
        assert not edge.intra_instance

    def test_virtual_call_reaches_overrides(self):
        program, cg = _graph("""
            (class Base (method Run () :virtual (return)))
            (class Derived :base Base (method Run () :override (return)))
            (class User (method M ((b Base)) (invoke b Run)))
        """)
        edges = cg.edges_at(_site(program, "User.M"))
        assert [e.callee.name for e in edges] == ["Base.Run", "Derived.Run"]
        assert all(e.resolution is CallResolutionKind.VIRTUAL for e in edges)

    def test_static_call_is_direct(self):
        program, cg = _graph("""
            (class Util (method Twice ((x int)) :static (return (* x 2))))
            (class C (method M () (invoke Util Twice 3)))
        """)
        (edge,) = cg.edges_at(_site(program, "C.M"))
        assert edge.resolution is CallResolutionKind.DIRECT
        assert edge.callee.name == "Util.Twice"
        assert not edge.intra_instance

    def test_unresolved_call_goes_to_sink(self):
        program, cg = _graph("(class C (method M () (call Nope)))")
        (edge,) = cg.edges
        assert edge.callee is cg.unknown
        assert edge.callee.kind is NodeKind.UNKNOWN
        assert edge.resolution is CallResolutionKind.UNRESOLVED
        assert cg.callees_at(_site(program, "C.M")) == []

    def test_lambda_passed_to_unknown_code(self):
        program, cg = _graph("(class C (method M () (call Nope (lambda () 1))))")
        edges = cg.edges_at(_site(program, "C.M"))
        assert [e.resolution for e in edges] == [CallResolutionKind.UNRESOLVED,
                                                 CallResolutionKind.DELEGATE]
        assert edges[1].callee.kind is NodeKind.LAMBDA
        assert edges[1].callee.name == "C.M.<lambda>"

    def test_delegate_call_through_local(self):
        program, cg = _graph("""
            (class C
              (method M ()
                (var f (lambda ((a int)) a))
                (dcall f 1)))
        """)
        (edge,) = cg.edges_at(_site(program, "C.M", 1))
        assert edge.resolution is CallResolutionKind.DELEGATE
        assert edge.callee.callable is program.callables[1]

    def test_unknown_delegate(self):
        program, cg = _graph("(class C (method M ((f Action)) (dcall f)))")
        (edge,) = cg.edges
        assert edge.callee is cg.unknown

    def test_bound_method_reference_is_intra(self):
        program, cg = _graph("""
            (class C
              (field f int)
              (method Set () (= f 1))
              (method M () (var d (methodref Set)) (dcall d)))
        """)
        (edge,) = cg.edges_at(_site(program, "C.M", 1))
        assert edge.callee.name == "C.Set"
        assert edge.resolution is CallResolutionKind.DELEGATE
        assert edge.intra_instance

    def test_object_creation_and_base_initializer(self):
        program, cg = _graph("""
            (class A (ctor ((n int))))
            (class B :base A (ctor () (init-base 1)))
            (class C (method M () (new B)))
        """)
        new_edge, = cg.edges_at(_site(program, "C.M"))
        assert new_edge.callee.name == "B.ctor"
        assert new_edge.callee.kind is NodeKind.CONSTRUCTOR
        assert not new_edge.intra_instance
        b_ctor = program.class_named("B").constructors()[0]
        (init_edge,) = cg.edges_at(b_ctor.initializer)
        assert init_edge.callee.name == "A.ctor"
        assert init_edge.resolution is CallResolutionKind.DIRECT
        assert init_edge.intra_instance


# ── Graph queries ────────────────────────────────────────────────

class TestGraphQueries:

    def test_node_ids_follow_program_order(self, setter_call):
        program, cg = _graph(setter_call)
        assert [n.id for n in cg.nodes.values()] == ["__UNKNOWN__", "c0", "c1"]
        assert cg.node_for(program.callables[0]).name == "C.SetF"

    def test_roots_leaves_and_order(self, setter_call):
        program, cg = _graph(setter_call)
        m, setf = _node(cg, "M"), _node(cg, "SetF")
        assert cg.roots == [m]
        assert cg.leaves == [setf]
        order = cg.topological_order()
        assert order.index(setf) < order.index(m)
        assert cg.transitive_callees(m) == {setf}
        assert cg.transitive_callers(setf) == {m}

    def test_recursion(self):
        program, cg = _graph("""
            (class C
              (method R ((n int)) (if (> n 0) (call R (- n 1))))
              (method A () (call B))
              (method B () (call A)))
        """)
        r, a, b = _node(cg, "R"), _node(cg, "A"), _node(cg, "B")
        assert r.is_recursive
        assert cg.is_recursive(r)
        assert cg.is_recursive(a) and cg.is_recursive(b)
        assert not a.is_recursive
        assert cg.transitive_callees(a) == {a, b}
        assert cg.transitive_callers(b) == {a, b}
        stats = cg.statistics()
        assert stats["self_recursive"] == 1
        assert stats["recursive_sccs"] == 1

    def test_statistics_keys(self, setter_call):
        program, cg = _graph(setter_call)
        stats = cg.statistics()
        assert set(stats) == {
            "callables", "lambdas", "total_nodes", "total_edges",
            "direct_calls", "virtual_calls", "delegate_calls", "unresolved_calls",
            "intra_instance_calls", "sccs", "recursive_sccs", "self_recursive",
            "root_callables", "leaf_callables",
        }
        assert stats["callables"] == 2
        assert stats["total_nodes"] == 3
        assert stats["direct_calls"] == 1
        assert stats["intra_instance_calls"] == 1

    def test_to_dot_and_summary(self, setter_call):
        program, cg = _graph(setter_call)
        dot = cg.to_dot(title="setters")
        assert dot.startswith("digraph CallGraph {")
        assert '"c1" -> "c0"' in dot
        assert 'label="setters"' in dot
        assert "C.SetF" in callgraph_summary(cg)


# ── Call effects ─────────────────────────────────────────────────

class TestCallEffects:

    def test_own_and_general_setters(self):
        program, cg = _graph(SETTERS)
        f = program.class_named("C").member("f")
        effects = CallEffects(cg)
        assert _names(effects.own_setters(f)) == {"C.SetF", "C.Wrap"}
        assert _names(effects.general_setters(f)) == {"C.SetF", "C.Wrap", "C.Other"}
        assert effects.own_getters(f) == frozenset()

    def test_pruned_setters(self):
        program, cg = _graph(SETTERS)
        f = program.class_named("C").member("f")
        effects = CallEffects(cg, [_site(program, "C.Other")])
        assert _names(effects.own_setters(f)) == {"C.SetF"}
        assert _names(effects.general_setters(f)) == {"C.SetF"}

    def test_captured_writers(self):
        program, cg = _graph("""
            (class C
              (method M ()
                (var x 0)
                (var f (lambda () (= x 1)))
                (dcall f)
                (return x)))
        """)
        x = program.callables[0].body.stmts[0].decls[0].variable
        site = _site(program, "C.M", 2)
        effects = CallEffects(cg)
        assert effects.may_write_captured(site, x)
        assert not effects.may_read_captured(site, x)

    def test_engine_shares_effects(self, program_analysis, setter_call):
        pa = program_analysis(setter_call)
        assert pa.effects is pa.effects
        assert pa.effects.cg is pa.callgraph
        assert pa.effects.allowed is not None


@pytest.mark.parametrize("text, kind", [
    ("(class C (method M ()))", NodeKind.METHOD),
    ("(class C (ctor ()))", NodeKind.CONSTRUCTOR),
])
def test_node_kinds(text, kind):
    program, cg = _graph(text)
    assert cg.node_for(program.callables[0]).kind is kind


def test_acyclic_node_is_not_recursive(setter_call):
    program, cg = _graph(setter_call)
    m, setf = _node(cg, "M"), _node(cg, "SetF")
    assert not cg.is_recursive(m)
    assert not cg.is_recursive(setf)
    assert m not in cg.transitive_callees(m)
