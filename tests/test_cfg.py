# tests/test_cfg.py
"""
Tests for control-flow graph construction: evaluation order, branch and
loop edges, exceptional flow, finally splitting and graph queries.
"""

import pytest

from cfgssa.completion import DIRECT, SuccessorKind, SuccessorType
from cfgssa.config import AnalysisConfig
from cfgssa.ctrlflow_graph import NodeKind, build_cfg, cfg_summary
from cfgssa.errors import ErrorCodes, QueryError
from cfgssa.reader import parse_program

TRUE_EDGE = SuccessorType(SuccessorKind.BOOLEAN, value=True)
FALSE_EDGE = SuccessorType(SuccessorKind.BOOLEAN, value=False)
MATCH_FALSE = SuccessorType(SuccessorKind.MATCHING, value=False)


def _chain(cfg):
    """Labels along the unique path from the entry (for branch-free graphs)."""
    labels = []
    node = cfg.entry
    while True:
        labels.append(node.label())
        succs = cfg.successors(node)
        if not succs:
            return labels
        assert len(succs) == 1
        node = succs[0]


# ── Evaluation order ─────────────────────────────────────────────

class TestEvaluationOrder:

    def test_straight_line(self, analyze, straight_line):
        ca = analyze(straight_line)
        assert _chain(ca.cfg) == [
            "[entry] C.M", "{...}", "localdecl", "x", "var y = x",
            "y", "return", "[exit] C.M",
        ]
        assert len(ca.cfg.nodes) == 8
        assert len(ca.cfg.edges) == 7

    def test_return_edge_kind(self, analyze, straight_line, find_nodes):
        cfg = analyze(straight_line).cfg
        ret = find_nodes(cfg, "return")[0]
        assert cfg.successors(ret, SuccessorKind.RETURN) == [cfg.exit]
        assert cfg.successors(ret, DIRECT) == []

    def test_assignment_target_before_source(self, analyze):
        cfg = analyze("(class C (method M ((x int)) (= x (+ x 1))))").cfg
        assert _chain(cfg) == [
            "[entry] C.M", "{...}", "x = x + 1;", "x", "x", "1", "x + 1",
            "x = x + 1", "[exit] C.M",
        ]

    def test_call_qualifier_then_arguments(self, analyze):
        cfg = analyze("""
            (class C
              (method M ((o C) (a int)) (invoke o N a 2))
              (method N ((p int) (q int))))
        """).cfg
        assert _chain(cfg)[3:] == ["o", "a", "2", "o.N(a, 2)", "[exit] C.M"]

    def test_static_qualifier_is_not_evaluated(self, analyze):
        cfg = analyze("""
            (class U (method S () :static))
            (class C (method M () (invoke U S)))
        """).cfg
        assert "U" not in _chain(cfg)
        assert "U.S()" in _chain(cfg)

    def test_abstract_method(self, analyze):
        cfg = analyze("(class A (method Run () :abstract))", "A.Run").cfg
        assert cfg.successors(cfg.entry) == [cfg.exit]

    def test_constructor_initializer_runs_first(self, program_analysis):
        pa = program_analysis("""
            (class A (ctor ((n int))))
            (class B :base A (ctor () (init-base 1) (return)))
        """)
        ctor = pa.program.class_named("B").constructors()[0]
        cfg = pa.analysis(ctor).cfg
        assert _chain(cfg) == [
            "[entry] B.ctor", "1", "ConstructorInitializer", "{...}", "return", "[exit] B.ctor",
        ]


# ── Branches and loops ───────────────────────────────────────────

class TestBranches:

    def test_if_else_boolean_edges(self, analyze, if_else, find_nodes):
        cfg = analyze(if_else).cfg
        cond = find_nodes(cfg, "b")[0]
        assert [n.label() for n in cfg.successors(cond, TRUE_EDGE)] == ["x = 1;"]
        assert [n.label() for n in cfg.successors(cond, FALSE_EDGE)] == ["x = 2;"]
        assert len(cfg.successors(cond, SuccessorKind.BOOLEAN)) == 2

    def test_constant_condition_prunes_branch(self, analyze, find_nodes):
        cfg = analyze("(class C (method M ((x int)) (if true (= x 1) (= x 2))))").cfg
        assert find_nodes(cfg, "x = 1;")
        assert not find_nodes(cfg, "x = 2;")

    @pytest.mark.parametrize("cond, reachable", [
        ("(== (+ 2147483647 1) -2147483648)", True),
        ("(== (+ 2147483647 1) 2147483648)", False),
        ("(== (+ 4294967296 1) 4294967297)", True),
        ("(== (- -2147483648) -2147483648)", True),
        ("(== (<< 1 33) 2)", True),
        ("(== (<< 1 100000000000) 0)", True),
    ])
    def test_integer_folding_wraps(self, analyze, find_nodes, cond, reachable):
        cfg = analyze(f"(class C (method M ((x int)) (if {cond} (= x 1))))").cfg
        assert bool(find_nodes(cfg, "x = 1;")) is reachable

    def test_short_circuit_and(self, analyze, find_nodes):
        cfg = analyze("""
            (class C (method M ((a bool) (b bool) (x int))
              (if (and a b) (= x 1))))
        """).cfg
        a = find_nodes(cfg, "a")[0]
        assert [n.label() for n in cfg.successors(a, TRUE_EDGE)] == ["b"]
        b = find_nodes(cfg, "b")[0]
        assert [n.label() for n in cfg.successors(b, TRUE_EDGE)] == ["x = 1;"]
        # a false left operand skips the right operand and the then-branch
        assert cfg.successors(a, FALSE_EDGE) == [cfg.exit]

    def test_while_back_edge(self, analyze, while_loop, find_nodes):
        ca = analyze(while_loop)
        cfg = ca.cfg
        loop = ca.callable.body.stmts[1]
        header = cfg.nodes_for(loop.cond.left)[0]
        assert len(cfg.predecessors(header)) == 2
        cond = cfg.nodes_for(loop.cond)[0]
        assert [n.label() for n in cfg.successors(cond, TRUE_EDGE)] == ["i = i + 1;"]
        ret = ca.callable.body.stmts[2]
        assert cfg.successors(cond, FALSE_EDGE) == cfg.nodes_for(ret.expr)

    def test_infinite_loop_has_no_exit(self, analyze):
        ca = analyze("(class C (method M () (while true (call Foo))))")
        assert ca.exit_node() is None
        assert ca.cfg.statistics()["has_exit"] is False

    def test_break_leaves_switch(self, analyze, find_nodes):
        ca = analyze("""
            (class C (method M ((x int))
              (var y 0)
              (switch x
                (case 1 (= y 1) (break))
                (default (= y 2) (break)))
              (return y)))
        """)
        cfg = ca.cfg
        switch = ca.callable.body.stmts[1]
        case, default = switch.cases
        case_node = cfg.nodes_for(case)[0]
        matched = cfg.successors(case_node, SuccessorType(SuccessorKind.MATCHING, value=True))
        assert [n.label() for n in matched] == ["y = 1;"]
        missed = cfg.successors(case_node, SuccessorType(SuccessorKind.MATCHING, value=False))
        assert missed == cfg.nodes_for(default)
        ret_read = cfg.nodes_for(ca.callable.body.stmts[2].expr)[0]
        for brk in find_nodes(cfg, "break"):
            assert cfg.successors(brk, SuccessorKind.BREAK) == [ret_read]

    def test_failed_guard_tries_next_case(self, analyze):
        ca = analyze("""
            (class C (method M ((x int) (y int))
              (switch x
                (case 1 :when (> y 0) (= y 1) (break))
                (case 2 (= y 2) (break)))
              (return y)))
        """)
        switch, ret = ca.callable.body.stmts
        first, second = switch.cases
        guard = ca.nodes_for(first.guard)[0]
        assert {n.element for n in ca.successors(guard)} == {first.body[0], second}
        assert ca.successors(guard, MATCH_FALSE) == ca.nodes_for(second)
        # no match on the last case leaves the switch
        last = ca.nodes_for(second)[0]
        assert ca.successors(last, MATCH_FALSE) == ca.nodes_for(ret.expr)

    def test_goto_case_and_default(self, analyze):
        ca = analyze("""
            (class C (method M ((x int) (y int))
              (switch x
                (case 1 (= y 1) (goto-case 2))
                (case 2 (= y 2) (goto-default))
                (default (= y 3) (break)))
              (return y)))
        """)
        one, two, default = ca.callable.body.stmts[0].cases
        goto_case = ca.nodes_for(one.body[1])[0]
        assert ca.successors(goto_case, SuccessorKind.GOTO) == ca.nodes_for(two.body[0])
        goto_default = ca.nodes_for(two.body[1])[0]
        assert ca.successors(goto_default, SuccessorKind.GOTO) == ca.nodes_for(default.body[0])
        assert ca.cfg.successor_edges(goto_default)[0].type.label == "default"

    def test_foreach_emptiness_edges(self, analyze):
        ca = analyze("""
            (class C (method M ((xs int) (s int))
              (foreach (v int) xs (= s (+ s v)))
              (return s)))
        """)
        cfg = ca.cfg
        loop = cfg.nodes_for(ca.callable.body.stmts[0])[0]
        edges = [e.type for e in cfg.successor_edges(loop)]
        assert {t.kind for t in edges} == {SuccessorKind.EMPTINESS}
        assert {t.value for t in edges} == {True, False}

    def test_goto_label(self, analyze, find_nodes):
        ca = analyze("""
            (class C (method M ((x int))
              (label top (= x (- x 1)))
              (if (> x 0) (goto top))
              (return)))
        """)
        cfg = ca.cfg
        labeled = ca.callable.body.stmts[0]
        goto = cfg.nodes_for(ca.callable.body.stmts[1].then)[0]
        assert cfg.successors(goto, SuccessorKind.GOTO) == cfg.nodes_for(labeled)
        assert cfg.successor_edges(goto)[0].type.label == "top"


# ── Exceptions ───────────────────────────────────────────────────

TRY_CATCH = """
(class C
  (method M ((x int))
    (try (block (call Foo))
         (catch Exception e (= x 1)))
    (return x)))
"""


class TestExceptions:

    def test_call_in_try_may_throw(self, analyze):
        ca = analyze(TRY_CATCH)
        t = ca.callable.body.stmts[0]
        call = ca.nodes_for(t.block.stmts[0].expr)[0]
        handlers = ca.successors(call, SuccessorKind.EXCEPTION)
        assert len(handlers) == 1
        assert handlers[0].element is t.catches[0]
        edge = [e for e in ca.cfg.successor_edges(call) if e.dst is handlers[0]][0]
        assert edge.type.exception_type == "Exception"

    def test_call_outside_try_does_not_throw(self, analyze):
        ca = analyze("(class C (method M () (call Foo)))")
        call = ca.nodes_for(ca.callable.body.stmts[0].expr)[0]
        assert ca.successors(call, SuccessorKind.EXCEPTION) == []

    def test_implicit_throws_can_be_disabled(self, analyze):
        ca = analyze(TRY_CATCH, config=AnalysisConfig(implicit_throws=False))
        assert ca.cfg.statistics()["edge_kinds"].get("exception", 0) == 0
        assert ca.nodes_for(ca.callable.body.stmts[0].catches[0]) == []

    def test_typed_catch_may_miss(self, analyze):
        ca = analyze("""
            (class C (method M ((x int))
              (try (block (call Foo))
                   (catch ArgumentException e (= x 1)))
              (return x)))
        """)
        cfg = ca.cfg
        t = ca.callable.body.stmts[0]
        call = ca.nodes_for(t.block.stmts[0].expr)[0]
        targets = ca.successors(call, SuccessorKind.EXCEPTION)
        assert cfg.exit in targets
        clause = [n for n in targets if n.element is t.catches[0]][0]
        assert str(clause.splits) == "handler:Exception"
        # an unmatched exception propagates out of the callable
        assert cfg.successors(clause, SuccessorKind.EXCEPTION) == [cfg.exit]

    def test_division_by_variable(self, analyze):
        ca = analyze("""
            (class C (method M ((x int) (y int))
              (try (block (= y (/ 10 x)))
                   (catch (= y 0)))
              (return y)))
        """)
        t = ca.callable.body.stmts[0]
        div = ca.nodes_for(t.block.stmts[0].expr.source)[0]
        types = {e.type.exception_type for e in ca.cfg.successor_edges(div)
                 if e.type.kind is SuccessorKind.EXCEPTION}
        assert types == {"DivideByZeroException"}

    def test_division_by_nonzero_constant(self, analyze):
        ca = analyze("""
            (class C (method M ((x int))
              (try (block (= x (/ x 2)))
                   (catch (= x 0)))
              (return x)))
        """)
        t = ca.callable.body.stmts[0]
        div = ca.nodes_for(t.block.stmts[0].expr.source)[0]
        assert ca.successors(div, SuccessorKind.EXCEPTION) == []

    def test_throw_reaches_matching_catch(self, analyze):
        ca = analyze("""
            (class C (method M ((x int))
              (try (block (throw (new ArgumentException)))
                   (catch ArgumentException e (= x 1)))
              (return x)))
        """)
        t = ca.callable.body.stmts[0]
        throw = ca.nodes_for(t.block.stmts[0])[0]
        edges = ca.cfg.successor_edges(throw)
        assert [e.type.exception_type for e in edges] == ["ArgumentException"]
        assert edges[0].dst.element is t.catches[0]

    def test_catch_filter(self, analyze):
        ca = analyze("""
            (class C (method M ((x int))
              (try (block (call Foo))
                   (catch Exception e :when (> x 0) (= x 1))
                   (catch (= x 2)))
              (return x)))
        """)
        t = ca.callable.body.stmts[0]
        filtered, fallback = t.catches
        call = ca.nodes_for(t.block.stmts[0].expr)[0]
        # a filtered clause never catches definitely
        assert [n.element for n in ca.successors(call, SuccessorKind.EXCEPTION)] == \
            [filtered, fallback]
        clause = ca.nodes_for(filtered)[0]
        assert [n.element for n in ca.successors(clause)] == [filtered.filter.left]
        (flt,) = ca.nodes_for(filtered.filter)
        assert str(flt.splits) == "handler:Exception"
        assert flt.splits.exception_type() == "Exception"
        assert [n.element for n in ca.successors(flt, TRUE_EDGE)] == [filtered.block]
        assert {n.element for n in ca.successors(flt)} == {filtered.block, fallback}

    def test_handler_split_ends_at_clause_body(self, analyze):
        ca = analyze(TRY_CATCH)
        clause = ca.callable.body.stmts[0].catches[0]
        (header,) = ca.nodes_for(clause)
        assert header.splits.exception_type() == "Exception"
        (body,) = ca.nodes_for(clause.block)
        assert not body.splits
        assert body.splits.exception_type() is None

    def test_rethrow_leaves_callable(self, analyze):
        ca = analyze("""
            (class C (method M ()
              (try (block (call Foo))
                   (catch Exception e (throw)))))
        """)
        rethrow = ca.nodes_for(ca.callable.body.stmts[0].catches[0].block.stmts[0])
        assert rethrow
        for node in rethrow:
            assert ca.successors(node, SuccessorKind.EXCEPTION) == [ca.cfg.exit]


# ── Finally splitting ────────────────────────────────────────────

class TestFinallySplitting:

    def test_finally_is_copied_per_entry(self, analyze, finally_return):
        ca = analyze(finally_return)
        t = ca.callable.body.stmts[0]
        copies = ca.nodes_for(t.finally_.stmts[0].expr)
        assert sorted(str(n.splits) for n in copies) == ["finally0:normal", "finally0:return"]

    def test_split_copies_resume_differently(self, analyze, finally_return):
        ca = analyze(finally_return)
        t = ca.callable.body.stmts[0]
        by_split = {str(n.splits): n for n in ca.nodes_for(t.finally_.stmts[0].expr)}
        assert ca.successors(by_split["finally0:return"]) == [ca.cfg.exit]
        after = ca.successors(by_split["finally0:normal"])
        assert [n.label() for n in after] == ["x = 1;"]

    def test_uncaught_throw_is_kept_apart_from_normal_flow(self, analyze):
        ca = analyze("""
            (class C (method M ((x int) (e ArgumentException))
              (try (block (if (> x 0) (throw e)))
                   (finally (= x 0)))
              (= x 1)))
        """)
        t = ca.callable.body.stmts[0]
        copies = ca.nodes_for(t.finally_.stmts[0].expr)
        by_split = {str(n.splits): n for n in copies}
        assert sorted(by_split) == ["finally0:normal", "finally0:throw(ArgumentException)"]
        thrown = by_split["finally0:throw(ArgumentException)"]
        assert ca.successors(thrown) == [ca.cfg.exit]
        (edge,) = ca.cfg.successor_edges(thrown)
        assert edge.type.kind is SuccessorKind.EXCEPTION
        assert edge.type.exception_type == "ArgumentException"
        after = ca.successors(by_split["finally0:normal"])
        assert [n.label() for n in after] == ["x = 1;"]

    def test_split_nodes_are_counted(self, analyze, finally_return):
        stats = analyze(finally_return).cfg.statistics()
        assert stats["split_nodes"] > 0
        assert stats["nodes"] > stats["elements"]

    def test_split_label(self, analyze, finally_return):
        ca = analyze(finally_return)
        t = ca.callable.body.stmts[0]
        labels = sorted(n.label() for n in ca.nodes_for(t.finally_.stmts[0].expr))
        assert labels == ["x = 0 [finally0:normal]", "x = 0 [finally0:return]"]


# ── Graph queries ────────────────────────────────────────────────

class TestGraphQueries:

    def test_foreign_node_is_rejected(self, program_analysis):
        pa = program_analysis("(class C (method A ()) (method B ()))")
        a = pa.analysis(pa.callable_named("C.A"))
        b = pa.analysis(pa.callable_named("C.B"))
        with pytest.raises(QueryError) as info:
            a.successors(b.entry_node())
        assert info.value.code == ErrorCodes.FOREIGN_NODE

    def test_nodes_are_interned(self, analyze, straight_line):
        cfg = analyze(straight_line).cfg
        for n in cfg.nodes:
            if n.kind is NodeKind.ELEMENT:
                assert cfg.node(n.element, n.splits) is n
        assert cfg.entry.index == 0
        assert [n.index for n in cfg.nodes] == list(range(len(cfg)))

    def test_reachable_from_entry_covers_graph(self, analyze, any_program):
        cfg = analyze(any_program).cfg
        assert cfg.reachable_from(cfg.entry) == set(cfg.nodes)

    def test_predecessors_mirror_successors(self, analyze, any_program):
        cfg = analyze(any_program).cfg
        for n in cfg.nodes:
            for s in cfg.successors(n):
                assert n in cfg.predecessors(s)

    def test_to_dot(self, analyze, if_else):
        dot = analyze(if_else).cfg.to_dot()
        assert dot.startswith("digraph CFG {")
        assert "boolean(true)" in dot
        assert dot.rstrip().endswith("}")

    def test_build_cfg_without_engine(self):
        program = parse_program("(class C (method M ((x int)) (return x)))")
        cfg = build_cfg(program.callables[0])
        assert len(cfg) == 5
        assert "C.M" in cfg_summary(cfg)
