# tests/test_engine.py
"""
Tests for whole-program orchestration: caching, parallel builds,
configuration knobs and the errors raised for foreign callables.
"""

from collections import OrderedDict

import pytest

import cfgssa
from cfgssa.config import AnalysisConfig
from cfgssa.engine import CallableAnalysis, ProgramAnalysis, analyze
from cfgssa.errors import ErrorCodes, QueryError
from cfgssa.reader import parse_program


MANY = """
(class C
  (field f int)
  (method SetF () (= f 1))
  (method M ((x int))
    (= f x)
    (call SetF)
    (var g (lambda ((a int)) (+ a f)))
    (return (dcall g f)))
  (ctor () (= f 0)))
"""


# ── Lookup and caching ───────────────────────────────────────────

class TestProgramAnalysis:

    def test_analysis_is_cached(self, program_analysis, straight_line):
        pa = program_analysis(straight_line)
        c = pa.callable_named("C.M")
        ca = pa.analysis(c)
        assert isinstance(ca, CallableAnalysis)
        assert pa.analysis(c) is ca
        assert ca.name == "C.M"
        assert repr(ca) == "CallableAnalysis('C.M')"

    def test_unknown_callable_name(self, program_analysis, straight_line):
        pa = program_analysis(straight_line)
        with pytest.raises(QueryError) as info:
            pa.callable_named("X.Y")
        assert info.value.code == ErrorCodes.UNKNOWN_CALLABLE

    def test_callable_of_another_program(self, program_analysis, straight_line):
        pa = program_analysis(straight_line)
        other = parse_program(straight_line).callables[0]
        with pytest.raises(QueryError) as info:
            pa.analysis(other)
        assert info.value.code == ErrorCodes.UNKNOWN_CALLABLE

    def test_unknown_variable_name(self, analyze, straight_line):
        ca = analyze(straight_line)
        with pytest.raises(QueryError) as info:
            ca.variable("nope")
        assert info.value.code == ErrorCodes.UNKNOWN_VARIABLE

    @pytest.mark.parametrize("threads", [1, 2])
    def test_build_all(self, threads):
        pa = ProgramAnalysis(parse_program(MANY), AnalysisConfig(threads=threads))
        results = pa.build_all()
        assert isinstance(results, OrderedDict)
        assert [c.qualified_name for c in results] == \
            ["C.SetF", "C.M", "C.M.<lambda>", "C.ctor"]
        for c, ca in results.items():
            assert ca.callable is c
            assert pa.analysis(c) is ca

    def test_analyze_builds_everything(self):
        pa = analyze(parse_program(MANY))
        stats = pa.statistics()
        assert stats["callables"] == stats["analysed"] == 4
        assert stats["callgraph"]["lambdas"] == 1
        assert stats["ssa"]["variables"] > 0

    def test_callable_statistics(self, analyze, while_loop):
        stats = analyze(while_loop).statistics()
        assert set(stats) == {"cfg", "blocks", "ssa"}
        assert stats["ssa"]["PhiNode"] == 1


# ── Configuration knobs ──────────────────────────────────────────

class TestConfigurationEffects:

    def test_fields_untracked_when_disabled(self, analyze, setter_call):
        ca = analyze(setter_call, config=AnalysisConfig(track_fields=False))
        f = ca.variable("this.f")
        assert f not in ca.tracked_variables()
        assert {d.describe() for d in ca.definitions_of(f)} == {"untracked this.f"}

    def test_single_access_tracked_with_threshold_one(self, analyze):
        text = "(class C (field g int) (method M () (return g)))"
        ca = analyze(text, config=AnalysisConfig(min_field_accesses=1))
        g = ca.variable("this.g")
        assert g in ca.tracked_variables()
        assert [d.describe() for d in ca.definitions_of(g)] == ["entry this.g"]

    def test_pruning_does_not_change_results(self, analyze, setter_call):
        def describe(ca):
            return [d.describe() for d in ca.definitions_of(ca.variable("this.f"))]

        pruned = analyze(setter_call)
        full = analyze(setter_call, config=AnalysisConfig(prune_call_graph=False))
        assert describe(pruned) == describe(full) == ["assignment this.f", "call-update this.f"]


# ── Package surface ──────────────────────────────────────────────

class TestPackage:

    def test_exports(self):
        assert cfgssa.ProgramAnalysis is ProgramAnalysis
        assert "parse_program" in cfgssa.__all__
        assert "engine" in cfgssa.list_submodules()
        assert cfgssa.__version__

    def test_quick_start(self):
        program = cfgssa.parse_program("""
            (class C
              (method M ((x int))
                (var y x)
                (return y)))""")
        analysis = cfgssa.ProgramAnalysis(program)
        ca = analysis.analysis(analysis.callable_named("C.M"))
        assert [d.describe() for d in ca.definitions_of(ca.variable("y"))] == ["declaration y"]
