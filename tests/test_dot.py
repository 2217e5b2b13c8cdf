# tests/test_dot.py
"""
Tests for the Graphviz rendering addon (skipped without ``graphviz``).
"""

import pytest

graphviz = pytest.importorskip("graphviz")

from cfgssa.dot import callgraph_to_graphviz, cfg_to_graphviz  # noqa: E402


class TestCfgRendering:

    def test_nodes_and_edges(self, analyze, if_else):
        ca = analyze(if_else)
        dot = cfg_to_graphviz(ca.cfg)
        assert isinstance(dot, graphviz.Digraph)
        src = dot.source
        assert "[entry] C.M" in src
        assert "[exit] C.M" in src
        assert src.count(" -> ") == len(ca.cfg.edges)
        assert "boolean(true)" in src and "boolean(false)" in src

    def test_ssa_overlay(self, analyze, if_else):
        ca = analyze(if_else)
        src = cfg_to_graphviz(ca.cfg, ssa=ca.ssa, title="if-else").source
        assert "phi x" in src
        assert "assignment x" in src
        assert "if-else" in src

    def test_split_nodes(self, analyze, finally_return):
        ca = analyze(finally_return)
        src = cfg_to_graphviz(ca.cfg, format="png").source
        assert "finally0:normal" in src
        assert "finally0:return" in src


class TestCallGraphRendering:

    def test_edges_are_labelled(self, program_analysis, setter_call):
        pa = program_analysis(setter_call)
        dot = callgraph_to_graphviz(pa.callgraph, title="calls")
        src = dot.source
        assert "C.SetF" in src and "C.M" in src
        assert "direct" in src
        assert "(this)" in src
        assert src.count(" -> ") == len(pa.callgraph.edges)
