# tests/conftest.py
"""
Shared fixtures for the cfgssa test-suite.

Programs are written in the reader's S-expression syntax; the ``analyze``
fixture parses a program and hands back the analysis of one callable.
"""

import pytest

from cfgssa.config import AnalysisConfig
from cfgssa.engine import ProgramAnalysis
from cfgssa.reader import parse_program


# ── Sample programs ──────────────────────────────────────────────

STRAIGHT_LINE = """
(class C
  (method M ((x int))
    (var y x)
    (return y)))
"""

IF_ELSE = """
(class C
  (method M ((b bool))
    (var x 0)
    (if b (= x 1) (= x 2))
    (return x)))
"""

WHILE_LOOP = """
(class C
  (method M ((n int))
    (var i 0)
    (while (< i n) (= i (+ i 1)))
    (return i)))
"""

FINALLY_RETURN = """
(class C
  (method M ((x int))
    (try (block (if (> x 0) (return)))
         (finally (= x 0)))
    (= x 1)))
"""

SETTER_CALL = """
(class C
  (field f int)
  (method SetF () (= f 1))
  (method M ()
    (= f 0)
    (call SetF)
    (return f)))
"""


# ── Helpers ──────────────────────────────────────────────────────

def _find_nodes(cfg, label):
    return [n for n in cfg.nodes if n.label() == label]


@pytest.fixture
def find_nodes():
    """Return ``find_nodes(cfg, label)`` listing the nodes with that label."""
    return _find_nodes


@pytest.fixture
def program_analysis():
    """Return a factory ``program_analysis(text, config=None)``."""
    def _make(text, config=None):
        return ProgramAnalysis(parse_program(text), config or AnalysisConfig())
    return _make


@pytest.fixture
def analyze(program_analysis):
    """Return a factory ``analyze(text, name="C.M", config=None)``."""
    def _analyze(text, name="C.M", config=None):
        pa = program_analysis(text, config)
        return pa.analysis(pa.callable_named(name))
    return _analyze


@pytest.fixture
def straight_line():
    return STRAIGHT_LINE


@pytest.fixture
def if_else():
    return IF_ELSE


@pytest.fixture
def while_loop():
    return WHILE_LOOP


@pytest.fixture
def finally_return():
    return FINALLY_RETURN


@pytest.fixture
def setter_call():
    return SETTER_CALL


@pytest.fixture(params=["straight_line", "if_else", "while_loop",
                        "finally_return", "setter_call"])
def any_program(request):
    """Each of the sample programs in turn."""
    return request.getfixturevalue(request.param)
