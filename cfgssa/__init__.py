"""
cfgssa - Control-Flow Graphs and Sparse SSA for Object-Oriented Programs
========================================================================

This package builds, for every method, constructor and lambda of a program,
a precise control-flow graph (with context-sensitive splitting of
``finally`` blocks) and a sparse SSA form over locals, fields, properties
and closure-captured variables.

Core modules
------------
ast_nodes
    Syntax tree of the analysed language.
reader
    S-expression front door producing linked syntax trees.
ctrlflow_graph
    Control-flow nodes and per-callable graph construction.
basic_blocks
    Basic blocks, dominator and post-dominator trees, dominance frontiers.
source_variables
    Source-variable resolution and trackability.
callgraph
    Whole-program call graph and call-site mutation oracle.
liveness
    Per-block references and backward liveness.
ssa
    SSA definitions, phi nodes and def-use queries.
engine
    Whole-program orchestration and caching.

Addon modules
-------------
dot
    Graphviz rendering (requires the ``viz`` extra).

Quick start
-----------
>>> from cfgssa import parse_program, ProgramAnalysis
>>> program = parse_program('''
...     (class C
...       (method M ((x int))
...         (var y x)
...         (return y)))''')
>>> analysis = ProgramAnalysis(program)
>>> ca = analysis.analysis(analysis.callable_named("C.M"))
>>> [d.describe() for d in ca.definitions_of(ca.variable("y"))]
['declaration y']
"""

from __future__ import annotations

import importlib
import logging
import sys
import warnings
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
#
#   CORE  - always imported; failure is fatal
#   ADDON - failure only warns (package still usable)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "ast_nodes": [
        "Program",
        "ClassDecl",
        "MethodDecl",
        "ConstructorDecl",
        "Lambda",
        "SourceLoc",
    ],
    "errors": [
        "CfgSsaError",
        "ReaderError",
        "QueryError",
        "ConfigError",
        "ErrorCodes",
    ],
    "config": [
        "AnalysisConfig",
        "Verbosity",
        "configure_logging",
    ],
    "reader": [
        "parse_program",
        "read_program",
    ],
    "ctrlflow_graph": [
        "ControlFlowGraph",
        "ControlFlowNode",
        "build_cfg",
    ],
    "basic_blocks": [
        "BasicBlock",
        "BasicBlockGraph",
    ],
    "source_variables": [
        "SourceVariable",
        "SourceVariableResolver",
    ],
    "callgraph": [
        "CallGraph",
        "CallEffects",
        "build_callgraph",
    ],
    "liveness": [
        "Liveness",
        "compute_liveness",
    ],
    "ssa": [
        "Definition",
        "PhiNode",
        "SsaForm",
    ],
    "engine": [
        "CallableAnalysis",
        "ProgramAnalysis",
        "analyze",
    ],
}

_ADDON_MODULES = {
    "dot": [
        "cfg_to_graphviz",
        "callgraph_to_graphviz",
    ],
}


def _import_names(module_rel_name: str, names: List[str], *, fatal: bool = True) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    If *fatal* is false an ``ImportError`` only warns and the names are
    skipped (addon tier).
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        if fatal:
            raise ImportError(
                f"cfgssa: required submodule '{module_rel_name}' failed to import: {exc}"
            ) from exc
        warnings.warn(
            f"cfgssa: optional submodule '{module_rel_name}' could not be imported "
            f"({exc}); related symbols will be unavailable.",
            ImportWarning,
            stacklevel=2,
        )
        _log.debug("Skipped optional module %s: %s", module_rel_name, exc)
        return

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            msg = f"cfgssa.{module_rel_name} does not export '{name}'"
            if fatal:
                raise AttributeError(msg)
            _log.warning(msg)
            continue
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names, fatal=True)

for _mod, _names in _ADDON_MODULES.items():
    _import_names(_mod, _names, fatal=False)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of all submodules in the package (core + addon)."""
    return sorted(set(_CORE_MODULES) | set(_ADDON_MODULES))
