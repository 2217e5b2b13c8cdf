"""
cfgssa.dot
==========

Graphviz rendering of control-flow graphs and call graphs through the
``graphviz`` package (install with ``pip install cfgssa[viz]``).

The plain ``to_dot`` methods of :class:`~cfgssa.ctrlflow_graph.ControlFlowGraph`
and :class:`~cfgssa.callgraph.CallGraph` produce DOT text with no extra
dependency; this module builds :class:`graphviz.Digraph` objects instead,
which can be rendered or piped straight to SVG/PNG, and can overlay the SSA
definitions of a callable on its graph.

Typical usage::

    from cfgssa.dot import cfg_to_graphviz

    ca = analysis.analysis(analysis.callable_named("C.M"))
    dot = cfg_to_graphviz(ca.cfg, ssa=ca.ssa)
    svg = dot.pipe().decode("utf-8")
"""

from __future__ import annotations

from typing import Dict, List, Optional

from graphviz import Digraph

from cfgssa.callgraph import CallGraph, CallResolutionKind, NodeKind as CallNodeKind
from cfgssa.completion import SuccessorKind
from cfgssa.ctrlflow_graph import ControlFlowGraph, ControlFlowNode, NodeKind

_NODE_COLORS = {
    NodeKind.ENTRY: "#ccffcc",
    NodeKind.EXIT: "#ffcccc",
}
_SPLIT_COLOR = "#ffffcc"
_DEFAULT_COLOR = "#e0f7fa"

_CALL_NODE_STYLE = {
    CallNodeKind.METHOD: {"fillcolor": "#ddeeff"},
    CallNodeKind.CONSTRUCTOR: {"fillcolor": "#ccffcc"},
    CallNodeKind.LAMBDA: {"fillcolor": "#fff3cd", "shape": "ellipse"},
    CallNodeKind.UNKNOWN: {"fillcolor": "#ffcccc", "shape": "diamond"},
}
_CALL_EDGE_STYLE = {
    CallResolutionKind.DIRECT: {},
    CallResolutionKind.VIRTUAL: {"color": "purple"},
    CallResolutionKind.DELEGATE: {"style": "dashed", "color": "blue"},
    CallResolutionKind.UNRESOLVED: {"style": "dotted", "color": "red"},
}


def _ssa_annotations(ssa) -> Dict[ControlFlowNode, List[str]]:
    notes: Dict[ControlFlowNode, List[str]] = {}
    for phi in ssa.phi_nodes():
        notes.setdefault(phi.node, []).append(phi.describe())
    for d in ssa.definitions:
        if not d.is_phi:
            notes.setdefault(d.node, []).append(d.describe())
    return notes


def cfg_to_graphviz(cfg: ControlFlowGraph, ssa=None, format: str = "svg",
                    title: Optional[str] = None) -> Digraph:
    """Build a :class:`graphviz.Digraph` for *cfg*.

    Parameters
    ----------
    cfg : ControlFlowGraph
    ssa : SsaForm, optional
        When given, each node's label lists the SSA definitions placed at it.
    format : str
        Output format used by ``render``/``pipe``.
    title : str, optional
        Graph label; defaults to the callable's qualified name.
    """
    dot = Digraph(name="CFG", format=format)
    dot.attr("graph", label=title or cfg.name, labelloc="t")
    dot.attr("node", shape="box", style="rounded,filled", fontname="Courier", fontsize="10")
    dot.attr("edge", arrowhead="vee", fontsize="9")

    notes = _ssa_annotations(ssa) if ssa is not None else {}
    for n in cfg.nodes:
        label = n.label()
        if n in notes:
            label += "\n" + "\n".join(notes[n])
        color = _NODE_COLORS.get(n.kind, _SPLIT_COLOR if n.splits else _DEFAULT_COLOR)
        dot.node(f"N{n.index}", label=label, fillcolor=color)

    for e in cfg.edges:
        attrs = {}
        kind = e.type.kind
        if e.type.value is True:
            attrs = {"color": "green", "fontcolor": "green"}
        elif e.type.value is False:
            attrs = {"color": "red", "fontcolor": "red"}
        elif kind is SuccessorKind.EXCEPTION:
            attrs = {"style": "dashed", "color": "orange", "fontcolor": "orange"}
        elif kind in (SuccessorKind.BREAK, SuccessorKind.CONTINUE, SuccessorKind.GOTO):
            attrs = {"style": "dotted"}
        dot.edge(f"N{e.src.index}", f"N{e.dst.index}", label=str(e.type), **attrs)
    return dot


def callgraph_to_graphviz(cg: CallGraph, format: str = "svg",
                          title: Optional[str] = None) -> Digraph:
    """Build a :class:`graphviz.Digraph` for a call graph."""
    dot = Digraph(name="CallGraph", format=format)
    if title:
        dot.attr("graph", label=title, labelloc="t")
    dot.attr("node", shape="box", style="filled", fontname="Helvetica", fontsize="10")

    for n in cg.nodes.values():
        dot.node(n.id, label=n.name, **_CALL_NODE_STYLE.get(n.kind, {}))
    for e in cg.edges:
        label = e.resolution.value
        if e.line:
            label += f":{e.line}"
        if e.intra_instance:
            label += " (this)"
        dot.edge(e.caller.id, e.callee.id, label=label, **_CALL_EDGE_STYLE.get(e.resolution, {}))
    return dot
