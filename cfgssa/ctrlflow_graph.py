"""
cfgssa.ctrlflow_graph
=====================

Per-callable control-flow graphs over syntax-tree elements.

A node of the graph is a pair *(element, splits)* or one of the two
synthetic nodes *entry* / *exit* of the callable.  Nodes are created while
exploring the successor relation from the entry, so every node of a graph
is reachable from its entry; unreachable code simply has no nodes, and a
callable that never returns (``while (true) {}``) has no exit node.

Public API
----------
    NodeKind            - entry / exit / element
    ControlFlowNode     - a node of the graph
    ControlFlowEdge     - a directed, typed edge
    ControlFlowGraph    - the graph of one callable
    build_cfg           - build the graph of a callable
    build_all_cfgs      - build graphs for every callable of a program
    cfg_summary         - multi-line human-readable dump

Typical usage::

    from cfgssa.reader import parse_program
    from cfgssa.ctrlflow_graph import build_all_cfgs

    program = parse_program(text)
    for callable_, cfg in build_all_cfgs(program).items():
        print(f"{callable_.qualified_name}: {len(cfg.nodes)} nodes, "
              f"{len(cfg.edges)} edges")
        for node in cfg.successors(cfg.entry):
            print("  first:", node.label())
"""

from __future__ import annotations

import enum
import logging
from collections import Counter, OrderedDict, deque
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from cfgssa.ast_helper import TypeHierarchy, render
from cfgssa.ast_nodes import Element, Node, Program
from cfgssa.cfg_builder import EXIT, CfgBuilder
from cfgssa.completion import DIRECT, NORMAL, SuccessorKind, SuccessorType
from cfgssa.config import AnalysisConfig
from cfgssa.errors import ErrorCodes, QueryError
from cfgssa.splitting import NO_SPLITS, Splits, transition

logger = logging.getLogger(__name__)

EdgeFilter = Union[SuccessorType, SuccessorKind, None]


class NodeKind(enum.Enum):
    ENTRY = "entry"
    EXIT = "exit"
    ELEMENT = "element"


# ---------------------------------------------------------------------------
# ControlFlowNode
# ---------------------------------------------------------------------------

class ControlFlowNode:
    """A node of a control-flow graph.

    Attributes
    ----------
    index : int
        Position in the owning graph's node arena (entry is 0).
    kind : NodeKind
    element : Node
        The syntax element; for entry and exit nodes, the callable itself.
    splits : Splits
        Split context; always empty for entry and exit nodes.
    successors, predecessors : list[ControlFlowEdge]
    """

    __slots__ = ("index", "kind", "element", "splits", "successors", "predecessors")

    def __init__(self, kind: NodeKind, element: Node, splits: Splits = NO_SPLITS) -> None:
        self.index: int = -1
        self.kind = kind
        self.element = element
        self.splits = splits
        self.successors: List[ControlFlowEdge] = []
        self.predecessors: List[ControlFlowEdge] = []

    @property
    def key(self) -> Tuple[NodeKind, Node, Splits]:
        return (self.kind, self.element, self.splits)

    @property
    def is_entry(self) -> bool:
        return self.kind is NodeKind.ENTRY

    @property
    def is_exit(self) -> bool:
        return self.kind is NodeKind.EXIT

    def label(self) -> str:
        """Compact human-readable label."""
        if self.kind is not NodeKind.ELEMENT:
            return f"[{self.kind.value}] {getattr(self.element, 'qualified_name', '?')}"
        text = render(self.element)
        if self.splits:
            text += f" [{self.splits}]"
        return text

    def __repr__(self) -> str:
        return f"ControlFlowNode({self.index}, {self.label()!r})"

    def __hash__(self) -> int:
        return hash(self.key)

    def __eq__(self, other) -> bool:
        if isinstance(other, ControlFlowNode):
            return (
                self.kind is other.kind
                and self.element is other.element
                and self.splits == other.splits
            )
        return NotImplemented


class ControlFlowEdge:
    """A directed edge labelled with its successor type."""

    __slots__ = ("src", "dst", "type")

    def __init__(self, src: ControlFlowNode, dst: ControlFlowNode, type: SuccessorType) -> None:
        self.src = src
        self.dst = dst
        self.type = type

    def matches(self, edge_type: EdgeFilter) -> bool:
        if edge_type is None:
            return True
        if isinstance(edge_type, SuccessorKind):
            return self.type.kind is edge_type
        return self.type == edge_type

    def __repr__(self) -> str:
        return f"ControlFlowEdge({self.src.index} -> {self.dst.index}, {self.type})"


# ---------------------------------------------------------------------------
# ControlFlowGraph
# ---------------------------------------------------------------------------

class ControlFlowGraph:
    """Control-flow graph of a single callable.

    Attributes
    ----------
    callable : Node
        The method, constructor or lambda this graph represents.
    entry : ControlFlowNode
    exit : ControlFlowNode or None
        ``None`` when no path leaves the callable.
    nodes : list[ControlFlowNode]
        Arena of nodes in discovery (breadth-first) order.
    edges : list[ControlFlowEdge]
    """

    def __init__(self, callable_: Node) -> None:
        self.callable = callable_
        self.nodes: List[ControlFlowNode] = []
        self.edges: List[ControlFlowEdge] = []
        self.exit: Optional[ControlFlowNode] = None
        self._index: Dict[Tuple, ControlFlowNode] = {}
        self._by_element: Dict[Node, List[ControlFlowNode]] = {}
        self._edge_keys: Set[Tuple[int, int, SuccessorType]] = set()
        self.entry = self.add_node(ControlFlowNode(NodeKind.ENTRY, callable_))

    # ----- graph mutation ---------------------------------------------------

    def add_node(self, node: ControlFlowNode) -> ControlFlowNode:
        """Register *node* and return it, or return the existing equal node."""
        existing = self._index.get(node.key)
        if existing is not None:
            return existing
        node.index = len(self.nodes)
        self.nodes.append(node)
        self._index[node.key] = node
        if node.kind is NodeKind.ELEMENT:
            self._by_element.setdefault(node.element, []).append(node)
        elif node.kind is NodeKind.EXIT:
            self.exit = node
        return node

    def add_edge(self, src: ControlFlowNode, dst: ControlFlowNode,
                 type: SuccessorType = DIRECT) -> ControlFlowEdge:
        key = (src.index, dst.index, type)
        if key in self._edge_keys:
            for e in src.successors:
                if e.dst is dst and e.type == type:
                    return e
        e = ControlFlowEdge(src, dst, type)
        self._edge_keys.add(key)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        return e

    # ----- queries ----------------------------------------------------------

    def __contains__(self, node: object) -> bool:
        return isinstance(node, ControlFlowNode) and self._index.get(node.key) is node

    def __len__(self) -> int:
        return len(self.nodes)

    def check(self, node: ControlFlowNode) -> ControlFlowNode:
        """Return *node* if it belongs to this graph, else raise ``QueryError``."""
        if node not in self:
            raise QueryError(
                f"{node!r} is not a node of the graph of {self.name}",
                ErrorCodes.FOREIGN_NODE,
            )
        return node

    @property
    def name(self) -> str:
        return getattr(self.callable, "qualified_name", "<callable>")

    def node(self, element: Node, splits: Splits = NO_SPLITS) -> Optional[ControlFlowNode]:
        """The node for *element* under *splits*, if reachable."""
        return self._index.get((NodeKind.ELEMENT, element, splits))

    def nodes_for(self, element: Node) -> List[ControlFlowNode]:
        """Every split-copy of *element* (empty if unreachable)."""
        return list(self._by_element.get(element, ()))

    def elements(self) -> Iterable[Node]:
        return self._by_element.keys()

    def successors(self, node: ControlFlowNode, edge_type: EdgeFilter = None
                   ) -> List[ControlFlowNode]:
        """Successor nodes, optionally restricted to one edge type or kind."""
        self.check(node)
        return [e.dst for e in node.successors if e.matches(edge_type)]

    def predecessors(self, node: ControlFlowNode, edge_type: EdgeFilter = None
                     ) -> List[ControlFlowNode]:
        self.check(node)
        return [e.src for e in node.predecessors if e.matches(edge_type)]

    def successor_edges(self, node: ControlFlowNode) -> List[ControlFlowEdge]:
        return list(self.check(node).successors)

    def reachable_from(self, start: ControlFlowNode) -> Set[ControlFlowNode]:
        """Return the set of nodes reachable from *start* (DFS)."""
        visited: Set[ControlFlowNode] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            for e in n.successors:
                worklist.append(e.dst)
        return visited

    def statistics(self) -> Dict[str, object]:
        kinds = Counter(e.type.kind.value for e in self.edges)
        return {
            "nodes": len(self.nodes),
            "edges": len(self.edges),
            "elements": len(self._by_element),
            "split_nodes": sum(1 for n in self.nodes if n.splits),
            "has_exit": self.exit is not None,
            "edge_kinds": dict(kinds),
        }

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this graph."""
        lines = ["digraph CFG {"]
        lines.append(f'  label="{_escape(title or self.name)}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for n in self.nodes:
            color = ""
            if n.kind is NodeKind.ENTRY:
                color = ', style=filled, fillcolor="#ccffcc"'
            elif n.kind is NodeKind.EXIT:
                color = ', style=filled, fillcolor="#ffcccc"'
            elif n.splits:
                color = ', style=filled, fillcolor="#ffffcc"'
            lines.append(f'  N{n.index} [label="{_escape(n.label())}"{color}];')
        for e in self.edges:
            style = ""
            k = e.type.kind
            if e.type.value is True:
                style = ", color=green, fontcolor=green"
            elif e.type.value is False:
                style = ", color=red, fontcolor=red"
            elif k is SuccessorKind.EXCEPTION:
                style = ", style=dashed, color=orange, fontcolor=orange"
            elif k in (SuccessorKind.BREAK, SuccessorKind.CONTINUE, SuccessorKind.GOTO):
                style = ", style=dotted"
            lines.append(
                f'  N{e.src.index} -> N{e.dst.index} '
                f'[label="{_escape(str(e.type))}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ControlFlowGraph(callable={self.name!r}, nodes={len(self.nodes)}, "
            f"edges={len(self.edges)})"
        )


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


# ===========================================================================
# PUBLIC API
# ===========================================================================

def build_cfg(
    callable_: Node,
    hierarchy: Optional[TypeHierarchy] = None,
    config: Optional[AnalysisConfig] = None,
) -> ControlFlowGraph:
    """Build the :class:`ControlFlowGraph` of a single callable.

    Parameters
    ----------
    callable_ :
        A linked ``MethodDecl``, ``ConstructorDecl`` or ``Lambda``.
    hierarchy : TypeHierarchy, optional
        Program type hierarchy, used to classify exception types.
    config : AnalysisConfig, optional

    Returns
    -------
    ControlFlowGraph
        Abstract methods get a graph with an entry edge straight to the exit.
    """
    builder = CfgBuilder(callable_, hierarchy, config)
    graph = ControlFlowGraph(callable_)
    work: deque = deque()

    def intern(target, splits: Splits) -> ControlFlowNode:
        if target is EXIT:
            return graph.add_node(ControlFlowNode(NodeKind.EXIT, callable_))
        before = len(graph.nodes)
        node = graph.add_node(ControlFlowNode(NodeKind.ELEMENT, target, splits))
        if len(graph.nodes) > before:
            work.append(node)
        return node

    first = builder.entry_target()
    first_splits = NO_SPLITS if first is EXIT else transition(NO_SPLITS, None, first, NORMAL)
    graph.add_edge(graph.entry, intern(first, first_splits), DIRECT)

    while work:
        node = work.popleft()
        element: Element = node.element
        for c in builder.own_completions(element, node.splits):
            for target, c2 in builder.successors(element, c, node.splits):
                if target is EXIT:
                    succ = intern(EXIT, NO_SPLITS)
                else:
                    succ = intern(target, transition(node.splits, element, target, c2))
                graph.add_edge(node, succ, SuccessorType.of(c2))

    logger.debug("cfg %s: %d nodes, %d edges, exit %s",
                 graph.name, len(graph.nodes), len(graph.edges),
                 "reachable" if graph.exit is not None else "unreachable")
    return graph


def build_all_cfgs(
    program: Program,
    hierarchy: Optional[TypeHierarchy] = None,
    config: Optional[AnalysisConfig] = None,
) -> "OrderedDict[Node, ControlFlowGraph]":
    """Build graphs for every callable of a linked *program*, in source order."""
    hierarchy = hierarchy or TypeHierarchy(program)
    result: OrderedDict = OrderedDict()
    for callable_ in program.callables:
        result[callable_] = build_cfg(callable_, hierarchy, config)
    return result


def cfg_summary(cfg: ControlFlowGraph) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for node in cfg.nodes:
        succ_ids = ", ".join(f"N{e.dst.index}({e.type})" for e in node.successors)
        pred_ids = ", ".join(f"N{e.src.index}" for e in node.predecessors)
        lines.append(
            f"  N{node.index} {node.label()}  "
            f"succ=[{succ_ids}]  "
            f"pred=[{pred_ids}]"
        )
    return "\n".join(lines)
