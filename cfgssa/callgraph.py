"""
cfgssa.callgraph
================

Whole-program call graph over methods, constructors and lambdas, plus the
*call effects* oracle that SSA construction consults at call sites.

The call graph is a directed graph where:
- **Nodes** are callables (plus a synthetic sink for unresolved calls).
- **Edges** represent call relationships, annotated with the call site
  (the call expression), the resolution method and whether the call
  stays on the caller's own instance (``this``).

Resolution methods
------------------
``DIRECT``
    The callee is statically known: static methods, ``base.M()``, object
    creation and constructor chaining.
``VIRTUAL``
    A virtual or abstract method; every override in a subclass of the
    static receiver type is a target as well.
``DELEGATE``
    The callee is a lambda or method group reaching the call through a
    delegate value (a delegate invocation, or a delegate passed to a call
    whose target is unknown).
``UNRESOLVED``
    The callee could not be resolved.  An edge to the synthetic UNKNOWN
    node is created.

Delegate values are computed by a flow-insensitive fixpoint over local
variables, parameters, fields/properties and callable return values.

Call effects
------------
:class:`CallEffects` answers *"may this call write (or read) that source
variable?"*:

* a plain instance field ``this.f`` may be written by a call only if an
  intra-instance edge leads to a callable that (transitively, through
  intra-instance calls) writes ``this.f``;
* static and qualified fields use every writer of the member, through
  any kind of edge;
* a captured local may be written (read) by a call that leads to a
  closure writing (reading) it.

When pruning is on, only callables reachable from *relevant* call sites
are considered; restricting the backward searches to that forward set
never changes an answer for a relevant site.

Public API
----------
    CallGraphNode       - a node in the call graph
    CallGraphEdge       - a directed edge (call site)
    CallGraph           - the whole-program call graph
    CallResolutionKind  - enum of resolution methods
    build_callgraph     - build from a linked Program
    CallEffects         - call-site side-effect oracle
    callgraph_summary   - human-readable summary

Typical usage::

    from cfgssa.reader import parse_program
    from cfgssa.callgraph import build_callgraph

    program = parse_program(text)
    cg = build_callgraph(program)
    for edge in cg.edges:
        print(f"{edge.caller.name} -> {edge.callee.name}  "
              f"[{edge.resolution.value}]")
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict, defaultdict, deque
from typing import (
    Any,
    Deque,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from cfgssa.ast_helper import (
    TypeHierarchy,
    declaring_callable,
    enclosing_callable,
    outermost_callable,
    static_type,
    walk_callable,
)
from cfgssa.ast_nodes import (
    CALL_TYPES,
    MEMBER_ACCESS_TYPES,
    AsExpr,
    Assign,
    BaseAccess,
    Call,
    CastExpr,
    Conditional,
    ConstructorDecl,
    ConstructorInitializer,
    DelegateCall,
    Expr,
    FieldAccess,
    Lambda,
    LocalAccess,
    LocalVarDecl,
    MemberInitializer,
    MethodDecl,
    MethodRef,
    Node,
    NullCoalescing,
    ObjectCreation,
    Program,
    PropertyAccess,
    ReturnStmt,
    ThisAccess,
    TypeAccess,
    Variable,
)
from cfgssa.source_variables import (
    FieldOrPropVariable,
    LocalScopeVariable,
    PlainFieldOrProp,
    SourceVariable,
    is_read,
    writer_of,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resolution kinds
# ---------------------------------------------------------------------------

class CallResolutionKind(enum.Enum):
    """How a call edge was resolved."""

    DIRECT     = "direct"
    VIRTUAL    = "virtual"
    DELEGATE   = "delegate"
    UNRESOLVED = "unresolved"


class NodeKind(enum.Enum):
    """Classification of a call-graph node."""

    METHOD      = "method"
    CONSTRUCTOR = "constructor"
    LAMBDA      = "lambda"
    UNKNOWN     = "unknown"       # Synthetic sink for unresolved calls


def _kind_of(callable_: Node) -> NodeKind:
    if isinstance(callable_, ConstructorDecl):
        return NodeKind.CONSTRUCTOR
    if isinstance(callable_, Lambda):
        return NodeKind.LAMBDA
    return NodeKind.METHOD


# ---------------------------------------------------------------------------
# CallGraphNode
# ---------------------------------------------------------------------------

class CallGraphNode:
    """A node in the call graph.

    Attributes
    ----------
    id : str
        Unique identifier (``c<N>`` in program order, ``__UNKNOWN__`` for
        the sink).
    name : str
        Qualified name of the callable.
    kind : NodeKind
    callable : Node or None
        The method, constructor or lambda (``None`` for the sink).
    out_edges : list[CallGraphEdge]
    in_edges : list[CallGraphEdge]
    """

    __slots__ = ("id", "name", "kind", "callable", "out_edges", "in_edges")

    def __init__(
        self,
        node_id: str,
        name: str,
        kind: NodeKind = NodeKind.METHOD,
        callable_: Optional[Node] = None,
    ) -> None:
        self.id: str = node_id
        self.name: str = name
        self.kind: NodeKind = kind
        self.callable = callable_
        self.out_edges: List[CallGraphEdge] = []
        self.in_edges: List[CallGraphEdge] = []

    @property
    def callees(self) -> List[CallGraphNode]:
        return [e.callee for e in self.out_edges]

    @property
    def callers(self) -> List[CallGraphNode]:
        return [e.caller for e in self.in_edges]

    @property
    def is_leaf(self) -> bool:
        return len(self.out_edges) == 0

    @property
    def is_root(self) -> bool:
        return len(self.in_edges) == 0

    @property
    def is_recursive(self) -> bool:
        """Does this callable call itself (directly)?"""
        return any(e.callee is self for e in self.out_edges)

    def __repr__(self) -> str:
        return f"CallGraphNode({self.name!r}, kind={self.kind.value})"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphNode):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraphEdge
# ---------------------------------------------------------------------------

class CallGraphEdge:
    """A directed edge in the call graph representing a call site.

    Attributes
    ----------
    caller, callee : CallGraphNode
    call_site : Node
        The call expression (``Call``, ``DelegateCall``, ``ObjectCreation``
        or ``ConstructorInitializer``).
    resolution : CallResolutionKind
    intra_instance : bool
        The callee runs on the caller's own ``this``.
    line : int or None
    """

    __slots__ = ("caller", "callee", "call_site", "resolution",
                 "intra_instance", "line")

    def __init__(
        self,
        caller: CallGraphNode,
        callee: CallGraphNode,
        call_site: Optional[Node] = None,
        resolution: CallResolutionKind = CallResolutionKind.DIRECT,
        intra_instance: bool = False,
    ) -> None:
        self.caller = caller
        self.callee = callee
        self.call_site = call_site
        self.resolution = resolution
        self.intra_instance = intra_instance
        self.line: Optional[int] = None
        if call_site is not None and call_site.loc.line:
            self.line = call_site.loc.line

    def __repr__(self) -> str:
        loc = f" @ line {self.line}" if self.line else ""
        intra = ", intra" if self.intra_instance else ""
        return (
            f"CallGraphEdge({self.caller.name} -> {self.callee.name}, "
            f"{self.resolution.value}{intra}{loc})"
        )

    def __hash__(self) -> int:
        return hash((self.caller.id, self.callee.id, id(self.call_site)))

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphEdge):
            return (
                self.caller.id == other.caller.id
                and self.callee.id == other.callee.id
                and self.call_site is other.call_site
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Whole-program call graph.

    Attributes
    ----------
    nodes : OrderedDict[str, CallGraphNode]
        All nodes, keyed by node id.
    edges : list[CallGraphEdge]
    unknown : CallGraphNode
        The synthetic UNKNOWN sink node.
    program : Program
    """

    def __init__(self, program: Optional[Program] = None) -> None:
        self.program = program
        self.nodes: OrderedDict[str, CallGraphNode] = OrderedDict()
        self.edges: List[CallGraphEdge] = []
        self.unknown = CallGraphNode(
            node_id="__UNKNOWN__",
            name="<unknown>",
            kind=NodeKind.UNKNOWN,
        )
        self.nodes[self.unknown.id] = self.unknown
        self._by_callable: Dict[Node, CallGraphNode] = {}
        self._by_site: Dict[Node, List[CallGraphEdge]] = defaultdict(list)

    # ----- node management --------------------------------------------------

    def get_or_create_node(self, callable_: Node) -> CallGraphNode:
        node = self._by_callable.get(callable_)
        if node is None:
            nid = f"c{len(self._by_callable)}"
            name = getattr(callable_, "qualified_name", None) or str(callable_)
            node = CallGraphNode(nid, name, _kind_of(callable_), callable_)
            self.nodes[nid] = node
            self._by_callable[callable_] = node
        return node

    def node_for(self, callable_: Node) -> Optional[CallGraphNode]:
        return self._by_callable.get(callable_)

    # ----- edge management --------------------------------------------------

    def add_edge(
        self,
        caller: CallGraphNode,
        callee: CallGraphNode,
        call_site: Optional[Node] = None,
        resolution: CallResolutionKind = CallResolutionKind.DIRECT,
        intra_instance: bool = False,
    ) -> CallGraphEdge:
        """Create a call edge and wire it up (duplicates are merged)."""
        for e in self._by_site.get(call_site, ()):
            if e.caller is caller and e.callee is callee:
                e.intra_instance = e.intra_instance or intra_instance
                return e
        edge = CallGraphEdge(caller, callee, call_site, resolution, intra_instance)
        self.edges.append(edge)
        caller.out_edges.append(edge)
        callee.in_edges.append(edge)
        if call_site is not None:
            self._by_site[call_site].append(edge)
        return edge

    # ----- lookups ----------------------------------------------------------

    def edges_at(self, call_site: Node) -> List[CallGraphEdge]:
        """Edges created for *call_site*."""
        return list(self._by_site.get(call_site, ()))

    def callees_at(self, call_site: Node) -> List[Node]:
        """Callables a call site may invoke."""
        return [e.callee.callable for e in self._by_site.get(call_site, ())
                if e.callee.callable is not None]

    def callables_named(self, name: str) -> List[CallGraphNode]:
        return [n for n in self.nodes.values()
                if n.callable is not None and n.callable.name == name]

    @property
    def roots(self) -> List[CallGraphNode]:
        """Nodes with no callers (excluding UNKNOWN)."""
        return [
            n for n in self.nodes.values()
            if n.is_root and n.kind != NodeKind.UNKNOWN
        ]

    @property
    def leaves(self) -> List[CallGraphNode]:
        """Nodes with no callees."""
        return [
            n for n in self.nodes.values()
            if n.is_leaf and n.kind != NodeKind.UNKNOWN
        ]

    # ----- whole-graph queries ----------------------------------------------

    def _reach(self, node: CallGraphNode, forward: bool) -> Set[CallGraphNode]:
        # *node* itself is included only when a cycle leads back to it
        def step(n: CallGraphNode) -> List[CallGraphNode]:
            if forward:
                return [e.callee for e in n.out_edges]
            return [e.caller for e in n.in_edges]

        visited: Set[CallGraphNode] = set()
        worklist: Deque[CallGraphNode] = deque(step(node))
        while worklist:
            n = worklist.popleft()
            if n in visited:
                continue
            visited.add(n)
            worklist.extend(step(n))
        return visited

    def transitive_callees(self, node: CallGraphNode) -> Set[CallGraphNode]:
        """Return all callables transitively reachable from *node*."""
        return self._reach(node, forward=True)

    def transitive_callers(self, node: CallGraphNode) -> Set[CallGraphNode]:
        """Return all callables that transitively call *node*."""
        return self._reach(node, forward=False)

    def is_recursive(self, node: CallGraphNode) -> bool:
        """Is *node* part of a (possibly indirect) recursive cycle?"""
        return node in self.transitive_callees(node)

    def strongly_connected_components(self) -> List[List[CallGraphNode]]:
        """Compute SCCs using Tarjan's algorithm.

        Returns a list of SCCs in reverse topological order (callees before
        callers).
        """
        index_counter = [0]
        stack: List[CallGraphNode] = []
        lowlink: Dict[str, int] = {}
        index: Dict[str, int] = {}
        on_stack: Set[str] = set()
        result: List[List[CallGraphNode]] = []

        def strongconnect(v: CallGraphNode):
            index[v.id] = index_counter[0]
            lowlink[v.id] = index_counter[0]
            index_counter[0] += 1
            stack.append(v)
            on_stack.add(v.id)

            for e in v.out_edges:
                w = e.callee
                if w.id not in index:
                    strongconnect(w)
                    lowlink[v.id] = min(lowlink[v.id], lowlink[w.id])
                elif w.id in on_stack:
                    lowlink[v.id] = min(lowlink[v.id], index[w.id])

            if lowlink[v.id] == index[v.id]:
                scc: List[CallGraphNode] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w.id)
                    scc.append(w)
                    if w.id == v.id:
                        break
                result.append(scc)

        for v in self.nodes.values():
            if v.id not in index:
                strongconnect(v)

        return result

    def topological_order(self) -> List[CallGraphNode]:
        """Callees before callers; nodes within an SCC in arbitrary order."""
        sccs = self.strongly_connected_components()
        return [node for scc in sccs for node in scc]

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        by_res = {k: 0 for k in CallResolutionKind}
        for e in self.edges:
            by_res[e.resolution] += 1
        sccs = self.strongly_connected_components()
        return {
            "callables": len(self._by_callable),
            "lambdas": sum(1 for n in self.nodes.values()
                           if n.kind == NodeKind.LAMBDA),
            "total_nodes": len(self.nodes),
            "total_edges": len(self.edges),
            "direct_calls": by_res[CallResolutionKind.DIRECT],
            "virtual_calls": by_res[CallResolutionKind.VIRTUAL],
            "delegate_calls": by_res[CallResolutionKind.DELEGATE],
            "unresolved_calls": by_res[CallResolutionKind.UNRESOLVED],
            "intra_instance_calls": sum(1 for e in self.edges if e.intra_instance),
            "sccs": len(sccs),
            "recursive_sccs": sum(1 for scc in sccs if len(scc) > 1),
            "self_recursive": sum(1 for n in self.nodes.values() if n.is_recursive),
            "root_callables": len(self.roots),
            "leaf_callables": len(self.leaves),
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation."""
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        kind_attrs = {
            NodeKind.METHOD:      'style=filled, fillcolor="#ddeeff"',
            NodeKind.CONSTRUCTOR: 'style=filled, fillcolor="#ccffcc"',
            NodeKind.LAMBDA:      'style=filled, fillcolor="#fff3cd", shape=ellipse',
            NodeKind.UNKNOWN:     'style=filled, fillcolor="#ffcccc", shape=diamond',
        }
        for n in self.nodes.values():
            attrs = kind_attrs.get(n.kind, "")
            escaped = n.name.replace('"', '\\"')
            lines.append(f'  "{n.id}" [label="{escaped}", {attrs}];')

        res_attrs = {
            CallResolutionKind.DIRECT: "",
            CallResolutionKind.VIRTUAL: ", color=purple",
            CallResolutionKind.DELEGATE: ", style=dashed, color=blue",
            CallResolutionKind.UNRESOLVED: ", style=dotted, color=red",
        }
        for e in self.edges:
            attrs = res_attrs.get(e.resolution, "")
            elabel = e.resolution.value
            if e.line:
                elabel += f":{e.line}"
            lines.append(
                f'  "{e.caller.id}" -> "{e.callee.id}" '
                f'[label="{elabel}"{attrs}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"CallGraph(nodes={len(self.nodes)}, edges={len(self.edges)})"


# ===========================================================================
# DELEGATE FLOW
# ===========================================================================

# A delegate value: the target callable and whether it is bound to the
# ``this`` of the callable that created it.
DelegateValue = Tuple[Node, bool]


def _slot(expr: Optional[Node]) -> Optional[Tuple[str, Node]]:
    if isinstance(expr, LocalAccess):
        return ("var", expr.variable)
    if isinstance(expr, FieldAccess):
        return ("member", expr.field)
    if isinstance(expr, PropertyAccess):
        return ("member", expr.property)
    return None


def _is_instance_context(callable_: Node) -> bool:
    return not outermost_callable(callable_).is_static


class _DelegateFlow:
    """Flow-insensitive propagation of lambdas and method groups."""

    def __init__(self, builder: "_CallGraphBuilder") -> None:
        self.builder = builder
        self.env: Dict[Tuple[str, Node], Set[DelegateValue]] = defaultdict(set)

    def solve(self, callables: Iterable[Node]) -> None:
        constraints: List[Tuple[Tuple[str, Node], Node]] = []
        dcalls: List[DelegateCall] = []
        for c in callables:
            if isinstance(c, Lambda) and isinstance(c.body, Expr):
                constraints.append((("ret", c), c.body))
            for node in walk_callable(c):
                if isinstance(node, Assign):
                    slot = _slot(node.target)
                    if slot is not None:
                        constraints.append((slot, node.source))
                elif isinstance(node, LocalVarDecl) and node.init is not None:
                    constraints.append((("var", node.variable), node.init))
                elif isinstance(node, ReturnStmt) and node.expr is not None:
                    constraints.append((("ret", c), node.expr))
                elif isinstance(node, MemberInitializer) and node.member is not None:
                    constraints.append((("member", node.member), node.value))
                elif isinstance(node, DelegateCall):
                    dcalls.append(node)
                elif isinstance(node, CALL_TYPES):
                    _, targets, _ = self.builder.resolve_static(node, c)
                    for t in targets:
                        for p, arg in zip(t.params, node.args):
                            constraints.append((("var", p), arg))

        rounds = 0
        changed = True
        while changed:
            changed = False
            rounds += 1
            for slot, expr in constraints:
                changed |= self._flow(slot, self.values(expr))
            for dc in dcalls:
                for target, _ in list(self.values(dc.delegate)):
                    for p, arg in zip(target.params, dc.args):
                        changed |= self._flow(("var", p), self.values(arg))
        logger.debug("delegate flow: %d constraints, %d delegate calls, %d rounds",
                     len(constraints), len(dcalls), rounds)

    def _flow(self, slot: Tuple[str, Node], values: Set[DelegateValue]) -> bool:
        current = self.env[slot]
        new = values - current
        if new:
            current |= new
            return True
        return False

    def values(self, expr: Optional[Node]) -> Set[DelegateValue]:
        """Delegate values *expr* may evaluate to."""
        if expr is None:
            return set()
        if isinstance(expr, Lambda):
            return {(expr, _is_instance_context(expr))}
        if isinstance(expr, MethodRef):
            return set(self.builder.resolve_method_ref(expr))
        slot = _slot(expr)
        if slot is not None:
            return set(self.env.get(slot, ()))
        if isinstance(expr, Call):
            caller = enclosing_callable(expr)
            _, targets, _ = self.builder.resolve_static(expr, caller)
            out: Set[DelegateValue] = set()
            for t in targets:
                out |= self.env.get(("ret", t), set())
            return out
        if isinstance(expr, DelegateCall):
            out = set()
            for t, _ in self.values(expr.delegate):
                out |= self.env.get(("ret", t), set())
            return out
        if isinstance(expr, Conditional):
            return self.values(expr.then) | self.values(expr.else_)
        if isinstance(expr, NullCoalescing):
            return self.values(expr.left) | self.values(expr.right)
        if isinstance(expr, Assign):
            return self.values(expr.source)
        if isinstance(expr, (CastExpr, AsExpr)):
            return self.values(expr.expr)
        return set()


# ===========================================================================
# BUILDER
# ===========================================================================

class _CallGraphBuilder:
    """Construct a ``CallGraph`` from a linked ``Program``."""

    def __init__(self, program: Program, hierarchy: Optional[TypeHierarchy] = None) -> None:
        self.program = program
        self.hierarchy = hierarchy or TypeHierarchy(program)
        self.cg = CallGraph(program)
        self.flow = _DelegateFlow(self)
        self._order: Dict[Node, int] = {}

    def build(self) -> CallGraph:
        # Phase 1: one node per callable
        for i, c in enumerate(self.program.callables):
            self.cg.get_or_create_node(c)
            self._order[c] = i

        # Phase 2: delegate values
        self.flow.solve(self.program.callables)

        # Phase 3: edges
        for c in self.program.callables:
            caller = self.cg.node_for(c)
            for node in walk_callable(c):
                if isinstance(node, DelegateCall):
                    self._add_delegate_edges(caller, node, self.flow.values(node.delegate),
                                             sink=True)
                elif isinstance(node, CALL_TYPES):
                    self._add_call_edges(caller, node)

        stats = self.cg.statistics()
        logger.debug("call graph: %d callables, %d edges (%d unresolved)",
                     stats["callables"], stats["total_edges"], stats["unresolved_calls"])
        return self.cg

    # ----- static resolution ------------------------------------------------

    def resolve_static(
        self, call: Node, caller: Node
    ) -> Tuple[CallResolutionKind, List[Node], bool]:
        """``(resolution, targets, intra_instance)`` of a non-delegate call."""
        h = self.hierarchy
        cls = getattr(caller, "declaring_class", None)
        instance = _is_instance_context(caller)

        if isinstance(call, ObjectCreation):
            ctors = h.constructors(call.type_name, len(call.args))
            kind = CallResolutionKind.DIRECT if ctors else CallResolutionKind.UNRESOLVED
            return kind, list(ctors), False

        if isinstance(call, ConstructorInitializer):
            owner = None
            if cls is not None:
                owner = cls.base_name if call.is_base else cls.name
            ctors = h.constructors(owner, len(call.args))
            kind = CallResolutionKind.DIRECT if ctors else CallResolutionKind.UNRESOLVED
            return kind, list(ctors), bool(ctors)

        q = call.qualifier
        virtual = True
        if q is None or isinstance(q, ThisAccess):
            owner = cls.name if cls is not None else None
            intra = instance
        elif isinstance(q, BaseAccess):
            owner = cls.base_name if cls is not None else None
            intra = instance
            virtual = False
        elif isinstance(q, TypeAccess):
            owner = q.type_name
            intra = False
            virtual = False
        else:
            owner = static_type(q, h)
            intra = False

        m = h.lookup_method(owner, call.method_name, len(call.args))
        if m is None:
            return CallResolutionKind.UNRESOLVED, [], False
        if m.is_static:
            return CallResolutionKind.DIRECT, [m], False
        if virtual and m.is_dispatched:
            return CallResolutionKind.VIRTUAL, [m] + self._overrides(owner, m), intra
        return CallResolutionKind.DIRECT, [m], intra

    def _overrides(self, owner: Optional[str], method: MethodDecl) -> List[MethodDecl]:
        if owner is None:
            return []
        out = []
        for sub in self.hierarchy.subtypes(owner):
            cls = self.hierarchy.class_decl(sub)
            if cls is None:
                continue
            for m in cls.methods():
                if m is not method and m.name == method.name \
                        and len(m.params) == len(method.params):
                    out.append(m)
        return out

    def resolve_method_ref(self, ref: MethodRef) -> List[DelegateValue]:
        h = self.hierarchy
        caller = enclosing_callable(ref)
        q = ref.qualifier
        cls = getattr(caller, "declaring_class", None)
        bound_ok = caller is not None and _is_instance_context(caller)
        if q is None or isinstance(q, (ThisAccess, BaseAccess)):
            owner = cls.name if cls is not None else None
            if isinstance(q, BaseAccess):
                owner = cls.base_name if cls is not None else None
            this_like = True
        elif isinstance(q, TypeAccess):
            owner, this_like = q.type_name, False
        else:
            owner, this_like = static_type(q, h), False
        m = h.lookup_method(owner, ref.method_name)
        if m is None:
            return []
        bound = this_like and bound_ok and not m.is_static
        targets = [m]
        if m.is_dispatched and not isinstance(q, (BaseAccess, TypeAccess)):
            targets += self._overrides(owner, m)
        return [(t, bound) for t in targets]

    # ----- edges ------------------------------------------------------------

    def _add_call_edges(self, caller: CallGraphNode, call: Node) -> None:
        kind, targets, intra = self.resolve_static(call, caller.callable)
        if not targets:
            self.cg.add_edge(caller, self.cg.unknown, call, CallResolutionKind.UNRESOLVED)
        for t in targets:
            self.cg.add_edge(caller, self.cg.get_or_create_node(t), call, kind, intra)
        if kind is CallResolutionKind.UNRESOLVED or isinstance(call, ObjectCreation):
            # delegates handed to code we cannot see may be invoked right here
            for arg in call.args:
                self._add_delegate_edges(caller, call, self.flow.values(arg), sink=False)

    def _add_delegate_edges(self, caller: CallGraphNode, site: Node,
                            values: Set[DelegateValue], sink: bool) -> None:
        if not values and sink:
            self.cg.add_edge(caller, self.cg.unknown, site, CallResolutionKind.UNRESOLVED)
            return
        for target, bound in sorted(values, key=lambda v: self._order.get(v[0], -1)):
            intra = bound and _is_instance_context(caller.callable) \
                and self._related(caller.callable, target)
            self.cg.add_edge(caller, self.cg.get_or_create_node(target), site,
                             CallResolutionKind.DELEGATE, intra)

    def _related(self, a: Node, b: Node) -> bool:
        ca = getattr(a, "declaring_class", None)
        cb = getattr(b, "declaring_class", None)
        if ca is None or cb is None:
            return False
        h = self.hierarchy
        return h.is_subtype(ca.name, cb.name) or h.is_subtype(cb.name, ca.name)


def build_callgraph(program: Program, hierarchy: Optional[TypeHierarchy] = None) -> CallGraph:
    """Build the call graph of a linked program.

    Parameters
    ----------
    program : Program
        A program that went through :func:`cfgssa.ast_helper.link_program`
        (as every program from :func:`cfgssa.reader.parse_program` has).
    hierarchy : TypeHierarchy, optional
        Reused when the caller already built one.

    Returns
    -------
    CallGraph
    """
    return _CallGraphBuilder(program, hierarchy).build()


# ===========================================================================
# CALL EFFECTS
# ===========================================================================

class CallEffects:
    """Which source variables a call site may write or read.

    Parameters
    ----------
    cg : CallGraph
    relevant_sites : iterable of call expressions, optional
        When given, backward searches are restricted to callables reachable
        from these sites (call-graph pruning).
    """

    def __init__(self, cg: CallGraph, relevant_sites: Optional[Iterable[Node]] = None) -> None:
        self.cg = cg
        self._this_writers: Dict[Node, Set[Node]] = defaultdict(set)
        self._member_writers: Dict[Node, Set[Node]] = defaultdict(set)
        self._this_readers: Dict[Node, Set[Node]] = defaultdict(set)
        self._member_readers: Dict[Node, Set[Node]] = defaultdict(set)
        self._captured_writers: Dict[Variable, Set[Node]] = defaultdict(set)
        self._captured_readers: Dict[Variable, Set[Node]] = defaultdict(set)
        self._closures: Dict[Tuple[str, Node], FrozenSet[Node]] = {}
        self.allowed: Optional[Set[Node]] = None
        self._index()
        if relevant_sites is not None:
            self.allowed = self._forward(relevant_sites)

    def _index(self) -> None:
        program = self.cg.program
        for c in (program.callables if program is not None else ()):
            for node in walk_callable(c):
                if isinstance(node, MEMBER_ACCESS_TYPES):
                    member = node.field if isinstance(node, FieldAccess) else node.property
                    if member is None:
                        continue
                    on_this = not member.is_static and (
                        node.qualifier is None
                        or isinstance(node.qualifier, (ThisAccess, BaseAccess)))
                    if writer_of(node) is not None:
                        self._member_writers[member].add(c)
                        if on_this:
                            self._this_writers[member].add(c)
                    if is_read(node):
                        self._member_readers[member].add(c)
                        if on_this:
                            self._this_readers[member].add(c)
                elif isinstance(node, MemberInitializer) and node.member is not None:
                    self._member_writers[node.member].add(c)
                elif isinstance(node, LocalAccess) and declaring_callable(node.variable) is not c:
                    if writer_of(node) is not None:
                        self._captured_writers[node.variable].add(c)
                    if is_read(node):
                        self._captured_readers[node.variable].add(c)

    def _forward(self, sites: Iterable[Node]) -> Set[Node]:
        allowed: Set[Node] = set()
        n_sites = 0
        for site in sites:
            n_sites += 1
            for e in self.cg.edges_at(site):
                if e.callee.callable is None or e.callee.callable in allowed:
                    continue
                allowed.add(e.callee.callable)
                allowed.update(n.callable for n in self.cg.transitive_callees(e.callee)
                               if n.callable is not None)
        logger.debug("call-graph pruning: %d relevant sites reach %d of %d callables",
                     n_sites, len(allowed), len(self.cg.nodes) - 1)
        return allowed

    def _closure(self, key: Tuple[str, Node], seeds: Set[Node], intra_only: bool) -> FrozenSet[Node]:
        """Backward closure of *seeds* over call edges (restricted when pruning)."""
        cached = self._closures.get(key)
        if cached is not None:
            return cached
        allowed = self.allowed
        result = {s for s in seeds if allowed is None or s in allowed}
        work = list(result)
        while work:
            node = self.cg.node_for(work.pop())
            if node is None:
                continue
            for e in node.in_edges:
                if intra_only and not e.intra_instance:
                    continue
                c = e.caller.callable
                if c is None or c in result or (allowed is not None and c not in allowed):
                    continue
                result.add(c)
                work.append(c)
        frozen = frozenset(result)
        self._closures[key] = frozen
        return frozen

    # ----- setter sets ------------------------------------------------------

    def own_setters(self, member: Node) -> FrozenSet[Node]:
        """Callables that may write ``this.member`` of their own instance."""
        return self._closure(("own-set", member), self._this_writers.get(member, set()), True)

    def general_setters(self, member: Node) -> FrozenSet[Node]:
        """Callables that may write *member* of any instance."""
        return self._closure(("set", member), self._member_writers.get(member, set()), False)

    def own_getters(self, member: Node) -> FrozenSet[Node]:
        return self._closure(("own-get", member), self._this_readers.get(member, set()), True)

    def general_getters(self, member: Node) -> FrozenSet[Node]:
        return self._closure(("get", member), self._member_readers.get(member, set()), False)

    # ----- queries ----------------------------------------------------------

    def _hits(self, site: Node, targets: FrozenSet[Node], intra_only: bool) -> bool:
        for e in self.cg.edges_at(site):
            if intra_only and not e.intra_instance:
                continue
            if e.callee.callable in targets:
                return True
        return False

    def may_mutate_field(self, site: Node, sv: FieldOrPropVariable) -> bool:
        member = sv.member
        if isinstance(sv, PlainFieldOrProp) and not member.is_static:
            return self._hits(site, self.own_setters(member), True)
        return self._hits(site, self.general_setters(member), False)

    def may_observe_field(self, site: Node, sv: FieldOrPropVariable) -> bool:
        member = sv.member
        if isinstance(sv, PlainFieldOrProp) and not member.is_static:
            return self._hits(site, self.own_getters(member), True)
        return self._hits(site, self.general_getters(member), False)

    def may_write_captured(self, site: Node, variable: Variable) -> bool:
        writers = self._closure(("cap-set", variable),
                                self._captured_writers.get(variable, set()), False)
        return self._hits(site, writers, False)

    def may_read_captured(self, site: Node, variable: Variable) -> bool:
        readers = self._closure(("cap-get", variable),
                                self._captured_readers.get(variable, set()), False)
        return self._hits(site, readers, False)

    def may_write(self, site: Node, sv: SourceVariable) -> bool:
        if isinstance(sv, FieldOrPropVariable):
            return self.may_mutate_field(site, sv)
        if isinstance(sv, LocalScopeVariable):
            return self.may_write_captured(site, sv.declaration)
        return False

    def may_read(self, site: Node, sv: SourceVariable) -> bool:
        if isinstance(sv, FieldOrPropVariable):
            return self.may_observe_field(site, sv)
        if isinstance(sv, LocalScopeVariable):
            return self.may_read_captured(site, sv.declaration)
        return False


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        "Call Graph Summary",
        f"  Callables:            {stats['callables']}",
        f"  Lambdas:              {stats['lambdas']}",
        f"  Total edges:          {stats['total_edges']}",
        f"  Direct calls:         {stats['direct_calls']}",
        f"  Virtual calls:        {stats['virtual_calls']}",
        f"  Delegate calls:       {stats['delegate_calls']}",
        f"  Unresolved calls:     {stats['unresolved_calls']}",
        f"  Intra-instance calls: {stats['intra_instance_calls']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        "",
        "Callables:",
    ]
    for node in cg.nodes.values():
        if node.kind == NodeKind.UNKNOWN:
            continue
        callee_names = [e.callee.name for e in node.out_edges]
        lines.append(
            f"  {node.name} ({node.kind.value}): "
            f"calls [{', '.join(callee_names)}]"
        )
    return "\n".join(lines)
