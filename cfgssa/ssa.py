"""
cfgssa.ssa
==========

Static single assignment form of one callable.

Every read of a tracked source variable is reached by exactly one SSA
definition.  Definitions come in six flavours:

``ExplicitDefinition``
    An assignable definition (assignment, declaration, ``out`` argument,
    parameter, ...).  Only placed if the variable is live right after it;
    dead stores get no SSA definition.
``ImplicitEntryDefinition``
    The value a field, property or captured variable has when the callable
    starts.
``ImplicitCallDefinition``
    A call that may write the variable (uncertain).
``ImplicitQualifierDefinition``
    ``q.f`` after its qualifier ``q`` was redefined.
``ImplicitUntrackedDefinition``
    One per read of an untracked variable; it reaches that read only.
``PhiNode``
    Placed on the iterated dominance frontier of the definition blocks,
    where the variable is live on entry.

Uncertain definitions (call definitions, duplicate ``out`` targets and
qualifier definitions of uncertain writes) keep a link to the definition
they may leave unchanged: :meth:`Definition.prior_definition`.

Reaching definitions
--------------------
Definitions are placed at ``(node index, rank)`` positions inside basic
blocks (phi nodes at ``(-1, 0)``).  The definition of *v* reaching the end
of block *B* is the last one inside *B*, else the one reaching the end of
*B*'s immediate dominator.  A read is reached by the last definition before
it in its own block, else by the definition reaching the end of the
immediate dominator.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from cfgssa.ast_nodes import Node
from cfgssa.basic_blocks import BasicBlock, BasicBlockGraph
from cfgssa.ctrlflow_graph import ControlFlowGraph, ControlFlowNode
from cfgssa.definitions import AssignableDefinition
from cfgssa.errors import ErrorCodes, QueryError
from cfgssa.liveness import (
    UNTRACKED_RANK,
    Liveness,
    Position,
    Ref,
    ReferenceTable,
    RefKind,
    RefOrigin,
)
from cfgssa.source_variables import LocalScopeVariable, SourceVariable

logger = logging.getLogger(__name__)

PHI_POSITION: Position = (-1, 0)
ENTRY_POSITION: Position = (0, 0)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

class Definition:
    """An SSA definition of one source variable.

    Attributes
    ----------
    variable : SourceVariable
    block : BasicBlock
    index, rank : int
        Position inside *block*.
    node : ControlFlowNode
        Node at which the definition takes effect (the block's first node
        for phi nodes).
    """

    __slots__ = ("ssa", "variable", "block", "index", "rank", "node",
                 "_reads", "_implicit_reads", "_prior", "_prior_done")

    certain = True
    is_phi = False

    def __init__(self, ssa: "SsaForm", variable: SourceVariable, block: BasicBlock,
                 position: Position, node: ControlFlowNode) -> None:
        self.ssa = ssa
        self.variable = variable
        self.block = block
        self.index, self.rank = position
        self.node = node
        self._reads: List[Ref] = []
        self._implicit_reads: List[Ref] = []
        self._prior: Optional[Definition] = None
        self._prior_done = False

    @property
    def position(self) -> Position:
        return (self.index, self.rank)

    @property
    def element(self) -> Optional[Node]:
        return self.node.element

    # ----- queries --------------------------------------------------------

    def reads(self) -> List[ControlFlowNode]:
        """Access nodes this definition reaches."""
        return [r.node for r in self._reads]

    def first_reads(self) -> List[ControlFlowNode]:
        """Reads reachable from the definition without passing another read."""
        reads, _ = self.ssa._scan_forward(self.variable, self.block, self.position)
        return _unique(r.node for r in reads)

    def last_reads(self) -> List[ControlFlowNode]:
        """Reads from which the end of the live range is reachable without
        passing another read."""
        out = []
        for r in self._reads:
            _, boundary = self.ssa._scan_forward(self.variable, r.block, r.position)
            if boundary:
                out.append(r.node)
        return _unique(out)

    def is_live_at_end_of_block(self, block: BasicBlock) -> bool:
        self.ssa.blocks.check(block)
        return (self.ssa.reaching_end(block, self.variable) is self
                and self.ssa.liveness.live_at_exit(block, self.variable))

    @property
    def prior_definition(self) -> Optional["Definition"]:
        """For an uncertain definition, the definition it may leave in place."""
        if self.certain:
            return None
        if not self._prior_done:
            self._prior = self.ssa.reaching_at(self.block, self.position, self.variable)
            self._prior_done = True
        return self._prior

    def ultimate_definitions(self) -> List["Definition"]:
        """Non-phi definitions this one stands for, through phi inputs and
        prior definitions of uncertain updates."""
        out: List[Definition] = []
        seen: Set[Definition] = set()
        work: List[Definition] = [self]
        while work:
            d = work.pop()
            if d in seen:
                continue
            seen.add(d)
            if d.is_phi:
                work.extend(reversed(d.inputs()))
                continue
            out.append(d)
            prior = d.prior_definition
            if prior is not None:
                work.append(prior)
        return out

    def flows_into_closure(self) -> List[ControlFlowNode]:
        """Nodes (calls or the exit) at which a closure may observe this
        definition of a captured local of the declaring callable."""
        v = self.variable
        if not isinstance(v, LocalScopeVariable) or v.is_captured:
            return []
        return _unique(r.node for r in self._implicit_reads)

    def flows_out_of_closure(self) -> bool:
        """Whether this definition, inside a closure, is the captured
        variable's value when the closure returns."""
        v = self.variable
        if not isinstance(v, LocalScopeVariable) or not v.is_captured:
            return False
        return any(r.origin is RefOrigin.EXIT for r in self._implicit_reads)

    def describe(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.variable}, "
                f"b{self.block.index}@{self.position})")


class ExplicitDefinition(Definition):
    __slots__ = ("assignable",)

    def __init__(self, ssa, variable, block, position, node,
                 assignable: AssignableDefinition) -> None:
        super().__init__(ssa, variable, block, position, node)
        self.assignable = assignable

    @property
    def certain(self) -> bool:  # type: ignore[override]
        return self.assignable.certain

    @property
    def element(self) -> Optional[Node]:
        return self.assignable.element

    def describe(self) -> str:
        return f"{self.assignable.kind.value} {self.variable}"


class ImplicitEntryDefinition(Definition):
    __slots__ = ()

    def describe(self) -> str:
        return f"entry {self.variable}"


class ImplicitCallDefinition(Definition):
    __slots__ = ("call",)

    certain = False

    def __init__(self, ssa, variable, block, position, node, call: Node) -> None:
        super().__init__(ssa, variable, block, position, node)
        self.call = call

    def describe(self) -> str:
        return f"call-update {self.variable}"


class ImplicitQualifierDefinition(Definition):
    __slots__ = ("qualifier_definition", "_certain")

    def __init__(self, ssa, variable, block, position, node,
                 qualifier_definition: Optional[Definition], certain: bool) -> None:
        super().__init__(ssa, variable, block, position, node)
        self.qualifier_definition = qualifier_definition
        self._certain = certain

    @property
    def certain(self) -> bool:  # type: ignore[override]
        return self._certain

    def describe(self) -> str:
        return f"qualifier-update {self.variable}"


class ImplicitUntrackedDefinition(Definition):
    """Stand-in definition for one read of an untracked variable."""

    __slots__ = ("access",)

    def __init__(self, ssa, variable, block, position, node, access: Node) -> None:
        super().__init__(ssa, variable, block, position, node)
        self.access = access

    def reads(self) -> List[ControlFlowNode]:
        return [self.node]

    def first_reads(self) -> List[ControlFlowNode]:
        return [self.node]

    def last_reads(self) -> List[ControlFlowNode]:
        return [self.node]

    def is_live_at_end_of_block(self, block: BasicBlock) -> bool:
        return False

    def describe(self) -> str:
        return f"untracked {self.variable}"


class PhiNode(Definition):
    __slots__ = ("_inputs",)

    is_phi = True

    def __init__(self, ssa, variable, block, node) -> None:
        super().__init__(ssa, variable, block, PHI_POSITION, node)
        self._inputs: Optional[List[Definition]] = None

    @property
    def element(self) -> Optional[Node]:
        return None

    def inputs(self) -> List[Definition]:
        """Definitions reaching the ends of the predecessor blocks."""
        if self._inputs is None:
            out: List[Definition] = []
            for pred in self.block.predecessor_blocks():
                d = self.ssa.reaching_end(pred, self.variable)
                if d is not None and d not in out:
                    out.append(d)
            self._inputs = out
        return list(self._inputs)

    def describe(self) -> str:
        return f"phi {self.variable}"


def _unique(nodes) -> List:
    out = []
    seen = set()
    for n in nodes:
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out


# ---------------------------------------------------------------------------
# SSA form
# ---------------------------------------------------------------------------

class SsaForm:
    """SSA form of one callable.

    Parameters
    ----------
    cfg : ControlFlowGraph
    blocks : BasicBlockGraph
    liveness : Liveness
        Liveness over the callable's :class:`ReferenceTable`.
    """

    def __init__(self, cfg: ControlFlowGraph, blocks: BasicBlockGraph,
                 liveness: Liveness) -> None:
        self.cfg = cfg
        self.blocks = blocks
        self.liveness = liveness
        self.table: ReferenceTable = liveness.table
        self.definitions: List[Definition] = []
        self._in_block: Dict[BasicBlock, Dict[SourceVariable, List[Definition]]] = {
            b: {} for b in blocks.blocks
        }
        self._phis: Dict[Tuple[BasicBlock, SourceVariable], PhiNode] = {}
        self._of_ref: Dict[Ref, Definition] = {}
        self._read_defs: Dict[ControlFlowNode, List[Tuple[SourceVariable, Definition]]] = {}
        self._end_cache: Dict[Tuple[BasicBlock, SourceVariable], Optional[Definition]] = {}
        self._build()

    # ----- construction ---------------------------------------------------

    def _place(self, d: Definition) -> Definition:
        self.definitions.append(d)
        self._in_block[d.block].setdefault(d.variable, []).append(d)
        return d

    def _build(self) -> None:
        table = self.table
        live = self.liveness
        entry = self.blocks.entry_block
        dom = self.blocks.dominator_tree
        variables = sorted(table.variables, key=lambda v: v.depth)

        for v in variables:
            def_blocks: Set[BasicBlock] = set()
            if _has_entry_value(v) and live.live_after(entry, ENTRY_POSITION, v):
                self._place(ImplicitEntryDefinition(self, v, entry, ENTRY_POSITION,
                                                    entry.first))
                def_blocks.add(entry)
            for ref in table.all_refs(v):
                if ref.kind is not RefKind.WRITE:
                    continue
                if not live.live_after(ref.block, ref.position, v):
                    continue
                d = self._place(self._definition_for(ref))
                self._of_ref[ref] = d
                def_blocks.add(ref.block)
            for b in dom.iterated_frontier(def_blocks):
                if live.live_at_entry(b, v) and (b, v) not in self._phis:
                    self._phis[(b, v)] = self._place(PhiNode(self, v, b, b.first))

        for node, access, v in table.untracked_reads:
            block, i = self.blocks.block_of(node)
            d = self._place(ImplicitUntrackedDefinition(self, v, block, (i, UNTRACKED_RANK),
                                                        node, access))
            self._read_defs.setdefault(node, []).append((v, d))

        for per_var in self._in_block.values():
            for lst in per_var.values():
                lst.sort(key=lambda d: d.position)

        for v in variables:
            for ref in table.all_refs(v):
                if ref.kind is not RefKind.READ:
                    continue
                d = self.reaching_at(ref.block, ref.position, v)
                if d is None:
                    continue
                if ref.origin is RefOrigin.ACCESS:
                    d._reads.append(ref)
                    self._read_defs.setdefault(ref.node, []).append((v, d))
                else:
                    d._implicit_reads.append(ref)

        logger.debug("ssa %s: %s", self.cfg.name, self.statistics())

    def _definition_for(self, ref: Ref) -> Definition:
        pos = ref.position
        if ref.origin is RefOrigin.EXPLICIT:
            return ExplicitDefinition(self, ref.variable, ref.block, pos, ref.node, ref.payload)
        if ref.origin is RefOrigin.CALL_WRITE:
            return ImplicitCallDefinition(self, ref.variable, ref.block, pos, ref.node,
                                          ref.payload)
        qualifier_def = self._of_ref.get(ref.payload)
        return ImplicitQualifierDefinition(self, ref.variable, ref.block, pos, ref.node,
                                           qualifier_def, ref.certain)

    # ----- reaching definitions -------------------------------------------

    def reaching_end(self, block: BasicBlock, v: SourceVariable) -> Optional[Definition]:
        """Definition of *v* reaching the end of *block*."""
        key = (block, v)
        if key in self._end_cache:
            return self._end_cache[key]
        chain = []
        cur: Optional[BasicBlock] = block
        result: Optional[Definition] = None
        while cur is not None:
            k = (cur, v)
            if k in self._end_cache:
                result = self._end_cache[k]
                break
            chain.append(k)
            lst = self._in_block[cur].get(v)
            if lst:
                result = lst[-1]
                break
            cur = self.blocks.immediate_dominator(cur)
        for k in chain:
            self._end_cache[k] = result
        return result

    def reaching_at(self, block: BasicBlock, position: Position,
                    v: SourceVariable) -> Optional[Definition]:
        """Definition of *v* reaching *position* (strictly before it)."""
        found = None
        for d in self._in_block[block].get(v, ()):
            if d.position < position:
                found = d
            else:
                break
        if found is not None:
            return found
        idom = self.blocks.immediate_dominator(block)
        return self.reaching_end(idom, v) if idom is not None else None

    def _scan_forward(self, v: SourceVariable, block: BasicBlock,
                      position: Position) -> Tuple[List[Ref], bool]:
        """Access reads of *v* reached from *position* before another
        reference, and whether the end of the live range is reachable
        without such a read."""
        reads: List[Ref] = []
        boundary = False
        visited: Set[BasicBlock] = set()
        stack = [(block, position)]
        while stack:
            b, pos = stack.pop()
            hit = None
            for r in self.table.refs_in(b, v):
                if r.position <= pos:
                    continue
                if r.kind is RefKind.READ and r.origin is not RefOrigin.ACCESS:
                    continue
                hit = r
                break
            if hit is not None:
                if hit.kind is RefKind.READ:
                    reads.append(hit)
                else:
                    boundary = True
                continue
            succs = b.successor_blocks()
            if not succs or not self.liveness.live_at_exit(b, v):
                boundary = True
                continue
            for s in succs:
                if (s, v) in self._phis:
                    boundary = True
                elif s not in visited:
                    visited.add(s)
                    stack.append((s, PHI_POSITION))
        return reads, boundary

    # ----- queries --------------------------------------------------------

    def definitions_of(self, v: SourceVariable) -> List[Definition]:
        return [d for d in self.definitions if d.variable == v]

    def definitions_at(self, node: ControlFlowNode) -> List[Definition]:
        """Non-phi definitions taking effect at *node*."""
        self.cfg.check(node)
        block, i = self.blocks.block_of(node)
        return [d for lst in self._in_block[block].values() for d in lst
                if d.index == i and not d.is_phi]

    def phi_nodes(self, block: Optional[BasicBlock] = None) -> List[PhiNode]:
        if block is None:
            return [d for d in self.definitions if d.is_phi]
        self.blocks.check(block)
        return [p for (b, _), p in self._phis.items() if b is block]

    def phi(self, block: BasicBlock, v: SourceVariable) -> Optional[PhiNode]:
        return self._phis.get((block, v))

    def definition_of_read(self, node: ControlFlowNode,
                           variable: Optional[SourceVariable] = None) -> Optional[Definition]:
        """The definition reaching the read at *node*."""
        self.cfg.check(node)
        for v, d in self._read_defs.get(node, ()):
            if variable is None or v == variable:
                return d
        return None

    def reads_of(self, v: SourceVariable) -> List[ControlFlowNode]:
        return [node for node, pairs in self._read_defs.items()
                for sv, _ in pairs if sv == v]

    def reaching_definition(self, node: ControlFlowNode,
                            v: SourceVariable) -> Optional[Definition]:
        """Definition of *v* reaching *node* (before its own references)."""
        self.cfg.check(node)
        if not self.table.is_tracked(v):
            raise QueryError(f"{v} is not a tracked variable of {self.cfg.name}",
                             ErrorCodes.UNKNOWN_VARIABLE)
        block, i = self.blocks.block_of(node)
        return self.reaching_at(block, (i, UNTRACKED_RANK - 1), v)

    def statistics(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for d in self.definitions:
            name = type(d).__name__
            counts[name] = counts.get(name, 0) + 1
        counts["variables"] = len(self.table.variables)
        counts["reads"] = sum(len(p) for p in self._read_defs.values())
        return counts


def _has_entry_value(v: SourceVariable) -> bool:
    if isinstance(v, LocalScopeVariable):
        return v.is_captured
    return True
