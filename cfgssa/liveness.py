"""
cfgssa.liveness
===============

Per-block variable references and backward liveness.

References
----------
Every tracked source variable is referenced at a *position* inside a basic
block: ``(node index, rank)``.  The rank orders the references one control
flow node makes:

====  ============================================================
rank  reference
====  ============================================================
 -1   implicit definition of an untracked variable (SSA only)
  0   read: an access, a call that may read a captured variable or
      a field, or the exit node's read of an escaping variable
  1   explicit write (including parameter writes at the entry)
  2   uncertain write by a call
  3   implicit write of ``q.f`` because its qualifier ``q`` was written
====  ============================================================

Liveness
--------
A variable is live at a position if some path from there reaches a read,
or an uncertain write, before a certain write.  The classic backward
worklist over blocks computes ``live_in`` / ``live_out``; positions inside a
block are answered by scanning that block's references.

Variables read at the exit node:

* tracked fields and properties (plain and qualified);
* in a closure, the captured locals it uses;
* in the callable declaring them, locals that nested closures read;
* ``ref`` and ``out`` parameters.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Set, Tuple

from cfgssa.ast_nodes import CALL_TYPES, Node
from cfgssa.basic_blocks import BasicBlock, BasicBlockGraph
from cfgssa.ctrlflow_graph import ControlFlowNode
from cfgssa.definitions import VariableReferences
from cfgssa.source_variables import (
    FieldOrPropVariable,
    LocalScopeVariable,
    QualifiedFieldOrProp,
    SourceVariable,
    SourceVariableResolver,
)

logger = logging.getLogger(__name__)

Position = Tuple[int, int]

UNTRACKED_RANK = -1
READ_RANK = 0
WRITE_RANK = 1
CALL_WRITE_RANK = 2
QUALIFIER_WRITE_RANK = 3


class RefKind(enum.Enum):
    READ = "read"
    WRITE = "write"


class RefOrigin(enum.Enum):
    ACCESS = "access"            # explicit read of an access expression
    CALL_READ = "call-read"      # call that may read the variable
    EXIT = "exit"                # read at the exit node
    EXPLICIT = "explicit"        # assignable definition
    CALL_WRITE = "call-write"    # call that may write the variable
    QUALIFIER = "qualifier"      # write of the qualifier of q.f


class Ref:
    """One reference to a source variable inside a basic block.

    ``payload`` is the access expression (ACCESS), the call expression
    (CALL_READ / CALL_WRITE), the ``AssignableDefinition`` (EXPLICIT), the
    qualifier's own write ``Ref`` (QUALIFIER), or ``None`` (EXIT).
    """

    __slots__ = ("variable", "kind", "origin", "block", "index", "rank",
                 "node", "certain", "payload")

    def __init__(self, variable: SourceVariable, kind: RefKind, origin: RefOrigin,
                 block: BasicBlock, index: int, rank: int, node: ControlFlowNode,
                 certain: bool = True, payload: object = None) -> None:
        self.variable = variable
        self.kind = kind
        self.origin = origin
        self.block = block
        self.index = index
        self.rank = rank
        self.node = node
        self.certain = certain
        self.payload = payload

    @property
    def position(self) -> Position:
        return (self.index, self.rank)

    @property
    def is_read(self) -> bool:
        return self.kind is RefKind.READ

    @property
    def is_certain_write(self) -> bool:
        return self.kind is RefKind.WRITE and self.certain

    def __repr__(self) -> str:
        return (f"Ref({self.variable}, {self.kind.value}/{self.origin.value}, "
                f"b{self.block.index}@{self.position})")


class ReferenceTable:
    """References of the tracked variables of one callable, per block.

    Parameters
    ----------
    blocks : BasicBlockGraph
    refs : VariableReferences
    resolver : SourceVariableResolver
    effects : optional
        Call-site oracle with ``may_write(site, sv)`` and
        ``may_read(site, sv)`` (a :class:`cfgssa.callgraph.CallEffects`).
        Without one no implicit call references are produced.
    """

    def __init__(self, blocks: BasicBlockGraph, refs: VariableReferences,
                 resolver: SourceVariableResolver, effects=None) -> None:
        self.blocks = blocks
        self.refs = refs
        self.resolver = resolver
        self.effects = effects
        self.by_block: Dict[BasicBlock, Dict[SourceVariable, List[Ref]]] = {
            b: defaultdict(list) for b in blocks.blocks
        }
        self.untracked_reads: List[Tuple[ControlFlowNode, Node, SourceVariable]] = []
        self.variables: List[SourceVariable] = self._variables()
        self._tracked: Set[SourceVariable] = set(self.variables)
        self.exit_variables: List[SourceVariable] = [
            v for v in self.variables if self._read_at_exit(v)
        ]
        self._call_candidates = [v for v in self.variables if self._call_affected(v)]
        self._build()

    # ----- variable sets --------------------------------------------------

    def _variables(self) -> List[SourceVariable]:
        out = list(self.resolver.tracked_variables())
        seen = set(out)
        for d in self.refs.parameter_definitions():
            if d.variable not in seen:
                seen.add(d.variable)
                out.append(d.variable)
        for decl in sorted(self.resolver.closure_reads | self.resolver.closure_writes,
                           key=lambda v: (v.loc.line, v.loc.col, v.name)):
            sv = self.resolver.local(decl)
            if sv not in seen:
                seen.add(sv)
                out.append(sv)
        return out

    def is_tracked(self, sv: SourceVariable) -> bool:
        return sv in self._tracked

    def _read_at_exit(self, v: SourceVariable) -> bool:
        if isinstance(v, FieldOrPropVariable):
            return True
        if isinstance(v, LocalScopeVariable):
            if v.is_captured:
                return True
            if v.declaration in self.resolver.closure_reads:
                return True
            return v.is_ref_or_out
        return False

    def _call_affected(self, v: SourceVariable) -> bool:
        if isinstance(v, FieldOrPropVariable):
            return True
        return isinstance(v, LocalScopeVariable) and (
            v.is_captured or self.resolver.is_captured_here(v.declaration))

    # ----- construction ---------------------------------------------------

    def _add(self, ref: Ref) -> None:
        self.by_block[ref.block][ref.variable].append(ref)

    def _build(self) -> None:
        refs = self.refs
        effects = self.effects
        for block in self.blocks.blocks:
            for i, node in enumerate(block.nodes):
                if node.is_entry:
                    for d in refs.parameter_definitions():
                        self._add(Ref(d.variable, RefKind.WRITE, RefOrigin.EXPLICIT,
                                      block, i, WRITE_RANK, node, d.certain, d))
                    continue
                if node.is_exit:
                    for v in self.exit_variables:
                        self._add(Ref(v, RefKind.READ, RefOrigin.EXIT,
                                      block, i, READ_RANK, node))
                    continue
                element = node.element
                for access, sv in refs.reads_at(element):
                    if sv in self._tracked:
                        self._add(Ref(sv, RefKind.READ, RefOrigin.ACCESS,
                                      block, i, READ_RANK, node, payload=access))
                    else:
                        self.untracked_reads.append((node, access, sv))
                if effects is not None and isinstance(element, CALL_TYPES):
                    for v in self._call_candidates:
                        if effects.may_read(element, v):
                            self._add(Ref(v, RefKind.READ, RefOrigin.CALL_READ,
                                          block, i, READ_RANK, node, payload=element))
                for d in refs.definitions_at(element):
                    if d.variable in self._tracked:
                        self._add(Ref(d.variable, RefKind.WRITE, RefOrigin.EXPLICIT,
                                      block, i, WRITE_RANK, node, d.certain, d))
                if effects is not None and isinstance(element, CALL_TYPES):
                    for v in self._call_candidates:
                        if effects.may_write(element, v):
                            self._add(Ref(v, RefKind.WRITE, RefOrigin.CALL_WRITE,
                                          block, i, CALL_WRITE_RANK, node, False, element))
        self._add_qualifier_writes()
        for per_var in self.by_block.values():
            for lst in per_var.values():
                lst.sort(key=lambda r: r.position)

    def _add_qualifier_writes(self) -> None:
        qualified = sorted((v for v in self.variables if isinstance(v, QualifiedFieldOrProp)),
                           key=lambda v: v.depth)
        for v in qualified:
            for block, per_var in self.by_block.items():
                for qref in list(per_var.get(v.qualifier, ())):
                    if qref.kind is RefKind.WRITE:
                        self._add(Ref(v, RefKind.WRITE, RefOrigin.QUALIFIER, block,
                                      qref.index, QUALIFIER_WRITE_RANK, qref.node,
                                      qref.certain, qref))

    # ----- queries --------------------------------------------------------

    def refs_in(self, block: BasicBlock, v: SourceVariable) -> List[Ref]:
        return self.by_block[block].get(v, [])

    def all_refs(self, v: SourceVariable) -> Iterable[Ref]:
        for block in self.blocks.blocks:
            yield from self.by_block[block].get(v, ())


class Liveness:
    """Backward liveness of the variables of a :class:`ReferenceTable`."""

    def __init__(self, table: ReferenceTable) -> None:
        self.table = table
        self.blocks = table.blocks
        self.gen: Dict[BasicBlock, Set[SourceVariable]] = {}
        self.kill: Dict[BasicBlock, Set[SourceVariable]] = {}
        self.live_in: Dict[BasicBlock, Set[SourceVariable]] = {}
        self.live_out: Dict[BasicBlock, Set[SourceVariable]] = {}
        self._solve()

    def _solve(self) -> None:
        blocks = self.blocks.blocks
        for b in blocks:
            gen, kill = set(), set()
            for v, refs in self.table.by_block[b].items():
                if not refs:
                    continue
                if refs[0].is_certain_write:
                    kill.add(v)
                else:
                    gen.add(v)
            self.gen[b] = gen
            self.kill[b] = kill
            self.live_in[b] = set(gen)
            self.live_out[b] = set()

        worklist = deque(reversed(blocks))
        queued = set(worklist)
        iterations = 0
        while worklist:
            b = worklist.popleft()
            queued.discard(b)
            iterations += 1
            out: Set[SourceVariable] = set()
            for s in b.successor_blocks():
                out |= self.live_in[s]
            self.live_out[b] = out
            new_in = self.gen[b] | (out - self.kill[b])
            if new_in != self.live_in[b]:
                self.live_in[b] = new_in
                for p in b.predecessor_blocks():
                    if p not in queued:
                        queued.add(p)
                        worklist.append(p)
        logger.debug("liveness %s: %d variables, %d block visits",
                     self.blocks.cfg.name, len(self.table.variables), iterations)

    def live_at_entry(self, block: BasicBlock, v: SourceVariable) -> bool:
        return v in self.live_in[block]

    def live_at_exit(self, block: BasicBlock, v: SourceVariable) -> bool:
        return v in self.live_out[block]

    def live_after(self, block: BasicBlock, position: Position, v: SourceVariable) -> bool:
        """Whether *v* is live just after *position* inside *block*."""
        for r in self.table.refs_in(block, v):
            if r.position <= position:
                continue
            return not r.is_certain_write
        return v in self.live_out[block]

    def live_variables_at_entry(self, block: BasicBlock) -> Set[SourceVariable]:
        return set(self.live_in[block])


def compute_liveness(blocks: BasicBlockGraph, refs: VariableReferences,
                     resolver: SourceVariableResolver, effects=None) -> Liveness:
    """Build the reference table of one callable and solve liveness."""
    return Liveness(ReferenceTable(blocks, refs, resolver, effects))
