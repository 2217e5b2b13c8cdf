# cfgssa/basic_blocks.py
"""
Basic blocks and dominance over a per-callable control-flow graph.

A basic block is a maximal chain of control-flow nodes in which every node
but the first has exactly one predecessor and every node but the last has
exactly one successor.  Blocks are recognised structurally:

- the *entry block* starts with the callable entry node,
- the *exit block* ends with the callable exit node,
- a *join block* starts with a node that has two or more predecessors.

Principal classes
-----------------
- BasicBlock
- BasicBlockGraph        - block partition and block-level edges
- DominatorTree          - Cooper-Harvey-Kennedy iterative algorithm
- PostDominatorTree      - dominator tree of the reversed block graph

Dominance is reflexive (``dominates``) and irreflexive
(``strictly_dominates``), both for blocks and, through
:meth:`BasicBlockGraph.node_dominates`, for nodes (within one block, by
position).

References
----------
[1] Cooper, Harvey, Kennedy - "A Simple, Fast Dominance Algorithm", 2001.
[2] Cytron et al. - "Efficiently Computing SSA Form ...", 1991.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from cfgssa.completion import SuccessorType
from cfgssa.ctrlflow_graph import ControlFlowGraph, ControlFlowNode
from cfgssa.errors import ErrorCodes, QueryError

logger = logging.getLogger(__name__)


# ===================================================================
#  1. Basic blocks
# ===================================================================

class BasicBlock:
    """A maximal straight-line sequence of control-flow nodes.

    Attributes
    ----------
    index : int
        Position in :attr:`BasicBlockGraph.blocks` (the entry block is 0).
    nodes : list[ControlFlowNode]
    successors : list[tuple[BasicBlock, SuccessorType]]
    predecessors : list[tuple[BasicBlock, SuccessorType]]
    """

    __slots__ = ("index", "nodes", "successors", "predecessors")

    def __init__(self, index: int, nodes: List[ControlFlowNode]) -> None:
        self.index = index
        self.nodes = nodes
        self.successors: List[Tuple[BasicBlock, SuccessorType]] = []
        self.predecessors: List[Tuple[BasicBlock, SuccessorType]] = []

    @property
    def first(self) -> ControlFlowNode:
        return self.nodes[0]

    @property
    def last(self) -> ControlFlowNode:
        return self.nodes[-1]

    @property
    def is_entry(self) -> bool:
        return self.first.is_entry

    @property
    def is_exit(self) -> bool:
        return self.last.is_exit

    @property
    def is_join(self) -> bool:
        return len(self.predecessor_blocks()) >= 2

    def successor_blocks(self) -> List["BasicBlock"]:
        return _distinct(b for b, _ in self.successors)

    def predecessor_blocks(self) -> List["BasicBlock"]:
        return _distinct(b for b, _ in self.predecessors)

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        tag = "entry" if self.is_entry else "exit" if self.is_exit else \
            "join" if self.is_join else "block"
        return f"BasicBlock({self.index}, {tag}, nodes={len(self.nodes)})"


def _distinct(items) -> List[Any]:
    seen: Set[int] = set()
    out = []
    for it in items:
        if id(it) not in seen:
            seen.add(id(it))
            out.append(it)
    return out


class BasicBlockGraph:
    """Partition of a :class:`ControlFlowGraph` into basic blocks."""

    def __init__(self, cfg: ControlFlowGraph) -> None:
        self.cfg = cfg
        self.blocks: List[BasicBlock] = []
        self._where: Dict[ControlFlowNode, Tuple[BasicBlock, int]] = {}
        self._dom: Optional[DominatorTree] = None
        self._pdom: Optional[PostDominatorTree] = None
        self._build()

    # ----- construction ---------------------------------------------------

    def _is_leader(self, node: ControlFlowNode) -> bool:
        if node.is_entry:
            return True
        preds = _distinct(e.src for e in node.predecessors)
        if len(preds) != 1:
            return True
        return len(_distinct(e.dst for e in preds[0].successors)) != 1

    def _build(self) -> None:
        leaders = [n for n in self.cfg.nodes if self._is_leader(n)]
        leader_set = set(leaders)
        # unassigned nodes (only possible on cycles without a leader) start blocks too
        for start in leaders + list(self.cfg.nodes):
            if start in self._where:
                continue
            chain = [start]
            cur = start
            while True:
                succs = _distinct(e.dst for e in cur.successors)
                if len(succs) != 1:
                    break
                nxt = succs[0]
                if nxt in leader_set or nxt in self._where or nxt in chain:
                    break
                chain.append(nxt)
                cur = nxt
            block = BasicBlock(len(self.blocks), chain)
            self.blocks.append(block)
            for i, n in enumerate(chain):
                self._where[n] = (block, i)
            leader_set.add(start)
        for block in self.blocks:
            for e in block.last.successors:
                dst, _ = self._where[e.dst]
                block.successors.append((dst, e.type))
                dst.predecessors.append((block, e.type))
        logger.debug("blocks %s: %d blocks for %d nodes",
                     self.cfg.name, len(self.blocks), len(self.cfg.nodes))

    # ----- queries --------------------------------------------------------

    @property
    def entry_block(self) -> BasicBlock:
        return self.blocks[0]

    @property
    def exit_block(self) -> Optional[BasicBlock]:
        if self.cfg.exit is None:
            return None
        return self._where[self.cfg.exit][0]

    def block_of(self, node: ControlFlowNode) -> Tuple[BasicBlock, int]:
        """``(block, position)`` of a node of the underlying graph."""
        where = self._where.get(node)
        if where is None or where[0].nodes[where[1]] is not node:
            raise QueryError(
                f"{node!r} is not a node of the graph of {self.cfg.name}",
                ErrorCodes.FOREIGN_NODE,
            )
        return where

    def check(self, block: BasicBlock) -> BasicBlock:
        if not (0 <= block.index < len(self.blocks) and self.blocks[block.index] is block):
            raise QueryError(f"{block!r} is not a block of {self.cfg.name}",
                             ErrorCodes.FOREIGN_BLOCK)
        return block

    def successors(self, block: BasicBlock) -> List[BasicBlock]:
        return block.successor_blocks()

    def predecessors(self, block: BasicBlock) -> List[BasicBlock]:
        return block.predecessor_blocks()

    def join_blocks(self) -> List[BasicBlock]:
        return [b for b in self.blocks if b.is_join]

    @property
    def dominator_tree(self) -> "DominatorTree":
        if self._dom is None:
            self._dom = DominatorTree(self).compute()
        return self._dom

    @property
    def post_dominator_tree(self) -> "PostDominatorTree":
        if self._pdom is None:
            self._pdom = PostDominatorTree(self).compute()
        return self._pdom

    def dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        return self.dominator_tree.dominates(self.check(a), self.check(b))

    def strictly_dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        return a is not b and self.dominates(a, b)

    def immediate_dominator(self, block: BasicBlock) -> Optional[BasicBlock]:
        """``None`` for the entry block."""
        idom = self.dominator_tree.idom.get(self.check(block))
        return None if idom is block else idom

    def dominance_frontier(self, block: BasicBlock) -> Set[BasicBlock]:
        return set(self.dominator_tree.dom_frontier.get(self.check(block), ()))

    def post_dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        return self.post_dominator_tree.post_dominates(self.check(a), self.check(b))

    def node_dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        """Reflexive node-level dominance."""
        ba, ia = self.block_of(a)
        bb, ib = self.block_of(b)
        if ba is bb:
            return ia <= ib
        return self.dominator_tree.dominates(ba, bb)

    def node_strictly_dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        return a is not b and self.node_dominates(a, b)

    def node_post_dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        ba, ia = self.block_of(a)
        bb, ib = self.block_of(b)
        if ba is bb:
            return ia >= ib
        return self.post_dominator_tree.post_dominates(ba, bb)

    def statistics(self) -> Dict[str, int]:
        return {
            "blocks": len(self.blocks),
            "join_blocks": len(self.join_blocks()),
            "nodes": len(self.cfg.nodes),
            "max_block_size": max((len(b) for b in self.blocks), default=0),
        }

    def __repr__(self) -> str:
        return f"BasicBlockGraph({self.cfg.name!r}, blocks={len(self.blocks)})"


# ===================================================================
#  2. Dominator Tree
# ===================================================================

class DominatorTree:
    """
    Dominator tree of a block graph, using the Cooper-Harvey-Kennedy
    iterative algorithm [1].

    Attributes after .compute():
        idom              : Dict[block, block]  - immediate dominator
        dom_frontier      : Dict[block, Set[block]]  - dominance frontier
        dom_tree_children : Dict[block, List[block]]
        depth             : Dict[block, int]  - depth in the dominator tree

    Root convention
    ---------------
    The entry block's immediate dominator is the entry block itself.  Every
    walk up the idom chain checks for this self-loop.
    """

    def __init__(self, graph: Any):
        self.graph = graph
        self.idom: Dict[Any, Any] = {}
        self.dom_frontier: Dict[Any, Set[Any]] = defaultdict(set)
        self.dom_tree_children: Dict[Any, List[Any]] = defaultdict(list)
        self.depth: Dict[Any, int] = {}
        self._rpo_num: Dict[Any, int] = {}
        self._computed = False

    # ---- public API --------------------------------------------------

    def compute(self) -> "DominatorTree":
        """Compute immediate dominators and dominance frontiers."""
        if self._computed:
            return self
        self._compute_idom()
        self._build_dom_tree()
        self._compute_dom_frontier()
        self._compute_depth()
        self._computed = True
        return self

    def dominates(self, a: Any, b: Any) -> bool:
        """Return True if *a* dominates *b*; every block dominates itself.

        Blocks not reachable from the root are dominated by nothing but
        themselves.
        """
        self.compute()
        if a is b:
            return True
        if b not in self._rpo_num or a not in self._rpo_num:
            return False
        # a dominator has a smaller depth; walk b up to a's depth
        da = self.depth.get(a)
        cur = b
        while cur is not None and self.depth.get(cur, -1) > da:
            cur = self.idom.get(cur)
        return cur is a

    def strictly_dominates(self, a: Any, b: Any) -> bool:
        return a is not b and self.dominates(a, b)

    def all_dominators(self, block: Any) -> List[Any]:
        """Dominators of *block*, from *block* up to the root."""
        self.compute()
        result: List[Any] = []
        cur = block
        while cur is not None and cur in self.idom:
            result.append(cur)
            nxt = self.idom.get(cur)
            if nxt is cur:
                break
            cur = nxt
        return result

    def iterated_frontier(self, blocks) -> Set[Any]:
        """Iterated dominance frontier DF+ of a set of blocks [2]."""
        self.compute()
        result: Set[Any] = set()
        work = list(blocks)
        while work:
            b = work.pop()
            for f in self.dom_frontier.get(b, ()):
                if f not in result:
                    result.add(f)
                    work.append(f)
        return result

    # ---- internals: Cooper-Harvey-Kennedy iterative algorithm --------

    def _compute_idom(self):
        entry = self.graph.entry_block
        if entry is None:
            return
        succ = self.graph.successors
        pred = self.graph.predecessors

        # RPO numbering via iterative DFS
        finish_stack: List[Any] = []
        vis: Set[Any] = set()
        s: List[Tuple[Any, int]] = [(entry, 0)]
        vis.add(entry)
        while s:
            node, idx = s[-1]
            succs = succ(node)
            if idx < len(succs):
                s[-1] = (node, idx + 1)
                child = succs[idx]
                if child not in vis:
                    vis.add(child)
                    s.append((child, 0))
            else:
                s.pop()
                finish_stack.append(node)
        rpo_order = list(reversed(finish_stack))
        rpo_num = {b: i for i, b in enumerate(rpo_order)}
        self._rpo_num = rpo_num

        idom: Dict[Any, Any] = {entry: entry}

        def _intersect(b1: Any, b2: Any) -> Any:
            """Walk two fingers up the idom tree until they meet."""
            finger1, finger2 = b1, b2
            while finger1 is not finger2:
                while rpo_num[finger1] > rpo_num[finger2]:
                    finger1 = idom[finger1]
                while rpo_num[finger2] > rpo_num[finger1]:
                    finger2 = idom[finger2]
            return finger1

        changed = True
        while changed:
            changed = False
            for b in rpo_order:
                if b is entry:
                    continue
                preds = [p for p in pred(b) if p in idom]
                if not preds:
                    continue
                new_idom = preds[0]
                for p in preds[1:]:
                    new_idom = _intersect(new_idom, p)
                if idom.get(b) is not new_idom:
                    idom[b] = new_idom
                    changed = True
        self.idom = idom

    def _build_dom_tree(self):
        self.dom_tree_children = defaultdict(list)
        for b, d in self.idom.items():
            if d is not b:
                self.dom_tree_children[d].append(b)

    def _compute_dom_frontier(self):
        """Compute dominance frontiers (Cytron et al. 1991, section 4.2)."""
        self.dom_frontier = defaultdict(set)
        for b in self.idom:
            preds = [p for p in self.graph.predecessors(b) if p in self.idom]
            if len(preds) < 2:
                continue
            for p in preds:
                runner = p
                while runner is not self.idom[b]:
                    self.dom_frontier[runner].add(b)
                    nxt = self.idom[runner]
                    if nxt is runner:    # root
                        break
                    runner = nxt

    def _compute_depth(self):
        entry = self.graph.entry_block
        if entry is None or entry not in self.idom:
            return
        self.depth = {entry: 0}
        queue: Deque[Any] = deque([entry])
        while queue:
            b = queue.popleft()
            d = self.depth[b]
            for child in self.dom_tree_children.get(b, []):
                if child not in self.depth:
                    self.depth[child] = d + 1
                    queue.append(child)


# ===================================================================
#  3. Post-Dominator Tree
# ===================================================================

class PostDominatorTree:
    """
    Post-dominator tree: the dominator tree of the *reverse* block graph.

    Block A post-dominates B iff every path from B to the exit passes
    through A.  When the callable has no exit block, no block
    post-dominates another.
    """

    def __init__(self, graph: BasicBlockGraph):
        self.graph = graph
        self._dom = DominatorTree(_ReversedBlockGraph(graph))
        self.ipdom: Dict[Any, Any] = {}
        self._computed = False

    def compute(self) -> "PostDominatorTree":
        if self._computed:
            return self
        self._dom.compute()
        self.ipdom = dict(self._dom.idom)
        self._computed = True
        return self

    def post_dominates(self, a: Any, b: Any) -> bool:
        self.compute()
        return self._dom.dominates(a, b)


class _ReversedBlockGraph:
    """Reversed view of a block graph for post-dominator computation."""

    def __init__(self, graph: BasicBlockGraph):
        self._graph = graph
        self.entry_block = graph.exit_block

    def successors(self, block: BasicBlock) -> List[BasicBlock]:
        return block.predecessor_blocks()

    def predecessors(self, block: BasicBlock) -> List[BasicBlock]:
        return block.successor_blocks()
