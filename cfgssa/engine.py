"""
cfgssa.engine
=============

Whole-program orchestration: builds and caches, per callable, the
control-flow graph, basic blocks, source variables, liveness and SSA form,
sharing one type hierarchy, call graph and call-effects oracle.

Per-callable builds are independent once the call graph exists, so
:meth:`ProgramAnalysis.build_all` can run them on a thread pool
(``AnalysisConfig.threads``).

Typical usage::

    from cfgssa.reader import parse_program
    from cfgssa.engine import ProgramAnalysis

    program = parse_program(text)
    analysis = ProgramAnalysis(program)
    m = analysis.callable_named("C.M")
    ca = analysis.analysis(m)
    for v in ca.tracked_variables():
        for d in ca.definitions_of(v):
            print(v, d.describe(), [n.label() for n in d.reads()])
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Set

from cfgssa.ast_helper import TypeHierarchy, walk_callable
from cfgssa.ast_nodes import CALL_TYPES, Node, Program
from cfgssa.basic_blocks import BasicBlock, BasicBlockGraph
from cfgssa.callgraph import CallEffects, CallGraph, build_callgraph
from cfgssa.config import AnalysisConfig
from cfgssa.ctrlflow_graph import ControlFlowGraph, ControlFlowNode, EdgeFilter, build_cfg
from cfgssa.definitions import VariableReferences
from cfgssa.errors import ErrorCodes, QueryError
from cfgssa.liveness import Liveness, ReferenceTable
from cfgssa.source_variables import (
    FieldOrPropVariable,
    LocalScopeVariable,
    SourceVariable,
    SourceVariableResolver,
)
from cfgssa.ssa import Definition, SsaForm

logger = logging.getLogger(__name__)


class CallableAnalysis:
    """Analysis results of one callable, with the query API."""

    def __init__(self, callable_: Node, cfg: ControlFlowGraph, blocks: BasicBlockGraph,
                 resolver: SourceVariableResolver, references: VariableReferences,
                 liveness: Liveness, ssa: SsaForm) -> None:
        self.callable = callable_
        self.cfg = cfg
        self.blocks = blocks
        self.resolver = resolver
        self.references = references
        self.liveness = liveness
        self.ssa = ssa

    @property
    def name(self) -> str:
        return self.cfg.name

    # ----- control flow ---------------------------------------------------

    def entry_node(self) -> ControlFlowNode:
        return self.cfg.entry

    def exit_node(self) -> Optional[ControlFlowNode]:
        """``None`` if no path leaves the callable."""
        return self.cfg.exit

    def successors(self, node: ControlFlowNode, edge_type: EdgeFilter = None
                   ) -> List[ControlFlowNode]:
        return self.cfg.successors(node, edge_type)

    def predecessors(self, node: ControlFlowNode, edge_type: EdgeFilter = None
                     ) -> List[ControlFlowNode]:
        return self.cfg.predecessors(node, edge_type)

    def nodes_for(self, element: Node) -> List[ControlFlowNode]:
        return self.cfg.nodes_for(element)

    def basic_block_of(self, node: ControlFlowNode) -> BasicBlock:
        self.cfg.check(node)
        return self.blocks.block_of(node)[0]

    def dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        return self.blocks.node_dominates(self.cfg.check(a), self.cfg.check(b))

    def strictly_dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        return self.blocks.node_strictly_dominates(self.cfg.check(a), self.cfg.check(b))

    def post_dominates(self, a: ControlFlowNode, b: ControlFlowNode) -> bool:
        return self.blocks.node_post_dominates(self.cfg.check(a), self.cfg.check(b))

    # ----- variables and definitions --------------------------------------

    def source_variables(self) -> List[SourceVariable]:
        return self.resolver.variables()

    def tracked_variables(self) -> List[SourceVariable]:
        return list(self.ssa.table.variables)

    def variable(self, name: str) -> SourceVariable:
        """Source variable by its rendered name (``x``, ``this.f``, ``a.b``)."""
        for v in self.tracked_variables() + self.source_variables():
            if str(v) == name:
                return v
        raise QueryError(f"no source variable {name!r} in {self.name}",
                         ErrorCodes.UNKNOWN_VARIABLE)

    def _check_variable(self, v: SourceVariable) -> SourceVariable:
        if not isinstance(v, SourceVariable) or v.callable is not self.callable:
            raise QueryError(f"{v!r} is not a source variable of {self.name}",
                             ErrorCodes.UNKNOWN_VARIABLE)
        return v

    def definitions_of(self, v: SourceVariable) -> List[Definition]:
        return self.ssa.definitions_of(self._check_variable(v))

    def reads_of(self, v: SourceVariable) -> List[ControlFlowNode]:
        return self.ssa.reads_of(self._check_variable(v))

    def definition_of_read(self, node: ControlFlowNode,
                           v: Optional[SourceVariable] = None) -> Optional[Definition]:
        if v is not None:
            self._check_variable(v)
        return self.ssa.definition_of_read(node, v)

    def definitions_at(self, node: ControlFlowNode) -> List[Definition]:
        return self.ssa.definitions_at(node)

    def phi_nodes(self, block: Optional[BasicBlock] = None):
        return self.ssa.phi_nodes(block)

    def statistics(self) -> Dict[str, object]:
        return {
            "cfg": self.cfg.statistics(),
            "blocks": self.blocks.statistics(),
            "ssa": self.ssa.statistics(),
        }

    def __repr__(self) -> str:
        return f"CallableAnalysis({self.name!r})"


class ProgramAnalysis:
    """Lazily built, cached analyses of every callable of a program.

    Parameters
    ----------
    program : Program
        A linked program.
    config : AnalysisConfig, optional
    """

    def __init__(self, program: Program, config: Optional[AnalysisConfig] = None) -> None:
        self.program = program
        self.config = config or AnalysisConfig()
        for warning in self.config.validate():
            logger.warning("config: %s", warning)
        self.hierarchy = TypeHierarchy(program)
        self._known: Set[Node] = set(program.callables)
        self._resolvers: Dict[Node, SourceVariableResolver] = {}
        self._results: Dict[Node, CallableAnalysis] = {}
        self._callgraph: Optional[CallGraph] = None
        self._effects: Optional[CallEffects] = None
        self._lock = threading.Lock()

    # ----- shared whole-program structures --------------------------------

    @property
    def callgraph(self) -> CallGraph:
        with self._lock:
            if self._callgraph is None:
                self._callgraph = build_callgraph(self.program, self.hierarchy)
            return self._callgraph

    @property
    def effects(self) -> CallEffects:
        cg = self.callgraph
        with self._lock:
            if self._effects is None:
                sites = self._relevant_sites() if self.config.prune_call_graph else None
                self._effects = CallEffects(cg, sites)
            return self._effects

    def resolver(self, callable_: Node) -> SourceVariableResolver:
        r = self._resolvers.get(callable_)
        if r is None:
            r = SourceVariableResolver(self._check(callable_), self.config)
            self._resolvers[callable_] = r
        return r

    def _relevant_sites(self) -> List[Node]:
        """Call sites of callables with variables a call could affect."""
        sites: List[Node] = []
        for c in self.program.callables:
            r = self.resolver(c)
            relevant = bool(r.closure_reads or r.closure_writes) or any(
                isinstance(v, FieldOrPropVariable)
                or (isinstance(v, LocalScopeVariable) and v.is_captured)
                for v in r.tracked_variables()
            )
            if relevant:
                sites.extend(n for n in walk_callable(c) if isinstance(n, CALL_TYPES))
        return sites

    # ----- per-callable builds --------------------------------------------

    def _check(self, callable_: Node) -> Node:
        if callable_ not in self._known:
            raise QueryError(f"{callable_!r} is not a callable of this program",
                             ErrorCodes.UNKNOWN_CALLABLE)
        return callable_

    def callable_named(self, qualified_name: str) -> Node:
        for c in self.program.callables:
            if c.qualified_name == qualified_name:
                return c
        raise QueryError(f"no callable named {qualified_name!r}",
                         ErrorCodes.UNKNOWN_CALLABLE)

    def analysis(self, callable_: Node) -> CallableAnalysis:
        self._check(callable_)
        result = self._results.get(callable_)
        if result is None:
            result = self._build(callable_, self.effects)
            with self._lock:
                result = self._results.setdefault(callable_, result)
        return result

    def _build(self, callable_: Node, effects: CallEffects) -> CallableAnalysis:
        cfg = build_cfg(callable_, self.hierarchy, self.config)
        blocks = BasicBlockGraph(cfg)
        resolver = self.resolver(callable_)
        references = VariableReferences(callable_, resolver)
        liveness = Liveness(ReferenceTable(blocks, references, resolver, effects))
        ssa = SsaForm(cfg, blocks, liveness)
        return CallableAnalysis(callable_, cfg, blocks, resolver, references, liveness, ssa)

    def build_all(self) -> "OrderedDict[Node, CallableAnalysis]":
        """Analyse every callable, in program order."""
        effects = self.effects
        for c in self.program.callables:
            self.resolver(c)
        pending = [c for c in self.program.callables if c not in self._results]
        threads = max(1, self.config.threads)
        if threads > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=threads) as pool:
                futures = {pool.submit(self._build, c, effects): c for c in pending}
                for fut in as_completed(futures):
                    c = futures[fut]
                    with self._lock:
                        self._results.setdefault(c, fut.result())
        else:
            for c in pending:
                self._results.setdefault(c, self._build(c, effects))
        logger.debug("built %d callables with %d thread(s)", len(pending), threads)
        return OrderedDict((c, self._results[c]) for c in self.program.callables)

    def statistics(self) -> Dict[str, object]:
        totals: Dict[str, int] = {}
        for ca in self._results.values():
            for k, n in ca.ssa.statistics().items():
                totals[k] = totals.get(k, 0) + n
        return {
            "callables": len(self.program.callables),
            "analysed": len(self._results),
            "callgraph": self.callgraph.statistics(),
            "ssa": totals,
        }


def analyze(program: Program, config: Optional[AnalysisConfig] = None) -> ProgramAnalysis:
    """Analyse every callable of *program* and return the analysis."""
    analysis = ProgramAnalysis(program, config)
    analysis.build_all()
    return analysis
