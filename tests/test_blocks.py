# tests/test_blocks.py
"""
Tests for basic-block formation, dominators, post-dominators and
dominance frontiers.
"""

import pytest

from cfgssa.errors import ErrorCodes, QueryError


def _stmts(ca):
    return ca.callable.body.stmts


# ── Block formation ──────────────────────────────────────────────

class TestBlockFormation:

    def test_straight_line_is_one_block(self, analyze, straight_line):
        ca = analyze(straight_line)
        assert len(ca.blocks.blocks) == 1
        block = ca.blocks.entry_block
        assert block.is_entry and block.is_exit
        assert block.first is ca.entry_node()
        assert block.last is ca.exit_node()
        assert ca.blocks.statistics()["join_blocks"] == 0

    def test_if_else_blocks(self, analyze, if_else):
        ca = analyze(if_else)
        ret = _stmts(ca)[2]
        join = ca.basic_block_of(ca.nodes_for(ret.expr)[0])
        assert len(ca.blocks.blocks) == 4
        assert ca.blocks.join_blocks() == [join]
        assert join.is_exit
        assert len(join.predecessor_blocks()) == 2

    def test_every_node_in_exactly_one_block(self, analyze, any_program):
        ca = analyze(any_program)
        seen = [n for b in ca.blocks.blocks for n in b.nodes]
        assert len(seen) == len(set(seen)) == len(ca.cfg.nodes)
        for block in ca.blocks.blocks:
            for i, node in enumerate(block.nodes):
                assert ca.blocks.block_of(node) == (block, i)

    def test_block_edges_mirror(self, analyze, any_program):
        ca = analyze(any_program)
        for block in ca.blocks.blocks:
            for succ in block.successor_blocks():
                assert block in succ.predecessor_blocks()

    def test_interior_nodes_have_one_successor(self, analyze, any_program):
        ca = analyze(any_program)
        for block in ca.blocks.blocks:
            for node in block.nodes[:-1]:
                assert len(ca.successors(node)) == 1


# ── Dominance ────────────────────────────────────────────────────

class TestDominance:

    def test_entry_dominates_every_node(self, analyze, any_program):
        ca = analyze(any_program)
        for node in ca.cfg.nodes:
            assert ca.dominates(ca.entry_node(), node)

    def test_dominance_is_reflexive_not_strict(self, analyze, straight_line):
        ca = analyze(straight_line)
        entry = ca.entry_node()
        assert ca.dominates(entry, entry)
        assert not ca.strictly_dominates(entry, entry)
        assert ca.strictly_dominates(entry, ca.exit_node())
        assert not ca.dominates(ca.exit_node(), entry)

    def test_entry_has_no_immediate_dominator(self, analyze, if_else):
        ca = analyze(if_else)
        assert ca.blocks.immediate_dominator(ca.blocks.entry_block) is None

    def test_branch_does_not_dominate_join(self, analyze, if_else):
        ca = analyze(if_else)
        if_stmt, ret = _stmts(ca)[1], _stmts(ca)[2]
        then_node = ca.nodes_for(if_stmt.then)[0]
        join_node = ca.nodes_for(ret.expr)[0]
        then_block = ca.basic_block_of(then_node)
        join = ca.basic_block_of(join_node)
        assert not ca.dominates(then_node, join_node)
        assert ca.blocks.immediate_dominator(join) is ca.blocks.entry_block
        assert ca.blocks.immediate_dominator(then_block) is ca.blocks.entry_block
        assert ca.blocks.dominance_frontier(then_block) == {join}
        assert ca.blocks.dominance_frontier(ca.blocks.entry_block) == set()

    def test_loop_header_in_its_own_frontier(self, analyze, while_loop):
        ca = analyze(while_loop)
        loop = _stmts(ca)[1]
        header = ca.basic_block_of(ca.nodes_for(loop.cond.left)[0])
        body = ca.basic_block_of(ca.nodes_for(loop.body)[0])
        assert header.is_join
        assert ca.blocks.dominates(header, body)
        assert ca.blocks.dominance_frontier(body) == {header}
        assert header in ca.blocks.dominance_frontier(header)
        assert ca.blocks.dominates(header, ca.blocks.exit_block)

    def test_frontier_definition(self, analyze, any_program):
        ca = analyze(any_program)
        bbg = ca.blocks
        for b in bbg.blocks:
            for f in bbg.dominance_frontier(b):
                assert any(bbg.dominates(b, p) for p in f.predecessor_blocks())
                assert not bbg.strictly_dominates(b, f)

    def test_iterated_frontier(self, analyze, while_loop):
        ca = analyze(while_loop)
        loop = _stmts(ca)[1]
        header = ca.basic_block_of(ca.nodes_for(loop.cond.left)[0])
        body = ca.basic_block_of(ca.nodes_for(loop.body)[0])
        assert ca.blocks.dominator_tree.iterated_frontier([body]) == {header}


# ── Post-dominance ───────────────────────────────────────────────

class TestPostDominance:

    def test_exit_post_dominates_every_node(self, analyze, any_program):
        ca = analyze(any_program)
        for node in ca.cfg.nodes:
            assert ca.post_dominates(ca.exit_node(), node)

    def test_join_post_dominates_condition(self, analyze, if_else):
        ca = analyze(if_else)
        if_stmt, ret = _stmts(ca)[1], _stmts(ca)[2]
        cond = ca.nodes_for(if_stmt.cond)[0]
        assert ca.post_dominates(ca.nodes_for(ret.expr)[0], cond)
        assert not ca.post_dominates(ca.nodes_for(if_stmt.then)[0], cond)

    def test_nothing_post_dominates_without_exit(self, analyze):
        ca = analyze("(class C (method M () (var x 0) (while true (= x 1))))")
        assert ca.exit_node() is None
        assert ca.blocks.exit_block is None
        first, second = ca.blocks.blocks[0], ca.blocks.blocks[-1]
        assert first is not second
        assert not ca.blocks.post_dominates(second, first)


# ── Foreign blocks and nodes ─────────────────────────────────────

class TestForeignQueries:

    def test_foreign_block(self, analyze, straight_line, if_else):
        a = analyze(straight_line)
        b = analyze(if_else)
        with pytest.raises(QueryError) as info:
            a.blocks.dominates(a.blocks.entry_block, b.blocks.blocks[1])
        assert info.value.code == ErrorCodes.FOREIGN_BLOCK

    def test_foreign_node(self, analyze, straight_line, if_else):
        a = analyze(straight_line)
        b = analyze(if_else)
        with pytest.raises(QueryError) as info:
            a.dominates(a.entry_node(), b.exit_node())
        assert info.value.code == ErrorCodes.FOREIGN_NODE
        with pytest.raises(QueryError):
            a.basic_block_of(b.entry_node())
