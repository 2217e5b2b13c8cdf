# tests/test_liveness.py
"""
Tests for per-block references and backward liveness.
"""

from cfgssa.liveness import WRITE_RANK, RefOrigin, compute_liveness


def _position(ca, node, rank=WRITE_RANK):
    block, index = ca.blocks.block_of(node)
    return block, (index, rank)


# ── Live-in / live-out ───────────────────────────────────────────

class TestLiveSets:

    def test_loop_variables_live_at_header(self, analyze, while_loop):
        ca = analyze(while_loop)
        loop = ca.callable.body.stmts[1]
        header = ca.basic_block_of(ca.nodes_for(loop.cond.left)[0])
        live = ca.liveness.live_variables_at_entry(header)
        assert ca.variable("i") in live
        assert ca.variable("n") in live

    def test_branch_assigned_local(self, analyze, if_else):
        ca = analyze(if_else)
        x = ca.variable("x")
        if_stmt, ret = ca.callable.body.stmts[1], ca.callable.body.stmts[2]
        join = ca.basic_block_of(ca.nodes_for(ret.expr)[0])
        then_block = ca.basic_block_of(ca.nodes_for(if_stmt.then)[0])
        assert not ca.liveness.live_at_entry(ca.blocks.entry_block, x)
        assert not ca.liveness.live_at_entry(then_block, x)
        assert ca.liveness.live_at_exit(then_block, x)
        assert ca.liveness.live_at_entry(join, x)

    def test_parameter_killed_at_entry(self, analyze, if_else):
        ca = analyze(if_else)
        assert not ca.liveness.live_at_entry(ca.blocks.entry_block, ca.variable("b"))

    def test_nothing_live_after_last_read(self, analyze, while_loop):
        ca = analyze(while_loop)
        ret = ca.callable.body.stmts[2]
        read = ca.nodes_for(ret.expr)[0]
        block, pos = _position(ca, read)
        assert not ca.liveness.live_after(block, pos, ca.variable("i"))


# ── Dead stores ──────────────────────────────────────────────────

class TestDeadStores:

    def test_overwritten_declaration_is_dead(self, analyze):
        ca = analyze("(class C (method M () (var y 1) (= y 2) (return y)))")
        decl = ca.callable.body.stmts[0].decls[0]
        assign = ca.callable.body.stmts[1].expr
        y = ca.variable("y")
        block, pos = _position(ca, ca.nodes_for(decl)[0])
        assert not ca.liveness.live_after(block, pos, y)
        block, pos = _position(ca, ca.nodes_for(assign)[0])
        assert ca.liveness.live_after(block, pos, y)

    def test_out_parameter_live_at_exit(self, analyze):
        ca = analyze("(class C (method M ((out r int)) (= r 1)))")
        assign = ca.callable.body.stmts[0].expr
        block, pos = _position(ca, ca.nodes_for(assign)[0])
        assert ca.liveness.live_after(block, pos, ca.variable("r"))


# ── Call references ──────────────────────────────────────────────

class TestCallReferences:

    def test_field_write_survives_setter_call(self, analyze, setter_call):
        ca = analyze(setter_call)
        f = ca.variable("this.f")
        assign = ca.callable.body.stmts[0].expr
        block, pos = _position(ca, ca.nodes_for(assign)[0])
        assert ca.liveness.live_after(block, pos, f)
        origins = [r.origin for r in ca.liveness.table.all_refs(f)]
        assert origins == [RefOrigin.EXPLICIT, RefOrigin.CALL_WRITE,
                           RefOrigin.ACCESS, RefOrigin.EXIT]

    def test_without_call_oracle(self, analyze, setter_call):
        ca = analyze(setter_call)
        liveness = compute_liveness(ca.blocks, ca.references, ca.resolver)
        f = ca.variable("this.f")
        origins = [r.origin for r in liveness.table.all_refs(f)]
        assert origins == [RefOrigin.EXPLICIT, RefOrigin.ACCESS, RefOrigin.EXIT]

    def test_exit_reads_only_for_escaping_variables(self, analyze, setter_call):
        ca = analyze(setter_call)
        exit_vars = ca.liveness.table.exit_variables
        assert [str(v) for v in exit_vars] == ["this.f"]
