"""
Tests for program states: registers, memory, streams and the state solver.
"""

import pytest
import z3

from pathgroup import PathGroupConfig, Project
from pathgroup.errors import UnsatError
from pathgroup.semantics import CALL_RETURN_ADDRESS, SymbolicMemory, SymbolicStream
from pathgroup.solver import bvs, bvv, concrete_value


SOURCE = """
.data
msg:    .ascii "hey"
buf:    .space 8
.text
_start: halt
"""


def make_project(**config) -> Project:
    return Project.from_source(SOURCE, name="state.s", config=PathGroupConfig.from_dict(config))


class TestRegisterFile:
    """Register access."""

    def test_registers_start_at_zero(self):
        state = make_project().factory.blank_state("_start")
        assert concrete_value(state.regs.r0) == 0
        assert concrete_value(state.regs["r7"]) == 0

    def test_attribute_and_item_access_agree(self):
        state = make_project().factory.blank_state("_start")
        state.regs.r1 = 0x1234
        assert concrete_value(state.regs["r1"]) == 0x1234
        state.regs["r2"] = -1
        assert concrete_value(state.regs.r2) == 0xFFFFFFFF

    def test_narrow_values_are_zero_extended(self):
        state = make_project().factory.blank_state("_start")
        state.regs.r3 = bvs("byte", 8)
        assert state.regs.r3.size() == 32

    def test_unknown_register(self):
        state = make_project().factory.blank_state("_start")
        with pytest.raises(AttributeError):
            state.regs.r9 = 1
        with pytest.raises(KeyError):
            state.regs["pc"]


class TestSymbolicMemory:
    """Byte-granular little-endian memory."""

    def test_word_is_little_endian(self):
        memory = SymbolicMemory()
        memory.store(0x100, bvv(0x11223344), 4)
        assert concrete_value(memory.load_byte(0x100)) == 0x44
        assert concrete_value(memory.load_byte(0x103)) == 0x11
        assert concrete_value(memory.load(0x100, 4)) == 0x11223344
        assert concrete_value(memory.load(0x101, 2)) == 0x2233

    def test_uninitialized_reads_zero(self):
        memory = SymbolicMemory("zero")
        assert concrete_value(memory.load(0x500, 4)) == 0
        assert 0x500 not in memory

    def test_uninitialized_symbolic_is_remembered(self):
        memory = SymbolicMemory("symbolic")
        first = memory.load_byte(0x500)
        assert concrete_value(first) is None
        assert first.eq(memory.load_byte(0x500))
        assert 0x500 in memory

    def test_copy_is_independent(self):
        memory = SymbolicMemory()
        memory.store_bytes(0, b"ab")
        other = memory.copy()
        other.store_bytes(0, b"z")
        assert concrete_value(memory.load_byte(0)) == ord("a")
        assert concrete_value(other.load_byte(0)) == ord("z")


class TestStateFactory:
    """Initial states."""

    def test_blank_state_loads_data_and_stack(self):
        project = make_project()
        state = project.factory.blank_state("_start")
        msg = project.program.address_of("msg")
        assert concrete_value(state.memory.load(msg, 3)) == int.from_bytes(b"hey", "little")
        assert concrete_value(state.regs.sp) == project.config.memory.stack_top

    def test_entry_state_uses_entry_point(self):
        project = make_project()
        assert project.factory.entry_state().addr == project.program.entry

    def test_symbolic_stdin_size(self):
        project = make_project(input={"stdin-size": 5})
        state = project.factory.entry_state()
        assert state.posix.stdin.size == 5
        assert project.factory.entry_state(stdin_size=2).posix.stdin.size == 2

    def test_concrete_stdin(self):
        state = make_project().factory.entry_state(stdin="abc")
        assert state.posix.stdin.size == 3
        assert state.posix.dumps(0, all=True) == b"abc"

    def test_printable_stdin(self):
        state = make_project().factory.entry_state(stdin_size=2, printable=True)
        first = state.posix.stdin.content[0]
        assert not state.satisfiable([first == 0x0A])
        assert state.satisfiable([first == ord("A")])

    def test_call_state_sets_arguments_and_return_address(self):
        project = make_project()
        state = project.factory.call_state("_start", 7, bvs("arg"))
        assert concrete_value(state.regs.r0) == 7
        assert concrete_value(state.regs.r1) is None
        sp = concrete_value(state.regs.sp)
        assert sp == project.config.memory.stack_top - 4
        assert concrete_value(state.mem_read(sp, 4)) == CALL_RETURN_ADDRESS

    def test_call_state_argument_limit(self):
        with pytest.raises(ValueError):
            make_project().factory.call_state("_start", *range(9))


class TestProgramState:
    """Copying, constraints and solving."""

    def test_copy_is_independent(self):
        state = make_project().factory.entry_state()
        other = state.copy()
        other.regs.r0 = 5
        other.add_constraints(bvs("x") == 1)
        other.memory.store_bytes(0x10, b"\x01")
        assert concrete_value(state.regs.r0) == 0
        assert state.constraints == []
        assert 0x10 not in state.memory
        assert other.history.parent_uid == state.uid
        assert other.uid != state.uid

    def test_trivially_true_constraints_are_skipped(self):
        state = make_project().factory.entry_state()
        state.add_constraints(True, bvv(1) == bvv(1))
        assert state.constraints == []

    def test_false_constraint_makes_state_unsat(self):
        state = make_project().factory.entry_state()
        state.add_constraints(False)
        assert not state.satisfiable()

    def test_concretize_pins_value(self):
        state = make_project().factory.entry_state()
        x = bvs("x")
        state.add_constraints(z3.UGT(x, 10), z3.ULT(x, 20))
        value = state.concretize(x)
        assert 10 < value < 20
        assert state.solver.unique(x)

    def test_eval_casts(self):
        state = make_project().factory.entry_state()
        x = bvs("x", 16)
        state.add_constraints(x == 0x4142)
        assert state.solver.eval(x) == 0x4142
        assert state.solver.eval(x, cast_to=bytes) == b"AB"
        assert state.solver.eval(x == 0x4142, cast_to=bool) is True

    def test_eval_unsat_raises(self):
        state = make_project().factory.entry_state()
        x = bvs("x")
        state.add_constraints(x == 1, x == 2)
        with pytest.raises(UnsatError):
            state.solver.eval(x)

    def test_min_max_and_model(self):
        state = make_project().factory.entry_state()
        x = state.solver.BVS("x")
        state.solver.add(z3.UGE(x, 3), z3.ULE(x, 9))
        assert state.solver.min(x) == 3
        assert state.solver.max(x) == 9
        assert 3 <= state.solver.model()["x"] <= 9

    def test_symbolic_address_read_covers_candidates(self):
        project = make_project()
        state = project.factory.entry_state()
        msg = project.program.address_of("msg")
        index = bvs("i")
        state.add_constraints(z3.ULT(index, 3))
        value = state.mem_read(bvv(msg) + index, 1)
        values = sorted(state.solver.eval_upto(value, 10))
        assert values == sorted(b"hey")

    def test_wide_symbolic_address_is_concretized(self):
        state = make_project().factory.entry_state()
        addr = bvs("addr")
        state.mem_write(addr, bvv(0xAB, 8), 1)
        assert state.solver.unique(addr)

    def test_symbolic_write_is_guarded(self):
        project = make_project()
        state = project.factory.entry_state()
        buf = project.program.address_of("buf")
        index = bvs("i")
        state.add_constraints(z3.ULT(index, 2))
        state.mem_write(bvv(buf) + index, bvv(0xFF, 8), 1)
        # the write hit exactly one of the two bytes
        first = state.mem_read(buf, 1)
        second = state.mem_read(buf + 1, 1)
        assert not state.satisfiable([first == 0xFF, second == 0xFF])
        assert state.satisfiable([first == 0xFF])
        assert state.satisfiable([second == 0xFF])

    def test_repr_names_location(self):
        state = make_project().factory.entry_state()
        assert "_start" in repr(state)


class TestPosix:
    """Standard streams."""

    def test_stdin_dumps_only_consumed_bytes(self):
        state = make_project().factory.entry_state(stdin=b"hello")
        assert state.posix.dumps(0) == b""
        state.posix.stdin.read(2)
        assert state.posix.dumps(0) == b"he"
        assert state.posix.dumps(0, all=True) == b"hello"

    def test_symbolic_stdin_is_solved(self):
        state = make_project().factory.entry_state(stdin_size=2)
        chunk = state.posix.stdin.read(2)
        state.add_constraints(chunk[0] == ord("o"), chunk[1] == ord("k"))
        assert state.posix.dumps(0) == b"ok"

    def test_read_past_end(self):
        stream = SymbolicStream.concrete(b"ab")
        assert len(stream.read(5)) == 2
        assert stream.remaining == 0
        assert stream.read(1) == []

    def test_stdout_collects_writes(self):
        state = make_project().factory.entry_state()
        state.posix.stdout.write([bvv(ord(c), 8) for c in "hi"])
        assert state.posix.dumps(1) == b"hi"
        assert state.posix.dumps(2) == b""

    def test_streams_are_copied(self):
        state = make_project().factory.entry_state(stdin=b"xy")
        other = state.copy()
        other.posix.stdin.read(1)
        other.posix.stdout.write([bvv(1, 8)])
        assert state.posix.stdin.pos == 0
        assert state.posix.stdout.size == 0
        assert other.posix.dumps(0) == b"x"

    def test_bad_descriptor(self):
        state = make_project().factory.entry_state()
        with pytest.raises(ValueError):
            state.posix.dumps(3)
