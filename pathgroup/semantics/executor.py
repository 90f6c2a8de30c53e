"""
Symbolic executor for pathgroup programs.

Executes one block of a state at a time and returns every successor:

- conditional branches fork one successor per satisfiable side
- indirect control transfers fork one successor per concrete target, or
  yield an unconstrained successor when the target has too many solutions
- guest faults become ErrorRecords instead of exceptions
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Collection, Optional

import z3

from ..errors import (
    DivisionByZeroError, ExecutionError, InvalidInstructionError, SolverError,
    UnsupportedSyscallError,
)
from ..isa.program import BINARY_OPS, BRANCH_OPS, Immediate, Instruction, MemoryRef, Register
from ..solver.bitvec import Value, bool_value, bvv, concrete_value, to_bv
from .state import ProgramState

if TYPE_CHECKING:
    from ..project import Project


logger = logging.getLogger(__name__)

# Return address pushed by StateFactory.call_state; reaching it halts the path.
CALL_RETURN_ADDRESS = 0xFFFFFFF0

# scratch key set when a length-0 hook has already run at the current address
HOOK_DONE = "_hook_done_at"

SYS_READ = 0
SYS_WRITE = 1
SYS_EXIT = 2


@dataclass
class ErrorRecord:
    """A state that faulted, with the fault."""
    state: ProgramState
    error: ExecutionError

    def __repr__(self):
        return f"<ErrorRecord {self.state!r}: {self.error}>"


class Successors:
    """
    Successors of one step, bucketed.

    flat: satisfiable states with a concrete pc (including halted ones)
    unsat: branch sides whose constraints became unsatisfiable
    unconstrained: states whose pc could not be resolved
    errored: guest faults
    """

    def __init__(self, initial_state: ProgramState):
        self.initial_state = initial_state
        self.flat: list[ProgramState] = []
        self.unsat: list[ProgramState] = []
        self.unconstrained: list[ProgramState] = []
        self.errored: list[ErrorRecord] = []

    def add(self, state: ProgramState):
        if state.unconstrained:
            self.unconstrained.append(state)
        else:
            self.flat.append(state)

    @property
    def all_successors(self) -> list[ProgramState]:
        return self.flat + self.unconstrained

    def __len__(self):
        return len(self.flat) + len(self.unsat) + len(self.unconstrained) + len(self.errored)

    def __repr__(self):
        return (
            f"<Successors from #{self.initial_state.uid}: {len(self.flat)} flat, "
            f"{len(self.unsat)} unsat, {len(self.unconstrained)} unconstrained, "
            f"{len(self.errored)} errored>"
        )


class Executor:
    """Steps states block by block."""

    def __init__(self, project: "Project"):
        self.project = project

    @property
    def config(self):
        return self.project.config

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, state: ProgramState, stop_points: Collection[int] = ()) -> Successors:
        """
        Execute one block starting at ``state``. The input state is not modified.

        A block ends after a control transfer, a syscall or a hook, before a
        stop point or a hooked address, or after ``max_block_size`` instructions.
        """
        successors = Successors(state)
        if state.halted:
            return successors

        current = state.copy()
        start = current.addr
        if start is None:
            successors.unconstrained.append(current)
            return successors
        current.history.bbl_addrs.append(start)

        program = self.project.program
        max_block = self.config.exploration.max_block_size
        executed = 0

        while True:
            addr = current.addr

            if addr == CALL_RETURN_ADDRESS:
                current.halted = True
                current.returned = True
                current.history.events.append("returned to caller")
                successors.flat.append(current)
                break

            if executed and (addr in stop_points or executed >= max_block):
                successors.flat.append(current)
                break

            entry = self.project.hooks.get(addr)
            if entry is not None and current.scratch.get(HOOK_DONE) != addr:
                if executed:
                    successors.flat.append(current)
                    break
                self._run_hook(current, entry, successors)
                break

            instr = program.instruction_at(addr)
            if instr is None:
                error = InvalidInstructionError("no instruction", addr)
                successors.errored.append(ErrorRecord(current, error))
                break

            current.scratch.pop(HOOK_DONE, None)
            executed += 1
            current.history.instructions += 1
            try:
                results = self._execute(current, instr, successors)
            except ExecutionError as exc:
                if exc.addr is None:
                    exc.addr = instr.address
                logger.debug("[STEP] state #%d faulted: %s", current.uid, exc)
                successors.errored.append(ErrorRecord(current, exc))
                break
            except SolverError as exc:
                logger.warning("[STEP] state #%d: solver gave no model at %#x: %s",
                               current.uid, instr.address, exc)
                error = ExecutionError(f"solver gave no model ({exc})", instr.address)
                successors.errored.append(ErrorRecord(current, error))
                break
            if instr.ends_block:
                for result in results:
                    successors.add(result)
                break

        logger.debug("[STEP] #%d @ %#x -> %r", state.uid, start, successors)
        return successors

    def _run_hook(self, state: ProgramState, entry, successors: Successors):
        hook = entry.hook
        logger.debug("[HOOK] %r at %#x for state #%d", hook, entry.addr, state.uid)
        state.history.events.append(f"hook {hook!r} at {entry.addr:#x}")
        try:
            results = hook.execute(state, entry.addr, entry.length, self, successors)
        except ExecutionError as exc:
            if exc.addr is None:
                exc.addr = entry.addr
            successors.errored.append(ErrorRecord(state, exc))
            return
        except SolverError as exc:
            error = ExecutionError(f"solver gave no model ({exc})", entry.addr)
            successors.errored.append(ErrorRecord(state, error))
            return
        for result in results:
            successors.add(result)

    # ------------------------------------------------------------------
    # Control transfer
    # ------------------------------------------------------------------

    def jump(self, state: ProgramState, target: Value, successors: Successors) -> list[ProgramState]:
        """
        Transfer control to ``target``.

        A symbolic target with at most ``max_indirect_targets`` solutions forks
        one state per solution; more solutions leave the pc unresolved.
        """
        value = concrete_value(target)
        if value is not None:
            state.pc = value
            return [state]

        limit = self.config.solver.max_indirect_targets
        values = state.solver.eval_upto(target, limit + 1)
        if not values:
            successors.unsat.append(state)
            return []
        if len(values) > limit:
            logger.debug("[STEP] state #%d: unresolved jump target %s", state.uid, target)
            state.pc = target
            state.history.events.append("unconstrained jump")
            return [state]

        forks = []
        for value in values:
            fork = state.copy()
            fork.add_constraints(target == bvv(value, target.size()))
            fork.pc = value
            forks.append(fork)
        return forks

    def do_return(self, state: ProgramState, successors: Successors) -> list[ProgramState]:
        """Pop the return address off the stack and jump to it."""
        sp = state.regs.sp
        target = state.mem_read(sp, 4)
        state.regs.sp = sp + 4
        return self.jump(state, target, successors)

    def _branch(self, state: ProgramState, instr: Instruction, cond: z3.BoolRef,
                successors: Successors) -> list[ProgramState]:
        target = instr.operands[2].value
        fallthrough = instr.next_address

        known = bool_value(cond)
        if known is not None:
            state.pc = target if known else fallthrough
            return [state]

        taken = state.copy()
        taken.add_constraints(cond)
        taken.pc = target
        state.add_constraints(z3.Not(cond))
        state.pc = fallthrough

        feasible = []
        for side, label in ((taken, "taken"), (state, "not taken")):
            if side.satisfiable():
                side.history.events.append(f"branch at {instr.address:#x} {label}")
                feasible.append(side)
            else:
                successors.unsat.append(side)
        return feasible

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def _value(self, state: ProgramState, operand) -> z3.BitVecRef:
        if isinstance(operand, Register):
            return state.regs[operand.name]
        if isinstance(operand, Immediate):
            return bvv(operand.value)
        raise TypeError(f"operand {operand!r} has no value")

    def _address(self, state: ProgramState, operand: MemoryRef) -> z3.BitVecRef:
        if operand.base is None:
            return bvv(operand.offset)
        return state.regs[operand.base.name] + bvv(operand.offset)

    def _execute(self, state: ProgramState, instr: Instruction,
                 successors: Successors) -> Optional[list[ProgramState]]:
        """
        Execute one instruction.

        Returns None when execution continues at the next instruction of the
        block, otherwise the list of successor states ending the block.
        """
        op = instr.mnemonic
        ops = instr.operands

        if op == "nop":
            pass

        elif op == "mov":
            state.regs[ops[0].name] = self._value(state, ops[1])

        elif op == "not":
            state.regs[ops[0].name] = ~state.regs[ops[1].name]

        elif op == "neg":
            state.regs[ops[0].name] = -state.regs[ops[1].name]

        elif op in BINARY_OPS:
            a = state.regs[ops[1].name]
            b = self._value(state, ops[2])
            state.regs[ops[0].name] = self._binary(state, op, a, b, successors)

        elif op == "ldb":
            state.regs[ops[0].name] = z3.ZeroExt(24, state.mem_read(self._address(state, ops[1]), 1))

        elif op == "ldw":
            state.regs[ops[0].name] = state.mem_read(self._address(state, ops[1]), 4)

        elif op == "stb":
            value = z3.Extract(7, 0, state.regs[ops[1].name])
            state.mem_write(self._address(state, ops[0]), value, 1)

        elif op == "stw":
            state.mem_write(self._address(state, ops[0]), state.regs[ops[1].name], 4)

        elif op in BRANCH_OPS:
            a = state.regs[ops[0].name]
            b = self._value(state, ops[1])
            return self._branch(state, instr, self._condition(op, a, b), successors)

        elif op == "jmp":
            return self.jump(state, self._value(state, ops[0]), successors)

        elif op == "call":
            target = self._value(state, ops[0])
            sp = state.regs.sp - 4
            state.regs.sp = sp
            state.mem_write(sp, bvv(instr.next_address), 4)
            return self.jump(state, target, successors)

        elif op == "ret":
            return self.do_return(state, successors)

        elif op == "syscall":
            self._syscall(state, instr)
            state.pc = instr.next_address
            return [state]

        elif op == "exit":
            self._exit(state, self._value(state, ops[0]))
            return [state]

        elif op == "halt":
            self._exit(state, 0)
            return [state]

        else:
            raise InvalidInstructionError(f"unsupported instruction '{op}'", instr.address)

        state.pc = instr.next_address
        return None

    def _binary(self, state: ProgramState, op: str, a: z3.BitVecRef, b: z3.BitVecRef,
                successors: Successors) -> z3.BitVecRef:
        if op == "add":
            return a + b
        if op == "sub":
            return a - b
        if op == "mul":
            return a * b
        if op == "and":
            return a & b
        if op == "or":
            return a | b
        if op == "xor":
            return a ^ b
        if op == "shl":
            return a << b
        if op == "shr":
            return z3.LShR(a, b)
        if op == "sar":
            return a >> b

        # udiv / urem
        divisor = concrete_value(b)
        if divisor == 0:
            raise DivisionByZeroError(f"{op} by zero")
        if divisor is None:
            zero = b == bvv(0)
            nonzero = z3.Not(zero)
            if not state.satisfiable([nonzero]):
                raise DivisionByZeroError(f"{op} by zero")
            if state.satisfiable([zero]):
                faulting = state.copy()
                faulting.add_constraints(zero)
                successors.errored.append(
                    ErrorRecord(faulting, DivisionByZeroError(f"{op} by zero", state.addr))
                )
                state.add_constraints(nonzero)
        return z3.UDiv(a, b) if op == "udiv" else z3.URem(a, b)

    @staticmethod
    def _condition(op: str, a: z3.BitVecRef, b: z3.BitVecRef) -> z3.BoolRef:
        if op == "beq":
            return a == b
        if op == "bne":
            return a != b
        if op == "blt":
            return a < b
        if op == "bge":
            return a >= b
        if op == "bltu":
            return z3.ULT(a, b)
        return z3.UGE(a, b)

    def _exit(self, state: ProgramState, code: Value):
        state.exit_code = state.concretize(to_bv(code))
        state.halted = True
        state.history.events.append(f"exit({state.exit_code})")

    def _syscall(self, state: ProgramState, instr: Instruction):
        number = state.concretize(state.regs.r0)
        regs = state.regs

        if number == SYS_READ:
            fd = state.concretize(regs.r1)
            if fd != 0:
                raise UnsupportedSyscallError(f"read from fd {fd}", instr.address)
            length = state.concretize(regs.r3)
            buf = regs.r2
            chunk = state.posix.stdin.read(length)
            for i, byte in enumerate(chunk):
                state.mem_write(buf + i, byte, 1)
            regs.r0 = len(chunk)
            state.history.events.append(f"read({length}) -> {len(chunk)}")

        elif number == SYS_WRITE:
            fd = state.concretize(regs.r1)
            if fd not in (1, 2):
                raise UnsupportedSyscallError(f"write to fd {fd}", instr.address)
            length = self._write_length(state, regs.r3, instr)
            buf = regs.r2
            chunk = [state.mem_read(buf + i, 1) for i in range(length)]
            state.posix.stream(fd).write(chunk)
            regs.r0 = length
            state.history.events.append(f"write({fd}, {length})")

        elif number == SYS_EXIT:
            self._exit(state, regs.r1)

        else:
            raise UnsupportedSyscallError(f"unknown syscall {number}", instr.address)

    def _write_length(self, state: ProgramState, length: z3.BitVecRef, instr: Instruction) -> int:
        """Concrete byte count for a write, at most ``input.max_io_size``."""
        limit = self.config.input.max_io_size
        if concrete_value(length) is None:
            bounded = z3.ULE(length, bvv(limit))
            if state.satisfiable([bounded]):
                state.add_constraints(bounded)
        value = state.concretize(length)
        if value > limit:
            raise UnsupportedSyscallError(
                f"write of {value} bytes exceeds the {limit} byte limit", instr.address
            )
        return value
