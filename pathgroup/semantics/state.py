"""
Program state for symbolic exploration.

A ProgramState is one point of one execution path: a program counter, the
register file, memory, standard streams, and the formula set (path
constraints) accumulated on the way there. Forking a path is ``copy()``
followed by adding the branch condition to each side.
"""

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

import z3

from ..errors import UnsatError
from ..isa.program import REGISTERS, WORD_BITS, WORD_MASK
from ..solver.bitvec import Value, bool_value, bvs, bvv, concrete_value, to_bv
from .memory import SymbolicMemory
from .posix import PosixIO

if TYPE_CHECKING:
    from ..project import Project


_state_ids = itertools.count()


class RegisterFile:
    """
    Registers as 32-bit expressions, by attribute or item access.

        state.regs.r0 = 5
        state.regs["sp"]
    """

    def __init__(self, values: Optional[dict[str, z3.BitVecRef]] = None):
        if values is None:
            values = {name: bvv(0) for name in REGISTERS}
        object.__setattr__(self, "_values", values)

    def __getattr__(self, name: str) -> z3.BitVecRef:
        values = object.__getattribute__(self, "_values")
        if name in values:
            return values[name]
        raise AttributeError(f"no register named '{name}'")

    def __setattr__(self, name: str, value: Value):
        if name not in REGISTERS:
            raise AttributeError(f"no register named '{name}'")
        self._values[name] = to_bv(value, WORD_BITS)

    def __getitem__(self, name: str) -> z3.BitVecRef:
        if name not in REGISTERS:
            raise KeyError(name)
        return self._values[name]

    def __setitem__(self, name: str, value: Value):
        if name not in REGISTERS:
            raise KeyError(name)
        self._values[name] = to_bv(value, WORD_BITS)

    def items(self):
        return self._values.items()

    def copy(self) -> "RegisterFile":
        return RegisterFile(dict(self._values))

    def __repr__(self):
        shown = []
        for name, value in self._values.items():
            concrete = concrete_value(value)
            shown.append(f"{name}={concrete:#x}" if concrete is not None else f"{name}=<sym>")
        return f"RegisterFile({', '.join(shown)})"


@dataclass
class StateHistory:
    """
    Where a state has been.

    bbl_addrs: start address of every block executed, in order
    events: short human-readable notes (forks, hooks, syscalls)
    """
    bbl_addrs: list[int] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    instructions: int = 0
    parent_uid: Optional[int] = None

    @property
    def block_count(self) -> int:
        return len(self.bbl_addrs)

    def copy(self) -> "StateHistory":
        return StateHistory(
            bbl_addrs=self.bbl_addrs.copy(),
            events=self.events.copy(),
            instructions=self.instructions,
            parent_uid=self.parent_uid,
        )


class StateSolver:
    """Solver facade bound to one state's constraints."""

    def __init__(self, state: "ProgramState"):
        self.state = state

    @property
    def _adapter(self):
        return self.state.project.solver

    @property
    def constraints(self) -> list[z3.BoolRef]:
        return self.state.constraints

    def add(self, *constraints: Union[z3.BoolRef, bool]):
        self.state.add_constraints(*constraints)

    def satisfiable(self, extra_constraints: Iterable[z3.BoolRef] = ()) -> bool:
        return self.state.satisfiable(extra_constraints)

    def BVS(self, name: str, bits: int = WORD_BITS) -> z3.BitVecRef:
        return bvs(name, bits)

    def BVV(self, value: int, bits: int = WORD_BITS) -> z3.BitVecRef:
        return bvv(value, bits)

    def symbolic(self, expr: Value) -> bool:
        return concrete_value(expr) is None

    def eval_upto(self, expr: Value, n: int, cast_to: type = int,
                  extra_constraints: Iterable[z3.BoolRef] = ()) -> list[Any]:
        if isinstance(expr, int):
            return [_cast(expr, WORD_BITS, cast_to)]
        values = self._adapter.eval_upto(self.constraints, expr, n, extra_constraints)
        bits = expr.size() if z3.is_bv(expr) else 1
        return [_cast(v, bits, cast_to) for v in values]

    def eval(self, expr: Value, cast_to: type = int,
             extra_constraints: Iterable[z3.BoolRef] = ()) -> Any:
        """One possible value of ``expr``; ``cast_to`` may be ``int``, ``bytes`` or ``bool``."""
        values = self.eval_upto(expr, 1, cast_to, extra_constraints)
        if not values:
            raise UnsatError(f"state #{self.state.uid} is unsatisfiable")
        return values[0]

    def eval_one(self, expr: Value, cast_to: type = int) -> Any:
        if isinstance(expr, int):
            return _cast(expr, WORD_BITS, cast_to)
        value = self._adapter.eval_one(self.constraints, expr)
        bits = expr.size() if z3.is_bv(expr) else 1
        return _cast(value, bits, cast_to)

    def unique(self, expr: Value) -> bool:
        return len(self.eval_upto(expr, 2)) == 1

    def min(self, expr: z3.BitVecRef) -> int:
        return self._adapter.min(self.constraints, expr)

    def max(self, expr: z3.BitVecRef) -> int:
        return self._adapter.max(self.constraints, expr)

    def model(self) -> dict[str, int]:
        return self._adapter.assignment(self.constraints)


def _cast(value: int, bits: int, cast_to: type) -> Any:
    if cast_to is int:
        return value
    if cast_to is bool:
        return bool(value)
    if cast_to is bytes:
        return value.to_bytes(max((bits + 7) // 8, 1), "big")
    raise TypeError(f"cannot cast solver value to {cast_to!r}")


class ProgramState:
    """
    One execution path at one program point.

    pc is a concrete int while the path is resolvable; an unresolved
    (unconstrained) path carries the symbolic target expression instead.
    """

    def __init__(
        self,
        project: "Project",
        pc: Union[int, z3.BitVecRef],
        regs: Optional[RegisterFile] = None,
        memory: Optional[SymbolicMemory] = None,
        posix: Optional[PosixIO] = None,
        constraints: Optional[Iterable[z3.BoolRef]] = None,
        history: Optional[StateHistory] = None,
    ):
        self.project = project
        self.uid = next(_state_ids)
        self.pc = pc
        self.regs = regs if regs is not None else RegisterFile()
        self.memory = memory if memory is not None else SymbolicMemory(
            project.config.memory.uninitialized
        )
        self.posix = posix if posix is not None else PosixIO()
        self.posix.state = self
        self.constraints: list[z3.BoolRef] = list(constraints or [])
        self.history = history if history is not None else StateHistory()
        self.halted = False
        self.exit_code: Optional[int] = None
        self.returned = False
        self.scratch: dict[str, Any] = {}
        self.solver = StateSolver(self)
        self._sat_cache: Optional[bool] = None

    # ------------------------------------------------------------------

    def copy(self) -> "ProgramState":
        other = ProgramState(
            self.project,
            self.pc,
            regs=self.regs.copy(),
            memory=self.memory.copy(),
            posix=self.posix.copy(),
            constraints=self.constraints,
            history=self.history.copy(),
        )
        other.history.parent_uid = self.uid
        other.halted = self.halted
        other.exit_code = self.exit_code
        other.returned = self.returned
        other.scratch = dict(self.scratch)
        other._sat_cache = self._sat_cache
        return other

    @property
    def addr(self) -> Optional[int]:
        """Concrete program counter, or None when unresolved."""
        if isinstance(self.pc, int):
            return self.pc
        return concrete_value(self.pc)

    @property
    def unconstrained(self) -> bool:
        return self.addr is None

    @property
    def depth(self) -> int:
        return self.history.block_count

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def add_constraints(self, *constraints: Union[z3.BoolRef, bool]):
        for c in constraints:
            if isinstance(c, bool):
                c = z3.BoolVal(c)
            known = bool_value(c)
            if known is True:
                continue
            self.constraints.append(c)
            if known is False:
                self._sat_cache = False
            elif self._sat_cache:
                self._sat_cache = None

    def satisfiable(self, extra: Iterable[z3.BoolRef] = ()) -> bool:
        extra = list(extra)
        if not extra and self._sat_cache is not None:
            return self._sat_cache
        result = self.project.solver.satisfiable(self.constraints, extra)
        if not extra:
            self._sat_cache = result
        return result

    def concretize(self, expr: Value) -> int:
        """
        One concrete value for ``expr``; a symbolic ``expr`` is pinned to it
        with a new constraint.
        """
        value = concrete_value(expr)
        if value is not None:
            return value
        value = self.solver.eval(expr)
        self.add_constraints(expr == bvv(value, expr.size()))
        return value

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def resolve_address(self, addr: Value) -> list[int]:
        """
        Concrete candidates for a memory address.

        At most ``solver.max_symbolic_address_targets`` candidates are kept;
        a wider address is pinned to a single solution.
        """
        value = concrete_value(addr)
        if value is not None:
            return [value & WORD_MASK]
        limit = self.project.config.solver.max_symbolic_address_targets
        targets = self.solver.eval_upto(addr, limit + 1)
        if not targets:
            raise UnsatError(f"state #{self.uid} is unsatisfiable")
        if len(targets) > limit:
            self.add_constraints(addr == bvv(targets[0], addr.size()))
            return targets[:1]
        return targets

    def mem_read(self, addr: Value, size: int) -> z3.BitVecRef:
        targets = self.resolve_address(addr)
        result = self.memory.load(targets[-1], size)
        for target in targets[:-1]:
            result = z3.If(to_bv(addr) == bvv(target), self.memory.load(target, size), result)
        return result

    def mem_write(self, addr: Value, value: Value, size: int):
        value = to_bv(value, 8 * size)
        targets = self.resolve_address(addr)
        if len(targets) == 1:
            self.memory.store(targets[0], value, size)
            return
        for target in targets:
            old = self.memory.load(target, size)
            self.memory.store(target, z3.If(to_bv(addr) == bvv(target), value, old), size)

    # ------------------------------------------------------------------

    def describe(self) -> str:
        addr = self.addr
        if addr is None:
            return "<unresolved>"
        return self.project.program.describe(addr)

    def __repr__(self):
        return f"<ProgramState #{self.uid} @ {self.describe()}>"
