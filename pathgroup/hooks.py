"""
Hooks: Python code substituted for guest instructions.

A hook installed at an address runs instead of the instructions in
``[addr, addr + length)``. Afterwards execution continues at
``addr + length``, unless the hook

- is a returning Procedure (it then returns to the caller, like ``ret``),
- halted the state, or
- moved the program counter itself.

A length-0 hook is pure instrumentation: the original instruction at the
address runs right after it.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from .errors import HookError
from .isa.program import INSTRUCTION_SIZE, WORD_MASK
from .semantics.executor import HOOK_DONE
from .solver.bitvec import Value, bvs, to_bv

if TYPE_CHECKING:
    from .semantics.executor import Executor, Successors
    from .semantics.state import ProgramState


logger = logging.getLogger(__name__)

_unconstrained_ids = itertools.count()


class Hook:
    """Base class of everything that can be installed at an address."""

    returns = False

    def run(self, state: "ProgramState"):
        raise NotImplementedError

    def execute(self, state: "ProgramState", addr: int, length: int,
                executor: "Executor", successors: "Successors") -> list["ProgramState"]:
        self.run(state)
        if state.halted:
            return [state]
        if self.returns:
            return executor.do_return(state, successors)
        if state.addr != addr:
            return executor.jump(state, state.pc, successors)
        if length == 0:
            state.scratch[HOOK_DONE] = addr
        else:
            state.pc = addr + length
        return [state]

    def __repr__(self):
        return f"<{type(self).__name__}>"


class Procedure(Hook):
    """
    Python replacement for a guest function.

    Subclasses implement ``run(state)`` and call ``self.ret(state, value)``
    to set the return value. After ``run`` the procedure returns to the
    caller by popping the return address.
    """

    returns = True

    def ret(self, state: "ProgramState", value: Value = 0):
        state.regs.r0 = to_bv(value)


class ReturnUnconstrained(Procedure):
    """Return a fresh symbolic value."""

    def run(self, state):
        name = f"unconstrained_ret_{state.addr:x}_{next(_unconstrained_ids)}"
        self.ret(state, bvs(name))


class ReturnValue(Procedure):
    """Return a fixed value."""

    def __init__(self, value: Value = 0):
        self.value = value

    def run(self, state):
        self.ret(state, self.value)

    def __repr__(self):
        return f"<ReturnValue {self.value}>"


class Nop(Hook):
    """Skip the hooked range."""

    def run(self, state):
        pass


class Exit(Hook):
    """Terminate the path with an exit code."""

    def __init__(self, code: int = 0):
        self.code = code

    def run(self, state):
        state.exit_code = self.code
        state.halted = True

    def __repr__(self):
        return f"<Exit {self.code}>"


class UserHook(Hook):
    """Wraps a plain ``func(state)`` callable."""

    def __init__(self, func: Callable[["ProgramState"], None]):
        self.func = func

    def run(self, state):
        self.func(state)

    def __repr__(self):
        name = getattr(self.func, "__name__", repr(self.func))
        return f"<UserHook {name}>"


@dataclass(frozen=True)
class HookEntry:
    addr: int
    hook: Hook
    length: int = 0


class HookRegistry:
    """Address -> installed hook."""

    def __init__(self):
        self._entries: dict[int, HookEntry] = {}

    def install(self, addr: int, hook, length: int = 0, replace: bool = False) -> HookEntry:
        if not isinstance(hook, Hook):
            if not callable(hook):
                raise HookError(f"hook must be a Hook or a callable, got {hook!r}")
            hook = UserHook(hook)
        if length < 0 or length % INSTRUCTION_SIZE:
            raise HookError(
                f"hook length must be a non-negative multiple of {INSTRUCTION_SIZE}, got {length}"
            )
        addr &= WORD_MASK
        if addr in self._entries and not replace:
            raise HookError(f"address {addr:#x} is already hooked by {self._entries[addr].hook!r}")
        entry = HookEntry(addr, hook, length)
        self._entries[addr] = entry
        logger.debug("[HOOK] installed %r at %#x (length %d)", hook, addr, length)
        return entry

    def remove(self, addr: int):
        try:
            del self._entries[addr & WORD_MASK]
        except KeyError:
            raise HookError(f"address {addr:#x} is not hooked") from None

    def get(self, addr: Optional[int]) -> Optional[HookEntry]:
        if addr is None:
            return None
        return self._entries.get(addr)

    def __contains__(self, addr: int) -> bool:
        return addr in self._entries

    def __iter__(self) -> Iterator[HookEntry]:
        return iter(self._entries.values())

    def __len__(self):
        return len(self._entries)
