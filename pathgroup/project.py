"""
Project: a program plus everything needed to explore it.

    project = Project.from_file("crackme.s")
    state = project.factory.entry_state(stdin_size=8, printable=True)
    pg = project.path_group(state)
    pg.explore(find="good", avoid="bad")
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .classifier import StateClassifier
from .config import PathGroupConfig
from .hooks import Hook, HookRegistry
from .isa.assembler import assemble, assemble_file
from .isa.program import REGISTERS, WORD_MASK, Program
from .manager import PathGroup
from .semantics.executor import CALL_RETURN_ADDRESS, Executor
from .semantics.posix import PosixIO, SymbolicStream
from .semantics.state import ProgramState
from .solver.adapter import SolverAdapter
from .solver.bitvec import Value, bvv, to_bv


logger = logging.getLogger(__name__)

StdinSpec = Union[bytes, str, SymbolicStream, None]


class StateFactory:
    """Builds initial states for a project."""

    def __init__(self, project: "Project"):
        self.project = project

    def blank_state(self, addr: Union[int, str], stdin: StdinSpec = None,
                    stdin_size: Optional[int] = None, printable: Optional[bool] = None) -> ProgramState:
        """
        State at ``addr`` with the data segment loaded and ``sp`` at the stack top.

        ``stdin`` may be concrete bytes/str or a prepared SymbolicStream;
        otherwise stdin is ``stdin_size`` symbolic bytes.
        """
        project = self.project
        config = project.config
        if isinstance(stdin, str):
            stdin = stdin.encode("latin-1")
        if isinstance(stdin, bytes):
            stream = SymbolicStream.concrete(stdin)
        elif isinstance(stdin, SymbolicStream):
            stream = stdin
        else:
            size = config.input.stdin_size if stdin_size is None else stdin_size
            stream = SymbolicStream.symbolic(size)

        state = ProgramState(project, project.resolve(addr), posix=PosixIO(stream))
        state.memory.store_bytes(project.program.data_base, project.program.data)
        state.regs.sp = config.memory.stack_top

        if printable is None:
            printable = config.input.printable
        if printable:
            state.add_constraints(*stream.printable_constraints())
        return state

    def entry_state(self, **kwargs) -> ProgramState:
        """State at the program entry point."""
        return self.blank_state(self.project.program.entry, **kwargs)

    def call_state(self, addr: Union[int, str], *args: Value, **kwargs) -> ProgramState:
        """
        State about to run the function at ``addr`` with ``args`` in r0, r1, ...

        The function returns to a sentinel address that halts the path, so
        the return value can be read from ``r0`` of the deadended state.
        """
        arg_registers = [r for r in REGISTERS if r != "sp"]
        if len(args) > len(arg_registers):
            raise ValueError(f"at most {len(arg_registers)} arguments are supported")
        state = self.blank_state(addr, **kwargs)
        for name, value in zip(arg_registers, args):
            state.regs[name] = to_bv(value)
        sp = state.regs.sp - 4
        state.regs.sp = sp
        state.mem_write(sp, bvv(CALL_RETURN_ADDRESS), 4)
        return state


class Project:
    """A loaded program with its hooks, solver and executor."""

    def __init__(self, program: Program, config: Optional[PathGroupConfig] = None):
        self.program = program
        self.config = config if config is not None else PathGroupConfig()
        self.solver = SolverAdapter(self.config.solver.timeout_ms)
        self.hooks = HookRegistry()
        self.classifier = StateClassifier()
        self.executor = Executor(self)
        self.factory = StateFactory(self)

    @classmethod
    def from_file(cls, path: Union[str, Path], config: Optional[PathGroupConfig] = None) -> "Project":
        return cls(assemble_file(path), config)

    @classmethod
    def from_source(cls, source: str, name: str = "<string>",
                    config: Optional[PathGroupConfig] = None) -> "Project":
        return cls(assemble(source, name=name), config)

    def __repr__(self):
        return f"<Project {self.program.name}: {len(self.program)} instructions, {len(self.hooks)} hooks>"

    def resolve(self, target: Union[int, str]) -> int:
        """Address of a label, or the address itself."""
        if isinstance(target, str):
            return self.program.address_of(target)
        return target & WORD_MASK

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def hook(self, addr: Union[int, str], hook: Union[Hook, Callable, None] = None,
             length: int = 0, replace: bool = False):
        """
        Install ``hook`` at ``addr``, skipping ``length`` bytes of guest code.

        Without ``hook`` this returns a decorator::

            @project.hook("slow_check", length=8)
            def skip(state):
                state.regs.r0 = 1
        """
        if hook is None:
            def decorator(func):
                self.hook(addr, func, length=length, replace=replace)
                return func
            return decorator
        self.hooks.install(self.resolve(addr), hook, length=length, replace=replace)
        return hook

    def hook_symbol(self, label: str, procedure: Hook, replace: bool = False) -> Hook:
        """Replace the function at ``label`` with ``procedure``."""
        self.hooks.install(self.program.address_of(label), procedure, replace=replace)
        return procedure

    def unhook(self, addr: Union[int, str]):
        self.hooks.remove(self.resolve(addr))

    def is_hooked(self, addr: Union[int, str]) -> bool:
        return self.resolve(addr) in self.hooks

    def hooked_by(self, addr: Union[int, str]) -> Optional[Hook]:
        entry = self.hooks.get(self.resolve(addr))
        return entry.hook if entry is not None else None

    # ------------------------------------------------------------------

    def path_group(self, states: Union[ProgramState, Iterable[ProgramState], None] = None,
                   **kwargs) -> PathGroup:
        """Stash manager seeded with ``states`` (default: a fresh entry state)."""
        if states is None:
            states = [self.factory.entry_state()]
        elif isinstance(states, ProgramState):
            states = [states]
        return PathGroup(self, states, **kwargs)
