"""
pathgroup: path-exploring symbolic execution for a small register machine.

A program is assembled into a Project; the exploration engine forks program
states at every branch whose both sides are satisfiable, a Z3 solver adapter
decides reachability and produces concrete inputs, and a PathGroup sorts the
resulting states into stashes by outcome:

    active / found / avoid / deadended / errored / unconstrained

Hooks substitute Python procedures for ranges of guest instructions.
"""

from .classifier import Outcome, StateClassifier
from .config import PathGroupConfig
from .errors import (
    AssemblyError,
    ConfigError,
    DivisionByZeroError,
    ExecutionError,
    HookError,
    InvalidInstructionError,
    PathGroupError,
    SolverError,
    StashError,
    UnknownSymbolError,
    UnsatError,
    UnsupportedSyscallError,
)
from .hooks import Exit, Hook, Nop, Procedure, ReturnUnconstrained, ReturnValue, UserHook
from .manager import PathGroup
from .project import Project
from .semantics.executor import ErrorRecord
from .semantics.state import ProgramState
from .techniques import DFS, ExplorationTechnique, Explorer, LengthLimiter

__version__ = "0.1.0"

__all__ = [
    "AssemblyError",
    "ConfigError",
    "DFS",
    "DivisionByZeroError",
    "ErrorRecord",
    "ExecutionError",
    "Exit",
    "ExplorationTechnique",
    "Explorer",
    "Hook",
    "HookError",
    "InvalidInstructionError",
    "LengthLimiter",
    "Nop",
    "Outcome",
    "PathGroup",
    "PathGroupConfig",
    "PathGroupError",
    "Procedure",
    "ProgramState",
    "Project",
    "ReturnUnconstrained",
    "ReturnValue",
    "SolverError",
    "StashError",
    "StateClassifier",
    "UnknownSymbolError",
    "UnsatError",
    "UnsupportedSyscallError",
    "UserHook",
]
