"""
Symbolic state and execution semantics.
"""

from .executor import CALL_RETURN_ADDRESS, ErrorRecord, Executor, Successors
from .memory import SymbolicMemory
from .posix import OutputStream, PosixIO, SymbolicStream
from .state import ProgramState, RegisterFile, StateHistory, StateSolver

__all__ = [
    "CALL_RETURN_ADDRESS",
    "ErrorRecord",
    "Executor",
    "OutputStream",
    "PosixIO",
    "ProgramState",
    "RegisterFile",
    "StateHistory",
    "StateSolver",
    "Successors",
    "SymbolicMemory",
    "SymbolicStream",
]
