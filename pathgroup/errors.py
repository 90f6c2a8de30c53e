"""
Exception hierarchy for pathgroup.

Two families:
- Host errors (assembly, configuration, stash and hook misuse) raise to the caller.
- ExecutionError and subclasses describe faults of the *guest* program. The
  executor catches them and files the faulting state in the ``errored`` stash.
"""

from typing import Optional


class PathGroupError(Exception):
    """Base class for all pathgroup errors."""


class AssemblyError(PathGroupError):
    """Source text could not be assembled into a Program."""

    def __init__(self, message: str, line: Optional[int] = None, name: str = "<string>"):
        self.message = message
        self.line = line
        self.name = name
        location = f"{name}:{line}" if line is not None else name
        super().__init__(f"{location}: {message}")


class UnknownSymbolError(PathGroupError, KeyError):
    """A label was referenced that the program does not define."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(symbol)

    def __str__(self):
        return f"unknown symbol: {self.symbol}"


class ConfigError(PathGroupError):
    """Invalid configuration value or file."""


class StashError(PathGroupError):
    """Invalid stash operation."""


class HookError(PathGroupError):
    """Invalid hook registration."""


class SolverError(PathGroupError):
    """The constraint solver could not answer a query."""


class UnsatError(SolverError):
    """A concrete value was requested from an unsatisfiable constraint set."""


class ExecutionError(PathGroupError):
    """
    A fault raised by the guest program while being executed.

    Carries the address of the faulting instruction when known.
    """

    def __init__(self, message: str, addr: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.addr = addr

    def __str__(self):
        if self.addr is not None:
            return f"{self.message} at {self.addr:#x}"
        return self.message


class InvalidInstructionError(ExecutionError):
    """Program counter does not point at an instruction."""


class DivisionByZeroError(ExecutionError):
    """Unsigned division or remainder by a zero divisor."""


class UnsupportedSyscallError(ExecutionError):
    """Syscall number or arguments not supported by the model."""
