"""
Standard streams for guest programs.

stdin is a fixed-size buffer of symbolic (or concrete) bytes consumed by the
read syscall; stdout and stderr collect whatever the guest writes.
"""

from typing import TYPE_CHECKING, Optional, Sequence

import z3

from ..solver.bitvec import concat_bytes

if TYPE_CHECKING:
    from .state import ProgramState


class SymbolicStream:
    """Input stream with a read position."""

    def __init__(self, content: Sequence[z3.BitVecRef], name: str = "stdin"):
        self.name = name
        self.content = list(content)
        self.pos = 0

    @classmethod
    def symbolic(cls, size: int, name: str = "stdin") -> "SymbolicStream":
        return cls([z3.BitVec(f"{name}_{i}", 8) for i in range(size)], name=name)

    @classmethod
    def concrete(cls, data: bytes, name: str = "stdin") -> "SymbolicStream":
        return cls([z3.BitVecVal(b, 8) for b in data], name=name)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def remaining(self) -> int:
        return len(self.content) - self.pos

    def read(self, count: int) -> list[z3.BitVecRef]:
        chunk = self.content[self.pos:self.pos + max(count, 0)]
        self.pos += len(chunk)
        return chunk

    def printable_constraints(self) -> list[z3.BoolRef]:
        """Restrict every byte to printable ASCII (0x20..0x7e)."""
        return [
            z3.And(z3.UGE(b, 0x20), z3.ULE(b, 0x7E))
            for b in self.content
        ]

    def copy(self) -> "SymbolicStream":
        other = SymbolicStream(self.content, name=self.name)
        other.pos = self.pos
        return other


class OutputStream:
    """Append-only output stream."""

    def __init__(self, name: str = "stdout"):
        self.name = name
        self.content: list[z3.BitVecRef] = []

    def write(self, chunk: Sequence[z3.BitVecRef]):
        self.content.extend(chunk)

    @property
    def size(self) -> int:
        return len(self.content)

    def copy(self) -> "OutputStream":
        other = OutputStream(self.name)
        other.content = list(self.content)
        return other


class PosixIO:
    """File descriptors 0, 1 and 2 of a state."""

    def __init__(self, stdin: Optional[SymbolicStream] = None):
        self.stdin = stdin if stdin is not None else SymbolicStream([])
        self.stdout = OutputStream("stdout")
        self.stderr = OutputStream("stderr")
        self.state: Optional["ProgramState"] = None

    def copy(self) -> "PosixIO":
        other = PosixIO(self.stdin.copy())
        other.stdout = self.stdout.copy()
        other.stderr = self.stderr.copy()
        return other

    def stream(self, fd: int):
        if fd == 0:
            return self.stdin
        if fd == 1:
            return self.stdout
        if fd == 2:
            return self.stderr
        raise ValueError(f"no such file descriptor: {fd}")

    def dumps(self, fd: int, all: bool = False) -> bytes:
        """
        Concrete contents of a stream under the owning state's constraints.

        For stdin only the bytes consumed so far are returned unless ``all``.
        """
        if self.state is None:
            raise RuntimeError("PosixIO is not attached to a state")
        stream = self.stream(fd)
        if fd == 0 and not all:
            content = stream.content[:stream.pos]
        else:
            content = stream.content
        if not content:
            return b""
        return self.state.solver.eval(concat_bytes(content), cast_to=bytes)
