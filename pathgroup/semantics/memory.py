"""
Byte-granular symbolic memory.

Maps concrete addresses to 8-bit Z3 expressions. Symbolic addresses are
resolved to concrete candidates by ProgramState before they reach here.
"""

from typing import Iterable, Union

import z3

from ..isa.program import WORD_MASK
from ..solver.bitvec import concat_bytes, to_bytes


class SymbolicMemory:
    """
    Little-endian memory of symbolic bytes.

    Uninitialized bytes read as zero, or as fresh symbols named
    ``mem_<addr>`` when ``uninitialized == "symbolic"``. A symbolic
    uninitialized byte is remembered on first read so later reads agree.
    """

    def __init__(self, uninitialized: str = "zero"):
        self.uninitialized = uninitialized
        self._bytes: dict[int, z3.BitVecRef] = {}

    def copy(self) -> "SymbolicMemory":
        other = SymbolicMemory(self.uninitialized)
        other._bytes = dict(self._bytes)
        return other

    def __len__(self):
        return len(self._bytes)

    def __contains__(self, addr: int) -> bool:
        return (addr & WORD_MASK) in self._bytes

    def load_byte(self, addr: int) -> z3.BitVecRef:
        addr &= WORD_MASK
        value = self._bytes.get(addr)
        if value is None:
            if self.uninitialized == "symbolic":
                value = z3.BitVec(f"mem_{addr:x}", 8)
                self._bytes[addr] = value
            else:
                value = z3.BitVecVal(0, 8)
        return value

    def store_byte(self, addr: int, value: z3.BitVecRef):
        self._bytes[addr & WORD_MASK] = value

    def load(self, addr: int, size: int) -> z3.BitVecRef:
        return concat_bytes([self.load_byte(addr + i) for i in reversed(range(size))])

    def store(self, addr: int, value: z3.BitVecRef, size: int):
        self.store_bytes(addr, to_bytes(value, size))

    def load_bytes(self, addr: int, count: int) -> list[z3.BitVecRef]:
        return [self.load_byte(addr + i) for i in range(count)]

    def store_bytes(self, addr: int, data: Union[bytes, Iterable[z3.BitVecRef]]):
        for i, value in enumerate(data):
            if isinstance(value, int):
                value = z3.BitVecVal(value, 8)
            self.store_byte(addr + i, value)
