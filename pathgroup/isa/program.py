"""
Program model for the pathgroup assembly language.

A Program is a fixed map from code addresses to Instructions plus an
initialized data segment. Every instruction is INSTRUCTION_SIZE bytes wide
so that addresses, hook lengths and fall-through targets are plain integers.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from ..errors import UnknownSymbolError


WORD_BITS = 32
WORD_MASK = (1 << WORD_BITS) - 1
INSTRUCTION_SIZE = 4

REGISTERS = ("r0", "r1", "r2", "r3", "r4", "r5", "r6", "r7", "sp")


@dataclass(frozen=True)
class Register:
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class Immediate:
    """Constant operand. ``label`` records the symbol it was resolved from."""
    value: int
    label: Optional[str] = None

    def __str__(self):
        return self.label if self.label else hex(self.value) if self.value > 9 else str(self.value)


@dataclass(frozen=True)
class MemoryRef:
    """``[base+offset]`` operand; ``base`` is None for absolute addresses."""
    base: Optional[Register]
    offset: int = 0

    def __str__(self):
        if self.base is None:
            return f"[{self.offset:#x}]"
        if self.offset == 0:
            return f"[{self.base}]"
        sign = "+" if self.offset > 0 else "-"
        return f"[{self.base}{sign}{abs(self.offset)}]"


Operand = Union[Register, Immediate, MemoryRef]


# Operand kinds:
#   reg    - register
#   src    - register or immediate
#   mem    - memory reference
#   label  - immediate code address
#   target - register or immediate code address
BINARY_OPS = ("add", "sub", "mul", "and", "or", "xor", "shl", "shr", "sar", "udiv", "urem")
BRANCH_OPS = ("beq", "bne", "blt", "bge", "bltu", "bgeu")

OPERAND_KINDS: dict[str, tuple[str, ...]] = {
    "nop": (),
    "halt": (),
    "ret": (),
    "syscall": (),
    "mov": ("reg", "src"),
    "not": ("reg", "reg"),
    "neg": ("reg", "reg"),
    "ldb": ("reg", "mem"),
    "ldw": ("reg", "mem"),
    "stb": ("mem", "reg"),
    "stw": ("mem", "reg"),
    "jmp": ("target",),
    "call": ("target",),
    "exit": ("src",),
}
OPERAND_KINDS.update({op: ("reg", "reg", "src") for op in BINARY_OPS})
OPERAND_KINDS.update({op: ("reg", "src", "label") for op in BRANCH_OPS})

# Instructions after which a block ends.
CONTROL_OPS = frozenset(BRANCH_OPS + ("jmp", "call", "ret", "syscall", "exit", "halt"))


@dataclass(frozen=True)
class Instruction:
    address: int
    mnemonic: str
    operands: tuple[Operand, ...] = ()
    line: int = 0
    text: str = ""

    @property
    def next_address(self) -> int:
        return self.address + INSTRUCTION_SIZE

    @property
    def ends_block(self) -> bool:
        return self.mnemonic in CONTROL_OPS

    def __str__(self):
        if not self.operands:
            return self.mnemonic
        return f"{self.mnemonic} {', '.join(str(op) for op in self.operands)}"


@dataclass
class Program:
    """
    An assembled program.

    instructions: code address -> Instruction, in address order
    symbols: label -> address (code and data labels share one namespace)
    data: initial contents of the data segment, mapped at data_base
    """
    instructions: dict[int, Instruction] = field(default_factory=dict)
    symbols: dict[str, int] = field(default_factory=dict)
    data: bytes = b""
    text_base: int = 0x1000
    data_base: int = 0x10000
    entry: int = 0x1000
    name: str = "<string>"

    def __len__(self):
        return len(self.instructions)

    def __contains__(self, addr: int) -> bool:
        return addr in self.instructions

    def instruction_at(self, addr: int) -> Optional[Instruction]:
        return self.instructions.get(addr)

    def address_of(self, label: str) -> int:
        try:
            return self.symbols[label]
        except KeyError:
            raise UnknownSymbolError(label) from None

    def label_at(self, addr: int) -> Optional[str]:
        for label, value in self.symbols.items():
            if value == addr:
                return label
        return None

    @property
    def text_end(self) -> int:
        if not self.instructions:
            return self.text_base
        return max(self.instructions) + INSTRUCTION_SIZE

    def describe(self, addr: int) -> str:
        """``label+off`` style description of a code address."""
        best = None
        for label, value in self.symbols.items():
            if value <= addr and value in self.instructions:
                if best is None or value > best[1]:
                    best = (label, value)
        if best is None:
            return f"{addr:#x}"
        label, value = best
        return label if value == addr else f"{label}+{addr - value:#x}"

    def disassemble(self) -> str:
        lines = []
        for addr, instr in self.instructions.items():
            label = self.label_at(addr)
            if label is not None:
                lines.append(f"{label}:")
            lines.append(f"  {addr:#08x}:  {instr}")
        return "\n".join(lines)
