"""
Instruction set, program model and assembler for the guest language.
"""

from .program import (
    BINARY_OPS,
    BRANCH_OPS,
    INSTRUCTION_SIZE,
    REGISTERS,
    WORD_BITS,
    WORD_MASK,
    Immediate,
    Instruction,
    MemoryRef,
    Program,
    Register,
)
from .assembler import assemble, assemble_file

__all__ = [
    "BINARY_OPS",
    "BRANCH_OPS",
    "INSTRUCTION_SIZE",
    "REGISTERS",
    "WORD_BITS",
    "WORD_MASK",
    "Immediate",
    "Instruction",
    "MemoryRef",
    "Program",
    "Register",
    "assemble",
    "assemble_file",
]
