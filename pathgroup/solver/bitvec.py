"""
Bit-vector helpers over Z3 expressions.
"""

from typing import Optional, Sequence, Union

import z3

from ..isa.program import WORD_BITS


Value = Union[int, z3.BitVecRef]


def bvv(value: int, bits: int = WORD_BITS) -> z3.BitVecRef:
    """Concrete bit-vector, wrapped to ``bits``."""
    return z3.BitVecVal(value & ((1 << bits) - 1), bits)


def bvs(name: str, bits: int = WORD_BITS) -> z3.BitVecRef:
    """Fresh symbolic bit-vector."""
    return z3.BitVec(name, bits)


def to_bv(value: Value, bits: int = WORD_BITS) -> z3.BitVecRef:
    """Coerce an int or bit-vector of any width to ``bits`` bits (zero-extend or truncate)."""
    if isinstance(value, bool):
        return bvv(int(value), bits)
    if isinstance(value, int):
        return bvv(value, bits)
    size = value.size()
    if size == bits:
        return value
    if size < bits:
        return z3.ZeroExt(bits - size, value)
    return z3.Extract(bits - 1, 0, value)


def concrete_value(expr: Value) -> Optional[int]:
    """Integer value of ``expr`` if it simplifies to a constant, else None."""
    if isinstance(expr, int):
        return expr
    simplified = z3.simplify(expr)
    if z3.is_bv_value(simplified):
        return simplified.as_long()
    return None


def is_concrete(expr: Value) -> bool:
    return concrete_value(expr) is not None


def bool_value(cond: z3.BoolRef) -> Optional[bool]:
    """True/False if ``cond`` simplifies to a constant, else None."""
    simplified = z3.simplify(cond)
    if z3.is_true(simplified):
        return True
    if z3.is_false(simplified):
        return False
    return None


def byte_at(value: z3.BitVecRef, index: int) -> z3.BitVecRef:
    """Byte ``index`` of ``value``, counting from the least significant byte."""
    return z3.Extract(8 * index + 7, 8 * index, value)


def to_bytes(value: Value, size: Optional[int] = None) -> list[z3.BitVecRef]:
    """
    Split ``value`` into 8-bit expressions, least significant byte first.

    ``size`` defaults to the width of ``value`` rounded up to whole bytes.
    """
    if size is None:
        size = (value.size() + 7) // 8 if isinstance(value, z3.BitVecRef) else WORD_BITS // 8
    value = to_bv(value, 8 * size)
    return [byte_at(value, i) for i in range(size)]


def concat_bytes(chunks: Sequence[z3.BitVecRef]) -> z3.BitVecRef:
    """Concatenate 8-bit expressions, first element most significant."""
    if not chunks:
        raise ValueError("cannot concatenate zero bytes")
    if len(chunks) == 1:
        return chunks[0]
    return z3.Concat(*chunks)


def to_signed(value: int, bits: int = WORD_BITS) -> int:
    if value >= 1 << (bits - 1):
        return value - (1 << bits)
    return value
