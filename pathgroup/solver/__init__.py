"""
Solver adapter and bit-vector helpers.
"""

from .adapter import SAT, UNKNOWN, UNSAT, SolverAdapter, SolverResult
from .bitvec import (
    bool_value,
    bvs,
    bvv,
    byte_at,
    concat_bytes,
    concrete_value,
    is_concrete,
    to_bv,
    to_bytes,
    to_signed,
)

__all__ = [
    "SAT",
    "UNKNOWN",
    "UNSAT",
    "SolverAdapter",
    "SolverResult",
    "bool_value",
    "bvs",
    "bvv",
    "byte_at",
    "concat_bytes",
    "concrete_value",
    "is_concrete",
    "to_bv",
    "to_bytes",
    "to_signed",
]
