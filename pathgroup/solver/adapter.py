"""
Constraint solver adapter.

Translates a state's accumulated formula set into Z3 queries and reports
satisfiability plus concrete assignments. One adapter is shared by every
state of a project; each query runs inside a push/pop scope so states never
see each other's constraints.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import z3

from ..errors import SolverError, UnsatError


logger = logging.getLogger(__name__)

SAT = "sat"
UNSAT = "unsat"
UNKNOWN = "unknown"


@dataclass
class SolverResult:
    """Outcome of a satisfiability query."""
    status: str
    model: Optional[z3.ModelRef] = None

    @property
    def is_sat(self) -> bool:
        return self.status == SAT

    @property
    def is_unsat(self) -> bool:
        return self.status == UNSAT

    def value(self, expr: z3.ExprRef) -> int:
        if self.model is None:
            raise SolverError(f"no model available (status={self.status})")
        return _model_int(self.model, expr)


def _model_int(model: z3.ModelRef, expr: z3.ExprRef) -> int:
    value = model.eval(expr, model_completion=True)
    if z3.is_bool(value):
        return 1 if z3.is_true(value) else 0
    return value.as_long()


class SolverAdapter:
    """
    Z3-backed decision procedure.

    UNKNOWN results (timeouts) are treated as satisfiable by ``satisfiable``
    so a slow query never prunes a feasible path.
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        self._solver = z3.Solver()
        if timeout_ms:
            self._solver.set("timeout", int(timeout_ms))
        self.queries = 0

    def _load(self, constraints: Iterable[z3.BoolRef], extra: Iterable[z3.BoolRef]):
        for c in constraints:
            self._solver.add(c)
        for c in extra:
            self._solver.add(c)

    def check(self, constraints: Iterable[z3.BoolRef], extra: Iterable[z3.BoolRef] = ()) -> SolverResult:
        self._solver.push()
        try:
            self._load(constraints, extra)
            self.queries += 1
            result = self._solver.check()
            if result == z3.sat:
                return SolverResult(SAT, self._solver.model())
            if result == z3.unsat:
                return SolverResult(UNSAT)
            logger.debug("[SOLVER] unknown result: %s", self._solver.reason_unknown())
            return SolverResult(UNKNOWN)
        finally:
            self._solver.pop()

    def satisfiable(self, constraints: Iterable[z3.BoolRef], extra: Iterable[z3.BoolRef] = ()) -> bool:
        return not self.check(constraints, extra).is_unsat

    def eval_upto(self, constraints: Iterable[z3.BoolRef], expr: z3.ExprRef, n: int,
                  extra: Iterable[z3.BoolRef] = ()) -> list[int]:
        """Up to ``n`` distinct values of ``expr``; empty when unsatisfiable."""
        values: list[int] = []
        self._solver.push()
        try:
            self._load(constraints, extra)
            while len(values) < n:
                self.queries += 1
                if self._solver.check() != z3.sat:
                    break
                value = _model_int(self._solver.model(), expr)
                values.append(value)
                if z3.is_bool(expr):
                    self._solver.add(expr != z3.BoolVal(bool(value)))
                else:
                    self._solver.add(expr != z3.BitVecVal(value, expr.size()))
        finally:
            self._solver.pop()
        return values

    def eval_one(self, constraints: Iterable[z3.BoolRef], expr: z3.ExprRef,
                 extra: Iterable[z3.BoolRef] = ()) -> int:
        """The single value of ``expr``. Raises if there are zero or several."""
        values = self.eval_upto(constraints, expr, 2, extra)
        if not values:
            raise UnsatError("constraints are unsatisfiable")
        if len(values) > 1:
            raise SolverError(f"expression has more than one solution: {expr}")
        return values[0]

    def _optimize(self, constraints: Iterable[z3.BoolRef], expr: z3.BitVecRef, maximize: bool,
                  extra: Iterable[z3.BoolRef]) -> int:
        opt = z3.Optimize()
        if self.timeout_ms:
            opt.set("timeout", int(self.timeout_ms))
        for c in constraints:
            opt.add(c)
        for c in extra:
            opt.add(c)
        if maximize:
            opt.maximize(expr)
        else:
            opt.minimize(expr)
        self.queries += 1
        result = opt.check()
        if result == z3.unsat:
            raise UnsatError("constraints are unsatisfiable")
        if result != z3.sat:
            raise SolverError(f"optimization did not finish: {opt.reason_unknown()}")
        return _model_int(opt.model(), expr)

    def min(self, constraints: Iterable[z3.BoolRef], expr: z3.BitVecRef,
            extra: Iterable[z3.BoolRef] = ()) -> int:
        """Smallest unsigned value of ``expr``."""
        return self._optimize(constraints, expr, False, extra)

    def max(self, constraints: Iterable[z3.BoolRef], expr: z3.BitVecRef,
            extra: Iterable[z3.BoolRef] = ()) -> int:
        """Largest unsigned value of ``expr``."""
        return self._optimize(constraints, expr, True, extra)

    def assignment(self, constraints: Iterable[z3.BoolRef]) -> dict[str, int]:
        """Concrete value for every bit-vector constant in a model of ``constraints``."""
        result = self.check(constraints)
        if result.is_unsat:
            raise UnsatError("constraints are unsatisfiable")
        if result.model is None:
            raise SolverError("solver returned unknown")
        values = {}
        for decl in result.model.decls():
            value = result.model[decl]
            if z3.is_bv_value(value):
                values[decl.name()] = value.as_long()
        return values
