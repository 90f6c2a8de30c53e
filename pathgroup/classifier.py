"""
State classifier.

Partitions states into outcome categories and decides which stash a fresh
successor belongs in.
"""

from collections import defaultdict
from enum import Enum
from typing import Iterable, Union

from .semantics.executor import ErrorRecord
from .semantics.state import ProgramState


class Outcome(Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNRESOLVED = "unresolved"


class StateClassifier:
    """
    Outcome rules, first match wins:

    1. ErrorRecord                       -> FAILED
    2. unresolved program counter        -> UNRESOLVED
    3. halted: returned from call_state  -> SUCCEEDED
               exit code 0               -> SUCCEEDED
               other exit code           -> FAILED
    4. unsatisfiable constraints         -> FAILED
    5. otherwise                         -> RUNNING
    """

    def outcome(self, item: Union[ProgramState, ErrorRecord]) -> Outcome:
        if isinstance(item, ErrorRecord):
            return Outcome.FAILED
        state = item
        if state.unconstrained:
            return Outcome.UNRESOLVED
        if state.halted:
            if state.returned or state.exit_code == 0:
                return Outcome.SUCCEEDED
            return Outcome.FAILED
        if not state.satisfiable():
            return Outcome.FAILED
        return Outcome.RUNNING

    def stash_for(self, state: ProgramState) -> str:
        """Default stash for a satisfiable successor."""
        if state.unconstrained:
            return "unconstrained"
        if state.halted:
            return "deadended"
        return "active"

    def partition(self, items: Iterable[Union[ProgramState, ErrorRecord]]) -> dict[Outcome, list]:
        groups: dict[Outcome, list] = defaultdict(list)
        for item in items:
            groups[self.outcome(item)].append(item)
        return dict(groups)
