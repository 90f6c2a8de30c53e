"""
Exploration results in human and JSON form.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .manager import PathGroup
from .semantics.state import ProgramState


FOUND = "FOUND"
NOT_FOUND = "NOT_FOUND"
EXPLORED = "EXPLORED"
UNKNOWN = "UNKNOWN"


@dataclass
class PathRecord:
    """Concrete witness for one state."""
    stash: str
    uid: int
    location: str
    blocks: int
    exit_code: Optional[int]
    stdin: bytes
    stdout: bytes

    @classmethod
    def from_state(cls, state: ProgramState, stash: str) -> "PathRecord":
        return cls(
            stash=stash,
            uid=state.uid,
            location=state.describe(),
            blocks=state.depth,
            exit_code=state.exit_code,
            stdin=state.posix.dumps(0),
            stdout=state.posix.dumps(1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stash": self.stash,
            "uid": self.uid,
            "location": self.location,
            "blocks": self.blocks,
            "exit_code": self.exit_code,
            "stdin": self.stdin.decode("latin-1"),
            "stdin_hex": self.stdin.hex(),
            "stdout": self.stdout.decode("latin-1"),
        }


@dataclass
class ExplorationReport:
    program: str
    verdict: str
    steps: int
    stash_counts: dict[str, int] = field(default_factory=dict)
    outcomes: dict[str, int] = field(default_factory=dict)
    paths: list[PathRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    solver_queries: int = 0

    @classmethod
    def from_path_group(cls, pg: PathGroup, searched: bool = True,
                        target_stash: str = "found") -> "ExplorationReport":
        """
        Summarize ``pg``.

        With ``searched`` the witnesses come from ``target_stash`` and the
        verdict says whether a target was reached; otherwise witnesses are
        the deadended states of a full exploration.
        """
        stash = target_stash if searched else "deadended"
        states = pg.stashes.get(stash, [])
        if searched:
            if states:
                verdict = FOUND
            elif pg.budget_exhausted:
                verdict = UNKNOWN
            else:
                verdict = NOT_FOUND
        else:
            verdict = UNKNOWN if pg.budget_exhausted else EXPLORED

        outcomes = {outcome.value: len(items) for outcome, items in pg.outcomes().items()}
        return cls(
            program=pg.project.program.name,
            verdict=verdict,
            steps=pg.steps,
            stash_counts=pg.summary(),
            outcomes=outcomes,
            paths=[PathRecord.from_state(s, stash) for s in states],
            errors=[str(record.error) for record in pg.stashes.get("errored", [])],
            solver_queries=pg.project.solver.queries,
        )

    def summary(self) -> str:
        lines = [
            f"Program: {self.program}",
            f"Verdict: {self.verdict}",
            f"Steps: {self.steps}  Solver queries: {self.solver_queries}",
        ]
        if self.stash_counts:
            counts = ", ".join(f"{name}={count}" for name, count in self.stash_counts.items())
            lines.append(f"Stashes: {counts}")
        for record in self.paths:
            lines.append(f"\n[{record.stash} #{record.uid}] at {record.location} after {record.blocks} block(s)")
            if record.exit_code is not None:
                lines.append(f"  exit code: {record.exit_code}")
            lines.append(f"  stdin:  {record.stdin!r}")
            lines.append(f"  stdout: {record.stdout!r}")
        if self.errors:
            lines.append(f"\nErrors ({len(self.errors)}):")
            for error in self.errors[:5]:
                lines.append(f"  - {error}")
            if len(self.errors) > 5:
                lines.append(f"  ... and {len(self.errors) - 5} more")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "program": self.program,
            "verdict": self.verdict,
            "steps": self.steps,
            "solver_queries": self.solver_queries,
            "stashes": self.stash_counts,
            "outcomes": self.outcomes,
            "paths": [record.to_dict() for record in self.paths],
            "errors": self.errors,
        }
