"""
PathGroup: the stash manager driving exploration.

States are kept in named stashes. Stepping a stash replaces every state in
it by its successors; successors are routed to stashes by the installed
exploration techniques first, then by the state classifier.

Default stashes:
    active         states still being explored
    deadended      states that exited or returned
    errored        ErrorRecords of states that faulted
    unconstrained  states with an unresolved program counter
    unsat          infeasible branch sides (only with save_unsat)
    found, avoid   Explorer results
    pruned         states removed by prune()
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

from .classifier import StateClassifier
from .errors import StashError
from .semantics.executor import ErrorRecord, Successors
from .semantics.state import ProgramState
from .techniques import DFS, ExplorationTechnique, Explorer, LengthLimiter, Target

if TYPE_CHECKING:
    from .config import PathGroupConfig
    from .project import Project


logger = logging.getLogger(__name__)

DEFAULT_STASHES = (
    "active", "deadended", "errored", "unconstrained", "unsat", "found", "avoid", "pruned",
)

StateFilter = Callable[[ProgramState], bool]


class PathGroup:
    """
    A collection of states organized in stashes.

    Typical use::

        pg = project.path_group()
        pg.explore(find="success", avoid="failure")
        if pg.found:
            print(pg.one_found.posix.dumps(0))
    """

    def __init__(
        self,
        project: "Project",
        active_states: Optional[Iterable[ProgramState]] = None,
        config: Optional["PathGroupConfig"] = None,
        save_unsat: Optional[bool] = None,
        save_unconstrained: Optional[bool] = None,
        techniques: Iterable[ExplorationTechnique] = (),
    ):
        self.project = project
        self.config = config if config is not None else project.config
        exploration = self.config.exploration
        self.save_unsat = exploration.save_unsat if save_unsat is None else save_unsat
        self.save_unconstrained = (
            exploration.save_unconstrained if save_unconstrained is None else save_unconstrained
        )
        self.classifier: StateClassifier = project.classifier
        self._stashes: dict[str, list] = {name: [] for name in DEFAULT_STASHES}
        self._stashes["active"].extend(active_states or [])
        self._techniques: list[ExplorationTechnique] = []
        self.steps = 0
        self.budget_exhausted = False

        for technique in techniques:
            self.use_technique(technique)
        if exploration.strategy == "dfs":
            self.use_technique(DFS())
        if exploration.max_length is not None:
            self.use_technique(LengthLimiter(exploration.max_length))

    # ------------------------------------------------------------------
    # Stash access
    # ------------------------------------------------------------------

    @property
    def stashes(self) -> dict[str, list]:
        return self._stashes

    @property
    def techniques(self) -> list[ExplorationTechnique]:
        return list(self._techniques)

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        stashes = self.__dict__.get("_stashes", {})
        if name.startswith("one_"):
            stash = name[len("one_"):]
            if stash not in stashes:
                raise StashError(f"no stash named '{stash}'")
            return stashes[stash][0] if stashes[stash] else None
        if name in stashes:
            return stashes[name]
        raise AttributeError(f"'{type(self).__name__}' object has no attribute or stash '{name}'")

    def _get_stash(self, name: str) -> list:
        if name not in self._stashes:
            raise StashError(f"no stash named '{name}'")
        return self._stashes[name]

    def summary(self) -> dict[str, int]:
        return {name: len(states) for name, states in self._stashes.items() if states}

    def __repr__(self):
        parts = [f"{count} {name}" for name, count in self.summary().items()]
        if not parts:
            return "<PathGroup with nothing>"
        return f"<PathGroup with {', '.join(parts)}>"

    # ------------------------------------------------------------------
    # Techniques
    # ------------------------------------------------------------------

    def use_technique(self, technique: ExplorationTechnique) -> ExplorationTechnique:
        if not isinstance(technique, ExplorationTechnique):
            raise TypeError(f"expected an ExplorationTechnique, got {technique!r}")
        self._techniques.append(technique)
        technique.setup(self)
        return technique

    def remove_technique(self, technique: ExplorationTechnique):
        try:
            self._techniques.remove(technique)
        except ValueError:
            raise ValueError(f"{technique!r} is not in use") from None

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, stash: str = "active", n: int = 1,
             selector_func: Optional[StateFilter] = None,
             until: Optional[Callable[["PathGroup"], bool]] = None) -> "PathGroup":
        """
        Step every state in ``stash`` ``n`` times.

        ``selector_func`` restricts stepping to matching states; the others
        stay in the stash unchanged.
        """
        self._get_stash(stash)
        for _ in range(n):
            self._step_once(stash, selector_func)
            for technique in self._techniques:
                technique.after_step(self, stash)
            for technique in self._techniques:
                technique.schedule(self, stash)
            if until is not None and until(self):
                break
        return self

    def _step_once(self, stash: str, selector_func: Optional[StateFilter]):
        states = self._stashes[stash]
        stop_points: set[int] = set()
        for technique in self._techniques:
            stop_points |= technique.stop_points(self)

        remaining = []
        for state in states:
            if selector_func is not None and not selector_func(state):
                remaining.append(state)
                continue
            successors = self.project.executor.step(state, stop_points)
            self._route(state, successors, stash, remaining)

        self._stashes[stash] = remaining
        self.steps += 1
        logger.debug("[STEP] round %d: %r", self.steps, self)

    def _route(self, state: ProgramState, successors: Successors, stash: str, remaining: list):
        if not successors:
            self._stashes["deadended"].append(state)
        for successor in successors.all_successors:
            target = None
            for technique in self._techniques:
                target = technique.filter(self, successor)
                if target is not None:
                    break
            if target is None:
                target = self.classifier.stash_for(successor)
            if target == "unconstrained" and not self.save_unconstrained:
                continue
            if target == "active" or target == stash:
                remaining.append(successor)
            else:
                self._stashes.setdefault(target, []).append(successor)
        if self.save_unsat:
            self._stashes["unsat"].extend(successors.unsat)
        self._stashes["errored"].extend(successors.errored)

    def run(self, stash: str = "active", n: Optional[int] = None,
            until: Optional[Callable[["PathGroup"], bool]] = None) -> "PathGroup":
        """
        Step ``stash`` until it is empty, a technique completes, ``until(pg)``
        holds, or ``n`` rounds (default ``exploration.max_steps``) have run.
        """
        limit = n if n is not None else self.config.exploration.max_steps
        rounds = 0
        self.budget_exhausted = False
        while self._get_stash(stash):
            if any(technique.complete(self) for technique in self._techniques):
                break
            if rounds >= limit:
                self.budget_exhausted = True
                logger.info("[EXPLORE] step budget of %d exhausted: %r", limit, self)
                break
            self.step(stash=stash)
            rounds += 1
            if until is not None and until(self):
                break
        return self

    def explore(self, find: Target = None, avoid: Target = None, num_find: Optional[int] = None,
                n: Optional[int] = None, find_stash: str = "found", avoid_stash: str = "avoid",
                avoid_priority: bool = False) -> "PathGroup":
        """
        Run until ``num_find`` states matching ``find`` are in ``find_stash``.

        States matching ``avoid`` are moved to ``avoid_stash`` and not explored further.
        """
        if num_find is None:
            num_find = self.config.exploration.num_find
        explorer = Explorer(
            self.project, find=find, avoid=avoid, num_find=num_find,
            find_stash=find_stash, avoid_stash=avoid_stash, avoid_priority=avoid_priority,
        )
        self.use_technique(explorer)
        try:
            self.run(n=n)
        finally:
            self.remove_technique(explorer)
        logger.info("[EXPLORE] finished after %d step(s): %r", self.steps, self)
        return self

    # ------------------------------------------------------------------
    # Stash manipulation
    # ------------------------------------------------------------------

    def move(self, from_stash: str, to_stash: str,
             filter_func: Optional[StateFilter] = None) -> "PathGroup":
        if "errored" in (from_stash, to_stash) and from_stash != to_stash:
            raise StashError("the errored stash holds ErrorRecords and cannot be moved")
        moving, staying = [], []
        for state in self._get_stash(from_stash):
            if filter_func is None or filter_func(state):
                moving.append(state)
            else:
                staying.append(state)
        self._stashes[from_stash] = staying
        self._stashes.setdefault(to_stash, []).extend(moving)
        return self

    def stash(self, filter_func: Optional[StateFilter] = None, from_stash: str = "active",
              to_stash: str = "stashed") -> "PathGroup":
        return self.move(from_stash, to_stash, filter_func)

    def unstash(self, filter_func: Optional[StateFilter] = None, to_stash: str = "active",
                from_stash: str = "stashed") -> "PathGroup":
        return self.move(from_stash, to_stash, filter_func)

    def drop(self, filter_func: Optional[Callable[[Union[ProgramState, ErrorRecord]], bool]] = None,
             stash: str = "active") -> "PathGroup":
        source = self._get_stash(stash)
        self._stashes[stash] = [s for s in source if not (filter_func is None or filter_func(s))]
        return self

    def split(self, stash_splitter: Optional[Callable[[list], tuple[list, list]]] = None,
              limit: int = 8, from_stash: str = "active", to_stash: str = "stashed") -> "PathGroup":
        """
        Keep part of ``from_stash`` and move the rest to ``to_stash``.

        ``stash_splitter(states) -> (keep, move)``; by default the first
        ``limit`` states are kept.
        """
        states = self._get_stash(from_stash)
        if stash_splitter is not None:
            keep, moving = stash_splitter(list(states))
        else:
            keep, moving = states[:limit], states[limit:]
        self._stashes[from_stash] = list(keep)
        self._stashes.setdefault(to_stash, []).extend(moving)
        return self

    def prune(self, filter_func: Optional[StateFilter] = None, from_stash: str = "active",
              to_stash: str = "pruned") -> "PathGroup":
        """Move states whose constraints are unsatisfiable."""
        def unsat(state):
            return (filter_func is None or filter_func(state)) and not state.satisfiable()
        return self.move(from_stash, to_stash, unsat)

    def outcomes(self):
        """Every state and ErrorRecord in every stash, grouped by outcome."""
        items = [item for states in self._stashes.values() for item in states]
        return self.classifier.partition(items)
