"""
Exploration techniques: pluggable policies applied by a PathGroup.

A technique can
- add stop points, so blocks end at addresses it wants to inspect,
- claim a fresh successor for a stash (``filter``),
- rearrange stashes after each step (``after_step``),
- pick which states stay in the stepped stash once every technique has
  rearranged it (``schedule``),
- declare exploration complete (``complete``).
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

from .semantics.state import ProgramState

if TYPE_CHECKING:
    from .manager import PathGroup


logger = logging.getLogger(__name__)

Target = Union[int, str, Callable[[ProgramState], bool], Iterable[Union[int, str]], None]


class ExplorationTechnique:
    """Base class; every hook is a no-op."""

    def setup(self, pg: "PathGroup"):
        pass

    def stop_points(self, pg: "PathGroup") -> set[int]:
        return set()

    def filter(self, pg: "PathGroup", state: ProgramState) -> Optional[str]:
        return None

    def after_step(self, pg: "PathGroup", stash: str):
        pass

    def schedule(self, pg: "PathGroup", stash: str):
        pass

    def complete(self, pg: "PathGroup") -> bool:
        return False

    def __repr__(self):
        return f"<{type(self).__name__}>"


class _Condition:
    """find/avoid target: addresses, labels, or a predicate on states."""

    def __init__(self, project, target: Target):
        self.addrs: set[int] = set()
        self.predicate: Optional[Callable[[ProgramState], bool]] = None
        if target is None:
            return
        if callable(target):
            self.predicate = target
            return
        if isinstance(target, (int, str)):
            target = [target]
        for item in target:
            self.addrs.add(project.resolve(item))

    def __bool__(self):
        return bool(self.addrs) or self.predicate is not None

    def matches(self, state: ProgramState) -> bool:
        if self.predicate is not None:
            return bool(self.predicate(state))
        return state.addr in self.addrs


class Explorer(ExplorationTechnique):
    """
    Search for states matching ``find`` while discarding those matching ``avoid``.

    ``find``/``avoid`` accept an address, a label, a collection of those, or a
    predicate ``f(state) -> bool``. Address targets become stop points so a
    match in the middle of a block is not stepped over.
    """

    def __init__(self, project, find: Target = None, avoid: Target = None, num_find: int = 1,
                 find_stash: str = "found", avoid_stash: str = "avoid", avoid_priority: bool = False):
        self.find = _Condition(project, find)
        self.avoid = _Condition(project, avoid)
        self.num_find = num_find
        self.find_stash = find_stash
        self.avoid_stash = avoid_stash
        self.avoid_priority = avoid_priority

    def setup(self, pg):
        pg.stashes.setdefault(self.find_stash, [])
        pg.stashes.setdefault(self.avoid_stash, [])

    def stop_points(self, pg):
        return self.find.addrs | self.avoid.addrs

    def filter(self, pg, state):
        if state.unconstrained:
            return None
        found = bool(self.find) and self.find.matches(state)
        avoided = bool(self.avoid) and self.avoid.matches(state)
        if found and avoided:
            return self.avoid_stash if self.avoid_priority else self.find_stash
        if found:
            logger.info("[EXPLORE] found state #%d at %s", state.uid, state.describe())
            return self.find_stash
        if avoided:
            return self.avoid_stash
        return None

    def complete(self, pg):
        return len(pg.stashes.get(self.find_stash, [])) >= self.num_find


class DFS(ExplorationTechnique):
    """Depth-first: keep one state active, park the rest in ``deferred``."""

    def __init__(self, deferred_stash: str = "deferred"):
        self.deferred_stash = deferred_stash

    def setup(self, pg):
        pg.stashes.setdefault(self.deferred_stash, [])
        self.schedule(pg, "active")

    def schedule(self, pg, stash):
        active = pg.stashes.setdefault(stash, [])
        deferred = pg.stashes.setdefault(self.deferred_stash, [])
        if len(active) > 1:
            deferred.extend(reversed(active[1:]))
            del active[1:]
        if not active and deferred:
            active.append(deferred.pop())


class LengthLimiter(ExplorationTechnique):
    """Cut paths that have executed more than ``max_length`` blocks."""

    def __init__(self, max_length: int, drop: bool = False, cut_stash: str = "cut"):
        self.max_length = max_length
        self.drop = drop
        self.cut_stash = cut_stash

    def after_step(self, pg, stash):
        states = pg.stashes.get(stash, [])
        keep = [s for s in states if s.depth <= self.max_length]
        cut = [s for s in states if s.depth > self.max_length]
        if not cut:
            return
        pg.stashes[stash] = keep
        if not self.drop:
            pg.stashes.setdefault(self.cut_stash, []).extend(cut)
        logger.debug("[EXPLORE] length limit cut %d state(s)", len(cut))

