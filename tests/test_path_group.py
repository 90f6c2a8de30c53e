"""
Tests for PathGroup: stepping, exploration and stash manipulation.
"""

from pathlib import Path

import pytest

from pathgroup import (
    DFS, ExplorationTechnique, LengthLimiter, PathGroupConfig, Project, StashError,
)
from pathgroup.solver import bvs


FIXTURES = Path(__file__).parent / "fixtures"


def crackme(**config) -> Project:
    return Project.from_file(FIXTURES / "crackme.s", PathGroupConfig.from_dict(config))


def crackme_group(**config):
    project = crackme(**config)
    return project.path_group(project.factory.entry_state(stdin_size=4))


class TestExplore:
    """find / avoid search."""

    def test_finds_the_key(self):
        pg = crackme_group()
        pg.explore(find="success", avoid="failure")
        assert len(pg.found) == 1
        assert pg.one_found.posix.dumps(0) == b"PG!7"

    def test_avoided_states_are_not_explored(self):
        pg = crackme_group()
        pg.explore(find="success", avoid="failure")
        assert len(pg.avoid) == 4
        assert all(s.describe() == "failure" for s in pg.avoid)
        assert pg.deadended == []

    def test_find_by_address(self):
        pg = crackme_group()
        success = pg.project.program.address_of("success")
        pg.explore(find=success)
        assert pg.one_found.addr == success

    def test_find_by_predicate(self):
        pg = crackme_group()
        pg.explore(find=lambda s: b"granted" in s.posix.dumps(1))
        found = pg.one_found
        assert found.posix.dumps(0) == b"PG!7"
        assert found.posix.dumps(1) == b"Access granted\n"

    def test_avoid_by_predicate(self):
        pg = crackme_group()
        pg.explore(avoid=lambda s: b"denied" in s.posix.dumps(1))
        assert len(pg.avoid) == 4
        assert [s.exit_code for s in pg.deadended] == [0]

    def test_num_find(self):
        project = Project.from_source(
            ".data\nbuf: .space 1\n.text\n"
            "_start: mov r0, 0\nmov r1, 0\nmov r2, buf\nmov r3, 1\nsyscall\n"
            "ldb r4, [buf]\n"
            "bltu r4, 10, small\n"
            "goal: exit 0\n"
            "small: jmp goal\n"
        )
        pg = project.path_group(project.factory.entry_state(stdin_size=1))
        pg.explore(find="goal", num_find=2)
        assert len(pg.found) == 2
        inputs = sorted(s.posix.dumps(0)[0] for s in pg.found)
        assert inputs[0] < 10 <= inputs[1]

    def test_found_and_avoided_priority(self):
        pg = crackme_group()
        pg.explore(find="success", avoid="success", avoid_priority=True)
        assert pg.found == []
        assert len(pg.avoid) == 1

    def test_custom_stash_names(self):
        pg = crackme_group()
        pg.explore(find="success", avoid="failure", find_stash="win", avoid_stash="lose")
        assert len(pg.win) == 1
        assert len(pg.lose) == 4

    def test_explorer_is_removed_afterwards(self):
        pg = crackme_group()
        pg.explore(find="success")
        assert pg.techniques == []

    def test_unknown_label(self):
        pg = crackme_group()
        with pytest.raises(KeyError):
            pg.explore(find="nowhere")


class TestRun:
    """Full exploration and budgets."""

    def test_run_explores_every_path(self):
        pg = crackme_group()
        pg.run()
        codes = sorted(s.exit_code for s in pg.deadended)
        assert codes == [0, 1, 1, 1, 1]
        assert not pg.budget_exhausted

    def test_budget_exhausted(self):
        project = Project.from_file(FIXTURES / "spin.s")
        pg = project.path_group()
        pg.run(n=5)
        assert pg.budget_exhausted
        assert len(pg.active) == 1
        assert pg.steps == 5

    def test_max_steps_from_config(self):
        config = PathGroupConfig.from_dict({"exploration": {"max-steps": 3}})
        project = Project.from_file(FIXTURES / "spin.s", config)
        pg = project.path_group()
        pg.run()
        assert pg.steps == 3
        assert pg.budget_exhausted

    def test_run_until(self):
        pg = crackme_group()
        pg.run(until=lambda group: len(group.active) >= 2)
        assert len(pg.active) == 2

    def test_step_with_selector(self):
        pg = crackme_group()
        pg.step()
        pg.step()
        assert len(pg.active) == 2
        keep = pg.active[0]
        pg.step(selector_func=lambda s: s is not keep)
        assert keep in pg.active

    def test_step_unknown_stash(self):
        with pytest.raises(StashError):
            crackme_group().step(stash="nope")

    def test_dfs_strategy(self):
        pg = crackme_group(exploration={"strategy": "dfs"})
        assert any(isinstance(t, DFS) for t in pg.techniques)
        pg.step()
        pg.step()
        assert len(pg.active) == 1
        assert len(pg.deferred) == 1
        pg.run()
        assert len(pg.deadended) == 5
        assert pg.deferred == []

    def test_length_limiter(self):
        project = Project.from_file(FIXTURES / "spin.s")
        pg = project.path_group(techniques=[LengthLimiter(3)])
        pg.run(n=20)
        assert pg.active == []
        (cut,) = pg.cut
        assert cut.depth == 4
        assert not pg.budget_exhausted

    def test_length_limiter_from_config(self):
        config = PathGroupConfig.from_dict({"exploration": {"max-length": 2}})
        project = Project.from_file(FIXTURES / "spin.s", config)
        pg = project.path_group()
        pg.run()
        assert len(pg.cut) == 1

    def test_dfs_with_length_limit_drains_deferred(self):
        source = (
            ".data\nbuf: .space 1\n.text\n"
            "_start: mov r0, 0\nmov r1, 0\nmov r2, buf\nmov r3, 1\nsyscall\n"
            "ldb r4, [buf]\n"
            "beq r4, 'a', spin\n"
            "exit 1\n"
            "spin: jmp spin\n"
        )
        config = PathGroupConfig.from_dict({"exploration": {"strategy": "dfs", "max-length": 3}})
        project = Project.from_source(source, config=config)
        pg = project.path_group(project.factory.entry_state(stdin_size=1))
        pg.run()
        assert pg.deferred == []
        assert pg.active == []
        (cut,) = pg.cut
        assert cut.depth == 4
        (done,) = pg.deadended
        assert done.exit_code == 1
        assert not pg.budget_exhausted

    def test_only_unsat_successors_are_not_deadended(self):
        project = Project.from_source("check: beq r0, 42, yes\nhalt\nyes: halt\n")
        arg = bvs("arg")
        state = project.factory.call_state("check", arg)
        state.add_constraints(arg == 1, arg == 2)
        pg = project.path_group(state, save_unsat=True)
        pg.step()
        assert pg.deadended == []
        assert len(pg.unsat) == 2

        pg = project.path_group(state)
        pg.step()
        assert pg.deadended == []
        assert pg.unsat == []

    def test_unconstrained_not_saved(self):
        project = Project.from_source(
            ".data\nbuf: .space 1\n.text\n"
            "_start: mov r0, 0\nmov r1, 0\nmov r2, buf\nmov r3, 1\nsyscall\n"
            "ldb r4, [buf]\njmp r4\n"
        )
        pg = project.path_group(project.factory.entry_state(stdin_size=1), save_unconstrained=False)
        pg.run()
        assert pg.unconstrained == []
        assert pg.active == []

    def test_custom_technique(self):
        class CountSteps(ExplorationTechnique):
            def __init__(self):
                self.calls = 0

            def after_step(self, pg, stash):
                self.calls += 1

            def complete(self, pg):
                return self.calls >= 2

        pg = crackme_group()
        counter = pg.use_technique(CountSteps())
        pg.run()
        assert counter.calls == 2
        pg.remove_technique(counter)
        with pytest.raises(ValueError):
            pg.remove_technique(counter)

    def test_use_technique_type_check(self):
        with pytest.raises(TypeError):
            crackme_group().use_technique(object())


class TestStashes:
    """Moving states between stashes."""

    def test_default_stashes(self):
        pg = crackme_group()
        assert len(pg.active) == 1
        for name in ("deadended", "errored", "unconstrained", "unsat", "found", "avoid", "pruned"):
            assert getattr(pg, name) == []

    def test_one_accessor(self):
        pg = crackme_group()
        assert pg.one_active is pg.active[0]
        assert pg.one_found is None
        with pytest.raises(StashError):
            pg.one_nothing

    def test_unknown_attribute(self):
        with pytest.raises(AttributeError):
            crackme_group().nothing

    def test_move_with_filter(self):
        pg = crackme_group()
        pg.step()
        pg.step()
        first = pg.active[0]
        pg.move("active", "parked", lambda s: s is first)
        assert pg.parked == [first]
        assert first not in pg.active
        assert len(pg.active) == 1

    def test_stash_and_unstash(self):
        pg = crackme_group()
        pg.stash()
        assert pg.active == []
        assert len(pg.stashed) == 1
        pg.unstash()
        assert len(pg.active) == 1
        assert pg.stashed == []

    def test_errored_cannot_be_moved(self):
        pg = crackme_group()
        with pytest.raises(StashError):
            pg.move("errored", "active")
        with pytest.raises(StashError):
            pg.move("active", "errored")

    def test_drop(self):
        pg = crackme_group()
        pg.step()
        pg.step()
        pg.drop(lambda s: s.describe() == "failure")
        assert len(pg.active) == 1
        pg.drop()
        assert pg.active == []

    def test_split(self):
        pg = crackme_group()
        pg.run(until=lambda group: len(group.active) >= 2)
        pg.split(limit=1)
        assert len(pg.active) == 1
        assert len(pg.stashed) == 1

    def test_split_with_function(self):
        pg = crackme_group()
        pg.run(until=lambda group: len(group.active) >= 2)
        pg.split(stash_splitter=lambda states: ([], states), to_stash="later")
        assert pg.active == []
        assert len(pg.later) == 2

    def test_prune(self):
        pg = crackme_group()
        doomed = pg.active[0].copy()
        doomed.add_constraints(False)
        pg.active.append(doomed)
        pg.prune()
        assert pg.pruned == [doomed]
        assert len(pg.active) == 1

    def test_repr_and_summary(self):
        pg = crackme_group()
        pg.run()
        assert pg.summary() == {"deadended": 5}
        assert repr(pg) == "<PathGroup with 5 deadended>"

    def test_outcomes(self):
        pg = crackme_group()
        pg.run()
        outcomes = {outcome.value: len(items) for outcome, items in pg.outcomes().items()}
        assert outcomes == {"succeeded": 1, "failed": 4}
