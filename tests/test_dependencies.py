"""Tests for task dependency validation and circular dependency detection."""
import pytest
from agentflow_core import crud, task_lifecycle
from agentflow_core.dependencies import (
    detect_circular_dependency,
    get_transitive_dependencies,
    get_unfinished_dependencies,
)
from agentflow_core.errors import CircularDependencyError, Conflict, NotFound
from agentflow_core.models import AgentRole


def _link(db, task_id, depends_on_task_id):
    crud.add_task_dependency(db, task_id, depends_on_task_id)
    db.commit()


class TestCircularDependencyDetection:
    """Test cycle detection on the dependency graph."""

    def test_self_edge_is_a_cycle(self, db, make_task):
        task = make_task()

        assert detect_circular_dependency(db, task.id, task.id) == [task.id, task.id]
        with pytest.raises(CircularDependencyError):
            crud.add_task_dependency(db, task.id, task.id)

    def test_direct_cycle(self, db, make_task):
        a, b = make_task("A"), make_task("B")
        _link(db, a.id, b.id)

        with pytest.raises(CircularDependencyError) as exc_info:
            crud.add_task_dependency(db, b.id, a.id)

        assert exc_info.value.cycle == [b.id, a.id, b.id]

    def test_transitive_cycle(self, db, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        _link(db, a.id, b.id)
        _link(db, b.id, c.id)

        with pytest.raises(CircularDependencyError):
            crud.add_task_dependency(db, c.id, a.id)

    def test_diamond_is_not_a_cycle(self, db, make_task):
        a, b, c, d = make_task("A"), make_task("B"), make_task("C"), make_task("D")
        _link(db, a.id, b.id)
        _link(db, a.id, c.id)
        _link(db, b.id, d.id)
        _link(db, c.id, d.id)

        assert get_transitive_dependencies(db, a.id) == {a.id, b.id, c.id, d.id}
        assert detect_circular_dependency(db, a.id, d.id) is None

    def test_cycle_through_long_chain(self, db, make_task):
        chain = [make_task(f"Step {i}") for i in range(60)]
        for current, following in zip(chain, chain[1:]):
            _link(db, current.id, following.id)

        assert len(get_transitive_dependencies(db, chain[0].id)) == 60
        with pytest.raises(CircularDependencyError):
            crud.add_task_dependency(db, chain[-1].id, chain[0].id)

    def test_circular_dependency_is_a_conflict(self):
        assert issubclass(CircularDependencyError, Conflict)


class TestAddDependency:
    def test_existing_edge_is_returned(self, db, make_task):
        a, b = make_task("A"), make_task("B")
        first = crud.add_task_dependency(db, a.id, b.id)
        db.commit()

        second = crud.add_task_dependency(db, a.id, b.id)

        assert second.id == first.id
        assert [t.id for t in crud.get_task_dependencies(db, a.id)] == [b.id]

    def test_unknown_task(self, db, make_task):
        a = make_task("A")

        with pytest.raises(NotFound):
            crud.add_task_dependency(db, a.id, 999)

    def test_unfinished_dependencies(self, db, make_task, agent_ids):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        _link(db, a.id, b.id)
        _link(db, a.id, c.id)

        task_lifecycle.assign(db, b.id, agent_ids[AgentRole.FRONTEND])
        task_lifecycle.report_progress(db, b.id, 100)
        task_lifecycle.complete(db, b.id)

        assert [t.id for t in get_unfinished_dependencies(db, a.id)] == [c.id]
