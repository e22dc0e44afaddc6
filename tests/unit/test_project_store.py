"""Tests for the project store and unit of work."""

import json

import pytest

from changeflow.errors import ProjectNotFoundError, ProjectStateError
from changeflow.project_schema import ProjectState, Resource, Task
from changeflow.project_store import PROJECT_FILE_NAME, ProjectStore


class TestProjectStore:
    """Tests for ProjectStore."""

    def test_initialize_writes_document(self, project_root):
        """initialize() writes a loadable, empty document."""
        store = ProjectStore(project_root)
        state = store.initialize(project_name="demo")

        assert (project_root / PROJECT_FILE_NAME).exists()
        assert state.project_name == "demo"
        assert store.load().project_name == "demo"
        assert store.load().tasks == []

    def test_initialize_defaults_name_to_directory(self, project_root):
        state = ProjectStore(project_root).initialize()
        assert state.project_name == project_root.name

    def test_initialize_twice_rejected(self, store):
        """An existing document is never overwritten by initialize()."""
        with pytest.raises(ProjectStateError):
            store.initialize()

    def test_load_missing(self, project_root):
        """Loading without a document raises ProjectNotFoundError."""
        with pytest.raises(ProjectNotFoundError):
            ProjectStore(project_root).load()

    def test_load_corrupt(self, store):
        """Broken JSON raises ProjectStateError."""
        store.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ProjectStateError):
            store.load()

    def test_load_rejects_unknown_keys(self, store):
        """Unknown top-level keys are refused."""
        data = json.loads(store.path.read_text(encoding="utf-8"))
        data["unexpected"] = True
        store.path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(ProjectStateError):
            store.load()

    def test_save_round_trip(self, store):
        """Saved state loads back equal."""
        state = store.load()
        state.tasks.append(Task(task_id="task_1", description="Do it"))
        state.resources.append(Resource(path="a.txt", local_hash="abc"))
        store.save(state)

        loaded = store.load()
        assert loaded.find_task("task_1").description == "Do it"
        assert loaded.find_resource("a.txt").local_hash == "abc"

    def test_save_leaves_no_temp_files(self, store, project_root):
        """Atomic save cleans up its temporary file."""
        store.save(store.load())
        assert [p.name for p in project_root.iterdir()] == [PROJECT_FILE_NAME]


class TestUnitOfWork:
    """Tests for ProjectUnitOfWork."""

    def test_saves_on_clean_exit(self, store):
        with store.unit_of_work() as uow:
            uow.state.roadmap.append("next idea")

        assert store.load().roadmap == ["next idea"]

    def test_no_save_on_exception(self, store):
        """An exception inside the block discards mutations."""
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.state.roadmap.append("lost")
                raise RuntimeError("boom")

        assert store.load().roadmap == []

    def test_discard(self, store):
        with store.unit_of_work() as uow:
            uow.state.roadmap.append("lost")
            uow.discard()

        assert uow.discarded
        assert store.load().roadmap == []

    def test_simulation_never_saves(self, store):
        before = store.path.read_bytes()
        with store.unit_of_work(simulate=True) as uow:
            uow.state.roadmap.append("simulated")
            assert uow.simulate

        assert store.path.read_bytes() == before

    def test_state_requires_open_unit(self, store):
        uow = store.unit_of_work()
        with pytest.raises(ProjectStateError):
            _ = uow.state


class TestProjectState:
    """Tests for ProjectState helpers."""

    def test_allocate_ids_are_monotonic(self):
        state = ProjectState()
        assert state.allocate_task_id() == "task_1"
        assert state.allocate_task_id() == "task_2"
        assert state.allocate_request_group_id() == "hrg_101"
        assert state.allocate_request_group_id() == "hrg_102"

    def test_find_task_for_request(self):
        """Tasks are found by their own id or by their request group id."""
        state = ProjectState(tasks=[Task(task_id="task_7", request_group_id="hrg_105")])
        assert state.find_task_for_request("task_7").task_id == "task_7"
        assert state.find_task_for_request("hrg_105").task_id == "task_7"
        assert state.find_task_for_request("hrg_999") is None
        assert state.find_task_for_request(None) is None

    def test_remove_resource(self):
        state = ProjectState(resources=[Resource(path="a.txt")])
        assert state.remove_resource("a.txt")
        assert not state.remove_resource("a.txt")
        assert state.resources == []
