"""
Unit tests for the project_store and storage modules.

Tests cover:
- Loading, saving and change listeners
- Project and task entry points, including rejection with the model untouched
- Undo of deletes, renames, archive, date changes and moves
- PIC list rules
- CSV import merge / replace
- JsonFileStorage on disk
"""

import pytest
from datetime import date
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import DEFAULT_PIC_LIST
from errors import InvalidDateRange, MalformedImportRow, SchedulingConflict
from gantt_controller import DragMode, GanttInteraction, Timeline
from importers import serialize_csv
from project_store import ProjectStore
from storage import JsonFileStorage, MemoryStorage
from task_tree import TaskRef, new_project, new_task

STATE = {
    "projects": [
        {"id": "1", "name": "Website", "pic": "Alice", "tasks": [
            {"name": "Design", "start_date": "2025-01-01", "due": "2025-01-05", "pic": "Alice", "completion": 100},
            {"name": "Build", "start_date": "2025-01-10", "due": "2025-01-15", "pic": "Alice", "completion": 0,
             "sub_tasks": [{"name": "Frontend", "start_date": "2025-01-10", "due": "2025-01-12", "completion": 50}]},
        ]},
        {"id": "2", "name": "Mobile", "pic": "Bob", "tasks": [
            {"name": "Prototype", "start_date": "2025-01-03", "due": "2025-01-08", "pic": "Alice", "completion": 0},
        ]},
    ],
    "pic_list": ["Alice", "Bob"],
}

DESIGN = TaskRef("1", (0,))
BUILD = TaskRef("1", (1,))
FRONTEND = TaskRef("1", (1, 0))
PROTOTYPE = TaskRef("2", (0,))


def window(task):
    return task["start_date"], task["due"]


@pytest.fixture
def storage():
    return MemoryStorage(STATE)


@pytest.fixture
def store(storage):
    return ProjectStore(storage).load()


class TestLifecycle:
    """Tests for load, save and subscribe."""

    def test_load_normalizes_and_recomputes(self, store):
        assert store.get_task(BUILD)["completion"] == 50
        assert store.get_project("1")["completion"] == 75
        assert store.get_task(FRONTEND)["dependencies"] == ["parent"]
        assert store.get_task(FRONTEND)["pic"] == ""

    def test_unknown_project(self, store):
        with pytest.raises(KeyError):
            store.get_project("99")

    def test_listeners_run_after_save(self, store):
        calls = []
        unsubscribe = store.subscribe(calls.append)
        store.rename_project("1", "Web")
        assert calls == [store]
        unsubscribe()
        store.rename_project("1", "Site")
        assert len(calls) == 1

    def test_save_writes_storage(self, store, storage):
        store.rename_project("1", "Web")
        assert storage.save_count == 1
        assert storage.state["projects"][0]["name"] == "Web"


class TestProjects:
    """Tests for project entry points."""

    def test_add_project_takes_next_free_id(self, store):
        project = store.add_project("  Intranet ", pic="Bob")
        assert project["id"] == "3"
        assert project["name"] == "Intranet"
        assert project["pic"] == "Bob"

    def test_add_project_needs_a_name(self, store):
        with pytest.raises(ValueError):
            store.add_project("   ")

    def test_delete_and_undo(self, store):
        store.delete_project("1")
        assert [p["id"] for p in store.projects] == ["2"]
        assert store.undo() is True
        assert [p["id"] for p in store.projects] == ["1", "2"]

    def test_rename_and_undo(self, store):
        store.rename_project("2", "App")
        store.undo()
        assert store.get_project("2")["name"] == "Mobile"

    def test_archive_hides_project(self, store):
        store.archive_project("2")
        assert [p["id"] for p in store.visible_projects()] == ["1"]
        assert len(store.visible_projects(include_archived=True)) == 2
        store.restore_project("2")
        assert len(store.visible_projects()) == 2

    def test_undo_archive(self, store):
        store.archive_project("2")
        store.undo()
        assert store.get_project("2")["is_archived"] is False

    def test_move_project(self, store):
        store.move_project("1", "2", "after")
        assert [p["id"] for p in store.projects] == ["2", "1"]
        store.undo()
        assert [p["id"] for p in store.projects] == ["1", "2"]

    def test_undo_when_empty(self, store):
        assert store.undo() is False


class TestTaskDates:
    """Tests for set_task_dates and apply_drag."""

    def test_parent_move_carries_sub_task(self, store):
        store.set_task_dates(BUILD, "2025-01-20", "2025-01-25")
        assert window(store.get_task(BUILD)) == ("2025-01-20", "2025-01-25")
        assert window(store.get_task(FRONTEND)) == ("2025-01-20", "2025-01-22")

    def test_start_after_due_rejected(self, store):
        with pytest.raises(InvalidDateRange):
            store.set_task_dates(DESIGN, "2025-01-06", "2025-01-05")

    def test_parent_cannot_end_before_sub_task(self, store):
        with pytest.raises(InvalidDateRange):
            store.set_task_dates(BUILD, "2025-01-10", "2025-01-11")
        assert window(store.get_task(BUILD)) == ("2025-01-10", "2025-01-15")

    def test_conflicting_dates_roll_back(self, store, storage):
        with pytest.raises(SchedulingConflict) as excinfo:
            store.set_task_dates(BUILD, "2025-01-04", "2025-01-12")
        assert excinfo.value.conflicts
        assert window(store.get_task(BUILD)) == ("2025-01-10", "2025-01-15")
        assert window(store.get_task(FRONTEND)) == ("2025-01-10", "2025-01-12")
        assert storage.save_count == 0

    def test_sub_task_extends_parent(self, store):
        store.set_task_dates(FRONTEND, "2025-01-10", "2025-01-18")
        assert store.get_task(BUILD)["due"] == "2025-01-18"

    def test_undo_date_change(self, store):
        store.set_task_dates(BUILD, "2025-01-20", "2025-01-25")
        store.undo()
        assert window(store.get_task(BUILD)) == ("2025-01-10", "2025-01-15")
        assert window(store.get_task(FRONTEND)) == ("2025-01-10", "2025-01-12")

    def test_apply_drag_saves(self, store, storage):
        interaction = GanttInteraction(store.get_project("1"), BUILD.path, DragMode.MOVE,
                                       Timeline("2024-12-25", 100, 1000)).begin()
        interaction.update(50)
        store.apply_drag(interaction)
        assert window(store.get_task(BUILD)) == ("2025-01-15", "2025-01-20")
        assert storage.save_count == 1
        store.undo()
        assert window(store.get_task(BUILD)) == ("2025-01-10", "2025-01-15")

    def test_apply_drag_conflict_is_not_saved(self, store, storage):
        interaction = GanttInteraction(store.get_project("1"), BUILD.path, DragMode.MOVE,
                                       Timeline("2024-12-25", 100, 1000)).begin()
        interaction.update(-70)
        with pytest.raises(SchedulingConflict):
            store.apply_drag(interaction)
        assert window(store.get_task(BUILD)) == ("2025-01-10", "2025-01-15")
        assert storage.save_count == 0
        assert store.undo_stack == []


class TestTasks:
    """Tests for the other task entry points."""

    def test_completion_aggregates(self, store):
        store.set_task_completion(DESIGN, 0)
        assert store.get_project("1")["completion"] == 25

    def test_completion_of_parent_is_re_aggregated(self, store):
        store.set_task_completion(BUILD, 100)
        assert store.get_task(BUILD)["completion"] == 50

    def test_unchanged_completion_is_not_recorded(self, store, storage):
        store.set_task_completion(DESIGN, 100)
        store.set_task_completion(DESIGN, 150)
        assert store.undo_stack == []
        assert storage.save_count == 0

    def test_update_task_applies_every_field(self, store):
        store.update_task(DESIGN, "UX", "2025-01-02", "2025-01-06", "Bob", notes="Figma first", completion=40)
        task = store.get_task(DESIGN)
        assert (task["name"], task["pic"], task["notes"], task["completion"]) == ("UX", "Bob", "Figma first", 40)
        assert window(task) == ("2025-01-02", "2025-01-06")
        assert len(store.undo_stack) == 1
        store.undo()
        assert store.get_task(DESIGN)["name"] == "Design"

    def test_update_task_conflict_leaves_every_field(self, store, storage):
        with pytest.raises(SchedulingConflict):
            store.update_task(DESIGN, "UX", "2025-01-09", "2025-01-11", "Alice", notes="Figma first", completion=40)
        task = store.get_task(DESIGN)
        assert (task["name"], task["notes"], task["completion"]) == ("Design", "", 100)
        assert window(task) == ("2025-01-01", "2025-01-05")
        assert storage.save_count == 0
        assert store.undo_stack == []

    def test_update_task_keeps_aggregate_of_parent(self, store):
        store.update_task(BUILD, "Build", "2025-01-10", "2025-01-15", "Alice", completion=0)
        assert store.get_task(BUILD)["completion"] == 50
        assert window(store.get_task(FRONTEND)) == ("2025-01-10", "2025-01-12")

    def test_add_task_inherits_project_pic(self, store):
        ref = store.add_task("1", None, "QA", "2025-01-20", "2025-01-22")
        assert ref == TaskRef("1", (2,))
        assert store.get_task(ref)["pic"] == "Alice"

    def test_add_task_conflict_rejected(self, store):
        with pytest.raises(SchedulingConflict):
            store.add_task("1", None, "Review", "2025-01-02", "2025-01-03")
        assert len(store.get_project("1")["tasks"]) == 2

    def test_add_sub_task_extends_parent(self, store):
        ref = store.add_task("1", BUILD.path, "Backend", "2025-01-10", "2025-01-18", pic="")
        assert ref == TaskRef("1", (1, 1))
        assert store.get_task(ref)["dependencies"] == ["parent"]
        assert store.get_task(BUILD)["due"] == "2025-01-18"

    def test_add_task_bad_dates(self, store):
        with pytest.raises(InvalidDateRange):
            store.add_task("1", None, "QA", "2025-01-22", "2025-01-20")

    def test_delete_task_and_undo(self, store):
        removed = store.delete_task(FRONTEND)
        assert removed["name"] == "Frontend"
        assert store.get_task(BUILD)["sub_tasks"] == []
        store.undo()
        assert store.get_task(FRONTEND)["name"] == "Frontend"

    def test_assign_pic_conflict_reverts(self, store):
        with pytest.raises(SchedulingConflict):
            store.assign_task_pic(FRONTEND, "Alice")
        assert store.get_task(FRONTEND)["pic"] == ""

    def test_assign_pic(self, store):
        store.assign_task_pic(FRONTEND, "Bob")
        assert store.get_task(FRONTEND)["pic"] == "Bob"

    def test_rename_and_notes(self, store):
        store.rename_task(DESIGN, "UX")
        store.set_task_notes(DESIGN, "Figma first")
        assert store.get_task(DESIGN)["name"] == "UX"
        assert store.get_task(DESIGN)["notes"] == "Figma first"
        with pytest.raises(ValueError):
            store.rename_task(DESIGN, "")


class TestMoveTask:
    """Tests for ProjectStore.move_task."""

    def test_reorder_within_project(self, store):
        store.move_task(BUILD, DESIGN, "before")
        assert [t["name"] for t in store.get_project("1")["tasks"]] == ["Build", "Design"]

    def test_drop_on_project_row(self, store):
        landed = store.move_task(FRONTEND, TaskRef("1", ()), "before")
        assert landed == TaskRef("1", (0,))
        assert store.get_task(landed)["name"] == "Frontend"
        assert store.get_task(landed)["dependencies"] == []

    def test_cross_project_move_and_single_undo(self, store):
        landed = store.move_task(BUILD, PROTOTYPE, "after")
        assert landed == TaskRef("2", (1,))
        assert [t["name"] for t in store.get_project("1")["tasks"]] == ["Design"]
        assert store.get_project("2")["completion"] == 25

        store.undo()
        assert [t["name"] for t in store.get_project("1")["tasks"]] == ["Design", "Build"]
        assert [t["name"] for t in store.get_project("2")["tasks"]] == ["Prototype"]

    def test_conflicting_move_restores_both_projects(self, store, storage):
        with pytest.raises(SchedulingConflict):
            store.move_task(PROTOTYPE, DESIGN, "after")
        assert [t["name"] for t in store.get_project("1")["tasks"]] == ["Design", "Build"]
        assert [t["name"] for t in store.get_project("2")["tasks"]] == ["Prototype"]
        assert storage.save_count == 0


class TestPicList:
    """Tests for add_pic / delete_pic."""

    def test_add_pic(self, store):
        assert store.add_pic(" Dana ") is True
        assert store.pic_list == ["Alice", "Bob", "Dana"]

    def test_blank_is_ignored(self, store):
        assert store.add_pic("  ") is False
        assert store.pic_list == ["Alice", "Bob"]

    def test_duplicate_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_pic("Alice")

    def test_delete_assigned_pic_refused(self, store):
        with pytest.raises(ValueError):
            store.delete_pic("Bob")
        assert "Bob" in store.pic_list

    def test_delete_unassigned_pic(self, store):
        store.add_pic("Dana")
        store.delete_pic("Dana")
        assert "Dana" not in store.pic_list


class TestQueries:
    """Tests for the dashboard and calendar queries."""

    def test_filter_by_pic_matches_tasks(self, store):
        assert [p["id"] for p in store.filter_projects(pic="Bob")] == ["2"]
        assert [p["id"] for p in store.filter_projects(pic="Alice")] == ["1", "2"]

    def test_filter_by_overdue(self, store):
        assert len(store.filter_projects(overdue=True, today="2025-02-01")) == 2
        assert store.filter_projects(overdue=True, today="2024-12-01") == []

    def test_filter_by_completion(self, store):
        store.set_task_completion(FRONTEND, 100)
        assert [p["id"] for p in store.filter_projects(completion="completed")] == ["1"]
        assert [p["id"] for p in store.filter_projects(completion="incomplete")] == ["2"]

    def test_filter_reads_stored_completion(self, store):
        store.get_project("1")["completion"] = 100
        assert [p["id"] for p in store.filter_projects(completion="completed")] == ["1"]
        assert store.get_project("1")["completion"] == 100

    def test_filter_skips_archived(self, store):
        store.archive_project("1")
        assert [p["id"] for p in store.filter_projects()] == ["2"]
        assert len(store.filter_projects(include_archived=True)) == 2

    def test_tasks_due_between(self, store):
        due = store.tasks_due_between("2025-01-01", "2025-01-06")
        assert [(p["id"], t["name"]) for p, t in due] == [("1", "Design")]

    def test_project_deadline(self, store):
        assert store.project_deadline("1") == date(2025, 1, 15)


class TestImport:
    """Tests for import_csv and replace_all_from_csv."""

    @staticmethod
    def export(store_projects, pic_list=("Alice", "Bob", "Erin")):
        return serialize_csv(store_projects, list(pic_list))

    def incoming(self):
        replaced = new_project("2", "Mobile v2")
        replaced["tasks"] = [new_task("Release", "2025-02-01", "2025-02-03", completion=100)]
        added = new_project("3", "Docs")
        added["tasks"] = [new_task("Outline", "2025-02-01", "2025-02-02")]
        return [replaced, added]

    def test_merge_by_id(self, store):
        store.import_csv(self.export(self.incoming()))
        assert [p["id"] for p in store.projects] == ["1", "2", "3"]
        assert store.get_project("2")["name"] == "Mobile v2"
        assert store.get_project("2")["completion"] == 100
        assert store.pic_list == ["Alice", "Bob", "Erin"]

    def test_selected_projects_only(self, store):
        store.import_csv(self.export(self.incoming()), project_ids=["3"])
        assert store.get_project("2")["name"] == "Mobile"
        assert store.get_project("3")["name"] == "Docs"

    def test_imported_envelope_is_repaired(self, store):
        parent = new_project("4", "Ops")
        task = new_task("Migrate", "2025-03-01", "2025-03-02")
        task["sub_tasks"] = [new_task("Cutover", "2025-03-01", "2025-03-09", dependencies=["parent"])]
        parent["tasks"] = [task]
        store.import_csv(self.export([parent]))
        assert store.get_project("4")["tasks"][0]["due"] == "2025-03-09"

    def test_malformed_row_changes_nothing(self, store, storage):
        text = self.export(self.incoming()).replace("2025-02-02", "tomorrow")
        with pytest.raises(MalformedImportRow):
            store.import_csv(text)
        assert [p["id"] for p in store.projects] == ["1", "2"]
        assert store.get_project("2")["name"] == "Mobile"
        assert storage.save_count == 0

    def test_replace_all(self, store):
        store.rename_project("1", "Web")
        store.replace_all_from_csv(self.export(self.incoming()))
        assert [p["id"] for p in store.projects] == ["2", "3"]
        assert store.undo_stack == []

    def test_export_includes_archived(self, store):
        store.archive_project("2")
        projects, pic_list = store.export_rows()
        assert [p["id"] for p in projects] == ["1", "2"]
        assert pic_list == ["Alice", "Bob"]


class TestJsonFileStorage:
    """Tests for JsonFileStorage."""

    def test_missing_file_starts_empty(self, tmp_path):
        state = JsonFileStorage(str(tmp_path / "data.json")).load()
        assert state == {"projects": [], "pic_list": DEFAULT_PIC_LIST}

    def test_saved_state_loads_back(self, tmp_path):
        path = str(tmp_path / "data.json")
        store = ProjectStore(JsonFileStorage(path)).load()
        project = store.add_project("Website", pic="Alice")
        store.add_task(project["id"], None, "Design", "2025-01-01", "2025-01-05")

        reloaded = ProjectStore(JsonFileStorage(path)).load()
        assert reloaded.pic_list == DEFAULT_PIC_LIST
        task = reloaded.get_task(TaskRef(project["id"], (0,)))
        assert (task["name"], task["pic"]) == ("Design", "Alice")
        assert window(task) == ("2025-01-01", "2025-01-05")
