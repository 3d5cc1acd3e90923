"""
Application state: the project list, the PIC list and every mutation the UI
can ask for.

Mutations either complete and are saved (listeners are then told the data
changed) or raise one of the rejections from ``errors`` with the model left as
it was.
"""

import copy
import logging

from core_logic import (
    clamp_completion,
    describe_conflicts,
    enforce_envelope,
    extend_ancestors,
    find_overlaps,
    format_local_date,
    get_project_deadline,
    has_overlap,
    is_project_overdue,
    iter_all_tasks,
    latest_sub_task_due,
    parse_local_date,
    propagate_dates,
    recompute_all,
    recompute_completion,
    restore_dates,
    snapshot_dates,
    validate_task_dates,
)
from errors import InvalidDateRange, SchedulingConflict
from importers import parse_csv
import task_tree
from task_tree import TaskRef, new_project, new_task, normalize_project, resolve

logger = logging.getLogger(__name__)


class ProjectStore:
    def __init__(self, storage):
        self.storage = storage
        self.projects = []
        self.pic_list = []
        self.undo_stack = []
        self._listeners = []

    # --- Lifecycle ---

    def load(self):
        state = self.storage.load()
        self.projects = [normalize_project(p) for p in state["projects"]]
        self.pic_list = list(state["pic_list"])
        self.undo_stack = []
        recompute_all(self.projects)
        return self

    def save(self):
        self.storage.save({"projects": self.projects, "pic_list": self.pic_list})
        for callback in list(self._listeners):
            callback(self)

    def subscribe(self, callback):
        """Registers a callback run after every save; returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    # --- Lookup ---

    def get_project(self, project_id):
        for project in self.projects:
            if project["id"] == str(project_id):
                return project
        raise KeyError(f"Project with ID {project_id} not found")

    def _project_index(self, project_id):
        return self.projects.index(self.get_project(project_id))

    def get_task(self, ref):
        return resolve(self.get_project(ref.project_id), ref.path)

    def visible_projects(self, include_archived=False):
        return [p for p in self.projects if include_archived or not p["is_archived"]]

    def filter_projects(self, pic=None, overdue=None, completion=None, include_archived=False, today=None):
        """
        Dashboard filter. completion is 'completed' or 'incomplete'; overdue is
        True/False; pic matches the project or any task in it.
        """
        result = []
        for project in self.projects:
            if project["is_archived"] and not include_archived:
                continue
            if pic and project["pic"] != pic and not any(t["pic"] == pic for t in iter_all_tasks(project["tasks"])):
                continue
            if overdue is not None and is_project_overdue(project, today) != overdue:
                continue
            done = project["completion"] == 100
            if completion == "completed" and not done:
                continue
            if completion == "incomplete" and done:
                continue
            result.append(project)
        return result

    def tasks_due_between(self, start, end):
        """(project, task) pairs with a due date inside [start, end], for the calendar view."""
        start, end = parse_local_date(start), parse_local_date(end)
        return [
            (project, task)
            for project in self.visible_projects()
            for task in iter_all_tasks(project["tasks"])
            if start <= parse_local_date(task["due"]) <= end
        ]

    def project_deadline(self, project_id):
        return get_project_deadline(self.get_project(project_id))

    # --- Undo ---

    def _push_undo(self, action, **data):
        self.undo_stack.append((action, data))

    def _remember_project(self, project):
        self._push_undo("project_snapshot", snapshots=[(project["id"], copy.deepcopy(project["tasks"]))])

    def undo(self):
        if not self.undo_stack:
            return False
        action, data = self.undo_stack.pop()

        if action == "delete_project":
            self.projects.insert(data["index"], data["project"])
        elif action == "delete_task":
            project = self.get_project(data["project_id"])
            task_tree.insert_task(project, data["path"], data["task"])
            recompute_completion(project)
        elif action == "set_archived":
            self.get_project(data["project_id"])["is_archived"] = data["was_archived"]
        elif action == "rename_project":
            self.get_project(data["project_id"])["name"] = data["old_name"]
        elif action == "project_snapshot":
            for project_id, tasks in data["snapshots"]:
                project = self.get_project(project_id)
                project["tasks"][:] = tasks
                recompute_completion(project)
        elif action == "project_order":
            self.projects[:] = data["projects"]

        logger.info("Undid %s", action)
        self.save()
        return True

    # --- Projects ---

    def add_project(self, name, pic=""):
        name = (name or "").strip()
        if not name:
            raise ValueError("Project name cannot be empty.")
        used = {p["id"] for p in self.projects}
        new_id = len(self.projects) + 1
        while str(new_id) in used:
            new_id += 1
        project = new_project(new_id, name, pic)
        self.projects.append(project)
        self.save()
        return project

    def delete_project(self, project_id):
        index = self._project_index(project_id)
        project = self.projects.pop(index)
        self._push_undo("delete_project", project=project, index=index)
        self.save()
        return project

    def rename_project(self, project_id, name):
        project = self.get_project(project_id)
        name = (name or "").strip()
        if name and name != project["name"]:
            self._push_undo("rename_project", project_id=project["id"], old_name=project["name"])
            project["name"] = name
            self.save()
        return project

    def _set_archived(self, project_id, archived):
        project = self.get_project(project_id)
        self._push_undo("set_archived", project_id=project["id"], was_archived=project["is_archived"])
        project["is_archived"] = archived
        self.save()
        return project

    def archive_project(self, project_id):
        return self._set_archived(project_id, True)

    def restore_project(self, project_id):
        return self._set_archived(project_id, False)

    def assign_project_pic(self, project_id, pic):
        project = self.get_project(project_id)
        project["pic"] = pic or ""
        self.save()
        return project

    def move_project(self, source_id, target_id, drop_mode):
        before = list(self.projects)
        task_tree.move_project(self.projects, self._project_index(source_id), self._project_index(target_id), drop_mode)
        self._push_undo("project_order", projects=before)
        self.save()
        return self.projects

    # --- Tasks ---

    def _reject_on_overlap(self, project, saved, task_name):
        if not has_overlap(project):
            return
        conflicts = [(pic, dict(a), dict(b)) for pic, a, b in find_overlaps(project)]
        restore_dates(saved)
        logger.info("Change to '%s' rejected: %s", task_name, describe_conflicts(conflicts))
        raise SchedulingConflict("This change would cause a scheduling conflict. Reverting.", conflicts)

    def set_task_dates(self, ref, start_date, due):
        project = self.get_project(ref.project_id)
        start, due = validate_task_dates(start_date, due)
        task = resolve(project, ref.path)
        latest = latest_sub_task_due(task)
        if latest is not None and due < latest:
            raise InvalidDateRange("Parent task due date cannot be earlier than its sub-tasks.")

        memento = copy.deepcopy(project["tasks"])
        saved = snapshot_dates(project["tasks"][ref.path[0]])
        propagate_dates(task, due, start)
        enforce_envelope(task)
        extend_ancestors(project, ref.path)
        self._reject_on_overlap(project, saved, task["name"])

        self._push_undo("project_snapshot", snapshots=[(project["id"], memento)])
        recompute_completion(project)
        self.save()
        return project

    def apply_drag(self, interaction):
        """Commits a GanttInteraction against this store's project and saves it."""
        memento = copy.deepcopy(interaction.project["tasks"])
        interaction.commit()
        self._push_undo("project_snapshot", snapshots=[(interaction.project["id"], memento)])
        self.save()
        return interaction.project

    def set_task_completion(self, ref, value):
        """Only leaf tasks keep what is set here; a task with sub-tasks is re-aggregated."""
        project = self.get_project(ref.project_id)
        task = resolve(project, ref.path)
        value = clamp_completion(value)
        if task["completion"] == value:
            return project
        self._remember_project(project)
        task["completion"] = value
        recompute_completion(project)
        self.save()
        return project

    def update_task(self, ref, name, start_date, due, pic, notes="", completion=None):
        """
        Applies a whole edit form in one step: either every field lands or the
        task is left as it was. completion is ignored for tasks with sub-tasks.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Task name cannot be empty.")
        project = self.get_project(ref.project_id)
        start, due = validate_task_dates(start_date, due)
        task = resolve(project, ref.path)
        latest = latest_sub_task_due(task)
        if latest is not None and due < latest:
            raise InvalidDateRange("Parent task due date cannot be earlier than its sub-tasks.")

        memento = copy.deepcopy(project["tasks"])
        task["name"] = name
        task["notes"] = notes or ""
        task["pic"] = pic or ""
        if completion is not None and not task["sub_tasks"]:
            task["completion"] = clamp_completion(completion)
        if (format_local_date(start), format_local_date(due)) != (task["start_date"], task["due"]):
            propagate_dates(task, due, start)
            enforce_envelope(task)
            extend_ancestors(project, ref.path)

        if has_overlap(project):
            conflicts = find_overlaps(project)
            project["tasks"][:] = memento
            recompute_completion(project)
            logger.info("Edit of '%s' rejected: %s", name, describe_conflicts(conflicts))
            raise SchedulingConflict("This change would cause a scheduling conflict. Reverting.", conflicts)

        self._push_undo("project_snapshot", snapshots=[(project["id"], memento)])
        recompute_completion(project)
        self.save()
        return task

    def add_task(self, project_id, parent_path, name, start_date, due, notes="", pic=None):
        """New tasks take the project's PIC unless one is given; "" leaves it unassigned."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Task name cannot be empty.")
        project = self.get_project(project_id)
        start, due = validate_task_dates(start_date, due)
        task = new_task(name, start, due, pic=project["pic"] if pic is None else pic, notes=notes)

        memento = copy.deepcopy(project["tasks"])
        path = task_tree.add_task(project, parent_path, task)
        if has_overlap(project):
            conflicts = find_overlaps(project)
            project["tasks"][:] = memento
            raise SchedulingConflict("The new task would cause a scheduling conflict.", conflicts)

        self._push_undo("project_snapshot", snapshots=[(project["id"], memento)])
        recompute_completion(project)
        self.save()
        return TaskRef(project["id"], path)

    def delete_task(self, ref):
        project = self.get_project(ref.project_id)
        removed = task_tree.remove_task(project, ref.path)
        self._push_undo("delete_task", project_id=project["id"], path=ref.path, task=removed)
        recompute_completion(project)
        self.save()
        return removed

    def move_task(self, source_ref, target_ref, drop_mode):
        """
        Drag/drop of a task row. target_ref may have an empty path to mean the
        project row itself. Cross-project moves carry the task to the target
        project.
        """
        source_project = self.get_project(source_ref.project_id)
        target_project = self.get_project(target_ref.project_id)
        target_path = target_ref.path or None
        involved = [source_project] if source_project is target_project else [source_project, target_project]
        memento = [(project, copy.deepcopy(project["tasks"])) for project in involved]

        landed = task_tree.move_task_between_projects(
            source_project, source_ref.path, target_project, target_path, drop_mode)

        if has_overlap(target_project):
            conflicts = find_overlaps(target_project)
            for project, tasks in memento:
                project["tasks"][:] = tasks
                recompute_completion(project)
            raise SchedulingConflict("This move would cause a scheduling conflict. Reverting.", conflicts)

        self._push_undo("project_snapshot", snapshots=[(project["id"], tasks) for project, tasks in memento])
        self.save()
        return TaskRef(target_project["id"], landed)

    def rename_task(self, ref, name):
        name = (name or "").strip()
        if not name:
            raise ValueError("Task name cannot be empty.")
        self.get_task(ref)["name"] = name
        self.save()

    def set_task_notes(self, ref, notes):
        self.get_task(ref)["notes"] = notes or ""
        self.save()

    def assign_task_pic(self, ref, pic):
        project = self.get_project(ref.project_id)
        task = resolve(project, ref.path)
        previous = task["pic"]
        task["pic"] = pic or ""
        if has_overlap(project):
            conflicts = find_overlaps(project)
            task["pic"] = previous
            raise SchedulingConflict(f"{pic} is already busy during '{task['name']}'.", conflicts)
        self.save()
        return task

    # --- PIC List ---

    def add_pic(self, name):
        name = (name or "").strip()
        if not name:
            return False
        if name in self.pic_list:
            raise ValueError("This Person-in-Charge already exists.")
        self.pic_list.append(name)
        self.save()
        return True

    def delete_pic(self, name):
        assigned = any(
            project["pic"] == name or any(t["pic"] == name for t in iter_all_tasks(project["tasks"]))
            for project in self.projects
        )
        if assigned:
            raise ValueError(f'Cannot delete "{name}" because it is assigned to one or more projects or tasks.')
        self.pic_list.remove(name)
        self.save()

    # --- Import / Export ---

    def _prepare_import(self, text):
        projects, pic_list = parse_csv(text)
        for project in projects:
            for task in project["tasks"]:
                enforce_envelope(task)
            recompute_completion(project)
            if has_overlap(project):
                logger.warning("Imported project '%s' has PIC conflicts: %s",
                               project["name"], describe_conflicts(find_overlaps(project)))
        return projects, pic_list

    def import_csv(self, text, project_ids=None):
        """
        Merges projects from a CSV export by id: existing ids are replaced, new
        ids appended. project_ids limits the merge to a selection. A malformed
        row aborts the whole import before anything is touched.
        """
        projects, pic_list = self._prepare_import(text)
        if project_ids is not None:
            wanted = {str(i) for i in project_ids}
            projects = [p for p in projects if p["id"] in wanted]

        for incoming in projects:
            try:
                index = self._project_index(incoming["id"])
            except KeyError:
                self.projects.append(incoming)
            else:
                self.projects[index] = incoming
        if pic_list is not None:
            self.pic_list = pic_list

        logger.info("Imported %d projects", len(projects))
        self.save()
        return projects

    def replace_all_from_csv(self, text):
        projects, pic_list = self._prepare_import(text)
        self.projects = projects
        if pic_list is not None:
            self.pic_list = pic_list
        self.undo_stack = []
        logger.info("Replaced project list with %d imported projects", len(projects))
        self.save()
        return projects

    def export_rows(self):
        """The state handed to the CSV writer: every project, archived included."""
        return self.projects, self.pic_list
