"""
Project -> Task -> Sub-task tree: node construction, addressing and structural edits.

Nodes are plain dicts so they serialize straight to JSON. A node is addressed
by a TaskRef: the owning project's id plus the path of child indices leading
to it, e.g. ``(2,)`` for the third top-level task or ``(2, 0)`` for its first
sub-task.
"""

import collections
import copy
import logging

from config import PARENT_DEPENDENCY
from core_logic import (
    format_local_date,
    extend_ancestors,
    enforce_envelope,
    recompute_completion,
)
from errors import StructuralError

logger = logging.getLogger(__name__)

DROP_MODES = ("before", "after", "into")


class TaskRef(collections.namedtuple("TaskRef", ["project_id", "path"])):
    __slots__ = ()

    def __new__(cls, project_id, path):
        return super().__new__(cls, project_id, tuple(path))

    @property
    def is_top_level(self):
        return len(self.path) == 1

    @property
    def index(self):
        return self.path[-1]

    @property
    def parent_ref(self):
        if self.is_top_level:
            return None
        return TaskRef(self.project_id, self.path[:-1])

    def child(self, index):
        return TaskRef(self.project_id, self.path + (index,))


# --- Node Construction ---

def new_project(project_id, name, pic=""):
    return {
        "id": str(project_id),
        "name": name,
        "pic": pic or "",
        "completion": 0,
        "is_archived": False,
        "tasks": [],
    }

def new_task(name, start_date, due, pic="", notes="", dependencies=None, completion=0):
    return {
        "name": name,
        "start_date": format_local_date(start_date),
        "due": format_local_date(due),
        "completion": completion,
        "pic": pic or "",
        "notes": notes or "",
        "dependencies": list(dependencies or []),
        "sub_tasks": [],
    }

def _normalize_task(task, nested):
    task.setdefault("sub_tasks", [])
    task["notes"] = task.get("notes") or ""
    task["pic"] = task.get("pic") or ""
    task["completion"] = task.get("completion") or 0
    task["start_date"] = task.get("start_date") or task["due"]
    if task.get("dependencies") is None:
        task["dependencies"] = [PARENT_DEPENDENCY] if nested else []
    task.pop("status", None)
    for sub_task in task["sub_tasks"]:
        _normalize_task(sub_task, nested=True)

def normalize_project(project):
    """Fills in defaults on a project loaded from disk or an import."""
    project["id"] = str(project.get("id", ""))
    project["pic"] = project.get("pic") or ""
    project["completion"] = project.get("completion") or 0
    project["is_archived"] = bool(project.get("is_archived", False))
    project.setdefault("tasks", [])
    for task in project["tasks"]:
        _normalize_task(task, nested=False)
    return project

# --- Navigation ---

def _check_index(items, index, path):
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(items):
        raise StructuralError(f"No task at path {tuple(path)}")

def resolve(project, path):
    path = tuple(path)
    if not path:
        raise StructuralError("Empty task path")
    items = project["tasks"]
    node = None
    for index in path:
        _check_index(items, index, path)
        node = items[index]
        items = node["sub_tasks"]
    return node

def get_parent(project, path):
    """The task owning the node at path, or None for a top-level task."""
    path = tuple(path)
    if len(path) <= 1:
        resolve(project, path)
        return None
    return resolve(project, path[:-1])

def sibling_list(project, path):
    parent = get_parent(project, path)
    return project["tasks"] if parent is None else parent["sub_tasks"]

def iter_tasks(project):
    """Depth-first walk yielding (path, task)."""
    def walk(tasks, prefix):
        for i, task in enumerate(tasks):
            path = prefix + (i,)
            yield path, task
            yield from walk(task.get("sub_tasks", []), path)
    return walk(project.get("tasks", []), ())

def find_path(project, node):
    for path, task in iter_tasks(project):
        if task is node:
            return path
    raise StructuralError(f"Task '{node.get('name')}' is not part of project {project.get('id')}")

# --- Structural Edits ---

def add_task(project, parent_path, task):
    """
    Appends a task at the top level (parent_path None) or as the last sub-task.
    Sub-tasks default to following their parent. Returns the new task's path.
    """
    if parent_path is None:
        project["tasks"].append(task)
        return (len(project["tasks"]) - 1,)

    parent = resolve(project, parent_path)
    if not task.get("dependencies"):
        task["dependencies"] = [PARENT_DEPENDENCY]
    parent["sub_tasks"].append(task)
    path = tuple(parent_path) + (len(parent["sub_tasks"]) - 1,)
    extend_ancestors(project, path)
    return path

def insert_task(project, path, task):
    """Puts a task back at an exact path (used by undo)."""
    path = tuple(path)
    siblings = project["tasks"] if len(path) == 1 else resolve(project, path[:-1])["sub_tasks"]
    if not 0 <= path[-1] <= len(siblings):
        raise StructuralError(f"Cannot insert at path {path}")
    siblings.insert(path[-1], task)
    extend_ancestors(project, path)

def remove_task(project, path):
    siblings = sibling_list(project, path)
    removed = siblings.pop(path[-1])
    if len(path) > 1:
        extend_ancestors(project, tuple(path[:-1]) + (0,))
    return removed

def _landing_dependencies(task, nested):
    deps = [d for d in task.get("dependencies", []) if d != PARENT_DEPENDENCY]
    task["dependencies"] = [PARENT_DEPENDENCY] if nested else deps

def _place(source_project, source_path, target_project, target_path, drop_mode):
    if drop_mode not in DROP_MODES:
        raise StructuralError(f"Unknown drop mode '{drop_mode}'")
    source_path = tuple(source_path)
    source_task = resolve(source_project, source_path)

    if target_path is None:
        # Dropped on a project row: becomes the first top-level task.
        if drop_mode == "into":
            raise StructuralError("A task can only be dropped into another task")
        target_task = None
    else:
        target_path = tuple(target_path)
        if source_project is target_project and target_path[:len(source_path)] == source_path:
            raise StructuralError("Cannot move a task relative to itself or its own sub-tasks")
        target_task = resolve(target_project, target_path)

    sibling_list(source_project, source_path).pop(source_path[-1])

    if target_task is None:
        target_project["tasks"].insert(0, source_task)
        _landing_dependencies(source_task, nested=False)
        return (0,)

    new_target_path = find_path(target_project, target_task)
    if drop_mode == "into":
        target_task["sub_tasks"].append(source_task)
        source_task["dependencies"] = [PARENT_DEPENDENCY]
        landed = new_target_path + (len(target_task["sub_tasks"]) - 1,)
    else:
        siblings = sibling_list(target_project, new_target_path)
        insert_at = new_target_path[-1] + (1 if drop_mode == "after" else 0)
        siblings.insert(insert_at, source_task)
        landed = new_target_path[:-1] + (insert_at,)
        _landing_dependencies(source_task, nested=len(landed) > 1)

    enforce_envelope(source_task)
    extend_ancestors(target_project, landed)
    return landed

def move_task(project, source_path, target_path, drop_mode):
    """
    Moves a task before/after another node or into it as its last sub-task.

    A failure at any point restores the project's tree to its pre-move state
    before the error is re-raised. Returns the moved task's new path.
    """
    return move_task_between_projects(project, source_path, project, target_path, drop_mode)

def move_task_between_projects(source_project, source_path, target_project, target_path, drop_mode):
    snapshots = [(source_project, copy.deepcopy(source_project["tasks"]))]
    if target_project is not source_project:
        snapshots.append((target_project, copy.deepcopy(target_project["tasks"])))

    try:
        landed = _place(source_project, source_path, target_project, target_path, drop_mode)
    except Exception:
        for project, tasks in snapshots:
            project["tasks"][:] = tasks
        raise

    for project, _ in snapshots:
        recompute_completion(project)
    logger.debug("Moved task %s -> %s (%s) in project %s", source_path, landed, drop_mode, target_project["id"])
    return landed

def move_project(projects, source_index, target_index, drop_mode):
    """Reorders the project list itself; no dates or completions change."""
    if drop_mode not in ("before", "after"):
        raise StructuralError(f"Projects can only be dropped before or after another project, not '{drop_mode}'")
    _check_index(projects, source_index, (source_index,))
    _check_index(projects, target_index, (target_index,))
    if source_index == target_index:
        return source_index

    moved = projects.pop(source_index)
    insert_at = target_index + (1 if drop_mode == "after" else 0)
    if source_index < insert_at:
        insert_at -= 1
    projects.insert(insert_at, moved)
    return insert_at
