from datetime import date, datetime, timedelta
import collections
import logging

from config import DATE_FORMAT, PARENT_DEPENDENCY
from errors import InvalidDateRange

logger = logging.getLogger(__name__)

# --- Date Utilities ---

def parse_local_date(text):
    """Parses a YYYY-MM-DD string into a calendar date (no time of day, no timezone)."""
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text
    try:
        return datetime.strptime(str(text).strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid date format '{text}'. Please use YYYY-MM-DD.")

def format_local_date(d):
    return parse_local_date(d).strftime(DATE_FORMAT)

def days_between(a, b):
    """Whole days from a to b, positive if b is later."""
    return (parse_local_date(b) - parse_local_date(a)).days

def add_days(d, n):
    return parse_local_date(d) + timedelta(days=n)

def validate_task_dates(start_date, due_date):
    """Returns the parsed (start, due) pair or raises InvalidDateRange."""
    try:
        start = parse_local_date(start_date)
        due = parse_local_date(due_date)
    except ValueError:
        raise InvalidDateRange("Invalid date format. Please use YYYY-MM-DD.")
    if start > due:
        raise InvalidDateRange("Start date must be before or equal to due date.")
    return start, due

# --- Completion Aggregation ---

def round_mean(values):
    # Halves round up, matching the completion figures users already have on file.
    values = list(values)
    if not values:
        return 0
    total = sum(values)
    return (2 * total + len(values)) // (2 * len(values))

def clamp_completion(value):
    try:
        value = int(float(value))
    except (TypeError, ValueError):
        value = 0
    return max(0, min(100, value))

def recompute_completion(node):
    """
    Recomputes completion bottom-up for a project or task and returns it.

    Leaf tasks keep their stored value (clamped for the return value only).
    Every task with sub-tasks, and the project itself, is overwritten with the
    rounded mean of its direct children.
    """
    children = node.get('tasks') if 'tasks' in node else node.get('sub_tasks', [])
    if not children:
        if 'tasks' in node:
            node['completion'] = 0
            return 0
        return clamp_completion(node.get('completion', 0))

    node['completion'] = round_mean(recompute_completion(child) for child in children)
    return node['completion']

def recompute_all(projects):
    for project in projects:
        recompute_completion(project)
    return projects

# --- Date Propagation ---

def propagate_dates(task, new_due, new_start):
    """
    Moves a task to a new window and slides its parent-dependent descendants.

    Sub-tasks tagged with the "parent" dependency are re-anchored to the new
    start with their own duration preserved. Untagged sub-tasks keep their
    dates, but the walk still descends into them.
    """
    new_start = parse_local_date(new_start)
    new_due = parse_local_date(new_due)
    task['start_date'] = format_local_date(new_start)
    task['due'] = format_local_date(new_due)

    for sub_task in task.get('sub_tasks', []):
        if PARENT_DEPENDENCY in sub_task.get('dependencies', []):
            duration = days_between(sub_task['start_date'], sub_task['due'])
            sub_task['start_date'] = format_local_date(new_start)
            sub_task['due'] = format_local_date(add_days(new_start, duration))
        propagate_dates(sub_task, sub_task['due'], sub_task['start_date'])

def latest_sub_task_due(task):
    sub_tasks = task.get('sub_tasks', [])
    if not sub_tasks:
        return None
    return max(parse_local_date(st['due']) for st in sub_tasks)

def extend_to_envelope(task):
    """
    Pushes a task's due later so it covers its latest direct sub-task.

    The start is unchanged and the new window is propagated again. Returns True
    if the due moved. A due is never pulled earlier.
    """
    changed = False
    # Re-anchoring can lengthen a child that started before its parent, so settle.
    while True:
        latest = latest_sub_task_due(task)
        if latest is None or latest <= parse_local_date(task['due']):
            return changed
        propagate_dates(task, latest, task['start_date'])
        changed = True

def enforce_envelope(task):
    """Applies extend_to_envelope to a whole subtree, deepest nodes first."""
    changed = False
    for sub_task in task.get('sub_tasks', []):
        changed = enforce_envelope(sub_task) or changed
    return extend_to_envelope(task) or changed

def extend_ancestors(project, path):
    """Re-applies the envelope rule on every ancestor of the task at path, nearest first."""
    path = tuple(path)
    for depth in range(len(path) - 1, 0, -1):
        ancestor = project['tasks'][path[0]]
        for index in path[1:depth]:
            ancestor = ancestor['sub_tasks'][index]
        extend_to_envelope(ancestor)

def snapshot_dates(tasks):
    """Copy-before-mutate record of every (node, start, due) under the given tasks."""
    if isinstance(tasks, dict):
        tasks = [tasks]
    snapshot = []
    stack = list(tasks)
    while stack:
        node = stack.pop()
        snapshot.append((node, node.get('start_date'), node.get('due')))
        stack.extend(node.get('sub_tasks', []))
    return snapshot

def restore_dates(snapshot):
    for node, start_date, due in snapshot:
        node['start_date'] = start_date
        node['due'] = due

# --- Overlap Detection ---

def iter_all_tasks(tasks):
    for task in tasks:
        yield task
        yield from iter_all_tasks(task.get('sub_tasks', []))

def tasks_overlap(task_a, task_b):
    """Touching endpoints (one ends the day the other starts) are not an overlap."""
    start_a, end_a = parse_local_date(task_a['start_date']), parse_local_date(task_a['due'])
    start_b, end_b = parse_local_date(task_b['start_date']), parse_local_date(task_b['due'])
    return start_a < end_b and start_b < end_a

def _tasks_by_pic(project):
    buckets = collections.OrderedDict()
    for task in iter_all_tasks(project.get('tasks', [])):
        if task.get('pic'):
            buckets.setdefault(task['pic'], []).append(task)
    return buckets

def has_overlap(project):
    for tasks in _tasks_by_pic(project).values():
        for i in range(len(tasks) - 1):
            for j in range(i + 1, len(tasks)):
                if tasks_overlap(tasks[i], tasks[j]):
                    return True
    return False

def find_overlaps(project):
    """Lists every conflicting (pic, task_a, task_b) triple in the project."""
    conflicts = []
    for pic, tasks in _tasks_by_pic(project).items():
        for i in range(len(tasks) - 1):
            for j in range(i + 1, len(tasks)):
                if tasks_overlap(tasks[i], tasks[j]):
                    conflicts.append((pic, tasks[i], tasks[j]))
    return conflicts

def describe_conflicts(conflicts):
    return "; ".join(
        f"{pic}: '{a['name']}' ({a['start_date']} - {a['due']}) overlaps '{b['name']}' ({b['start_date']} - {b['due']})"
        for pic, a, b in conflicts
    )

# --- Deadlines ---

def is_task_overdue(task, today=None):
    today = parse_local_date(today or date.today())
    past_due = clamp_completion(task.get('completion', 0)) < 100 and parse_local_date(task['due']) < today
    return past_due or any(is_task_overdue(st, today) for st in task.get('sub_tasks', []))

def is_project_overdue(project, today=None):
    return any(is_task_overdue(task, today) for task in project.get('tasks', []))

def get_project_deadline(project):
    """Latest due date anywhere in the project, or None for an empty project."""
    dues = [parse_local_date(t['due']) for t in iter_all_tasks(project.get('tasks', []))]
    return max(dues) if dues else None
