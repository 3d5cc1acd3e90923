import functools
import io
import logging

import pandas as pd

from config import CSV_COLUMNS, DEPENDENCY_SEPARATOR, PARENT_DEPENDENCY, PIC_LIST_ROW_LABEL
from core_logic import clamp_completion, format_local_date, parse_local_date, round_mean
from errors import MalformedImportRow
from task_tree import new_project, new_task, normalize_project

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("ProjectID", "TaskName", "DueDate")


def _field(row, name):
    return str(row.get(name, "")).strip()

def _read_frame(text):
    """
    Reads an export into (DataFrame, pic_list), taking the PICList row out of
    the frame. pandas handles quoting, so multi-line Notes survive intact.
    """
    if not text.strip():
        return None, None

    overflow = []

    def pic_list_overflow(fields):
        # A PICList row longer than the header arrives here instead of the frame.
        if fields and str(fields[0]).strip() == PIC_LIST_ROW_LABEL:
            overflow.append(fields)
            return None
        raise MalformedImportRow(f"Too many fields in CSV row: {','.join(map(str, fields))}")

    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skip_blank_lines=True,
                         engine="python", on_bad_lines=pic_list_overflow)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MalformedImportRow(f"Could not read CSV: {e}")
    df = df.fillna("")
    df.columns = [str(c).strip() for c in df.columns]
    if df.columns[0] == PIC_LIST_ROW_LABEL:
        # Nothing but a PICList row.
        return None, [c for c in df.columns[1:] if c and not c.startswith("Unnamed:")]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise MalformedImportRow(f"Missing required column(s): {', '.join(missing)}")

    pic_list = None
    is_pic_row = df["ProjectID"].str.strip() == PIC_LIST_ROW_LABEL
    if overflow:
        pic_list = [str(name).strip() for name in overflow[-1][1:] if str(name).strip()]
    elif is_pic_row.any():
        row = df[is_pic_row].iloc[-1]
        pic_list = [str(name).strip() for name in row.iloc[1:] if str(name).strip()]
    return df[~is_pic_row], pic_list

def parse_csv(text):
    """
    Parses an exported CSV into (projects, pic_list).

    Rows are grouped into projects by consecutive ProjectID. SubTaskLevel 0
    rows are top-level tasks; a level N row is attached to the most recent
    level N-1 row. Any unparseable row aborts the whole import. pic_list is
    None when the file has no PICList row.
    """
    df, pic_list = _read_frame(text)
    if df is None:
        return [], pic_list

    projects = []
    current_project = None
    stack = []

    for index, row in df.iterrows():
        row_number = index + 2
        field = functools.partial(_field, row)

        project_id = field("ProjectID")
        task_name = field("TaskName")

        if current_project is None or current_project["id"] != project_id:
            current_project = new_project(project_id, field("ProjectName"), pic="" if task_name else field("PIC"))
            current_project["is_archived"] = field("isArchived").lower() == "true"
            projects.append(current_project)
            stack = []

        if not task_name:
            continue

        due_text = field("DueDate")
        start_text = field("StartDate") or due_text
        try:
            due = parse_local_date(due_text)
        except ValueError:
            raise MalformedImportRow(f"Invalid due date in CSV row {row_number}: '{due_text}'", row_number)
        try:
            start = parse_local_date(start_text)
        except ValueError:
            raise MalformedImportRow(f"Invalid start date in CSV row {row_number}: '{start_text}'", row_number)
        if start > due:
            logger.warning("Start date %s after due date %s for task '%s'; using due date as start.",
                           start_text, due_text, task_name)
            start = due

        try:
            level = int(field("SubTaskLevel") or 0)
        except ValueError:
            raise MalformedImportRow(f"Invalid SubTaskLevel in CSV row {row_number}: '{field('SubTaskLevel')}'", row_number)

        deps = [d for d in field("Dependencies").split(DEPENDENCY_SEPARATOR) if d]
        task = new_task(task_name, start, due, pic=field("PIC"), notes=field("Notes"),
                        dependencies=deps, completion=clamp_completion(field("Completion") or 0))

        if level <= 0:
            current_project["tasks"].append(task)
            stack = [task]
        elif level <= len(stack):
            if not task["dependencies"]:
                task["dependencies"] = [PARENT_DEPENDENCY]
            stack[level - 1]["sub_tasks"].append(task)
            stack = stack[:level] + [task]
        else:
            raise MalformedImportRow(f"Sub-task '{task_name}' in CSV row {row_number} has no parent task", row_number)

    for project in projects:
        normalize_project(project)
    return projects, pic_list

def preview_csv(text):
    """Overview-only read for the import screen: one summary per project, no date checks."""
    df, _ = _read_frame(text)
    if df is None:
        return []

    previews = []
    for project_id, group in df.groupby("ProjectID", sort=False):
        first = group.iloc[0]
        task_rows = group[group["TaskName"].str.strip() != ""]
        pics = [p for p in group.get("PIC", pd.Series(dtype=str)) if p]
        previews.append({
            "id": str(project_id),
            "name": first.get("ProjectName", ""),
            "pic": pics[0] if pics else "",
            "is_archived": str(first.get("isArchived", "")).lower() == "true",
            "completion": round_mean(clamp_completion(c or 0) for c in task_rows.get("Completion", [])),
            "task_count": len(task_rows),
        })
    return previews

def _task_rows(project, tasks, level, top_index):
    rows = []
    for i, task in enumerate(tasks):
        parent_index = top_index if level > 0 else i
        rows.append({
            "ProjectID": project["id"],
            "ProjectName": project["name"],
            "TaskName": task["name"],
            "DueDate": format_local_date(task["due"]),
            "SubTaskLevel": level,
            "ParentTaskID": parent_index if level > 0 else "",
            "PIC": task.get("pic", ""),
            "Completion": clamp_completion(task.get("completion", 0)),
            "Notes": task.get("notes", ""),
            "StartDate": format_local_date(task["start_date"]),
            "Dependencies": DEPENDENCY_SEPARATOR.join(task.get("dependencies", [])),
            "isArchived": "true" if project.get("is_archived") else "false",
        })
        rows.extend(_task_rows(project, task.get("sub_tasks", []), level + 1, parent_index))
    return rows

def serialize_csv(projects, pic_list):
    rows = []
    for project in projects:
        if project.get("tasks"):
            rows.extend(_task_rows(project, project["tasks"], 0, None))
        else:
            row = dict.fromkeys(CSV_COLUMNS, "")
            row.update({
                "ProjectID": project["id"],
                "ProjectName": project["name"],
                "SubTaskLevel": 0,
                "PIC": project.get("pic", ""),
                "Completion": project.get("completion", 0),
                "isArchived": "true" if project.get("is_archived") else "false",
            })
            rows.append(row)

    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    csv_text = df.to_csv(index=False, lineterminator="\n")
    return csv_text + f"{PIC_LIST_ROW_LABEL},{','.join(pic_list)}\n"

def read_csv_file(filepath):
    with open(filepath, 'r', encoding='utf-8') as f:
        return parse_csv(f.read())

def write_csv_file(filepath, projects, pic_list):
    with open(filepath, 'w', encoding='utf-8', newline='') as f:
        f.write(serialize_csv(projects, pic_list))
