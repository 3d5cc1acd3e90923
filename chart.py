from datetime import date

from matplotlib.lines import Line2D
from matplotlib.patches import Patch

from config import (
    DEFAULT_TRACK_WIDTH_PX,
    RESIZE_HANDLE_DAYS,
    TIMELINE_PADDING_DAYS,
    completion_colors,
    overdue_color,
    today_line_color,
)
from core_logic import add_days, clamp_completion, days_between, is_task_overdue, parse_local_date
from gantt_controller import DragMode, Timeline
from task_tree import TaskRef, iter_tasks

BAR_HEIGHTS = {0: 0.6, 1: 0.45}
MAX_DATE_LABELS = 10


def timeline_bounds(project, today=None, track_width_px=DEFAULT_TRACK_WIDTH_PX):
    """Timeline covering every task in the project and today, padded on both sides."""
    today = parse_local_date(today or date.today())
    min_date, max_date = today, today
    for _, task in iter_tasks(project):
        min_date = min(min_date, parse_local_date(task['start_date']))
        max_date = max(max_date, parse_local_date(task['due']))

    min_date = add_days(min_date, -TIMELINE_PADDING_DAYS)
    max_date = add_days(max_date, TIMELINE_PADDING_DAYS)
    return Timeline(min_date, days_between(min_date, max_date) or 1, track_width_px)

def completion_color(task, today=None):
    if is_task_overdue(task, today):
        return overdue_color
    completion = clamp_completion(task.get('completion', 0))
    for upper_bound, color in completion_colors.items():
        if completion <= upper_bound:
            return color
    return next(reversed(completion_colors.values()))

def draw_gantt(ax, project, timeline, today=None):
    """
    Draws one bar per task (sub-tasks indented below their parent) and returns
    the chart items used for hit testing: dicts with 'ref', 'patch', 'level'.
    """
    today = parse_local_date(today or date.today())
    ax.clear()
    chart_items = []

    rows = list(iter_tasks(project))
    if not rows:
        ax.text(0.5, 0.5, "No tasks to display.\nAdd a task to get started.",
                horizontalalignment='center', verticalalignment='center', transform=ax.transAxes)
        return chart_items

    y_labels = []
    for y, (path, task) in enumerate(rows):
        level = len(path) - 1
        left = timeline.date_to_offset(task['start_date'])
        width = max(days_between(task['start_date'], task['due']), 0.5)
        patch = ax.barh(y=y, width=width, left=left, height=BAR_HEIGHTS.get(level, 0.4),
                        color=completion_color(task, today), align='center', edgecolor='black',
                        alpha=0.9 if level else 1.0)[0]
        chart_items.append({'ref': TaskRef(project['id'], path), 'patch': patch, 'level': level})
        label = "    " * level + task['name']
        if task.get('pic'):
            label += f" ({task['pic']})"
        y_labels.append(label)

    ax.set_yticks(range(len(rows)))
    ax.set_yticklabels(y_labels)
    ax.invert_yaxis()

    today_offset = timeline.date_to_offset(today)
    if 0 <= today_offset <= timeline.total_days:
        ax.axvline(today_offset, color=today_line_color, linestyle='--', lw=1.5)

    label_count = min(timeline.total_days, MAX_DATE_LABELS)
    step = max(1, round(timeline.total_days / label_count))
    ticks = list(range(0, timeline.total_days + 1, step))
    ax.set_xticks(ticks)
    ax.set_xticklabels([add_days(timeline.min_date, t).strftime('%d-%b') for t in ticks], rotation=90, ha='center')
    ax.set_xlim(0, timeline.total_days)
    ax.grid(axis='x', linestyle='--', alpha=0.6)
    ax.set_title(project['name'])

    legend_elements = [
        Patch(facecolor=completion_colors[0], edgecolor='black', label='Not started'),
        Patch(facecolor=completion_colors[99], edgecolor='black', label='In progress'),
        Patch(facecolor=completion_colors[100], edgecolor='black', label='Completed'),
        Patch(facecolor=overdue_color, edgecolor='black', label='Overdue'),
        Line2D([0], [0], color=today_line_color, linestyle='--', label='Today'),
    ]
    ax.legend(handles=legend_elements, loc='lower right')
    return chart_items

def hit_test(chart_items, xdata, ydata, handle_days=RESIZE_HANDLE_DAYS):
    """Finds the bar under a point and whether the point is on a resize handle."""
    if xdata is None or ydata is None:
        return None, None
    for item in reversed(chart_items):
        patch = item['patch']
        x, w = patch.get_x(), patch.get_width()
        y, h = patch.get_y(), patch.get_height()
        # Handles never cover more than a quarter of the bar so short bars keep a move zone.
        handle = min(handle_days, w / 4)
        if not (y <= ydata <= y + h and x - handle <= xdata <= x + w + handle):
            continue
        if abs(xdata - x) < handle:
            return item, DragMode.RESIZE_START
        if abs(xdata - (x + w)) < handle:
            return item, DragMode.RESIZE_END
        return item, DragMode.MOVE
    return None, None
