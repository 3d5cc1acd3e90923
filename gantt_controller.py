"""
Pointer-drag handling for Gantt task bars.

Each gesture is a GanttInteraction that goes IDLE -> DRAGGING -> COMMITTED or
REVERTED. Pointer moves only update tentative dates held on the interaction;
the project is touched once, in commit(), and is rolled back exactly if the
result double-books a PIC.
"""

import enum
import logging
import math

from config import MIN_DURATION_DAYS
from core_logic import (
    add_days,
    days_between,
    describe_conflicts,
    enforce_envelope,
    extend_ancestors,
    find_overlaps,
    has_overlap,
    latest_sub_task_due,
    parse_local_date,
    propagate_dates,
    recompute_completion,
    restore_dates,
    snapshot_dates,
)
from errors import SchedulingConflict
from task_tree import resolve

logger = logging.getLogger(__name__)


class DragMode(enum.Enum):
    MOVE = "move"
    RESIZE_START = "resize_start"
    RESIZE_END = "resize_end"


class DragState(enum.Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTED = "committed"
    REVERTED = "reverted"


class Timeline:
    """The visible date range of the chart and its width in pixels."""

    def __init__(self, min_date, total_days, track_width_px):
        if track_width_px <= 0:
            raise ValueError("Timeline track width must be positive.")
        self.min_date = parse_local_date(min_date)
        self.total_days = max(1, int(total_days))
        self.track_width_px = track_width_px

    def __repr__(self):
        return f"Timeline({self.min_date}, {self.total_days} days, {self.track_width_px}px)"

    def __eq__(self, other):
        return (isinstance(other, Timeline) and self.min_date == other.min_date
                and self.total_days == other.total_days and self.track_width_px == other.track_width_px)

    @property
    def max_date(self):
        return add_days(self.min_date, self.total_days)

    @property
    def days_per_pixel(self):
        return self.total_days / self.track_width_px

    def date_to_offset(self, d):
        return days_between(self.min_date, d)

    def offset_to_date(self, offset):
        return add_days(self.min_date, int(round(offset)))

    def contains(self, start, end):
        return self.min_date <= parse_local_date(start) and parse_local_date(end) <= self.max_date

    def widened(self, start, end):
        """A timeline that also covers [start, end]; the pixel width stays the same."""
        new_min = min(self.min_date, parse_local_date(start))
        new_max = max(self.max_date, parse_local_date(end))
        return Timeline(new_min, days_between(new_min, new_max), self.track_width_px)


def snap_days(value):
    """Rounds a fractional day count to the nearest whole day, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


class GanttInteraction:
    def __init__(self, project, path, mode, timeline):
        self.project = project
        self.path = tuple(path)
        self.mode = DragMode(mode)
        self.timeline = timeline
        self.state = DragState.IDLE
        self.timeline_rescaled = False
        self.conflicts = []

    def begin(self):
        if self.state is not DragState.IDLE:
            raise RuntimeError(f"Cannot start a drag from state {self.state.name}")
        task = resolve(self.project, self.path)
        self.original_start = parse_local_date(task['start_date'])
        self.original_due = parse_local_date(task['due'])
        self.original_duration = days_between(self.original_start, self.original_due)
        self.latest_sub_due = latest_sub_task_due(task)
        self.days_per_pixel = self.timeline.days_per_pixel
        self.tentative_start = self.original_start
        self.tentative_due = self.original_due
        self.state = DragState.DRAGGING
        return self

    def _require_dragging(self):
        if self.state is not DragState.DRAGGING:
            raise RuntimeError(f"No drag in progress (state {self.state.name})")

    def update(self, pixel_dx):
        """Applies the cumulative pointer offset and returns the tentative (start, due)."""
        self._require_dragging()
        day_delta = snap_days(pixel_dx * self.days_per_pixel)

        if self.mode is DragMode.MOVE:
            start = add_days(self.original_start, day_delta)
            due = add_days(start, self.original_duration)
            if self.latest_sub_due and due < self.latest_sub_due:
                due = self.latest_sub_due
        elif self.mode is DragMode.RESIZE_START:
            due = self.original_due
            start = add_days(self.original_start, day_delta)
            # The clamp only resists shrinking; it never moves start past where it began.
            if day_delta > 0:
                start = max(min(start, add_days(due, -MIN_DURATION_DAYS)), self.original_start)
        else:
            start = self.original_start
            due = add_days(self.original_due, day_delta)
            if day_delta < 0:
                due = min(max(due, add_days(start, MIN_DURATION_DAYS)), self.original_due)
            if self.latest_sub_due and due < self.latest_sub_due:
                due = self.latest_sub_due

        self.tentative_start, self.tentative_due = start, due
        if not self.timeline.contains(start, due):
            self.timeline = self.timeline.widened(start, due)
            self.timeline_rescaled = True
            logger.debug("Timeline widened to %r for '%s'", self.timeline, self.path)
        return start, due

    def commit(self):
        """
        Writes the tentative window into the project.

        The task is propagated to its descendants and its ancestors are widened
        to envelope it, then the whole project is checked for PIC overlaps. On a
        conflict every touched date is restored and SchedulingConflict is raised.
        """
        self._require_dragging()
        task = resolve(self.project, self.path)
        saved = snapshot_dates(self.project['tasks'][self.path[0]])

        propagate_dates(task, self.tentative_due, self.tentative_start)
        enforce_envelope(task)
        extend_ancestors(self.project, self.path)

        if has_overlap(self.project):
            self.conflicts = [(pic, dict(a), dict(b)) for pic, a, b in find_overlaps(self.project)]
            restore_dates(saved)
            self.state = DragState.REVERTED
            logger.info("Drag of '%s' rejected: %s", task['name'], describe_conflicts(self.conflicts))
            raise SchedulingConflict("This change would cause a scheduling conflict. Reverting.", self.conflicts)

        recompute_completion(self.project)
        self.state = DragState.COMMITTED
        return True

    def cancel(self):
        """Abandons the gesture. Safe to call in any state; never touches the project."""
        if self.state in (DragState.IDLE, DragState.DRAGGING):
            self.state = DragState.REVERTED
        return self.state
