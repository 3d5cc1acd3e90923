import collections
import logging
import os

# --- Dates ---

DATE_FORMAT = "%Y-%m-%d"

PARENT_DEPENDENCY = "parent"

# --- Default Data ---

# Seed PIC list for a fresh data file.
DEFAULT_PIC_LIST = ["Alice", "Bob", "Charlie"]

# --- CSV Boundary ---

CSV_COLUMNS = [
    "ProjectID",
    "ProjectName",
    "TaskName",
    "DueDate",
    "SubTaskLevel",
    "ParentTaskID",
    "PIC",
    "Completion",
    "Notes",
    "StartDate",
    "Dependencies",
    "isArchived",
]

PIC_LIST_ROW_LABEL = "PICList"
DEPENDENCY_SEPARATOR = "|"

# --- Persistence ---

DATA_FILE = os.environ.get(
    "PROJECT_TRACKER_DATA",
    os.path.join(os.path.expanduser("~"), ".project_tracker.json"),
)

# --- Gantt Chart ---

TIMELINE_PADDING_DAYS = 7
MIN_DURATION_DAYS = 1
# Fraction of a bar (in days) at each end that acts as a resize handle.
RESIZE_HANDLE_DAYS = 0.5
DEFAULT_TRACK_WIDTH_PX = 1200

# Completion bands, checked in order; first upper bound that is >= completion wins.
completion_colors = collections.OrderedDict([
    (0, '#c0504d'),
    (99, '#4f81bd'),
    (100, '#5cb85c'),
])

overdue_color = '#d9534f'
today_line_color = '#f0ad4e'
archived_color = '#cccccc'

# --- Logging ---

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVEL = getattr(logging, os.environ.get("PROJECT_TRACKER_LOG_LEVEL", "INFO").upper(), logging.INFO)
