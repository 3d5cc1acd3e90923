import tkinter as tk
from tkinter import ttk, filedialog, messagebox
from datetime import date
import logging

from matplotlib.figure import Figure
from matplotlib.backends.backend_tkagg import FigureCanvasTkAgg

# Local imports
import config
from chart import draw_gantt, hit_test, timeline_bounds
from core_logic import days_between, describe_conflicts, format_local_date, is_task_overdue
from dialogs import ImportSelectionDialog, ManagePICsDialog, ProjectDialog, TaskDialog
from errors import SchedulingConflict, TrackerError
from gantt_controller import DragMode, GanttInteraction
from importers import preview_csv, write_csv_file
from project_store import ProjectStore
from storage import JsonFileStorage
from task_tree import TaskRef

logger = logging.getLogger(__name__)

ALL_FILTER = "All"


def project_iid(project_id):
    return f"p:{project_id}"

def task_iid(ref):
    return f"t:{ref.project_id}:{'.'.join(str(i) for i in ref.path)}"

def parse_iid(iid):
    """Maps a tree row id back to ('project', id) or ('task', TaskRef)."""
    kind, _, rest = iid.partition(":")
    if kind == "p":
        return "project", rest
    project_id, _, path = rest.rpartition(":")
    return "task", TaskRef(project_id, [int(i) for i in path.split(".")])


class ProjectTrackerApp(tk.Tk):
    def __init__(self, store):
        super().__init__()
        self.title("Project Tracker")
        self.geometry("1800x800")

        # --- App State ---
        self.store = store
        self._unsubscribe = self.store.subscribe(lambda _store: self.refresh())

        # --- UI State ---
        self.controls_visible = True
        self.current_project_id = None
        self.chart_items = []
        self.timeline = None
        self._interaction = None
        self._drag_data = None
        self._tree_drag_data = {}
        self.pic_filter_var = tk.StringVar(value=ALL_FILTER)
        self.completion_filter_var = tk.StringVar(value=ALL_FILTER)
        self.overdue_only_var = tk.BooleanVar(value=False)
        self.show_archived_var = tk.BooleanVar(value=False)

        # --- Menu Bar ---
        self.create_menu()

        # --- Main Layout ---
        self.main_frame = ttk.Frame(self)
        self.main_frame.pack(side=tk.TOP, fill=tk.BOTH, expand=True)

        self.control_frame = ttk.Frame(self.main_frame, width=700, padding="10")
        self.control_frame.pack(side=tk.LEFT, fill=tk.Y, expand=False)

        self.separator_frame = ttk.Frame(self.main_frame, width=20)
        self.separator_frame.pack(side=tk.LEFT, fill=tk.Y)
        self.toggle_button = ttk.Button(self.separator_frame, text="<", command=self.toggle_controls, width=2)
        self.toggle_button.pack(pady=20)

        self.chart_frame = ttk.Frame(self.main_frame)
        self.chart_frame.pack(side=tk.RIGHT, fill=tk.BOTH, expand=True)

        # --- Initialization ---
        self.setup_chart_canvas()
        self.build_controls()
        self.connect_drag_events()
        self.bind_all("<Control-z>", lambda e: self.undo())
        self.refresh()

    # --- Chart Dragging ---

    def connect_drag_events(self):
        self.canvas.mpl_connect('button_press_event', self.on_press)
        self.canvas.mpl_connect('motion_notify_event', self.on_motion)
        self.canvas.mpl_connect('button_release_event', self.on_release)
        self.canvas.mpl_connect('axes_leave_event', self.on_leave)
        self.canvas.mpl_connect('figure_leave_event', self.on_leave)

    def on_press(self, event):
        if event.inaxes != self.ax or self.timeline is None:
            return
        item, mode = hit_test(self.chart_items, event.xdata, event.ydata)
        if item is None:
            return

        if event.dblclick:
            self.edit_task(item['ref'])
            return

        project = self.store.get_project(item['ref'].project_id)
        self._interaction = GanttInteraction(project, item['ref'].path, mode, self.timeline).begin()
        self._drag_data = {"item": item, "press_x": event.x}
        cursor = "hand2" if mode is DragMode.MOVE else "sb_h_double_arrow"
        self.canvas.get_tk_widget().config(cursor=cursor)

    def on_motion(self, event):
        if self._interaction is None:
            return
        start, due = self._interaction.update(event.x - self._drag_data["press_x"])

        # Patches stay in the coordinates of the drawn timeline.
        patch = self._drag_data["item"]["patch"]
        patch.set_x(self.timeline.date_to_offset(start))
        patch.set_width(max(days_between(start, due), 0.5))
        if self._interaction.timeline_rescaled:
            left = self.timeline.date_to_offset(self._interaction.timeline.min_date)
            self.ax.set_xlim(left, left + self._interaction.timeline.total_days)
        self.status_var.set(f"{format_local_date(start)} to {format_local_date(due)}")
        self.canvas.draw_idle()

    def on_release(self, event):
        interaction, self._interaction = self._interaction, None
        self.canvas.get_tk_widget().config(cursor="")
        if interaction is None:
            return
        self.status_var.set("")
        if (interaction.tentative_start, interaction.tentative_due) == (interaction.original_start, interaction.original_due):
            interaction.cancel()
            self.draw_chart()
            return
        try:
            self.store.apply_drag(interaction)
        except SchedulingConflict as e:
            messagebox.showerror("Scheduling Conflict", f"{e}\n\n{describe_conflicts(e.conflicts)}")
            self.draw_chart()

    def on_leave(self, event):
        """Pointer left the chart mid-drag: drop the gesture, the project is untouched."""
        if self._interaction is None:
            return
        self._interaction.cancel()
        self._interaction = None
        self._drag_data = None
        self.canvas.get_tk_widget().config(cursor="")
        self.status_var.set("")
        self.draw_chart()

    def toggle_controls(self):
        if self.controls_visible:
            self.control_frame.pack_forget()
            self.toggle_button.config(text=">")
            self.controls_visible = False
        else:
            self.control_frame.pack(side=tk.LEFT, fill=tk.Y, expand=False, before=self.separator_frame)
            self.toggle_button.config(text="<")
            self.controls_visible = True

    def create_menu(self):
        menubar = tk.Menu(self)
        self.config(menu=menubar)

        file_menu = tk.Menu(menubar, tearoff=0)
        menubar.add_cascade(label="File", menu=file_menu)
        file_menu.add_command(label="Open Data File...", command=self.open_data_file)
        file_menu.add_command(label="Save Data File As...", command=self.save_data_file_as)
        file_menu.add_separator()
        file_menu.add_command(label="Import Projects from CSV...", command=self.import_csv)
        file_menu.add_command(label="Replace All from CSV...", command=self.replace_all_from_csv)
        file_menu.add_command(label="Export Projects to CSV...", command=self.export_csv)
        file_menu.add_command(label="Export Chart...", command=self.export_chart)
        file_menu.add_separator()
        file_menu.add_command(label="Exit", command=self.quit)

        edit_menu = tk.Menu(menubar, tearoff=0)
        menubar.add_cascade(label="Edit", menu=edit_menu)
        edit_menu.add_command(label="Undo", accelerator="Ctrl+Z", command=self.undo)
        edit_menu.add_separator()
        edit_menu.add_command(label="Manage PICs...", command=self.manage_pics)

    def setup_chart_canvas(self):
        self.figure = Figure(figsize=(18, 4), dpi=100)
        self.ax = self.figure.add_subplot(111)
        self.canvas = FigureCanvasTkAgg(self.figure, self.chart_frame)
        self.canvas.get_tk_widget().pack(side=tk.TOP, fill=tk.BOTH, expand=True)
        self.status_var = tk.StringVar()
        ttk.Label(self.chart_frame, textvariable=self.status_var, anchor="w").pack(side=tk.BOTTOM, fill=tk.X)

    def update_window_title(self):
        filepath = getattr(self.store.storage, "filepath", None)
        if filepath:
            self.title(f"Project Tracker - {filepath}")
        else:
            self.title("Project Tracker")

    # --- Files ---

    def _switch_store(self, store):
        self._unsubscribe()
        self.store = store
        self._unsubscribe = self.store.subscribe(lambda _store: self.refresh())
        self.current_project_id = None
        self.refresh()

    def open_data_file(self):
        filepath = filedialog.askopenfilename(
            filetypes=[("Project Tracker Data", "*.json"), ("All Files", "*.*")]
        )
        if not filepath:
            return
        try:
            store = ProjectStore(JsonFileStorage(filepath)).load()
        except (OSError, ValueError) as e:
            messagebox.showerror("Open Error", f"Could not open {filepath}: {e}")
            return
        logger.info("Opened data file %s", filepath)
        self._switch_store(store)

    def save_data_file_as(self):
        filepath = filedialog.asksaveasfilename(
            defaultextension=".json",
            filetypes=[("Project Tracker Data", "*.json"), ("All Files", "*.*")]
        )
        if not filepath:
            return
        self.store.storage = JsonFileStorage(filepath)
        self.store.save()

    def _read_csv_text(self, title):
        filepath = filedialog.askopenfilename(
            title=title, filetypes=[("CSV Files", "*.csv"), ("All Files", "*.*")]
        )
        if not filepath:
            return None
        with open(filepath, 'r', encoding='utf-8') as f:
            return f.read()

    def import_csv(self):
        text = self._read_csv_text("Import Projects from CSV")
        if text is None:
            return
        try:
            previews = preview_csv(text)
            if not previews:
                messagebox.showinfo("Import", "The file contains no projects.")
                return
            dialog = ImportSelectionDialog(self, "Import Projects", previews)
            if dialog.result:
                imported = self.store.import_csv(text, dialog.result)
                messagebox.showinfo("Import Successful", f"Imported {len(imported)} project(s).")
        except TrackerError as e:
            messagebox.showerror("Import Error", f"Nothing was imported.\n\n{e}")

    def replace_all_from_csv(self):
        text = self._read_csv_text("Replace All from CSV")
        if text is None:
            return
        if not messagebox.askyesno("Replace All", "Replace every project with the contents of this file? "
                                                  "This cannot be undone."):
            return
        try:
            self.store.replace_all_from_csv(text)
        except TrackerError as e:
            messagebox.showerror("Import Error", f"Nothing was imported.\n\n{e}")

    def export_csv(self):
        filepath = filedialog.asksaveasfilename(
            title="Export Projects to CSV",
            defaultextension=".csv",
            filetypes=[("CSV Files", "*.csv"), ("All Files", "*.*")]
        )
        if not filepath:
            return
        projects, pic_list = self.store.export_rows()
        write_csv_file(filepath, projects, pic_list)
        messagebox.showinfo("Export Successful", f"Projects successfully saved to\n{filepath}")

    def export_chart(self):
        if not self.chart_items:
            messagebox.showinfo("Export Chart", "There is nothing to export.")
            return

        filepath = filedialog.asksaveasfilename(
            title="Export Gantt Chart",
            defaultextension=".png",
            filetypes=[
                ("PNG Image", "*.png"),
                ("PDF Document", "*.pdf"),
                ("SVG Vector Image", "*.svg"),
                ("All Files", "*.*")
            ]
        )
        if not filepath:
            return

        try:
            self.figure.savefig(filepath, bbox_inches='tight', dpi=300)
            messagebox.showinfo("Export Successful", f"Chart successfully saved to\n{filepath}")
        except (OSError, ValueError) as e:
            messagebox.showerror("Export Error", f"An error occurred while exporting the chart: {e}")

    # --- Controls ---

    def build_controls(self):
        for widget in self.control_frame.winfo_children():
            widget.destroy()

        filter_frame = ttk.LabelFrame(self.control_frame, text="Filters", padding="10")
        filter_frame.pack(fill=tk.X, pady=5)

        ttk.Label(filter_frame, text="PIC:").grid(row=0, column=0, sticky="w")
        self.pic_filter_cb = ttk.Combobox(filter_frame, textvariable=self.pic_filter_var, state="readonly", width=20)
        self.pic_filter_cb.grid(row=0, column=1, sticky="w", pady=2)
        self.pic_filter_cb.bind("<<ComboboxSelected>>", lambda e: self.refresh())

        ttk.Label(filter_frame, text="Completion:").grid(row=1, column=0, sticky="w")
        completion_cb = ttk.Combobox(filter_frame, textvariable=self.completion_filter_var, state="readonly",
                                     values=[ALL_FILTER, "completed", "incomplete"], width=20)
        completion_cb.grid(row=1, column=1, sticky="w", pady=2)
        completion_cb.bind("<<ComboboxSelected>>", lambda e: self.refresh())

        ttk.Label(filter_frame, text="Overdue Only:").grid(row=2, column=0, sticky="w", pady=5)
        ttk.Checkbutton(filter_frame, variable=self.overdue_only_var, command=self.refresh).grid(row=2, column=1, sticky="w")

        ttk.Label(filter_frame, text="Show Archived:").grid(row=3, column=0, sticky="w", pady=5)
        ttk.Checkbutton(filter_frame, variable=self.show_archived_var, command=self.refresh).grid(row=3, column=1, sticky="w")

        editor_frame = ttk.LabelFrame(self.control_frame, text="Projects", padding="10")
        editor_frame.pack(fill=tk.BOTH, expand=True, pady=5)

        columns = ("pic", "start_date", "due", "completion")
        self.task_tree = ttk.Treeview(editor_frame, columns=columns, show="tree headings", selectmode="browse")

        self.task_tree.heading("#0", text="Name")
        self.task_tree.column("#0", width=250, anchor='w')
        self.task_tree.heading("pic", text="PIC")
        self.task_tree.column("pic", width=90, anchor='w')
        self.task_tree.heading("start_date", text="Start")
        self.task_tree.column("start_date", width=90, anchor='center')
        self.task_tree.heading("due", text="Due")
        self.task_tree.column("due", width=90, anchor='center')
        self.task_tree.heading("completion", text="Done")
        self.task_tree.column("completion", width=60, anchor='center')
        self.task_tree.tag_configure("archived", foreground="#888888")
        self.task_tree.tag_configure("overdue", foreground=config.overdue_color)

        self.task_tree.pack(fill=tk.BOTH, expand=True)
        self.task_tree.bind("<Double-1>", self.on_tree_double_click)
        self.task_tree.bind("<ButtonPress-1>", self.on_tree_press)
        self.task_tree.bind("<B1-Motion>", self.on_tree_motion)
        self.task_tree.bind("<ButtonRelease-1>", self.on_tree_release)
        self.task_tree.bind("<<TreeviewSelect>>", self.on_tree_select)

        action_frame = ttk.Frame(self.control_frame)
        action_frame.pack(fill=tk.X, pady=10)
        ttk.Button(action_frame, text="Add Project", command=self.add_project).pack(side=tk.LEFT, padx=5)
        ttk.Button(action_frame, text="Add Task", command=self.add_task).pack(side=tk.LEFT, padx=5)
        ttk.Button(action_frame, text="Edit", command=self.edit_selected).pack(side=tk.LEFT, padx=5)
        ttk.Button(action_frame, text="Remove", command=self.remove_selected).pack(side=tk.LEFT, padx=5)
        ttk.Button(action_frame, text="Archive/Restore", command=self.toggle_archived).pack(side=tk.LEFT, padx=5)

    def refresh(self):
        self.pic_filter_cb.config(values=[ALL_FILTER] + list(self.store.pic_list))
        self.populate_treeview()
        self.draw_chart()
        self.update_window_title()

    def _filtered_projects(self):
        pic = self.pic_filter_var.get()
        completion = self.completion_filter_var.get()
        return self.store.filter_projects(
            pic=None if pic == ALL_FILTER else pic,
            overdue=True if self.overdue_only_var.get() else None,
            completion=None if completion == ALL_FILTER else completion,
            include_archived=self.show_archived_var.get(),
        )

    def _insert_tasks(self, parent_iid, project, tasks, prefix, today):
        for i, task in enumerate(tasks):
            ref = TaskRef(project['id'], prefix + (i,))
            tags = ("overdue",) if is_task_overdue(task, today) else ()
            iid = self.task_tree.insert(
                parent_iid, "end", iid=task_iid(ref), text=task['name'], open=True, tags=tags,
                values=(task['pic'], task['start_date'], task['due'], f"{task['completion']}%")
            )
            self._insert_tasks(iid, project, task['sub_tasks'], ref.path, today)

    def populate_treeview(self):
        selection = self.task_tree.selection()
        for i in self.task_tree.get_children():
            self.task_tree.delete(i)

        today = date.today()
        for project in self._filtered_projects():
            deadline = self.store.project_deadline(project['id'])
            iid = self.task_tree.insert(
                "", "end", iid=project_iid(project['id']), text=project['name'], open=True,
                tags=("archived",) if project['is_archived'] else (),
                values=(project['pic'], "", format_local_date(deadline) if deadline else "", f"{project['completion']}%")
            )
            self._insert_tasks(iid, project, project['tasks'], (), today)

        if selection and self.task_tree.exists(selection[0]):
            self.task_tree.selection_set(selection[0])

    def draw_chart(self):
        self.chart_items = []
        self.timeline = None
        try:
            project = self.store.get_project(self.current_project_id)
        except KeyError:
            self.ax.clear()
            self.ax.text(0.5, 0.5, "Select a project to see its Gantt chart.",
                         horizontalalignment='center', verticalalignment='center', transform=self.ax.transAxes)
            self.canvas.draw()
            return

        track_width = self.ax.get_window_extent().width or config.DEFAULT_TRACK_WIDTH_PX
        self.timeline = timeline_bounds(project, track_width_px=track_width)
        self.chart_items = draw_gantt(self.ax, project, self.timeline)
        self.figure.tight_layout()
        self.canvas.draw()

    def _selected(self):
        selection = self.task_tree.selection()
        if not selection:
            return None, None
        return parse_iid(selection[0])

    def on_tree_select(self, event=None):
        kind, value = self._selected()
        if kind is None:
            return
        project_id = value if kind == "project" else value.project_id
        if project_id != self.current_project_id:
            self.current_project_id = project_id
            self.draw_chart()

    # --- Tree Editing ---

    def on_tree_double_click(self, event):
        self._tree_drag_data = {}
        iid = self.task_tree.identify_row(event.y)
        if not iid:
            return
        if self.task_tree.identify_column(event.x) == "#0":
            self._edit_name_inline(iid)
        else:
            self.edit_selected(iid)

    def _edit_name_inline(self, iid):
        bbox = self.task_tree.bbox(iid, "#0")
        if not bbox: return

        x, y, width, height = bbox
        original_name = self.task_tree.item(iid, "text")
        entry_var = tk.StringVar(value=original_name)
        entry = ttk.Entry(self.task_tree, textvariable=entry_var)
        entry.place(x=x, y=y, width=width, height=height)
        entry.focus_set()

        def on_commit(event=None):
            new_name = entry_var.get().strip()
            entry.destroy()
            if not new_name or new_name == original_name:
                return
            kind, value = parse_iid(iid)
            if kind == "project":
                self.store.rename_project(value, new_name)
            else:
                self.store.rename_task(value, new_name)

        entry.bind("<Return>", on_commit)
        entry.bind("<FocusOut>", on_commit)

    def on_tree_press(self, event):
        iid = self.task_tree.identify_row(event.y)
        if not iid: return
        self._tree_drag_data = {"iid": iid, "start_x": event.x, "start_y": event.y, "has_moved": False}

    def on_tree_motion(self, event):
        if not self._tree_drag_data: return
        if abs(event.x - self._tree_drag_data["start_x"]) < 5 and abs(event.y - self._tree_drag_data["start_y"]) < 5:
            return
        self._tree_drag_data["has_moved"] = True
        self.task_tree.config(cursor="hand2")

    def _drop_mode(self, target_iid, y):
        """Top quarter of a row drops before it, bottom quarter after, the middle into it."""
        _, row_y, _, row_height = self.task_tree.bbox(target_iid)
        offset = (y - row_y) / float(row_height or 1)
        if offset < 0.25:
            return "before"
        if offset > 0.75:
            return "after"
        return "into"

    def on_tree_release(self, event):
        drag_data, self._tree_drag_data = self._tree_drag_data, {}
        self.task_tree.config(cursor="")
        if not drag_data or not drag_data.get("has_moved"):
            return

        target_iid = self.task_tree.identify_row(event.y)
        if not target_iid or target_iid == drag_data["iid"]:
            return

        source_kind, source = parse_iid(drag_data["iid"])
        target_kind, target = parse_iid(target_iid)
        drop_mode = self._drop_mode(target_iid, event.y)

        try:
            if source_kind == "project":
                target_id = target if target_kind == "project" else target.project_id
                self.store.move_project(source, target_id, "before" if drop_mode == "before" else "after")
            elif target_kind == "project":
                self.store.move_task(source, TaskRef(target, ()), "before")
            else:
                self.store.move_task(source, target, drop_mode)
        except SchedulingConflict as e:
            messagebox.showerror("Scheduling Conflict", f"{e}\n\n{describe_conflicts(e.conflicts)}")
        except TrackerError as e:
            messagebox.showerror("Move Error", str(e))

    # --- Projects and Tasks ---

    def add_project(self):
        dialog = ProjectDialog(self, "Add Project", self.store.pic_list)
        if dialog.result:
            project = self.store.add_project(dialog.result['name'], dialog.result['pic'])
            self.current_project_id = project['id']
            self.refresh()

    def add_task(self):
        kind, value = self._selected()
        if kind is None:
            messagebox.showwarning("Add Task", "Please select a project or a parent task.")
            return
        project_id, parent_path = (value, None) if kind == "project" else (value.project_id, value.path)
        project = self.store.get_project(project_id)

        dialog = TaskDialog(self, "Add Sub-task" if parent_path else "Add Task", self.store.pic_list,
                            task={'pic': project['pic'], 'start_date': format_local_date(date.today()),
                                  'due': format_local_date(date.today())})
        if not dialog.result:
            return
        result = dialog.result
        try:
            ref = self.store.add_task(project_id, parent_path, result['name'], result['start_date'],
                                      result['due'], notes=result['notes'], pic=result['pic'])
            if result['completion']:
                self.store.set_task_completion(ref, result['completion'])
        except SchedulingConflict as e:
            messagebox.showerror("Scheduling Conflict", f"{e}\n\n{describe_conflicts(e.conflicts)}")
        except TrackerError as e:
            messagebox.showerror("Add Task", str(e))

    def edit_selected(self, iid=None):
        if iid is None:
            selection = self.task_tree.selection()
            if not selection:
                messagebox.showwarning("Edit", "Please select a project or task to edit.")
                return
            iid = selection[0]
        kind, value = parse_iid(iid)
        if kind == "project":
            self.edit_project(value)
        else:
            self.edit_task(value)

    def edit_project(self, project_id):
        project = self.store.get_project(project_id)
        dialog = ProjectDialog(self, "Edit Project", self.store.pic_list, project)
        if dialog.result:
            self.store.rename_project(project_id, dialog.result['name'])
            if dialog.result['pic'] != project['pic']:
                self.store.assign_project_pic(project_id, dialog.result['pic'])

    def edit_task(self, ref):
        task = self.store.get_task(ref)
        dialog = TaskDialog(self, "Edit Task", self.store.pic_list, task, has_sub_tasks=bool(task['sub_tasks']))
        if not dialog.result:
            return
        result = dialog.result
        try:
            self.store.update_task(ref, result['name'], result['start_date'], result['due'], result['pic'],
                                   notes=result['notes'], completion=result['completion'])
        except SchedulingConflict as e:
            messagebox.showerror("Scheduling Conflict", f"{e}\n\n{describe_conflicts(e.conflicts)}")
        except TrackerError as e:
            messagebox.showerror("Edit Task", str(e))

    def remove_selected(self):
        kind, value = self._selected()
        if kind is None:
            messagebox.showwarning("Remove", "Please select a project or task to remove.")
            return
        if kind == "project":
            name = self.store.get_project(value)['name']
            if messagebox.askyesno("Confirm Delete", f"Delete project '{name}'? You can undo this."):
                self.store.delete_project(value)
        else:
            self.store.delete_task(value)

    def toggle_archived(self):
        kind, value = self._selected()
        if kind != "project":
            messagebox.showwarning("Archive", "Please select a project.")
            return
        if self.store.get_project(value)['is_archived']:
            self.store.restore_project(value)
        else:
            self.store.archive_project(value)

    def undo(self):
        if not self.store.undo():
            self.status_var.set("Nothing to undo.")

    def manage_pics(self):
        ManagePICsDialog(self, "Manage PICs", self.store)
        self.refresh()


def main():
    logging.basicConfig(format=config.LOG_FORMAT, level=config.LOG_LEVEL)
    store = ProjectStore(JsonFileStorage(config.DATA_FILE)).load()
    app = ProjectTrackerApp(store)
    app.mainloop()


if __name__ == "__main__":
    main()
