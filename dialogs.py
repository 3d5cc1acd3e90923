import tkinter as tk
from tkinter import ttk, simpledialog, messagebox

from core_logic import clamp_completion, format_local_date, validate_task_dates
from errors import InvalidDateRange


class TaskDialog(simpledialog.Dialog):
    """
    Add/edit form for one task. On OK, self.result is a dict with name,
    start_date, due, pic, completion and notes; the caller applies it
    through the store so every rule still runs.
    """
    def __init__(self, parent, title, pic_list, task=None, has_sub_tasks=False):
        self.pic_list = pic_list
        self.task = task or {}
        self.has_sub_tasks = has_sub_tasks
        self.result = None
        super().__init__(parent, title)

    def body(self, master):
        main_frame = ttk.LabelFrame(master, text="Task Properties", padding=10)
        main_frame.pack(fill=tk.X, padx=10, pady=5)

        ttk.Label(main_frame, text="Task Name:").grid(row=0, column=0, sticky="w", padx=5, pady=2)
        self.name_var = tk.StringVar(value=self.task.get('name', ""))
        name_entry = ttk.Entry(main_frame, textvariable=self.name_var, width=40)
        name_entry.grid(row=0, column=1, sticky="w", padx=5, pady=2)

        ttk.Label(main_frame, text="Start Date (YYYY-MM-DD):").grid(row=1, column=0, sticky="w", padx=5, pady=2)
        self.start_date_var = tk.StringVar(value=self.task.get('start_date', ""))
        ttk.Entry(main_frame, textvariable=self.start_date_var, width=40).grid(row=1, column=1, sticky="w", padx=5, pady=2)

        ttk.Label(main_frame, text="Due Date (YYYY-MM-DD):").grid(row=2, column=0, sticky="w", padx=5, pady=2)
        self.due_var = tk.StringVar(value=self.task.get('due', ""))
        due_entry = ttk.Entry(main_frame, textvariable=self.due_var, width=40)
        due_entry.grid(row=2, column=1, sticky="w", padx=5, pady=2)
        due_entry.bind('<FocusOut>', self._on_due_change)

        ttk.Label(main_frame, text="Person in Charge:").grid(row=3, column=0, sticky="w", padx=5, pady=2)
        self.pic_var = tk.StringVar(value=self.task.get('pic', ""))
        ttk.Combobox(main_frame, textvariable=self.pic_var, values=[""] + list(self.pic_list),
                     state="readonly", width=37).grid(row=3, column=1, sticky="w", padx=5, pady=2)

        ttk.Label(main_frame, text="Completion (%):").grid(row=4, column=0, sticky="w", padx=5, pady=2)
        self.completion_var = tk.IntVar(value=clamp_completion(self.task.get('completion', 0)))
        completion_spin = ttk.Spinbox(main_frame, from_=0, to=100, increment=5,
                                      textvariable=self.completion_var, width=10)
        completion_spin.grid(row=4, column=1, sticky="w", padx=5, pady=2)
        if self.has_sub_tasks:
            # Aggregated from the sub-tasks.
            completion_spin.config(state="disabled")

        ttk.Label(main_frame, text="Notes:").grid(row=5, column=0, sticky="nw", padx=5, pady=2)
        self.notes_text = tk.Text(main_frame, width=40, height=5)
        self.notes_text.grid(row=5, column=1, sticky="w", padx=5, pady=2)
        self.notes_text.insert("1.0", self.task.get('notes', ""))

        self.date_hint = ttk.Label(main_frame, text="", font=("Arial", 8, "italic"), foreground="#c0504d")
        self.date_hint.grid(row=6, column=0, columnspan=2, sticky="w", padx=5)

        return name_entry

    def _on_due_change(self, event=None):
        try:
            validate_task_dates(self.start_date_var.get() or self.due_var.get(), self.due_var.get())
        except InvalidDateRange as e:
            self.date_hint.config(text=str(e))
        else:
            self.date_hint.config(text="")

    def validate(self):
        if not self.name_var.get().strip():
            messagebox.showerror("Invalid Input", "Task name cannot be empty.", parent=self)
            return False
        try:
            self.start, self.due = validate_task_dates(self.start_date_var.get() or self.due_var.get(),
                                                       self.due_var.get())
        except InvalidDateRange as e:
            messagebox.showerror("Invalid Date", str(e), parent=self)
            return False
        try:
            self.completion_var.get()
        except tk.TclError:
            messagebox.showerror("Invalid Input", "Completion must be a whole number from 0 to 100.", parent=self)
            return False
        return True

    def apply(self):
        self.result = {
            'name': self.name_var.get().strip(),
            'start_date': format_local_date(self.start),
            'due': format_local_date(self.due),
            'pic': self.pic_var.get(),
            'completion': clamp_completion(self.completion_var.get()),
            'notes': self.notes_text.get("1.0", tk.END).rstrip("\n"),
        }


class ManagePICsDialog(simpledialog.Dialog):
    """Adds and removes people through the store; refusals are shown, not raised."""
    def __init__(self, parent, title, store):
        self.store = store
        super().__init__(parent, title)

    def body(self, master):
        self.pics_frame = ttk.Frame(master, padding=10)
        self.pics_frame.pack(fill="both", expand=True)
        self._build_pics_ui()
        return self.pics_frame

    def buttonbox(self):
        box = ttk.Frame(self)
        ttk.Button(box, text="Close", width=10, command=self.ok, default=tk.ACTIVE).pack(padx=5, pady=5)
        self.bind("<Return>", self.ok)
        self.bind("<Escape>", self.cancel)
        box.pack()

    def _build_pics_ui(self):
        for widget in self.pics_frame.winfo_children():
            widget.destroy()

        ttk.Label(self.pics_frame, text="Person in Charge", font=("Arial", 10, "bold")).grid(row=0, column=0, padx=5)

        row = 1
        for name in self.store.pic_list:
            ttk.Label(self.pics_frame, text=name).grid(row=row, column=0, sticky="w", padx=5, pady=2)
            remove_btn = ttk.Button(self.pics_frame, text="X", width=2, command=lambda n=name: self._remove_pic(n))
            remove_btn.grid(row=row, column=1, padx=5, pady=2)
            row += 1

        add_btn = ttk.Button(self.pics_frame, text="Add New PIC", command=self._add_pic)
        add_btn.grid(row=row, column=0, columnspan=2, pady=10)

    def _add_pic(self):
        new_name = simpledialog.askstring("Add PIC", "Enter new PIC name:", parent=self)
        try:
            if self.store.add_pic(new_name):
                self._build_pics_ui()
        except ValueError as e:
            messagebox.showerror("Duplicate PIC", str(e), parent=self)

    def _remove_pic(self, name):
        if not messagebox.askyesno("Confirm Delete", f"Delete PIC '{name}'?", parent=self):
            return
        try:
            self.store.delete_pic(name)
        except ValueError as e:
            messagebox.showerror("PIC In Use", str(e), parent=self)
            return
        self._build_pics_ui()


class ImportSelectionDialog(simpledialog.Dialog):
    """
    Lists the projects found in a CSV (from importers.preview_csv) and lets
    the user pick which ones to merge. self.result is the list of chosen ids.
    """
    def __init__(self, parent, title, previews):
        self.previews = previews
        self.result = None
        super().__init__(parent, title)

    def body(self, master):
        ttk.Label(master, text="Select the projects to import. Existing projects with the same ID are replaced.",
                  justify=tk.LEFT).pack(anchor="w", padx=10, pady=(10, 0))

        list_frame = ttk.LabelFrame(master, text="Projects in File", padding=10)
        list_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=10)

        columns = ("name", "pic", "tasks", "completion", "archived")
        self.tree = ttk.Treeview(list_frame, columns=columns, show="headings", height=10, selectmode="extended")
        for col, heading, width in zip(columns, ("Project", "PIC", "Tasks", "Completion", "Archived"),
                                       (220, 100, 60, 80, 70)):
            self.tree.heading(col, text=heading)
            self.tree.column(col, width=width)
        for preview in self.previews:
            self.tree.insert("", tk.END, iid=preview['id'], values=(
                preview['name'], preview['pic'], preview['task_count'],
                f"{preview['completion']}%", "Yes" if preview['is_archived'] else "No"))
        self.tree.selection_set([p['id'] for p in self.previews])
        self.tree.pack(fill=tk.BOTH, expand=True)
        return self.tree

    def validate(self):
        if not self.tree.selection():
            messagebox.showerror("Nothing Selected", "Select at least one project to import.", parent=self)
            return False
        return True

    def apply(self):
        self.result = list(self.tree.selection())


class ProjectDialog(simpledialog.Dialog):
    def __init__(self, parent, title, pic_list, project=None):
        self.pic_list = pic_list
        self.project = project or {}
        self.result = None
        super().__init__(parent, title)

    def body(self, master):
        main_frame = ttk.LabelFrame(master, text="Project", padding=10)
        main_frame.pack(fill=tk.X, padx=10, pady=5)

        ttk.Label(main_frame, text="Project Name:").grid(row=0, column=0, sticky="w", padx=5, pady=2)
        self.name_var = tk.StringVar(value=self.project.get('name', ""))
        name_entry = ttk.Entry(main_frame, textvariable=self.name_var, width=40)
        name_entry.grid(row=0, column=1, sticky="w", padx=5, pady=2)

        ttk.Label(main_frame, text="Person in Charge:").grid(row=1, column=0, sticky="w", padx=5, pady=2)
        self.pic_var = tk.StringVar(value=self.project.get('pic', ""))
        ttk.Combobox(main_frame, textvariable=self.pic_var, values=[""] + list(self.pic_list),
                     state="readonly", width=37).grid(row=1, column=1, sticky="w", padx=5, pady=2)
        return name_entry

    def validate(self):
        if not self.name_var.get().strip():
            messagebox.showerror("Invalid Input", "Project name cannot be empty.", parent=self)
            return False
        return True

    def apply(self):
        self.result = {'name': self.name_var.get().strip(), 'pic': self.pic_var.get()}
