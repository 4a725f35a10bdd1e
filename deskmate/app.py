from __future__ import annotations

from collections import deque
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Input, Static

from . import __version__
from .config import PROJECT_FILTERS, PROJECT_SORT_KEYS
from .errors import DeskmateError, ValidationError
from .events import ChangeEvent
from .projects.models import PROJECT_STATUSES, Project, utc_now
from .projects.projects import filter_projects, sort_projects
from .projects.stats import project_stats, task_stats
from .projects.tasks import kanban_columns
from .render import (
    format_kanban,
    format_member_line,
    format_project_line,
    format_project_stats,
    format_task_stats,
)
from .workspace import Workspace


ACTIVITY_LOG_MAX = 40

BOARD_HELP = (
    "commands: new <name> | task <title> | done <task-id> | status <project-status> "
    "| progress <0-100> | delete"
)


def _cycle(options: tuple[str, ...], current: str) -> str:
    if current not in options:
        return options[0]
    return options[(options.index(current) + 1) % len(options)]


def _parse_board_command(raw: str) -> tuple[str, str]:
    text = " ".join(raw.split())
    verb, _, rest = text.partition(" ")
    return verb.lower(), rest


def _parse_progress(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"progress must be a whole number, got {text!r}") from None


class DeskmateBoardApp(App[None]):
    CSS = """
    Screen {
        layout: vertical;
    }

    #status-bar {
        height: 1;
        padding: 0 1;
        background: $boost;
        color: $text;
    }

    #main {
        height: 1fr;
    }

    #panel-projects {
        width: 2fr;
        border: solid $accent;
        padding: 0 1;
    }

    #sidebar {
        width: 1fr;
        border: solid $secondary;
        padding: 0 1;
    }

    .panel {
        height: 1fr;
        border: solid $primary;
        margin: 0 0 1 0;
        padding: 0 1;
    }

    #input-box {
        margin: 0;
        border: solid $border-blurred;
    }

    #input-box:focus {
        border: solid $border;
    }

    Footer {
        dock: none;
    }
    """

    BINDINGS = [
        ("ctrl+c", "request_quit", "Quit"),
        ("f5", "refresh", "Refresh"),
        ("ctrl+n", "new_project", "New Project"),
        ("ctrl+up", "select_previous", "Previous"),
        ("ctrl+down", "select_next", "Next"),
        ("f3", "cycle_filter", "Filter"),
        ("f4", "cycle_sort", "Sort"),
    ]

    def __init__(self, workspace: Workspace) -> None:
        super().__init__()
        self.workspace = workspace
        self.project_filter = workspace.config.projects.default_filter
        self.project_sort = workspace.config.projects.default_sort
        self.visible_projects: list[Project] = []
        self.selected_index = 0
        self.load_error = ""
        self.activity_entries: deque[str] = deque(maxlen=ACTIVITY_LOG_MAX)
        self._unsubscribe = workspace.events.subscribe(self._on_workspace_event)

        self.status_bar: Static
        self.projects_panel: Static
        self.stats_panel: Static
        self.detail_panel: Static
        self.activity_panel: Static
        self.input_box: Input

    def compose(self) -> ComposeResult:
        yield Static("", id="status-bar")
        with Horizontal(id="main"):
            yield Static("", id="panel-projects")
            with Vertical(id="sidebar"):
                yield Static("", id="panel-stats", classes="panel")
                yield Static("", id="panel-detail", classes="panel")
                yield Static("", id="panel-activity", classes="panel")
        yield Input(id="input-box", placeholder=BOARD_HELP)
        yield Footer()

    def on_mount(self) -> None:
        self.status_bar = self.query_one("#status-bar", Static)
        self.projects_panel = self.query_one("#panel-projects", Static)
        self.stats_panel = self.query_one("#panel-stats", Static)
        self.detail_panel = self.query_one("#panel-detail", Static)
        self.activity_panel = self.query_one("#panel-activity", Static)
        self.input_box = self.query_one("#input-box", Input)
        self.input_box.focus()
        self._refresh_panels()

    def on_unmount(self) -> None:
        self._unsubscribe()

    def action_request_quit(self) -> None:
        self.exit()

    def action_refresh(self) -> None:
        self._refresh_panels()

    def action_new_project(self) -> None:
        self._run(lambda: self.workspace.projects.create())

    def action_select_previous(self) -> None:
        if self.visible_projects:
            self.selected_index = (self.selected_index - 1) % len(self.visible_projects)
        self._refresh_panels()

    def action_select_next(self) -> None:
        if self.visible_projects:
            self.selected_index = (self.selected_index + 1) % len(self.visible_projects)
        self._refresh_panels()

    def action_cycle_filter(self) -> None:
        self.project_filter = _cycle(PROJECT_FILTERS, self.project_filter)
        self.selected_index = 0
        self._refresh_panels()

    def action_cycle_sort(self) -> None:
        self.project_sort = _cycle(PROJECT_SORT_KEYS, self.project_sort)
        self._refresh_panels()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.input.value = ""
        self.run_board_command(event.value)

    def run_board_command(self, raw: str) -> None:
        verb, rest = _parse_board_command(raw)
        if not verb:
            return
        selected = self._selected_project()

        if verb == "new":
            self._run(lambda: self.workspace.projects.create(name=rest or "New project"))
            return
        if verb in {"help", "?"}:
            self._add_activity(BOARD_HELP)
            return
        if selected is None:
            self._add_activity("no project selected; create one with `new <name>`")
            return
        if verb == "task":
            self._run(lambda: self.workspace.tasks.create(selected.id, title=rest))
        elif verb == "done":
            self._run(lambda: self.workspace.tasks.update(rest, status="done"))
        elif verb == "status":
            self._run(lambda: self.workspace.projects.update(selected.id, status=rest.lower()))
        elif verb == "progress":
            self._run(lambda: self.workspace.projects.update(selected.id, progress=_parse_progress(rest)))
        elif verb == "delete":
            self._run(lambda: self.workspace.projects.delete(selected.id))
            self.selected_index = max(0, self.selected_index - 1)
            self._refresh_panels()
        else:
            self._add_activity(f"unknown command `{verb}`; {BOARD_HELP}")

    def _run(self, operation) -> Any:
        try:
            return operation()
        except DeskmateError as exc:
            self._add_activity(f"error: {exc}")
            return None

    def _on_workspace_event(self, event: ChangeEvent) -> None:
        self._add_activity(event.message or event.type)
        self._refresh_panels()

    def _add_activity(self, text: str) -> None:
        stamp = utc_now().strftime("%H:%M:%S")
        self.activity_entries.append(f"{stamp} {text}")
        if hasattr(self, "activity_panel"):
            self.activity_panel.update("\n".join(reversed(self.activity_entries)))

    def _selected_project(self) -> Project | None:
        if not self.visible_projects:
            return None
        self.selected_index = min(self.selected_index, len(self.visible_projects) - 1)
        return self.visible_projects[self.selected_index]

    def _reload_projects(self) -> list[Project] | None:
        """Re-read projects and apply the board's filter and sort; None when unreadable."""
        try:
            projects = self.workspace.projects.list_projects()
        except DeskmateError as exc:
            self.load_error = str(exc)
            self.visible_projects = []
            return None
        self.load_error = ""
        self.visible_projects = sort_projects(filter_projects(projects, self.project_filter), self.project_sort)
        return projects

    def _refresh_panels(self) -> None:
        projects = self._reload_projects()
        if not hasattr(self, "projects_panel"):
            return
        if projects is None:
            self.projects_panel.update(f"cannot read projects: {self.load_error}")
            return

        now = utc_now()
        selected = self._selected_project()
        lines = [f"projects ({self.project_filter}, by {self.project_sort})", ""]
        if not self.visible_projects:
            lines.append("none. press ctrl+n or type `new <name>`.")
        for project in self.visible_projects:
            marker = ">" if selected is not None and project.id == selected.id else " "
            lines.append(f"{marker} {format_project_line(project, now=now)}")
        self.projects_panel.update("\n".join(lines))
        self.stats_panel.update(format_project_stats(project_stats(projects, now=now)))
        self.detail_panel.update(self._detail_text(selected, now=now))

        user = self.workspace.config.user
        status = (
            f"deskmate {__version__} | {self.workspace.config.workspace.name} | {user.name} | "
            f"{len(projects)} project(s) | statuses: {', '.join(PROJECT_STATUSES)}"
        )
        self.status_bar.update(status)

    def _detail_text(self, selected: Project | None, *, now) -> str:
        if selected is None:
            return "no project selected."
        try:
            tasks = self.workspace.tasks.list_by_project(selected.id)
            members = self.workspace.members.list_for_project(selected.id)
        except DeskmateError as exc:
            return f"{selected.name}\ncannot read details: {exc}"
        detail = [
            selected.name,
            format_task_stats(task_stats(tasks, now=now)),
            "",
            format_kanban(kanban_columns(tasks), limit=4),
            "",
            "members:",
            *(format_member_line(member) for member in members),
        ]
        return "\n".join(detail)


def run_board(workspace: Workspace) -> int:
    app = DeskmateBoardApp(workspace)
    app.run(mouse=False)
    return 0
