from __future__ import annotations

import argparse
import contextlib
from datetime import datetime, timezone
import json
from pathlib import Path
import sys
from typing import Any

from . import __version__
from .config import PROJECT_FILTERS, PROJECT_SORT_KEYS, explain_config, load_config, set_config_value
from .errors import DeskmateError, ValidationError
from .events import read_recent_events
from .notes import search_notes
from .paths import runtime_paths
from .projects.models import MEMBER_ROLES, PRIORITIES, PROJECT_STATUSES, TASK_STATUSES, parse_timestamp, to_iso
from .projects.projects import filter_projects, sort_projects
from .projects.stats import project_stats, task_stats
from .projects.tasks import TASK_SORT_KEYS, filter_tasks, sort_tasks
from .render import (
    format_member_line,
    format_milestone_line,
    format_note_line,
    format_project_detail,
    format_project_line,
    format_project_stats,
    format_task_line,
    format_task_stats,
    format_timeline,
    format_todo_line,
    format_todo_stats,
)
from .todos import TODO_FILTERS, TODO_PRIORITIES, filter_todos, todo_stats
from .workspace import Workspace, open_workspace


def _append_runtime_log(log_file: Path, *, level: str, message: str) -> None:
    normalized_message = " ".join(message.split())
    stamp = datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()
    line = f"{stamp} [{level.lower()}] {normalized_message}\n"
    with contextlib.suppress(OSError):
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(line)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _timestamp_arg(value: str | None, *, field_name: str) -> str | None:
    if value is None or value.strip().lower() in {"", "none"}:
        return None
    moment = parse_timestamp(value)
    if moment is None:
        raise ValidationError(f"{field_name} must be a date or ISO timestamp, got {value!r}")
    return to_iso(moment)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deskmate",
        description="deskmate: projects, tasks, todos and notes kept in a local store",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", type=Path, help="Workspace root (default: nearest deskmate.toml)")

    sub = parser.add_subparsers(dest="cmd", required=False)

    projects = sub.add_parser("projects", help="List and edit projects.")
    projects_sub = projects.add_subparsers(dest="action", required=True)
    p_list = projects_sub.add_parser("list", help="List projects.")
    p_list.add_argument("--filter", choices=PROJECT_FILTERS, help="Status filter")
    p_list.add_argument("--sort", choices=PROJECT_SORT_KEYS, help="Sort key")
    p_create = projects_sub.add_parser("create", help="Create a project.")
    p_create.add_argument("--name", default="New project")
    p_create.add_argument("--description", default="")
    p_create.add_argument("--status", choices=PROJECT_STATUSES)
    p_create.add_argument("--priority", choices=PRIORITIES)
    p_create.add_argument("--end", help="End date (YYYY-MM-DD or ISO timestamp)")
    p_create.add_argument("--tags", help="Comma-separated tags")
    p_update = projects_sub.add_parser("update", help="Change fields of a project.")
    p_update.add_argument("project_id")
    p_update.add_argument("--name")
    p_update.add_argument("--description")
    p_update.add_argument("--status", choices=PROJECT_STATUSES)
    p_update.add_argument("--priority", choices=PRIORITIES)
    p_update.add_argument("--progress", type=int)
    p_update.add_argument("--end", help="End date, or `none` to clear")
    p_update.add_argument("--tags", help="Comma-separated tags (replaces existing)")
    p_delete = projects_sub.add_parser("delete", help="Delete a project and its tasks.")
    p_delete.add_argument("project_id")
    p_show = projects_sub.add_parser("show", help="Show a project with its tasks and members.")
    p_show.add_argument("project_id")

    tasks = sub.add_parser("tasks", help="List and edit tasks of a project.")
    tasks_sub = tasks.add_subparsers(dest="action", required=True)
    t_list = tasks_sub.add_parser("list", help="List tasks of a project.")
    t_list.add_argument("project_id")
    t_list.add_argument("--filter", choices=("all", *TASK_STATUSES), default="all")
    t_list.add_argument("--sort", choices=TASK_SORT_KEYS, default="priority")
    t_list.add_argument("--timeline", action="store_true", help="Group by due date instead")
    t_add = tasks_sub.add_parser("add", help="Add a task to a project.")
    t_add.add_argument("project_id")
    t_add.add_argument("--title", required=True)
    t_add.add_argument("--description", default="")
    t_add.add_argument("--status", choices=TASK_STATUSES)
    t_add.add_argument("--priority", choices=PRIORITIES)
    t_add.add_argument("--assignee", help="Member id")
    t_add.add_argument("--due", help="Due date (YYYY-MM-DD or ISO timestamp)")
    t_add.add_argument("--estimate", type=float, help="Estimated hours")
    t_add.add_argument("--depends", help="Comma-separated task ids")
    t_add.add_argument("--tags", help="Comma-separated tags")
    t_update = tasks_sub.add_parser("update", help="Change fields of a task.")
    t_update.add_argument("task_id")
    t_update.add_argument("--title")
    t_update.add_argument("--description")
    t_update.add_argument("--status", choices=TASK_STATUSES)
    t_update.add_argument("--priority", choices=PRIORITIES)
    t_update.add_argument("--progress", type=int)
    t_update.add_argument("--assignee", help="Member id, or `none` to clear")
    t_update.add_argument("--due", help="Due date, or `none` to clear")
    t_update.add_argument("--estimate", type=float)
    t_update.add_argument("--actual", type=float, help="Hours actually spent")
    t_update.add_argument("--depends", help="Comma-separated task ids (replaces existing)")
    t_done = tasks_sub.add_parser("done", help="Mark a task done.")
    t_done.add_argument("task_id")
    t_delete = tasks_sub.add_parser("delete", help="Delete a task.")
    t_delete.add_argument("task_id")

    members = sub.add_parser("members", help="Project members.")
    members_sub = members.add_subparsers(dest="action", required=True)
    m_list = members_sub.add_parser("list", help="List members (of one project when given).")
    m_list.add_argument("project_id", nargs="?")
    m_add = members_sub.add_parser("add", help="Add a member to a project.")
    m_add.add_argument("project_id")
    m_add.add_argument("--name", required=True)
    m_add.add_argument("--email", default="")
    m_add.add_argument("--role", choices=MEMBER_ROLES, default="member")
    m_remove = members_sub.add_parser("remove", help="Remove a member.")
    m_remove.add_argument("project_id")
    m_remove.add_argument("member_id")

    milestones = sub.add_parser("milestones", help="Project milestones.")
    milestones_sub = milestones.add_subparsers(dest="action", required=True)
    ms_add = milestones_sub.add_parser("add", help="Add a milestone.")
    ms_add.add_argument("project_id")
    ms_add.add_argument("--title", required=True)
    ms_add.add_argument("--due", required=True)
    ms_add.add_argument("--description", default="")
    ms_complete = milestones_sub.add_parser("complete", help="Complete a milestone.")
    ms_complete.add_argument("project_id")
    ms_complete.add_argument("milestone_id")
    ms_remove = milestones_sub.add_parser("remove", help="Remove a milestone.")
    ms_remove.add_argument("project_id")
    ms_remove.add_argument("milestone_id")

    stats = sub.add_parser("stats", help="Project stats, or task stats for one project.")
    stats.add_argument("project_id", nargs="?")

    todos = sub.add_parser("todos", help="The to-do list.")
    todos_sub = todos.add_subparsers(dest="action", required=True)
    td_list = todos_sub.add_parser("list", help="List todos, newest first.")
    td_list.add_argument("--filter", choices=TODO_FILTERS, default="all")
    td_add = todos_sub.add_parser("add", help="Add a todo.")
    td_add.add_argument("content")
    td_add.add_argument("--priority", choices=TODO_PRIORITIES, default="medium")
    td_add.add_argument("--tags", help="Comma-separated tags")
    td_toggle = todos_sub.add_parser("toggle", help="Flip a todo between done and open.")
    td_toggle.add_argument("todo_id")
    td_edit = todos_sub.add_parser("edit", help="Replace the text of a todo.")
    td_edit.add_argument("todo_id")
    td_edit.add_argument("content")
    td_delete = todos_sub.add_parser("delete", help="Delete a todo.")
    td_delete.add_argument("todo_id")
    todos_sub.add_parser("clear", help="Delete every completed todo.")

    notes = sub.add_parser("notes", help="Notes.")
    notes_sub = notes.add_subparsers(dest="action", required=True)
    n_list = notes_sub.add_parser("list", help="List notes, newest first.")
    n_list.add_argument("--search", help="Match title, content or tag")
    n_add = notes_sub.add_parser("add", help="Create a note.")
    n_add.add_argument("--title", default="")
    n_add.add_argument("--content", default="")
    n_add.add_argument("--tags", help="Comma-separated tags")
    n_update = notes_sub.add_parser("update", help="Edit a note.")
    n_update.add_argument("note_id")
    n_update.add_argument("--title")
    n_update.add_argument("--content")
    n_update.add_argument("--tags", help="Comma-separated tags (replaces existing)")
    n_delete = notes_sub.add_parser("delete", help="Delete a note.")
    n_delete.add_argument("note_id")

    config = sub.add_parser("config", help="Explain deskmate.toml, or set one value.")
    config.add_argument("--set", dest="assignment", metavar="SECTION.KEY=VALUE")

    log = sub.add_parser("log", help="Show recent change events.")
    log.add_argument("--limit", type=int, default=20)

    sub.add_parser("board", help="Start the interactive terminal board.")

    return parser


def cmd_projects(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "list":
        projects = ws.projects.list_projects()
        selected = filter_projects(projects, args.filter or ws.config.projects.default_filter)
        ordered = sort_projects(selected, args.sort or ws.config.projects.default_sort)
        if not ordered:
            print("projects: none.")
            return 0
        for project in ordered:
            print(format_project_line(project))
        return 0

    if args.action == "create":
        fields: dict[str, Any] = {}
        if args.status:
            fields["status"] = args.status
        if args.priority:
            fields["priority"] = args.priority
        if args.end:
            fields["end_date"] = _timestamp_arg(args.end, field_name="--end")
        if args.tags:
            fields["tags"] = _split_csv(args.tags)
        project = ws.projects.create(name=args.name, description=args.description, **fields)
        print(f"project created: {project.id}")
        print(format_project_line(project))
        return 0

    if args.action == "update":
        changes: dict[str, Any] = {}
        for name in ("name", "description", "status", "priority", "progress"):
            value = getattr(args, name)
            if value is not None:
                changes[name] = value
        if args.end is not None:
            changes["end_date"] = _timestamp_arg(args.end, field_name="--end")
        if args.tags is not None:
            changes["tags"] = _split_csv(args.tags)
        if not changes:
            print("nothing to update.", file=sys.stderr)
            return 2
        project = ws.projects.update(args.project_id, **changes)
        print(format_project_line(project))
        return 0

    if args.action == "delete":
        removed = ws.projects.delete(args.project_id)
        print(f"project deleted: {args.project_id} ({removed} task(s) removed)")
        return 0

    if args.action == "show":
        project = ws.projects.get(args.project_id)
        tasks = ws.tasks.list_by_project(project.id)
        members = ws.members.list_for_project(project.id)
        print(format_project_detail(project, tasks, members))
        return 0

    return 2


def cmd_tasks(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "list":
        tasks = ws.tasks.list_by_project(args.project_id)
        selected = filter_tasks(tasks, args.filter)
        if args.timeline:
            print(format_timeline(selected))
            return 0
        members = ws.members.list_members()
        ordered = sort_tasks(selected, args.sort, members=members)
        if not ordered:
            print("tasks: none.")
            return 0
        by_id = {member.id: member for member in members}
        for task in ordered:
            print(format_task_line(task, members=by_id))
        return 0

    if args.action == "add":
        fields: dict[str, Any] = {"description": args.description}
        if args.status:
            fields["status"] = args.status
        if args.priority:
            fields["priority"] = args.priority
        if args.assignee:
            fields["assignee_id"] = args.assignee
        if args.due:
            fields["due_date"] = _timestamp_arg(args.due, field_name="--due")
        if args.estimate is not None:
            fields["estimated_hours"] = args.estimate
        if args.depends:
            fields["dependencies"] = _split_csv(args.depends)
        if args.tags:
            fields["tags"] = _split_csv(args.tags)
        task = ws.tasks.create(args.project_id, title=args.title, **fields)
        print(f"task created: {task.id}")
        print(format_task_line(task))
        return 0

    if args.action == "update":
        changes: dict[str, Any] = {}
        for name in ("title", "description", "status", "priority", "progress"):
            value = getattr(args, name)
            if value is not None:
                changes[name] = value
        if args.assignee is not None:
            changes["assignee_id"] = None if args.assignee.strip().lower() in {"", "none"} else args.assignee
        if args.due is not None:
            changes["due_date"] = _timestamp_arg(args.due, field_name="--due")
        if args.estimate is not None:
            changes["estimated_hours"] = args.estimate
        if args.actual is not None:
            changes["actual_hours"] = args.actual
        if args.depends is not None:
            changes["dependencies"] = _split_csv(args.depends)
        if not changes:
            print("nothing to update.", file=sys.stderr)
            return 2
        task = ws.tasks.update(args.task_id, **changes)
        print(format_task_line(task))
        return 0

    if args.action == "done":
        task = ws.tasks.update(args.task_id, status="done")
        print(format_task_line(task))
        return 0

    if args.action == "delete":
        ws.tasks.delete(args.task_id)
        print(f"task deleted: {args.task_id}")
        return 0

    return 2


def cmd_members(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "list":
        members = ws.members.list_for_project(args.project_id) if args.project_id else ws.members.list_members()
        for member in members:
            print(format_member_line(member))
        return 0

    if args.action == "add":
        member = ws.members.add(args.project_id, name=args.name, email=args.email, role=args.role)
        print(f"member added: {format_member_line(member)}")
        return 0

    if args.action == "remove":
        ws.members.remove(args.project_id, args.member_id)
        print(f"member removed: {args.member_id}")
        return 0

    return 2


def cmd_milestones(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "add":
        due = _timestamp_arg(args.due, field_name="--due")
        if due is None:
            raise ValidationError("--due is required")
        milestone = ws.projects.add_milestone(args.project_id, title=args.title, due_date=due, description=args.description)
        print(format_milestone_line(milestone))
        return 0

    if args.action == "complete":
        milestone = ws.projects.complete_milestone(args.project_id, args.milestone_id)
        print(format_milestone_line(milestone))
        return 0

    if args.action == "remove":
        ws.projects.remove_milestone(args.project_id, args.milestone_id)
        print(f"milestone removed: {args.milestone_id}")
        return 0

    return 2


def cmd_stats(ws: Workspace, args: argparse.Namespace) -> int:
    if args.project_id:
        ws.projects.get(args.project_id)
        print(format_task_stats(task_stats(ws.tasks.list_by_project(args.project_id))))
        return 0
    print(format_project_stats(project_stats(ws.projects.list_projects())))
    print(format_todo_stats(todo_stats(ws.todos.list_todos())))
    return 0


def cmd_todos(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "list":
        items = filter_todos(ws.todos.list_todos(), args.filter)
        if not items:
            print("todos: none.")
            return 0
        for item in items:
            print(format_todo_line(item))
        return 0
    if args.action == "add":
        item = ws.todos.add(args.content, priority=args.priority, tags=_split_csv(args.tags))
        print(format_todo_line(item))
        return 0
    if args.action == "toggle":
        print(format_todo_line(ws.todos.toggle(args.todo_id)))
        return 0
    if args.action == "edit":
        print(format_todo_line(ws.todos.edit(args.todo_id, args.content)))
        return 0
    if args.action == "delete":
        ws.todos.delete(args.todo_id)
        print(f"todo deleted: {args.todo_id}")
        return 0
    if args.action == "clear":
        removed = ws.todos.clear_completed()
        print(f"cleared {removed} completed todo(s)")
        return 0
    return 2


def cmd_notes(ws: Workspace, args: argparse.Namespace) -> int:
    if args.action == "list":
        notes = search_notes(ws.notes.list_notes(), args.search or "")
        if not notes:
            print("notes: none.")
            return 0
        for note in notes:
            print(format_note_line(note))
        return 0
    if args.action == "add":
        note = ws.notes.create(title=args.title, content=args.content, tags=_split_csv(args.tags))
        print(f"note created: {note.id}")
        return 0
    if args.action == "update":
        changes: dict[str, Any] = {}
        if args.title is not None:
            changes["title"] = args.title
        if args.content is not None:
            changes["content"] = args.content
        if args.tags is not None:
            changes["tags"] = _split_csv(args.tags)
        if not changes:
            print("nothing to update.", file=sys.stderr)
            return 2
        print(format_note_line(ws.notes.update(args.note_id, **changes)))
        return 0
    if args.action == "delete":
        ws.notes.delete(args.note_id)
        print(f"note deleted: {args.note_id}")
        return 0
    return 2


def _parse_assignment(text: str) -> tuple[str, str, str | bool]:
    target, sep, raw = text.partition("=")
    section, dot, key = target.strip().partition(".")
    if not sep or not dot or not section or not key:
        raise ValidationError("expected SECTION.KEY=VALUE, e.g. user.name=Ada")
    value: str | bool = raw.strip()
    if value.lower() in {"true", "false"}:
        value = value.lower() == "true"
    return section, key.strip(), value


def cmd_config(args: argparse.Namespace) -> int:
    paths = runtime_paths(args.root.resolve() if args.root else None)
    if args.assignment:
        section, key, value = _parse_assignment(args.assignment)
        ok, summary = set_config_value(paths.config_toml, section, key, value)
        print(summary, file=sys.stdout if ok else sys.stderr)
        return 0 if ok else 1
    config, warning = load_config(paths.config_toml)
    if warning:
        print(f"warning: {warning}", file=sys.stderr)
    print(explain_config(config, path=paths.config_toml))
    return 0


def cmd_log(ws: Workspace, args: argparse.Namespace) -> int:
    events = read_recent_events(ws.paths.events_log, limit=args.limit)
    if not events:
        print("log: no events yet.")
        return 0
    for event in events:
        metadata = event.get("metadata") or {}
        detail = f" {json.dumps(metadata, sort_keys=True)}" if metadata else ""
        print(f"{event.get('ts', '')} {event.get('type', '')} {event.get('message', '')}{detail}")
    return 0


def cmd_board(ws: Workspace) -> int:
    try:
        from .app import run_board
    except ModuleNotFoundError as exc:
        if exc.name == "textual":
            print("The board requires `textual`. Install it (pip install textual) and retry.", file=sys.stderr)
            return 1
        raise
    return run_board(ws)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    argv = list(argv) if argv is not None else list(sys.argv[1:])
    if not argv:
        argv = ["projects", "list"]
    args = parser.parse_args(argv)

    if args.cmd is None:
        parser.print_help()
        return 0
    if args.cmd == "config":
        try:
            return cmd_config(args)
        except DeskmateError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1

    handlers = {
        "projects": cmd_projects,
        "tasks": cmd_tasks,
        "members": cmd_members,
        "milestones": cmd_milestones,
        "stats": cmd_stats,
        "todos": cmd_todos,
        "notes": cmd_notes,
        "log": cmd_log,
    }
    if args.cmd not in handlers and args.cmd != "board":
        parser.error(f"Unknown command: {args.cmd}")
        return 2

    root = args.root.resolve() if args.root else None
    try:
        ws = open_workspace(root)
    except DeskmateError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if ws.config_warning:
        print(f"warning: {ws.config_warning}", file=sys.stderr)
        _append_runtime_log(ws.paths.app_log, level="warn", message=ws.config_warning)

    try:
        if args.cmd == "board":
            return cmd_board(ws)
        return handlers[args.cmd](ws, args)
    except DeskmateError as exc:
        print(f"error: {exc}", file=sys.stderr)
        _append_runtime_log(ws.paths.app_log, level="error", message=f"{args.cmd}: {exc}")
        return 1
