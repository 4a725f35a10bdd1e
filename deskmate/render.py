from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from .notes import Note
from .projects.models import Member, Milestone, Project, Task, parse_timestamp, utc_now
from .projects.stats import ProjectStats, TaskStats, task_stats
from .projects.tasks import KanbanColumn, kanban_columns, timeline
from .todos import TodoItem, TodoStats


def _short_date(value: str | None) -> str:
    moment = parse_timestamp(value)
    return moment.date().isoformat() if moment is not None else ""


def _hours(value: float) -> str:
    return f"{value:g}h"


def format_project_line(project: Project, *, now: datetime | None = None) -> str:
    now = now or utc_now()
    end = ""
    if project.end_date:
        moment = parse_timestamp(project.end_date)
        overdue = " (overdue)" if project.status == "active" and moment is not None and moment < now else ""
        end = f" end={_short_date(project.end_date)}{overdue}"
    tags = f" #{' #'.join(project.tags)}" if project.tags else ""
    return f"{project.id} [{project.status}/{project.priority}] {project.name} {project.progress}%{end}{tags}"


def format_task_line(
    task: Task,
    *,
    now: datetime | None = None,
    members: dict[str, Member] | None = None,
) -> str:
    now = now or utc_now()
    due = ""
    if task.due_date:
        moment = parse_timestamp(task.due_date)
        overdue = " (overdue)" if not task.is_done and moment is not None and moment < now else ""
        due = f" due={_short_date(task.due_date)}{overdue}"
    assignee = ""
    if task.assignee_id:
        member = (members or {}).get(task.assignee_id)
        assignee = f" @{member.name if member else task.assignee_id}"
    deps = f" after={','.join(task.dependencies)}" if task.dependencies else ""
    return f"{task.id} [{task.status}/{task.priority}] {task.title} {task.progress}%{due}{assignee}{deps}"


def format_member_line(member: Member) -> str:
    email = f" <{member.email}>" if member.email else ""
    return f"{member.id} [{member.role}] {member.name}{email}"


def format_milestone_line(milestone: Milestone) -> str:
    mark = "x" if milestone.is_completed else " "
    return f"- [{mark}] {milestone.title} due={_short_date(milestone.due_date)} ({milestone.id})"


def format_project_stats(stats: ProjectStats) -> str:
    return "\n".join(
        [
            f"projects: {stats.total_projects}",
            f"- active: {stats.active_projects}",
            f"- completed: {stats.completed_projects}",
            f"- overdue: {stats.overdue_projects}",
            f"- completion: {stats.completion_rate}%",
        ]
    )


def format_task_stats(stats: TaskStats) -> str:
    return "\n".join(
        [
            f"tasks: {stats.total_tasks}",
            f"- done: {stats.completed_tasks}",
            f"- in progress: {stats.in_progress_tasks}",
            f"- overdue: {stats.overdue_tasks}",
            f"- completion: {stats.completion_rate}%",
            f"- hours: {_hours(stats.total_hours)} of {_hours(stats.estimated_hours)} estimated",
        ]
    )


def format_kanban(columns: Iterable[KanbanColumn], *, limit: int = 8) -> str:
    lines: list[str] = []
    for column in columns:
        lines.append(f"{column.title} ({len(column.tasks)})")
        for task in column.tasks[:limit]:
            lines.append(f"  - {task.title} [{task.priority}] {task.progress}%")
        if len(column.tasks) > limit:
            lines.append(f"  ... and {len(column.tasks) - limit} more")
    return "\n".join(lines)


def format_timeline(tasks: list[Task]) -> str:
    groups = timeline(tasks)
    if not groups:
        return "timeline: no dated tasks."
    lines: list[str] = []
    for day, day_tasks in groups:
        lines.append(day.isoformat())
        for task in day_tasks:
            lines.append(f"  - {task.title} [{task.status}]")
    return "\n".join(lines)


def format_project_detail(
    project: Project,
    tasks: list[Task],
    members: list[Member],
    *,
    now: datetime | None = None,
) -> str:
    now = now or utc_now()
    by_id = {member.id: member for member in members}
    lines = [format_project_line(project, now=now)]
    if project.description:
        lines.append(project.description)
    lines.append("")
    lines.append(format_task_stats(task_stats(tasks, now=now)))
    lines.append("")
    lines.append("members:")
    lines.extend(f"- {format_member_line(member)}" for member in members)
    if project.milestones:
        lines.append("")
        lines.append("milestones:")
        lines.extend(format_milestone_line(milestone) for milestone in project.milestones)
    lines.append("")
    lines.append(format_kanban(kanban_columns(tasks)))
    if tasks:
        lines.append("")
        lines.extend(format_task_line(task, now=now, members=by_id) for task in tasks)
    return "\n".join(lines)


def format_todo_line(item: TodoItem) -> str:
    mark = "x" if item.completed else " "
    tags = f" #{' #'.join(item.tags)}" if item.tags else ""
    return f"[{mark}] {item.content} ({item.priority}){tags} {item.id}"


def format_todo_stats(stats: TodoStats) -> str:
    return f"todos: {stats.total} total, {stats.active} active, {stats.completed} done ({stats.completion_rate}%)"


def format_note_line(note: Note) -> str:
    title = note.title or "(untitled)"
    preview = " ".join(note.content.split())
    if len(preview) > 60:
        preview = preview[:57] + "..."
    tags = f" #{' #'.join(note.tags)}" if note.tags else ""
    return f"{note.id} {title}{tags}" + (f" - {preview}" if preview else "")
