from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
import math

from .models import Project, Task, parse_timestamp, utc_now


@dataclass(frozen=True)
class ProjectStats:
    total_projects: int
    active_projects: int
    completed_projects: int
    overdue_projects: int
    completion_rate: int


@dataclass(frozen=True)
class TaskStats:
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    overdue_tasks: int
    completion_rate: int
    total_hours: float
    estimated_hours: float


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completion_rate(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(done / total * 100)


def _resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _is_past(value: str | None, now: datetime) -> bool:
    moment = parse_timestamp(value)
    return moment is not None and moment < now


def project_stats(projects: Iterable[Project], *, now: datetime | None = None) -> ProjectStats:
    current = _resolve_now(now)
    items = list(projects)
    total = len(items)
    active = sum(1 for project in items if project.status == "active")
    completed = sum(1 for project in items if project.status == "completed")
    overdue = sum(1 for project in items if project.status == "active" and _is_past(project.end_date, current))
    return ProjectStats(
        total_projects=total,
        active_projects=active,
        completed_projects=completed,
        overdue_projects=overdue,
        completion_rate=completion_rate(completed, total),
    )


def task_stats(tasks: Iterable[Task], *, now: datetime | None = None) -> TaskStats:
    current = _resolve_now(now)
    items = list(tasks)
    total = len(items)
    completed = sum(1 for task in items if task.status == "done")
    return TaskStats(
        total_tasks=total,
        completed_tasks=completed,
        in_progress_tasks=sum(1 for task in items if task.status == "in-progress"),
        overdue_tasks=sum(1 for task in items if task.status != "done" and _is_past(task.due_date, current)),
        completion_rate=completion_rate(completed, total),
        total_hours=sum(task.actual_hours or 0 for task in items),
        estimated_hours=sum(task.estimated_hours or 0 for task in items),
    )
