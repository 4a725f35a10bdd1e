from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
import math
from typing import Any

from ..errors import CorruptStateError, NotFoundError, ValidationError
from ..events import EventBus, emit
from ..storage import JsonCollection, KeyValueStore
from .models import (
    PRIORITIES,
    PRIORITY_RANK,
    TASK_STATUS_ORDER,
    TASK_STATUSES,
    Member,
    Task,
    merge_changes,
    new_id,
    parse_timestamp,
    require_choice,
    require_progress,
    require_text,
    snake_case,
    task_from_record,
    to_iso,
    to_record,
    touch_timestamp,
    utc_now,
)


TASKS_KEY = "project-tasks"
TASK_SORT_KEYS = ("priority", "dueDate", "status", "assignee", "created", "updated", "progress")
KANBAN_TITLES = {
    "todo": "To do",
    "in-progress": "In progress",
    "review": "Review",
    "done": "Done",
}

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _as_str_list(value: Any, *, field_name: str) -> list[str]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValidationError(f"task {field_name} must be a list")
    return [str(item) for item in value]


def _as_hours(value: Any, *, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"task {field_name} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"task {field_name} must be finite")
    if value < 0:
        raise ValidationError(f"task {field_name} cannot be negative")
    return value


def _validated(task: Task) -> Task:
    title = require_text(task.title, kind="task", field_name="title")
    if not (task.project_id or "").strip():
        raise ValidationError("task projectId is empty")
    require_choice(task.status, TASK_STATUSES, kind="task", field_name="status")
    require_choice(task.priority, PRIORITIES, kind="task", field_name="priority")
    if task.due_date and parse_timestamp(task.due_date) is None:
        raise ValidationError(f"task dueDate is not an ISO timestamp: {task.due_date!r}")
    return replace(
        task,
        title=title,
        progress=require_progress(task.progress, kind="task"),
        assignee_id=task.assignee_id or None,
        due_date=task.due_date or None,
        estimated_hours=_as_hours(task.estimated_hours, field_name="estimatedHours"),
        actual_hours=_as_hours(task.actual_hours, field_name="actualHours"),
        tags=_as_str_list(task.tags, field_name="tags"),
        dependencies=_as_str_list(task.dependencies, field_name="dependencies"),
    )


class TaskRepository:
    """Tasks for every project share the `project-tasks` key.

    Each write rewrites the whole cross-project collection, so a caller working
    on one project never drops another project's tasks.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        clean_dangling_references: bool = True,
    ) -> None:
        self.collection = JsonCollection(store, TASKS_KEY)
        self.events = events
        self.clock = clock
        self.clean_dangling_references = clean_dangling_references

    def list_tasks(self) -> list[Task]:
        return self._load()

    def list_by_project(self, project_id: str) -> list[Task]:
        return [task for task in self._load() if task.project_id == project_id]

    def get(self, task_id: str) -> Task:
        for task in self._load():
            if task.id == task_id:
                return task
        raise NotFoundError("task", task_id)

    def create(self, project_id: str, *, title: str, **fields: Any) -> Task:
        now = to_iso(self.clock())
        task = Task(
            id=new_id("task"),
            project_id=project_id,
            title=title,
            description="",
            status="todo",
            priority="medium",
            progress=0,
            created_at=now,
            updated_at=now,
        )
        if fields:
            task = merge_changes(
                task,
                fields,
                kind="task",
                locked=("id", "project_id", "created_at", "updated_at", "completed_at"),
            )
        task = _validated(task)
        if task.is_done:
            task = replace(task, progress=100, completed_at=now)

        tasks = self._load()
        tasks.append(task)
        self._save(tasks)
        emit(self.events, "task.created", f"created task {task.title}", source="tasks", task_id=task.id, project_id=project_id)
        return task

    def update(self, task_id: str, **changes: Any) -> Task:
        """Merge `changes` into the task.

        Moving a task into `done` always sets progress to 100 and stamps
        `completedAt`, whatever progress the same call asked for.
        """
        tasks = self._load()
        idx = self._index_of(tasks, task_id)
        current = tasks[idx]
        merged = merge_changes(
            current,
            changes,
            kind="task",
            locked=("id", "created_at", "updated_at", "completed_at"),
        )
        moment = self.clock()
        now = to_iso(moment)
        updated = replace(_validated(merged), updated_at=touch_timestamp(moment, current.created_at))
        completed = updated.is_done and not current.is_done
        if completed:
            updated = replace(updated, progress=100, completed_at=now)
        tasks[idx] = updated
        self._save(tasks)
        emit(
            self.events,
            "task.completed" if completed else "task.updated",
            f"{'completed' if completed else 'updated'} task {updated.title}",
            source="tasks",
            task_id=task_id,
            project_id=updated.project_id,
            fields=sorted(snake_case(name) for name in changes),
        )
        return updated

    def delete(self, task_id: str) -> None:
        tasks = self._load()
        kept = [task for task in tasks if task.id != task_id]
        if len(kept) == len(tasks):
            raise NotFoundError("task", task_id)
        cleaned = self._strip_dependencies(kept, {task_id}) if self.clean_dangling_references else 0
        self._save(kept)
        emit(self.events, "task.deleted", f"deleted task {task_id}", source="tasks", task_id=task_id, cleaned_dependents=cleaned)

    def delete_for_project(self, project_id: str) -> int:
        tasks = self._load()
        removed_ids = {task.id for task in tasks if task.project_id == project_id}
        if not removed_ids:
            return 0
        kept = [task for task in tasks if task.project_id != project_id]
        if self.clean_dangling_references:
            self._strip_dependencies(kept, removed_ids)
        self._save(kept)
        emit(self.events, "task.deleted", f"deleted {len(removed_ids)} task(s) of project {project_id}", source="tasks", project_id=project_id, count=len(removed_ids))
        return len(removed_ids)

    def unassign(self, member_id: str) -> int:
        tasks = self._load()
        changed = 0
        for idx, task in enumerate(tasks):
            if task.assignee_id == member_id:
                tasks[idx] = replace(task, assignee_id=None)
                changed += 1
        if changed:
            self._save(tasks)
            emit(self.events, "task.unassigned", f"unassigned {changed} task(s) from {member_id}", source="tasks", member_id=member_id, count=changed)
        return changed

    @staticmethod
    def _strip_dependencies(tasks: list[Task], removed_ids: set[str]) -> int:
        # Cleanup is bookkeeping, not an edit: updatedAt stays as it was.
        cleaned = 0
        for idx, task in enumerate(tasks):
            if not removed_ids.intersection(task.dependencies):
                continue
            tasks[idx] = replace(task, dependencies=[dep for dep in task.dependencies if dep not in removed_ids])
            cleaned += 1
        return cleaned

    @staticmethod
    def _index_of(tasks: list[Task], task_id: str) -> int:
        for idx, task in enumerate(tasks):
            if task.id == task_id:
                return idx
        raise NotFoundError("task", task_id)

    def _load(self) -> list[Task]:
        records = self.collection.load()
        try:
            return [task_from_record(record) for record in records]
        except ValueError as exc:
            raise CorruptStateError(self.collection.key, str(exc)) from exc

    def _save(self, tasks: list[Task]) -> None:
        self.collection.save([to_record(task) for task in tasks])


def filter_tasks(tasks: list[Task], status_filter: str = "all") -> list[Task]:
    if status_filter == "all":
        return list(tasks)
    require_choice(status_filter, TASK_STATUSES, kind="task", field_name="filter")
    return [task for task in tasks if task.status == status_filter]


def sort_tasks(tasks: list[Task], sort_key: str = "priority", *, members: Iterable[Member] = ()) -> list[Task]:
    if sort_key == "priority":
        return sorted(tasks, key=lambda task: -PRIORITY_RANK.get(task.priority, 0))
    if sort_key == "dueDate":
        dated = [task for task in tasks if parse_timestamp(task.due_date) is not None]
        undated = [task for task in tasks if parse_timestamp(task.due_date) is None]
        dated.sort(key=lambda task: parse_timestamp(task.due_date))
        return dated + undated
    if sort_key == "status":
        return sorted(tasks, key=lambda task: TASK_STATUS_ORDER.get(task.status, 0))
    if sort_key == "assignee":
        names = {member.id: member.name for member in members}
        return sorted(tasks, key=lambda task: names.get(task.assignee_id or "", "").casefold())
    if sort_key == "created":
        return sorted(tasks, key=lambda task: parse_timestamp(task.created_at) or _EARLIEST, reverse=True)
    if sort_key == "updated":
        return sorted(tasks, key=lambda task: parse_timestamp(task.updated_at) or _EARLIEST, reverse=True)
    if sort_key == "progress":
        return sorted(tasks, key=lambda task: -task.progress)
    raise ValidationError(f"unknown task sort key {sort_key!r}; expected one of {', '.join(TASK_SORT_KEYS)}")


@dataclass(frozen=True)
class KanbanColumn:
    status: str
    title: str
    tasks: list[Task]


def kanban_columns(tasks: list[Task]) -> list[KanbanColumn]:
    return [
        KanbanColumn(status=status, title=KANBAN_TITLES[status], tasks=[task for task in tasks if task.status == status])
        for status in TASK_STATUSES
    ]


def timeline(tasks: list[Task]) -> list[tuple[date, list[Task]]]:
    """Tasks with a due date, grouped by UTC calendar day, earliest day first."""
    dated: list[tuple[datetime, Task]] = []
    for task in tasks:
        due = parse_timestamp(task.due_date)
        if due is not None:
            dated.append((due, task))
    dated.sort(key=lambda pair: pair[0])
    groups: list[tuple[date, list[Task]]] = []
    for due, task in dated:
        day = due.astimezone(timezone.utc).date()
        if groups and groups[-1][0] == day:
            groups[-1][1].append(task)
        else:
            groups.append((day, [task]))
    return groups
