from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from ..errors import CorruptStateError, NotFoundError, ValidationError
from ..events import EventBus, emit
from ..storage import JsonCollection, KeyValueStore
from .models import (
    MILESTONE_STATUSES,
    PRIORITIES,
    PRIORITY_RANK,
    PROJECT_STATUSES,
    Milestone,
    Project,
    merge_changes,
    new_id,
    parse_timestamp,
    project_from_record,
    require_choice,
    require_progress,
    require_text,
    snake_case,
    to_iso,
    to_record,
    touch_timestamp,
    utc_now,
)
from .tasks import TaskRepository


PROJECTS_KEY = "projects"
DEFAULT_PROJECT_NAME = "New project"
PROJECT_SORT_KEYS = ("name", "startDate", "endDate", "priority", "progress")

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _check_timestamp(value: str | None, *, field_name: str, required: bool = False) -> None:
    if not value:
        if required:
            raise ValidationError(f"project {field_name} is empty")
        return
    if parse_timestamp(value) is None:
        raise ValidationError(f"project {field_name} is not an ISO timestamp: {value!r}")


def _as_list(value: Any, *, field_name: str) -> list:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValidationError(f"project {field_name} must be a list")
    return list(value)


def _validated(project: Project) -> Project:
    name = require_text(project.name, kind="project", field_name="name")
    require_choice(project.status, PROJECT_STATUSES, kind="project", field_name="status")
    require_choice(project.priority, PRIORITIES, kind="project", field_name="priority")
    _check_timestamp(project.start_date, field_name="startDate", required=True)
    _check_timestamp(project.end_date, field_name="endDate")
    milestones = _as_list(project.milestones, field_name="milestones")
    for milestone in milestones:
        if not isinstance(milestone, Milestone):
            raise ValidationError("project milestones must be Milestone values")
    return replace(
        project,
        name=name,
        end_date=project.end_date or None,
        progress=require_progress(project.progress, kind="project"),
        member_ids=[str(item) for item in _as_list(project.member_ids, field_name="memberIds")],
        tags=[str(item) for item in _as_list(project.tags, field_name="tags")],
        milestones=milestones,
    )


class ProjectRepository:
    """Projects stored as one collection under the `projects` key.

    Deleting a project also deletes its tasks through the task repository.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        tasks: TaskRepository | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        owner_id: str = "current-user",
    ) -> None:
        self.collection = JsonCollection(store, PROJECTS_KEY)
        self.tasks = tasks
        self.events = events
        self.clock = clock
        self.owner_id = owner_id

    def list_projects(self) -> list[Project]:
        return self._load()

    def get(self, project_id: str) -> Project:
        for project in self._load():
            if project.id == project_id:
                return project
        raise NotFoundError("project", project_id)

    def create(self, *, name: str = DEFAULT_PROJECT_NAME, description: str = "", **fields: Any) -> Project:
        now = to_iso(self.clock())
        owner_id = str(fields.pop("owner_id", None) or fields.pop("ownerId", None) or self.owner_id)
        project = Project(
            id=new_id("prj"),
            name=name,
            description=description,
            status="planning",
            priority="medium",
            start_date=now,
            end_date=None,
            progress=0,
            owner_id=owner_id,
            member_ids=[owner_id],
            tags=[],
            milestones=[],
            created_at=now,
            updated_at=now,
        )
        if fields:
            project = merge_changes(project, fields, kind="project", locked=("id", "created_at", "updated_at"))
        project = _validated(project)

        projects = self._load()
        projects.append(project)
        self._save(projects)
        emit(self.events, "project.created", f"created project {project.name}", source="projects", project_id=project.id)
        return project

    def update(self, project_id: str, **changes: Any) -> Project:
        projects = self._load()
        idx = self._index_of(projects, project_id)
        current = projects[idx]
        merged = merge_changes(current, changes, kind="project", locked=("id", "created_at", "updated_at"))
        updated = replace(_validated(merged), updated_at=touch_timestamp(self.clock(), current.created_at))
        projects[idx] = updated
        self._save(projects)
        emit(
            self.events,
            "project.updated",
            f"updated project {updated.name}",
            source="projects",
            project_id=project_id,
            fields=sorted(snake_case(name) for name in changes),
        )
        return updated

    def delete(self, project_id: str) -> int:
        """Remove the project and its tasks; returns how many tasks went with it."""
        projects = self._load()
        kept = [project for project in projects if project.id != project_id]
        if len(kept) == len(projects):
            raise NotFoundError("project", project_id)
        # Tasks go first: if that collection is unreadable the project stays put.
        removed_tasks = self.tasks.delete_for_project(project_id) if self.tasks is not None else 0
        self._save(kept)
        emit(
            self.events,
            "project.deleted",
            f"deleted project {project_id}",
            source="projects",
            project_id=project_id,
            removed_tasks=removed_tasks,
        )
        return removed_tasks

    def add_milestone(self, project_id: str, *, title: str, due_date: str, description: str = "") -> Milestone:
        project = self.get(project_id)
        clean_title = require_text(title, kind="milestone", field_name="title")
        if parse_timestamp(due_date) is None:
            raise ValidationError(f"milestone dueDate is not an ISO timestamp: {due_date!r}")
        milestone = Milestone(
            id=new_id("ms"),
            project_id=project_id,
            title=clean_title,
            description=description,
            due_date=due_date,
        )
        self.update(project_id, milestones=[*project.milestones, milestone])
        emit(self.events, "milestone.added", f"added milestone {clean_title}", source="projects", project_id=project_id, milestone_id=milestone.id)
        return milestone

    def complete_milestone(self, project_id: str, milestone_id: str) -> Milestone:
        project = self.get(project_id)
        milestones = list(project.milestones)
        for idx, milestone in enumerate(milestones):
            if milestone.id != milestone_id:
                continue
            if milestone.is_completed:
                return milestone
            done = replace(milestone, status=MILESTONE_STATUSES[1], completed_at=to_iso(self.clock()))
            milestones[idx] = done
            self.update(project_id, milestones=milestones)
            emit(self.events, "milestone.completed", f"completed milestone {done.title}", source="projects", project_id=project_id, milestone_id=milestone_id)
            return done
        raise NotFoundError("milestone", milestone_id)

    def remove_milestone(self, project_id: str, milestone_id: str) -> None:
        project = self.get(project_id)
        kept = [milestone for milestone in project.milestones if milestone.id != milestone_id]
        if len(kept) == len(project.milestones):
            raise NotFoundError("milestone", milestone_id)
        self.update(project_id, milestones=kept)
        emit(self.events, "milestone.removed", f"removed milestone {milestone_id}", source="projects", project_id=project_id, milestone_id=milestone_id)

    def drop_member_references(self, member_id: str, *, except_project: str | None = None) -> int:
        """Remove `member_id` from every project's member list; returns how many changed.

        Reference cleanup leaves `updatedAt` alone, the same as dependency
        cleanup on tasks.
        """
        projects = self._load()
        changed: list[str] = []
        for idx, project in enumerate(projects):
            if project.id == except_project or member_id not in project.member_ids:
                continue
            projects[idx] = replace(project, member_ids=[mid for mid in project.member_ids if mid != member_id])
            changed.append(project.id)
        if changed:
            self._save(projects)
            emit(
                self.events,
                "project.members_cleaned",
                f"dropped member {member_id} from {len(changed)} project(s)",
                source="projects",
                member_id=member_id,
                project_ids=changed,
            )
        return len(changed)

    @staticmethod
    def _index_of(projects: list[Project], project_id: str) -> int:
        for idx, project in enumerate(projects):
            if project.id == project_id:
                return idx
        raise NotFoundError("project", project_id)

    def _load(self) -> list[Project]:
        records = self.collection.load()
        try:
            return [project_from_record(record) for record in records]
        except ValueError as exc:
            raise CorruptStateError(self.collection.key, str(exc)) from exc

    def _save(self, projects: list[Project]) -> None:
        self.collection.save([to_record(project) for project in projects])


def filter_projects(projects: list[Project], status_filter: str = "all") -> list[Project]:
    if status_filter == "all":
        return list(projects)
    require_choice(status_filter, PROJECT_STATUSES, kind="project", field_name="filter")
    return [project for project in projects if project.status == status_filter]


def _start_key(project: Project) -> datetime:
    return parse_timestamp(project.start_date) or _EARLIEST


def sort_projects(projects: list[Project], sort_key: str = "startDate") -> list[Project]:
    """Stable sort. Projects without an end date go last when sorting by `endDate`."""
    if sort_key == "name":
        return sorted(projects, key=lambda project: project.name.casefold())
    if sort_key == "startDate":
        return sorted(projects, key=_start_key, reverse=True)
    if sort_key == "endDate":
        dated = [project for project in projects if parse_timestamp(project.end_date) is not None]
        undated = [project for project in projects if parse_timestamp(project.end_date) is None]
        dated.sort(key=lambda project: parse_timestamp(project.end_date))
        return dated + undated
    if sort_key == "priority":
        return sorted(projects, key=lambda project: -PRIORITY_RANK.get(project.priority, 0))
    if sort_key == "progress":
        return sorted(projects, key=lambda project: -project.progress)
    raise ValidationError(f"unknown project sort key {sort_key!r}; expected one of {', '.join(PROJECT_SORT_KEYS)}")
