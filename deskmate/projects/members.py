from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from ..errors import CorruptStateError, NotFoundError
from ..events import EventBus, emit
from ..storage import JsonCollection, KeyValueStore
from .models import (
    MEMBER_ROLES,
    Member,
    member_from_record,
    new_id,
    require_choice,
    require_text,
    to_iso,
    to_record,
    utc_now,
)
from .projects import ProjectRepository
from .tasks import TaskRepository


MEMBERS_KEY = "project-members"


class MemberRepository:
    """One global member list; each project references members by id."""

    def __init__(
        self,
        store: KeyValueStore,
        projects: ProjectRepository,
        *,
        tasks: TaskRepository | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        clean_dangling_references: bool = True,
    ) -> None:
        self.collection = JsonCollection(store, MEMBERS_KEY)
        self.projects = projects
        self.tasks = tasks
        self.events = events
        self.clock = clock
        self.clean_dangling_references = clean_dangling_references

    def list_members(self) -> list[Member]:
        return self._load()

    def get(self, member_id: str) -> Member:
        for member in self._load():
            if member.id == member_id:
                return member
        raise NotFoundError("member", member_id)

    def list_for_project(self, project_id: str) -> list[Member]:
        """Members in the project's `memberIds` order; ids with no record are skipped."""
        project = self.projects.get(project_id)
        by_id = {member.id: member for member in self._load()}
        return [by_id[member_id] for member_id in project.member_ids if member_id in by_id]

    def add(
        self,
        project_id: str,
        *,
        name: str,
        email: str = "",
        role: str = "member",
        avatar: str | None = None,
    ) -> Member:
        project = self.projects.get(project_id)
        member = Member(
            id=new_id("member"),
            name=require_text(name, kind="member", field_name="name"),
            email=" ".join((email or "").split()),
            role=require_choice(role, MEMBER_ROLES, kind="member", field_name="role"),
            joined_at=to_iso(self.clock()),
            avatar=avatar or None,
        )
        members = self._load()
        members.append(member)
        self._save(members)
        self.projects.update(project_id, member_ids=[*project.member_ids, member.id])
        emit(self.events, "member.added", f"added {member.name} to {project_id}", source="members", member_id=member.id, project_id=project_id)
        return member

    def remove(self, project_id: str, member_id: str) -> None:
        """Drop the member record and its membership in `project_id`.

        Owners are not protected here. With dangling-reference cleaning on, the
        id also leaves every other project and any task assigned to it.
        """
        project = self.projects.get(project_id)
        members = self._load()
        kept = [member for member in members if member.id != member_id]
        in_project = member_id in project.member_ids
        if len(kept) == len(members) and not in_project:
            raise NotFoundError("member", member_id)

        if len(kept) != len(members):
            self._save(kept)
        if in_project:
            self.projects.update(project_id, member_ids=[item for item in project.member_ids if item != member_id])

        unassigned = 0
        if self.clean_dangling_references:
            self.projects.drop_member_references(member_id, except_project=project_id)
            if self.tasks is not None:
                unassigned = self.tasks.unassign(member_id)
        emit(
            self.events,
            "member.removed",
            f"removed {member_id} from {project_id}",
            source="members",
            member_id=member_id,
            project_id=project_id,
            unassigned_tasks=unassigned,
        )

    def ensure_member(self, member: Member) -> Member:
        members = self._load()
        for existing in members:
            if existing.id == member.id:
                return existing
        members.append(member)
        self._save(members)
        emit(self.events, "member.seeded", f"seeded member {member.name}", source="members", member_id=member.id)
        return member

    def _load(self) -> list[Member]:
        records = self.collection.load()
        try:
            return [member_from_record(record) for record in records]
        except ValueError as exc:
            raise CorruptStateError(self.collection.key, str(exc)) from exc

    def _save(self, members: list[Member]) -> None:
        self.collection.save([to_record(member) for member in members])
