from __future__ import annotations

from datetime import datetime, timedelta, timezone

from deskmate.events import EventBus
from deskmate.projects.members import MemberRepository
from deskmate.projects.projects import ProjectRepository
from deskmate.projects.tasks import TaskRepository
from deskmate.storage import MemoryStore


START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def build_repos(*, clean: bool = True, store: MemoryStore | None = None, clock: FakeClock | None = None):
    """Wire the three project repositories the way `open_workspace` does."""
    store = store if store is not None else MemoryStore()
    clock = clock or FakeClock()
    events = EventBus()
    tasks = TaskRepository(store, events=events, clock=clock, clean_dangling_references=clean)
    projects = ProjectRepository(store, tasks=tasks, events=events, clock=clock)
    members = MemberRepository(store, projects, tasks=tasks, events=events, clock=clock, clean_dangling_references=clean)
    return store, clock, events, projects, tasks, members
