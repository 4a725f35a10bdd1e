from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import DeskmateConfig, load_config
from .events import EventBus
from .notes import NoteRepository
from .paths import RuntimePaths, ensure_runtime_dirs, runtime_paths
from .projects.members import MemberRepository
from .projects.models import Member, to_iso, utc_now
from .projects.projects import ProjectRepository
from .projects.tasks import TaskRepository
from .storage import FileStore, KeyValueStore
from .todos import TodoRepository


@dataclass(frozen=True)
class Workspace:
    paths: RuntimePaths
    config: DeskmateConfig
    config_warning: str
    store: KeyValueStore
    events: EventBus
    projects: ProjectRepository
    tasks: TaskRepository
    members: MemberRepository
    todos: TodoRepository
    notes: NoteRepository

    def current_user(self) -> Member:
        return self.members.get(self.config.user.id)


def open_workspace(
    root: Path | None = None,
    *,
    store: KeyValueStore | None = None,
    events: EventBus | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Workspace:
    """Build the store and every repository once, wired to the same event bus.

    The acting user from `[user]` is seeded into the member list on first use.
    """

    paths = ensure_runtime_dirs(runtime_paths(root))
    config, warning = load_config(paths.config_toml)
    store = store if store is not None else FileStore(paths.state_dir)
    if events is None:
        events = EventBus(paths.events_log)
    clean = config.projects.clean_dangling_references

    tasks = TaskRepository(store, events=events, clock=clock, clean_dangling_references=clean)
    projects = ProjectRepository(store, tasks=tasks, events=events, clock=clock, owner_id=config.user.id)
    members = MemberRepository(
        store,
        projects,
        tasks=tasks,
        events=events,
        clock=clock,
        clean_dangling_references=clean,
    )
    members.ensure_member(
        Member(
            id=config.user.id,
            name=config.user.name,
            email=config.user.email,
            role="owner",
            joined_at=to_iso(clock()),
        )
    )
    return Workspace(
        paths=paths,
        config=config,
        config_warning=warning,
        store=store,
        events=events,
        projects=projects,
        tasks=tasks,
        members=members,
        todos=TodoRepository(store, events=events, clock=clock),
        notes=NoteRepository(store, events=events, clock=clock),
    )
