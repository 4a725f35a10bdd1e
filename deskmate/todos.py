from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .errors import CorruptStateError, NotFoundError
from .events import EventBus, emit
from .projects.models import new_id, parse_timestamp, require_choice, require_text, to_iso, to_record, utc_now
from .projects.stats import completion_rate
from .storage import JsonCollection, KeyValueStore


TODOS_KEY = "todos"
TODO_PRIORITIES = ("low", "medium", "high")
TODO_FILTERS = ("all", "active", "completed")

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TodoItem:
    id: str
    content: str
    completed: bool
    priority: str
    created_at: str
    updated_at: str
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TodoStats:
    total: int
    completed: int
    active: int
    completion_rate: int


def todo_from_record(record: dict[str, Any]) -> TodoItem:
    todo_id = str(record.get("id") or "").strip()
    if not todo_id:
        raise ValueError("todo record has no id")
    created_at = str(record.get("createdAt") or "")
    priority = str(record.get("priority") or "").strip().lower()
    tags = record.get("tags")
    return TodoItem(
        id=todo_id,
        content=str(record.get("content") or ""),
        completed=bool(record.get("completed")),
        priority=priority if priority in TODO_PRIORITIES else "medium",
        created_at=created_at,
        updated_at=str(record.get("updatedAt") or created_at),
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
    )


class TodoRepository:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.collection = JsonCollection(store, TODOS_KEY)
        self.events = events
        self.clock = clock

    def list_todos(self) -> list[TodoItem]:
        return self._load()

    def add(self, content: str, *, priority: str = "medium", tags: Iterable[str] = ()) -> TodoItem:
        now = to_iso(self.clock())
        item = TodoItem(
            id=new_id("todo"),
            content=require_text(content, kind="todo", field_name="content"),
            completed=False,
            priority=require_choice(priority, TODO_PRIORITIES, kind="todo", field_name="priority"),
            created_at=now,
            updated_at=now,
            tags=[str(tag).strip() for tag in tags if str(tag).strip()],
        )
        items = self._load()
        items.append(item)
        self._save(items)
        emit(self.events, "todo.added", f"added todo {item.content}", source="todos", todo_id=item.id)
        return item

    def toggle(self, todo_id: str) -> TodoItem:
        return self._replace(todo_id, "todo.toggled", lambda item: {"completed": not item.completed})

    def edit(self, todo_id: str, content: str) -> TodoItem:
        cleaned = require_text(content, kind="todo", field_name="content")
        return self._replace(todo_id, "todo.edited", lambda _item: {"content": cleaned})

    def delete(self, todo_id: str) -> None:
        items = self._load()
        kept = [item for item in items if item.id != todo_id]
        if len(kept) == len(items):
            raise NotFoundError("todo", todo_id)
        self._save(kept)
        emit(self.events, "todo.deleted", f"deleted todo {todo_id}", source="todos", todo_id=todo_id)

    def clear_completed(self) -> int:
        items = self._load()
        kept = [item for item in items if not item.completed]
        removed = len(items) - len(kept)
        if removed:
            self._save(kept)
            emit(self.events, "todo.cleared", f"cleared {removed} completed todo(s)", source="todos", count=removed)
        return removed

    def _replace(self, todo_id: str, event_type: str, changes: Callable[[TodoItem], dict[str, Any]]) -> TodoItem:
        items = self._load()
        for idx, item in enumerate(items):
            if item.id != todo_id:
                continue
            updated = replace(item, **changes(item), updated_at=to_iso(self.clock()))
            items[idx] = updated
            self._save(items)
            emit(self.events, event_type, f"{event_type.split('.')[-1]} todo {updated.content}", source="todos", todo_id=todo_id)
            return updated
        raise NotFoundError("todo", todo_id)

    def _load(self) -> list[TodoItem]:
        records = self.collection.load()
        try:
            return [todo_from_record(record) for record in records]
        except ValueError as exc:
            raise CorruptStateError(self.collection.key, str(exc)) from exc

    def _save(self, items: list[TodoItem]) -> None:
        self.collection.save([to_record(item) for item in items])


def filter_todos(items: Iterable[TodoItem], todo_filter: str = "all") -> list[TodoItem]:
    """Filter by completion, newest first."""
    require_choice(todo_filter, TODO_FILTERS, kind="todo", field_name="filter")
    selected = list(items)
    if todo_filter == "active":
        selected = [item for item in selected if not item.completed]
    elif todo_filter == "completed":
        selected = [item for item in selected if item.completed]
    return sorted(selected, key=lambda item: parse_timestamp(item.created_at) or _EARLIEST, reverse=True)


def todo_stats(items: Iterable[TodoItem]) -> TodoStats:
    selected = list(items)
    total = len(selected)
    completed = sum(1 for item in selected if item.completed)
    return TodoStats(
        total=total,
        completed=completed,
        active=total - completed,
        completion_rate=completion_rate(completed, total),
    )
