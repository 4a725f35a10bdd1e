from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .errors import CorruptStateError, NotFoundError, ValidationError
from .events import EventBus, emit
from .projects.models import merge_changes, new_id, to_iso, to_record, utc_now
from .storage import JsonCollection, KeyValueStore


NOTES_KEY = "notes"


@dataclass(frozen=True)
class Note:
    id: str
    title: str
    content: str
    created_at: str
    updated_at: str
    tags: list[str] = field(default_factory=list)


def note_from_record(record: dict[str, Any]) -> Note:
    note_id = str(record.get("id") or "").strip()
    if not note_id:
        raise ValueError("note record has no id")
    created_at = str(record.get("createdAt") or "")
    tags = record.get("tags")
    return Note(
        id=note_id,
        title=str(record.get("title") or ""),
        content=str(record.get("content") or ""),
        created_at=created_at,
        updated_at=str(record.get("updatedAt") or created_at),
        tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
    )


def _clean_tags(tags: Any) -> list[str]:
    if isinstance(tags, (str, bytes)) or not isinstance(tags, Iterable):
        raise ValidationError("note tags must be a list")
    return [str(tag).strip() for tag in tags if str(tag).strip()]


class NoteRepository:
    """Notes under the `notes` key, newest first: new notes go to the front."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.collection = JsonCollection(store, NOTES_KEY)
        self.events = events
        self.clock = clock

    def list_notes(self) -> list[Note]:
        return self._load()

    def get(self, note_id: str) -> Note:
        for note in self._load():
            if note.id == note_id:
                return note
        raise NotFoundError("note", note_id)

    def create(self, *, title: str = "", content: str = "", tags: Iterable[str] = ()) -> Note:
        now = to_iso(self.clock())
        note = Note(
            id=new_id("note"),
            title=" ".join(title.split()),
            content=content,
            created_at=now,
            updated_at=now,
            tags=_clean_tags(tags),
        )
        notes = self._load()
        notes.insert(0, note)
        self._save(notes)
        emit(self.events, "note.created", f"created note {note.title or note.id}", source="notes", note_id=note.id)
        return note

    def update(self, note_id: str, **changes: Any) -> Note:
        notes = self._load()
        for idx, note in enumerate(notes):
            if note.id != note_id:
                continue
            merged = merge_changes(note, changes, kind="note", locked=("id", "created_at", "updated_at"))
            updated = replace(
                merged,
                title=" ".join(str(merged.title).split()),
                tags=_clean_tags(merged.tags),
                updated_at=to_iso(self.clock()),
            )
            notes[idx] = updated
            self._save(notes)
            emit(self.events, "note.updated", f"updated note {updated.title or note_id}", source="notes", note_id=note_id)
            return updated
        raise NotFoundError("note", note_id)

    def delete(self, note_id: str) -> None:
        notes = self._load()
        kept = [note for note in notes if note.id != note_id]
        if len(kept) == len(notes):
            raise NotFoundError("note", note_id)
        self._save(kept)
        emit(self.events, "note.deleted", f"deleted note {note_id}", source="notes", note_id=note_id)

    def _load(self) -> list[Note]:
        records = self.collection.load()
        try:
            return [note_from_record(record) for record in records]
        except ValueError as exc:
            raise CorruptStateError(self.collection.key, str(exc)) from exc

    def _save(self, notes: list[Note]) -> None:
        self.collection.save([to_record(note) for note in notes])


def search_notes(notes: Iterable[Note], term: str) -> list[Note]:
    needle = (term or "").strip().casefold()
    if not needle:
        return list(notes)
    return [
        note
        for note in notes
        if needle in note.title.casefold()
        or needle in note.content.casefold()
        or any(needle in tag.casefold() for tag in note.tags)
    ]
